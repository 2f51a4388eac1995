"""
isi_dashboard.dataset — Cohort source: parse, cache and fetch the ISI dataset.

The dataset is the `/isi` composite artifact:

    {
      "version": "v0.1",
      "window": "2022-2024",
      "countries": [
        {"country": "SE", "country_name": "Sweden",
         "axis_1_financial": 0.12, ..., "axis_6_logistics": 0.20,
         "isi_composite": 0.1834, "classification": "...", "complete": true},
        ...
      ]
    }

Every record is validated into an EntityProfile at this boundary. A record
that violates the model invariants (missing axis field, score outside
[0, 1], composite that disagrees with its axes) rejects the whole payload
with DatasetSchemaError: a partially loaded cohort would silently skew
every percentile.

Caching:
    DatasetCache is an explicit value object with a TTL. Its owner (the
    API app, a test) controls its lifetime; there is no module-level cache.
"""

from __future__ import annotations

import csv
import io
import json
import logging
import threading
import time
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx
from pydantic import ValidationError

from isi_dashboard.axes import AXIS_CATALOG
from isi_dashboard.config import DATASET_TTL_SECONDS
from isi_dashboard.constants import COUNTRY_NAMES
from isi_dashboard.models import AxisScore, EntityProfile

logger = logging.getLogger("isi.dataset")

DATASET_PATH = "/isi"

CSV_COLUMNS: tuple[str, ...] = (
    "country",
    "country_name",
    *(d.field_key for d in AXIS_CATALOG),
    "isi_composite",
    "classification",
    "complete",
)


class DatasetSchemaError(ValueError):
    """Raised when the dataset payload does not match the expected schema."""


class DatasetUnavailableError(RuntimeError):
    """Raised when the dataset cannot be fetched from its source."""


# ---------------------------------------------------------------------------
# Cohort
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Cohort:
    """Validated dataset release. Immutable once built."""

    version: str | None
    window: str | None
    entities: tuple[EntityProfile, ...]
    payload: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def __iter__(self) -> Iterator[EntityProfile]:
        return iter(self.entities)

    def __len__(self) -> int:
        return len(self.entities)

    def get(self, code: str) -> EntityProfile | None:
        code = code.strip().upper()
        for entity in self.entities:
            if entity.code == code:
                return entity
        return None

    @property
    def codes(self) -> tuple[str, ...]:
        return tuple(e.code for e in self.entities)

    def export_stem(self) -> str:
        return f"isi-{self.version or 'unversioned'}-{self.window or 'na'}"


def parse_entity(record: Mapping[str, Any]) -> EntityProfile:
    """Validate one `countries[]` record into an EntityProfile."""
    if not isinstance(record, Mapping):
        raise DatasetSchemaError(f"Country record must be an object, got {type(record).__name__}.")
    code = record.get("country")
    if not isinstance(code, str):
        raise DatasetSchemaError(f"Country record without a 'country' code: {dict(record)!r:.200}")

    missing = [d.field_key for d in AXIS_CATALOG if d.field_key not in record]
    if missing:
        raise DatasetSchemaError(f"{code}: missing axis fields {missing}.")

    try:
        return EntityProfile(
            code=code,
            name=record.get("country_name") or COUNTRY_NAMES.get(code.upper(), code),
            composite_score=record.get("isi_composite"),
            classification=record.get("classification"),
            axis_scores=tuple(
                AxisScore(slug=d.slug, value=record[d.field_key]) for d in AXIS_CATALOG
            ),
        )
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        raise DatasetSchemaError(f"{code}: {first.get('msg', 'invalid record')}") from exc


def parse_cohort(payload: Any) -> Cohort:
    """Validate an `/isi` payload. Raises DatasetSchemaError on any violation."""
    if not isinstance(payload, Mapping):
        raise DatasetSchemaError("Dataset payload must be a JSON object.")
    records = payload.get("countries")
    if not isinstance(records, list):
        raise DatasetSchemaError("Dataset payload has no 'countries' array.")

    entities = tuple(parse_entity(r) for r in records)
    codes = [e.code for e in entities]
    duplicates = sorted({c for c in codes if codes.count(c) > 1})
    if duplicates:
        raise DatasetSchemaError(f"Duplicate country records: {duplicates}.")

    return Cohort(
        version=payload.get("version"),
        window=payload.get("window"),
        entities=entities,
        payload=payload,
    )


def load_cohort_file(path: Path | str) -> Cohort:
    with open(path, encoding="utf-8") as fh:
        try:
            payload = json.load(fh)
        except json.JSONDecodeError as exc:
            raise DatasetSchemaError(f"{path}: not valid JSON ({exc.msg}).") from exc
    return parse_cohort(payload)


# ---------------------------------------------------------------------------
# DatasetCache — explicit TTL value object
# ---------------------------------------------------------------------------

class DatasetCache:
    """Thread-safe single-slot cache with a time-to-live.

    Usage::

        cache = DatasetCache(ttl_seconds=300)
        cohort = cache.get()          # None when empty or expired
        cache.put(cohort)
    """

    def __init__(
        self,
        ttl_seconds: float = DATASET_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds < 0:
            raise ValueError(f"ttl_seconds must be non-negative, got {ttl_seconds!r}")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._cohort: Cohort | None = None
        self._stored_at: float = 0.0

    def get(self) -> Cohort | None:
        with self._lock:
            if self._cohort is None:
                return None
            if self._clock() - self._stored_at >= self.ttl_seconds:
                self._cohort = None
                return None
            return self._cohort

    def put(self, cohort: Cohort) -> None:
        with self._lock:
            self._cohort = cohort
            self._stored_at = self._clock()

    def invalidate(self) -> bool:
        """Drop the cached cohort. Returns True if something was dropped."""
        with self._lock:
            dropped = self._cohort is not None
            self._cohort = None
            return dropped

    @property
    def stats(self) -> dict[str, Any]:
        with self._lock:
            age = self._clock() - self._stored_at if self._cohort is not None else None
            return {
                "ttl_seconds": self.ttl_seconds,
                "cached": self._cohort is not None,
                "age_seconds": round(age, 3) if age is not None else None,
                "entities": len(self._cohort) if self._cohort is not None else 0,
            }


# ---------------------------------------------------------------------------
# Fetch
# ---------------------------------------------------------------------------

async def fetch_cohort(
    client: httpx.AsyncClient,
    cache: DatasetCache,
    *,
    base_url: str = "",
    path: str = DATASET_PATH,
) -> Cohort:
    """Return the cached cohort, or fetch and validate a fresh one.

    Raises:
        DatasetUnavailableError: network failure or non-2xx status.
        DatasetSchemaError: the payload does not validate.
    """
    cached = cache.get()
    if cached is not None:
        return cached

    url = f"{base_url.rstrip('/')}{path}"
    try:
        response = await client.get(url, headers={"Accept": "application/json"})
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        logger.error(json.dumps({
            "event": "dataset_fetch_failed",
            "url": url,
            "status": exc.response.status_code,
        }))
        raise DatasetUnavailableError(f"GET {url} returned {exc.response.status_code}.") from exc
    except httpx.TransportError as exc:
        logger.error(json.dumps({
            "event": "dataset_fetch_failed",
            "url": url,
            "error_type": type(exc).__name__,
        }))
        raise DatasetUnavailableError(f"GET {url} failed: {type(exc).__name__}.") from exc

    try:
        payload = response.json()
    except ValueError as exc:
        raise DatasetSchemaError(f"GET {url} did not return JSON.") from exc

    cohort = parse_cohort(payload)
    cache.put(cohort)
    logger.info(json.dumps({
        "event": "dataset_loaded",
        "version": cohort.version,
        "entities": len(cohort),
    }))
    return cohort


# ---------------------------------------------------------------------------
# Exports
# ---------------------------------------------------------------------------

def cohort_to_json(cohort: Cohort) -> str:
    """Pretty JSON of the dataset as received."""
    return json.dumps(cohort.payload, indent=2, ensure_ascii=False)


def cohort_to_csv(cohort: Cohort) -> str:
    """One row per country record, columns in CSV_COLUMNS order.

    Values are taken from the payload as received; null becomes an empty
    cell and booleans are written lowercase.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for record in cohort.payload.get("countries", []):
        row = []
        for column in CSV_COLUMNS:
            value = record.get(column)
            if value is None:
                row.append("")
            elif isinstance(value, bool):
                row.append("true" if value else "false")
            else:
                row.append(value)
        writer.writerow(row)
    return buffer.getvalue()
