"""
isi_dashboard.persistence — Session-scoped timeline storage.

The controller persists its simulation timeline through the Persistence
capability. Storage is best-effort: a backend signals failure by raising
StorageError from save(), and the caller logs and carries on. A failed or
corrupt load yields an empty timeline.

Storage layout mirrors a browser session store: one string value per key,
the key being TIMELINE_STORAGE_PREFIX + entity code (e.g. "isi-timeline-SE"),
the value a JSON array of timeline entries, most recent first.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Protocol

from pydantic import TypeAdapter, ValidationError

from isi_dashboard.constants import MAX_TIMELINE_ENTRIES, TIMELINE_STORAGE_PREFIX
from isi_dashboard.errors import StorageError
from isi_dashboard.models import TimelineEntry

logger = logging.getLogger("isi.persistence")

_TIMELINE_ADAPTER: TypeAdapter[list[TimelineEntry]] = TypeAdapter(list[TimelineEntry])


def timeline_storage_key(entity_code: str) -> str:
    return f"{TIMELINE_STORAGE_PREFIX}{entity_code.strip().upper()}"


class KeyValueStorage(Protocol):
    """String key/value store (session storage semantics)."""

    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class Persistence(Protocol):
    """Timeline persistence capability used by the controller."""

    def load(self) -> list[TimelineEntry]: ...

    def save(self, entries: list[TimelineEntry]) -> None: ...


# ---------------------------------------------------------------------------
# In-memory session storage
# ---------------------------------------------------------------------------

class MemorySessionStorage:
    """Thread-safe in-process KeyValueStorage with an optional byte quota.

    When quota_bytes is set, a write that would push the total size of
    all stored values past the quota raises StorageError and leaves the
    previous value in place.
    """

    def __init__(self, quota_bytes: int | None = None) -> None:
        self._quota = quota_bytes
        self._lock = threading.Lock()
        self._items: dict[str, str] = {}

    def get_item(self, key: str) -> str | None:
        with self._lock:
            return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            if self._quota is not None:
                used = sum(
                    len(v.encode("utf-8")) for k, v in self._items.items() if k != key
                )
                needed = len(value.encode("utf-8"))
                if used + needed > self._quota:
                    raise StorageError(
                        f"Storage quota exceeded writing '{key}' "
                        f"({used + needed} > {self._quota} bytes)."
                    )
            self._items[key] = value

    def remove_item(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


# ---------------------------------------------------------------------------
# Timeline persistence
# ---------------------------------------------------------------------------

def dump_timeline(entries: list[TimelineEntry]) -> str:
    return json.dumps(
        [e.model_dump(mode="json") for e in entries],
        separators=(",", ":"),
    )


def parse_timeline(raw: str, max_entries: int = MAX_TIMELINE_ENTRIES) -> list[TimelineEntry]:
    """Parse a stored timeline. Raises ValueError on malformed data."""
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Stored timeline is not valid JSON: {exc.msg}") from exc
    if not isinstance(data, list):
        raise ValueError("Stored timeline must be a JSON array.")
    try:
        entries = _TIMELINE_ADAPTER.validate_python(data)
    except ValidationError as exc:
        raise ValueError(f"Stored timeline entries invalid: {exc.error_count()} error(s).") from exc
    return entries[:max_entries]


class SessionTimelineStore:
    """Persistence for one entity's timeline on top of a KeyValueStorage.

    max_entries should match ControllerConfig.max_timeline; entries past it
    are dropped on save and on load.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        entity_code: str,
        max_entries: int = MAX_TIMELINE_ENTRIES,
    ) -> None:
        if max_entries < 1:
            raise ValueError(f"max_entries must be >= 1, got {max_entries}.")
        self.storage = storage
        self.key = timeline_storage_key(entity_code)
        self.max_entries = max_entries

    def load(self) -> list[TimelineEntry]:
        raw = self.storage.get_item(self.key)
        if raw is None:
            return []
        try:
            return parse_timeline(raw, self.max_entries)
        except ValueError as exc:
            logger.warning(json.dumps({
                "event": "timeline_load_failed",
                "key": self.key,
                "error": str(exc),
            }))
            return []

    def save(self, entries: list[TimelineEntry]) -> None:
        try:
            self.storage.set_item(self.key, dump_timeline(entries[: self.max_entries]))
        except StorageError:
            raise
        except (OSError, TypeError, ValueError) as exc:
            raise StorageError(f"Could not persist timeline '{self.key}': {exc}") from exc

    def clear(self) -> None:
        self.storage.remove_item(self.key)


class NullPersistence:
    """Persistence that keeps nothing. Used when no storage is configured."""

    def load(self) -> list[TimelineEntry]:
        return []

    def save(self, entries: list[TimelineEntry]) -> None:
        return None
