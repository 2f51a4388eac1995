"""
isi_dashboard.scenario_contract — Scenario wire contract (single source of truth).

Defines the exact shape of a scenario simulation request and response, and
the two gates a request passes through before it reaches the simulation
service.

Request payload (constant shape):
    {
      "country_code": str,          # 2-letter uppercase, EU-27
      "adjustments": {              # ALL six axes, always
          "<axis_slug>": float      # clamped to [-0.20, +0.20]; long wire
                                    # keys instead when requested
      },
      "meta": {"preset": str | null, "client_version": str | null} | null
    }

Response (validated before it is trusted):
    {
      "country": str,
      "baseline":  {"composite", "rank", "classification", "axes": {slug: float}},
      "simulated": {"composite", "rank", "classification", "axes": {slug: float}},
      "delta":     {"composite", "rank", "axes": {slug: float}}
    }

Gates:
    validate_scenario_input()  client-side, strict: unknown axis keys and
                               non-finite values fail; out-of-range values
                               are clamped by the builder.
    validate_proxy_body()      server-facing, tolerant: unknown keys are
                               silently dropped, long wire keys accepted,
                               non-finite values still fail.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    Field,
    StrictInt,
    StrictStr,
    ValidationError,
    field_validator,
    model_validator,
)

from isi_dashboard.axes import ALL_AXIS_SLUGS, SLUG_VALUES, AxisSlug, get_axis, resolve_axis_slug
from isi_dashboard.constants import EU27_CODES, MAX_ADJUSTMENT, MIN_ADJUSTMENT
from isi_dashboard.errors import FailureKind, ResponseValidationError
from isi_dashboard.methodology import Classification, clamp, classify

StrictFiniteFloat = Annotated[float, Field(strict=True, allow_inf_nan=False)]


# ---------------------------------------------------------------------------
# Coercion helpers
# ---------------------------------------------------------------------------

def coerce_finite(value: Any) -> float | None:
    """float() coercion; None when the value is non-numeric or non-finite."""
    if isinstance(value, bool):
        return None
    try:
        fval = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    if math.isnan(fval) or math.isinf(fval):
        return None
    return fval


def clamp_adjustment(value: float) -> float:
    """Clamp to [-0.20, +0.20]. NaN/Inf collapse to 0.0."""
    return clamp(value, MIN_ADJUSTMENT, MAX_ADJUSTMENT)


def normalize_code(code: Any) -> str:
    return str(code).strip().upper()


def active_adjustments(adjustments: Mapping[Any, float]) -> dict[AxisSlug, float]:
    """Non-zero entries only, keyed by slug."""
    active: dict[AxisSlug, float] = {}
    for key, value in adjustments.items():
        slug = resolve_axis_slug(key) if not isinstance(key, AxisSlug) else key
        if slug is not None and value != 0:
            active[slug] = value
    return active


# ---------------------------------------------------------------------------
# Request payload
# ---------------------------------------------------------------------------

class ScenarioMeta(BaseModel):
    """Optional metadata. Ignored by the simulation computation."""

    preset: Optional[str] = None
    client_version: Optional[str] = None
    timestamp: Optional[str] = None


class ScenarioRequestPayload(BaseModel):
    """Network-ready scenario request. Always carries all six axes."""

    model_config = {"frozen": True}

    country_code: str
    adjustments: dict[AxisSlug, float]
    meta: Optional[ScenarioMeta] = None

    @model_validator(mode="after")
    def _constant_shape(self) -> ScenarioRequestPayload:
        if set(self.adjustments) != set(ALL_AXIS_SLUGS):
            raise ValueError("adjustments must contain exactly the six axis slugs.")
        for slug, value in self.adjustments.items():
            if not MIN_ADJUSTMENT <= value <= MAX_ADJUSTMENT:
                raise ValueError(f"adjustment for '{slug.value}' out of range: {value}")
        return self

    @property
    def is_identity(self) -> bool:
        return all(v == 0 for v in self.adjustments.values())

    def to_wire(self, *, long_keys: bool = False) -> dict[str, Any]:
        """JSON body. Keys are slugs, or the long wire keys when long_keys is set."""
        body: dict[str, Any] = {
            "country_code": self.country_code,
            "adjustments": {
                (get_axis(slug).wire_key if long_keys else slug.value): self.adjustments[slug]
                for slug in ALL_AXIS_SLUGS
            },
        }
        if self.meta is not None:
            body["meta"] = self.meta.model_dump()
        return body


def build_scenario_request(
    entity_code: str,
    adjustments: Mapping[Any, Any],
    meta: ScenarioMeta | None = None,
) -> ScenarioRequestPayload:
    """Build a payload with all six axes, each float-coerced and clamped.

    Missing axes default to 0.0; non-numeric or non-finite values become 0.0.
    Keys may be slugs, AxisSlug members or any spelling resolve_axis_slug
    understands. Unrecognized keys are ignored here; reject them earlier
    with validate_scenario_input().
    """
    resolved: dict[AxisSlug, Any] = {}
    for key, raw in adjustments.items():
        slug = key if isinstance(key, AxisSlug) else resolve_axis_slug(key)
        if slug is not None:
            resolved[slug] = raw

    normalized: dict[AxisSlug, float] = {}
    for slug in ALL_AXIS_SLUGS:
        value = coerce_finite(resolved.get(slug, 0.0))
        normalized[slug] = clamp_adjustment(value if value is not None else 0.0)

    return ScenarioRequestPayload(
        country_code=normalize_code(entity_code),
        adjustments=normalized,
        meta=meta,
    )


# ---------------------------------------------------------------------------
# Client-side gate
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class ValidationSuccess:
    payload: ScenarioRequestPayload
    valid: Literal[True] = True


@dataclass(frozen=True, slots=True)
class ValidationFailure:
    reason: str
    kind: FailureKind = FailureKind.BAD_INPUT
    valid: Literal[False] = False


ValidationResult = Union[ValidationSuccess, ValidationFailure]


def validate_scenario_input(
    entity_code: str,
    adjustments: Mapping[Any, Any],
    meta: ScenarioMeta | None = None,
) -> ValidationResult:
    """Pre-flight validation. No request leaves the client unless it passes.

    Rules:
        - entity code: exactly 2 characters, member of EU-27
        - every key: a known axis slug
        - every value: finite after float() coercion
    """
    code = normalize_code(entity_code)
    if len(code) != 2:
        return ValidationFailure(reason=f"Invalid country code length: '{code}'")
    if code not in EU27_CODES:
        return ValidationFailure(reason=f"Country code not in EU-27: '{code}'")

    for key, raw in adjustments.items():
        slug_value = key.value if isinstance(key, AxisSlug) else key
        if not isinstance(slug_value, str) or slug_value not in SLUG_VALUES:
            return ValidationFailure(reason=f"Unknown axis slug: '{key}'")
        if coerce_finite(raw) is None:
            return ValidationFailure(reason=f"Non-numeric shift for {slug_value}: {raw!r}")

    return ValidationSuccess(payload=build_scenario_request(code, adjustments, meta))


# ---------------------------------------------------------------------------
# Server-facing gate — tolerant pydantic model
# ---------------------------------------------------------------------------

class ScenarioRequest(BaseModel):
    """Tolerant inbound scenario request (proxy side).

    - Accepts country_code / country / countryCode / entityCode
    - Accepts adjustments / axis_shifts
    - Short slugs and long wire keys both map to the axis slug
    - Unknown keys → silently ignored
    - Out-of-range values → clamped to [-0.20, +0.20]
    - Missing axes → 0.0
    - Non-numeric or non-finite values → rejected
    """

    model_config = {"extra": "ignore"}

    country_code: str = Field(
        ...,
        validation_alias=AliasChoices("country_code", "country", "countryCode", "entityCode"),
    )
    adjustments: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("adjustments", "axis_shifts"),
    )
    meta: Optional[ScenarioMeta] = None

    @field_validator("country_code", mode="before")
    @classmethod
    def _normalize_country_code(cls, v: Any) -> str:
        if not isinstance(v, str):
            raise ValueError("country_code must be a string.")
        v = normalize_code(v)
        if len(v) != 2 or not v.isalpha():
            raise ValueError(f"country_code must be exactly 2 letters: '{v}'.")
        return v

    @model_validator(mode="after")
    def _normalize_adjustments(self) -> ScenarioRequest:
        normalized: dict[str, Any] = {}
        for key, raw in self.adjustments.items():
            slug = resolve_axis_slug(key)
            if slug is None:
                continue
            value = coerce_finite(raw)
            if value is None:
                raise ValueError(f"adjustment for '{key}' is not a finite number.")
            normalized[slug.value] = clamp_adjustment(value)
        for slug in ALL_AXIS_SLUGS:
            normalized.setdefault(slug.value, 0.0)
        self.adjustments = normalized
        return self

    def to_payload(self) -> ScenarioRequestPayload:
        return ScenarioRequestPayload(
            country_code=self.country_code,
            adjustments={AxisSlug(k): v for k, v in self.adjustments.items()},
            meta=self.meta,
        )


def validate_proxy_body(body: Any) -> ScenarioRequestPayload | None:
    """Server-facing gate. Returns a clean payload or None."""
    if not isinstance(body, Mapping):
        return None
    try:
        return ScenarioRequest.model_validate(dict(body)).to_payload()
    except ValidationError:
        return None


# ---------------------------------------------------------------------------
# Response contract
# ---------------------------------------------------------------------------

def _normalize_axis_map(value: Any) -> Any:
    if not isinstance(value, Mapping):
        return value
    normalized: dict[str, Any] = {}
    for key, score in value.items():
        slug = resolve_axis_slug(key)
        if slug is None:
            raise ValueError(f"Unknown axis key in response: '{key}'.")
        normalized[slug.value] = score
    return normalized


class ScenarioAggregate(BaseModel):
    model_config = {"extra": "ignore", "frozen": True}

    composite: Optional[StrictFiniteFloat]
    rank: Optional[StrictInt]
    classification: Optional[StrictStr]
    axes: dict[AxisSlug, Optional[StrictFiniteFloat]]

    @field_validator("axes", mode="before")
    @classmethod
    def _axis_keys(cls, v: Any) -> Any:
        return _normalize_axis_map(v)


class ScenarioDelta(BaseModel):
    model_config = {"extra": "ignore", "frozen": True}

    composite: Optional[StrictFiniteFloat]
    rank: Optional[StrictInt]
    axes: dict[AxisSlug, Optional[StrictFiniteFloat]]

    @field_validator("axes", mode="before")
    @classmethod
    def _axis_keys(cls, v: Any) -> Any:
        return _normalize_axis_map(v)


class ScenarioResult(BaseModel):
    """Validated simulation response."""

    model_config = {"extra": "ignore", "frozen": True}

    country: StrictStr
    baseline: ScenarioAggregate
    simulated: ScenarioAggregate
    delta: ScenarioDelta


def parse_scenario_result(raw: Any) -> ScenarioResult:
    """Validate a raw response. Raises ResponseValidationError on mismatch."""
    if not isinstance(raw, Mapping):
        raise ResponseValidationError(
            f"Scenario response must be an object, got {type(raw).__name__}."
        )
    try:
        return ScenarioResult.model_validate(dict(raw))
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        loc = ".".join(str(p) for p in first.get("loc", ()))
        raise ResponseValidationError(
            f"Scenario response failed validation at '{loc}': {first.get('msg', 'invalid')}"
        ) from exc


def is_valid_scenario_result(raw: Any) -> bool:
    try:
        parse_scenario_result(raw)
    except ResponseValidationError:
        return False
    return True


def classification_mismatch(aggregate: ScenarioAggregate) -> Classification | None:
    """Return the expected classification if the upstream label disagrees.

    Diagnostic only: the upstream label is still displayed as received.
    """
    if aggregate.composite is None or aggregate.classification is None:
        return None
    expected = classify(aggregate.composite)
    if aggregate.classification != expected.value:
        return expected
    return None


@dataclass(frozen=True, slots=True)
class DeltaContribution:
    slug: AxisSlug
    label: str
    delta: float


def delta_decomposition(result: ScenarioResult) -> list[DeltaContribution]:
    """Non-zero axis deltas, largest magnitude first (stable for ties)."""
    items = [
        DeltaContribution(slug=slug, label=get_axis(slug).short_label, delta=delta)
        for slug, delta in result.delta.axes.items()
        if delta is not None and delta != 0
    ]
    return sorted(items, key=lambda d: abs(d.delta), reverse=True)


def main_driver(
    decomposition: list[DeltaContribution],
) -> tuple[DeltaContribution | None, DeltaContribution | None]:
    """(largest contributor, largest contributor pulling the other way)."""
    if not decomposition:
        return None, None
    driver = decomposition[0]
    offsetting = next(
        (d for d in decomposition[1:] if (d.delta > 0) != (driver.delta > 0)),
        None,
    )
    return driver, offsetting
