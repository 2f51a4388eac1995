"""
isi_dashboard.simulation — Additive scenario simulation over a cohort.

Pure-computation module. Zero I/O. Zero global state. Zero randomness.

Given the cohort and a validated ScenarioRequestPayload, shifts the target
entity's axis scores additively, clamps each to [0, 1], and recomputes the
composite, rank and classification:

    simulated_k = clamp01(baseline_k + adjustment_k)
    composite   = mean(simulated_k for available k)

Unavailable axes (None) stay unavailable; adjustments to them are ignored.
Rank is 1 = highest composite among the cohort, ties broken by entity
code (alphabetical), with the target's composite replaced by the
simulated value.

LocalScenarioTransport serves this computation through the
ScenarioTransport protocol, producing exactly the response shape the
controller validates.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from typing import Any

from isi_dashboard.axes import ALL_AXIS_SLUGS, AxisSlug
from isi_dashboard.errors import TransportError
from isi_dashboard.methodology import classify, clamp01, compute_composite
from isi_dashboard.models import EntityProfile
from isi_dashboard.scenario_contract import ScenarioRequestPayload
from isi_dashboard.scheduling import CancellationToken

OUTPUT_PRECISION = 10
LOCAL_ENDPOINT = "local:simulate"


class EntityNotFoundError(LookupError):
    """Raised when the requested entity is not part of the cohort."""


def compute_rank(
    entity_code: str,
    composite: float | None,
    cohort: Sequence[EntityProfile],
) -> int | None:
    """Rank of `entity_code` with its composite set to `composite`.

    Entities without a composite are left out of the ordering.
    """
    if composite is None:
        return None
    ordering: list[tuple[float, str]] = []
    for entity in cohort:
        value = composite if entity.code == entity_code else entity.composite_score
        if value is not None:
            ordering.append((value, entity.code))
    ordering.sort(key=lambda x: (-x[0], x[1]))
    for i, (_, code) in enumerate(ordering, 1):
        if code == entity_code:
            return i
    return None


def _round(value: float | None) -> float | None:
    return round(value, OUTPUT_PRECISION) if value is not None else None


def _aggregate(
    axes: dict[AxisSlug, float | None],
    rank: int | None,
) -> dict[str, Any]:
    composite = compute_composite(axes.values())
    return {
        "composite": _round(composite),
        "rank": rank,
        "classification": classify(composite).value if composite is not None else None,
        "axes": {slug.value: _round(v) for slug, v in axes.items()},
    }


def find_entity(entity_code: str, cohort: Sequence[EntityProfile]) -> EntityProfile:
    for entity in cohort:
        if entity.code == entity_code:
            return entity
    raise EntityNotFoundError(f"Entity '{entity_code}' not found in cohort.")


def simulate(
    payload: ScenarioRequestPayload,
    cohort: Sequence[EntityProfile],
) -> dict[str, Any]:
    """Run a scenario for one entity. Returns the raw response mapping.

    Raises:
        EntityNotFoundError: if the entity is not in the cohort.
        RuntimeError: if a computed value is NaN or Inf.
    """
    entity = find_entity(payload.country_code, cohort)
    baseline_axes = entity.scores()

    simulated_axes: dict[AxisSlug, float | None] = {}
    for slug in ALL_AXIS_SLUGS:
        base = baseline_axes[slug]
        simulated_axes[slug] = (
            clamp01(base + payload.adjustments.get(slug, 0.0)) if base is not None else None
        )

    baseline_composite = compute_composite(baseline_axes.values())
    simulated_composite = compute_composite(simulated_axes.values())

    for label, value in (("baseline", baseline_composite), ("simulated", simulated_composite)):
        if value is not None and (math.isnan(value) or math.isinf(value)):
            raise RuntimeError(f"Output sanitization failed: {label} composite is NaN or Inf.")

    baseline_rank = compute_rank(entity.code, baseline_composite, cohort)
    simulated_rank = compute_rank(entity.code, simulated_composite, cohort)

    delta_axes: dict[str, float | None] = {}
    for slug in ALL_AXIS_SLUGS:
        b, s = baseline_axes[slug], simulated_axes[slug]
        delta_axes[slug.value] = _round(s - b) if b is not None and s is not None else None

    return {
        "country": entity.code,
        "baseline": _aggregate(baseline_axes, baseline_rank),
        "simulated": _aggregate(simulated_axes, simulated_rank),
        "delta": {
            "composite": (
                _round(simulated_composite - baseline_composite)
                if simulated_composite is not None and baseline_composite is not None
                else None
            ),
            "rank": (
                simulated_rank - baseline_rank
                if simulated_rank is not None and baseline_rank is not None
                else None
            ),
            "axes": delta_axes,
        },
    }


class LocalScenarioTransport:
    """In-process ScenarioTransport backed by simulate().

    An unknown entity is reported the way the remote service reports it,
    as an HTTP 404 TransportError.
    """

    def __init__(self, cohort: Sequence[EntityProfile]) -> None:
        self.cohort = tuple(cohort)

    async def simulate(
        self,
        payload: ScenarioRequestPayload,
        token: CancellationToken,
    ) -> dict[str, Any]:
        token.raise_if_cancelled()
        try:
            return simulate(payload, self.cohort)
        except EntityNotFoundError as exc:
            raise TransportError(404, LOCAL_ENDPOINT, str(exc)) from exc
