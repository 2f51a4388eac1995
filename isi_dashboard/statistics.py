"""
isi_dashboard.statistics — Cohort statistics.

Pure functions over plain score lists and cohorts of EntityProfile.
No I/O. No state. The cohort is never mutated.

Percentile semantics (kept deliberately simple):
    percentile = round(100 × |{s ∈ cohort : s < score}| / |cohort|)
Ties are not split: a value equal to others is not counted as "below",
so the minimum of a set of duplicates scores 0. Halves round up.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from typing import Any

from isi_dashboard.axes import ALL_AXIS_SLUGS, AxisSlug
from isi_dashboard.models import EntityProfile


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def percentile(score: float, cohort_scores: Sequence[float]) -> int:
    """Share of the cohort strictly below `score`, as an integer 0–100."""
    if not cohort_scores:
        return 0
    below = sum(1 for s in cohort_scores if s < score)
    return _round_half_up(below / len(cohort_scores) * 100)


def mean(scores: Sequence[float]) -> float | None:
    """Arithmetic mean; None for empty input."""
    if not scores:
        return None
    return sum(scores) / len(scores)


def rank(score: float, cohort_scores: Sequence[float]) -> int | None:
    """1-based descending rank (1 = most concentrated).

    Equal scores share the best rank. Returns None when `score` is not
    present in the cohort by exact equality.
    """
    if score not in cohort_scores:
        return None
    return 1 + sum(1 for s in cohort_scores if s > score)


def deviation_from_mean(score: float | None, cohort_mean: float | None) -> float | None:
    """Positive = above mean = more concentrated."""
    if score is None or cohort_mean is None:
        return None
    return score - cohort_mean


# ---------------------------------------------------------------------------
# Cohort-level helpers
# ---------------------------------------------------------------------------

def axis_values(cohort: Iterable[EntityProfile], slug: AxisSlug) -> list[float]:
    """Non-null values of one axis across the cohort."""
    values: list[float] = []
    for entity in cohort:
        value = entity.score(slug)
        if value is not None:
            values.append(value)
    return values


def composite_values(cohort: Iterable[EntityProfile]) -> list[float]:
    return [e.composite_score for e in cohort if e.composite_score is not None]


def axis_percentiles(
    entity: EntityProfile,
    cohort: Sequence[EntityProfile],
) -> dict[AxisSlug, int | None]:
    """Percentile of each of the entity's axis values within the cohort.

    None where the entity has no value for the axis or no cohort member does.
    """
    result: dict[AxisSlug, int | None] = {}
    for slug in ALL_AXIS_SLUGS:
        value = entity.score(slug)
        values = axis_values(cohort, slug)
        if value is None or not values:
            result[slug] = None
        else:
            result[slug] = percentile(value, values)
    return result


def composite_percentile(
    entity: EntityProfile,
    cohort: Sequence[EntityProfile],
) -> int | None:
    if entity.composite_score is None:
        return None
    values = composite_values(cohort)
    if not values:
        return None
    return percentile(entity.composite_score, values)


def composite_rank(entity: EntityProfile, cohort: Sequence[EntityProfile]) -> int | None:
    if entity.composite_score is None:
        return None
    return rank(entity.composite_score, composite_values(cohort))


def axis_aggregates(cohort: Sequence[EntityProfile]) -> dict[AxisSlug, dict[str, Any]]:
    """Per-axis {min, max, mean, count} across the cohort."""
    result: dict[AxisSlug, dict[str, Any]] = {}
    for slug in ALL_AXIS_SLUGS:
        values = axis_values(cohort, slug)
        result[slug] = {
            "min": min(values) if values else None,
            "max": max(values) if values else None,
            "mean": mean(values),
            "count": len(values),
        }
    return result
