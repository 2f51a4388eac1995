"""
isi_dashboard.contribution — Per-axis contribution shares.

    share(axis) = score(axis) / Σ non-null scores

The share is the structural weight of one axis in the entity's own
profile. Unavailable axes have no share; an entity whose available scores
sum to zero has no shares at all.
"""

from __future__ import annotations

from isi_dashboard.axes import ALL_AXIS_SLUGS, AxisSlug
from isi_dashboard.models import EntityProfile


def contribution_shares(entity: EntityProfile) -> dict[AxisSlug, float | None]:
    scores = entity.scores()
    total = sum(v for v in scores.values() if v is not None)
    result: dict[AxisSlug, float | None] = {}
    for slug in ALL_AXIS_SLUGS:
        value = scores[slug]
        result[slug] = value / total if value is not None and total > 0 else None
    return result


def contribution_share(entity: EntityProfile, slug: AxisSlug) -> float | None:
    return contribution_shares(entity)[slug]
