"""
isi_dashboard.divergence — Structural distance and divergence level.

    structural_distance = Σ |Δ_k|                (unpaired axes contribute 0)
    normalized_distance = structural_distance / (NUM_AXES × 1.0)

Unpaired axes are still counted in the denominator: a comparison over a
single available axis is normalized against the full six-axis maximum.

Divergence level:
    normalized < 0.15 → low
    normalized < 0.35 → moderate
    otherwise         → high

The dominant divergence axis is the one with the largest |Δ|. Exact ties
go to the axis that comes first in catalog order. The tie-break is
arbitrary and carries no meaning beyond determinism.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from isi_dashboard.axes import AxisSlug
from isi_dashboard.constants import NUM_AXES, SCORE_MAX

LOW_DIVERGENCE_CEILING = 0.15
MODERATE_DIVERGENCE_CEILING = 0.35
CONCENTRATED_SHARE = 0.40
THEORETICAL_MAX = NUM_AXES * SCORE_MAX


class DivergenceLevel(str, Enum):
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"


DIVERGENCE_LABELS: dict[DivergenceLevel, str] = {
    DivergenceLevel.LOW: "Low Structural Divergence",
    DivergenceLevel.MODERATE: "Moderate Structural Divergence",
    DivergenceLevel.HIGH: "High Structural Divergence",
}


@dataclass(frozen=True, slots=True)
class DivergenceSummary:
    structural_distance: float
    normalized_distance: float
    divergence_level: DivergenceLevel
    dominant_divergence_axis: AxisSlug | None
    dominant_divergence_magnitude: float
    dominant_axis_divergence_share: float
    divergence_concentrated: bool


def divergence_label(level: DivergenceLevel) -> str:
    return DIVERGENCE_LABELS[level]


def classify_divergence(normalized_distance: float) -> DivergenceLevel:
    if normalized_distance < LOW_DIVERGENCE_CEILING:
        return DivergenceLevel.LOW
    if normalized_distance < MODERATE_DIVERGENCE_CEILING:
        return DivergenceLevel.MODERATE
    return DivergenceLevel.HIGH


def aggregate_divergence(abs_deltas: Sequence[tuple[AxisSlug, float]]) -> DivergenceSummary:
    """Combine per-axis |Δ| values, given in catalog order, into a summary."""
    distance = sum(d for _, d in abs_deltas)
    normalized = distance / THEORETICAL_MAX if THEORETICAL_MAX > 0 else 0.0

    dominant_axis: AxisSlug | None = None
    dominant_magnitude = 0.0
    for slug, d in abs_deltas:
        # Strict comparison: the first axis seen keeps an exact tie.
        if dominant_axis is None or d > dominant_magnitude:
            dominant_axis, dominant_magnitude = slug, d

    share = dominant_magnitude / distance if distance > 0 else 0.0

    return DivergenceSummary(
        structural_distance=distance,
        normalized_distance=normalized,
        divergence_level=classify_divergence(normalized),
        dominant_divergence_axis=dominant_axis,
        dominant_divergence_magnitude=dominant_magnitude,
        dominant_axis_divergence_share=share,
        divergence_concentrated=share > CONCENTRATED_SHARE,
    )
