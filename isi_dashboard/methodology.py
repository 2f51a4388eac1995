"""
isi_dashboard.methodology — Classification bands and composite formula.

THIS IS THE ONLY PLACE where classification thresholds and the composite
formula exist. The diagnostic engine, the scenario contract and the
controller MUST import from this module.

The ISI composite is the unweighted arithmetic mean of the available axes:
    ISI_i = mean(A_k,i  for k where A_k,i is not null)

Classification thresholds (frozen, inclusive lower bounds):
    >= 0.50  → highly_concentrated
    >= 0.25  → moderately_concentrated
    >= 0.15  → mildly_concentrated
    <  0.15  → unconcentrated

The core always recomputes classifications from scores. Upstream labels
are displayed as received but never used for decisions.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from enum import Enum

from isi_dashboard.constants import SCORE_MAX, SCORE_MIN


class Classification(str, Enum):
    HIGHLY_CONCENTRATED = "highly_concentrated"
    MODERATELY_CONCENTRATED = "moderately_concentrated"
    MILDLY_CONCENTRATED = "mildly_concentrated"
    UNCONCENTRATED = "unconcentrated"


# Classification thresholds (descending)
CLASSIFICATION_THRESHOLDS: tuple[tuple[float, Classification], ...] = (
    (0.50, Classification.HIGHLY_CONCENTRATED),
    (0.25, Classification.MODERATELY_CONCENTRATED),
    (0.15, Classification.MILDLY_CONCENTRATED),
)
CLASSIFICATION_DEFAULT = Classification.UNCONCENTRATED

CLASSIFICATION_LABELS: dict[Classification, str] = {
    Classification.HIGHLY_CONCENTRATED: "Highly Concentrated",
    Classification.MODERATELY_CONCENTRATED: "Moderately Concentrated",
    Classification.MILDLY_CONCENTRATED: "Mildly Concentrated",
    Classification.UNCONCENTRATED: "Unconcentrated",
}


def classify(score: float) -> Classification:
    """Map a score to its classification band.

    Deterministic. Boundary values belong to the higher band.
    """
    for threshold, label in CLASSIFICATION_THRESHOLDS:
        if score >= threshold:
            return label
    return CLASSIFICATION_DEFAULT


def classification_label(classification: Classification | str | None) -> str:
    if classification is None:
        return "N/A"
    try:
        return CLASSIFICATION_LABELS[Classification(classification)]
    except ValueError:
        return str(classification)


def clamp(value: float, lo: float, hi: float) -> float:
    """Clamp a value to [lo, hi]. NaN/Inf collapse to 0.0 before clamping."""
    if math.isnan(value) or math.isinf(value):
        value = 0.0
    return max(lo, min(hi, value))


def clamp01(value: float) -> float:
    """Clamp a value to [0.0, 1.0]. Handles NaN/Inf safely."""
    return clamp(value, SCORE_MIN, SCORE_MAX)


def compute_composite(scores: Iterable[float | None]) -> float | None:
    """Unweighted mean of the non-null scores. None if none are present."""
    present = [s for s in scores if s is not None]
    if not present:
        return None
    return sum(present) / len(present)
