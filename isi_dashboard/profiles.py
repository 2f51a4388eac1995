"""
isi_dashboard.profiles — Structural profile classification.

Classifies one entity's six axis scores into a named concentration shape.
Rules are evaluated in order; the first match wins:

    1. fewer than 2 available scores        → multi-axis-moderate
    2. every available score < 0.15         → balanced-low
    3. top ≥ 0.50 and top ≥ 2 × second       → single-axis-vulnerability
    4. σ > 0.01 and top > μ + 1.5σ           → <axis>-dominant
    5. otherwise                            → multi-axis-moderate

μ and σ are the mean and population standard deviation of the available
scores. Equal scores keep catalog order when picking the top axis.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from enum import Enum

from isi_dashboard.axes import ALL_AXIS_SLUGS, AxisSlug
from isi_dashboard.models import EntityProfile

BALANCED_LOW_CEILING = 0.15
SINGLE_AXIS_FLOOR = 0.50
SINGLE_AXIS_RATIO = 2.0
DOMINANCE_SIGMA = 1.5
MIN_STDDEV = 0.01


class StructuralProfile(str, Enum):
    DEFENSE_DOMINANT = "defense-dominant"
    ENERGY_DOMINANT = "energy-dominant"
    TECHNOLOGY_DOMINANT = "technology-dominant"
    FINANCIAL_DOMINANT = "financial-dominant"
    CRITICAL_INPUTS_DOMINANT = "critical-inputs-dominant"
    LOGISTICS_DOMINANT = "logistics-dominant"
    MULTI_AXIS_MODERATE = "multi-axis-moderate"
    BALANCED_LOW = "balanced-low"
    SINGLE_AXIS_VULNERABILITY = "single-axis-vulnerability"


DOMINANT_PROFILE: dict[AxisSlug, StructuralProfile] = {
    AxisSlug.DEFENSE: StructuralProfile.DEFENSE_DOMINANT,
    AxisSlug.ENERGY: StructuralProfile.ENERGY_DOMINANT,
    AxisSlug.TECHNOLOGY: StructuralProfile.TECHNOLOGY_DOMINANT,
    AxisSlug.FINANCIAL: StructuralProfile.FINANCIAL_DOMINANT,
    AxisSlug.CRITICAL_INPUTS: StructuralProfile.CRITICAL_INPUTS_DOMINANT,
    AxisSlug.LOGISTICS: StructuralProfile.LOGISTICS_DOMINANT,
}

PROFILE_LABELS: dict[StructuralProfile, str] = {
    StructuralProfile.DEFENSE_DOMINANT: "Defense-Dominant Concentration",
    StructuralProfile.ENERGY_DOMINANT: "Energy-Dominant Concentration",
    StructuralProfile.TECHNOLOGY_DOMINANT: "Technology-Dominant Concentration",
    StructuralProfile.FINANCIAL_DOMINANT: "Financial-Dominant Concentration",
    StructuralProfile.CRITICAL_INPUTS_DOMINANT: "Critical Inputs-Dominant Concentration",
    StructuralProfile.LOGISTICS_DOMINANT: "Logistics-Dominant Concentration",
    StructuralProfile.MULTI_AXIS_MODERATE: "Multi-Axis Moderate Exposure",
    StructuralProfile.BALANCED_LOW: "Balanced Low Exposure",
    StructuralProfile.SINGLE_AXIS_VULNERABILITY: "Single-Axis Vulnerability",
}


def profile_label(profile: StructuralProfile) -> str:
    return PROFILE_LABELS[profile]


def classify_scores(scores: Mapping[AxisSlug, float | None]) -> StructuralProfile:
    """Classify a {slug: score} vector. Missing slugs count as unavailable."""
    entries = [
        (slug, scores[slug]) for slug in ALL_AXIS_SLUGS if scores.get(slug) is not None
    ]
    if len(entries) < 2:
        return StructuralProfile.MULTI_AXIS_MODERATE

    # Stable sort: equal scores keep catalog order.
    entries.sort(key=lambda e: -e[1])
    top_slug, top = entries[0]
    second = entries[1][1]

    values = [v for _, v in entries]
    mu = sum(values) / len(values)
    sigma = math.sqrt(sum((v - mu) ** 2 for v in values) / len(values))

    if all(v < BALANCED_LOW_CEILING for v in values):
        return StructuralProfile.BALANCED_LOW

    if top >= SINGLE_AXIS_FLOOR and top >= second * SINGLE_AXIS_RATIO:
        return StructuralProfile.SINGLE_AXIS_VULNERABILITY

    if sigma > MIN_STDDEV and top > mu + DOMINANCE_SIGMA * sigma:
        return DOMINANT_PROFILE[top_slug]

    return StructuralProfile.MULTI_AXIS_MODERATE


def classify_profile(entity: EntityProfile) -> StructuralProfile:
    return classify_scores(entity.scores())
