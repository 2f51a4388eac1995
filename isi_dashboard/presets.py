"""
isi_dashboard.presets — Structural shock presets for the scenario controller.

A preset is a named, partial AdjustmentSet. Applying one replaces every
axis adjustment: axes the preset does not name are reset to 0.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from isi_dashboard.axes import ALL_AXIS_SLUGS, AxisSlug
from isi_dashboard.models import AdjustmentSet


@dataclass(frozen=True, slots=True)
class StructuralPreset:
    id: str
    label: str
    description: str
    adjustments: dict[AxisSlug, float] = field(default_factory=dict)

    def full_adjustments(self) -> AdjustmentSet:
        """All six axes, unnamed ones at 0."""
        return {slug: self.adjustments.get(slug, 0.0) for slug in ALL_AXIS_SLUGS}


STRUCTURAL_PRESETS: tuple[StructuralPreset, ...] = (
    StructuralPreset(
        id="energy-diversification",
        label="Energy Diversification",
        description="-15% energy concentration",
        adjustments={AxisSlug.ENERGY: -0.15},
    ),
    StructuralPreset(
        id="defense-reindustrialization",
        label="Defense Reindustrialization",
        description="-20% defense concentration",
        adjustments={AxisSlug.DEFENSE: -0.20},
    ),
    StructuralPreset(
        id="logistics-disruption",
        label="Logistics Disruption",
        description="+20% logistics concentration",
        adjustments={AxisSlug.LOGISTICS: 0.20},
    ),
    StructuralPreset(
        id="technology-decoupling",
        label="Technology Decoupling",
        description="+15% tech concentration",
        adjustments={AxisSlug.TECHNOLOGY: 0.15},
    ),
    StructuralPreset(
        id="financial-fragmentation",
        label="Financial Fragmentation",
        description="+10% financial concentration",
        adjustments={AxisSlug.FINANCIAL: 0.10},
    ),
)

PRESETS_BY_ID: dict[str, StructuralPreset] = {p.id: p for p in STRUCTURAL_PRESETS}


def get_preset(preset_id: str) -> StructuralPreset:
    """Raises KeyError for an unknown preset id."""
    try:
        return PRESETS_BY_ID[preset_id]
    except KeyError:
        raise KeyError(f"Unknown preset '{preset_id}'. Valid: {sorted(PRESETS_BY_ID)}") from None
