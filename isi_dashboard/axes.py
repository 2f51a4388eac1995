"""
isi_dashboard.axes — Canonical axis catalog.

The ISI measures Herfindahl–Hirschman concentration of external suppliers
across exactly six axes. This module is the ONLY place where axis slugs,
display labels, dataset field keys and scenario wire keys are defined.

Adding an axis is a schema change: extend AxisSlug and AXIS_CATALOG
together. Nothing discovers axes at runtime; records that do not match the
catalog are rejected at the boundary.

Axis order (canonical, used for every tie-break):
    financial, energy, technology, defense, critical_inputs, logistics
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from isi_dashboard.constants import NUM_AXES, SCORE_MAX, SCORE_MIN


class AxisSlug(str, Enum):
    """Closed enumeration of the six concentration axes."""

    FINANCIAL = "financial"
    ENERGY = "energy"
    TECHNOLOGY = "technology"
    DEFENSE = "defense"
    CRITICAL_INPUTS = "critical_inputs"
    LOGISTICS = "logistics"


@dataclass(frozen=True, slots=True)
class AxisDefinition:
    """Static metadata for one axis."""

    slug: AxisSlug
    axis_id: int
    short_label: str
    canonical_label: str
    field_key: str
    wire_key: str
    bounds: tuple[float, float] = (SCORE_MIN, SCORE_MAX)


AXIS_CATALOG: tuple[AxisDefinition, ...] = (
    AxisDefinition(
        slug=AxisSlug.FINANCIAL,
        axis_id=1,
        short_label="Financial",
        canonical_label="Financial External Supplier Concentration",
        field_key="axis_1_financial",
        wire_key="financial_external_supplier_concentration",
    ),
    AxisDefinition(
        slug=AxisSlug.ENERGY,
        axis_id=2,
        short_label="Energy",
        canonical_label="Energy External Supplier Concentration",
        field_key="axis_2_energy",
        wire_key="energy_external_supplier_concentration",
    ),
    AxisDefinition(
        slug=AxisSlug.TECHNOLOGY,
        axis_id=3,
        short_label="Technology / Semiconductor",
        canonical_label="Technology / Semiconductor External Supplier Concentration",
        field_key="axis_3_technology",
        wire_key="technology_semiconductor_external_supplier_concentration",
    ),
    AxisDefinition(
        slug=AxisSlug.DEFENSE,
        axis_id=4,
        short_label="Defense",
        canonical_label="Defense External Supplier Concentration",
        field_key="axis_4_defense",
        wire_key="defense_external_supplier_concentration",
    ),
    AxisDefinition(
        slug=AxisSlug.CRITICAL_INPUTS,
        axis_id=5,
        short_label="Critical Inputs",
        canonical_label="Critical Inputs / Raw Materials External Supplier Concentration",
        field_key="axis_5_critical_inputs",
        wire_key="critical_inputs_raw_materials_external_supplier_concentration",
    ),
    AxisDefinition(
        slug=AxisSlug.LOGISTICS,
        axis_id=6,
        short_label="Logistics / Freight",
        canonical_label="Logistics / Freight External Supplier Concentration",
        field_key="axis_6_logistics",
        wire_key="logistics_freight_external_supplier_concentration",
    ),
)

if len(AXIS_CATALOG) != NUM_AXES:  # pragma: no cover - import-time guard
    raise RuntimeError(f"Axis catalog has {len(AXIS_CATALOG)} entries, expected {NUM_AXES}.")

# ---------------------------------------------------------------------------
# Lookup tables — derived once from the catalog
# ---------------------------------------------------------------------------

ALL_AXIS_SLUGS: tuple[AxisSlug, ...] = tuple(d.slug for d in AXIS_CATALOG)

AXIS_BY_SLUG: dict[AxisSlug, AxisDefinition] = {d.slug: d for d in AXIS_CATALOG}

SLUG_VALUES: frozenset[str] = frozenset(s.value for s in ALL_AXIS_SLUGS)

FIELD_KEY_TO_SLUG: dict[str, AxisSlug] = {d.field_key: d.slug for d in AXIS_CATALOG}

WIRE_KEY_TO_SLUG: dict[str, AxisSlug] = {d.wire_key: d.slug for d in AXIS_CATALOG}

WIRE_KEYS: tuple[str, ...] = tuple(d.wire_key for d in AXIS_CATALOG)

# Legacy axis_name values still present in older upstream artifacts.
_LEGACY_NAME_TO_SLUG: dict[str, AxisSlug] = {
    "Financial Sovereignty": AxisSlug.FINANCIAL,
    "Energy Dependency": AxisSlug.ENERGY,
    "Technology Dependency": AxisSlug.TECHNOLOGY,
    "Defense Industrial Dependency": AxisSlug.DEFENSE,
    "Critical Inputs Dependency": AxisSlug.CRITICAL_INPUTS,
    "Logistics Dependency": AxisSlug.LOGISTICS,
}

_AXIS_PREFIX_RE = re.compile(r"^Axis \d+:\s*")


def get_axis(slug: AxisSlug | str) -> AxisDefinition:
    """Return the definition for a slug. Raises ValueError if unknown."""
    return AXIS_BY_SLUG[AxisSlug(slug)]


def resolve_axis_slug(key: str) -> AxisSlug | None:
    """Resolve any known axis spelling to its slug.

    Accepts the short slug, the dataset field key, the long wire key,
    the canonical or short label, a legacy axis name, or any of these
    behind an "Axis N: " prefix. Returns None if unresolvable.
    """
    if not isinstance(key, str):
        return None
    stripped = _AXIS_PREFIX_RE.sub("", key.strip())

    if stripped in SLUG_VALUES:
        return AxisSlug(stripped)
    if stripped in FIELD_KEY_TO_SLUG:
        return FIELD_KEY_TO_SLUG[stripped]
    if stripped in WIRE_KEY_TO_SLUG:
        return WIRE_KEY_TO_SLUG[stripped]
    if stripped in _LEGACY_NAME_TO_SLUG:
        return _LEGACY_NAME_TO_SLUG[stripped]

    lowered = stripped.lower()
    for definition in AXIS_CATALOG:
        if lowered in (definition.canonical_label.lower(), definition.short_label.lower()):
            return definition.slug
    return None


def axis_short_label(slug: AxisSlug | str) -> str:
    """Compact label for constrained contexts (badges, export columns)."""
    return get_axis(slug).short_label


def axis_canonical_label(slug: AxisSlug | str) -> str:
    """Full "[Domain] External Supplier Concentration" label."""
    return get_axis(slug).canonical_label
