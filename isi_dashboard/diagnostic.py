"""
isi_dashboard.diagnostic — Comparative structural diagnostic engine.

Pure-computation module. Zero I/O. Zero global state. Zero caching.
compute() is deterministic: identical (A, B, cohort) inputs produce equal
results on every call.

For an ordered pair of entities drawn from a cohort, computes per axis:
    delta = score_A - score_B (None if either is unavailable)
    percentile_A / percentile_B within the cohort's values for that axis
    contribution_share_A / contribution_share_B
then aggregates the deltas (divergence), classifies each entity's profile
and classifies the pair's symmetry.

Missing data never raises: the affected fields are None. Only a malformed
input shape (something that is not an EntityProfile) raises TypeError.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from typing import Any, Literal

from isi_dashboard.axes import ALL_AXIS_SLUGS, AxisSlug, axis_short_label
from isi_dashboard.constants import EXPORT_VERSION
from isi_dashboard.contribution import contribution_shares
from isi_dashboard.divergence import (
    DivergenceLevel,
    aggregate_divergence,
    divergence_label,
)
from isi_dashboard.methodology import classification_label
from isi_dashboard.models import EntityProfile
from isi_dashboard.profiles import StructuralProfile, classify_profile, profile_label
from isi_dashboard.statistics import axis_percentiles, composite_percentile
from isi_dashboard.symmetry import Symmetry, classify_symmetry, symmetry_description, symmetry_label

MoreConcentrated = Literal["A", "B", "equal"]


@dataclass(frozen=True, slots=True)
class AxisComparison:
    slug: AxisSlug
    label: str
    score_a: float | None
    score_b: float | None
    delta: float | None
    abs_delta: float
    more_concentrated: MoreConcentrated | None
    percentile_a: int | None
    percentile_b: int | None
    contribution_share_a: float | None
    contribution_share_b: float | None


@dataclass(frozen=True, slots=True)
class StructuralDiagnostic:
    structural_distance: float
    normalized_distance: float
    divergence_level: DivergenceLevel
    dominant_divergence_axis: AxisSlug | None
    dominant_divergence_magnitude: float
    dominant_axis_divergence_share: float
    divergence_concentrated: bool
    symmetry: Symmetry
    profile_a: StructuralProfile
    profile_b: StructuralProfile
    axes: tuple[AxisComparison, ...]

    def to_dict(self) -> dict[str, Any]:
        """Plain JSON-ready dict (enum members flattened to their values)."""
        return _plain(asdict(self))


def _plain(value: Any) -> Any:
    if isinstance(value, dict):
        return {(k.value if hasattr(k, "value") else k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if hasattr(value, "value") and isinstance(value.value, str):
        return value.value
    return value


def _more_concentrated(delta: float | None) -> MoreConcentrated | None:
    if delta is None:
        return None
    if delta > 0:
        return "A"
    if delta < 0:
        return "B"
    return "equal"


def _require_entity(value: Any, name: str) -> EntityProfile:
    if not isinstance(value, EntityProfile):
        raise TypeError(f"{name} must be an EntityProfile, got {type(value).__name__}.")
    return value


def compute(
    entity_a: EntityProfile,
    entity_b: EntityProfile,
    cohort: Iterable[EntityProfile],
) -> StructuralDiagnostic:
    """Compute the full structural diagnostic for the ordered pair (A, B)."""
    entity_a = _require_entity(entity_a, "entity_a")
    entity_b = _require_entity(entity_b, "entity_b")
    members = [_require_entity(e, "cohort member") for e in cohort]

    scores_a = entity_a.scores()
    scores_b = entity_b.scores()
    percentiles_a = axis_percentiles(entity_a, members)
    percentiles_b = axis_percentiles(entity_b, members)
    shares_a = contribution_shares(entity_a)
    shares_b = contribution_shares(entity_b)

    axes: list[AxisComparison] = []
    for slug in ALL_AXIS_SLUGS:
        a, b = scores_a[slug], scores_b[slug]
        delta = a - b if a is not None and b is not None else None
        axes.append(AxisComparison(
            slug=slug,
            label=axis_short_label(slug),
            score_a=a,
            score_b=b,
            delta=delta,
            abs_delta=abs(delta) if delta is not None else 0.0,
            more_concentrated=_more_concentrated(delta),
            percentile_a=percentiles_a[slug],
            percentile_b=percentiles_b[slug],
            contribution_share_a=shares_a[slug],
            contribution_share_b=shares_b[slug],
        ))

    summary = aggregate_divergence([(ax.slug, ax.abs_delta) for ax in axes])

    return StructuralDiagnostic(
        structural_distance=summary.structural_distance,
        normalized_distance=summary.normalized_distance,
        divergence_level=summary.divergence_level,
        dominant_divergence_axis=summary.dominant_divergence_axis,
        dominant_divergence_magnitude=summary.dominant_divergence_magnitude,
        dominant_axis_divergence_share=summary.dominant_axis_divergence_share,
        divergence_concentrated=summary.divergence_concentrated,
        symmetry=classify_symmetry(scores_a, scores_b),
        profile_a=classify_profile(entity_a),
        profile_b=classify_profile(entity_b),
        axes=tuple(axes),
    )


# ---------------------------------------------------------------------------
# Export snapshot — plain strings for download
# ---------------------------------------------------------------------------

_DASH = "—"


def _fmt_score(value: float | None) -> str:
    return f"{value:.4f}" if value is not None else _DASH


def _fmt_delta(value: float | None) -> str:
    return f"{value:+.4f}" if value is not None else _DASH


def _fmt_share(value: float | None) -> str:
    return f"{value * 100:.1f}%" if value is not None else _DASH


def _entity_block(
    entity: EntityProfile,
    profile: StructuralProfile,
    cohort: list[EntityProfile],
) -> dict[str, Any]:
    return {
        "code": entity.code,
        "name": entity.name,
        "composite": _fmt_score(entity.composite_score),
        "classification": classification_label(entity.derived_classification),
        "compositePercentile": composite_percentile(entity, cohort),
        "profile": profile_label(profile),
    }


def build_comparison_export(
    entity_a: EntityProfile,
    entity_b: EntityProfile,
    diagnostic: StructuralDiagnostic,
    cohort: Iterable[EntityProfile],
    generated: datetime | None = None,
) -> dict[str, Any]:
    """Build the downloadable comparison snapshot."""
    members = list(cohort)
    generated = generated or datetime.now(UTC)
    who = {"A": entity_a.code, "B": entity_b.code, "equal": "Equal"}

    return {
        "generated": generated.isoformat(),
        "version": EXPORT_VERSION,
        "countryA": _entity_block(entity_a, diagnostic.profile_a, members),
        "countryB": _entity_block(entity_b, diagnostic.profile_b, members),
        "diagnostic": {
            "structuralDistance": f"{diagnostic.structural_distance:.4f}",
            "normalizedDistance": f"{diagnostic.normalized_distance:.4f}",
            "divergenceLevel": divergence_label(diagnostic.divergence_level),
            "dominantDivergenceAxis": (
                axis_short_label(diagnostic.dominant_divergence_axis)
                if diagnostic.dominant_divergence_axis is not None
                else "N/A"
            ),
            "dominantDivergenceMagnitude": f"{diagnostic.dominant_divergence_magnitude:.4f}",
            "symmetry": symmetry_label(diagnostic.symmetry),
            "symmetryDescription": symmetry_description(diagnostic.symmetry),
            "divergenceConcentrated": diagnostic.divergence_concentrated,
        },
        "axes": [
            {
                "axis": ax.label,
                "scoreA": _fmt_score(ax.score_a),
                "scoreB": _fmt_score(ax.score_b),
                "delta": _fmt_delta(ax.delta),
                "moreConcentrated": who.get(ax.more_concentrated, _DASH),
                "percentileA": str(ax.percentile_a) if ax.percentile_a is not None else _DASH,
                "percentileB": str(ax.percentile_b) if ax.percentile_b is not None else _DASH,
                "contributionShareA": _fmt_share(ax.contribution_share_a),
                "contributionShareB": _fmt_share(ax.contribution_share_b),
            }
            for ax in diagnostic.axes
        ],
    }
