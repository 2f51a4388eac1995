"""
isi_dashboard.models — Core data model.

EntityProfile is the read-only record for one reporting entity, owned by
the dataset source and immutable for the lifetime of a page view. The core
validates it at the boundary and never mutates it.

Invariants enforced at construction:
    - exactly six axis scores, one per AxisSlug, stored in catalog order
    - every axis value is None or a finite float in [0, 1]
    - composite_score, when present, equals the mean of the non-null
      axis scores to within COMPOSITE_TOLERANCE (absolute, no rounding)
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from isi_dashboard.axes import ALL_AXIS_SLUGS, AxisSlug, resolve_axis_slug
from isi_dashboard.constants import COMPOSITE_TOLERANCE
from isi_dashboard.methodology import Classification, classify, compute_composite

AdjustmentSet = dict[AxisSlug, float]
"""Hypothetical per-axis shift. All six axes present, values in [-0.20, +0.20]."""


def zero_adjustments() -> AdjustmentSet:
    return {slug: 0.0 for slug in ALL_AXIS_SLUGS}


class AxisScore(BaseModel):
    """One axis value. None means "not available", which is distinct from 0."""

    model_config = {"frozen": True}

    slug: AxisSlug
    value: Optional[float] = Field(default=None, ge=0.0, le=1.0, allow_inf_nan=False)


class EntityProfile(BaseModel):
    """Score record for one entity in the current release."""

    model_config = {"frozen": True}

    code: str
    name: str
    composite_score: Optional[float] = Field(default=None, ge=0.0, le=1.0, allow_inf_nan=False)
    classification: Optional[Classification] = None
    axis_scores: tuple[AxisScore, ...]

    @field_validator("code")
    @classmethod
    def _normalize_code(cls, v: str) -> str:
        v = str(v).strip().upper()
        if len(v) != 2 or not v.isalpha():
            raise ValueError(f"Entity code must be exactly 2 letters, got '{v}'.")
        return v

    @field_validator("axis_scores")
    @classmethod
    def _canonical_axis_order(cls, v: tuple[AxisScore, ...]) -> tuple[AxisScore, ...]:
        by_slug: dict[AxisSlug, AxisScore] = {}
        for score in v:
            if score.slug in by_slug:
                raise ValueError(f"Duplicate axis score for '{score.slug.value}'.")
            by_slug[score.slug] = score
        missing = [s.value for s in ALL_AXIS_SLUGS if s not in by_slug]
        if missing:
            raise ValueError(f"Missing axis scores: {missing}.")
        return tuple(by_slug[s] for s in ALL_AXIS_SLUGS)

    @model_validator(mode="after")
    def _composite_matches_axes(self) -> EntityProfile:
        if self.composite_score is None:
            return self
        expected = compute_composite(a.value for a in self.axis_scores)
        if expected is None:
            raise ValueError(
                f"{self.code}: composite_score present but no axis scores available."
            )
        gap = abs(expected - self.composite_score)
        if gap > COMPOSITE_TOLERANCE:
            raise ValueError(
                f"{self.code}: composite_score {self.composite_score} != "
                f"mean of axis scores {expected}."
            )
        return self

    # -- Constructors ------------------------------------------------------

    @classmethod
    def from_scores(
        cls,
        code: str,
        name: str,
        scores: Mapping[AxisSlug | str, float | None],
        *,
        composite_score: float | None = None,
        classification: Classification | str | None = None,
    ) -> EntityProfile:
        """Build a profile from a {slug: value} mapping.

        Axes missing from the mapping are recorded as unavailable. When no
        composite is given it is derived from the axis scores.
        """
        resolved: dict[AxisSlug, float | None] = {}
        for key, value in scores.items():
            slug = key if isinstance(key, AxisSlug) else resolve_axis_slug(key)
            if slug is None:
                raise ValueError(f"Unknown axis key: '{key}'.")
            resolved[slug] = value
        axis_scores = tuple(
            AxisScore(slug=slug, value=resolved.get(slug)) for slug in ALL_AXIS_SLUGS
        )
        if composite_score is None:
            composite_score = compute_composite(a.value for a in axis_scores)
        return cls(
            code=code,
            name=name,
            composite_score=composite_score,
            classification=classification,
            axis_scores=axis_scores,
        )

    # -- Accessors ---------------------------------------------------------

    def score(self, slug: AxisSlug | str) -> float | None:
        slug = AxisSlug(slug)
        for axis in self.axis_scores:
            if axis.slug is slug:
                return axis.value
        return None

    def scores(self) -> dict[AxisSlug, float | None]:
        return {a.slug: a.value for a in self.axis_scores}

    @property
    def derived_classification(self) -> Classification | None:
        """Classification recomputed from the composite score."""
        if self.composite_score is None:
            return None
        return classify(self.composite_score)

    @property
    def complete(self) -> bool:
        return all(a.value is not None for a in self.axis_scores)


class TimelineEntry(BaseModel):
    """One completed simulation run, kept in the session timeline."""

    id: str
    timestamp: str
    adjustments: dict[str, float]
    composite: Optional[float] = None
    rank: Optional[int] = None
    classification: Optional[str] = None
    preset_label: Optional[str] = None
