"""
isi_dashboard.symmetry — Vulnerability symmetry between two entities.

Axes are paired by slug; only pairs where both entities have a value take
part. Each pair is bucketed with HIGH ≥ 0.25 and LOW < 0.15:

    both high                 → both_high
    both low                  → both_low
    one high and one low      → complementary
    anything else             → divergent

    complementary ≥ 2                          → complementary
    both_high + both_low ≥ 0.6 × pairs         → symmetric
    otherwise                                  → asymmetric

Fewer than two usable pairs defaults to symmetric.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

from isi_dashboard.axes import ALL_AXIS_SLUGS, AxisSlug

HIGH_THRESHOLD = 0.25
LOW_THRESHOLD = 0.15
MIN_COMPLEMENTARY = 2
SYMMETRIC_FRACTION = 0.6


class Symmetry(str, Enum):
    SYMMETRIC = "symmetric"
    ASYMMETRIC = "asymmetric"
    COMPLEMENTARY = "complementary"


SYMMETRY_LABELS: dict[Symmetry, str] = {
    Symmetry.SYMMETRIC: "Symmetric Exposure",
    Symmetry.ASYMMETRIC: "Asymmetric Exposure",
    Symmetry.COMPLEMENTARY: "Complementary Structural Profile",
}

SYMMETRY_DESCRIPTIONS: dict[Symmetry, str] = {
    Symmetry.SYMMETRIC: (
        "Both countries exhibit similar concentration patterns across axes. "
        "Structural vulnerabilities are broadly parallel."
    ),
    Symmetry.ASYMMETRIC: (
        "Concentration profiles diverge across multiple axes. Structural "
        "vulnerabilities differ in both domain and magnitude."
    ),
    Symmetry.COMPLEMENTARY: (
        "Countries show inverse concentration patterns: axes where one is "
        "concentrated, the other is diversified."
    ),
}


@dataclass(frozen=True, slots=True)
class SymmetryCounts:
    both_high: int = 0
    both_low: int = 0
    complementary: int = 0
    divergent: int = 0

    @property
    def total(self) -> int:
        return self.both_high + self.both_low + self.complementary + self.divergent


def symmetry_label(symmetry: Symmetry) -> str:
    return SYMMETRY_LABELS[symmetry]


def symmetry_description(symmetry: Symmetry) -> str:
    return SYMMETRY_DESCRIPTIONS[symmetry]


def count_pairs(
    scores_a: Mapping[AxisSlug, float | None],
    scores_b: Mapping[AxisSlug, float | None],
) -> SymmetryCounts:
    both_high = both_low = complementary = divergent = 0
    for slug in ALL_AXIS_SLUGS:
        a = scores_a.get(slug)
        b = scores_b.get(slug)
        if a is None or b is None:
            continue
        a_high, b_high = a >= HIGH_THRESHOLD, b >= HIGH_THRESHOLD
        a_low, b_low = a < LOW_THRESHOLD, b < LOW_THRESHOLD
        if a_high and b_high:
            both_high += 1
        elif a_low and b_low:
            both_low += 1
        elif (a_high and b_low) or (a_low and b_high):
            complementary += 1
        else:
            divergent += 1
    return SymmetryCounts(both_high, both_low, complementary, divergent)


def classify_symmetry(
    scores_a: Mapping[AxisSlug, float | None],
    scores_b: Mapping[AxisSlug, float | None],
) -> Symmetry:
    counts = count_pairs(scores_a, scores_b)
    if counts.total < 2:
        return Symmetry.SYMMETRIC
    if counts.complementary >= MIN_COMPLEMENTARY:
        return Symmetry.COMPLEMENTARY
    if counts.both_high + counts.both_low >= counts.total * SYMMETRIC_FRACTION:
        return Symmetry.SYMMETRIC
    return Symmetry.ASYMMETRIC
