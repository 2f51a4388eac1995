"""
tests/conftest.py — Shared fixtures: a 27-country ISI dataset.

Every country sits at 0.20 on every axis except SE, which carries custom
scores so that scenario arithmetic is easy to check by hand:

    SE: financial 0.15, energy 0.30, technology 0.25,
        defense 0.10, critical_inputs 0.20, logistics 0.20  → composite 0.20
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from isi_dashboard.constants import COUNTRY_NAMES, EU27_SORTED
from isi_dashboard.dataset import Cohort, parse_cohort
from isi_dashboard.methodology import classify

AXIS_FIELDS: tuple[str, ...] = (
    "axis_1_financial",
    "axis_2_energy",
    "axis_3_technology",
    "axis_4_defense",
    "axis_5_critical_inputs",
    "axis_6_logistics",
)

SE_SCORES: dict[str, float] = {
    "axis_1_financial": 0.15,
    "axis_2_energy": 0.30,
    "axis_3_technology": 0.25,
    "axis_4_defense": 0.10,
    "axis_5_critical_inputs": 0.20,
    "axis_6_logistics": 0.20,
}


def make_record(code: str, scores: dict[str, float | None] | None = None) -> dict[str, Any]:
    """Build one isi.json countries[] record with a consistent composite."""
    values: dict[str, float | None] = dict.fromkeys(AXIS_FIELDS, 0.20)
    if scores:
        values.update(scores)
    present = [v for v in values.values() if v is not None]
    composite = sum(present) / len(present) if present else None
    return {
        "country": code,
        "country_name": COUNTRY_NAMES.get(code, code),
        **values,
        "isi_composite": composite,
        "classification": classify(composite).value if composite is not None else None,
        "complete": len(present) == len(AXIS_FIELDS),
    }


@pytest.fixture
def record_factory() -> Callable[..., dict[str, Any]]:
    return make_record


@pytest.fixture
def isi_payload() -> dict[str, Any]:
    countries = [
        make_record(code, SE_SCORES if code == "SE" else None) for code in EU27_SORTED
    ]
    return {
        "version": "v0.1",
        "window": "2022-2024",
        "aggregation_rule": "unweighted_arithmetic_mean",
        "countries": countries,
    }


@pytest.fixture
def cohort(isi_payload: dict[str, Any]) -> Cohort:
    return parse_cohort(isi_payload)
