"""
tests/test_simulation.py — Additive scenario simulation and the in-process
transport that serves it.

Reference case (shared cohort, SE):
    energy 0.30 with a -0.15 shift → 0.15
    composite 0.20 → 0.175 (delta -0.025)
"""

from __future__ import annotations

import asyncio

import pytest

from isi_dashboard.axes import ALL_AXIS_SLUGS, AxisSlug
from isi_dashboard.dataset import Cohort
from isi_dashboard.errors import TransportError
from isi_dashboard.models import EntityProfile
from isi_dashboard.presets import PRESETS_BY_ID, STRUCTURAL_PRESETS, get_preset
from isi_dashboard.scenario_contract import build_scenario_request, parse_scenario_result
from isi_dashboard.scheduling import CancellationToken, OperationCancelled
from isi_dashboard.simulation import (
    EntityNotFoundError,
    LocalScenarioTransport,
    compute_rank,
    find_entity,
    simulate,
)


def _entity(code: str, value: float, **overrides: float | None) -> EntityProfile:
    scores: dict[AxisSlug, float | None] = {slug: value for slug in ALL_AXIS_SLUGS}
    for key, v in overrides.items():
        scores[AxisSlug(key)] = v
    return EntityProfile.from_scores(code, code, scores)


class TestSimulate:

    def test_energy_diversification_for_se(self, cohort: Cohort):
        result = simulate(build_scenario_request("SE", {"energy": -0.15}), list(cohort))
        assert result["country"] == "SE"
        assert result["baseline"]["axes"]["energy"] == pytest.approx(0.30)
        assert result["simulated"]["axes"]["energy"] == pytest.approx(0.15)
        assert result["delta"]["axes"]["energy"] == pytest.approx(-0.15)
        assert result["simulated"]["composite"] == pytest.approx(0.175)
        assert result["delta"]["composite"] == pytest.approx(-0.025)

    def test_untouched_axes_have_zero_delta(self, cohort: Cohort):
        result = simulate(build_scenario_request("SE", {"energy": -0.15}), list(cohort))
        for slug in ("financial", "technology", "defense", "critical_inputs", "logistics"):
            assert result["delta"]["axes"][slug] == 0.0

    def test_rank_moves_with_composite(self, cohort: Cohort):
        down = simulate(build_scenario_request("SE", {"energy": -0.15}), list(cohort))
        assert down["simulated"]["rank"] == 27
        up = simulate(build_scenario_request("SE", {"logistics": 0.20}), list(cohort))
        assert up["simulated"]["rank"] == 1
        assert up["delta"]["rank"] == up["simulated"]["rank"] - up["baseline"]["rank"]

    def test_classification_recomputed(self, cohort: Cohort):
        result = simulate(build_scenario_request("SE", {"energy": -0.15}), list(cohort))
        assert result["baseline"]["classification"] == "mildly_concentrated"
        assert result["simulated"]["classification"] == "mildly_concentrated"

    def test_clamped_to_unit_interval(self):
        members = [_entity("AA", 0.95), _entity("BB", 0.05)]
        high = simulate(build_scenario_request("AA", {"energy": 0.20}), members)
        assert high["simulated"]["axes"]["energy"] == 1.0
        assert high["delta"]["axes"]["energy"] == pytest.approx(0.05)
        low = simulate(build_scenario_request("BB", {"energy": -0.20}), members)
        assert low["simulated"]["axes"]["energy"] == 0.0

    def test_unavailable_axis_stays_unavailable(self):
        members = [_entity("AA", 0.20, energy=None), _entity("BB", 0.10)]
        result = simulate(build_scenario_request("AA", {"energy": -0.10}), members)
        assert result["baseline"]["axes"]["energy"] is None
        assert result["simulated"]["axes"]["energy"] is None
        assert result["delta"]["axes"]["energy"] is None
        assert result["delta"]["composite"] == 0.0

    def test_identity_scenario(self, cohort: Cohort):
        result = simulate(build_scenario_request("SE", {}), list(cohort))
        assert result["delta"]["composite"] == 0.0
        assert result["delta"]["rank"] == 0

    def test_output_satisfies_response_contract(self, cohort: Cohort):
        result = simulate(build_scenario_request("SE", {"energy": -0.15}), list(cohort))
        parsed = parse_scenario_result(result)
        assert parsed.delta.axes[AxisSlug.ENERGY] == pytest.approx(-0.15)

    def test_unknown_entity(self, cohort: Cohort):
        with pytest.raises(EntityNotFoundError):
            simulate(build_scenario_request("XX", {"energy": 0.1}), list(cohort))

    def test_deterministic(self, cohort: Cohort):
        payload = build_scenario_request("SE", {"energy": -0.15, "defense": 0.05})
        assert simulate(payload, list(cohort)) == simulate(payload, list(cohort))


class TestComputeRank:

    def test_ties_broken_by_code(self):
        members = [_entity("BB", 0.30), _entity("AA", 0.30), _entity("CC", 0.10)]
        assert compute_rank("AA", members[1].composite_score, members) == 1
        assert compute_rank("BB", members[0].composite_score, members) == 2
        assert compute_rank("CC", members[2].composite_score, members) == 3

    def test_replaced_composite(self):
        members = [_entity("AA", 0.30), _entity("BB", 0.20)]
        assert compute_rank("BB", 0.50, members) == 1

    def test_none_composite(self):
        assert compute_rank("AA", None, [_entity("AA", 0.3)]) is None

    def test_entities_without_composite_skipped(self):
        members = [_entity("AA", 0.30), EntityProfile.from_scores("BB", "BB", {})]
        assert compute_rank("AA", 0.30, members) == 1

    def test_find_entity(self, cohort: Cohort):
        assert find_entity("DE", list(cohort)).name == "Germany"
        with pytest.raises(EntityNotFoundError):
            find_entity("US", list(cohort))


class TestLocalScenarioTransport:

    def test_returns_raw_response(self, cohort: Cohort):
        transport = LocalScenarioTransport(cohort)
        payload = build_scenario_request("SE", {"energy": -0.15})
        raw = asyncio.run(transport.simulate(payload, CancellationToken(1)))
        assert raw["simulated"]["composite"] == pytest.approx(0.175)

    def test_unknown_entity_is_404(self, cohort: Cohort):
        transport = LocalScenarioTransport(cohort)
        payload = build_scenario_request("XX", {"energy": -0.15})
        with pytest.raises(TransportError) as info:
            asyncio.run(transport.simulate(payload, CancellationToken(1)))
        assert info.value.status == 404

    def test_cancelled_token(self, cohort: Cohort):
        token = CancellationToken(1)
        token.cancel()
        with pytest.raises(OperationCancelled):
            asyncio.run(LocalScenarioTransport(cohort).simulate(
                build_scenario_request("SE", {}), token,
            ))


class TestPresets:

    def test_five_presets_with_unique_ids(self):
        assert len(STRUCTURAL_PRESETS) == 5
        assert len(PRESETS_BY_ID) == 5

    def test_full_adjustments_cover_all_axes(self):
        preset = get_preset("energy-diversification")
        full = preset.full_adjustments()
        assert set(full) == set(ALL_AXIS_SLUGS)
        assert full[AxisSlug.ENERGY] == -0.15
        assert full[AxisSlug.DEFENSE] == 0.0

    def test_values_within_adjustment_bounds(self):
        for preset in STRUCTURAL_PRESETS:
            for value in preset.adjustments.values():
                assert -0.20 <= value <= 0.20

    def test_unknown_preset(self):
        with pytest.raises(KeyError):
            get_preset("oil-shock")
