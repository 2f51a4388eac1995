"""
tests/test_api.py — HTTP surface: scenario proxy, compare, exports, health
and the middleware stack.

The app is built with create_app() and injected collaborators: a cohort
loader returning the shared 27-country fixture and, where a test needs a
specific upstream behavior, a stub scenario transport.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from typing import Any

import pytest
from fastapi.testclient import TestClient

from isi_dashboard import config
from isi_dashboard.api import create_app, cors_origins, limiter
from isi_dashboard.dataset import Cohort, DatasetUnavailableError, parse_cohort
from isi_dashboard.errors import ResponseValidationError, TransportBlockedError, TransportError
from isi_dashboard.security import MAX_BODY_BYTES, _mask_ip, cache_policy
from isi_dashboard.simulation import LocalScenarioTransport

SCENARIO_BODY = {"country_code": "SE", "adjustments": {"energy": -0.15}}


class StubTransport:
    """Raises or returns one fixed outcome for every call."""

    def __init__(self, outcome: Any) -> None:
        self.outcome = outcome
        self.calls = 0

    async def simulate(self, payload, token) -> Any:
        self.calls += 1
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return self.outcome


def _loader_for(cohort: Cohort):
    async def load() -> Cohort:
        return cohort
    return load


async def _unavailable() -> Cohort:
    raise DatasetUnavailableError("upstream down")


@pytest.fixture(autouse=True)
def _reset_rate_limits(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    monkeypatch.setattr(config, "ISI_API_URL", "")
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture
def client(cohort: Cohort) -> TestClient:
    return TestClient(create_app(
        cohort_loader=_loader_for(cohort),
        scenario_transport=LocalScenarioTransport(cohort),
    ))


def _client_with(transport: Any, cohort: Cohort) -> TestClient:
    return TestClient(create_app(cohort_loader=_loader_for(cohort), scenario_transport=transport))


# ---------------------------------------------------------------------------
# /api/scenario
# ---------------------------------------------------------------------------

class TestScenarioEndpoint:

    def test_success(self, client: TestClient):
        resp = client.post("/api/scenario", json=SCENARIO_BODY)
        assert resp.status_code == 200
        data = resp.json()
        assert data["country"] == "SE"
        assert data["simulated"]["axes"]["energy"] == pytest.approx(0.15)
        assert data["delta"]["composite"] == pytest.approx(-0.025)
        assert set(data["delta"]["axes"]) == {
            "financial", "energy", "technology", "defense", "critical_inputs", "logistics",
        }

    def test_tolerant_body(self, client: TestClient):
        resp = client.post("/api/scenario", json={
            "country": "se",
            "axis_shifts": {"energy_external_supplier_concentration": -0.5, "oil": 1},
        })
        assert resp.status_code == 200
        assert resp.json()["simulated"]["axes"]["energy"] == pytest.approx(0.10)

    def test_local_simulation_without_injected_transport(self, cohort: Cohort):
        client = TestClient(create_app(cohort_loader=_loader_for(cohort)))
        resp = client.post("/api/scenario", json=SCENARIO_BODY)
        assert resp.status_code == 200
        assert resp.json()["delta"]["composite"] == pytest.approx(-0.025)

    def test_body_not_json(self, client: TestClient):
        resp = client.post(
            "/api/scenario",
            content=b"not json",
            headers={"Content-Type": "application/json"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "INVALID_SCENARIO_INPUT"

    @pytest.mark.parametrize("body", [
        {"adjustments": {"energy": -0.1}},
        {"country_code": "SWE", "adjustments": {}},
        {"country_code": "SE", "adjustments": {"energy": "abc"}},
        ["SE"],
    ])
    def test_schema_mismatch(self, client: TestClient, body: Any):
        resp = client.post("/api/scenario", json=body)
        assert resp.status_code == 400
        assert resp.json()["error"] == "INVALID_SCENARIO_INPUT"

    def test_integer_too_large_for_float(self, client: TestClient):
        body = '{"country_code": "SE", "adjustments": {"energy": 1%s}}' % ("0" * 400)
        resp = client.post(
            "/api/scenario",
            content=body.encode(),
            headers={"Content-Type": "application/json"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "INVALID_SCENARIO_INPUT"

    def test_non_eu_country(self, client: TestClient):
        resp = client.post("/api/scenario", json={"country_code": "US", "adjustments": {}})
        assert resp.status_code == 400
        assert resp.json()["details"] == {"country_code": "US"}

    def test_get_not_allowed(self, client: TestClient):
        resp = client.get("/api/scenario")
        assert resp.status_code == 405
        assert resp.json()["error"] == "METHOD_NOT_ALLOWED"
        assert resp.headers["allow"] == "POST, OPTIONS"

    def test_entity_missing_from_dataset(self, isi_payload: dict):
        small = parse_cohort({**isi_payload, "countries": isi_payload["countries"][:3]})
        client = _client_with(LocalScenarioTransport(small), small)
        resp = client.post("/api/scenario", json=SCENARIO_BODY)
        assert resp.status_code == 404
        assert resp.json()["error"] == "NOT_AVAILABLE"

    def test_upstream_rejects_input(self, cohort: Cohort):
        client = _client_with(StubTransport(TransportError(400, "/scenario", "bad axis")), cohort)
        resp = client.post("/api/scenario", json=SCENARIO_BODY)
        assert resp.status_code == 400
        assert resp.json()["error"] == "UPSTREAM_REJECTED_INPUT"
        assert resp.json()["detail"] == "bad axis"

    @pytest.mark.parametrize("status", [500, 503, 418])
    def test_upstream_error(self, cohort: Cohort, status: int):
        client = _client_with(StubTransport(TransportError(status, "/scenario")), cohort)
        resp = client.post("/api/scenario", json=SCENARIO_BODY)
        assert resp.status_code == 502
        assert resp.json()["error"] == "UPSTREAM_ERROR"
        assert resp.json()["upstream_status"] == status

    def test_upstream_unreachable(self, cohort: Cohort):
        client = _client_with(StubTransport(TransportBlockedError("/scenario", "ConnectError")), cohort)
        resp = client.post("/api/scenario", json=SCENARIO_BODY)
        assert resp.status_code == 502
        assert resp.json()["error"] == "UPSTREAM_UNREACHABLE"

    def test_upstream_invalid_json(self, cohort: Cohort):
        client = _client_with(StubTransport(ResponseValidationError("not json")), cohort)
        resp = client.post("/api/scenario", json=SCENARIO_BODY)
        assert resp.status_code == 502
        assert resp.json()["error"] == "UPSTREAM_INVALID_JSON"

    def test_upstream_response_fails_contract(self, cohort: Cohort):
        client = _client_with(StubTransport({"country": "SE", "baseline": {}}), cohort)
        resp = client.post("/api/scenario", json=SCENARIO_BODY)
        assert resp.status_code == 502
        assert resp.json()["error"] == "UPSTREAM_INVALID_RESPONSE"

    def test_invalid_input_never_reaches_transport(self, cohort: Cohort):
        stub = StubTransport({})
        client = _client_with(stub, cohort)
        client.post("/api/scenario", json={"country_code": "US", "adjustments": {}})
        assert stub.calls == 0

    def test_dataset_unavailable_for_local_simulation(self):
        client = TestClient(create_app(cohort_loader=_unavailable))
        resp = client.post("/api/scenario", json=SCENARIO_BODY)
        assert resp.status_code == 502
        assert resp.json()["error"] == "DATASET_UNAVAILABLE"

    def test_not_cached(self, client: TestClient):
        resp = client.post("/api/scenario", json=SCENARIO_BODY)
        assert resp.headers["cache-control"] == "no-store"


# ---------------------------------------------------------------------------
# /api/compare
# ---------------------------------------------------------------------------

class TestCompareEndpoint:

    def test_success(self, client: TestClient):
        resp = client.post("/api/compare", json={"a": "SE", "b": "DE"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["a"] == "SE"
        assert data["b"] == "DE"
        assert data["diagnostic"]["structural_distance"] == pytest.approx(0.30)
        assert len(data["diagnostic"]["axes"]) == 6
        assert data["export"]["countryA"]["code"] == "SE"
        assert data["export"]["version"] == "2.0"

    def test_aliases_and_normalization(self, client: TestClient):
        resp = client.post("/api/compare", json={"countryA": "se", "countryB": " de "})
        assert resp.status_code == 200
        assert resp.json()["b"] == "DE"

    def test_invalid_code(self, client: TestClient):
        resp = client.post("/api/compare", json={"a": "SWE", "b": "DE"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "INVALID_COMPARE_INPUT"
        assert resp.json()["details"]

    def test_not_an_object(self, client: TestClient):
        resp = client.post("/api/compare", json=["SE", "DE"])
        assert resp.status_code == 400

    def test_unknown_country(self, client: TestClient):
        resp = client.post("/api/compare", json={"a": "SE", "b": "US"})
        assert resp.status_code == 404
        assert "US" in resp.json()["message"]

    def test_dataset_unavailable(self):
        client = TestClient(create_app(cohort_loader=_unavailable))
        resp = client.post("/api/compare", json={"a": "SE", "b": "DE"})
        assert resp.status_code == 502


# ---------------------------------------------------------------------------
# /api/export/*
# ---------------------------------------------------------------------------

class TestExportEndpoints:

    def test_json(self, client: TestClient, isi_payload: dict):
        resp = client.get("/api/export/json")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("application/json")
        assert 'filename="isi-v0.1-2022-2024.json"' in resp.headers["content-disposition"]
        assert json.loads(resp.content) == isi_payload
        assert resp.headers["cache-control"] == "public, max-age=300, s-maxage=300"

    def test_csv(self, client: TestClient):
        resp = client.get("/api/export/csv")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        assert 'filename="isi-v0.1-2022-2024.csv"' in resp.headers["content-disposition"]
        lines = resp.text.strip().split("\n")
        assert lines[0].startswith("country,country_name,axis_1_financial")
        assert len(lines) == 28

    def test_etag_and_not_modified(self, client: TestClient):
        first = client.get("/api/export/csv")
        etag = first.headers["etag"]
        assert etag.startswith('W/"')
        second = client.get("/api/export/csv", headers={"If-None-Match": etag})
        assert second.status_code == 304
        assert second.content == b""

    def test_dataset_unavailable(self):
        client = TestClient(create_app(cohort_loader=_unavailable))
        resp = client.get("/api/export/json")
        assert resp.status_code == 502
        assert resp.json()["error"] == "DATASET_UNAVAILABLE"


# ---------------------------------------------------------------------------
# Health and middleware
# ---------------------------------------------------------------------------

class TestHealthAndMiddleware:

    def test_health(self, client: TestClient):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "version": "1.0.0"}
        assert resp.headers["cache-control"] == "no-store"
        assert "etag" not in resp.headers

    def test_security_headers(self, client: TestClient):
        resp = client.get("/health")
        assert resp.headers["x-content-type-options"] == "nosniff"
        assert resp.headers["x-frame-options"] == "DENY"
        assert resp.headers["referrer-policy"] == "no-referrer"

    def test_request_id_generated_and_echoed(self, client: TestClient):
        assert client.get("/health").headers["x-request-id"]
        resp = client.get("/health", headers={"X-Request-ID": "abc123"})
        assert resp.headers["x-request-id"] == "abc123"

    def test_body_too_large(self, client: TestClient):
        resp = client.post(
            "/api/scenario",
            content=b"x" * (MAX_BODY_BYTES + 1),
            headers={"Content-Type": "application/json"},
        )
        assert resp.status_code == 413

    def test_headers_too_large(self, client: TestClient):
        resp = client.get("/health", headers={"X-Padding": "x" * 17_000})
        assert resp.status_code == 431

    def test_cors_preflight(self, client: TestClient):
        resp = client.options("/api/scenario", headers={
            "Origin": "http://localhost:3000",
            "Access-Control-Request-Method": "POST",
        })
        assert resp.status_code == 200
        assert resp.headers["access-control-allow-origin"] == "http://localhost:3000"

    def test_rate_limit(self, client: TestClient):
        statuses = [client.get("/api/export/json").status_code for _ in range(31)]
        assert statuses[:30] == [200] * 30
        assert statuses[30] == 429


class TestHelpers:

    def test_cors_origins_extended_without_duplicates(self):
        origins = cors_origins("https://staging.example.org, http://localhost:3000,")
        assert "https://staging.example.org" in origins
        assert origins.count("http://localhost:3000") == 1

    @pytest.mark.parametrize("path,policy", [
        ("/health", "no-store"),
        ("/api/scenario", "no-store"),
        ("/api/compare", "no-store"),
        ("/api/export/csv", "public, max-age=300, s-maxage=300"),
        ("/docs", "public, max-age=60, s-maxage=300, stale-while-revalidate=600"),
    ])
    def test_cache_policy(self, path: str, policy: str):
        assert cache_policy(path) == policy

    @pytest.mark.parametrize("ip,masked", [
        ("192.168.1.20", "192.168.*.*"),
        ("2001:db8:85a3:0:0:8a2e:370:7334", "2001:db8:85a3:0::*"),
        (None, "unknown"),
        ("testclient", "unknown"),
    ])
    def test_mask_ip(self, ip: str | None, masked: str):
        assert _mask_ip(ip) == masked
