"""
tests/test_transport.py — HTTP scenario transport against httpx.MockTransport.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from isi_dashboard.errors import (
    FailureKind,
    ResponseValidationError,
    TransportBlockedError,
    TransportError,
    classify_failure,
)
from isi_dashboard.scenario_contract import build_scenario_request
from isi_dashboard.scheduling import CancellationToken, OperationCancelled
from isi_dashboard.transport import HttpScenarioTransport

UPSTREAM = "http://upstream.test"


def _run(
    handler: Callable[[httpx.Request], httpx.Response],
    token: CancellationToken | None = None,
    **kwargs: Any,
) -> Any:
    async def go() -> Any:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            transport = HttpScenarioTransport(client, base_url=UPSTREAM, **kwargs)
            payload = build_scenario_request("SE", {"energy": -0.15})
            return await transport.simulate(payload, token or CancellationToken(1))

    return asyncio.run(go())


class TestHttpScenarioTransport:

    def test_posts_slug_payload(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"ok": True})

        assert _run(handler) == {"ok": True}
        request = seen[0]
        assert request.method == "POST"
        assert str(request.url) == f"{UPSTREAM}/api/scenario"
        body = json.loads(request.content)
        assert body["country_code"] == "SE"
        assert body["adjustments"]["energy"] == -0.15
        assert len(body["adjustments"]) == 6

    def test_long_keys(self):
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={})

        _run(handler, long_keys=True, path="/scenario")
        assert seen[0]["adjustments"]["energy_external_supplier_concentration"] == -0.15

    def test_custom_path(self):
        urls: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            urls.append(str(request.url))
            return httpx.Response(200, json={})

        _run(handler, path="/scenario")
        assert urls == [f"{UPSTREAM}/scenario"]

    @pytest.mark.parametrize("status,kind", [
        (400, FailureKind.BAD_INPUT),
        (404, FailureKind.ROUTE_MISSING),
        (405, FailureKind.ROUTE_MISSING),
        (500, FailureKind.SERVICE_ERROR),
        (502, FailureKind.SERVICE_ERROR),
        (503, FailureKind.SERVICE_ERROR),
        (504, FailureKind.SERVICE_ERROR),
        (418, FailureKind.UNKNOWN),
    ])
    def test_http_status_classified(self, status: int, kind: FailureKind):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status, text="upstream said no")

        with pytest.raises(TransportError) as info:
            _run(handler)
        assert info.value.status == status
        assert info.value.body == "upstream said no"
        assert classify_failure(info.value) is kind

    def test_error_body_truncated(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="x" * 2000)

        with pytest.raises(TransportError) as info:
            _run(handler)
        assert len(info.value.body) == 500

    def test_connection_failure_is_blocked(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TransportBlockedError) as info:
            _run(handler)
        assert classify_failure(info.value) is FailureKind.TRANSPORT_BLOCKED
        assert info.value.detail == "ConnectError"

    def test_timeout_is_blocked(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(TransportBlockedError):
            _run(handler)

    def test_non_json_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>maintenance</html>")

        with pytest.raises(ResponseValidationError):
            _run(handler)

    def test_cancelled_token_sends_nothing(self):
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json={})

        token = CancellationToken(1)
        token.cancel()
        with pytest.raises(OperationCancelled):
            _run(handler, token=token)
        assert calls == []
