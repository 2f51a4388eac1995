"""
isi_dashboard.transport — Simulation service transport.

The controller talks to the simulation service only through the
ScenarioTransport protocol:

    await transport.simulate(payload, token) -> raw decoded JSON

Implementations raise:
    TransportError          non-2xx HTTP status (status, endpoint, body)
    TransportBlockedError   no HTTP status at all (DNS, connect, timeout)
    ResponseValidationError 2xx whose body is not JSON

They never validate the response shape; that is the controller's job
(parse_scenario_result). Cancellation is cooperative: the token is checked
before the request leaves, and the controller cancels the asyncio task
that is awaiting the request.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

import httpx

from isi_dashboard.errors import ResponseValidationError, TransportBlockedError, TransportError
from isi_dashboard.scenario_contract import ScenarioRequestPayload
from isi_dashboard.scheduling import CancellationToken

logger = logging.getLogger("isi.transport")

SCENARIO_PATH = "/api/scenario"
DEFAULT_TIMEOUT_SECONDS = 10.0
MAX_ERROR_BODY_CHARS = 500


class ScenarioTransport(Protocol):
    async def simulate(
        self,
        payload: ScenarioRequestPayload,
        token: CancellationToken,
    ) -> Any: ...


class HttpScenarioTransport:
    """POSTs the scenario payload as JSON over an httpx.AsyncClient.

    The client is owned by the caller, who is responsible for closing it.
    base_url may be empty when the client already carries one.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        base_url: str = "",
        path: str = SCENARIO_PATH,
        long_keys: bool = False,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.client = client
        self.endpoint = f"{base_url.rstrip('/')}{path}"
        self.long_keys = long_keys
        self.timeout = timeout

    async def simulate(
        self,
        payload: ScenarioRequestPayload,
        token: CancellationToken,
    ) -> Any:
        token.raise_if_cancelled()
        body = payload.to_wire(long_keys=self.long_keys)

        try:
            response = await self.client.post(
                self.endpoint,
                json=body,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except httpx.TransportError as exc:
            logger.warning(json.dumps({
                "event": "scenario_transport_blocked",
                "endpoint": self.endpoint,
                "error_type": type(exc).__name__,
            }))
            raise TransportBlockedError(self.endpoint, type(exc).__name__) from exc

        if not response.is_success:
            text = response.text[:MAX_ERROR_BODY_CHARS]
            logger.warning(json.dumps({
                "event": "scenario_upstream_error",
                "endpoint": self.endpoint,
                "status": response.status_code,
            }))
            raise TransportError(response.status_code, self.endpoint, text)

        try:
            return response.json()
        except ValueError as exc:
            raise ResponseValidationError(
                f"Scenario response from {self.endpoint} is not valid JSON."
            ) from exc
