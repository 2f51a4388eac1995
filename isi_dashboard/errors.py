"""
isi_dashboard.errors — Failure taxonomy for scenario simulation.

Every failure reaching the controller boundary is converted into exactly
one FailureKind before it is exposed. Raw transport exceptions never reach
the presentation layer.

    BAD_INPUT           malformed or out-of-domain request        no retry
    ROUTE_MISSING       endpoint not deployed (HTTP 404/405)      no retry
    TRANSPORT_BLOCKED   network/CORS failure, no HTTP status      no retry
    SERVICE_ERROR       upstream failure (HTTP 500/502/503/504)   retried
    VALIDATION_FAILURE  2xx response failing the shape check      no retry
    UNKNOWN             any other status                          no retry
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum


class FailureKind(str, Enum):
    BAD_INPUT = "BAD_INPUT"
    ROUTE_MISSING = "ROUTE_MISSING"
    TRANSPORT_BLOCKED = "TRANSPORT_BLOCKED"
    SERVICE_ERROR = "SERVICE_ERROR"
    VALIDATION_FAILURE = "VALIDATION_FAILURE"
    UNKNOWN = "UNKNOWN"


RETRYABLE_KINDS: frozenset[FailureKind] = frozenset({FailureKind.SERVICE_ERROR})

BAD_INPUT_STATUSES: frozenset[int] = frozenset({400, 422})
ROUTE_MISSING_STATUSES: frozenset[int] = frozenset({404, 405})
SERVICE_ERROR_STATUSES: frozenset[int] = frozenset({500, 502, 503, 504})


class ScenarioInputError(ValueError):
    """Raised when a scenario request fails pre-flight validation."""


class ResponseValidationError(ValueError):
    """Raised when a simulation response does not match the contract shape."""


class TransportError(RuntimeError):
    """Non-2xx HTTP response from the simulation service."""

    def __init__(self, status: int, endpoint: str, body: str = "") -> None:
        self.status = status
        self.endpoint = endpoint
        self.body = body
        super().__init__(f"HTTP {status} on {endpoint}: {body[:200]}")


class TransportBlockedError(RuntimeError):
    """Request never produced an HTTP status (DNS, connect, CORS, timeout)."""

    def __init__(self, endpoint: str, detail: str = "") -> None:
        self.endpoint = endpoint
        self.detail = detail
        super().__init__(f"Transport blocked on {endpoint}: {detail}")


class StorageError(RuntimeError):
    """Raised by a persistence backend when a save cannot complete."""


def classify_status(status: int) -> FailureKind:
    if status in BAD_INPUT_STATUSES:
        return FailureKind.BAD_INPUT
    if status in ROUTE_MISSING_STATUSES:
        return FailureKind.ROUTE_MISSING
    if status in SERVICE_ERROR_STATUSES:
        return FailureKind.SERVICE_ERROR
    return FailureKind.UNKNOWN


def classify_failure(exc: BaseException) -> FailureKind:
    """Map any exception raised during a simulation call to a FailureKind."""
    if isinstance(exc, TransportError):
        return classify_status(exc.status)
    if isinstance(exc, ScenarioInputError):
        return FailureKind.BAD_INPUT
    if isinstance(exc, ResponseValidationError):
        return FailureKind.VALIDATION_FAILURE
    if isinstance(exc, (TransportBlockedError, ConnectionError, asyncio.TimeoutError, TimeoutError)):
        return FailureKind.TRANSPORT_BLOCKED
    return FailureKind.UNKNOWN


@dataclass(frozen=True, slots=True)
class FailureInfo:
    """What the presentation layer sees about the most recent failure."""

    kind: FailureKind
    status: int | None
    message: str | None
    timestamp: str

    @classmethod
    def from_exception(cls, exc: BaseException) -> FailureInfo:
        status = exc.status if isinstance(exc, TransportError) else None
        message = exc.body if isinstance(exc, TransportError) and exc.body else None
        if message is None and isinstance(exc, (ScenarioInputError, ResponseValidationError)):
            message = str(exc)
        return cls(
            kind=classify_failure(exc),
            status=status,
            message=message,
            timestamp=datetime.now(UTC).isoformat(),
        )

    @classmethod
    def bad_input(cls, reason: str) -> FailureInfo:
        return cls(
            kind=FailureKind.BAD_INPUT,
            status=None,
            message=reason,
            timestamp=datetime.now(UTC).isoformat(),
        )
