"""
isi_dashboard.controller — Scenario simulation controller.

Owns the what-if session for one entity: the current AdjustmentSet, the
request lifecycle against the simulation service, and the session timeline.

State machine:

    IDLE ──change──▶ (debounce) ──▶ COMPUTING ──ok──────────▶ SUCCESS
                                      │
                                      ├─ SERVICE_ERROR ─▶ RETRYING ─▶ COMPUTING (again)
                                      │     after the last retry ───▶ SERVICE_DOWN
                                      ├─ TRANSPORT_BLOCKED ─────────▶ SERVICE_DOWN
                                      └─ BAD_INPUT / ROUTE_MISSING /
                                         VALIDATION_FAILURE / UNKNOWN ▶ ERROR

Design contract:
    - Adjustment changes are debounced. Any change cancels the pending
      debounce, a pending retry and the in-flight request. Only the latest
      operation may change state (OperationSlot, last request wins).
    - All-zero adjustments go straight to IDLE without a request.
    - Input failing pre-flight validation goes to ERROR(BAD_INPUT) without
      a request.
    - Only SERVICE_ERROR is retried: once per entry of
      ControllerConfig.retry_delays_ms, then SERVICE_DOWN.
    - ERROR and SERVICE_DOWN keep the last good result as a stale cache.
    - Every success prepends a TimelineEntry (capacity max_timeline) and
      persists the timeline. Storage failures are logged, never raised.
    - Raw exceptions never leave the controller; observers see FailureInfo.

Must be driven from a running asyncio event loop. All timers go through the
injected `sleep`, so tests can run the full lifecycle without waiting.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from isi_dashboard.axes import AxisSlug
from isi_dashboard.config import ControllerConfig
from isi_dashboard.constants import EXPORT_VERSION
from isi_dashboard.errors import FailureInfo, FailureKind, RETRYABLE_KINDS
from isi_dashboard.models import AdjustmentSet, TimelineEntry, zero_adjustments
from isi_dashboard.persistence import NullPersistence, Persistence
from isi_dashboard.presets import StructuralPreset, get_preset
from isi_dashboard.scenario_contract import (
    ScenarioMeta,
    ScenarioRequestPayload,
    ScenarioResult,
    active_adjustments,
    classification_mismatch,
    normalize_code,
    parse_scenario_result,
    validate_scenario_input,
)
from isi_dashboard.scheduling import CancellationToken, OperationCancelled, OperationSlot, Sleep
from isi_dashboard.transport import ScenarioTransport

logger = logging.getLogger("isi.controller")

CLIENT_VERSION = "isi-dashboard/1.0"


class ScenarioStatus(str, Enum):
    IDLE = "IDLE"
    COMPUTING = "COMPUTING"
    RETRYING = "RETRYING"
    SUCCESS = "SUCCESS"
    SERVICE_DOWN = "SERVICE_DOWN"
    ERROR = "ERROR"


LOCKED_STATES: frozenset[ScenarioStatus] = frozenset({
    ScenarioStatus.COMPUTING,
    ScenarioStatus.RETRYING,
    ScenarioStatus.SERVICE_DOWN,
})

# State a failure lands in once no retry remains.
_TERMINAL_STATE: dict[FailureKind, ScenarioStatus] = {
    FailureKind.BAD_INPUT: ScenarioStatus.ERROR,
    FailureKind.ROUTE_MISSING: ScenarioStatus.ERROR,
    FailureKind.VALIDATION_FAILURE: ScenarioStatus.ERROR,
    FailureKind.UNKNOWN: ScenarioStatus.ERROR,
    FailureKind.TRANSPORT_BLOCKED: ScenarioStatus.SERVICE_DOWN,
    FailureKind.SERVICE_ERROR: ScenarioStatus.SERVICE_DOWN,
}


@dataclass(frozen=True, slots=True)
class ControllerSnapshot:
    """Immutable view of the controller handed to observers."""

    entity_code: str
    state: ScenarioStatus
    data: ScenarioResult | None
    cached: ScenarioResult | None
    stale: bool
    failure: FailureInfo | None
    timeline: tuple[TimelineEntry, ...]
    adjustments: dict[AxisSlug, float]
    active_preset: str | None
    retry_count: int

    @property
    def controls_locked(self) -> bool:
        return self.state in LOCKED_STATES

    @property
    def has_adjustments(self) -> bool:
        return any(v != 0 for v in self.adjustments.values())


Listener = Callable[[ControllerSnapshot], None]


def _default_clock() -> datetime:
    return datetime.now(UTC)


def _default_entry_id() -> str:
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:4]}"


class ScenarioController:
    """What-if session controller for one entity."""

    def __init__(
        self,
        entity_code: str,
        transport: ScenarioTransport,
        *,
        persistence: Persistence | None = None,
        config: ControllerConfig | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], datetime] = _default_clock,
        entry_id: Callable[[], str] = _default_entry_id,
    ) -> None:
        self.entity_code = normalize_code(entity_code)
        self.config = config or ControllerConfig()
        self._transport = transport
        self._persistence = persistence or NullPersistence()
        self._sleep = sleep
        self._clock = clock
        self._entry_id = entry_id

        self._adjustments: AdjustmentSet = zero_adjustments()
        self._active_preset: str | None = None
        self._state = ScenarioStatus.IDLE
        self._data: ScenarioResult | None = None
        self._last_success: ScenarioResult | None = None
        self._failure: FailureInfo | None = None
        self._retry_count = 0
        self._timeline: list[TimelineEntry] = self._persistence.load()[: self.config.max_timeline]

        self._slot = OperationSlot()
        self._listeners: list[Listener] = []
        self._logged: set[str] = set()
        self._closed = False

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def state(self) -> ScenarioStatus:
        return self._state

    @property
    def timeline(self) -> tuple[TimelineEntry, ...]:
        return tuple(self._timeline)

    def snapshot(self) -> ControllerSnapshot:
        failed = self._state in (ScenarioStatus.ERROR, ScenarioStatus.SERVICE_DOWN)
        cached = self._last_success if failed else None
        return ControllerSnapshot(
            entity_code=self.entity_code,
            state=self._state,
            data=self._data if self._state is ScenarioStatus.SUCCESS else None,
            cached=cached,
            stale=cached is not None,
            failure=self._failure,
            timeline=tuple(self._timeline),
            adjustments=dict(self._adjustments),
            active_preset=self._active_preset,
            retry_count=self._retry_count,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener. Returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        if not self._listeners:
            return
        snap = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception:
                logger.exception("Scenario listener %r failed", listener)

    def _set_state(self, state: ScenarioStatus) -> None:
        self._state = state
        self._notify()

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def apply_adjustment(self, slug: AxisSlug | str, value: Any) -> None:
        """Change one axis. Clears the active preset."""
        updated: dict[Any, Any] = {s.value: v for s, v in self._adjustments.items()}
        key = slug.value if isinstance(slug, AxisSlug) else slug
        updated[key] = value
        self._replace_adjustments(updated, preset_label=None)

    def set_adjustments(
        self,
        adjustments: Mapping[Any, Any],
        *,
        preset_label: str | None = None,
    ) -> None:
        """Replace every axis adjustment. Axes not named are reset to 0."""
        self._replace_adjustments(adjustments, preset_label=preset_label)

    def apply_preset(self, preset: StructuralPreset | str) -> None:
        if isinstance(preset, str):
            preset = get_preset(preset)
        full = {slug.value: v for slug, v in preset.full_adjustments().items()}
        self._replace_adjustments(full, preset_label=preset.label)

    def restore_timeline_entry(self, entry: TimelineEntry | str) -> None:
        """Re-apply the adjustments (and preset label) of a timeline entry."""
        if isinstance(entry, str):
            matches = [e for e in self._timeline if e.id == entry]
            if not matches:
                raise KeyError(f"No timeline entry with id '{entry}'.")
            entry = matches[0]
        self._replace_adjustments(dict(entry.adjustments), preset_label=entry.preset_label)

    def reset(self) -> None:
        """Back to baseline: zero adjustments, IDLE, no failure, no preset."""
        self._ensure_open()
        self._slot.invalidate()
        self._adjustments = zero_adjustments()
        self._active_preset = None
        self._retry_count = 0
        self._data = None
        self._failure = None
        self._set_state(ScenarioStatus.IDLE)

    def retry(self) -> None:
        """Manual retry: reset the retry budget and run immediately."""
        self._ensure_open()
        self._failure = None
        self._state = ScenarioStatus.IDLE
        self._schedule(delay=0.0)

    async def settle(self) -> None:
        """Wait for the pending operation (debounce, request, retries) to finish."""
        await self._slot.wait()

    def close(self) -> None:
        """Cancel pending work and detach listeners. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._slot.invalidate()
        self._listeners.clear()
        logger.debug(json.dumps({"event": "controller_closed", "entity": self.entity_code}))

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export_snapshot(self, now: datetime | None = None) -> dict[str, Any] | None:
        """Downloadable snapshot of the current (or cached) result.

        None when no result has been obtained yet.
        """
        result = self._data if self._state is ScenarioStatus.SUCCESS else self._last_success
        if result is None:
            return None
        stamp = now or self._clock()

        def block(agg: Any, with_classification: bool = True) -> dict[str, Any]:
            out: dict[str, Any] = {"composite": agg.composite}
            if with_classification:
                out["classification"] = agg.classification
            out["rank"] = agg.rank
            out["axes"] = {slug.value: v for slug, v in agg.axes.items()}
            return out

        return {
            "country": self.entity_code,
            "baseline": block(result.baseline),
            "simulated": block(result.simulated),
            "delta": block(result.delta, with_classification=False),
            "adjustments": {
                slug.value: v for slug, v in active_adjustments(self._adjustments).items()
            },
            "timestamp": stamp.isoformat(),
            "version": EXPORT_VERSION,
        }

    def export_filename(self, now: datetime | None = None) -> str:
        stamp = now or self._clock()
        return f"isi-simulation-{self.entity_code.lower()}-{int(stamp.timestamp() * 1000)}.json"

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError(f"ScenarioController for {self.entity_code} is closed.")

    def _replace_adjustments(
        self,
        adjustments: Mapping[Any, Any],
        *,
        preset_label: str | None,
    ) -> None:
        self._ensure_open()
        result = validate_scenario_input(self.entity_code, adjustments)
        if not result.valid:
            self._slot.invalidate()
            self._reject(result.reason)
            return
        self._adjustments = dict(result.payload.adjustments)
        self._active_preset = preset_label
        self._schedule(delay=self.config.debounce_seconds)

    def _reject(self, reason: str) -> None:
        self._log_once(f"BAD_INPUT:{reason}", {
            "event": "scenario_rejected",
            "entity": self.entity_code,
            "reason": reason,
        })
        self._retry_count = 0
        self._data = None
        self._failure = FailureInfo.bad_input(reason)
        self._set_state(ScenarioStatus.ERROR)

    def _schedule(self, delay: float) -> None:
        self._retry_count = 0
        if not active_adjustments(self._adjustments):
            self._slot.invalidate()
            self._data = None
            self._failure = None
            self._set_state(ScenarioStatus.IDLE)
            return

        meta = ScenarioMeta(preset=self._active_preset, client_version=CLIENT_VERSION)
        checked = validate_scenario_input(self.entity_code, self._adjustments, meta)
        if not checked.valid:
            self._slot.invalidate()
            self._reject(checked.reason)
            return

        payload = checked.payload
        self._slot.start(lambda token: self._run(payload, token, delay))

    async def _run(
        self,
        payload: ScenarioRequestPayload,
        token: CancellationToken,
        delay: float,
    ) -> None:
        if delay > 0:
            await self._sleep(delay)

        attempt = 0
        while self._slot.is_current(token):
            self._set_state(ScenarioStatus.RETRYING if attempt else ScenarioStatus.COMPUTING)
            logger.debug(json.dumps({
                "event": "scenario_request",
                "entity": payload.country_code,
                "attempt": attempt,
            }))
            try:
                raw = await self._transport.simulate(payload, token)
                if not self._slot.is_current(token):
                    return
                result = parse_scenario_result(raw)
            except OperationCancelled:
                return
            except Exception as exc:
                if not self._slot.is_current(token):
                    return
                failure = FailureInfo.from_exception(exc)
                if failure.kind in RETRYABLE_KINDS and attempt < self.config.max_retries:
                    wait = self.config.retry_delay_seconds(attempt)
                    attempt += 1
                    self._retry_count = attempt
                    self._failure = failure
                    logger.info(json.dumps({
                        "event": "scenario_retry_scheduled",
                        "entity": payload.country_code,
                        "status": failure.status,
                        "retry": attempt,
                        "delay_ms": int(wait * 1000),
                    }))
                    self._set_state(ScenarioStatus.RETRYING)
                    await self._sleep(wait)
                    continue
                self._fail(failure)
                return
            self._succeed(result, payload)
            return

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def _succeed(self, result: ScenarioResult, payload: ScenarioRequestPayload) -> None:
        self._data = result
        self._last_success = result
        self._failure = None
        self._retry_count = 0

        expected = classification_mismatch(result.simulated)
        if expected is not None:
            self._log_once(f"mismatch:{result.simulated.classification}:{expected.value}", {
                "event": "classification_mismatch",
                "entity": result.country,
                "composite": result.simulated.composite,
                "received": result.simulated.classification,
                "expected": expected.value,
            })

        entry = TimelineEntry(
            id=self._entry_id(),
            timestamp=self._clock().isoformat(),
            adjustments={
                slug.value: v for slug, v in active_adjustments(payload.adjustments).items()
            },
            composite=result.simulated.composite,
            rank=result.simulated.rank,
            classification=result.simulated.classification,
            preset_label=payload.meta.preset if payload.meta else None,
        )
        self._timeline = [entry, *self._timeline][: self.config.max_timeline]
        self._persist_timeline()

        logger.info(json.dumps({
            "event": "scenario_success",
            "entity": result.country,
            "composite": result.simulated.composite,
            "rank": result.simulated.rank,
        }))
        self._set_state(ScenarioStatus.SUCCESS)

    def _fail(self, failure: FailureInfo) -> None:
        self._data = None
        self._failure = failure
        self._log_once(f"{failure.kind.value}:{failure.status}", {
            "event": "scenario_failure",
            "entity": self.entity_code,
            "kind": failure.kind.value,
            "status": failure.status,
            "retries": self._retry_count,
        })
        self._set_state(_TERMINAL_STATE[failure.kind])

    def _persist_timeline(self) -> None:
        try:
            self._persistence.save(list(self._timeline))
        except Exception as exc:
            logger.warning(json.dumps({
                "event": "timeline_persist_failed",
                "entity": self.entity_code,
                "exception_type": type(exc).__name__,
                "error": str(exc),
            }))

    def _log_once(self, key: str, payload: dict[str, Any]) -> None:
        """Warn once per distinct failure signature per controller."""
        if key in self._logged:
            return
        self._logged.add(key)
        logger.warning(json.dumps(payload))

