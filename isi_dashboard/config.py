"""
isi_dashboard.config — Environment configuration.

Environment variables:
    ENV                       — "dev" or "prod" (default: "prod")
    ALLOWED_ORIGINS           — Comma-separated extra CORS origins
    ENABLE_DOCS               — "1" to force-enable /docs in prod
    REDIS_URL                 — Optional Redis URL for distributed rate limiting
    ISI_API_URL               — Upstream ISI API (dataset + simulation);
                                empty means simulate locally
    ISI_DATA_PATH             — Local isi.json used instead of fetching
    ISI_DATASET_TTL_SECONDS   — Dataset cache lifetime (default: 300)
    ISI_SCENARIO_DEBOUNCE_MS  — Controller debounce (default: 100)
    ISI_RETRY_DELAYS_MS       — Comma-separated retry delays (default: 800,2400)
    ISI_MAX_TIMELINE          — Timeline capacity (default: 10)
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from isi_dashboard.constants import DEBOUNCE_MS, MAX_TIMELINE_ENTRIES, RETRY_DELAYS_MS

ENV = os.getenv("ENV", "prod").lower().strip()
ALLOWED_ORIGINS_RAW = os.getenv("ALLOWED_ORIGINS", "").strip()
ENABLE_DOCS = os.getenv("ENABLE_DOCS", "").strip() == "1"
REDIS_URL = os.getenv("REDIS_URL", "").strip() or None
ISI_API_URL = os.getenv("ISI_API_URL", "").strip().rstrip("/")
ISI_DATA_PATH = os.getenv("ISI_DATA_PATH", "").strip() or None
DATASET_TTL_SECONDS = float(os.getenv("ISI_DATASET_TTL_SECONDS", "300"))


def _int_env(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got '{raw}'.") from None
    if value < 0:
        raise ValueError(f"{name} must be non-negative, got {value}.")
    return value


def _delays_env(env: Mapping[str, str], name: str, default: tuple[int, ...]) -> tuple[int, ...]:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        delays = tuple(int(part) for part in raw.split(",") if part.strip())
    except ValueError:
        raise ValueError(f"{name} must be comma-separated integers, got '{raw}'.") from None
    if any(d < 0 for d in delays):
        raise ValueError(f"{name} must not contain negative delays.")
    return delays


@dataclass(frozen=True, slots=True)
class ControllerConfig:
    """Timing and capacity knobs for ScenarioController."""

    debounce_ms: int = DEBOUNCE_MS
    retry_delays_ms: tuple[int, ...] = RETRY_DELAYS_MS
    max_timeline: int = MAX_TIMELINE_ENTRIES

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000.0

    @property
    def max_retries(self) -> int:
        return len(self.retry_delays_ms)

    def retry_delay_seconds(self, attempt: int) -> float:
        """Delay before retry number `attempt` (0-based)."""
        return self.retry_delays_ms[attempt] / 1000.0

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> ControllerConfig:
        env = os.environ if env is None else env
        return cls(
            debounce_ms=_int_env(env, "ISI_SCENARIO_DEBOUNCE_MS", DEBOUNCE_MS),
            retry_delays_ms=_delays_env(env, "ISI_RETRY_DELAYS_MS", RETRY_DELAYS_MS),
            max_timeline=_int_env(env, "ISI_MAX_TIMELINE", MAX_TIMELINE_ENTRIES),
        )
