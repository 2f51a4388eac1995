"""
isi_dashboard.constants — Single source of truth for dashboard-core constants.

Every module that needs these values MUST import from here.
No hardcoded duplicates anywhere in the codebase.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Precision
# ---------------------------------------------------------------------------

COMPOSITE_TOLERANCE: float = 1e-9
"""Maximum tolerated gap between a composite and its recomputed mean
(absolute difference, compared without rounding)."""

# ---------------------------------------------------------------------------
# Structural constants
# ---------------------------------------------------------------------------

NUM_AXES: int = 6
"""Number of ISI axes. Changing this is a schema change."""

SCORE_MIN: float = 0.0
SCORE_MAX: float = 1.0

MAX_ADJUSTMENT: float = 0.20
"""Scenario adjustment bound: [-MAX_ADJUSTMENT, +MAX_ADJUSTMENT]."""

MIN_ADJUSTMENT: float = -MAX_ADJUSTMENT

EXPORT_VERSION: str = "2.0"
"""Version tag stamped on comparison and simulation export snapshots."""

# ---------------------------------------------------------------------------
# Scenario controller timing — defaults, overridable via config
# ---------------------------------------------------------------------------

DEBOUNCE_MS: int = 100
RETRY_DELAYS_MS: tuple[int, ...] = (800, 2400)
MAX_TIMELINE_ENTRIES: int = 10
TIMELINE_STORAGE_PREFIX: str = "isi-timeline-"

# ---------------------------------------------------------------------------
# EU-27 country codes — frozen set, canonical order
# ---------------------------------------------------------------------------

EU27_CODES: frozenset[str] = frozenset([
    "AT", "BE", "BG", "CY", "CZ", "DE", "DK", "EE", "EL", "ES",
    "FI", "FR", "HR", "HU", "IE", "IT", "LT", "LU", "LV", "MT",
    "NL", "PL", "PT", "RO", "SE", "SI", "SK",
])

EU27_SORTED: list[str] = sorted(EU27_CODES)
"""EU-27 codes in deterministic alphabetical order."""

# ---------------------------------------------------------------------------
# Country names — static, avoids external dependency
# ---------------------------------------------------------------------------

COUNTRY_NAMES: dict[str, str] = {
    "AT": "Austria", "BE": "Belgium", "BG": "Bulgaria",
    "CY": "Cyprus", "CZ": "Czechia", "DE": "Germany",
    "DK": "Denmark", "EE": "Estonia", "EL": "Greece",
    "ES": "Spain", "FI": "Finland", "FR": "France",
    "HR": "Croatia", "HU": "Hungary", "IE": "Ireland",
    "IT": "Italy", "LT": "Lithuania", "LU": "Luxembourg",
    "LV": "Latvia", "MT": "Malta", "NL": "Netherlands",
    "PL": "Poland", "PT": "Portugal", "RO": "Romania",
    "SE": "Sweden", "SI": "Slovenia", "SK": "Slovakia",
}
