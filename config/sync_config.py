"""
biosync - Configuration
Tuning constants for replay, reconciliation and the sync loop.

The regen/penalty values and the reset skew tolerance are product tuning,
not invariants. Override at runtime via biosync.runtime_config.
"""

import os
from dataclasses import dataclass

HOUR_MS = 3_600_000
DAY_MS = 24 * HOUR_MS


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass
class SyncConfig:
    """Complete configuration for the sync engine."""

    # =================================================================
    # Bio-Core: integrity
    # =================================================================

    INTEGRITY_MAX = 100.0
    INTEGRITY_REGEN_PER_HOUR = 4.0       # linear, capped at INTEGRITY_MAX
    INTEGRITY_PENALTY_NORMAL = 10.0
    INTEGRITY_PENALTY_OVERRIDE = 20.0    # override costs double

    # =================================================================
    # Bio-Core: evolution
    # =================================================================

    EVOLUTION_PENALTY_NORMAL_MS = HOUR_MS
    EVOLUTION_PENALTY_OVERRIDE_MS = 2 * HOUR_MS

    # (minimum evolution duration, stage name), ascending
    EVOLUTION_STAGES = (
        (0, "egg"),
        (1 * DAY_MS, "larva"),
        (3 * DAY_MS, "pupa"),
        (7 * DAY_MS, "juvenile"),
        (21 * DAY_MS, "adult"),
        (60 * DAY_MS, "elder"),
    )

    # =================================================================
    # Reconciliation / Backup Guard
    # =================================================================

    # Remote must be newer than local by more than this to count as a reset
    RESET_SKEW_TOLERANCE_MS = _env_int("BIOSYNC_RESET_SKEW_MS", 5000)

    # Snapshots older than this are never restored
    BACKUP_MAX_AGE_MS = _env_int("BIOSYNC_BACKUP_MAX_AGE_MS", 7 * DAY_MS)

    # =================================================================
    # Sync scheduler
    # =================================================================

    TICK_INTERVAL_SECONDS = 1.0
    PUSH_INTERVAL_SECONDS = 12.0

    # =================================================================
    # Storage
    # =================================================================

    APP_ID = os.getenv("BIOSYNC_APP_ID", "biosync")
    CACHE_NAMESPACE = "biosync"

    DEFAULT_SETTINGS = {
        "unitPrice": 100.0,
        "unitsPerPack": 20,
        "baselineDailyCount": 20,
        "minIntervalMinutes": 60,
        "targetDailyCount": 10,
    }

    # Fallback when a saved interval is non-positive
    DEFAULT_MIN_INTERVAL_MINUTES = 60


# Export singleton config
config = SyncConfig()
