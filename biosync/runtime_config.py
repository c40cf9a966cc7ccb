"""
Runtime Configuration Management

Allows runtime access and modification of replay and reconciliation tuning
constants without requiring code changes or redeployment.
"""

from typing import Any, Dict, Tuple

from config import sync_config as config_module


# Runtime overrides (missing key = use class defaults)
_runtime_overrides: Dict[str, float] = {}

# name -> (config attribute, (min, max))
_TUNABLES: Dict[str, Tuple[str, Tuple[float, float]]] = {
    "integrity_regen_per_hour": ("INTEGRITY_REGEN_PER_HOUR", (0.0, 100.0)),
    "integrity_penalty_normal": ("INTEGRITY_PENALTY_NORMAL", (0.0, 100.0)),
    "integrity_penalty_override": ("INTEGRITY_PENALTY_OVERRIDE", (0.0, 100.0)),
    "evolution_penalty_normal_ms": ("EVOLUTION_PENALTY_NORMAL_MS", (0, 7 * config_module.DAY_MS)),
    "evolution_penalty_override_ms": ("EVOLUTION_PENALTY_OVERRIDE_MS", (0, 7 * config_module.DAY_MS)),
    "reset_skew_tolerance_ms": ("RESET_SKEW_TOLERANCE_MS", (0, 600_000)),
    "backup_max_age_ms": ("BACKUP_MAX_AGE_MS", (config_module.HOUR_MS, 90 * config_module.DAY_MS)),
}

_INTEGER_TUNABLES = {
    "evolution_penalty_normal_ms",
    "evolution_penalty_override_ms",
    "reset_skew_tolerance_ms",
    "backup_max_age_ms",
}


def get_tuning() -> Dict[str, float]:
    """
    Get current tuning values (runtime overrides + defaults).
    """
    return {name: get_effective(name) for name in _TUNABLES}


def set_tuning(values: Dict[str, float], validate: bool = True) -> Dict[str, Any]:
    """
    Set runtime tuning overrides.

    Args:
        values: Dict of tuning name -> value
        validate: If True, validate values are in reasonable ranges

    Returns:
        {
            "success": bool,
            "updated": List[str],
            "errors": List[str]
        }
    """
    updated = []
    errors = []

    for name, value in values.items():
        if name not in _TUNABLES:
            errors.append(f"Unknown tuning value: {name}")
            continue

        if validate:
            min_val, max_val = _TUNABLES[name][1]
            if not (min_val <= value <= max_val):
                errors.append(f"{name}={value} out of range [{min_val}, {max_val}]")
                continue

        # An override event must never be cheaper than a normal one
        if name == "integrity_penalty_override":
            normal = values.get("integrity_penalty_normal", get_effective("integrity_penalty_normal"))
            if value < normal:
                errors.append(f"integrity_penalty_override ({value}) must be >= integrity_penalty_normal ({normal})")
                continue

        _runtime_overrides[name] = int(value) if name in _INTEGER_TUNABLES else float(value)
        updated.append(name)

    return {
        "success": len(errors) == 0,
        "updated": updated,
        "errors": errors
    }


def get_effective(name: str) -> float:
    """
    Get effective tuning value (runtime override or default).

    Used internally by bio_core, reconcile and backup_guard.
    """
    if name not in _TUNABLES:
        raise ValueError(f"Unknown tuning value: {name}")
    if name in _runtime_overrides:
        return _runtime_overrides[name]
    return getattr(config_module.SyncConfig, _TUNABLES[name][0])


def clear_overrides() -> None:
    """Clear all runtime overrides, revert to defaults"""
    _runtime_overrides.clear()
