"""
Daily statistics derived from the document (pure, read-only).

Money figures use the per-unit price (pack price / units per pack). "Saved"
compares the baseline habit since the profile start with what was actually
logged.
"""

import math
from dataclasses import dataclass
from datetime import tzinfo
from typing import Dict, Optional, Sequence

import numpy as np

from biosync.clock import MS_PER_DAY, MS_PER_MINUTE, start_of_local_day
from biosync.models import Document, LoggedEvent, Settings


@dataclass(frozen=True)
class DailyStats:
    count_today: int
    target_daily_count: int
    price_per_unit: float
    spent_today: float
    planned_spend_today: float
    over_target: bool
    money_saved: float
    baseline_daily_cost: float
    cooldown_remaining_ms: int

    @property
    def can_log(self) -> bool:
        return self.cooldown_remaining_ms == 0

    def to_dict(self) -> Dict:
        return {
            "countToday": self.count_today,
            "targetDailyCount": self.target_daily_count,
            "pricePerUnit": round(self.price_per_unit, 4),
            "spentToday": round(self.spent_today, 2),
            "plannedSpendToday": round(self.planned_spend_today, 2),
            "overTarget": self.over_target,
            "moneySaved": round(self.money_saved, 2),
            "baselineDailyCost": round(self.baseline_daily_cost, 2),
            "cooldownRemainingMs": self.cooldown_remaining_ms,
            "canLog": self.can_log,
        }


def price_per_unit(settings: Settings) -> float:
    if settings.units_per_pack <= 0:
        return 0.0
    return settings.unit_price / settings.units_per_pack


def count_today(events: Sequence[LoggedEvent], now: int, tz: Optional[tzinfo] = None) -> int:
    midnight = start_of_local_day(now, tz)
    return sum(1 for e in events if midnight <= e.timestamp <= now)


def money_saved(document: Document, now: int) -> float:
    days = max(0, now - document.profile.profile_start_time) / MS_PER_DAY
    expected = days * document.settings.baseline_daily_count
    avoided = max(0, math.floor(expected - document.event_count))
    return avoided * price_per_unit(document.settings)


def cooldown_remaining_ms(document: Document, now: int) -> int:
    """Time until the minimum interval since the last event has passed (0 = allowed)."""
    last = document.last_event_time
    if last is None:
        return 0
    interval = document.settings.min_interval_minutes * MS_PER_MINUTE
    return max(0, interval - (now - last))


def daily_counts(
    events: Sequence[LoggedEvent],
    now: int,
    days: int = 7,
    tz: Optional[tzinfo] = None,
) -> np.ndarray:
    """
    Events per local day for the last `days` days, oldest first; the last
    element is today.
    """
    if days <= 0:
        return np.zeros(0, dtype=np.int64)
    bounds = [start_of_local_day(now, tz)]
    while len(bounds) < days:
        bounds.append(start_of_local_day(bounds[-1] - 1, tz))
    edges = np.array(sorted(bounds), dtype=np.int64)
    stamps = np.array(
        [e.timestamp for e in events if edges[0] <= e.timestamp <= now],
        dtype=np.int64,
    )
    idx = np.searchsorted(edges, stamps, side="right") - 1
    return np.bincount(idx, minlength=days).astype(np.int64)


def compute_daily_stats(document: Document, now: int, tz: Optional[tzinfo] = None) -> DailyStats:
    settings = document.settings
    unit = price_per_unit(settings)
    today = count_today(document.events, now, tz)
    return DailyStats(
        count_today=today,
        target_daily_count=settings.target_daily_count,
        price_per_unit=unit,
        spent_today=today * unit,
        planned_spend_today=settings.target_daily_count * unit,
        over_target=today > settings.target_daily_count,
        money_saved=money_saved(document, now),
        baseline_daily_cost=settings.baseline_daily_count * unit,
        cooldown_remaining_ms=cooldown_remaining_ms(document, now),
    )
