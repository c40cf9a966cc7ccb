"""
Bio-Core: derived organism state by pure replay of the event log.

Nothing computed here is persisted as a source of truth. Given the same
(events, profile_start_time, now) the result is bit-identical, so the
readout can never drift from the log regardless of how the log was merged.

Model:
- integrity starts at INTEGRITY_MAX at profile_start_time, regenerates
  linearly between events (capped), and drops by a kind-dependent penalty
  at each event (floored at 0)
- evolution = elapsed since start minus a kind-dependent time cost per event
- abstention = gap since the last event (or since start without events)
"""

from dataclasses import dataclass
from typing import Dict, Sequence

from config.sync_config import config
from biosync import runtime_config
from biosync.clock import MS_PER_HOUR
from biosync.models import EventKind, LoggedEvent


@dataclass(frozen=True)
class BioState:
    """Point-in-time derived metrics."""
    integrity: float
    evolution_duration_ms: int
    current_abstention_ms: int
    longest_abstention_ms: int
    stage: str
    replayed_events: int

    @property
    def longest_abstention_hours(self) -> int:
        return self.longest_abstention_ms // MS_PER_HOUR

    def to_dict(self) -> Dict:
        return {
            "integrity": float(self.integrity),
            "evolutionDurationMs": int(self.evolution_duration_ms),
            "currentAbstentionMs": int(self.current_abstention_ms),
            "longestAbstentionMs": int(self.longest_abstention_ms),
            "stage": self.stage,
            "replayedEvents": int(self.replayed_events),
        }


def integrity_penalty(kind: EventKind) -> float:
    if kind is EventKind.OVERRIDE:
        return float(runtime_config.get_effective("integrity_penalty_override"))
    return float(runtime_config.get_effective("integrity_penalty_normal"))


def evolution_penalty_ms(kind: EventKind) -> int:
    if kind is EventKind.OVERRIDE:
        return int(runtime_config.get_effective("evolution_penalty_override_ms"))
    return int(runtime_config.get_effective("evolution_penalty_normal_ms"))


def _regenerate(integrity: float, elapsed_ms: int, rate_per_hour: float) -> float:
    if elapsed_ms <= 0:
        return integrity
    return min(config.INTEGRITY_MAX, integrity + rate_per_hour * elapsed_ms / MS_PER_HOUR)


def evolution_stage(evolution_duration_ms: int) -> str:
    """Name of the highest stage whose threshold has been reached."""
    stage = config.EVOLUTION_STAGES[0][1]
    for threshold, name in config.EVOLUTION_STAGES:
        if evolution_duration_ms >= threshold:
            stage = name
    return stage


def compute_state(
    events: Sequence[LoggedEvent],
    profile_start_time: int,
    now: int,
) -> BioState:
    """
    Replay the log from profile_start_time up to now.

    Events before profile_start_time are ignored (clock noise, imports) and
    so are events after `now` (the readout is point-in-time).

    Args:
        events: Log sorted ascending by timestamp, unique timestamps
        profile_start_time: Epoch ms where integrity is full
        now: Epoch ms of the readout

    Returns:
        BioState
    """
    regen = float(runtime_config.get_effective("integrity_regen_per_hour"))

    integrity = float(config.INTEGRITY_MAX)
    cursor = profile_start_time
    evolution_cost = 0
    longest_gap = 0
    replayed = 0

    for event in events:
        if event.timestamp < profile_start_time:
            continue
        if event.timestamp > now:
            break
        gap = event.timestamp - cursor
        integrity = _regenerate(integrity, gap, regen)
        integrity = max(0.0, integrity - integrity_penalty(event.kind))
        evolution_cost += evolution_penalty_ms(event.kind)
        longest_gap = max(longest_gap, gap)
        cursor = event.timestamp
        replayed += 1

    tail = max(0, now - cursor)
    integrity = _regenerate(integrity, tail, regen)
    longest_gap = max(longest_gap, tail)

    evolution = max(0, (now - profile_start_time) - evolution_cost)

    return BioState(
        integrity=integrity,
        evolution_duration_ms=evolution,
        current_abstention_ms=tail,
        longest_abstention_ms=longest_gap,
        stage=evolution_stage(evolution),
        replayed_events=replayed,
    )


def longest_abstention_ms(events: Sequence[LoggedEvent], profile_start_time: int, now: int) -> int:
    """Longest gap: start to first event, between events, last event to now."""
    return compute_state(events, profile_start_time, now).longest_abstention_ms
