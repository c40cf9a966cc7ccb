"""
Event log primitives.

The log is an immutable tuple of LoggedEvent sorted ascending by timestamp,
unique by timestamp. Every function here is pure and returns a new tuple.
"""

from bisect import bisect_left, bisect_right
from typing import Iterable, Optional, Sequence, Tuple

from biosync.models import EventKind, LoggedEvent

EventLog = Tuple[LoggedEvent, ...]

# On a timestamp collision between replicas the costlier kind is kept
_KIND_RANK = {EventKind.NORMAL: 0, EventKind.OVERRIDE: 1}


def _timestamps(events: Sequence[LoggedEvent]):
    return [e.timestamp for e in events]


def append(events: EventLog, event: LoggedEvent) -> EventLog:
    """
    Insert keeping sort order. A timestamp collision is a no-op and the
    original tuple is returned unchanged (identity preserved).
    """
    stamps = _timestamps(events)
    idx = bisect_left(stamps, event.timestamp)
    if idx < len(stamps) and stamps[idx] == event.timestamp:
        return events
    return events[:idx] + (event,) + events[idx:]


def remove_last(events: EventLog) -> Tuple[EventLog, Optional[LoggedEvent]]:
    """Pop the highest-timestamp event. Returns (log, None) when empty."""
    if not events:
        return events, None
    return events[:-1], events[-1]


def union(a: Iterable[LoggedEvent], b: Iterable[LoggedEvent]) -> EventLog:
    """
    Deduplicated, timestamp-sorted merge of two logs.

    Commutative and idempotent. When both sides carry the same timestamp
    with different kinds, the override is kept on both orderings.
    """
    by_stamp = {}
    for event in list(a) + list(b):
        current = by_stamp.get(event.timestamp)
        if current is None or _KIND_RANK[event.kind] > _KIND_RANK[current.kind]:
            by_stamp[event.timestamp] = event
    return tuple(by_stamp[ts] for ts in sorted(by_stamp))


def normalize(events: Iterable[LoggedEvent]) -> EventLog:
    """Sort and deduplicate an arbitrary iterable (e.g. a legacy import)."""
    return union((), events)


def events_between(events: EventLog, start: int, end: int) -> EventLog:
    """Events with start <= timestamp <= end."""
    stamps = _timestamps(events)
    return events[bisect_left(stamps, start):bisect_right(stamps, end)]


def is_canonical(events: Sequence[LoggedEvent]) -> bool:
    """True when strictly ascending by timestamp (sorted and unique)."""
    return all(x.timestamp < y.timestamp for x, y in zip(events, events[1:]))
