"""
Reconciliation Engine

One pure function, reconcile(local, remote), producing the next
authoritative document from the local and remote candidates. No I/O: the
session persists the result and pushes it when the remote lacks something.

Merge axes are independent:

1. Settings        - wholesale, strictly newer settingsRevisionTime wins,
                     tie -> local
2. Monotonic record - longestAbstentionHours = max(local, remote)
3. Event log       - union by timestamp, except reset detection: remote log
                     empty, local log non-empty and remote documentRevisionTime
                     newer than local by more than the skew tolerance
                     -> adopt the empty log (unioning would resurrect a wipe)
4. Revision/start  - documentRevisionTime and profileStartTime from the side
                     with the fresher documentRevisionTime, tie -> local

Properties: reconcile(D, D).document == D; without a reset the merged log
holds at least max(|local|, |remote|) events (retractions aside, see below).

`retracted` carries timestamps this session undid locally but has not yet
managed to push; they are dropped from the remote log before the union so a
stale remote cannot resurrect an undo.
"""

from dataclasses import dataclass
from typing import AbstractSet, Any, Dict, Optional, Union

from biosync import runtime_config
from biosync.event_log import union
from biosync.logging_utils import get_logger
from biosync.models import Document, ProfileState
from biosync.schemas import parse_document

logger = get_logger(__name__)

SOURCE_LOCAL = "local"
SOURCE_REMOTE = "remote"
SOURCE_MERGED = "merged"
SOURCE_EMPTY = "empty"

Candidate = Union[Document, Dict[str, Any], str, bytes, None]


@dataclass(frozen=True)
class ReconcileResult:
    document: Optional[Document]    # None only when both sides are absent
    push_remote: bool               # remote lacks something the merge holds
    reset_honored: bool = False
    source: str = SOURCE_MERGED


def _coerce(side: Candidate, label: str) -> Optional[Document]:
    if side is None or isinstance(side, Document):
        return side
    # Malformed payloads become "absent" and the other side is preserved
    return parse_document(side, source=label)


def is_remote_reset(local: Document, remote: Document, tolerance_ms: Optional[int] = None) -> bool:
    """Remote is an authoritative wipe made from another session."""
    if tolerance_ms is None:
        tolerance_ms = int(runtime_config.get_effective("reset_skew_tolerance_ms"))
    return (
        not remote.events
        and bool(local.events)
        and remote.document_revision_time - local.document_revision_time > tolerance_ms
    )


def remote_lacks(merged: Document, remote: Optional[Document]) -> bool:
    """
    True when writing `merged` would add something to the remote.

    Revision comparisons are strict so two sessions whose settings tie never
    ping-pong writes at each other.
    """
    if remote is None:
        return True
    if set(merged.events) != set(remote.events):
        return True
    if merged.document_revision_time > remote.document_revision_time:
        return True
    if merged.settings_revision_time > remote.settings_revision_time:
        return True
    if merged.profile.longest_abstention_hours > remote.profile.longest_abstention_hours:
        return True
    return False


def _merge(
    local: Document,
    remote: Document,
    retracted: AbstractSet[int],
    tolerance_ms: Optional[int],
) -> ReconcileResult:
    reset = is_remote_reset(local, remote, tolerance_ms)

    # Settings: wholesale, tie -> local
    if remote.settings_revision_time > local.settings_revision_time:
        settings, settings_rev = remote.settings, remote.settings_revision_time
    else:
        settings, settings_rev = local.settings, local.settings_revision_time

    # Revision stamp and profile start travel together
    fresher = remote if remote.document_revision_time > local.document_revision_time else local

    if reset:
        events = ()
        longest = remote.profile.longest_abstention_hours
        logger.info(
            f"Remote reset detected (remote rev {remote.document_revision_time} > "
            f"local rev {local.document_revision_time}); dropping {local.event_count} local events"
        )
    else:
        remote_events = remote.events
        if retracted:
            remote_events = tuple(e for e in remote_events if e.timestamp not in retracted)
        events = union(local.events, remote_events)
        longest = max(
            local.profile.longest_abstention_hours,
            remote.profile.longest_abstention_hours,
        )

    merged = Document(
        settings=settings,
        profile=ProfileState(
            profile_start_time=fresher.profile.profile_start_time,
            longest_abstention_hours=longest,
            owner_id=local.profile.owner_id or remote.profile.owner_id,
        ),
        events=events,
        document_revision_time=fresher.document_revision_time,
        settings_revision_time=settings_rev,
    )
    return ReconcileResult(
        document=merged,
        push_remote=remote_lacks(merged, remote),
        reset_honored=reset,
        source=SOURCE_MERGED,
    )


def reconcile(
    local: Candidate,
    remote: Candidate,
    *,
    retracted: AbstractSet[int] = frozenset(),
    tolerance_ms: Optional[int] = None,
) -> ReconcileResult:
    """
    Merge the local and remote candidates.

    Args:
        local: Local document (or None when the cache had nothing usable)
        remote: Remote document, raw wire payload, or None
        retracted: Timestamps undone locally and not yet pushed
        tolerance_ms: Reset-detection skew tolerance (default from tuning)

    Returns:
        ReconcileResult. Never raises; on an internal failure the local side
        is kept unchanged.
    """
    local_doc = _coerce(local, "local document")
    remote_doc = _coerce(remote, "remote document")

    if local_doc is None and remote_doc is None:
        return ReconcileResult(document=None, push_remote=False, source=SOURCE_EMPTY)
    if remote_doc is None:
        return ReconcileResult(document=local_doc, push_remote=True, source=SOURCE_LOCAL)
    if local_doc is None:
        return ReconcileResult(document=remote_doc, push_remote=False, source=SOURCE_REMOTE)

    try:
        return _merge(local_doc, remote_doc, retracted, tolerance_ms)
    except Exception as e:
        logger.error(f"Reconciliation failed, keeping local document: {e}", exc_info=True)
        return ReconcileResult(document=local_doc, push_remote=False, source=SOURCE_LOCAL)
