"""
Backup Guard: anti-data-loss safety net around reconciliation.

A secondary, independent copy of the document is kept in the local store
whenever the log is non-empty. After every reconciliation the merged result
is checked against it; if the merge shrank the history and the snapshot is
recent, the missing history is restored.

For a merge that honoured a remote reset, only events logged after the reset
revision count as "lost" (history older than the wipe is meant to go).
"""

from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Optional

from biosync import runtime_config
from biosync.clock import now_ms
from biosync.event_log import union
from biosync.local_cache import LocalCache
from biosync.logging_utils import get_logger
from biosync.models import Document
from biosync.schemas import document_to_wire, parse_document

logger = get_logger(__name__)


@dataclass(frozen=True)
class BackupSnapshot:
    document: Document
    snapshot_time: int

    def to_wire(self) -> Dict[str, Any]:
        return {"document": document_to_wire(self.document), "snapshotTime": int(self.snapshot_time)}

    @classmethod
    def from_wire(cls, payload: Optional[Dict[str, Any]]) -> Optional["BackupSnapshot"]:
        if not payload:
            return None
        snapshot_time = payload.get("snapshotTime")
        if not isinstance(snapshot_time, int) or isinstance(snapshot_time, bool):
            return None
        document = parse_document(payload.get("document"), source="backup snapshot")
        if document is None:
            return None
        return cls(document=document, snapshot_time=snapshot_time)


def should_restore(
    candidate: Document,
    backup: Optional[BackupSnapshot],
    now: int,
    *,
    reset_revision: Optional[int] = None,
) -> bool:
    """
    True when the backup holds strictly more events than the candidate and
    is younger than the staleness window.

    Args:
        candidate: Merged document about to become authoritative
        backup: Latest snapshot (None = nothing to compare)
        now: Current epoch ms
        reset_revision: documentRevisionTime of an honoured remote reset;
            then only backup events newer than it justify a restore
    """
    if backup is None:
        return False
    if backup.document.event_count <= candidate.event_count:
        return False
    age = now - backup.snapshot_time
    if age > int(runtime_config.get_effective("backup_max_age_ms")):
        return False
    if reset_revision is not None:
        return any(e.timestamp > reset_revision for e in backup.document.events)
    return True


def restore(backup: BackupSnapshot) -> Document:
    """Document held by a snapshot, without snapshot metadata."""
    return backup.document


def restore_onto(
    candidate: Document,
    backup: BackupSnapshot,
    *,
    reset_revision: Optional[int] = None,
) -> Document:
    """
    Put the snapshot's history back into the candidate.

    Settings, revision stamps and profile start stay with the candidate
    (they went through the normal merge rules); only events and the
    monotonic record are recovered.
    """
    restored = restore(backup)
    events = restored.events
    if reset_revision is not None:
        events = tuple(e for e in events if e.timestamp > reset_revision)
    longest = candidate.profile.longest_abstention_hours
    if reset_revision is None:
        longest = max(longest, restored.profile.longest_abstention_hours)
    return replace(
        candidate,
        events=union(candidate.events, events),
        profile=replace(candidate.profile, longest_abstention_hours=longest),
    )


class BackupGuard:
    """Snapshot storage plus the post-merge check, bound to one LocalCache."""

    def __init__(self, cache: LocalCache, clock: Callable[[], int] = now_ms):
        self.cache = cache
        self._clock = clock

    async def snapshot(self, document: Document) -> Optional[BackupSnapshot]:
        """Store a snapshot if the log is non-empty. Returns it, or None if skipped."""
        if not document.events:
            return None
        snap = BackupSnapshot(document=document, snapshot_time=self._clock())
        if not await self.cache.save_backup_raw(snap.to_wire()):
            logger.error(f"Backup snapshot write failed for {self.cache.namespace}")
            return None
        return snap

    async def load(self) -> Optional[BackupSnapshot]:
        return BackupSnapshot.from_wire(await self.cache.load_backup_raw())

    async def clear(self) -> None:
        await self.cache.delete_backup()

    def check(
        self,
        candidate: Document,
        backup: Optional[BackupSnapshot],
        *,
        now: Optional[int] = None,
        reset_revision: Optional[int] = None,
    ) -> Optional[Document]:
        """
        Returns the repaired document when a restore is warranted, else None.
        """
        now = self._clock() if now is None else now
        if not should_restore(candidate, backup, now, reset_revision=reset_revision):
            return None
        repaired = restore_onto(candidate, backup, reset_revision=reset_revision)
        logger.warning(
            f"Backup guard restored history for {self.cache.namespace}: "
            f"{candidate.event_count} -> {repaired.event_count} events "
            f"(snapshot has {backup.document.event_count})"
        )
        return repaired
