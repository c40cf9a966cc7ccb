"""
SyncSession: the per-account context object.

Owns the in-memory Document, the LocalCache, the BackupGuard and the remote
subscription for exactly one account. Construct one per account session and
close() it on account switch; nothing here is module-global.

Scheduling model: single event loop, cooperative. Every mutation of the
in-memory document happens between awaits, so the only races are logical
ones (a stale remote snapshot arriving after a local mutation). Those are
settled by reconcile()'s revision rules, and by re-reading self._document
after every await instead of trusting a value read before it.

Flows:
    user action   -> new Document -> LocalCache.save(bump) -> backup snapshot
                  -> listeners -> dirty (pushed by the scheduler)
    remote change -> reconcile(local, remote) -> BackupGuard.check
                  -> LocalCache.save(no bump) -> listeners -> push if needed
"""

from dataclasses import replace
from datetime import tzinfo
from typing import Any, Callable, Dict, List, Optional, Set, Tuple, Union

from biosync.backup_guard import BackupGuard, BackupSnapshot
from biosync.bio_core import BioState, compute_state
from biosync.clock import now_ms
from biosync.errors import RemoteUnavailableError, ResetNotConfirmedError, SessionClosedError
from biosync.event_log import append, remove_last
from biosync.local_cache import LocalCache
from biosync.logging_utils import get_logger
from biosync.models import Document, EventKind, LoggedEvent, Settings, default_document
from biosync.reconcile import reconcile
from biosync.replica.base import RemoteReplica, Subscription
from biosync.stats import DailyStats, compute_daily_stats

logger = get_logger(__name__)

StateListener = Callable[[Document], None]


class SyncSession:
    """
    Offline-first sync session for one account.

    Upstream API: current_state(), log_event(), undo_last(), save_settings(),
    reset_all(), derive_metrics(), daily_stats(), on_state_changed().
    """

    def __init__(
        self,
        owner_id: str,
        cache: LocalCache,
        replica: RemoteReplica,
        *,
        clock: Callable[[], int] = now_ms,
        backup_guard: Optional[BackupGuard] = None,
        tz: Optional[tzinfo] = None,
    ):
        self.owner_id = owner_id
        self.cache = cache
        self.replica = replica
        self.backup_guard = backup_guard or BackupGuard(cache, clock=clock)
        self._clock = clock
        self._tz = tz

        self._document: Optional[Document] = None
        self._listeners: List[StateListener] = []
        self._subscription: Optional[Subscription] = None
        # Bumped whenever a subscription is torn down; late callbacks carrying
        # an older generation are discarded
        self._generation = 0
        self._dirty = False
        # Timestamps undone locally that the remote may still hold
        self._retracted: Set[int] = set()
        # Local reset not yet written to the remote
        self._pending_reset = False
        self._closed = False

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> Document:
        """
        Load the cached document (or create the default one) and subscribe
        to the remote replica. A failed subscribe is logged; call
        ensure_subscribed() when connectivity returns.
        """
        self._ensure_open()
        document = await self.cache.load()
        if document is None:
            document = default_document(self._clock(), owner_id=self.owner_id, tz=self._tz)
            document = await self.cache.save(document, bump_revision=False)
            logger.info(f"Created default document for {self.owner_id[:8]}...")
        else:
            document = document.with_owner(self.owner_id)
        self._document = document
        # Whatever the last run left behind may never have reached the remote
        self._dirty = True
        self._notify()
        await self.ensure_subscribed()
        return document

    async def ensure_subscribed(self) -> bool:
        """(Re)open the remote subscription if there is no live one."""
        self._ensure_open()
        if self._subscription is not None and self._subscription.active:
            return True

        self._generation += 1
        generation = self._generation

        async def _on_snapshot(remote: Optional[Document]) -> None:
            await self._on_remote(generation, remote)

        try:
            self._subscription = await self.replica.subscribe(_on_snapshot)
        except RemoteUnavailableError as e:
            logger.warning(f"Subscribe failed for {self.owner_id[:8]}...: {e} - will retry")
            self._subscription = None
            return False
        logger.debug(f"Subscribed to {self.replica.path}")
        return True

    @property
    def subscribed(self) -> bool:
        return self._subscription is not None and self._subscription.active

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        """Tear down the subscription. Late callbacks are discarded."""
        if self._closed:
            return
        self._closed = True
        await self._teardown_subscription()
        self._listeners.clear()
        logger.debug(f"Session closed for {self.owner_id[:8]}...")

    async def _teardown_subscription(self) -> None:
        self._generation += 1
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await subscription.close()

    def _ensure_open(self) -> None:
        if self._closed:
            raise SessionClosedError(f"Session for {self.owner_id[:8]}... is closed")

    def _require_document(self) -> Document:
        self._ensure_open()
        if self._document is None:
            raise SessionClosedError("Session not started")
        return self._document

    # =========================================================================
    # READ API
    # =========================================================================

    def current_state(self) -> Document:
        return self._require_document()

    def derive_metrics(self, now: Optional[int] = None) -> BioState:
        document = self._require_document()
        now = self._clock() if now is None else now
        return compute_state(document.events, document.profile.profile_start_time, now)

    def daily_stats(self, now: Optional[int] = None) -> DailyStats:
        document = self._require_document()
        now = self._clock() if now is None else now
        return compute_daily_stats(document, now, self._tz)

    def on_state_changed(self, callback: StateListener) -> Callable[[], None]:
        """
        Register a listener fired after every local mutation or
        reconciliation that changed the document. Returns an unsubscribe
        callable.
        """
        self._listeners.append(callback)

        def _unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _unsubscribe

    def _notify(self) -> None:
        document = self._document
        for listener in list(self._listeners):
            try:
                listener(document)
            except Exception as e:
                logger.error(f"State listener failed: {e}", exc_info=True)

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    async def _commit_mutation(self, document: Document) -> Document:
        """Persist a user mutation (revision bump) and mark it for push."""
        # Stamp before any await so a concurrent merge sees the bumped revision
        document = replace(document, document_revision_time=self._clock())
        self._document = document
        self._dirty = True
        await self.cache.save(document)
        current = self._document
        if current.events:
            await self.backup_guard.snapshot(current)
        else:
            await self.backup_guard.clear()
        self._notify()
        return document

    async def log_event(self, kind: EventKind = EventKind.NORMAL) -> Optional[LoggedEvent]:
        """
        Append an event stamped now.

        Returns:
            The event, or None if an event with the same timestamp exists
        """
        document = self._require_document()
        event = LoggedEvent(timestamp=self._clock(), kind=kind)
        events = append(document.events, event)
        if events is document.events:
            logger.debug(f"Event at {event.timestamp} already logged - ignored")
            return None
        self._retracted.discard(event.timestamp)
        await self._commit_mutation(replace(document, events=events))
        logger.info(f"Logged {kind.value} event at {event.timestamp}")
        return event

    async def undo_last(self) -> Optional[LoggedEvent]:
        """
        Remove the most recent event.

        Returns:
            The removed event, or None if the log was empty
        """
        document = self._require_document()
        events, removed = remove_last(document.events)
        if removed is None:
            return None
        self._retracted.add(removed.timestamp)
        await self._commit_mutation(replace(document, events=events))
        logger.info(f"Undid event at {removed.timestamp}")
        return removed

    async def save_settings(self, settings: Union[Settings, Dict[str, Any]]) -> Settings:
        """
        Replace the settings wholesale (explicit user save).

        Args:
            settings: Settings instance or a dict in wire or field-name form

        Raises:
            pydantic.ValidationError: invalid values
        """
        document = self._require_document()
        if not isinstance(settings, Settings):
            settings = Settings.model_validate(settings)
        now = self._clock()
        await self._commit_mutation(
            replace(document, settings=settings, settings_revision_time=now)
        )
        logger.info("Settings saved")
        return settings

    async def reset_all(self, confirm: bool = False) -> Document:
        """
        Wipe all history and settings, locally and remotely.

        Args:
            confirm: Must be True; the caller is responsible for asking the user

        Raises:
            ResetNotConfirmedError: confirm was not given
        """
        self._require_document()
        if not confirm:
            raise ResetNotConfirmedError("Reset requires explicit confirmation")

        await self._teardown_subscription()

        now = self._clock()
        fresh = default_document(now, owner_id=self.owner_id, revision_time=now, tz=self._tz)
        self._document = fresh
        self._retracted.clear()
        self._pending_reset = True
        self._dirty = True
        await self.backup_guard.clear()
        await self.cache.save(fresh, bump_revision=False)
        self._notify()
        logger.warning(f"All data reset for {self.owner_id[:8]}...")

        await self._write_pending_reset()
        await self.ensure_subscribed()
        return fresh

    async def _write_pending_reset(self) -> bool:
        document = self._document
        try:
            await self.replica.write(document)
        except RemoteUnavailableError as e:
            logger.warning(f"Reset not yet propagated to remote: {e} - will retry")
            return False
        self._pending_reset = False
        if self._document is document:
            self._dirty = False
        return True

    # =========================================================================
    # RECONCILIATION
    # =========================================================================

    def _merge_remote(
        self,
        remote: Optional[Document],
        backup: Optional[BackupSnapshot],
    ) -> Tuple[Document, bool, bool, frozenset]:
        """
        Synchronous core shared by inbound snapshots and pushes: merge,
        then run the backup guard. No await between reading and replacing
        the in-memory document.

        Returns:
            (merged, push_needed, reset_honored, retracted_used)
        """
        local = self._document
        retracted = frozenset(self._retracted)
        result = reconcile(local, remote, retracted=retracted)
        merged = result.document
        push = result.push_remote

        reset_revision = remote.document_revision_time if result.reset_honored else None
        repaired = self.backup_guard.check(
            merged, backup, now=self._clock(), reset_revision=reset_revision
        )
        if repaired is not None:
            merged = repaired
            push = True

        self._document = merged
        return merged, push, result.reset_honored, retracted

    async def _persist_merge(self, previous: Document, merged: Document, reset_honored: bool) -> None:
        if reset_honored:
            self._retracted.clear()
            await self.backup_guard.clear()
        if merged == previous:
            return
        await self.cache.save(merged, bump_revision=False)
        if merged.events:
            await self.backup_guard.snapshot(merged)
        self._notify()

    async def _on_remote(self, generation: int, remote: Optional[Document]) -> None:
        if self._closed or generation != self._generation:
            logger.debug("Discarding snapshot from a torn-down subscription")
            return
        if self._pending_reset:
            logger.debug("Local reset pending - ignoring remote snapshot")
            return
        if self._document is None:
            return

        backup = await self.backup_guard.load()
        # Re-validate after the await
        if self._closed or generation != self._generation or self._pending_reset:
            return

        previous = self._document
        merged, push, reset_honored, _ = self._merge_remote(remote, backup)
        await self._persist_merge(previous, merged, reset_honored)

        if push:
            self._dirty = True
            await self.push()

    async def push(self, force: bool = False) -> bool:
        """
        Reconciliation-aware push: read the remote, merge, write the merged
        document if the remote lacks anything.

        Args:
            force: Push even if nothing changed locally since the last push

        Returns:
            True if the remote is known to be up to date afterwards
        """
        if self._closed or self._document is None:
            return False
        if not self._dirty and not force:
            return True

        if self._pending_reset:
            return await self._write_pending_reset()

        try:
            remote = await self.replica.read()
        except RemoteUnavailableError as e:
            logger.warning(f"Push skipped, remote unavailable: {e}")
            return False
        backup = await self.backup_guard.load()
        if self._closed or self._pending_reset:
            return False

        previous = self._document
        merged, push, reset_honored, retracted = self._merge_remote(remote, backup)
        await self._persist_merge(previous, merged, reset_honored)

        if push:
            try:
                await self.replica.write(merged)
            except RemoteUnavailableError as e:
                logger.warning(f"Push failed, remote unavailable: {e}")
                self._dirty = True
                return False
            logger.debug(f"Pushed {merged.event_count} events for {self.owner_id[:8]}...")

        # Written (or already present remotely): retractions are settled
        self._retracted -= retracted
        if self._document is merged:
            self._dirty = False
        return True

    # =========================================================================
    # PASSIVE RECOMPUTE
    # =========================================================================

    async def tick(self, now: Optional[int] = None) -> BioState:
        """
        Recompute derived state and raise the longest-abstention record if
        the replay shows a longer gap. Passive write: no revision bump.
        """
        document = self._require_document()
        now = self._clock() if now is None else now
        state = compute_state(document.events, document.profile.profile_start_time, now)

        hours = state.longest_abstention_hours
        if hours > document.profile.longest_abstention_hours:
            updated = replace(
                document,
                profile=replace(document.profile, longest_abstention_hours=hours),
            )
            self._document = updated
            self._dirty = True
            await self.cache.save(updated, bump_revision=False)
            self._notify()
        return state
