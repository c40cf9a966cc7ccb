"""
In-process remote replica.

InMemoryRemoteStore plays the role of the networked document store; any
number of InMemoryReplica connectors (one per simulated device/session) can
share it. Each connector has its own connectivity switch: going offline
makes its calls raise RemoteUnavailableError and drops its subscriptions,
like a lost network connection.

Change notifications are delivered asynchronously through a per-subscriber
queue, so a write never re-enters the writer's own callback synchronously.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Dict, List, Optional

from biosync.errors import RemoteUnavailableError
from biosync.logging_utils import get_logger
from biosync.models import Document
from biosync.schemas import dumps_document

from .base import RemoteReplica, SnapshotCallback, Subscription

logger = get_logger(__name__)


class _Subscriber:
    def __init__(self, replica: "InMemoryReplica", callback: SnapshotCallback):
        self.replica = replica
        self.callback = callback
        self.queue: asyncio.Queue = asyncio.Queue()
        self.pending = 0
        self.subscription: Optional[Subscription] = None
        self.task = asyncio.create_task(self._drain())

    async def _drain(self) -> None:
        while True:
            raw = await self.queue.get()
            try:
                await self.callback(self.replica._decode(raw))
            except Exception as e:
                logger.error(f"Snapshot callback failed: {e}", exc_info=True)
            finally:
                self.pending -= 1
                self.queue.task_done()

    async def stop(self) -> None:
        self.task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self.task


class InMemoryRemoteStore:
    """Shared document store keyed by replica path."""

    def __init__(self):
        self._documents: Dict[str, str] = {}
        self._subscribers: Dict[str, List[_Subscriber]] = {}
        self.write_count = 0

    def get_raw(self, path: str) -> Optional[str]:
        return self._documents.get(path)

    def put_raw(self, path: str, raw: str) -> None:
        """Store a payload as-is (tests use this to plant malformed data)."""
        self._documents[path] = raw
        self.write_count += 1
        for subscriber in list(self._subscribers.get(path, [])):
            subscriber.pending += 1
            subscriber.queue.put_nowait(raw)

    def delete(self, path: str) -> None:
        self._documents.pop(path, None)

    def _add(self, path: str, subscriber: _Subscriber) -> None:
        self._subscribers.setdefault(path, []).append(subscriber)

    def _remove(self, path: str, subscriber: _Subscriber) -> None:
        subscribers = self._subscribers.get(path, [])
        if subscriber in subscribers:
            subscribers.remove(subscriber)

    def subscriber_count(self, path: str) -> int:
        return len(self._subscribers.get(path, []))

    async def wait_idle(self, timeout: float = 5.0) -> None:
        """
        Wait until every queued notification has been handled, including
        notifications caused by writes made from inside callbacks.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while any(
            subscriber.pending
            for subscribers in self._subscribers.values()
            for subscriber in subscribers
        ):
            if loop.time() > deadline:
                raise asyncio.TimeoutError("Notifications still pending")
            await asyncio.sleep(0.001)


class InMemoryReplica(RemoteReplica):
    """Connector to an InMemoryRemoteStore with a connectivity switch."""

    backend = "memory"

    def __init__(self, owner_id: str, store: InMemoryRemoteStore, app_id: Optional[str] = None):
        super().__init__(owner_id, app_id)
        self.store = store
        self.online = True
        self._subscribers: List[_Subscriber] = []

    def _check_online(self) -> None:
        if not self.online:
            raise RemoteUnavailableError("Network unavailable")

    async def set_online(self, online: bool) -> None:
        """Flip connectivity. Going offline drops live subscriptions."""
        self.online = online
        if not online:
            for subscriber in list(self._subscribers):
                if subscriber.subscription is not None:
                    subscriber.subscription.mark_lost()
                await self._detach(subscriber)

    async def _detach(self, subscriber: _Subscriber) -> None:
        self.store._remove(self.path, subscriber)
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)
        await subscriber.stop()

    async def read(self) -> Optional[Document]:
        self._check_online()
        await asyncio.sleep(0)
        return self._decode(self.store.get_raw(self.path))

    async def write(self, document: Document) -> None:
        self._check_online()
        await asyncio.sleep(0)
        self.store.put_raw(self.path, dumps_document(document))

    async def subscribe(self, callback: SnapshotCallback) -> Subscription:
        self._check_online()
        current = self._decode(self.store.get_raw(self.path))
        subscriber = _Subscriber(self, callback)
        self.store._add(self.path, subscriber)
        self._subscribers.append(subscriber)

        async def _close() -> None:
            await self._detach(subscriber)

        subscription = Subscription(_close)
        subscriber.subscription = subscription
        await callback(current)
        return subscription
