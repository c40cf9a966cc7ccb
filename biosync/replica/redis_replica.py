"""
Redis-backed remote replica.

Redis keys:
- replica:{path} -> JSON document (full overwrite on every write)
- replica:{path}:changes -> pub/sub channel; every write publishes the
  written payload so subscribers (including the writer) see the change

Uses the shared client from redis_client.get_redis() unless a client is
injected (tests inject fakeredis).
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any, Dict, Optional

from redis.exceptions import RedisError

from biosync.errors import RemoteUnavailableError
from biosync.logging_utils import get_logger
from biosync.models import Document
from biosync.schemas import dumps_document

from .base import RemoteReplica, SnapshotCallback, Subscription
from .redis_client import get_redis

logger = get_logger(__name__)

REPLICA_PREFIX = "replica:"
CHANNEL_SUFFIX = ":changes"

# How long one pub/sub poll waits before looping
POLL_TIMEOUT_SECONDS = 1.0


class RedisReplica(RemoteReplica):
    """Remote replica stored in Redis with pub/sub change notification."""

    backend = "redis"

    def __init__(self, owner_id: str, app_id: Optional[str] = None, client: Optional[Any] = None):
        super().__init__(owner_id, app_id)
        self._client = client

    @property
    def key(self) -> str:
        return f"{REPLICA_PREFIX}{self.path}"

    @property
    def channel(self) -> str:
        return f"{self.key}{CHANNEL_SUFFIX}"

    async def _redis(self) -> Any:
        client = self._client if self._client is not None else await get_redis()
        if client is None:
            raise RemoteUnavailableError("Redis unavailable")
        return client

    async def read(self) -> Optional[Document]:
        client = await self._redis()
        try:
            raw = await client.get(self.key)
        except (RedisError, OSError) as e:
            raise RemoteUnavailableError(f"Remote read failed: {e}") from e
        return self._decode(raw)

    async def write(self, document: Document) -> None:
        client = await self._redis()
        payload = dumps_document(document)
        try:
            await client.set(self.key, payload)
            await client.publish(self.channel, payload)
        except (RedisError, OSError) as e:
            raise RemoteUnavailableError(f"Remote write failed: {e}") from e
        logger.debug(f"Remote written: {self.owner_id[:8]}... ({document.event_count} events)")

    async def subscribe(self, callback: SnapshotCallback) -> Subscription:
        client = await self._redis()
        pubsub = client.pubsub()
        try:
            # Subscribe before the initial read so no write slips between them
            await pubsub.subscribe(self.channel)
            current = self._decode(await client.get(self.key))
        except (RedisError, OSError) as e:
            await pubsub.aclose()
            raise RemoteUnavailableError(f"Remote subscribe failed: {e}") from e

        task: Optional[asyncio.Task] = None

        async def _close() -> None:
            if task is not None:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
            await self._release(pubsub, unsubscribe=True)

        subscription = Subscription(_close)
        try:
            await callback(current)
        except Exception as e:
            logger.error(f"Initial snapshot callback failed: {e}", exc_info=True)
        task = asyncio.create_task(self._listen(pubsub, callback, subscription))
        return subscription

    async def _listen(self, pubsub: Any, callback: SnapshotCallback, subscription: Subscription) -> None:
        while subscription.active:
            try:
                message = await pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=POLL_TIMEOUT_SECONDS
                )
            except (RedisError, OSError) as e:
                logger.warning(f"Subscription lost for {self.owner_id[:8]}...: {e}")
                subscription.mark_lost()
                # close() is a no-op once lost
                await self._release(pubsub)
                return
            if message is None or message.get("type") != "message":
                continue
            try:
                await callback(self._decode(message.get("data")))
            except Exception as e:
                logger.error(f"Snapshot callback failed: {e}", exc_info=True)

    async def _release(self, pubsub: Any, unsubscribe: bool = False) -> None:
        if unsubscribe:
            try:
                await pubsub.unsubscribe(self.channel)
            except (RedisError, OSError) as e:
                logger.debug(f"Pub/sub unsubscribe failed: {e}")
        try:
            await pubsub.aclose()
        except (RedisError, OSError) as e:
            logger.debug(f"Pub/sub close failed: {e}")

    async def health_check(self) -> Dict[str, Any]:
        try:
            client = await self._redis()
            await client.ping()
        except (RemoteUnavailableError, RedisError, OSError) as e:
            return {"backend": self.backend, "path": self.path, "status": "error", "error": str(e)}
        return {"backend": self.backend, "path": self.path, "status": "healthy"}
