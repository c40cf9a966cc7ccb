"""
Remote Replica Connectors

Usage:
    from biosync.replica import get_replica

    replica = get_replica(owner_id)
    document = await replica.read()
    await replica.write(document)
    subscription = await replica.subscribe(on_snapshot)
    ...
    await subscription.close()

Configuration (environment variables):
    BIOSYNC_REMOTE=redis|memory|offline  (default: redis)
"""

from __future__ import annotations

import os
from typing import Optional

from .base import RemoteReplica, Subscription, remote_path
from .memory_replica import InMemoryRemoteStore, InMemoryReplica
from .offline_replica import OfflineReplica
from .redis_replica import RedisReplica

# Process-wide store backing BIOSYNC_REMOTE=memory
_memory_store: Optional[InMemoryRemoteStore] = None


def get_memory_store() -> InMemoryRemoteStore:
    global _memory_store
    if _memory_store is None:
        _memory_store = InMemoryRemoteStore()
    return _memory_store


def get_replica(owner_id: str, backend: Optional[str] = None, app_id: Optional[str] = None) -> RemoteReplica:
    """
    Build the configured replica connector for one account.

    Backend selection:
    - redis (default): RedisReplica on the shared client
    - memory: InMemoryReplica on the process-wide store
    - offline: OfflineReplica (local-only operation)
    """
    backend = (backend or os.environ.get("BIOSYNC_REMOTE", "redis")).lower()

    if backend == "redis":
        return RedisReplica(owner_id, app_id=app_id)
    if backend == "memory":
        return InMemoryReplica(owner_id, get_memory_store(), app_id=app_id)
    if backend == "offline":
        return OfflineReplica(owner_id, app_id=app_id)
    raise ValueError(f"Unknown BIOSYNC_REMOTE: {backend}. Use: redis, memory, offline")


__all__ = [
    "get_replica",
    "get_memory_store",
    "RemoteReplica",
    "Subscription",
    "remote_path",
    "RedisReplica",
    "InMemoryReplica",
    "InMemoryRemoteStore",
    "OfflineReplica",
]
