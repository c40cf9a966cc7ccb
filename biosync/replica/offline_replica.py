"""
Replica for offline-only operation: every call is a retryable failure, so
the session keeps working against the local cache and logs the misses.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from biosync.errors import RemoteUnavailableError
from biosync.models import Document

from .base import RemoteReplica, SnapshotCallback, Subscription


class OfflineReplica(RemoteReplica):

    backend = "offline"

    async def read(self) -> Optional[Document]:
        raise RemoteUnavailableError("Offline mode")

    async def write(self, document: Document) -> None:
        raise RemoteUnavailableError("Offline mode")

    async def subscribe(self, callback: SnapshotCallback) -> Subscription:
        raise RemoteUnavailableError("Offline mode")

    async def health_check(self) -> Dict[str, Any]:
        return {"backend": self.backend, "path": self.path, "status": "offline"}
