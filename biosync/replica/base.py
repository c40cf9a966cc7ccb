"""
Abstract Base Class for Remote Replica Connectors

One document per account at a stable path derived from the application id
and the account id. Full-document semantics only: write() overwrites,
there are no field-level updates.

Connectivity failures surface as RemoteUnavailableError (retryable). A
payload that does not parse is reported as None ("absent").
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional

from config.sync_config import config
from biosync.logging_utils import get_logger
from biosync.models import Document
from biosync.schemas import parse_document

logger = get_logger(__name__)

SnapshotCallback = Callable[[Optional[Document]], Awaitable[None]]


def remote_path(owner_id: str, app_id: Optional[str] = None) -> str:
    """Stable document path for one account."""
    return f"artifacts/{app_id or config.APP_ID}/users/{owner_id}/habitData/data"


class Subscription:
    """
    Handle for a live subscription. close() must be awaited before a new
    subscription is opened for another account.
    """

    def __init__(self, closer: Callable[[], Awaitable[None]]):
        self._closer = closer
        self.active = True

    async def close(self) -> None:
        if not self.active:
            return
        self.active = False
        await self._closer()

    def mark_lost(self) -> None:
        """Connection dropped underneath the subscription."""
        self.active = False


class RemoteReplica(ABC):
    """
    Abstract base class for remote replica connectors.

    All methods are async; every network touch point may suspend.
    """

    backend = "abstract"

    def __init__(self, owner_id: str, app_id: Optional[str] = None):
        self.owner_id = owner_id
        self.app_id = app_id or config.APP_ID
        self.path = remote_path(owner_id, self.app_id)

    @abstractmethod
    async def read(self) -> Optional[Document]:
        """Point read. None when no document exists (or it is malformed)."""
        pass

    @abstractmethod
    async def write(self, document: Document) -> None:
        """Full-document overwrite (last writer wins at the storage layer)."""
        pass

    @abstractmethod
    async def subscribe(self, callback: SnapshotCallback) -> Subscription:
        """
        Invoke callback(document | None) once with the current state, then
        again on every change, including changes made by this connector's
        own writes.
        """
        pass

    async def health_check(self) -> Dict[str, Any]:
        return {"backend": self.backend, "path": self.path}

    def _decode(self, raw: Any) -> Optional[Document]:
        return parse_document(raw, source=f"remote {self.path}")
