"""
Local Cache: durable on-device mirror of the full document.

Architecture:
- KeyValueStore: SQLite file with a single key/value table (WAL mode),
  survives process restarts, safe across processes via SQLite locking
- LocalCache: async facade bound to one account namespace; the document
  lives under "<namespace>:document" and the Backup Guard snapshot under
  "<namespace>:backup"

A value that fails to parse loads as None ("absent") so the caller can fall
back to defaults.
"""

import asyncio
import json
import os
import sqlite3
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from config.sync_config import config
from biosync.clock import now_ms
from biosync.logging_utils import get_logger
from biosync.models import Document
from biosync.schemas import dumps_document, parse_document

logger = get_logger(__name__)

# Set BIOSYNC_CACHE_PATH to override
DEFAULT_CACHE_PATH = Path(
    os.getenv(
        "BIOSYNC_CACHE_PATH",
        str(Path(__file__).parent.parent / "data" / "biosync.db")
    )
)

DOCUMENT_SUFFIX = "document"
BACKUP_SUFFIX = "backup"


class KeyValueStore:
    """
    SQLite-backed persistent key/value store.

    Thread-safe and process-safe via SQLite's built-in locking.
    Uses WAL mode for better concurrent access.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path = None):
        self.db_path = Path(db_path) if db_path else DEFAULT_CACHE_PATH
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a new connection (thread-safe pattern)."""
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=30000")
        # Durability matters more than throughput here
        conn.execute("PRAGMA synchronous=FULL")
        return conn

    def _init_schema(self) -> None:
        """Initialize database schema."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS schema_version (
                    name TEXT PRIMARY KEY,
                    version INTEGER NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv_store (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                INSERT OR REPLACE INTO schema_version (name, version)
                VALUES ('kv_store', ?)
            """, (self.SCHEMA_VERSION,))
            conn.commit()

    def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None if missing or unreadable."""
        try:
            with self._get_connection() as conn:
                row = conn.execute(
                    "SELECT value FROM kv_store WHERE key = ?", (key,)
                ).fetchone()
                return row["value"] if row else None
        except sqlite3.Error as e:
            logger.error(f"Failed to read {key}: {e}", exc_info=True)
            return None

    def set(self, key: str, value: str) -> bool:
        """
        Store a value (insert or replace).

        Returns:
            True if successful
        """
        try:
            with self._get_connection() as conn:
                conn.execute("""
                    INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                """, (key, value, datetime.now().isoformat()))
                conn.commit()
                return True
        except sqlite3.Error as e:
            logger.error(f"Failed to write {key}: {e}", exc_info=True)
            return False

    def delete(self, key: str) -> bool:
        """Returns True if a row was removed."""
        try:
            with self._get_connection() as conn:
                cursor = conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
                conn.commit()
                return cursor.rowcount > 0
        except sqlite3.Error as e:
            logger.error(f"Failed to delete {key}: {e}", exc_info=True)
            return False

    def keys(self, prefix: str = "") -> List[str]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT key FROM kv_store WHERE key LIKE ? ESCAPE '\\' ORDER BY key",
                (prefix.replace("%", r"\%").replace("_", r"\_") + "%",),
            ).fetchall()
        return [row["key"] for row in rows]


def cache_namespace(owner_id: Optional[str], app_id: Optional[str] = None) -> str:
    """Namespace for one account on this device."""
    return f"{config.CACHE_NAMESPACE}:{app_id or config.APP_ID}:{owner_id or 'anonymous'}"


class LocalCache:
    """
    Async access to one account's cached document and backup snapshot.

    Blocking SQLite calls run in the default executor.
    """

    def __init__(
        self,
        store: KeyValueStore,
        namespace: str,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.namespace = namespace
        self._clock = clock

    @property
    def document_key(self) -> str:
        return f"{self.namespace}:{DOCUMENT_SUFFIX}"

    @property
    def backup_key(self) -> str:
        return f"{self.namespace}:{BACKUP_SUFFIX}"

    async def _run(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: fn(*args))

    async def load(self) -> Optional[Document]:
        """
        Load the cached document.

        Returns:
            Document, or None when missing or corrupt (never raises)
        """
        raw = await self._run(self.store.get, self.document_key)
        if raw is None:
            return None
        document = parse_document(raw, source=f"cache {self.namespace}")
        if document is None:
            logger.warning(f"Cached document for {self.namespace} is corrupt - falling back to defaults")
        return document

    async def save(self, document: Document, bump_revision: bool = False) -> Document:
        """
        Persist a document.

        Args:
            document: Document to store
            bump_revision: Stamp documentRevisionTime with the current time
                first. False for passive writes (recompute, merge results)
                that must not look like new user intent.

        Returns:
            The document as persisted (with the bumped revision if requested)
        """
        if bump_revision:
            document = replace(document, document_revision_time=self._clock())
        ok = await self._run(self.store.set, self.document_key, dumps_document(document))
        if not ok:
            # In-memory copy stays authoritative; the next save retries
            logger.error(f"Local cache write failed for {self.namespace}")
        return document

    async def clear(self) -> None:
        await self._run(self.store.delete, self.document_key)
        await self._run(self.store.delete, self.backup_key)

    # Raw access for the Backup Guard

    async def load_backup_raw(self) -> Optional[Dict[str, Any]]:
        raw = await self._run(self.store.get, self.backup_key)
        if raw is None:
            return None
        try:
            value = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"Backup snapshot for {self.namespace} is corrupt: {e}")
            return None
        return value if isinstance(value, dict) else None

    async def save_backup_raw(self, payload: Dict[str, Any]) -> bool:
        return await self._run(self.store.set, self.backup_key, json.dumps(payload, ensure_ascii=False))

    async def delete_backup(self) -> bool:
        return await self._run(self.store.delete, self.backup_key)
