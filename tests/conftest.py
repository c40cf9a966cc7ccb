"""
Pytest configuration and fixtures for biosync tests.
"""
import sys
import warnings
from datetime import timezone
from pathlib import Path

import pytest
import pytest_asyncio

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from biosync import runtime_config
from biosync.backup_guard import BackupGuard
from biosync.local_cache import KeyValueStore, LocalCache, cache_namespace
from biosync.replica.memory_replica import InMemoryRemoteStore, InMemoryReplica
from biosync.replica.redis_client import reset_redis_state
from biosync.session import SyncSession

warnings.filterwarnings("ignore", category=ResourceWarning)

# 2023-11-14T22:13:20Z
T0 = 1_700_000_000_000


def pytest_configure(config):
    """Configure pytest to filter ResourceWarnings from SQLite."""
    warnings.filterwarnings(
        "ignore",
        message="unclosed database",
        category=ResourceWarning
    )


class FakeClock:
    """Manually advanced epoch-ms clock."""

    def __init__(self, start: int = T0):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


@pytest.fixture(autouse=True)
def _clean_runtime_state():
    """Runtime tuning overrides and the shared redis client are process-global."""
    runtime_config.clear_overrides()
    reset_redis_state()
    yield
    runtime_config.clear_overrides()
    reset_redis_state()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def kv_store(tmp_path):
    return KeyValueStore(tmp_path / "biosync.db")


@pytest.fixture
def local_cache(kv_store, clock):
    return LocalCache(kv_store, cache_namespace("user-a"), clock=clock)


@pytest.fixture
def backup_guard(local_cache, clock):
    return BackupGuard(local_cache, clock=clock)


@pytest.fixture
def remote_store():
    return InMemoryRemoteStore()


@pytest_asyncio.fixture
async def make_session(tmp_path, remote_store):
    """
    Factory for sessions sharing one remote store. Each call simulates a
    separate device: its own SQLite file, its own clock, its own connector.

    Usage:
        session, replica, clock = make_session("user-a")
        await session.start()
    """
    created = []

    def _make(owner_id: str = "user-a", device: str = None, clock: FakeClock = None):
        device = device or f"device{len(created)}"
        clock = clock or FakeClock()
        store = KeyValueStore(tmp_path / f"{device}.db")
        cache = LocalCache(store, cache_namespace(owner_id), clock=clock)
        replica = InMemoryReplica(owner_id, remote_store)
        session = SyncSession(owner_id, cache, replica, clock=clock, tz=timezone.utc)
        created.append(session)
        return session, replica, clock

    yield _make

    for session in created:
        await session.close()
