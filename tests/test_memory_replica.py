"""
Tests for biosync/replica/memory_replica.py, offline_replica.py and the
get_replica() factory.
"""

import asyncio
import sys
from dataclasses import replace
from pathlib import Path
from unittest.mock import patch

import pytest

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from biosync.errors import RemoteUnavailableError
from biosync.models import LoggedEvent, default_document
from biosync.replica import (
    InMemoryReplica,
    OfflineReplica,
    RedisReplica,
    get_memory_store,
    get_replica,
    remote_path,
)
from biosync.replica.memory_replica import InMemoryRemoteStore

T0 = 1_700_000_000_000


def make_doc(*stamps):
    return replace(
        default_document(T0),
        events=tuple(LoggedEvent(ts) for ts in stamps),
        document_revision_time=T0,
    )


class Recorder:
    """Async snapshot callback that records what it saw."""

    def __init__(self):
        self.snapshots = []

    async def __call__(self, document):
        self.snapshots.append(document)


# ============================================================================
# Paths and factory
# ============================================================================

class TestFactory:

    def test_remote_path(self):
        assert remote_path("u1", "app") == "artifacts/app/users/u1/habitData/data"

    def test_memory_backend(self):
        replica = get_replica("u1", backend="memory")
        assert isinstance(replica, InMemoryReplica)
        assert replica.store is get_memory_store()

    def test_offline_backend(self):
        assert isinstance(get_replica("u1", backend="offline"), OfflineReplica)

    def test_redis_backend_default(self):
        with patch.dict("os.environ", {}, clear=True):
            assert isinstance(get_replica("u1"), RedisReplica)

    def test_env_selects_backend(self):
        with patch.dict("os.environ", {"BIOSYNC_REMOTE": "offline"}):
            assert isinstance(get_replica("u1"), OfflineReplica)

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown BIOSYNC_REMOTE"):
            get_replica("u1", backend="carrier-pigeon")


# ============================================================================
# InMemoryReplica
# ============================================================================

class TestInMemoryReplica:

    @pytest.mark.asyncio
    async def test_read_missing(self):
        replica = InMemoryReplica("u1", InMemoryRemoteStore())
        assert await replica.read() is None

    @pytest.mark.asyncio
    async def test_write_then_read(self):
        replica = InMemoryReplica("u1", InMemoryRemoteStore())
        doc = make_doc(T0 + 1)
        await replica.write(doc)
        assert await replica.read() == doc

    @pytest.mark.asyncio
    async def test_accounts_isolated(self):
        store = InMemoryRemoteStore()
        await InMemoryReplica("u1", store).write(make_doc(T0 + 1))
        assert await InMemoryReplica("u2", store).read() is None

    @pytest.mark.asyncio
    async def test_malformed_payload_reads_as_absent(self):
        store = InMemoryRemoteStore()
        replica = InMemoryReplica("u1", store)
        store.put_raw(replica.path, "{oops")
        assert await replica.read() is None

    @pytest.mark.asyncio
    async def test_subscribe_delivers_current_then_changes(self):
        store = InMemoryRemoteStore()
        writer = InMemoryReplica("u1", store)
        reader = InMemoryReplica("u1", store)
        await writer.write(make_doc(T0 + 1))

        recorder = Recorder()
        subscription = await reader.subscribe(recorder)
        assert recorder.snapshots == [make_doc(T0 + 1)]

        await writer.write(make_doc(T0 + 1, T0 + 2))
        await store.wait_idle()
        assert recorder.snapshots[-1] == make_doc(T0 + 1, T0 + 2)
        await subscription.close()

    @pytest.mark.asyncio
    async def test_writer_sees_own_write(self):
        store = InMemoryRemoteStore()
        replica = InMemoryReplica("u1", store)
        recorder = Recorder()
        subscription = await replica.subscribe(recorder)
        await replica.write(make_doc(T0 + 1))
        await store.wait_idle()
        assert recorder.snapshots == [None, make_doc(T0 + 1)]
        await subscription.close()

    @pytest.mark.asyncio
    async def test_close_stops_delivery(self):
        store = InMemoryRemoteStore()
        replica = InMemoryReplica("u1", store)
        recorder = Recorder()
        subscription = await replica.subscribe(recorder)
        await subscription.close()
        assert subscription.active is False
        assert store.subscriber_count(replica.path) == 0

        await replica.write(make_doc(T0 + 1))
        await asyncio.sleep(0.01)
        assert recorder.snapshots == [None]

    @pytest.mark.asyncio
    async def test_offline_raises(self):
        replica = InMemoryReplica("u1", InMemoryRemoteStore())
        await replica.set_online(False)
        with pytest.raises(RemoteUnavailableError):
            await replica.read()
        with pytest.raises(RemoteUnavailableError):
            await replica.write(make_doc())
        with pytest.raises(RemoteUnavailableError):
            await replica.subscribe(Recorder())

    @pytest.mark.asyncio
    async def test_going_offline_drops_subscription(self):
        store = InMemoryRemoteStore()
        replica = InMemoryReplica("u1", store)
        subscription = await replica.subscribe(Recorder())
        await replica.set_online(False)
        assert subscription.active is False
        assert store.subscriber_count(replica.path) == 0

    @pytest.mark.asyncio
    async def test_callback_errors_do_not_kill_delivery(self):
        store = InMemoryRemoteStore()
        replica = InMemoryReplica("u1", store)
        seen = []

        async def flaky(document):
            seen.append(document)
            if document is not None and document.event_count == 1:
                raise RuntimeError("boom")

        subscription = await replica.subscribe(flaky)
        await replica.write(make_doc(T0 + 1))
        await replica.write(make_doc(T0 + 1, T0 + 2))
        await store.wait_idle()
        assert len(seen) == 3
        await subscription.close()

    @pytest.mark.asyncio
    async def test_health_check(self):
        replica = InMemoryReplica("u1", InMemoryRemoteStore())
        health = await replica.health_check()
        assert health["backend"] == "memory"
        assert health["path"] == replica.path


# ============================================================================
# OfflineReplica
# ============================================================================

class TestOfflineReplica:

    @pytest.mark.asyncio
    async def test_every_call_unavailable(self):
        replica = OfflineReplica("u1")
        with pytest.raises(RemoteUnavailableError) as exc:
            await replica.read()
        assert exc.value.retryable is True
        with pytest.raises(RemoteUnavailableError):
            await replica.write(make_doc())
        with pytest.raises(RemoteUnavailableError):
            await replica.subscribe(Recorder())

    @pytest.mark.asyncio
    async def test_health_check(self):
        assert (await OfflineReplica("u1").health_check())["status"] == "offline"
