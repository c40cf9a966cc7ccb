"""
Sync Scheduler: the periodic driver around a SyncSession.

- every tick_interval: passive recompute (session.tick)
- every push_interval: reconciliation-aware push of dirty state, and a
  resubscribe attempt if the subscription was lost
- on_backgrounded(): immediate forced push
- on_connectivity_restored(): resubscribe, then forced push
"""

import asyncio
import contextlib
import time
from typing import Callable, Optional

from config.sync_config import config
from biosync.errors import SessionClosedError
from biosync.logging_utils import get_logger
from biosync.session import SyncSession

logger = get_logger(__name__)


class SyncScheduler:

    def __init__(
        self,
        session: SyncSession,
        *,
        tick_interval: Optional[float] = None,
        push_interval: Optional[float] = None,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.session = session
        self.tick_interval = config.TICK_INTERVAL_SECONDS if tick_interval is None else tick_interval
        self.push_interval = config.PUSH_INTERVAL_SECONDS if push_interval is None else push_interval
        self._monotonic = monotonic
        self._task: Optional[asyncio.Task] = None
        self._last_push = 0.0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._last_push = self._monotonic()
        self._task = asyncio.create_task(self._run())
        logger.info(
            f"Sync scheduler started (tick {self.tick_interval}s, push {self.push_interval}s)"
        )

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Sync scheduler stopped")

    async def _run(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.tick_interval)
                await self.session.tick()

                if self._monotonic() - self._last_push >= self.push_interval:
                    self._last_push = self._monotonic()
                    if not self.session.subscribed:
                        await self.session.ensure_subscribed()
                    await self.session.push()

            except SessionClosedError:
                logger.debug("Session closed - scheduler exiting")
                return
            except Exception as e:
                logger.error(f"Error in sync scheduler: {e}", exc_info=True)

    async def on_backgrounded(self) -> bool:
        """App going to background: flush now, whether dirty or not."""
        if self.session.closed:
            return False
        self._last_push = self._monotonic()
        return await self.session.push(force=True)

    async def on_connectivity_restored(self) -> bool:
        if self.session.closed:
            return False
        await self.session.ensure_subscribed()
        self._last_push = self._monotonic()
        return await self.session.push(force=True)
