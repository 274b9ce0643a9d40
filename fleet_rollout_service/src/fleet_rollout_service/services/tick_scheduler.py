# fleet_rollout_service/src/fleet_rollout_service/services/tick_scheduler.py
"""
Background drivers for the rollout engine.

``TickScheduler`` keeps one looping asyncio task per running rollout. The task
ticks in a fresh session, commits, and sleeps for the tick interval, stopping
as soon as a tick reports an outcome that leaves the rollout not running. Only
rollout rows are durable, so after a restart the running rollouts are simply
enqueued again.

``SchedulePromoter`` and ``DriftWorker`` are fixed-interval loops. A lock
guarantees a single cycle in flight per worker.
"""
import asyncio
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Set
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import settings
from ..crud import nodes as node_crud
from ..crud import rollouts as rollout_crud
from ..db import get_session_factory, session_scope
from ..exceptions import TickInFlightError
from ..logging_config import logger
from .drift_detector import detect_drift
from .orchestrator import TickResult, tick
from .rollout_service import promote_due_rollouts

TickFn = Callable[[AsyncSession, UUID], Awaitable[TickResult]]


class TickScheduler:
    """Drives running rollouts with at most one in-flight tick loop per rollout."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        interval_seconds: Optional[float] = None,
        dedup_window_seconds: Optional[float] = None,
        tick_fn: Optional[TickFn] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._session_factory = session_factory
        self.interval_seconds = (
            settings.TICK_INTERVAL_SECONDS if interval_seconds is None else interval_seconds
        )
        self.dedup_window_seconds = (
            settings.TICK_DEDUP_WINDOW_SECONDS
            if dedup_window_seconds is None
            else dedup_window_seconds
        )
        self._tick_fn = tick_fn or tick
        self._clock = clock
        self._tasks: Dict[UUID, asyncio.Task] = {}
        self._last_enqueued: Dict[UUID, float] = {}
        self._claimed: Set[UUID] = set()
        self._stopping = False

    @property
    def session_factory(self) -> async_sessionmaker:
        return self._session_factory or get_session_factory()

    def in_flight(self, rollout_id: UUID) -> bool:
        if rollout_id in self._claimed:
            return True
        task = self._tasks.get(rollout_id)
        return task is not None and not task.done()

    @asynccontextmanager
    async def claim(self, rollout_id: UUID) -> AsyncIterator[None]:
        """
        Holds the rollout's tick slot for a tick run outside the loop, such as
        the manual tick route. Loop requests are dropped while it is held.

        Raises:
            TickInFlightError: If a loop or another claim already holds the slot.
        """
        if self.in_flight(rollout_id):
            raise TickInFlightError(str(rollout_id))
        self._claimed.add(rollout_id)
        try:
            yield
        finally:
            self._claimed.discard(rollout_id)

    def request_tick(self, rollout_id: UUID) -> bool:
        """
        Starts a tick loop for the rollout unless one is already in flight or
        one was enqueued within the dedup window.

        Returns:
            True if a new loop was started, False if the request was dropped.
        """
        if self._stopping:
            return False
        if self.in_flight(rollout_id):
            logger.debug(f"[Rollout:{rollout_id}] Tick already in flight, request dropped")
            return False

        now = self._clock()
        self._forget_expired(now)
        last = self._last_enqueued.get(rollout_id)
        if last is not None and now - last < self.dedup_window_seconds:
            logger.debug(f"[Rollout:{rollout_id}] Tick requested within dedup window, dropped")
            return False

        self._last_enqueued[rollout_id] = now
        self._tasks[rollout_id] = asyncio.create_task(
            self._run(rollout_id), name=f"rollout-tick-{rollout_id}"
        )
        return True

    def _forget_expired(self, now: float) -> None:
        expired = [
            rollout_id
            for rollout_id, enqueued_at in self._last_enqueued.items()
            if now - enqueued_at >= self.dedup_window_seconds and not self.in_flight(rollout_id)
        ]
        for rollout_id in expired:
            del self._last_enqueued[rollout_id]

    async def tick_once(self, rollout_id: UUID) -> Optional[TickResult]:
        """Runs a single tick in its own transaction. Errors are logged and rolled back."""
        try:
            async with session_scope(self.session_factory) as db:
                return await self._tick_fn(db, rollout_id)
        except Exception as e:
            logger.error(f"[Rollout:{rollout_id}] Tick failed: {e}", exc_info=True)
            return None

    async def _run(self, rollout_id: UUID) -> None:
        try:
            while True:
                result = await self.tick_once(rollout_id)
                if result is None or not result.should_continue:
                    break
                await asyncio.sleep(self.interval_seconds)
        finally:
            self._tasks.pop(rollout_id, None)

    async def enqueue_running(self) -> int:
        """Enqueues every running rollout without an in-flight loop."""
        async with session_scope(self.session_factory) as db:
            rollout_ids = await rollout_crud.list_running_rollout_ids(db)
        started = sum(1 for rollout_id in rollout_ids if self.request_tick(rollout_id))
        if started:
            logger.info(f"Enqueued {started} running rollout(s)")
        return started

    async def stop(self) -> None:
        self._stopping = True
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("Tick scheduler stopped")


class PeriodicWorker:
    """A fixed-interval loop running ``cycle`` in its own transaction."""

    name = "worker"

    def __init__(
        self,
        interval_seconds: float,
        session_factory: Optional[async_sessionmaker] = None,
    ):
        self.interval_seconds = interval_seconds
        self._session_factory = session_factory
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None

    @property
    def session_factory(self) -> async_sessionmaker:
        return self._session_factory or get_session_factory()

    async def cycle(self, db: AsyncSession) -> Any:
        raise NotImplementedError

    async def after_commit(self, result: Any) -> None:
        """Hook run after the cycle's transaction committed."""

    async def run_once(self) -> Any:
        if self._lock.locked():
            logger.debug(f"[{self.name}] Previous cycle still running, skipping")
            return None
        async with self._lock:
            try:
                async with session_scope(self.session_factory) as db:
                    result = await self.cycle(db)
                await self.after_commit(result)
                return result
            except Exception as e:
                logger.error(f"[{self.name}] Cycle failed: {e}", exc_info=True)
                return None

    async def _loop(self) -> None:
        logger.info(f"[{self.name}] Started with {self.interval_seconds}s interval")
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop(), name=self.name)

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
            logger.info(f"[{self.name}] Stopped")


class SchedulePromoter(PeriodicWorker):
    """
    Promotes due scheduled rollouts and hands running rollouts to the scheduler.

    Re-enqueueing running rollouts each cycle also recovers loops that stopped
    on a failed tick.
    """

    name = "schedule-promoter"

    def __init__(
        self,
        tick_scheduler: TickScheduler,
        interval_seconds: Optional[float] = None,
        session_factory: Optional[async_sessionmaker] = None,
    ):
        super().__init__(
            settings.SCHEDULER_INTERVAL_SECONDS if interval_seconds is None else interval_seconds,
            session_factory,
        )
        self.tick_scheduler = tick_scheduler

    async def cycle(self, db: AsyncSession):
        promoted = await promote_due_rollouts(db)
        running = await rollout_crud.list_running_rollout_ids(db)
        logger.debug(f"[{self.name}] Promoted {len(promoted)}, {len(running)} running")
        return running

    async def after_commit(self, result) -> None:
        for rollout_id in result or []:
            self.tick_scheduler.request_tick(rollout_id)


class DriftWorker(PeriodicWorker):
    """Marks stale nodes offline and runs a drift detection pass."""

    name = "drift-worker"

    def __init__(
        self,
        interval_seconds: Optional[float] = None,
        session_factory: Optional[async_sessionmaker] = None,
    ):
        super().__init__(
            settings.DRIFT_CHECK_INTERVAL_SECONDS if interval_seconds is None else interval_seconds,
            session_factory,
        )

    async def cycle(self, db: AsyncSession):
        await node_crud.mark_stale_nodes_offline(db, settings.STALE_NODE_THRESHOLD_SECONDS)
        return await detect_drift(db)
