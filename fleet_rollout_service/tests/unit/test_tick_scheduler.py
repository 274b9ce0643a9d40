"""
Unit tests for the tick scheduler and the periodic workers.

The scheduler runs against the test database with a scripted tick function,
so loop control and deduplication are tested without a real rollout.
"""
import asyncio
import uuid

import pytest

from fleet_rollout_service.exceptions import TickInFlightError
from fleet_rollout_service.models import Node, NodeStatus, Rollout, RolloutState
from fleet_rollout_service.services.orchestrator import TickOutcome, TickResult
from fleet_rollout_service.services.tick_scheduler import (
    DriftWorker,
    PeriodicWorker,
    SchedulePromoter,
    TickScheduler,
)
from tests.fixtures.helpers import (
    T0,
    at,
    create_test_bundle,
    create_test_node,
    create_test_nodes,
    create_test_rollout,
)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class ScriptedTick:
    """Returns the scripted outcomes in order, then NOT_RUNNING."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    async def __call__(self, db, rollout_id):
        self.calls.append(rollout_id)
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return TickResult(outcome)
        return TickResult(TickOutcome.NOT_RUNNING)


class RecordingScheduler:
    def __init__(self):
        self.requested = []

    def request_tick(self, rollout_id):
        self.requested.append(rollout_id)
        return True


async def wait_until_idle(scheduler: TickScheduler, rollout_id, timeout=2.0):
    async def _poll():
        while scheduler.in_flight(rollout_id):
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_poll(), timeout)


def make_scheduler(session_factory, tick_fn, clock=None, dedup=10.0):
    return TickScheduler(
        session_factory=session_factory,
        interval_seconds=0,
        dedup_window_seconds=dedup,
        tick_fn=tick_fn,
        clock=clock or FakeClock(),
    )


class TestTickScheduler:
    @pytest.mark.asyncio
    async def test_loop_runs_until_rollout_stops(self, session_factory):
        tick_fn = ScriptedTick(
            TickOutcome.STEP_STARTED, TickOutcome.WAITING, TickOutcome.COMPLETED
        )
        scheduler = make_scheduler(session_factory, tick_fn)
        rollout_id = uuid.uuid4()

        assert scheduler.request_tick(rollout_id)
        await wait_until_idle(scheduler, rollout_id)
        assert len(tick_fn.calls) == 3

    @pytest.mark.asyncio
    async def test_second_request_dropped_while_in_flight(self, session_factory):
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_tick(db, rollout_id):
            started.set()
            await release.wait()
            return TickResult(TickOutcome.COMPLETED)

        scheduler = make_scheduler(session_factory, slow_tick, dedup=0)
        rollout_id = uuid.uuid4()

        assert scheduler.request_tick(rollout_id)
        await started.wait()
        assert scheduler.in_flight(rollout_id)
        assert not scheduler.request_tick(rollout_id)

        release.set()
        await wait_until_idle(scheduler, rollout_id)

    @pytest.mark.asyncio
    async def test_requests_within_dedup_window_dropped(self, session_factory):
        clock = FakeClock()
        tick_fn = ScriptedTick(TickOutcome.COMPLETED, TickOutcome.COMPLETED)
        scheduler = make_scheduler(session_factory, tick_fn, clock=clock, dedup=10.0)
        rollout_id = uuid.uuid4()

        assert scheduler.request_tick(rollout_id)
        await wait_until_idle(scheduler, rollout_id)

        clock.now += 5
        assert not scheduler.request_tick(rollout_id)

        clock.now += 6
        assert scheduler.request_tick(rollout_id)
        await wait_until_idle(scheduler, rollout_id)
        assert len(tick_fn.calls) == 2

    @pytest.mark.asyncio
    async def test_expired_dedup_entries_are_forgotten(self, session_factory):
        clock = FakeClock()
        tick_fn = ScriptedTick()
        scheduler = make_scheduler(session_factory, tick_fn, clock=clock, dedup=10.0)
        finished = [uuid.uuid4() for _ in range(3)]

        for rollout_id in finished:
            assert scheduler.request_tick(rollout_id)
            await wait_until_idle(scheduler, rollout_id)
        assert set(scheduler._last_enqueued) == set(finished)

        clock.now += 10
        latest = uuid.uuid4()
        assert scheduler.request_tick(latest)
        await wait_until_idle(scheduler, latest)
        assert set(scheduler._last_enqueued) == {latest}

    @pytest.mark.asyncio
    async def test_dedup_entry_kept_while_loop_in_flight(self, session_factory):
        clock = FakeClock()
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_tick(db, rollout_id):
            started.set()
            await release.wait()
            return TickResult(TickOutcome.COMPLETED)

        scheduler = make_scheduler(session_factory, slow_tick, clock=clock, dedup=10.0)
        running = uuid.uuid4()
        assert scheduler.request_tick(running)
        await started.wait()

        clock.now += 60
        other = uuid.uuid4()
        assert scheduler.request_tick(other)
        assert running in scheduler._last_enqueued

        release.set()
        await wait_until_idle(scheduler, running)
        await wait_until_idle(scheduler, other)

    @pytest.mark.asyncio
    async def test_claim_rejected_while_loop_in_flight(self, session_factory):
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_tick(db, rollout_id):
            started.set()
            await release.wait()
            return TickResult(TickOutcome.COMPLETED)

        scheduler = make_scheduler(session_factory, slow_tick, dedup=0)
        rollout_id = uuid.uuid4()
        assert scheduler.request_tick(rollout_id)
        await started.wait()

        with pytest.raises(TickInFlightError) as exc_info:
            async with scheduler.claim(rollout_id):
                pass
        assert exc_info.value.reason == "tick in flight"
        assert exc_info.value.status_code == 409

        release.set()
        await wait_until_idle(scheduler, rollout_id)

    @pytest.mark.asyncio
    async def test_loop_request_dropped_while_claimed(self, session_factory):
        tick_fn = ScriptedTick(TickOutcome.COMPLETED)
        scheduler = make_scheduler(session_factory, tick_fn, dedup=0)
        rollout_id = uuid.uuid4()

        async with scheduler.claim(rollout_id):
            assert scheduler.in_flight(rollout_id)
            assert not scheduler.request_tick(rollout_id)
            with pytest.raises(TickInFlightError):
                async with scheduler.claim(rollout_id):
                    pass

        assert not scheduler.in_flight(rollout_id)
        assert tick_fn.calls == []
        assert scheduler.request_tick(rollout_id)
        await wait_until_idle(scheduler, rollout_id)
        assert tick_fn.calls == [rollout_id]

    @pytest.mark.asyncio
    async def test_rollouts_are_independent(self, session_factory):
        tick_fn = ScriptedTick(TickOutcome.COMPLETED, TickOutcome.COMPLETED)
        scheduler = make_scheduler(session_factory, tick_fn)
        first, second = uuid.uuid4(), uuid.uuid4()

        assert scheduler.request_tick(first)
        assert scheduler.request_tick(second)
        await wait_until_idle(scheduler, first)
        await wait_until_idle(scheduler, second)
        assert sorted(map(str, tick_fn.calls)) == sorted([str(first), str(second)])

    @pytest.mark.asyncio
    async def test_failed_tick_ends_loop(self, session_factory):
        tick_fn = ScriptedTick(
            TickOutcome.WAITING, RuntimeError("database went away"), TickOutcome.WAITING
        )
        scheduler = make_scheduler(session_factory, tick_fn)
        rollout_id = uuid.uuid4()

        scheduler.request_tick(rollout_id)
        await wait_until_idle(scheduler, rollout_id)
        assert len(tick_fn.calls) == 2

    @pytest.mark.asyncio
    async def test_tick_once_swallows_errors(self, session_factory):
        tick_fn = ScriptedTick(RuntimeError("database went away"))
        scheduler = make_scheduler(session_factory, tick_fn)
        assert await scheduler.tick_once(uuid.uuid4()) is None

    @pytest.mark.asyncio
    async def test_stop_cancels_loops_and_refuses_new_work(self, session_factory):
        never = asyncio.Event()

        async def hanging_tick(db, rollout_id):
            await never.wait()

        scheduler = make_scheduler(session_factory, hanging_tick)
        rollout_id = uuid.uuid4()
        scheduler.request_tick(rollout_id)
        await asyncio.sleep(0.01)

        await scheduler.stop()
        assert not scheduler.in_flight(rollout_id)
        assert not scheduler.request_tick(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_enqueue_running(self, session_factory, project_id):
        async with session_factory() as db:
            bundle = await create_test_bundle(db, project_id)
            await create_test_nodes(db, project_id, 1)
            running = await create_test_rollout(db, project_id, bundle)
            await create_test_rollout(db, project_id, bundle, start=False)
            await db.commit()

        tick_fn = ScriptedTick(TickOutcome.COMPLETED)
        scheduler = make_scheduler(session_factory, tick_fn)

        assert await scheduler.enqueue_running() == 1
        await wait_until_idle(scheduler, running.id)
        assert tick_fn.calls == [running.id]


class TestPeriodicWorkers:
    @pytest.mark.asyncio
    async def test_cycle_skipped_while_previous_running(self, session_factory):
        release = asyncio.Event()

        class SlowWorker(PeriodicWorker):
            name = "slow"
            runs = 0

            async def cycle(self, db):
                SlowWorker.runs += 1
                await release.wait()
                return "done"

        worker = SlowWorker(60, session_factory)
        first = asyncio.create_task(worker.run_once())
        await asyncio.sleep(0.01)

        assert await worker.run_once() is None
        release.set()
        assert await first == "done"
        assert SlowWorker.runs == 1

    @pytest.mark.asyncio
    async def test_failed_cycle_is_logged_not_raised(self, session_factory):
        class BrokenWorker(PeriodicWorker):
            name = "broken"

            async def cycle(self, db):
                raise RuntimeError("boom")

        assert await BrokenWorker(60, session_factory).run_once() is None

    @pytest.mark.asyncio
    async def test_schedule_promoter_hands_running_rollouts_to_scheduler(
        self, session_factory, project_id
    ):
        async with session_factory() as db:
            bundle = await create_test_bundle(db, project_id)
            await create_test_nodes(db, project_id, 1)
            due = await create_test_rollout(
                db, project_id, bundle, start=False, scheduled_at=at(60), now=T0
            )
            await db.commit()
        # Backdate the schedule so it is due now
        async with session_factory() as db:
            rollout = await db.get(Rollout, due.id)
            rollout.scheduled_at = at(-3600)
            await db.commit()

        scheduler = RecordingScheduler()
        promoter = SchedulePromoter(scheduler, interval_seconds=60, session_factory=session_factory)
        running = await promoter.run_once()

        assert running == [due.id]
        assert scheduler.requested == [due.id]
        async with session_factory() as db:
            rollout = await db.get(Rollout, due.id)
            assert rollout.state == RolloutState.RUNNING

    @pytest.mark.asyncio
    async def test_drift_worker_marks_stale_nodes_and_detects(self, session_factory, project_id):
        async with session_factory() as db:
            bundle = await create_test_bundle(db, project_id)
            node = await create_test_node(db, project_id, "quiet", status=NodeStatus.ONLINE)
            node.last_seen_at = at(-86400)
            node.expected_bundle_id = bundle.id
            await db.commit()

        result = await DriftWorker(interval_seconds=60, session_factory=session_factory).run_once()
        assert result.created == 1

        async with session_factory() as db:
            refreshed = await db.get(Node, node.id)
            assert refreshed.status == NodeStatus.OFFLINE
