# fleet_rollout_service/src/fleet_rollout_service/services/orchestrator.py
"""
The rollout orchestrator.

``tick`` advances a rollout by at most one unit of progress. It keeps no state
between calls: every tick reloads the rollout, its steps and the node status
rows, applies one transition and flushes. The caller owns the transaction and
commits or rolls back the whole tick. A tick writes nothing once the rollout
has left the running state, even when that happened after it was loaded.
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

import httpx
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from ..crud import bundles as bundle_crud
from ..crud import health_checks as health_check_crud
from ..crud import nodes as node_crud
from ..crud import rollouts as rollout_crud
from ..logging_config import logger
from ..models.base import utcnow
from ..models.bundle import BundleStatus
from ..models.drift_event import DriftResolution
from ..models.node import Node
from ..models.rollout import (
    NodeBundleState,
    NodeBundleStatus,
    Rollout,
    RolloutState,
    RolloutStep,
    StepState,
)
from .drift_detector import resolve_drift_for_nodes
from .health_gates import evaluate_health_gates


class TickOutcome(str, Enum):
    STEP_STARTED = "step_started"
    STEP_VERIFYING = "step_verifying"
    STEP_COMPLETED = "step_completed"
    WAITING = "waiting"
    COMPLETED = "completed"
    DEADLINE_EXCEEDED = "deadline_exceeded"
    NOT_RUNNING = "not_running"
    STEP_FAILED = "step_failed"  # A node in the step reported failure.
    HEALTH_GATE_FAILED = "health_gate_failed"  # Rollout auto-paused.
    BUNDLE_REVOKED = "bundle_revoked"


# Outcomes after which the rollout is still running and should be ticked again.
CONTINUE_OUTCOMES = frozenset(
    {
        TickOutcome.STEP_STARTED,
        TickOutcome.STEP_VERIFYING,
        TickOutcome.STEP_COMPLETED,
        TickOutcome.WAITING,
    }
)


@dataclass(frozen=True)
class TickResult:
    outcome: TickOutcome
    reason: Optional[str] = None

    @property
    def should_continue(self) -> bool:
        return self.outcome in CONTINUE_OUTCOMES


def step_node_ids(step: RolloutStep) -> List[UUID]:
    return [UUID(str(node_id)) for node_id in (step.node_ids or [])]


async def _load_rollout(db: AsyncSession, rollout_id: UUID) -> Optional[Rollout]:
    return await db.get(Rollout, rollout_id)


async def _still_running(db: AsyncSession, rollout: Rollout, now: datetime) -> bool:
    """
    Claims the rollout row for this tick before its first write.

    The conditional UPDATE only matches while the row is still running, so a
    pause, cancel or rollback committed since the rollout was loaded makes it
    match nothing. On PostgreSQL the row stays locked until the caller commits.
    """
    result = await db.execute(
        update(Rollout)
        .where(Rollout.id == rollout.id, Rollout.state == RolloutState.RUNNING)
        .values(updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        return True
    await db.refresh(rollout)
    logger.info(
        f"[Rollout:{rollout.id}] State changed to {rollout.state.value} during tick, not advancing"
    )
    return False


STATE_CHANGED = TickResult(TickOutcome.NOT_RUNNING, "state changed")


async def tick(
    db: AsyncSession,
    rollout_id: UUID,
    now: Optional[datetime] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> TickResult:
    """
    Evaluates one tick of a rollout.

    Args:
        db: The SQLAlchemy async session; the caller commits.
        rollout_id: The rollout to advance.
        now: Evaluation time, defaults to the current time.
        client: Optional httpx client used for custom health check probes.

    Returns:
        The TickResult describing what happened.
    """
    now = now or utcnow()
    rollout = await _load_rollout(db, rollout_id)
    if rollout is None:
        logger.warning(f"[Rollout:{rollout_id}] Tick requested for unknown rollout")
        return TickResult(TickOutcome.NOT_RUNNING, "not found")

    if rollout.state != RolloutState.RUNNING:
        return TickResult(TickOutcome.NOT_RUNNING)
    if not rollout.approval_satisfied:
        logger.warning(f"[Rollout:{rollout.id}] Running without approval, not advancing")
        return TickResult(TickOutcome.NOT_RUNNING, "awaiting approval")

    steps = await rollout_crud.get_steps(db, rollout.id)

    if rollout.started_at is None:
        if not await _still_running(db, rollout, now):
            return STATE_CHANGED
        rollout.started_at = now

    if _deadline_exceeded(rollout, now):
        if not await _still_running(db, rollout, now):
            return STATE_CHANGED
        result = _fail_deadline(rollout, steps, now)
        await db.flush()
        return result

    step = next((s for s in steps if s.state != StepState.COMPLETED), None)

    if step is None:
        result = await _complete_rollout(db, rollout, steps, now)
    elif step.state == StepState.PENDING:
        result = await _start_step(db, rollout, step, now)
    elif step.state == StepState.RUNNING:
        result = await _check_step_progress(db, rollout, step, now)
    elif step.state == StepState.VERIFYING:
        result = await _verify_step(db, rollout, step, now, client)
    elif not await _still_running(db, rollout, now):
        result = STATE_CHANGED
    else:
        error = step.error or {"reason": "step_failed", "step_index": step.step_index}
        rollout.apply_state(RolloutState.FAILED, error=error, now=now)
        result = TickResult(TickOutcome.STEP_FAILED, error.get("reason"))

    if result is STATE_CHANGED:
        return result

    await db.flush()
    logger.info(
        f"[Rollout:{rollout.id}] Tick -> {result.outcome.value}"
        + (f" ({result.reason})" if result.reason else "")
    )
    return result


def _deadline_exceeded(rollout: Rollout, now: datetime) -> bool:
    elapsed = (now - rollout.started_at).total_seconds()
    return elapsed > rollout.progress_deadline_seconds


def _fail_deadline(rollout: Rollout, steps: List[RolloutStep], now: datetime) -> TickResult:
    elapsed = (now - rollout.started_at).total_seconds()
    error = {
        "reason": "deadline_exceeded",
        "elapsed_seconds": int(elapsed),
        "progress_deadline_seconds": rollout.progress_deadline_seconds,
    }
    for step in steps:
        if step.state in (StepState.RUNNING, StepState.VERIFYING):
            step.apply_state(StepState.FAILED, error=error, now=now)
    rollout.apply_state(RolloutState.FAILED, error=error, now=now)
    logger.warning(
        f"[Rollout:{rollout.id}] Progress deadline of {rollout.progress_deadline_seconds}s "
        f"exceeded after {int(elapsed)}s"
    )
    return TickResult(TickOutcome.DEADLINE_EXCEEDED, "deadline_exceeded")


async def _complete_rollout(
    db: AsyncSession, rollout: Rollout, steps: List[RolloutStep], now: datetime
) -> TickResult:
    if not await _still_running(db, rollout, now):
        return STATE_CHANGED
    rollout.apply_state(RolloutState.COMPLETED, now=now)
    node_ids = [node_id for step in steps for node_id in step_node_ids(step)]
    resolved = await resolve_drift_for_nodes(
        db, node_ids, DriftResolution.ROLLOUT_COMPLETED, now=now
    )
    if resolved:
        logger.info(f"[Rollout:{rollout.id}] Resolved {resolved} drift event(s) on completion")
    return TickResult(TickOutcome.COMPLETED)


async def _start_step(
    db: AsyncSession, rollout: Rollout, step: RolloutStep, now: datetime
) -> TickResult:
    bundle = await bundle_crud.get_bundle(db, rollout.bundle_id)
    if not await _still_running(db, rollout, now):
        return STATE_CHANGED
    if bundle is None or bundle.status == BundleStatus.REVOKED:
        error = {
            "reason": "bundle_revoked",
            "bundle_id": str(rollout.bundle_id),
            "step_index": step.step_index,
        }
        step.apply_state(StepState.FAILED, error=error, now=now)
        rollout.apply_state(RolloutState.FAILED, error=error, now=now)
        logger.error(f"[Rollout:{rollout.id}] Bundle {rollout.bundle_id} revoked, failing rollout")
        return TickResult(TickOutcome.BUNDLE_REVOKED, "bundle_revoked")

    node_ids = step_node_ids(step)
    existing = {
        row.node_id: row
        for row in await rollout_crud.get_node_statuses(db, rollout.id, node_ids)
    }
    for node_id in node_ids:
        row = existing.get(node_id)
        if row is None:
            row = NodeBundleStatus(
                node_id=node_id,
                rollout_id=rollout.id,
                bundle_id=rollout.bundle_id,
                state=NodeBundleState.PENDING,
            )
            db.add(row)
        if row.state == NodeBundleState.PENDING:
            row.apply_state(NodeBundleState.STAGING, now=now)

    step.apply_state(StepState.RUNNING, now=now)

    await db.execute(
        update(Node)
        .where(Node.id.in_(node_ids))
        .values(
            expected_bundle_id=rollout.bundle_id,
            staged_bundle_id=rollout.bundle_id,
            updated_at=now,
        )
        .execution_options(synchronize_session="fetch")
    )
    await resolve_drift_for_nodes(db, node_ids, DriftResolution.ROLLOUT_STARTED, now=now)

    logger.info(
        f"[Rollout:{rollout.id}] Step {step.step_index} started on {len(node_ids)} node(s)"
    )
    return TickResult(TickOutcome.STEP_STARTED)


async def _check_step_progress(
    db: AsyncSession, rollout: Rollout, step: RolloutStep, now: datetime
) -> TickResult:
    node_ids = step_node_ids(step)
    rows = await rollout_crud.get_node_statuses(db, rollout.id, node_ids)

    failed = [row for row in rows if row.state == NodeBundleState.FAILED]
    if failed:
        if not await _still_running(db, rollout, now):
            return STATE_CHANGED
        row = failed[0]
        error: Dict[str, Any] = {
            "reason": "node_failed",
            "node_id": str(row.node_id),
            "step_index": step.step_index,
            "node_reason": row.reason,
            "node_error": row.error,
        }
        step.apply_state(StepState.FAILED, error=error, now=now)
        rollout.apply_state(RolloutState.FAILED, error=error, now=now)
        logger.error(
            f"[Rollout:{rollout.id}] Node {row.node_id} failed in step {step.step_index}: "
            f"{row.reason or row.error}"
        )
        return TickResult(TickOutcome.STEP_FAILED, "node_failed")

    active = {row.node_id for row in rows if row.state == NodeBundleState.ACTIVE}
    if all(node_id in active for node_id in node_ids):
        if not await _still_running(db, rollout, now):
            return STATE_CHANGED
        step.apply_state(StepState.VERIFYING, now=now)
        return TickResult(TickOutcome.STEP_VERIFYING)

    return TickResult(TickOutcome.WAITING, f"{len(active)}/{len(node_ids)} node(s) active")


async def _verify_step(
    db: AsyncSession,
    rollout: Rollout,
    step: RolloutStep,
    now: datetime,
    client: Optional[httpx.AsyncClient],
) -> TickResult:
    node_ids = step_node_ids(step)
    nodes = await node_crud.get_nodes_by_ids(db, node_ids)
    heartbeats = await node_crud.get_latest_heartbeats(db, node_ids)
    endpoints = await health_check_crud.list_endpoints(
        db, rollout.project_id, enabled_only=True
    )

    gate = await evaluate_health_gates(
        nodes, rollout.health_gates or {}, endpoints, heartbeats, now=now, client=client
    )
    if not await _still_running(db, rollout, now):
        return STATE_CHANGED
    if gate.passed:
        step.apply_state(StepState.COMPLETED, now=now)
        return TickResult(TickOutcome.STEP_COMPLETED)

    error = {
        "reason": "health_gate_failed",
        "message": gate.reason,
        "step_index": step.step_index,
    }
    rollout.apply_state(RolloutState.PAUSED, error=error, now=now)
    logger.warning(
        f"[Rollout:{rollout.id}] Health gate failed on step {step.step_index}, pausing: {gate.reason}"
    )
    return TickResult(TickOutcome.HEALTH_GATE_FAILED, gate.reason)
