# fleet_rollout_service/src/fleet_rollout_service/services/rollout_service.py
"""
Rollout lifecycle operations.

Creation plans the steps, and every other operation is a guarded state
transition that raises a domain error with a stable reason when the rollout is
in the wrong state. All functions flush but never commit; the request or
worker that called them owns the transaction.
"""
from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..crud import bundles as bundle_crud
from ..crud import nodes as node_crud
from ..crud import rollout_templates as template_crud
from ..crud import rollouts as rollout_crud
from ..exceptions import ApprovalError, InvalidTransitionError, RolloutValidationError
from ..logging_config import logger
from ..models.base import utcnow
from ..models.rollout import (
    ApprovalState,
    Rollout,
    RolloutApproval,
    RolloutState,
    RolloutStep,
)
from ..schemas.rollout_schemas import (
    RolloutCreate,
    RolloutFromTemplate,
    dump_target_selector,
)
from .orchestrator import step_node_ids
from .planner import plan_batches


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


async def create_rollout(
    db: AsyncSession,
    project_id: UUID,
    rollout_data: RolloutCreate,
    created_by_id: Optional[UUID] = None,
    now: Optional[datetime] = None,
) -> Rollout:
    """
    Creates a rollout and persists its planned steps.

    Args:
        db: The SQLAlchemy async session.
        project_id: The project the rollout belongs to.
        rollout_data: The validated creation request.
        created_by_id: The user creating the rollout, if known.
        now: Creation time, defaults to the current time.

    Returns:
        The new Rollout, ``pending`` unless it was started immediately.

    Raises:
        RolloutValidationError: Past schedule, unknown node ids or no target nodes.
        BundleUnavailableError: The bundle is missing, not compiled or revoked.
    """
    now = now or utcnow()
    scheduled_at = _as_utc(rollout_data.scheduled_at)
    if scheduled_at is not None and scheduled_at <= now:
        raise RolloutValidationError(
            "scheduled_at must be in the future", scheduled_at.isoformat()
        )

    bundle = await bundle_crud.get_deployable_bundle(db, rollout_data.bundle_id, project_id)
    batches = await plan_batches(
        db,
        project_id,
        rollout_data.target_selector,
        rollout_data.strategy,
        rollout_data.batch_size,
    )

    rollout = Rollout(
        project_id=project_id,
        bundle_id=bundle.id,
        created_by_id=created_by_id,
        target_selector=dump_target_selector(rollout_data.target_selector),
        strategy=rollout_data.strategy,
        batch_size=rollout_data.batch_size,
        max_unavailable=rollout_data.max_unavailable,
        progress_deadline_seconds=rollout_data.progress_deadline_seconds,
        health_gates=rollout_data.health_gates.to_config(),
        state=RolloutState.PENDING,
        approval_state=(
            ApprovalState.PENDING_APPROVAL
            if rollout_data.approvals_required > 0
            else ApprovalState.NOT_REQUIRED
        ),
        approvals_required=rollout_data.approvals_required,
        scheduled_at=scheduled_at,
    )
    db.add(rollout)
    await db.flush()

    for index, node_ids in enumerate(batches):
        db.add(
            RolloutStep(
                rollout_id=rollout.id,
                step_index=index,
                node_ids=[str(node_id) for node_id in node_ids],
            )
        )
    await db.flush()

    logger.info(
        f"[Rollout:{rollout.id}] Created for bundle {bundle.id} with {len(batches)} step(s), "
        f"approval {rollout.approval_state.value}"
    )

    if rollout_data.start_immediately:
        if can_start_rollout(rollout, now):
            rollout.apply_state(RolloutState.RUNNING, now=now)
            await db.flush()
            logger.info(f"[Rollout:{rollout.id}] Started immediately")
        else:
            logger.info(f"[Rollout:{rollout.id}] Not started immediately, start conditions not met")
    return rollout


async def create_rollout_from_template(
    db: AsyncSession,
    project_id: UUID,
    request: RolloutFromTemplate,
    created_by_id: Optional[UUID] = None,
    now: Optional[datetime] = None,
) -> Rollout:
    """Creates a rollout from a template; the request's selector wins over the template's."""
    template = await template_crud.get_template(db, project_id, request.template_id)
    attrs = template.to_rollout_attrs()

    if request.target_selector is not None:
        attrs["target_selector"] = dump_target_selector(request.target_selector)
    if "target_selector" not in attrs:
        raise RolloutValidationError(
            "target selector required", f"Template '{template.name}' has no selector."
        )

    rollout_data = RolloutCreate(
        bundle_id=request.bundle_id,
        scheduled_at=request.scheduled_at,
        approvals_required=request.approvals_required,
        start_immediately=request.start_immediately,
        **attrs,
    )
    return await create_rollout(db, project_id, rollout_data, created_by_id, now=now)


def can_start_rollout(rollout: Rollout, now: Optional[datetime] = None) -> bool:
    """A pending rollout may start once approval is satisfied and its schedule is due."""
    now = now or utcnow()
    if rollout.state != RolloutState.PENDING:
        return False
    if not rollout.approval_satisfied:
        return False
    return rollout.scheduled_at is None or rollout.scheduled_at <= now


async def start_rollout(
    db: AsyncSession,
    rollout_id: UUID,
    project_id: Optional[UUID] = None,
    now: Optional[datetime] = None,
) -> Rollout:
    """
    Manually starts a pending rollout.

    Raises:
        InvalidTransitionError: "cannot be started", "approval rejected",
            "awaiting approval" or "scheduled for later".
    """
    now = now or utcnow()
    rollout = await rollout_crud.get_rollout(db, rollout_id, project_id, for_update=True)

    if rollout.state != RolloutState.PENDING:
        raise InvalidTransitionError("cannot be started", f"Rollout is {rollout.state.value}.")
    if rollout.approval_state == ApprovalState.REJECTED:
        raise InvalidTransitionError("approval rejected")
    if rollout.approval_state == ApprovalState.PENDING_APPROVAL:
        raise InvalidTransitionError("awaiting approval")
    if rollout.scheduled_at is not None and rollout.scheduled_at > now:
        raise InvalidTransitionError("scheduled for later", rollout.scheduled_at.isoformat())

    rollout.apply_state(RolloutState.RUNNING, now=now)
    await db.flush()
    logger.info(f"[Rollout:{rollout.id}] Started")
    return rollout


async def pause_rollout(
    db: AsyncSession, rollout_id: UUID, project_id: Optional[UUID] = None
) -> Rollout:
    rollout = await rollout_crud.get_rollout(db, rollout_id, project_id, for_update=True)
    if rollout.state != RolloutState.RUNNING:
        logger.info(f"[Rollout:{rollout.id}] Pause rejected in state {rollout.state.value}")
        raise InvalidTransitionError("cannot be paused", f"Rollout is {rollout.state.value}.")

    rollout.apply_state(RolloutState.PAUSED)
    await db.flush()
    logger.info(f"[Rollout:{rollout.id}] Paused")
    return rollout


async def resume_rollout(
    db: AsyncSession, rollout_id: UUID, project_id: Optional[UUID] = None
) -> Rollout:
    """Resumes a paused rollout; completed steps and step membership are untouched."""
    rollout = await rollout_crud.get_rollout(db, rollout_id, project_id, for_update=True)
    if rollout.state != RolloutState.PAUSED:
        logger.info(f"[Rollout:{rollout.id}] Resume rejected in state {rollout.state.value}")
        raise InvalidTransitionError("cannot be resumed", f"Rollout is {rollout.state.value}.")

    rollout.apply_state(RolloutState.RUNNING)
    rollout.error = None
    await db.flush()
    logger.info(f"[Rollout:{rollout.id}] Resumed")
    return rollout


async def cancel_rollout(
    db: AsyncSession, rollout_id: UUID, project_id: Optional[UUID] = None
) -> Rollout:
    rollout = await rollout_crud.get_rollout(db, rollout_id, project_id, for_update=True)
    if rollout.is_terminal:
        logger.info(f"[Rollout:{rollout.id}] Cancel rejected in state {rollout.state.value}")
        raise InvalidTransitionError("cannot be cancelled", f"Rollout is {rollout.state.value}.")

    rollout.apply_state(RolloutState.CANCELLED, error={"reason": "cancelled"})
    await db.flush()
    logger.info(f"[Rollout:{rollout.id}] Cancelled")
    return rollout


async def rollback_rollout(
    db: AsyncSession, rollout_id: UUID, project_id: Optional[UUID] = None
) -> Rollout:
    """
    Cancels the rollout and reverts in-flight staging.

    Clears ``staged_bundle_id`` on every node of the rollout's steps. Active
    bundles are left as they are.

    Raises:
        InvalidTransitionError: "cannot be rolled back" from a terminal state.
    """
    rollout = await rollout_crud.get_rollout(db, rollout_id, project_id, for_update=True)
    if rollout.is_terminal:
        logger.info(f"[Rollout:{rollout.id}] Rollback rejected in state {rollout.state.value}")
        raise InvalidTransitionError(
            "cannot be rolled back", f"Rollout is {rollout.state.value}."
        )

    steps = await rollout_crud.get_steps(db, rollout.id)
    node_ids = list({node_id for step in steps for node_id in step_node_ids(step)})
    nodes = await node_crud.get_nodes_by_ids(db, node_ids)
    for node in nodes:
        node.staged_bundle_id = None
    reverted = len(nodes)

    rollout.apply_state(
        RolloutState.CANCELLED,
        error={"reason": "rolled_back", "nodes_reverted": reverted},
    )
    await db.flush()
    logger.info(f"[Rollout:{rollout.id}] Rolled back, cleared staged bundle on {reverted} node(s)")
    return rollout


async def approve_rollout(
    db: AsyncSession,
    rollout_id: UUID,
    user_id: UUID,
    comment: Optional[str] = None,
    project_id: Optional[UUID] = None,
    now: Optional[datetime] = None,
) -> Rollout:
    """
    Records an approval; flips the rollout to ``approved`` once enough distinct
    users have approved.

    Raises:
        ApprovalError: "not awaiting approval", "self approval" or "already approved".
    """
    now = now or utcnow()
    rollout = await rollout_crud.get_rollout(db, rollout_id, project_id, for_update=True)

    if rollout.approval_state != ApprovalState.PENDING_APPROVAL:
        raise ApprovalError("not awaiting approval", f"Approval is {rollout.approval_state.value}.")
    if rollout.created_by_id is not None and rollout.created_by_id == user_id:
        raise ApprovalError("self approval", "The creator cannot approve their own rollout.")

    existing = await db.execute(
        select(RolloutApproval.id).where(
            RolloutApproval.rollout_id == rollout.id,
            RolloutApproval.user_id == user_id,
        )
    )
    if existing.first() is not None:
        raise ApprovalError("already approved")

    db.add(
        RolloutApproval(
            rollout_id=rollout.id, user_id=user_id, comment=comment, approved_at=now
        )
    )
    await db.flush()

    approvals = await rollout_crud.count_approvals(db, rollout.id)
    if approvals >= rollout.approvals_required:
        rollout.approval_state = ApprovalState.APPROVED
        await db.flush()
        logger.info(f"[Rollout:{rollout.id}] Approved ({approvals}/{rollout.approvals_required})")
    else:
        logger.info(
            f"[Rollout:{rollout.id}] Approval recorded ({approvals}/{rollout.approvals_required})"
        )
    return rollout


async def reject_rollout(
    db: AsyncSession,
    rollout_id: UUID,
    user_id: UUID,
    comment: Optional[str],
    project_id: Optional[UUID] = None,
    now: Optional[datetime] = None,
) -> Rollout:
    """
    Rejects a rollout awaiting approval. A rejected rollout can never start.

    Raises:
        ApprovalError: "not awaiting approval" or "comment required".
    """
    rollout = await rollout_crud.get_rollout(db, rollout_id, project_id, for_update=True)
    if rollout.approval_state != ApprovalState.PENDING_APPROVAL:
        raise ApprovalError("not awaiting approval", f"Approval is {rollout.approval_state.value}.")
    if not comment or not comment.strip():
        raise ApprovalError("comment required")

    rollout.approval_state = ApprovalState.REJECTED
    rollout.rejected_by_id = user_id
    rollout.rejected_at = now or utcnow()
    rollout.rejection_comment = comment.strip()
    await db.flush()
    logger.info(f"[Rollout:{rollout.id}] Rejected by {user_id}")
    return rollout


async def promote_due_rollouts(
    db: AsyncSession, now: Optional[datetime] = None
) -> List[UUID]:
    """
    Starts every due scheduled rollout whose approval is satisfied.

    Rollouts still waiting for approval are left pending and looked at again
    on the next call.

    Returns:
        The ids of the rollouts that were started.
    """
    now = now or utcnow()
    started: List[UUID] = []
    for rollout in await rollout_crud.list_due_scheduled_rollouts(db, now):
        if not can_start_rollout(rollout, now):
            logger.info(
                f"[Rollout:{rollout.id}] Scheduled start due but approval is "
                f"{rollout.approval_state.value}, retrying later"
            )
            continue
        rollout.apply_state(RolloutState.RUNNING, now=now)
        started.append(rollout.id)
        logger.info(f"[Rollout:{rollout.id}] Promoted scheduled rollout to running")

    if started:
        await db.flush()
    return started
