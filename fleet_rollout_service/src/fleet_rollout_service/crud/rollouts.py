# fleet_rollout_service/src/fleet_rollout_service/crud/rollouts.py
"""
Read operations for rollouts and their owned rows.

State-changing operations live in ``services.rollout_service`` and
``services.orchestrator``; this module only loads rows and derives summaries.
"""

from datetime import datetime
from typing import Iterable, List, Optional, Tuple
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..logging_config import logger
from ..models.rollout import (
    ApprovalState,
    NodeBundleStatus,
    Rollout,
    RolloutApproval,
    RolloutState,
    RolloutStep,
)
from ..schemas.rollout_schemas import (
    NodeBundleStatusResponse,
    ProgressSummary,
    RolloutApprovalResponse,
    RolloutDetailResponse,
    RolloutResponse,
    RolloutStepResponse,
)


async def get_rollout(
    db: AsyncSession,
    rollout_id: UUID,
    project_id: Optional[UUID] = None,
    for_update: bool = False,
) -> Rollout:
    """
    Retrieves a single rollout by its ID, optionally scoped to a project.

    Args:
        db: The SQLAlchemy async session.
        rollout_id: The ID of the rollout to retrieve.
        project_id: When given, the rollout must belong to this project.
        for_update: Take a row lock and refresh the loaded state, for
            callers about to change the rollout state.

    Returns:
        The Rollout object.

    Raises:
        HTTPException: If the rollout is not found.
    """
    query = select(Rollout).where(Rollout.id == rollout_id)
    if project_id is not None:
        query = query.where(Rollout.project_id == project_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(query)
    rollout = result.scalar_one_or_none()

    if not rollout:
        logger.warning(f"Rollout with ID {rollout_id} not found")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Rollout with ID {rollout_id} not found.",
        )
    return rollout


async def list_rollouts(
    db: AsyncSession,
    project_id: UUID,
    state: Optional[RolloutState] = None,
    skip: int = 0,
    limit: int = 100,
) -> Tuple[List[Rollout], int]:
    """
    Lists rollouts of a project, newest first.

    Returns:
        A tuple containing a list of Rollout objects and the total count.
    """
    query_filters = [Rollout.project_id == project_id]
    if state is not None:
        query_filters.append(Rollout.state == state)

    count_query = select(func.count(Rollout.id)).where(and_(*query_filters))
    total = (await db.execute(count_query)).scalar_one()

    items_query = (
        select(Rollout)
        .where(and_(*query_filters))
        .order_by(Rollout.inserted_at.desc(), Rollout.id)
        .offset(skip)
        .limit(limit)
    )
    items = (await db.execute(items_query)).scalars().all()
    return list(items), total


async def get_steps(db: AsyncSession, rollout_id: UUID) -> List[RolloutStep]:
    """Steps of a rollout in step_index order."""
    result = await db.execute(
        select(RolloutStep)
        .where(RolloutStep.rollout_id == rollout_id)
        .order_by(RolloutStep.step_index)
    )
    return list(result.scalars().all())


async def get_node_statuses(
    db: AsyncSession, rollout_id: UUID, node_ids: Optional[Iterable[UUID]] = None
) -> List[NodeBundleStatus]:
    query = select(NodeBundleStatus).where(NodeBundleStatus.rollout_id == rollout_id)
    if node_ids is not None:
        query = query.where(NodeBundleStatus.node_id.in_(list(node_ids)))
    result = await db.execute(query.order_by(NodeBundleStatus.inserted_at, NodeBundleStatus.node_id))
    return list(result.scalars().all())


async def get_approvals(db: AsyncSession, rollout_id: UUID) -> List[RolloutApproval]:
    result = await db.execute(
        select(RolloutApproval)
        .where(RolloutApproval.rollout_id == rollout_id)
        .order_by(RolloutApproval.approved_at)
    )
    return list(result.scalars().all())


async def count_approvals(db: AsyncSession, rollout_id: UUID) -> int:
    result = await db.execute(
        select(func.count(func.distinct(RolloutApproval.user_id))).where(
            RolloutApproval.rollout_id == rollout_id
        )
    )
    return result.scalar_one()


async def list_running_rollout_ids(db: AsyncSession) -> List[UUID]:
    result = await db.execute(
        select(Rollout.id).where(Rollout.state == RolloutState.RUNNING)
    )
    return list(result.scalars().all())


async def list_due_scheduled_rollouts(db: AsyncSession, now: datetime) -> List[Rollout]:
    """Pending rollouts whose scheduled_at has passed, oldest schedule first."""
    result = await db.execute(
        select(Rollout)
        .where(
            Rollout.state == RolloutState.PENDING,
            Rollout.scheduled_at.is_not(None),
            Rollout.scheduled_at <= now,
        )
        .order_by(Rollout.scheduled_at)
        .with_for_update(skip_locked=True)
    )
    return list(result.scalars().all())


async def list_pending_approvals(db: AsyncSession, project_id: UUID) -> List[Rollout]:
    result = await db.execute(
        select(Rollout)
        .where(
            Rollout.project_id == project_id,
            Rollout.state == RolloutState.PENDING,
            Rollout.approval_state == ApprovalState.PENDING_APPROVAL,
        )
        .order_by(Rollout.inserted_at)
    )
    return list(result.scalars().all())


def summarize_progress(
    steps: List[RolloutStep], statuses: List[NodeBundleStatus]
) -> ProgressSummary:
    """
    Counts targeted nodes per NodeBundleStatus state.

    Nodes that have no status row yet (their step has not started) count as
    pending.
    """
    node_ids = {str(node_id) for step in steps for node_id in (step.node_ids or [])}
    summary = ProgressSummary(total=len(node_ids))

    seen = set()
    for row in statuses:
        key = str(row.node_id)
        if key not in node_ids or key in seen:
            continue
        seen.add(key)
        field = row.state.value
        setattr(summary, field, getattr(summary, field) + 1)

    summary.pending += len(node_ids - seen)
    return summary


async def get_rollout_progress(db: AsyncSession, rollout_id: UUID) -> ProgressSummary:
    steps = await get_steps(db, rollout_id)
    statuses = await get_node_statuses(db, rollout_id)
    return summarize_progress(steps, statuses)


async def get_rollout_with_details(
    db: AsyncSession, rollout_id: UUID, project_id: Optional[UUID] = None
) -> RolloutDetailResponse:
    """
    Loads a rollout with its ordered steps, node statuses, approvals and progress.

    Raises:
        HTTPException: If the rollout is not found.
    """
    rollout = await get_rollout(db, rollout_id, project_id)
    steps = await get_steps(db, rollout.id)
    statuses = await get_node_statuses(db, rollout.id)
    approvals = await get_approvals(db, rollout.id)

    base = RolloutResponse.model_validate(rollout).model_dump()
    return RolloutDetailResponse(
        **base,
        steps=[RolloutStepResponse.model_validate(s) for s in steps],
        node_statuses=[NodeBundleStatusResponse.model_validate(s) for s in statuses],
        approvals=[RolloutApprovalResponse.model_validate(a) for a in approvals],
        progress=summarize_progress(steps, statuses),
    )
