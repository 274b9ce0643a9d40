# fleet_rollout_service/src/fleet_rollout_service/routers/rollout_routes.py
"""
API routes for rollouts.

Creating a rollout plans its steps synchronously. Progress itself is made by
the tick scheduler in the background; the state-changing routes commit first
and then ask the scheduler to drive the rollout.
"""

from contextlib import nullcontext
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..crud import rollouts as crud
from ..db import get_db
from ..dependencies import get_actor_id, get_optional_actor_id, get_tick_scheduler
from ..logging_config import logger
from ..models.rollout import RolloutState
from ..rate_limiting import ROLLOUT_ACTION_LIMIT, ROLLOUT_CREATE_LIMIT, limiter
from ..schemas.common import PaginatedResponse
from ..schemas.rollout_schemas import (
    ApproveRequest,
    ProgressSummary,
    RejectRequest,
    RolloutCreate,
    RolloutDetailResponse,
    RolloutFromTemplate,
    RolloutResponse,
    TickResponse,
)
from ..services import orchestrator, rollout_service
from ..services.tick_scheduler import TickScheduler

router = APIRouter(
    prefix="/projects/{project_id}/rollouts",
    tags=["Rollouts"],
)


async def _commit_and_drive(
    db: AsyncSession, rollout, scheduler: Optional[TickScheduler]
) -> None:
    await db.commit()
    if scheduler is not None and rollout.state == RolloutState.RUNNING:
        scheduler.request_tick(rollout.id)


@router.post(
    "/",
    response_model=RolloutResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a Rollout",
)
@limiter.limit(ROLLOUT_CREATE_LIMIT)
async def create_rollout(
    request: Request,
    project_id: UUID,
    rollout_data: RolloutCreate,
    db: AsyncSession = Depends(get_db),
    actor_id: Optional[UUID] = Depends(get_optional_actor_id),
    scheduler: Optional[TickScheduler] = Depends(get_tick_scheduler),
):
    """
    Creates a rollout of a compiled bundle to the nodes matched by the selector.

    - **target_selector**: `{"type": "all"}`, `{"type": "labels", "labels": {...}}`
      or `{"type": "node_ids", "node_ids": [...]}`.
    - **health_gates**: only recognized keys are accepted.
    - **start_immediately**: start now when no approval or schedule holds it back.
    """
    rollout = await rollout_service.create_rollout(db, project_id, rollout_data, actor_id)
    await _commit_and_drive(db, rollout, scheduler)
    return rollout


@router.post(
    "/from-template",
    response_model=RolloutResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a Rollout from a Template",
)
@limiter.limit(ROLLOUT_CREATE_LIMIT)
async def create_rollout_from_template(
    request: Request,
    project_id: UUID,
    template_request: RolloutFromTemplate,
    db: AsyncSession = Depends(get_db),
    actor_id: Optional[UUID] = Depends(get_optional_actor_id),
    scheduler: Optional[TickScheduler] = Depends(get_tick_scheduler),
):
    rollout = await rollout_service.create_rollout_from_template(
        db, project_id, template_request, actor_id
    )
    await _commit_and_drive(db, rollout, scheduler)
    return rollout


@router.get(
    "/",
    response_model=PaginatedResponse[RolloutResponse],
    summary="List Rollouts",
)
async def list_rollouts(
    project_id: UUID,
    state: Optional[RolloutState] = Query(None, description="Filter by rollout state."),
    skip: int = Query(0, ge=0, description="Pagination skip."),
    limit: int = Query(100, ge=1, le=200, description="Pagination limit."),
    db: AsyncSession = Depends(get_db),
):
    rollouts, total = await crud.list_rollouts(
        db, project_id, state=state, skip=skip, limit=limit
    )
    return PaginatedResponse[RolloutResponse].build(
        [RolloutResponse.model_validate(r) for r in rollouts], total, skip, limit
    )


@router.get(
    "/pending-approvals",
    response_model=List[RolloutResponse],
    summary="List Rollouts Awaiting Approval",
)
async def list_pending_approvals(project_id: UUID, db: AsyncSession = Depends(get_db)):
    return await crud.list_pending_approvals(db, project_id)


@router.get(
    "/{rollout_id}",
    response_model=RolloutDetailResponse,
    summary="Get Rollout with Steps and Progress",
)
async def get_rollout(project_id: UUID, rollout_id: UUID, db: AsyncSession = Depends(get_db)):
    return await crud.get_rollout_with_details(db, rollout_id, project_id)


@router.get(
    "/{rollout_id}/progress",
    response_model=ProgressSummary,
    summary="Get Rollout Progress Counts",
)
async def get_rollout_progress(
    project_id: UUID, rollout_id: UUID, db: AsyncSession = Depends(get_db)
):
    await crud.get_rollout(db, rollout_id, project_id)
    return await crud.get_rollout_progress(db, rollout_id)


@router.post("/{rollout_id}/start", response_model=RolloutResponse, summary="Start a Rollout")
@limiter.limit(ROLLOUT_ACTION_LIMIT)
async def start_rollout(
    request: Request,
    project_id: UUID,
    rollout_id: UUID,
    db: AsyncSession = Depends(get_db),
    scheduler: Optional[TickScheduler] = Depends(get_tick_scheduler),
):
    rollout = await rollout_service.start_rollout(db, rollout_id, project_id)
    await _commit_and_drive(db, rollout, scheduler)
    return rollout


@router.post("/{rollout_id}/pause", response_model=RolloutResponse, summary="Pause a Rollout")
@limiter.limit(ROLLOUT_ACTION_LIMIT)
async def pause_rollout(
    request: Request,
    project_id: UUID,
    rollout_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    rollout = await rollout_service.pause_rollout(db, rollout_id, project_id)
    await db.commit()
    return rollout


@router.post("/{rollout_id}/resume", response_model=RolloutResponse, summary="Resume a Rollout")
@limiter.limit(ROLLOUT_ACTION_LIMIT)
async def resume_rollout(
    request: Request,
    project_id: UUID,
    rollout_id: UUID,
    db: AsyncSession = Depends(get_db),
    scheduler: Optional[TickScheduler] = Depends(get_tick_scheduler),
):
    rollout = await rollout_service.resume_rollout(db, rollout_id, project_id)
    await _commit_and_drive(db, rollout, scheduler)
    return rollout


@router.post("/{rollout_id}/cancel", response_model=RolloutResponse, summary="Cancel a Rollout")
@limiter.limit(ROLLOUT_ACTION_LIMIT)
async def cancel_rollout(
    request: Request,
    project_id: UUID,
    rollout_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    rollout = await rollout_service.cancel_rollout(db, rollout_id, project_id)
    await db.commit()
    return rollout


@router.post(
    "/{rollout_id}/rollback", response_model=RolloutResponse, summary="Roll Back a Rollout"
)
@limiter.limit(ROLLOUT_ACTION_LIMIT)
async def rollback_rollout(
    request: Request,
    project_id: UUID,
    rollout_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    """
    Cancels the rollout and clears the staged bundle on its nodes. Nodes that
    already activated the bundle keep it.
    """
    rollout = await rollout_service.rollback_rollout(db, rollout_id, project_id)
    await db.commit()
    return rollout


@router.post("/{rollout_id}/approve", response_model=RolloutResponse, summary="Approve a Rollout")
@limiter.limit(ROLLOUT_ACTION_LIMIT)
async def approve_rollout(
    request: Request,
    project_id: UUID,
    rollout_id: UUID,
    approval: Optional[ApproveRequest] = None,
    db: AsyncSession = Depends(get_db),
    actor_id: UUID = Depends(get_actor_id),
):
    rollout = await rollout_service.approve_rollout(
        db, rollout_id, actor_id, comment=approval.comment if approval else None, project_id=project_id
    )
    await db.commit()
    return rollout


@router.post("/{rollout_id}/reject", response_model=RolloutResponse, summary="Reject a Rollout")
@limiter.limit(ROLLOUT_ACTION_LIMIT)
async def reject_rollout(
    request: Request,
    project_id: UUID,
    rollout_id: UUID,
    rejection: RejectRequest,
    db: AsyncSession = Depends(get_db),
    actor_id: UUID = Depends(get_actor_id),
):
    rollout = await rollout_service.reject_rollout(
        db, rollout_id, actor_id, rejection.comment, project_id=project_id
    )
    await db.commit()
    return rollout


@router.post("/{rollout_id}/tick", response_model=TickResponse, summary="Tick a Rollout Now")
@limiter.limit(ROLLOUT_ACTION_LIMIT)
async def tick_rollout(
    request: Request,
    project_id: UUID,
    rollout_id: UUID,
    db: AsyncSession = Depends(get_db),
    scheduler: Optional[TickScheduler] = Depends(get_tick_scheduler),
):
    """
    Runs one orchestrator tick immediately, then leaves further progress to the
    scheduler if the rollout is still running. Rejected with 409 while the
    scheduler has a tick in flight for the rollout.
    """
    await crud.get_rollout(db, rollout_id, project_id)
    async with scheduler.claim(rollout_id) if scheduler is not None else nullcontext():
        result = await orchestrator.tick(db, rollout_id)
        await db.commit()

    if scheduler is not None and result.should_continue:
        scheduler.request_tick(rollout_id)

    logger.info(f"[Rollout:{rollout_id}] Manual tick -> {result.outcome.value}")
    return TickResponse(rollout_id=rollout_id, outcome=result.outcome.value, reason=result.reason)
