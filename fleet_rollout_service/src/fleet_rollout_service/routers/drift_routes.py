# fleet_rollout_service/src/fleet_rollout_service/routers/drift_routes.py
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..crud import drift_events as crud
from ..db import get_db
from ..schemas.common import CountResponse
from ..schemas.drift_schemas import (
    DriftDetectionResult,
    DriftEventResponse,
    DriftEventStats,
    DriftResolveRequest,
    DriftStats,
)
from ..services import drift_detector

router = APIRouter(prefix="/projects/{project_id}/drift", tags=["Drift"])


@router.get("/", response_model=List[DriftEventResponse], summary="List Drift Events")
async def list_drift_events(
    project_id: UUID,
    include_resolved: bool = Query(False, description="Include resolved events."),
    db: AsyncSession = Depends(get_db),
):
    return await crud.list_drift_events(db, project_id, include_resolved=include_resolved)


@router.get("/stats", response_model=DriftStats, summary="Managed Node Drift Counts")
async def get_drift_stats(project_id: UUID, db: AsyncSession = Depends(get_db)):
    return await crud.get_drift_stats(db, project_id)


@router.get("/events/stats", response_model=DriftEventStats, summary="Drift Event Counts")
async def get_drift_event_stats(project_id: UUID, db: AsyncSession = Depends(get_db)):
    return await crud.get_drift_event_stats(db, project_id)


@router.post("/detect", response_model=DriftDetectionResult, summary="Run Drift Detection Now")
async def detect_drift(project_id: UUID, db: AsyncSession = Depends(get_db)):
    result = await drift_detector.detect_drift(db, project_id)
    await db.commit()
    return result


@router.post("/resolve-all", response_model=CountResponse, summary="Resolve All Drift Events")
async def resolve_all_drift_events(project_id: UUID, db: AsyncSession = Depends(get_db)):
    count = await drift_detector.resolve_all_drift_events(db, project_id)
    await db.commit()
    return CountResponse(count=count)


@router.post(
    "/{event_id}/resolve",
    response_model=DriftEventResponse,
    summary="Resolve a Drift Event",
)
async def resolve_drift_event(
    project_id: UUID,
    event_id: UUID,
    resolve_request: DriftResolveRequest = DriftResolveRequest(),
    db: AsyncSession = Depends(get_db),
):
    """Fails with 409 "already resolved" if the event was resolved before."""
    event = await drift_detector.resolve_drift_event(
        db, event_id, resolve_request.resolution, project_id=project_id
    )
    await db.commit()
    return event
