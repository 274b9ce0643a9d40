# fleet_rollout_service/src/fleet_rollout_service/routers/node_routes.py
"""
Node registration and the inbound node report endpoints.

Nodes pull their work; these routes are how they report liveness and bundle
progress back to the control plane.
"""
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..crud import nodes as crud
from ..db import get_db
from ..models.node import NodeStatus
from ..schemas.common import CountResponse
from ..schemas.node_schemas import (
    BundleReportRequest,
    HeartbeatRequest,
    NodeCreate,
    NodeResponse,
)

router = APIRouter(tags=["Nodes"])


@router.post(
    "/projects/{project_id}/nodes",
    response_model=NodeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a Node",
)
async def register_node(
    project_id: UUID, node_data: NodeCreate, db: AsyncSession = Depends(get_db)
):
    node = await crud.register_node(db, project_id, node_data)
    await db.commit()
    return node


@router.get(
    "/projects/{project_id}/nodes", response_model=List[NodeResponse], summary="List Nodes"
)
async def list_nodes(
    project_id: UUID,
    node_status: Optional[NodeStatus] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
):
    return await crud.list_nodes(db, project_id, node_status=node_status)


@router.get("/nodes/{node_id}", response_model=NodeResponse, summary="Get a Node")
async def get_node(node_id: UUID, db: AsyncSession = Depends(get_db)):
    return await crud.get_node(db, node_id)


@router.post(
    "/nodes/{node_id}/heartbeat",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=NodeResponse,
    summary="Ingest a Node Heartbeat",
)
async def heartbeat(
    node_id: UUID, heartbeat_data: HeartbeatRequest, db: AsyncSession = Depends(get_db)
):
    await crud.record_heartbeat(
        db,
        node_id,
        health=heartbeat_data.health,
        metrics=heartbeat_data.metrics,
        active_bundle_id=heartbeat_data.active_bundle_id,
        staged_bundle_id=heartbeat_data.staged_bundle_id,
    )
    await db.commit()
    return await crud.get_node(db, node_id)


@router.post(
    "/nodes/{node_id}/bundle-reports",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=CountResponse,
    summary="Report Bundle Progress",
)
async def bundle_report(
    node_id: UUID, report: BundleReportRequest, db: AsyncSession = Depends(get_db)
):
    """Returns how many rollout status rows the report advanced."""
    advanced = await crud.record_bundle_report(
        db,
        node_id,
        report.bundle_id,
        report.state,
        reason=report.reason,
        error=report.error,
    )
    await db.commit()
    return CountResponse(count=len(advanced))
