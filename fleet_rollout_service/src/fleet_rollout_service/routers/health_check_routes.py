# fleet_rollout_service/src/fleet_rollout_service/routers/health_check_routes.py
"""
CRUD routes for custom health check endpoints, plus an on-demand probe.
"""
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..clients.health_probe_client import probe_endpoint
from ..crud import health_checks as crud
from ..db import get_db
from ..schemas.health_check_schemas import (
    HealthCheckEndpointCreate,
    HealthCheckEndpointResponse,
    HealthCheckEndpointUpdate,
)

router = APIRouter(prefix="/projects/{project_id}/health-checks", tags=["Health Checks"])


@router.post(
    "/",
    response_model=HealthCheckEndpointResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a Health Check Endpoint",
)
async def create_endpoint(
    project_id: UUID,
    endpoint_data: HealthCheckEndpointCreate,
    db: AsyncSession = Depends(get_db),
):
    return await crud.create_endpoint(db, project_id, endpoint_data)


@router.get("/", response_model=List[HealthCheckEndpointResponse], summary="List Health Checks")
async def list_endpoints(project_id: UUID, db: AsyncSession = Depends(get_db)):
    return await crud.list_endpoints(db, project_id)


@router.get(
    "/{endpoint_id}", response_model=HealthCheckEndpointResponse, summary="Get a Health Check"
)
async def get_endpoint(project_id: UUID, endpoint_id: UUID, db: AsyncSession = Depends(get_db)):
    return await crud.get_endpoint(db, project_id, endpoint_id)


@router.patch(
    "/{endpoint_id}", response_model=HealthCheckEndpointResponse, summary="Update a Health Check"
)
async def update_endpoint(
    project_id: UUID,
    endpoint_id: UUID,
    update_data: HealthCheckEndpointUpdate,
    db: AsyncSession = Depends(get_db),
):
    return await crud.update_endpoint(db, project_id, endpoint_id, update_data)


@router.delete(
    "/{endpoint_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a Health Check"
)
async def delete_endpoint(
    project_id: UUID, endpoint_id: UUID, db: AsyncSession = Depends(get_db)
):
    await crud.delete_endpoint(db, project_id, endpoint_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{endpoint_id}/test", summary="Probe a Health Check Endpoint Once")
async def test_endpoint(project_id: UUID, endpoint_id: UUID, db: AsyncSession = Depends(get_db)):
    endpoint = await crud.get_endpoint(db, project_id, endpoint_id)
    result = await probe_endpoint(endpoint)
    return {
        "success": result.success,
        "status_code": result.status_code,
        "duration_ms": result.duration_ms,
        "reason": result.reason,
    }
