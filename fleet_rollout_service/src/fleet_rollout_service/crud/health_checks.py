# fleet_rollout_service/src/fleet_rollout_service/crud/health_checks.py
"""
CRUD operations for project-scoped custom health check endpoints.
"""

from typing import List
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..logging_config import logger
from ..models.rollout import HealthCheckEndpoint
from ..schemas.health_check_schemas import (
    HealthCheckEndpointCreate,
    HealthCheckEndpointUpdate,
)


async def create_endpoint(
    db: AsyncSession, project_id: UUID, endpoint_data: HealthCheckEndpointCreate
) -> HealthCheckEndpoint:
    """
    Creates a new health check endpoint for a project.

    Args:
        db: The SQLAlchemy async session.
        project_id: The owning project.
        endpoint_data: The validated endpoint definition.

    Returns:
        The newly created HealthCheckEndpoint.

    Raises:
        HTTPException: 409 if the project already has an endpoint with this name.
    """
    endpoint = HealthCheckEndpoint(
        project_id=project_id,
        **endpoint_data.model_dump(),
    )
    db.add(endpoint)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Health check '{endpoint_data.name}' already exists in this project.",
        )
    await db.refresh(endpoint)

    logger.info(f"Created health check endpoint {endpoint.id} ({endpoint.url})")
    return endpoint


async def get_endpoint(
    db: AsyncSession, project_id: UUID, endpoint_id: UUID
) -> HealthCheckEndpoint:
    """
    Retrieves a single endpoint, scoped to its project.

    Raises:
        HTTPException: If the endpoint is not found.
    """
    result = await db.execute(
        select(HealthCheckEndpoint).where(
            HealthCheckEndpoint.id == endpoint_id,
            HealthCheckEndpoint.project_id == project_id,
        )
    )
    endpoint = result.scalar_one_or_none()
    if not endpoint:
        logger.warning(f"Health check endpoint {endpoint_id} not found in project {project_id}")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Health check endpoint with ID {endpoint_id} not found.",
        )
    return endpoint


async def list_endpoints(
    db: AsyncSession, project_id: UUID, enabled_only: bool = False
) -> List[HealthCheckEndpoint]:
    """Lists a project's endpoints in creation order."""
    query = select(HealthCheckEndpoint).where(HealthCheckEndpoint.project_id == project_id)
    if enabled_only:
        query = query.where(HealthCheckEndpoint.enabled.is_(True))
    query = query.order_by(HealthCheckEndpoint.inserted_at, HealthCheckEndpoint.id)
    result = await db.execute(query)
    return list(result.scalars().all())


async def update_endpoint(
    db: AsyncSession,
    project_id: UUID,
    endpoint_id: UUID,
    update_data: HealthCheckEndpointUpdate,
) -> HealthCheckEndpoint:
    endpoint = await get_endpoint(db, project_id, endpoint_id)

    update_dict = update_data.model_dump(exclude_unset=True)
    for key, value in update_dict.items():
        setattr(endpoint, key, value)

    await db.commit()
    await db.refresh(endpoint)

    logger.info(f"Updated health check endpoint {endpoint.id} with data: {update_dict}")
    return endpoint


async def delete_endpoint(db: AsyncSession, project_id: UUID, endpoint_id: UUID) -> None:
    endpoint = await get_endpoint(db, project_id, endpoint_id)

    await db.delete(endpoint)
    await db.commit()

    logger.info(f"Deleted health check endpoint with ID: {endpoint_id}")
