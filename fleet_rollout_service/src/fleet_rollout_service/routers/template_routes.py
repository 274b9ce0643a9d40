# fleet_rollout_service/src/fleet_rollout_service/routers/template_routes.py
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..crud import rollout_templates as crud
from ..db import get_db
from ..dependencies import get_optional_actor_id
from ..schemas.template_schemas import (
    RolloutTemplateCreate,
    RolloutTemplateResponse,
    RolloutTemplateUpdate,
)

router = APIRouter(
    prefix="/projects/{project_id}/rollout-templates", tags=["Rollout Templates"]
)


@router.post(
    "/",
    response_model=RolloutTemplateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a Rollout Template",
)
async def create_template(
    project_id: UUID,
    template_data: RolloutTemplateCreate,
    db: AsyncSession = Depends(get_db),
    actor_id: Optional[UUID] = Depends(get_optional_actor_id),
):
    return await crud.create_template(db, project_id, template_data, created_by_id=actor_id)


@router.get("/", response_model=List[RolloutTemplateResponse], summary="List Rollout Templates")
async def list_templates(project_id: UUID, db: AsyncSession = Depends(get_db)):
    return await crud.list_templates(db, project_id)


@router.get(
    "/{template_id}", response_model=RolloutTemplateResponse, summary="Get a Rollout Template"
)
async def get_template(project_id: UUID, template_id: UUID, db: AsyncSession = Depends(get_db)):
    return await crud.get_template(db, project_id, template_id)


@router.patch(
    "/{template_id}", response_model=RolloutTemplateResponse, summary="Update a Rollout Template"
)
async def update_template(
    project_id: UUID,
    template_id: UUID,
    update_data: RolloutTemplateUpdate,
    db: AsyncSession = Depends(get_db),
):
    return await crud.update_template(db, project_id, template_id, update_data)


@router.delete(
    "/{template_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a Rollout Template"
)
async def delete_template(
    project_id: UUID, template_id: UUID, db: AsyncSession = Depends(get_db)
):
    await crud.delete_template(db, project_id, template_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
