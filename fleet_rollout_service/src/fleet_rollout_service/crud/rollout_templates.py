# fleet_rollout_service/src/fleet_rollout_service/crud/rollout_templates.py
"""
CRUD operations for rollout templates.
"""

from typing import List, Optional
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..logging_config import logger
from ..models.rollout import RolloutTemplate
from ..schemas.rollout_schemas import dump_target_selector
from ..schemas.template_schemas import RolloutTemplateCreate, RolloutTemplateUpdate


async def _clear_default(db: AsyncSession, project_id: UUID, keep_id: Optional[UUID] = None):
    query = update(RolloutTemplate).where(
        RolloutTemplate.project_id == project_id, RolloutTemplate.is_default.is_(True)
    )
    if keep_id is not None:
        query = query.where(RolloutTemplate.id != keep_id)
    await db.execute(query.values(is_default=False).execution_options(synchronize_session="fetch"))


async def _commit_or_conflict(db: AsyncSession, name: str) -> None:
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Rollout template '{name}' already exists in this project.",
        )


async def create_template(
    db: AsyncSession,
    project_id: UUID,
    template_data: RolloutTemplateCreate,
    created_by_id: Optional[UUID] = None,
) -> RolloutTemplate:
    """
    Creates a rollout template. Marking it default unsets any previous default.

    Raises:
        HTTPException: 409 if the name is already taken in the project.
    """
    if template_data.is_default:
        await _clear_default(db, project_id)

    template = RolloutTemplate(
        project_id=project_id,
        name=template_data.name,
        description=template_data.description,
        is_default=template_data.is_default,
        target_selector=(
            dump_target_selector(template_data.target_selector)
            if template_data.target_selector is not None
            else None
        ),
        strategy=template_data.strategy,
        batch_size=template_data.batch_size,
        max_unavailable=template_data.max_unavailable,
        progress_deadline_seconds=template_data.progress_deadline_seconds,
        health_gates=template_data.health_gates.to_config(),
        created_by_id=created_by_id,
    )
    db.add(template)
    await _commit_or_conflict(db, template_data.name)
    await db.refresh(template)

    logger.info(f"Created rollout template {template.id} '{template.name}'")
    return template


async def get_template(
    db: AsyncSession, project_id: UUID, template_id: UUID
) -> RolloutTemplate:
    """
    Retrieves a single template, scoped to its project.

    Raises:
        HTTPException: If the template is not found.
    """
    result = await db.execute(
        select(RolloutTemplate).where(
            RolloutTemplate.id == template_id,
            RolloutTemplate.project_id == project_id,
        )
    )
    template = result.scalar_one_or_none()
    if not template:
        logger.warning(f"Rollout template {template_id} not found in project {project_id}")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Rollout template with ID {template_id} not found.",
        )
    return template


async def get_default_template(
    db: AsyncSession, project_id: UUID
) -> Optional[RolloutTemplate]:
    result = await db.execute(
        select(RolloutTemplate).where(
            RolloutTemplate.project_id == project_id,
            RolloutTemplate.is_default.is_(True),
        )
    )
    return result.scalars().first()


async def list_templates(db: AsyncSession, project_id: UUID) -> List[RolloutTemplate]:
    """Lists templates with the default first, then by name."""
    result = await db.execute(
        select(RolloutTemplate)
        .where(RolloutTemplate.project_id == project_id)
        .order_by(RolloutTemplate.is_default.desc(), RolloutTemplate.name)
    )
    return list(result.scalars().all())


async def update_template(
    db: AsyncSession,
    project_id: UUID,
    template_id: UUID,
    update_data: RolloutTemplateUpdate,
) -> RolloutTemplate:
    template = await get_template(db, project_id, template_id)

    update_dict = update_data.model_dump(exclude_unset=True)
    if "target_selector" in update_dict:
        update_dict["target_selector"] = (
            dump_target_selector(update_data.target_selector)
            if update_data.target_selector is not None
            else None
        )
    if "health_gates" in update_dict:
        update_dict["health_gates"] = (
            update_data.health_gates.to_config() if update_data.health_gates else {}
        )
    if update_dict.get("is_default"):
        await _clear_default(db, project_id, keep_id=template.id)

    for key, value in update_dict.items():
        setattr(template, key, value)

    await _commit_or_conflict(db, template.name)
    await db.refresh(template)

    logger.info(f"Updated rollout template {template.id} fields: {sorted(update_dict)}")
    return template


async def delete_template(db: AsyncSession, project_id: UUID, template_id: UUID) -> None:
    template = await get_template(db, project_id, template_id)

    await db.delete(template)
    await db.commit()

    logger.info(f"Deleted rollout template with ID: {template_id}")
