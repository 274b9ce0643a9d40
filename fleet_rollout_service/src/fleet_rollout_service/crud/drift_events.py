# fleet_rollout_service/src/fleet_rollout_service/crud/drift_events.py
from datetime import datetime, time, timezone
from typing import Iterable, List, Optional
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..logging_config import logger
from ..models.base import utcnow
from ..models.drift_event import DriftEvent
from ..models.node import Node
from ..schemas.drift_schemas import DriftEventStats, DriftStats


async def get_drift_event(
    db: AsyncSession, event_id: UUID, project_id: Optional[UUID] = None
) -> DriftEvent:
    """
    Retrieves a drift event by ID.

    Raises:
        HTTPException: If the event is not found.
    """
    query = select(DriftEvent).where(DriftEvent.id == event_id)
    if project_id is not None:
        query = query.where(DriftEvent.project_id == project_id)
    event = (await db.execute(query)).scalar_one_or_none()
    if not event:
        logger.warning(f"Drift event with ID {event_id} not found")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Drift event with ID {event_id} not found.",
        )
    return event


async def list_drift_events(
    db: AsyncSession, project_id: UUID, include_resolved: bool = False
) -> List[DriftEvent]:
    """Drift events of a project, most recently detected first."""
    query = select(DriftEvent).where(DriftEvent.project_id == project_id)
    if not include_resolved:
        query = query.where(DriftEvent.resolved_at.is_(None))
    query = query.order_by(DriftEvent.detected_at.desc())
    return list((await db.execute(query)).scalars().all())


async def get_active_events_for_nodes(
    db: AsyncSession, node_ids: Iterable[UUID]
) -> List[DriftEvent]:
    ids = list(node_ids)
    if not ids:
        return []
    result = await db.execute(
        select(DriftEvent).where(
            DriftEvent.node_id.in_(ids), DriftEvent.resolved_at.is_(None)
        )
    )
    return list(result.scalars().all())


async def get_drift_stats(db: AsyncSession, project_id: UUID) -> DriftStats:
    """Counts managed nodes (expected bundle set) and how many have drifted."""
    result = await db.execute(
        select(Node.expected_bundle_id, Node.active_bundle_id).where(
            Node.project_id == project_id, Node.expected_bundle_id.is_not(None)
        )
    )
    rows = result.all()
    drifted = sum(1 for expected, active in rows if expected != active)
    return DriftStats(total_managed=len(rows), drifted=drifted, in_sync=len(rows) - drifted)


async def get_drift_event_stats(
    db: AsyncSession, project_id: UUID, now: Optional[datetime] = None
) -> DriftEventStats:
    now = now or utcnow()
    start_of_day = datetime.combine(now.date(), time.min, tzinfo=timezone.utc)

    active = (
        await db.execute(
            select(func.count(DriftEvent.id)).where(
                DriftEvent.project_id == project_id, DriftEvent.resolved_at.is_(None)
            )
        )
    ).scalar_one()
    resolved_today = (
        await db.execute(
            select(func.count(DriftEvent.id)).where(
                DriftEvent.project_id == project_id,
                DriftEvent.resolved_at >= start_of_day,
            )
        )
    ).scalar_one()
    return DriftEventStats(active=active, resolved_today=resolved_today)
