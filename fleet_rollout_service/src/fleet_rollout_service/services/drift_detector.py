# fleet_rollout_service/src/fleet_rollout_service/services/drift_detector.py
"""
Drift detection: reconciles each managed node's expected bundle with the
bundle it reports as active.

A node is managed once the control plane has set its ``expected_bundle_id``.
Detection is idempotent: a node keeps at most one unresolved DriftEvent.
"""
from datetime import datetime
from typing import Dict, Iterable, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..crud import drift_events as drift_crud
from ..exceptions import DriftEventAlreadyResolvedError
from ..logging_config import logger
from ..models.base import utcnow
from ..models.drift_event import DriftEvent, DriftResolution, DriftSeverity
from ..models.node import Node
from ..schemas.drift_schemas import DriftDetectionResult


def classify_severity(node: Node) -> DriftSeverity:
    if node.active_bundle_id is None:
        return DriftSeverity.CRITICAL
    return DriftSeverity.MEDIUM


def _resolve(event: DriftEvent, resolution: DriftResolution, now: datetime) -> None:
    event.resolved_at = now
    event.resolution = resolution


async def detect_drift(
    db: AsyncSession, project_id: Optional[UUID] = None, now: Optional[datetime] = None
) -> DriftDetectionResult:
    """
    Runs one detection pass.

    Creates an event for every drifted node that has none open, and resolves
    the open event of every managed node that is back in sync as
    ``auto_corrected``.

    Args:
        db: The SQLAlchemy async session.
        project_id: Limit the pass to one project; all projects when omitted.
        now: Detection time, defaults to the current time.
    """
    now = now or utcnow()
    query = select(Node).where(Node.expected_bundle_id.is_not(None))
    if project_id is not None:
        query = query.where(Node.project_id == project_id)
    nodes = list((await db.execute(query)).scalars().all())

    open_events: Dict[UUID, DriftEvent] = {}
    for event in await drift_crud.get_active_events_for_nodes(db, [n.id for n in nodes]):
        open_events.setdefault(event.node_id, event)

    created = 0
    auto_resolved = 0
    for node in nodes:
        event = open_events.get(node.id)
        if node.active_bundle_id != node.expected_bundle_id:
            if event is not None:
                continue
            db.add(
                DriftEvent(
                    node_id=node.id,
                    project_id=node.project_id,
                    expected_bundle_id=node.expected_bundle_id,
                    actual_bundle_id=node.active_bundle_id,
                    detected_at=now,
                    severity=classify_severity(node),
                )
            )
            created += 1
            logger.warning(
                f"[Node:{node.id}] Drift detected: expected {node.expected_bundle_id}, "
                f"active {node.active_bundle_id}"
            )
        elif event is not None:
            _resolve(event, DriftResolution.AUTO_CORRECTED, now)
            auto_resolved += 1
            logger.info(f"[Node:{node.id}] Drift auto-corrected (event {event.id})")

    await db.flush()
    logger.debug(
        f"Drift pass checked {len(nodes)} node(s): {created} new, {auto_resolved} auto-resolved"
    )
    return DriftDetectionResult(checked=len(nodes), created=created, auto_resolved=auto_resolved)


async def resolve_drift_event(
    db: AsyncSession,
    event_id: UUID,
    resolution: DriftResolution = DriftResolution.MANUAL,
    project_id: Optional[UUID] = None,
    now: Optional[datetime] = None,
) -> DriftEvent:
    """
    Resolves a single drift event.

    Raises:
        HTTPException: If the event is not found.
        DriftEventAlreadyResolvedError: If it was resolved before.
    """
    event = await drift_crud.get_drift_event(db, event_id, project_id)
    if event.resolved_at is not None:
        logger.info(f"Drift event {event_id} is already resolved")
        raise DriftEventAlreadyResolvedError(f"Drift event {event_id} was resolved at {event.resolved_at}.")

    _resolve(event, resolution, now or utcnow())
    await db.flush()
    logger.info(f"Drift event {event_id} resolved as {resolution.value}")
    return event


async def resolve_all_drift_events(
    db: AsyncSession,
    project_id: UUID,
    resolution: DriftResolution = DriftResolution.MANUAL,
    now: Optional[datetime] = None,
) -> int:
    """Resolves every open drift event of a project and returns how many."""
    now = now or utcnow()
    events = await drift_crud.list_drift_events(db, project_id, include_resolved=False)
    for event in events:
        _resolve(event, resolution, now)
    await db.flush()
    logger.info(f"Resolved {len(events)} drift event(s) in project {project_id}")
    return len(events)


async def resolve_drift_for_nodes(
    db: AsyncSession,
    node_ids: Iterable[UUID],
    resolution: DriftResolution,
    now: Optional[datetime] = None,
) -> int:
    now = now or utcnow()
    events = await drift_crud.get_active_events_for_nodes(db, node_ids)
    for event in events:
        _resolve(event, resolution, now)
    if events:
        await db.flush()
    return len(events)
