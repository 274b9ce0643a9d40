"""
Helper functions for seeding nodes, bundles and rollouts.

All helpers flush but never commit, matching the service layer. Callers that
need the rows visible to another session commit themselves.
"""
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from fleet_rollout_service.crud import nodes as node_crud
from fleet_rollout_service.models import Bundle, BundleStatus, Node, NodeStatus, Rollout
from fleet_rollout_service.schemas.node_schemas import BundleReportState
from fleet_rollout_service.schemas.rollout_schemas import (
    AllSelector,
    HealthGates,
    RolloutCreate,
)
from fleet_rollout_service.services import rollout_service

T0 = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


def at(seconds: float) -> datetime:
    """T0 plus the given number of seconds."""
    return T0 + timedelta(seconds=seconds)


async def create_test_bundle(
    db: AsyncSession,
    project_id: UUID,
    status: BundleStatus = BundleStatus.COMPILED,
    version: str = "1.0.0",
) -> Bundle:
    bundle = Bundle(project_id=project_id, version=version, status=status)
    db.add(bundle)
    await db.flush()
    return bundle


async def create_test_node(
    db: AsyncSession,
    project_id: UUID,
    name: str,
    labels: Optional[Dict[str, str]] = None,
    registered_at: Optional[datetime] = None,
    status: NodeStatus = NodeStatus.UNKNOWN,
) -> Node:
    node = Node(
        project_id=project_id,
        name=name,
        labels=labels or {},
        capabilities=[],
        status=status,
        registered_at=registered_at or T0,
    )
    db.add(node)
    await db.flush()
    return node


async def create_test_nodes(
    db: AsyncSession,
    project_id: UUID,
    count: int,
    labels: Optional[Dict[str, str]] = None,
) -> List[Node]:
    """Creates nodes node-0..node-N registered one minute apart, oldest first."""
    return [
        await create_test_node(
            db,
            project_id,
            f"node-{i}",
            labels=labels,
            registered_at=T0 - timedelta(minutes=count - i),
        )
        for i in range(count)
    ]


async def create_test_rollout(
    db: AsyncSession,
    project_id: UUID,
    bundle: Bundle,
    batch_size: int = 1,
    start: bool = True,
    now: Optional[datetime] = None,
    **overrides,
) -> Rollout:
    """Creates a rollout over every project node; started at ``now`` unless start=False."""
    data = {
        "bundle_id": bundle.id,
        "target_selector": AllSelector(),
        "batch_size": batch_size,
        "health_gates": HealthGates(heartbeat_healthy=True),
        "start_immediately": start,
    }
    data.update(overrides)
    return await rollout_service.create_rollout(
        db, project_id, RolloutCreate(**data), now=now or T0
    )


async def send_heartbeats(
    db: AsyncSession,
    nodes: Sequence[Node],
    now: datetime,
    health: Optional[dict] = None,
    metrics: Optional[dict] = None,
) -> None:
    for node in nodes:
        await node_crud.record_heartbeat(
            db, node.id, health=health or {"status": "healthy"}, metrics=metrics, now=now
        )


async def report_activated(
    db: AsyncSession, nodes: Sequence[Node], bundle: Bundle, now: datetime
) -> None:
    for node in nodes:
        await node_crud.record_bundle_report(
            db, node.id, bundle.id, BundleReportState.ACTIVATED, now=now
        )
