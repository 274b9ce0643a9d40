# fleet_rollout_service/src/fleet_rollout_service/crud/nodes.py
"""
Node registry operations.

Heartbeats and bundle reports are the only way node-observed state enters the
system. The rollout engine writes ``expected_bundle_id`` and otherwise only
reads what nodes report here.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..logging_config import logger
from ..models.base import utcnow
from ..models.node import Node, NodeHeartbeat, NodeStatus
from ..models.rollout import NodeBundleState, NodeBundleStatus
from ..schemas.node_schemas import BundleReportState, NodeCreate

_REPORT_TO_STATE = {
    BundleReportState.STAGING: NodeBundleState.STAGING,
    BundleReportState.STAGED: NodeBundleState.STAGED,
    BundleReportState.ACTIVATING: NodeBundleState.ACTIVATING,
    BundleReportState.ACTIVATED: NodeBundleState.ACTIVE,
    BundleReportState.FAILED: NodeBundleState.FAILED,
}


async def register_node(
    db: AsyncSession,
    project_id: UUID,
    node_data: NodeCreate,
    now: Optional[datetime] = None,
) -> Node:
    """
    Registers a new node in a project.

    Args:
        db: The SQLAlchemy async session.
        project_id: The project the node belongs to.
        node_data: Name, labels and capabilities of the node.
        now: Registration time, defaults to the current time.

    Returns:
        The newly created Node in ``unknown`` status.
    """
    node = Node(
        project_id=project_id,
        name=node_data.name,
        labels=dict(node_data.labels),
        capabilities=list(node_data.capabilities),
        status=NodeStatus.UNKNOWN,
        registered_at=now or utcnow(),
    )
    db.add(node)
    await db.flush()
    logger.info(f"[Node:{node.id}] Registered '{node.name}' in project {project_id}")
    return node


async def get_node(db: AsyncSession, node_id: UUID) -> Node:
    """
    Retrieves a single node by its ID.

    Raises:
        HTTPException: If the node is not found.
    """
    node = await db.get(Node, node_id)
    if not node:
        logger.warning(f"Node with ID {node_id} not found")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Node with ID {node_id} not found.",
        )
    return node


async def list_nodes(
    db: AsyncSession,
    project_id: UUID,
    node_status: Optional[NodeStatus] = None,
    labels: Optional[Dict[str, str]] = None,
) -> List[Node]:
    """
    Lists the nodes of a project in registration order.

    Args:
        db: The SQLAlchemy async session.
        project_id: The project whose nodes are listed.
        node_status: Optional liveness status filter.
        labels: Optional label filter; a node matches when its labels contain
            every given key with the same value.

    Returns:
        Nodes sorted by (registered_at, id).
    """
    query = select(Node).where(Node.project_id == project_id)
    if node_status is not None:
        query = query.where(Node.status == node_status)
    query = query.order_by(Node.registered_at, Node.id)

    result = await db.execute(query)
    nodes = list(result.scalars().all())

    if labels:
        nodes = [n for n in nodes if labels_match(n.labels, labels)]
    return nodes


def labels_match(node_labels: Optional[Dict[str, Any]], wanted: Dict[str, str]) -> bool:
    node_labels = node_labels or {}
    return all(node_labels.get(key) == value for key, value in wanted.items())


async def get_nodes_by_ids(db: AsyncSession, node_ids: Iterable[UUID]) -> List[Node]:
    ids = list(node_ids)
    if not ids:
        return []
    result = await db.execute(select(Node).where(Node.id.in_(ids)))
    return list(result.scalars().all())


async def record_heartbeat(
    db: AsyncSession,
    node_id: UUID,
    health: Optional[Dict[str, Any]] = None,
    metrics: Optional[Dict[str, Any]] = None,
    active_bundle_id: Optional[UUID] = None,
    staged_bundle_id: Optional[UUID] = None,
    now: Optional[datetime] = None,
) -> NodeHeartbeat:
    """
    Ingests a heartbeat: marks the node online and stores health and metrics.

    Reported bundle ids overwrite the node's pointers only when present.
    """
    now = now or utcnow()
    node = await get_node(db, node_id)

    node.status = NodeStatus.ONLINE
    node.last_seen_at = now
    if active_bundle_id is not None:
        node.active_bundle_id = active_bundle_id
    if staged_bundle_id is not None:
        node.staged_bundle_id = staged_bundle_id

    heartbeat = NodeHeartbeat(
        node_id=node.id,
        health=dict(health or {}),
        metrics=dict(metrics or {}),
        active_bundle_id=active_bundle_id,
        staged_bundle_id=staged_bundle_id,
        received_at=now,
    )
    db.add(heartbeat)
    await db.flush()
    logger.debug(f"[Node:{node.id}] Heartbeat received")
    return heartbeat


async def get_latest_heartbeats(
    db: AsyncSession, node_ids: Iterable[UUID]
) -> Dict[UUID, NodeHeartbeat]:
    """Most recent heartbeat per node, keyed by node id. Nodes without one are absent."""
    ids = list(node_ids)
    if not ids:
        return {}
    query = (
        select(NodeHeartbeat)
        .where(NodeHeartbeat.node_id.in_(ids))
        .order_by(NodeHeartbeat.node_id, NodeHeartbeat.received_at.desc())
    )
    result = await db.execute(query)
    latest: Dict[UUID, NodeHeartbeat] = {}
    for heartbeat in result.scalars().all():
        latest.setdefault(heartbeat.node_id, heartbeat)
    return latest


async def record_bundle_report(
    db: AsyncSession,
    node_id: UUID,
    bundle_id: UUID,
    report_state: BundleReportState,
    reason: Optional[str] = None,
    error: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> List[NodeBundleStatus]:
    """
    Applies a staged/activating/activated/failed report from a node.

    Updates the node's bundle pointers and advances every non-terminal
    NodeBundleStatus row of this node for the reported bundle. Transitions only
    move forward; reports that would move a row backwards are ignored.

    Returns:
        The NodeBundleStatus rows that were advanced.
    """
    now = now or utcnow()
    node = await get_node(db, node_id)
    target_state = _REPORT_TO_STATE[report_state]

    node.last_seen_at = now
    if target_state == NodeBundleState.STAGED:
        node.staged_bundle_id = bundle_id
    elif target_state == NodeBundleState.ACTIVE:
        node.active_bundle_id = bundle_id
        if node.staged_bundle_id == bundle_id:
            node.staged_bundle_id = None

    result = await db.execute(
        select(NodeBundleStatus).where(
            NodeBundleStatus.node_id == node_id,
            NodeBundleStatus.bundle_id == bundle_id,
        )
    )
    advanced = []
    for row in result.scalars().all():
        if not row.can_transition_to(target_state):
            continue
        row.apply_state(target_state, reason=reason, error=error, now=now)
        advanced.append(row)

    await db.flush()
    if target_state == NodeBundleState.FAILED:
        logger.warning(
            f"[Node:{node_id}] Reported bundle {bundle_id} failed: {reason or error}"
        )
    else:
        logger.info(
            f"[Node:{node_id}] Reported bundle {bundle_id} {report_state.value}, "
            f"{len(advanced)} status row(s) advanced"
        )
    return advanced


async def mark_stale_nodes_offline(
    db: AsyncSession, threshold_seconds: int, now: Optional[datetime] = None
) -> int:
    """
    Marks online nodes whose last heartbeat is older than the threshold offline.

    Returns:
        The number of nodes marked offline.
    """
    now = now or utcnow()
    cutoff = now - timedelta(seconds=threshold_seconds)
    result = await db.execute(
        select(Node).where(Node.status == NodeStatus.ONLINE, Node.last_seen_at < cutoff)
    )
    stale = list(result.scalars().all())
    for node in stale:
        node.status = NodeStatus.OFFLINE
    count = len(stale)
    if count:
        await db.flush()
        logger.info(f"Marked {count} stale node(s) offline")
    return count

