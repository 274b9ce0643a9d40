# fleet_rollout_service/src/fleet_rollout_service/services/planner.py
"""
Rollout planning: selector resolution and batch partitioning.

The plan is computed once, when the rollout is created. Step membership is
never recomputed afterwards, so nodes registered later are not picked up.
"""
from typing import List, Sequence
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ..crud import nodes as node_crud
from ..exceptions import RolloutValidationError
from ..logging_config import logger
from ..models.node import Node
from ..models.rollout import RolloutStrategy
from ..schemas.rollout_schemas import AllSelector, LabelsSelector, NodeIdsSelector


def _stable_order(nodes: Sequence[Node]) -> List[Node]:
    return sorted(nodes, key=lambda n: (n.registered_at, str(n.id)))


async def resolve_target_nodes(db: AsyncSession, project_id: UUID, selector) -> List[Node]:
    """
    Resolves a target selector against the project's current nodes.

    Args:
        db: The SQLAlchemy async session.
        project_id: The project whose nodes are considered.
        selector: An AllSelector, LabelsSelector or NodeIdsSelector.

    Returns:
        The targeted nodes in registration order.

    Raises:
        RolloutValidationError: "unknown node ids" if an explicit id does not
            belong to the project, "no target nodes" if nothing matched.
    """
    if isinstance(selector, AllSelector):
        nodes = await node_crud.list_nodes(db, project_id)
    elif isinstance(selector, LabelsSelector):
        nodes = await node_crud.list_nodes(db, project_id, labels=selector.labels)
    elif isinstance(selector, NodeIdsSelector):
        found = await node_crud.get_nodes_by_ids(db, selector.node_ids)
        found = [n for n in found if n.project_id == project_id]
        missing = set(selector.node_ids) - {n.id for n in found}
        if missing:
            raise RolloutValidationError(
                "unknown node ids", sorted(str(node_id) for node_id in missing)
            )
        nodes = found
    else:
        raise RolloutValidationError("invalid selector", repr(selector))

    if not nodes:
        raise RolloutValidationError("no target nodes")
    return _stable_order(nodes)


def chunk_into_batches(
    node_ids: Sequence[UUID], strategy: RolloutStrategy, batch_size: int
) -> List[List[UUID]]:
    """Splits ordered node ids into steps; all_at_once yields one batch."""
    ids = list(node_ids)
    if not ids:
        return []
    if strategy == RolloutStrategy.ALL_AT_ONCE:
        return [ids]
    if batch_size <= 0:
        raise RolloutValidationError("invalid batch size", batch_size)
    return [ids[i : i + batch_size] for i in range(0, len(ids), batch_size)]


async def plan_batches(
    db: AsyncSession,
    project_id: UUID,
    selector,
    strategy: RolloutStrategy,
    batch_size: int,
) -> List[List[UUID]]:
    nodes = await resolve_target_nodes(db, project_id, selector)
    batches = chunk_into_batches([n.id for n in nodes], strategy, batch_size)
    logger.info(
        f"Planned {len(batches)} step(s) over {len(nodes)} node(s) "
        f"using {RolloutStrategy(strategy).value} strategy"
    )
    return batches
