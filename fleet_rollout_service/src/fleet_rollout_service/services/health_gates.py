# fleet_rollout_service/src/fleet_rollout_service/services/health_gates.py
"""
Health gate evaluation.

Built-in checks run first in a fixed order, then every enabled custom endpoint
in list order. The first failing check decides the reason reported back to the
orchestrator; nothing after it is evaluated.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Mapping, Optional, Sequence
from uuid import UUID

import httpx

from ..clients.health_probe_client import probe_endpoint
from ..config import settings
from ..logging_config import logger
from ..models.base import utcnow
from ..models.node import Node, NodeHeartbeat
from ..models.rollout import HealthCheckEndpoint
from ..schemas.rollout_schemas import HealthGates

HEALTHY_STATUSES = frozenset({"online", "healthy"})

# Threshold gate key -> heartbeat metric key, in evaluation order.
METRIC_GATES = (
    ("max_error_rate", "error_rate"),
    ("max_latency_ms", "latency_p99_ms"),
    ("max_cpu_percent", "cpu_percent"),
    ("max_memory_percent", "memory_percent"),
)


@dataclass(frozen=True)
class GateResult:
    passed: bool
    reason: Optional[str] = None

    @classmethod
    def ok(cls) -> "GateResult":
        return cls(True)

    @classmethod
    def fail(cls, reason: str) -> "GateResult":
        return cls(False, reason)


def _reported_status(node: Node, heartbeat: Optional[NodeHeartbeat]) -> str:
    if heartbeat is not None and isinstance(heartbeat.health, dict):
        reported = heartbeat.health.get("status")
        if reported:
            return str(reported)
    status = node.status
    return getattr(status, "value", status) or "unknown"


def check_heartbeats(
    nodes: Sequence[Node],
    heartbeats: Mapping[UUID, NodeHeartbeat],
    now: datetime,
    freshness_seconds: int,
) -> GateResult:
    window = timedelta(seconds=freshness_seconds)
    for node in nodes:
        if node.last_seen_at is None or now - node.last_seen_at > window:
            return GateResult.fail(
                f"Node {node.name} ({node.id}) has no heartbeat within {freshness_seconds}s"
            )
        status = _reported_status(node, heartbeats.get(node.id))
        if status not in HEALTHY_STATUSES:
            return GateResult.fail(f"Node {node.name} ({node.id}) reports status '{status}'")
    return GateResult.ok()


def check_metric_threshold(
    nodes: Sequence[Node],
    heartbeats: Mapping[UUID, NodeHeartbeat],
    metric: str,
    threshold: float,
) -> GateResult:
    # A node without the metric fails the gate.
    for node in nodes:
        heartbeat = heartbeats.get(node.id)
        metrics: Dict[str, Any] = (heartbeat.metrics or {}) if heartbeat else {}
        value = metrics.get(metric)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return GateResult.fail(f"Node {node.name} ({node.id}) has no {metric} metric")
        if value > threshold:
            return GateResult.fail(
                f"Node {node.name} ({node.id}) {metric} {value} exceeds {threshold}"
            )
    return GateResult.ok()


def evaluate_builtin_gates(
    nodes: Sequence[Node],
    gates: HealthGates,
    heartbeats: Mapping[UUID, NodeHeartbeat],
    now: datetime,
    freshness_seconds: Optional[int] = None,
) -> GateResult:
    if gates.heartbeat_healthy:
        result = check_heartbeats(
            nodes,
            heartbeats,
            now,
            freshness_seconds or settings.HEARTBEAT_FRESHNESS_SECONDS,
        )
        if not result.passed:
            return result

    for gate_key, metric in METRIC_GATES:
        threshold = getattr(gates, gate_key)
        if threshold is None:
            continue
        result = check_metric_threshold(nodes, heartbeats, metric, threshold)
        if not result.passed:
            return result

    return GateResult.ok()


async def evaluate_health_gates(
    nodes: Sequence[Node],
    health_gates: Mapping[str, Any],
    endpoints: Sequence[HealthCheckEndpoint],
    heartbeats: Mapping[UUID, NodeHeartbeat],
    now: Optional[datetime] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> GateResult:
    """
    Evaluates the configured gates for a set of nodes.

    Args:
        nodes: The nodes of the step under verification.
        health_gates: The rollout's stored gate configuration.
        endpoints: The project's custom endpoints; disabled ones are skipped.
        heartbeats: Latest heartbeat per node id.
        now: Evaluation time, defaults to the current time.
        client: Optional shared httpx client for endpoint probes.

    Returns:
        GateResult.ok() when every configured check passes, otherwise the
        first failure.
    """
    now = now or utcnow()
    gates = HealthGates.model_validate(dict(health_gates or {}))

    result = evaluate_builtin_gates(nodes, gates, heartbeats, now)
    if not result.passed:
        logger.info(f"Health gate failed: {result.reason}")
        return result

    for endpoint in endpoints:
        if not endpoint.enabled:
            continue
        probe = await probe_endpoint(endpoint, client=client)
        if not probe.success:
            reason = f"Health check '{endpoint.name}' failed: {probe.reason}"
            logger.info(f"Health gate failed: {reason}")
            return GateResult.fail(reason)

    return GateResult.ok()
