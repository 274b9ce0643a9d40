"""SQLAlchemy models for the Fleet Rollout Service."""

from .base import Base
from .bundle import Bundle, BundleStatus
from .drift_event import DriftEvent, DriftResolution, DriftSeverity
from .node import Node, NodeHeartbeat, NodeStatus
from .rollout import (
    ApprovalState,
    HealthCheckEndpoint,
    HttpMethod,
    NodeBundleState,
    NodeBundleStatus,
    Rollout,
    RolloutApproval,
    RolloutState,
    RolloutStep,
    RolloutStrategy,
    RolloutTemplate,
    StepState,
)

__all__ = [
    "Base",
    "Bundle",
    "BundleStatus",
    "DriftEvent",
    "DriftResolution",
    "DriftSeverity",
    "Node",
    "NodeHeartbeat",
    "NodeStatus",
    "ApprovalState",
    "HealthCheckEndpoint",
    "HttpMethod",
    "NodeBundleState",
    "NodeBundleStatus",
    "Rollout",
    "RolloutApproval",
    "RolloutState",
    "RolloutStep",
    "RolloutStrategy",
    "RolloutTemplate",
    "StepState",
]
