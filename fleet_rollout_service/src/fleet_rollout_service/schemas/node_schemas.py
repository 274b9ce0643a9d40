# fleet_rollout_service/src/fleet_rollout_service/schemas/node_schemas.py
"""
Pydantic schemas for node registration and the inbound node reports.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from ..models.node import NodeStatus


class NodeCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=255)
    labels: Dict[str, str] = Field(default_factory=dict)
    capabilities: List[str] = Field(default_factory=list)


class NodeResponse(BaseModel):
    id: UUID
    project_id: UUID
    name: str
    labels: Dict[str, str]
    capabilities: List[str]
    status: NodeStatus
    last_seen_at: Optional[datetime] = None
    registered_at: datetime
    active_bundle_id: Optional[UUID] = None
    staged_bundle_id: Optional[UUID] = None
    expected_bundle_id: Optional[UUID] = None

    model_config = ConfigDict(from_attributes=True)


class HeartbeatRequest(BaseModel):
    """A node heartbeat carrying self-reported health and metrics."""

    health: Dict[str, Any] = Field(default_factory=lambda: {"status": "healthy"})
    metrics: Dict[str, float] = Field(
        default_factory=dict,
        description="error_rate, latency_p99_ms, cpu_percent, memory_percent.",
    )
    active_bundle_id: Optional[UUID] = None
    staged_bundle_id: Optional[UUID] = None


class BundleReportState(str, Enum):
    STAGING = "staging"
    STAGED = "staged"
    ACTIVATING = "activating"
    ACTIVATED = "activated"
    FAILED = "failed"


class BundleReportRequest(BaseModel):
    bundle_id: UUID
    state: BundleReportState
    reason: Optional[str] = None
    error: Optional[Dict[str, Any]] = None
