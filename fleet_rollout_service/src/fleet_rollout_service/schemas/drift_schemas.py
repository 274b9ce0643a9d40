# fleet_rollout_service/src/fleet_rollout_service/schemas/drift_schemas.py
from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from ..models.drift_event import DriftResolution, DriftSeverity


class DriftEventResponse(BaseModel):
    id: UUID
    node_id: UUID
    project_id: UUID
    expected_bundle_id: UUID
    actual_bundle_id: Optional[UUID] = None
    detected_at: datetime
    severity: DriftSeverity
    resolved_at: Optional[datetime] = None
    resolution: Optional[DriftResolution] = None

    model_config = ConfigDict(from_attributes=True)


class DriftResolveRequest(BaseModel):
    resolution: DriftResolution = DriftResolution.MANUAL


class DriftStats(BaseModel):
    """Managed-node counts for a project."""

    total_managed: int
    drifted: int
    in_sync: int


class DriftEventStats(BaseModel):
    active: int
    resolved_today: int


class DriftDetectionResult(BaseModel):
    checked: int
    created: int
    auto_resolved: int
