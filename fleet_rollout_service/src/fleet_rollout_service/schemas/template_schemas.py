# fleet_rollout_service/src/fleet_rollout_service/schemas/template_schemas.py
"""
Pydantic schemas for rollout templates.

A template is a named set of rollout parameters. It goes through the same
validation as a rollout, minus the project, bundle and creator.
"""
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from ..models.rollout import RolloutStrategy
from .rollout_schemas import HealthGates, RolloutParams, TargetSelector


class RolloutTemplateCreate(RolloutParams):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    is_default: bool = False
    target_selector: Optional[TargetSelector] = None


class RolloutTemplateUpdate(BaseModel):
    """All fields optional; omitted fields are left unchanged."""

    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    is_default: Optional[bool] = None
    target_selector: Optional[TargetSelector] = None
    strategy: Optional[RolloutStrategy] = None
    batch_size: Optional[int] = Field(None, gt=0)
    max_unavailable: Optional[int] = Field(None, ge=0)
    progress_deadline_seconds: Optional[int] = Field(None, gt=0)
    health_gates: Optional[HealthGates] = None


class RolloutTemplateResponse(BaseModel):
    id: UUID
    project_id: UUID
    name: str
    description: Optional[str] = None
    is_default: bool
    target_selector: Optional[Dict[str, Any]] = None
    strategy: RolloutStrategy
    batch_size: int
    max_unavailable: int
    progress_deadline_seconds: int
    health_gates: Dict[str, Any]
    created_by_id: Optional[UUID] = None
    inserted_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
