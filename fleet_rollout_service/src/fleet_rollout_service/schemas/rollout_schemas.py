# fleet_rollout_service/src/fleet_rollout_service/schemas/rollout_schemas.py
"""
Pydantic schemas for rollouts.

The target selector is a closed tagged union keyed on ``type`` and the health
gate configuration is a fixed-schema model that rejects unknown keys, so a
malformed request never reaches the rollout engine.
"""
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid import UUID

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
)

from ..models.rollout import (
    ApprovalState,
    NodeBundleState,
    RolloutState,
    RolloutStrategy,
    StepState,
)

# --- Target selectors ---


class AllSelector(BaseModel):
    """Every node currently known in the project."""

    model_config = ConfigDict(extra="forbid")

    type: Literal["all"] = "all"


class LabelsSelector(BaseModel):
    """Nodes whose labels contain every given key with the exact value."""

    model_config = ConfigDict(extra="forbid")

    type: Literal["labels"] = "labels"
    labels: Dict[str, str] = Field(..., min_length=1)


class NodeIdsSelector(BaseModel):
    """Exactly the listed nodes."""

    model_config = ConfigDict(extra="forbid")

    type: Literal["node_ids"] = "node_ids"
    node_ids: List[UUID] = Field(..., min_length=1)

    @field_validator("node_ids")
    @classmethod
    def dedupe_node_ids(cls, v: List[UUID]) -> List[UUID]:
        return list(dict.fromkeys(v))


TargetSelector = Annotated[
    Union[AllSelector, LabelsSelector, NodeIdsSelector],
    Field(discriminator="type"),
]

_selector_adapter = TypeAdapter(TargetSelector)


def parse_target_selector(raw: Dict[str, Any]):
    """Validates a stored selector map back into its typed variant."""
    return _selector_adapter.validate_python(raw)


def dump_target_selector(selector) -> Dict[str, Any]:
    return selector.model_dump(mode="json")


# --- Health gates ---


class HealthGates(BaseModel):
    """
    Built-in health gate thresholds.

    A check runs only when its key is set. Thresholds are compared against the
    latest heartbeat metrics of each node in the step.
    """

    model_config = ConfigDict(extra="forbid")

    heartbeat_healthy: Optional[bool] = None
    max_error_rate: Optional[float] = Field(None, ge=0)
    max_latency_ms: Optional[float] = Field(None, ge=0)
    max_cpu_percent: Optional[float] = Field(None, ge=0, le=100)
    max_memory_percent: Optional[float] = Field(None, ge=0, le=100)

    def to_config(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


def default_health_gates() -> HealthGates:
    return HealthGates(heartbeat_healthy=True)


# --- Requests ---


class RolloutParams(BaseModel):
    """Rollout parameters shared by rollouts and templates."""

    strategy: RolloutStrategy = Field(RolloutStrategy.ROLLING)
    batch_size: int = Field(1, gt=0, description="Nodes per step for rolling rollouts.")
    max_unavailable: int = Field(
        0, ge=0, description="Advisory; node failures currently fail the step."
    )
    progress_deadline_seconds: int = Field(
        600, gt=0, description="Seconds after start before the rollout fails."
    )
    health_gates: HealthGates = Field(default_factory=default_health_gates)


class RolloutCreate(RolloutParams):
    """Schema for creating a new rollout."""

    model_config = ConfigDict(extra="forbid")

    bundle_id: UUID = Field(..., description="The compiled bundle to roll out.")
    target_selector: TargetSelector
    scheduled_at: Optional[datetime] = Field(
        None, description="Start no earlier than this time. Must be in the future."
    )
    approvals_required: int = Field(
        0, ge=0, description="Distinct approvals needed before the rollout may start."
    )
    start_immediately: bool = Field(
        False, description="Start the rollout right after creation when allowed."
    )


class RolloutFromTemplate(BaseModel):
    """Create a rollout from a template, optionally overriding the selector."""

    model_config = ConfigDict(extra="forbid")

    template_id: UUID
    bundle_id: UUID
    target_selector: Optional[TargetSelector] = None
    scheduled_at: Optional[datetime] = None
    approvals_required: int = Field(0, ge=0)
    start_immediately: bool = False


class ApproveRequest(BaseModel):
    comment: Optional[str] = Field(None, max_length=1000)


class RejectRequest(BaseModel):
    comment: Optional[str] = Field(None, max_length=1000)


# --- Responses ---


class RolloutResponse(BaseModel):
    """Schema for returning rollout details in API responses."""

    id: UUID
    project_id: UUID
    bundle_id: UUID
    created_by_id: Optional[UUID] = None
    target_selector: Dict[str, Any]
    strategy: RolloutStrategy
    batch_size: int
    max_unavailable: int
    progress_deadline_seconds: int
    health_gates: Dict[str, Any]
    state: RolloutState
    approval_state: ApprovalState
    approvals_required: int
    rejected_by_id: Optional[UUID] = None
    rejected_at: Optional[datetime] = None
    rejection_comment: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[Dict[str, Any]] = None
    inserted_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RolloutStepResponse(BaseModel):
    id: UUID
    step_index: int
    node_ids: List[UUID]
    state: StepState
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(from_attributes=True)


class NodeBundleStatusResponse(BaseModel):
    node_id: UUID
    bundle_id: UUID
    state: NodeBundleState
    staged_at: Optional[datetime] = None
    activated_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    last_report_at: Optional[datetime] = None
    reason: Optional[str] = None
    error: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(from_attributes=True)


class RolloutApprovalResponse(BaseModel):
    id: UUID
    user_id: UUID
    comment: Optional[str] = None
    approved_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ProgressSummary(BaseModel):
    """Node counts per NodeBundleStatus state for a rollout."""

    total: int = 0
    pending: int = 0
    staging: int = 0
    staged: int = 0
    activating: int = 0
    active: int = 0
    failed: int = 0


class RolloutDetailResponse(RolloutResponse):
    steps: List[RolloutStepResponse] = []
    node_statuses: List[NodeBundleStatusResponse] = []
    approvals: List[RolloutApprovalResponse] = []
    progress: ProgressSummary


class TickResponse(BaseModel):
    rollout_id: UUID
    outcome: str
    reason: Optional[str] = None
