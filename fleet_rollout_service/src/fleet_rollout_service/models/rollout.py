# fleet_rollout_service/src/fleet_rollout_service/models/rollout.py
"""
Database models for rollout orchestration.

This module defines the rollout itself, its ordered steps, the per-node
deployment progress rows, approvals, and the project-scoped reusable data the
rollout engine consumes (templates and custom health check endpoints).

No ORM relationships are declared between these tables. Rows reference each
other by foreign key only and are loaded with explicit queries, so every tick
reads fresh state and there are no object back-references to keep in sync.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Boolean, Column
from sqlalchemy import Enum as SQLAEnum
from sqlalchemy import ForeignKey, Integer, String, Text, UniqueConstraint, Uuid

from .base import Base, TimestampMixin, UTCDateTime, UUIDMixin, utcnow


def _enum_column(enum_cls, name: str) -> SQLAEnum:
    return SQLAEnum(enum_cls, name=name, values_callable=lambda e: [m.value for m in e])


class RolloutState(str, Enum):
    """Lifecycle state of a rollout."""

    PENDING = "pending"  # Created, waiting for a start, a schedule or an approval.
    RUNNING = "running"  # Being advanced by the tick scheduler.
    PAUSED = "paused"  # Stopped by an operator or by a failed health gate.
    COMPLETED = "completed"  # Every step completed.
    CANCELLED = "cancelled"  # Cancelled or rolled back.
    FAILED = "failed"  # Deadline breach or node failure.


TERMINAL_ROLLOUT_STATES = frozenset(
    {RolloutState.COMPLETED, RolloutState.CANCELLED, RolloutState.FAILED}
)


class ApprovalState(str, Enum):
    NOT_REQUIRED = "not_required"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"


class RolloutStrategy(str, Enum):
    ROLLING = "rolling"  # Fixed-size batches, one after another.
    ALL_AT_ONCE = "all_at_once"  # A single batch with every targeted node.


class StepState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    VERIFYING = "verifying"
    COMPLETED = "completed"
    FAILED = "failed"


class NodeBundleState(str, Enum):
    """Per-node progress of a bundle within a rollout, in forward order."""

    PENDING = "pending"
    STAGING = "staging"
    STAGED = "staged"
    ACTIVATING = "activating"
    ACTIVE = "active"
    FAILED = "failed"


NODE_BUNDLE_STATE_ORDER = {
    NodeBundleState.PENDING: 0,
    NodeBundleState.STAGING: 1,
    NodeBundleState.STAGED: 2,
    NodeBundleState.ACTIVATING: 3,
    NodeBundleState.ACTIVE: 4,
}

TERMINAL_NODE_BUNDLE_STATES = frozenset({NodeBundleState.ACTIVE, NodeBundleState.FAILED})


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    HEAD = "HEAD"


class Rollout(Base, UUIDMixin, TimestampMixin):
    """
    A deployment intent and its progress ledger.

    State changes go through ``apply_state`` so that ``started_at`` and
    ``completed_at`` are each written exactly once.
    """

    __tablename__ = "rollouts"

    project_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    bundle_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("bundles.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    created_by_id = Column(
        Uuid(as_uuid=True),
        nullable=True,
        comment="The user that created the rollout, if known.",
    )

    # --- Plan ---
    target_selector = Column(
        JSON,
        nullable=False,
        comment="Tagged selector: {'type': 'all' | 'labels' | 'node_ids', ...}.",
    )
    strategy = Column(
        _enum_column(RolloutStrategy, "rollout_strategy_enum"),
        nullable=False,
        default=RolloutStrategy.ROLLING,
    )
    batch_size = Column(Integer, nullable=False, default=1)
    max_unavailable = Column(
        Integer,
        nullable=False,
        default=0,
        comment="Stored and validated, not enforced by tick logic.",
    )
    progress_deadline_seconds = Column(Integer, nullable=False, default=600)
    health_gates = Column(JSON, nullable=False, default=dict)

    # --- State ---
    state = Column(
        _enum_column(RolloutState, "rollout_state_enum"),
        nullable=False,
        default=RolloutState.PENDING,
        index=True,
    )
    approval_state = Column(
        _enum_column(ApprovalState, "rollout_approval_state_enum"),
        nullable=False,
        default=ApprovalState.NOT_REQUIRED,
        index=True,
    )
    approvals_required = Column(Integer, nullable=False, default=0)
    rejected_by_id = Column(Uuid(as_uuid=True), nullable=True)
    rejected_at = Column(UTCDateTime(), nullable=True)
    rejection_comment = Column(Text, nullable=True)

    scheduled_at = Column(UTCDateTime(), nullable=True, index=True)
    started_at = Column(UTCDateTime(), nullable=True)
    completed_at = Column(UTCDateTime(), nullable=True)
    error = Column(JSON, nullable=True, comment="Structured terminal or pause error.")

    def apply_state(
        self,
        state: RolloutState,
        error: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> None:
        now = now or utcnow()
        self.state = state
        if state == RolloutState.RUNNING and self.started_at is None:
            self.started_at = now
        if state in TERMINAL_ROLLOUT_STATES and self.completed_at is None:
            self.completed_at = now
        if error is not None:
            self.error = error

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_ROLLOUT_STATES

    @property
    def approval_satisfied(self) -> bool:
        return self.approval_state in (
            ApprovalState.NOT_REQUIRED,
            ApprovalState.APPROVED,
        )

    def __repr__(self):
        return f"<Rollout(id='{self.id}', state='{self.state}', approval='{self.approval_state}')>"


class RolloutStep(Base, UUIDMixin, TimestampMixin):
    """One ordered batch of a rollout. Membership never changes after creation."""

    __tablename__ = "rollout_steps"
    __table_args__ = (
        UniqueConstraint(
            "rollout_id", "step_index", name="uq_rollout_steps_rollout_id_step_index"
        ),
    )

    rollout_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("rollouts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_index = Column(Integer, nullable=False)
    node_ids = Column(JSON, nullable=False, comment="Ordered node ids as strings.")
    state = Column(
        _enum_column(StepState, "rollout_step_state_enum"),
        nullable=False,
        default=StepState.PENDING,
    )
    started_at = Column(UTCDateTime(), nullable=True)
    completed_at = Column(UTCDateTime(), nullable=True)
    error = Column(JSON, nullable=True)

    def apply_state(
        self,
        state: StepState,
        error: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> None:
        now = now or utcnow()
        self.state = state
        if state == StepState.RUNNING and self.started_at is None:
            self.started_at = now
        if state in (StepState.COMPLETED, StepState.FAILED) and self.completed_at is None:
            self.completed_at = now
        if error is not None:
            self.error = error

    def __repr__(self):
        return f"<RolloutStep(rollout_id='{self.rollout_id}', index={self.step_index}, state='{self.state}')>"


class NodeBundleStatus(Base, UUIDMixin, TimestampMixin):
    """Deployment progress of one node within one rollout."""

    __tablename__ = "node_bundle_statuses"
    __table_args__ = (
        UniqueConstraint(
            "node_id", "rollout_id", name="uq_node_bundle_statuses_node_id_rollout_id"
        ),
    )

    node_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("nodes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    rollout_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("rollouts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    bundle_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("bundles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    state = Column(
        _enum_column(NodeBundleState, "node_bundle_state_enum"),
        nullable=False,
        default=NodeBundleState.PENDING,
    )
    staged_at = Column(UTCDateTime(), nullable=True)
    activated_at = Column(UTCDateTime(), nullable=True)
    verified_at = Column(UTCDateTime(), nullable=True)
    last_report_at = Column(UTCDateTime(), nullable=True)
    reason = Column(Text, nullable=True)
    error = Column(JSON, nullable=True)

    def apply_state(
        self,
        state: NodeBundleState,
        reason: Optional[str] = None,
        error: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> None:
        now = now or utcnow()
        self.state = state
        self.last_report_at = now
        if state == NodeBundleState.STAGED:
            self.staged_at = now
        elif state == NodeBundleState.ACTIVE:
            self.activated_at = now
            self.verified_at = now
        if reason is not None:
            self.reason = reason
        if error is not None:
            self.error = error

    def can_transition_to(self, state: NodeBundleState) -> bool:
        """Forward-only progress; failed is reachable from any non-terminal state."""
        if self.state in TERMINAL_NODE_BUNDLE_STATES:
            return False
        if state == NodeBundleState.FAILED:
            return True
        return NODE_BUNDLE_STATE_ORDER[state] > NODE_BUNDLE_STATE_ORDER[self.state]


class RolloutApproval(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "rollout_approvals"
    __table_args__ = (
        UniqueConstraint(
            "rollout_id", "user_id", name="uq_rollout_approvals_rollout_id_user_id"
        ),
    )

    rollout_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("rollouts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(Uuid(as_uuid=True), nullable=False)
    comment = Column(Text, nullable=True)
    approved_at = Column(UTCDateTime(), nullable=False, default=utcnow)


class RolloutTemplate(Base, UUIDMixin, TimestampMixin):
    """A named, reusable set of rollout creation parameters."""

    __tablename__ = "rollout_templates"
    __table_args__ = (
        UniqueConstraint(
            "project_id", "name", name="uq_rollout_templates_project_id_name"
        ),
    )

    project_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(String(500), nullable=True)
    is_default = Column(Boolean, nullable=False, default=False)
    target_selector = Column(JSON, nullable=True)
    strategy = Column(
        _enum_column(RolloutStrategy, "rollout_template_strategy_enum"),
        nullable=False,
        default=RolloutStrategy.ROLLING,
    )
    batch_size = Column(Integer, nullable=False, default=1)
    max_unavailable = Column(Integer, nullable=False, default=0)
    progress_deadline_seconds = Column(Integer, nullable=False, default=600)
    health_gates = Column(JSON, nullable=False, default=dict)
    created_by_id = Column(Uuid(as_uuid=True), nullable=True)

    def to_rollout_attrs(self) -> Dict[str, Any]:
        """Rollout creation parameters carried by this template."""
        attrs = {
            "strategy": self.strategy,
            "batch_size": self.batch_size,
            "max_unavailable": self.max_unavailable,
            "progress_deadline_seconds": self.progress_deadline_seconds,
            "health_gates": dict(self.health_gates or {}),
        }
        if self.target_selector:
            attrs["target_selector"] = dict(self.target_selector)
        return attrs


class HealthCheckEndpoint(Base, UUIDMixin, TimestampMixin):
    """A project-scoped HTTP probe evaluated as part of every health gate."""

    __tablename__ = "health_check_endpoints"
    __table_args__ = (
        UniqueConstraint(
            "project_id", "name", name="uq_health_check_endpoints_project_id_name"
        ),
    )

    project_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    url = Column(Text, nullable=False)
    method = Column(
        _enum_column(HttpMethod, "health_check_method_enum"),
        nullable=False,
        default=HttpMethod.GET,
    )
    timeout_ms = Column(Integer, nullable=False, default=5000)
    expected_status = Column(Integer, nullable=False, default=200)
    expected_body_contains = Column(Text, nullable=True)
    headers = Column(JSON, nullable=False, default=dict)
    enabled = Column(Boolean, nullable=False, default=True)
