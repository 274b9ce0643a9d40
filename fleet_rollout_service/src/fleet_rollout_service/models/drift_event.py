# fleet_rollout_service/src/fleet_rollout_service/models/drift_event.py
from enum import Enum

from sqlalchemy import Column
from sqlalchemy import Enum as SQLAEnum
from sqlalchemy import ForeignKey, Uuid

from .base import Base, TimestampMixin, UTCDateTime, UUIDMixin, utcnow


class DriftSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"  # Nothing is active on the node at all.


class DriftResolution(str, Enum):
    AUTO_CORRECTED = "auto_corrected"  # The node converged on its own.
    MANUAL = "manual"  # An operator resolved it.
    ROLLOUT_STARTED = "rollout_started"  # A rollout step started on the node.
    ROLLOUT_COMPLETED = "rollout_completed"  # A rollout covering the node completed.


class DriftEvent(Base, UUIDMixin, TimestampMixin):
    """
    A detected divergence between a node's expected and active bundle.

    At most one unresolved event per node is kept by the drift detector;
    the table itself does not enforce it.
    """

    __tablename__ = "drift_events"

    node_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("nodes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    project_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    expected_bundle_id = Column(Uuid(as_uuid=True), nullable=False)
    actual_bundle_id = Column(Uuid(as_uuid=True), nullable=True)
    detected_at = Column(UTCDateTime(), nullable=False, default=utcnow)
    severity = Column(
        SQLAEnum(
            DriftSeverity,
            name="drift_severity_enum",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=DriftSeverity.MEDIUM,
    )
    resolved_at = Column(UTCDateTime(), nullable=True, index=True)
    resolution = Column(
        SQLAEnum(
            DriftResolution,
            name="drift_resolution_enum",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=True,
    )

    @property
    def is_active(self) -> bool:
        return self.resolved_at is None

    def __repr__(self):
        return f"<DriftEvent(id='{self.id}', node_id='{self.node_id}', resolved={self.resolved_at is not None})>"
