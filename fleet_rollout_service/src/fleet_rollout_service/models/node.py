# fleet_rollout_service/src/fleet_rollout_service/models/node.py
"""
Node registry models.

A node is a pull-based proxy agent. It reports liveness through heartbeats and
bundle progress through staged/activated/failed reports; the control plane
writes only the bundle the node is expected to run.
"""
from enum import Enum

from sqlalchemy import JSON, Column
from sqlalchemy import Enum as SQLAEnum
from sqlalchemy import ForeignKey, String, UniqueConstraint, Uuid

from .base import Base, TimestampMixin, UTCDateTime, UUIDMixin, utcnow


class NodeStatus(str, Enum):
    """Liveness status of a node as seen by the registry."""

    ONLINE = "online"  # Heartbeat received within the freshness window.
    OFFLINE = "offline"  # Heartbeats stopped arriving.
    UNKNOWN = "unknown"  # Registered but never heard from.


class Node(Base, UUIDMixin, TimestampMixin):
    """A single managed node in a project."""

    __tablename__ = "nodes"
    __table_args__ = (
        UniqueConstraint("project_id", "name", name="uq_nodes_project_id_name"),
    )

    project_id = Column(
        Uuid(as_uuid=True),
        nullable=False,
        index=True,
        comment="The project this node belongs to.",
    )
    name = Column(String(255), nullable=False, comment="Human readable node name.")
    labels = Column(
        JSON,
        nullable=False,
        default=dict,
        comment="String key/value labels used by label selectors.",
    )
    capabilities = Column(
        JSON,
        nullable=False,
        default=list,
        comment="Capabilities advertised by the node agent.",
    )
    status = Column(
        SQLAEnum(
            NodeStatus,
            name="node_status_enum",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=NodeStatus.UNKNOWN,
        index=True,
    )
    last_seen_at = Column(
        UTCDateTime(), nullable=True, comment="Time of the latest heartbeat."
    )
    registered_at = Column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
        comment="Registration time; the stable ordering key for batch planning.",
    )

    # --- Bundle pointers ---
    active_bundle_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("bundles.id", ondelete="SET NULL"),
        nullable=True,
        comment="Bundle the node reports as currently active.",
    )
    staged_bundle_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("bundles.id", ondelete="SET NULL"),
        nullable=True,
        comment="Bundle the node reports as downloaded but not yet active.",
    )
    expected_bundle_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("bundles.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Bundle the control plane wants the node to run.",
    )

    def __repr__(self):
        return f"<Node(id='{self.id}', name='{self.name}', status='{self.status}')>"


class NodeHeartbeat(Base, UUIDMixin, TimestampMixin):
    """One heartbeat received from a node, holding its health and metric maps."""

    __tablename__ = "node_heartbeats"

    node_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("nodes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    health = Column(
        JSON,
        nullable=False,
        default=dict,
        comment="Self-reported health, e.g. {'status': 'healthy'}.",
    )
    metrics = Column(
        JSON,
        nullable=False,
        default=dict,
        comment="Metrics such as error_rate, latency_p99_ms, cpu_percent, memory_percent.",
    )
    active_bundle_id = Column(Uuid(as_uuid=True), nullable=True)
    staged_bundle_id = Column(Uuid(as_uuid=True), nullable=True)
    received_at = Column(UTCDateTime(), nullable=False, default=utcnow, index=True)
