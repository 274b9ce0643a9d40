"""create rollout orchestration tables

Revision ID: 3f1c9a7d2b10
Revises:
Create Date: 2026-10-16 09:00:00

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "3f1c9a7d2b10"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("inserted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def _id():
    return sa.Column("id", sa.Uuid(), primary_key=True, nullable=False)


def _enum(name, *values):
    return sa.Enum(*values, name=name)


def upgrade() -> None:
    op.create_table(
        "bundles",
        _id(),
        sa.Column("project_id", sa.Uuid(), nullable=False),
        sa.Column("version", sa.String(100), nullable=False),
        sa.Column("checksum", sa.String(128), nullable=True),
        sa.Column(
            "status",
            _enum("bundle_status_enum", "pending", "compiling", "compiled", "failed", "revoked"),
            nullable=False,
        ),
        *_timestamps(),
    )
    op.create_index("ix_bundles_id", "bundles", ["id"])
    op.create_index("ix_bundles_project_id", "bundles", ["project_id"])

    op.create_table(
        "nodes",
        _id(),
        sa.Column("project_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("labels", sa.JSON(), nullable=False),
        sa.Column("capabilities", sa.JSON(), nullable=False),
        sa.Column(
            "status",
            _enum("node_status_enum", "online", "offline", "unknown"),
            nullable=False,
        ),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("registered_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "active_bundle_id",
            sa.Uuid(),
            sa.ForeignKey("bundles.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "staged_bundle_id",
            sa.Uuid(),
            sa.ForeignKey("bundles.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "expected_bundle_id",
            sa.Uuid(),
            sa.ForeignKey("bundles.id", ondelete="SET NULL"),
            nullable=True,
        ),
        *_timestamps(),
        sa.UniqueConstraint("project_id", "name", name="uq_nodes_project_id_name"),
    )
    op.create_index("ix_nodes_id", "nodes", ["id"])
    op.create_index("ix_nodes_project_id", "nodes", ["project_id"])
    op.create_index("ix_nodes_status", "nodes", ["status"])
    op.create_index("ix_nodes_expected_bundle_id", "nodes", ["expected_bundle_id"])

    op.create_table(
        "node_heartbeats",
        _id(),
        sa.Column(
            "node_id",
            sa.Uuid(),
            sa.ForeignKey("nodes.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("health", sa.JSON(), nullable=False),
        sa.Column("metrics", sa.JSON(), nullable=False),
        sa.Column("active_bundle_id", sa.Uuid(), nullable=True),
        sa.Column("staged_bundle_id", sa.Uuid(), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_node_heartbeats_id", "node_heartbeats", ["id"])
    op.create_index("ix_node_heartbeats_node_id", "node_heartbeats", ["node_id"])
    op.create_index("ix_node_heartbeats_received_at", "node_heartbeats", ["received_at"])

    op.create_table(
        "rollouts",
        _id(),
        sa.Column("project_id", sa.Uuid(), nullable=False),
        sa.Column(
            "bundle_id",
            sa.Uuid(),
            sa.ForeignKey("bundles.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("created_by_id", sa.Uuid(), nullable=True),
        sa.Column("target_selector", sa.JSON(), nullable=False),
        sa.Column(
            "strategy",
            _enum("rollout_strategy_enum", "rolling", "all_at_once"),
            nullable=False,
        ),
        sa.Column("batch_size", sa.Integer(), nullable=False),
        sa.Column("max_unavailable", sa.Integer(), nullable=False),
        sa.Column("progress_deadline_seconds", sa.Integer(), nullable=False),
        sa.Column("health_gates", sa.JSON(), nullable=False),
        sa.Column(
            "state",
            _enum(
                "rollout_state_enum",
                "pending",
                "running",
                "paused",
                "completed",
                "cancelled",
                "failed",
            ),
            nullable=False,
        ),
        sa.Column(
            "approval_state",
            _enum(
                "rollout_approval_state_enum",
                "not_required",
                "pending_approval",
                "approved",
                "rejected",
            ),
            nullable=False,
        ),
        sa.Column("approvals_required", sa.Integer(), nullable=False),
        sa.Column("rejected_by_id", sa.Uuid(), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_comment", sa.Text(), nullable=True),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error", sa.JSON(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_rollouts_id", "rollouts", ["id"])
    op.create_index("ix_rollouts_project_id", "rollouts", ["project_id"])
    op.create_index("ix_rollouts_bundle_id", "rollouts", ["bundle_id"])
    op.create_index("ix_rollouts_state", "rollouts", ["state"])
    op.create_index("ix_rollouts_approval_state", "rollouts", ["approval_state"])
    op.create_index("ix_rollouts_scheduled_at", "rollouts", ["scheduled_at"])

    op.create_table(
        "rollout_steps",
        _id(),
        sa.Column(
            "rollout_id",
            sa.Uuid(),
            sa.ForeignKey("rollouts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("step_index", sa.Integer(), nullable=False),
        sa.Column("node_ids", sa.JSON(), nullable=False),
        sa.Column(
            "state",
            _enum(
                "rollout_step_state_enum",
                "pending",
                "running",
                "verifying",
                "completed",
                "failed",
            ),
            nullable=False,
        ),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error", sa.JSON(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "rollout_id", "step_index", name="uq_rollout_steps_rollout_id_step_index"
        ),
    )
    op.create_index("ix_rollout_steps_id", "rollout_steps", ["id"])
    op.create_index("ix_rollout_steps_rollout_id", "rollout_steps", ["rollout_id"])

    op.create_table(
        "node_bundle_statuses",
        _id(),
        sa.Column(
            "node_id",
            sa.Uuid(),
            sa.ForeignKey("nodes.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "rollout_id",
            sa.Uuid(),
            sa.ForeignKey("rollouts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "bundle_id",
            sa.Uuid(),
            sa.ForeignKey("bundles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "state",
            _enum(
                "node_bundle_state_enum",
                "pending",
                "staging",
                "staged",
                "activating",
                "active",
                "failed",
            ),
            nullable=False,
        ),
        sa.Column("staged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_report_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("error", sa.JSON(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "node_id", "rollout_id", name="uq_node_bundle_statuses_node_id_rollout_id"
        ),
    )
    op.create_index("ix_node_bundle_statuses_id", "node_bundle_statuses", ["id"])
    op.create_index("ix_node_bundle_statuses_node_id", "node_bundle_statuses", ["node_id"])
    op.create_index("ix_node_bundle_statuses_rollout_id", "node_bundle_statuses", ["rollout_id"])
    op.create_index("ix_node_bundle_statuses_bundle_id", "node_bundle_statuses", ["bundle_id"])

    op.create_table(
        "rollout_approvals",
        _id(),
        sa.Column(
            "rollout_id",
            sa.Uuid(),
            sa.ForeignKey("rollouts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint(
            "rollout_id", "user_id", name="uq_rollout_approvals_rollout_id_user_id"
        ),
    )
    op.create_index("ix_rollout_approvals_id", "rollout_approvals", ["id"])
    op.create_index("ix_rollout_approvals_rollout_id", "rollout_approvals", ["rollout_id"])

    op.create_table(
        "rollout_templates",
        _id(),
        sa.Column("project_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.String(500), nullable=True),
        sa.Column("is_default", sa.Boolean(), nullable=False),
        sa.Column("target_selector", sa.JSON(), nullable=True),
        sa.Column(
            "strategy",
            _enum("rollout_template_strategy_enum", "rolling", "all_at_once"),
            nullable=False,
        ),
        sa.Column("batch_size", sa.Integer(), nullable=False),
        sa.Column("max_unavailable", sa.Integer(), nullable=False),
        sa.Column("progress_deadline_seconds", sa.Integer(), nullable=False),
        sa.Column("health_gates", sa.JSON(), nullable=False),
        sa.Column("created_by_id", sa.Uuid(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("project_id", "name", name="uq_rollout_templates_project_id_name"),
    )
    op.create_index("ix_rollout_templates_id", "rollout_templates", ["id"])
    op.create_index("ix_rollout_templates_project_id", "rollout_templates", ["project_id"])

    op.create_table(
        "health_check_endpoints",
        _id(),
        sa.Column("project_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column(
            "method",
            _enum("health_check_method_enum", "GET", "POST", "HEAD"),
            nullable=False,
        ),
        sa.Column("timeout_ms", sa.Integer(), nullable=False),
        sa.Column("expected_status", sa.Integer(), nullable=False),
        sa.Column("expected_body_contains", sa.Text(), nullable=True),
        sa.Column("headers", sa.JSON(), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint(
            "project_id", "name", name="uq_health_check_endpoints_project_id_name"
        ),
    )
    op.create_index("ix_health_check_endpoints_id", "health_check_endpoints", ["id"])
    op.create_index(
        "ix_health_check_endpoints_project_id", "health_check_endpoints", ["project_id"]
    )

    op.create_table(
        "drift_events",
        _id(),
        sa.Column(
            "node_id",
            sa.Uuid(),
            sa.ForeignKey("nodes.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("project_id", sa.Uuid(), nullable=False),
        sa.Column("expected_bundle_id", sa.Uuid(), nullable=False),
        sa.Column("actual_bundle_id", sa.Uuid(), nullable=True),
        sa.Column("detected_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "severity",
            _enum("drift_severity_enum", "low", "medium", "high", "critical"),
            nullable=False,
        ),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "resolution",
            _enum(
                "drift_resolution_enum",
                "auto_corrected",
                "manual",
                "rollout_started",
                "rollout_completed",
            ),
            nullable=True,
        ),
        *_timestamps(),
    )
    op.create_index("ix_drift_events_id", "drift_events", ["id"])
    op.create_index("ix_drift_events_node_id", "drift_events", ["node_id"])
    op.create_index("ix_drift_events_project_id", "drift_events", ["project_id"])
    op.create_index("ix_drift_events_resolved_at", "drift_events", ["resolved_at"])


def downgrade() -> None:
    for table in (
        "drift_events",
        "health_check_endpoints",
        "rollout_templates",
        "rollout_approvals",
        "node_bundle_statuses",
        "rollout_steps",
        "rollouts",
        "node_heartbeats",
        "nodes",
        "bundles",
    ):
        op.drop_table(table)

    bind = op.get_bind()
    for enum_name in (
        "drift_resolution_enum",
        "drift_severity_enum",
        "health_check_method_enum",
        "rollout_template_strategy_enum",
        "node_bundle_state_enum",
        "rollout_step_state_enum",
        "rollout_approval_state_enum",
        "rollout_state_enum",
        "rollout_strategy_enum",
        "node_status_enum",
        "bundle_status_enum",
    ):
        sa.Enum(name=enum_name).drop(bind, checkfirst=True)
