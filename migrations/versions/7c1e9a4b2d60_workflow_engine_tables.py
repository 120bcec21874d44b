"""workflow_engine_tables

Create the work item, workflow configuration, audit/event, notification,
escalation and scheduled-job tables.

Revision ID: 7c1e9a4b2d60
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "7c1e9a4b2d60"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("username", sa.String(length=150), nullable=False),
            sa.Column("display_name", sa.String(length=200), nullable=True),
            sa.Column("email", sa.String(length=255), nullable=True),
            sa.Column("role", sa.String(length=40), nullable=False, server_default="EndUser"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("username"),
        )

    if "work_items" not in existing_tables:
        op.create_table(
            "work_items",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("scope_id", sa.Integer(), nullable=True),
            sa.Column("submitter_id", sa.Integer(), nullable=True),
            sa.Column("current_stage", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("status", sa.String(length=30), nullable=False, server_default="draft"),
            sa.Column("priority", sa.Float(), nullable=False, server_default="0.5"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("last_stage_entry_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.ForeignKeyConstraint(["submitter_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_work_items_scope_id", "work_items", ["scope_id"])
        op.create_index("idx_work_item_scope_stage", "work_items", ["scope_id", "current_stage"])

    if "workflow_stages" not in existing_tables:
        op.create_table(
            "workflow_stages",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("stage_order", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("scope_id", sa.Integer(), nullable=True),
            sa.Column("approval_required", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("sla_hours", sa.Float(), nullable=True),
            sa.Column("required_roles", sa.JSON(), nullable=True),
            sa.Column("notification_template", sa.JSON(), nullable=True),
            sa.Column("is_terminal", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
            *_timestamps(),
            sa.CheckConstraint("stage_order >= 0", name="ck_stage_order_non_negative"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_workflow_stages_scope_id", "workflow_stages", ["scope_id"])
        op.create_index("ix_workflow_stages_is_active", "workflow_stages", ["is_active"])
        op.create_index("idx_stage_scope_order", "workflow_stages", ["scope_id", "stage_order"])

    if "workflow_transitions" not in existing_tables:
        op.create_table(
            "workflow_transitions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=150), nullable=False, server_default=""),
            sa.Column("from_stage_id", sa.Integer(), nullable=False),
            sa.Column("to_stage_id", sa.Integer(), nullable=False),
            sa.Column("scope_id", sa.Integer(), nullable=True),
            sa.Column("required_role", sa.String(length=40), nullable=True),
            sa.Column("condition_script", sa.JSON(), nullable=True),
            sa.Column("validation_rules", sa.JSON(), nullable=True),
            sa.Column("auto_transition_delay_minutes", sa.Integer(), nullable=True),
            sa.Column("notification_required", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("notification_template", sa.JSON(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
            *_timestamps(),
            sa.CheckConstraint("from_stage_id <> to_stage_id", name="ck_transition_distinct_stages"),
            sa.CheckConstraint(
                "auto_transition_delay_minutes IS NULL OR auto_transition_delay_minutes >= 1",
                name="ck_transition_auto_delay_positive",
            ),
            sa.ForeignKeyConstraint(["from_stage_id"], ["workflow_stages.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["to_stage_id"], ["workflow_stages.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_workflow_transitions_scope_id", "workflow_transitions", ["scope_id"])
        op.create_index("ix_workflow_transitions_is_active", "workflow_transitions", ["is_active"])
        op.create_index("idx_transition_from_scope", "workflow_transitions", ["from_stage_id", "scope_id"])

    if "workflow_audit_entries" not in existing_tables:
        op.create_table(
            "workflow_audit_entries",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("work_item_id", sa.Integer(), nullable=False),
            sa.Column("action", sa.String(length=40), nullable=False, server_default="stage_changed"),
            sa.Column("old_value", sa.String(length=100), nullable=True),
            sa.Column("new_value", sa.String(length=100), nullable=True),
            sa.Column("from_stage_order", sa.Integer(), nullable=True),
            sa.Column("to_stage_order", sa.Integer(), nullable=True),
            sa.Column("actor", sa.String(length=150), nullable=False, server_default="system"),
            sa.Column("actor_id", sa.Integer(), nullable=True),
            sa.Column("comments", sa.Text(), nullable=True),
            sa.Column("time_in_previous_stage_hours", sa.Float(), nullable=False, server_default="0"),
            sa.Column("transition_id", sa.Integer(), nullable=True),
            sa.Column("correlation_id", sa.String(length=36), nullable=True),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["work_item_id"], ["work_items.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["actor_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["transition_id"], ["workflow_transitions.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_wf_audit_item_ts", "workflow_audit_entries",
                        ["work_item_id", "timestamp", "id"])
        op.create_index("idx_wf_audit_transition", "workflow_audit_entries", ["transition_id"])
        op.create_index("ix_workflow_audit_entries_correlation_id", "workflow_audit_entries",
                        ["correlation_id"])

    if "workflow_events" not in existing_tables:
        op.create_table(
            "workflow_events",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("aggregate_type", sa.String(length=50), nullable=False, server_default="WorkItem"),
            sa.Column("aggregate_id", sa.Integer(), nullable=False),
            sa.Column("event_type", sa.String(length=60), nullable=False),
            sa.Column("event_version", sa.Integer(), nullable=False),
            sa.Column("event_data", sa.JSON(), nullable=False),
            sa.Column("correlation_id", sa.String(length=36), nullable=True),
            sa.Column("created_by", sa.String(length=150), nullable=False, server_default="system"),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("aggregate_type", "aggregate_id", "event_version",
                                name="uq_event_aggregate_version"),
        )
        op.create_index("ix_workflow_events_aggregate_id", "workflow_events", ["aggregate_id"])
        op.create_index("ix_workflow_events_correlation_id", "workflow_events", ["correlation_id"])

    if "notifications" not in existing_tables:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("recipient", sa.String(length=150), nullable=True),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("category", sa.String(length=30), nullable=True),
            sa.Column("severity", sa.String(length=20), nullable=True),
            sa.Column("entity_type", sa.String(length=30), nullable=True),
            sa.Column("entity_id", sa.Integer(), nullable=True),
            sa.Column("is_read", sa.Boolean(), nullable=True),
            sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_notifications_recipient", "notifications", ["recipient"])

    if "workflow_escalations" not in existing_tables:
        op.create_table(
            "workflow_escalations",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("dedup_key", sa.String(length=120), nullable=False),
            sa.Column("work_item_id", sa.Integer(), nullable=False),
            sa.Column("stage_order", sa.Integer(), nullable=False),
            sa.Column("stage_name", sa.String(length=100), nullable=False),
            sa.Column("kind", sa.String(length=20), nullable=False),
            sa.Column("stage_entered_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("deadline", sa.DateTime(timezone=True), nullable=False),
            sa.Column("recipients", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["work_item_id"], ["work_items.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("dedup_key"),
        )
        op.create_index("ix_workflow_escalations_work_item_id", "workflow_escalations", ["work_item_id"])

    if "scheduled_jobs" not in existing_tables:
        op.create_table(
            "scheduled_jobs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("job_name", sa.String(length=100), nullable=False),
            sa.Column("description", sa.String(length=500), nullable=True),
            sa.Column("schedule_type", sa.String(length=30), nullable=True),
            sa.Column("schedule_config", sa.JSON(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=True),
            sa.Column("is_enabled", sa.Boolean(), nullable=True),
            sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("last_run_status", sa.String(length=20), nullable=True),
            sa.Column("last_run_duration_ms", sa.Integer(), nullable=True),
            sa.Column("last_run_result", sa.JSON(), nullable=True),
            sa.Column("run_count", sa.Integer(), nullable=True),
            sa.Column("error_count", sa.Integer(), nullable=True),
            sa.Column("last_error", sa.Text(), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("job_name"),
        )


def downgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    for table in (
        "scheduled_jobs",
        "workflow_escalations",
        "notifications",
        "workflow_events",
        "workflow_audit_entries",
        "workflow_transitions",
        "workflow_stages",
        "work_items",
        "users",
    ):
        if table in existing_tables:
            op.drop_table(table)
