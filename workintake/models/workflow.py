"""
Work Intake Workflow Engine
Workflow configuration models.

Models:
    - StageDefinition: an ordered state a work item can occupy
    - TransitionDefinition: a directed, rule-gated edge between two stages

Both are scoped by ``scope_id`` (NULL = global default) and soft-deleted only,
so historical audit entries keep resolving to the rows they reference.
"""

from datetime import datetime, timezone

from workintake.models import db
from workintake.models.soft_delete import SoftDeleteMixin


class StageDefinition(SoftDeleteMixin, db.Model):
    """
    One stage in a scope's ordered stage sequence.

    ``order`` is explicit and independent of any enum; a scope-specific stage
    overrides the global stage with the same order. Uniqueness of ``order``
    among active stages of a scope is enforced by the StageRegistry because
    soft-deleted rows may legitimately share it.
    """

    __tablename__ = "workflow_stages"
    __table_args__ = (
        db.Index("idx_stage_scope_order", "scope_id", "stage_order"),
        db.CheckConstraint("stage_order >= 0", name="ck_stage_order_non_negative"),
    )

    id = db.Column(db.Integer, primary_key=True)
    order = db.Column("stage_order", db.Integer, nullable=False)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, default="")
    scope_id = db.Column(db.Integer, nullable=True, index=True,
                         comment="NULL = global default stage")

    approval_required = db.Column(db.Boolean, nullable=False, default=False)
    sla_hours = db.Column(db.Float, nullable=True, comment="Time budget in stage; NULL = no SLA")
    required_roles = db.Column(db.JSON, default=list,
                               comment='Roles allowed to act on the stage, e.g. ["DepartmentHead"]')
    notification_template = db.Column(db.JSON, nullable=True,
                                      comment="{subject, body, recipients} rendered on stage entry")
    is_terminal = db.Column(db.Boolean, nullable=False, default=False,
                            comment="Explicit end state (e.g. Rejected) below the last order")

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "order": self.order,
            "name": self.name,
            "description": self.description,
            "scope_id": self.scope_id,
            "approval_required": self.approval_required,
            "sla_hours": self.sla_hours,
            "required_roles": list(self.required_roles or []),
            "notification_template": self.notification_template,
            "is_terminal": self.is_terminal,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<StageDefinition {self.order}:{self.name} scope={self.scope_id}>"


class TransitionDefinition(SoftDeleteMixin, db.Model):
    """
    A configured edge ``from_stage → to_stage``.

    ``condition_script`` and ``validation_rules`` are stored as JSON and
    parsed into typed values by the services on write and on read.
    """

    __tablename__ = "workflow_transitions"
    __table_args__ = (
        db.CheckConstraint("from_stage_id <> to_stage_id", name="ck_transition_distinct_stages"),
        db.CheckConstraint(
            "auto_transition_delay_minutes IS NULL OR auto_transition_delay_minutes >= 1",
            name="ck_transition_auto_delay_positive",
        ),
        db.Index("idx_transition_from_scope", "from_stage_id", "scope_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False, default="")
    from_stage_id = db.Column(
        db.Integer, db.ForeignKey("workflow_stages.id", ondelete="RESTRICT"), nullable=False,
    )
    to_stage_id = db.Column(
        db.Integer, db.ForeignKey("workflow_stages.id", ondelete="RESTRICT"), nullable=False,
    )
    scope_id = db.Column(db.Integer, nullable=True, index=True,
                         comment="NULL = global default transition")

    required_role = db.Column(db.String(40), nullable=True)
    condition_script = db.Column(db.JSON, nullable=True,
                                 comment='{"logic": "AND", "rules": [{"type", "operator", "value"}]}')
    validation_rules = db.Column(db.JSON, nullable=True,
                                 comment="{required_fields, business_rules, require_comments, ...}")
    auto_transition_delay_minutes = db.Column(db.Integer, nullable=True)
    notification_required = db.Column(db.Boolean, nullable=False, default=False)
    notification_template = db.Column(db.JSON, nullable=True,
                                      comment="{subject, body, recipients}")

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    from_stage = db.relationship("StageDefinition", foreign_keys=[from_stage_id], lazy="joined")
    to_stage = db.relationship("StageDefinition", foreign_keys=[to_stage_id], lazy="joined")

    @property
    def is_automatic(self) -> bool:
        return self.auto_transition_delay_minutes is not None

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "from_stage_id": self.from_stage_id,
            "to_stage_id": self.to_stage_id,
            "from_stage": self.from_stage.name if self.from_stage else None,
            "to_stage": self.to_stage.name if self.to_stage else None,
            "scope_id": self.scope_id,
            "required_role": self.required_role,
            "condition_script": self.condition_script,
            "validation_rules": self.validation_rules,
            "auto_transition_delay_minutes": self.auto_transition_delay_minutes,
            "notification_required": self.notification_required,
            "notification_template": self.notification_template,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<TransitionDefinition {self.id}: {self.from_stage_id}->{self.to_stage_id} scope={self.scope_id}>"
