"""
Work Intake Workflow Engine
Notification domain model.

Models:
    - Notification: in-app notification record with read tracking
    - EscalationRecord: one row per SLA escalation emitted for a stage visit
"""

from datetime import datetime, timezone

from workintake.models import db


# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_CATEGORIES = {"workflow", "approval", "sla", "system"}
NOTIFICATION_SEVERITIES = {"info", "warning", "error", "success"}
ESCALATION_KINDS = {"at_risk", "violated"}


class Notification(db.Model):
    """
    In-app notification entity.

    One record per recipient per event.
    """

    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    recipient = db.Column(db.String(150), default="all", index=True, comment="User name or 'all' for broadcast")
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    category = db.Column(db.String(30), default="workflow")
    severity = db.Column(db.String(20), default="info")

    # Link to source entity
    entity_type = db.Column(db.String(30), default="", comment="work_item/...")
    entity_id = db.Column(db.Integer, nullable=True)

    # Read tracking
    is_read = db.Column(db.Boolean, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "recipient": self.recipient,
            "title": self.title,
            "message": self.message,
            "category": self.category,
            "severity": self.severity,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.title[:40]}>"


class EscalationRecord(db.Model):
    """
    Emitted SLA escalation.

    ``dedup_key`` identifies (work item, stage visit, kind); a stage visit is
    keyed by its entry timestamp, so re-entering a stage escalates afresh
    while repeated sweeps over the same visit do not.
    """

    __tablename__ = "workflow_escalations"

    id = db.Column(db.Integer, primary_key=True)
    dedup_key = db.Column(db.String(120), unique=True, nullable=False)
    work_item_id = db.Column(
        db.Integer, db.ForeignKey("work_items.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    stage_order = db.Column(db.Integer, nullable=False)
    stage_name = db.Column(db.String(100), nullable=False)
    kind = db.Column(db.String(20), nullable=False, comment="at_risk | violated")
    stage_entered_at = db.Column(db.DateTime(timezone=True), nullable=False)
    deadline = db.Column(db.DateTime(timezone=True), nullable=False)
    recipients = db.Column(db.JSON, default=list)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "work_item_id": self.work_item_id,
            "stage_order": self.stage_order,
            "stage_name": self.stage_name,
            "kind": self.kind,
            "stage_entered_at": self.stage_entered_at.isoformat() if self.stage_entered_at else None,
            "deadline": self.deadline.isoformat() if self.deadline else None,
            "recipients": list(self.recipients or []),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<EscalationRecord item={self.work_item_id} {self.kind} @ {self.stage_name}>"
