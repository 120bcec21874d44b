"""
Work Intake Workflow Engine
Audit domain model.

Models:
    - AuditEntry: immutable, append-only stage-change trail per work item
    - EventRecord: append-only event store (one event per committed change)

Both tables are written in the same transaction as the stage update and are
never updated or deleted afterwards; the ORM listeners at the bottom of this
module refuse any attempt to do so.
"""

from dataclasses import asdict, dataclass
from datetime import UTC, datetime

from sqlalchemy import event, func, select

from workintake.models import db


# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ACTIONS = {
    "stage_changed",
    "approval_rejected",
}

EVENT_TYPES = {
    "WorkflowStageChanged",
    "WorkflowApprovalRejected",
}

AGGREGATE_WORK_ITEM = "WorkItem"


class AppendOnlyViolation(RuntimeError):
    """Raised when code tries to modify or delete an audit/event row."""


@dataclass(frozen=True)
class TransitionMetadata:
    """Structured metadata carried by every stage-change audit entry."""

    time_in_previous_stage_hours: float
    transition_id: int | None
    actor_id: int | None

    def to_dict(self) -> dict:
        return asdict(self)


class AuditEntry(db.Model):
    """
    One row per committed stage change (or recorded approval rejection).

    ``old_value``/``new_value`` carry stage names; the ``*_stage_order``
    columns keep replay independent of later stage renames.
    """

    __tablename__ = "workflow_audit_entries"
    __table_args__ = (
        db.Index("idx_wf_audit_item_ts", "work_item_id", "timestamp", "id"),
        db.Index("idx_wf_audit_transition", "transition_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    work_item_id = db.Column(
        db.Integer, db.ForeignKey("work_items.id", ondelete="CASCADE"), nullable=False,
    )
    action = db.Column(db.String(40), nullable=False, default="stage_changed",
                       comment="stage_changed | approval_rejected")
    old_value = db.Column(db.String(100), nullable=True, comment="Previous stage name")
    new_value = db.Column(db.String(100), nullable=True, comment="New stage name")
    from_stage_order = db.Column(db.Integer, nullable=True)
    to_stage_order = db.Column(db.Integer, nullable=True)

    actor = db.Column(db.String(150), nullable=False, default="system",
                      comment="Username or the system identity label")
    actor_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
        comment="NULL for the system identity",
    )
    comments = db.Column(db.Text, default="")

    # Structured transition metadata
    time_in_previous_stage_hours = db.Column(db.Float, nullable=False, default=0.0)
    transition_id = db.Column(
        db.Integer, db.ForeignKey("workflow_transitions.id", ondelete="SET NULL"), nullable=True,
    )
    correlation_id = db.Column(db.String(36), nullable=True, index=True)

    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    @property
    def transition_metadata(self) -> TransitionMetadata:
        return TransitionMetadata(
            time_in_previous_stage_hours=self.time_in_previous_stage_hours or 0.0,
            transition_id=self.transition_id,
            actor_id=self.actor_id,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "work_item_id": self.work_item_id,
            "action": self.action,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "from_stage_order": self.from_stage_order,
            "to_stage_order": self.to_stage_order,
            "actor": self.actor,
            "actor_id": self.actor_id,
            "comments": self.comments,
            "metadata": self.transition_metadata.to_dict(),
            "correlation_id": self.correlation_id,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditEntry {self.id}: item {self.work_item_id} {self.old_value}->{self.new_value}>"


class EventRecord(db.Model):
    """
    Event-store row. ``event_version`` is a gap-free sequence per aggregate.
    """

    __tablename__ = "workflow_events"
    __table_args__ = (
        db.UniqueConstraint("aggregate_type", "aggregate_id", "event_version",
                            name="uq_event_aggregate_version"),
    )

    id = db.Column(db.Integer, primary_key=True)
    aggregate_type = db.Column(db.String(50), nullable=False, default=AGGREGATE_WORK_ITEM)
    aggregate_id = db.Column(db.Integer, nullable=False, index=True)
    event_type = db.Column(db.String(60), nullable=False,
                           comment="WorkflowStageChanged | WorkflowApprovalRejected")
    event_version = db.Column(db.Integer, nullable=False)
    event_data = db.Column(db.JSON, nullable=False, default=dict,
                           comment='{"from": "Draft", "to": "Review", ...}')
    correlation_id = db.Column(db.String(36), nullable=True, index=True)
    created_by = db.Column(db.String(150), nullable=False, default="system")
    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "aggregate_type": self.aggregate_type,
            "aggregate_id": self.aggregate_id,
            "event_type": self.event_type,
            "event_version": self.event_version,
            "event_data": self.event_data,
            "correlation_id": self.correlation_id,
            "created_by": self.created_by,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<EventRecord {self.aggregate_type}/{self.aggregate_id} v{self.event_version} {self.event_type}>"


# ── Convenience writers ──────────────────────────────────────────────────────

def next_event_version(aggregate_id: int, aggregate_type: str = AGGREGATE_WORK_ITEM) -> int:
    current = db.session.execute(
        select(func.max(EventRecord.event_version)).where(
            EventRecord.aggregate_type == aggregate_type,
            EventRecord.aggregate_id == aggregate_id,
        )
    ).scalar()
    return (current or 0) + 1


def append_event(
    *,
    aggregate_id: int,
    event_type: str,
    event_data: dict,
    created_by: str = "system",
    correlation_id: str | None = None,
    timestamp: datetime | None = None,
    aggregate_type: str = AGGREGATE_WORK_ITEM,
) -> EventRecord:
    """
    Append a single event.  Uses ``flush`` so callers keep
    transaction control.
    """
    record = EventRecord(
        aggregate_type=aggregate_type,
        aggregate_id=aggregate_id,
        event_type=event_type,
        event_version=next_event_version(aggregate_id, aggregate_type),
        event_data=event_data,
        correlation_id=correlation_id,
        created_by=created_by,
        timestamp=timestamp or datetime.now(UTC),
    )
    db.session.add(record)
    db.session.flush()
    return record


# ── Append-only guards ───────────────────────────────────────────────────────

@event.listens_for(AuditEntry, "before_update")
@event.listens_for(EventRecord, "before_update")
def _refuse_update(mapper, connection, target):
    raise AppendOnlyViolation(f"{type(target).__name__} rows are append-only")


@event.listens_for(AuditEntry, "before_delete")
@event.listens_for(EventRecord, "before_delete")
def _refuse_delete(mapper, connection, target):
    raise AppendOnlyViolation(f"{type(target).__name__} rows cannot be deleted")
