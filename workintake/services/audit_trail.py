"""
Audit Log / Event Store service.

Writes happen inside the caller's transaction (``flush`` only); reads
rebuild a work item's stage history from its ``stage_changed`` entries.

    record_transition   one AuditEntry + one EventRecord per committed change
    record_rejection    approval rejection trail (stage unchanged)
    get_history         ordered WorkflowState list with exit times and durations
    get_current_state   latest visit (creation visit for an item that never moved)
    replay_state_as_of  state in effect at a point in time
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import func, select

from workintake.models import db
from workintake.models.audit import AuditEntry, EventRecord, TransitionMetadata, append_event
from workintake.services.directory import Actor
from workintake.services.stage_registry import StageRegistry
from workintake.utils.helpers import as_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkflowState:
    """One stage visit of a work item, reconstructed from the audit trail."""

    work_item_id: int
    stage_order: int | None
    stage_name: str | None
    previous_stage_name: str | None
    entry_time: datetime
    exit_time: datetime | None
    actor: str
    actor_id: int | None
    comments: str
    metadata: TransitionMetadata | None

    @property
    def duration(self) -> timedelta | None:
        if self.exit_time is None:
            return None
        return self.exit_time - self.entry_time

    def to_dict(self) -> dict:
        duration = self.duration
        return {
            "work_item_id": self.work_item_id,
            "stage_order": self.stage_order,
            "stage": self.stage_name,
            "previous_stage": self.previous_stage_name,
            "entry_time": self.entry_time.isoformat(),
            "exit_time": self.exit_time.isoformat() if self.exit_time else None,
            "duration_hours": round(duration.total_seconds() / 3600, 4) if duration else None,
            "actor": self.actor,
            "actor_id": self.actor_id,
            "comments": self.comments,
            "metadata": self.metadata.to_dict() if self.metadata else None,
        }


class AuditTrail:
    """Stateless service class for the append-only audit/event records."""

    # ── Write ─────────────────────────────────────────────────────────────

    @staticmethod
    def latest_timestamp(work_item_id: int) -> datetime | None:
        return as_utc(db.session.execute(
            select(func.max(AuditEntry.timestamp)).where(AuditEntry.work_item_id == work_item_id)
        ).scalar())

    @staticmethod
    def monotonic_timestamp(work_item_id: int, now: datetime) -> datetime:
        """``now`` clamped so entries for a work item never go backwards in time."""
        now = as_utc(now)
        latest = AuditTrail.latest_timestamp(work_item_id)
        if latest is not None and latest > now:
            logger.warning("Clock behind last audit entry by %s; clamping",
                           latest - now, extra={"work_item_id": work_item_id})
            return latest
        return now

    @staticmethod
    def record_transition(*, work_item, from_stage, to_stage, actor: Actor, comment: str,
                          metadata: TransitionMetadata, timestamp: datetime,
                          correlation_id: str | None = None) -> tuple[AuditEntry, EventRecord]:
        """Append the audit entry and event for a committed stage change. Caller commits."""
        entry = AuditEntry(
            work_item_id=work_item.id,
            action="stage_changed",
            old_value=from_stage.name,
            new_value=to_stage.name,
            from_stage_order=from_stage.order,
            to_stage_order=to_stage.order,
            actor=actor.name,
            actor_id=actor.id,
            comments=comment or "",
            time_in_previous_stage_hours=metadata.time_in_previous_stage_hours,
            transition_id=metadata.transition_id,
            correlation_id=correlation_id,
            timestamp=timestamp,
        )
        db.session.add(entry)
        db.session.flush()
        event = append_event(
            aggregate_id=work_item.id,
            event_type="WorkflowStageChanged",
            event_data={
                "from": from_stage.name,
                "to": to_stage.name,
                "from_order": from_stage.order,
                "to_order": to_stage.order,
                "audit_entry_id": entry.id,
                "metadata": metadata.to_dict(),
            },
            created_by=actor.name,
            correlation_id=correlation_id,
            timestamp=timestamp,
        )
        return entry, event

    @staticmethod
    def record_rejection(*, work_item, stage, actor: Actor, comment: str, timestamp: datetime,
                         correlation_id: str | None = None) -> tuple[AuditEntry, EventRecord]:
        """Append an approval-rejection entry; the stage is unchanged. Caller commits."""
        entry = AuditEntry(
            work_item_id=work_item.id,
            action="approval_rejected",
            old_value=stage.name,
            new_value=stage.name,
            from_stage_order=stage.order,
            to_stage_order=stage.order,
            actor=actor.name,
            actor_id=actor.id,
            comments=comment or "",
            time_in_previous_stage_hours=0.0,
            correlation_id=correlation_id,
            timestamp=timestamp,
        )
        db.session.add(entry)
        db.session.flush()
        event = append_event(
            aggregate_id=work_item.id,
            event_type="WorkflowApprovalRejected",
            event_data={"stage": stage.name, "stage_order": stage.order,
                        "audit_entry_id": entry.id, "comment": comment or ""},
            created_by=actor.name,
            correlation_id=correlation_id,
            timestamp=timestamp,
        )
        return entry, event

    # ── Read ──────────────────────────────────────────────────────────────

    @staticmethod
    def entries_for(work_item_id: int, action: str | None = None) -> list[AuditEntry]:
        stmt = select(AuditEntry).where(AuditEntry.work_item_id == work_item_id)
        if action is not None:
            stmt = stmt.where(AuditEntry.action == action)
        return list(db.session.execute(
            stmt.order_by(AuditEntry.timestamp, AuditEntry.id)
        ).scalars().all())

    @staticmethod
    def events_for(work_item_id: int) -> list[EventRecord]:
        return list(db.session.execute(
            select(EventRecord)
            .where(EventRecord.aggregate_id == work_item_id)
            .order_by(EventRecord.event_version)
        ).scalars().all())

    @staticmethod
    def get_history(work_item_id: int) -> list[WorkflowState]:
        """Stage visits in commit order; each exits when the next one enters."""
        entries = AuditTrail.entries_for(work_item_id, action="stage_changed")
        states = []
        for idx, entry in enumerate(entries):
            nxt = entries[idx + 1] if idx + 1 < len(entries) else None
            states.append(WorkflowState(
                work_item_id=work_item_id,
                stage_order=entry.to_stage_order,
                stage_name=entry.new_value,
                previous_stage_name=entry.old_value,
                entry_time=as_utc(entry.timestamp),
                exit_time=as_utc(nxt.timestamp) if nxt else None,
                actor=entry.actor,
                actor_id=entry.actor_id,
                comments=entry.comments or "",
                metadata=entry.transition_metadata,
            ))
        return states

    @staticmethod
    def replay_state_as_of(work_item_id: int, as_of: datetime) -> WorkflowState | None:
        """Most recent stage visit that began at or before ``as_of``; None if none did."""
        as_of = as_utc(as_of)
        current = None
        for state in AuditTrail.get_history(work_item_id):
            if state.entry_time > as_of:
                break
            current = state
        return current

    @staticmethod
    def initial_state(work_item) -> WorkflowState:
        """The visit that began at creation, before any recorded stage change."""
        entries = AuditTrail.entries_for(work_item.id, action="stage_changed")
        first = entries[0] if entries else None
        if first is None:
            stage = StageRegistry.get_stage_by_order(work_item.current_stage, work_item.scope_id)
            stage_name = stage.name if stage is not None else None
        else:
            stage_name = first.old_value
        submitter = work_item.submitter
        return WorkflowState(
            work_item_id=work_item.id,
            stage_order=first.from_stage_order if first else work_item.current_stage,
            stage_name=stage_name,
            previous_stage_name=None,
            entry_time=as_utc(work_item.created_at),
            exit_time=as_utc(first.timestamp) if first else None,
            actor=submitter.username if submitter is not None else "",
            actor_id=work_item.submitter_id,
            comments="",
            metadata=None,
        )

    @staticmethod
    def get_current_state(work_item) -> WorkflowState:
        """Latest stage visit; the creation visit when the item never moved."""
        history = AuditTrail.get_history(work_item.id)
        return history[-1] if history else AuditTrail.initial_state(work_item)
