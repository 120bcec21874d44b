"""
Workflow Engine — orchestrates stage changes for work items.

Composes the registries, condition evaluator, validation engine, SLA
tracker and audit trail into the engine's public surface:

    check_advance / can_advance   resolve the transition, run role, condition
                                  and validation checks (no writes)
    advance                       re-check, then compare-and-swap the stage,
                                  append audit + event, commit, notify
    get_available_transitions     role-filtered targets from the current stage
    process_auto_transitions      time-based sweep, one advance per item
    process_approval_workflow     approve (advance) or reject (stay in place)

Commit unit of ``advance``::

    UPDATE work_items SET current_stage, last_stage_entry_at, version + 1
     WHERE id = :id AND current_stage = :stage_read
    INSERT workflow_audit_entries ...
    INSERT workflow_events ...
    COMMIT

Zero rows updated means another writer moved the item first: the session is
rolled back and ConcurrencyConflict is raised. The engine never retries.
Notifications go out after the commit; a dispatcher failure is logged and
does not undo the stage change.

Usage:
    from workintake.services.workflow_engine import get_engine

    engine = get_engine()
    if engine.can_advance(item, "Review", actor=user.id):
        engine.advance(item, "Review", actor=user.id, comment="Ready for review")
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from flask import Flask, current_app
from sqlalchemy import select, update

from workintake.core.exceptions import (
    ApprovalNotRequired,
    ApprovalUnauthorized,
    ConcurrencyConflict,
    NotFoundError,
    TransitionNotAllowed,
    TransitionNotFound,
)
from workintake.models import db
from workintake.models.audit import TransitionMetadata
from workintake.models.work_item import UserRole, WorkItem
from workintake.models.workflow import StageDefinition, TransitionDefinition
from workintake.services import workflow_metrics
from workintake.services.audit_trail import AuditTrail, WorkflowState
from workintake.services.conditions import evaluate_condition
from workintake.services.config_validation import ConfigurationReport, validate_configuration
from workintake.services.directory import Actor, resolve_actor, system_actor
from workintake.services.notification import NotificationService, render_template, template_context
from workintake.services.sla import SLAStatus, SLATracker
from workintake.services.stage_registry import StageRegistry
from workintake.services.transition_registry import TransitionRegistry
from workintake.services.validation import ValidationEngine
from workintake.utils.helpers import as_utc, get_or_raise, hours_between, utcnow

logger = logging.getLogger(__name__)

_DEFAULT_SUBJECT = "Work item {work_item_id} moved to {to_stage}"
_DEFAULT_BODY = "{title} moved from {from_stage} to {to_stage} by {actor}. {comment}"


# ═══════════════════════════════════════════════════════════════════════════
#  Results
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class AdvanceCheck:
    """Outcome of the pre-commit checks for one (work item, target, actor)."""

    allowed: bool
    from_stage: StageDefinition | None = None
    to_stage: StageDefinition | None = None
    transition: TransitionDefinition | None = None
    actor: Actor | None = None
    reasons: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    not_found: bool = False


@dataclass
class AdvanceResult:
    work_item_id: int
    from_stage: str
    to_stage: str
    from_order: int
    to_order: int
    transition_id: int
    actor: str
    actor_id: int | None
    timestamp: datetime
    audit_entry_id: int
    event_id: int
    metadata: TransitionMetadata
    warnings: list[str] = field(default_factory=list)
    notified: bool = False

    def to_dict(self) -> dict:
        return {
            "work_item_id": self.work_item_id,
            "from_stage": self.from_stage,
            "to_stage": self.to_stage,
            "from_order": self.from_order,
            "to_order": self.to_order,
            "transition_id": self.transition_id,
            "actor": self.actor,
            "actor_id": self.actor_id,
            "timestamp": self.timestamp.isoformat(),
            "audit_entry_id": self.audit_entry_id,
            "event_id": self.event_id,
            "metadata": self.metadata.to_dict(),
            "warnings": list(self.warnings),
            "notified": self.notified,
        }


@dataclass
class ApprovalResult:
    success: bool
    approved: bool
    message: str
    next_stage: str | None = None
    processed_at: datetime | None = None
    audit_entry_id: int | None = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "approved": self.approved,
            "message": self.message,
            "next_stage": self.next_stage,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
            "audit_entry_id": self.audit_entry_id,
        }


def _cancelled(cancel_event: threading.Event | None) -> bool:
    return cancel_event is not None and cancel_event.is_set()


# ═══════════════════════════════════════════════════════════════════════════
#  Engine
# ═══════════════════════════════════════════════════════════════════════════

class WorkflowEngine:
    """
    Stateless between calls; thresholds and collaborators are fixed at construction.

    Args:
        sla_tracker: SLA/escalation tracker (ratio injected from config).
        dispatcher: object with ``notify(recipients, subject, body, **context)``.
        clock: zero-argument callable returning an aware UTC ``now``.
    """

    def __init__(self, *, sla_tracker: SLATracker | None = None, dispatcher=None,
                 validation_engine: ValidationEngine | None = None,
                 clock: Callable[[], datetime] = utcnow,
                 system_actor_name: str = "system",
                 default_approver_role: UserRole = UserRole.DEPARTMENT_HEAD,
                 bottleneck_wait_hours: float = 72.0,
                 bottleneck_pending_count: int = 10):
        self.sla = sla_tracker or SLATracker()
        self.dispatcher = dispatcher if dispatcher is not None else NotificationService
        self.validation = validation_engine or ValidationEngine()
        self.clock = clock
        self.system_actor_name = system_actor_name
        self.default_approver_role = default_approver_role
        self.bottleneck_wait_hours = bottleneck_wait_hours
        self.bottleneck_pending_count = bottleneck_pending_count

    @classmethod
    def from_config(cls, config, dispatcher=None) -> "WorkflowEngine":
        return cls(
            sla_tracker=SLATracker.from_config(config),
            dispatcher=dispatcher,
            system_actor_name=config.get("WORKFLOW_SYSTEM_ACTOR", "system"),
            default_approver_role=UserRole.parse(
                config.get("WORKFLOW_DEFAULT_APPROVER_ROLE", "DepartmentHead")
            ),
            bottleneck_wait_hours=float(config.get("WORKFLOW_BOTTLENECK_WAIT_HOURS", 72)),
            bottleneck_pending_count=int(config.get("WORKFLOW_BOTTLENECK_PENDING_COUNT", 10)),
        )

    def _now(self, now: datetime | None) -> datetime:
        return as_utc(now) if now is not None else self.clock()

    def system_actor(self) -> Actor:
        return system_actor(self.system_actor_name)

    # ── Resolution ────────────────────────────────────────────────────────

    @staticmethod
    def current_stage(work_item: WorkItem) -> StageDefinition | None:
        return StageRegistry.get_stage_by_order(work_item.current_stage, work_item.scope_id)

    @staticmethod
    def resolve_target(work_item: WorkItem, target) -> StageDefinition | None:
        """Target given as a stage, an order or a stage name; None when unknown."""
        if isinstance(target, StageDefinition):
            return target if StageRegistry.is_effective(target, work_item.scope_id) else None
        if isinstance(target, int) and not isinstance(target, bool):
            return StageRegistry.get_stage_by_order(target, work_item.scope_id)
        if isinstance(target, str):
            return StageRegistry.get_stage_by_name(target, work_item.scope_id)
        return None

    @staticmethod
    def usable_transitions(work_item: WorkItem, stage: StageDefinition) -> list[TransitionDefinition]:
        """Edges out of ``stage`` whose target is the stage the item would resolve to.

        A global edge into an order the item's scope overrides is skipped.
        """
        return [
            t for t in TransitionRegistry.transitions_from(stage.id, work_item.scope_id)
            if StageRegistry.is_effective(t.to_stage, work_item.scope_id)
        ]

    def get_transition_for(self, work_item: WorkItem, target) -> TransitionDefinition | None:
        from_stage = self.current_stage(work_item)
        to_stage = self.resolve_target(work_item, target)
        if from_stage is None or to_stage is None:
            return None
        return TransitionRegistry.get_transition(from_stage.id, to_stage.id, work_item.scope_id)

    # ── Checks ────────────────────────────────────────────────────────────

    def check_advance(self, work_item: WorkItem, target, actor, *, comment: str | None = None,
                      now: datetime | None = None) -> AdvanceCheck:
        """Run every pre-commit check and report why an advance would be refused."""
        now = self._now(now)
        try:
            actor = resolve_actor(actor)
        except NotFoundError as exc:
            return AdvanceCheck(allowed=False, reasons=(str(exc),))

        from_stage = self.current_stage(work_item)
        to_stage = self.resolve_target(work_item, target)
        if from_stage is None or to_stage is None:
            missing = "current stage" if from_stage is None else "target stage"
            return AdvanceCheck(allowed=False, from_stage=from_stage, to_stage=to_stage, actor=actor,
                                reasons=(f"Unknown {missing}",), not_found=True)

        transition = TransitionRegistry.get_transition(from_stage.id, to_stage.id, work_item.scope_id)
        if transition is None:
            return AdvanceCheck(
                allowed=False, from_stage=from_stage, to_stage=to_stage, actor=actor,
                reasons=(f"No transition configured from {from_stage.name} to {to_stage.name}",),
                not_found=True,
            )

        reasons = []
        if not TransitionRegistry.can_user_execute_transition(transition, actor):
            reasons.append(f"Role {UserRole.parse(transition.required_role).label} or higher is required")
        if not evaluate_condition(transition.condition_script, work_item, actor.role, now):
            reasons.append("Transition condition is not satisfied")
        validation = self.validation.validate(transition, work_item, actor, comment=comment)
        reasons.extend(validation.errors)

        return AdvanceCheck(
            allowed=not reasons,
            from_stage=from_stage,
            to_stage=to_stage,
            transition=transition,
            actor=actor,
            reasons=tuple(dict.fromkeys(reasons)),
            warnings=tuple(validation.warnings),
        )

    def can_advance(self, work_item: WorkItem, target, actor, *, comment: str = "",
                    now: datetime | None = None) -> bool:
        """Same verdict ``advance`` would reach with the same ``comment``."""
        return self.check_advance(work_item, target, actor, comment=comment, now=now).allowed

    # ── Advance ───────────────────────────────────────────────────────────

    def advance(self, work_item: WorkItem, target, actor, comment: str = "", *,
                now: datetime | None = None, correlation_id: str | None = None) -> AdvanceResult:
        """
        Move ``work_item`` to ``target`` in one transaction.

        Raises:
            TransitionNotFound: no active transition for (current, target, scope).
            TransitionNotAllowed: role, condition or validation failed.
            ConcurrencyConflict: the stage changed since ``work_item`` was read.
        """
        now = self._now(now)
        check = self.check_advance(work_item, target, actor, comment=comment or "", now=now)
        from_name = check.from_stage.name if check.from_stage else None
        to_name = check.to_stage.name if check.to_stage else str(target)
        if not check.allowed:
            logger.debug("Advance refused: %s", "; ".join(check.reasons),
                         extra={"work_item_id": work_item.id, "from_stage": from_name, "to_stage": to_name})
            if check.not_found:
                raise TransitionNotFound(work_item.id, from_name, to_name, work_item.scope_id)
            raise TransitionNotAllowed(work_item.id, from_name, to_name, list(check.reasons))

        actor, transition = check.actor, check.transition
        from_stage, to_stage = check.from_stage, check.to_stage
        expected_stage = work_item.current_stage

        try:
            timestamp = AuditTrail.monotonic_timestamp(work_item.id, now)
            metadata = TransitionMetadata(
                time_in_previous_stage_hours=round(hours_between(work_item.last_stage_entry_at, timestamp), 4),
                transition_id=transition.id,
                actor_id=actor.id,
            )
            swapped = db.session.execute(
                update(WorkItem)
                .where(WorkItem.id == work_item.id, WorkItem.current_stage == expected_stage)
                .values(
                    current_stage=to_stage.order,
                    last_stage_entry_at=timestamp,
                    version=WorkItem.version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if swapped.rowcount != 1:
                raise ConcurrencyConflict(work_item.id, expected_stage)
            entry, event = AuditTrail.record_transition(
                work_item=work_item,
                from_stage=from_stage,
                to_stage=to_stage,
                actor=actor,
                comment=comment,
                metadata=metadata,
                timestamp=timestamp,
                correlation_id=correlation_id,
            )
            db.session.commit()
        except ConcurrencyConflict:
            db.session.rollback()
            logger.warning("Concurrent stage change detected; advance rolled back",
                           extra={"work_item_id": work_item.id, "from_stage": from_name, "to_stage": to_name})
            raise
        except Exception:
            db.session.rollback()
            logger.exception("Advance failed; rolled back",
                             extra={"work_item_id": work_item.id, "transition_id": transition.id})
            raise

        db.session.refresh(work_item)
        logger.info(
            "Work item %d advanced %s -> %s by %s", work_item.id, from_stage.name, to_stage.name, actor.name,
            extra={"work_item_id": work_item.id, "transition_id": transition.id, "actor": actor.name,
                   "from_stage": from_stage.name, "to_stage": to_stage.name},
        )

        result = AdvanceResult(
            work_item_id=work_item.id,
            from_stage=from_stage.name,
            to_stage=to_stage.name,
            from_order=from_stage.order,
            to_order=to_stage.order,
            transition_id=transition.id,
            actor=actor.name,
            actor_id=actor.id,
            timestamp=timestamp,
            audit_entry_id=entry.id,
            event_id=event.id,
            metadata=metadata,
            warnings=list(check.warnings),
        )
        if transition.notification_required:
            result.notified = self._notify_transition(work_item, transition, from_stage, to_stage,
                                                      actor, comment)
        return result

    def _notify_transition(self, work_item, transition, from_stage, to_stage, actor, comment) -> bool:
        template = transition.notification_template or to_stage.notification_template or {}
        context = template_context(work_item, from_stage=from_stage.name, to_stage=to_stage.name,
                                   actor=actor.name, comment=comment)
        recipients = list(template.get("recipients") or [])
        if not recipients and work_item.submitter is not None:
            recipients = [work_item.submitter.username]
        try:
            self.dispatcher.notify(
                recipients,
                render_template(template.get("subject") or _DEFAULT_SUBJECT, context),
                render_template(template.get("body") or _DEFAULT_BODY, context).strip(),
                category="workflow",
                severity="info",
                entity_type="work_item",
                entity_id=work_item.id,
            )
            return True
        except Exception:
            db.session.rollback()
            logger.exception("Notification dispatch failed; stage change stands",
                             extra={"work_item_id": work_item.id, "transition_id": transition.id})
            return False

    def get_available_transitions(self, work_item: WorkItem, actor) -> list[StageDefinition]:
        """Target stages reachable by ``actor``'s role, ordered by stage order."""
        actor = resolve_actor(actor)
        stage = self.current_stage(work_item)
        if stage is None:
            return []
        return [
            t.to_stage
            for t in self.usable_transitions(work_item, stage)
            if TransitionRegistry.can_user_execute_transition(t, actor)
        ]

    # ── Auto-transitions ──────────────────────────────────────────────────

    def should_auto_transition(self, work_item: WorkItem, transition: TransitionDefinition,
                               now: datetime | None = None) -> bool:
        """Delay elapsed in the current stage and the condition (if any) holds."""
        if not transition.auto_transition_delay_minutes:
            return False
        now = self._now(now)
        elapsed_minutes = hours_between(work_item.last_stage_entry_at, now) * 60
        if elapsed_minutes < transition.auto_transition_delay_minutes:
            return False
        return evaluate_condition(transition.condition_script, work_item,
                                  UserRole.SYSTEM_ADMINISTRATOR, now)

    @staticmethod
    def _applies(transition: TransitionDefinition, work_item: WorkItem) -> bool:
        """``transition`` is the effective edge out of the item's current stage."""
        stage = StageRegistry.get_stage_by_order(work_item.current_stage, work_item.scope_id)
        if stage is None or stage.id != transition.from_stage_id:
            return False
        if not StageRegistry.is_effective(transition.to_stage, work_item.scope_id):
            return False
        effective = TransitionRegistry.get_transition(
            transition.from_stage_id, transition.to_stage_id, work_item.scope_id,
        )
        return effective is not None and effective.id == transition.id

    def _auto_advance(self, work_item: WorkItem, transition: TransitionDefinition,
                      now: datetime) -> AdvanceResult:
        return self.advance(
            work_item, transition.to_stage, self.system_actor(),
            comment=f"Automatic transition after {transition.auto_transition_delay_minutes} minutes",
            now=now,
        )

    def process_auto_transitions(self, now: datetime | None = None, scope_id: int | None = None,
                                 cancel_event: threading.Event | None = None) -> dict:
        """
        Sweep every automatic transition and advance eligible work items.

        At most one advance per work item per sweep. Each item is handled on
        its own: a refusal or failure is logged and counted, and the sweep
        continues. ``cancel_event`` is honoured between items only.
        """
        now = self._now(now)
        summary = {"transitions": 0, "checked": 0, "advanced": 0, "not_eligible": 0,
                   "blocked": 0, "failed": 0, "cancelled": False}
        advanced_ids: set[int] = set()

        for transition in TransitionRegistry.auto_transitions(scope_id):
            if _cancelled(cancel_event):
                summary["cancelled"] = True
                break
            if not (transition.from_stage.is_active and transition.to_stage.is_active):
                continue
            summary["transitions"] += 1

            stmt = select(WorkItem).where(
                WorkItem.current_stage == transition.from_stage.order,
            ).order_by(WorkItem.id)
            if transition.scope_id is not None:
                stmt = stmt.where(WorkItem.scope_id == transition.scope_id)
            elif scope_id is not None:
                stmt = stmt.where(WorkItem.scope_id == scope_id)
            items = db.session.execute(stmt).scalars().all()

            for item in items:
                if _cancelled(cancel_event):
                    summary["cancelled"] = True
                    break
                if item.id in advanced_ids or not self._applies(transition, item):
                    continue
                summary["checked"] += 1
                try:
                    if not self.should_auto_transition(item, transition, now):
                        summary["not_eligible"] += 1
                        continue
                    self._auto_advance(item, transition, now)
                    advanced_ids.add(item.id)
                    summary["advanced"] += 1
                except TransitionNotAllowed as exc:
                    summary["blocked"] += 1
                    logger.warning("Auto-transition blocked: %s", exc,
                                   extra={"work_item_id": item.id, "transition_id": transition.id})
                except ConcurrencyConflict:
                    summary["failed"] += 1
                except Exception:
                    db.session.rollback()
                    summary["failed"] += 1
                    logger.exception("Auto-transition failed",
                                     extra={"work_item_id": item.id, "transition_id": transition.id})
            if summary["cancelled"]:
                break

        logger.info("Auto-transition sweep: %s", summary, extra={"scope_id": scope_id})
        return summary

    def process_auto_transitions_for_work_item(self, work_item: WorkItem,
                                               now: datetime | None = None) -> AdvanceResult | None:
        """Apply the first eligible automatic transition out of the item's stage, if any."""
        now = self._now(now)
        stage = self.current_stage(work_item)
        if stage is None:
            return None
        for transition in self.usable_transitions(work_item, stage):
            if transition.is_automatic and self.should_auto_transition(work_item, transition, now):
                return self._auto_advance(work_item, transition, now)
        return None

    # ── Approval workflow ─────────────────────────────────────────────────

    def is_authorized_approver(self, stage: StageDefinition, actor: Actor) -> bool:
        floor = StageRegistry.approver_floor(stage) or self.default_approver_role
        return actor.role >= floor

    def process_approval_workflow(self, work_item: WorkItem, approver, approved: bool,
                                  comment: str = "", *, now: datetime | None = None) -> ApprovalResult:
        """
        Record an approval decision for the item's current stage.

        Approval advances along the first outgoing transition (forward
        targets first) that passes every check. Rejection leaves the item
        in its stage and appends an ``approval_rejected`` audit entry.

        Raises:
            ApprovalNotRequired: the current stage needs no approval.
            ApprovalUnauthorized: the approver's role is below the stage's floor.
        """
        now = self._now(now)
        approver = resolve_actor(approver)
        stage = self.current_stage(work_item)
        if stage is None or not stage.approval_required:
            raise ApprovalNotRequired(work_item.id, stage.name if stage else None)
        if not self.is_authorized_approver(stage, approver):
            raise ApprovalUnauthorized(work_item.id, approver.name, stage.name)

        if not approved:
            return self._reject(work_item, stage, approver, comment, now)

        candidates = self.usable_transitions(work_item, stage)
        candidates.sort(key=lambda t: (t.to_stage.order < stage.order, t.to_stage.order))
        reasons = []
        for transition in candidates:
            check = self.check_advance(work_item, transition.to_stage, approver, comment=comment, now=now)
            if not check.allowed:
                reasons.extend(check.reasons)
                continue
            result = self.advance(work_item, transition.to_stage, approver, comment, now=now)
            return ApprovalResult(
                success=True,
                approved=True,
                message=f"Approved; moved to {result.to_stage}",
                next_stage=result.to_stage,
                processed_at=result.timestamp,
                audit_entry_id=result.audit_entry_id,
            )

        message = "Approved, but no transition is available"
        if reasons:
            message += ": " + "; ".join(dict.fromkeys(reasons))
        logger.info(message, extra={"work_item_id": work_item.id, "actor": approver.name})
        return ApprovalResult(success=False, approved=True, message=message, processed_at=now)

    def _reject(self, work_item, stage, approver: Actor, comment: str, now: datetime) -> ApprovalResult:
        try:
            timestamp = AuditTrail.monotonic_timestamp(work_item.id, now)
            entry, _event = AuditTrail.record_rejection(
                work_item=work_item, stage=stage, actor=approver, comment=comment, timestamp=timestamp,
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            logger.exception("Recording rejection failed", extra={"work_item_id": work_item.id})
            raise

        logger.info("Work item %d rejected at %s by %s", work_item.id, stage.name, approver.name,
                    extra={"work_item_id": work_item.id, "actor": approver.name})
        if work_item.submitter is not None:
            try:
                self.dispatcher.notify(
                    [work_item.submitter.username],
                    f"Work item {work_item.id} rejected at {stage.name}",
                    f"{work_item.title} was rejected by {approver.name}. {comment or ''}".strip(),
                    category="approval",
                    severity="warning",
                    entity_type="work_item",
                    entity_id=work_item.id,
                )
            except Exception:
                db.session.rollback()
                logger.exception("Rejection notification failed", extra={"work_item_id": work_item.id})

        return ApprovalResult(
            success=True,
            approved=False,
            message=f"Rejected; work item remains in {stage.name}",
            processed_at=timestamp,
            audit_entry_id=entry.id,
        )

    def get_pending_approvals(self, approver, scope_id: int | None = None) -> list[WorkItem]:
        """Open items sitting in an approval stage that ``approver`` may decide, oldest first."""
        approver = resolve_actor(approver)
        stmt = select(WorkItem).order_by(WorkItem.last_stage_entry_at, WorkItem.id)
        if scope_id is not None:
            stmt = stmt.where(WorkItem.scope_id == scope_id)
        pending = []
        for item in db.session.execute(stmt).scalars().all():
            stage = self.current_stage(item)
            if stage is None or not stage.approval_required:
                continue
            if StageRegistry.is_terminal_stage(stage, item.scope_id):
                continue
            if self.is_authorized_approver(stage, approver):
                pending.append(item)
        return pending

    # ── State & history ───────────────────────────────────────────────────

    def get_workflow_state(self, work_item_id: int) -> WorkflowState:
        return AuditTrail.get_current_state(get_or_raise(WorkItem, work_item_id, "WorkItem"))

    def get_workflow_history(self, work_item_id: int) -> list[WorkflowState]:
        get_or_raise(WorkItem, work_item_id, "WorkItem")
        return AuditTrail.get_history(work_item_id)

    def replay_workflow_state(self, work_item_id: int, as_of: datetime) -> WorkflowState | None:
        """State in effect at ``as_of``; None before the item existed. Read-only."""
        item = get_or_raise(WorkItem, work_item_id, "WorkItem")
        as_of = as_utc(as_of)
        state = AuditTrail.replay_state_as_of(work_item_id, as_of)
        if state is not None:
            return state
        if as_of >= as_utc(item.created_at):
            return AuditTrail.initial_state(item)
        return None

    # ── Configuration & rules ─────────────────────────────────────────────

    def validate_workflow_configuration(self, scope_id: int | None = None) -> ConfigurationReport:
        return validate_configuration(scope_id)

    def evaluate_business_rule(self, script, work_item: WorkItem, actor,
                               now: datetime | None = None) -> bool:
        """Evaluate an ad-hoc condition script; malformed scripts raise ValidationError."""
        actor = resolve_actor(actor)
        return evaluate_condition(script, work_item, actor.role, self._now(now))

    # ── SLA ───────────────────────────────────────────────────────────────

    def get_sla_status(self, work_item: WorkItem, now: datetime | None = None) -> SLAStatus:
        return self.sla.status_for(work_item, self._now(now))

    def get_sla_violations(self, as_of: datetime | None = None,
                           scope_id: int | None = None) -> list[SLAStatus]:
        return self.sla.scan_violations(self._now(as_of), scope_id)

    def process_sla_notifications(self, scope_id: int | None = None,
                                  now: datetime | None = None) -> dict:
        return self.sla.process_escalations(self.dispatcher, scope_id, self._now(now))

    # ── Metrics ───────────────────────────────────────────────────────────

    def get_workflow_metrics(self, from_date: datetime, to_date: datetime,
                             scope_id: int | None = None, now: datetime | None = None) -> dict:
        return workflow_metrics.get_workflow_metrics(
            from_date, to_date, scope_id, sla_tracker=self.sla, now=self._now(now),
        )

    def identify_bottlenecks(self, scope_id: int | None = None,
                             now: datetime | None = None) -> list[dict]:
        return workflow_metrics.identify_bottlenecks(
            scope_id,
            wait_hours=self.bottleneck_wait_hours,
            pending_count=self.bottleneck_pending_count,
            now=self._now(now),
        )

    def get_average_completion_time(self, stage, scope_id: int | None = None) -> float:
        if not isinstance(stage, StageDefinition):
            stage = StageRegistry.get_stage(stage)
        return workflow_metrics.get_average_completion_time(stage, scope_id)

    def get_transition_metrics(self, transition_id: int, from_date: datetime | None = None,
                               to_date: datetime | None = None) -> dict:
        return TransitionRegistry.get_transition_metrics(transition_id, from_date, to_date)


# ═══════════════════════════════════════════════════════════════════════════
#  Flask integration
# ═══════════════════════════════════════════════════════════════════════════

def init_workflow_engine(app: Flask, dispatcher=None) -> WorkflowEngine:
    """Build the engine from ``app.config`` and store it on the app."""
    engine = WorkflowEngine.from_config(app.config, dispatcher=dispatcher)
    app.extensions["workflow_engine"] = engine
    return engine


def get_engine() -> WorkflowEngine:
    return current_app.extensions["workflow_engine"]
