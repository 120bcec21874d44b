"""
SLA / Escalation Tracker.

    compute()            pure status of one stage visit: (stage, entered_at, now)
    status_for()         resolves the work item's current stage, then compute()
    scan()               statuses of every non-terminal work item with an SLA
    scan_violations()    the violated subset
    process_escalations() action-triggering sweep: one EscalationRecord per
                         (work item, stage visit, kind) plus a notification

The "At Risk" window is a fraction of the stage's SLA hours, injected at
construction (global ratio plus optional per-scope overrides); the tracker
never reads it from a module-level constant.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select

from workintake.models import db
from workintake.models.notification import EscalationRecord
from workintake.models.work_item import UserRole, WorkItem
from workintake.models.workflow import StageDefinition
from workintake.services.directory import users_at_or_above
from workintake.services.stage_registry import StageRegistry
from workintake.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)


class SLAState(str, enum.Enum):
    ON_TRACK = "On Track"
    AT_RISK = "At Risk"
    VIOLATED = "Violated"
    NO_SLA = "No SLA"


@dataclass(frozen=True)
class SLAStatus:
    work_item_id: int | None
    stage_order: int | None
    stage_name: str | None
    stage_entered_at: datetime | None
    sla_hours: float | None
    deadline: datetime | None
    remaining: timedelta | None
    status: SLAState

    @property
    def is_violated(self) -> bool:
        return self.status is SLAState.VIOLATED

    @property
    def is_at_risk(self) -> bool:
        return self.status is SLAState.AT_RISK

    def to_dict(self) -> dict:
        return {
            "work_item_id": self.work_item_id,
            "stage_order": self.stage_order,
            "stage": self.stage_name,
            "stage_entered_at": self.stage_entered_at.isoformat() if self.stage_entered_at else None,
            "sla_hours": self.sla_hours,
            "deadline": self.deadline.isoformat() if self.deadline else None,
            "remaining_hours": (
                round(self.remaining.total_seconds() / 3600, 2) if self.remaining is not None else None
            ),
            "status": self.status.value,
            "is_violated": self.is_violated,
            "is_at_risk": self.is_at_risk,
        }


def _dedup_key(work_item_id: int, stage_order: int, entered_at: datetime, kind: str) -> str:
    """Format: sla-{item}-{stage order}-{entry epoch seconds}-{kind}."""
    return f"sla-{work_item_id}-{stage_order}-{int(as_utc(entered_at).timestamp())}-{kind}"


class SLATracker:
    """Computes SLA status; thresholds are fixed for the tracker's lifetime."""

    def __init__(self, at_risk_ratio: float = 0.25, scope_ratios: dict | None = None,
                 escalation_role: UserRole = UserRole.DEPARTMENT_MANAGER):
        ratios = {int(k): float(v) for k, v in (scope_ratios or {}).items()}
        for ratio in (at_risk_ratio, *ratios.values()):
            if not 0.0 <= ratio <= 1.0:
                raise ValueError(f"At-risk ratio must be within [0, 1], got {ratio}")
        self.at_risk_ratio = float(at_risk_ratio)
        self.scope_ratios = ratios
        self.escalation_role = escalation_role

    @classmethod
    def from_config(cls, config) -> "SLATracker":
        return cls(
            at_risk_ratio=config.get("WORKFLOW_SLA_AT_RISK_RATIO", 0.25),
            scope_ratios=config.get("WORKFLOW_SLA_AT_RISK_RATIO_BY_SCOPE") or {},
            escalation_role=UserRole.parse(config.get("WORKFLOW_ESCALATION_ROLE", "DepartmentManager")),
        )

    def ratio_for(self, scope_id: int | None) -> float:
        if scope_id is not None and scope_id in self.scope_ratios:
            return self.scope_ratios[scope_id]
        return self.at_risk_ratio

    # ── Status ────────────────────────────────────────────────────────────

    def compute(self, stage: StageDefinition | None, last_stage_entry_at: datetime, now: datetime,
                *, scope_id: int | None = None, work_item_id: int | None = None) -> SLAStatus:
        """Pure function of (stage definition, entry time, now, ratio)."""
        entered = as_utc(last_stage_entry_at)
        if stage is None or not stage.sla_hours:
            return SLAStatus(
                work_item_id=work_item_id,
                stage_order=stage.order if stage is not None else None,
                stage_name=stage.name if stage is not None else None,
                stage_entered_at=entered, sla_hours=None, deadline=None, remaining=None,
                status=SLAState.NO_SLA,
            )

        now = as_utc(now)
        window = timedelta(hours=stage.sla_hours)
        deadline = entered + window
        remaining = deadline - now
        if now > deadline:
            status = SLAState.VIOLATED
        elif remaining <= window * self.ratio_for(scope_id):
            status = SLAState.AT_RISK
        else:
            status = SLAState.ON_TRACK
        return SLAStatus(
            work_item_id=work_item_id,
            stage_order=stage.order,
            stage_name=stage.name,
            stage_entered_at=entered,
            sla_hours=stage.sla_hours,
            deadline=deadline,
            remaining=remaining,
            status=status,
        )

    def status_for(self, work_item: WorkItem, now: datetime | None = None) -> SLAStatus:
        stage = StageRegistry.get_stage_by_order(work_item.current_stage, work_item.scope_id)
        return self.compute(stage, work_item.last_stage_entry_at, now or utcnow(),
                            scope_id=work_item.scope_id, work_item_id=work_item.id)

    # ── Scans ─────────────────────────────────────────────────────────────

    def _open_items(self, scope_id: int | None):
        stmt = select(WorkItem).order_by(WorkItem.id)
        if scope_id is not None:
            stmt = stmt.where(WorkItem.scope_id == scope_id)
        for item in db.session.execute(stmt).scalars().all():
            stage = StageRegistry.get_stage_by_order(item.current_stage, item.scope_id)
            if stage is None or StageRegistry.is_terminal_stage(stage, item.scope_id):
                continue
            yield item, stage

    def scan(self, as_of: datetime | None = None, scope_id: int | None = None) -> list[SLAStatus]:
        """Status of every non-terminal work item whose stage defines an SLA."""
        as_of = as_of or utcnow()
        statuses = []
        for item, stage in self._open_items(scope_id):
            if not stage.sla_hours:
                continue
            statuses.append(self.compute(stage, item.last_stage_entry_at, as_of,
                                         scope_id=item.scope_id, work_item_id=item.id))
        return statuses

    def scan_violations(self, as_of: datetime | None = None, scope_id: int | None = None) -> list[SLAStatus]:
        return [s for s in self.scan(as_of, scope_id) if s.is_violated]

    # ── Escalation sweep ──────────────────────────────────────────────────

    def _recipients(self, item: WorkItem) -> list[str]:
        names = [u.username for u in users_at_or_above(self.escalation_role)]
        if item.submitter is not None and item.submitter.username not in names:
            names.insert(0, item.submitter.username)
        return names or ["all"]

    def process_escalations(self, dispatcher, scope_id: int | None = None,
                            now: datetime | None = None) -> dict:
        """
        Emit escalations for violated (error) and at-risk (warning) items.

        Each item commits on its own; a failure is logged, rolled back and
        counted, and the sweep moves on.
        """
        now = now or utcnow()
        summary = {"scanned": 0, "violated": 0, "at_risk": 0,
                   "escalations_created": 0, "already_escalated": 0, "failed": 0}

        for status in self.scan(now, scope_id):
            summary["scanned"] += 1
            if status.is_violated:
                kind = "violated"
            elif status.is_at_risk:
                kind = "at_risk"
            else:
                continue
            summary[kind] += 1

            key = _dedup_key(status.work_item_id, status.stage_order, status.stage_entered_at, kind)
            if EscalationRecord.query.filter_by(dedup_key=key).first() is not None:
                summary["already_escalated"] += 1
                continue

            try:
                item = db.session.get(WorkItem, status.work_item_id)
                recipients = self._recipients(item)
                db.session.add(EscalationRecord(
                    dedup_key=key,
                    work_item_id=item.id,
                    stage_order=status.stage_order,
                    stage_name=status.stage_name,
                    kind=kind,
                    stage_entered_at=status.stage_entered_at,
                    deadline=status.deadline,
                    recipients=recipients,
                ))
                db.session.flush()
                if kind == "violated":
                    overdue = now - status.deadline
                    subject = f"SLA violated: {item.title} in {status.stage_name}"
                    body = (f"Work item {item.id} exceeded the {status.sla_hours:g}h SLA for stage "
                            f"{status.stage_name} by {overdue.total_seconds() / 3600:.1f}h.")
                else:
                    subject = f"SLA at risk: {item.title} in {status.stage_name}"
                    body = (f"Work item {item.id} has {status.remaining.total_seconds() / 3600:.1f}h "
                            f"left of the {status.sla_hours:g}h SLA for stage {status.stage_name}.")
                dispatcher.notify(
                    recipients, subject, body,
                    category="sla",
                    severity="error" if kind == "violated" else "warning",
                    entity_type="work_item",
                    entity_id=item.id,
                )
                db.session.commit()
                summary["escalations_created"] += 1
            except Exception:
                db.session.rollback()
                summary["failed"] += 1
                logger.exception("SLA escalation failed", extra={"work_item_id": status.work_item_id})

        logger.info("SLA escalation sweep: %s", summary, extra={"scope_id": scope_id})
        return summary
