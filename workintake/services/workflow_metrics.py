"""
Workflow metrics and bottleneck analysis.

All figures are derived from work item rows plus the ``stage_changed``
audit entries; nothing here is persisted.

    get_workflow_metrics         totals, completion, stage distribution, SLA compliance
    identify_bottlenecks         per-stage backlog and wait, flagged against thresholds
    get_average_completion_time  mean hours spent in one stage
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func, select

from workintake.models import db
from workintake.models.audit import AuditEntry
from workintake.models.work_item import WorkItem
from workintake.models.workflow import StageDefinition
from workintake.services.sla import SLAState, SLATracker
from workintake.services.stage_registry import StageRegistry
from workintake.utils.helpers import as_utc, hours_between, utcnow

logger = logging.getLogger(__name__)

BOTTLENECK_APPROVAL = "Approval"
BOTTLENECK_RESOURCE = "Resource"
BOTTLENECK_SYSTEM = "System"

_RECOMMENDATIONS = {
    BOTTLENECK_APPROVAL: "Add approvers for this stage or delegate approval authority",
    BOTTLENECK_RESOURCE: "Rebalance capacity: {pending} items are waiting in this stage",
    BOTTLENECK_SYSTEM: "Review transition rules and automation; items wait {hours:.1f}h on average",
}


def _items(scope_id: int | None, from_date: datetime | None = None,
           to_date: datetime | None = None) -> list[WorkItem]:
    stmt = select(WorkItem).order_by(WorkItem.id)
    if scope_id is not None:
        stmt = stmt.where(WorkItem.scope_id == scope_id)
    if from_date is not None:
        stmt = stmt.where(WorkItem.created_at >= from_date)
    if to_date is not None:
        stmt = stmt.where(WorkItem.created_at <= to_date)
    return list(db.session.execute(stmt).scalars().all())


def _average_hours_in_stage(stage_order: int, work_item_ids: list[int] | None = None,
                            scope_id: int | None = None) -> float:
    stmt = select(func.avg(AuditEntry.time_in_previous_stage_hours)).where(
        AuditEntry.action == "stage_changed",
        AuditEntry.from_stage_order == stage_order,
    )
    if work_item_ids is not None:
        if not work_item_ids:
            return 0.0
        stmt = stmt.where(AuditEntry.work_item_id.in_(work_item_ids))
    elif scope_id is not None:
        stmt = stmt.where(AuditEntry.work_item_id.in_(
            select(WorkItem.id).where(WorkItem.scope_id == scope_id)
        ))
    return round(db.session.execute(stmt).scalar() or 0.0, 2)


def get_workflow_metrics(from_date: datetime, to_date: datetime, scope_id: int | None = None,
                         *, sla_tracker: SLATracker, now: datetime | None = None) -> dict:
    """
    Aggregate metrics for work items created within [from_date, to_date].

    A work item counts as completed once it sits in a terminal stage; its
    completion time runs from creation to its entry into that stage.
    SLA compliance covers open items whose current stage defines an SLA.
    """
    now = as_utc(now) if now else utcnow()
    items = _items(scope_id, from_date, to_date)

    completed = 0
    completion_days = []
    distribution: dict[str, int] = {}
    stages_seen: dict[int, str] = {}
    measured = violated = 0

    for item in items:
        stage = StageRegistry.get_stage_by_order(item.current_stage, item.scope_id)
        name = stage.name if stage is not None else f"order {item.current_stage}"
        distribution[name] = distribution.get(name, 0) + 1
        if stage is None:
            continue
        stages_seen.setdefault(stage.order, stage.name)

        if StageRegistry.is_terminal_stage(stage, item.scope_id):
            completed += 1
            completion_days.append(hours_between(item.created_at, item.last_stage_entry_at) / 24.0)
            continue

        status = sla_tracker.compute(stage, item.last_stage_entry_at, now,
                                     scope_id=item.scope_id, work_item_id=item.id)
        if status.status is SLAState.NO_SLA:
            continue
        measured += 1
        if status.is_violated:
            violated += 1

    item_ids = [i.id for i in items]
    for stage in StageRegistry.list_stages(scope_id):
        stages_seen.setdefault(stage.order, stage.name)
    average_stage_time = {
        name: _average_hours_in_stage(order, item_ids)
        for order, name in sorted(stages_seen.items())
    }

    return {
        "total_work_items": len(items),
        "completed_work_items": completed,
        "average_completion_days": (
            round(sum(completion_days) / len(completion_days), 2) if completion_days else 0.0
        ),
        "stage_distribution": distribution,
        "average_stage_time_hours": average_stage_time,
        "sla_violations": violated,
        "sla_compliance_rate": (
            round((measured - violated) / measured * 100, 1) if measured else 100.0
        ),
        "from_date": as_utc(from_date).isoformat() if from_date else None,
        "to_date": as_utc(to_date).isoformat() if to_date else None,
        "scope_id": scope_id,
    }


def identify_bottlenecks(scope_id: int | None = None, *, wait_hours: float = 72.0,
                         pending_count: int = 10, now: datetime | None = None) -> list[dict]:
    """
    Stages whose open backlog waits too long or grows too large.

    Type:
        Approval  the stage requires approval
        Resource  backlog at or above ``pending_count``
        System    long waits without a large backlog
    Sorted by average wait, longest first.
    """
    now = as_utc(now) if now else utcnow()
    waits: dict[int, list[float]] = {}
    stages: dict[int, StageDefinition] = {}
    for item in _items(scope_id):
        stage = StageRegistry.get_stage_by_order(item.current_stage, item.scope_id)
        if stage is None or StageRegistry.is_terminal_stage(stage, item.scope_id):
            continue
        stages.setdefault(stage.id, stage)
        waits.setdefault(stage.id, []).append(hours_between(item.last_stage_entry_at, now))

    findings = []
    for stage_id, hours in waits.items():
        stage = stages[stage_id]
        pending = len(hours)
        average = sum(hours) / pending
        if average <= wait_hours and pending < pending_count:
            continue
        if stage.approval_required:
            kind = BOTTLENECK_APPROVAL
        elif pending >= pending_count:
            kind = BOTTLENECK_RESOURCE
        else:
            kind = BOTTLENECK_SYSTEM
        findings.append({
            "stage": stage.name,
            "stage_order": stage.order,
            "pending_count": pending,
            "average_wait_hours": round(average, 2),
            "bottleneck_type": kind,
            "recommendation": _RECOMMENDATIONS[kind].format(pending=pending, hours=average),
        })

    findings.sort(key=lambda f: f["average_wait_hours"], reverse=True)
    if findings:
        logger.info("Identified %d bottleneck stage(s)", len(findings), extra={"scope_id": scope_id})
    return findings


def get_average_completion_time(stage: StageDefinition, scope_id: int | None = None) -> float:
    """Mean hours work items spent in ``stage`` before leaving it (0.0 if none left)."""
    return _average_hours_in_stage(stage.order, scope_id=scope_id)
