"""
Workflow configuration integrity report.

``validate_configuration(scope_id)`` inspects the effective stage set and the
transitions visible to a scope and returns a ConfigurationReport. It never
raises for configuration problems:

    errors    duplicate active orders within a scope
    warnings  transitions referencing unknown, soft-deleted or foreign-scope
              stages (also listed in ``orphans``); stages without an
              incoming transition (beyond the first order); non-terminal
              stages without an outgoing transition (below the last order);
              gaps in the order sequence; an empty stage set

``is_valid`` only reflects ``errors``. Callers that want a hard failure call
``report.raise_if_invalid()``, which also treats orphaned references as fatal.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field

from sqlalchemy import select

from workintake.core.exceptions import ConfigurationInvalid
from workintake.models import db
from workintake.models.workflow import StageDefinition, TransitionDefinition
from workintake.services.stage_registry import StageRegistry
from workintake.services.transition_registry import TransitionRegistry, applies_to_scope


@dataclass
class ConfigurationReport:
    scope_id: int | None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    orphans: list[str] = field(default_factory=list)
    stage_count: int = 0
    transition_count: int = 0

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def raise_if_invalid(self) -> None:
        fatal = self.errors + self.orphans
        if fatal:
            raise ConfigurationInvalid(self.scope_id, fatal)

    def to_dict(self) -> dict:
        return {
            "scope_id": self.scope_id,
            "is_valid": self.is_valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "orphans": list(self.orphans),
            "stage_count": self.stage_count,
            "transition_count": self.transition_count,
        }


def validate_configuration(scope_id: int | None = None) -> ConfigurationReport:
    report = ConfigurationReport(scope_id=scope_id)

    stages = StageRegistry.list_stages(scope_id)
    report.stage_count = len(stages)
    if not stages:
        report.warnings.append("No active stages configured")

    # Duplicate orders among the scope's own active rows
    own_stages = db.session.execute(
        select(StageDefinition).where(
            StageDefinition.is_active.is_(True),
            StageDefinition.scope_id.is_(None) if scope_id is None
            else StageDefinition.scope_id == scope_id,
        )
    ).scalars().all()
    for order, count in sorted(Counter(s.order for s in own_stages).items()):
        if count > 1:
            report.errors.append(f"Order {order} is used by {count} active stages")

    orders = [s.order for s in stages]
    for prev, nxt in zip(orders, orders[1:]):
        if nxt != prev + 1:
            report.warnings.append(f"Stage orders are not contiguous: gap between {prev} and {nxt}")

    # Orphan references
    transitions = db.session.execute(
        select(TransitionDefinition).where(
            TransitionDefinition.is_active.is_(True),
            applies_to_scope(TransitionDefinition.scope_id, scope_id),
        ).order_by(TransitionDefinition.id)
    ).scalars().all()
    report.transition_count = len(transitions)
    for t in transitions:
        for label, stage_id, stage in (("source", t.from_stage_id, t.from_stage),
                                       ("target", t.to_stage_id, t.to_stage)):
            if stage is None:
                problem = f"unknown {label} stage {stage_id}"
            elif not stage.is_active:
                problem = f"deleted {label} stage {stage.name!r}"
            elif stage.scope_id is not None and stage.scope_id != scope_id:
                problem = f"{label} stage {stage.name!r} of scope {stage.scope_id}"
            else:
                continue
            message = f"Transition {t.id} ({t.name}) references {problem}"
            report.orphans.append(message)
            report.warnings.append(message)

    # Reachability
    if stages:
        first_order, last_order = orders[0], orders[-1]
        for stage in stages:
            if stage.order > first_order and not TransitionRegistry.transitions_to(stage.id, scope_id):
                report.warnings.append(f"Stage {stage.name!r} (order {stage.order}) has no incoming transition")
            if (stage.order < last_order and not stage.is_terminal
                    and not TransitionRegistry.transitions_from(stage.id, scope_id)):
                report.warnings.append(f"Stage {stage.name!r} (order {stage.order}) has no outgoing transition")

    return report
