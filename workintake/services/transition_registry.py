"""
Transition Registry — directed, rule-gated edges between stages.

Every write path parses the condition script and validation rules before
storing them, so a malformed rule is rejected at configuration time instead
of surfacing during an advance. Soft-deleted transitions are invisible to
every lookup.

Lookup fallback: a transition configured for the work item's scope wins over
a global (``scope_id IS NULL``) transition between the same stages.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func, select

from workintake.core.exceptions import ConflictError, NotFoundError, ValidationError
from workintake.models import db
from workintake.models.audit import AuditEntry
from workintake.models.work_item import UserRole
from workintake.models.workflow import TransitionDefinition
from workintake.services.conditions import parse_condition_script
from workintake.services.directory import Actor, role_satisfies
from workintake.services.stage_registry import StageRegistry
from workintake.services.validation import parse_validation_rules

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = {
    "name", "required_role", "condition_script", "validation_rules",
    "auto_transition_delay_minutes", "notification_required", "notification_template",
}


# ── Field normalisation (raise ValidationError on bad input) ───────────────

def _clean_required_role(value):
    if value in (None, ""):
        return None
    try:
        return UserRole.parse(value).label
    except ValueError:
        raise ValidationError(f"Unknown role: {value!r}", details={"required_role": str(value)}) from None


def _clean_condition_script(value):
    parsed = parse_condition_script(value)
    return parsed.to_dict() if parsed is not None else None


def _clean_validation_rules(value):
    parsed = parse_validation_rules(value)
    return parsed.to_dict() if parsed is not None else None


def _clean_delay(value):
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("auto_transition_delay_minutes must be an integer",
                              details={"auto_transition_delay_minutes": str(value)})
    if value < 1:
        raise ValidationError("auto_transition_delay_minutes must be at least 1",
                              details={"auto_transition_delay_minutes": str(value)})
    return value


def _clean_template(value):
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValidationError("notification_template must be an object with subject/body")
    return {
        "subject": str(value.get("subject", "") or ""),
        "body": str(value.get("body", "") or ""),
        "recipients": [str(r) for r in (value.get("recipients") or [])],
    }


_CLEANERS = {
    "required_role": _clean_required_role,
    "condition_script": _clean_condition_script,
    "validation_rules": _clean_validation_rules,
    "auto_transition_delay_minutes": _clean_delay,
    "notification_template": _clean_template,
}


def applies_to_scope(column, scope_id):
    """Rows that apply to ``scope_id``: the scope's own plus global ones."""
    if scope_id is None:
        return column.is_(None)
    return (column == scope_id) | column.is_(None)


def _prefer_scoped(transitions, key):
    """Collapse ``transitions`` by ``key``, keeping the scoped row over the global one."""
    chosen: dict = {}
    for t in transitions:
        k = key(t)
        current = chosen.get(k)
        if current is None or (current.scope_id is None and t.scope_id is not None):
            chosen[k] = t
    return list(chosen.values())


class TransitionRegistry:
    """Stateless service class for transition definitions."""

    # ── Create / Update / Delete ──────────────────────────────────────────

    @staticmethod
    def create_transition(*, from_stage_id, to_stage_id, scope_id=None, name="",
                          required_role=None, condition_script=None, validation_rules=None,
                          auto_transition_delay_minutes=None, notification_required=False,
                          notification_template=None) -> TransitionDefinition:
        """
        Create a transition definition.

        Raises:
            ValidationError: same source/target, scope mismatch or malformed rules.
            NotFoundError: source or target stage missing or soft-deleted.
            ConflictError: an active transition already links the stages in this scope.
        """
        if from_stage_id == to_stage_id:
            raise ValidationError("A transition cannot start and end at the same stage",
                                  details={"to_stage_id": "must differ from from_stage_id"})
        from_stage = StageRegistry.get_stage(from_stage_id)
        to_stage = StageRegistry.get_stage(to_stage_id)
        for stage in (from_stage, to_stage):
            if stage.scope_id is not None and stage.scope_id != scope_id:
                raise ValidationError(
                    f"Stage {stage.name!r} belongs to scope {stage.scope_id}",
                    details={"scope_id": "transition scope must match scoped stages"},
                )
        TransitionRegistry._ensure_unique(from_stage_id, to_stage_id, scope_id)

        transition = TransitionDefinition(
            name=(name or "").strip() or f"{from_stage.name} -> {to_stage.name}",
            from_stage_id=from_stage_id,
            to_stage_id=to_stage_id,
            scope_id=scope_id,
            required_role=_clean_required_role(required_role),
            condition_script=_clean_condition_script(condition_script),
            validation_rules=_clean_validation_rules(validation_rules),
            auto_transition_delay_minutes=_clean_delay(auto_transition_delay_minutes),
            notification_required=bool(notification_required),
            notification_template=_clean_template(notification_template),
        )
        db.session.add(transition)
        db.session.commit()
        logger.info("Transition created: %s", transition.name,
                    extra={"transition_id": transition.id, "scope_id": scope_id})
        return transition

    @staticmethod
    def update_transition(transition_id: int, **changes) -> TransitionDefinition:
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update transition field(s): {', '.join(sorted(unknown))}")
        transition = TransitionRegistry.get_transition_by_id(transition_id)
        cleaned = {k: _CLEANERS.get(k, lambda v: v)(v) for k, v in changes.items()}
        for key, value in cleaned.items():
            setattr(transition, key, value)
        db.session.commit()
        return transition

    @staticmethod
    def set_condition_script(transition_id: int, script) -> TransitionDefinition:
        return TransitionRegistry.update_transition(transition_id, condition_script=script)

    @staticmethod
    def set_validation_rules(transition_id: int, rules) -> TransitionDefinition:
        return TransitionRegistry.update_transition(transition_id, validation_rules=rules)

    @staticmethod
    def set_auto_transition(transition_id: int, delay_minutes: int | None) -> TransitionDefinition:
        """Enable (delay >= 1 minute) or disable (None) automatic firing."""
        return TransitionRegistry.update_transition(
            transition_id, auto_transition_delay_minutes=delay_minutes,
        )

    @staticmethod
    def set_notification_template(transition_id: int, template: dict | None) -> TransitionDefinition:
        return TransitionRegistry.update_transition(
            transition_id, notification_template=template,
            notification_required=template is not None,
        )

    @staticmethod
    def delete_transition(transition_id: int) -> TransitionDefinition:
        """Soft-delete. Audit entries that reference the transition are left untouched."""
        transition = TransitionRegistry.get_transition_by_id(transition_id)
        transition.soft_delete()
        db.session.commit()
        logger.info("Transition soft-deleted: %s", transition.name,
                    extra={"transition_id": transition.id, "scope_id": transition.scope_id})
        return transition

    @staticmethod
    def _ensure_unique(from_stage_id: int, to_stage_id: int, scope_id: int | None) -> None:
        existing = db.session.execute(
            select(TransitionDefinition).where(
                TransitionDefinition.is_active.is_(True),
                TransitionDefinition.from_stage_id == from_stage_id,
                TransitionDefinition.to_stage_id == to_stage_id,
                TransitionDefinition.scope_id.is_(None) if scope_id is None
                else TransitionDefinition.scope_id == scope_id,
            )
        ).scalars().first()
        if existing is not None:
            raise ConflictError("TransitionDefinition", "from_stage_id,to_stage_id,scope_id",
                                f"{from_stage_id},{to_stage_id},{scope_id}")

    # ── Lookups ───────────────────────────────────────────────────────────

    @staticmethod
    def get_transition_by_id(transition_id: int, include_inactive: bool = False) -> TransitionDefinition:
        transition = db.session.get(TransitionDefinition, transition_id)
        if transition is None or (not transition.is_active and not include_inactive):
            raise NotFoundError(resource="TransitionDefinition", resource_id=transition_id)
        return transition

    @staticmethod
    def get_transition(from_stage_id: int, to_stage_id: int,
                       scope_id: int | None = None) -> TransitionDefinition | None:
        """Active transition for the edge, scoped first then global. None if unconfigured."""
        rows = db.session.execute(
            select(TransitionDefinition).where(
                TransitionDefinition.is_active.is_(True),
                TransitionDefinition.from_stage_id == from_stage_id,
                TransitionDefinition.to_stage_id == to_stage_id,
                applies_to_scope(TransitionDefinition.scope_id, scope_id),
            ).order_by(TransitionDefinition.id)
        ).scalars().all()
        chosen = _prefer_scoped(rows, key=lambda t: (t.from_stage_id, t.to_stage_id))
        transition = chosen[0] if chosen else None
        if transition is not None and not transition.to_stage.is_active:
            return None
        return transition

    @staticmethod
    def transitions_from(stage_id: int, scope_id: int | None = None) -> list[TransitionDefinition]:
        """Active outgoing transitions whose target is active, ordered by target order."""
        rows = db.session.execute(
            select(TransitionDefinition).where(
                TransitionDefinition.is_active.is_(True),
                TransitionDefinition.from_stage_id == stage_id,
                applies_to_scope(TransitionDefinition.scope_id, scope_id),
            ).order_by(TransitionDefinition.id)
        ).scalars().all()
        rows = [t for t in rows if t.to_stage.is_active]
        chosen = _prefer_scoped(rows, key=lambda t: t.to_stage_id)
        return sorted(chosen, key=lambda t: (t.to_stage.order, t.id))

    @staticmethod
    def transitions_to(stage_id: int, scope_id: int | None = None) -> list[TransitionDefinition]:
        """Active incoming transitions whose source is active, ordered by source order."""
        rows = db.session.execute(
            select(TransitionDefinition).where(
                TransitionDefinition.is_active.is_(True),
                TransitionDefinition.to_stage_id == stage_id,
                applies_to_scope(TransitionDefinition.scope_id, scope_id),
            ).order_by(TransitionDefinition.id)
        ).scalars().all()
        rows = [t for t in rows if t.from_stage.is_active]
        chosen = _prefer_scoped(rows, key=lambda t: t.from_stage_id)
        return sorted(chosen, key=lambda t: (t.from_stage.order, t.id))

    @staticmethod
    def list_transitions(scope_id: int | None = None,
                         include_inactive: bool = False) -> list[TransitionDefinition]:
        """Transitions defined for exactly ``scope_id`` (global when None)."""
        stmt = select(TransitionDefinition).where(
            TransitionDefinition.scope_id.is_(None) if scope_id is None
            else TransitionDefinition.scope_id == scope_id,
        ).order_by(TransitionDefinition.id)
        if not include_inactive:
            stmt = stmt.where(TransitionDefinition.is_active.is_(True))
        return list(db.session.execute(stmt).scalars().all())

    @staticmethod
    def auto_transitions(scope_id: int | None = None) -> list[TransitionDefinition]:
        """Active automatic transitions; every scope when ``scope_id`` is None,
        otherwise the global ones plus those of ``scope_id``."""
        stmt = select(TransitionDefinition).where(
            TransitionDefinition.is_active.is_(True),
            TransitionDefinition.auto_transition_delay_minutes.is_not(None),
        ).order_by(TransitionDefinition.id)
        if scope_id is not None:
            stmt = stmt.where(applies_to_scope(TransitionDefinition.scope_id, scope_id))
        return list(db.session.execute(stmt).scalars().all())

    # ── Access ────────────────────────────────────────────────────────────

    @staticmethod
    def can_user_execute_transition(transition: TransitionDefinition, actor: Actor) -> bool:
        return role_satisfies(actor, transition.required_role)

    # ── Metrics ───────────────────────────────────────────────────────────

    @staticmethod
    def get_transition_metrics(transition_id: int, from_date: datetime | None = None,
                               to_date: datetime | None = None) -> dict:
        """Execution count and mean time spent in the source stage, from audit metadata."""
        transition = TransitionRegistry.get_transition_by_id(transition_id, include_inactive=True)
        stmt = select(
            func.count(AuditEntry.id),
            func.avg(AuditEntry.time_in_previous_stage_hours),
        ).where(
            AuditEntry.transition_id == transition_id,
            AuditEntry.action == "stage_changed",
        )
        if from_date is not None:
            stmt = stmt.where(AuditEntry.timestamp >= from_date)
        if to_date is not None:
            stmt = stmt.where(AuditEntry.timestamp <= to_date)
        count, avg_hours = db.session.execute(stmt).one()
        return {
            "transition_id": transition.id,
            "transition_name": transition.name,
            "execution_count": count or 0,
            "average_time_in_previous_stage_hours": round(avg_hours or 0.0, 2),
            "from_date": from_date.isoformat() if from_date else None,
            "to_date": to_date.isoformat() if to_date else None,
        }

