"""
Stage Registry — ordered stage definitions per scope.

A scope's *effective* stage set is the global stage set with every order
that the scope redefines replaced by the scope's own stage. Lookups by order
fall back from the scope to the global configuration.

Usage:
    from workintake.services.stage_registry import StageRegistry

    draft = StageRegistry.create_stage(name="Draft", order=0)
    StageRegistry.get_stage_by_order(0, scope_id=7)   # scoped override or global Draft
"""

from __future__ import annotations

import logging

from sqlalchemy import select

from workintake.core.exceptions import ConflictError, NotFoundError, ValidationError
from workintake.models import db
from workintake.models.work_item import UserRole
from workintake.models.workflow import StageDefinition
from workintake.services.directory import Actor

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = {
    "name", "order", "description", "approval_required", "sla_hours",
    "required_roles", "notification_template", "is_terminal",
}


def _validate_stage_fields(*, name, order, sla_hours, required_roles) -> dict:
    errors = {}
    if not (name or "").strip():
        errors["name"] = "Stage name is required"
    if order is None or not isinstance(order, int) or isinstance(order, bool) or order < 0:
        errors["order"] = "Stage order must be a non-negative integer"
    if sla_hours is not None:
        try:
            if float(sla_hours) <= 0:
                errors["sla_hours"] = "SLA hours must be positive"
        except (TypeError, ValueError):
            errors["sla_hours"] = "SLA hours must be a number"
    for role in required_roles or []:
        try:
            UserRole.parse(role)
        except ValueError:
            errors["required_roles"] = f"Unknown role: {role!r}"
    return errors


def _normalise_roles(required_roles) -> list[str]:
    return [UserRole.parse(r).label for r in (required_roles or [])]


class StageRegistry:
    """Stateless service class for stage definitions."""

    # ── Create / Update / Delete ──────────────────────────────────────────

    @staticmethod
    def create_stage(*, name, order, scope_id=None, description="", approval_required=False,
                     sla_hours=None, required_roles=None, is_terminal=False,
                     notification_template=None) -> StageDefinition:
        """
        Create a stage definition.

        Raises:
            ValidationError: name/order/sla/roles invalid.
            ConflictError: an active stage already holds ``order`` in this scope.
        """
        errors = _validate_stage_fields(name=name, order=order, sla_hours=sla_hours,
                                        required_roles=required_roles)
        if errors:
            raise ValidationError("Invalid stage definition", details=errors)
        StageRegistry._ensure_order_free(order, scope_id)

        stage = StageDefinition(
            name=name.strip(),
            order=order,
            scope_id=scope_id,
            description=description or "",
            approval_required=bool(approval_required),
            sla_hours=float(sla_hours) if sla_hours is not None else None,
            required_roles=_normalise_roles(required_roles),
            is_terminal=bool(is_terminal),
            notification_template=notification_template,
        )
        db.session.add(stage)
        db.session.commit()
        logger.info("Stage created: %s (order=%d)", stage.name, stage.order,
                    extra={"scope_id": scope_id})
        return stage

    @staticmethod
    def update_stage(stage_id: int, **changes) -> StageDefinition:
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update stage field(s): {', '.join(sorted(unknown))}")

        stage = StageRegistry.get_stage(stage_id)
        merged = {
            "name": changes.get("name", stage.name),
            "order": changes.get("order", stage.order),
            "sla_hours": changes.get("sla_hours", stage.sla_hours),
            "required_roles": changes.get("required_roles", stage.required_roles),
        }
        errors = _validate_stage_fields(**merged)
        if errors:
            raise ValidationError("Invalid stage definition", details=errors)
        if merged["order"] != stage.order:
            StageRegistry._ensure_order_free(merged["order"], stage.scope_id, exclude_id=stage.id)

        for key, value in changes.items():
            if key == "required_roles":
                value = _normalise_roles(value)
            elif key == "sla_hours" and value is not None:
                value = float(value)
            elif key == "name":
                value = value.strip()
            setattr(stage, key, value)
        db.session.commit()
        return stage

    @staticmethod
    def set_sla(stage_id: int, sla_hours: float | None) -> StageDefinition:
        return StageRegistry.update_stage(stage_id, sla_hours=sla_hours)

    @staticmethod
    def delete_stage(stage_id: int) -> StageDefinition:
        """Soft-delete; transitions that still reference it become orphans in the config report."""
        stage = StageRegistry.get_stage(stage_id)
        stage.soft_delete()
        db.session.commit()
        logger.info("Stage soft-deleted: %s (order=%d)", stage.name, stage.order,
                    extra={"scope_id": stage.scope_id})
        return stage

    @staticmethod
    def _ensure_order_free(order: int, scope_id: int | None, exclude_id: int | None = None) -> None:
        stmt = select(StageDefinition).where(
            StageDefinition.is_active.is_(True),
            StageDefinition.order == order,
            StageDefinition.scope_id.is_(None) if scope_id is None else StageDefinition.scope_id == scope_id,
        )
        if exclude_id is not None:
            stmt = stmt.where(StageDefinition.id != exclude_id)
        if db.session.execute(stmt).scalars().first() is not None:
            raise ConflictError("StageDefinition", "order", f"{order} (scope={scope_id})")

    # ── Lookups ───────────────────────────────────────────────────────────

    @staticmethod
    def get_stage(stage_id: int, include_inactive: bool = False) -> StageDefinition:
        stage = db.session.get(StageDefinition, stage_id)
        if stage is None or (not stage.is_active and not include_inactive):
            raise NotFoundError(resource="StageDefinition", resource_id=stage_id)
        return stage

    @staticmethod
    def get_stage_by_order(order: int, scope_id: int | None = None) -> StageDefinition | None:
        """Active stage at ``order`` for the scope, falling back to the global stage."""
        if scope_id is not None:
            scoped = db.session.execute(
                select(StageDefinition).where(
                    StageDefinition.is_active.is_(True),
                    StageDefinition.order == order,
                    StageDefinition.scope_id == scope_id,
                ).order_by(StageDefinition.id)
            ).scalars().first()
            if scoped is not None:
                return scoped
        return db.session.execute(
            select(StageDefinition).where(
                StageDefinition.is_active.is_(True),
                StageDefinition.order == order,
                StageDefinition.scope_id.is_(None),
            ).order_by(StageDefinition.id)
        ).scalars().first()

    @staticmethod
    def is_effective(stage: StageDefinition | None, scope_id: int | None = None) -> bool:
        """``stage`` is the one an item of ``scope_id`` resolves to at its order.

        False for soft-deleted stages and for global stages shadowed by a
        scope stage at the same order.
        """
        if stage is None or not stage.is_active:
            return False
        resolved = StageRegistry.get_stage_by_order(stage.order, scope_id)
        return resolved is not None and resolved.id == stage.id

    @staticmethod
    def get_stage_by_name(name: str, scope_id: int | None = None) -> StageDefinition | None:
        wanted = (name or "").strip().lower()
        for stage in StageRegistry.list_stages(scope_id):
            if stage.name.lower() == wanted:
                return stage
        return None

    @staticmethod
    def list_stages(scope_id: int | None = None) -> list[StageDefinition]:
        """Effective stage set for the scope, ordered by ``order``."""
        global_stages = db.session.execute(
            select(StageDefinition).where(
                StageDefinition.is_active.is_(True),
                StageDefinition.scope_id.is_(None),
            ).order_by(StageDefinition.order, StageDefinition.id)
        ).scalars().all()
        by_order: dict[int, StageDefinition] = {}
        for stage in global_stages:
            by_order.setdefault(stage.order, stage)

        if scope_id is not None:
            scoped = db.session.execute(
                select(StageDefinition).where(
                    StageDefinition.is_active.is_(True),
                    StageDefinition.scope_id == scope_id,
                ).order_by(StageDefinition.order, StageDefinition.id)
            ).scalars().all()
            overridden = set()
            for stage in scoped:
                if stage.order not in overridden:
                    by_order[stage.order] = stage
                    overridden.add(stage.order)

        return [by_order[o] for o in sorted(by_order)]

    @staticmethod
    def stages_with_sla(scope_id: int | None = None) -> list[StageDefinition]:
        return [s for s in StageRegistry.list_stages(scope_id) if s.sla_hours]

    @staticmethod
    def first_stage(scope_id: int | None = None) -> StageDefinition | None:
        stages = StageRegistry.list_stages(scope_id)
        return stages[0] if stages else None

    @staticmethod
    def last_order(scope_id: int | None = None) -> int | None:
        stages = StageRegistry.list_stages(scope_id)
        return stages[-1].order if stages else None

    @staticmethod
    def is_terminal_stage(stage: StageDefinition, scope_id: int | None = None) -> bool:
        """Terminal = explicitly flagged, or the highest order of the effective set."""
        if stage.is_terminal:
            return True
        last = StageRegistry.last_order(scope_id if scope_id is not None else stage.scope_id)
        return last is not None and stage.order >= last

    # ── Access ────────────────────────────────────────────────────────────

    @staticmethod
    def approver_floor(stage: StageDefinition) -> UserRole | None:
        """Lowest role listed in ``required_roles``; None when the stage lists none."""
        roles = [UserRole.parse(r) for r in (stage.required_roles or [])]
        return min(roles) if roles else None

    @staticmethod
    def can_user_access_stage(stage: StageDefinition, actor: Actor) -> bool:
        floor = StageRegistry.approver_floor(stage)
        return floor is None or actor.role >= floor
