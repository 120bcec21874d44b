"""
Actor directory lookups.

The engine never reads User rows directly; it resolves an actor id to an
immutable ``Actor`` (id, name, role) once per operation. Automatic
transitions run as the system identity, which has no user row and carries
the highest role.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from flask import current_app, has_app_context

from workintake.core.exceptions import NotFoundError
from workintake.models import db
from workintake.models.work_item import User, UserRole

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Actor:
    id: int | None
    name: str
    role: UserRole

    @property
    def is_system(self) -> bool:
        return self.id is None


def system_actor(name: str | None = None) -> Actor:
    """The actor-less identity used by sweeps."""
    if name is None:
        name = current_app.config.get("WORKFLOW_SYSTEM_ACTOR", "system") if has_app_context() else "system"
    return Actor(id=None, name=name, role=UserRole.SYSTEM_ADMINISTRATOR)


def resolve_actor(actor) -> Actor:
    """Resolve a user id (or pass an Actor through). Inactive users count as missing."""
    if isinstance(actor, Actor):
        return actor
    if isinstance(actor, User):
        user = actor
    else:
        user = db.session.get(User, actor) if actor is not None else None
    if user is None or not user.is_active:
        raise NotFoundError(resource="User", resource_id=actor if not isinstance(actor, User) else actor.id)
    return Actor(id=user.id, name=user.username, role=user.user_role)


def role_satisfies(actor: Actor, required_role) -> bool:
    """True when no role is required or the actor's role is at or above it."""
    if required_role in (None, ""):
        return True
    return actor.role >= UserRole.parse(required_role)


def users_at_or_above(role: UserRole) -> list[User]:
    """Active users whose role meets ``role``; unparseable role labels are skipped."""
    users = []
    for user in User.query.filter_by(is_active=True).order_by(User.id).all():
        try:
            if user.user_role >= role:
                users.append(user)
        except ValueError:
            logger.warning("User %s has unknown role %r; skipped", user.username, user.role)
            continue
    return users
