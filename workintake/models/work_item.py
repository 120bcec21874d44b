"""
Work Intake Workflow Engine
Work item domain model.

Models:
    - User: actor directory entry (role resolution by actor id)
    - WorkItem: the business request moving through workflow stages

Enums:
    - UserRole: ordered role ladder used for every role floor check
    - PriorityLevel: bucketed view of the 0..1 priority score
"""

import enum
import re
from datetime import datetime, timezone

from workintake.models import db


# ── Enums ────────────────────────────────────────────────────────────────────


def _normalise(value) -> str:
    return re.sub(r"[^a-z0-9]", "", str(value).lower())


class UserRole(enum.IntEnum):
    """Role ladder; a higher value satisfies every lower floor."""

    END_USER = 1
    LEAD = 2
    DEPARTMENT_MANAGER = 3
    DEPARTMENT_HEAD = 4
    BUSINESS_EXECUTIVE = 5
    SYSTEM_ADMINISTRATOR = 6

    @property
    def label(self) -> str:
        return "".join(part.capitalize() for part in self.name.split("_"))

    @classmethod
    def parse(cls, value) -> "UserRole":
        """Accept a member, its number, or a name in any casing/separator style.

        ``"DepartmentManager"``, ``"department_manager"``, ``"Manager"`` and
        ``3`` all resolve to DEPARTMENT_MANAGER. Raises ValueError otherwise.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            return cls(value)
        key = _normalise(value)
        if key.isdigit():
            return cls(int(key))
        role = _ROLE_ALIASES.get(key)
        if role is None:
            raise ValueError(f"Unknown role: {value!r}")
        return role


_ROLE_ALIASES = {_normalise(r.name): r for r in UserRole}
_ROLE_ALIASES.update({
    "user": UserRole.END_USER,
    "requester": UserRole.END_USER,
    "teamlead": UserRole.LEAD,
    "manager": UserRole.DEPARTMENT_MANAGER,
    "head": UserRole.DEPARTMENT_HEAD,
    "executive": UserRole.BUSINESS_EXECUTIVE,
    "admin": UserRole.SYSTEM_ADMINISTRATOR,
    "administrator": UserRole.SYSTEM_ADMINISTRATOR,
})


class PriorityLevel(enum.IntEnum):
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    @property
    def label(self) -> str:
        return self.name.capitalize()

    @classmethod
    def from_score(cls, score: float | None) -> "PriorityLevel":
        """Bucket a 0..1 score: <0.4 Low, <0.6 Medium, <0.8 High, else Critical."""
        score = score or 0.0
        if score < 0.4:
            return cls.LOW
        if score < 0.6:
            return cls.MEDIUM
        if score < 0.8:
            return cls.HIGH
        return cls.CRITICAL

    @classmethod
    def parse(cls, value) -> "PriorityLevel":
        if isinstance(value, cls):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            return cls(value)
        key = _normalise(value)
        if key.isdigit():
            return cls(int(key))
        try:
            return cls[key.upper()]
        except KeyError:
            raise ValueError(f"Unknown priority level: {value!r}") from None


WORK_ITEM_STATUSES = {
    "draft", "submitted", "under_review", "approved", "in_progress",
    "testing", "deployed", "closed", "rejected", "on_hold",
}


# ── Models ───────────────────────────────────────────────────────────────────


class User(db.Model):
    """Actor directory entry; ``role`` stores a UserRole label."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(150), unique=True, nullable=False)
    display_name = db.Column(db.String(200), default="")
    email = db.Column(db.String(255), nullable=True)
    role = db.Column(db.String(40), nullable=False, default=UserRole.END_USER.label,
                     comment="EndUser | Lead | DepartmentManager | DepartmentHead | ...")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    @property
    def user_role(self) -> UserRole:
        return UserRole.parse(self.role)

    def to_dict(self):
        return {
            "id": self.id,
            "username": self.username,
            "display_name": self.display_name,
            "email": self.email,
            "role": self.role,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<User {self.username} [{self.role}]>"


class WorkItem(db.Model):
    """
    A business request tracked through the workflow.

    ``current_stage`` holds the *order* of the stage the item occupies within
    its scope's effective stage set. Only the workflow engine writes
    ``current_stage``, ``last_stage_entry_at`` and ``version``.
    """

    __tablename__ = "work_items"
    __table_args__ = (
        db.Index("idx_work_item_scope_stage", "scope_id", "current_stage"),
    )

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(300), nullable=False, default="")
    description = db.Column(db.Text, default="")
    scope_id = db.Column(db.Integer, nullable=True, index=True,
                         comment="Business vertical partition; NULL = global workflow")
    submitter_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )

    current_stage = db.Column(db.Integer, nullable=False, default=0,
                              comment="Order of the occupied stage")
    status = db.Column(db.String(30), nullable=False, default="draft")
    priority = db.Column(db.Float, nullable=False, default=0.5,
                         comment="0..1 score; level is derived")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False,
                           default=lambda: datetime.now(timezone.utc))
    last_stage_entry_at = db.Column(db.DateTime(timezone=True), nullable=False,
                                    default=lambda: datetime.now(timezone.utc))
    version = db.Column(db.Integer, nullable=False, default=1,
                        comment="Bumped on every committed stage change")

    submitter = db.relationship("User", lazy="joined")

    @property
    def priority_level(self) -> PriorityLevel:
        return PriorityLevel.from_score(self.priority)

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "scope_id": self.scope_id,
            "submitter_id": self.submitter_id,
            "current_stage": self.current_stage,
            "status": self.status,
            "priority": self.priority,
            "priority_level": self.priority_level.label,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "last_stage_entry_at": (
                self.last_stage_entry_at.isoformat() if self.last_stage_entry_at else None
            ),
            "version": self.version,
        }

    def __repr__(self):
        return f"<WorkItem {self.id}: {self.title[:40]} [stage={self.current_stage}]>"
