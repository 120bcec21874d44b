"""
Soft Delete Mixin for workflow configuration.

Stage and transition definitions are never physically removed: audit
entries keep referring to them and historical replay must still resolve
their names. Deleting flips ``is_active`` off and stamps ``deleted_at``.

Usage:
    class StageDefinition(SoftDeleteMixin, db.Model):
        ...

    stage.soft_delete()
    db.session.commit()

    StageDefinition.query_active().all()   # excludes deleted rows
    StageDefinition.query.all()            # includes deleted rows
"""

from datetime import datetime, timezone

from workintake.models import db


class SoftDeleteMixin:
    """Mixin that adds soft delete support to any SQLAlchemy model."""

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, default=None)

    def soft_delete(self):
        """Mark this record as deleted."""
        self.is_active = False
        self.deleted_at = datetime.now(timezone.utc)

    def restore(self):
        """Restore a soft-deleted record."""
        self.is_active = True
        self.deleted_at = None

    @property
    def is_deleted(self):
        return not self.is_active

    @classmethod
    def query_active(cls):
        """Return a query that excludes soft-deleted records."""
        return cls.query.filter(cls.is_active.is_(True))

    @classmethod
    def query_deleted(cls):
        """Return only soft-deleted records."""
        return cls.query.filter(cls.is_active.is_(False))
