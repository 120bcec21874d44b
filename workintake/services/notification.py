"""
Work Intake Workflow Engine
Notification Service.

Default notification dispatcher for the workflow engine. Anything with a
``notify(recipients, subject, body, **context)`` method can replace it; this
one records in-app Notification rows. Delivery channels (email, chat, ...)
are outside the engine.

Template placeholders (``str.format`` style, unknown names are left as-is):
    {work_item_id} {title} {description} {priority} {priority_level}
    {status} {scope_id} {from_stage} {to_stage} {current_stage}
    {actor} {comment} {created_at}
"""

from workintake.models import db
from workintake.models.notification import Notification


class _SafeDict(dict):
    def __missing__(self, key):
        return "{" + key + "}"


def template_context(work_item, *, from_stage=None, to_stage=None, actor=None, comment="") -> dict:
    return {
        "work_item_id": work_item.id,
        "title": work_item.title or "",
        "description": work_item.description or "",
        "priority": work_item.priority,
        "priority_level": work_item.priority_level.label,
        "status": work_item.status,
        "scope_id": work_item.scope_id,
        "from_stage": from_stage or "",
        "to_stage": to_stage or "",
        "current_stage": to_stage or "",
        "actor": actor or "",
        "comment": comment or "",
        "created_at": work_item.created_at.isoformat() if work_item.created_at else "",
    }


def render_template(text: str, context: dict) -> str:
    """Substitute ``{placeholders}``; malformed braces leave the text unchanged."""
    if not text:
        return ""
    try:
        return text.format_map(_SafeDict(context))
    except (ValueError, IndexError):
        return text


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Dispatcher protocol ───────────────────────────────────────────────

    @staticmethod
    def notify(recipients, subject, body, *, category="workflow", severity="info",
               entity_type="work_item", entity_id=None):
        """
        Record one in-app notification per recipient (``all`` when none given).

        Returns:
            List of created Notification instances (committed).
        """
        return NotificationService.broadcast(
            title=subject,
            message=body,
            category=category,
            severity=severity,
            entity_type=entity_type,
            entity_id=entity_id,
            recipients=list(recipients or []),
        )

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def broadcast(*, title, message="", category="workflow", severity="info",
                  entity_type="", entity_id=None, recipients=None):
        """
        Send a notification to multiple recipients (or 'all' if none given).

        Returns:
            List of created Notification instances.
        """
        targets = recipients or ["all"]
        notifications = []
        for r in targets:
            notif = Notification(
                recipient=r,
                title=title[:300],
                message=message,
                category=category,
                severity=severity,
                entity_type=entity_type,
                entity_id=entity_id,
            )
            db.session.add(notif)
            notifications.append(notif)
        db.session.commit()
        return notifications

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_recipient(recipient="all", unread_only=False, limit=50, offset=0):
        """
        Retrieve notifications for a recipient, newest first.
        """
        q = Notification.query.filter(
            (Notification.recipient == recipient) | (Notification.recipient == "all")
        )
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = q.order_by(Notification.created_at.desc()).offset(offset).limit(limit).all()
        return items, total

