"""
Shared pytest fixtures for the work intake workflow engine test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - now: fixed reference instant passed to the engine
    - dispatcher: Recording notification dispatcher
    - recording_dispatcher_cls: the dispatcher class (for failing variants)
    - engine: WorkflowEngine wired to the recording dispatcher
    - basic_workflow: Draft(0) → Review(1) → Approved(2) → Closed(3)
    - make_user / make_item: ORM factories
"""

from datetime import datetime, timedelta, timezone

import pytest

from workintake import create_app
from workintake.models import db as _db
from workintake.models.work_item import User, WorkItem
from workintake.services.sla import SLATracker
from workintake.services.stage_registry import StageRegistry
from workintake.services.transition_registry import TransitionRegistry
from workintake.services.workflow_engine import WorkflowEngine

# Fixed reference instant; tests pass it explicitly as ``now``
NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class RecordingDispatcher:
    """Collects notify() calls instead of writing Notification rows."""

    def __init__(self, fail=False):
        self.calls = []
        self.fail = fail

    def notify(self, recipients, subject, body, **context):
        if self.fail:
            raise RuntimeError("mail relay down")
        self.calls.append({"recipients": list(recipients), "subject": subject,
                           "body": body, **context})


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


# ── Engine fixtures ──────────────────────────────────────────────────────


@pytest.fixture()
def now():
    return NOW


@pytest.fixture()
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture()
def recording_dispatcher_cls():
    return RecordingDispatcher


@pytest.fixture()
def engine(dispatcher):
    return WorkflowEngine(
        sla_tracker=SLATracker(at_risk_ratio=0.25),
        dispatcher=dispatcher,
        clock=lambda: NOW,
    )


# ── Factories ────────────────────────────────────────────────────────────


@pytest.fixture()
def make_user():
    def _make(username="alice", role="EndUser", is_active=True):
        user = User(username=username, display_name=username.title(), role=role,
                    email=f"{username}@example.com", is_active=is_active)
        _db.session.add(user)
        _db.session.flush()
        return user
    return _make


@pytest.fixture()
def make_item():
    def _make(*, title="Replace intake form", description="Move intake to the new portal",
              stage=0, scope_id=None, priority=0.5, submitter=None,
              entered=None, created=None):
        entered = entered or NOW - timedelta(hours=1)
        item = WorkItem(
            title=title,
            description=description,
            current_stage=stage,
            scope_id=scope_id,
            priority=priority,
            submitter_id=submitter.id if submitter is not None else None,
            created_at=created or entered,
            last_stage_entry_at=entered,
        )
        _db.session.add(item)
        _db.session.flush()
        return item
    return _make


@pytest.fixture()
def basic_workflow():
    """Global Draft → Review → Approved → Closed with a Manager gate into Review."""
    draft = StageRegistry.create_stage(name="Draft", order=0)
    review = StageRegistry.create_stage(name="Review", order=1, sla_hours=24,
                                        approval_required=True)
    approved = StageRegistry.create_stage(name="Approved", order=2)
    closed = StageRegistry.create_stage(name="Closed", order=3)
    transitions = {
        "submit": TransitionRegistry.create_transition(
            from_stage_id=draft.id, to_stage_id=review.id, required_role="Manager",
        ),
        "approve": TransitionRegistry.create_transition(
            from_stage_id=review.id, to_stage_id=approved.id,
        ),
        "close": TransitionRegistry.create_transition(
            from_stage_id=approved.id, to_stage_id=closed.id,
        ),
    }
    return {"draft": draft, "review": review, "approved": approved, "closed": closed,
            "transitions": transitions}
