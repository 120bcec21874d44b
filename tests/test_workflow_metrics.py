"""
Tests — workflow metrics and bottleneck analysis.

Covers:
    1. get_workflow_metrics: totals, completion, distribution, stage times, SLA compliance
    2. Date window and scope filters
    3. identify_bottlenecks: thresholds, Approval/Resource/System typing, ordering
    4. get_average_completion_time and transition metrics passthrough
"""

from datetime import timedelta

import pytest

from workintake.services.workflow_engine import WorkflowEngine


@pytest.fixture()
def history(engine, basic_workflow, make_user, make_item, now):
    """One item walked to Closed, one late in Review, one fresh in Review, one in Draft."""
    admin = make_user("root", role="SystemAdministrator")
    done = make_item(title="Done", entered=now - timedelta(hours=48))
    engine.advance(done, "Review", admin.id, now=now - timedelta(hours=40))
    engine.advance(done, "Approved", admin.id, now=now - timedelta(hours=30))
    engine.advance(done, "Closed", admin.id, now=now - timedelta(hours=24))
    late = make_item(title="Late", stage=1, entered=now - timedelta(hours=30))
    fresh = make_item(title="Fresh", stage=1, entered=now - timedelta(hours=2))
    draft = make_item(title="Draft", stage=0, entered=now - timedelta(hours=5))
    return {"done": done, "late": late, "fresh": fresh, "draft": draft}


# ═══════════════════════════════════════════════════════════════════════════
#  Metrics
# ═══════════════════════════════════════════════════════════════════════════

class TestWorkflowMetrics:

    def test_metrics_over_window(self, engine, history, now):
        metrics = engine.get_workflow_metrics(now - timedelta(days=7), now)

        assert metrics["total_work_items"] == 4
        assert metrics["completed_work_items"] == 1
        assert metrics["average_completion_days"] == 1.0
        assert metrics["stage_distribution"] == {"Closed": 1, "Review": 2, "Draft": 1}
        assert metrics["average_stage_time_hours"] == {
            "Draft": 8.0, "Review": 10.0, "Approved": 6.0, "Closed": 0.0,
        }
        assert metrics["sla_violations"] == 1
        assert metrics["sla_compliance_rate"] == 50.0
        assert metrics["scope_id"] is None

    def test_window_excludes_older_items(self, engine, history, now):
        metrics = engine.get_workflow_metrics(now - timedelta(hours=6), now)
        assert metrics["total_work_items"] == 2
        assert metrics["completed_work_items"] == 0
        assert metrics["average_completion_days"] == 0.0
        assert metrics["average_stage_time_hours"]["Review"] == 0.0
        assert metrics["sla_compliance_rate"] == 100.0

    def test_scope_filter(self, engine, basic_workflow, make_item, now):
        make_item(stage=1, scope_id=3, entered=now - timedelta(hours=30))
        make_item(stage=1, scope_id=4, entered=now - timedelta(hours=1))
        metrics = engine.get_workflow_metrics(now - timedelta(days=2), now, scope_id=4)
        assert metrics["total_work_items"] == 1
        assert metrics["sla_violations"] == 0

    def test_average_completion_time(self, engine, basic_workflow, history):
        assert engine.get_average_completion_time(basic_workflow["review"]) == 10.0
        assert engine.get_average_completion_time(basic_workflow["draft"].id) == 8.0
        assert engine.get_average_completion_time(basic_workflow["closed"]) == 0.0

    def test_transition_metrics(self, engine, basic_workflow, history):
        metrics = engine.get_transition_metrics(basic_workflow["transitions"]["approve"].id)
        assert metrics["execution_count"] == 1
        assert metrics["average_time_in_previous_stage_hours"] == 10.0


# ═══════════════════════════════════════════════════════════════════════════
#  Bottlenecks
# ═══════════════════════════════════════════════════════════════════════════

class TestBottlenecks:

    def test_nothing_flagged_below_thresholds(self, engine, history, now):
        assert engine.identify_bottlenecks(now=now) == []

    def test_types_and_ordering(self, basic_workflow, make_item, now, dispatcher):
        engine = WorkflowEngine(dispatcher=dispatcher, clock=lambda: now,
                                bottleneck_wait_hours=72, bottleneck_pending_count=3)
        make_item(title="Stuck review", stage=1, entered=now - timedelta(hours=100))
        make_item(title="Old draft", stage=0, entered=now - timedelta(hours=80))
        for n in range(3):
            make_item(title=f"Queued {n}", stage=2, entered=now - timedelta(hours=1))
        make_item(title="Finished", stage=3, entered=now - timedelta(days=30))

        findings = engine.identify_bottlenecks()

        assert [(f["stage"], f["bottleneck_type"]) for f in findings] == [
            ("Review", "Approval"), ("Draft", "System"), ("Approved", "Resource"),
        ]
        review = findings[0]
        assert review["pending_count"] == 1
        assert review["average_wait_hours"] == 100.0
        assert findings[2]["recommendation"] == \
            "Rebalance capacity: 3 items are waiting in this stage"

    def test_scope_filter(self, engine, basic_workflow, make_item, now):
        make_item(stage=0, scope_id=1, entered=now - timedelta(hours=100))
        assert engine.identify_bottlenecks(scope_id=2, now=now) == []
        assert len(engine.identify_bottlenecks(scope_id=1, now=now)) == 1
