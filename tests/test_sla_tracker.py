"""
Tests — SLA tracker and escalation sweep.

Covers:
    1. compute(): On Track / At Risk / Violated / No SLA, boundary values, purity
    2. Injected at-risk ratio (global and per scope), ratio validation
    3. scan / scan_violations skip terminal and SLA-less stages
    4. process_escalations: severity, recipients, dedup per stage visit
"""

from datetime import timedelta
from types import SimpleNamespace

import pytest

from workintake.models import db as _db
from workintake.models.notification import EscalationRecord
from workintake.services.sla import SLAState, SLATracker
from workintake.services.stage_registry import StageRegistry
from workintake.services.transition_registry import TransitionRegistry


def _stage(sla_hours=24, order=1, name="Review"):
    return SimpleNamespace(sla_hours=sla_hours, order=order, name=name)


# ═══════════════════════════════════════════════════════════════════════════
#  compute
# ═══════════════════════════════════════════════════════════════════════════

class TestCompute:

    def setup_method(self):
        self.tracker = SLATracker(at_risk_ratio=0.25)

    def test_23h_into_24h_sla_is_at_risk_not_violated(self, now):
        status = self.tracker.compute(_stage(), now - timedelta(hours=23), now)
        assert status.status is SLAState.AT_RISK
        assert status.is_at_risk
        assert not status.is_violated
        assert status.deadline == now + timedelta(hours=1)
        assert status.remaining == timedelta(hours=1)

    def test_on_track(self, now):
        status = self.tracker.compute(_stage(), now - timedelta(hours=10), now)
        assert status.status is SLAState.ON_TRACK

    def test_at_risk_boundary_is_inclusive(self, now):
        status = self.tracker.compute(_stage(), now - timedelta(hours=18), now)
        assert status.status is SLAState.AT_RISK

    def test_deadline_itself_is_not_violated(self, now):
        assert self.tracker.compute(_stage(), now - timedelta(hours=24), now).status is SLAState.AT_RISK
        violated = self.tracker.compute(_stage(), now - timedelta(hours=24, seconds=1), now)
        assert violated.status is SLAState.VIOLATED
        assert violated.remaining < timedelta(0)

    def test_no_sla(self, now):
        assert self.tracker.compute(_stage(sla_hours=None), now, now).status is SLAState.NO_SLA
        status = self.tracker.compute(None, now, now)
        assert status.status is SLAState.NO_SLA
        assert status.deadline is None

    def test_compute_is_pure(self, now):
        stage = _stage()
        entered = now - timedelta(hours=20)
        first = self.tracker.compute(stage, entered, now)
        second = self.tracker.compute(stage, entered, now)
        assert first == second
        assert stage.sla_hours == 24

    def test_naive_entry_time_is_treated_as_utc(self, now):
        naive = (now - timedelta(hours=23)).replace(tzinfo=None)
        assert self.tracker.compute(_stage(), naive, now).status is SLAState.AT_RISK

    def test_ratio_is_injected(self, now):
        strict = SLATracker(at_risk_ratio=0.5)
        entered = now - timedelta(hours=14)
        assert self.tracker.compute(_stage(), entered, now).status is SLAState.ON_TRACK
        assert strict.compute(_stage(), entered, now).status is SLAState.AT_RISK

    def test_scope_ratio_override(self, now):
        tracker = SLATracker(at_risk_ratio=0.25, scope_ratios={"3": 0.5})
        entered = now - timedelta(hours=14)
        assert tracker.ratio_for(3) == 0.5
        assert tracker.ratio_for(None) == 0.25
        assert tracker.compute(_stage(), entered, now, scope_id=3).status is SLAState.AT_RISK
        assert tracker.compute(_stage(), entered, now, scope_id=4).status is SLAState.ON_TRACK

    @pytest.mark.parametrize("ratio", [-0.1, 1.5])
    def test_invalid_ratio_rejected(self, ratio):
        with pytest.raises(ValueError):
            SLATracker(at_risk_ratio=ratio)

    def test_from_config(self, app):
        tracker = SLATracker.from_config(app.config)
        assert tracker.at_risk_ratio == 0.25
        assert tracker.scope_ratios == {}


# ═══════════════════════════════════════════════════════════════════════════
#  Scans
# ═══════════════════════════════════════════════════════════════════════════

class TestScans:

    def test_status_for_work_item(self, engine, basic_workflow, make_item, now):
        item = make_item(stage=1, entered=now - timedelta(hours=23))
        status = engine.get_sla_status(item, now)
        assert status.work_item_id == item.id
        assert status.stage_name == "Review"
        assert status.status is SLAState.AT_RISK
        assert status.to_dict()["status"] == "At Risk"

    def test_violations_exclude_on_track_and_sla_less_stages(self, engine, basic_workflow,
                                                            make_item, now):
        late = make_item(title="Late", stage=1, entered=now - timedelta(hours=30))
        make_item(title="Fine", stage=1, entered=now - timedelta(hours=2))
        make_item(title="Draft", stage=0, entered=now - timedelta(days=90))

        violations = engine.get_sla_violations(now)

        assert [v.work_item_id for v in violations] == [late.id]
        assert len(engine.sla.scan(now)) == 2

    def test_terminal_stage_is_skipped(self, engine, basic_workflow, make_item, now):
        StageRegistry.set_sla(basic_workflow["closed"].id, 1)
        make_item(stage=3, entered=now - timedelta(days=5))
        assert engine.get_sla_violations(now) == []

    def test_scope_filter(self, engine, basic_workflow, make_item, now):
        make_item(stage=1, scope_id=1, entered=now - timedelta(hours=30))
        other = make_item(stage=1, scope_id=2, entered=now - timedelta(hours=30))
        assert [v.work_item_id for v in engine.get_sla_violations(now, scope_id=2)] == [other.id]


# ═══════════════════════════════════════════════════════════════════════════
#  Escalations
# ═══════════════════════════════════════════════════════════════════════════

class TestEscalations:

    def test_violation_and_risk_escalate_with_severity(self, engine, dispatcher, basic_workflow,
                                                       make_user, make_item, now):
        make_user("mgr", role="DepartmentManager")
        requester = make_user("ulla")
        late = make_item(title="Late", stage=1, submitter=requester,
                         entered=now - timedelta(hours=30))
        risky = make_item(title="Risky", stage=1, entered=now - timedelta(hours=20))

        summary = engine.process_sla_notifications(now=now)

        assert summary["violated"] == 1
        assert summary["at_risk"] == 1
        assert summary["escalations_created"] == 2
        by_entity = {c["entity_id"]: c for c in dispatcher.calls}
        assert by_entity[late.id]["severity"] == "error"
        assert by_entity[late.id]["category"] == "sla"
        assert by_entity[late.id]["recipients"] == ["ulla", "mgr"]
        assert by_entity[late.id]["subject"] == "SLA violated: Late in Review"
        assert by_entity[risky.id]["severity"] == "warning"
        assert by_entity[risky.id]["recipients"] == ["mgr"]

    def test_repeated_sweep_does_not_duplicate(self, engine, dispatcher, basic_workflow,
                                               make_item, now):
        make_item(stage=1, entered=now - timedelta(hours=30))

        engine.process_sla_notifications(now=now)
        summary = engine.process_sla_notifications(now=now + timedelta(hours=1))

        assert summary["escalations_created"] == 0
        assert summary["already_escalated"] == 1
        assert len(dispatcher.calls) == 1
        assert EscalationRecord.query.count() == 1

    def test_no_recipients_falls_back_to_broadcast(self, engine, dispatcher, basic_workflow,
                                                   make_item, now):
        make_item(stage=1, entered=now - timedelta(hours=30))
        engine.process_sla_notifications(now=now)
        assert dispatcher.calls[0]["recipients"] == ["all"]

    def test_new_stage_visit_escalates_again(self, engine, dispatcher, basic_workflow,
                                             make_user, make_item, now):
        head = make_user("hana", role="DepartmentHead")
        item = make_item(stage=1, entered=now - timedelta(hours=30))
        engine.process_sla_notifications(now=now)

        TransitionRegistry.create_transition(from_stage_id=basic_workflow["review"].id,
                                             to_stage_id=basic_workflow["draft"].id)
        engine.advance(item, "Draft", head.id, now=now)
        engine.advance(item, "Review", head.id, now=now + timedelta(minutes=1))

        summary = engine.process_sla_notifications(now=now + timedelta(hours=30))
        assert summary["escalations_created"] == 1
        assert EscalationRecord.query.filter_by(work_item_id=item.id).count() == 2

    def test_dispatcher_failure_is_counted(self, recording_dispatcher_cls, basic_workflow,
                                           make_item, now):
        tracker = SLATracker()
        make_item(stage=1, entered=now - timedelta(hours=30))
        _db.session.commit()

        summary = tracker.process_escalations(recording_dispatcher_cls(fail=True), now=now)

        assert summary["failed"] == 1
        assert EscalationRecord.query.count() == 0
