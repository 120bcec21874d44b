"""
Tests — automatic (time-based) transitions.

Covers:
    1. should_auto_transition: delay boundary, condition gate
    2. process_auto_transitions: advances as the system actor, idempotent re-run
    3. One advance per item per sweep, blocked items counted, scope filter
    4. Cancellation between items
    5. process_auto_transitions_for_work_item
"""

import threading
from datetime import timedelta

from workintake.services.audit_trail import AuditTrail
from workintake.services.stage_registry import StageRegistry
from workintake.services.transition_registry import TransitionRegistry


def _make_auto(basic_workflow, key="approve", delay=1440, **changes):
    transition = basic_workflow["transitions"][key]
    TransitionRegistry.update_transition(transition.id, auto_transition_delay_minutes=delay, **changes)
    return transition


# ═══════════════════════════════════════════════════════════════════════════
#  Eligibility
# ═══════════════════════════════════════════════════════════════════════════

class TestShouldAutoTransition:

    def test_delay_boundary(self, engine, basic_workflow, make_item, now):
        transition = _make_auto(basic_workflow, delay=60)
        item = make_item(stage=1, entered=now - timedelta(minutes=59))
        assert not engine.should_auto_transition(item, transition, now)
        assert engine.should_auto_transition(item, transition, now + timedelta(minutes=1))

    def test_manual_transition_never_fires(self, engine, basic_workflow, make_item, now):
        item = make_item(stage=1, entered=now - timedelta(days=30))
        assert not engine.should_auto_transition(item, basic_workflow["transitions"]["approve"], now)

    def test_condition_gates_firing(self, engine, basic_workflow, make_item, now):
        transition = _make_auto(basic_workflow, delay=60, condition_script={
            "rules": [{"type": "priority", "operator": "lessOrEqual", "value": "Medium"}],
        })
        entered = now - timedelta(hours=2)
        assert engine.should_auto_transition(make_item(stage=1, priority=0.5, entered=entered),
                                             transition, now)
        assert not engine.should_auto_transition(make_item(stage=1, priority=0.9, entered=entered),
                                                 transition, now)


# ═══════════════════════════════════════════════════════════════════════════
#  Sweep
# ═══════════════════════════════════════════════════════════════════════════

class TestProcessAutoTransitions:

    def test_review_item_past_delay_is_advanced_by_system(self, engine, basic_workflow,
                                                          make_item, now):
        _make_auto(basic_workflow, delay=1440)
        item = make_item(stage=1, entered=now - timedelta(hours=25))
        fresh = make_item(title="Fresh", stage=1, entered=now - timedelta(hours=2))

        summary = engine.process_auto_transitions(now=now)

        assert summary["advanced"] == 1
        assert summary["not_eligible"] == 1
        assert item.current_stage == 2
        assert fresh.current_stage == 1
        entry = AuditTrail.entries_for(item.id)[0]
        assert entry.actor == "system"
        assert entry.actor_id is None
        assert (entry.old_value, entry.new_value) == ("Review", "Approved")
        assert entry.comments == "Automatic transition after 1440 minutes"
        assert entry.time_in_previous_stage_hours == 25.0

    def test_second_sweep_is_a_no_op(self, engine, basic_workflow, make_item, now):
        _make_auto(basic_workflow, delay=1440)
        item = make_item(stage=1, entered=now - timedelta(hours=25))

        engine.process_auto_transitions(now=now)
        summary = engine.process_auto_transitions(now=now)

        assert summary["advanced"] == 0
        assert item.current_stage == 2
        assert len(AuditTrail.entries_for(item.id)) == 1

    def test_at_most_one_advance_per_sweep(self, engine, basic_workflow, make_item, now):
        _make_auto(basic_workflow, "approve", delay=1)
        _make_auto(basic_workflow, "close", delay=1)
        item = make_item(stage=1, entered=now - timedelta(days=3))

        engine.process_auto_transitions(now=now)
        assert item.current_stage == 2

        engine.process_auto_transitions(now=now + timedelta(minutes=5))
        assert item.current_stage == 3
        assert [s.stage_name for s in AuditTrail.get_history(item.id)] == ["Approved", "Closed"]

    def test_blocked_item_is_counted_and_sweep_continues(self, engine, basic_workflow,
                                                         make_item, now):
        _make_auto(basic_workflow, delay=60, validation_rules={"required_fields": ["description"]})
        blocked = make_item(title="No description", description="", stage=1,
                            entered=now - timedelta(hours=3))
        ok = make_item(title="Complete", stage=1, entered=now - timedelta(hours=3))

        summary = engine.process_auto_transitions(now=now)

        assert summary["blocked"] == 1
        assert summary["advanced"] == 1
        assert blocked.current_stage == 1
        assert ok.current_stage == 2

    def test_scope_filter(self, engine, basic_workflow, make_item, now):
        _make_auto(basic_workflow, delay=60)
        in_scope = make_item(stage=1, scope_id=4, entered=now - timedelta(hours=2))
        other = make_item(stage=1, scope_id=5, entered=now - timedelta(hours=2))

        engine.process_auto_transitions(now=now, scope_id=4)

        assert in_scope.current_stage == 2
        assert other.current_stage == 1

    def test_scoped_override_stage_is_skipped(self, engine, basic_workflow, make_item, now):
        _make_auto(basic_workflow, delay=60)
        StageRegistry.create_stage(name="Legal Review", order=1, scope_id=9)
        item = make_item(stage=1, scope_id=9, entered=now - timedelta(hours=2))

        summary = engine.process_auto_transitions(now=now)

        assert summary["checked"] == 0
        assert item.current_stage == 1

    def test_cancel_event_stops_sweep(self, engine, basic_workflow, make_item, now):
        _make_auto(basic_workflow, delay=60)
        item = make_item(stage=1, entered=now - timedelta(hours=2))
        cancel = threading.Event()
        cancel.set()

        summary = engine.process_auto_transitions(now=now, cancel_event=cancel)

        assert summary["cancelled"] is True
        assert summary["advanced"] == 0
        assert item.current_stage == 1

    def test_single_item_variant(self, engine, basic_workflow, make_item, now):
        _make_auto(basic_workflow, delay=60)
        item = make_item(stage=1, entered=now - timedelta(minutes=30))
        assert engine.process_auto_transitions_for_work_item(item, now) is None

        result = engine.process_auto_transitions_for_work_item(item, now + timedelta(minutes=30))
        assert result.to_stage == "Approved"
        assert result.actor == "system"

    def test_global_edge_into_scope_shadowed_stage_is_skipped(self, engine, basic_workflow,
                                                              make_item, now):
        _make_auto(basic_workflow, delay=60)
        StageRegistry.create_stage(name="Finance Approved", order=2, scope_id=7)
        item = make_item(stage=1, scope_id=7, entered=now - timedelta(hours=2))
        unscoped = make_item(stage=1, entered=now - timedelta(hours=2))

        summary = engine.process_auto_transitions(now=now)

        assert summary["advanced"] == 1
        assert unscoped.current_stage == 2
        assert item.current_stage == 1
        assert AuditTrail.entries_for(item.id) == []
        assert engine.process_auto_transitions_for_work_item(item, now) is None
        assert item.current_stage == 1
