"""
Tests — workflow configuration report.

Covers:
    1. Clean configuration is valid with no warnings
    2. Orphaned transitions (deleted source/target stage) are warnings that
       raise_if_invalid still treats as fatal
    3. Duplicate active orders are errors
    4. Unreachable / dead-end stages and order gaps are warnings
    5. raise_if_invalid and engine passthrough
"""

import pytest

from workintake.core.exceptions import ConfigurationInvalid
from workintake.models import db as _db
from workintake.models.workflow import StageDefinition
from workintake.services.config_validation import validate_configuration
from workintake.services.stage_registry import StageRegistry
from workintake.services.transition_registry import TransitionRegistry


class TestValidateConfiguration:

    def test_basic_workflow_is_clean(self, basic_workflow):
        report = validate_configuration()
        assert report.is_valid
        assert report.warnings == []
        assert report.stage_count == 4
        assert report.transition_count == 3
        report.raise_if_invalid()

    def test_empty_configuration_warns(self):
        report = validate_configuration(scope_id=12)
        assert report.is_valid
        assert report.warnings == ["No active stages configured"]

    def test_deleted_target_stage_is_an_orphan_warning(self, basic_workflow):
        StageRegistry.delete_stage(basic_workflow["closed"].id)

        report = validate_configuration()

        close_id = basic_workflow["transitions"]["close"].id
        orphan = f"Transition {close_id} (Approved -> Closed) references deleted target stage 'Closed'"
        assert report.is_valid
        assert report.errors == []
        assert report.orphans == [orphan]
        assert orphan in report.warnings
        assert report.to_dict()["orphans"] == [orphan]
        with pytest.raises(ConfigurationInvalid) as exc_info:
            report.raise_if_invalid()
        assert exc_info.value.errors == [orphan]

    def test_deleted_source_stage_is_an_orphan_warning(self, basic_workflow):
        StageRegistry.delete_stage(basic_workflow["draft"].id)
        report = validate_configuration()
        assert report.is_valid
        assert any("references deleted source stage 'Draft'" in w for w in report.orphans)
        assert any("references deleted source stage 'Draft'" in w for w in report.warnings)

    def test_duplicate_orders_are_errors(self, basic_workflow):
        _db.session.add(StageDefinition(name="Second Review", order=1))
        _db.session.commit()
        report = validate_configuration()
        assert "Order 1 is used by 2 active stages" in report.errors

    def test_unreachable_and_dead_end_stages_warn(self, basic_workflow):
        StageRegistry.create_stage(name="Parked", order=4)
        TransitionRegistry.delete_transition(basic_workflow["transitions"]["approve"].id)

        report = validate_configuration()

        assert report.is_valid
        assert "Stage 'Approved' (order 2) has no incoming transition" in report.warnings
        assert "Stage 'Review' (order 1) has no outgoing transition" in report.warnings
        assert "Stage 'Parked' (order 4) has no incoming transition" in report.warnings
        assert "Stage 'Closed' (order 3) has no outgoing transition" in report.warnings

    def test_terminal_flag_suppresses_dead_end_warning(self, basic_workflow):
        StageRegistry.create_stage(name="Rejected", order=4, is_terminal=True)
        TransitionRegistry.create_transition(from_stage_id=basic_workflow["review"].id,
                                             to_stage_id=StageRegistry.get_stage_by_order(4).id)
        StageRegistry.update_stage(basic_workflow["closed"].id, is_terminal=True)
        report = validate_configuration()
        assert report.warnings == []

    def test_order_gap_warns(self, basic_workflow):
        StageRegistry.update_stage(basic_workflow["closed"].id, order=5)
        report = validate_configuration()
        assert "Stage orders are not contiguous: gap between 2 and 5" in report.warnings

    def test_scope_report_includes_global_transitions(self, basic_workflow):
        finance = StageRegistry.create_stage(name="Finance Review", order=1, scope_id=7)
        TransitionRegistry.create_transition(from_stage_id=basic_workflow["draft"].id,
                                             to_stage_id=finance.id, scope_id=7)
        TransitionRegistry.create_transition(from_stage_id=finance.id,
                                             to_stage_id=basic_workflow["approved"].id, scope_id=7)

        report = validate_configuration(scope_id=7)

        assert report.stage_count == 4
        assert report.transition_count == 5
        assert report.is_valid

    def test_engine_passthrough(self, engine, basic_workflow):
        assert engine.validate_workflow_configuration().to_dict()["is_valid"] is True
