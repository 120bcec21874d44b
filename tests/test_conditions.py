"""
Tests — transition condition scripts.

Covers:
    1. Parsing (aliases, JSON strings, bare lists, malformed input)
    2. Rule variants (priority, role, scope, elapsed time)
    3. Combinators and the fail-open unknown rule
    4. Purity of evaluation
"""

from datetime import timedelta
from types import SimpleNamespace

import pytest

from workintake.core.exceptions import ValidationError
from workintake.models.work_item import PriorityLevel, UserRole
from workintake.services.conditions import (
    Combinator,
    ConditionScript,
    Operator,
    PriorityRule,
    RoleRule,
    TimeElapsedRule,
    UnknownRule,
    evaluate_condition,
    parse_condition_script,
    parse_rule,
)


def _item(now, *, priority=0.5, scope_id=3, hours_in_stage=2):
    """Plain stand-in; evaluation only reads attributes."""
    return SimpleNamespace(
        priority=priority,
        priority_level=PriorityLevel.from_score(priority),
        scope_id=scope_id,
        last_stage_entry_at=now - timedelta(hours=hours_in_stage),
    )


# ═══════════════════════════════════════════════════════════════════════════
#  Parsing
# ═══════════════════════════════════════════════════════════════════════════

class TestParsing:

    def test_empty_inputs_mean_no_script(self):
        assert parse_condition_script(None) is None
        assert parse_condition_script("") is None
        assert parse_condition_script({}) is None

    def test_parses_dict_with_typed_variants(self):
        script = parse_condition_script({
            "logic": "or",
            "rules": [
                {"type": "priority", "operator": "greaterThan", "value": "Medium"},
                {"type": "role", "operator": "greaterOrEqual", "value": "Manager"},
                {"type": "timeElapsed", "operator": ">=", "value": 24},
            ],
        })
        assert script.combinator is Combinator.OR
        assert script.rules == (
            PriorityRule(Operator.GREATER_THAN, PriorityLevel.MEDIUM),
            RoleRule(Operator.GREATER_OR_EQUAL, UserRole.DEPARTMENT_MANAGER),
            TimeElapsedRule(Operator.GREATER_OR_EQUAL, 24.0),
        )

    def test_parses_json_string_and_bare_list(self):
        from_json = parse_condition_script(
            '{"rules": [{"type": "scope", "operator": "equals", "value": 3}]}'
        )
        from_list = parse_condition_script([{"type": "scope", "operator": "equals", "value": 3}])
        assert from_json == from_list

    def test_operator_aliases(self):
        assert Operator.parse("greaterThanOrEqual") is Operator.GREATER_OR_EQUAL
        assert Operator.parse("lessThanOrEqual") is Operator.LESS_OR_EQUAL
        assert Operator.parse("<") is Operator.LESS_THAN

    def test_unknown_type_is_kept_verbatim(self):
        rule = parse_rule({"type": "department", "operator": "equals", "value": "IT"})
        assert isinstance(rule, UnknownRule)
        assert rule.to_dict() == {"type": "department", "operator": "equals", "value": "IT"}

    @pytest.mark.parametrize("raw", [
        "{not json",
        42,
        {"rules": "priority > 1"},
        {"rules": [{"operator": "equals", "value": 1}]},
        {"rules": [{"type": "priority", "operator": "between", "value": "High"}]},
        {"rules": [{"type": "priority", "operator": "equals", "value": "Urgent"}]},
        {"rules": [{"type": "role", "operator": "equals"}]},
        {"logic": "XOR", "rules": []},
    ])
    def test_malformed_scripts_raise(self, raw):
        with pytest.raises(ValidationError):
            parse_condition_script(raw)

    def test_round_trip_through_stored_form(self):
        raw = {"logic": "AND", "rules": [
            {"type": "priority", "operator": "greaterThan", "value": "Medium"},
        ]}
        script = parse_condition_script(raw)
        assert parse_condition_script(script.to_dict()) == script


# ═══════════════════════════════════════════════════════════════════════════
#  Evaluation
# ═══════════════════════════════════════════════════════════════════════════

class TestEvaluation:

    def test_no_script_is_always_true(self, now):
        assert evaluate_condition(None, _item(now), UserRole.END_USER, now) is True

    def test_priority_rule(self, now):
        script = {"rules": [{"type": "priority", "operator": "greaterThan", "value": "Medium"}]}
        assert evaluate_condition(script, _item(now, priority=0.7), UserRole.END_USER, now)
        assert not evaluate_condition(script, _item(now, priority=0.5), UserRole.END_USER, now)

    def test_role_rule_uses_actor_role(self, now):
        script = {"rules": [{"type": "role", "operator": "greaterOrEqual", "value": "DepartmentHead"}]}
        assert evaluate_condition(script, _item(now), UserRole.BUSINESS_EXECUTIVE, now)
        assert not evaluate_condition(script, _item(now), UserRole.LEAD, now)

    def test_scope_rule(self, now):
        script = {"rules": [{"type": "scope", "operator": "equals", "value": 3}]}
        assert evaluate_condition(script, _item(now, scope_id=3), UserRole.END_USER, now)
        assert not evaluate_condition(script, _item(now, scope_id=4), UserRole.END_USER, now)

    def test_time_elapsed_counts_hours_in_current_stage(self, now):
        script = {"rules": [{"type": "timeElapsed", "operator": "greaterOrEqual", "value": 24}]}
        assert evaluate_condition(script, _item(now, hours_in_stage=25), UserRole.END_USER, now)
        assert not evaluate_condition(script, _item(now, hours_in_stage=23), UserRole.END_USER, now)

    def test_and_requires_all_or_requires_any(self, now):
        rules = [
            {"type": "priority", "operator": "equals", "value": "Critical"},
            {"type": "scope", "operator": "equals", "value": 3},
        ]
        item = _item(now, priority=0.5, scope_id=3)
        assert not evaluate_condition({"logic": "AND", "rules": rules}, item, UserRole.END_USER, now)
        assert evaluate_condition({"logic": "OR", "rules": rules}, item, UserRole.END_USER, now)

    def test_unknown_rule_fails_open(self, now):
        script = {"rules": [
            {"type": "department", "operator": "equals", "value": "Finance"},
            {"type": "scope", "operator": "equals", "value": 3},
        ]}
        assert evaluate_condition(script, _item(now, scope_id=3), UserRole.END_USER, now)

    def test_empty_rule_list_is_true(self, now):
        assert ConditionScript().is_empty
        assert evaluate_condition({"rules": []}, _item(now), UserRole.END_USER, now) is True

    def test_evaluation_is_pure(self, now):
        script = parse_condition_script({"rules": [
            {"type": "timeElapsed", "operator": "lessThan", "value": 5},
        ]})
        item = _item(now, hours_in_stage=4)
        first = evaluate_condition(script, item, UserRole.END_USER, now)
        second = evaluate_condition(script, item, UserRole.END_USER, now)
        assert first is second is True
        assert item.last_stage_entry_at == now - timedelta(hours=4)
