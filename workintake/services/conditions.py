"""
Transition condition scripts.

A condition script is an ordered list of typed rules combined with AND
(default) or OR. It is stored on a TransitionDefinition as JSON:

    {"logic": "AND",
     "rules": [{"type": "priority", "operator": "greaterThan", "value": "Medium"},
               {"type": "timeElapsed", "operator": "greaterOrEqual", "value": 24}]}

Rule variants:
    PriorityRule     compares the work item's priority level
    RoleRule         compares the acting role
    ScopeRule        compares the work item's scope id
    TimeElapsedRule  compares hours spent in the current stage
    UnknownRule      any other ``type``; always passes (fail-open)

Parsing is strict for known rule types (bad operator or value raises
ValidationError) and lenient for unknown ones, which are kept verbatim as
UnknownRule so they round-trip and keep passing.

Evaluation is pure: it reads the work item, the actor role and an explicit
``now``, and never touches the database.
"""

from __future__ import annotations

import enum
import json
import logging
import operator as _op
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Union

from workintake.core.exceptions import ValidationError
from workintake.models.work_item import PriorityLevel, UserRole
from workintake.utils.helpers import hours_between

logger = logging.getLogger(__name__)


def _key(value) -> str:
    return re.sub(r"[^a-z]", "", str(value).lower())


# ═══════════════════════════════════════════════════════════════════════════
#  Vocabulary
# ═══════════════════════════════════════════════════════════════════════════

class RuleType(str, enum.Enum):
    PRIORITY = "priority"
    ROLE = "role"
    SCOPE = "scope"
    TIME_ELAPSED = "timeElapsed"


_RULE_TYPE_ALIASES = {
    "priority": RuleType.PRIORITY,
    "role": RuleType.ROLE,
    "scope": RuleType.SCOPE,
    "businessvertical": RuleType.SCOPE,
    "timeelapsed": RuleType.TIME_ELAPSED,
    "elapsed": RuleType.TIME_ELAPSED,
}


class Operator(str, enum.Enum):
    EQUALS = "equals"
    GREATER_THAN = "greaterThan"
    LESS_THAN = "lessThan"
    GREATER_OR_EQUAL = "greaterOrEqual"
    LESS_OR_EQUAL = "lessOrEqual"

    @classmethod
    def parse(cls, value) -> "Operator":
        op = _OPERATOR_ALIASES.get(_key(value)) or _OPERATOR_SYMBOLS.get(str(value).strip())
        if op is None:
            raise ValidationError(f"Unsupported operator: {value!r}", details={"operator": str(value)})
        return op

    def apply(self, actual, expected) -> bool:
        return _COMPARATORS[self](actual, expected)


_OPERATOR_ALIASES = {
    "equals": Operator.EQUALS,
    "eq": Operator.EQUALS,
    "greaterthan": Operator.GREATER_THAN,
    "gt": Operator.GREATER_THAN,
    "lessthan": Operator.LESS_THAN,
    "lt": Operator.LESS_THAN,
    "greaterorequal": Operator.GREATER_OR_EQUAL,
    "greaterthanorequal": Operator.GREATER_OR_EQUAL,
    "gte": Operator.GREATER_OR_EQUAL,
    "lessorequal": Operator.LESS_OR_EQUAL,
    "lessthanorequal": Operator.LESS_OR_EQUAL,
    "lte": Operator.LESS_OR_EQUAL,
}

_OPERATOR_SYMBOLS = {
    "==": Operator.EQUALS,
    ">": Operator.GREATER_THAN,
    "<": Operator.LESS_THAN,
    ">=": Operator.GREATER_OR_EQUAL,
    "<=": Operator.LESS_OR_EQUAL,
}

_COMPARATORS = {
    Operator.EQUALS: _op.eq,
    Operator.GREATER_THAN: _op.gt,
    Operator.LESS_THAN: _op.lt,
    Operator.GREATER_OR_EQUAL: _op.ge,
    Operator.LESS_OR_EQUAL: _op.le,
}


class Combinator(str, enum.Enum):
    AND = "AND"
    OR = "OR"


@dataclass(frozen=True)
class EvaluationContext:
    """Everything a rule may look at."""

    work_item: Any
    actor_role: UserRole
    now: datetime


# ═══════════════════════════════════════════════════════════════════════════
#  Rule variants
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class PriorityRule:
    operator: Operator
    level: PriorityLevel
    rule_type: ClassVar[RuleType] = RuleType.PRIORITY

    def evaluate(self, ctx: EvaluationContext) -> bool:
        return self.operator.apply(ctx.work_item.priority_level, self.level)

    def to_dict(self) -> dict:
        return {"type": self.rule_type.value, "operator": self.operator.value,
                "value": self.level.label}


@dataclass(frozen=True)
class RoleRule:
    operator: Operator
    role: UserRole
    rule_type: ClassVar[RuleType] = RuleType.ROLE

    def evaluate(self, ctx: EvaluationContext) -> bool:
        return self.operator.apply(ctx.actor_role, self.role)

    def to_dict(self) -> dict:
        return {"type": self.rule_type.value, "operator": self.operator.value,
                "value": self.role.label}


@dataclass(frozen=True)
class ScopeRule:
    operator: Operator
    scope_id: int
    rule_type: ClassVar[RuleType] = RuleType.SCOPE

    def evaluate(self, ctx: EvaluationContext) -> bool:
        return self.operator.apply(ctx.work_item.scope_id or 0, self.scope_id)

    def to_dict(self) -> dict:
        return {"type": self.rule_type.value, "operator": self.operator.value,
                "value": self.scope_id}


@dataclass(frozen=True)
class TimeElapsedRule:
    """Hours the work item has spent in its current stage."""

    operator: Operator
    hours: float
    rule_type: ClassVar[RuleType] = RuleType.TIME_ELAPSED

    def evaluate(self, ctx: EvaluationContext) -> bool:
        elapsed = hours_between(ctx.work_item.last_stage_entry_at, ctx.now)
        return self.operator.apply(elapsed, self.hours)

    def to_dict(self) -> dict:
        return {"type": self.rule_type.value, "operator": self.operator.value,
                "value": self.hours}


@dataclass(frozen=True)
class UnknownRule:
    """Rule of a type this engine does not understand. Always passes."""

    type_name: str
    raw: dict = field(default_factory=dict, compare=False)

    def evaluate(self, ctx: EvaluationContext) -> bool:
        return True

    def to_dict(self) -> dict:
        return dict(self.raw) or {"type": self.type_name}


Rule = Union[PriorityRule, RoleRule, ScopeRule, TimeElapsedRule, UnknownRule]


@dataclass(frozen=True)
class ConditionScript:
    rules: tuple[Rule, ...] = ()
    combinator: Combinator = Combinator.AND

    @property
    def is_empty(self) -> bool:
        return not self.rules

    def evaluate(self, ctx: EvaluationContext) -> bool:
        if not self.rules:
            return True
        outcomes = (rule.evaluate(ctx) for rule in self.rules)
        if self.combinator is Combinator.OR:
            return any(outcomes)
        return all(outcomes)

    def to_dict(self) -> dict:
        return {"logic": self.combinator.value,
                "rules": [rule.to_dict() for rule in self.rules]}


# ═══════════════════════════════════════════════════════════════════════════
#  Parsing
# ═══════════════════════════════════════════════════════════════════════════

def _get(data: dict, *names, default=None):
    """Case/separator-insensitive key lookup (``Rules``/``rules``/``RULES``)."""
    wanted = {_key(n) for n in names}
    for k, v in data.items():
        if _key(k) in wanted:
            return v
    return default


def _parse_value(rule_type: RuleType, value):
    try:
        if rule_type is RuleType.PRIORITY:
            return PriorityLevel.parse(value)
        if rule_type is RuleType.ROLE:
            return UserRole.parse(value)
        if rule_type is RuleType.SCOPE:
            return int(value)
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(
            f"Invalid value {value!r} for {rule_type.value} rule",
            details={"value": str(value)},
        ) from None


_VARIANTS = {
    RuleType.PRIORITY: PriorityRule,
    RuleType.ROLE: RoleRule,
    RuleType.SCOPE: ScopeRule,
    RuleType.TIME_ELAPSED: TimeElapsedRule,
}


def parse_rule(raw: dict) -> Rule:
    if not isinstance(raw, dict):
        raise ValidationError("Each condition rule must be an object", details={"rule": str(raw)})
    type_name = _get(raw, "type")
    if not type_name:
        raise ValidationError("Condition rule is missing 'type'", details={"rule": str(raw)})

    rule_type = _RULE_TYPE_ALIASES.get(_key(type_name))
    if rule_type is None:
        logger.debug("Condition rule type %r is not recognised; it will always pass", type_name)
        return UnknownRule(type_name=str(type_name), raw=dict(raw))

    op = Operator.parse(_get(raw, "operator", "op", default="equals"))
    value = _get(raw, "value")
    if value is None or value == "":
        raise ValidationError(f"{rule_type.value} rule requires a value", details={"value": "missing"})
    return _VARIANTS[rule_type](op, _parse_value(rule_type, value))


def parse_condition_script(raw) -> ConditionScript | None:
    """
    Parse stored/submitted JSON into a ConditionScript.

    Accepts a dict, a JSON string, or a bare list of rules. Returns None for
    an absent script. Raises ValidationError on malformed input.
    """
    if raw is None or raw == "" or raw == {}:
        return None
    if isinstance(raw, ConditionScript):
        return raw
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"Condition script is not valid JSON: {exc.msg}") from None
    if isinstance(raw, list):
        raw = {"rules": raw}
    if not isinstance(raw, dict):
        raise ValidationError("Condition script must be an object with 'rules'")

    rules_raw = _get(raw, "rules", default=[]) or []
    if not isinstance(rules_raw, list):
        raise ValidationError("Condition script 'rules' must be a list")

    logic = str(_get(raw, "logic", "combinator", default="AND") or "AND").strip().upper()
    try:
        combinator = Combinator(logic)
    except ValueError:
        raise ValidationError(f"Unsupported condition logic: {logic!r}",
                              details={"logic": logic}) from None

    return ConditionScript(rules=tuple(parse_rule(r) for r in rules_raw), combinator=combinator)


def evaluate_condition(script, work_item, actor_role: UserRole, now: datetime) -> bool:
    """Evaluate ``script`` (parsed or raw). No script means always true."""
    parsed = parse_condition_script(script)
    if parsed is None:
        return True
    return parsed.evaluate(EvaluationContext(work_item=work_item, actor_role=actor_role, now=now))
