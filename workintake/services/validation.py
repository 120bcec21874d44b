"""
Transition validation engine.

Runs the pre-commit checks attached to a TransitionDefinition:

    - role floor (``transition.required_role`` and the rule-level ``required_role``)
    - required fields on the work item (title, description, scope_id, ...)
    - comment requirements (``require_comments``, ``min_comment_length``)
    - named business rules from the pluggable registry, each flagged as a
      hard error or a soft warning

Stored JSON shape of ``validation_rules``::

    {"required_fields": [{"field_name": "title", "error_message": "Title is required"}],
     "business_rules": [{"name": "require_approval", "is_warning": false}],
     "required_role": "DepartmentManager",
     "require_comments": true,
     "min_comment_length": 10}

Unknown field names and unknown business rule names pass.

Adding a business rule:

    @business_rule("has_submitter")
    def _has_submitter(work_item, actor):
        return work_item.submitter_id is not None
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Callable

from workintake.core.exceptions import ValidationError
from workintake.models.work_item import PriorityLevel, UserRole
from workintake.services.directory import Actor, role_satisfies

logger = logging.getLogger(__name__)


def _key(value) -> str:
    return re.sub(r"[^a-z]", "", str(value).lower())


# ═══════════════════════════════════════════════════════════════════════════
#  Business Rule Registry
# ═══════════════════════════════════════════════════════════════════════════

_business_rules: dict[str, Callable] = {}


def business_rule(name: str):
    """Decorator to register a business rule ``fn(work_item, actor) -> bool``."""
    def decorator(fn: Callable) -> Callable:
        _business_rules[_key(name)] = fn
        return fn
    return decorator


def get_business_rules() -> dict[str, Callable]:
    return dict(_business_rules)


@business_rule("require_approval")
def _require_approval(work_item, actor: Actor) -> bool:
    """Senior actors may always proceed; others only on Low/Medium priority items."""
    return actor.role >= UserRole.DEPARTMENT_HEAD or work_item.priority_level <= PriorityLevel.MEDIUM


# ── Required-field checks ───────────────────────────────────────────────────

def _has_text(value) -> bool:
    return bool((value or "").strip())


_FIELD_CHECKS = {
    "title": lambda wi: _has_text(wi.title),
    "description": lambda wi: _has_text(wi.description),
    "scopeid": lambda wi: (wi.scope_id or 0) > 0,
    "businessverticalid": lambda wi: (wi.scope_id or 0) > 0,
    "submitterid": lambda wi: wi.submitter_id is not None,
}


# ═══════════════════════════════════════════════════════════════════════════
#  Rule model
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class RequiredField:
    field_name: str
    display_name: str = ""
    error_message: str = ""

    def message(self) -> str:
        return self.error_message or f"{self.display_name or self.field_name} is required"


@dataclass(frozen=True)
class BusinessRuleRef:
    name: str
    is_warning: bool = False
    error_message: str = ""


@dataclass(frozen=True)
class TransitionValidationRules:
    required_fields: tuple[RequiredField, ...] = ()
    business_rules: tuple[BusinessRuleRef, ...] = ()
    required_role: UserRole | None = None
    require_comments: bool = False
    min_comment_length: int | None = None

    def to_dict(self) -> dict:
        return {
            "required_fields": [
                {"field_name": f.field_name, "display_name": f.display_name,
                 "error_message": f.error_message}
                for f in self.required_fields
            ],
            "business_rules": [
                {"name": r.name, "is_warning": r.is_warning, "error_message": r.error_message}
                for r in self.business_rules
            ],
            "required_role": self.required_role.label if self.required_role else None,
            "require_comments": self.require_comments,
            "min_comment_length": self.min_comment_length,
        }


@dataclass
class ValidationResult:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {"is_valid": self.is_valid, "errors": list(self.errors),
                "warnings": list(self.warnings)}


def _get(data: dict, name: str, default=None):
    for k, v in data.items():
        if _key(k) == _key(name):
            return v
    return default


def parse_validation_rules(raw) -> TransitionValidationRules | None:
    """Parse stored JSON into TransitionValidationRules; ValidationError on malformed input."""
    if raw is None or raw == "" or raw == {}:
        return None
    if isinstance(raw, TransitionValidationRules):
        return raw
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"Validation rules are not valid JSON: {exc.msg}") from None
    if not isinstance(raw, dict):
        raise ValidationError("Validation rules must be an object")

    fields = []
    for item in _get(raw, "required_fields", []) or []:
        if isinstance(item, str):
            item = {"field_name": item}
        if not isinstance(item, dict) or not _get(item, "field_name"):
            raise ValidationError("Each required field needs a 'field_name'",
                                  details={"required_fields": str(item)})
        fields.append(RequiredField(
            field_name=str(_get(item, "field_name")),
            display_name=str(_get(item, "display_name", "") or ""),
            error_message=str(_get(item, "error_message", "") or ""),
        ))

    rules = []
    for item in _get(raw, "business_rules", []) or []:
        if isinstance(item, str):
            item = {"name": item}
        name = _get(item, "name") or _get(item, "rule_name") if isinstance(item, dict) else None
        if not name:
            raise ValidationError("Each business rule needs a 'name'",
                                  details={"business_rules": str(item)})
        rules.append(BusinessRuleRef(
            name=str(name),
            is_warning=bool(_get(item, "is_warning", False)),
            error_message=str(_get(item, "error_message", "") or ""),
        ))

    required_role = _get(raw, "required_role")
    if required_role:
        try:
            required_role = UserRole.parse(required_role)
        except ValueError:
            raise ValidationError(f"Unknown role: {required_role!r}",
                                  details={"required_role": str(required_role)}) from None
    else:
        required_role = None

    min_len = _get(raw, "min_comment_length")
    if min_len is not None:
        try:
            min_len = int(min_len)
        except (TypeError, ValueError):
            raise ValidationError("min_comment_length must be an integer") from None
        if min_len < 0:
            raise ValidationError("min_comment_length cannot be negative")

    return TransitionValidationRules(
        required_fields=tuple(fields),
        business_rules=tuple(rules),
        required_role=required_role,
        require_comments=bool(_get(raw, "require_comments", False)),
        min_comment_length=min_len,
    )


# ═══════════════════════════════════════════════════════════════════════════
#  Engine
# ═══════════════════════════════════════════════════════════════════════════

class ValidationEngine:
    """Stateless validator; one instance is shared by the workflow engine."""

    def validate(self, transition, work_item, actor: Actor, comment: str | None = None) -> ValidationResult:
        """
        Check ``transition`` for ``work_item`` as ``actor``.

        Comment rules are only judged when ``comment`` is not None, so a
        pre-flight check (before the user has written a comment) does not
        fail on them; ``advance`` always passes the real comment.
        """
        result = ValidationResult()

        if not role_satisfies(actor, transition.required_role):
            result.errors.append(
                f"Role {UserRole.parse(transition.required_role).label} or higher is required"
            )

        rules = parse_validation_rules(transition.validation_rules)
        if rules is None:
            return result

        for required in rules.required_fields:
            check = _FIELD_CHECKS.get(_key(required.field_name))
            if check is not None and not check(work_item):
                result.errors.append(required.message())

        if rules.required_role is not None and actor.role < rules.required_role:
            result.errors.append(f"Role {rules.required_role.label} or higher is required")

        if comment is not None:
            text = comment.strip()
            if rules.require_comments and not text:
                result.errors.append("A comment is required for this transition")
            if rules.min_comment_length and len(text) < rules.min_comment_length:
                result.errors.append(
                    f"Comment must be at least {rules.min_comment_length} characters"
                )

        for ref in rules.business_rules:
            check = _business_rules.get(_key(ref.name))
            if check is None:
                logger.debug("Business rule %r is not registered; passing", ref.name)
                continue
            if check(work_item, actor):
                continue
            message = ref.error_message or f"Business rule '{ref.name}' failed"
            if ref.is_warning:
                result.warnings.append(message)
            else:
                result.errors.append(message)

        return result
