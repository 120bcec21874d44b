"""
Engine-wide exception hierarchy.

Services raise these types and nothing else, so callers (CLI commands,
scheduled jobs, embedding applications) can handle failures by category
without importing from individual service modules.

Usage:
    from workintake.core.exceptions import NotFoundError, TransitionNotAllowed

    raise NotFoundError(resource="WorkItem", resource_id=42)
    raise TransitionNotAllowed(work_item_id=42, from_stage="Draft",
                               to_stage="Review", reasons=["role below DepartmentManager"])
"""


class NotFoundError(Exception):
    """Raised when a requested record does not exist (or is soft-deleted).

    Args:
        resource: Human-readable model/entity name (e.g. "WorkItem", "StageDefinition").
        resource_id: The key that was looked up.
        scope_id: Optional, the business-vertical scope the lookup ran under.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        scope_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.scope_id = scope_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if scope_id is not None:
            msg += f" (scope={scope_id})"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is well-formed but violates a configuration rule.

    Examples: a stage order that is negative, a condition script with an
    unsupported operator, a transition whose source and target coincide.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names;
                 values are error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would duplicate a record that must be unique.

    Args:
        resource: Model name.
        field: The unique field (or field tuple) that would be duplicated.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


# ── Workflow engine ──────────────────────────────────────────────────────────


class WorkflowError(Exception):
    """Base class for state-machine failures raised by the workflow engine."""


class TransitionNotAllowed(WorkflowError):
    """Raised when an advance is attempted but role, condition or validation checks fail.

    Args:
        work_item_id: The work item that was asked to move.
        from_stage: Name of the current stage.
        to_stage: Name of the requested target stage.
        reasons: Every check that failed, in evaluation order.
    """

    def __init__(
        self,
        work_item_id: int,
        from_stage: str | None,
        to_stage: str | None,
        reasons: list[str] | None = None,
    ) -> None:
        self.work_item_id = work_item_id
        self.from_stage = from_stage
        self.to_stage = to_stage
        self.reasons = list(reasons or [])
        msg = f"Cannot advance work item {work_item_id} from {from_stage!r} to {to_stage!r}"
        if self.reasons:
            msg += ": " + "; ".join(self.reasons)
        super().__init__(msg)


class TransitionNotFound(TransitionNotAllowed):
    """Raised when no active transition is configured for (from, to, scope)."""

    def __init__(
        self,
        work_item_id: int,
        from_stage: str | None,
        to_stage: str | None,
        scope_id: int | None = None,
    ) -> None:
        self.scope_id = scope_id
        super().__init__(
            work_item_id, from_stage, to_stage,
            [f"no transition configured (scope={scope_id})"],
        )


class ConcurrencyConflict(WorkflowError):
    """Raised when the work item's stage changed between read and commit.

    The caller must reload the work item and retry; the engine never retries.
    """

    def __init__(self, work_item_id: int, expected_stage: int) -> None:
        self.work_item_id = work_item_id
        self.expected_stage = expected_stage
        super().__init__(
            f"Work item {work_item_id} is no longer in stage order {expected_stage}; "
            "reload and retry"
        )


class ConfigurationInvalid(WorkflowError):
    """Raised by callers that choose to treat a configuration report's errors as fatal.

    The registries themselves never raise this; they return a report.
    """

    def __init__(self, scope_id: int | None, errors: list[str]) -> None:
        self.scope_id = scope_id
        self.errors = list(errors)
        super().__init__(
            f"Workflow configuration (scope={scope_id}) has {len(self.errors)} error(s): "
            + "; ".join(self.errors)
        )


class ApprovalNotRequired(WorkflowError):
    """Raised when an approval decision is submitted for a stage that needs none."""

    def __init__(self, work_item_id: int, stage_name: str | None) -> None:
        self.work_item_id = work_item_id
        self.stage_name = stage_name
        super().__init__(f"Stage {stage_name!r} of work item {work_item_id} does not require approval")


class ApprovalUnauthorized(WorkflowError):
    """Raised when the approver's role does not qualify for the current stage."""

    def __init__(self, work_item_id: int, approver: str, stage_name: str | None) -> None:
        self.work_item_id = work_item_id
        self.approver = approver
        self.stage_name = stage_name
        super().__init__(f"{approver} is not authorized to approve stage {stage_name!r} "
                         f"of work item {work_item_id}")
