"""
Exception hierarchy for the automation engine.
"""

from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from .graph.validator import ValidationIssue


class AutomationError(Exception):
    """Base exception for automation errors."""

    code = "AUTOMATION_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class GraphValidationError(AutomationError):
    """Automation graph is malformed and cannot be saved."""

    code = "GRAPH_INVALID"

    def __init__(self, message: str, issues: Optional[List["ValidationIssue"]] = None):
        super().__init__(message)
        self.issues = list(issues or [])


class GraphFormatError(AutomationError, ValueError):
    """Node or edge data could not be parsed."""

    code = "GRAPH_FORMAT"


class EvaluationError(AutomationError):
    """Condition expression could not be evaluated."""

    code = "EVALUATION_ERROR"

    def __init__(self, message: str, position: Optional[int] = None):
        super().__init__(message)
        self.position = position


class CollaboratorError(AutomationError):
    """An external side effect failed."""

    code = "COLLABORATOR_ERROR"

    def __init__(
        self,
        message: str,
        retryable: bool = False,
        code: Optional[str] = None,
    ):
        super().__init__(message, code)
        self.retryable = retryable


class CollaboratorTimeoutError(CollaboratorError):
    """A collaborator call exceeded its timeout."""

    code = "TIMEOUT"

    def __init__(self, message: str):
        super().__init__(message, retryable=True)


class BookingConflictError(CollaboratorError):
    """Requested booking slot is not available."""

    code = "BOOKING_CONFLICT"

    def __init__(self, message: str):
        super().__init__(message, retryable=False)


class StepLimitExceeded(AutomationError):
    """Run executed more steps than allowed."""

    code = "STEP_LIMIT_EXCEEDED"


class ResumeTargetMissing(AutomationError):
    """Suspended run points at a node that no longer exists."""

    code = "RESUME_TARGET_MISSING"


class AutomationNotFoundError(AutomationError):
    """Automation does not exist."""

    code = "AUTOMATION_NOT_FOUND"

    def __init__(self, automation_id: str):
        super().__init__(f"Automation not found: {automation_id}")
        self.automation_id = automation_id


class RunNotFoundError(AutomationError):
    """Run does not exist."""

    code = "RUN_NOT_FOUND"

    def __init__(self, run_id: str):
        super().__init__(f"Run not found: {run_id}")
        self.run_id = run_id


class RunStateError(AutomationError):
    """Run is in a state that does not allow the operation."""

    code = "RUN_STATE"


class ClaimLostError(AutomationError):
    """Another worker (or a cancellation) took the run over."""

    code = "CLAIM_LOST"


__all__ = [
    "AutomationError",
    "GraphValidationError",
    "GraphFormatError",
    "EvaluationError",
    "CollaboratorError",
    "CollaboratorTimeoutError",
    "BookingConflictError",
    "StepLimitExceeded",
    "ResumeTargetMissing",
    "AutomationNotFoundError",
    "RunNotFoundError",
    "RunStateError",
    "ClaimLostError",
]
