"""
Action executor contract.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, ClassVar, Dict, List, Optional, TypeVar

from ..collaborators import Collaborators
from ..conditions import ConditionDiagnostic, ConditionEvaluator
from ..events import AutomationEvent
from ..graph import Automation, BranchLabel, Node, NodeKind
from ..runs import Run
from ..variables import VariableStore
from .retry import RetryPolicy, call_collaborator

T = TypeVar("T")


class OutcomeKind(str, Enum):
    CONTINUE = "CONTINUE"
    SUSPEND = "SUSPEND"
    TERMINATE = "TERMINATE"
    FAIL = "FAIL"


@dataclass(frozen=True)
class ExecutionOutcome:
    """What the interpreter should do after a node ran."""

    kind: OutcomeKind
    branch: Optional[BranchLabel] = None
    resume_at: Optional[datetime] = None
    error_code: Optional[str] = None
    reason: Optional[str] = None
    output: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def proceed(cls, branch: Optional[BranchLabel] = None, **output: Any) -> "ExecutionOutcome":
        return cls(OutcomeKind.CONTINUE, branch=branch, output=output)

    @classmethod
    def suspend(cls, resume_at: datetime) -> "ExecutionOutcome":
        return cls(OutcomeKind.SUSPEND, resume_at=resume_at)

    @classmethod
    def terminate(cls) -> "ExecutionOutcome":
        return cls(OutcomeKind.TERMINATE)

    @classmethod
    def fail(cls, error_code: str, reason: str) -> "ExecutionOutcome":
        return cls(OutcomeKind.FAIL, error_code=error_code, reason=reason)

    def describe(self) -> Optional[str]:
        if self.kind == OutcomeKind.FAIL:
            return f"{self.error_code}: {self.reason}"
        if self.kind == OutcomeKind.SUSPEND and self.resume_at:
            return f"resume at {self.resume_at.isoformat()}"
        if self.branch is not None:
            return f"branch {self.branch.value}"
        return None


@dataclass
class StepContext:
    """Everything an executor may read or call while running one node."""

    run: Run
    automation: Automation
    variables: VariableStore
    collaborators: Collaborators
    evaluator: ConditionEvaluator
    retry: RetryPolicy
    timeout_s: float
    now: datetime
    diagnostics: List[ConditionDiagnostic] = field(default_factory=list)

    @property
    def event(self) -> AutomationEvent:
        return self.run.trigger_context

    @property
    def event_fields(self) -> Dict[str, str]:
        return self.event.context_fields()

    def resolve(self, text: str) -> str:
        return self.variables.resolve_template(text, self.event_fields)

    async def call(
        self,
        operation: str,
        call: Callable[[], Awaitable[T]],
        *,
        idempotent: bool,
    ) -> T:
        return await call_collaborator(
            operation,
            call,
            timeout_s=self.timeout_s,
            policy=self.retry,
            idempotent=idempotent,
        )


class ActionExecutor(ABC):
    """Base class for node executors."""

    kind: ClassVar[NodeKind]

    @abstractmethod
    async def execute(self, node: Node, context: StepContext) -> ExecutionOutcome:
        """Run ``node`` and report how the run should proceed."""
