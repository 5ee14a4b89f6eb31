"""
Action executors: one per node kind, each performing its side effect through
a collaborator and reporting an ExecutionOutcome.
"""

from .base import ActionExecutor, ExecutionOutcome, OutcomeKind, StepContext
from .executors import EXECUTORS
from .retry import RetryPolicy, call_collaborator

__all__ = [
    "ActionExecutor",
    "ExecutionOutcome",
    "OutcomeKind",
    "StepContext",
    "EXECUTORS",
    "RetryPolicy",
    "call_collaborator",
]
