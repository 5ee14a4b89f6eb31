"""
Runs: execution records of automations and their stores.
"""

from .base import PENDING_STATUSES, TERMINAL_STATUSES, Run, RunErrorCode, RunStatus, RunStep
from .store import InMemoryRunStore, RunStore

__all__ = [
    "PENDING_STATUSES",
    "TERMINAL_STATUSES",
    "Run",
    "RunErrorCode",
    "RunStatus",
    "RunStep",
    "InMemoryRunStore",
    "RunStore",
]
