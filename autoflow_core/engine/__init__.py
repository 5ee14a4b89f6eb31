"""
Execution engine: interpreter, run scheduler, trigger matcher and the
facade that wires them.
"""

from .interpreter import FlowInterpreter
from .scheduler import AdmitResult, AdmitStatus, RunScheduler, TickReport
from .service import AutomationEngine
from .triggers import TriggerMatcher
from .worker import SchedulerWorker

__all__ = [
    "FlowInterpreter",
    "AdmitResult",
    "AdmitStatus",
    "RunScheduler",
    "TickReport",
    "AutomationEngine",
    "TriggerMatcher",
    "SchedulerWorker",
]
