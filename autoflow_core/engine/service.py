"""
Automation engine facade.
"""

import asyncio
from datetime import datetime
from typing import Callable, Dict, List, Optional

import structlog

from ..automations import AutomationService, AutomationStore, InMemoryAutomationStore
from ..collaborators import Collaborators
from ..config import Settings, get_settings
from ..errors import RunNotFoundError
from ..events import AutomationEvent, EventType
from ..graph import GraphValidator
from ..runs import InMemoryRunStore, Run, RunStore
from .interpreter import FlowInterpreter
from .scheduler import AdmitResult, AdmitStatus, RunScheduler, TickReport
from .triggers import TriggerMatcher

logger = structlog.get_logger(__name__)


class AutomationEngine:
    """
    Wires the stores, collaborators, interpreter, scheduler and trigger
    matcher together and exposes the operations the API layer needs.
    """

    def __init__(
        self,
        automation_store: AutomationStore,
        run_store: RunStore,
        collaborators: Collaborators,
        *,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.settings = settings or get_settings()
        self.automation_store = automation_store
        self.run_store = run_store
        self.collaborators = collaborators

        self.interpreter = FlowInterpreter(
            run_store,
            collaborators,
            settings=self.settings,
            clock=clock,
        )
        self.scheduler = RunScheduler(
            automation_store,
            run_store,
            self.interpreter,
            settings=self.settings,
            clock=clock,
        )
        self.matcher = TriggerMatcher(automation_store)
        self.automations = AutomationService(
            automation_store,
            validator=GraphValidator(
                evaluator=self.interpreter.evaluator,
                max_nodes=self.settings.engine.max_nodes_per_automation,
            ),
            on_deactivated=self.scheduler.handle_deactivation,
        )

    @classmethod
    def in_memory(cls, collaborators: Collaborators, **kwargs) -> "AutomationEngine":
        """Engine with process-local stores, for tests and local runs."""
        return cls(InMemoryAutomationStore(), InMemoryRunStore(), collaborators, **kwargs)

    async def handle_event(
        self,
        event: AutomationEvent,
        *,
        now: Optional[datetime] = None,
    ) -> List[AdmitResult]:
        """Start a run on every automation the event matches."""
        automation_ids = await self.matcher.on_event(event)
        if not automation_ids:
            return []

        results = await asyncio.gather(
            *(self.scheduler.admit(automation_id, event, now=now) for automation_id in automation_ids),
            return_exceptions=True,
        )

        admitted: List[AdmitResult] = []
        for automation_id, result in zip(automation_ids, results):
            if isinstance(result, BaseException):
                logger.error(
                    "event_admit_error",
                    automation_id=automation_id,
                    event_type=event.type.value,
                    error=str(result),
                    exc_info=result,
                )
                admitted.append(AdmitResult(AdmitStatus.REJECTED, automation_id, reason=str(result)))
            else:
                admitted.append(result)
        return admitted

    async def trigger_manually(
        self,
        automation_id: str,
        *,
        contact_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
        contact_name: Optional[str] = None,
        variables: Optional[Dict[str, str]] = None,
        invocation_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> AdmitResult:
        """
        Invoke a MANUAL automation.

        Passing the same ``invocation_id`` twice starts one run.
        """
        automation = await self.automations.get(automation_id)
        event = AutomationEvent(
            type=EventType.MANUAL,
            tenant_id=automation.tenant_id,
            event_id=invocation_id,
            channel_id=automation.channel_id,
            conversation_id=conversation_id,
            contact_id=contact_id,
            contact_name=contact_name,
            automation_id=automation_id,
            data={str(k): str(v) for k, v in (variables or {}).items()},
        )
        if not self.matcher.match_manual(automation, event):
            reason = (
                "automation is not a MANUAL automation"
                if automation.can_run
                else "automation is inactive or has no channel"
            )
            return AdmitResult(AdmitStatus.REJECTED, automation_id, reason=reason)

        return await self.scheduler.admit(automation_id, event, now=now)

    async def tick(self, now: Optional[datetime] = None) -> TickReport:
        return await self.scheduler.tick(now)

    async def cancel_run(self, run_id: str) -> bool:
        return await self.scheduler.cancel(run_id)

    async def get_run(self, run_id: str) -> Run:
        run = await self.run_store.get(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        return run

    async def list_runs(self, automation_id: str, limit: int = 50) -> List[Run]:
        return await self.run_store.list_runs(automation_id=automation_id, limit=limit)
