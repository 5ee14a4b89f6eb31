"""
Run Scheduler.

Admits new runs, resumes suspended runs when they fall due, and applies the
deactivation policy.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, List, Optional

import structlog

from ..automations.store import AutomationStore
from ..config import DeactivationPolicy, Settings, get_settings
from ..errors import GraphValidationError, RunNotFoundError
from ..events import AutomationEvent
from ..graph import Automation, FlowGraph
from ..runs import PENDING_STATUSES, Run, RunErrorCode, RunStatus, RunStore
from .interpreter import FlowInterpreter

logger = structlog.get_logger(__name__)


class AdmitStatus(str, Enum):
    ADMITTED = "ADMITTED"
    DEDUPLICATED = "DEDUPLICATED"
    REJECTED = "REJECTED"


@dataclass
class AdmitResult:
    """Outcome of offering an event to an automation."""

    status: AdmitStatus
    automation_id: str
    run_id: Optional[str] = None
    run: Optional[Run] = None
    reason: Optional[str] = None

    @property
    def admitted(self) -> bool:
        return self.status == AdmitStatus.ADMITTED


@dataclass
class TickReport:
    """What one tick did."""

    claimed: int = 0
    completed: int = 0
    suspended: int = 0
    failed: int = 0
    cancelled: int = 0
    errors: int = 0
    run_ids: List[str] = field(default_factory=list)

    def count(self, run: Run) -> None:
        if run.status == RunStatus.COMPLETED:
            self.completed += 1
        elif run.status == RunStatus.SUSPENDED:
            self.suspended += 1
        elif run.status == RunStatus.FAILED:
            self.failed += 1
        elif run.status == RunStatus.CANCELLED:
            self.cancelled += 1


class RunScheduler:
    """
    Owns pending runs.

    Ownership of a run is decided by the run store: creation is unique per
    (automation, event key), and resumption goes through an atomic claim, so
    concurrent or repeated ticks resume each due run once.
    """

    def __init__(
        self,
        automation_store: AutomationStore,
        run_store: RunStore,
        interpreter: FlowInterpreter,
        *,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        settings = settings or get_settings()
        self.automation_store = automation_store
        self.run_store = run_store
        self.interpreter = interpreter
        self.config = settings.scheduler
        self.policy = settings.engine.deactivation_policy
        self.claim_ttl = timedelta(seconds=settings.scheduler.claim_ttl_s)
        self._clock = clock
        self._semaphore = asyncio.Semaphore(settings.scheduler.max_concurrent_runs)

    async def admit(
        self,
        automation_id: str,
        event: AutomationEvent,
        *,
        now: Optional[datetime] = None,
    ) -> AdmitResult:
        """
        Start a run of ``automation_id`` for ``event``.

        The run is driven until it suspends or finishes before returning.
        Repeat deliveries of the same event return DEDUPLICATED with the
        existing run id.
        """
        now = now or self._clock()
        automation = await self.automation_store.get(automation_id)

        reason = self._rejection_reason(automation)
        if reason:
            logger.info("run_rejected", automation_id=automation_id, reason=reason)
            return AdmitResult(AdmitStatus.REJECTED, automation_id, reason=reason)

        try:
            entry = FlowGraph.from_automation(automation).entry_node()
        except GraphValidationError as e:
            return AdmitResult(AdmitStatus.REJECTED, automation_id, reason=e.message)

        token = uuid.uuid4().hex
        run = Run(
            automation_id=automation.id,
            tenant_id=automation.tenant_id,
            event_key=event.dedup_key(self.config.message_dedup_window_s),
            trigger_context=event,
            cursor=entry.id,
            variables=event.template_variables(),
            claim_token=token,
            claim_expires_at=now + self.claim_ttl,
            created_at=now,
            updated_at=now,
        )

        earlier = await self._recent_duplicate(automation.id, event)
        if earlier is not None:
            logger.info(
                "run_deduplicated",
                automation_id=automation_id,
                event_key=earlier.event_key,
                run_id=earlier.id,
            )
            return AdmitResult(AdmitStatus.DEDUPLICATED, automation_id, run_id=earlier.id, run=earlier)

        stored, created = await self.run_store.create_if_absent(run)
        if not created:
            logger.info(
                "run_deduplicated",
                automation_id=automation_id,
                event_key=run.event_key,
                run_id=stored.id,
            )
            return AdmitResult(AdmitStatus.DEDUPLICATED, automation_id, run_id=stored.id, run=stored)

        await self.automation_store.increment_run_count(automation.id)
        logger.info(
            "run_admitted",
            automation_id=automation.id,
            run_id=run.id,
            event_type=event.type.value,
        )

        async with self._semaphore:
            run = await self.interpreter.drive(run, automation)
        return AdmitResult(AdmitStatus.ADMITTED, automation_id, run_id=run.id, run=run)

    async def _recent_duplicate(self, automation_id: str, event: AutomationEvent) -> Optional[Run]:
        """
        Run for the same message admitted less than one window earlier.

        Message keys are bucketed by window, so a retry that crosses a bucket
        boundary is matched against the previous bucket's run here.
        """
        window = self.config.message_dedup_window_s
        key = event.previous_dedup_key(window)
        if key is None:
            return None
        existing = await self.run_store.get_by_event_key(automation_id, key)
        if existing is None:
            return None
        gap = abs(event.occurred_at - existing.trigger_context.occurred_at)
        return existing if gap < timedelta(seconds=window) else None

    @staticmethod
    def _rejection_reason(automation: Optional[Automation]) -> Optional[str]:
        if automation is None:
            return "automation not found"
        if automation.is_deleted:
            return "automation deleted"
        if not automation.is_active:
            return "automation inactive"
        if not automation.channel_id:
            return "automation has no channel"
        return None

    async def tick(self, now: Optional[datetime] = None) -> TickReport:
        """
        Resume every due run once.

        Runs whose resumption raises are counted as errors and left to the
        claim expiry for another attempt; they never stop other runs.
        """
        now = now or self._clock()
        token = uuid.uuid4().hex
        claimed = await self.run_store.claim_due(
            now,
            limit=self.config.batch_size,
            token=token,
            ttl=self.claim_ttl,
        )

        report = TickReport(claimed=len(claimed))
        if not claimed:
            return report

        results = await asyncio.gather(
            *(self._resume(run, now) for run in claimed),
            return_exceptions=True,
        )
        for run, result in zip(claimed, results):
            report.run_ids.append(run.id)
            if isinstance(result, BaseException):
                report.errors += 1
                logger.error(
                    "run_resume_error",
                    run_id=run.id,
                    automation_id=run.automation_id,
                    error=str(result),
                    exc_info=result,
                )
            else:
                report.count(result)

        logger.info(
            "scheduler_tick",
            claimed=report.claimed,
            completed=report.completed,
            suspended=report.suspended,
            failed=report.failed,
            cancelled=report.cancelled,
            errors=report.errors,
        )
        return report

    async def _resume(self, run: Run, now: datetime) -> Run:
        automation = await self.automation_store.get(run.automation_id, include_deleted=True)

        if automation is None:
            run.status = RunStatus.FAILED
            run.error_code = RunErrorCode.AUTOMATION_MISSING.value
            run.error = f"Automation {run.automation_id} no longer exists"
            run.resume_at = None
            run.completed_at = now
            token, run.claim_token, run.claim_expires_at = run.claim_token, None, None
            await self.run_store.save(run, token=token)
            return run

        if not automation.can_run and self.policy == DeactivationPolicy.CANCEL:
            await self.run_store.cancel(run.id, reason="automation deactivated", now=now)
            logger.info("run_cancelled_on_resume", run_id=run.id, automation_id=automation.id)
            return await self.run_store.get(run.id) or run

        async with self._semaphore:
            return await self.interpreter.drive(run, automation)

    async def cancel(self, run_id: str, reason: str = "cancelled by operator") -> bool:
        """
        Cancel a pending run.

        A run that is executing right now stops at its next step boundary.
        Returns False for runs that already finished.
        """
        cancelled = await self.run_store.cancel(run_id, reason=reason, now=self._clock())
        if cancelled:
            logger.info("run_cancelled", run_id=run_id, reason=reason)
        return cancelled

    async def handle_deactivation(self, automation_id: str) -> int:
        """Apply the deactivation policy to the automation's pending runs."""
        if self.policy == DeactivationPolicy.DRAIN:
            pending = await self.run_store.count_pending(automation_id)
            logger.info("automation_draining", automation_id=automation_id, pending=pending)
            return 0

        runs = await self.run_store.list_runs(
            automation_id=automation_id,
            statuses=PENDING_STATUSES,
            limit=10_000,
        )
        cancelled = 0
        for run in runs:
            try:
                if await self.run_store.cancel(run.id, reason="automation deactivated", now=self._clock()):
                    cancelled += 1
            except RunNotFoundError:
                continue

        logger.info("automation_runs_cancelled", automation_id=automation_id, cancelled=cancelled)
        return cancelled
