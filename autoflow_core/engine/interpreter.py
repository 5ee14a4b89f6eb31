"""
Flow Interpreter.

Walks an automation graph one node at a time for a single run.
"""

from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

import structlog

from ..actions import EXECUTORS, ActionExecutor, ExecutionOutcome, OutcomeKind, RetryPolicy, StepContext
from ..collaborators import Collaborators
from ..conditions import ConditionDiagnostic, ConditionEvaluator
from ..config import Settings, get_settings
from ..errors import (
    ClaimLostError,
    CollaboratorError,
    ResumeTargetMissing,
    RunStateError,
    StepLimitExceeded,
)
from ..graph import Automation, FlowGraph, Node, NodeKind
from ..runs import Run, RunErrorCode, RunStatus, RunStep, RunStore
from ..variables import VariableStore

logger = structlog.get_logger(__name__)


class FlowInterpreter:
    """
    Run state machine.

    RUNNING runs execute their cursor node and advance until a delay
    suspends them, an endFlow completes them, a node fails, or the step
    ceiling is hit. After every step the run is checkpointed through the run
    store under the run's claim token; if the claim was lost (cancelled or
    taken over by another worker) driving stops without further writes.

    The graph is never modified here. All run and variable mutation happens
    here.
    """

    def __init__(
        self,
        run_store: RunStore,
        collaborators: Collaborators,
        *,
        settings: Optional[Settings] = None,
        evaluator: Optional[ConditionEvaluator] = None,
        executors: Optional[Dict[NodeKind, ActionExecutor]] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        settings = settings or get_settings()
        self.run_store = run_store
        self.collaborators = collaborators
        self.config = settings.engine
        self.claim_ttl = timedelta(seconds=settings.scheduler.claim_ttl_s)
        self.retry = RetryPolicy.from_config(settings.retry)
        self.evaluator = evaluator or ConditionEvaluator.from_settings(settings.engine)
        self.executors = dict(executors or EXECUTORS)
        self._clock = clock

    async def drive(self, run: Run, automation: Automation) -> Run:
        """
        Execute a claimed run until it suspends or finishes.

        Args:
            run: Run in RUNNING state holding a claim token
            automation: Current version of the run's automation

        Returns:
            The run as last persisted
        """
        token = run.claim_token
        graph = FlowGraph.from_automation(automation)
        variables = VariableStore(run.variables)
        log = logger.bind(run_id=run.id, automation_id=automation.id)

        try:
            self._check_cursor(run, graph, automation)
        except ResumeTargetMissing as e:
            log.warning("resume_target_missing", cursor=run.cursor, reason=e.message)
            return await self._finish(
                run, token, RunStatus.FAILED,
                error_code=e.code, error=e.message,
            )

        while True:
            step_time = self._clock()

            try:
                self._check_step_limit(run)
            except StepLimitExceeded as e:
                log.warning("step_limit_exceeded", steps=run.steps_executed, cursor=run.cursor)
                return await self._finish(
                    run, token, RunStatus.FAILED,
                    error_code=e.code, error=e.message,
                )

            node = graph.node(run.cursor)
            outcome, diagnostics = await self._execute_node(node, run, automation, variables, step_time)

            run.steps_executed += 1
            run.variables = variables.snapshot()
            if diagnostics:
                run.diagnostics.extend(str(d) for d in diagnostics)
                del run.diagnostics[: -self.config.history_limit]
            run.record_step(
                RunStep(
                    node_id=node.id,
                    kind=node.kind.value,
                    outcome=outcome.kind.value,
                    at=step_time,
                    detail=outcome.describe(),
                ),
                self.config.history_limit,
            )
            log.debug(
                "node_executed",
                node_id=node.id,
                kind=node.kind.value,
                outcome=outcome.kind.value,
                step=run.steps_executed,
            )

            if outcome.kind == OutcomeKind.CONTINUE:
                run.resume_at = None
                next_id = graph.next_node_id(node.id, outcome.branch)
                if next_id is None:
                    reason = "branch_ended" if node.kind == NodeKind.CONDITION else "no_outgoing_edge"
                    return await self._finish(run, token, RunStatus.COMPLETED, end_reason=reason)

                run.cursor = next_id
                if not await self._checkpoint(run, token):
                    return await self._reload(run)
                continue

            if outcome.kind == OutcomeKind.SUSPEND:
                run.status = RunStatus.SUSPENDED
                run.resume_at = outcome.resume_at
                log.info("run_suspended", node_id=node.id, resume_at=outcome.resume_at.isoformat())
                return await self._release(run, token)

            if outcome.kind == OutcomeKind.TERMINATE:
                return await self._finish(run, token, RunStatus.COMPLETED, end_reason="end_flow")

            return await self._finish(
                run, token, RunStatus.FAILED,
                error_code=outcome.error_code, error=outcome.reason,
            )

    def _check_step_limit(self, run: Run) -> None:
        if run.steps_executed >= self.config.max_steps_per_run:
            raise StepLimitExceeded(f"Run exceeded {self.config.max_steps_per_run} steps")

    def _check_cursor(self, run: Run, graph: FlowGraph, automation: Automation) -> None:
        node = graph.node(run.cursor) if run.cursor else None
        if node is None:
            raise ResumeTargetMissing(
                f"Node {run.cursor!r} no longer exists in automation {automation.id}"
            )
        if run.resume_at is not None and node.kind != NodeKind.DELAY:
            raise ResumeTargetMissing(
                f"Node {run.cursor!r} is no longer a delay node (now {node.kind.value})"
            )

    async def _execute_node(
        self,
        node: Node,
        run: Run,
        automation: Automation,
        variables: VariableStore,
        now: datetime,
    ) -> Tuple[ExecutionOutcome, List[ConditionDiagnostic]]:
        context = StepContext(
            run=run,
            automation=automation,
            variables=variables,
            collaborators=self.collaborators,
            evaluator=self.evaluator,
            retry=self.retry,
            timeout_s=self.config.collaborator_timeout_s,
            now=now,
        )
        executor = self.executors[node.kind]

        try:
            outcome = await executor.execute(node, context)
        except CollaboratorError as e:
            outcome = ExecutionOutcome.fail(e.code, e.message)
        except Exception as e:
            logger.exception("node_execution_error", run_id=run.id, node_id=node.id)
            outcome = ExecutionOutcome.fail(
                RunErrorCode.INTERNAL_ERROR.value,
                f"{type(e).__name__}: {e}",
            )
        return outcome, context.diagnostics

    async def _finish(
        self,
        run: Run,
        token: Optional[str],
        status: RunStatus,
        *,
        error_code: Optional[str] = None,
        error: Optional[str] = None,
        end_reason: Optional[str] = None,
    ) -> Run:
        run.status = status
        run.error_code = error_code
        run.error = error
        run.end_reason = end_reason
        run.resume_at = None
        run.completed_at = self._clock()

        logger.info(
            "run_finished",
            run_id=run.id,
            automation_id=run.automation_id,
            status=status.value,
            steps=run.steps_executed,
            error_code=error_code,
            end_reason=end_reason,
        )
        return await self._release(run, token)

    async def _release(self, run: Run, token: Optional[str]) -> Run:
        run.claim_token = None
        run.claim_expires_at = None
        if await self._write(run, token):
            return run
        return await self._reload(run)

    async def _checkpoint(self, run: Run, token: Optional[str]) -> bool:
        run.claim_expires_at = self._clock() + self.claim_ttl
        return await self._write(run, token)

    async def _write(self, run: Run, token: Optional[str]) -> bool:
        try:
            await self.run_store.save(run, token=token)
        except (ClaimLostError, RunStateError) as e:
            logger.warning("run_checkpoint_rejected", run_id=run.id, reason=e.message)
            return False
        return True

    async def _reload(self, run: Run) -> Run:
        stored = await self.run_store.get(run.id)
        return stored or run
