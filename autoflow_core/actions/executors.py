"""
Node executors, one per node kind.
"""

from datetime import datetime
from typing import Dict, Optional

import structlog

from ..errors import CollaboratorError
from ..graph import (
    AiStepConfig,
    BranchLabel,
    ConditionConfig,
    CreateBookingConfig,
    DelayConfig,
    Node,
    NodeKind,
    SendMessageConfig,
    SetVariableConfig,
    TagUserConfig,
)
from ..runs import RunErrorCode
from .base import ActionExecutor, ExecutionOutcome, StepContext

logger = structlog.get_logger(__name__)


def _failed(error: CollaboratorError) -> ExecutionOutcome:
    return ExecutionOutcome.fail(error.code, error.message)


def _idempotency_key(context: StepContext, node: Node) -> str:
    # Same value when a crashed step is executed again after recovery
    return f"{context.run.id}:{node.id}:{context.run.steps_executed}"


class TriggerExecutor(ActionExecutor):
    """Entry point; does nothing."""

    kind = NodeKind.TRIGGER

    async def execute(self, node: Node, context: StepContext) -> ExecutionOutcome:
        return ExecutionOutcome.proceed()


class SendMessageExecutor(ActionExecutor):
    """Sends templated text on the automation's channel."""

    kind = NodeKind.SEND_MESSAGE

    async def execute(self, node: Node, context: StepContext) -> ExecutionOutcome:
        config: SendMessageConfig = node.config
        channel_id = context.automation.channel_id
        if not channel_id:
            return ExecutionOutcome.fail(
                RunErrorCode.NO_CHANNEL.value,
                "Automation has no channel to send on",
            )

        try:
            channel = await context.call(
                "channels.resolve",
                lambda: context.collaborators.channels.resolve(channel_id),
                idempotent=True,
            )
        except CollaboratorError as e:
            return _failed(e)

        if channel is None or not channel.is_connected:
            status = channel.status.value if channel else "MISSING"
            return ExecutionOutcome.fail(
                RunErrorCode.CHANNEL_UNAVAILABLE.value,
                f"Channel {channel_id} is {status}",
            )

        recipient = context.event.conversation_id or context.event.contact_id
        if not recipient:
            return ExecutionOutcome.fail(
                RunErrorCode.NO_RECIPIENT.value,
                "Trigger event has no conversation or contact to reply to",
            )

        text = context.resolve(config.message)
        if not text.strip():
            return ExecutionOutcome.fail(RunErrorCode.EMPTY_MESSAGE.value, "Message text is empty")

        client_message_id = _idempotency_key(context, node)
        try:
            result = await context.call(
                "messaging.send",
                lambda: context.collaborators.messaging.send(
                    channel_id,
                    recipient,
                    text,
                    client_message_id=client_message_id,
                ),
                idempotent=True,
            )
        except CollaboratorError as e:
            return _failed(e)

        if not result.accepted:
            return ExecutionOutcome.fail(
                RunErrorCode.DELIVERY_REJECTED.value,
                result.reason or "Channel rejected the message",
            )

        return ExecutionOutcome.proceed(message_id=result.message_id, text=text)


class AiStepExecutor(ActionExecutor):
    """Asks the AI collaborator and stores the answer in a variable."""

    kind = NodeKind.AI_STEP

    async def execute(self, node: Node, context: StepContext) -> ExecutionOutcome:
        config: AiStepConfig = node.config
        prompt = context.resolve(config.prompt)
        run_context = {**context.event_fields, **context.variables.snapshot()}

        try:
            result = await context.call(
                "ai.complete",
                lambda: context.collaborators.ai.complete(prompt, run_context),
                idempotent=True,
            )
        except CollaboratorError as e:
            return _failed(e)

        context.variables.set(config.output_variable, result.text)
        return ExecutionOutcome.proceed(variable=config.output_variable)


class ConditionExecutor(ActionExecutor):
    """Routes to the true or false branch."""

    kind = NodeKind.CONDITION

    async def execute(self, node: Node, context: StepContext) -> ExecutionOutcome:
        config: ConditionConfig = node.config
        result = context.evaluator.evaluate(
            config.condition,
            context.variables.snapshot(),
            context.event_fields,
            context.diagnostics,
        )
        return ExecutionOutcome.proceed(branch=BranchLabel.TRUE if result else BranchLabel.FALSE)


class DelayExecutor(ActionExecutor):
    """
    Suspends the run.

    A run that comes back from suspension still points at this node with
    ``resume_at`` set; once that time has passed the delay is over.
    """

    kind = NodeKind.DELAY

    async def execute(self, node: Node, context: StepContext) -> ExecutionOutcome:
        resume_at = context.run.resume_at
        if resume_at is not None:
            if context.now >= resume_at:
                return ExecutionOutcome.proceed(waited_until=resume_at.isoformat())
            return ExecutionOutcome.suspend(resume_at)

        config: DelayConfig = node.config
        duration = config.duration()
        if duration is None:
            return ExecutionOutcome.fail(
                RunErrorCode.INVALID_CONFIG.value,
                f"Invalid delay: {config.amount!r} {config.unit!r}",
            )
        return ExecutionOutcome.suspend(context.now + duration)


class CreateBookingExecutor(ActionExecutor):
    """Books the service for the contact that triggered the run."""

    kind = NodeKind.CREATE_BOOKING

    async def execute(self, node: Node, context: StepContext) -> ExecutionOutcome:
        config: CreateBookingConfig = node.config
        event = context.event

        service_id = self._service_id(config, context)
        if not service_id:
            return ExecutionOutcome.fail(
                RunErrorCode.MISSING_SERVICE.value,
                "No service to book: set serviceId on the node, in a variable, or on the event",
            )

        customer_ref = event.contact_id or event.conversation_id
        if not customer_ref:
            return ExecutionOutcome.fail(
                RunErrorCode.NO_RECIPIENT.value,
                "Trigger event has no contact to book for",
            )

        requested_time = event.starts_at
        if config.starts_at:
            text = context.resolve(config.starts_at)
            try:
                requested_time = datetime.fromisoformat(text.strip())
            except ValueError:
                return ExecutionOutcome.fail(
                    RunErrorCode.INVALID_CONFIG.value,
                    f"Booking time is not a date/time: {text!r}",
                )

        dedup_key = _idempotency_key(context, node)
        try:
            booking = await context.call(
                "booking.create",
                lambda: context.collaborators.booking.create(
                    service_id,
                    customer_ref,
                    requested_time,
                    dedup_key=dedup_key,
                    customer_name=event.contact_name,
                    notes=context.resolve(config.notes),
                ),
                idempotent=True,
            )
        except CollaboratorError as e:
            return _failed(e)

        context.variables.set("bookingId", booking.booking_id)
        context.variables.set("bookingStatus", booking.status)
        return ExecutionOutcome.proceed(booking_id=booking.booking_id)

    @staticmethod
    def _service_id(config: CreateBookingConfig, context: StepContext) -> Optional[str]:
        if config.service_id:
            resolved = context.resolve(config.service_id).strip()
            if resolved and not context.variables.unresolved(resolved, context.event_fields):
                return resolved
            return None
        return context.variables.lookup("serviceId") or context.event.service_id


class SetVariableExecutor(ActionExecutor):
    kind = NodeKind.SET_VARIABLE

    async def execute(self, node: Node, context: StepContext) -> ExecutionOutcome:
        config: SetVariableConfig = node.config
        context.variables.set(config.var_name, context.resolve(config.var_value))
        return ExecutionOutcome.proceed(variable=config.var_name)


class TagUserExecutor(ActionExecutor):
    """Tags the contact. Failures are logged and the run goes on."""

    kind = NodeKind.TAG_USER

    async def execute(self, node: Node, context: StepContext) -> ExecutionOutcome:
        config: TagUserConfig = node.config
        tag = context.resolve(config.tag).strip()
        contact_ref = context.event.contact_id or context.event.conversation_id

        if not contact_ref or not tag:
            logger.warning(
                "tag_skipped",
                run_id=context.run.id,
                node_id=node.id,
                reason="no contact" if not contact_ref else "empty tag",
            )
            return ExecutionOutcome.proceed(tagged=False)

        try:
            await context.call(
                "tagging.tag",
                lambda: context.collaborators.tagging.tag(contact_ref, tag),
                idempotent=True,
            )
        except CollaboratorError as e:
            logger.warning(
                "tag_failed",
                run_id=context.run.id,
                node_id=node.id,
                tag=tag,
                error=e.message,
            )
            return ExecutionOutcome.proceed(tagged=False)

        return ExecutionOutcome.proceed(tagged=True, tag=tag)


class EndFlowExecutor(ActionExecutor):
    kind = NodeKind.END_FLOW

    async def execute(self, node: Node, context: StepContext) -> ExecutionOutcome:
        return ExecutionOutcome.terminate()


EXECUTORS: Dict[NodeKind, ActionExecutor] = {
    executor.kind: executor
    for executor in (
        TriggerExecutor(),
        SendMessageExecutor(),
        AiStepExecutor(),
        ConditionExecutor(),
        DelayExecutor(),
        CreateBookingExecutor(),
        SetVariableExecutor(),
        TagUserExecutor(),
        EndFlowExecutor(),
    )
}

_unhandled = set(NodeKind) - set(EXECUTORS)
if _unhandled:
    raise RuntimeError(f"No executor for node kinds: {sorted(k.value for k in _unhandled)}")
