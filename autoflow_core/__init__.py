"""
Autoflow Core

Server-side execution engine for visual automation flows: typed node graphs
(trigger, sendMessage, aiStep, condition, delay, createBooking, setVariable,
tagUser, endFlow) executed against conversational and booking events.

Usage:
    from autoflow_core.engine import AutomationEngine
    from autoflow_core.events import AutomationEvent, EventType
    from autoflow_core.graph import TriggerKind

    engine = AutomationEngine.in_memory(collaborators)
    automation = await engine.automations.create(
        tenant_id="t1",
        name="Welcome",
        trigger=TriggerKind.NEW_CONVERSATION,
        channel_id="ch_1",
    )
    await engine.automations.set_active(automation.id, True)

    await engine.handle_event(
        AutomationEvent(
            type=EventType.NEW_CONVERSATION,
            tenant_id="t1",
            channel_id="ch_1",
            conversation_id="conv_1",
        )
    )

    # Resume runs parked on delay nodes
    await engine.tick()
"""

__version__ = "0.4.0"

__all__ = ["__version__"]
