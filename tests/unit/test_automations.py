"""
Unit Tests for Automation Management and Events
"""

from datetime import datetime

import pytest

from autoflow_core.automations import AutomationService, InMemoryAutomationStore
from autoflow_core.errors import AutomationNotFoundError, GraphValidationError
from autoflow_core.events import AutomationEvent, EventType
from autoflow_core.graph import (
    Edge,
    IssueCode,
    Node,
    NodeKind,
    SendMessageConfig,
    TriggerKind,
    new_trigger_node,
)


class Hook:
    def __init__(self):
        self.calls = []

    async def __call__(self, automation_id: str) -> int:
        self.calls.append(automation_id)
        return 0


@pytest.fixture
def hook():
    return Hook()


@pytest.fixture
def service(hook):
    return AutomationService(InMemoryAutomationStore(), on_deactivated=hook)


def greeting_graph(message: str = "Hello"):
    nodes = [
        new_trigger_node(),
        Node("msg", NodeKind.SEND_MESSAGE, SendMessageConfig(message=message)),
        Node("end", NodeKind.END_FLOW),
    ]
    return nodes, [Edge("trigger", "msg"), Edge("msg", "end")]


# =============================================================================
# Automation Service
# =============================================================================


class TestAutomationService:
    """Tests for AutomationService."""

    @pytest.mark.asyncio
    async def test_create_defaults(self, service):
        automation = await service.create("tenant_1", "Welcome")

        assert automation.is_active is False
        assert automation.trigger == TriggerKind.NEW_CONVERSATION
        assert [n.kind for n in automation.nodes] == [NodeKind.TRIGGER]
        assert automation.version == 1
        assert (await service.get(automation.id)).name == "Welcome"

    @pytest.mark.asyncio
    async def test_create_rejects_invalid_graph(self, service):
        nodes, edges = greeting_graph()
        edges.append(Edge("msg", "ghost"))

        with pytest.raises(GraphValidationError) as exc_info:
            await service.create("tenant_1", "Broken", nodes=nodes, edges=edges)

        codes = {issue.code for issue in exc_info.value.issues}
        assert IssueCode.DANGLING_EDGE in codes
        assert await service.list("tenant_1") == []

    @pytest.mark.asyncio
    async def test_update_graph_bumps_version(self, service):
        automation = await service.create("tenant_1", "Welcome")
        nodes, edges = greeting_graph()

        updated = await service.update(automation.id, nodes=nodes, edges=edges)

        assert updated.version == 2
        assert len((await service.get(automation.id)).nodes) == 3

    @pytest.mark.asyncio
    async def test_rename_keeps_version(self, service):
        automation = await service.create("tenant_1", "Welcome")

        updated = await service.update(automation.id, name="Hello")

        assert updated.name == "Hello"
        assert updated.version == 1

    @pytest.mark.asyncio
    async def test_invalid_update_leaves_stored_graph(self, service):
        nodes, edges = greeting_graph()
        automation = await service.create("tenant_1", "Welcome", nodes=nodes, edges=edges)

        with pytest.raises(GraphValidationError):
            await service.update(automation.id, nodes=[Node("msg", NodeKind.SEND_MESSAGE)], edges=[])

        assert len((await service.get(automation.id)).nodes) == 3

    @pytest.mark.asyncio
    async def test_toggle(self, service, hook):
        automation = await service.create("tenant_1", "Welcome", channel_id="ch_1")

        on = await service.toggle_active(automation.id)
        off = await service.toggle_active(automation.id)

        assert on.is_active is True
        assert off.is_active is False
        assert hook.calls == [automation.id]

    @pytest.mark.asyncio
    async def test_setting_same_state_is_noop(self, service, hook):
        automation = await service.create("tenant_1", "Welcome")

        await service.set_active(automation.id, False)

        assert hook.calls == []

    @pytest.mark.asyncio
    async def test_clearing_channel_of_active_automation(self, service, hook):
        automation = await service.create("tenant_1", "Welcome", channel_id="ch_1", is_active=True)

        updated = await service.update(automation.id, channel_id=None)

        assert updated.can_run is False
        assert hook.calls == [automation.id]

    @pytest.mark.asyncio
    async def test_soft_delete(self, service, hook):
        automation = await service.create("tenant_1", "Welcome", channel_id="ch_1", is_active=True)

        await service.delete(automation.id)

        with pytest.raises(AutomationNotFoundError):
            await service.get(automation.id)
        assert await service.list("tenant_1") == []
        stored = await service.store.get(automation.id, include_deleted=True)
        assert stored.is_deleted and not stored.is_active
        assert hook.calls == [automation.id]

    @pytest.mark.asyncio
    async def test_unknown_automation(self, service):
        with pytest.raises(AutomationNotFoundError):
            await service.update("missing", name="x")


# =============================================================================
# Events
# =============================================================================


class TestAutomationEvent:
    """Tests for AutomationEvent."""

    def test_event_id_wins_dedup_key(self):
        event = AutomationEvent(
            type=EventType.NEW_CONVERSATION,
            tenant_id="t",
            event_id="evt_1",
            conversation_id="conv_1",
        )

        assert event.dedup_key() == "new_conversation:evt_1"

    def test_natural_keys(self):
        conversation = AutomationEvent(type=EventType.NEW_CONVERSATION, tenant_id="t", conversation_id="conv_1")
        booking = AutomationEvent(type=EventType.BOOKING_CREATED, tenant_id="t", booking_id="bk_1")
        status = AutomationEvent(
            type=EventType.BOOKING_STATUS_CHANGED, tenant_id="t", booking_id="bk_1", status="confirmed"
        )

        assert conversation.dedup_key() == "new_conversation:conv_1"
        assert booking.dedup_key() == "booking_created:bk_1"
        assert status.dedup_key() == "booking_status_changed:bk_1:CONFIRMED"

    def test_message_key_uses_time_window(self):
        def message(second):
            return AutomationEvent(
                type=EventType.MESSAGE_RECEIVED,
                tenant_id="t",
                conversation_id="conv_1",
                text="price?",
                occurred_at=datetime(2025, 3, 1, 9, 0, second),
            )

        assert message(1).dedup_key(60) == message(30).dedup_key(60)
        assert message(1).dedup_key(1) != message(30).dedup_key(1)

    def test_previous_window_key_only_for_messages(self):
        message = AutomationEvent(
            type=EventType.MESSAGE_RECEIVED,
            tenant_id="t",
            conversation_id="conv_1",
            text="price?",
            occurred_at=datetime(2025, 3, 1, 9, 0, 30),
        )
        earlier = AutomationEvent(
            type=EventType.MESSAGE_RECEIVED,
            tenant_id="t",
            conversation_id="conv_1",
            text="price?",
            occurred_at=datetime(2025, 3, 1, 8, 59, 30),
        )
        identified = AutomationEvent(type=EventType.MESSAGE_RECEIVED, tenant_id="t", event_id="evt_1")
        conversation = AutomationEvent(type=EventType.NEW_CONVERSATION, tenant_id="t", conversation_id="conv_1")

        assert message.previous_dedup_key(60) == earlier.dedup_key(60)
        assert identified.previous_dedup_key(60) is None
        assert conversation.previous_dedup_key(60) is None

    def test_events_without_key_never_collide(self):
        event = AutomationEvent(type=EventType.MESSAGE_RECEIVED, tenant_id="t")

        assert event.dedup_key() != event.dedup_key()

    def test_template_variables(self):
        event = AutomationEvent(
            type=EventType.BOOKING_CREATED,
            tenant_id="t",
            booking_id="bk_1",
            contact_name="Ana",
            service_name="Haircut",
            service_id="svc_1",
            starts_at=datetime(2025, 3, 2, 10, 30),
            data={"name": "Ana Maria", "promo": "SPRING"},
        )

        assert event.template_variables() == {
            "name": "Ana Maria",
            "service": "Haircut",
            "date": "2025-03-02",
            "time": "10:30",
            "serviceId": "svc_1",
            "bookingId": "bk_1",
            "promo": "SPRING",
        }

    def test_context_fields_skip_missing_values(self):
        event = AutomationEvent(type=EventType.MESSAGE_RECEIVED, tenant_id="t", text="hi", channel_id="ch_1")

        assert event.context_fields() == {"eventType": "MESSAGE_RECEIVED", "channelId": "ch_1", "text": "hi"}

    def test_from_dict_parses_zulu_time(self):
        event = AutomationEvent.from_dict(
            {"type": "BOOKING_CREATED", "tenantId": "t", "startsAt": "2025-03-02T10:00:00Z"}
        )

        assert event.starts_at.hour == 10
        assert event.type == EventType.BOOKING_CREATED
