"""Shared pytest fixtures for testing."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Mapping, Optional

import pytest
import pytest_asyncio

from autoflow_core.collaborators import (
    AIClient,
    BookingClient,
    BookingResult,
    ChannelInfo,
    ChannelRegistry,
    ChannelStatus,
    Collaborators,
    DeliveryResult,
    MessagingClient,
    TaggingClient,
    TextResult,
)
from autoflow_core.config import (
    DatabaseConfig,
    EngineConfig,
    RetryConfig,
    SchedulerConfig,
    Settings,
)
from autoflow_core.engine import AutomationEngine
from autoflow_core.errors import BookingConflictError
from autoflow_core.events import AutomationEvent, EventType
from autoflow_core.graph import TriggerKind

TENANT = "tenant_1"
CHANNEL = "ch_1"
START = datetime(2025, 3, 1, 9, 0, 0)


# =============================================================================
# Fake Collaborators
# =============================================================================


@dataclass
class SentMessage:
    channel_id: str
    recipient_ref: str
    text: str
    client_message_id: str


class FakeMessaging(MessagingClient):
    """Records messages; ``failures`` are raised one per call first."""

    def __init__(self):
        self.sent: List[SentMessage] = []
        self.failures: List[Exception] = []
        self.accept = True
        self.calls = 0

    async def send(self, channel_id, recipient_ref, text, *, client_message_id):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        if not self.accept:
            return DeliveryResult(accepted=False, reason="recipient blocked")
        self.sent.append(SentMessage(channel_id, recipient_ref, text, client_message_id))
        return DeliveryResult(accepted=True, message_id=f"msg_{len(self.sent)}")

    @property
    def texts(self) -> List[str]:
        return [m.text for m in self.sent]


class FakeAI(AIClient):
    def __init__(self, reply: str = "Happy to help!"):
        self.reply = reply
        self.prompts: List[str] = []
        self.contexts: List[Dict[str, str]] = []
        self.failures: List[Exception] = []

    async def complete(self, prompt: str, context: Mapping[str, str]) -> TextResult:
        if self.failures:
            raise self.failures.pop(0)
        self.prompts.append(prompt)
        self.contexts.append(dict(context))
        return TextResult(text=self.reply, model="fake")


class FakeBooking(BookingClient):
    def __init__(self):
        self.bookings: List[Dict] = []
        self.conflict = False

    async def create(
        self,
        service_id,
        customer_ref,
        requested_time,
        *,
        dedup_key,
        customer_name=None,
        notes="",
    ) -> BookingResult:
        if self.conflict:
            raise BookingConflictError("Slot already taken")
        self.bookings.append(
            {
                "service_id": service_id,
                "customer_ref": customer_ref,
                "requested_time": requested_time,
                "dedup_key": dedup_key,
                "customer_name": customer_name,
                "notes": notes,
            }
        )
        return BookingResult(booking_id=f"bk_{len(self.bookings)}", status="PENDING")


class FakeTagging(TaggingClient):
    def __init__(self):
        self.tags: List[tuple] = []
        self.failures: List[Exception] = []

    async def tag(self, contact_ref: str, tag_name: str) -> None:
        if self.failures:
            raise self.failures.pop(0)
        self.tags.append((contact_ref, tag_name))


class FakeChannels(ChannelRegistry):
    def __init__(self):
        self.statuses: Dict[str, ChannelStatus] = {CHANNEL: ChannelStatus.CONNECTED}

    async def resolve(self, channel_id: str) -> Optional[ChannelInfo]:
        status = self.statuses.get(channel_id)
        if status is None:
            return None
        return ChannelInfo(channel_id=channel_id, status=status, channel_type="whatsapp")


@dataclass
class Fakes:
    messaging: FakeMessaging = field(default_factory=FakeMessaging)
    ai: FakeAI = field(default_factory=FakeAI)
    booking: FakeBooking = field(default_factory=FakeBooking)
    tagging: FakeTagging = field(default_factory=FakeTagging)
    channels: FakeChannels = field(default_factory=FakeChannels)

    def collaborators(self) -> Collaborators:
        return Collaborators(
            messaging=self.messaging,
            ai=self.ai,
            booking=self.booking,
            tagging=self.tagging,
            channels=self.channels,
        )


class FrozenClock:
    """Clock the tests move by hand."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


# =============================================================================
# Engine Fixtures
# =============================================================================


@pytest.fixture
def settings() -> Settings:
    """Settings with instant retries and no background worker."""
    return Settings(
        engine=EngineConfig(max_steps_per_run=50, collaborator_timeout_s=2.0),
        retry=RetryConfig(max_attempts=3, base_delay_s=0.0, max_delay_s=0.0),
        scheduler=SchedulerConfig(enabled=False, claim_ttl_s=60),
        database=DatabaseConfig(url="sqlite+aiosqlite:///:memory:"),
    )


@pytest.fixture
def fakes() -> Fakes:
    return Fakes()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def engine(fakes: Fakes, settings: Settings, clock: FrozenClock) -> AutomationEngine:
    return AutomationEngine.in_memory(fakes.collaborators(), settings=settings, clock=clock)


@pytest_asyncio.fixture
async def create_flow(engine: AutomationEngine):
    """Create (and by default activate) an automation on the engine."""

    async def _create(
        nodes,
        edges,
        *,
        trigger: TriggerKind = TriggerKind.NEW_CONVERSATION,
        channel_id: Optional[str] = CHANNEL,
        trigger_params=None,
        active: bool = True,
        tenant_id: str = TENANT,
    ):
        automation = await engine.automations.create(
            tenant_id,
            "Test flow",
            trigger=trigger,
            channel_id=channel_id,
            trigger_params=trigger_params,
            nodes=nodes,
            edges=edges,
        )
        if active:
            automation = await engine.automations.set_active(automation.id, True)
        return automation

    return _create


def new_conversation(conversation_id: str = "conv_1", **kwargs) -> AutomationEvent:
    """NEW_CONVERSATION event on the test channel."""
    values = dict(
        type=EventType.NEW_CONVERSATION,
        tenant_id=TENANT,
        channel_id=CHANNEL,
        conversation_id=conversation_id,
        contact_id="contact_1",
        contact_name="Ana",
        occurred_at=START,
    )
    values.update(kwargs)
    return AutomationEvent(**values)


@pytest.fixture
def conversation_event():
    return new_conversation
