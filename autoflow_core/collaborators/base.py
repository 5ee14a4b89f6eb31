"""
Interfaces of the external systems the engine performs side effects through.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional


class ChannelStatus(str, Enum):
    """Messaging channel connection status."""

    CONNECTED = "CONNECTED"
    EXPIRED = "EXPIRED"
    ERROR = "ERROR"


@dataclass
class ChannelInfo:
    """A resolved messaging channel."""

    channel_id: str
    status: ChannelStatus
    channel_type: str = ""
    name: str = ""
    credentials: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_connected(self) -> bool:
        return self.status == ChannelStatus.CONNECTED


@dataclass
class DeliveryResult:
    """Outcome of a message send."""

    accepted: bool
    message_id: Optional[str] = None
    reason: Optional[str] = None


@dataclass
class TextResult:
    """AI completion."""

    text: str
    model: Optional[str] = None


@dataclass
class BookingResult:
    """A created booking."""

    booking_id: str
    status: str = "CONFIRMED"
    starts_at: Optional[datetime] = None


class MessagingClient(ABC):
    """Delivers outbound messages on a channel."""

    @abstractmethod
    async def send(
        self,
        channel_id: str,
        recipient_ref: str,
        text: str,
        *,
        client_message_id: str,
    ) -> DeliveryResult:
        """Send ``text``; ``client_message_id`` makes repeats idempotent."""


class AIClient(ABC):
    """Text generation."""

    @abstractmethod
    async def complete(self, prompt: str, context: Mapping[str, str]) -> TextResult:
        """Complete ``prompt`` with run context."""


class BookingClient(ABC):
    """Creates bookings."""

    @abstractmethod
    async def create(
        self,
        service_id: str,
        customer_ref: str,
        requested_time: Optional[datetime],
        *,
        dedup_key: str,
        customer_name: Optional[str] = None,
        notes: str = "",
    ) -> BookingResult:
        """Create a booking, raising BookingConflictError when the slot is taken."""


class TaggingClient(ABC):
    """Attaches tags to contacts."""

    @abstractmethod
    async def tag(self, contact_ref: str, tag_name: str) -> None:
        """Tag a contact."""


class ChannelRegistry(ABC):
    """Resolves channel ids to delivery credentials and status."""

    @abstractmethod
    async def resolve(self, channel_id: str) -> Optional[ChannelInfo]:
        """Return the channel, or None if it does not exist."""


@dataclass
class Collaborators:
    """Bundle handed to action executors."""

    messaging: MessagingClient
    ai: AIClient
    booking: BookingClient
    tagging: TaggingClient
    channels: ChannelRegistry
