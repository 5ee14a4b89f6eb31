"""
External collaborators: messaging, AI, booking, tagging and channel lookup.
"""

from .base import (
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
from .http import PlatformApiClient, build_http_collaborators

__all__ = [
    "AIClient",
    "BookingClient",
    "BookingResult",
    "ChannelInfo",
    "ChannelRegistry",
    "ChannelStatus",
    "Collaborators",
    "DeliveryResult",
    "MessagingClient",
    "TaggingClient",
    "TextResult",
    "PlatformApiClient",
    "build_http_collaborators",
]
