"""
Platform events that can start automation runs.
"""

import hashlib
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional


class EventType(str, Enum):
    """Event types delivered to the trigger matcher."""

    NEW_CONVERSATION = "NEW_CONVERSATION"
    MESSAGE_RECEIVED = "MESSAGE_RECEIVED"
    BOOKING_CREATED = "BOOKING_CREATED"
    BOOKING_STATUS_CHANGED = "BOOKING_STATUS_CHANGED"
    MANUAL = "MANUAL"


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


@dataclass
class AutomationEvent:
    """
    An event from the conversation or booking side of the platform.

    Stored on each run as its trigger context.
    """

    type: EventType
    tenant_id: str
    event_id: Optional[str] = None
    channel_id: Optional[str] = None
    conversation_id: Optional[str] = None
    contact_id: Optional[str] = None
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None
    booking_id: Optional[str] = None
    status: Optional[str] = None
    previous_status: Optional[str] = None
    service_id: Optional[str] = None
    service_name: Optional[str] = None
    starts_at: Optional[datetime] = None
    text: Optional[str] = None
    automation_id: Optional[str] = None
    data: Dict[str, str] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=datetime.utcnow)

    def dedup_key(self, window_s: int = 300) -> str:
        """
        Key identifying repeat deliveries of the same event.

        Webhook retries carry the same event id or the same natural key and
        therefore map to the same run.
        """
        kind = self.type.value.lower()
        if self.event_id:
            return f"{kind}:{self.event_id}"

        if self.type == EventType.NEW_CONVERSATION and self.conversation_id:
            return f"{kind}:{self.conversation_id}"
        if self.type == EventType.BOOKING_CREATED and self.booking_id:
            return f"{kind}:{self.booking_id}"
        if self.type == EventType.BOOKING_STATUS_CHANGED and self.booking_id:
            return f"{kind}:{self.booking_id}:{(self.status or '').upper()}"
        if self.type == EventType.MESSAGE_RECEIVED and self.conversation_id:
            return self._message_key(self._bucket(window_s))

        return f"{kind}:{uuid.uuid4().hex}"

    def previous_dedup_key(self, window_s: int = 300) -> Optional[str]:
        """
        Key the same message would have had in the preceding time window.

        Only messages without an event id are keyed by window; for any other
        event this returns None.
        """
        if self.event_id or self.type != EventType.MESSAGE_RECEIVED or not self.conversation_id:
            return None
        return self._message_key(self._bucket(window_s) - 1)

    def _bucket(self, window_s: int) -> int:
        return int(self.occurred_at.timestamp()) // max(window_s, 1)

    def _message_key(self, bucket: int) -> str:
        digest = hashlib.sha1((self.text or "").encode("utf-8")).hexdigest()[:16]
        return f"{self.type.value.lower()}:{self.conversation_id}:{digest}:{bucket}"

    def template_variables(self) -> Dict[str, str]:
        """Initial run variables taken from the triggering entity."""
        values: Dict[str, str] = {}
        if self.contact_name:
            values["name"] = self.contact_name
        if self.service_name:
            values["service"] = self.service_name
        if self.starts_at:
            values["date"] = self.starts_at.strftime("%Y-%m-%d")
            values["time"] = self.starts_at.strftime("%H:%M")
        if self.service_id:
            values["serviceId"] = self.service_id
        if self.booking_id:
            values["bookingId"] = self.booking_id
        values.update(self.data)
        return values

    def context_fields(self) -> Dict[str, str]:
        """Event fields visible to conditions and templates."""
        fields = {
            "eventType": self.type.value,
            "channelId": self.channel_id,
            "conversationId": self.conversation_id,
            "contactId": self.contact_id,
            "contactName": self.contact_name,
            "contactPhone": self.contact_phone,
            "bookingId": self.booking_id,
            "status": self.status,
            "previousStatus": self.previous_status,
            "serviceId": self.service_id,
            "serviceName": self.service_name,
            "text": self.text,
        }
        if self.starts_at:
            fields["startsAt"] = self.starts_at.isoformat()
        return {k: str(v) for k, v in fields.items() if v is not None}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "tenantId": self.tenant_id,
            "eventId": self.event_id,
            "channelId": self.channel_id,
            "conversationId": self.conversation_id,
            "contactId": self.contact_id,
            "contactName": self.contact_name,
            "contactPhone": self.contact_phone,
            "bookingId": self.booking_id,
            "status": self.status,
            "previousStatus": self.previous_status,
            "serviceId": self.service_id,
            "serviceName": self.service_name,
            "startsAt": self.starts_at.isoformat() if self.starts_at else None,
            "text": self.text,
            "automationId": self.automation_id,
            "data": dict(self.data),
            "occurredAt": self.occurred_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AutomationEvent":
        return cls(
            type=EventType(data["type"]),
            tenant_id=data.get("tenantId", ""),
            event_id=data.get("eventId"),
            channel_id=data.get("channelId"),
            conversation_id=data.get("conversationId"),
            contact_id=data.get("contactId"),
            contact_name=data.get("contactName"),
            contact_phone=data.get("contactPhone"),
            booking_id=data.get("bookingId"),
            status=data.get("status"),
            previous_status=data.get("previousStatus"),
            service_id=data.get("serviceId"),
            service_name=data.get("serviceName"),
            starts_at=_parse_datetime(data.get("startsAt")),
            text=data.get("text"),
            automation_id=data.get("automationId"),
            data={str(k): str(v) for k, v in (data.get("data") or {}).items()},
            occurred_at=_parse_datetime(data.get("occurredAt")) or datetime.utcnow(),
        )
