"""
Request Models

Bodies accepted by the automation API. Field names are camelCase on the wire,
matching the builder's JSON; snake_case is accepted too.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..events import AutomationEvent, EventType
from ..graph import Automation, Edge, Node, TriggerKind, TriggerParams


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TriggerParamsPayload(CamelModel):
    """Trigger filters."""

    keywords: List[str] = Field(default_factory=list, description="Keywords for KEYWORD triggers")
    target_status: Optional[str] = Field(default=None, description="Status for BOOKING_STATUS_CHANGED")

    def to_params(self) -> TriggerParams:
        return TriggerParams.from_dict(self.model_dump(by_alias=True))


class GraphPayload(CamelModel):
    """Nodes and edges in builder format."""

    nodes: Optional[List[Dict[str, Any]]] = Field(default=None, description="Builder nodes")
    edges: Optional[List[Dict[str, Any]]] = Field(default=None, description="Builder edges")

    def to_nodes(self) -> Optional[List[Node]]:
        if self.nodes is None:
            return None
        return [Node.from_dict(n) for n in self.nodes]

    def to_edges(self) -> Optional[List[Edge]]:
        if self.edges is None:
            return None
        return [Edge.from_dict(e) for e in self.edges]


class AutomationCreateRequest(GraphPayload):
    """Request to create an automation."""

    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="", max_length=2000)
    trigger: TriggerKind = TriggerKind.NEW_CONVERSATION
    trigger_params: Optional[TriggerParamsPayload] = None
    channel_id: Optional[str] = None
    is_active: bool = False


class AutomationUpdateRequest(GraphPayload):
    """Request to update an automation; omitted fields are unchanged."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    trigger: Optional[TriggerKind] = None
    trigger_params: Optional[TriggerParamsPayload] = None
    channel_id: Optional[str] = None

    @property
    def channel_given(self) -> bool:
        """True when ``channelId`` was sent, including an explicit null."""
        return "channel_id" in self.model_fields_set


class ValidateRequest(GraphPayload):
    """Graph to validate without saving."""

    trigger: TriggerKind = TriggerKind.NEW_CONVERSATION
    channel_id: Optional[str] = None

    def to_automation(self, tenant_id: str) -> Automation:
        return Automation(
            id="draft",
            tenant_id=tenant_id,
            name="draft",
            trigger=self.trigger,
            channel_id=self.channel_id,
            nodes=self.to_nodes() or [],
            edges=self.to_edges() or [],
        )


class ManualTriggerRequest(CamelModel):
    """Manual invocation of a MANUAL automation."""

    contact_id: Optional[str] = None
    conversation_id: Optional[str] = None
    contact_name: Optional[str] = None
    variables: Dict[str, str] = Field(default_factory=dict)
    invocation_id: Optional[str] = Field(
        default=None,
        description="Repeat invocations with the same id start one run",
    )


class EventRequest(CamelModel):
    """Platform event delivered to the engine."""

    type: EventType
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
    data: Dict[str, str] = Field(default_factory=dict)
    occurred_at: Optional[datetime] = None

    def to_event(self, tenant_id: str) -> AutomationEvent:
        event = AutomationEvent(
            type=self.type,
            tenant_id=tenant_id,
            event_id=self.event_id,
            channel_id=self.channel_id,
            conversation_id=self.conversation_id,
            contact_id=self.contact_id,
            contact_name=self.contact_name,
            contact_phone=self.contact_phone,
            booking_id=self.booking_id,
            status=self.status,
            previous_status=self.previous_status,
            service_id=self.service_id,
            service_name=self.service_name,
            starts_at=_naive_utc(self.starts_at),
            text=self.text,
            automation_id=self.automation_id,
            data=dict(self.data),
        )
        if self.occurred_at is not None:
            event.occurred_at = _naive_utc(self.occurred_at)
        return event
