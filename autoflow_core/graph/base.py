"""
Graph model types.

Node configuration is a closed tagged variant: every :class:`NodeKind` maps to
exactly one frozen configuration dataclass in :data:`CONFIG_TYPES`. Nodes and
edges serialize to the builder's ``{id, type, position, data}`` and
``{id, source, target, sourceHandle}`` shapes.
"""

import math
import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Type, Union

from ..errors import GraphFormatError


# =============================================================================
# Enums
# =============================================================================


class NodeKind(str, Enum):
    """Node kinds understood by the engine."""

    TRIGGER = "trigger"
    SEND_MESSAGE = "sendMessage"
    AI_STEP = "aiStep"
    CONDITION = "condition"
    DELAY = "delay"
    CREATE_BOOKING = "createBooking"
    SET_VARIABLE = "setVariable"
    TAG_USER = "tagUser"
    END_FLOW = "endFlow"


class TriggerKind(str, Enum):
    """Events that can start an automation."""

    NEW_CONVERSATION = "NEW_CONVERSATION"
    KEYWORD = "KEYWORD"
    BOOKING_CREATED = "BOOKING_CREATED"
    BOOKING_STATUS_CHANGED = "BOOKING_STATUS_CHANGED"
    MANUAL = "MANUAL"


class BranchLabel(str, Enum):
    """Edge labels used by condition nodes."""

    TRUE = "true"
    FALSE = "false"


class DelayUnit(str, Enum):
    """Delay units."""

    SECONDS = "seconds"
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"

    def to_timedelta(self, amount: float) -> timedelta:
        return timedelta(**{self.value: amount})


AI_RESPONSE_VARIABLE = "lastAiResponse"

# Longest delay a node may ask for
MAX_DELAY = timedelta(days=365)

# Keys the builder UI attaches to node data for its own bookkeeping
UI_ONLY_KEYS = frozenset({"onChange", "onDelete", "onToggleCollapse", "collapsed"})


# =============================================================================
# Field helpers
# =============================================================================


def _to_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _to_optional_text(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _to_amount(value: Any) -> Optional[float]:
    """Delay amounts arrive as numbers or numeric strings from the form."""
    if isinstance(value, bool):
        return None
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return None
    return amount if math.isfinite(amount) else None


def _to_unit(value: Any) -> Optional[DelayUnit]:
    try:
        return DelayUnit(str(value).lower())
    except ValueError:
        return None


def _key(name: str, default: Any = "", parse: Callable[[Any], Any] = _to_text) -> Any:
    return field(default=default, metadata={"key": name, "parse": parse})


# =============================================================================
# Node configurations
# =============================================================================


@dataclass(frozen=True)
class TriggerConfig:
    pass


@dataclass(frozen=True)
class SendMessageConfig:
    message: str = _key("message")


@dataclass(frozen=True)
class AiStepConfig:
    prompt: str = _key("prompt")
    output_variable: str = _key("outputVariable", AI_RESPONSE_VARIABLE)


@dataclass(frozen=True)
class ConditionConfig:
    condition: str = _key("condition")


@dataclass(frozen=True)
class DelayConfig:
    """``amount``/``unit`` are None when the stored value was unusable."""

    amount: Optional[float] = _key("delayValue", 5.0, _to_amount)
    unit: Optional[DelayUnit] = _key("delayUnit", DelayUnit.MINUTES, _to_unit)

    def duration(self) -> Optional[timedelta]:
        if self.amount is None or self.unit is None or self.amount <= 0:
            return None
        try:
            duration = self.unit.to_timedelta(self.amount)
        except (OverflowError, ValueError):
            return None
        return duration if duration <= MAX_DELAY else None


@dataclass(frozen=True)
class CreateBookingConfig:
    service_id: Optional[str] = _key("serviceId", None, _to_optional_text)
    starts_at: Optional[str] = _key("startsAt", None, _to_optional_text)
    notes: str = _key("notes")


@dataclass(frozen=True)
class SetVariableConfig:
    var_name: str = _key("varName")
    var_value: str = _key("varValue")


@dataclass(frozen=True)
class TagUserConfig:
    tag: str = _key("tag")


@dataclass(frozen=True)
class EndFlowConfig:
    pass


NodeConfig = Union[
    TriggerConfig,
    SendMessageConfig,
    AiStepConfig,
    ConditionConfig,
    DelayConfig,
    CreateBookingConfig,
    SetVariableConfig,
    TagUserConfig,
    EndFlowConfig,
]

CONFIG_TYPES: Dict[NodeKind, Type[Any]] = {
    NodeKind.TRIGGER: TriggerConfig,
    NodeKind.SEND_MESSAGE: SendMessageConfig,
    NodeKind.AI_STEP: AiStepConfig,
    NodeKind.CONDITION: ConditionConfig,
    NodeKind.DELAY: DelayConfig,
    NodeKind.CREATE_BOOKING: CreateBookingConfig,
    NodeKind.SET_VARIABLE: SetVariableConfig,
    NodeKind.TAG_USER: TagUserConfig,
    NodeKind.END_FLOW: EndFlowConfig,
}


def config_from_data(kind: NodeKind, data: Mapping[str, Any]) -> NodeConfig:
    """Build the configuration for ``kind`` from builder node data."""
    config_type = CONFIG_TYPES[kind]
    values = {}
    for f in fields(config_type):
        key = f.metadata["key"]
        if key in data:
            values[f.name] = f.metadata["parse"](data[key])
    return config_type(**values)


def config_to_data(config: NodeConfig) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    for f in fields(config):
        value = getattr(config, f.name)
        if isinstance(value, Enum):
            value = value.value
        if value is None:
            continue
        data[f.metadata["key"]] = value
    return data


def default_config(kind: NodeKind) -> NodeConfig:
    return CONFIG_TYPES[kind]()


# =============================================================================
# Nodes and edges
# =============================================================================


@dataclass
class Node:
    """A typed step in an automation graph."""

    id: str
    kind: NodeKind
    config: NodeConfig = None  # type: ignore[assignment]
    position: Dict[str, float] = field(default_factory=lambda: {"x": 0.0, "y": 0.0})
    label: Optional[str] = None

    def __post_init__(self) -> None:
        if self.config is None:
            self.config = default_config(self.kind)
        expected = CONFIG_TYPES[self.kind]
        if not isinstance(self.config, expected):
            raise TypeError(
                f"Node {self.id} of kind {self.kind.value} needs {expected.__name__}, "
                f"got {type(self.config).__name__}"
            )

    def to_dict(self) -> Dict[str, Any]:
        data = config_to_data(self.config)
        if self.label is not None:
            data["label"] = self.label
        return {
            "id": self.id,
            "type": self.kind.value,
            "position": dict(self.position),
            "data": data,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Node":
        node_id = data.get("id")
        if not node_id:
            raise GraphFormatError("Node is missing an id")

        raw_type = data.get("type")
        try:
            kind = NodeKind(raw_type)
        except ValueError:
            raise GraphFormatError(f"Unknown node type for node {node_id}: {raw_type!r}")

        node_data = {
            k: v for k, v in (data.get("data") or {}).items()
            if k not in UI_ONLY_KEYS
        }
        position = data.get("position") or {}
        return cls(
            id=str(node_id),
            kind=kind,
            config=config_from_data(kind, node_data),
            position={
                "x": float(position.get("x", 0.0)),
                "y": float(position.get("y", 0.0)),
            },
            label=node_data.get("label"),
        )


@dataclass
class Edge:
    """Directed connection between two nodes."""

    source: str
    target: str
    label: Optional[BranchLabel] = None
    id: str = field(default_factory=lambda: f"e_{uuid.uuid4().hex[:12]}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source": self.source,
            "target": self.target,
            "sourceHandle": self.label.value if self.label else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Edge":
        source = data.get("source")
        target = data.get("target")
        if not source or not target:
            raise GraphFormatError("Edge needs both source and target")

        handle = data.get("sourceHandle", data.get("label"))
        label = None
        if handle:
            try:
                label = BranchLabel(str(handle).lower())
            except ValueError:
                raise GraphFormatError(f"Unknown edge label: {handle!r}")

        kwargs: Dict[str, Any] = {}
        if data.get("id"):
            kwargs["id"] = str(data["id"])
        return cls(source=str(source), target=str(target), label=label, **kwargs)


# =============================================================================
# Automation
# =============================================================================


@dataclass
class TriggerParams:
    """Trigger-specific filters."""

    keywords: List[str] = field(default_factory=list)
    target_status: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"keywords": list(self.keywords), "targetStatus": self.target_status}

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "TriggerParams":
        data = data or {}
        keywords = data.get("keywords") or []
        if isinstance(keywords, str):
            keywords = [k.strip() for k in keywords.split(",")]
        return cls(
            keywords=[str(k) for k in keywords if str(k).strip()],
            target_status=data.get("targetStatus", data.get("target_status")),
        )


@dataclass
class Automation:
    """User-authored flow bound to a trigger and a channel."""

    id: str
    tenant_id: str
    name: str
    trigger: TriggerKind = TriggerKind.NEW_CONVERSATION
    description: str = ""
    trigger_params: TriggerParams = field(default_factory=TriggerParams)
    channel_id: Optional[str] = None
    is_active: bool = False
    nodes: List[Node] = field(default_factory=list)
    edges: List[Edge] = field(default_factory=list)
    run_count: int = 0
    version: int = 1
    is_deleted: bool = False
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def can_run(self) -> bool:
        return self.is_active and not self.is_deleted and bool(self.channel_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tenantId": self.tenant_id,
            "name": self.name,
            "description": self.description,
            "trigger": self.trigger.value,
            "triggerParams": self.trigger_params.to_dict(),
            "channelId": self.channel_id,
            "isActive": self.is_active,
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
            "runCount": self.run_count,
            "version": self.version,
            "isDeleted": self.is_deleted,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Automation":
        created_at = data.get("createdAt")
        updated_at = data.get("updatedAt")
        return cls(
            id=data.get("id") or str(uuid.uuid4()),
            tenant_id=data.get("tenantId", ""),
            name=data.get("name", ""),
            description=data.get("description") or "",
            trigger=TriggerKind(data.get("trigger", TriggerKind.NEW_CONVERSATION.value)),
            trigger_params=TriggerParams.from_dict(data.get("triggerParams")),
            channel_id=data.get("channelId"),
            is_active=bool(data.get("isActive", False)),
            nodes=[Node.from_dict(n) for n in data.get("nodes") or []],
            edges=[Edge.from_dict(e) for e in data.get("edges") or []],
            run_count=int(data.get("runCount", 0)),
            version=int(data.get("version", 1)),
            is_deleted=bool(data.get("isDeleted", False)),
            created_at=datetime.fromisoformat(created_at) if created_at else datetime.utcnow(),
            updated_at=datetime.fromisoformat(updated_at) if updated_at else datetime.utcnow(),
        )


def new_trigger_node() -> Node:
    """Starting graph for a fresh automation."""
    return Node(id="trigger", kind=NodeKind.TRIGGER, position={"x": 250.0, "y": 50.0})


__all__ = [
    "NodeKind",
    "TriggerKind",
    "BranchLabel",
    "DelayUnit",
    "AI_RESPONSE_VARIABLE",
    "TriggerConfig",
    "SendMessageConfig",
    "AiStepConfig",
    "ConditionConfig",
    "DelayConfig",
    "CreateBookingConfig",
    "SetVariableConfig",
    "TagUserConfig",
    "EndFlowConfig",
    "NodeConfig",
    "CONFIG_TYPES",
    "config_from_data",
    "config_to_data",
    "Node",
    "Edge",
    "TriggerParams",
    "Automation",
    "new_trigger_node",
]
