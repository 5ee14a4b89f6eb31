"""
Automation graph model: typed nodes, labeled edges, adjacency index and
validation.
"""

from .base import (
    AI_RESPONSE_VARIABLE,
    AiStepConfig,
    Automation,
    BranchLabel,
    CONFIG_TYPES,
    ConditionConfig,
    CreateBookingConfig,
    DelayConfig,
    DelayUnit,
    Edge,
    EndFlowConfig,
    Node,
    NodeConfig,
    NodeKind,
    SendMessageConfig,
    SetVariableConfig,
    TagUserConfig,
    TriggerConfig,
    TriggerKind,
    TriggerParams,
    new_trigger_node,
)
from .graph import FlowGraph
from .validator import (
    GraphValidator,
    IssueCode,
    Severity,
    ValidationIssue,
    ValidationResult,
)

__all__ = [
    "AI_RESPONSE_VARIABLE",
    "AiStepConfig",
    "Automation",
    "BranchLabel",
    "CONFIG_TYPES",
    "ConditionConfig",
    "CreateBookingConfig",
    "DelayConfig",
    "DelayUnit",
    "Edge",
    "EndFlowConfig",
    "Node",
    "NodeConfig",
    "NodeKind",
    "SendMessageConfig",
    "SetVariableConfig",
    "TagUserConfig",
    "TriggerConfig",
    "TriggerKind",
    "TriggerParams",
    "new_trigger_node",
    "FlowGraph",
    "GraphValidator",
    "IssueCode",
    "Severity",
    "ValidationIssue",
    "ValidationResult",
]
