"""
Automation Graph Validator.

Validates graph structure, branch labels, and node configurations before an
automation is saved.
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set

import structlog

from ..conditions import ConditionEvaluator
from ..config import get_settings
from ..errors import GraphValidationError
from .base import (
    AiStepConfig,
    Automation,
    ConditionConfig,
    DelayConfig,
    NodeKind,
    SendMessageConfig,
    SetVariableConfig,
    TagUserConfig,
)
from .graph import FlowGraph

logger = structlog.get_logger(__name__)


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class IssueCode(str, Enum):
    """Stable identifiers for validation findings."""

    MISSING_TRIGGER = "MISSING_TRIGGER"
    DUPLICATE_TRIGGER = "DUPLICATE_TRIGGER"
    DUPLICATE_NODE_ID = "DUPLICATE_NODE_ID"
    DUPLICATE_EDGE_ID = "DUPLICATE_EDGE_ID"
    DANGLING_EDGE = "DANGLING_EDGE"
    TRIGGER_HAS_INCOMING = "TRIGGER_HAS_INCOMING"
    END_HAS_OUTGOING = "END_HAS_OUTGOING"
    AMBIGUOUS_BRANCH = "AMBIGUOUS_BRANCH"
    MISSING_BRANCH = "MISSING_BRANCH"
    BRANCHING_OUT_EDGES = "BRANCHING_OUT_EDGES"
    LABEL_ON_NON_CONDITION = "LABEL_ON_NON_CONDITION"
    INVALID_CONFIG = "INVALID_CONFIG"
    TOO_MANY_NODES = "TOO_MANY_NODES"
    UNREACHABLE_NODE = "UNREACHABLE_NODE"
    DEAD_END = "DEAD_END"
    NO_END_NODE = "NO_END_NODE"
    INVALID_CONDITION = "INVALID_CONDITION"
    EMPTY_MESSAGE = "EMPTY_MESSAGE"


@dataclass
class ValidationIssue:
    """A validation issue found in an automation graph."""

    severity: Severity
    code: IssueCode
    message: str
    node_id: Optional[str] = None
    edge_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "severity": self.severity.value,
            "code": self.code.value,
            "message": self.message,
            "nodeId": self.node_id,
            "edgeId": self.edge_id,
        }


@dataclass
class ValidationResult:
    """Result of graph validation."""

    valid: bool
    issues: List[ValidationIssue] = field(default_factory=list)
    checked_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def errors(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == Severity.ERROR]

    @property
    def warnings(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == Severity.WARNING]

    def codes(self) -> Set[IssueCode]:
        return {i.code for i in self.issues}

    def raise_for_errors(self) -> None:
        errors = self.errors
        if errors:
            summary = "; ".join(i.message for i in errors[:5])
            raise GraphValidationError(f"Automation graph is invalid: {summary}", errors)


def _error(code: IssueCode, message: str, **kwargs: Optional[str]) -> ValidationIssue:
    return ValidationIssue(Severity.ERROR, code, message, **kwargs)


def _warning(code: IssueCode, message: str, **kwargs: Optional[str]) -> ValidationIssue:
    return ValidationIssue(Severity.WARNING, code, message, **kwargs)


class GraphValidator:
    """
    Validates automation graphs.

    Checks:
    - Structure (one trigger, unique ids, edges point at real nodes)
    - Branching (condition labels, linear flow elsewhere)
    - Node configuration
    - Reachability and dead ends
    - Size limits

    Cycles are allowed; runaway loops are stopped by the per-run step limit.
    """

    def __init__(
        self,
        evaluator: Optional[ConditionEvaluator] = None,
        max_nodes: Optional[int] = None,
    ):
        settings = get_settings()
        self.evaluator = evaluator or ConditionEvaluator.from_settings(settings.engine)
        self.max_nodes = max_nodes or settings.engine.max_nodes_per_automation

    def validate(self, automation: Automation) -> ValidationResult:
        """
        Validate an automation graph.

        Args:
            automation: Automation to validate

        Returns:
            ValidationResult with issues found
        """
        graph = FlowGraph.from_automation(automation)
        issues: List[ValidationIssue] = []

        issues.extend(self._validate_structure(automation, graph))
        issues.extend(self._validate_edges(automation))
        issues.extend(self._validate_branching(graph))
        issues.extend(self._validate_nodes(graph))
        issues.extend(self._validate_reachability(graph))
        issues.extend(self._validate_limits(automation))

        result = ValidationResult(
            valid=all(i.severity != Severity.ERROR for i in issues),
            issues=issues,
            checked_at=datetime.utcnow(),
        )
        if not result.valid:
            logger.info(
                "automation_validation_failed",
                automation_id=automation.id,
                errors=[i.code.value for i in result.errors],
            )
        return result

    def _validate_structure(self, automation: Automation, graph: FlowGraph) -> List[ValidationIssue]:
        issues = []

        triggers = graph.trigger_nodes()
        if not triggers:
            issues.append(_error(IssueCode.MISSING_TRIGGER, "Automation must have a trigger node"))
        for extra in triggers[1:]:
            issues.append(
                _error(
                    IssueCode.DUPLICATE_TRIGGER,
                    "Automation must have exactly one trigger node",
                    node_id=extra.id,
                )
            )

        for node_id, count in Counter(n.id for n in automation.nodes).items():
            if count > 1:
                issues.append(
                    _error(IssueCode.DUPLICATE_NODE_ID, f"Duplicate node ID: {node_id}", node_id=node_id)
                )

        for edge_id, count in Counter(e.id for e in automation.edges).items():
            if count > 1:
                issues.append(
                    _error(IssueCode.DUPLICATE_EDGE_ID, f"Duplicate edge ID: {edge_id}", edge_id=edge_id)
                )

        if not any(n.kind == NodeKind.END_FLOW for n in graph.nodes):
            issues.append(
                _warning(IssueCode.NO_END_NODE, "Automation has no endFlow node")
            )

        return issues

    def _validate_edges(self, automation: Automation) -> List[ValidationIssue]:
        issues = []
        node_ids = {n.id for n in automation.nodes}

        for edge in automation.edges:
            for end in (edge.source, edge.target):
                if end not in node_ids:
                    issues.append(
                        _error(
                            IssueCode.DANGLING_EDGE,
                            f"Edge references unknown node: {end}",
                            edge_id=edge.id,
                        )
                    )
        return issues

    def _validate_branching(self, graph: FlowGraph) -> List[ValidationIssue]:
        issues = []

        for node in graph.nodes:
            outgoing = graph.outgoing(node.id)

            if node.kind == NodeKind.TRIGGER and graph.incoming(node.id):
                issues.append(
                    _error(
                        IssueCode.TRIGGER_HAS_INCOMING,
                        "Trigger node cannot have incoming edges",
                        node_id=node.id,
                    )
                )

            if node.kind == NodeKind.END_FLOW:
                if outgoing:
                    issues.append(
                        _error(
                            IssueCode.END_HAS_OUTGOING,
                            "endFlow node cannot have outgoing edges",
                            node_id=node.id,
                        )
                    )
                continue

            if node.kind == NodeKind.CONDITION:
                issues.extend(self._validate_condition_edges(node.id, outgoing))
                continue

            labeled = [e for e in outgoing if e.label is not None]
            for edge in labeled:
                issues.append(
                    _error(
                        IssueCode.LABEL_ON_NON_CONDITION,
                        f"Only condition nodes can have '{edge.label.value}' edges",
                        node_id=node.id,
                        edge_id=edge.id,
                    )
                )

            if len(outgoing) > 1:
                issues.append(
                    _error(
                        IssueCode.BRANCHING_OUT_EDGES,
                        f"{node.kind.value} node has {len(outgoing)} outgoing edges; only one is allowed",
                        node_id=node.id,
                    )
                )
            elif not outgoing:
                issues.append(
                    _warning(
                        IssueCode.DEAD_END,
                        "Node has no outgoing edge; runs will stop here",
                        node_id=node.id,
                    )
                )

        return issues

    def _validate_condition_edges(self, node_id: str, outgoing: list) -> List[ValidationIssue]:
        issues = []

        if not outgoing:
            issues.append(
                _error(
                    IssueCode.MISSING_BRANCH,
                    "Condition node needs at least one outgoing branch",
                    node_id=node_id,
                )
            )
            return issues

        counts = Counter(e.label for e in outgoing)
        for label, count in counts.items():
            if count > 1:
                name = label.value if label else "unlabeled"
                issues.append(
                    _error(
                        IssueCode.AMBIGUOUS_BRANCH,
                        f"Condition node has {count} {name} edges",
                        node_id=node_id,
                    )
                )
        return issues

    def _validate_nodes(self, graph: FlowGraph) -> List[ValidationIssue]:
        issues = []

        for node in graph.nodes:
            config = node.config

            if isinstance(config, DelayConfig) and config.duration() is None:
                issues.append(
                    _error(
                        IssueCode.INVALID_CONFIG,
                        "Delay needs a positive amount up to 365 days and a unit (seconds, minutes, hours, days)",
                        node_id=node.id,
                    )
                )
            elif isinstance(config, SetVariableConfig) and not config.var_name.strip():
                issues.append(
                    _error(IssueCode.INVALID_CONFIG, "setVariable needs a variable name", node_id=node.id)
                )
            elif isinstance(config, TagUserConfig) and not config.tag.strip():
                issues.append(
                    _error(IssueCode.INVALID_CONFIG, "tagUser needs a tag", node_id=node.id)
                )
            elif isinstance(config, AiStepConfig):
                if not config.prompt.strip():
                    issues.append(
                        _error(IssueCode.INVALID_CONFIG, "aiStep needs a prompt", node_id=node.id)
                    )
                if not config.output_variable.strip():
                    issues.append(
                        _error(IssueCode.INVALID_CONFIG, "aiStep needs an output variable", node_id=node.id)
                    )
            elif isinstance(config, SendMessageConfig) and not config.message.strip():
                issues.append(
                    _warning(IssueCode.EMPTY_MESSAGE, "sendMessage has no text", node_id=node.id)
                )
            elif isinstance(config, ConditionConfig):
                problem = self.evaluator.check(config.condition)
                if problem:
                    issues.append(
                        _warning(
                            IssueCode.INVALID_CONDITION,
                            f"Condition will always be false: {problem}",
                            node_id=node.id,
                        )
                    )

        return issues

    def _validate_reachability(self, graph: FlowGraph) -> List[ValidationIssue]:
        triggers = graph.trigger_nodes()
        if not triggers:
            return []

        reachable = graph.reachable_from(triggers[0].id)
        return [
            _warning(
                IssueCode.UNREACHABLE_NODE,
                "Node is not reachable from the trigger",
                node_id=node.id,
            )
            for node in graph.nodes
            if node.id not in reachable
        ]

    def _validate_limits(self, automation: Automation) -> List[ValidationIssue]:
        if len(automation.nodes) > self.max_nodes:
            return [
                _error(
                    IssueCode.TOO_MANY_NODES,
                    f"Automation exceeds maximum nodes ({len(automation.nodes)} > {self.max_nodes})",
                )
            ]
        return []
