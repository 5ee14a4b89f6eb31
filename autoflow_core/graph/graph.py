"""
Adjacency index over an automation's nodes and edges.
"""

from collections import deque
from typing import Dict, Iterable, List, Optional, Set

from ..errors import GraphValidationError
from .base import Automation, BranchLabel, Edge, Node, NodeKind


class FlowGraph:
    """
    Arena of nodes keyed by id with outgoing/incoming edge indexes.

    Nodes never reference each other directly, so removing a node only has
    to drop its incident edges and cycles need no special handling. When the
    input contains duplicate ids the first occurrence wins; the validator
    reports duplicates separately.
    """

    def __init__(self, nodes: Iterable[Node] = (), edges: Iterable[Edge] = ()):
        self._nodes: Dict[str, Node] = {}
        self._edges: Dict[str, Edge] = {}
        self._outgoing: Dict[str, List[str]] = {}
        self._incoming: Dict[str, List[str]] = {}

        for node in nodes:
            if node.id not in self._nodes:
                self.add_node(node)
        for edge in edges:
            if edge.id in self._edges:
                continue
            if edge.source in self._nodes and edge.target in self._nodes:
                self.add_edge(edge)

    @classmethod
    def from_automation(cls, automation: Automation) -> "FlowGraph":
        return cls(automation.nodes, automation.edges)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    @property
    def nodes(self) -> List[Node]:
        return list(self._nodes.values())

    @property
    def edges(self) -> List[Edge]:
        return list(self._edges.values())

    def node(self, node_id: str) -> Optional[Node]:
        return self._nodes.get(node_id)

    def outgoing(self, node_id: str) -> List[Edge]:
        return [self._edges[eid] for eid in self._outgoing.get(node_id, [])]

    def incoming(self, node_id: str) -> List[Edge]:
        return [self._edges[eid] for eid in self._incoming.get(node_id, [])]

    def trigger_nodes(self) -> List[Node]:
        return [n for n in self._nodes.values() if n.kind == NodeKind.TRIGGER]

    def entry_node(self) -> Node:
        """The unique trigger node."""
        triggers = self.trigger_nodes()
        if len(triggers) != 1:
            raise GraphValidationError(
                f"Automation must have exactly one trigger node, found {len(triggers)}"
            )
        return triggers[0]

    # -------------------------------------------------------------------------
    # Editing
    # -------------------------------------------------------------------------

    def add_node(self, node: Node) -> None:
        if node.id in self._nodes:
            raise ValueError(f"Node already exists: {node.id}")
        self._nodes[node.id] = node
        self._outgoing[node.id] = []
        self._incoming[node.id] = []

    def remove_node(self, node_id: str) -> Node:
        """Remove a node and every edge touching it."""
        node = self._nodes.pop(node_id)
        incident = set(self._outgoing.pop(node_id, [])) | set(self._incoming.pop(node_id, []))
        for edge_id in incident:
            self._unlink(edge_id)
        return node

    def add_edge(self, edge: Edge) -> None:
        if edge.source not in self._nodes:
            raise KeyError(f"Edge source not found: {edge.source}")
        if edge.target not in self._nodes:
            raise KeyError(f"Edge target not found: {edge.target}")
        if edge.id in self._edges:
            raise ValueError(f"Edge already exists: {edge.id}")
        self._edges[edge.id] = edge
        self._outgoing[edge.source].append(edge.id)
        self._incoming[edge.target].append(edge.id)

    def remove_edge(self, edge_id: str) -> Edge:
        edge = self._edges[edge_id]
        self._unlink(edge_id)
        return edge

    def _unlink(self, edge_id: str) -> None:
        edge = self._edges.pop(edge_id, None)
        if edge is None:
            return
        outgoing = self._outgoing.get(edge.source)
        if outgoing and edge_id in outgoing:
            outgoing.remove(edge_id)
        incoming = self._incoming.get(edge.target)
        if incoming and edge_id in incoming:
            incoming.remove(edge_id)

    # -------------------------------------------------------------------------
    # Traversal
    # -------------------------------------------------------------------------

    def reachable_from(self, node_id: str) -> Set[str]:
        """Breadth-first set of node ids reachable from ``node_id``."""
        if node_id not in self._nodes:
            return set()

        reachable: Set[str] = set()
        queue = deque([node_id])
        while queue:
            current = queue.popleft()
            if current in reachable:
                continue
            reachable.add(current)
            queue.extend(e.target for e in self.outgoing(current))
        return reachable

    def next_node_id(
        self,
        node_id: str,
        branch: Optional[BranchLabel] = None,
    ) -> Optional[str]:
        """
        Resolve where execution goes after ``node_id``.

        A branch prefers the edge carrying that label and falls back to an
        unlabeled edge. Returns None when there is nowhere to go.
        """
        edges = self.outgoing(node_id)

        if branch is not None:
            for edge in edges:
                if edge.label == branch:
                    return edge.target

        for edge in edges:
            if edge.label is None:
                return edge.target
        return None

