import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import BaseModel

from ..schemas.graph import (
    EdgeCreate,
    GraphData,
    GraphEdge,
    GraphNode,
    NodeCreate,
    size_for,
)
from .allocator import IdAllocator, PositionAllocator

logger = logging.getLogger(__name__)

NodeInput = Union[NodeCreate, GraphNode, Dict[str, Any]]
EdgeInput = Union[EdgeCreate, GraphEdge, Dict[str, Any]]


def _as_dict(value) -> Dict[str, Any]:
    if isinstance(value, BaseModel):
        return value.model_dump(exclude_none=True)
    return dict(value)


class KnowledgeGraphService:
    """
    In-memory node/edge store for one conversation session.

    Every mutation of the graph goes through this class so id uniqueness and
    the node -> edge cascade are enforced in one place. Objects returned by
    add_node/add_edge/update_node and the node()/edge() accessors are the
    stored instances and must be treated as read-only; get_graph() returns
    a detached copy.
    """

    def __init__(self, position_allocator: Optional[PositionAllocator] = None):
        self.positions = position_allocator or PositionAllocator()
        self.ids = IdAllocator()
        self._nodes: Dict[str, GraphNode] = {}
        self._edges: Dict[str, GraphEdge] = {}
        self._incoming = defaultdict(list)
        self._outgoing = defaultdict(list)

    # --- Reads ---

    def get_graph(self) -> GraphData:
        return GraphData(
            nodes=[n.model_copy(deep=True) for n in self._nodes.values()],
            edges=[e.model_copy(deep=True) for e in self._edges.values()],
        )

    def export_json(self) -> str:
        return self.get_graph().model_dump_json(indent=2)

    def node(self, node_id: str) -> Optional[GraphNode]:
        return self._nodes.get(node_id)

    def edge(self, edge_id: str) -> Optional[GraphEdge]:
        return self._edges.get(edge_id)

    def has_node(self, node_id: str) -> bool:
        return node_id in self._nodes

    def nodes(self) -> List[GraphNode]:
        """Nodes in insertion order."""
        return list(self._nodes.values())

    def edges(self) -> List[GraphEdge]:
        return list(self._edges.values())

    def node_count(self) -> int:
        return len(self._nodes)

    def edge_count(self) -> int:
        return len(self._edges)

    def parents(self, node_id: str) -> List[str]:
        seen = []
        for edge_id in self._incoming.get(node_id, ()):
            source = self._edges[edge_id].source
            if source not in seen:
                seen.append(source)
        return seen

    def children(self, node_id: str) -> List[str]:
        seen = []
        for edge_id in self._outgoing.get(node_id, ()):
            target = self._edges[edge_id].target
            if target not in seen:
                seen.append(target)
        return seen

    def edges_touching(self, node_id: str) -> List[GraphEdge]:
        ids = list(self._outgoing.get(node_id, ()))
        ids += [e for e in self._incoming.get(node_id, ()) if e not in ids]
        return [self._edges[e] for e in ids]

    def degree(self, node_id: str) -> int:
        """Total edge count (in + out). A self-loop counts once."""
        return len(self.edges_touching(node_id))

    def has_edge_between(self, a: str, b: str) -> bool:
        return self.find_edge(a, b) is not None or self.find_edge(b, a) is not None

    def find_edge(self, source: str, target: str) -> Optional[GraphEdge]:
        for edge_id in self._outgoing.get(source, ()):
            edge = self._edges[edge_id]
            if edge.target == target:
                return edge
        return None

    def find_node_by_label(self, label: str) -> Optional[GraphNode]:
        key = (label or "").strip().lower()
        for node in self._nodes.values():
            if node.label.strip().lower() == key:
                return node
        return None

    def labels(self) -> List[str]:
        return [n.label for n in self._nodes.values()]

    # --- Writes ---

    def add_node(self, node_input: NodeInput) -> GraphNode:
        data = NodeCreate.model_validate(_as_dict(node_input))
        node = self._build_node(data, self.ids.node_id(), list(self._nodes.values()))
        self._nodes[node.id] = node
        logger.debug("Added node %s (%s)", node.id, node.label)
        return node

    def add_edge(self, source: str, target: str, label: Optional[str] = None,
                 type: str = "default", animated: bool = False) -> GraphEdge:
        # Endpoints are not checked here; the reconciler resolves them first.
        edge = GraphEdge(
            id=self.ids.edge_id(),
            source=source,
            target=target,
            label=label,
            type=type,
            animated=animated,
        )
        self._index_edge(edge)
        logger.debug("Added edge %s: %s -> %s", edge.id, source, target)
        return edge

    def remove_node(self, node_id: str) -> bool:
        if node_id not in self._nodes:
            return False
        for edge in self.edges_touching(node_id):
            self.remove_edge(edge.id)
        del self._nodes[node_id]
        self._incoming.pop(node_id, None)
        self._outgoing.pop(node_id, None)
        self.ids.release(node_id)
        logger.debug("Removed node %s", node_id)
        return True

    def remove_edge(self, edge_id: str) -> bool:
        edge = self._edges.pop(edge_id, None)
        if edge is None:
            return False
        self._discard(self._outgoing, edge.source, edge_id)
        self._discard(self._incoming, edge.target, edge_id)
        return True

    def update_node(self, node_id: str, fields: Dict[str, Any]) -> Optional[GraphNode]:
        """
        Shallow-merges `fields` into the node. `metadata` is merged one level
        deep; `id` and `created_at` cannot be changed.
        """
        node = self._nodes.get(node_id)
        if node is None:
            return None

        data = node.model_dump()
        for key, value in fields.items():
            if key in ("id", "created_at"):
                continue
            if isinstance(value, BaseModel):
                value = value.model_dump(exclude_unset=True) if key == "metadata" else value.model_dump()
            if key == "metadata":
                if value is not None and not isinstance(value, dict):
                    raise ValueError("metadata must be an object")
                merged = dict(data["metadata"])
                merged.update(value or {})
                value = merged
            data[key] = value
        if "importance" in fields and "size" not in fields:
            data["size"] = size_for(data["importance"])

        updated = GraphNode.model_validate(data)
        self._nodes[node_id] = updated
        return updated

    def replace_graph(self, nodes: Iterable[NodeInput], edges: Iterable[EdgeInput]) -> GraphData:
        """
        Swaps the whole graph. Missing or clashing ids are regenerated and
        missing positions allocated the same way add_node does. The new
        collections are built first, so a validation error leaves the
        current graph untouched.
        """
        ids = IdAllocator()
        new_nodes: Dict[str, GraphNode] = {}
        for item in nodes:
            raw = _as_dict(item)
            data = NodeCreate.model_validate(raw)
            node_id = data.id if data.id and ids.reserve(data.id) else ids.node_id()
            node = self._build_node(data, node_id, list(new_nodes.values()))
            if raw.get("created_at"):
                node = GraphNode.model_validate({**node.model_dump(), "created_at": raw["created_at"]})
            new_nodes[node_id] = node

        new_edges = []
        for item in edges:
            data = EdgeCreate.model_validate(_as_dict(item))
            edge_id = data.id if data.id and ids.reserve(data.id) else ids.edge_id()
            new_edges.append(GraphEdge(
                id=edge_id,
                source=data.source,
                target=data.target,
                label=data.label,
                type=data.type,
                animated=data.animated,
            ))

        self.clear()
        self.ids = ids
        self._nodes = new_nodes
        for edge in new_edges:
            self._index_edge(edge)
        logger.info("Graph replaced: %d nodes, %d edges", len(self._nodes), len(self._edges))
        return self.get_graph()

    def clear(self):
        self._nodes = {}
        self._edges = {}
        self._incoming = defaultdict(list)
        self._outgoing = defaultdict(list)

    # --- Internals ---

    def _build_node(self, data: NodeCreate, node_id: str, placed: List[GraphNode]) -> GraphNode:
        size = data.size or size_for(data.importance)
        position = data.position or self.positions.allocate(placed, size)
        return GraphNode(
            id=node_id,
            label=data.label,
            category=data.category,
            importance=data.importance,
            position=position,
            size=size,
            metadata=data.metadata,
            created_at=datetime.now(timezone.utc),
        )

    def _index_edge(self, edge: GraphEdge):
        self._edges[edge.id] = edge
        self._outgoing[edge.source].append(edge.id)
        self._incoming[edge.target].append(edge.id)

    @staticmethod
    def _discard(index, key, edge_id):
        ids = index.get(key)
        if ids and edge_id in ids:
            ids.remove(edge_id)
