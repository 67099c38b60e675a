"""
In-memory graph and integration stores.

They back the command line runner and the test-suite; a deployment wires the
router to its real persistence layer through the same interfaces.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple
from uuid import uuid4

from ai_router.schema.models import Edge, JsonDict, Node, NodeSpec
from ai_router.stores.base import IntegrationRecord


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class NodeNotFoundError(KeyError):
    """Raised when a node id is not present in the project."""


class InMemoryGraphStore:
    def __init__(self) -> None:
        self._nodes: Dict[str, Dict[str, Node]] = defaultdict(dict)
        self._edges: Dict[str, List[Edge]] = defaultdict(list)
        self._lock = Lock()

    def add_node(self, project_id: str, node: Node) -> Node:
        with self._lock:
            self._nodes[project_id][node.node_id] = node
        return node

    def get_node(self, project_id: str, node_id: str) -> Optional[Node]:
        return self._nodes.get(project_id, {}).get(node_id)

    def list_nodes(self, project_id: str) -> List[Node]:
        return list(self._nodes.get(project_id, {}).values())

    def list_edges(self, project_id: str) -> List[Edge]:
        return list(self._edges.get(project_id, []))

    def update_node_meta(self, project_id: str, node_id: str, meta: JsonDict) -> Node:
        with self._lock:
            node = self._nodes.get(project_id, {}).get(node_id)
            if node is None:
                raise NodeNotFoundError(f"Node '{node_id}' not found in project '{project_id}'")
            updated = node.model_copy(update={"meta": {**node.meta, **meta}, "updated_at": _utcnow()})
            self._nodes[project_id][node_id] = updated
        return updated

    def create_node(self, project_id: str, spec: NodeSpec) -> Node:
        now = _utcnow()
        node = Node(
            node_id=f"n_{uuid4().hex[:12]}",
            type=spec.type,
            title=spec.title,
            content=spec.content,
            meta=dict(spec.meta),
            config=dict(spec.config),
            created_at=now,
            updated_at=now,
        )
        return self.add_node(project_id, node)

    def add_edge(self, project_id: str, from_node: str, to_node: str) -> Edge:
        edge = Edge(from_node=from_node, to=to_node)
        with self._lock:
            self._edges[project_id].append(edge)
        return edge

    def load_snapshot(self, project_id: str, nodes: Iterable[Mapping[str, Any]], edges: Iterable[Mapping[str, Any]]) -> None:
        for raw in nodes:
            self.add_node(project_id, Node.model_validate(raw))
        with self._lock:
            self._edges[project_id].extend(Edge.model_validate(raw) for raw in edges)


class InMemoryIntegrationStore:
    def __init__(self) -> None:
        self._records: Dict[Tuple[str, str], IntegrationRecord] = {}

    def put(self, user_id: str, record: IntegrationRecord) -> None:
        self._records[(record.provider_id, user_id)] = record

    def get_integration(self, provider_id: str, user_id: str) -> Optional[IntegrationRecord]:
        return self._records.get((provider_id, user_id))
