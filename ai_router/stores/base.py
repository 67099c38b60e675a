from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from ai_router.schema.models import Edge, JsonDict, Node, NodeSpec


@dataclass(slots=True)
class IntegrationRecord:
    """Stored credentials for one provider integration of one user."""

    provider_id: str
    enabled: bool = True
    config: Dict[str, Any] = field(default_factory=dict)


class GraphStore(Protocol):
    """Interface of the graph/persistence store the router reads from and patches."""

    def get_node(self, project_id: str, node_id: str) -> Optional[Node]:
        """Return the node or None when it does not exist."""

    def list_nodes(self, project_id: str) -> List[Node]:
        """Return every node of the project."""

    def update_node_meta(self, project_id: str, node_id: str, meta: JsonDict) -> Node:
        """Merge ``meta`` into the node meta and return the updated node."""

    def create_node(self, project_id: str, spec: NodeSpec) -> Node:
        """Create a node from ``spec`` and return it."""

    def add_edge(self, project_id: str, from_node: str, to_node: str) -> Edge:
        """Connect two nodes."""


class IntegrationStore(Protocol):
    """Interface of the per-user credential store."""

    def get_integration(self, provider_id: str, user_id: str) -> Optional[IntegrationRecord]:
        """Return the user's integration for ``provider_id`` or None."""
