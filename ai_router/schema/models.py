"""
Pydantic models describing the graph values the router reads and the result
it hands back.

Nodes and edges are owned by the external graph store; the router receives
them as snapshots and never mutates them in place.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ai_router.schema.values import as_mapping


JsonDict = Dict[str, Any]
JsonSchema = Dict[str, Any]


class RouterModel(BaseModel):
    model_config = ConfigDict(
        extra="ignore",
        populate_by_name=True,
    )


class FrozenModel(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
        populate_by_name=True,
        frozen=True,
    )


# -----------------------------
# Enumerations
# -----------------------------
class ContextMode(str, Enum):
    simple = "simple"
    full_json = "full_json"
    raw = "raw"

    @classmethod
    def from_config(cls, value: Any) -> "ContextMode":
        """
        Map the node-level ``context_mode`` setting onto a rendering mode.

        ``clean`` is the legacy name of the raw mode; unknown values (including
        the historical ``simple_json``) render as simple.
        """

        if isinstance(value, ContextMode):
            return value
        normalized = str(value or "").strip().lower()
        if normalized in {"clean", "raw"}:
            return cls.raw
        if normalized == "full_json":
            return cls.full_json
        return cls.simple


class FileDeliveryMode(str, Enum):
    url = "url"
    base64 = "base64"


# -----------------------------
# Graph values
# -----------------------------
class Node(RouterModel):
    node_id: str = Field(min_length=1)
    type: str = "text"
    title: str = ""
    content: Optional[str] = None
    content_type: Optional[str] = None
    meta: JsonDict = Field(default_factory=dict)
    config: JsonDict = Field(default_factory=dict)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def ai_config(self) -> JsonDict:
        return as_mapping(self.config.get("ai"))

    @property
    def display_title(self) -> str:
        return self.title or self.node_id


class Edge(RouterModel):
    from_node: str = Field(alias="from")
    to: str
    source_handle: Optional[str] = Field(default=None, alias="sourceHandle")
    target_handle: Optional[str] = Field(default=None, alias="targetHandle")


class NodeSpec(RouterModel):
    """Payload used to ask the graph store for a new node."""

    type: str
    title: str
    content: Optional[str] = None
    meta: JsonDict = Field(default_factory=dict)
    config: JsonDict = Field(default_factory=dict)


class NextNodeSummary(RouterModel):
    node_id: str
    type: str
    title: str = ""
    short_description: str = ""


class AttachedFile(RouterModel):
    name: str
    type: str = ""
    content: str = ""
    source_node_id: Optional[str] = None


class AiExecutionContext(RouterModel):
    """
    Everything a single AI node execution needs, captured before any network
    call so the run works from one consistent snapshot of the graph.
    """

    project_id: Optional[str] = None
    node: Node
    previous_nodes: List[Node] = Field(default_factory=list)
    next_nodes: List[NextNodeSummary] = Field(default_factory=list)
    schema_ref: str = "TEXT_RESPONSE"
    settings: JsonDict = Field(default_factory=dict)
    project_owner_id: Optional[str] = None
    actor_user_id: Optional[str] = None
    files: List[AttachedFile] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)
    context_mode: Optional[ContextMode] = None
    placeholder_values: Dict[str, str] = Field(default_factory=dict)

    @property
    def ai_config(self) -> JsonDict:
        return self.node.ai_config

    @property
    def resolved_context_mode(self) -> ContextMode:
        if self.context_mode is not None:
            return self.context_mode
        return ContextMode.from_config(self.ai_config.get("context_mode"))

    def all_nodes(self) -> List[Node]:
        """Upstream nodes followed by the executing node, without duplicates."""

        seen = {node.node_id for node in self.previous_nodes}
        nodes = list(self.previous_nodes)
        if self.node.node_id not in seen:
            nodes.append(self.node)
        return nodes


# -----------------------------
# Provider configuration
# -----------------------------
class ProviderFieldDefinition(RouterModel):
    key: str
    id: Optional[str] = None
    label: str = ""
    default_value: Optional[str] = None
    source_node_id: Optional[str] = None


class ProviderConfig(RouterModel):
    """Provider settings after alias normalization and fallback resolution."""

    api_key: Optional[str] = None
    organization: Optional[str] = None
    base_url: Optional[str] = None
    model: Optional[str] = None
    input_fields: List[ProviderFieldDefinition] = Field(default_factory=list)
    extra: JsonDict = Field(default_factory=dict)


# -----------------------------
# Results
# -----------------------------
class RequestPayload(FrozenModel):
    provider: str
    model: Optional[str] = None
    timestamp: str
    request: JsonDict = Field(default_factory=dict)


class PartialFailure(FrozenModel):
    """A sub-job that failed without failing the invocation."""

    index: int
    job_id: Optional[str] = None
    reason: str


class AiResult(FrozenModel):
    output: str
    content_type: str
    logs: Tuple[str, ...] = ()
    provider: Optional[str] = None
    prediction_url: Optional[str] = None
    prediction_id: Optional[str] = None
    raw_output: Any = None
    prediction_payload: Optional[JsonDict] = None
    request_payload: Optional[RequestPayload] = None
    partial_failures: Tuple[PartialFailure, ...] = ()


__all__ = [
    "AiExecutionContext",
    "AiResult",
    "AttachedFile",
    "ContextMode",
    "Edge",
    "FileDeliveryMode",
    "JsonDict",
    "JsonSchema",
    "NextNodeSummary",
    "Node",
    "NodeSpec",
    "PartialFailure",
    "ProviderConfig",
    "ProviderFieldDefinition",
    "RequestPayload",
]
