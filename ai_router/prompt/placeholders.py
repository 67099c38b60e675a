"""
Placeholder templating over the node graph.

A template may contain ``<name>`` or ``<name>="reference"`` tokens. Each token
is filled from the caller-supplied values or from the inline reference, where
a value is first tried as a node reference (``nodeId.meta.path`` or
``nodeId_field``) and only used literally when it does not resolve.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from ai_router.schema.models import AiExecutionContext, Node
from ai_router.schema.values import get_path
from ai_router.stores.base import GraphStore
from shared.logger import get_logger


PLACEHOLDER_PATTERN = re.compile(r'<([^<>]+)>(?:\s*=\s*"([^"]+)")?')
SELF_REFERENCES = frozenset({"self", "current"})


class NodeField(str, Enum):
    content = "content"
    title = "title"
    description = "description"
    meta = "meta"
    attribute = "attribute"


@dataclass(frozen=True)
class FieldReference:
    """A canonical node field plus the nested path to walk under it."""

    field: NodeField
    path: Tuple[str, ...] = ()


_FIELD_ALIASES: Dict[str, FieldReference] = {
    "text": FieldReference(NodeField.content),
    "content": FieldReference(NodeField.content),
    "body": FieldReference(NodeField.content),
    "value": FieldReference(NodeField.content),
    "title": FieldReference(NodeField.title),
    "name": FieldReference(NodeField.title),
    "heading": FieldReference(NodeField.title),
    "description": FieldReference(NodeField.description),
    "desc": FieldReference(NodeField.description),
    "summary": FieldReference(NodeField.description),
    "output": FieldReference(NodeField.meta, ("output",)),
    "result": FieldReference(NodeField.meta, ("output",)),
    "meta": FieldReference(NodeField.meta),
}


def canonical_field(raw: str) -> FieldReference:
    """
    Map a raw field name onto a canonical field.

    Every input maps to something: names outside the alias table become an
    ``attribute`` reference, which is looked up in the node meta first and
    then on the node itself.
    """

    normalized = raw.strip().lower()
    alias = _FIELD_ALIASES.get(normalized)
    if alias is not None:
        return alias
    if normalized.startswith("meta."):
        return FieldReference(NodeField.meta, tuple(part for part in normalized.split(".")[1:] if part))
    return FieldReference(NodeField.attribute, (normalized,))


def normalize_placeholder_values(raw: Any) -> Dict[str, str]:
    """Keep only the string entries of a caller-supplied placeholder mapping."""

    if not isinstance(raw, Mapping):
        return {}
    return {str(key): value for key, value in raw.items() if isinstance(value, str)}


def _stringify(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value, indent=2, ensure_ascii=False, default=str)


def read_node_field(node: Node, reference: FieldReference, remaining: Sequence[str] = ()) -> Any:
    if reference.field is NodeField.content:
        return node.content
    if reference.field is NodeField.title:
        return node.title
    if reference.field is NodeField.description:
        return node.meta.get("description")
    path = [*reference.path, *remaining]
    if reference.field is NodeField.meta:
        return get_path(node.meta, path)
    value = get_path(node.meta, path)
    if value is None and reference.path:
        value = node.model_dump(mode="json").get(reference.path[0])
    return value


@dataclass
class PlaceholderResolution:
    prompt: str
    logs: List[str] = field(default_factory=list)


class PlaceholderResolver:
    def __init__(
        self,
        graph_store: Optional[GraphStore] = None,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.graph_store = graph_store
        self.logger = logger or get_logger(__name__)

    def _find_node(self, node_id: str, ctx: AiExecutionContext) -> Optional[Node]:
        if node_id in SELF_REFERENCES:
            return ctx.node
        for node in ctx.previous_nodes:
            if node.node_id == node_id:
                return node
        if ctx.project_id and self.graph_store is not None:
            return self.graph_store.get_node(ctx.project_id, node_id)
        return None

    def resolve_reference(self, reference: str, ctx: AiExecutionContext) -> Optional[str]:
        """
        Resolve ``nodeId.path`` / ``nodeId_field`` to a string.

        Returns None when the node or the path does not exist; an existing
        empty value resolves to the empty string.
        """

        cleaned = reference.strip().strip("\"'")
        if not cleaned:
            return None

        node_id, path = cleaned, []
        if "." in cleaned:
            node_id, *path = cleaned.split(".")
        elif "_" in cleaned:
            node_id, *path = cleaned.split("_")

        node = self._find_node(node_id, ctx)
        if node is None:
            return None

        first = path[0] if path else NodeField.content.value
        return _stringify(read_node_field(node, canonical_field(first), path[1:]))

    def apply(self, template: str, values: Mapping[str, str], ctx: AiExecutionContext) -> PlaceholderResolution:
        if not template or "<" not in template:
            return PlaceholderResolution(prompt=template)

        logs: List[str] = []
        replacements: List[Tuple[str, str]] = []
        for match in PLACEHOLDER_PATTERN.finditer(template):
            name = match.group(1).strip()
            if not name:
                continue
            template_reference = (match.group(2) or "").strip()
            supplied = values.get(name)
            replacement: Optional[str] = None

            if isinstance(supplied, str) and supplied.strip():
                manual = supplied.strip()
                resolved = self.resolve_reference(manual, ctx)
                if resolved is not None:
                    replacement = resolved
                    logs.append(f'Placeholder <{name}> resolved from input "{manual}"')
                else:
                    replacement = manual
                    logs.append(f'Placeholder <{name}> using literal input "{manual}"')
            elif template_reference:
                resolved = self.resolve_reference(template_reference, ctx)
                if resolved is not None:
                    replacement = resolved
                    logs.append(f'Placeholder <{name}> resolved from template reference "{template_reference}"')
                else:
                    logs.append(f'Placeholder <{name}> reference "{template_reference}" could not be resolved')
            else:
                logs.append(f"Placeholder <{name}> has no value")

            if replacement is not None:
                replacements.append((match.group(0), replacement))

        prompt = template
        for token, value in replacements:
            prompt = prompt.replace(token, value)

        if logs and self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug("Resolved placeholders for node %s: %s", ctx.node.node_id, logs)
        return PlaceholderResolution(prompt=prompt, logs=logs)


__all__ = [
    "FieldReference",
    "NodeField",
    "PLACEHOLDER_PATTERN",
    "PlaceholderResolution",
    "PlaceholderResolver",
    "canonical_field",
    "normalize_placeholder_values",
    "read_node_field",
]
