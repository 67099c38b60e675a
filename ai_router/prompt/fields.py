"""
Resolution of per-field AI settings that may be typed in ("manual") or wired
from an upstream node ("port").
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Union

from ai_router.schema.models import Edge, Node, ProviderFieldDefinition
from ai_router.schema.values import as_mapping, as_str
from shared.logger import get_logger


DEFAULT_TEMPERATURE = 0.7
TEMPERATURE_RANGE = (0.0, 2.0)

_LEADING_FLOAT = re.compile(r"^[+-]?(?:Infinity|(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?)")

logger = get_logger(__name__)


class ConfigurableField(str, Enum):
    system_prompt = "system_prompt"
    output_example = "output_example"
    temperature = "temperature"
    user_prompt_template = "user_prompt_template"


class FieldSource(str, Enum):
    manual = "manual"
    port = "port"


FieldValue = Union[str, float]


def field_source(field: ConfigurableField, ai_config: Mapping[str, Any]) -> FieldSource:
    """
    Read the source flag from ``field_mapping``; a legacy top-level
    ``{field}_source: "port"`` also selects the port.
    """

    key = f"{field.value}_source"
    mapped = as_mapping(ai_config.get("field_mapping")).get(key)
    if mapped == FieldSource.port.value:
        return FieldSource.port
    if ai_config.get(key) == FieldSource.port.value:
        return FieldSource.port
    return FieldSource.manual


def parse_leading_float(text: str) -> Optional[float]:
    match = _LEADING_FLOAT.match(text.strip())
    if match is None:
        return None
    return float(match.group(0))


def clamp_temperature(value: float) -> float:
    low, high = TEMPERATURE_RANGE
    return max(low, min(high, value))


def _manual_value(field: ConfigurableField, ai_config: Mapping[str, Any]) -> FieldValue:
    configured = ai_config.get(field.value)
    if field is ConfigurableField.temperature:
        if isinstance(configured, (int, float)) and not isinstance(configured, bool):
            return float(configured)
        return DEFAULT_TEMPERATURE
    return configured if isinstance(configured, str) else ""


def resolve_field(
    field: Union[ConfigurableField, str],
    ai_config: Mapping[str, Any],
    all_nodes: Sequence[Node],
    edges: Iterable[Edge],
    current_node_id: str,
    *,
    log: Optional[logging.Logger] = None,
) -> FieldValue:
    """
    Resolve one configurable field of an AI node.

    Manual fields return the configured literal without looking at the
    graph. Port fields read the node wired into the ``targetHandle`` named
    after the field, falling back to the literal when nothing usable is
    connected.
    """

    field = ConfigurableField(field)
    log = log or logger

    if field_source(field, ai_config) is FieldSource.manual:
        return _manual_value(field, ai_config)

    edge = next(
        (item for item in edges if item.to == current_node_id and item.target_handle == field.value),
        None,
    )
    if edge is None:
        log.debug("Port '%s' is not connected, using configured value", field.value)
        return _manual_value(field, ai_config)

    source = next((node for node in all_nodes if node.node_id == edge.from_node), None)
    if source is None:
        log.debug("Source node %s for port '%s' not found, using configured value", edge.from_node, field.value)
        return _manual_value(field, ai_config)

    content = (source.content or "").strip()
    if field is ConfigurableField.temperature:
        parsed = parse_leading_float(content)
        if parsed is None:
            log.debug("Invalid temperature %r in node %s", content, source.node_id)
            return DEFAULT_TEMPERATURE
        return clamp_temperature(parsed)
    return content


def resolve_text_field(
    field: ConfigurableField,
    ai_config: Mapping[str, Any],
    all_nodes: Sequence[Node],
    edges: Iterable[Edge],
    current_node_id: str,
) -> str:
    if field is ConfigurableField.temperature:
        raise ValueError("temperature is numeric; use resolve_temperature")
    return as_str(resolve_field(field, ai_config, all_nodes, edges, current_node_id))


def resolve_temperature(
    ai_config: Mapping[str, Any],
    all_nodes: Sequence[Node],
    edges: Iterable[Edge],
    current_node_id: str,
) -> float:
    value = resolve_field(ConfigurableField.temperature, ai_config, all_nodes, edges, current_node_id)
    return float(value)


@dataclass(frozen=True)
class ResolvedProviderField:
    key: str
    label: str
    value: str


def resolve_provider_fields(
    definitions: Sequence[ProviderFieldDefinition],
    stored_values: Mapping[str, Any],
    previous_nodes: Sequence[Node],
) -> List[ResolvedProviderField]:
    """
    Resolve legacy provider input fields: wired node content wins, then the
    value stored on the AI node, then the definition default.
    """

    nodes_by_id = {node.node_id: node for node in previous_nodes}
    resolved: List[ResolvedProviderField] = []
    for definition in definitions:
        value = ""
        if definition.source_node_id and definition.source_node_id in nodes_by_id:
            value = (nodes_by_id[definition.source_node_id].content or "").strip()
        if not value:
            value = as_str(stored_values.get(definition.key)).strip()
        if not value and definition.default_value:
            value = definition.default_value
        resolved.append(ResolvedProviderField(key=definition.key, label=definition.label or definition.key, value=value))
    return resolved


__all__ = [
    "ConfigurableField",
    "DEFAULT_TEMPERATURE",
    "FieldSource",
    "ResolvedProviderField",
    "clamp_temperature",
    "field_source",
    "parse_leading_float",
    "resolve_field",
    "resolve_provider_fields",
    "resolve_temperature",
    "resolve_text_field",
]
