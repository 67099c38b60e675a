from __future__ import annotations

import pytest

from ai_router.prompt.fields import (
    ConfigurableField,
    FieldSource,
    field_source,
    resolve_field,
    resolve_provider_fields,
    resolve_temperature,
    resolve_text_field,
)
from ai_router.schema.models import Edge, Node, ProviderFieldDefinition


class ExplodingEdges:
    def __iter__(self):
        raise AssertionError("manual fields must not read edges")


def _port_edge(source: str, handle: str) -> Edge:
    return Edge(from_node=source, to="ai", target_handle=handle)


def test_manual_field_never_reads_edges() -> None:
    config = {"system_prompt": "Be brief"}
    assert resolve_field(ConfigurableField.system_prompt, config, [], ExplodingEdges(), "ai") == "Be brief"


def test_port_without_edge_falls_back_to_manual_value() -> None:
    config = {"system_prompt": "fallback", "field_mapping": {"system_prompt_source": "port"}}
    assert resolve_text_field(ConfigurableField.system_prompt, config, [], [], "ai") == "fallback"


def test_port_reads_connected_node_content() -> None:
    config = {"field_mapping": {"system_prompt_source": "port"}}
    nodes = [Node(node_id="src", content="  From port  ")]
    edges = [_port_edge("src", "system_prompt")]
    assert resolve_text_field(ConfigurableField.system_prompt, config, nodes, edges, "ai") == "From port"


def test_legacy_top_level_source_flag() -> None:
    assert field_source(ConfigurableField.output_example, {"output_example_source": "port"}) is FieldSource.port
    assert field_source(ConfigurableField.output_example, {}) is FieldSource.manual


@pytest.mark.parametrize(
    "content, expected",
    [
        ("1.3", 1.3),
        ("5", 2.0),
        ("-1", 0.0),
        ("0.4 degrees", 0.4),
        ("warm", 0.7),
        ("", 0.7),
        ("Infinity", 2.0),
        ("-Infinity below", 0.0),
        ("infinity", 0.7),
    ],
)
def test_port_temperature_is_clamped_or_defaulted(content: str, expected: float) -> None:
    config = {"field_mapping": {"temperature_source": "port"}, "temperature": 0.2}
    nodes = [Node(node_id="t", content=content)]
    assert resolve_temperature(config, nodes, [_port_edge("t", "temperature")], "ai") == pytest.approx(expected)


def test_manual_temperature_defaults_when_not_numeric() -> None:
    assert resolve_temperature({"temperature": 1.1}, [], [], "ai") == pytest.approx(1.1)
    assert resolve_temperature({"temperature": "hot"}, [], [], "ai") == pytest.approx(0.7)


def test_port_source_node_missing_uses_manual_value() -> None:
    config = {"field_mapping": {"output_example_source": "port"}, "output_example": "{}"}
    edges = [_port_edge("gone", "output_example")]
    assert resolve_text_field(ConfigurableField.output_example, config, [], edges, "ai") == "{}"


def test_temperature_is_not_a_text_field() -> None:
    with pytest.raises(ValueError):
        resolve_text_field(ConfigurableField.temperature, {}, [], [], "ai")


def test_provider_fields_prefer_wired_content_then_stored_then_default() -> None:
    definitions = [
        ProviderFieldDefinition(key="style", label="Style", source_node_id="src"),
        ProviderFieldDefinition(key="mood", default_value="calm"),
        ProviderFieldDefinition(key="seed", default_value="1"),
    ]
    resolved = resolve_provider_fields(
        definitions,
        {"seed": "42"},
        [Node(node_id="src", content="noir")],
    )
    assert [(item.key, item.label, item.value) for item in resolved] == [
        ("style", "Style", "noir"),
        ("mood", "mood", "calm"),
        ("seed", "seed", "42"),
    ]
