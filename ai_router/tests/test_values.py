from __future__ import annotations

import math

from ai_router.schema.models import ContextMode, Edge, Node
from ai_router.schema.values import (
    as_bool,
    as_float,
    as_int,
    as_list,
    as_mapping,
    as_optional_str,
    as_str,
    first_present,
    first_str,
    get_path,
    is_blank,
)


def test_accessors_fall_back_on_wrong_types() -> None:
    assert as_mapping(["a"]) == {}
    assert as_list({"a": 1}) == []
    assert as_str(None, "x") == "x"
    assert as_str(True, "x") == "x"
    assert as_str(3) == "3"
    assert as_optional_str("   ") is None
    assert as_optional_str("  value ") == "value"


def test_numeric_accessors() -> None:
    assert as_float(" 0.5 ") == 0.5
    assert as_float("abc", 1.0) == 1.0
    assert as_float(True) is None
    assert as_float(math.nan, 2.0) == 2.0
    assert as_int("12.9") == 12
    assert as_int(None, 7) == 7


def test_bool_accessor_understands_common_spellings() -> None:
    assert as_bool("Yes") is True
    assert as_bool("off") is False
    assert as_bool("maybe", default=True) is True


def test_blank_and_first_helpers() -> None:
    assert is_blank("  ")
    assert is_blank([])
    assert not is_blank(0)
    source = {"a": " ", "b": None, "c": "found", "d": 0}
    assert first_str(source, ("a", "b", "c")) == "found"
    assert first_present(source, ("b", "d")) == 0


def test_get_path_walks_mappings_and_lists() -> None:
    value = {"outer": {"items": [{"name": "first"}, {"name": "second"}]}}
    assert get_path(value, ["outer", "items", "1", "name"]) == "second"
    assert get_path(value, ["outer", "missing"]) is None
    assert get_path(value, ["outer", "items", "5"]) is None


def test_context_mode_maps_legacy_names() -> None:
    assert ContextMode.from_config("clean") is ContextMode.raw
    assert ContextMode.from_config("RAW") is ContextMode.raw
    assert ContextMode.from_config("full_json") is ContextMode.full_json
    assert ContextMode.from_config("simple_json") is ContextMode.simple
    assert ContextMode.from_config(None) is ContextMode.simple


def test_node_and_edge_read_wire_aliases() -> None:
    edge = Edge.model_validate({"from": "a", "to": "b", "targetHandle": "context"})
    assert edge.from_node == "a"
    assert edge.target_handle == "context"

    node = Node(node_id="n1", config={"ai": {"provider": "replicate"}})
    assert node.ai_config == {"provider": "replicate"}
    assert node.display_title == "n1"
