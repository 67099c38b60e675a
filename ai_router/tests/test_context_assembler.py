from __future__ import annotations

from pathlib import Path

from ai_router.context.assembler import (
    TRUNCATION_MARKER,
    ContextAssembler,
    resolve_file_delivery_mode,
    summarize_files,
    summarize_next_nodes,
)
from ai_router.context.assets import LocalAssetResolver
from ai_router.schema.models import AttachedFile, ContextMode, FileDeliveryMode, NextNodeSummary, Node


def _assembler(tmp_path: Path, **kwargs) -> ContextAssembler:
    return ContextAssembler(LocalAssetResolver("http://app.test/", tmp_path), **kwargs)


def test_raw_mode_joins_values_with_delimiter(tmp_path: Path) -> None:
    nodes = [
        Node(node_id="a", content="First"),
        Node(node_id="b", content="   "),
        Node(node_id="c", content="Second"),
    ]
    assert _assembler(tmp_path).assemble(nodes, ContextMode.raw) == "First ; Second"


def test_raw_mode_uses_media_urls(tmp_path: Path) -> None:
    nodes = [
        Node(node_id="img", type="image", meta={"image_url": "/uploads/p/cat.png"}),
        Node(node_id="vid", type="video", meta={"video_url": "https://cdn.test/v.mp4"}),
        Node(node_id="doc", type="pdf", content="fallback text"),
    ]
    rendered = _assembler(tmp_path).assemble(nodes, ContextMode.raw)
    assert rendered == "http://app.test/uploads/p/cat.png ; https://cdn.test/v.mp4 ; fallback text"


def test_empty_node_list_renders_nothing(tmp_path: Path) -> None:
    assert _assembler(tmp_path).assemble([], ContextMode.full_json) == ""


def test_simple_mode_renders_each_node_variant(tmp_path: Path) -> None:
    nodes = [
        Node(node_id="t", title="Brief", content="Write a poem"),
        Node(node_id="code", type="code", title="Script", content="print(1)", meta={"language": "python"}),
        Node(node_id="ai", type="ai", title="Helper", content="Prior answer"),
        Node(node_id="img", type="image", title="", meta={"image_url": "https://cdn.test/a.png"}),
    ]
    rendered = _assembler(tmp_path).assemble(nodes, ContextMode.simple)
    blocks = rendered.split("\n\n")
    assert blocks[0] == "• **Brief** (text)\nWrite a poem"
    assert blocks[1] == "• **Script** (code)\nCode: Script\n```python\nprint(1)\n```"
    assert blocks[2] == "• **Helper** (ai)\nAI Node: Helper\nPrior answer"
    assert blocks[3] == "• **img** (image)\nImage: Untitled\nURL: https://cdn.test/a.png"


def test_simple_mode_caps_text(tmp_path: Path) -> None:
    node = Node(node_id="long", title="Long", content="x" * 50)
    rendered = _assembler(tmp_path, text_cap=10).assemble([node])
    assert rendered == "• **Long** (text)\n" + "x" * 10


def test_full_json_truncates_only_oversized_nodes(tmp_path: Path) -> None:
    small = Node(node_id="small", content="tiny")
    big = Node(node_id="big", content="y" * 500)
    rendered = _assembler(tmp_path, json_byte_cap=200).assemble([small, big], ContextMode.full_json)
    small_block, big_block = rendered.split("\n\n## ")
    assert small_block.startswith("## Node 1: small\n```json\n")
    assert TRUNCATION_MARKER not in small_block
    assert big_block.startswith("Node 2: big\n```json\n")
    assert big_block.endswith(TRUNCATION_MARKER)


def test_base64_delivery_inlines_local_uploads(tmp_path: Path) -> None:
    (tmp_path / "p").mkdir()
    (tmp_path / "p" / "dot.png").write_bytes(b"\x89PNG")
    node = Node(node_id="img", type="image", meta={"image_url": "/uploads/p/dot.png"})
    rendered = _assembler(tmp_path).assemble([node], ContextMode.raw, FileDeliveryMode.base64)
    assert rendered == "data:image/png;base64,iVBORw=="


def test_delivery_mode_and_summaries() -> None:
    assert resolve_file_delivery_mode({"file_delivery_format": "BASE64"}) is FileDeliveryMode.base64
    assert resolve_file_delivery_mode({}) is FileDeliveryMode.url

    summary = summarize_next_nodes([NextNodeSummary(node_id="n", type="text", title="Draft", short_description="d")])
    assert summary == "• Draft [text] - d"

    files = summarize_files([AttachedFile(name="pic", type="image/url", content="https://x.test/p.png")])
    assert "## File 1: pic" in files
    assert "URL: https://x.test/p.png" in files
    assert "**Source:** unknown" in files
