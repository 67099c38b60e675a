from __future__ import annotations

from pathlib import Path

import pytest

from ai_router.context.assembler import ContextAssembler
from ai_router.context.assets import LocalAssetResolver
from ai_router.prompt.composer import STRUCTURED_FALLBACK_PROMPT, TEXT_FALLBACK_PROMPT, PromptComposer
from ai_router.schema.models import Edge, NextNodeSummary, Node
from ai_router.tests.fakes import make_context


@pytest.fixture
def composer(tmp_path: Path) -> PromptComposer:
    return PromptComposer(ContextAssembler(LocalAssetResolver("http://app.test", tmp_path)))


def _context_edge(source: str, handle: str = "context") -> Edge:
    return Edge(from_node=source, to="ai", target_handle=handle)


def test_context_is_skipped_without_context_port(composer: PromptComposer) -> None:
    ctx = make_context(
        Node(node_id="ai", content="Summarize"),
        previous=[Node(node_id="a", content="First")],
        edges=[Edge(from_node="a", to="ai")],
    )
    assert composer.compose(ctx) == "Summarize"


def test_raw_context_is_inline(composer: PromptComposer) -> None:
    ctx = make_context(
        Node(node_id="ai", content="Combine", config={"ai": {"context_mode": "clean"}}),
        previous=[Node(node_id="a", content="First"), Node(node_id="b", content="Second")],
        edges=[_context_edge("a"), _context_edge("b")],
    )
    assert composer.compose(ctx) == "Combine\n\nContext: First ; Second"


def test_media_port_sources_and_excluded_nodes_are_left_out(composer: PromptComposer) -> None:
    ctx = make_context(
        Node(node_id="ai", content="Describe", config={"ai": {"context_mode": "raw"}}),
        previous=[
            Node(node_id="a", content="Keep"),
            Node(node_id="pic", content="Media"),
            Node(node_id="used", content="Consumed"),
        ],
        edges=[_context_edge("a"), _context_edge("pic", "image_input"), _context_edge("used", "prompt")],
    )
    assert composer.compose(ctx, exclude_node_ids={"used"}) == "Describe\n\nContext: Keep"


def test_sections_for_structured_target(composer: PromptComposer) -> None:
    schema = {"type": "object"}
    ctx = make_context(
        Node(node_id="ai", content="Plan it"),
        schema_ref="PLAN_SCHEMA",
        next_nodes=[NextNodeSummary(node_id="n", type="text", title="Draft", short_description="write")],
    )
    prompt = composer.compose(ctx, schema)
    assert prompt == (
        "Plan it\n\n"
        "# Downstream Targets\n• Draft [text] - write\n\n"
        '# JSON Schema\n{\n  "type": "object"\n}'
    )


def test_text_target_never_includes_schema(composer: PromptComposer) -> None:
    ctx = make_context(Node(node_id="ai", content="Hi"))
    assert composer.compose(ctx, {"type": "object"}) == "Hi"


def test_primary_instruction_fallbacks(composer: PromptComposer) -> None:
    templated = make_context(Node(node_id="ai", config={"ai": {"user_prompt_template": " Use template "}}))
    assert composer.compose(templated) == "Use template"

    assert composer.compose(make_context(Node(node_id="ai"))) == TEXT_FALLBACK_PROMPT
    structured = make_context(Node(node_id="ai"), schema_ref="PLAN_SCHEMA")
    assert composer.compose(structured) == STRUCTURED_FALLBACK_PROMPT
