"""
Assembly of the user prompt sent to a provider.

Sections, in order and separated by a blank line: the primary instruction,
the upstream context (only when something is wired into the ``context``
port), the downstream targets and, for structured responses, the JSON
Schema. Empty sections are left out.
"""

from __future__ import annotations

import json
import logging
from typing import Collection, List, Optional, Set

from ai_router.context.assembler import ContextAssembler, resolve_file_delivery_mode, summarize_next_nodes
from ai_router.prompt.fields import ConfigurableField, resolve_field
from ai_router.schema.builtin import is_text_schema
from ai_router.schema.models import AiExecutionContext, ContextMode, JsonSchema, Node
from ai_router.schema.values import as_str
from shared.logger import get_logger


CONTEXT_PORT = "context"
MEDIA_PORTS = frozenset({"image_input", "video_input", "audio_input", "file_input", "text_input"})

TEXT_FALLBACK_PROMPT = (
    "Answer the user request in plain language. Provide a concise, helpful response without JSON."
)
STRUCTURED_FALLBACK_PROMPT = (
    "Generate a structured JSON response that satisfies the JSON schema and reflects the provided context."
)


class PromptComposer:
    def __init__(self, assembler: ContextAssembler, *, logger: Optional[logging.Logger] = None) -> None:
        self.assembler = assembler
        self.logger = logger or get_logger(__name__)

    def primary_instruction(self, ctx: AiExecutionContext, all_nodes: List[Node]) -> str:
        content = (ctx.node.content or "").strip()
        if content:
            return content
        template = as_str(
            resolve_field(
                ConfigurableField.user_prompt_template,
                ctx.ai_config,
                all_nodes,
                ctx.edges,
                ctx.node.node_id,
                log=self.logger,
            )
        ).strip()
        if template:
            return template
        return TEXT_FALLBACK_PROMPT if is_text_schema(ctx.schema_ref) else STRUCTURED_FALLBACK_PROMPT

    def context_nodes(self, ctx: AiExecutionContext, exclude: Collection[str] = ()) -> Optional[List[Node]]:
        """
        Upstream nodes to render as context, or None when the ``context`` port
        is not connected.
        """

        has_context_port = False
        media_sources: Set[str] = set()
        for edge in ctx.edges:
            if edge.to != ctx.node.node_id or not edge.target_handle:
                continue
            if edge.target_handle == CONTEXT_PORT:
                has_context_port = True
            elif edge.target_handle in MEDIA_PORTS:
                media_sources.add(edge.from_node)

        if not has_context_port:
            return None
        excluded = media_sources | set(exclude)
        return [node for node in ctx.previous_nodes if node.node_id not in excluded]

    def compose(
        self,
        ctx: AiExecutionContext,
        schema: Optional[JsonSchema] = None,
        *,
        all_nodes: Optional[List[Node]] = None,
        exclude_node_ids: Collection[str] = (),
    ) -> str:
        nodes = all_nodes if all_nodes is not None else ctx.all_nodes()
        sections: List[str] = []

        primary = self.primary_instruction(ctx, nodes).strip()
        if primary:
            sections.append(primary)

        context_nodes = self.context_nodes(ctx, exclude_node_ids)
        if context_nodes is None:
            self.logger.debug("Node %s has no context port connection; skipping context", ctx.node.node_id)
        else:
            mode = ctx.resolved_context_mode
            summary = self.assembler.assemble(context_nodes, mode, resolve_file_delivery_mode(ctx.ai_config))
            if summary:
                separator = " " if mode is ContextMode.raw else "\n"
                sections.append(f"Context:{separator}{summary}")

        downstream = summarize_next_nodes(ctx.next_nodes)
        if downstream:
            sections.append(f"# Downstream Targets\n{downstream}")

        if schema and not is_text_schema(ctx.schema_ref):
            sections.append(f"# JSON Schema\n{json.dumps(schema, indent=2, ensure_ascii=False)}")

        return "\n\n".join(sections)


__all__ = [
    "CONTEXT_PORT",
    "MEDIA_PORTS",
    "PromptComposer",
    "STRUCTURED_FALLBACK_PROMPT",
    "TEXT_FALLBACK_PROMPT",
]
