"""
Rendering of upstream graph nodes into the context block of a prompt.

Output depends only on the nodes passed in (in the order given), the mode
and the asset resolver, so the same inputs always produce the same text.
"""

from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from ai_router.context.assets import AssetResolver
from ai_router.schema.models import AttachedFile, ContextMode, FileDeliveryMode, NextNodeSummary, Node
from ai_router.schema.values import as_str, first_str


TEXT_CAP = 2000
JSON_BYTE_CAP = 50 * 1024
FILES_SUMMARY_CAP = 3000
RAW_DELIMITER = " ; "
TRUNCATION_MARKER = "[...truncated - node JSON exceeds 50KB]"

IMAGE_URL_KEYS = ("image_url", "original_image")
VIDEO_URL_KEYS = ("video_url",)
FILE_URL_KEYS = ("file_url", "pdf_url")


def resolve_file_delivery_mode(ai_config: Mapping[str, Any]) -> FileDeliveryMode:
    raw = as_str(ai_config.get("file_delivery_format")).strip().lower()
    return FileDeliveryMode.base64 if raw == FileDeliveryMode.base64.value else FileDeliveryMode.url


def summarize_next_nodes(nodes: Sequence[NextNodeSummary]) -> str:
    return "\n".join(f"• {node.title} [{node.type}] - {node.short_description}" for node in nodes)


def summarize_files(files: Sequence[AttachedFile], *, cap: int = FILES_SUMMARY_CAP) -> str:
    blocks: List[str] = []
    for index, file in enumerate(files, start=1):
        content = file.content
        if len(content) > cap:
            content = content[:cap] + "... (truncated)"
        if file.type == "image/url":
            content = f"URL: {content}"
        elif file.type == "image/base64":
            content = f"[Base64 image, size: {len(file.content)} characters]"
        blocks.append(
            f"## File {index}: {file.name}\n"
            f"**Type:** {file.type}\n"
            f"**Source:** {file.source_node_id or 'unknown'}\n"
            f"**Content:**\n```\n{content}\n```"
        )
    return "\n\n".join(blocks)


class ContextAssembler:
    """Formats upstream nodes for the ``simple``, ``full_json`` and ``raw`` context modes."""

    def __init__(
        self,
        assets: AssetResolver,
        *,
        text_cap: int = TEXT_CAP,
        json_byte_cap: int = JSON_BYTE_CAP,
    ) -> None:
        self.assets = assets
        self.text_cap = text_cap
        self.json_byte_cap = json_byte_cap
        self._renderers: Dict[ContextMode, Callable[[Sequence[Node], FileDeliveryMode], str]] = {
            ContextMode.simple: self._render_simple,
            ContextMode.full_json: self._render_full_json,
            ContextMode.raw: self._render_raw,
        }

    def assemble(
        self,
        nodes: Sequence[Node],
        mode: ContextMode = ContextMode.simple,
        file_mode: FileDeliveryMode = FileDeliveryMode.url,
    ) -> str:
        if not nodes:
            return ""
        return self._renderers[ContextMode(mode)](nodes, FileDeliveryMode(file_mode))

    # ------------------------------------------------------------------
    # Asset helpers
    # ------------------------------------------------------------------
    def _image_url(self, node: Node, file_mode: FileDeliveryMode) -> Optional[str]:
        url = first_str(node.meta, IMAGE_URL_KEYS)
        if url is None:
            return None
        return self.assets.deliver_asset(self.assets.resolve_url(url), file_mode, "image")

    def _media_url(self, node: Node, keys: Sequence[str]) -> Optional[str]:
        url = first_str(node.meta, keys)
        if url is None:
            return None
        return self.assets.resolve_url(url)

    # ------------------------------------------------------------------
    # Renderers
    # ------------------------------------------------------------------
    def _render_full_json(self, nodes: Sequence[Node], file_mode: FileDeliveryMode) -> str:
        blocks: List[str] = []
        for index, node in enumerate(nodes, start=1):
            header = f"## Node {index}: {node.display_title}"
            document = json.dumps(
                node.model_dump(mode="json", by_alias=True, exclude_none=True),
                indent=2,
                ensure_ascii=False,
            )
            encoded = document.encode("utf-8")
            if len(encoded) > self.json_byte_cap:
                truncated = encoded[: self.json_byte_cap].decode("utf-8", errors="ignore")
                blocks.append(f"{header}\n```json\n{truncated}\n```\n{TRUNCATION_MARKER}")
            else:
                blocks.append(f"{header}\n```json\n{document}\n```")
        return "\n\n".join(blocks)

    def _raw_value(self, node: Node, file_mode: FileDeliveryMode) -> str:
        content = (node.content or "").strip()
        if node.type == "image":
            return (self._image_url(node, file_mode) or "").strip()
        if node.type == "video":
            return (self._media_url(node, VIDEO_URL_KEYS) or "").strip()
        if node.type in {"pdf", "file"}:
            return (self._media_url(node, FILE_URL_KEYS) or content).strip()
        return content

    def _render_raw(self, nodes: Sequence[Node], file_mode: FileDeliveryMode) -> str:
        values = [self._raw_value(node, file_mode) for node in nodes]
        return RAW_DELIMITER.join(value for value in values if value)

    def _render_simple(self, nodes: Sequence[Node], file_mode: FileDeliveryMode) -> str:
        return "\n\n".join(self._simple_block(node, file_mode) for node in nodes)

    def _simple_block(self, node: Node, file_mode: FileDeliveryMode) -> str:
        parts = [f"• **{node.display_title}** ({node.type})"]
        label = node.title or "Untitled"
        content = node.content[: self.text_cap] if node.content else ""

        if node.type == "image":
            parts.append(f"Image: {label}")
            url = self._image_url(node, file_mode)
            if url:
                parts.append(f"URL: {url}")
        elif node.type == "video":
            parts.append(f"Video: {label}")
            url = self._media_url(node, VIDEO_URL_KEYS)
            if url:
                parts.append(f"URL: {url}")
        elif node.type in {"pdf", "file"}:
            parts.append(f"File: {label}")
            url = self._media_url(node, FILE_URL_KEYS)
            if url:
                parts.append(f"URL: {url}")
            if content:
                parts.append(f"Content: {content}")
        elif node.type == "code":
            parts.append(f"Code: {label}")
            if content:
                language = as_str(node.meta.get("language"))
                parts.extend([f"```{language}", content, "```"])
        elif node.type in {"ai", "ai_improved"}:
            parts.append(f"AI Node: {label}")
            if content:
                parts.append(content)
        elif content:
            parts.append(content)
        return "\n".join(parts)


__all__ = [
    "ContextAssembler",
    "JSON_BYTE_CAP",
    "RAW_DELIMITER",
    "TEXT_CAP",
    "TRUNCATION_MARKER",
    "resolve_file_delivery_mode",
    "summarize_files",
    "summarize_next_nodes",
]
