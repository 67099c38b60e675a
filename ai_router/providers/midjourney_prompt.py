"""
Prompt preparation for Midjourney jobs: the text prompt, reference images,
``--key value`` modifiers and the Discord-style ``/imagine`` prompt string.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ai_router.errors import AiRouterError
from ai_router.schema.models import AiExecutionContext, AttachedFile, Node
from ai_router.schema.values import as_float
from shared.logger import get_logger


logger = get_logger(__name__)

ASPECT_RATIOS = {"portrait": "2:3", "square": "1:1", "landscape": "3:2"}
SPEED_FLAGS = {"turbo": "--turbo", "fast": "--fast", "relax": "--relax"}
DEFAULT_CHARACTER_WEIGHT = 80
DEFAULT_REFERENCE_STRENGTH = 0.75

_MODEL_VERSION = re.compile(r"midjourney-(v[\d.]+|niji-\d+)")
_MODIFIER_WITH_VALUE = re.compile(r"^--(\w+)\s+(.+)$")
_MODIFIER_FLAG = re.compile(r"^--(\w+)$")


@dataclass(frozen=True)
class ReferenceImage:
    url: str
    purpose: str = "reference"
    strength: float = DEFAULT_REFERENCE_STRENGTH
    source_node_id: Optional[str] = None

    @property
    def kind(self) -> str:
        """``character``, ``style`` or ``image`` (image prompt), derived from the purpose label."""

        purpose = self.purpose.lower()
        if purpose == "omni" or "character" in purpose or "char" in purpose:
            return "character"
        if "style" in purpose:
            return "style"
        return "image"


@dataclass
class MidjourneyPrompt:
    prompt: str
    reference_images: List[ReferenceImage] = field(default_factory=list)
    modifier_inputs: Dict[str, Any] = field(default_factory=dict)
    logs: List[str] = field(default_factory=list)


def extract_prompt_modifiers(meta: Mapping[str, Any]) -> str:
    raw = meta.get("prompt_modifiers")
    if isinstance(raw, list):
        return "\n".join(item for item in raw if isinstance(item, str))
    if isinstance(raw, str):
        return raw
    return ""


def parse_modifiers(modifiers: str) -> Dict[str, Any]:
    """
    Turn ``--key value`` lines into inputs. Bare ``--flag`` lines become
    ``True``; numeric values become numbers.
    """

    inputs: Dict[str, Any] = {}
    for line in (item.strip() for item in modifiers.splitlines()):
        if not line.startswith("--"):
            continue
        match = _MODIFIER_WITH_VALUE.match(line)
        if match is not None:
            value = match.group(2).strip()
            number = as_float(value)
            inputs[match.group(1)] = value if number is None else (int(number) if number.is_integer() else number)
            continue
        flag = _MODIFIER_FLAG.match(line)
        if flag is not None:
            inputs[flag.group(1)] = True
    return inputs


def collect_reference_images(files: Sequence[AttachedFile]) -> List[ReferenceImage]:
    unique: Dict[str, ReferenceImage] = {}
    for file in files:
        url = file.content.strip()
        if url.startswith(("http://", "https://")):
            unique[url] = ReferenceImage(url=url, purpose=file.name or "reference", source_node_id=file.source_node_id)
    return list(unique.values())


def render_upstream(nodes: Sequence[Node]) -> str:
    blocks = [
        f"Ref {node.display_title}:\n{node.content.strip()}"
        for node in nodes
        if node.type != "video" and node.content and node.content.strip()
    ]
    return "\n\n".join(blocks)


def prepare_prompt(ctx: AiExecutionContext, *, mode: str = "photo") -> MidjourneyPrompt:
    base = (ctx.node.content or "").strip()
    upstream = render_upstream(ctx.previous_nodes).strip()
    prompt = "\n\n".join(part for part in (base, upstream) if part).strip()
    if not prompt:
        raise AiRouterError("Midjourney prompt is empty. Add content or modifiers before queuing the job.")

    references = collect_reference_images(ctx.files)
    modifiers = extract_prompt_modifiers(ctx.node.meta)
    ellipsis = "..." if len(prompt) > 120 else ""
    return MidjourneyPrompt(
        prompt=prompt,
        reference_images=references,
        modifier_inputs=parse_modifiers(modifiers) if modifiers else {},
        logs=[
            f"Prompt length: {len(prompt)} characters",
            f"Prompt preview: {prompt[:120]}{ellipsis}",
            f"Reference images attached: {len(references)}",
            f"Mode: {mode}",
        ],
    )


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    return value if isinstance(value, (int, float)) else None


def build_discord_prompt(
    base_prompt: str,
    reference_images: Sequence[ReferenceImage],
    inputs: Mapping[str, Any],
    model_id: Optional[str] = None,
    *,
    log: Optional[logging.Logger] = None,
) -> str:
    """
    Compose the ``/imagine`` prompt: image prompt URLs, then style reference
    URLs, then the text, then the parameter flags.
    """

    log = log or logger
    by_kind: Dict[str, List[str]] = {"image": [], "style": [], "character": []}
    for reference in reference_images:
        by_kind[reference.kind].append(reference.url)

    flags: List[str] = []
    version = ""
    match = _MODEL_VERSION.search(model_id or "")
    if match is not None:
        version = match.group(1)
        flags.append(f"--{version.replace('-', ' ', 1)}" if version.startswith("niji-") else f"--v {version[1:]}")

    if inputs.get("mode") == "raw":
        flags.append("--style raw")
    aspect = ASPECT_RATIOS.get(inputs.get("aspect_ratio")) if isinstance(inputs.get("aspect_ratio"), str) else None
    if aspect:
        flags.append(f"--ar {aspect}")

    stylization = _number(inputs.get("stylization"))
    if stylization is not None and stylization != 100:
        flags.append(f"--s {inputs['stylization']}")
    weirdness = _number(inputs.get("weirdness"))
    if weirdness is not None and weirdness > 0:
        flags.append(f"--w {inputs['weirdness']}")
    variety = _number(inputs.get("variety"))
    if variety is not None and variety > 0:
        flags.append(f"--vary {inputs['variety']}")
    speed = SPEED_FLAGS.get(inputs.get("speed")) if isinstance(inputs.get("speed"), str) else None
    if speed:
        flags.append(speed)

    characters = by_kind["character"]
    if characters and not version.startswith(("v7", "niji-")):
        flags.append(f"--cref {' '.join(characters)}")
        weight = _number(inputs.get("character_weight"))
        flags.append(f"--cw {inputs['character_weight'] if weight is not None else DEFAULT_CHARACTER_WEIGHT}")
    elif characters:
        log.info("Skipping --cref for %s character references: not supported by version %s", len(characters), version)

    parts = [*by_kind["image"], *by_kind["style"], base_prompt]
    if flags:
        parts.append(" ".join(flags))
    return " ".join(part for part in parts if part and part.strip())


def model_id_for(ai_config: Mapping[str, Any]) -> Optional[str]:
    for key in ("ai_model_id", "model"):
        value = ai_config.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def reference_payload(references: Sequence[ReferenceImage]) -> List[Dict[str, Any]]:
    return [{"url": item.url, "purpose": item.purpose, "strength": item.strength} for item in references]


__all__ = [
    "MidjourneyPrompt",
    "ReferenceImage",
    "build_discord_prompt",
    "collect_reference_images",
    "extract_prompt_modifiers",
    "model_id_for",
    "parse_modifiers",
    "prepare_prompt",
    "reference_payload",
    "render_upstream",
]
