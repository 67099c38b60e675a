"""
Assembly of the ``input`` object sent with a Replicate prediction.

Values are gathered from several places, in order: auto ports wired into the
node, legacy provider input fields, the composed prompt and the field
mapping targets, additional mapped fields, media settings, attached image
files, model-type parameters and finally any remaining custom keys of the
AI config. The result is sanitized before it is sent.
"""

from __future__ import annotations

import json
import logging
import math
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ai_router.context.assembler import resolve_file_delivery_mode
from ai_router.context.assets import AssetResolver
from ai_router.errors import ConfigurationError
from ai_router.prompt.fields import ConfigurableField, FieldSource, ResolvedProviderField, field_source
from ai_router.schema.models import AiExecutionContext, AttachedFile, Edge, Node
from ai_router.schema.values import as_bool, as_float, as_int, as_mapping, as_optional_str, as_str, first_str
from shared.logger import get_logger


DEFAULT_PROMPT = "Generate an asset for this workflow node."

NUMERIC_FIELDS = frozenset(
    {"width", "height", "fps", "steps", "num_frames", "seed", "guidance_scale", "num_inference_steps"}
)
URI_FIELDS = frozenset(
    {"image", "first_frame", "last_frame", "video", "audio", "mask", "init_image", "control_image"}
)
DURATION_STEPS = (4, 6, 8)
IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp", ".svg")

_MEDIA_SEPARATORS = re.compile(r"[;\n\r]+")
_VALID_URI = re.compile(r"^(?:https?://.+|data:[^;]+;base64,)", re.IGNORECASE)
_IMAGE_INPUT_KEY = re.compile(r"^image_input[\w-]*$")
_NUMBER_LITERAL = re.compile(r"^-?\d+(?:\.\d+)?$")

MODEL_TYPE_KEYWORDS = (
    ("image", ("flux", "sdxl", "stable-diffusion", "midjourney", "dall-e", "ideogram", "recraft", "playground",
               "kandinsky", "banana", "sd-", "imagen", "pixart")),
    ("video", ("video", "runway", "pika", "gen-2", "gen-3", "animatediff", "svd", "stable-video")),
    ("3d", ("3d", "mesh", "shap-e")),
    ("audio", ("audio", "music", "sound", "whisper", "bark", "musicgen", "audioldm")),
)

# Typed AI-config parameters forwarded per model family.
MODEL_TYPE_PARAMS: Dict[str, Sequence[Tuple[str, str]]] = {
    "text": (
        ("top_p", "number"), ("top_k", "integer"), ("max_tokens", "integer"), ("max_output_tokens", "integer"),
        ("min_tokens", "integer"), ("repetition_penalty", "number"), ("length_penalty", "number"),
        ("seed", "integer"), ("prompt_template", "string"), ("thinking_budget", "integer"),
        ("dynamic_thinking", "boolean"), ("system_instruction", "string"),
    ),
    "image": (
        ("width", "integer"), ("height", "integer"), ("aspect_ratio", "string"), ("num_outputs", "integer"),
        ("num_inference_steps", "integer"), ("guidance_scale", "number"), ("seed", "integer"),
        ("strength", "number"),
    ),
    "video": (
        ("num_frames", "integer"), ("fps", "integer"), ("motion_bucket_id", "integer"), ("cond_aug", "number"),
        ("seed", "integer"),
    ),
}

HANDLED_CONFIG_KEYS = frozenset(
    {
        "provider", "model", "temperature", "max_tokens", "top_p", "frequency_penalty", "presence_penalty",
        "system_prompt", "output_format", "output_example", "field_mapping", "additional_fields", "prompt",
        "negative_prompt", "image", "width", "height", "aspect_ratio", "num_outputs", "num_inference_steps",
        "guidance_scale", "seed", "strength", "num_frames", "fps", "motion_bucket_id", "cond_aug", "top_k",
        "max_output_tokens", "min_tokens", "repetition_penalty", "length_penalty", "prompt_template",
        "thinking_budget", "dynamic_thinking", "system_instruction", "auto_ports", "provider_fields",
        "context_mode", "file_delivery", "file_delivery_format", "placeholder_values", "user_prompt_template",
    }
)

IMAGE_META_KEYS = (
    "image_url", "local_url", "image_original", "original_image", "image_edited", "edited_image",
    "image_crop", "crop_image", "annotated_image", "video_url",
)
CROP_META_KEYS = ("image_crop", "crop_image", "image_edited", "edited_image", "annotated_image")


# -----------------------------
# Helpers
# -----------------------------
def model_type(identifier: str) -> str:
    lowered = identifier.lower()
    for kind, keywords in MODEL_TYPE_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return kind
    return "text"


def looks_like_image_url(value: str) -> bool:
    if not value:
        return False
    if value.startswith(("data:", "http://", "https://")):
        return True
    lowered = value.lower()
    return any(extension in lowered for extension in IMAGE_EXTENSIONS)


def split_media_list(value: str) -> List[str]:
    """Split ``;``/newline separated URL lists; anything that is not a list of URLs stays one entry."""

    if not _MEDIA_SEPARATORS.search(value):
        return [value]
    tokens = [token.strip() for token in _MEDIA_SEPARATORS.split(value) if token.strip()]
    if len(tokens) <= 1:
        return [value]
    if all(re.match(r"^https?://", token, re.IGNORECASE) or token.startswith("data:") for token in tokens):
        return tokens
    return [value]


def normalize_array_input(value: Any) -> List[Any]:
    collected: List[Any] = []

    def push(entry: Any) -> None:
        if entry is None:
            return
        if isinstance(entry, str):
            trimmed = entry.strip()
            if not trimmed:
                return
            candidates = split_media_list(trimmed)
            if len(candidates) > 1:
                for candidate in candidates:
                    push(candidate)
                return
            single = candidates[0]
            if (single.startswith("[") and single.endswith("]")) or (single.startswith("{") and single.endswith("}")):
                try:
                    parsed = json.loads(single)
                except json.JSONDecodeError:
                    parsed = None
                if isinstance(parsed, list):
                    for item in parsed:
                        push(item)
                    return
                if isinstance(parsed, dict):
                    collected.append(parsed)
                    return
            collected.append(single)
        elif isinstance(entry, (list, tuple)):
            for item in entry:
                push(item)
        elif isinstance(entry, dict):
            collected.append(entry)

    push(value)
    return collected


def snap_duration(value: float) -> int:
    return min(DURATION_STEPS, key=lambda step: (abs(step - value), step))


def _as_number(value: float) -> Any:
    return int(value) if float(value).is_integer() else value


def sanitize_input(payload: Mapping[str, Any], fallback_prompt: str) -> Dict[str, Any]:
    """
    Drop empty values and invalid URIs, snap ``duration`` to 4/6/8, coerce
    numeric strings and flatten ``image_input*`` lists. A prompt is always
    present in the result.
    """

    sanitized: Dict[str, Any] = {}
    fallback = (fallback_prompt or "").strip()
    for key, value in payload.items():
        if value is None:
            continue
        if not isinstance(value, str):
            sanitized[key] = value
            continue
        trimmed = value.strip()
        if not trimmed:
            continue
        if key in URI_FIELDS and not _VALID_URI.match(trimmed):
            continue
        number = as_float(trimmed)
        if key == "duration" and number is not None:
            sanitized[key] = snap_duration(number)
            continue
        if key in NUMERIC_FIELDS and number is not None:
            sanitized[key] = _as_number(number)
            continue
        sanitized[key] = trimmed

    if isinstance(sanitized.get("duration"), (int, float)) and not isinstance(sanitized["duration"], bool):
        sanitized["duration"] = snap_duration(sanitized["duration"])

    for key in [name for name in sanitized if _IMAGE_INPUT_KEY.match(name)]:
        normalized = normalize_array_input(sanitized[key])
        if normalized:
            sanitized[key] = normalized
        else:
            del sanitized[key]

    if not as_optional_str(sanitized.get("prompt")) and fallback:
        sanitized["prompt"] = fallback
    if not sanitized:
        sanitized["prompt"] = fallback or DEFAULT_PROMPT
    return sanitized


def join_sections(*parts: str) -> str:
    return "\n\n".join(part.strip() for part in parts if part and part.strip())


def coerce_param(value: Any, kind: str) -> Any:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if kind == "number":
        return as_float(value)
    if kind == "integer":
        return as_int(value)
    if kind == "boolean":
        return value if isinstance(value, bool) else str(value).strip().lower() in {"true", "1", "yes"}
    return value


# -----------------------------
# Builder
# -----------------------------
class ReplicateInputBuilder:
    """Accumulates the prediction input for one node run."""

    def __init__(
        self,
        ctx: AiExecutionContext,
        assets: AssetResolver,
        *,
        all_nodes: Sequence[Node],
        logs: List[str],
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.ctx = ctx
        self.assets = assets
        self.all_nodes = list(all_nodes)
        self.logs = logs
        self.logger = logger or get_logger(__name__)
        self.file_mode = resolve_file_delivery_mode(ctx.ai_config)
        self.payload: Dict[str, Any] = {}
        self.consumed_node_ids: List[str] = []

    @property
    def ai_config(self) -> Dict[str, Any]:
        return self.ctx.ai_config

    def _deliver(self, url: str, kind: str = "image") -> str:
        return self.assets.deliver_asset(self.assets.resolve_url(url.strip()), self.file_mode, kind)

    def _incoming_edges(self) -> List[Edge]:
        return [edge for edge in self.ctx.edges if edge.to == self.ctx.node.node_id]

    # ------------------------------------------------------------------
    # Ports and provider fields
    # ------------------------------------------------------------------
    def add_auto_ports(self) -> bool:
        """Fill inputs from ``auto_ports``; returns False when the node declares none."""

        ports = [as_mapping(port) for port in self.ai_config.get("auto_ports") or [] if isinstance(port, Mapping)]
        if not ports:
            return False

        self.logs.append(f"Using auto-ports: {', '.join(as_str(port.get('id')) for port in ports)}")
        edges = self._incoming_edges()
        for port in ports:
            port_id = as_str(port.get("id"))
            port_type = as_str(port.get("type"))
            required = as_bool(port.get("required"))

            edge = next(
                (item for item in edges if item.target_handle == port_id or (not item.target_handle and port_id == "prompt")),
                None,
            )
            if edge is None:
                if required:
                    raise ConfigurationError(f'Required port "{port_id}" is not connected. Connect a {port_type} node to it.')
                continue
            source = next((node for node in self.ctx.previous_nodes if node.node_id == edge.from_node), None)
            if source is None:
                if required:
                    raise ConfigurationError(f'Source node for required port "{port_id}" was not found.')
                continue

            value = self._port_value(port_id, port_type, required, source)
            if value is None or value == "":
                continue
            self.payload[port_id] = value
            self.logs.append(f"Port {port_id}: {port_type} from node {source.display_title}")
            self.consumed_node_ids.append(source.node_id)
        return True

    def _port_value(self, port_id: str, port_type: str, required: bool, source: Node) -> Any:
        content = (source.content or "").strip()
        if port_type in {"image", "video"}:
            url = self._crop_url(port_id, required, source) if port_id == "image-crop" else self._media_url(source)
            if url:
                return self._deliver(url, "video" if port_type == "video" else "image")
            if required and port_id != "image-crop":
                raise ConfigurationError(f'Port "{port_id}" expects {port_type}, but the connected node has none.')
            return None
        if port_type == "text":
            return content
        if port_type == "number":
            number = as_float(content)
            if number is None and required:
                raise ConfigurationError(f'Port "{port_id}" expects a number, got "{content}".')
            return number
        return source.content or ""

    def _crop_url(self, port_id: str, required: bool, source: Node) -> Optional[str]:
        meta = source.meta
        settings = as_mapping(meta.get("image_crop_settings"))
        if not (meta.get("image_crop_expose_port") is True or settings.get("exposePort") is True):
            if required:
                raise ConfigurationError(f'Port "{port_id}" requires the crop output to be enabled.')
            return None
        url = first_str(meta, CROP_META_KEYS)
        if url is None and required:
            raise ConfigurationError(f'Port "{port_id}" is connected but no crop is available.')
        return url

    @staticmethod
    def _media_url(source: Node) -> Optional[str]:
        meta = source.meta
        mode = as_str(meta.get("image_output_mode")).strip().lower()
        preferred: Iterable[str] = ()
        if mode == "crop":
            preferred = ("image_crop", "crop_image")
        elif mode == "annotated":
            preferred = ("image_edited", "edited_image", "annotated_image")
        return first_str(meta, (*preferred, *IMAGE_META_KEYS)) or as_optional_str(source.content)

    def add_provider_fields(self, fields: Sequence[ResolvedProviderField]) -> None:
        for field in fields:
            value: Any = field.value
            if isinstance(value, str) and looks_like_image_url(value):
                value = self._deliver(value)
            self.payload[field.key] = value

    # ------------------------------------------------------------------
    # Prompt and mapped fields
    # ------------------------------------------------------------------
    def _target(self, name: str, default: str) -> str:
        mapping = as_mapping(self.ai_config.get("field_mapping"))
        raw = mapping.get(name) if isinstance(mapping.get(name), str) else self.ai_config.get(name)
        return as_str(raw).strip() or default

    def apply_prompt(self, user_prompt: str, *, system_prompt: str, output_example: str, temperature: float) -> str:
        """Merge the composed prompt with the mapped system prompt, output example and temperature."""

        existing = as_optional_str(self.payload.get("prompt"))
        prompt = existing or user_prompt.strip()

        system_prompt = system_prompt.strip()
        if system_prompt:
            target = self._target("system_prompt_target", "prompt")
            if target == "prompt":
                prompt = join_sections(system_prompt, prompt)
            else:
                current = self.payload.get(target)
                if isinstance(current, str) and current.strip() and current.strip() != system_prompt:
                    self.payload[target] = join_sections(system_prompt, current)
                elif current is None or (isinstance(current, str) and not current.strip()):
                    self.payload[target] = system_prompt

        output_example = output_example.strip()
        if output_example:
            prompt = join_sections(prompt, f"output_template:\n{output_example}")
            target = self._target("output_example_target", "prompt")
            self.payload["output_example" if target == "prompt" else target] = output_example

        manual_temperature = isinstance(self.ai_config.get("temperature"), (int, float)) and not isinstance(
            self.ai_config.get("temperature"), bool
        )
        is_port = field_source(ConfigurableField.temperature, self.ai_config) is FieldSource.port
        if (is_port or manual_temperature) and math.isfinite(temperature):
            self.payload[self._target("temperature_target", "temperature")] = temperature

        prompt = self._apply_additional_fields(prompt)
        if prompt:
            self.payload["prompt"] = prompt
        return prompt

    def _apply_additional_fields(self, prompt: str) -> str:
        additional = as_mapping(as_mapping(self.ai_config.get("field_mapping")).get("additional_fields"))
        for name, raw_mapping in additional.items():
            mapping = as_mapping(raw_mapping)
            if not mapping:
                continue
            source = as_str(mapping.get("source"), "manual") or "manual"
            target = as_str(mapping.get("target")) or name

            value: Any = None
            if source == FieldSource.port.value:
                edge = next((item for item in self._incoming_edges() if item.target_handle == name), None)
                node = next((item for item in self.all_nodes if edge and item.node_id == edge.from_node), None)
                if node is not None:
                    content = (node.content or "").strip()
                    value = _as_number(float(content)) if _NUMBER_LITERAL.match(content) else content
            if value is None or value == "":
                manual = self.ctx.node.meta.get(name, self.ai_config.get(name))
                if manual is not None and str(manual).strip():
                    value = manual
            if value is None or value == "":
                continue
            if target == "prompt":
                prompt = join_sections(prompt, f"{name}: {value}")
            else:
                self.payload[target] = value
        return prompt

    # ------------------------------------------------------------------
    # Media and model parameters
    # ------------------------------------------------------------------
    def add_media(self) -> None:
        negative = as_optional_str(self.ai_config.get("negative_prompt"))
        if negative:
            self.payload["negative_prompt"] = negative

        image = as_optional_str(self.ai_config.get("image"))
        if image and not isinstance(self.payload.get("image"), str):
            self.payload["image"] = self._deliver(image)

        if "image_input" not in self.payload:
            images = self.image_inputs_from_files(self.ctx.files)
            if images:
                self.payload["image_input"] = images

    def image_inputs_from_files(self, files: Sequence[AttachedFile]) -> List[str]:
        results: List[str] = []
        for file in files:
            if not file.type.startswith("image/") or not file.content.strip():
                continue
            for entry in split_media_list(file.content.strip()):
                source = self.assets.resolve_url(entry) if file.type == "image/url" else entry
                delivered = self.assets.deliver_asset(source, self.file_mode, "image")
                for item in split_media_list(delivered):
                    item = item.strip()
                    if item and item not in results:
                        results.append(item)
        return results

    def add_model_params(self, kind: str) -> None:
        for key, param_type in MODEL_TYPE_PARAMS.get(kind, ()):
            value = coerce_param(self.ai_config.get(key), param_type)
            if value is not None and key not in self.payload:
                self.payload[key] = value

    def add_passthrough(self) -> None:
        for key, value in self.ai_config.items():
            if key in HANDLED_CONFIG_KEYS or key.endswith(("_source", "_target")):
                continue
            if key in self.payload or value is None or (isinstance(value, str) and not value.strip()):
                continue
            self.payload[key] = value

    def build(self, fallback_prompt: str) -> Dict[str, Any]:
        prompt = self.payload.get("prompt")
        return sanitize_input(self.payload, prompt if isinstance(prompt, str) else fallback_prompt)


__all__ = [
    "ReplicateInputBuilder",
    "join_sections",
    "looks_like_image_url",
    "model_type",
    "normalize_array_input",
    "sanitize_input",
    "snap_duration",
    "split_media_list",
]
