"""
Gemini provider using the Generative Language REST API
(``POST {base}/v1beta/models/{model}:generateContent``).
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional

from ai_router.context.assembler import summarize_files
from ai_router.errors import InvalidResponseError
from ai_router.providers.base import BaseProvider, unwrap_text_response
from ai_router.runtime.credentials import IntegrationSpec
from ai_router.schema.builtin import is_text_schema
from ai_router.schema.models import AiExecutionContext, AiResult, AttachedFile, JsonDict, JsonSchema, ProviderConfig
from ai_router.schema.values import as_list, as_mapping, as_optional_str


GEMINI_INTEGRATION = IntegrationSpec(
    provider="Gemini",
    integration_ids=("google_gemini", "google_workspace"),
    project_keys=("google_gemini", "gemini", "google_workspace"),
)

DEFAULT_SYSTEM_PROMPT = "You are a helpful AI assistant capable of working with files and images."
LEGACY_MODELS = re.compile(r"^gemini-(1\.0|pro)(?:$|-)")
_DATA_URI = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<data>.+)$", re.DOTALL)

# JSON Schema keywords understood by Gemini's responseSchema.
_RESPONSE_SCHEMA_KEYS = frozenset(
    {"description", "enum", "format", "nullable", "minItems", "maxItems", "minimum", "maximum", "required"}
)


def supports_response_schema(model: str) -> bool:
    return LEGACY_MODELS.match(model) is None


def to_response_schema(schema: JsonSchema) -> JsonDict:
    """
    Convert a JSON Schema into the OpenAPI subset accepted as ``responseSchema``.

    Unsupported keywords (``$schema``, ``additionalProperties``, ``$ref``...)
    are dropped; the validator still enforces the full schema afterwards.
    """

    converted: JsonDict = {}
    schema_type = schema.get("type")
    if isinstance(schema_type, list):
        non_null = [item for item in schema_type if item != "null"]
        if len(non_null) != len(schema_type):
            converted["nullable"] = True
        schema_type = non_null[0] if non_null else None
    if isinstance(schema_type, str):
        converted["type"] = schema_type.upper()
    elif "properties" in schema:
        converted["type"] = "OBJECT"

    for key in _RESPONSE_SCHEMA_KEYS:
        if key in schema:
            converted[key] = schema[key]
    properties = as_mapping(schema.get("properties"))
    if properties:
        converted["properties"] = {name: to_response_schema(as_mapping(value)) for name, value in properties.items()}
    items = schema.get("items")
    if isinstance(items, dict):
        converted["items"] = to_response_schema(items)
    return converted


def file_parts(files: List[AttachedFile]) -> List[JsonDict]:
    """Inline data-URI images as ``inlineData`` and describe every other file as text."""

    parts: List[JsonDict] = []
    described: List[AttachedFile] = []
    for file in files:
        match = _DATA_URI.match(file.content.strip()) if file.type.startswith("image/") else None
        if match is not None:
            parts.append({"inlineData": {"mimeType": match.group("mime"), "data": match.group("data")}})
        else:
            described.append(file)
    if described:
        parts.append({"text": f"Attached files:\n{summarize_files(described)}"})
    return parts


def candidate_parts(payload: Any) -> List[JsonDict]:
    candidates = as_list(as_mapping(payload).get("candidates"))
    if not candidates:
        return []
    content = as_mapping(as_mapping(candidates[0]).get("content"))
    return [as_mapping(part) for part in as_list(content.get("parts"))]


def usage_line(payload: Any) -> str:
    usage = as_mapping(as_mapping(payload).get("usageMetadata"))
    if not usage:
        return "Tokens: n/a"
    return (
        f"Tokens - prompt: {usage.get('promptTokenCount', 'n/a')}, "
        f"candidates: {usage.get('candidatesTokenCount', 'n/a')}, "
        f"total: {usage.get('totalTokenCount', 'n/a')}"
    )


class GeminiProvider(BaseProvider):
    provider_id = "gemini"
    provider_label = "Gemini"

    def environment_defaults(self) -> ProviderConfig:
        settings = self.services.settings
        return ProviderConfig(
            api_key=settings.gemini_api_key,
            base_url=settings.gemini_base_url,
            model=settings.gemini_default_model,
        )

    def resolve_model(self, ctx: AiExecutionContext, configured: Optional[str]) -> str:
        for candidate in (as_optional_str(ctx.ai_config.get("model")), configured):
            if candidate and candidate != "default-model":
                return candidate
        return self.services.settings.gemini_default_model

    def endpoint(self, base_url: Optional[str], model: str) -> str:
        base = (base_url or self.services.settings.gemini_base_url).rstrip("/")
        return f"{base}/v1beta/models/{model}:generateContent"

    async def run(self, ctx: AiExecutionContext) -> AiResult:
        credentials = self.credentials.resolve(ctx, GEMINI_INTEGRATION, self.environment_defaults())
        provider_config = credentials.config
        if not provider_config.api_key:
            return await self.run_fallback(ctx, "Gemini API key is not configured")

        model = self.resolve_model(ctx, provider_config.model)
        text_response = is_text_schema(ctx.schema_ref)
        schema = self.schema_for(ctx)
        native_schema = schema is not None and supports_response_schema(model)

        logs: List[str] = []
        all_nodes = self.all_nodes(ctx)
        fields = self.generation_fields(ctx, all_nodes)
        system_prompt = fields.system_prompt.strip() or DEFAULT_SYSTEM_PROMPT
        if schema is not None:
            if fields.output_example:
                system_prompt += f"\n\nExample of the expected response format:\n{fields.output_example}"
            if not native_schema:
                system_prompt += (
                    "\n\nRespond ONLY with a JSON object conforming to this schema:\n"
                    f"{json.dumps(schema, indent=2, ensure_ascii=False)}"
                )
        system_prompt = self.apply_placeholders(system_prompt, ctx, logs)

        user_prompt = self.composer.compose(ctx, schema, all_nodes=all_nodes)
        generation_config: JsonDict = {
            "temperature": fields.temperature,
            "topP": 0.8,
            "topK": 40,
            "maxOutputTokens": 8192,
        }
        if schema is not None:
            generation_config["responseMimeType"] = "application/json"
            if native_schema:
                generation_config["responseSchema"] = to_response_schema(schema)

        request_body: Dict[str, Any] = {
            "systemInstruction": {"role": "system", "parts": [{"text": system_prompt}]},
            "contents": [{"role": "user", "parts": [{"text": user_prompt}, *file_parts(ctx.files)]}],
            "generationConfig": generation_config,
        }
        headers = {"x-goog-api-key": provider_config.api_key, "Content-Type": "application/json"}
        request_payload = self.request_payload(self.provider_id, model, request_body)

        self.logger.info("Calling %s model %s for node %s", self.label, model, ctx.node.node_id)
        async with self.services.http_client_factory() as client:
            payload = await self.send(
                client, "POST", self.endpoint(provider_config.base_url, model), headers=headers, json_body=request_body
            )

        text = "".join(part["text"] for part in candidate_parts(payload) if isinstance(part.get("text"), str))
        if not text.strip():
            raise InvalidResponseError("Gemini returned an empty response.")

        if text_response:
            output = unwrap_text_response(text).strip()
            content_type = "text/plain"
            logs.append("Plain text response generated")
        else:
            output, _ = self.finish_structured(text, ctx, logs)
            content_type = "application/json"
            logs.append(f"Structured response generated for {ctx.schema_ref.upper()}")
        logs.append(usage_line(payload))
        logs.append(f"Generated {len(output)} characters with {model}")

        return AiResult(
            output=output,
            content_type=content_type,
            logs=tuple(logs),
            provider=self.provider_id,
            request_payload=request_payload,
        )


__all__ = [
    "GEMINI_INTEGRATION",
    "GeminiProvider",
    "candidate_parts",
    "file_parts",
    "supports_response_schema",
    "to_response_schema",
    "usage_line",
]
