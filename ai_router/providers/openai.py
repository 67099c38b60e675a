from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from ai_router.errors import InvalidResponseError
from ai_router.prompt.fields import resolve_provider_fields
from ai_router.providers.base import BaseProvider, unwrap_text_response
from ai_router.runtime.credentials import IntegrationSpec
from ai_router.schema.builtin import is_text_schema
from ai_router.schema.models import AiExecutionContext, AiResult, JsonSchema, ProviderConfig
from ai_router.schema.values import as_mapping, as_optional_str


OPENAI_INTEGRATION = IntegrationSpec(
    provider="OpenAI",
    integration_ids=("openai_gpt",),
    project_keys=("openai", "open_ai", "openai_gpt"),
)

STRUCTURED_OUTPUT_MODELS = ("gpt-4o", "gpt-4-turbo")
PLACEHOLDER_MODEL = "default-model"

DEFAULT_PLAN_SYSTEM_PROMPT = (
    "You are an assistant that always returns results as JSON with one or more nodes. "
    "Each node must have type, title, and content. For simple tasks create one node with "
    'type="text", for complex ones create a plan with multiple nodes.'
)
DEFAULT_TEXT_SYSTEM_PROMPT = (
    "You are a thorough assistant. Respond in plain text or Markdown, without JSON or service "
    "prefixes. Provide a concise, accurate, and helpful answer."
)
STRICT_JSON_INSTRUCTION = (
    "CRITICAL: You MUST respond ONLY with valid JSON. No text before or after the JSON. "
    "Only a clean JSON object conforming to the schema."
)


def supports_structured_outputs(model: str) -> bool:
    return any(family in model for family in STRUCTURED_OUTPUT_MODELS)


def build_system_prompt(
    configured: str,
    *,
    text_response: bool,
    output_example: str,
    schema: Optional[JsonSchema],
    inline_schema: bool,
) -> str:
    """
    System prompt for a chat completion: the configured prompt (or a default),
    the expected output example, and, when the model cannot enforce a schema
    natively, the schema itself as instructions.
    """

    prompt = configured if configured.strip() else (
        DEFAULT_TEXT_SYSTEM_PROMPT if text_response else DEFAULT_PLAN_SYSTEM_PROMPT
    )
    if text_response:
        return prompt
    if output_example:
        prompt += f"\n\nExample of the expected response format:\n{output_example}"
    if inline_schema and schema:
        prompt += f"\n\n{STRICT_JSON_INSTRUCTION}"
        prompt += f"\n\nRequired JSON schema (follow strictly!):\n{json.dumps(schema, indent=2, ensure_ascii=False)}"
    return prompt


class OpenAIProvider(BaseProvider):
    provider_id = "openai"
    provider_label = "OpenAI"

    def environment_defaults(self) -> ProviderConfig:
        settings = self.services.settings
        return ProviderConfig(api_key=settings.openai_api_key, base_url=settings.openai_base_url)

    def resolve_model(self, ctx: AiExecutionContext, configured: Optional[str]) -> str:
        model = as_optional_str(ctx.ai_config.get("model")) or configured
        if not model or model == PLACEHOLDER_MODEL:
            return self.services.settings.openai_default_model
        return model

    async def run(self, ctx: AiExecutionContext) -> AiResult:
        credentials = self.credentials.resolve(ctx, OPENAI_INTEGRATION, self.environment_defaults())
        provider_config = credentials.config
        if not provider_config.api_key:
            return await self.run_fallback(ctx, "OpenAI API key is not configured")

        base_url = (provider_config.base_url or self.services.settings.openai_base_url).rstrip("/")
        endpoint = f"{base_url}/chat/completions"
        model = self.resolve_model(ctx, provider_config.model)
        structured = supports_structured_outputs(model)
        text_response = is_text_schema(ctx.schema_ref)
        schema = self.schema_for(ctx)

        logs: List[str] = []
        all_nodes = self.all_nodes(ctx)
        fields = self.generation_fields(ctx, all_nodes)
        system_prompt = build_system_prompt(
            fields.system_prompt,
            text_response=text_response,
            output_example=fields.output_example,
            schema=schema,
            inline_schema=not structured,
        )
        system_prompt = self.apply_placeholders(system_prompt, ctx, logs)

        provider_fields = resolve_provider_fields(
            provider_config.input_fields,
            as_mapping(ctx.ai_config.get("provider_fields")),
            ctx.previous_nodes,
        )
        user_prompt = self.composer.compose(ctx, schema, all_nodes=all_nodes)

        request_body: Dict[str, Any] = {
            "model": model,
            "temperature": fields.temperature,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }
        if schema is not None and structured:
            request_body["response_format"] = {
                "type": "json_schema",
                "json_schema": {"name": f"node_{ctx.node.node_id}", "schema": schema},
            }

        headers = {
            "Authorization": f"Bearer {provider_config.api_key}",
            "Content-Type": "application/json",
        }
        if provider_config.organization:
            headers["OpenAI-Organization"] = provider_config.organization

        request_payload = self.request_payload(self.provider_id, model, request_body)
        self.logger.info("Calling %s model %s for node %s", self.label, model, ctx.node.node_id)
        async with self.services.http_client_factory() as client:
            payload = await self.send(client, "POST", endpoint, headers=headers, json_body=request_body)

        choices = payload.get("choices") if isinstance(payload, dict) else None
        message = as_mapping(choices[0].get("message")) if choices and isinstance(choices[0], dict) else {}
        raw_content = message.get("content")
        if not isinstance(raw_content, str) or not raw_content.strip():
            raise InvalidResponseError("OpenAI returned an empty response.")

        usage = as_mapping(payload.get("usage"))
        logs.append(f"OpenAI model {model} responded successfully")
        logs.append(
            f"Prompt tokens: {usage.get('prompt_tokens', 'n/a')}, "
            f"completion tokens: {usage.get('completion_tokens', 'n/a')}"
        )

        if text_response:
            output = unwrap_text_response(raw_content).strip()
            content_type = "text/plain"
            logs.append("Plain text response (no JSON validation)")
        else:
            output, _ = self.finish_structured(raw_content, ctx, logs)
            content_type = "application/json"
            if provider_fields:
                logs.append(f"Provider fields used: {', '.join(field.key for field in provider_fields)}")
            else:
                logs.append("Provider fields not supplied")

        logs.extend(
            [
                "",
                "=== REQUEST ===",
                f"Model: {model}",
                f"Schema: {ctx.schema_ref}",
                f"Temperature: {fields.temperature}",
                f"Messages: {len(request_body['messages'])} messages",
                "",
                "=== RESPONSE ===",
                output[:500] + ("..." if len(output) > 500 else ""),
            ]
        )
        return AiResult(
            output=output,
            content_type=content_type,
            logs=tuple(logs),
            provider=self.provider_id,
            request_payload=request_payload,
        )


__all__ = ["OPENAI_INTEGRATION", "OpenAIProvider", "build_system_prompt", "supports_structured_outputs"]
