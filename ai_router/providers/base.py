from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple

import httpx

from ai_router.context.assembler import ContextAssembler
from ai_router.errors import ConfigurationError, InvalidResponseError, UpstreamHttpError
from ai_router.prompt.composer import PromptComposer
from ai_router.prompt.fields import ConfigurableField, resolve_temperature, resolve_text_field
from ai_router.prompt.placeholders import PlaceholderResolver, normalize_placeholder_values
from ai_router.runtime.credentials import CredentialResolver
from ai_router.runtime.services import RouterServices
from ai_router.schema.builtin import is_text_schema
from ai_router.schema.models import AiExecutionContext, AiResult, JsonDict, JsonSchema, Node, RequestPayload


TEXT_UNWRAP_KEYS = ("response", "content", "text", "message")
_CODE_FENCE = re.compile(r"^```(?:json)?\s*\n(?P<body>.*)\n```\s*$", re.DOTALL)


@dataclass(frozen=True)
class GenerationFields:
    system_prompt: str
    output_example: str
    temperature: float


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class ProviderAdapter(Protocol):
    """Interface implemented by every provider backend."""

    provider_id: str

    async def run(self, ctx: AiExecutionContext) -> AiResult:
        """Execute the AI node described by ``ctx`` and return its result."""


def unwrap_text_response(text: str) -> str:
    """
    Return the plain text of a free-text reply, unwrapping a JSON envelope
    such as ``{"response": "..."}`` when the model produced one.
    """

    stripped = text.strip()
    if not stripped.startswith("{"):
        return text
    try:
        decoded = json.loads(stripped)
    except json.JSONDecodeError:
        return text
    if isinstance(decoded, dict):
        for key in TEXT_UNWRAP_KEYS:
            value = decoded.get(key)
            if isinstance(value, str):
                return value
    return text


def parse_json_payload(text: str, provider: str) -> Any:
    candidate = text.strip()
    fenced = _CODE_FENCE.match(candidate)
    if fenced is not None:
        candidate = fenced.group("body").strip()
    try:
        return json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise InvalidResponseError(f"{provider} response is not valid JSON: {exc.msg}") from exc


async def request_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    provider: str,
    logger: logging.Logger,
    headers: Optional[Mapping[str, str]] = None,
    json_body: Optional[Mapping[str, Any]] = None,
) -> Any:
    """Perform one request and return the decoded JSON body, translating failures to UpstreamHttpError."""

    try:
        response = await client.request(method, url, headers=dict(headers or {}), json=json_body)
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        logger.error("%s API error: %s - %s", provider, exc.response.status_code, exc.response.text[:500])
        raise UpstreamHttpError(
            provider,
            exc.response.status_code,
            exc.response.text,
            reason=exc.response.reason_phrase,
        ) from exc
    except httpx.HTTPError as exc:
        logger.error("%s request to %s failed: %s", provider, url, exc)
        raise UpstreamHttpError(provider, 0, str(exc)) from exc

    if not response.content:
        return {}
    try:
        return response.json()
    except ValueError as exc:
        raise InvalidResponseError(f"{provider} returned a non-JSON body: {response.text[:200]}") from exc


class BaseProvider:
    """
    Shared plumbing for provider adapters: prompt building, HTTP error
    translation, schema checks and node meta updates.
    """

    provider_id: str = ""
    provider_label: str = ""

    @property
    def label(self) -> str:
        return self.provider_label or self.provider_id

    def __init__(self, services: RouterServices, *, fallback: Optional[ProviderAdapter] = None) -> None:
        self.services = services
        self.fallback = fallback
        self.logger: logging.Logger = services.logger.getChild(self.provider_id or type(self).__name__)
        self.credentials = CredentialResolver(services.integrations, logger=self.logger)
        self.placeholders = PlaceholderResolver(services.graph_store, logger=self.logger)
        self.composer = PromptComposer(ContextAssembler(services.assets), logger=self.logger)

    # ------------------------------------------------------------------
    # Prompt helpers
    # ------------------------------------------------------------------
    def all_nodes(self, ctx: AiExecutionContext) -> List[Node]:
        """Nodes port resolution may read: the project graph when available, else the context snapshot."""

        nodes = ctx.all_nodes()
        if ctx.project_id and self.services.graph_store is not None:
            known = {node.node_id for node in nodes}
            nodes.extend(node for node in self.services.graph_store.list_nodes(ctx.project_id) if node.node_id not in known)
        return nodes

    def placeholder_values(self, ctx: AiExecutionContext) -> Dict[str, str]:
        values = normalize_placeholder_values(ctx.ai_config.get("placeholder_values"))
        values.update(ctx.placeholder_values)
        return values

    def apply_placeholders(self, template: str, ctx: AiExecutionContext, logs: List[str]) -> str:
        resolution = self.placeholders.apply(template, self.placeholder_values(ctx), ctx)
        logs.extend(resolution.logs)
        return resolution.prompt

    def generation_fields(self, ctx: AiExecutionContext, all_nodes: List[Node]) -> GenerationFields:
        args = (ctx.ai_config, all_nodes, ctx.edges, ctx.node.node_id)
        return GenerationFields(
            system_prompt=resolve_text_field(ConfigurableField.system_prompt, *args),
            output_example=resolve_text_field(ConfigurableField.output_example, *args),
            temperature=resolve_temperature(*args),
        )

    def schema_for(self, ctx: AiExecutionContext) -> Optional[JsonSchema]:
        if is_text_schema(ctx.schema_ref):
            return None
        return self.services.schema_registry.get_schema(ctx.schema_ref)

    # ------------------------------------------------------------------
    # Response helpers
    # ------------------------------------------------------------------
    def finish_structured(self, text: str, ctx: AiExecutionContext, logs: List[str]) -> Tuple[str, Any]:
        """Parse and validate a structured reply; returns the canonical JSON text and the parsed value."""

        parsed = parse_json_payload(text, self.label)
        self.services.schema_registry.validate_or_raise(ctx.schema_ref, parsed)
        logs.append(f"Response validated against {ctx.schema_ref}")
        return json.dumps(parsed, indent=2, ensure_ascii=False), parsed

    @staticmethod
    def request_payload(provider: str, model: Optional[str], request: Mapping[str, Any]) -> RequestPayload:
        return RequestPayload(provider=provider, model=model, timestamp=utcnow_iso(), request=dict(request))

    async def send(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        json_body: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        return await request_json(
            client, method, url, provider=self.label, logger=self.logger, headers=headers, json_body=json_body
        )

    # ------------------------------------------------------------------
    # Graph helpers
    # ------------------------------------------------------------------
    def stored_node(self, ctx: AiExecutionContext) -> Optional[Node]:
        """The executing node as persisted in the graph store, if it was saved there."""

        if not ctx.project_id or self.services.graph_store is None:
            return None
        return self.services.graph_store.get_node(ctx.project_id, ctx.node.node_id)

    def update_node_meta(self, ctx: AiExecutionContext, meta: JsonDict, node_id: Optional[str] = None) -> None:
        if not ctx.project_id or self.services.graph_store is None:
            return
        self.services.graph_store.update_node_meta(ctx.project_id, node_id or ctx.node.node_id, meta)

    def require_project(self, ctx: AiExecutionContext) -> str:
        if not ctx.project_id:
            raise ConfigurationError(f"{self.label} requires a project context")
        return ctx.project_id

    async def run_fallback(self, ctx: AiExecutionContext, reason: str) -> AiResult:
        """Hand the run to the offline stub when that is allowed, otherwise fail."""

        if self.fallback is None or not self.services.settings.stub_fallback_enabled:
            raise ConfigurationError(reason)
        self.logger.warning("%s; using offline stub for node %s", reason, ctx.node.node_id)
        result = await self.fallback.run(ctx)
        return result.model_copy(update={"logs": (f"{reason}; using offline stub", *result.logs)})


__all__ = [
    "BaseProvider",
    "GenerationFields",
    "ProviderAdapter",
    "parse_json_payload",
    "request_json",
    "unwrap_text_response",
    "utcnow_iso",
]
