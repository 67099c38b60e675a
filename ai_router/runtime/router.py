"""
Entry point for executing an AI node: pick the provider adapter for the
execution context and run it.
"""

from __future__ import annotations

import logging
from typing import Optional

from ai_router.providers.gemini import GeminiProvider
from ai_router.providers.google_ai_studio import GoogleAiStudioProvider
from ai_router.providers.midjourney import MidjourneyProvider
from ai_router.providers.openai import OpenAIProvider
from ai_router.providers.replicate import ReplicateProvider
from ai_router.providers.stub import StubProvider
from ai_router.registry.provider_registry import ProviderRegistry, resolve_provider_id
from ai_router.runtime.services import RouterServices
from ai_router.schema.models import AiExecutionContext, AiResult


def build_default_registry(services: RouterServices) -> ProviderRegistry:
    stub = StubProvider(services)
    registry = ProviderRegistry()
    registry.register(stub, aliases=("local_stub",))
    registry.register(OpenAIProvider(services, fallback=stub), aliases=("openai_gpt", "open_ai"))
    registry.register(GeminiProvider(services, fallback=stub), aliases=("google_gemini", "google_workspace"))
    registry.register(GoogleAiStudioProvider(services))
    registry.register(ReplicateProvider(services))
    registry.register(MidjourneyProvider(services), aliases=("midjourney_proxy",))
    return registry


class AiRouter:
    def __init__(self, services: RouterServices, registry: Optional[ProviderRegistry] = None) -> None:
        self.services = services
        self.registry = registry or build_default_registry(services)
        self.logger: logging.Logger = services.logger.getChild("router")

    async def dispatch(self, ctx: AiExecutionContext) -> AiResult:
        """
        Run the node with the adapter selected by ``resolve_provider_id``.

        Errors raised by the adapter propagate unchanged; nothing is retried.
        """

        provider_id = resolve_provider_id(ctx)
        adapter = self.registry.get(provider_id)
        self.logger.info("Dispatching node %s to %s (requested %s)", ctx.node.node_id, adapter.provider_id, provider_id)
        result = await adapter.run(ctx)
        if result.provider is None:
            result = result.model_copy(update={"provider": adapter.provider_id})
        self.logger.info("Node %s finished with %s (%s log lines)", ctx.node.node_id, result.content_type, len(result.logs))
        return result


__all__ = ["AiRouter", "build_default_registry"]
