from __future__ import annotations

import pytest

from ai_router import AiRouter, execute_node
from ai_router.registry.provider_registry import ProviderNotFoundError, ProviderRegistry, resolve_provider_id
from ai_router.runtime.router import build_default_registry
from ai_router.schema.models import AiExecutionContext, AiResult, Node
from ai_router.tests.fakes import make_context, make_services


class EchoProvider:
    def __init__(self, provider_id: str) -> None:
        self.provider_id = provider_id
        self.seen: list = []

    async def run(self, ctx: AiExecutionContext) -> AiResult:
        self.seen.append(ctx.node.node_id)
        return AiResult(output=ctx.node.content or "", content_type="text/plain")


def _ctx(node_provider=None, project_provider=None) -> AiExecutionContext:
    config = {"ai": {"provider": node_provider}} if node_provider else {}
    settings = {"ai": {"provider": project_provider}} if project_provider else {}
    return make_context(Node(node_id="n1", content="hello", config=config), settings=settings)


def test_provider_id_resolution_order() -> None:
    assert resolve_provider_id(_ctx()) == "stub"
    assert resolve_provider_id(_ctx(node_provider="Gemini")) == "gemini"
    assert resolve_provider_id(_ctx(node_provider="gemini", project_provider="OpenAI")) == "openai"


def test_registry_aliases_and_default() -> None:
    registry = build_default_registry(make_services())
    assert registry.get("open_ai").provider_id == "openai"
    assert registry.get("google_workspace").provider_id == "gemini"
    assert registry.get("midjourney_proxy").provider_id == "midjourney_mindworkflow_relay"
    assert registry.get("local_stub").provider_id == "stub"
    assert registry.get("something-new").provider_id == "openai"
    assert ("stub", ["local_stub"]) in registry.table()


def test_registry_without_default_raises() -> None:
    registry = ProviderRegistry(default_id="missing")
    assert registry.maybe_get("anything") is None
    with pytest.raises(ProviderNotFoundError):
        registry.get("anything")


@pytest.mark.asyncio
async def test_dispatch_fills_in_provider_id() -> None:
    echo = EchoProvider("echo")
    registry = ProviderRegistry(default_id="echo")
    registry.register(echo, aliases=("parrot",))

    result = await AiRouter(make_services(), registry).dispatch(_ctx(node_provider="parrot"))

    assert result.output == "hello"
    assert result.provider == "echo"
    assert echo.seen == ["n1"]


@pytest.mark.asyncio
async def test_execute_node_defaults_to_the_stub() -> None:
    result = await execute_node(_ctx(), make_services())
    assert result.provider == "stub"
    assert result.content_type == "application/json"


@pytest.mark.asyncio
async def test_unknown_provider_falls_back_to_openai_then_stub_without_key() -> None:
    result = await execute_node(_ctx(node_provider="mystery"), make_services())
    assert result.provider == "stub"
    assert result.logs[0] == "OpenAI API key is not configured; using offline stub"
