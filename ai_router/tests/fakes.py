"""Fakes shared by the router tests: scheduler, HTTP transport and service wiring."""

from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Optional

import httpx

from ai_router.runtime.services import RouterServices
from ai_router.schema.models import AiExecutionContext, Edge, Node
from ai_router.stores.memory import InMemoryGraphStore, InMemoryIntegrationStore
from shared.config import RouterConfig


PROJECT_ID = "proj-1"

Handler = Callable[[httpx.Request], httpx.Response]


class FakeScheduler:
    """Clock that only moves when the poller sleeps."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.clock = start
        self.sleeps: List[float] = []

    def now(self) -> float:
        return self.clock

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.clock += seconds


class RecordingTransport:
    """Routes requests to ``handler`` and keeps every request for assertions."""

    def __init__(self, handler: Handler) -> None:
        self.handler = handler
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    def bodies(self, path_suffix: str) -> List[Dict[str, Any]]:
        return [
            json.loads(request.content)
            for request in self.requests
            if request.url.path.endswith(path_suffix) and request.content
        ]


def make_settings(**overrides: Any) -> RouterConfig:
    values: Dict[str, Any] = {
        "openai_api_key": None,
        "gemini_api_key": None,
        "replicate_api_token": None,
        "app_base_url": "http://app.test",
        "uploads_dir": "/tmp/ai-router-test-uploads",
    }
    values.update(overrides)
    return RouterConfig(_env_file=None, **values)


def make_services(
    handler: Optional[Handler] = None,
    *,
    graph_store: Optional[InMemoryGraphStore] = None,
    integrations: Optional[InMemoryIntegrationStore] = None,
    scheduler: Optional[FakeScheduler] = None,
    **settings: Any,
) -> RouterServices:
    transport = httpx.MockTransport(handler or (lambda request: httpx.Response(500, text="unexpected request")))
    return RouterServices.create(
        graph_store=graph_store,
        integrations=integrations,
        settings=make_settings(**settings),
        http_client_factory=lambda: httpx.AsyncClient(transport=transport),
        scheduler=scheduler or FakeScheduler(),
    )


def json_response(payload: Any, status: int = 200) -> httpx.Response:
    return httpx.Response(status, json=payload)


def make_context(
    node: Node,
    *,
    previous: Optional[List[Node]] = None,
    edges: Optional[List[Edge]] = None,
    schema_ref: str = "TEXT_RESPONSE",
    project_id: Optional[str] = PROJECT_ID,
    **extra: Any,
) -> AiExecutionContext:
    return AiExecutionContext(
        project_id=project_id,
        node=node,
        previous_nodes=previous or [],
        edges=edges or [],
        schema_ref=schema_ref,
        **extra,
    )
