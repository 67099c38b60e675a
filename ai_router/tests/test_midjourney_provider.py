from __future__ import annotations

import json
from typing import Dict, Optional

import httpx
import pytest

from ai_router.errors import ConfigurationError, JobFailedError, JobTimeoutError
from ai_router.providers.midjourney import MidjourneyProvider
from ai_router.providers.midjourney_client import classify_upscale, task_image_url
from ai_router.providers.midjourney_prompt import ReferenceImage, build_discord_prompt, parse_modifiers, prepare_prompt
from ai_router.runtime.polling import JobPhase
from ai_router.schema.models import AttachedFile, Node
from ai_router.tests.fakes import PROJECT_ID, RecordingTransport, json_response, make_context, make_services


MJ_SETTINGS = {"integrations": {"midjourney": {"api_key": "mj-token"}}}


class RelayScript:
    """Relay double: the main job succeeds unless told otherwise; upscales follow ``upscales``."""

    def __init__(
        self,
        upscales: Dict[int, Optional[dict]],
        main: Optional[dict] = None,
    ) -> None:
        self.upscales = upscales
        self.main = main or {"status": "SUCCESS", "imageUrl": "https://cdn.test/grid.png"}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/mj/submit/imagine":
            return json_response({"code": 1, "result": "job-main"})
        if path == "/mj/task/job-main/fetch":
            return json_response(self.main)
        if path == "/mj/submit/change":
            index = json.loads(request.content)["index"]
            if self.upscales.get(index) is None:
                return json_response({"code": 23, "description": "queue full"})
            return json_response({"code": 1, "result": f"up-{index}"})
        if path.startswith("/mj/task/up-"):
            index = int(path.split("/")[3].split("-")[1])
            return json_response(self.upscales[index])
        return httpx.Response(404, text=f"unexpected {path}")


def _upscaled(index: int) -> dict:
    return {"status": "SUCCESS", "artifacts": [{"url": f"https://cdn.test/{index}.png"}]}


def _saved_node(graph_store, **meta) -> Node:
    return graph_store.add_node(
        PROJECT_ID,
        Node(node_id="mj-1", type="image_gen", content="A lighthouse at dusk", meta=meta),
    )


@pytest.mark.asyncio
async def test_partial_upscale_failure_keeps_the_successful_variants(graph_store) -> None:
    node = _saved_node(graph_store, prompt_modifiers=["--speed turbo"])
    transport = RecordingTransport(
        RelayScript({1: _upscaled(1), 2: _upscaled(2), 3: {"status": "FAILURE", "failReason": "moderation"}, 4: _upscaled(4)})
    )
    provider = MidjourneyProvider(make_services(transport, graph_store=graph_store))

    result = await provider.run(make_context(node, settings=MJ_SETTINGS))

    output = json.loads(result.output)
    assert output["status"] == "completed"
    assert output["variants_created"] == 3
    assert output["images"] == ["https://cdn.test/1.png", "https://cdn.test/2.png", "https://cdn.test/4.png"]
    assert [line for line in result.logs if "failed" in line] == ["Upscale variant 3 failed: moderation"]
    assert [(item.index, item.job_id, item.reason) for item in result.partial_failures] == [(3, "up-3", "moderation")]

    variants = sorted(
        (item for item in graph_store.list_nodes(PROJECT_ID) if item.node_id != node.node_id),
        key=lambda item: item.meta["variant_index"],
    )
    assert [item.title for item in variants] == ["Variant 1", "Variant 2", "Variant 4"]
    assert variants[0].meta["upscale_job_id"] == "up-1"
    assert variants[0].meta["midjourney_job_id"] == "job-main"
    assert len(graph_store.list_edges(PROJECT_ID)) == 3

    imagine = transport.bodies("/mj/submit/imagine")[0]
    assert imagine["prompt"] == "A lighthouse at dusk --turbo"
    assert transport.requests[0].headers["mj-api-secret"] == "mj-token"
    meta = graph_store.get_node(PROJECT_ID, node.node_id).meta
    assert meta["midjourney_job_id"] == "job-main"
    assert meta["midjourney_status"] == "completed"
    assert meta["last_request_payload"]["request"]["additional_inputs"] == {"speed": "turbo"}


@pytest.mark.asyncio
async def test_upscale_submit_rejection_is_a_partial_failure(graph_store) -> None:
    node = _saved_node(graph_store)
    provider = MidjourneyProvider(
        make_services(RelayScript({1: _upscaled(1), 2: None}), graph_store=graph_store, midjourney_upscale_count=2)
    )

    result = await provider.run(make_context(node, settings=MJ_SETTINGS))

    assert json.loads(result.output)["variants_created"] == 1
    assert result.partial_failures[0].index == 2
    assert result.partial_failures[0].job_id is None
    assert "queue full" in result.partial_failures[0].reason


class CrashingRelay(RelayScript):
    """Raises an unexpected error while polling one upscale."""

    def __init__(self, crash_index: int, **kwargs) -> None:
        super().__init__(**kwargs)
        self.crash_index = crash_index

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == f"/mj/task/up-{self.crash_index}/fetch":
            raise RuntimeError("relay connection reset")
        return super().__call__(request)


@pytest.mark.asyncio
async def test_unexpected_upscale_error_is_a_partial_failure(graph_store) -> None:
    node = _saved_node(graph_store)
    script = CrashingRelay(2, upscales={1: _upscaled(1), 2: _upscaled(2), 3: _upscaled(3)})
    provider = MidjourneyProvider(
        make_services(script, graph_store=graph_store, midjourney_upscale_count=3)
    )

    result = await provider.run(make_context(node, settings=MJ_SETTINGS))

    output = json.loads(result.output)
    assert output["variants_created"] == 2
    assert output["images"] == ["https://cdn.test/1.png", "https://cdn.test/3.png"]
    assert [(item.index, item.job_id, item.reason) for item in result.partial_failures] == [
        (2, "up-2", "relay connection reset")
    ]
    assert [line for line in result.logs if "failed" in line] == ["Upscale variant 2 failed: relay connection reset"]


@pytest.mark.asyncio
async def test_main_job_failure_fails_the_run(graph_store) -> None:
    node = _saved_node(graph_store)
    script = RelayScript({}, main={"status": "FAILURE", "failReason": "banned prompt"})
    provider = MidjourneyProvider(make_services(script, graph_store=graph_store))
    with pytest.raises(JobFailedError, match="banned prompt"):
        await provider.run(make_context(node, settings=MJ_SETTINGS))


@pytest.mark.asyncio
async def test_main_job_timeout(graph_store, scheduler) -> None:
    node = _saved_node(graph_store)
    script = RelayScript({}, main={"status": "IN_PROGRESS"})
    services = make_services(script, graph_store=graph_store, scheduler=scheduler, midjourney_main_max_attempts=2)
    with pytest.raises(JobTimeoutError, match="did not complete after 2 polls"):
        await MidjourneyProvider(services).run(make_context(node, settings=MJ_SETTINGS))
    assert scheduler.sleeps == [5.0, 5.0]


@pytest.mark.asyncio
async def test_requires_saved_node_and_token(graph_store) -> None:
    provider = MidjourneyProvider(make_services(graph_store=graph_store))
    with pytest.raises(ConfigurationError, match="saved workflow node"):
        await provider.run(make_context(Node(node_id="mj-1", content="x"), settings=MJ_SETTINGS))

    node = _saved_node(graph_store)
    with pytest.raises(ConfigurationError, match="Midjourney API key is not configured"):
        await provider.run(make_context(node))


def test_discord_prompt_layout() -> None:
    references = [
        ReferenceImage(url="https://a.test/char.png", purpose="character"),
        ReferenceImage(url="https://a.test/style.png", purpose="style"),
        ReferenceImage(url="https://a.test/img.png"),
    ]
    inputs = {
        "mode": "raw",
        "aspect_ratio": "portrait",
        "stylization": 250,
        "weirdness": 0,
        "variety": 10,
        "speed": "fast",
    }
    assert build_discord_prompt("A cat", references, inputs, "midjourney-v6.1") == (
        "https://a.test/img.png https://a.test/style.png A cat "
        "--v 6.1 --style raw --ar 2:3 --s 250 --vary 10 --fast --cref https://a.test/char.png --cw 80"
    )
    assert build_discord_prompt("A cat", references[:1], {}, "midjourney-niji-6") == "A cat --niji 6"
    assert build_discord_prompt("A cat", [], {"stylization": 100}) == "A cat"


def test_modifiers_and_prompt_preparation() -> None:
    assert parse_modifiers("--ar 16:9\n--chaos 20\n--tile\nnot a modifier") == {"ar": "16:9", "chaos": 20, "tile": True}

    ctx = make_context(
        Node(node_id="mj-1", content="Base", meta={"prompt_modifiers": "--s 0.5"}),
        previous=[Node(node_id="ref", title="Mood", content="Foggy"), Node(node_id="clip", type="video", content="v")],
        files=[
            AttachedFile(name="style ref", content="https://a.test/s.png"),
            AttachedFile(name="dup", content="https://a.test/s.png"),
            AttachedFile(name="local", content="/uploads/x.png"),
        ],
    )
    prepared = prepare_prompt(ctx, mode="raw")
    assert prepared.prompt == "Base\n\nRef Mood:\nFoggy"
    assert prepared.modifier_inputs == {"s": 0.5}
    assert [ref.url for ref in prepared.reference_images] == ["https://a.test/s.png"]
    assert prepared.logs[-2:] == ["Reference images attached: 1", "Mode: raw"]


def test_upscale_without_image_counts_as_failed() -> None:
    assert classify_upscale({"status": "SUCCESS"}) is JobPhase.failed
    assert classify_upscale({"status": "SUCCESS", "imageUrl": "https://x.test/a.png"}) is JobPhase.succeeded
    assert task_image_url({"artifacts": ["https://x.test/b.png"], "imageUrl": "ignored"}) == "https://x.test/b.png"
