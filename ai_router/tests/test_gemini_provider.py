from __future__ import annotations

import json

import httpx
import pytest

from ai_router.errors import InvalidResponseError
from ai_router.providers.gemini import GeminiProvider, file_parts, supports_response_schema, to_response_schema, usage_line
from ai_router.providers.stub import StubProvider
from ai_router.schema.models import AttachedFile, Node
from ai_router.tests.fakes import RecordingTransport, json_response, make_context, make_services


def _reply(text: str) -> httpx.Response:
    return json_response(
        {
            "candidates": [{"content": {"parts": [{"text": text}]}}],
            "usageMetadata": {"promptTokenCount": 3, "candidatesTokenCount": 4, "totalTokenCount": 7},
        }
    )


def _provider(handler, **settings) -> GeminiProvider:
    services = make_services(handler, **settings)
    return GeminiProvider(services, fallback=StubProvider(services))


@pytest.mark.asyncio
async def test_text_generation_request_shape() -> None:
    transport = RecordingTransport(lambda request: _reply("Bonjour"))
    provider = _provider(transport, gemini_api_key="g-key")
    ctx = make_context(
        Node(
            node_id="n1",
            content="Translate hello",
            config={"ai": {"system_prompt": "Hi <who>", "placeholder_values": {"who": "team"}}},
        ),
        files=[
            AttachedFile(name="dot", type="image/png", content="data:image/png;base64,AAAA"),
            AttachedFile(name="notes", type="text/plain", content="some notes", source_node_id="n0"),
        ],
    )

    result = await provider.run(ctx)

    assert result.output == "Bonjour"
    assert result.content_type == "text/plain"
    assert "Tokens - prompt: 3, candidates: 4, total: 7" in result.logs
    request = transport.requests[0]
    assert request.url.path == "/v1beta/models/gemini-2.5-flash:generateContent"
    assert request.headers["x-goog-api-key"] == "g-key"
    body = json.loads(request.content)
    assert body["systemInstruction"]["parts"][0]["text"] == "Hi team"
    parts = body["contents"][0]["parts"]
    assert parts[0] == {"text": "Translate hello"}
    assert parts[1] == {"inlineData": {"mimeType": "image/png", "data": "AAAA"}}
    assert parts[2]["text"].startswith("Attached files:\n## File 1: notes")
    assert body["generationConfig"] == {"temperature": 0.7, "topP": 0.8, "topK": 40, "maxOutputTokens": 8192}


@pytest.mark.asyncio
async def test_structured_target_sets_response_schema() -> None:
    transport = RecordingTransport(lambda request: _reply('{"response": "fine"}'))
    services = make_services(transport, gemini_api_key="g-key")
    services.schema_registry.register(
        "ANSWER",
        {"type": "object", "required": ["response"], "properties": {"response": {"type": "string"}}},
    )
    provider = GeminiProvider(services)

    result = await provider.run(make_context(Node(node_id="n1", content="Q"), schema_ref="ANSWER"))

    assert result.content_type == "application/json"
    assert json.loads(result.output) == {"response": "fine"}
    config = json.loads(transport.requests[0].content)["generationConfig"]
    assert config["responseMimeType"] == "application/json"
    assert config["responseSchema"] == {
        "type": "OBJECT",
        "required": ["response"],
        "properties": {"response": {"type": "STRING"}},
    }


@pytest.mark.asyncio
async def test_legacy_models_get_schema_in_system_prompt() -> None:
    transport = RecordingTransport(lambda request: _reply('{"response": "fine"}'))
    services = make_services(transport, gemini_api_key="g-key")
    services.schema_registry.register("ANSWER", {"type": "object", "required": ["response"]})
    ctx = make_context(Node(node_id="n1", content="Q", config={"ai": {"model": "gemini-pro"}}), schema_ref="ANSWER")
    await GeminiProvider(services).run(ctx)
    body = json.loads(transport.requests[0].content)
    assert "responseSchema" not in body["generationConfig"]
    assert "Respond ONLY with a JSON object" in body["systemInstruction"]["parts"][0]["text"]
    assert not supports_response_schema("gemini-pro")
    assert not supports_response_schema("gemini-1.0-pro")
    assert supports_response_schema("gemini-1.5-pro")
    assert transport.requests[0].url.path.endswith("/gemini-pro:generateContent")


@pytest.mark.asyncio
async def test_empty_candidates_are_invalid() -> None:
    provider = _provider(lambda request: json_response({"candidates": []}), gemini_api_key="g-key")
    with pytest.raises(InvalidResponseError):
        await provider.run(make_context(Node(node_id="n1", content="Q")))


@pytest.mark.asyncio
async def test_missing_key_uses_stub() -> None:
    result = await _provider(None).run(make_context(Node(node_id="n1", content="Q")))
    assert result.provider == "stub"


def test_response_schema_conversion_drops_unsupported_keywords() -> None:
    converted = to_response_schema(
        {
            "$schema": "https://json-schema.org/draft/2020-12/schema",
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "tags": {"type": "array", "items": {"type": "string", "enum": ["a", "b"]}, "maxItems": 3},
                "note": {"type": ["string", "null"], "description": "optional"},
            },
        }
    )
    assert converted == {
        "type": "OBJECT",
        "properties": {
            "tags": {"type": "ARRAY", "maxItems": 3, "items": {"type": "STRING", "enum": ["a", "b"]}},
            "note": {"type": "STRING", "nullable": True, "description": "optional"},
        },
    }


def test_helpers_without_data() -> None:
    assert usage_line({}) == "Tokens: n/a"
    assert file_parts([]) == []
