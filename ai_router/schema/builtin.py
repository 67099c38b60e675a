"""
Schemas the router always knows about.

``TEXT_RESPONSE`` marks a free-text target; every other schema is treated as a
structured JSON target.
"""

from __future__ import annotations

from typing import Dict

from ai_router.schema.models import JsonSchema


TEXT_RESPONSE = "TEXT_RESPONSE"
PLAN_SCHEMA = "PLAN_SCHEMA"

PLAN_NODE_TYPES = ("text", "ai", "parser", "python", "image_gen", "audio_gen", "video_gen")


TEXT_RESPONSE_SCHEMA: JsonSchema = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["response"],
    "properties": {
        "response": {"type": "string"},
    },
}

PLAN_SCHEMA_DOCUMENT: JsonSchema = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["overview", "phases", "nodes"],
    "properties": {
        "overview": {
            "type": "object",
            "required": ["goal", "target_audience", "tone", "duration_sec"],
            "properties": {
                "goal": {"type": "string"},
                "target_audience": {"type": "string"},
                "tone": {"type": "string"},
                "duration_sec": {"type": "integer", "minimum": 5, "maximum": 180},
            },
        },
        "phases": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "required": ["name", "steps"],
                "properties": {
                    "name": {"type": "string"},
                    "steps": {"type": "array", "minItems": 1, "items": {"type": "string"}},
                },
            },
        },
        "nodes": {
            "type": "array",
            "minItems": 3,
            "items": {
                "type": "object",
                "required": ["node_id", "type", "title", "description", "outputs"],
                "properties": {
                    "node_id": {"type": "string"},
                    "type": {"type": "string", "enum": list(PLAN_NODE_TYPES)},
                    "title": {"type": "string"},
                    "description": {"type": "string"},
                    "outputs": {"type": "array", "minItems": 1, "items": {"type": "string"}},
                },
            },
        },
    },
}


def builtin_schemas() -> Dict[str, JsonSchema]:
    return {
        TEXT_RESPONSE: TEXT_RESPONSE_SCHEMA,
        PLAN_SCHEMA: PLAN_SCHEMA_DOCUMENT,
    }


def normalize_schema_name(name: str | None) -> str:
    return (name or "").strip().upper()


def is_text_schema(name: str | None) -> bool:
    return normalize_schema_name(name) == TEXT_RESPONSE


def is_plan_schema(name: str | None) -> bool:
    return normalize_schema_name(name) == PLAN_SCHEMA
