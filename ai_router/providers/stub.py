"""
Offline provider that fabricates schema-valid content without any network
access, so every AI node stays runnable when no real provider is configured.
Output is a pure function of the execution context.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List

from ai_router.errors import AiRouterError, SchemaValidationError
from ai_router.providers.base import BaseProvider
from ai_router.schema.builtin import PLAN_NODE_TYPES, TEXT_RESPONSE, is_plan_schema, is_text_schema
from ai_router.schema.models import AiExecutionContext, AiResult, JsonSchema, NextNodeSummary


STUB_MODEL = "local-llm-7b-q5"

DEFAULT_DOWNSTREAM = (
    NextNodeSummary(
        node_id="default_briefing",
        type="text",
        title="Additional brief",
        short_description="Structured brief based on the planning results",
    ),
    NextNodeSummary(
        node_id="default_storyboard",
        type="image_gen",
        title="Storyboard preview",
        short_description="Draft storyboard frames",
    ),
    NextNodeSummary(
        node_id="default_voiceover",
        type="audio_gen",
        title="Voiceover",
        short_description="Synthesized text for narration",
    ),
)

PLAN_PHASES = [
    {"name": "Concept", "steps": ["Refine the brief", "Formulate key messages"]},
    {"name": "Production", "steps": ["Generate scenes", "Prepare talent", "Collect assets"]},
    {"name": "Post-production", "steps": ["Assemble preview", "Final quality control"]},
]


def infer_target_audience(source: str) -> str:
    if re.search(r"school|student|teen", source, re.IGNORECASE):
        return "students aged 10-16"
    if re.search(r"adult|professional", source, re.IGNORECASE):
        return "adult audience aged 25-45"
    return "general audience"


def infer_goal(source: str) -> str:
    if not source:
        return "Increase brand awareness"
    first_sentence = re.split(r"[.!?]", source)[0].strip()
    return first_sentence or "Create a memorable video"


def infer_tone(source: str) -> str:
    if re.search(r"serious|formal", source, re.IGNORECASE):
        return "serious"
    if re.search(r"fun|playful|humor", source, re.IGNORECASE):
        return "playful"
    return "dynamic"


def ensure_minimum_nodes(nodes: List[NextNodeSummary], minimum: int = 3) -> List[NextNodeSummary]:
    result = list(nodes)
    for default in DEFAULT_DOWNSTREAM:
        if len(result) >= minimum:
            break
        result.append(default)
    return result


def example_from_schema(schema: JsonSchema, *, name: str = "value") -> Any:
    """
    Build the smallest plausible instance of ``schema``.

    Covers the keywords that appear in node output schemas (``const``,
    ``enum``, ``examples``, ``type``, ``properties``/``required``,
    ``items``/``minItems``, numeric bounds, ``minLength``/``maxLength``).
    A ``pattern`` is only satisfied through ``enum`` or ``examples``;
    anything more exotic is left for the validator to report.
    """

    if "const" in schema:
        return schema["const"]
    if schema.get("enum"):
        return schema["enum"][0]
    examples = schema.get("examples")
    if isinstance(examples, list) and examples:
        return examples[0]
    for combinator in ("anyOf", "oneOf", "allOf"):
        options = schema.get(combinator)
        if isinstance(options, list) and options:
            return example_from_schema(options[0], name=name)

    schema_type = schema.get("type")
    if isinstance(schema_type, list):
        schema_type = next((item for item in schema_type if item != "null"), "null")

    if schema_type == "object" or (schema_type is None and "properties" in schema):
        properties: Dict[str, JsonSchema] = schema.get("properties", {})
        return {
            key: example_from_schema(properties.get(key, {}), name=key)
            for key in schema.get("required", list(properties))
        }
    if schema_type == "array":
        count = max(int(schema.get("minItems", 1)), 1)
        item_schema = schema.get("items", {"type": "string"})
        return [example_from_schema(item_schema, name=f"{name}_{index + 1}") for index in range(count)]
    if schema_type == "integer":
        return int(schema.get("minimum", 0))
    if schema_type == "number":
        return float(schema.get("minimum", 0))
    if schema_type == "boolean":
        return False
    if schema_type == "null":
        return None
    text = f"Sample {name}"
    text = text.ljust(int(schema.get("minLength", 0)), ".")
    if "maxLength" in schema:
        text = text[: int(schema["maxLength"])]
    return text


class StubProvider(BaseProvider):
    provider_id = "stub"

    async def run(self, ctx: AiExecutionContext) -> AiResult:
        if is_text_schema(ctx.schema_ref):
            return self.text_response(ctx)
        if is_plan_schema(ctx.schema_ref):
            return self.plan_response(ctx)
        return self.schema_example_response(ctx)

    def _validated(self, schema_name: str, payload: Any) -> str:
        try:
            self.services.schema_registry.validate_or_raise(schema_name, payload)
        except SchemaValidationError as exc:
            raise AiRouterError(f"AI stub produced invalid payload: {'; '.join(exc.errors)}") from exc
        return json.dumps(payload, indent=2, ensure_ascii=False)

    def text_response(self, ctx: AiExecutionContext) -> AiResult:
        node_content = (ctx.node.content or "").strip()
        upstream = ctx.previous_nodes[-1].content if ctx.previous_nodes else ""
        prompt_source = node_content or (upstream or "")

        lowered = prompt_source.lower()
        if "renovation" in lowered or "repair" in lowered:
            response_text = (
                "Step-by-step renovation plan:\n\n"
                "1. **Preparation phase**\n   - Remove old fixtures\n   - Clean surfaces\n   - Prepare tools and materials\n\n"
                "2. **Main work**\n   - Replace the vanity\n   - Install the new mirror\n   - Install the backsplash\n\n"
                "3. **Finishing phase**\n   - Seal joints\n   - Clean up the workspace\n   - Verify everything works"
            )
        else:
            response_text = (
                f'Response to request: "{prompt_source}"\n\n'
                "This is an offline placeholder response generated from your prompt."
            )

        output = self._validated(TEXT_RESPONSE, {"response": response_text})
        return AiResult(
            output=output,
            content_type="application/json",
            provider=self.provider_id,
            logs=(
                f"AI text response generated for node {ctx.node.node_id}",
                f"Prompt source: {prompt_source[:50]}...",
                f"Response length: {len(response_text)} characters",
            ),
        )

    def plan_response(self, ctx: AiExecutionContext) -> AiResult:
        source = (ctx.previous_nodes[-1].content or "") if ctx.previous_nodes else ""
        audience = infer_target_audience(source)
        nodes = []
        for index, summary in enumerate(ensure_minimum_nodes(ctx.next_nodes), start=1):
            node_type = summary.type.strip() if summary.type.strip() in PLAN_NODE_TYPES else "text"
            nodes.append(
                {
                    "node_id": summary.node_id.strip() or f"auto_node_{index}",
                    "type": node_type,
                    "title": summary.title.strip() or f"Step {index}",
                    "description": summary.short_description.strip()
                    or "Description will be refined during step execution.",
                    "outputs": ["structured_json", "summary_text"],
                }
            )
        plan = {
            "overview": {
                "goal": infer_goal(source),
                "target_audience": audience,
                "tone": infer_tone(source),
                "duration_sec": 30,
            },
            "phases": PLAN_PHASES,
            "nodes": nodes,
        }
        output = self._validated(ctx.schema_ref, plan)
        return AiResult(
            output=output,
            content_type="application/json",
            provider=self.provider_id,
            logs=(
                f"AI stub {STUB_MODEL} executed for node {ctx.node.node_id}",
                f"Detected target audience: {audience}",
                f"Generated {len(plan['phases'])} phases and {len(nodes)} downstream node descriptors",
            ),
        )

    def schema_example_response(self, ctx: AiExecutionContext) -> AiResult:
        schema = self.services.schema_registry.get_schema(ctx.schema_ref)
        output = self._validated(ctx.schema_ref, example_from_schema(schema))
        return AiResult(
            output=output,
            content_type="application/json",
            provider=self.provider_id,
            logs=(
                f"AI stub {STUB_MODEL} executed for node {ctx.node.node_id}",
                f"Generated placeholder payload for schema {ctx.schema_ref}",
            ),
        )


__all__ = ["StubProvider", "example_from_schema", "ensure_minimum_nodes"]
