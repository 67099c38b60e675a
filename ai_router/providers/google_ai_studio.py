from __future__ import annotations

import json
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ai_router.errors import AiRouterError
from ai_router.providers.base import BaseProvider, utcnow_iso
from ai_router.providers.gemini import candidate_parts
from ai_router.runtime.credentials import IntegrationSpec, require_api_key
from ai_router.schema.models import AiExecutionContext, AiResult, AttachedFile, JsonDict, Node, NodeSpec
from ai_router.schema.values import as_mapping, as_optional_str, as_str


STUDIO_INTEGRATION = IntegrationSpec(
    provider="Google AI Studio",
    integration_ids=("google_ai_studio",),
    project_keys=("google_ai_studio",),
)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com"


@dataclass
class StudioArtifact:
    mime_type: str
    base64_data: str = field(repr=False)
    created_at: str = field(default_factory=utcnow_iso)
    node_id: Optional[str] = None

    @property
    def data_uri(self) -> str:
        return f"data:{self.mime_type};base64,{self.base64_data}"

    def summary(self) -> JsonDict:
        data = asdict(self)
        data.pop("base64_data")
        data["size"] = len(self.base64_data)
        return data


@dataclass
class StudioGeneration:
    artifacts: List[StudioArtifact]
    text_outputs: List[str]
    logs: List[str]


def build_studio_prompt(ctx: AiExecutionContext) -> Tuple[str, List[str]]:
    """Node content followed by one quoted block per non-empty upstream node."""

    blocks: List[str] = []
    logs: List[str] = []
    if ctx.node.content and ctx.node.content.strip():
        blocks.append(ctx.node.content.strip())
    upstream = [
        f'Context from "{node.display_title}":\n{node.content.strip()}'
        for node in ctx.previous_nodes
        if node.content and node.content.strip()
    ]
    if upstream:
        logs.append(f"Context blocks: {len(upstream)}")
        blocks.extend(upstream)
    prompt = "\n\n".join(blocks).strip()
    logs.append(f"Prompt length: {len(prompt)}")
    return prompt, logs


def studio_file_parts(files: List[AttachedFile]) -> List[JsonDict]:
    parts: List[JsonDict] = []
    for file in files:
        if file.type == "image/base64":
            data = file.content.split(",", 1)[1] if file.content.startswith("data:") else file.content
            parts.append({"inlineData": {"mimeType": "image/png", "data": data}})
        elif file.type == "image/url":
            parts.append({"text": f"Reference image: {file.content}"})
        elif file.type.startswith("text/"):
            parts.append({"text": f"Reference from {file.name}:\n{file.content}"})
    return parts


def collect_generation(payload: Any) -> StudioGeneration:
    artifacts: List[StudioArtifact] = []
    texts: List[str] = []
    candidates = as_mapping(payload).get("candidates") or []
    for part in candidate_parts(payload):
        inline = as_mapping(part.get("inlineData"))
        if isinstance(inline.get("data"), str):
            artifacts.append(StudioArtifact(mime_type=as_str(inline.get("mimeType"), "image/png"), base64_data=inline["data"]))
        elif isinstance(part.get("text"), str) and part["text"].strip():
            texts.append(part["text"].strip())
    logs = [
        f"Candidates received: {len(candidates)}",
        f"Artifacts extracted: {len(artifacts)}",
        f"Text outputs: {len(texts)}",
    ]
    return StudioGeneration(artifacts=artifacts, text_outputs=texts, logs=logs)


class GoogleAiStudioProvider(BaseProvider):
    provider_id = "google_ai_studio"
    provider_label = "Google AI Studio"

    def resolve_model(self, ctx: AiExecutionContext, configured: Optional[str]) -> str:
        override = as_optional_str(ctx.ai_config.get("model"))
        if override:
            if configured and override != configured:
                self.logger.info("Overriding Google AI Studio model %s -> %s", configured, override)
            return override
        return configured or self.services.settings.google_ai_studio_default_model

    def job_id(self) -> str:
        return f"gaistudio-{uuid.uuid4().hex[:12]}"

    async def run(self, ctx: AiExecutionContext) -> AiResult:
        credentials = self.credentials.resolve(ctx, STUDIO_INTEGRATION)
        api_key = require_api_key(credentials, STUDIO_INTEGRATION.provider)
        provider_config = credentials.config
        model = self.resolve_model(ctx, provider_config.model)
        text_mode = as_str(provider_config.extra.get("mode")) == "text"

        prompt, logs = build_studio_prompt(ctx)
        if not prompt:
            raise AiRouterError("Google AI Studio prompt is empty. Add content or upstream context before running.")
        job_id = self.job_id()

        request_body: Dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}, *studio_file_parts(ctx.files)]}],
            "generationConfig": {
                "temperature": 0.7 if text_mode else 0.3,
                "topK": 40,
                "topP": 0.8,
                "responseModalities": ["TEXT", "IMAGE"],
            },
        }
        base_url = (provider_config.base_url or DEFAULT_BASE_URL).rstrip("/")
        endpoint = f"{base_url}/v1beta/models/{model}:generateContent"
        headers = {"x-goog-api-key": api_key, "Content-Type": "application/json"}

        self.logger.info("Google AI Studio job %s with model %s for node %s", job_id, model, ctx.node.node_id)
        async with self.services.http_client_factory() as client:
            payload = await self.send(client, "POST", endpoint, headers=headers, json_body=request_body)

        generation = collect_generation(payload)
        logs.extend(generation.logs)

        saved = self.stored_node(ctx) is not None
        persisted = self.persist_artifacts(ctx, job_id, generation.artifacts, logs) if saved else []
        status = "completed" if persisted or generation.text_outputs else "empty"
        if saved:
            self.update_node_meta(
                ctx,
                {
                    "google_ai_job_id": job_id,
                    "google_ai_status": status,
                    "google_ai_text_outputs": generation.text_outputs,
                    "artifacts": [artifact.summary() for artifact in persisted],
                    "last_generated_at": utcnow_iso(),
                },
            )
        else:
            logs.append("Skipping workflow metadata updates: source node is not saved in a project.")

        output = {
            "status": status,
            "job_id": job_id,
            "artifacts": [artifact.summary() for artifact in persisted],
            "text_outputs": generation.text_outputs,
        }
        return AiResult(
            output=json.dumps(output, indent=2, ensure_ascii=False),
            content_type="application/json",
            logs=tuple(logs),
            provider=self.provider_id,
            prediction_id=job_id,
            request_payload=self.request_payload(self.provider_id, model, request_body),
        )

    def persist_artifacts(
        self,
        ctx: AiExecutionContext,
        job_id: str,
        artifacts: List[StudioArtifact],
        logs: List[str],
    ) -> List[StudioArtifact]:
        store = self.services.graph_store
        if not artifacts or not ctx.project_id or store is None:
            return []

        persisted: List[StudioArtifact] = []
        for index, artifact in enumerate(artifacts, start=1):
            if not artifact.mime_type.startswith("image/"):
                continue
            node: Node = store.create_node(
                ctx.project_id,
                NodeSpec(
                    type="image",
                    title=f"{ctx.node.display_title} image {index}",
                    meta={
                        "image_url": artifact.data_uri,
                        "google_ai_job_id": job_id,
                        "source_node_id": ctx.node.node_id,
                        "created_at": artifact.created_at,
                    },
                ),
            )
            store.add_edge(ctx.project_id, ctx.node.node_id, node.node_id)
            artifact.node_id = node.node_id
            persisted.append(artifact)
            logs.append(f"Created image node {node.node_id} for artifact {index}")
        return persisted


__all__ = [
    "GoogleAiStudioProvider",
    "STUDIO_INTEGRATION",
    "StudioArtifact",
    "build_studio_prompt",
    "collect_generation",
]
