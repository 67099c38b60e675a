"""
Midjourney adapter.

One run submits an ``/imagine`` job to the relay, waits for it, then fans out
upscale actions for each grid variant and polls them in parallel. A failed
upscale is recorded as a partial failure; only the main job can fail the run.
Every upscaled variant becomes an image node linked to the source node.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

from ai_router.errors import AiRouterError, ConfigurationError, JobFailedError, JobTimeoutError
from ai_router.providers.base import BaseProvider, utcnow_iso
from ai_router.providers.midjourney_client import (
    MidjourneyRelay,
    classify_task,
    classify_upscale,
    task_error,
    task_image_url,
)
from ai_router.providers.midjourney_prompt import (
    build_discord_prompt,
    model_id_for,
    prepare_prompt,
    reference_payload,
)
from ai_router.runtime.credentials import IntegrationSpec, require_api_key
from ai_router.runtime.polling import JobPhase, JobPoller, PollPolicy, PollState
from ai_router.schema.models import AiExecutionContext, AiResult, NodeSpec, PartialFailure, ProviderConfig
from ai_router.schema.values import as_optional_str, first_str


MIDJOURNEY_INTEGRATION = IntegrationSpec(
    provider="Midjourney",
    integration_ids=("midjourney_mindworkflow_relay", "midjourney_proxy"),
    project_keys=("midjourney_mindworkflow_relay", "midjourney_proxy", "midjourney"),
)

RELAY_URL_KEYS = ("relayUrl", "relay_url")
PROMPT_SUMMARY_LENGTH = 200


@dataclass(frozen=True)
class UpscaledVariant:
    index: int
    job_id: str
    image_url: str


UpscaleOutcome = Union[UpscaledVariant, PartialFailure]


class MidjourneyProvider(BaseProvider):
    provider_id = "midjourney_mindworkflow_relay"
    provider_label = "Midjourney"

    def environment_defaults(self) -> ProviderConfig:
        return ProviderConfig(base_url=self.services.settings.midjourney_relay_url)

    def main_policy(self) -> PollPolicy:
        settings = self.services.settings
        return PollPolicy(
            interval_seconds=settings.midjourney_poll_interval_seconds,
            max_attempts=settings.midjourney_main_max_attempts,
        )

    def upscale_policy(self) -> PollPolicy:
        settings = self.services.settings
        return PollPolicy(
            interval_seconds=settings.midjourney_poll_interval_seconds,
            max_attempts=settings.midjourney_upscale_max_attempts,
        )

    def relay_url(self, provider_config: ProviderConfig) -> str:
        return (
            first_str(provider_config.extra, RELAY_URL_KEYS)
            or provider_config.base_url
            or self.services.settings.midjourney_relay_url
        )

    def poller(self, relay: MidjourneyRelay, policy: PollPolicy, *, upscale: bool = False) -> JobPoller:
        return JobPoller(
            relay.fetch,
            classify_upscale if upscale else classify_task,
            policy,
            scheduler=self.services.scheduler,
            logger=self.logger,
        )

    async def run(self, ctx: AiExecutionContext) -> AiResult:
        project_id = self.require_project(ctx)
        if self.stored_node(ctx) is None:
            raise ConfigurationError(
                f"Midjourney requires a saved workflow node; {ctx.node.node_id} is not in project {project_id}."
            )

        credentials = self.credentials.resolve(ctx, MIDJOURNEY_INTEGRATION, self.environment_defaults())
        token = require_api_key(credentials, MIDJOURNEY_INTEGRATION.provider)
        provider_config = credentials.config
        mode = as_optional_str(ctx.ai_config.get("midjourney_mode")) or "photo"

        prepared = prepare_prompt(ctx, mode=mode)
        logs: List[str] = list(prepared.logs)
        inputs: Dict[str, Any] = {**ctx.ai_config, **prepared.modifier_inputs}
        model_id = model_id_for(ctx.ai_config)
        prompt = build_discord_prompt(prepared.prompt, prepared.reference_images, inputs, model_id, log=self.logger)

        async with self.services.http_client_factory() as client:
            relay = MidjourneyRelay(client, self.relay_url(provider_config), token, logger=self.logger)
            job_id, status = await relay.imagine(prompt)
            logs.append(f"Midjourney job {job_id} queued (status: {status}).")

            request_payload = self.request_payload(
                self.provider_id,
                model_id,
                {
                    "provider": self.provider_id,
                    "job_id": job_id,
                    "prompt": prompt,
                    "reference_images": reference_payload(prepared.reference_images),
                    "model_id": model_id,
                    "additional_inputs": prepared.modifier_inputs,
                },
            )
            self.update_node_meta(
                ctx,
                {
                    "midjourney_job_id": job_id,
                    "midjourney_status": status,
                    "last_request_payload": request_payload.model_dump(),
                },
            )

            logs.append("Waiting for main image generation...")
            await self.await_main(relay, job_id)
            count = self.services.settings.midjourney_upscale_count
            logs.append(f"Main image generated! Starting upscale for {count} variants...")
            outcomes = await self.upscale_all(relay, job_id, count, logs)

        variants = [item for item in outcomes if isinstance(item, UpscaledVariant)]
        failures = tuple(item for item in outcomes if isinstance(item, PartialFailure))
        logs.append(f"Auto-upscale completed: {len(variants)} variants ready")

        for variant in variants:
            self.create_variant_node(ctx, project_id, job_id, variant)
            logs.append(f"Created image node for variant {variant.index}")

        self.update_node_meta(ctx, {"midjourney_status": "completed", "last_generated_at": utcnow_iso()})

        ellipsis = "..." if len(prompt) > PROMPT_SUMMARY_LENGTH else ""
        output_payload: Dict[str, Any] = {
            "status": "completed",
            "job_id": job_id,
            "variants_created": len(variants),
            "message": f"Generated {len(variants)} variants",
            "images": [variant.image_url for variant in variants],
            "prompt": f"{prompt[:PROMPT_SUMMARY_LENGTH]}{ellipsis}",
        }
        return AiResult(
            output=json.dumps(output_payload, indent=2, ensure_ascii=False),
            content_type="application/json",
            logs=tuple(logs),
            provider=self.provider_id,
            prediction_id=job_id,
            raw_output=output_payload["images"],
            prediction_payload=output_payload,
            request_payload=request_payload,
            partial_failures=failures,
        )

    async def await_main(self, relay: MidjourneyRelay, job_id: str) -> Dict[str, Any]:
        poller = self.poller(relay, self.main_policy())
        state = await poller.run(poller.start(job_id))
        payload = dict(state.payload)
        if state.phase is JobPhase.succeeded:
            return payload
        if state.phase is JobPhase.timed_out:
            raise JobTimeoutError(
                f"Midjourney job {job_id} did not complete after {state.attempts} polls.",
                job_id=job_id,
                status=state.last_status,
                payload=payload,
            )
        raise JobFailedError(
            task_error(payload, f"Midjourney job {job_id} ended with status {state.last_status}."),
            job_id=job_id,
            status=state.last_status,
            payload=payload,
        )

    async def upscale_all(self, relay: MidjourneyRelay, job_id: str, count: int, logs: List[str]) -> List[UpscaleOutcome]:
        """
        Submit one upscale per variant, then poll the submitted ones
        concurrently. The returned outcomes are ordered by variant index.
        """

        submitted: List[Tuple[int, str]] = []
        outcomes: Dict[int, UpscaleOutcome] = {}
        for index in range(1, count + 1):
            try:
                upscale_id = await relay.upscale(job_id, index)
            except AiRouterError as exc:
                outcomes[index] = self.record_failure(logs, index, None, str(exc))
                continue
            submitted.append((index, upscale_id))
            logs.append(f"Upscale variant {index} submitted...")

        if submitted:
            logs.append(f"Waiting for {len(submitted)} upscale tasks to complete...")
            results = await asyncio.gather(
                *(self.await_upscale(relay, index, upscale_id) for index, upscale_id in submitted),
                return_exceptions=True,
            )
            for (index, upscale_id), result in zip(submitted, results):
                if isinstance(result, UpscaledVariant):
                    logs.append(f"Upscale variant {index} ready!")
                    outcomes[index] = result
                elif isinstance(result, BaseException):
                    if not isinstance(result, Exception):
                        raise result
                    outcomes[index] = self.record_failure(logs, index, upscale_id, str(result) or type(result).__name__)
                else:
                    outcomes[index] = self.record_failure(logs, index, upscale_id, result)
        return [outcomes[index] for index in sorted(outcomes)]

    async def await_upscale(self, relay: MidjourneyRelay, index: int, upscale_id: str) -> Union[UpscaledVariant, str]:
        """The finished variant, or the reason it did not finish."""

        poller = self.poller(relay, self.upscale_policy(), upscale=True)
        try:
            state = await poller.run(poller.start(upscale_id))
        except AiRouterError as exc:
            return str(exc)
        return self.settle_upscale(index, state)

    @staticmethod
    def settle_upscale(index: int, state: PollState) -> Union[UpscaledVariant, str]:
        image_url = task_image_url(state.payload)
        if state.phase is JobPhase.succeeded and image_url:
            return UpscaledVariant(index=index, job_id=state.job_id, image_url=image_url)
        if state.phase is JobPhase.timed_out:
            return f"no result after {state.attempts} polls"
        return task_error(state.payload, f"status {state.last_status or 'unknown'} without an image")

    def record_failure(self, logs: List[str], index: int, job_id: Optional[str], reason: str) -> PartialFailure:
        logs.append(f"Upscale variant {index} failed: {reason}")
        self.logger.warning("Upscale variant %s (%s) failed: %s", index, job_id, reason)
        return PartialFailure(index=index, job_id=job_id, reason=reason)

    def create_variant_node(self, ctx: AiExecutionContext, project_id: str, job_id: str, variant: UpscaledVariant) -> None:
        graph_store = self.services.graph_store
        if graph_store is None:
            return
        node = graph_store.create_node(
            project_id,
            NodeSpec(
                type="image",
                title=f"Variant {variant.index}",
                meta={
                    "image_url": variant.image_url,
                    "midjourney_job_id": job_id,
                    "upscale_job_id": variant.job_id,
                    "variant_index": variant.index,
                    "source_node_id": ctx.node.node_id,
                },
            ),
        )
        graph_store.add_edge(project_id, ctx.node.node_id, node.node_id)


__all__ = ["MIDJOURNEY_INTEGRATION", "MidjourneyProvider", "UpscaledVariant"]
