from __future__ import annotations

import json
from typing import Any, Dict, List, Mapping, Optional

from ai_router.errors import ConfigurationError, JobFailedError, JobTimeoutError
from ai_router.prompt.fields import resolve_provider_fields
from ai_router.providers.base import BaseProvider, utcnow_iso
from ai_router.providers.replicate_api import ReplicateApi, classify_prediction, normalize_base_url
from ai_router.providers.replicate_inputs import ReplicateInputBuilder, model_type
from ai_router.runtime.credentials import IntegrationSpec, require_api_key
from ai_router.runtime.polling import JobPhase, JobPoller, PollPolicy, PollState
from ai_router.schema.models import AiExecutionContext, AiResult, ProviderConfig
from ai_router.schema.values import as_list, as_mapping, as_optional_str, as_str


REPLICATE_INTEGRATION = IntegrationSpec(
    provider="Replicate",
    integration_ids=("replicate",),
    project_keys=("replicate", "replicate_api", "replicate_ai"),
)


def primary_output(output: Any, depth: int = 0) -> str:
    """First string found in a prediction output (URL or text), searching at most five levels deep."""

    if depth > 5 or output is None:
        return ""
    if isinstance(output, str):
        return output
    if isinstance(output, list):
        for item in output:
            found = primary_output(item, depth + 1)
            if found:
                return found
        return ""
    if isinstance(output, dict):
        nested = output.get("output")
        if isinstance(nested, str):
            return nested
        for value in [nested, *output.values()]:
            found = primary_output(value, depth + 1)
            if found:
                return found
    return ""


def prediction_error(payload: Mapping[str, Any]) -> str:
    error = payload.get("error")
    if isinstance(error, str) and error:
        return error
    if isinstance(error, dict) and error:
        return json.dumps(error)
    return "Replicate prediction failed without error details."


class ReplicateProvider(BaseProvider):
    provider_id = "replicate"
    provider_label = "Replicate"

    def environment_defaults(self) -> ProviderConfig:
        settings = self.services.settings
        return ProviderConfig(api_key=settings.replicate_api_token, base_url=settings.replicate_api_base_url)

    def poll_policy(self) -> PollPolicy:
        settings = self.services.settings
        return PollPolicy(
            interval_seconds=settings.replicate_poll_interval_seconds,
            timeout_seconds=settings.replicate_poll_timeout_seconds,
        )

    def model_identifier(self, ctx: AiExecutionContext, provider_config: ProviderConfig) -> str:
        models = [item for item in as_list(provider_config.extra.get("models")) if isinstance(item, str) and item.strip()]
        identifier = (
            as_optional_str(ctx.ai_config.get("model"))
            or provider_config.model
            or (models[0].strip() if models else None)
        )
        if not identifier:
            raise ConfigurationError("Replicate model is not selected. Choose a model in AI settings.")
        return identifier

    async def run(self, ctx: AiExecutionContext) -> AiResult:
        project_id = self.require_project(ctx)
        saved = self.stored_node(ctx) is not None
        if self.services.graph_store is not None and not saved and not ctx.node.node_id.startswith("chat-"):
            raise ConfigurationError("Replicate provider must run from an existing workflow node.")

        credentials = self.credentials.resolve(ctx, REPLICATE_INTEGRATION, self.environment_defaults())
        api_key = require_api_key(credentials, REPLICATE_INTEGRATION.provider)
        provider_config = credentials.config
        base_url = normalize_base_url(provider_config.base_url)

        logs: List[str] = [f"Replicate endpoint: {base_url}"]
        all_nodes = self.all_nodes(ctx)
        builder = ReplicateInputBuilder(ctx, self.services.assets, all_nodes=all_nodes, logs=logs, logger=self.logger)

        provider_fields = resolve_provider_fields(
            provider_config.input_fields,
            as_mapping(ctx.ai_config.get("provider_fields")),
            ctx.previous_nodes,
        )
        if not builder.add_auto_ports():
            builder.add_provider_fields(provider_fields)

        user_prompt = self.composer.compose(
            ctx, self.schema_for(ctx), all_nodes=all_nodes, exclude_node_ids=builder.consumed_node_ids
        ).strip()
        fields = self.generation_fields(ctx, all_nodes)
        prompt = builder.apply_prompt(
            user_prompt,
            system_prompt=fields.system_prompt,
            output_example=fields.output_example,
            temperature=fields.temperature,
        )
        builder.add_media()

        async with self.services.http_client_factory() as client:
            api = ReplicateApi(client, api_key, base_url, logger=self.logger)
            model = await api.resolve_model(self.model_identifier(ctx, provider_config))
            logs.append(f"Replicate model: {model.identifier}")
            logs.append(f"Replicate version: {model.version}")

            kind = model_type(model.identifier)
            logs.append(f"Model type detected: {kind}")
            builder.add_model_params(kind)
            builder.add_passthrough()

            input_payload = builder.build(prompt)
            logs.append(f"Replicate input fields: {', '.join(input_payload)}")
            request_payload = self.request_payload(
                self.provider_id, model.version, {"version": model.version, "input": input_payload}
            )

            created = await api.create_prediction(model.version, input_payload)
            final = await self.await_prediction(api, created, logs)

        status = as_str(final.get("status"), "unknown").lower()
        urls = as_mapping(final.get("urls"))
        api_url = as_optional_str(urls.get("get"))
        web_url = as_optional_str(urls.get("web")) or api_url
        prediction_id = as_optional_str(final.get("id"))
        logs.append(f"Prediction status: {status}")
        if web_url:
            logs.append(f"Prediction URL: {web_url}")

        output_payload: Dict[str, Any] = {
            "status": status,
            "id": final.get("id"),
            "version": model.version,
            "model": model.identifier,
            "input": input_payload,
            "output": final.get("output"),
            "logs": final.get("logs"),
            "metrics": final.get("metrics"),
            "error": final.get("error"),
            "urls": {**urls, "api": api_url, "web": web_url},
        }

        if saved:
            self.update_node_meta(
                ctx,
                {
                    "replicate_model": model.identifier,
                    "replicate_version": model.version,
                    "replicate_prediction_id": prediction_id or "",
                    "replicate_prediction_url": web_url or "",
                    "replicate_prediction_api_url": api_url or "",
                    "replicate_status": status,
                    "replicate_last_run_at": utcnow_iso(),
                    "replicate_output": primary_output(final.get("output")),
                    "replicate_prediction_payload": output_payload,
                    "last_request_payload": request_payload.model_dump(),
                },
            )
        else:
            logs.append(f"Skipping meta update: node {ctx.node.node_id} is not saved in project {project_id}")

        return AiResult(
            output=json.dumps(output_payload, indent=2, ensure_ascii=False),
            content_type="application/json",
            logs=tuple(logs),
            provider=self.provider_id,
            prediction_url=web_url,
            prediction_id=prediction_id,
            raw_output=final.get("output"),
            prediction_payload=output_payload,
            request_payload=request_payload,
        )

    async def await_prediction(self, api: ReplicateApi, created: Dict[str, Any], logs: List[str]) -> Dict[str, Any]:
        """Poll the prediction until it settles; failures, cancellations and timeouts raise."""

        prediction_id = as_optional_str(created.get("id"))

        def on_update(state: PollState) -> None:
            logs.append(f"Prediction {prediction_id} status: {state.last_status}")

        poller = JobPoller(
            api.get_prediction,
            classify_prediction,
            self.poll_policy(),
            scheduler=self.services.scheduler,
            on_update=on_update,
            logger=self.logger,
        )
        state = poller.start(prediction_id or "", created)
        if prediction_id is None:
            # Nothing to poll; only a terminal create response can be judged.
            return created if state.phase is JobPhase.pending else self.settle(state)
        return self.settle(await poller.run(state))

    def settle(self, state: PollState) -> Dict[str, Any]:
        payload = dict(state.payload)
        job_id = state.job_id or None
        if state.phase is JobPhase.succeeded:
            return payload
        if state.phase is JobPhase.timed_out:
            timeout = self.poll_policy().timeout_seconds or 0
            raise JobTimeoutError(
                f"Replicate prediction {job_id} timed out after {round(timeout)} seconds.",
                job_id=job_id,
                status=state.last_status,
                payload=payload,
            )
        if state.phase is JobPhase.canceled:
            raise JobFailedError(
                "Replicate prediction was cancelled.", job_id=job_id, status="canceled", payload=payload
            )
        raise JobFailedError(prediction_error(payload), job_id=job_id, status="failed", payload=payload)


__all__ = ["REPLICATE_INTEGRATION", "ReplicateProvider", "prediction_error", "primary_output"]
