"""
HTTP client for the Midjourney relay: imagine submissions, upscale actions
and task polling.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Tuple

import httpx

from ai_router.errors import InvalidResponseError
from ai_router.providers.base import request_json
from ai_router.runtime.polling import JobPhase
from ai_router.schema.values import as_int, as_list, as_mapping, as_optional_str, as_str
from shared.logger import get_logger


RELAY_PROVIDER = "Midjourney Relay"

SUBMIT_CODES = {
    1: "submitted",
    21: "exists",
    22: "queued",
    23: "queue_full",
    24: "banned_prompt",
}

TASK_PHASES = {
    "SUCCESS": JobPhase.succeeded,
    "FAILURE": JobPhase.failed,
    "FAILED": JobPhase.failed,
    "CANCEL": JobPhase.canceled,
}


def task_image_url(payload: Mapping[str, Any]) -> Optional[str]:
    """First artifact URL of a task, falling back to ``imageUrl``."""

    for artifact in as_list(payload.get("artifacts")):
        url = as_optional_str(as_mapping(artifact).get("url")) if isinstance(artifact, dict) else as_optional_str(artifact)
        if url:
            return url
    return as_optional_str(payload.get("imageUrl"))


def classify_task(payload: Mapping[str, Any]) -> JobPhase:
    return TASK_PHASES.get(as_str(payload.get("status")).strip().upper(), JobPhase.pending)


def classify_upscale(payload: Mapping[str, Any]) -> JobPhase:
    """An upscale only counts as done once it carries an image."""

    phase = classify_task(payload)
    if phase is JobPhase.succeeded and not task_image_url(payload):
        return JobPhase.failed
    return phase


def task_error(payload: Mapping[str, Any], default: str) -> str:
    return as_optional_str(payload.get("error")) or as_optional_str(payload.get("failReason")) or default


class MidjourneyRelay:
    def __init__(
        self,
        client: httpx.AsyncClient,
        relay_url: str,
        token: str,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.client = client
        self.relay_url = relay_url.rstrip("/")
        self.token = token
        self.logger = logger or get_logger(__name__)

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "mj-api-secret": self.token,
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, path: str, json_body: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        payload = await request_json(
            self.client,
            method,
            f"{self.relay_url}{path}",
            provider=RELAY_PROVIDER,
            logger=self.logger,
            headers=self.headers,
            json_body=json_body,
        )
        return as_mapping(payload)

    @staticmethod
    def submitted_job(payload: Mapping[str, Any]) -> str:
        job_id = as_optional_str(payload.get("result"))
        if job_id is None:
            description = as_optional_str(payload.get("description")) or "missing job_id"
            raise InvalidResponseError(f"{RELAY_PROVIDER} error: {description}")
        return job_id

    async def imagine(self, prompt: str) -> Tuple[str, str]:
        """Submit an ``/imagine`` job; returns the job id and the submit status."""

        payload = await self._request("POST", "/mj/submit/imagine", {"prompt": prompt})
        job_id = self.submitted_job(payload)
        return job_id, SUBMIT_CODES.get(as_int(payload.get("code"), 0), "queued")

    async def fetch(self, job_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/mj/task/{job_id}/fetch")

    async def upscale(self, task_id: str, index: int) -> str:
        payload = await self._request("POST", "/mj/submit/change", {"taskId": task_id, "action": "UPSCALE", "index": index})
        return self.submitted_job(payload)


__all__ = [
    "MidjourneyRelay",
    "SUBMIT_CODES",
    "classify_task",
    "classify_upscale",
    "task_error",
    "task_image_url",
]
