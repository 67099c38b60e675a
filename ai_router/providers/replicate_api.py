"""
Thin client for the Replicate HTTP API: model version lookup, prediction
creation and prediction polling.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

import httpx

from ai_router.errors import ConfigurationError
from ai_router.providers.base import request_json
from ai_router.runtime.polling import JobPhase
from ai_router.schema.values import as_mapping, as_optional_str, as_str
from shared.logger import get_logger


DEFAULT_REPLICATE_BASE_URL = "https://api.replicate.com"
_VERSION_SUFFIX = re.compile(r"(?:/v1)?/*$")

TERMINAL_PHASES = {
    "succeeded": JobPhase.succeeded,
    "failed": JobPhase.failed,
    "canceled": JobPhase.canceled,
}


def normalize_base_url(raw: Optional[str]) -> str:
    """Strip trailing slashes and a trailing ``/v1``; blank or relative values use the default host."""

    value = (raw or "").strip()
    if not value.startswith(("http://", "https://")):
        return DEFAULT_REPLICATE_BASE_URL
    return _VERSION_SUFFIX.sub("", value.rstrip("/")) or DEFAULT_REPLICATE_BASE_URL


def classify_prediction(payload: Mapping[str, Any]) -> JobPhase:
    status = as_str(payload.get("status")).strip().lower()
    return TERMINAL_PHASES.get(status, JobPhase.pending)


@dataclass(frozen=True)
class ModelReference:
    owner: str
    name: str
    version: str

    @property
    def identifier(self) -> str:
        return f"{self.owner}/{self.name}:{self.version}"


def split_model_identifier(identifier: str) -> Tuple[str, str, Optional[str]]:
    trimmed = identifier.strip()
    owner, _, name_with_version = trimmed.partition("/")
    if not owner or not name_with_version:
        raise ConfigurationError(f"Invalid Replicate model identifier: {identifier}")
    name, _, version = name_with_version.partition(":")
    if not name:
        raise ConfigurationError(f"Invalid Replicate model identifier: {identifier}")
    return owner, name, version.strip() or None


def latest_version_of(payload: Mapping[str, Any]) -> Optional[str]:
    return (
        as_optional_str(as_mapping(payload.get("latest_version")).get("id"))
        or as_optional_str(payload.get("latest_version_id"))
        or as_optional_str(payload.get("version"))
    )


class ReplicateApi:
    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str,
        base_url: Optional[str] = None,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.client = client
        self.api_key = api_key
        self.base_url = normalize_base_url(base_url)
        self.logger = logger or get_logger(__name__)

    @property
    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Token {self.api_key}"}

    def url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    async def _request(self, method: str, path: str, json_body: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        headers = self.headers
        if json_body is not None:
            headers["Content-Type"] = "application/json"
        payload = await request_json(
            self.client,
            method,
            self.url(path),
            provider="Replicate",
            logger=self.logger,
            headers=headers,
            json_body=json_body,
        )
        return as_mapping(payload)

    async def resolve_model(self, identifier: str) -> ModelReference:
        """
        Resolve ``owner/name[:version]`` to a pinned version, fetching the
        model's latest version when none is given.
        """

        owner, name, version = split_model_identifier(identifier)
        if version:
            return ModelReference(owner, name, version)
        metadata = await self._request("GET", f"/v1/models/{owner}/{name}")
        latest = latest_version_of(metadata)
        if not latest:
            raise ConfigurationError(f"Replicate model {owner}/{name} does not expose a latest_version identifier.")
        return ModelReference(owner, name, latest)

    async def create_prediction(self, version: str, input_payload: Mapping[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/v1/predictions", {"version": version, "input": dict(input_payload)})

    async def get_prediction(self, prediction_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/v1/predictions/{prediction_id}")


__all__ = [
    "DEFAULT_REPLICATE_BASE_URL",
    "ModelReference",
    "ReplicateApi",
    "classify_prediction",
    "latest_version_of",
    "normalize_base_url",
    "split_model_identifier",
]
