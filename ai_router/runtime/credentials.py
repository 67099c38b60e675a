"""
Credential and provider-config resolution.

Provider settings can live in four places. Each setting is resolved on its
own, taking the first non-empty value in this order:

1. the project's integration override (``settings.integrations[<alias>]``),
2. the executing user's global integration,
3. the project owner's global integration, when the owner is someone else,
4. the environment defaults supplied by the adapter.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import ValidationError

from ai_router.errors import ConfigurationError
from ai_router.schema.models import AiExecutionContext, ProviderConfig, ProviderFieldDefinition
from ai_router.schema.values import as_list, as_mapping, first_present, first_str
from ai_router.stores.base import IntegrationRecord, IntegrationStore
from shared.logger import get_logger


API_KEY_KEYS = ("api_key", "apiKey", "API_KEY", "token", "authToken", "secret")
ORGANIZATION_KEYS = ("organization", "org", "organization_id", "orgId", "openai_org")
BASE_URL_KEYS = ("base_url", "baseUrl", "endpoint", "url")
MODEL_KEYS = ("model", "MODEL", "default_model", "defaultModel")
INPUT_FIELD_KEYS = ("inputFields", "input_fields")

PLACEHOLDER_TOKENS = (
    "r8_dev_placeholder_token",
    "replicate_placeholder_token",
    "replicate_token_placeholder",
    "replicate_api_token_placeholder",
    "sk-placeholder",
    "your_api_key_here",
)

RESOLVED_FIELDS = ("api_key", "organization", "base_url", "model", "input_fields")


def is_placeholder_token(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    normalized = value.strip().lower()
    if not normalized:
        return False
    return any(token in normalized for token in PLACEHOLDER_TOKENS)


def _input_fields(raw: Mapping[str, Any]) -> List[ProviderFieldDefinition]:
    fields: List[ProviderFieldDefinition] = []
    for item in as_list(first_present(raw, INPUT_FIELD_KEYS)):
        try:
            fields.append(ProviderFieldDefinition.model_validate(item))
        except ValidationError:
            continue
    return fields


def normalize_provider_config(raw: Any) -> ProviderConfig:
    """Fold the alias spellings of integration config into one ProviderConfig."""

    data = as_mapping(raw)
    known = set(API_KEY_KEYS + ORGANIZATION_KEYS + BASE_URL_KEYS + MODEL_KEYS + INPUT_FIELD_KEYS)
    return ProviderConfig(
        api_key=first_str(data, API_KEY_KEYS),
        organization=first_str(data, ORGANIZATION_KEYS),
        base_url=first_str(data, BASE_URL_KEYS),
        model=first_str(data, MODEL_KEYS),
        input_fields=_input_fields(data),
        extra={key: value for key, value in data.items() if key not in known},
    )


@dataclass(frozen=True)
class IntegrationSpec:
    """Where a provider's settings are stored."""

    provider: str
    integration_ids: Tuple[str, ...]
    project_keys: Tuple[str, ...] = ()


@dataclass
class ResolvedCredentials:
    config: ProviderConfig
    sources: Dict[str, str] = field(default_factory=dict)
    layers: Dict[str, ProviderConfig] = field(default_factory=dict)

    @property
    def has_api_key(self) -> bool:
        return bool(self.config.api_key)

    def describe(self) -> List[str]:
        return [f"{name} from {source}" for name, source in sorted(self.sources.items())]


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == []


class CredentialResolver:
    def __init__(
        self,
        integrations: Optional[IntegrationStore] = None,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.integrations = integrations
        self.logger = logger or get_logger(__name__)

    def project_layer(self, ctx: AiExecutionContext, spec: IntegrationSpec) -> ProviderConfig:
        overrides = as_mapping(ctx.settings.get("integrations"))
        for key in spec.project_keys:
            if key in overrides:
                return normalize_provider_config(overrides[key])
        return ProviderConfig()

    def user_integration(self, spec: IntegrationSpec, user_id: Optional[str]) -> Optional[IntegrationRecord]:
        if not user_id or self.integrations is None:
            return None
        for integration_id in spec.integration_ids:
            record = self.integrations.get_integration(integration_id, user_id)
            if record is not None and record.enabled:
                return record
        return None

    def user_layers(self, ctx: AiExecutionContext, spec: IntegrationSpec) -> List[Tuple[str, ProviderConfig]]:
        layers: List[Tuple[str, ProviderConfig]] = []
        actor = self.user_integration(spec, ctx.actor_user_id)
        if actor is not None:
            layers.append(("actor integration", normalize_provider_config(actor.config)))
        if ctx.project_owner_id and ctx.project_owner_id != ctx.actor_user_id:
            owner = self.user_integration(spec, ctx.project_owner_id)
            if owner is not None:
                layers.append(("owner integration", normalize_provider_config(owner.config)))
        return layers

    def resolve(
        self,
        ctx: AiExecutionContext,
        spec: IntegrationSpec,
        defaults: Optional[ProviderConfig] = None,
    ) -> ResolvedCredentials:
        chain: List[Tuple[str, ProviderConfig]] = [("project override", self.project_layer(ctx, spec))]
        chain.extend(self.user_layers(ctx, spec))
        chain.append(("environment", defaults or ProviderConfig()))

        values: Dict[str, Any] = {}
        sources: Dict[str, str] = {}
        for name in RESOLVED_FIELDS:
            for label, layer in chain:
                candidate = getattr(layer, name)
                if not _is_empty(candidate):
                    values[name] = candidate
                    sources[name] = label
                    break

        extra: Dict[str, Any] = {}
        for _, layer in reversed(chain):
            extra.update(layer.extra)

        config = ProviderConfig(**values, extra=extra)
        if is_placeholder_token(config.api_key):
            raise ConfigurationError(
                f"{spec.provider} API key from {sources.get('api_key')} is a placeholder. "
                "Update the integration with a real token."
            )
        resolved = ResolvedCredentials(config=config, sources=sources, layers={label: layer for label, layer in chain})
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug("Resolved %s credentials: %s", spec.provider, ", ".join(resolved.describe()))
        return resolved


def require_api_key(credentials: ResolvedCredentials, provider: str) -> str:
    if not credentials.config.api_key:
        raise ConfigurationError(
            f"{provider} API key is not configured. Add {provider} credentials in Integrations."
        )
    return credentials.config.api_key


__all__ = [
    "CredentialResolver",
    "IntegrationSpec",
    "PLACEHOLDER_TOKENS",
    "ResolvedCredentials",
    "is_placeholder_token",
    "normalize_provider_config",
    "require_api_key",
]
