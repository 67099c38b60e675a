"""
Registry of provider adapters. The router uses it to map the provider id found
in project or node settings onto the adapter that executes the node.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, MutableMapping, Optional, Tuple

from ai_router.providers.base import ProviderAdapter
from ai_router.schema.models import AiExecutionContext
from ai_router.schema.values import as_mapping, as_optional_str


STUB_PROVIDER_ID = "stub"
DEFAULT_PROVIDER_ID = "openai"


class ProviderNotFoundError(KeyError):
    """Raised when neither the provider id nor the default adapter is registered."""


def resolve_provider_id(ctx: AiExecutionContext) -> str:
    """Project ``settings.ai.provider``, then node ``config.ai.provider``, then the stub."""

    configured = as_optional_str(as_mapping(ctx.settings.get("ai")).get("provider")) or as_optional_str(
        ctx.ai_config.get("provider")
    )
    return configured.lower() if configured else STUB_PROVIDER_ID


class ProviderRegistry:
    def __init__(
        self,
        initial: Optional[MutableMapping[str, ProviderAdapter]] = None,
        *,
        default_id: str = DEFAULT_PROVIDER_ID,
    ) -> None:
        self._adapters: Dict[str, ProviderAdapter] = dict(initial or {})
        self._aliases: Dict[str, str] = {}
        self.default_id = default_id

    def register(self, adapter: ProviderAdapter, aliases: Iterable[str] = ()) -> None:
        self._adapters[adapter.provider_id] = adapter
        for alias in aliases:
            self._aliases[alias] = adapter.provider_id

    def canonical_id(self, provider_id: str) -> str:
        """Canonical adapter id for ``provider_id``; unknown ids map to the default adapter."""

        if provider_id in self._adapters:
            return provider_id
        return self._aliases.get(provider_id, self.default_id)

    def get(self, provider_id: str) -> ProviderAdapter:
        canonical = self.canonical_id(provider_id)
        try:
            return self._adapters[canonical]
        except KeyError as exc:
            raise ProviderNotFoundError(f"Provider '{provider_id}' is not registered") from exc

    def maybe_get(self, provider_id: str) -> Optional[ProviderAdapter]:
        return self._adapters.get(self.canonical_id(provider_id))

    def table(self) -> List[Tuple[str, List[str]]]:
        """Adapter ids with the aliases that resolve to them."""

        return [
            (provider_id, sorted(alias for alias, target in self._aliases.items() if target == provider_id))
            for provider_id in self._adapters
        ]


__all__ = ["ProviderNotFoundError", "ProviderRegistry", "resolve_provider_id"]
