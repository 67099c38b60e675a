from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

import httpx

from ai_router.context.assets import AssetResolver, LocalAssetResolver
from ai_router.runtime.polling import AsyncioScheduler, Scheduler
from ai_router.schema.schema_registry import SchemaRegistry
from ai_router.stores.base import GraphStore, IntegrationStore
from shared.config import RouterConfig, config as default_config
from shared.logger import get_logger


HttpClientFactory = Callable[[], httpx.AsyncClient]


@dataclass(frozen=True)
class RouterServices:
    """Collaborators shared by the router and every provider adapter."""

    schema_registry: SchemaRegistry
    assets: AssetResolver
    settings: RouterConfig
    http_client_factory: HttpClientFactory
    graph_store: Optional[GraphStore] = None
    integrations: Optional[IntegrationStore] = None
    scheduler: Scheduler = field(default_factory=AsyncioScheduler)
    logger: logging.Logger = field(default_factory=lambda: get_logger("ai_router"))

    @classmethod
    def create(
        cls,
        *,
        graph_store: Optional[GraphStore] = None,
        integrations: Optional[IntegrationStore] = None,
        schema_registry: Optional[SchemaRegistry] = None,
        assets: Optional[AssetResolver] = None,
        settings: Optional[RouterConfig] = None,
        http_client_factory: Optional[HttpClientFactory] = None,
        scheduler: Optional[Scheduler] = None,
        logger: Optional[logging.Logger] = None,
    ) -> "RouterServices":
        settings = settings or default_config
        logger = logger or get_logger("ai_router")
        timeout = settings.http_timeout_seconds
        return cls(
            schema_registry=schema_registry or SchemaRegistry(),
            assets=assets or LocalAssetResolver(settings.app_base_url, settings.uploads_dir, logger=logger),
            settings=settings,
            http_client_factory=http_client_factory or (lambda: httpx.AsyncClient(timeout=timeout)),
            graph_store=graph_store,
            integrations=integrations,
            scheduler=scheduler or AsyncioScheduler(),
            logger=logger,
        )


__all__ = ["HttpClientFactory", "RouterServices"]
