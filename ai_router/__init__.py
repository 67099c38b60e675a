"""
Public entrypoint for executing AI nodes of a workflow graph against the
configured provider.
"""

from __future__ import annotations

from typing import Optional

from ai_router.errors import (
    AiRouterError,
    ConfigurationError,
    InvalidResponseError,
    JobFailedError,
    JobTimeoutError,
    SchemaValidationError,
    UpstreamHttpError,
)
from ai_router.runtime.router import AiRouter, build_default_registry
from ai_router.runtime.services import RouterServices
from ai_router.schema.models import AiExecutionContext, AiResult


async def execute_node(ctx: AiExecutionContext, services: Optional[RouterServices] = None) -> AiResult:
    """
    Execute a single AI node with a router built from ``services``.
    """

    return await AiRouter(services or RouterServices.create()).dispatch(ctx)


__all__ = [
    "AiExecutionContext",
    "AiResult",
    "AiRouter",
    "AiRouterError",
    "ConfigurationError",
    "InvalidResponseError",
    "JobFailedError",
    "JobTimeoutError",
    "RouterServices",
    "SchemaValidationError",
    "UpstreamHttpError",
    "build_default_registry",
    "execute_node",
]
