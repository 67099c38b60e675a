"""
Shared exception hierarchy for the AI execution router.

Every error is fatal to the single invocation that raised it. Retrying is the
caller's decision; nothing in the router schedules a retry on its own.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence


class AiRouterError(Exception):
    """Base class for all router related errors."""


class ConfigurationError(AiRouterError):
    """Raised for missing or placeholder credentials, bad identifiers and unknown schemas."""


class UpstreamHttpError(AiRouterError):
    """Raised when a provider answers with a non-2xx status or cannot be reached."""

    def __init__(self, provider: str, status: int, body: str, *, reason: str = "") -> None:
        detail = f"{status} {reason}".strip()
        super().__init__(f"{provider} request failed: {detail} {body}".rstrip())
        self.provider = provider
        self.status = status
        self.reason = reason
        self.body = body


class InvalidResponseError(AiRouterError):
    """Raised when a provider reply is empty or cannot be decoded."""


class SchemaValidationError(AiRouterError):
    """Raised when a provider payload does not match the declared schema."""

    def __init__(self, schema_name: str, errors: Sequence[str]) -> None:
        self.schema_name = schema_name
        self.errors: List[str] = list(errors)
        super().__init__(
            f"Response does not match schema {schema_name}: {'; '.join(self.errors)}"
        )


class JobFailedError(AiRouterError):
    """Raised when an asynchronous provider job reaches a failed or canceled state."""

    def __init__(
        self,
        message: str,
        *,
        job_id: Optional[str] = None,
        status: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.job_id = job_id
        self.status = status
        self.payload = payload or {}


class JobTimeoutError(JobFailedError):
    """Raised when an asynchronous job does not settle before its deadline."""


__all__ = [
    "AiRouterError",
    "ConfigurationError",
    "InvalidResponseError",
    "JobFailedError",
    "JobTimeoutError",
    "SchemaValidationError",
    "UpstreamHttpError",
]
