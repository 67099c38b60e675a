from __future__ import annotations

import base64
import logging
import mimetypes
from pathlib import Path
from typing import Optional, Protocol
from urllib.parse import urlparse

from ai_router.schema.models import FileDeliveryMode
from shared.logger import get_logger


class AssetResolver(Protocol):
    """Turns stored asset references into strings a provider can consume."""

    def resolve_url(self, path: str) -> str:
        """Return an absolute URL for ``path`` (already-absolute values are unchanged)."""

    def deliver_asset(self, url: str, mode: FileDeliveryMode, kind: str) -> str:
        """Return ``url`` either as-is or inlined as a data URI, depending on ``mode``."""


def _is_absolute(value: str) -> bool:
    return value.startswith(("data:", "http://", "https://"))


class LocalAssetResolver:
    """
    Asset resolver for files served from a local uploads directory.

    Paths such as ``/uploads/<project>/<file>`` are prefixed with the public
    application URL. In base64 mode, image assets that live in the uploads
    directory are read from disk and inlined; everything else is passed
    through untouched.
    """

    def __init__(
        self,
        app_base_url: str,
        uploads_dir: str | Path,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.app_base_url = app_base_url.rstrip("/")
        self.uploads_dir = Path(uploads_dir)
        self.logger = logger or get_logger(__name__)

    def resolve_url(self, path: str) -> str:
        value = (path or "").strip()
        if not value:
            return ""
        if _is_absolute(value):
            return value
        if value.startswith("/"):
            return f"{self.app_base_url}{value}"
        return value

    def deliver_asset(self, url: str, mode: FileDeliveryMode, kind: str) -> str:
        value = (url or "").strip()
        if not value:
            return ""
        if mode != FileDeliveryMode.base64 or kind != "image" or value.startswith("data:"):
            return value

        local_path = self._local_path_for(value)
        if local_path is None or not local_path.is_file():
            return value
        try:
            payload = local_path.read_bytes()
        except OSError as exc:
            self.logger.warning("Failed to inline asset %s: %s", local_path, exc)
            return value
        mime_type = mimetypes.guess_type(local_path.name)[0] or "application/octet-stream"
        encoded = base64.b64encode(payload).decode("ascii")
        return f"data:{mime_type};base64,{encoded}"

    def _local_path_for(self, value: str) -> Optional[Path]:
        path = value
        if value.startswith(("http://", "https://")):
            if not value.startswith(self.app_base_url + "/"):
                return None
            path = urlparse(value).path
        if not path.startswith("/uploads/"):
            return None
        relative = path[len("/uploads/"):]
        candidate = (self.uploads_dir / relative).resolve()
        root = self.uploads_dir.resolve()
        if root != candidate and root not in candidate.parents:
            return None
        return candidate


__all__ = ["AssetResolver", "LocalAssetResolver"]
