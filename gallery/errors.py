"""
Error kinds shared by the upstream clients, engines and HTTP surface.

Every failure the core can surface is a ``GalleryError``; the FastAPI
exception handler renders it as ``{error, message}`` with ``status_code``.
"""

from typing import Any, Dict, Optional


class GalleryError(Exception):
    """Base class for all classified failures."""

    kind = "internal"
    status_code = 500
    title = "Internal server error"

    def __init__(
        self,
        message: str = "",
        *,
        detail: Optional[str] = None,
        upstream_status: Optional[int] = None,
    ):
        super().__init__(message or self.title)
        self.message = message or self.title
        self.detail = detail
        self.upstream_status = upstream_status

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "detail": self.detail or self.message,
            "upstreamStatus": self.upstream_status,
        }


class InvalidArgumentError(GalleryError):
    """Missing or malformed parameter."""

    kind = "invalid_argument"
    status_code = 400
    title = "Invalid argument"


class NotFoundError(GalleryError):
    """Identity or resource not resolvable upstream."""

    kind = "not_found"
    status_code = 404
    title = "Not found"


class UpstreamError(GalleryError):
    """Transport error, 5xx, or malformed upstream response."""

    kind = "upstream"
    status_code = 500
    title = "Upstream error"


class RateLimitedError(UpstreamError):
    """Upstream kept answering 429 after retries."""

    kind = "rate_limited"


class UpstreamTimeoutError(GalleryError):
    kind = "timeout"
    status_code = 504
    title = "Request timed out"


class ConfigError(GalleryError):
    """A mandatory environment variable is missing."""

    kind = "config"
    status_code = 500
    title = "Server configuration error"

    def __init__(self, message: str = "server configuration error", **kwargs):
        super().__init__(message, **kwargs)
