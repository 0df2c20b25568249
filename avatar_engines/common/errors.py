"""Error taxonomy shared by every avatar engine.

Each error carries a machine-readable ``code``, a human-readable message and
the HTTP status the transport layer answers with, so callers can decide
whether to retry, wait or give up without parsing strings.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class AvatarEngineError(Exception):
    code = "avatar.error"
    http_status = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details or {}


class InvalidInput(AvatarEngineError):
    code = "input.invalid"
    http_status = 400


class NotFound(AvatarEngineError):
    code = "upstream.not_found"
    http_status = 404


class ModeratedContent(NotFound):
    code = "upstream.moderated"

    def __init__(self, message: str = "One or more accessories have been moderated in this outfit", details=None):
        super().__init__(message, details)


class RateLimited(AvatarEngineError):
    code = "rate_limited"
    http_status = 429


class BadUpstream(AvatarEngineError):
    code = "upstream.bad_response"
    http_status = 500


class UpstreamStatusError(BadUpstream):
    """Upstream answered with a non-retryable, non-2xx status."""

    code = "upstream.http_error"

    def __init__(self, status_code: int, url: str, snippet: str = ""):
        super().__init__(
            f"HTTP {status_code} for {url}",
            details={"status": status_code, "url": url, "body": snippet},
        )
        self.status_code = status_code
        self.url = url
        self.snippet = snippet
        if status_code == 404:
            self.http_status = 404


class MissingAssets(AvatarEngineError):
    code = "assets.missing"
    http_status = 500

    def __init__(self, message: str = "3D JSON missing obj/mtl/textures", details=None):
        super().__init__(message, details)


class MalformedBundle(AvatarEngineError):
    code = "bundle.malformed"
    http_status = 422


class TransientNetwork(AvatarEngineError):
    code = "network.transient"
    http_status = 503


class PoseUnavailable(AvatarEngineError):
    code = "pose.unavailable"
    http_status = 409

    def __init__(self, message: str = "Model has no recognizable body parts; posing is unavailable", details=None):
        super().__init__(message, details)


class Busy(AvatarEngineError):
    code = "busy"
    http_status = 409


class SceneNotReady(AvatarEngineError):
    code = "scene.not_ready"
    http_status = 409


__all__ = [
    "AvatarEngineError",
    "InvalidInput",
    "NotFound",
    "ModeratedContent",
    "RateLimited",
    "BadUpstream",
    "UpstreamStatusError",
    "MissingAssets",
    "MalformedBundle",
    "TransientNetwork",
    "PoseUnavailable",
    "Busy",
    "SceneNotReady",
]
