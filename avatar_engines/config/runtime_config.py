"""Runtime configuration helpers for the avatar engines."""
from __future__ import annotations

import os
from typing import Optional


def _get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.getenv(name, default)


def _get_int(name: str, default: int) -> int:
    raw = _get_env(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_float(name: str, default: float) -> float:
    raw = _get_env(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def get_users_api_url() -> str:
    return _get_env("USERS_API_URL") or "https://users.roproxy.com/v1/usernames/users"


def get_avatar_api_base() -> str:
    return (_get_env("AVATAR_API_BASE") or "https://avatar.roproxy.com").rstrip("/")


def get_thumbnails_api_base() -> str:
    return (_get_env("THUMBNAILS_API_BASE") or "https://thumbnails.roproxy.com").rstrip("/")


def get_cdn_host_template() -> str:
    """Host template with ``{type}`` and ``{shard}`` placeholders."""
    return _get_env("CDN_HOST_TEMPLATE") or "https://{type}{shard}.rbxcdn.com"


def get_fetch_max_attempts() -> int:
    return max(1, _get_int("FETCH_MAX_ATTEMPTS", 5))


def get_http_timeout() -> float:
    return _get_float("HTTP_TIMEOUT_SECONDS", 30.0)


def get_rate_limit_max_requests() -> int:
    return _get_int("RATE_LIMIT_MAX_REQUESTS", 20)


def get_rate_limit_window() -> float:
    return _get_float("RATE_LIMIT_WINDOW_SECONDS", 60.0)


def get_outfit_cache_ttl() -> float:
    return _get_float("OUTFIT_CACHE_TTL_SECONDS", 60.0)


def get_download_batch_size() -> int:
    return max(1, _get_int("DOWNLOAD_BATCH_SIZE", 3))


def get_render_batch_size() -> int:
    return max(1, _get_int("RENDER_BATCH_SIZE", 1))


def get_thumbnail_batch_size() -> int:
    return max(1, _get_int("THUMBNAIL_BATCH_SIZE", 3))


def get_log_level() -> str:
    return (_get_env("LOG_LEVEL") or "INFO").upper()
