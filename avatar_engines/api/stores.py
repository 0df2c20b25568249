"""Process-wide state shared by the HTTP handlers."""
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Generic, Optional, Tuple, TypeVar

import httpx
from fastapi import Request

from avatar_engines.asset_bundle.service import AssetBundleBuilder
from avatar_engines.common.single_flight import SingleFlightGuard
from avatar_engines.config import runtime_config
from avatar_engines.hardening.rate_limit import RateLimitService
from avatar_engines.outfit_export.service import OutfitExporter
from avatar_engines.roblox_identity.service import RobloxIdentityResolver
from avatar_engines.scene_engine.view.service import BatchRenderer

logger = logging.getLogger(__name__)

V = TypeVar("V")

OUTFIT_CACHE_MAX_ENTRIES = 5000


class TTLCache(Generic[V]):
    """Small time-bounded cache; expired entries vanish on read."""

    def __init__(
        self,
        ttl: Optional[float] = None,
        max_entries: int = OUTFIT_CACHE_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl if ttl is not None else runtime_config.get_outfit_cache_ttl()
        self.max_entries = max_entries
        self.clock = clock
        self._data: Dict[str, Tuple[float, V]] = {}

    def get(self, key: str) -> Optional[V]:
        hit = self._data.get(key)
        if hit is None:
            return None
        stored_at, value = hit
        if self.clock() - stored_at >= self.ttl:
            del self._data[key]
            return None
        return value

    def set(self, key: str, value: V) -> None:
        self._data[key] = (self.clock(), value)
        if len(self._data) > self.max_entries:
            self._evict_expired()

    def _evict_expired(self) -> None:
        now = self.clock()
        for key in [k for k, (at, _) in self._data.items() if now - at >= self.ttl]:
            del self._data[key]

    def __len__(self) -> int:
        return len(self._data)


def _default_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=runtime_config.get_http_timeout(), follow_redirects=True)


class ServiceContainer:
    """Owns the HTTP client, limiter, cache and single-flight guards."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        *,
        rate_limiter: Optional[RateLimitService] = None,
        outfit_cache: Optional[TTLCache] = None,
        sleep: Optional[Callable[[float], Any]] = None,
        host_template: Optional[str] = None,
        renderer: Optional[BatchRenderer] = None,
    ):
        self.client = client or _default_client()
        self._owns_client = client is None
        self.rate_limiter = rate_limiter or RateLimitService()
        self.outfit_cache: TTLCache = outfit_cache if outfit_cache is not None else TTLCache()
        self.render_guard = SingleFlightGuard("render")
        self.export_guard = SingleFlightGuard("export")
        extra: Dict[str, Any] = {}
        if sleep is not None:
            extra["sleep"] = sleep
        self.resolver = RobloxIdentityResolver(self.client, **extra)
        self.builder = AssetBundleBuilder(self.client, host_template=host_template, **extra)
        self.renderer = renderer

    def exporter(self, forward_headers: Optional[Dict[str, str]] = None) -> OutfitExporter:
        if forward_headers:
            return OutfitExporter(
                self.resolver.with_forward_headers(forward_headers),
                self.builder.with_forward_headers(forward_headers),
                self.renderer,
            )
        return OutfitExporter(self.resolver, self.builder, self.renderer)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container
