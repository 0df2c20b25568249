"""Per-caller request admission with an in-memory window counter."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, Optional, Protocol, Tuple

from fastapi import Request

from avatar_engines.common.errors import RateLimited
from avatar_engines.config import runtime_config

logger = logging.getLogger(__name__)

LOOPBACK_CALLERS = frozenset({"127.0.0.1", "::1", "localhost"})
PRUNE_THRESHOLD = 5000
UNKNOWN_CALLER = "unknown"


@dataclass
class RateLimitEntry:
    window_start: float
    count: int


class RateLimitStorage(Protocol):
    def load(self, key: str) -> Optional[RateLimitEntry]:
        ...

    def save(self, key: str, entry: RateLimitEntry) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def items(self) -> Iterator[Tuple[str, RateLimitEntry]]:
        ...

    def __len__(self) -> int:
        ...


class InMemoryRateLimitStorage:
    def __init__(self) -> None:
        self._store: Dict[str, RateLimitEntry] = {}

    def load(self, key: str) -> Optional[RateLimitEntry]:
        return self._store.get(key)

    def save(self, key: str, entry: RateLimitEntry) -> None:
        self._store[key] = entry

    def delete(self, key: str) -> None:
        self._store.pop(key, None)

    def items(self) -> Iterator[Tuple[str, RateLimitEntry]]:
        return iter(list(self._store.items()))

    def __len__(self) -> int:
        return len(self._store)


def caller_identity(request: Request) -> str:
    """First forwarded-for hop, then x-real-ip, then the socket address."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = (request.headers.get("x-real-ip") or "").strip()
    if real_ip:
        return real_ip
    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_CALLER


class RateLimitService:
    def __init__(
        self,
        storage: Optional[RateLimitStorage] = None,
        limit: Optional[int] = None,
        window: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        prune_threshold: int = PRUNE_THRESHOLD,
    ):
        self.storage = storage if storage is not None else InMemoryRateLimitStorage()
        self.limit = limit if limit is not None else runtime_config.get_rate_limit_max_requests()
        self.window = window if window is not None else runtime_config.get_rate_limit_window()
        self.clock = clock
        self.prune_threshold = prune_threshold

    def admit(self, caller_id: str) -> bool:
        if caller_id in LOOPBACK_CALLERS:
            return True

        now = self.clock()
        entry = self.storage.load(caller_id)
        if entry is None or now - entry.window_start > self.window:
            entry = RateLimitEntry(window_start=now, count=1)
        else:
            entry.count += 1
        self.storage.save(caller_id, entry)

        if len(self.storage) > self.prune_threshold:
            self._prune(now)

        allowed = entry.count <= self.limit
        if not allowed:
            logger.info("Rate limit exceeded for %s (%d in window)", caller_id, entry.count)
        return allowed

    def check(self, caller_id: str) -> None:
        if not self.admit(caller_id):
            raise RateLimited(
                "Too many requests. Please wait a minute.",
                details={"limit": self.limit, "window_seconds": self.window},
            )

    def _prune(self, now: float) -> None:
        expired = [key for key, entry in self.storage.items() if now - entry.window_start > self.window]
        for key in expired:
            self.storage.delete(key)
        logger.debug("Pruned %d expired rate limit entries", len(expired))
