"""Bounded-retry outbound fetches.

Only two conditions are absorbed here: upstream 429s and connection-level
failures. Everything else surfaces immediately as a typed error.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, FrozenSet, Optional

import httpx
from pydantic import BaseModel, ConfigDict

from avatar_engines.common.errors import (
    BadUpstream,
    RateLimited,
    TransientNetwork,
    UpstreamStatusError,
)
from avatar_engines.config import runtime_config

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[Any]]

SNIPPET_LENGTH = 200


class RetryPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_attempts: int = 5
    # seconds, multiplied by the 1-based attempt number
    rate_limit_backoff: float = 0.8
    network_backoff: float = 0.35
    # statuses retried like network failures (404 during upstream cold start)
    retry_statuses: FrozenSet[int] = frozenset()

    def with_overrides(self, **changes: Any) -> "RetryPolicy":
        return self.model_copy(update=changes)


JSON_POLICY = RetryPolicy(rate_limit_backoff=1.0, network_backoff=0.4)
BINARY_POLICY = RetryPolicy(rate_limit_backoff=0.8, network_backoff=0.35)


def default_policy(base: RetryPolicy) -> RetryPolicy:
    """Apply the configured attempt budget to one of the base policies."""
    return base.with_overrides(max_attempts=runtime_config.get_fetch_max_attempts())


async def fetch_with_retry(
    client: httpx.AsyncClient,
    url: str,
    *,
    method: str = "GET",
    policy: RetryPolicy = BINARY_POLICY,
    sleep: SleepFn = asyncio.sleep,
    **request_kwargs: Any,
) -> httpx.Response:
    last_kind: Optional[str] = None
    last_exc: Optional[Exception] = None
    last_response: Optional[httpx.Response] = None

    for attempt in range(1, policy.max_attempts + 1):
        is_last = attempt == policy.max_attempts
        try:
            response = await client.request(method, url, **request_kwargs)
        except httpx.TransportError as exc:
            last_kind, last_exc = "network", exc
            logger.warning("Network error on %s %s (attempt %s/%s): %s", method, url, attempt, policy.max_attempts, exc)
            if not is_last:
                await sleep(policy.network_backoff * attempt)
            continue

        if response.status_code == 429:
            last_kind = "rate_limited"
            logger.info("429 from %s (attempt %s/%s)", url, attempt, policy.max_attempts)
            if not is_last:
                await sleep(policy.rate_limit_backoff * attempt)
            continue

        if response.status_code in policy.retry_statuses:
            last_kind, last_response = "status", response
            logger.info("Retryable HTTP %s from %s (attempt %s/%s)", response.status_code, url, attempt, policy.max_attempts)
            if not is_last:
                await sleep(policy.network_backoff * attempt)
            continue

        if not response.is_success:
            raise UpstreamStatusError(response.status_code, url, response.text[:SNIPPET_LENGTH])

        return response

    if last_kind == "rate_limited":
        raise RateLimited(
            "Rate limited (429). Try again in a few seconds.",
            details={"url": url, "attempts": policy.max_attempts},
        )
    if last_kind == "status" and last_response is not None:
        raise UpstreamStatusError(last_response.status_code, url, last_response.text[:SNIPPET_LENGTH])
    raise TransientNetwork(
        f"Network failure fetching {url}: {last_exc}",
        details={"url": url, "attempts": policy.max_attempts},
    ) from last_exc


async def fetch_text(client: httpx.AsyncClient, url: str, **kwargs: Any) -> str:
    response = await fetch_with_retry(client, url, **kwargs)
    return response.text


async def fetch_bytes(client: httpx.AsyncClient, url: str, **kwargs: Any) -> bytes:
    response = await fetch_with_retry(client, url, **kwargs)
    return response.content


async def fetch_json(client: httpx.AsyncClient, url: str, **kwargs: Any) -> Any:
    kwargs.setdefault("policy", JSON_POLICY)
    response = await fetch_with_retry(client, url, **kwargs)
    raw = response.text
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise BadUpstream(
            "Upstream returned non-JSON response",
            details={"url": url, "raw": raw[:SNIPPET_LENGTH]},
        ) from exc
