"""Tests for the bounded-retry fetch helpers."""
import asyncio

import httpx
import pytest

from avatar_engines.asset_fetch.retry import (
    BINARY_POLICY,
    JSON_POLICY,
    RetryPolicy,
    fetch_bytes,
    fetch_json,
    fetch_text,
    fetch_with_retry,
)
from avatar_engines.common.errors import (
    BadUpstream,
    RateLimited,
    TransientNetwork,
    UpstreamStatusError,
)


class _Sleeps:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _run(coro):
    return asyncio.run(coro)


def test_429_then_success_waits_backoff_per_attempt():
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        if calls["n"] <= 2:
            return httpx.Response(429)
        return httpx.Response(200, text="mesh data")

    sleeps = _Sleeps()

    async def go():
        async with _client(handler) as client:
            return await fetch_text(client, "https://t1.rbxcdn.com/x", policy=BINARY_POLICY, sleep=sleeps)

    assert _run(go()) == "mesh data"
    assert calls["n"] == 3
    assert sleeps.calls == pytest.approx([0.8, 1.6])


def test_json_policy_uses_longer_rate_limit_backoff():
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        if calls["n"] == 1:
            return httpx.Response(429)
        return httpx.Response(200, json={"ok": True})

    sleeps = _Sleeps()

    async def go():
        async with _client(handler) as client:
            return await fetch_json(client, "https://users.example/v1", sleep=sleeps)

    assert _run(go()) == {"ok": True}
    assert sleeps.calls == pytest.approx([JSON_POLICY.rate_limit_backoff])


def test_always_429_fails_after_exact_attempts():
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        return httpx.Response(429)

    sleeps = _Sleeps()

    async def go():
        async with _client(handler) as client:
            await fetch_with_retry(client, "https://t1.rbxcdn.com/x", policy=RetryPolicy(max_attempts=4), sleep=sleeps)

    with pytest.raises(RateLimited) as excinfo:
        _run(go())
    assert calls["n"] == 4
    assert len(sleeps.calls) == 3
    assert "Rate limited" in excinfo.value.message


def test_non_retryable_status_fails_immediately_with_snippet():
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        return httpx.Response(403, text="forbidden " * 100)

    sleeps = _Sleeps()

    async def go():
        async with _client(handler) as client:
            await fetch_bytes(client, "https://t1.rbxcdn.com/x", sleep=sleeps)

    with pytest.raises(UpstreamStatusError) as excinfo:
        _run(go())
    assert calls["n"] == 1
    assert sleeps.calls == []
    assert excinfo.value.status_code == 403
    assert len(excinfo.value.snippet) == 200


def test_404_not_retried_by_default():
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        return httpx.Response(404, text="nope")

    async def go():
        async with _client(handler) as client:
            await fetch_with_retry(client, "https://x/y", sleep=_Sleeps())

    with pytest.raises(UpstreamStatusError) as excinfo:
        _run(go())
    assert calls["n"] == 1
    assert excinfo.value.http_status == 404


def test_404_retried_when_policy_allows():
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        if calls["n"] < 3:
            return httpx.Response(404)
        return httpx.Response(200, json={"imageUrl": "https://x"})

    sleeps = _Sleeps()
    policy = JSON_POLICY.with_overrides(retry_statuses=frozenset({404}))

    async def go():
        async with _client(handler) as client:
            return await fetch_json(client, "https://x/y", policy=policy, sleep=sleeps)

    assert _run(go()) == {"imageUrl": "https://x"}
    assert sleeps.calls == pytest.approx([0.4, 0.8])


def test_network_errors_retry_then_raise_transient():
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        raise httpx.ConnectError("boom", request=request)

    sleeps = _Sleeps()

    async def go():
        async with _client(handler) as client:
            await fetch_text(client, "https://t1.rbxcdn.com/x", sleep=sleeps)

    with pytest.raises(TransientNetwork) as excinfo:
        _run(go())
    assert calls["n"] == 5
    assert sleeps.calls == pytest.approx([0.35, 0.7, 1.05, 1.4])
    assert isinstance(excinfo.value.__cause__, httpx.ConnectError)


def test_network_error_then_success():
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        if calls["n"] == 1:
            raise httpx.ReadTimeout("slow", request=request)
        return httpx.Response(200, content=b"\x89PNG")

    async def go():
        async with _client(handler) as client:
            return await fetch_bytes(client, "https://t1.rbxcdn.com/x", sleep=_Sleeps())

    assert _run(go()) == b"\x89PNG"


def test_non_json_body_is_bad_upstream():
    def handler(request):
        return httpx.Response(200, text="<html>proxy error</html>")

    async def go():
        async with _client(handler) as client:
            await fetch_json(client, "https://x/y", sleep=_Sleeps())

    with pytest.raises(BadUpstream) as excinfo:
        _run(go())
    assert excinfo.value.details["raw"].startswith("<html>")
