"""Tests for per-caller request admission."""
import pytest
from fastapi import Request

from avatar_engines.common.errors import RateLimited
from avatar_engines.hardening.rate_limit import (
    InMemoryRateLimitStorage,
    RateLimitService,
    caller_identity,
)


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def _request(headers=None, client=("203.0.113.9", 4321)):
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/api/outfit-download",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


def test_caller_identity_prefers_first_forwarded_hop():
    req = _request({"X-Forwarded-For": " 198.51.100.1 , 10.0.0.2", "X-Real-IP": "10.0.0.3"})
    assert caller_identity(req) == "198.51.100.1"


def test_caller_identity_falls_back_to_real_ip_then_socket():
    assert caller_identity(_request({"X-Real-IP": "10.0.0.3"})) == "10.0.0.3"
    assert caller_identity(_request()) == "203.0.113.9"
    assert caller_identity(_request(client=None)) == "unknown"


def test_limit_within_window():
    clock = FakeClock()
    svc = RateLimitService(limit=3, window=60, clock=clock)
    assert [svc.admit("a") for _ in range(4)] == [True, True, True, False]
    # other callers are counted separately
    assert svc.admit("b")


def test_window_resets_after_expiry():
    clock = FakeClock()
    svc = RateLimitService(limit=1, window=60, clock=clock)
    assert svc.admit("a")
    assert not svc.admit("a")
    clock.now += 60
    assert not svc.admit("a")
    clock.now += 0.5
    assert svc.admit("a")
    assert svc.storage.load("a").count == 1


def test_loopback_is_never_limited():
    svc = RateLimitService(limit=0, window=60, clock=FakeClock())
    for caller in ("127.0.0.1", "::1", "localhost"):
        for _ in range(5):
            svc.check(caller)
    assert len(svc.storage) == 0


def test_check_raises_rate_limited():
    svc = RateLimitService(limit=1, window=60, clock=FakeClock())
    svc.check("a")
    with pytest.raises(RateLimited) as exc_info:
        svc.check("a")
    assert exc_info.value.http_status == 429
    assert exc_info.value.details == {"limit": 1, "window_seconds": 60}


def test_expired_entries_are_pruned_past_threshold():
    clock = FakeClock()
    storage = InMemoryRateLimitStorage()
    svc = RateLimitService(storage=storage, limit=5, window=60, clock=clock, prune_threshold=2)
    svc.admit("a")
    svc.admit("b")
    clock.now += 120
    svc.admit("c")
    assert storage.load("a") is None
    assert storage.load("b") is None
    assert storage.load("c").count == 1
