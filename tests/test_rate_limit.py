"""
Tests for the rate limiter, its presets and both HTTP surfaces.
"""
import pytest
from fastapi import Depends, FastAPI, HTTPException
from fastapi.testclient import TestClient

from mappalette_gateway.config import RateLimitPreset
from mappalette_gateway.errors import StoreUnavailable, register_exception_handlers
from mappalette_gateway.rate_limit import (
    ENDPOINT_PRESETS,
    PRESETS,
    RateLimiter,
    RateLimitMiddleware,
    RateLimitOptions,
    create_rate_limiter,
    resolve_options,
)
from mappalette_gateway.stores import MemoryCounterStore


class FakeClock:
    def __init__(self, now=1_000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    store = MemoryCounterStore(clock=clock)
    return RateLimiter(RateLimitOptions(window_ms=60_000, max=10, name="test"), store, clock=clock)


def test_eleventh_request_rejected(limiter):
    """Test max=10 allows ten hits and rejects the eleventh."""
    for i in range(10):
        result = limiter.hit("client1")
        assert result.allowed is True
        assert result.remaining == 9 - i

    result = limiter.hit("client1")
    assert result.allowed is False
    assert result.remaining == 0
    assert result.current == 11


def test_new_window_allows_again(limiter, clock):
    """Test the first hit after the window expires succeeds."""
    for _ in range(11):
        limiter.hit("client1")

    clock.now += 60
    result = limiter.hit("client1")

    assert result.allowed is True
    assert result.remaining == 9


def test_clients_isolated(limiter):
    for _ in range(11):
        limiter.hit("client1")

    assert limiter.hit("client2").allowed is True


def test_headers(limiter, clock):
    result = limiter.hit("client1")

    assert result.headers() == {
        "RateLimit-Limit": "10",
        "RateLimit-Remaining": "9",
        "RateLimit-Reset": "60",
    }

    for _ in range(10):
        result = limiter.hit("client1")
    clock.now += 15.5

    blocked = limiter.hit("client1")
    assert blocked.headers()["Retry-After"] == "45"
    assert blocked.headers()["RateLimit-Remaining"] == "0"


def test_refund(limiter):
    limiter.hit("client1")
    limiter.refund("client1")

    assert limiter.hit("client1").current == 1


def test_presets_differ_only_by_max():
    assert PRESETS["strict"].max == 10
    assert PRESETS["moderate"].max == 100
    assert PRESETS["permissive"].max == 500
    assert len({preset.window_ms for preset in PRESETS.values()}) == 1
    assert {preset.message for preset in PRESETS.values()} == {PRESETS["strict"].message}


def test_resolve_options():
    assert resolve_options(RateLimitPreset.STRICT) is PRESETS["strict"]
    assert resolve_options("auth").skip_successful_requests is True
    assert resolve_options("moderate", max=3).max == 3
    assert ENDPOINT_PRESETS["post_create"].window_ms == 60 * 60 * 1000

    with pytest.raises(ValueError):
        resolve_options("unknown")


def test_invalid_options():
    with pytest.raises(ValueError):
        RateLimitOptions(window_ms=0)
    with pytest.raises(ValueError):
        RateLimitOptions(max=-1)


def test_presets_share_store_without_sharing_counters(clock):
    store = MemoryCounterStore(clock=clock)
    strict = create_rate_limiter("strict", store)
    moderate = create_rate_limiter("moderate", store)

    for _ in range(10):
        strict.hit("client1")

    assert strict.hit("client1").allowed is False
    assert moderate.hit("client1").allowed is True


def build_app(limiter, use_middleware):
    app = FastAPI()
    register_exception_handlers(app)
    dependencies = []
    if use_middleware:
        app.add_middleware(RateLimitMiddleware, limiter=limiter)
    else:
        dependencies.append(Depends(limiter))

    @app.get("/ok", dependencies=dependencies)
    async def ok():
        return {"ok": True}

    @app.post("/login", dependencies=dependencies)
    async def login(password: str = "wrong"):
        if password != "secret":
            raise HTTPException(status_code=401, detail="Invalid credentials")
        return {"ok": True}

    return TestClient(app)


@pytest.mark.parametrize("use_middleware", [True, False])
def test_http_rejection(use_middleware):
    """Test both surfaces answer 429 with the limiter message."""
    limiter = create_rate_limiter(
        RateLimitOptions(window_ms=60_000, max=2, message="Slow down", name="http"),
        MemoryCounterStore(),
    )
    client = build_app(limiter, use_middleware)

    first = client.get("/ok")
    assert first.status_code == 200
    assert first.headers["RateLimit-Limit"] == "2"
    assert first.headers["RateLimit-Remaining"] == "1"

    client.get("/ok")
    blocked = client.get("/ok")

    assert blocked.status_code == 429
    assert blocked.json() == {"error": "Too Many Requests", "message": "Slow down"}
    assert blocked.headers["RateLimit-Remaining"] == "0"
    assert "Retry-After" in blocked.headers


def test_skip_successful_requests():
    """Test only failed attempts count against the auth limiter."""
    limiter = create_rate_limiter("auth", MemoryCounterStore(), max=2)
    client = build_app(limiter, use_middleware=True)

    for _ in range(5):
        assert client.post("/login", params={"password": "secret"}).status_code == 200

    assert client.post("/login").status_code == 401
    assert client.post("/login").status_code == 401
    assert client.post("/login").status_code == 429


def test_forwarded_for_ignored_without_trust_proxy():
    limiter = create_rate_limiter(RateLimitOptions(max=1, name="proxy"), MemoryCounterStore())
    client = build_app(limiter, use_middleware=True)

    client.get("/ok", headers={"X-Forwarded-For": "1.1.1.1"})
    response = client.get("/ok", headers={"X-Forwarded-For": "2.2.2.2"})

    assert response.status_code == 429


class RefundFailingStore(MemoryCounterStore):
    """Counts normally but cannot refund, like a fail-closed store with Redis down."""

    def decrement(self, key):
        raise StoreUnavailable("Rate limit store unavailable")


def test_failed_refund_keeps_successful_response(caplog):
    """Test a store error during refund does not turn a 2xx into an error."""
    limiter = create_rate_limiter("auth", RefundFailingStore(), max=2)
    client = build_app(limiter, use_middleware=True)

    with caplog.at_level("WARNING"):
        response = client.post("/login", params={"password": "secret"})

    assert response.status_code == 200
    assert response.json() == {"ok": True}
    assert response.headers["RateLimit-Limit"] == "2"
    assert "Refund failed" in caplog.text
