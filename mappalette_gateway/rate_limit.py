"""
Per-client request throttling.

A RateLimiter counts hits per client key in a CounterStore and rejects the
request once the count for the current window exceeds the configured max.
It can be installed globally as middleware or attached to single routes as a
FastAPI dependency.
"""
import dataclasses
import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Union

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from mappalette_gateway.config import (
    DEFAULT_RATE_LIMIT_MESSAGE,
    ENDPOINT_RATE_LIMITS,
    PRESET_MAX_REQUESTS,
    RATE_LIMIT_WINDOW_MS,
    TRUST_PROXY,
    RateLimitPreset,
)
from mappalette_gateway.errors import AppError, RateLimitExceeded, error_response
from mappalette_gateway.metrics import record_allowed, record_blocked
from mappalette_gateway.stores import CounterStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitOptions:
    """Limiter configuration: at most `max` requests per `window_ms` per client."""

    window_ms: int = RATE_LIMIT_WINDOW_MS
    max: int = 100
    message: str = DEFAULT_RATE_LIMIT_MESSAGE
    skip_successful_requests: bool = False
    name: str = "default"

    def __post_init__(self):
        if self.window_ms <= 0:
            raise ValueError(f"window_ms must be positive, got {self.window_ms}")
        if self.max < 0:
            raise ValueError(f"max must not be negative, got {self.max}")


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of counting one request."""

    allowed: bool
    limit: int
    current: int
    remaining: int
    reset_at: float
    reset_in: int

    def headers(self) -> Dict[str, str]:
        """Standard RateLimit-* headers, plus Retry-After on rejection."""
        headers = {
            "RateLimit-Limit": str(self.limit),
            "RateLimit-Remaining": str(self.remaining),
            "RateLimit-Reset": str(self.reset_in),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.reset_in)
        return headers


def client_key(request: Request) -> str:
    """Identify the client by source address."""
    if TRUST_PROXY:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


class RateLimiter:
    """
    Fixed-window limiter over an explicit counter store.

    The limiter instance is also a FastAPI dependency:

        strict = create_rate_limiter("strict", store)

        @app.delete("/posts/{post_id}", dependencies=[Depends(strict)])
        async def delete_post(post_id: str): ...
    """

    def __init__(
        self,
        options: RateLimitOptions,
        store: CounterStore,
        key_func: Callable[[Request], str] = client_key,
        clock: Callable[[], float] = time.time,
    ):
        self.options = options
        self.store = store
        self.key_func = key_func
        self._clock = clock

    @property
    def name(self) -> str:
        return self.options.name

    def _store_key(self, client: str) -> str:
        return f"{self.options.name}:{client}"

    def hit(self, client: str) -> RateLimitResult:
        """Count one request for client and decide whether it may proceed."""
        window = self.store.increment(self._store_key(client), self.options.window_ms)
        allowed = window.count <= self.options.max
        result = RateLimitResult(
            allowed=allowed,
            limit=self.options.max,
            current=window.count,
            remaining=max(0, self.options.max - window.count),
            reset_at=window.reset_at,
            reset_in=max(0, math.ceil(window.reset_at - self._clock())),
        )

        if allowed:
            record_allowed(self.name)
        else:
            record_blocked(self.name)
            logger.warning(
                f"Rate limit exceeded: limiter={self.name} client={client} "
                f"current={window.count} limit={self.options.max}"
            )
        return result

    def refund(self, client: str):
        """Give back the hit counted for a request that should not count."""
        self.store.decrement(self._store_key(client))

    def reset(self, client: str):
        self.store.reset(self._store_key(client))

    def rejection(self, result: RateLimitResult) -> RateLimitExceeded:
        return RateLimitExceeded(self.options.message, headers=result.headers())

    async def __call__(self, request: Request, response: Response) -> RateLimitResult:
        result = self.hit(self.key_func(request))
        if not result.allowed:
            raise self.rejection(result)
        response.headers.update(result.headers())
        return result


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Apply one limiter to every request that reaches the application."""

    def __init__(self, app, limiter: RateLimiter):
        super().__init__(app)
        self.limiter = limiter

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        client = self.limiter.key_func(request)
        try:
            result = self.limiter.hit(client)
        except AppError as e:
            return error_response(e)

        if not result.allowed:
            return error_response(self.limiter.rejection(result))

        response = await call_next(request)

        if self.limiter.options.skip_successful_requests and response.status_code < 400:
            try:
                self.limiter.refund(client)
            except AppError as e:
                logger.warning(f"Refund failed for limiter={self.limiter.name} client={client}: {e.message}")

        response.headers.update(result.headers())
        return response


PRESETS: Dict[str, RateLimitOptions] = {
    preset.value: RateLimitOptions(
        window_ms=RATE_LIMIT_WINDOW_MS,
        max=PRESET_MAX_REQUESTS[preset],
        name=preset.value,
    )
    for preset in RateLimitPreset
}

ENDPOINT_PRESETS: Dict[str, RateLimitOptions] = {
    name: RateLimitOptions(name=name, **rule)
    for name, rule in ENDPOINT_RATE_LIMITS.items()
}


def resolve_options(options: Union[str, RateLimitPreset, RateLimitOptions], **overrides) -> RateLimitOptions:
    """Turn a preset name, preset or explicit options into RateLimitOptions."""
    if isinstance(options, RateLimitPreset):
        options = options.value
    if isinstance(options, str):
        if options in PRESETS:
            options = PRESETS[options]
        elif options in ENDPOINT_PRESETS:
            options = ENDPOINT_PRESETS[options]
        else:
            raise ValueError(f"Unknown rate limit preset: {options}")
    if overrides:
        options = dataclasses.replace(options, **overrides)
    return options


def create_rate_limiter(
    options: Union[str, RateLimitPreset, RateLimitOptions],
    store: CounterStore,
    key_func: Callable[[Request], str] = client_key,
    **overrides,
) -> RateLimiter:
    """Build a limiter from a preset name or options, with optional overrides."""
    return RateLimiter(resolve_options(options, **overrides), store, key_func=key_func)
