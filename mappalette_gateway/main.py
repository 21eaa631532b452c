"""
Main FastAPI application for the Mappalette gateway.
"""
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional, Union

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from mappalette_gateway.config import (
    ENABLE_METRICS,
    LOG_LEVEL,
    SERVICE_NAME,
    TRACING_ENABLED,
    RateLimitPreset,
)
from mappalette_gateway.correlation import RequestIDMiddleware, configure_logging
from mappalette_gateway.errors import register_exception_handlers
from mappalette_gateway.metrics import get_registry
from mappalette_gateway.models import (
    ErrorResponse,
    HealthResponse,
    ValidationErrorResponse,
)
from mappalette_gateway.profile_client import ProfileClient
from mappalette_gateway.rate_limit import (
    RateLimitMiddleware,
    RateLimitOptions,
    create_rate_limiter,
)
from mappalette_gateway.redis_client import RedisClient
from mappalette_gateway.schemas import UserIdParams
from mappalette_gateway.stores import CounterStore, FailoverCounterStore, build_store
from mappalette_gateway.tracing import init_tracing, instrument_app
from mappalette_gateway.validation import validate

# Configure logging with request ids
configure_logging(LOG_LEVEL)
logger = logging.getLogger(__name__)

# Initialize tracing
init_tracing(service_name=SERVICE_NAME)

ERROR_RESPONSES = {
    400: {"model": ValidationErrorResponse},
    429: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def get_profile_client(request: Request) -> ProfileClient:
    return request.app.state.profile_client


def create_app(
    store: Optional[CounterStore] = None,
    profile_client: Optional[ProfileClient] = None,
    global_limit: Union[str, RateLimitPreset, RateLimitOptions] = RateLimitPreset.PERMISSIVE,
) -> FastAPI:
    """
    Build the gateway application.

    Request pipeline: request id tagging, then the global rate limiter, then
    per-route limiters and payload validation declared on each route.
    """
    if store is None:
        store = build_store()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"[{SERVICE_NAME}] Service started. Counter store: {type(store).__name__}")
        yield
        await app.state.profile_client.aclose()
        RedisClient.close()
        logger.info(f"[{SERVICE_NAME}] Service shutdown.")

    app = FastAPI(
        title="Mappalette Gateway",
        description="Request tagging, rate limiting and payload validation in front of the Mappalette services",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.profile_client = profile_client or ProfileClient()

    register_exception_handlers(app)

    # Starlette runs the last middleware added first
    app.add_middleware(RateLimitMiddleware, limiter=create_rate_limiter(global_limit, store))
    app.add_middleware(RequestIDMiddleware)

    if TRACING_ENABLED:
        instrument_app(app)

    moderate = create_rate_limiter(RateLimitPreset.MODERATE, store)

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check():
        """Health check endpoint with counter store status."""
        if isinstance(store, FailoverCounterStore):
            circuit_state = store.breaker.state.value
            return HealthResponse(
                status="healthy" if circuit_state == "closed" else "degraded",
                service=SERVICE_NAME,
                counter_store="redis",
                circuit_state=circuit_state,
            )
        return HealthResponse(status="healthy", service=SERVICE_NAME, counter_store="memory")

    if ENABLE_METRICS:
        @app.get("/metrics", tags=["Metrics"])
        async def metrics():
            """Prometheus metrics endpoint."""
            return Response(content=generate_latest(get_registry()), media_type=CONTENT_TYPE_LATEST)

    @app.get(
        "/api/profile/user/{userId}",
        dependencies=[Depends(moderate)],
        responses=ERROR_RESPONSES,
        tags=["Profiles"],
    )
    async def get_user_profile(
        current_user_id: Optional[str] = Query(default=None, alias="currentUserId"),
        params: Dict[str, Any] = Depends(validate(UserIdParams, "params")),
        client: ProfileClient = Depends(get_profile_client),
    ):
        """Complete profile data for a user."""
        return await client.get_user_profile(params["userId"], current_user_id)

    @app.get(
        "/api/profile/user/{userId}/followers",
        dependencies=[Depends(moderate)],
        responses=ERROR_RESPONSES,
        tags=["Profiles"],
    )
    async def get_user_followers(
        current_user_id: Optional[str] = Query(default=None, alias="currentUserId"),
        params: Dict[str, Any] = Depends(validate(UserIdParams, "params")),
        client: ProfileClient = Depends(get_profile_client),
    ):
        """Accounts following a user."""
        return await client.get_user_followers(params["userId"], current_user_id)

    @app.get(
        "/api/profile/user/{userId}/following",
        dependencies=[Depends(moderate)],
        responses=ERROR_RESPONSES,
        tags=["Profiles"],
    )
    async def get_user_following(
        current_user_id: Optional[str] = Query(default=None, alias="currentUserId"),
        params: Dict[str, Any] = Depends(validate(UserIdParams, "params")),
        client: ProfileClient = Depends(get_profile_client),
    ):
        """Accounts a user follows."""
        return await client.get_user_following(params["userId"], current_user_id)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        log_level=LOG_LEVEL.lower(),
    )
