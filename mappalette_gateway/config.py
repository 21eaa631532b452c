"""
Configuration and constants for the Mappalette gateway.
"""
import os
from enum import Enum


class RateLimitPreset(Enum):
    STRICT = "strict"
    MODERATE = "moderate"
    PERMISSIVE = "permissive"


class CounterStoreKind(Enum):
    MEMORY = "memory"
    REDIS = "redis"


class FailMode(Enum):
    OPEN = "open"  # Fall back to in-process counters on Redis failure
    CLOSED = "closed"  # Reject with 503 on Redis failure


# Window shared by the named presets (15 minutes)
RATE_LIMIT_WINDOW_MS = int(os.getenv("RATE_LIMIT_WINDOW_MS", 15 * 60 * 1000))

# Named presets differ only by max requests per window
PRESET_MAX_REQUESTS = {
    RateLimitPreset.STRICT: 10,
    RateLimitPreset.MODERATE: 100,
    RateLimitPreset.PERMISSIVE: 500,
}

DEFAULT_RATE_LIMIT_MESSAGE = "Too many requests, please try again later"

# Endpoint-specific limits used by the user and post services
ENDPOINT_RATE_LIMITS = {
    "auth": {
        "window_ms": 15 * 60 * 1000,
        "max": 10,
        "message": "Too many authentication attempts. Please try again in a few minutes.",
        "skip_successful_requests": True,
    },
    "post_create": {
        "window_ms": 60 * 60 * 1000,
        "max": 60,
        "message": "You can create up to 60 posts per hour. Please try again later.",
    },
    "global": {
        "window_ms": 15 * 60 * 1000,
        "max": 2000,
        "message": "Too many requests from this IP. Please slow down.",
    },
}

# Configuration from environment
SERVICE_NAME = os.getenv("SERVICE_NAME", "mappalette-gateway")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
RATE_LIMIT_STORE = CounterStoreKind(os.getenv("RATE_LIMIT_STORE", "memory").lower())
REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_DB = int(os.getenv("REDIS_DB", 0))
FAIL_MODE = FailMode(os.getenv("FAIL_MODE", "open").lower())
TRUST_PROXY = os.getenv("TRUST_PROXY", "false").lower() == "true"

PROFILE_SERVICE_URL = os.getenv("PROFILE_SERVICE_URL", "http://localhost:3006/api")
PROFILE_SERVICE_TIMEOUT = float(os.getenv("PROFILE_SERVICE_TIMEOUT", 30))

# Feature flags
ENABLE_METRICS = os.getenv("ENABLE_METRICS", "true").lower() == "true"
TRACING_ENABLED = os.getenv("TRACING_ENABLED", "false").lower() == "true"
OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT", "http://localhost:4318/v1/traces")
