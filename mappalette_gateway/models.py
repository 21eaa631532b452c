"""
Response models for the gateway API.
"""
from pydantic import BaseModel, Field
from typing import List


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    service: str
    counter_store: str = Field(..., description="Counter store backing the rate limiters")
    circuit_state: str = Field(default="closed", description="Redis circuit breaker state")


class FieldErrorModel(BaseModel):
    """A single violated field."""

    field: str = Field(..., description="Dotted path of the offending field")
    message: str


class ValidationErrorResponse(BaseModel):
    """Body returned when a payload fails validation."""

    error: str = "Validation Error"
    errors: List[FieldErrorModel]


class ErrorResponse(BaseModel):
    """Body returned for rate limiting and internal errors."""

    error: str
    message: str
