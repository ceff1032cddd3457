"""API Core - Shared utilities for API routes.

This package provides:
- Unified response builders (success_response, error_response)
- Domain exceptions (ValidationError, NotFoundError, etc.)
- Exception handlers rendering the JSON error envelope
- NDJSON streaming helpers

Usage:
    from estimator.api.core import success_response, error_response
    from estimator.api.core.streaming import stream_events
"""

from .response import (
    error_response,
    register_exception_handlers,
    success_response,
)

from ...core.exceptions import (
    EstimatorError,
    ValidationError,
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    ConnectionLimitError,
    RateLimitError,
    ServiceUnavailableError,
)

__all__ = [
    # Response utilities
    "success_response",
    "error_response",
    "register_exception_handlers",
    # Exceptions
    "EstimatorError",
    "ValidationError",
    "AuthenticationError",
    "AuthorizationError",
    "NotFoundError",
    "ConnectionLimitError",
    "RateLimitError",
    "ServiceUnavailableError",
]
