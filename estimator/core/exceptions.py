"""Domain exceptions for the estimator.

Every error carries an HTTP status, a machine-readable code and whether a
stream may continue after reporting it. Route handlers let these propagate;
the exception handlers registered in ``create_app`` render the envelope.
"""

from typing import Any, Optional


class EstimatorError(Exception):
    """Base class for all estimator errors."""

    status_code: int = 500
    code: str = "UNKNOWN"
    error: str = "Internal Server Error"
    recoverable: bool = True

    def __init__(
        self,
        message: str = "",
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Any = None,
        recoverable: Optional[bool] = None,
    ):
        super().__init__(message or self.error)
        self.message = message or self.error
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        if recoverable is not None:
            self.recoverable = recoverable
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.error, "message": self.message, "code": self.code}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationError(EstimatorError):
    status_code = 400
    code = "VALIDATION"
    error = "Bad Request"


class AuthenticationError(EstimatorError):
    status_code = 401
    code = "UNAUTHORIZED"
    error = "Unauthorized"
    recoverable = False


class AuthorizationError(EstimatorError):
    status_code = 403
    code = "FORBIDDEN"
    error = "Forbidden"
    recoverable = False


class NotFoundError(EstimatorError):
    status_code = 404
    code = "NOT_FOUND"
    error = "Not Found"


class ConnectionLimitError(EstimatorError):
    status_code = 429
    code = "CONNECTION_LIMIT"
    error = "Connection limit reached"


class QuotaExceededError(EstimatorError):
    """Provider quota exhausted; the current stream cannot continue."""

    status_code = 429
    code = "QUOTA_EXCEEDED"
    error = "Quota exceeded"
    recoverable = False


class RateLimitError(EstimatorError):
    status_code = 429
    code = "RATE_LIMIT"
    error = "Rate limit exceeded"


class StreamTimeoutError(EstimatorError):
    status_code = 504
    code = "TIMEOUT"
    error = "Operation timed out"


class ProviderAuthError(EstimatorError):
    status_code = 502
    code = "AUTH_FAILED"
    error = "Authentication failed"
    recoverable = False


class ResponseParseError(EstimatorError):
    """The model output could not be turned into structured data."""

    status_code = 502
    code = "PARSE_ERROR"
    error = "Failed to parse AI response"
    recoverable = False


class MissingEstimateDataError(ResponseParseError):
    code = "MISSING_ESTIMATE_DATA"
    error = "Missing estimate data"


class ConnectionClosedError(EstimatorError):
    status_code = 499
    code = "CONNECTION_CLOSED"
    error = "Connection closed"


class ServiceUnavailableError(EstimatorError):
    status_code = 503
    code = "SERVICE_UNAVAILABLE"
    error = "Service unavailable"
