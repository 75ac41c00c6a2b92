"""
Custom exception classes for the FPL data gateway.

Provides a hierarchy of exceptions for upstream failures, resilience
decisions and normalization problems, each carrying debugging context.
"""

from typing import Any, Optional


class FPLGatewayError(Exception):
    """Base exception for all gateway errors.

    All custom exceptions inherit from this class, allowing
    catch-all error handling when needed.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
    """

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class APIError(FPLGatewayError):
    """Raised when an upstream API call fails.

    Attributes:
        endpoint: API endpoint that failed
        status_code: HTTP status code (if applicable)
        response_body: Response content (if available)
        source: Upstream provider name
    """

    retryable = False

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        source: Optional[str] = None,
        **kwargs
    ):
        details = {
            "source": source,
            "endpoint": endpoint,
            "status_code": status_code,
            **kwargs
        }
        if response_body:
            # Truncate response body for readability
            details["response_preview"] = (
                response_body[:200] + "..." if len(response_body) > 200 else response_body
            )

        details = {k: v for k, v in details.items() if v is not None}
        super().__init__(message, details)
        self.endpoint = endpoint
        self.status_code = status_code
        self.response_body = response_body
        self.source = source


class TransientNetworkError(APIError):
    """Raised on timeouts and connection resets. Retried with backoff."""

    retryable = True


class UpstreamServerError(APIError):
    """Raised when the provider answers with a 5xx status. Counted by the breaker."""

    retryable = True


class AuthError(APIError):
    """Raised when authentication fails (401/403)."""


class RateLimitedError(APIError):
    """Raised on an explicit 429 or an internal quota rejection.

    Deferred to the next permitted window rather than retried immediately.

    Attributes:
        retry_after: Seconds to wait before retrying (if provided by API)
        next_available_at: Epoch seconds when quota becomes available again
    """

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: Optional[float] = None,
        next_available_at: Optional[float] = None,
        **kwargs
    ):
        if retry_after is not None:
            kwargs["retry_after"] = retry_after
        if next_available_at is not None:
            kwargs["next_available_at"] = round(next_available_at, 3)
        super().__init__(message, **kwargs)
        self.retry_after = retry_after
        self.next_available_at = next_available_at


class CircuitOpenError(FPLGatewayError):
    """Raised when a source's circuit breaker rejects a call.

    Attributes:
        source: Source name with open circuit
        state: Breaker state at rejection time
        next_attempt_at: Epoch seconds when a probe will be allowed
    """

    def __init__(
        self,
        message: str = "Circuit breaker is open",
        source: Optional[str] = None,
        state: str = "open",
        next_attempt_at: Optional[float] = None,
        **kwargs
    ):
        details = {
            "source": source,
            "state": state,
            "next_attempt_at": next_attempt_at,
            **kwargs
        }
        details = {k: v for k, v in details.items() if v is not None}
        super().__init__(message, details)
        self.source = source
        self.state = state
        self.next_attempt_at = next_attempt_at


class SchemaMismatchError(FPLGatewayError):
    """Raised when an upstream payload no longer matches the expected shape.

    Never retried. Logged on the dedicated schema logger so a breaking
    upstream change is not mistaken for an outage.

    Attributes:
        source: Provider whose payload failed to map
        field: Specific field that caused the error
        value: Value that failed normalization
    """

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs
    ):
        details = {
            "source": source,
            "field": field,
            **kwargs
        }
        if value is not None:
            # Truncate value for readability
            value_str = str(value)
            details["value"] = value_str[:100] + "..." if len(value_str) > 100 else value_str

        details = {k: v for k, v in details.items() if v is not None}
        super().__init__(message, details)
        self.source = source
        self.field = field
        self.value = value


class SourcesExhaustedError(FPLGatewayError):
    """Raised after cache, primary and fallback sources have all failed.

    Attributes:
        operation: Abstract operation that could not be served
        errors: Mapping of source name to the error it produced
    """

    def __init__(
        self,
        operation: str,
        errors: Optional[dict[str, Exception]] = None,
        message: Optional[str] = None,
    ):
        self.operation = operation
        self.errors = errors or {}
        details = {
            "operation": operation,
            **{source: type(error).__name__ for source, error in self.errors.items()},
        }
        super().__init__(message or f"All data sources failed for {operation}", details)


class SourceUnavailableError(FPLGatewayError):
    """Raised when a manual switch targets a source that is currently unavailable."""

    def __init__(self, source: str, next_available_at: Optional[float] = None):
        details = {"source": source}
        if next_available_at is not None:
            details["next_available_at"] = round(next_available_at, 3)
        super().__init__(f"Cannot switch to {source} - source is not available", details)
        self.source = source
        self.next_available_at = next_available_at


class CacheError(FPLGatewayError):
    """Raised when cache operations fail.

    Attributes:
        operation: The cache operation that failed (read/write/delete/sweep)
        cache_key: The key involved in the failed operation
    """

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        cache_key: Optional[str] = None,
        **kwargs
    ):
        details = {
            "operation": operation,
            "cache_key": cache_key,
            **kwargs
        }
        details = {k: v for k, v in details.items() if v is not None}
        super().__init__(message, details)
        self.operation = operation
        self.cache_key = cache_key


class ConfigurationError(FPLGatewayError):
    """Raised when settings or the TTL policy table fail validation."""

    def __init__(self, message: str, errors: Optional[list[str]] = None):
        super().__init__(message, {"errors": "; ".join(errors)} if errors else None)
        self.errors = errors or []
