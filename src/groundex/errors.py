"""Exception taxonomy for extraction, alignment and provider calls.

Provider backends surface whatever their transport raises. ``classify_provider_exception``
maps those onto the recoverable / non-recoverable split the gateway retries on.
"""

from __future__ import annotations

import httpx

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 529}


class GroundexError(Exception):
    """Base class for all groundex errors."""


class RequestValidationError(GroundexError):
    """The extraction request is malformed (missing text, empty task, ...)."""


# ---------------------------------------------------------------------------
# Provider errors
# ---------------------------------------------------------------------------


class ProviderError(GroundexError):
    """A model provider call failed.

    Attributes:
        provider: Name of the provider that failed, if known.
        recoverable: Whether retrying (or failing over) can help.
    """

    recoverable = False

    def __init__(self, message: str, provider: str | None = None, recoverable: bool | None = None):
        super().__init__(message)
        self.provider = provider
        if recoverable is not None:
            self.recoverable = recoverable


class ProviderTimeoutError(ProviderError):
    recoverable = True


class RateLimitError(ProviderError):
    recoverable = True

    def __init__(self, message: str, provider: str | None = None, retry_after: float | None = None):
        super().__init__(message, provider)
        self.retry_after = retry_after


class ProviderUnavailableError(ProviderError):
    recoverable = True


class AuthenticationError(ProviderError):
    recoverable = False


class MalformedRequestError(ProviderError):
    recoverable = False


class ProvidersExhaustedError(ProviderError):
    """Every configured provider failed with a recoverable error."""

    recoverable = False

    def __init__(self, message: str, attempts: dict[str, int] | None = None, last_error: Exception | None = None):
        super().__init__(message)
        self.attempts = attempts or {}
        self.last_error = last_error


def _parse_retry_after(response: httpx.Response) -> float | None:
    retry_after = response.headers.get("retry-after")
    if retry_after:
        try:
            return float(retry_after)
        except ValueError:
            pass
    return None


def classify_provider_exception(exc: BaseException, provider: str | None = None) -> ProviderError:
    """Map a backend exception onto the provider error taxonomy.

    ``ProviderError`` instances pass through (with ``provider`` filled in).
    httpx status errors are split by status code, transport failures and
    timeouts are recoverable, anything else is treated as non-recoverable.
    """
    if isinstance(exc, ProviderError):
        if exc.provider is None:
            exc.provider = provider
        return exc

    if isinstance(exc, (httpx.TimeoutException, TimeoutError)):
        return ProviderTimeoutError(f"timeout: {exc}", provider)

    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        text = exc.response.text[:300]
        if status == 429:
            return RateLimitError(
                f"rate limited (429): {text}", provider, _parse_retry_after(exc.response)
            )
        if status in (401, 403):
            return AuthenticationError(f"authentication failed ({status}): {text}", provider)
        if status in RETRYABLE_STATUS_CODES or status >= 500:
            return ProviderUnavailableError(f"provider unavailable ({status}): {text}", provider)
        return MalformedRequestError(f"request rejected ({status}): {text}", provider)

    if isinstance(exc, (httpx.TransportError, ConnectionError, OSError)):
        return ProviderUnavailableError(f"transport error: {exc}", provider)

    return ProviderError(f"{type(exc).__name__}: {exc}", provider, recoverable=False)


# ---------------------------------------------------------------------------
# Pipeline errors
# ---------------------------------------------------------------------------


class ResponseParseError(GroundexError):
    """The provider answered, but nothing usable could be parsed from it."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw


class AlignmentError(GroundexError):
    """Invalid alignment input (bad options, out-of-range interval)."""

    def __init__(self, message: str, error_type: str = "validation", method: str | None = None, details: dict | None = None):
        super().__init__(message)
        self.error_type = error_type
        self.method = method
        self.details = details or {}


class SchemaValidationError(GroundexError):
    """An extraction does not satisfy the extraction schema."""

    def __init__(self, message: str, field: str = "", value: object = None, constraint: str = ""):
        super().__init__(message)
        self.field = field
        self.value = value
        self.constraint = constraint


class StageError(GroundexError):
    """A pipeline stage failed; wraps the underlying cause."""

    def __init__(self, stage: str, cause: BaseException):
        super().__init__(f"{stage} failed: {cause}")
        self.stage = stage
        self.cause = cause
        self.__cause__ = cause


class ContextError(GroundexError):
    """The execution context ended before the work completed."""


class RequestCancelled(ContextError):
    pass


class DeadlineExceeded(ContextError):
    pass


def error_code(exc: BaseException | None) -> str | None:
    """Short machine-readable code for an error stored on a response."""
    if exc is None:
        return None
    if isinstance(exc, StageError):
        return f"{exc.stage}:{error_code(exc.cause)}"
    codes = {
        RequestValidationError: "invalid_request",
        ProviderTimeoutError: "provider_timeout",
        RateLimitError: "rate_limited",
        ProviderUnavailableError: "provider_unavailable",
        AuthenticationError: "authentication",
        MalformedRequestError: "malformed_request",
        ProvidersExhaustedError: "providers_exhausted",
        ResponseParseError: "parse_error",
        AlignmentError: "alignment_error",
        SchemaValidationError: "schema_invalid",
        RequestCancelled: "cancelled",
        DeadlineExceeded: "deadline_exceeded",
    }
    for cls in type(exc).__mro__:
        if cls in codes:
            return codes[cls]
    if isinstance(exc, ProviderError):
        return "provider_error"
    return "internal"
