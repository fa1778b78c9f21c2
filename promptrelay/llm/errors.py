"""
Provider error taxonomy and classifier.

WHAT: Closed set of failure kinds, the exceptions that carry them, and the
      pure function that sorts any raw failure into one kind
WHY: Callers decide retry policy from one standardized error, regardless of
     which backend failed or how it signalled the failure
HOW: Status-code mapping first, case-insensitive message matching second,
     then a backend-branded user-facing sentence per kind
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

import httpx


class ErrorKind(str, Enum):
    """Classification kinds every provider failure is sorted into."""
    INVALID_CREDENTIAL = "invalid_credential"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    QUOTA_EXCEEDED = "quota_exceeded"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    SERVER_ERROR = "server_error"
    INVALID_REQUEST = "invalid_request"
    UNKNOWN = "unknown"


# Callers typically retry these; the library itself never does
RETRYABLE_KINDS = frozenset({ErrorKind.TIMEOUT, ErrorKind.NETWORK_ERROR, ErrorKind.SERVER_ERROR})

# Ordered: first matching group wins
_MESSAGE_PATTERNS: tuple[tuple[ErrorKind, tuple[str, ...]], ...] = (
    (ErrorKind.INVALID_CREDENTIAL, (
        "unauthorized", "invalid api key", "invalid api token", "authentication failed",
    )),
    (ErrorKind.RATE_LIMIT_EXCEEDED, ("rate limit", "too many requests")),
    (ErrorKind.QUOTA_EXCEEDED, ("quota", "billing", "insufficient funds")),
    (ErrorKind.TIMEOUT, ("timeout", "timed out")),
    (ErrorKind.NETWORK_ERROR, ("network", "connection")),
)


@dataclass(frozen=True)
class ErrorRecord:
    """Immutable record of one classified failure."""
    message: str
    kind: ErrorKind
    context: str
    provider: str
    timestamp: float = field(default_factory=time.time)
    status_code: int | None = None
    metadata: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self):
        if not isinstance(self.metadata, MappingProxyType):
            object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))


# ========== Classified provider errors ==========

class ProviderError(Exception):
    """Standardized, classified failure from a backend."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        display_name: str | None = None,
        raw_message: str | None = None,
        status_code: int | None = None,
        context: str = "unknown",
        record: ErrorRecord | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.display_name = display_name or provider
        self.raw_message = raw_message if raw_message is not None else message
        self.status_code = status_code
        self.context = context
        self.record = record

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS


class AuthenticationError(ProviderError):
    """Backend rejected the credential."""
    kind = ErrorKind.INVALID_CREDENTIAL


class RateLimitExceededError(ProviderError):
    """Local window exhausted, or backend returned 429."""
    kind = ErrorKind.RATE_LIMIT_EXCEEDED


class QuotaExceededError(ProviderError):
    """Account quota or billing limit reached."""
    kind = ErrorKind.QUOTA_EXCEEDED


class ProviderTimeoutError(ProviderError):
    """Request or caller deadline timed out."""
    kind = ErrorKind.TIMEOUT


class ProviderNetworkError(ProviderError):
    """Backend not reachable."""
    kind = ErrorKind.NETWORK_ERROR


class ProviderServerError(ProviderError):
    """Backend failed or answered with an unusable payload."""
    kind = ErrorKind.SERVER_ERROR


class InvalidRequestError(ProviderError):
    """Backend refused the request as malformed."""
    kind = ErrorKind.INVALID_REQUEST


class UnknownProviderError(ProviderError):
    """Failure that matched no known pattern."""
    kind = ErrorKind.UNKNOWN


ERROR_CLASSES: dict[ErrorKind, type[ProviderError]] = {
    cls.kind: cls
    for cls in (
        AuthenticationError,
        RateLimitExceededError,
        QuotaExceededError,
        ProviderTimeoutError,
        ProviderNetworkError,
        ProviderServerError,
        InvalidRequestError,
        UnknownProviderError,
    )
}


# ========== Local-only errors (raised before any network call) ==========

class NotAuthenticatedError(Exception):
    """generate() was called before a successful authenticate()."""
    pass


class ConfigurationError(ValueError):
    """Configuration handed to an adapter failed validation."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or []


class RegistryError(Exception):
    """Base class for registry misuse."""
    pass


class DuplicateNameError(RegistryError):
    """A provider is already registered under this name."""

    def __init__(self, name: str):
        super().__init__(f"Provider '{name}' is already registered")
        self.name = name


class UnregisteredNameError(RegistryError):
    """A referenced provider name is not registered."""

    def __init__(self, name: str, purpose: str = "use"):
        super().__init__(f"Cannot {purpose} provider '{name}': not registered")
        self.name = name


# ========== Raw failures raised inside adapters ==========

class BackendResponseError(Exception):
    """
    The backend answered, but the answer is an error or unusable.

    Raised by adapters for non-2xx responses, in-body error objects and
    malformed payloads; always converted to a ProviderError before it leaves
    the adapter.
    """

    def __init__(self, message: str, status_code: int | None = None, payload: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class StreamPayloadError(BackendResponseError):
    """An in-band error object arrived in the middle of a stream."""
    pass


# ========== Classification ==========

def kind_from_status(status: int | None) -> ErrorKind | None:
    """Map an HTTP status code to a kind, or None if it carries no signal."""
    if status is None:
        return None
    if status in (401, 403):
        return ErrorKind.INVALID_CREDENTIAL
    if status == 429:
        return ErrorKind.RATE_LIMIT_EXCEEDED
    if status == 402:
        return ErrorKind.QUOTA_EXCEEDED
    if status in (408, 504):
        return ErrorKind.TIMEOUT
    if 500 <= status < 600:
        return ErrorKind.SERVER_ERROR
    if 400 <= status < 500:
        return ErrorKind.INVALID_REQUEST
    return None


def kind_from_message(message: str | None, recognized: bool = True) -> ErrorKind:
    """
    Classify by case-insensitive substring match.

    Args:
        message: Error text
        recognized: True when the text came from a backend; unmatched backend
            errors are server errors, unmatched foreign errors are unknown
    """
    lowered = (message or "").lower()
    for kind, needles in _MESSAGE_PATTERNS:
        if any(needle in lowered for needle in needles):
            return kind
    return ErrorKind.SERVER_ERROR if recognized else ErrorKind.UNKNOWN


def classify(
    status: int | None = None,
    message: str | None = None,
    recognized: bool = True,
) -> ErrorKind:
    """Pure classification of (status, message); status wins when it maps."""
    return kind_from_status(status) or kind_from_message(message, recognized)


def classify_exception(exc: BaseException) -> tuple[ErrorKind, int | None, str]:
    """
    Classify a thrown error.

    Returns:
        (kind, status_code, raw_message)
    """
    if isinstance(exc, ProviderError):
        return exc.kind, exc.status_code, exc.raw_message

    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        message = f"HTTP {status}: {exc.response.reason_phrase}"
        return classify(status, message), status, message

    # Timeouts first: httpx.TimeoutException is also a TransportError
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return ErrorKind.TIMEOUT, None, str(exc) or "Request timed out"

    if isinstance(exc, httpx.TransportError):
        return ErrorKind.NETWORK_ERROR, None, str(exc) or "Connection failed"

    if isinstance(exc, BackendResponseError):
        return classify(exc.status_code, str(exc)), exc.status_code, str(exc)

    message = str(exc) or exc.__class__.__name__
    return classify(None, message, recognized=False), None, message


def format_error_message(kind: ErrorKind, display_name: str, raw_message: str = "") -> str:
    """Render the user-facing, backend-branded sentence for a kind."""
    if kind is ErrorKind.INVALID_CREDENTIAL:
        return f"Authentication failed for {display_name}. Please check your credential."
    if kind is ErrorKind.RATE_LIMIT_EXCEEDED:
        return f"Rate limit exceeded for {display_name}. Please wait before making more requests."
    if kind is ErrorKind.QUOTA_EXCEEDED:
        return f"Quota exceeded for {display_name}. Please check your billing or usage limits."
    if kind is ErrorKind.TIMEOUT:
        return f"Request timeout for {display_name}. Please try again."
    if kind is ErrorKind.NETWORK_ERROR:
        return f"Network error connecting to {display_name}. Please check your connection."
    if kind is ErrorKind.SERVER_ERROR:
        return f"{display_name} server error. Please try again later."
    return f"{display_name} error: {raw_message}"


def build_error(
    kind: ErrorKind,
    *,
    provider: str,
    display_name: str,
    raw_message: str,
    context: str = "unknown",
    status_code: int | None = None,
    metadata: Mapping[str, Any] | None = None,
) -> ProviderError:
    """Create the ProviderError subclass for a kind, with its ErrorRecord."""
    record = ErrorRecord(
        message=raw_message,
        kind=kind,
        context=context,
        provider=provider,
        status_code=status_code,
        metadata=metadata or {},
    )
    error_cls = ERROR_CLASSES[kind]
    return error_cls(
        format_error_message(kind, display_name, raw_message),
        provider=provider,
        display_name=display_name,
        raw_message=raw_message,
        status_code=status_code,
        context=context,
        record=record,
    )
