"""LLM provider layer."""

from .types import (
    ChatMessage,
    GenerateOptions,
    GenerateResult,
    ModelInfo,
    ValidationResult,
    ConfigField,
    ConnectionTestResult,
    RateLimitStatus,
    ProviderMetadata,
)
from .errors import (
    ErrorKind,
    ErrorRecord,
    ProviderError,
    AuthenticationError,
    RateLimitExceededError,
    QuotaExceededError,
    ProviderTimeoutError,
    ProviderNetworkError,
    ProviderServerError,
    InvalidRequestError,
    UnknownProviderError,
    NotAuthenticatedError,
    ConfigurationError,
    RegistryError,
    DuplicateNameError,
    UnregisteredNameError,
    classify,
)
from .rate_limiter import RateLimiter
from .streaming import decode_stream
from .provider import LLMProvider, BaseProvider
from .registry import ProviderRegistry
from .provider_factory import BUILTIN_PROVIDERS, create_registry

__all__ = [
    "ChatMessage",
    "GenerateOptions",
    "GenerateResult",
    "ModelInfo",
    "ValidationResult",
    "ConfigField",
    "ConnectionTestResult",
    "RateLimitStatus",
    "ProviderMetadata",
    "ErrorKind",
    "ErrorRecord",
    "ProviderError",
    "AuthenticationError",
    "RateLimitExceededError",
    "QuotaExceededError",
    "ProviderTimeoutError",
    "ProviderNetworkError",
    "ProviderServerError",
    "InvalidRequestError",
    "UnknownProviderError",
    "NotAuthenticatedError",
    "ConfigurationError",
    "RegistryError",
    "DuplicateNameError",
    "UnregisteredNameError",
    "classify",
    "RateLimiter",
    "decode_stream",
    "LLMProvider",
    "BaseProvider",
    "ProviderRegistry",
    "BUILTIN_PROVIDERS",
    "create_registry",
]
