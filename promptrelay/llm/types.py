"""
LLM provider types and dataclasses.

WHAT: Standard type definitions shared by every provider adapter
WHY: Ensure consistent contracts across all backends
HOW: TypedDict for messages, dataclasses for options/results/descriptors
"""

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Literal, TypedDict, Union


# Message format compatible with OpenAI-style APIs
ChatMessage = TypedDict(
    "ChatMessage",
    {"role": Literal["system", "user", "assistant"], "content": str}
)

# generate() returns whole text, or a lazy fragment sequence when streaming
GenerateResult = Union[str, AsyncIterator[str]]


@dataclass
class GenerateOptions:
    """Per-call generation options. None means "use the adapter/config default"."""
    model: str | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    stream: bool = False
    messages: list[ChatMessage] | None = None
    stop: list[str] | None = None
    timeout: float | None = None  # caller deadline in seconds


@dataclass
class ModelInfo:
    """Descriptor for one model a backend offers."""
    id: str
    name: str
    description: str = ""
    max_tokens: int | None = None
    free: bool | None = None


@dataclass
class ValidationResult:
    """Outcome of a pure configuration check."""
    is_valid: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def add_error(self, message: str) -> None:
        self.is_valid = False
        self.errors.append(message)

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def merge(self, other: "ValidationResult") -> "ValidationResult":
        """Fold another result into this one (errors invalidate)."""
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)
        if not other.is_valid:
            self.is_valid = False
        return self


@dataclass
class ConfigField:
    """One field a configuration UI needs to render."""
    name: str
    type: str
    required: bool
    sensitive: bool = False
    default: Any = None
    label: str = ""
    description: str = ""
    options: list[str] | None = None


@dataclass
class ConnectionTestResult:
    """Summary of validate -> authenticate -> minimal generation."""
    success: bool
    provider: str
    sample: str | None = None
    error: str | None = None
    error_kind: str | None = None
    details: list[str] = field(default_factory=list)
    response_time_ms: float | None = None


@dataclass
class RateLimitStatus:
    """Read-only view of a rate window."""
    requests_remaining: int
    units_remaining: int
    reset_at: float
    seconds_until_reset: float


@dataclass
class ProviderMetadata:
    """Snapshot of an adapter for diagnostics."""
    name: str
    display_name: str
    description: str
    supported_features: list[str]
    is_authenticated: bool
    default_model: str
    last_error: Any = None
    rate_limit: RateLimitStatus | None = None
