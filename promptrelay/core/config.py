"""
Library configuration using pydantic-settings.

WHAT: Centralized defaults for timeouts, rate windows, and provider selection
WHY: Type-safe, validated defaults that hosts can override from the environment
HOW: Pydantic BaseSettings reads from .env and environment

Credentials are never read from here; callers hand them to authenticate().
"""

from pydantic_settings import BaseSettings
from pydantic import field_validator


class Settings(BaseSettings):
    """Library settings loaded from environment."""

    # App metadata (sent in User-Agent / X-Title headers)
    APP_NAME: str = "promptrelay"
    APP_VERSION: str = "0.1.0"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""  # empty disables the file handler

    # HTTP timeouts (seconds)
    CONNECT_TIMEOUT: float = 5.0
    REQUEST_TIMEOUT: float = 30.0
    AUTH_TIMEOUT: float = 60.0

    # Generation defaults
    DEFAULT_MAX_TOKENS: int = 1000
    DEFAULT_TEMPERATURE: float = 0.7

    # Rate limiting (per adapter instance, fixed window)
    RATE_LIMIT_WINDOW_SECONDS: float = 60.0
    DEFAULT_REQUESTS_PER_MINUTE: int = 60
    DEFAULT_TOKENS_PER_MINUTE: int = 10000
    OPENAI_REQUESTS_PER_MINUTE: int = 60
    OPENAI_TOKENS_PER_MINUTE: int = 10000
    ANTHROPIC_REQUESTS_PER_MINUTE: int = 50
    ANTHROPIC_TOKENS_PER_MINUTE: int = 8000
    GEMINI_REQUESTS_PER_MINUTE: int = 60
    GEMINI_TOKENS_PER_MINUTE: int = 12000
    COHERE_REQUESTS_PER_MINUTE: int = 60
    COHERE_TOKENS_PER_MINUTE: int = 10000
    OPENROUTER_REQUESTS_PER_MINUTE: int = 60
    OPENROUTER_TOKENS_PER_MINUTE: int = 10000
    HUGGINGFACE_REQUESTS_PER_MINUTE: int = 60
    HUGGINGFACE_TOKENS_PER_MINUTE: int = 10000
    LOCAL_REQUESTS_PER_MINUTE: int = 60
    LOCAL_TOKENS_PER_MINUTE: int = 10000

    # Registry selection
    DEFAULT_PROVIDER: str = "openai"
    # Comma-separated, tried in order after the primary fails
    FALLBACK_PROVIDERS: str = ""

    # Connection testing
    TEST_PROMPT: str = "Hello, this is a test message."
    TEST_MAX_TOKENS: int = 50
    TEST_SAMPLE_CHARS: int = 100

    @field_validator("FALLBACK_PROVIDERS", mode="before")
    @classmethod
    def parse_fallback_providers(cls, v):
        """Accept FALLBACK_PROVIDERS as a list or comma-separated string."""
        if isinstance(v, (list, tuple)):
            return ",".join(v)
        return v

    def get_fallback_providers(self) -> list[str]:
        """Get fallback provider names as a list."""
        return [name.strip() for name in self.FALLBACK_PROVIDERS.split(",") if name.strip()]

    def get_rate_limits(self, provider_name: str) -> tuple[int, int]:
        """
        Get (requests, tokens) per window for a provider.

        Providers without a dedicated override use the defaults.
        """
        prefix = provider_name.upper()
        requests = getattr(self, f"{prefix}_REQUESTS_PER_MINUTE", self.DEFAULT_REQUESTS_PER_MINUTE)
        tokens = getattr(self, f"{prefix}_TOKENS_PER_MINUTE", self.DEFAULT_TOKENS_PER_MINUTE)
        return requests, tokens

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


# Singleton instance
settings = Settings()
