"""
OpenRouter provider implementation.

WHAT: Many vendors' models through the OpenRouter API
WHY: One credential for OpenAI, Anthropic, Google, Meta and Mistral models
HOW: OpenAI-compatible API plus HTTP-Referer / X-Title attribution headers
"""

from typing import Any

from .openai import OpenAIProvider
from ..rate_limiter import RateLimitHeaders
from ..schemas import OpenRouterConfig
from ..types import ModelInfo


class OpenRouterProvider(OpenAIProvider):
    """OpenRouter provider (OpenAI dialect)."""

    name = "openrouter"
    display_name = "OpenRouter"
    description = "Access many models through a single API"
    supported_features = ("text-generation", "chat", "streaming", "multiple-models")

    config_model = OpenRouterConfig
    DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
    DEFAULT_MODEL = "openai/gpt-3.5-turbo"
    STATIC_MODELS = (
        ModelInfo(id="openai/gpt-4", name="GPT-4 (OpenAI)"),
        ModelInfo(id="openai/gpt-4-turbo", name="GPT-4 Turbo (OpenAI)"),
        ModelInfo(id="openai/gpt-3.5-turbo", name="GPT-3.5 Turbo (OpenAI)"),
        ModelInfo(id="anthropic/claude-3-opus", name="Claude 3 Opus (Anthropic)"),
        ModelInfo(id="anthropic/claude-3-sonnet", name="Claude 3 Sonnet (Anthropic)"),
        ModelInfo(id="anthropic/claude-3-haiku", name="Claude 3 Haiku (Anthropic)"),
        ModelInfo(id="google/gemini-pro", name="Gemini Pro (Google)"),
        ModelInfo(id="meta-llama/llama-2-70b-chat", name="Llama 2 70B Chat (Meta)"),
        ModelInfo(id="mistralai/mixtral-8x7b-instruct", name="Mixtral 8x7B Instruct (Mistral)"),
    )

    KEY_PREFIX = "sk-or-"
    KEY_TYPICAL_LENGTH = 40
    EXPECTED_HOSTS = ("openrouter.ai",)

    # Single request counter; reset is an epoch timestamp in milliseconds
    RATE_LIMIT_HEADERS = RateLimitHeaders(
        requests_remaining="x-ratelimit-remaining",
        requests_limit="x-ratelimit-limit",
        reset="x-ratelimit-reset",
        reset_format="epoch",
    )

    def build_auth_headers(self) -> dict[str, str]:
        headers = super().build_auth_headers()
        headers["HTTP-Referer"] = getattr(self.config, "app_url", None) or self.settings.APP_NAME
        headers["X-Title"] = getattr(self.config, "app_name", None) or self.settings.APP_NAME
        return headers

    def _include_model(self, model_id: str) -> bool:
        return True

    def _model_info(self, entry: dict[str, Any]) -> ModelInfo:
        pricing = entry.get("pricing") or {}
        prompt_price = pricing.get("prompt")
        return ModelInfo(
            id=entry["id"],
            name=entry.get("name") or entry["id"],
            description=entry.get("description") or "",
            max_tokens=entry.get("context_length"),
            free=None if prompt_price is None else str(prompt_price) in ("0", "0.0"),
        )
