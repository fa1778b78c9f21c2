"""
OpenAI provider implementation.

WHAT: GPT models through the OpenAI chat completions API
WHY: The reference OpenAI-compatible backend; OpenRouter and local servers
     speak the same dialect
HOW: Bearer auth, GET /models as the credential probe, SSE streaming with a
     [DONE] sentinel, x-ratelimit-* duration headers for reconciliation
"""

from typing import Any, AsyncIterator

from ..errors import BackendResponseError
from ..provider import BaseProvider, GenerationRequest
from ..rate_limiter import RateLimitHeaders
from ..schemas import OpenAIConfig
from ..streaming import OPENAI_SSE
from ..types import ModelInfo
from ...utils.logger import get_logger

logger = get_logger(__name__)


class OpenAIProvider(BaseProvider):
    """OpenAI chat completions provider."""

    name = "openai"
    display_name = "OpenAI"
    description = "GPT models from OpenAI"
    supported_features = ("text-generation", "chat", "streaming", "function-calling")

    config_model = OpenAIConfig
    DEFAULT_BASE_URL = "https://api.openai.com/v1"
    DEFAULT_MODEL = "gpt-3.5-turbo"
    STATIC_MODELS = (
        ModelInfo(id="gpt-4", name="GPT-4", max_tokens=8192),
        ModelInfo(id="gpt-4-turbo", name="GPT-4 Turbo", max_tokens=128000),
        ModelInfo(id="gpt-4-turbo-preview", name="GPT-4 Turbo Preview", max_tokens=128000),
        ModelInfo(id="gpt-3.5-turbo", name="GPT-3.5 Turbo", max_tokens=16385),
        ModelInfo(id="gpt-3.5-turbo-16k", name="GPT-3.5 Turbo 16K", max_tokens=16385),
        ModelInfo(id="gpt-3.5-turbo-instruct", name="GPT-3.5 Turbo Instruct", max_tokens=4096),
    )

    KEY_PREFIX = "sk-"
    KEY_TYPICAL_LENGTH = 40
    EXPECTED_HOSTS = ("api.openai.com",)

    RATE_LIMIT_HEADERS = RateLimitHeaders(
        requests_remaining="x-ratelimit-remaining-requests",
        units_remaining="x-ratelimit-remaining-tokens",
        requests_limit="x-ratelimit-limit-requests",
        units_limit="x-ratelimit-limit-tokens",
        reset="x-ratelimit-reset-requests",
        reset_format="duration",
    )

    def build_auth_headers(self) -> dict[str, str]:
        headers = super().build_auth_headers()
        organization = getattr(self.config, "organization", None)
        if organization:
            headers["OpenAI-Organization"] = organization
        return headers

    # ========== Models ==========

    def _include_model(self, model_id: str) -> bool:
        """The /models listing also returns embedding, audio and image models."""
        return "gpt" in model_id

    def _model_info(self, entry: dict[str, Any]) -> ModelInfo:
        return ModelInfo(id=entry["id"], name=entry["id"])

    def _parse_models(self, data: Any) -> list[ModelInfo]:
        entries = data.get("data", []) if isinstance(data, dict) else []
        return [
            self._model_info(entry)
            for entry in entries
            if isinstance(entry, dict) and entry.get("id") and self._include_model(entry["id"])
        ]

    async def _probe(self) -> None:
        """GET /models proves the key and refreshes the model list in one call."""
        data = await self._request("GET", "/models")
        models = self._parse_models(data)
        if models:
            self.available_models = [m.id for m in models]
        logger.info(f"{self.display_name} probe success ({len(models)} models available)")

    async def _fetch_models(self) -> list[ModelInfo]:
        return self._parse_models(await self._request("GET", "/models"))

    # ========== Generation ==========

    def _chat_body(self, request: GenerationRequest, stream: bool) -> dict[str, Any]:
        payload = {
            "model": request.model,
            "messages": request.messages,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "stream": stream,
        }
        if request.stop:
            payload["stop"] = request.stop
        return payload

    def _extract_text(self, data: Any) -> str:
        if isinstance(data, dict) and data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise BackendResponseError(message or "Unknown error", payload=data)
        try:
            choices = data["choices"]
            if not choices:
                raise BackendResponseError("No choices in response", payload=data)
            content = choices[0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise BackendResponseError(f"Invalid response format: {e}", payload=data) from e
        return content or ""

    async def _complete(self, request: GenerationRequest) -> str:
        data = await self._request("POST", "/chat/completions", json=self._chat_body(request, stream=False))
        text = self._extract_text(data)
        usage = data.get("usage", {}) if isinstance(data, dict) else {}
        logger.info(
            f"{self.display_name} generate success "
            f"(model: {data.get('model', request.model)}, tokens: {usage.get('total_tokens', 'unknown')})"
        )
        return text

    def _stream_generation(self, request: GenerationRequest) -> AsyncIterator[str]:
        return self._stream(
            "POST",
            "/chat/completions",
            envelope=OPENAI_SSE,
            json=self._chat_body(request, stream=True),
            timeout=request.timeout,
        )
