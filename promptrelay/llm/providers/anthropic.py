"""
Anthropic provider implementation.

WHAT: Claude models through the Anthropic Messages API
WHY: Long-context models with their own auth headers and stream grammar
HOW: x-api-key + anthropic-version headers, system prompt lifted out of the
     message list, SSE content_block_delta events until message_stop
"""

from typing import Any, AsyncIterator

from ..errors import BackendResponseError
from ..provider import BaseProvider, GenerationRequest
from ..rate_limiter import RateLimitHeaders
from ..schemas import AnthropicConfig
from ..streaming import ANTHROPIC_SSE
from ..types import ModelInfo
from ...utils.logger import get_logger

logger = get_logger(__name__)

API_VERSION = "2023-06-01"
PROBE_MAX_TOKENS = 10


class AnthropicProvider(BaseProvider):
    """Anthropic Messages API provider."""

    name = "anthropic"
    display_name = "Anthropic"
    description = "Claude models from Anthropic"
    supported_features = ("text-generation", "chat", "streaming", "long-context")

    config_model = AnthropicConfig
    DEFAULT_BASE_URL = "https://api.anthropic.com/v1"
    DEFAULT_MODEL = "claude-3-sonnet-20240229"
    STATIC_MODELS = (
        ModelInfo(id="claude-3-opus-20240229", name="Claude 3 Opus", max_tokens=200000),
        ModelInfo(id="claude-3-sonnet-20240229", name="Claude 3 Sonnet", max_tokens=200000),
        ModelInfo(id="claude-3-haiku-20240307", name="Claude 3 Haiku", max_tokens=200000),
        ModelInfo(id="claude-2.1", name="Claude 2.1", max_tokens=200000),
        ModelInfo(id="claude-2.0", name="Claude 2.0", max_tokens=100000),
        ModelInfo(id="claude-instant-1.2", name="Claude Instant 1.2", max_tokens=100000),
    )

    KEY_PREFIX = "sk-ant-"
    KEY_TYPICAL_LENGTH = 40
    EXPECTED_HOSTS = ("api.anthropic.com",)

    RATE_LIMIT_HEADERS = RateLimitHeaders(
        requests_remaining="anthropic-ratelimit-requests-remaining",
        units_remaining="anthropic-ratelimit-tokens-remaining",
        requests_limit="anthropic-ratelimit-requests-limit",
        units_limit="anthropic-ratelimit-tokens-limit",
        reset="anthropic-ratelimit-requests-reset",
        reset_format="iso8601",
    )

    def build_auth_headers(self) -> dict[str, str]:
        secret = self.config.secret()
        if not secret:
            return {}
        return {
            "x-api-key": secret,
            "anthropic-version": getattr(self.config, "anthropic_version", None) or API_VERSION,
        }

    def _messages_body(self, request: GenerationRequest, stream: bool) -> dict[str, Any]:
        """Anthropic takes the system prompt as a top-level field, not a message."""
        system = "\n\n".join(m["content"] for m in request.messages if m.get("role") == "system")
        payload = {
            "model": request.model,
            "max_tokens": request.max_tokens,
            "messages": [m for m in request.messages if m.get("role") != "system"],
            "temperature": request.temperature,
        }
        if system:
            payload["system"] = system
        if request.stop:
            payload["stop_sequences"] = request.stop
        if stream:
            payload["stream"] = True
        return payload

    async def _probe(self) -> None:
        """Anthropic has no free endpoint; send the smallest possible message."""
        await self._request(
            "POST",
            "/messages",
            json={
                "model": self.config.model or self.default_model,
                "max_tokens": PROBE_MAX_TOKENS,
                "messages": [{"role": "user", "content": "Hi"}],
            },
        )

    def _extract_text(self, data: Any) -> str:
        if isinstance(data, dict) and (data.get("type") == "error" or data.get("error")):
            error = data.get("error") or {}
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise BackendResponseError(message or "Unknown error", payload=data)
        try:
            blocks = data["content"]
        except (KeyError, TypeError) as e:
            raise BackendResponseError(f"Invalid response format: {e}", payload=data) from e
        if not blocks:
            raise BackendResponseError("No content in response", payload=data)
        return "".join(
            block.get("text", "")
            for block in blocks
            if isinstance(block, dict) and block.get("type", "text") == "text"
        )

    async def _complete(self, request: GenerationRequest) -> str:
        data = await self._request("POST", "/messages", json=self._messages_body(request, stream=False))
        text = self._extract_text(data)
        usage = data.get("usage", {})
        logger.info(
            f"{self.display_name} generate success (model: {data.get('model', request.model)}, "
            f"tokens: {usage.get('input_tokens', 0) + usage.get('output_tokens', 0)})"
        )
        return text

    def _stream_generation(self, request: GenerationRequest) -> AsyncIterator[str]:
        return self._stream(
            "POST",
            "/messages",
            envelope=ANTHROPIC_SSE,
            json=self._messages_body(request, stream=True),
            timeout=request.timeout,
        )
