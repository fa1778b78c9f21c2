"""
Local model server provider implementation.

WHAT: Local LLM inference via Ollama, LM Studio or any OpenAI-compatible server
WHY: Enable local-first inference without external API dependencies
HOW: Per-server-type health/generate/models endpoints; Ollama streams NDJSON,
     LM Studio and custom servers speak the OpenAI SSE dialect
"""

import re
from dataclasses import dataclass
from typing import Any, AsyncIterator

from ..errors import BackendResponseError
from ..provider import BaseProvider, GenerationRequest
from ..schemas import LocalConfig, ProviderConfig
from ..streaming import OLLAMA_NDJSON, OPENAI_SSE
from ..types import ModelInfo
from ...utils.logger import get_logger

logger = get_logger(__name__)

FALLBACK_MODEL = "llama2"


@dataclass(frozen=True)
class ServerProfile:
    """Endpoints of one kind of local server."""
    default_base_url: str
    health_path: str
    models_path: str
    generate_path: str


SERVER_PROFILES = {
    "ollama": ServerProfile("http://localhost:11434", "/api/tags", "/api/tags", "/api/generate"),
    "lmstudio": ServerProfile("http://localhost:1234", "/v1/models", "/v1/models", "/v1/chat/completions"),
    "custom": ServerProfile("http://localhost:8080", "/health", "/v1/models", "/v1/chat/completions"),
}


def strip_thinking_blocks(text: str) -> str:
    """
    Remove <think>...</think> blocks that reasoning models emit.

    Args:
        text: Raw text that may contain thinking blocks

    Returns:
        Text with thinking blocks removed
    """
    # Handles both <think> and <thinking> variants
    text = re.sub(r'<think>.*?</think>\s*', '', text, flags=re.DOTALL | re.IGNORECASE)
    text = re.sub(r'<thinking>.*?</thinking>\s*', '', text, flags=re.DOTALL | re.IGNORECASE)

    # Clean up any remaining standalone tags
    text = re.sub(r'</?think(?:ing)?>\s*', '', text, flags=re.IGNORECASE)

    return text.strip()


class LocalProvider(BaseProvider):
    """Local model server provider."""

    name = "local"
    display_name = "Local Model"
    description = "Models served locally by Ollama, LM Studio or a compatible server"
    supported_features = ("text-generation", "chat", "streaming", "custom-endpoints")

    config_model = LocalConfig
    DEFAULT_BASE_URL = SERVER_PROFILES["ollama"].default_base_url
    DEFAULT_MODEL = FALLBACK_MODEL

    def _apply_config(self, config: ProviderConfig) -> None:
        self.server_type = getattr(config, "server_type", "ollama")
        self.profile = SERVER_PROFILES[self.server_type]
        if not config.base_url:
            self.base_url = self.profile.default_base_url

    @property
    def is_ollama(self) -> bool:
        return self.server_type == "ollama"

    # ========== Models ==========

    def _parse_models(self, data: Any) -> list[ModelInfo]:
        if not isinstance(data, dict):
            return []
        if self.is_ollama:
            ids = [entry.get("name") for entry in data.get("models", []) if isinstance(entry, dict)]
        else:
            ids = [entry.get("id") for entry in data.get("data", []) if isinstance(entry, dict)]
        return [ModelInfo(id=model_id, name=model_id, free=True) for model_id in ids if model_id]

    def _adopt_models(self, models: list[ModelInfo]) -> None:
        if not models:
            return
        self.available_models = [m.id for m in models]
        if not self.config.model:
            self.default_model = models[0].id

    async def _probe(self) -> None:
        """Health check; the health endpoint doubles as the model list where it can."""
        data = await self._request("GET", self.profile.health_path)
        if self.profile.health_path == self.profile.models_path:
            self._adopt_models(self._parse_models(data))
        logger.info(f"{self.display_name} ({self.server_type}) reachable at {self.base_url}")

    async def _fetch_models(self) -> list[ModelInfo]:
        models = self._parse_models(await self._request("GET", self.profile.models_path))
        self._adopt_models(models)
        return models

    # ========== Generation ==========

    def _body(self, request: GenerationRequest, stream: bool) -> dict[str, Any]:
        if self.is_ollama:
            options = {"num_predict": request.max_tokens, "temperature": request.temperature}
            if request.stop:
                options["stop"] = request.stop
            return {
                "model": request.model,
                "prompt": "\n".join(m["content"] for m in request.messages),
                "stream": stream,
                "options": options,
            }

        payload = {
            "model": request.model,
            "messages": request.messages,
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
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
            if self.is_ollama:
                raw_text = data["response"]
            else:
                raw_text = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise BackendResponseError(f"Invalid response format: {e}", payload=data) from e
        return strip_thinking_blocks(raw_text or "")

    async def _complete(self, request: GenerationRequest) -> str:
        data = await self._request("POST", self.profile.generate_path, json=self._body(request, stream=False))
        text = self._extract_text(data)
        logger.info(f"{self.display_name} generate success (model: {request.model}, server: {self.server_type})")
        return text

    def _stream_generation(self, request: GenerationRequest) -> AsyncIterator[str]:
        return self._stream(
            "POST",
            self.profile.generate_path,
            envelope=OLLAMA_NDJSON if self.is_ollama else OPENAI_SSE,
            json=self._body(request, stream=True),
            timeout=request.timeout,
        )
