"""
Cohere provider implementation.

WHAT: Command models through the Cohere chat API
WHY: Cohere has a dedicated key-check endpoint and its own history format
HOW: Bearer auth, POST /check-api-key as the probe, prompt + chat_history body;
     no streaming, generate() always returns whole text
"""

from typing import Any

from ..errors import AuthenticationError, BackendResponseError
from ..provider import BaseProvider, GenerationRequest
from ..schemas import CohereConfig
from ..types import ModelInfo
from ...utils.logger import get_logger

logger = get_logger(__name__)

# Cohere chat_history roles
ROLE_MAP = {"user": "USER", "assistant": "CHATBOT", "system": "SYSTEM"}


class CohereProvider(BaseProvider):
    """Cohere chat provider."""

    name = "cohere"
    display_name = "Cohere"
    description = "Command models from Cohere"
    supported_features = ("text-generation", "chat")

    config_model = CohereConfig
    DEFAULT_BASE_URL = "https://api.cohere.ai/v1"
    DEFAULT_MODEL = "command"
    STATIC_MODELS = (
        ModelInfo(id="command-r-plus", name="Command R+", max_tokens=4096,
                  description="Most capable model for complex tasks"),
        ModelInfo(id="command-r", name="Command R", max_tokens=4096,
                  description="Balanced model for conversation and retrieval"),
        ModelInfo(id="command", name="Command", max_tokens=4096,
                  description="Instruction-following text generation"),
        ModelInfo(id="command-light", name="Command Light", max_tokens=4096,
                  description="Faster, smaller version of Command"),
    )

    KEY_TYPICAL_LENGTH = 30
    EXPECTED_HOSTS = ("api.cohere.ai", "api.cohere.com")

    async def _probe(self) -> None:
        data = await self._request("POST", "/check-api-key", json={})
        if isinstance(data, dict) and data.get("valid") is False:
            raise AuthenticationError(
                f"Authentication failed for {self.display_name}. Please check your credential.",
                provider=self.name,
                display_name=self.display_name,
                raw_message="Invalid API key",
                status_code=401,
                context="authentication",
            )

    async def _fetch_models(self) -> list[ModelInfo]:
        data = await self._request("GET", "/models")
        entries = data.get("models", []) if isinstance(data, dict) else []
        return [
            ModelInfo(id=entry["name"], name=entry["name"], max_tokens=entry.get("context_length"))
            for entry in entries
            if isinstance(entry, dict) and entry.get("name")
            and any(endpoint in ("generate", "chat") for endpoint in entry.get("endpoints", []))
        ]

    def _chat_body(self, request: GenerationRequest) -> dict[str, Any]:
        """The last message is the prompt; everything before it is history."""
        *history, last = request.messages
        payload = {
            "model": request.model,
            "message": last["content"],
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
        }
        if history:
            payload["chat_history"] = [
                {"role": ROLE_MAP.get(m.get("role"), "USER"), "message": m["content"]} for m in history
            ]
        if request.stop:
            payload["stop_sequences"] = request.stop
        return payload

    async def _complete(self, request: GenerationRequest) -> str:
        data = await self._request("POST", "/chat", json=self._chat_body(request))
        if not isinstance(data, dict):
            raise BackendResponseError("Invalid response format", payload=data)
        if data.get("message") and "text" not in data:
            raise BackendResponseError(str(data["message"]), payload=data)
        text = data.get("text")
        if not text:
            raise BackendResponseError("No text in response", payload=data)
        logger.info(f"{self.display_name} generate success (model: {request.model}, chars: {len(text)})")
        return text
