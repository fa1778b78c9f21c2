"""
Google Gemini provider implementation.

WHAT: Gemini models through the Generative Language API
WHY: Google's models use a different request shape (contents/parts), key-in-URL
     auth and safety blocking that must surface as errors, not empty text
HOW: ?key= query auth (redacted before logging), generateContent for whole
     responses, streamGenerateContent?alt=sse for streams
"""

from typing import Any, AsyncIterator, Mapping
from urllib.parse import urlencode

from ..errors import BackendResponseError
from ..provider import BaseProvider, GenerationRequest
from ..schemas import GeminiConfig
from ..streaming import GEMINI_SSE
from ..types import ModelInfo
from ...utils.logger import get_logger, sanitize_url

logger = get_logger(__name__)

SAFETY_CATEGORIES = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)
SAFETY_THRESHOLD = "BLOCK_MEDIUM_AND_ABOVE"


class GeminiProvider(BaseProvider):
    """Google Gemini provider."""

    name = "gemini"
    display_name = "Google Gemini"
    description = "Gemini models from Google AI"
    supported_features = ("text-generation", "chat", "streaming", "safety-settings")

    config_model = GeminiConfig
    DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
    DEFAULT_MODEL = "gemini-pro"
    STATIC_MODELS = (
        ModelInfo(
            id="gemini-1.5-pro", name="Gemini 1.5 Pro", max_tokens=8192,
            description="Most capable model for complex reasoning tasks",
        ),
        ModelInfo(
            id="gemini-1.5-flash", name="Gemini 1.5 Flash", max_tokens=8192,
            description="Fast and versatile model for everyday tasks",
        ),
        ModelInfo(
            id="gemini-pro", name="Gemini Pro", max_tokens=2048,
            description="Balanced model for text generation",
        ),
    )

    KEY_PREFIX = "AIza"
    KEY_TYPICAL_LENGTH = 39
    EXPECTED_HOSTS = ("generativelanguage.googleapis.com",)

    def build_auth_headers(self) -> dict[str, str]:
        # Gemini authenticates through the key query parameter
        return {}

    def _params(self, extra: Mapping[str, str] | None = None) -> dict[str, str]:
        params = dict(extra or {})
        secret = self.config.secret()
        if secret:
            params["key"] = secret
        return params

    def _log_call(self, method: str, path: str, params: Mapping[str, str]) -> None:
        logger.debug(f"{self.display_name} {method} {sanitize_url(self._url(path) + '?' + urlencode(params))}")

    @staticmethod
    def _model_path(model: str) -> str:
        return model if model.startswith("models/") else f"models/{model}"

    # ========== Models ==========

    def _parse_models(self, data: Any) -> list[ModelInfo]:
        entries = data.get("models", []) if isinstance(data, dict) else []
        models = []
        for entry in entries:
            if not isinstance(entry, dict) or not entry.get("name"):
                continue
            if "generateContent" not in entry.get("supportedGenerationMethods", []):
                continue
            model_id = entry["name"].removeprefix("models/")
            models.append(ModelInfo(
                id=model_id,
                name=entry.get("displayName") or model_id,
                description=entry.get("description") or "",
                max_tokens=entry.get("outputTokenLimit"),
            ))
        return models

    async def _probe(self) -> None:
        params = self._params()
        self._log_call("GET", "/models", params)
        data = await self._request("GET", "/models", params=params)
        models = self._parse_models(data)
        if models:
            self.available_models = [m.id for m in models]

    async def _fetch_models(self) -> list[ModelInfo]:
        return self._parse_models(await self._request("GET", "/models", params=self._params()))

    # ========== Generation ==========

    def _content_body(self, request: GenerationRequest) -> dict[str, Any]:
        """Gemini roles are user/model; system text goes to systemInstruction."""
        system = "\n\n".join(m["content"] for m in request.messages if m.get("role") == "system")
        contents = [
            {
                "role": "model" if m.get("role") == "assistant" else "user",
                "parts": [{"text": m["content"]}],
            }
            for m in request.messages
            if m.get("role") != "system"
        ]
        generation_config = {
            "maxOutputTokens": request.max_tokens,
            "temperature": request.temperature,
            "topP": 0.8,
            "topK": 40,
        }
        if request.stop:
            generation_config["stopSequences"] = request.stop

        payload = {
            "contents": contents,
            "generationConfig": generation_config,
            "safetySettings": [
                {"category": category, "threshold": SAFETY_THRESHOLD} for category in SAFETY_CATEGORIES
            ],
        }
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}
        return payload

    def _extract_text(self, data: Any) -> str:
        if not isinstance(data, dict):
            raise BackendResponseError("Invalid response format", payload=data)
        if data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise BackendResponseError(message or "Unknown error", payload=data)

        block_reason = (data.get("promptFeedback") or {}).get("blockReason")
        if block_reason:
            raise BackendResponseError(f"Content blocked: {block_reason}", payload=data)

        candidates = data.get("candidates")
        if not candidates:
            raise BackendResponseError("No response candidates returned", payload=data)
        candidate = candidates[0]
        if candidate.get("finishReason") == "SAFETY":
            raise BackendResponseError("Response blocked due to safety concerns", payload=data)

        parts = (candidate.get("content") or {}).get("parts") or []
        return "".join(part.get("text", "") for part in parts if isinstance(part, dict))

    async def _complete(self, request: GenerationRequest) -> str:
        path = f"/{self._model_path(request.model)}:generateContent"
        params = self._params()
        self._log_call("POST", path, params)
        data = await self._request("POST", path, json=self._content_body(request), params=params)
        text = self._extract_text(data)
        logger.info(f"{self.display_name} generate success (model: {request.model}, chars: {len(text)})")
        return text

    def _stream_generation(self, request: GenerationRequest) -> AsyncIterator[str]:
        path = f"/{self._model_path(request.model)}:streamGenerateContent"
        params = self._params({"alt": "sse"})
        self._log_call("POST", path, params)
        return self._stream(
            "POST",
            path,
            envelope=GEMINI_SSE,
            json=self._content_body(request),
            params=params,
            timeout=request.timeout,
        )
