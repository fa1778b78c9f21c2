"""
Hugging Face Inference API provider implementation.

WHAT: Hosted open models through the serverless Inference API
WHY: Free-tier access to community models; the key is optional
HOW: POST /{model} with an inputs/parameters body; text2text models take
     max_length instead of max_new_tokens; cold models answer 503 "loading"
"""

from typing import Any

from ..errors import BackendResponseError, ProviderServerError
from ..provider import BaseProvider, GenerationRequest
from ..schemas import HuggingFaceConfig, ProviderConfig
from ..types import ModelInfo, ValidationResult
from ...utils.logger import get_logger

logger = get_logger(__name__)

# The free Inference API rejects larger generations
MAX_NEW_TOKENS = 1024
PROBE_MODEL = "gpt2"

# Encoder-decoder models that use max_length and never echo the prompt
TEXT2TEXT_MODELS = frozenset({
    "microsoft/GODEL-v1_1-large-seq2seq",
    "google/flan-t5-large",
})


class HuggingFaceProvider(BaseProvider):
    """Hugging Face Inference API provider."""

    name = "huggingface"
    display_name = "Hugging Face"
    description = "Open models through the Hugging Face Inference API"
    supported_features = ("text-generation", "free-tier", "custom-models")

    config_model = HuggingFaceConfig
    DEFAULT_BASE_URL = "https://api-inference.huggingface.co/models"
    DEFAULT_MODEL = PROBE_MODEL
    STATIC_MODELS = (
        ModelInfo(id="microsoft/DialoGPT-large", name="DialoGPT Large", free=True,
                  description="Conversational response generation"),
        ModelInfo(id="gpt2", name="GPT-2", free=True, description="General text generation"),
        ModelInfo(id="facebook/blenderbot-400M-distill", name="BlenderBot 400M", free=True,
                  description="Open-domain chatbot"),
        ModelInfo(id="microsoft/GODEL-v1_1-large-seq2seq", name="GODEL Large", free=True,
                  description="Goal-directed dialog (text2text)"),
        ModelInfo(id="google/flan-t5-large", name="FLAN-T5 Large", free=True,
                  description="Instruction-tuned text2text model"),
        ModelInfo(id="mistralai/Mistral-7B-Instruct-v0.1", name="Mistral 7B Instruct", free=False,
                  description="Instruction-tuned 7B model (requires a Pro account)"),
    )

    KEY_PREFIX = "hf_"
    EXPECTED_HOSTS = ("api-inference.huggingface.co",)

    def _apply_config(self, config: ProviderConfig) -> None:
        custom_model = getattr(config, "custom_model", None)
        if custom_model:
            self.default_model = custom_model
            if custom_model not in self.available_models:
                self.available_models.append(custom_model)

    def _validate_extra(self, config: ProviderConfig) -> ValidationResult:
        result = ValidationResult()
        custom_model = getattr(config, "custom_model", None)
        if custom_model and "/" not in custom_model and custom_model not in self.available_models:
            result.add_warning("Custom model IDs are usually of the form owner/model")
        return result

    def _inputs_body(self, request: GenerationRequest) -> dict[str, Any]:
        # The Inference API takes a single text input
        prompt = "\n".join(m["content"] for m in request.messages)
        max_tokens = min(request.max_tokens, MAX_NEW_TOKENS)
        if request.model in TEXT2TEXT_MODELS:
            parameters = {"max_length": max_tokens, "temperature": request.temperature}
        else:
            parameters = {
                "max_new_tokens": max_tokens,
                "temperature": request.temperature,
                "return_full_text": False,
            }
        if request.stop:
            parameters["stop"] = request.stop
        return {"inputs": prompt, "parameters": parameters, "options": {"wait_for_model": False}}

    async def _call_model(self, model: str, body: dict[str, Any]) -> Any:
        try:
            return await self._request("POST", f"/{model}", json=body)
        except BackendResponseError as e:
            if e.status_code == 503 and "loading" in str(e).lower():
                raise ProviderServerError(
                    f"Model {model} is loading on {self.display_name}. Please try again in a few moments.",
                    provider=self.name,
                    display_name=self.display_name,
                    raw_message=str(e),
                    status_code=503,
                    context="generate",
                ) from e
            raise

    async def _probe(self) -> None:
        await self._call_model(PROBE_MODEL, {"inputs": "Hello", "parameters": {"max_new_tokens": 1}})

    @staticmethod
    def _extract_text(data: Any) -> str:
        if isinstance(data, dict) and data.get("error"):
            raise BackendResponseError(str(data["error"]), payload=data)
        first = data[0] if isinstance(data, list) and data else data
        if not isinstance(first, dict):
            raise BackendResponseError("Invalid response format", payload=data)
        text = first.get("generated_text")
        if text is None:
            raise BackendResponseError("No generated text in response", payload=data)
        return text.strip()

    async def _complete(self, request: GenerationRequest) -> str:
        data = await self._call_model(request.model, self._inputs_body(request))
        text = self._extract_text(data)
        logger.info(f"{self.display_name} generate success (model: {request.model}, chars: {len(text)})")
        return text
