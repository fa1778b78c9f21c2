"""Backend adapters."""

from .openai import OpenAIProvider
from .openrouter import OpenRouterProvider
from .anthropic import AnthropicProvider
from .gemini import GeminiProvider
from .cohere import CohereProvider
from .huggingface import HuggingFaceProvider
from .local import LocalProvider

__all__ = [
    "OpenAIProvider",
    "OpenRouterProvider",
    "AnthropicProvider",
    "GeminiProvider",
    "CohereProvider",
    "HuggingFaceProvider",
    "LocalProvider",
]
