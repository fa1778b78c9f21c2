"""
LLM provider factory.

WHAT: Build a registry pre-loaded with every built-in backend
WHY: Centralize provider selection (default and fallbacks) in one place
HOW: Register each adapter class by name, then apply DEFAULT_PROVIDER and
     FALLBACK_PROVIDERS from config, logging names that are not registered
"""

from functools import partial

from .errors import UnregisteredNameError
from .providers import (
    AnthropicProvider,
    CohereProvider,
    GeminiProvider,
    HuggingFaceProvider,
    LocalProvider,
    OpenAIProvider,
    OpenRouterProvider,
)
from .registry import ProviderRegistry
from ..core.config import Settings, settings as default_settings
from ..utils.logger import get_logger

logger = get_logger(__name__)

# name -> (adapter class, category)
BUILTIN_PROVIDERS = {
    "openai": (OpenAIProvider, "cloud"),
    "anthropic": (AnthropicProvider, "cloud"),
    "gemini": (GeminiProvider, "cloud"),
    "cohere": (CohereProvider, "cloud"),
    "openrouter": (OpenRouterProvider, "aggregator"),
    "huggingface": (HuggingFaceProvider, "open-source"),
    "local": (LocalProvider, "local"),
}


def create_registry(app_settings: Settings | None = None) -> ProviderRegistry:
    """
    Create a registry with all built-in providers registered.

    Args:
        app_settings: Settings to build adapters with (defaults to the module singleton)

    Returns:
        ProviderRegistry with default and fallback chain applied
    """
    app_settings = app_settings or default_settings
    registry = ProviderRegistry()

    for name, (provider_cls, category) in BUILTIN_PROVIDERS.items():
        registry.register(
            name,
            partial(provider_cls, app_settings=app_settings),
            {"category": category, "display_name": provider_cls.display_name},
        )

    try:
        registry.set_default(app_settings.DEFAULT_PROVIDER)
    except UnregisteredNameError:
        logger.warning(f"Unknown DEFAULT_PROVIDER ignored: {app_settings.DEFAULT_PROVIDER}")

    fallbacks = []
    for name in app_settings.get_fallback_providers():
        if registry.has(name):
            fallbacks.append(name)
        else:
            logger.warning(f"Unknown fallback provider ignored: {name}")
    registry.set_fallback_chain(fallbacks)

    logger.info(
        f"Provider registry initialized ({len(BUILTIN_PROVIDERS)} providers, "
        f"default: {registry.default_name}, fallbacks: {fallbacks or 'none'})"
    )
    return registry
