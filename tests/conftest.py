"""
Pytest configuration and shared fixtures.

WHAT: Centralized test configuration with component markers
WHY: Enable test organization, filtering, and shared test utilities
HOW: Define pytest markers, fixtures, and test data constants
"""

import pytest

from promptrelay.core.config import Settings
from tests.fixtures.mock_llm import FakeClock


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (isolated component tests)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (multiple components)"
    )
    config.addinivalue_line(
        "markers", "streaming: Stream decoding tests"
    )
    config.addinivalue_line(
        "markers", "registry: Provider registry tests"
    )


@pytest.fixture
def test_settings() -> Settings:
    """
    Library settings for tests.

    WHAT: Provide consistent configuration
    WHY: Isolate tests from environment variables and .env files
    HOW: Explicit init values win over every other settings source
    """
    return Settings(
        APP_NAME="promptrelay-test",
        APP_VERSION="0.0.1",
        LOG_LEVEL="DEBUG",
        DEFAULT_PROVIDER="openai",
        FALLBACK_PROVIDERS="",
        AUTH_TIMEOUT=5.0,
    )


@pytest.fixture
def fake_clock() -> FakeClock:
    """Manually advanced clock for rate-window tests."""
    return FakeClock()


# Test data constants
OPENAI_KEY = "sk-test1234567890abcdefghijklmnopqrstuvwxyz"
ANTHROPIC_KEY = "sk-ant-REDACTED"
OPENROUTER_KEY = "sk-or-test1234567890abcdefghijklmnopqrstuv"
GEMINI_KEY = "AIzaSyTest1234567890abcdefghijklmnopqr"
COHERE_KEY = "cohere1234567890abcdefghijklmnop"
HF_KEY = "hf_test1234567890abcdefghijklmnop"

MOCK_CHAT_RESPONSE = {
    "choices": [{"message": {"content": "Test response"}}],
    "usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
    "model": "gpt-3.5-turbo",
}

MOCK_STREAMING_BODY = (
    'data: {"choices":[{"delta":{"content":"Hello"}}]}\n\n'
    'data: {"choices":[{"delta":{"content":" "}}]}\n\n'
    'data: {"choices":[{"delta":{"content":"world"}}]}\n\n'
    'data: {"choices":[{"delta":{},"finish_reason":"stop"}]}\n\n'
    'data: [DONE]\n\n'
)

MOCK_MODELS_RESPONSE = {
    "data": [
        {"id": "gpt-4", "object": "model"},
        {"id": "gpt-3.5-turbo", "object": "model"},
        {"id": "text-embedding-3-small", "object": "model"},
    ]
}
