"""
Unit tests for shared adapter behaviour.

WHAT: Test authenticate/generate/stream/list_models/test_connection contracts
WHY: Every backend inherits these mechanics; a regression breaks them all
HOW: Mock HTTP with respx against the OpenAI adapter and the "alpha" test adapter
"""

import asyncio
import logging

import httpx
import pytest
import pytest_asyncio
import respx

from promptrelay.core.config import Settings
from promptrelay.llm.errors import (
    AuthenticationError,
    ConfigurationError,
    ErrorKind,
    InvalidRequestError,
    NotAuthenticatedError,
    ProviderNetworkError,
    ProviderServerError,
    ProviderTimeoutError,
    RateLimitExceededError,
)
from promptrelay.llm.provider import LLMProvider
from promptrelay.llm.providers.openai import OpenAIProvider
from promptrelay.llm.types import GenerateOptions
from tests.conftest import MOCK_CHAT_RESPONSE, MOCK_MODELS_RESPONSE, MOCK_STREAMING_BODY, OPENAI_KEY
from tests.fixtures.mock_llm import ALPHA_BASE_URL, AlphaProvider

BASE = "https://api.openai.com/v1"


class FailingStream(httpx.AsyncByteStream):
    """Body that delivers one chunk, then loses the connection."""

    async def __aiter__(self):
        yield b'data: {"choices":[{"delta":{"content":"Hel"}}]}\n\n'
        raise httpx.ReadError("connection lost")


@pytest.fixture
def provider(test_settings):
    """OpenAI adapter built with test settings."""
    return OpenAIProvider({"api_key": OPENAI_KEY}, app_settings=test_settings)


@pytest_asyncio.fixture
async def authed(provider):
    """OpenAI adapter that has passed authenticate()."""
    with respx.mock:
        respx.get(f"{BASE}/models").mock(return_value=httpx.Response(200, json=MOCK_MODELS_RESPONSE))
        await provider.authenticate()
    yield provider
    await provider.aclose()


@pytest.mark.unit
class TestAuthenticate:
    """Test credential probing."""

    def test_satisfies_protocol(self, provider):
        assert isinstance(provider, LLMProvider)

    @pytest.mark.asyncio
    @respx.mock
    async def test_success_refreshes_models(self, provider):
        route = respx.get(f"{BASE}/models").mock(return_value=httpx.Response(200, json=MOCK_MODELS_RESPONSE))

        assert await provider.authenticate() is True
        assert provider.is_authenticated is True
        assert provider.available_models == ["gpt-4", "gpt-3.5-turbo"]
        assert route.calls.last.request.headers["Authorization"] == f"Bearer {OPENAI_KEY}"
        assert "promptrelay-test/0.0.1" in route.calls.last.request.headers["User-Agent"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_organization_header(self, test_settings):
        provider = OpenAIProvider(app_settings=test_settings)
        route = respx.get(f"{BASE}/models").mock(return_value=httpx.Response(200, json=MOCK_MODELS_RESPONSE))

        await provider.authenticate({"api_key": OPENAI_KEY, "organization": "org-123"})
        assert route.calls.last.request.headers["OpenAI-Organization"] == "org-123"

    @pytest.mark.asyncio
    @respx.mock
    async def test_rejected_credential(self, provider):
        respx.get(f"{BASE}/models").mock(
            return_value=httpx.Response(401, json={"error": {"message": "Incorrect API key provided"}})
        )

        with pytest.raises(AuthenticationError) as exc_info:
            await provider.authenticate()

        assert str(exc_info.value) == "Authentication failed for OpenAI. Please check your credential."
        assert exc_info.value.raw_message == "Incorrect API key provided"
        assert provider.is_authenticated is False
        assert provider.last_error.kind is ErrorKind.INVALID_CREDENTIAL
        assert provider.last_error.context == "authentication"

    @pytest.mark.asyncio
    @respx.mock
    async def test_unreachable(self, provider):
        respx.get(f"{BASE}/models").mock(side_effect=httpx.ConnectError("Connection refused"))

        with pytest.raises(ProviderNetworkError):
            await provider.authenticate()
        assert provider.is_authenticated is False

    @pytest.mark.asyncio
    @respx.mock
    async def test_probe_timeout(self, provider):
        respx.get(f"{BASE}/models").mock(side_effect=httpx.ReadTimeout("timed out"))

        with pytest.raises(ProviderTimeoutError):
            await provider.authenticate()

    @pytest.mark.asyncio
    @respx.mock(assert_all_called=False)
    async def test_invalid_shape_makes_no_request(self, provider):
        route = respx.get(f"{BASE}/models")

        with pytest.raises(ConfigurationError) as exc_info:
            await provider.authenticate({"api_key": "sk has spaces in it"})

        assert "API key should not contain spaces" in exc_info.value.errors
        assert route.call_count == 0

    @pytest.mark.asyncio
    @respx.mock
    async def test_key_never_logged(self, provider, caplog):
        respx.get(f"{BASE}/models").mock(return_value=httpx.Response(200, json=MOCK_MODELS_RESPONSE))

        with caplog.at_level(logging.DEBUG, logger="promptrelay"):
            await provider.authenticate()

        assert OPENAI_KEY not in caplog.text
        assert OPENAI_KEY[-4:] in caplog.text

    def test_bad_types_at_construction(self, test_settings):
        with pytest.raises(ConfigurationError):
            OpenAIProvider({"api_key": OPENAI_KEY, "max_tokens": "many"}, app_settings=test_settings)


@pytest.mark.unit
class TestGenerate:
    """Test whole-response and streamed generation."""

    @pytest.mark.asyncio
    async def test_requires_authentication(self, provider):
        with pytest.raises(NotAuthenticatedError):
            await provider.generate("Hello")

    @pytest.mark.asyncio
    @respx.mock
    async def test_success(self, authed):
        route = respx.post(f"{BASE}/chat/completions").mock(
            return_value=httpx.Response(200, json=MOCK_CHAT_RESPONSE)
        )

        text = await authed.generate("Hello", GenerateOptions(max_tokens=20), temperature=0.0)

        assert text == "Test response"
        body = route.calls.last.request.read()
        assert b'"max_tokens":20' in body.replace(b" ", b"")
        assert b'"temperature":0.0' in body.replace(b" ", b"")
        assert b'"stream":false' in body.replace(b" ", b"")

    @pytest.mark.asyncio
    @respx.mock
    async def test_messages_override_prompt(self, authed):
        route = respx.post(f"{BASE}/chat/completions").mock(
            return_value=httpx.Response(200, json=MOCK_CHAT_RESPONSE)
        )

        await authed.generate("ignored", messages=[
            {"role": "system", "content": "Be brief"},
            {"role": "user", "content": "Hi"},
        ])
        body = route.calls.last.request.read().decode()
        assert "Be brief" in body
        assert "ignored" not in body

    @pytest.mark.asyncio
    @respx.mock
    async def test_rate_limit_headers_reconciled(self, authed):
        respx.post(f"{BASE}/chat/completions").mock(return_value=httpx.Response(
            200,
            json=MOCK_CHAT_RESPONSE,
            headers={
                "x-ratelimit-limit-requests": "100",
                "x-ratelimit-remaining-requests": "7",
                "x-ratelimit-reset-requests": "30s",
            },
        ))

        await authed.generate("Hello")
        status = authed.rate_limit_status()
        assert status.requests_remaining == 7
        assert status.seconds_until_reset == pytest.approx(30, abs=1)

    @pytest.mark.asyncio
    @respx.mock
    @pytest.mark.parametrize("status,error_cls", [
        (400, InvalidRequestError),
        (429, RateLimitExceededError),
        (500, ProviderServerError),
    ])
    async def test_http_errors_are_classified(self, authed, status, error_cls):
        respx.post(f"{BASE}/chat/completions").mock(
            return_value=httpx.Response(status, json={"error": {"message": "nope"}})
        )

        with pytest.raises(error_cls):
            await authed.generate("Hello")
        assert authed.last_error.status_code == status
        assert authed.last_error.context == "generate"

    @pytest.mark.asyncio
    @respx.mock
    async def test_empty_choices_is_server_error(self, authed):
        respx.post(f"{BASE}/chat/completions").mock(return_value=httpx.Response(200, json={"choices": []}))

        with pytest.raises(ProviderServerError):
            await authed.generate("Hello")

    @pytest.mark.asyncio
    @respx.mock
    async def test_non_json_body_is_server_error(self, authed):
        respx.post(f"{BASE}/chat/completions").mock(return_value=httpx.Response(200, text="<html>"))

        with pytest.raises(ProviderServerError):
            await authed.generate("Hello")

    @pytest.mark.asyncio
    async def test_caller_deadline(self, authed):
        async def slow_complete(request):
            await asyncio.sleep(5)
            return "too late"

        authed._complete = slow_complete

        with pytest.raises(ProviderTimeoutError):
            await authed.generate("Hello", timeout=0.05)
        assert authed.last_error.kind is ErrorKind.TIMEOUT

    @pytest.mark.asyncio
    @respx.mock
    async def test_stream(self, authed):
        route = respx.post(f"{BASE}/chat/completions").mock(
            return_value=httpx.Response(200, content=MOCK_STREAMING_BODY.encode())
        )

        stream = await authed.generate("Hello", stream=True)
        assert route.call_count == 0  # lazy until the first pull

        fragments = [fragment async for fragment in stream]
        assert fragments == ["Hello", " ", "world"]
        assert b'"stream":true' in route.calls.last.request.read().replace(b" ", b"")

    @pytest.mark.asyncio
    @respx.mock
    async def test_stream_http_error(self, authed):
        respx.post(f"{BASE}/chat/completions").mock(
            return_value=httpx.Response(429, json={"error": {"message": "Rate limit reached"}})
        )

        stream = await authed.generate("Hello", stream=True)
        with pytest.raises(RateLimitExceededError):
            async for _ in stream:
                pass
        assert authed.last_error.context == "stream"

    @pytest.mark.asyncio
    @respx.mock
    async def test_stream_mid_sequence_failure(self, authed):
        respx.post(f"{BASE}/chat/completions").mock(
            side_effect=lambda request: httpx.Response(200, stream=FailingStream())
        )

        fragments = []
        stream = await authed.generate("Hello", stream=True)
        with pytest.raises(ProviderNetworkError):
            async for fragment in stream:
                fragments.append(fragment)
        assert fragments == ["Hel"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_stream_abandoned_early(self, authed):
        respx.post(f"{BASE}/chat/completions").mock(
            return_value=httpx.Response(200, content=MOCK_STREAMING_BODY.encode())
        )

        stream = await authed.generate("Hello", stream=True)
        first = await stream.__anext__()
        await stream.aclose()
        assert first == "Hello"


@pytest.mark.unit
class TestLocalRateLimit:
    """End-to-end: adapter "alpha" with a ceiling of two requests per window."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_ceiling_then_window_reset(self, fake_clock):
        app_settings = Settings(DEFAULT_REQUESTS_PER_MINUTE=2, DEFAULT_TOKENS_PER_MINUTE=100_000)
        alpha = AlphaProvider({"api_key": "alpha-key-123456"}, app_settings=app_settings, clock=fake_clock)
        respx.get(f"{ALPHA_BASE_URL}/health").mock(return_value=httpx.Response(200, json={"ok": True}))
        route = respx.post(f"{ALPHA_BASE_URL}/generate").mock(
            return_value=httpx.Response(200, json={"text": "pong"})
        )
        await alpha.authenticate()

        assert await alpha.generate("ping", max_tokens=10) == "pong"
        assert await alpha.generate("ping", max_tokens=10) == "pong"

        with pytest.raises(RateLimitExceededError) as exc_info:
            await alpha.generate("ping", max_tokens=10)
        assert exc_info.value.kind is ErrorKind.RATE_LIMIT_EXCEEDED
        assert route.call_count == 2
        assert alpha.last_error.context == "rate_limit"

        fake_clock.advance(61)
        assert await alpha.generate("ping", max_tokens=10) == "pong"
        assert route.call_count == 3
        assert alpha.rate_limit_status().requests_remaining == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_estimate_above_unit_ceiling_fits_fresh_window(self, fake_clock):
        app_settings = Settings(DEFAULT_REQUESTS_PER_MINUTE=10, DEFAULT_TOKENS_PER_MINUTE=100)
        alpha = AlphaProvider({"api_key": "alpha-key-123456"}, app_settings=app_settings, clock=fake_clock)
        respx.get(f"{ALPHA_BASE_URL}/health").mock(return_value=httpx.Response(200, json={"ok": True}))
        route = respx.post(f"{ALPHA_BASE_URL}/generate").mock(
            return_value=httpx.Response(200, json={"text": "pong"})
        )
        await alpha.authenticate()

        assert await alpha.generate("a long prompt", max_tokens=100) == "pong"
        assert alpha.rate_limit_status().units_remaining == 0

        with pytest.raises(RateLimitExceededError):
            await alpha.generate("a long prompt", max_tokens=100)

        fake_clock.advance(61)
        assert await alpha.generate("a long prompt", max_tokens=100) == "pong"
        assert route.call_count == 2


@pytest.mark.unit
class TestModelsAndDiagnostics:
    """Test list_models, test_connection and metadata."""

    @pytest.mark.asyncio
    async def test_static_models_when_unauthenticated(self, provider):
        models = await provider.list_models()
        assert [m.id for m in models] == [m.id for m in OpenAIProvider.STATIC_MODELS]

    @pytest.mark.asyncio
    @respx.mock
    async def test_live_models(self, authed):
        respx.get(f"{BASE}/models").mock(return_value=httpx.Response(200, json={"data": [{"id": "gpt-4o"}]}))
        models = await authed.list_models()
        assert [m.id for m in models] == ["gpt-4o"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_live_models_failure_falls_back(self, authed):
        respx.get(f"{BASE}/models").mock(return_value=httpx.Response(500))
        models = await authed.list_models()
        assert len(models) == len(OpenAIProvider.STATIC_MODELS)

    @pytest.mark.asyncio
    @respx.mock
    async def test_connection_success(self, provider):
        respx.get(f"{BASE}/models").mock(return_value=httpx.Response(200, json=MOCK_MODELS_RESPONSE))
        long_reply = {"choices": [{"message": {"content": "x" * 150}}]}
        route = respx.post(f"{BASE}/chat/completions").mock(return_value=httpx.Response(200, json=long_reply))

        result = await provider.test_connection({"api_key": OPENAI_KEY})

        assert result.success is True
        assert result.sample == "x" * 100 + "..."
        assert result.response_time_ms is not None
        body = route.calls.last.request.read().replace(b" ", b"")
        assert b'"max_tokens":50' in body
        assert b'"temperature":0.1' in body

    @pytest.mark.asyncio
    async def test_connection_invalid_config(self, provider):
        result = await provider.test_connection({})
        assert result.success is False
        assert result.error == "Invalid configuration"
        assert result.details == ["API Key is required"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_connection_never_raises(self, provider):
        respx.get(f"{BASE}/models").mock(side_effect=httpx.ConnectError("refused"))

        result = await provider.test_connection({"api_key": OPENAI_KEY})
        assert result.success is False
        assert result.error_kind == "network_error"

    @pytest.mark.asyncio
    async def test_metadata(self, authed):
        metadata = authed.get_metadata()
        assert metadata.name == "openai"
        assert metadata.is_authenticated is True
        assert authed.supports_feature("streaming")
        assert not authed.supports_feature("long-context")
        assert metadata.rate_limit.requests_remaining == 60
