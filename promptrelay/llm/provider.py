"""
LLM provider protocol and shared adapter mechanics.

WHAT: The capability set every backend adapter implements, plus the base class
      that carries authentication state, rate limiting, error funnelling,
      HTTP plumbing and connection testing
WHY: Decouple callers from specific backends; new backends only describe
     their auth, request shape, response shape and stream grammar
HOW: typing.Protocol for the contract; BaseProvider subclasses fill in the
     _probe/_complete/_stream_generation/_fetch_models hooks
"""

import asyncio
import time
from dataclasses import dataclass, replace
from typing import (
    Any, AsyncIterator, Callable, ClassVar, Mapping, Protocol, runtime_checkable,
)

import httpx

from .errors import (
    BackendResponseError,
    ConfigurationError,
    ErrorKind,
    ErrorRecord,
    NotAuthenticatedError,
    ProviderError,
    build_error,
    classify_exception,
)
from .rate_limiter import RateLimiter, RateLimitHeaders, estimate_units
from .schemas import (
    ProviderConfig,
    check_required,
    describe_config,
    parse_config,
    validate_api_key,
    validate_endpoint,
    validate_model,
)
from .streaming import StreamEnvelope, decode_stream
from .types import (
    ChatMessage,
    ConfigField,
    ConnectionTestResult,
    GenerateOptions,
    GenerateResult,
    ModelInfo,
    ProviderMetadata,
    RateLimitStatus,
    ValidationResult,
)
from ..core.config import Settings, settings as default_settings
from ..utils.logger import get_logger, mask_secret

logger = get_logger(__name__)

ConfigInput = Mapping[str, Any] | ProviderConfig


@runtime_checkable
class LLMProvider(Protocol):
    """Protocol defining the interface all backend adapters implement."""

    name: str
    display_name: str
    description: str
    supported_features: tuple[str, ...]
    is_authenticated: bool
    last_error: ErrorRecord | None
    default_model: str

    async def authenticate(self, credential: ConfigInput | None = None) -> bool:
        """Validate, probe the backend once, and remember the credential."""
        ...

    def validate_config(self, config: ConfigInput) -> ValidationResult:
        """Pure configuration check (no I/O)."""
        ...

    async def generate(
        self,
        prompt: str,
        options: GenerateOptions | None = None,
        **overrides: Any,
    ) -> GenerateResult:
        """Generate whole text, or a lazy fragment sequence when streaming."""
        ...

    async def list_models(self) -> list[ModelInfo]:
        """Model descriptors; never raises."""
        ...

    def get_config_schema(self) -> list[ConfigField]:
        """Fields a configuration UI needs."""
        ...

    async def test_connection(self, config: ConfigInput | None = None) -> ConnectionTestResult:
        """validate -> authenticate -> minimal generation; never raises."""
        ...


@dataclass
class GenerationRequest:
    """Resolved generation parameters handed to backend hooks."""
    prompt: str
    messages: list[ChatMessage]
    model: str
    max_tokens: int
    temperature: float
    stop: list[str] | None = None
    timeout: float | None = None


class BaseProvider:
    """Shared behaviour for backend adapters."""

    name: ClassVar[str] = "base"
    display_name: ClassVar[str] = "Base Provider"
    description: ClassVar[str] = ""
    supported_features: ClassVar[tuple[str, ...]] = ("text-generation",)

    config_model: ClassVar[type[ProviderConfig]] = ProviderConfig
    DEFAULT_BASE_URL: ClassVar[str] = ""
    DEFAULT_MODEL: ClassVar[str] = "default"
    STATIC_MODELS: ClassVar[tuple[ModelInfo, ...]] = ()

    # Credential / endpoint heuristics for validate_config()
    KEY_PREFIX: ClassVar[str | None] = None
    KEY_TYPICAL_LENGTH: ClassVar[int | None] = None
    EXPECTED_HOSTS: ClassVar[tuple[str, ...]] = ()

    # None when the backend reports no quota headers
    RATE_LIMIT_HEADERS: ClassVar[RateLimitHeaders | None] = None

    def __init__(
        self,
        config: ConfigInput | None = None,
        *,
        app_settings: Settings | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Build an unauthenticated adapter.

        Args:
            config: Backend configuration (mapping or config model)
            app_settings: Library settings (defaults to the module singleton)
            clock: Time source for the rate window (epoch seconds)

        Raises:
            ConfigurationError: config has the wrong types for this backend
        """
        self.settings = app_settings or default_settings

        parsed, result = parse_config(config or {}, self.config_model)
        if parsed is None:
            raise ConfigurationError(
                f"Invalid {self.display_name} configuration: {'; '.join(result.errors)}",
                result.errors,
            )
        self.config: ProviderConfig = parsed
        self.base_url = (parsed.base_url or self.DEFAULT_BASE_URL).rstrip("/")
        self.default_model = self.DEFAULT_MODEL
        self.available_models: list[str] = [m.id for m in self.STATIC_MODELS]
        self.is_authenticated = False
        self.last_error: ErrorRecord | None = None

        requests_per_minute, tokens_per_minute = self.settings.get_rate_limits(self.name)
        self.rate_limiter = RateLimiter(
            requests_per_minute,
            tokens_per_minute,
            window_seconds=self.settings.RATE_LIMIT_WINDOW_SECONDS,
            clock=clock,
        )

        # Create async client with connection pooling
        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.settings.REQUEST_TIMEOUT, connect=self.settings.CONNECT_TIMEOUT),
            limits=httpx.Limits(max_keepalive_connections=10, max_connections=20),
        )
        self._apply_config(parsed)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r} authenticated={self.is_authenticated}>"

    # ========== Hooks for concrete adapters ==========

    def _apply_config(self, config: ProviderConfig) -> None:
        """Pick up backend-specific fields (org id, API version, ...)."""
        pass

    async def _probe(self) -> None:
        """One lightweight call proving the credential works."""
        raise NotImplementedError

    async def _complete(self, request: GenerationRequest) -> str:
        """Whole-response generation."""
        raise NotImplementedError

    def _stream_generation(self, request: GenerationRequest) -> AsyncIterator[str]:
        """Streamed generation; only called when "streaming" is supported."""
        raise NotImplementedError

    async def _fetch_models(self) -> list[ModelInfo]:
        """Live model listing; defaults to the static list."""
        return list(self.STATIC_MODELS)

    def _validate_extra(self, config: ProviderConfig) -> ValidationResult:
        """Backend-specific validation beyond key/endpoint/model."""
        return ValidationResult()

    def build_auth_headers(self) -> dict[str, str]:
        """Authentication headers built from the stored credential."""
        secret = self.config.secret()
        return {"Authorization": f"Bearer {secret}"} if secret else {}

    # ========== Capability set ==========

    def supports_feature(self, feature: str) -> bool:
        return feature in self.supported_features

    def validate_config(self, config: ConfigInput) -> ValidationResult:
        """
        Check a configuration without any I/O.

        Errors make the config unusable; warnings (unknown model, unusual key
        prefix, plain-HTTP endpoint) do not.
        """
        if isinstance(config, ProviderConfig):
            raw = config.model_dump()
        else:
            raw = dict(config or {})
        result = check_required(raw, self.config_model)

        parsed, parse_result = parse_config(config, self.config_model)
        result.merge(parse_result)
        if parsed is None:
            return result

        key = parsed.secret()
        if key:
            result.merge(validate_api_key(
                key,
                provider=self.display_name,
                prefix=self.KEY_PREFIX,
                typical_length=self.KEY_TYPICAL_LENGTH,
            ))
        if parsed.base_url:
            result.merge(validate_endpoint(
                parsed.base_url, provider=self.display_name, expected_hosts=self.EXPECTED_HOSTS,
            ))
        if parsed.model:
            result.merge(validate_model(
                parsed.model, provider=self.display_name, known_models=self.available_models,
            ))
        return result.merge(self._validate_extra(parsed))

    async def authenticate(self, credential: ConfigInput | None = None) -> bool:
        """
        Store the credential and prove it with one probe call.

        Args:
            credential: Configuration carrying the credential; defaults to the
                configuration the adapter was built with

        Returns:
            True on success

        Raises:
            ConfigurationError: Credential shape is invalid (no I/O happened)
            AuthenticationError: Backend rejected the credential
            ProviderNetworkError / ProviderTimeoutError: Probe could not complete
        """
        source = credential if credential is not None else self.config
        validation = self.validate_config(source)
        if not validation.is_valid:
            raise ConfigurationError(
                f"Invalid {self.display_name} configuration: {'; '.join(validation.errors)}",
                validation.errors,
            )

        parsed, _ = parse_config(source, self.config_model)
        self.config = parsed
        self.base_url = (parsed.base_url or self.DEFAULT_BASE_URL).rstrip("/")
        self._apply_config(parsed)
        self.is_authenticated = False

        try:
            await asyncio.wait_for(self._probe(), timeout=self.settings.AUTH_TIMEOUT)
        except Exception as exc:
            raise self.handle_error(exc, "authentication") from exc

        self.is_authenticated = True
        logger.info(f"{self.display_name} authenticated (key: {mask_secret(parsed.secret())})")
        return True

    async def generate(
        self,
        prompt: str,
        options: GenerateOptions | None = None,
        **overrides: Any,
    ) -> GenerateResult:
        """
        Generate a completion.

        Args:
            prompt: Prompt text (ignored by backends when options.messages is set)
            options: Generation options; keyword overrides are applied on top

        Returns:
            Whole text, or an async iterator of fragments when stream=True and
            the backend streams

        Raises:
            NotAuthenticatedError: authenticate() has not succeeded
            RateLimitExceededError: Local window exhausted (no request sent)
            ProviderError: Any classified backend or transport failure
        """
        opts = options or GenerateOptions()
        if overrides:
            opts = replace(opts, **overrides)

        if not self.is_authenticated:
            raise NotAuthenticatedError(
                f"{self.display_name} is not authenticated; call authenticate() first"
            )

        request = self._resolve_request(prompt, opts)
        text_for_estimate = "".join(m.get("content", "") for m in request.messages)
        # Capped at the window ceiling so a large max_tokens still fits a fresh window
        units = min(
            estimate_units(text_for_estimate, request.max_tokens),
            self.rate_limiter.state.units_per_window,
        )
        if not self.rate_limiter.try_acquire(units):
            raise self._rate_limited()

        logger.debug(f"{self.display_name} generate (model: {request.model}, stream: {opts.stream})")

        if opts.stream and self.supports_feature("streaming"):
            return self._stream_generation(request)

        try:
            if request.timeout:
                return await asyncio.wait_for(self._complete(request), timeout=request.timeout)
            return await self._complete(request)
        except Exception as exc:
            raise self.handle_error(exc, "generate") from exc

    async def list_models(self) -> list[ModelInfo]:
        """Live model list when authenticated, static list otherwise or on failure."""
        if not self.is_authenticated:
            return list(self.STATIC_MODELS)
        try:
            models = await self._fetch_models()
        except Exception as exc:
            logger.warning(f"{self.display_name} model refresh failed, using static list: {exc}")
            return list(self.STATIC_MODELS)
        if not models:
            return list(self.STATIC_MODELS)
        self.available_models = [m.id for m in models]
        return models

    def get_config_schema(self) -> list[ConfigField]:
        return describe_config(
            self.config_model,
            defaults={"base_url": self.DEFAULT_BASE_URL or None, "model": self.default_model},
            model_options=self.available_models,
        )

    async def test_connection(self, config: ConfigInput | None = None) -> ConnectionTestResult:
        """
        Probe end to end: validate, authenticate, one tiny generation.

        Never raises; every failure is reported in the result.
        """
        source = config if config is not None else self.config
        started = time.perf_counter()

        validation = self.validate_config(source)
        if not validation.is_valid:
            return ConnectionTestResult(
                success=False,
                provider=self.name,
                error="Invalid configuration",
                details=validation.errors,
            )

        try:
            await self.authenticate(source)
            text = await self.generate(
                self.settings.TEST_PROMPT,
                GenerateOptions(
                    model=self.config.model or self.default_model,
                    max_tokens=self.settings.TEST_MAX_TOKENS,
                    temperature=0.1,
                ),
            )
        except Exception as exc:
            kind = getattr(exc, "kind", None)
            return ConnectionTestResult(
                success=False,
                provider=self.name,
                error=str(exc),
                error_kind=kind.value if isinstance(kind, ErrorKind) else None,
                details=list(getattr(exc, "errors", []) or []),
                response_time_ms=(time.perf_counter() - started) * 1000,
            )

        limit = self.settings.TEST_SAMPLE_CHARS
        sample = text[:limit] + ("..." if len(text) > limit else "")
        return ConnectionTestResult(
            success=True,
            provider=self.name,
            sample=sample,
            response_time_ms=(time.perf_counter() - started) * 1000,
        )

    # ========== Diagnostics ==========

    def rate_limit_status(self) -> RateLimitStatus:
        return self.rate_limiter.status()

    def get_metadata(self) -> ProviderMetadata:
        return ProviderMetadata(
            name=self.name,
            display_name=self.display_name,
            description=self.description,
            supported_features=list(self.supported_features),
            is_authenticated=self.is_authenticated,
            default_model=self.default_model,
            last_error=self.last_error,
            rate_limit=self.rate_limit_status(),
        )

    # ========== Error funnel ==========

    def handle_error(
        self,
        exc: BaseException,
        context: str = "unknown",
        metadata: Mapping[str, Any] | None = None,
    ) -> ProviderError:
        """Classify a raw failure, remember it as last_error, return the error to raise."""
        kind, status_code, raw_message = classify_exception(exc)
        error = build_error(
            kind,
            provider=self.name,
            display_name=self.display_name,
            raw_message=raw_message,
            context=context,
            status_code=status_code,
            metadata=metadata,
        )
        if isinstance(exc, ProviderError):
            # Adapter already rendered a specific message (e.g. model loading)
            error.message = exc.message
            error.args = (exc.message,)
        self.last_error = error.record
        if context == "authentication":
            self.is_authenticated = False
        logger.warning(f"{self.display_name} {context} failed ({kind.value}): {raw_message}")
        return error

    def _rate_limited(self) -> ProviderError:
        status = self.rate_limiter.status()
        error = build_error(
            ErrorKind.RATE_LIMIT_EXCEEDED,
            provider=self.name,
            display_name=self.display_name,
            raw_message=(
                f"Local rate limit reached; window resets in {status.seconds_until_reset:.1f}s"
            ),
            context="rate_limit",
            metadata={"requests_remaining": status.requests_remaining, "units_remaining": status.units_remaining},
        )
        self.last_error = error.record
        logger.warning(f"{self.display_name} request rejected by local rate limiter")
        return error

    # ========== HTTP plumbing ==========

    def _resolve_request(self, prompt: str, opts: GenerateOptions) -> GenerationRequest:
        if opts.temperature is not None:
            temperature = opts.temperature
        elif self.config.temperature is not None:
            temperature = self.config.temperature
        else:
            temperature = self.settings.DEFAULT_TEMPERATURE

        return GenerationRequest(
            prompt=prompt,
            messages=list(opts.messages) if opts.messages else [{"role": "user", "content": prompt}],
            model=opts.model or self.config.model or self.default_model,
            max_tokens=opts.max_tokens or self.config.max_tokens or self.settings.DEFAULT_MAX_TOKENS,
            temperature=temperature,
            stop=opts.stop,
            timeout=opts.timeout or self.config.timeout,
        )

    def build_request_headers(self, extra: Mapping[str, str] | None = None) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "User-Agent": f"{self.settings.APP_NAME}/{self.settings.APP_VERSION} ({self.name})",
            **self.build_auth_headers(),
            **(extra or {}),
        }

    def _url(self, path: str) -> str:
        return path if path.startswith(("http://", "https://")) else f"{self.base_url}{path}"

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        """Best human-readable message from an error response."""
        fallback = f"HTTP {response.status_code}: {response.reason_phrase}"
        try:
            data = response.json()
        except ValueError:
            return fallback
        if isinstance(data, dict):
            error = data.get("error")
            if isinstance(error, dict) and error.get("message"):
                return str(error["message"])
            if isinstance(error, str) and error:
                return error
            if data.get("message"):
                return str(data["message"])
        return fallback

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Mapping[str, str] | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """
        Send one request and return the decoded JSON body.

        Raises:
            BackendResponseError: Non-2xx status or a body that is not JSON
            httpx.TransportError: Transport failure (classified by the caller)
        """
        response = await self.client.request(
            method,
            self._url(path),
            json=json,
            params=params,
            headers=self.build_request_headers(headers),
            timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT,
        )
        self.rate_limiter.reconcile(response.headers, self.RATE_LIMIT_HEADERS)

        if response.is_error:
            raise BackendResponseError(self._error_message(response), status_code=response.status_code)
        try:
            return response.json()
        except ValueError as exc:
            raise BackendResponseError("Invalid JSON response", status_code=response.status_code) from exc

    async def _stream(
        self,
        method: str,
        path: str,
        *,
        envelope: StreamEnvelope,
        json: Any = None,
        params: Mapping[str, str] | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> AsyncIterator[str]:
        """
        Stream a response through a backend envelope.

        The request is sent on the first pull. Abandoning the iterator closes
        the response. Any failure, including one mid-stream, is raised as a
        classified ProviderError.
        """
        try:
            async with self.client.stream(
                method,
                self._url(path),
                json=json,
                params=params,
                headers=self.build_request_headers(headers),
                timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT,
            ) as response:
                self.rate_limiter.reconcile(response.headers, self.RATE_LIMIT_HEADERS)
                if response.is_error:
                    await response.aread()
                    raise BackendResponseError(self._error_message(response), status_code=response.status_code)

                async for fragment in decode_stream(response.aiter_bytes(), envelope):
                    yield fragment
        except Exception as exc:
            raise self.handle_error(exc, "stream") from exc

    # ========== Lifecycle ==========

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()
