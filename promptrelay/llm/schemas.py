"""
Provider configuration structs and validation helpers.

WHAT: One pydantic model per backend configuration, plus the pure checks
      (credential shape, endpoint, model) adapters run in validate_config()
WHY: Configuration arrives from an external settings store as loose mappings;
     it is validated before use rather than read optimistically
HOW: Pydantic v2 models with Field constraints; json_schema_extra carries the
     UI hints (label, sensitive) that get_config_schema() exposes
"""

import typing
from typing import Any, ClassVar, Literal, Mapping
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError

from .types import ConfigField, ValidationResult

LOCAL_HOSTNAMES = ("localhost", "127.0.0.1", "::1", "0.0.0.0")
MAX_KEY_LENGTH = 200
MIN_KEY_LENGTH = 10


class ProviderConfig(BaseModel):
    """Fields every backend accepts."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    # Field names that must be present for this backend
    required_fields: ClassVar[tuple[str, ...]] = ("api_key",)

    api_key: SecretStr | None = Field(
        default=None,
        description="Secret API key for the backend",
        json_schema_extra={"label": "API Key", "sensitive": True},
    )
    base_url: str | None = Field(
        default=None,
        description="Custom API base URL (for proxies)",
        json_schema_extra={"label": "Base URL"},
    )
    model: str | None = Field(
        default=None,
        description="Model to use",
        json_schema_extra={"label": "Model", "select": True},
    )
    max_tokens: int | None = Field(
        default=None, ge=1, le=8000,
        description="Maximum tokens to generate",
        json_schema_extra={"label": "Max Tokens"},
    )
    temperature: float | None = Field(
        default=None, ge=0.0, le=2.0,
        description="Sampling temperature",
        json_schema_extra={"label": "Temperature"},
    )
    timeout: float | None = Field(
        default=None, gt=0, le=300,
        description="Request timeout in seconds",
        json_schema_extra={"label": "Request Timeout"},
    )

    def secret(self) -> str | None:
        """Plain credential value (never log the result)."""
        return self.api_key.get_secret_value() if self.api_key else None

    def fingerprint_payload(self) -> dict[str, Any]:
        """
        Explicitly set fields with the secret revealed, for cache fingerprinting only.

        Matches the mapping the model was validated from, so both forms share a fingerprint.
        """
        data = self.model_dump(mode="json", exclude_unset=True)
        if "api_key" in data:
            data["api_key"] = self.secret()
        return data


class OpenAIConfig(ProviderConfig):
    organization: str | None = Field(
        default=None,
        description="Optional OpenAI organization ID",
        json_schema_extra={"label": "Organization ID"},
    )


class AnthropicConfig(ProviderConfig):
    anthropic_version: str | None = Field(
        default=None,
        description="Anthropic API version header",
        json_schema_extra={"label": "API Version"},
    )


class OpenRouterConfig(ProviderConfig):
    app_name: str | None = Field(
        default=None,
        description="Application name sent as X-Title",
        json_schema_extra={"label": "App Name"},
    )
    app_url: str | None = Field(
        default=None,
        description="Application URL sent as HTTP-Referer",
        json_schema_extra={"label": "App URL"},
    )


class GeminiConfig(ProviderConfig):
    pass


class CohereConfig(ProviderConfig):
    pass


class HuggingFaceConfig(ProviderConfig):
    required_fields: ClassVar[tuple[str, ...]] = ()

    custom_model: str | None = Field(
        default=None,
        description="Custom model ID from the Hugging Face Hub",
        json_schema_extra={"label": "Custom Model"},
    )


class LocalConfig(ProviderConfig):
    required_fields: ClassVar[tuple[str, ...]] = ("base_url",)

    server_type: Literal["ollama", "lmstudio", "custom"] = Field(
        default="ollama",
        description="Type of local model server",
        json_schema_extra={"label": "Server Type"},
    )


# ========== Pure validation helpers ==========

def _present(raw: Mapping[str, Any], name: str) -> bool:
    value = raw.get(name)
    if isinstance(value, SecretStr):
        value = value.get_secret_value()
    if isinstance(value, str):
        return bool(value.strip())
    return value is not None


def check_required(raw: Mapping[str, Any], config_model: type[ProviderConfig]) -> ValidationResult:
    """Report required fields that are missing or blank."""
    result = ValidationResult()
    for name in config_model.required_fields:
        if not _present(raw, name):
            label = config_model.model_fields[name].json_schema_extra.get("label", name)
            result.add_error(f"{label} is required")
    return result


def parse_config(
    raw: Mapping[str, Any] | ProviderConfig,
    config_model: type[ProviderConfig],
) -> tuple[ProviderConfig | None, ValidationResult]:
    """Coerce a raw mapping into the backend's config model, collecting errors."""
    result = ValidationResult()
    if isinstance(raw, config_model):
        return raw, result
    if isinstance(raw, ProviderConfig):
        raw = raw.model_dump()
        if raw.get("api_key") is not None:
            raw["api_key"] = raw["api_key"].get_secret_value()
    try:
        return config_model.model_validate(dict(raw or {})), result
    except ValidationError as exc:
        for error in exc.errors():
            location = ".".join(str(part) for part in error["loc"]) or "config"
            result.add_error(f"{location}: {error['msg']}")
        return None, result


def validate_api_key(
    api_key: str | None,
    *,
    provider: str,
    prefix: str | None = None,
    typical_length: int | None = None,
) -> ValidationResult:
    """Credential shape and length heuristics."""
    result = ValidationResult()
    if not api_key:
        result.add_error("API key is required")
        return result

    key = api_key.strip()
    if not key:
        result.add_error("API key cannot be empty")
        return result

    if prefix and not key.startswith(prefix):
        result.add_warning(f'{provider} API keys typically start with "{prefix}"')
    if typical_length and len(key) < typical_length:
        result.add_warning(f"{provider} API keys are typically longer")

    if " " in key:
        result.add_error("API key should not contain spaces")
    if len(key) < MIN_KEY_LENGTH:
        result.add_error("API key is too short")
    if len(key) > MAX_KEY_LENGTH:
        result.add_error("API key is too long")
    return result


def validate_endpoint(url: str, *, provider: str, expected_hosts: tuple[str, ...] = ()) -> ValidationResult:
    """Endpoint well-formedness: scheme, host, transport security, expected domain."""
    result = ValidationResult()
    try:
        parts = urlsplit(url.strip())
        hostname = parts.hostname
    except ValueError:
        result.add_error("Invalid URL format")
        return result

    if parts.scheme not in ("http", "https"):
        result.add_error("Endpoint must use HTTP or HTTPS protocol")
        return result
    if not hostname:
        result.add_error("Invalid URL format")
        return result

    if parts.scheme == "http" and hostname not in LOCAL_HOSTNAMES:
        result.add_warning("HTTP endpoints are not secure. Consider using HTTPS.")
    if expected_hosts and hostname not in expected_hosts:
        result.add_warning(f"Unexpected domain for {provider}. Expected: {', '.join(expected_hosts)}")
    return result


def validate_model(model: str, *, provider: str, known_models: list[str]) -> ValidationResult:
    """Unknown models only warn: backends add models faster than lists update."""
    result = ValidationResult()
    if known_models and model not in known_models:
        preview = ", ".join(known_models[:3]) + ("..." if len(known_models) > 3 else "")
        result.add_warning(f"Unknown model for {provider}. Known models: {preview}")
    return result


# ========== Schema description ==========

_TYPE_NAMES = {str: "string", SecretStr: "string", int: "integer", float: "number", bool: "boolean"}


def _field_type(annotation: Any) -> tuple[str, list[str] | None]:
    if typing.get_origin(annotation) is Literal:
        return "select", [str(arg) for arg in typing.get_args(annotation)]
    args = [arg for arg in typing.get_args(annotation) if arg is not type(None)]
    if args:
        return _field_type(args[0])
    return _TYPE_NAMES.get(annotation, "string"), None


def describe_config(
    config_model: type[ProviderConfig],
    *,
    defaults: Mapping[str, Any] | None = None,
    model_options: list[str] | None = None,
) -> list[ConfigField]:
    """List the fields a configuration UI needs for one backend."""
    defaults = defaults or {}
    fields = []
    for name, info in config_model.model_fields.items():
        extra = info.json_schema_extra or {}
        type_name, options = _field_type(info.annotation)
        if extra.get("select") and model_options:
            type_name, options = "select", list(model_options)
        default = defaults.get(name, info.default)
        fields.append(ConfigField(
            name=name,
            type=type_name,
            required=name in config_model.required_fields,
            sensitive=bool(extra.get("sensitive", False)),
            default=default,
            label=extra.get("label", name),
            description=info.description or "",
            options=options,
        ))
    return fields
