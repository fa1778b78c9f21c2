"""
Provider registry.

WHAT: Named adapter factories, a cache of configured instances, a default
      provider and an ordered fallback chain
WHY: Callers ask for "a working backend" by name; the registry owns
     construction, reuse and failover so callers never wire adapters by hand
HOW: Explicitly constructed object (no module singleton); instances cached
     per (name, SHA-256 fingerprint of the configuration)
"""

import hashlib
import json
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from .errors import DuplicateNameError, UnregisteredNameError
from .provider import BaseProvider, ConfigInput
from .schemas import ProviderConfig
from .types import ConnectionTestResult, ProviderMetadata
from ..utils.logger import get_logger

logger = get_logger(__name__)

ProviderFactory = Callable[[ConfigInput | None], BaseProvider]


@dataclass
class RegistryEntry:
    """A name bound to an adapter factory plus static metadata."""
    name: str
    factory: ProviderFactory
    registered_at: float = field(default_factory=time.time)
    category: str = "general"
    metadata: dict[str, Any] = field(default_factory=dict)


def config_fingerprint(config: ConfigInput | None) -> str:
    """
    SHA-256 of the canonical JSON form of a configuration.

    Secrets take part in the hash so two credentials never share an instance;
    only the digest is kept.
    """
    if isinstance(config, ProviderConfig):
        payload = config.fingerprint_payload()
    else:
        payload = {
            key: value.get_secret_value() if hasattr(value, "get_secret_value") else value
            for key, value in dict(config or {}).items()
        }
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class ProviderRegistry:
    """Registry of provider factories and configured instances."""

    def __init__(self):
        self._entries: dict[str, RegistryEntry] = {}
        self._instances: dict[tuple[str, str], BaseProvider] = {}
        self._default: str | None = None
        self._fallback_chain: list[str] = []
        # Evicted by unregister(), closed on the next clear_instances()
        self._evicted: list[BaseProvider] = []

    # ========== Registration ==========

    def register(
        self,
        name: str,
        factory: ProviderFactory,
        metadata: Mapping[str, Any] | None = None,
    ) -> RegistryEntry:
        """
        Bind a name to an adapter factory.

        Raises:
            DuplicateNameError: The name is already registered
            TypeError: factory is not callable
        """
        if name in self._entries:
            raise DuplicateNameError(name)
        if not callable(factory):
            raise TypeError(f"Factory for provider '{name}' must be callable")

        metadata = dict(metadata or {})
        entry = RegistryEntry(
            name=name,
            factory=factory,
            category=metadata.pop("category", "general"),
            metadata=metadata,
        )
        self._entries[name] = entry
        logger.debug(f"Registered provider: {name} (category: {entry.category})")
        return entry

    def unregister(self, name: str) -> bool:
        """
        Remove a name, its cached instances, and any default/fallback references.

        Evicted instances keep their HTTP clients open until the next
        clear_instances() or aclose().

        Returns:
            False if the name was not registered
        """
        if name not in self._entries:
            return False

        del self._entries[name]
        for key in [key for key in self._instances if key[0] == name]:
            self._evicted.append(self._instances.pop(key))
        self._fallback_chain = [n for n in self._fallback_chain if n != name]
        if self._default == name:
            self._default = None

        logger.debug(f"Unregistered provider: {name}")
        return True

    def has(self, name: str) -> bool:
        return name in self._entries

    def names(self) -> list[str]:
        return list(self._entries)

    # ========== Resolution ==========

    def resolve(self, name: str, config: ConfigInput | None = None) -> BaseProvider | None:
        """
        Return a configured instance, reusing one with an identical configuration.

        Returns:
            The instance, or None when the name is unregistered or the factory
            raises (the failure is logged)
        """
        entry = self._entries.get(name)
        if entry is None:
            logger.warning(f"Provider not registered: {name}")
            return None

        key = (name, config_fingerprint(config))
        cached = self._instances.get(key)
        if cached is not None:
            return cached

        try:
            instance = entry.factory(config)
        except Exception as e:
            logger.error(f"Failed to create provider {name}: {e}")
            return None

        self._instances[key] = instance
        return instance

    async def resolve_with_fallback(
        self,
        primary: str,
        config: ConfigInput | None = None,
        *,
        authenticate: bool = True,
    ) -> BaseProvider | None:
        """
        Try the primary, then the fallback chain, then the default.

        A candidate is skipped when it cannot be resolved or, if authenticate
        is set, when authenticate(config) fails. Keyless backends decide for
        themselves through their own validation and probe.

        Returns:
            The first working instance, or None
        """
        candidates = [primary, *self._fallback_chain]
        if self._default and self._default != primary:
            candidates.append(self._default)

        seen = set()
        for name in candidates:
            if name in seen:
                continue
            seen.add(name)

            provider = self.resolve(name, config)
            if provider is None:
                logger.warning(f"Provider {name} unavailable, trying next fallback")
                continue

            if authenticate and not provider.is_authenticated:
                try:
                    await provider.authenticate(config)
                except Exception as e:
                    logger.warning(f"Provider {name} failed to authenticate ({e}), trying next fallback")
                    continue

            if name != primary:
                logger.info(f"Using fallback provider {name} instead of {primary}")
            return provider

        logger.error(f"No provider available (primary: {primary}, tried: {', '.join(seen)})")
        return None

    # ========== Default and fallback chain ==========

    def set_default(self, name: str) -> None:
        if name not in self._entries:
            raise UnregisteredNameError(name, "set as default")
        self._default = name

    @property
    def default_name(self) -> str | None:
        return self._default

    def get_default(self, config: ConfigInput | None = None) -> BaseProvider | None:
        if self._default is None:
            return None
        return self.resolve(self._default, config)

    def set_fallback_chain(self, names: list[str]) -> None:
        """Replace the fallback chain; nothing changes if any name is unknown."""
        for name in names:
            if name not in self._entries:
                raise UnregisteredNameError(name, "add to fallback chain")
        self._fallback_chain = list(names)

    @property
    def fallback_chain(self) -> list[str]:
        return list(self._fallback_chain)

    # ========== Diagnostics ==========

    async def test_all(
        self,
        configs: Mapping[str, ConfigInput] | None = None,
    ) -> dict[str, ConnectionTestResult]:
        """
        Run test_connection against every registered provider.

        Never raises; a provider that cannot be resolved is reported as a failure.
        """
        configs = configs or {}
        results = {}
        for name in self.names():
            config = configs.get(name, {})
            provider = self.resolve(name, config)
            if provider is None:
                results[name] = ConnectionTestResult(
                    success=False,
                    provider=name,
                    error="Failed to create provider instance",
                )
                continue
            results[name] = await provider.test_connection(config)

        passed = sum(1 for result in results.values() if result.success)
        logger.info(f"Connection test complete ({passed}/{len(results)} providers passed)")
        return results

    def entries_metadata(self) -> dict[str, dict[str, Any]]:
        """Static metadata for each registration."""
        return {
            name: {
                "name": name,
                "category": entry.category,
                "registered_at": entry.registered_at,
                "is_default": name == self._default,
                "in_fallback_chain": name in self._fallback_chain,
                **entry.metadata,
            }
            for name, entry in self._entries.items()
        }

    def instances_metadata(self) -> list[ProviderMetadata]:
        """Live metadata of every cached instance."""
        return [instance.get_metadata() for instance in self._instances.values()]

    def stats(self) -> dict[str, Any]:
        categories: dict[str, int] = {}
        for entry in self._entries.values():
            categories[entry.category] = categories.get(entry.category, 0) + 1
        return {
            "registered": len(self._entries),
            "cached_instances": len(self._instances),
            "default": self._default,
            "fallback_chain": list(self._fallback_chain),
            "categories": categories,
        }

    # ========== Lifecycle ==========

    async def clear_instances(self) -> None:
        """Close and drop every cached instance; registrations stay."""
        instances = [*self._instances.values(), *self._evicted]
        self._instances.clear()
        self._evicted.clear()
        for instance in instances:
            await instance.aclose()

    async def aclose(self) -> None:
        await self.clear_instances()
