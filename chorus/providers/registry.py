"""Name-keyed registry of provider factories.

Pipelines never construct a provider directly: the factory layer resolves every
provider name through a ProviderRegistry, so an unknown name is a build-time
ConfigurationError rather than a surprise during execution.
"""

import logging
import threading
from collections.abc import Callable
from typing import Any

from chorus.errors import ConfigurationError
from chorus.providers.base import AIProvider
from config.config_loader import AppConfig, ModelConfig

logger = logging.getLogger(__name__)

# A factory receives the per-pipeline overrides for its provider (possibly empty)
ProviderFactory = Callable[[dict[str, Any]], AIProvider]


class ProviderRegistry:
    """Thread-safe mapping of provider name -> factory."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._factories: dict[str, ProviderFactory] = {}
        self._default: str | None = None

    def register_factory(self, name: str, factory: ProviderFactory) -> None:
        """Register a factory under name. The first registration becomes the default.

        Raises:
            ConfigurationError: If name is empty or already registered.
        """
        if not name:
            raise ConfigurationError("provider factory name cannot be empty")
        with self._lock:
            if name in self._factories:
                raise ConfigurationError(f"provider factory '{name}' already registered")
            self._factories[name] = factory
            if self._default is None:
                self._default = name
        logger.debug("Registered provider factory: %s", name)

    def set_default(self, name: str) -> None:
        with self._lock:
            if name not in self._factories:
                raise ConfigurationError(f"provider factory '{name}' not registered")
            self._default = name

    def get_factory(self, name: str) -> ProviderFactory:
        with self._lock:
            try:
                return self._factories[name]
            except KeyError:
                raise ConfigurationError(f"unknown provider '{name}'") from None

    def is_registered(self, name: str) -> bool:
        with self._lock:
            return name in self._factories

    def create_provider(self, name: str, overrides: dict[str, Any] | None = None) -> AIProvider:
        """Build the provider registered under name.

        Raises:
            ConfigurationError: If name is unknown or its factory fails, e.g. a
                missing API key or base_url.
        """
        factory = self.get_factory(name)
        try:
            return factory(dict(overrides or {}))
        except Exception as exc:
            raise ConfigurationError(f"failed to create provider '{name}': {exc}") from exc

    def create_default_provider(self) -> AIProvider:
        with self._lock:
            default = self._default
        if default is None:
            raise ConfigurationError("no default provider factory set")
        return self.create_provider(default)

    def list_providers(self) -> list[str]:
        with self._lock:
            return sorted(self._factories)


def _builtin_classes() -> dict[str, Callable[[ModelConfig], AIProvider]]:
    # SDK imports are deferred so the engine can be used without vendor SDKs installed
    from chorus.providers.anthropic import AnthropicProvider
    from chorus.providers.gemini import GeminiProvider
    from chorus.providers.openai_provider import OpenAIProvider
    from chorus.providers.xai import XAIProvider

    return {
        "anthropic": AnthropicProvider,
        "openai": OpenAIProvider,
        "google-genai": GeminiProvider,
        "xai": XAIProvider,
    }


def register_builtin_providers(registry: ProviderRegistry, config: AppConfig) -> list[str]:
    """Register a factory for every configured model whose API key is present.

    Returns the names registered, sorted.
    """
    classes = _builtin_classes()
    registered: list[str] = []
    for name in sorted(config.available_providers):
        model_cfg = config.models[name]
        provider_cls = classes.get(model_cfg.sdk)
        if provider_cls is None:
            logger.warning("Provider '%s' uses unknown sdk '%s', skipping", name, model_cfg.sdk)
            continue

        def factory(overrides: dict[str, Any], _cls=provider_cls, _cfg=model_cfg) -> AIProvider:
            return _cls(_cfg.with_overrides(overrides))

        registry.register_factory(name, factory)
        registered.append(name)

    if config.defaults.default_provider in registered:
        registry.set_default(config.defaults.default_provider)
    return registered
