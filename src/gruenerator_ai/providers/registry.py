"""Lazily constructed provider adapters keyed by vendor."""

from __future__ import annotations

import logging
from typing import Dict, Mapping, Optional

from ..config import WorkerConfig
from ..errors import ConfigError
from .anthropic import AnthropicMessagesProvider
from .base import BaseProvider, ProviderName
from .openai import OpenAICompatibleProvider

LOGGER = logging.getLogger("gruenerator_ai.providers.registry")

# Vendors whose endpoints accept base64 images in chat messages.
VISION_PROVIDERS = {ProviderName.CLAUDE, ProviderName.BEDROCK, ProviderName.MISTRAL}


def create_provider(config: WorkerConfig, name: ProviderName) -> BaseProvider:
    """Instantiate the adapter for ``name`` from configuration."""
    settings = config.provider(name)
    if not settings.is_configured:
        raise ConfigError(f"Provider {name.value} is not configured")

    if name is ProviderName.CLAUDE:
        return AnthropicMessagesProvider.claude(
            api_key=settings.api_key or "",
            default_model=settings.default_model,
            timeout=config.request_timeout,
        )
    if name is ProviderName.BEDROCK:
        return AnthropicMessagesProvider.bedrock(
            model_id=settings.default_model,
            aws_region=settings.region or "eu-central-1",
            timeout=config.request_timeout,
        )
    if name in (ProviderName.MISTRAL, ProviderName.IONOS, ProviderName.LITELLM, ProviderName.TELEKOM):
        return OpenAICompatibleProvider(
            name,
            api_key=settings.api_key or "",
            default_model=settings.default_model,
            base_url=settings.base_url,
            timeout=config.request_timeout,
            supports_images=name in VISION_PROVIDERS,
        )
    raise ConfigError(f"Unsupported LLM provider: {name!r}")


class ProviderRegistry:
    """Build adapters on first use and reuse them across requests."""

    def __init__(
        self,
        config: WorkerConfig,
        *,
        providers: Optional[Mapping[ProviderName, BaseProvider]] = None,
    ) -> None:
        self._config = config
        self._providers: Dict[ProviderName, BaseProvider] = dict(providers or {})

    def is_configured(self, name: ProviderName) -> bool:
        return name in self._providers or self._config.provider(name).is_configured

    def get(self, name: ProviderName) -> BaseProvider:
        provider = self._providers.get(name)
        if provider is None:
            provider = create_provider(self._config, name)
            self._providers[name] = provider
            LOGGER.debug("Initialized %s provider adapter", name.value)
        return provider

    async def aclose(self) -> None:
        for name, provider in list(self._providers.items()):
            if hasattr(provider, "aclose"):
                try:
                    await provider.aclose()
                except Exception:  # pragma: no cover - provider cleanup best-effort
                    LOGGER.debug("Cleanup failed for %s provider", name.value, exc_info=True)
        self._providers.clear()
