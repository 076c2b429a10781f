"""Tests for provider construction and caching."""

import pytest

from gruenerator_ai.errors import ConfigError
from gruenerator_ai.providers.anthropic import AnthropicMessagesProvider
from gruenerator_ai.providers.base import ProviderName
from gruenerator_ai.providers.openai import OpenAICompatibleProvider
from gruenerator_ai.providers.registry import ProviderRegistry, create_provider


class _ClosableProvider:
    name = ProviderName.MISTRAL

    def __init__(self):
        self.closed = False

    async def execute(self, request_id, request):  # pragma: no cover - not invoked
        raise AssertionError("not expected")

    async def aclose(self):
        self.closed = True


@pytest.mark.parametrize(
    "name,expected",
    [
        (ProviderName.CLAUDE, AnthropicMessagesProvider),
        (ProviderName.BEDROCK, AnthropicMessagesProvider),
        (ProviderName.MISTRAL, OpenAICompatibleProvider),
        (ProviderName.IONOS, OpenAICompatibleProvider),
        (ProviderName.LITELLM, OpenAICompatibleProvider),
        (ProviderName.TELEKOM, OpenAICompatibleProvider),
    ],
)
def test_create_provider_covers_every_vendor(make_config, name, expected):
    provider = create_provider(make_config(), name)

    assert isinstance(provider, expected)
    assert provider.name is name


def test_create_provider_requires_credentials(make_config):
    with pytest.raises(ConfigError):
        create_provider(make_config(TELEKOM_API_KEY=None), ProviderName.TELEKOM)


def test_registry_caches_adapters(make_config):
    registry = ProviderRegistry(make_config())

    assert registry.get(ProviderName.MISTRAL) is registry.get(ProviderName.MISTRAL)


@pytest.mark.asyncio
async def test_registry_injected_providers_and_close(make_config):
    stub = _ClosableProvider()
    registry = ProviderRegistry(make_config(MISTRAL_API_KEY=None), providers={ProviderName.MISTRAL: stub})

    assert registry.is_configured(ProviderName.MISTRAL) is True
    assert registry.get(ProviderName.MISTRAL) is stub

    await registry.aclose()
    assert stub.closed is True
