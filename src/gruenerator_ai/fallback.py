"""Ordered cross-provider fallback after a primary failure."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Tuple

from .errors import UnusableResponseError
from .providers.base import CanonicalRequest, DispatchResult, ProviderName
from .providers.registry import ProviderRegistry

LOGGER = logging.getLogger("gruenerator_ai.fallback")

# Privacy-preserving chain: EU-hosted vendors only.
PRIVACY_FALLBACK_PROVIDERS: Tuple[ProviderName, ...] = (
    ProviderName.LITELLM,
    ProviderName.IONOS,
    ProviderName.TELEKOM,
    ProviderName.MISTRAL,
)

# Vendors that handle the sharepic output format.
SHAREPIC_FALLBACK_PROVIDERS: Tuple[ProviderName, ...] = (
    ProviderName.MISTRAL,
    ProviderName.CLAUDE,
)

SHAREPIC_TYPES = frozenset(
    {
        "sharepic",
        "dreizeilen",
        "zitat",
        "zitat_pure",
        "headline",
        "info",
        "image_picker",
        "sharepic_veranstaltung",
    }
)

AttemptFn = Callable[[ProviderName, str, CanonicalRequest], Awaitable[DispatchResult]]


def chain_for(request_type: str) -> Tuple[ProviderName, ...]:
    if request_type in SHAREPIC_TYPES:
        return SHAREPIC_FALLBACK_PROVIDERS
    return PRIVACY_FALLBACK_PROVIDERS


class FallbackChain:
    """Try alternate providers in order until one yields a usable result."""

    def __init__(self, registry: ProviderRegistry) -> None:
        self._registry = registry

    def candidates(self, request_type: str, failed_provider: ProviderName) -> Tuple[ProviderName, ...]:
        return tuple(
            name
            for name in chain_for(request_type)
            if name is not failed_provider and self._registry.is_configured(name)
        )

    async def run(
        self,
        attempt: AttemptFn,
        request_id: str,
        request: CanonicalRequest,
        *,
        failed_provider: ProviderName,
        cause: BaseException,
    ) -> DispatchResult:
        candidates = self.candidates(request.type, failed_provider)
        if not candidates:
            LOGGER.error("No fallback provider available for %s after %s failed", request_id, failed_provider.value)
            raise cause

        # The caller's model names a model of the failed vendor; alternates use their own default.
        fallback_request = request.with_model(None)
        last_error: BaseException = cause
        for name in candidates:
            LOGGER.info("Fallback for %s: trying %s after %s failed", request_id, name.value, failed_provider.value)
            try:
                result = await attempt(name, request_id, fallback_request)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                LOGGER.warning("Fallback provider %s failed for %s: %s", name.value, request_id, exc)
                last_error = exc
                continue
            if result.is_usable:
                return result.with_metadata(fallbackUsed=True, originalProvider=failed_provider.value)
            LOGGER.warning("Fallback provider %s returned an unusable result for %s", name.value, request_id)
            last_error = UnusableResponseError(
                f"{name.value} returned neither content nor tool calls for {request_id}",
                details={"provider": name.value},
            )

        LOGGER.error("All fallback providers failed for %s", request_id)
        raise last_error
