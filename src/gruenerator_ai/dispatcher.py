"""Top-level dispatch: select, call with retry, fall back, validate."""

from __future__ import annotations

import asyncio
import logging
from time import perf_counter
from typing import Optional

from .config import WorkerConfig
from .errors import ConfigError, ResultContractError, UnusableResponseError
from .fallback import FallbackChain
from .metrics import DispatchEvent, LoggingMetricsCollector, MetricsCollector
from .providers.base import CanonicalRequest, DispatchResult, ProviderName, ProviderSelection
from .providers.registry import ProviderRegistry
from .retry import RetryPolicy
from .selector import select_provider

LOGGER = logging.getLogger("gruenerator_ai.dispatcher")


class Dispatcher:
    """Entry point turning a canonical request into a validated result.

    Safe to share between concurrent requests: the only mutable state it
    touches is the diagnostic counters held by the retry observer.
    """

    def __init__(
        self,
        *,
        config: WorkerConfig,
        registry: ProviderRegistry,
        retry_policy: Optional[RetryPolicy] = None,
        fallback_chain: Optional[FallbackChain] = None,
        metrics: Optional[MetricsCollector] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._config = config
        self._registry = registry
        self._retry = retry_policy or RetryPolicy(
            max_attempts=config.retry_max,
            base_delay=config.retry_backoff_base,
        )
        self._fallback = fallback_chain or FallbackChain(registry)
        self._metrics = metrics or LoggingMetricsCollector()
        self._logger = logger or LOGGER

    def select(self, request: CanonicalRequest) -> ProviderSelection:
        if request.explicit_provider is not None:
            provider = request.explicit_provider
            return ProviderSelection(
                provider=provider,
                model=request.options.model or self._config.default_model_for(provider),
                use_bedrock=provider is ProviderName.BEDROCK,
            )
        return select_provider(request.type, request.options, request.metadata, self._config)

    async def attempt(self, name: ProviderName, request_id: str, request: CanonicalRequest) -> DispatchResult:
        """One retry-wrapped adapter call."""
        provider = self._registry.get(name)
        return await self._retry.call(
            lambda: provider.execute(request_id, request),
            request_id=request_id,
            provider=name.value,
        )

    async def dispatch(self, request_id: str, request: CanonicalRequest) -> DispatchResult:
        start = perf_counter()
        selection = self.select(request)
        self._logger.info(
            "Dispatching %s (type=%s) to %s model=%s%s",
            request_id,
            request.type,
            selection.provider.value,
            selection.model,
            " [explicit]" if request.explicit_provider else "",
        )

        try:
            result = await self._dispatch(request_id, request, selection)
        except Exception as exc:
            self._record(request_id, request, selection, start, status="error", error=exc)
            raise

        self._record(request_id, request, selection, start, status="success", result=result)
        return result

    async def _dispatch(
        self,
        request_id: str,
        request: CanonicalRequest,
        selection: ProviderSelection,
    ) -> DispatchResult:
        primary_request = request.with_model(selection.model)
        try:
            result = await self.attempt(selection.provider, request_id, primary_request)
            if not result.is_usable:
                raise UnusableResponseError(
                    f"{selection.provider.value} returned neither content nor tool calls for {request_id}",
                    details={"provider": selection.provider.value},
                )
        except (ConfigError, ResultContractError):
            raise
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._logger.warning(
                "Primary provider %s failed for %s, starting fallback: %s",
                selection.provider.value,
                request_id,
                exc,
            )
            result = await self._fallback.run(
                self.attempt,
                request_id,
                request,
                failed_provider=selection.provider,
                cause=exc,
            )
        return result.validate()

    async def aclose(self) -> None:
        await self._registry.aclose()

    def _record(
        self,
        request_id: str,
        request: CanonicalRequest,
        selection: ProviderSelection,
        start: float,
        *,
        status: str,
        result: Optional[DispatchResult] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        provider = selection.provider.value
        model = selection.model
        if result is not None:
            provider = result.metadata.get("provider", provider)
            model = result.metadata.get("model", model)
        self._metrics.record(
            DispatchEvent(
                request_id=request_id,
                request_type=request.type,
                status=status,
                provider=provider,
                model=model,
                duration_ms=(perf_counter() - start) * 1000,
                fallback_used=bool(result is not None and result.metadata.get("fallbackUsed")),
                error_code=getattr(error, "code", type(error).__name__) if error is not None else None,
            )
        )
