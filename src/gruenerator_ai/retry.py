"""Bounded exponential-backoff retry around a single adapter call."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from .errors import is_transient
from .metrics import RetryObserver

LOGGER = logging.getLogger("gruenerator_ai.retry")

T = TypeVar("T")


class RetryPolicy:
    """Retry transient connection failures with doubling delays."""

    def __init__(
        self,
        *,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        observer: Optional[RetryObserver] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._observer = observer
        self._sleep = sleep

    def delay_for(self, attempt: int) -> float:
        """Delay before attempt ``attempt + 1``."""
        return self.base_delay * (2 ** (attempt - 1))

    async def call(
        self,
        fn: Callable[[], Awaitable[T]],
        *,
        request_id: str,
        provider: str,
    ) -> T:
        attempt = 0
        while True:
            attempt += 1
            if attempt > 1 and self._observer:
                self._observer.on_retry(provider)
            if self._observer:
                self._observer.on_attempt(provider)
            try:
                result = await fn()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if self._observer:
                    self._observer.on_failure(provider, str(exc) or type(exc).__name__)
                retryable = is_transient(exc)
                if not retryable or attempt >= self.max_attempts:
                    LOGGER.warning(
                        "%s for %s via %s on attempt %s/%s: %s",
                        "Max retries reached" if retryable else "Non-retryable error",
                        request_id,
                        provider,
                        attempt,
                        self.max_attempts,
                        exc,
                    )
                    raise
                delay = self.delay_for(attempt)
                LOGGER.info(
                    "Retryable connection error for %s via %s on attempt %s/%s, retrying in %.2fs: %s",
                    request_id,
                    provider,
                    attempt,
                    self.max_attempts,
                    delay,
                    exc,
                )
                if delay > 0:
                    await self._sleep(delay)
                continue

            if self._observer:
                self._observer.on_success(provider)
            if attempt > 1:
                LOGGER.info("Retry for %s via %s succeeded on attempt %s", request_id, provider, attempt)
            return result
