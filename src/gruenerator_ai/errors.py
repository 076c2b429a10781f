"""Error taxonomy shared by adapters, retry policy and dispatcher."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

import httpx

_TRANSIENT_MARKERS = (
    "fetch failed",
    "socket",
    "econnreset",
    "und_err_socket",
    "connection reset",
)

_APOLOGIES = {
    "de": "Es ist leider ein Fehler aufgetreten. Bitte versuche es erneut.",
    "en": "Sorry, something went wrong. Please try again.",
}


class ConfigError(ValueError):
    """Raised when configuration values are invalid or missing."""


class ProviderError(Exception):
    """Standard error raised by provider adapters."""

    def __init__(self, code: str, message: str, retryable: bool = False, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.retryable = retryable
        self.details = details or {}


class ContentPolicyError(ProviderError):
    """The vendor refused to generate content for the request."""

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__("content_policy", message, retryable=False, details=details)


class UnusableResponseError(ProviderError):
    """A vendor answered successfully but without text or tool calls."""

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__("empty_response", message, retryable=False, details=details)


class ResultContractError(RuntimeError):
    """A dispatch result violates the content/tool-call invariant."""


def is_transient(exc: BaseException) -> bool:
    """Return True for connection-level failures worth retrying."""
    if isinstance(exc, ProviderError):
        return exc.retryable
    if isinstance(exc, (ConnectionError, httpx.TransportError, asyncio.TimeoutError)):
        return True
    text = str(exc).lower()
    cause = exc.__cause__
    if cause is not None and getattr(cause, "code", None) == "UND_ERR_SOCKET":
        return True
    return any(marker in text for marker in _TRANSIENT_MARKERS)


def apology_message(locale: Optional[str] = None) -> str:
    """User-facing text for terminal failures; vendor detail stays in the logs."""
    language = (locale or "de").split("-")[0].split("_")[0].lower()
    return _APOLOGIES.get(language, _APOLOGIES["de"])
