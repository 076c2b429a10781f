"""Gruenerator AI - multi-provider request dispatch with retry and fallback."""

from .config import WorkerConfig  # noqa: F401
from .dispatcher import Dispatcher  # noqa: F401
from .errors import ConfigError, ProviderError  # noqa: F401
from .runtime import WorkerRuntime, create_dispatcher  # noqa: F401

__all__ = [
    "ConfigError",
    "Dispatcher",
    "ProviderError",
    "WorkerConfig",
    "WorkerRuntime",
    "__version__",
    "create_dispatcher",
]

__version__ = "0.1.0"
