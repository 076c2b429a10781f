"""Provider and model selection for a logical request."""

from __future__ import annotations

from typing import Any, Mapping, Optional

from .config import WorkerConfig
from .providers.base import ProviderName, ProviderSelection, RequestOptions

# Request types that always prefer a specific vendor.
TYPE_PROVIDER_DEFAULTS = {
    "antragsversteher": ProviderName.CLAUDE,
    "you_with_tools": ProviderName.CLAUDE,
    "sharepic": ProviderName.MISTRAL,
    "image_picker": ProviderName.MISTRAL,
    "text_adjustment": ProviderName.MISTRAL,
    "generator_config": ProviderName.MISTRAL,
    "leichte_sprache": ProviderName.IONOS,
}


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def select_provider(
    request_type: str,
    options: RequestOptions,
    metadata: Optional[Mapping[str, Any]],
    config: WorkerConfig,
) -> ProviderSelection:
    """Pick provider and model; first matching rule wins.

    Order: ultra mode, pro mode, bedrock flag, privacy mode, the per-type
    table, then the system default. A caller ``options.model`` replaces the
    model for every rule except ultra and pro, which pin their own.
    """
    if options.use_ultra_mode:
        return ProviderSelection(provider=config.ultra_provider, model=config.ultra_model)
    if options.use_pro_mode:
        return ProviderSelection(provider=config.pro_provider, model=config.pro_model)

    if options.use_bedrock:
        provider = ProviderName.BEDROCK
    elif _truthy((metadata or {}).get("privacyMode")):
        provider = config.privacy_provider
    elif request_type in TYPE_PROVIDER_DEFAULTS:
        provider = TYPE_PROVIDER_DEFAULTS[request_type]
    else:
        provider = config.default_provider

    if options.model:
        model = options.model
    elif provider is config.default_provider and config.default_model:
        model = config.default_model
    else:
        model = config.default_model_for(provider)
    return ProviderSelection(provider=provider, model=model, use_bedrock=provider is ProviderName.BEDROCK)
