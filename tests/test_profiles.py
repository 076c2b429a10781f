"""Tests for content-aware generation settings."""

from gruenerator_ai.providers.base import CanonicalRequest, RequestOptions
from gruenerator_ai.providers.messages import Message
from gruenerator_ai.providers.profiles import (
    ANTHROPIC_DEFAULTS,
    OPENAI_COMPATIBLE_DEFAULTS,
    PRO_MODE_MIN_TOKENS,
    resolve_generation_settings,
)


def _request(request_type, *, options=None, system_prompt=None, platforms=None):
    metadata = {"platforms": platforms} if platforms is not None else {}
    return CanonicalRequest(
        type=request_type,
        messages=(Message("user", "hallo"),),
        options=options or RequestOptions(),
        system_prompt=system_prompt,
        metadata=metadata,
    )


def test_caller_values_win():
    request = _request("antrag", options=RequestOptions(temperature=0.9, top_p=0.5, max_tokens=123))

    settings = resolve_generation_settings(request)

    assert (settings.temperature, settings.top_p, settings.max_tokens) == (0.9, 0.5, 123)


def test_type_profile_applies_before_default():
    settings = resolve_generation_settings(_request("antrag"))

    assert settings.temperature == 0.2
    assert settings.top_p == 0.85
    assert settings.max_tokens == OPENAI_COMPATIBLE_DEFAULTS.max_tokens


def test_unknown_type_uses_adapter_default():
    settings = resolve_generation_settings(_request("chat"), ANTHROPIC_DEFAULTS)

    assert settings.temperature == ANTHROPIC_DEFAULTS.temperature
    assert settings.top_p == 1.0
    assert settings.max_tokens == ANTHROPIC_DEFAULTS.max_tokens


def test_social_platform_profiles():
    single = resolve_generation_settings(_request("social", platforms=["twitter"]))
    multi = resolve_generation_settings(_request("social", platforms=["instagram", "facebook"]))
    press = resolve_generation_settings(_request("social", platforms=["pressemitteilung", "instagram"]))

    assert (single.temperature, single.top_p, single.max_tokens) == (0.5, 0.9, 150)
    assert multi.temperature == 0.6
    assert multi.max_tokens == 800
    assert press.temperature == 0.3
    assert press.top_p == 0.85


def test_formal_system_prompt_lowers_social_temperature():
    settings = resolve_generation_settings(_request("social", system_prompt="Bitte sachlich bleiben."))

    assert settings.temperature == 0.3


def test_pro_mode_raises_token_floor_only_without_caller_value():
    raised = resolve_generation_settings(_request("chat", options=RequestOptions(use_pro_mode=True)))
    explicit = resolve_generation_settings(
        _request("chat", options=RequestOptions(use_pro_mode=True, max_tokens=1000))
    )

    assert raised.max_tokens == PRO_MODE_MIN_TOKENS
    assert explicit.max_tokens == 1000
