"""Content-aware generation settings.

Different request types want different sampling: press releases and motions
should be sober, social posts livelier, structured JSON outputs nearly
deterministic. The tables here supply those profile values; an explicit
caller value always wins, and the global default applies last.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence

from .base import CanonicalRequest

FORMAL_KEYWORDS = ("pressemitteilung", "förmlich", "sachlich", "presseverteiler", "journalistisch")

TYPE_TEMPERATURES = {
    "presse": 0.3,
    "antrag": 0.2,
    "antragsversteher": 0.2,
    "wahlprogramm": 0.2,
    "rede": 0.3,
    "text_adjustment": 0.3,
    "web_search_summary": 0.2,
    "generator_config": 0.1,
    "crawler_agent": 0.1,
    "qa_tools": 0.3,
    "leichte_sprache": 0.3,
}

PLATFORM_TEMPERATURES = (
    ("linkedin", 0.4),
    ("twitter", 0.5),
    ("facebook", 0.6),
    ("instagram", 0.7),
    ("reelScript", 0.6),
)

PLATFORM_TOP_P = (
    ("pressemitteilung", 0.85),
    ("linkedin", 0.9),
    ("twitter", 0.9),
    ("facebook", 0.95),
    ("instagram", 0.95),
    ("reelScript", 0.95),
    ("actionIdeas", 0.95),
)

SINGLE_PLATFORM_MAX_TOKENS = {
    "pressemitteilung": 600,
    "twitter": 150,
    "linkedin": 400,
    "facebook": 350,
    "instagram": 350,
    "reelScript": 500,
    "actionIdeas": 500,
}

MULTI_PLATFORM_MAX_TOKENS = 800
SOCIAL_TEMPERATURE = 0.6
PRO_MODE_MIN_TOKENS = 8000


@dataclass(frozen=True)
class GenerationSettings:
    temperature: float
    top_p: float
    max_tokens: int


# Global defaults per adapter family, applied when neither caller nor profile decide.
OPENAI_COMPATIBLE_DEFAULTS = GenerationSettings(temperature=0.35, top_p=1.0, max_tokens=4096)
ANTHROPIC_DEFAULTS = GenerationSettings(temperature=0.9, top_p=1.0, max_tokens=8000)


def _platforms(metadata: Mapping[str, Any]) -> Sequence[str]:
    platforms = metadata.get("platforms")
    if isinstance(platforms, (list, tuple)):
        return [str(item) for item in platforms]
    return []


def profile_temperature(request_type: str, system_prompt: Optional[str], platforms: Sequence[str]) -> Optional[float]:
    if request_type == "social":
        if "pressemitteilung" in platforms:
            return 0.3
        if system_prompt and any(keyword in system_prompt.lower() for keyword in FORMAL_KEYWORDS):
            return 0.3
        for platform, temperature in PLATFORM_TEMPERATURES:
            if platform in platforms:
                return temperature
        return SOCIAL_TEMPERATURE
    return TYPE_TEMPERATURES.get(request_type)


def profile_top_p(request_type: str, platforms: Sequence[str], temperature: float) -> float:
    if request_type == "social":
        for platform, top_p in PLATFORM_TOP_P:
            if platform in platforms:
                return top_p
    if temperature <= 0.3:
        return 0.85
    if temperature <= 0.5:
        return 0.9
    return 1.0


def profile_max_tokens(request_type: str, platforms: Sequence[str]) -> Optional[int]:
    if request_type != "social" or not platforms:
        return None
    if len(platforms) == 1:
        return SINGLE_PLATFORM_MAX_TOKENS.get(platforms[0], MULTI_PLATFORM_MAX_TOKENS)
    return MULTI_PLATFORM_MAX_TOKENS


def resolve_generation_settings(
    request: CanonicalRequest,
    defaults: GenerationSettings = OPENAI_COMPATIBLE_DEFAULTS,
) -> GenerationSettings:
    """Merge caller options, the request's content profile and ``defaults``."""
    options = request.options
    platforms = _platforms(request.metadata)

    temperature = options.temperature
    if temperature is None:
        temperature = profile_temperature(request.type, request.system_prompt, platforms)
    if temperature is None:
        temperature = defaults.temperature

    top_p = options.top_p
    if top_p is None:
        top_p = profile_top_p(request.type, platforms, temperature)

    max_tokens = options.max_tokens
    if max_tokens is None:
        max_tokens = profile_max_tokens(request.type, platforms) or defaults.max_tokens
        if options.use_pro_mode:
            max_tokens = max(max_tokens, PRO_MODE_MIN_TOKENS)

    return GenerationSettings(temperature=temperature, top_p=top_p, max_tokens=max_tokens)
