"""Vendor-specific tool schema preparation."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .base import ProviderName, RequestOptions
from .messages import ToolDefinition

LOGGER = logging.getLogger("gruenerator_ai.providers.tools")

_ANTHROPIC_STYLE = {ProviderName.CLAUDE, ProviderName.BEDROCK}
_OPENAI_STYLE = {ProviderName.MISTRAL, ProviderName.IONOS, ProviderName.LITELLM, ProviderName.TELEKOM}


def _definitions(raw_tools, request_id: str) -> List[ToolDefinition]:
    definitions = []
    for raw in raw_tools:
        try:
            definitions.append(ToolDefinition.from_dict(raw))
        except (ValueError, AttributeError, TypeError) as exc:
            LOGGER.warning("Skipping malformed tool definition for %s: %s", request_id, exc)
    return definitions


def _choice(tool_choice: Any) -> Tuple[str, Optional[str]]:
    """Reduce any accepted tool_choice spelling to ``(mode, tool_name)``."""
    if tool_choice is None:
        return "auto", None
    if isinstance(tool_choice, str):
        value = tool_choice.strip().lower()
        if value in {"auto", "none"}:
            return value, None
        if value in {"any", "required"}:
            return "required", None
        return "tool", tool_choice.strip()
    if isinstance(tool_choice, Mapping):
        choice_type = str(tool_choice.get("type") or "auto").lower()
        if choice_type == "tool" and tool_choice.get("name"):
            return "tool", str(tool_choice["name"])
        if choice_type == "function":
            function = tool_choice.get("function")
            if isinstance(function, Mapping) and function.get("name"):
                return "tool", str(function["name"])
        if choice_type in {"any", "required"}:
            return "required", None
        if choice_type == "none":
            return "none", None
    return "auto", None


def _anthropic_payload(definitions: List[ToolDefinition], mode: str, name: Optional[str]) -> Dict[str, Any]:
    tools = [
        {"name": item.name, "description": item.description, "input_schema": dict(item.parameters)}
        for item in definitions
    ]
    if mode == "tool":
        tool_choice: Dict[str, Any] = {"type": "tool", "name": name}
    elif mode == "required":
        tool_choice = {"type": "any"}
    else:
        tool_choice = {"type": mode}
    return {"tools": tools, "tool_choice": tool_choice}


def _openai_payload(
    definitions: List[ToolDefinition],
    mode: str,
    name: Optional[str],
    provider: ProviderName,
) -> Dict[str, Any]:
    tools = [
        {
            "type": "function",
            "function": {
                "name": item.name,
                "description": item.description,
                "parameters": dict(item.parameters),
            },
        }
        for item in definitions
    ]
    tool_choice: Any
    if mode == "tool":
        tool_choice = {"type": "function", "function": {"name": name}}
    elif mode == "required":
        # Mistral spells "required" as "any".
        tool_choice = "any" if provider is ProviderName.MISTRAL else "required"
    else:
        tool_choice = mode
    return {"tools": tools, "tool_choice": tool_choice}


def prepare_tools_payload(
    options: RequestOptions,
    provider: Any,
    request_id: str,
    request_type: str,
) -> Dict[str, Any]:
    """Return ``{tools, tool_choice}`` in the vendor's shape, or ``{}``.

    Tool support is best-effort: unknown providers and malformed definitions
    degrade to an empty payload instead of failing the request.
    """
    if not options.tools:
        return {}
    try:
        vendor = ProviderName(str(getattr(provider, "value", provider)).lower())
    except ValueError:
        LOGGER.warning("No tool format for provider %r (request %s, type %s)", provider, request_id, request_type)
        return {}

    definitions = _definitions(options.tools, request_id)
    if not definitions:
        return {}
    mode, name = _choice(options.tool_choice)
    if mode == "tool" and name not in {item.name for item in definitions}:
        LOGGER.warning("tool_choice %r does not match any tool for %s; using auto", name, request_id)
        mode, name = "auto", None

    LOGGER.debug("Prepared %s tools for %s (%s, type=%s)", len(definitions), request_id, vendor.value, request_type)
    if vendor in _ANTHROPIC_STYLE:
        return _anthropic_payload(definitions, mode, name)
    if vendor in _OPENAI_STYLE:
        return _openai_payload(definitions, mode, name, vendor)
    return {}
