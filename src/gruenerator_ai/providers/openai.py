"""Adapter for vendors speaking the OpenAI chat-completions protocol.

Mistral, IONOS, LiteLLM and Telekom all expose OpenAI-compatible endpoints,
so one adapter parameterized by base URL and capabilities serves them all.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from openai import (
    APIConnectionError,
    APIError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
)

from ..errors import ContentPolicyError, ProviderError
from .base import (
    BaseProvider,
    CanonicalRequest,
    DispatchResult,
    ProviderName,
    StopReason,
    ToolCall,
    merge_metadata,
    normalize_stop_reason,
)
from .messages import (
    ContentBlock,
    DocumentBlock,
    ImageBlock,
    Message,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
)
from .profiles import OPENAI_COMPATIBLE_DEFAULTS, resolve_generation_settings
from .tools import prepare_tools_payload

LOGGER = logging.getLogger("gruenerator_ai.providers.openai")

_GATEWAY_STATUSES = {502, 503, 504}


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, (APIConnectionError, APITimeoutError)):
        return True
    return isinstance(exc, APIStatusError) and exc.status_code in _GATEWAY_STATUSES


def _error_message(exc: APIError) -> str:
    body = getattr(exc, "body", None)
    if isinstance(body, dict):
        error = body.get("error", body)
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(body.get("message"), str):
            return body["message"]
    return str(exc)


def _flatten_block(block: ContentBlock) -> str:
    """Text approximation for vendors without native support for ``block``."""
    if isinstance(block, TextBlock):
        return block.text
    if isinstance(block, ImageBlock):
        return f"[Bild: {block.name or 'Unbekannt'}]"
    if isinstance(block, DocumentBlock):
        if block.text:
            return block.text
        if block.media_type:
            return f"[Dokument: {block.name or 'Unbekannt'} ({block.media_type})]"
        return f"[Dokument: {block.name or 'Unbekannt'}]"
    if isinstance(block, ToolResultBlock):
        return block.content_text()
    if isinstance(block, ToolUseBlock):
        return ""
    raise TypeError(f"Unsupported content block: {block!r}")


def _build_messages(
    messages: List[Message],
    system_prompt: Optional[str],
    supports_images: bool,
) -> List[Dict[str, Any]]:
    converted: List[Dict[str, Any]] = []
    if system_prompt:
        converted.append({"role": "system", "content": system_prompt})

    for message in messages:
        if message.role == "system" and system_prompt:
            continue
        if isinstance(message.content, str):
            converted.append({"role": message.role, "content": message.content})
            continue

        blocks = message.content
        tool_uses = [block for block in blocks if isinstance(block, ToolUseBlock)]
        tool_results = [block for block in blocks if isinstance(block, ToolResultBlock)]
        text = "\n".join(block.text for block in blocks if isinstance(block, TextBlock))

        if tool_uses:
            entry: Dict[str, Any] = {
                "role": "assistant",
                "tool_calls": [
                    {
                        "id": block.id,
                        "type": "function",
                        "function": {"name": block.name, "arguments": json.dumps(block.input, ensure_ascii=False)},
                    }
                    for block in tool_uses
                ],
            }
            if text.strip():
                entry["content"] = text
            converted.append(entry)
            continue

        if tool_results:
            for block in tool_results:
                converted.append(
                    {"role": "tool", "tool_call_id": block.tool_call_id, "content": block.content_text()}
                )
            continue

        if supports_images and any(isinstance(block, ImageBlock) for block in blocks):
            parts: List[Dict[str, Any]] = []
            for block in blocks:
                if isinstance(block, ImageBlock):
                    parts.append(
                        {"type": "image_url", "image_url": {"url": f"data:{block.media_type};base64,{block.data}"}}
                    )
                else:
                    parts.append({"type": "text", "text": _flatten_block(block)})
            converted.append({"role": message.role, "content": parts})
            continue

        flattened = [_flatten_block(block) for block in blocks]
        converted.append({"role": message.role, "content": "\n".join(part for part in flattened if part)})
    return converted


def _parse_arguments(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str) and raw.strip():
        try:
            parsed = json.loads(raw)
        except ValueError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


class OpenAICompatibleProvider(BaseProvider):
    """Adapter for OpenAI-compatible chat completion endpoints."""

    def __init__(
        self,
        name: ProviderName,
        api_key: str,
        default_model: str,
        *,
        base_url: Optional[str] = None,
        timeout: float,
        supports_images: bool = False,
    ):
        self.name = name
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout)
        self._default_model = default_model
        self._supports_images = supports_images

    async def execute(self, request_id: str, request: CanonicalRequest) -> DispatchResult:
        model = request.options.model or self._default_model
        settings = resolve_generation_settings(request, OPENAI_COMPATIBLE_DEFAULTS)
        payload: Dict[str, Any] = {
            "model": model,
            "messages": _build_messages(list(request.messages), request.system_prompt, self._supports_images),
            "temperature": settings.temperature,
            "top_p": settings.top_p,
            "max_tokens": settings.max_tokens,
        }
        payload.update(prepare_tools_payload(request.options, self.name, request_id, request.type))

        LOGGER.debug(
            "%s request %s: type=%s model=%s temperature=%s top_p=%s max_tokens=%s messages=%s",
            self.name.value,
            request_id,
            request.type,
            model,
            settings.temperature,
            settings.top_p,
            settings.max_tokens,
            len(payload["messages"]),
        )

        try:
            response = await self._client.chat.completions.create(**payload)
        except APIError as exc:
            raise ProviderError(
                code=getattr(exc, "code", None) or f"{self.name.value}_error",
                message=_error_message(exc),
                retryable=_is_retryable(exc),
                details={"status_code": getattr(exc, "status_code", None), "provider": self.name.value},
            ) from exc

        if not response.choices:
            raise ProviderError(
                code="malformed_response",
                message=f"{self.name.value} returned no choices for {request_id}",
                details={"provider": self.name.value},
            )

        choice = response.choices[0]
        stop_reason = normalize_stop_reason(choice.finish_reason)
        if stop_reason == StopReason.CONTENT_FILTER:
            raise ContentPolicyError(
                f"{self.name.value} blocked the response for {request_id}",
                details={"provider": self.name.value},
            )

        content = getattr(choice.message, "content", None) or None
        tool_calls = tuple(
            ToolCall(
                id=getattr(call, "id", None) or f"{self.name.value}_tool_{index}",
                name=call.function.name,
                input=_parse_arguments(call.function.arguments),
            )
            for index, call in enumerate(getattr(choice.message, "tool_calls", None) or [])
        )
        if tool_calls and stop_reason == StopReason.STOP and content is None:
            stop_reason = StopReason.TOOL_USE

        blocks: List[ContentBlock] = []
        if content:
            blocks.append(TextBlock(content))
        blocks.extend(ToolUseBlock(id=call.id, name=call.name, input=call.input) for call in tool_calls)

        usage = None
        if response.usage:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        return DispatchResult(
            content=content,
            stop_reason=stop_reason,
            tool_calls=tool_calls,
            raw_content_blocks=tuple(blocks),
            success=True,
            metadata=merge_metadata(
                request.metadata,
                {
                    "provider": self.name.value,
                    "model": response.model or model,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                    "requestId": request_id,
                    "messageId": response.id,
                    "usage": usage,
                },
            ),
        )

    async def aclose(self) -> None:
        await self._client.close()
