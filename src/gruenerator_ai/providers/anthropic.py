"""Adapter for the Anthropic messages API (direct and via AWS Bedrock)."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from anthropic import (
    APIConnectionError,
    APIError,
    APIStatusError,
    APITimeoutError,
    AsyncAnthropic,
    AsyncAnthropicBedrock,
)

from ..errors import ContentPolicyError, ProviderError
from .base import (
    BaseProvider,
    CanonicalRequest,
    DispatchResult,
    ProviderName,
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
from .profiles import ANTHROPIC_DEFAULTS, resolve_generation_settings
from .tools import prepare_tools_payload

LOGGER = logging.getLogger("gruenerator_ai.providers.anthropic")

_GATEWAY_STATUSES = {502, 503, 504, 529}


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
    return str(exc)


def _convert_block(block: ContentBlock) -> Dict[str, Any]:
    if isinstance(block, TextBlock):
        return {"type": "text", "text": block.text}
    if isinstance(block, ToolUseBlock):
        return {"type": "tool_use", "id": block.id, "name": block.name, "input": dict(block.input)}
    if isinstance(block, ToolResultBlock):
        return {"type": "tool_result", "tool_use_id": block.tool_call_id, "content": block.content_text()}
    if isinstance(block, ImageBlock):
        return {
            "type": "image",
            "source": {"type": "base64", "media_type": block.media_type, "data": block.data},
        }
    if isinstance(block, DocumentBlock):
        if block.data and block.media_type == "application/pdf":
            source: Dict[str, Any] = {"type": "base64", "media_type": block.media_type, "data": block.data}
        elif block.url:
            source = {"type": "url", "url": block.url}
        else:
            return {"type": "text", "text": block.text or f"[Dokument: {block.name or 'Unbekannt'}]"}
        document: Dict[str, Any] = {"type": "document", "source": source}
        if block.name:
            document["title"] = block.name
        return document
    raise TypeError(f"Unsupported content block: {block!r}")


def _build_messages(messages: List[Message]) -> List[Dict[str, Any]]:
    converted: List[Dict[str, Any]] = []
    for message in messages:
        # System text travels in the dedicated ``system`` field.
        if message.role == "system":
            continue
        role = "user" if message.role == "tool" else message.role
        if isinstance(message.content, str):
            converted.append({"role": role, "content": message.content})
        else:
            converted.append({"role": role, "content": [_convert_block(block) for block in message.content]})
    return converted


def _system_prompt(request: CanonicalRequest) -> Optional[str]:
    if request.system_prompt:
        return request.system_prompt
    system_texts = [message.text() for message in request.messages if message.role == "system"]
    return "\n\n".join(text for text in system_texts if text) or None


class AnthropicMessagesProvider(BaseProvider):
    """Adapter for Claude, either directly or through Bedrock."""

    def __init__(self, name: ProviderName, client: Any, default_model: str):
        self.name = name
        self._client = client
        self._default_model = default_model

    @classmethod
    def claude(cls, api_key: str, default_model: str, *, timeout: float) -> "AnthropicMessagesProvider":
        return cls(ProviderName.CLAUDE, AsyncAnthropic(api_key=api_key, timeout=timeout), default_model)

    @classmethod
    def bedrock(cls, model_id: str, *, aws_region: str, timeout: float) -> "AnthropicMessagesProvider":
        return cls(ProviderName.BEDROCK, AsyncAnthropicBedrock(aws_region=aws_region, timeout=timeout), model_id)

    async def execute(self, request_id: str, request: CanonicalRequest) -> DispatchResult:
        if not request.messages:
            raise ProviderError(code="invalid_request", message=f"No messages for request {request_id}")

        model = request.options.model or self._default_model
        settings = resolve_generation_settings(request, ANTHROPIC_DEFAULTS)
        payload: Dict[str, Any] = {
            "model": model,
            "messages": _build_messages(list(request.messages)),
            "max_tokens": settings.max_tokens,
            "temperature": settings.temperature,
        }
        # Claude rejects temperature and top_p together unless the caller insists.
        if request.options.top_p is not None:
            payload["top_p"] = request.options.top_p
        system = _system_prompt(request)
        if system:
            payload["system"] = system
        payload.update(prepare_tools_payload(request.options, self.name, request_id, request.type))

        LOGGER.debug(
            "%s request %s: type=%s model=%s max_tokens=%s messages=%s",
            self.name.value,
            request_id,
            request.type,
            model,
            settings.max_tokens,
            len(payload["messages"]),
        )

        try:
            response = await self._client.messages.create(**payload)
        except APIError as exc:
            raise ProviderError(
                code=f"{self.name.value}_error",
                message=_error_message(exc),
                retryable=_is_retryable(exc),
                details={"status_code": getattr(exc, "status_code", None), "provider": self.name.value},
            ) from exc

        if response.stop_reason == "refusal":
            raise ContentPolicyError(
                f"{self.name.value} refused request {request_id}",
                details={"provider": self.name.value},
            )

        blocks: List[ContentBlock] = []
        tool_calls: List[ToolCall] = []
        for block in response.content or []:
            block_type = getattr(block, "type", None)
            if block_type == "text":
                blocks.append(TextBlock(block.text))
            elif block_type == "tool_use":
                call = ToolCall(id=block.id, name=block.name, input=dict(block.input or {}))
                tool_calls.append(call)
                blocks.append(ToolUseBlock(id=call.id, name=call.name, input=call.input))

        text_parts = [block.text for block in blocks if isinstance(block, TextBlock)]
        usage = None
        if response.usage:
            usage = {
                "prompt_tokens": response.usage.input_tokens,
                "completion_tokens": response.usage.output_tokens,
                "total_tokens": response.usage.input_tokens + response.usage.output_tokens,
            }

        return DispatchResult(
            content="".join(text_parts) if text_parts else None,
            stop_reason=normalize_stop_reason(response.stop_reason),
            tool_calls=tuple(tool_calls),
            raw_content_blocks=tuple(blocks),
            success=True,
            metadata=merge_metadata(
                request.metadata,
                {
                    "provider": self.name.value,
                    "model": getattr(response, "model", None) or model,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                    "requestId": request_id,
                    "messageId": response.id,
                    "usage": usage,
                },
            ),
        )

    async def aclose(self) -> None:
        await self._client.close()
