"""Provider abstractions for LLM integrations."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Protocol, Tuple

from ..errors import ConfigError, ProviderError, ResultContractError
from .messages import ContentBlock, Message, block_to_dict


class ProviderName(str, Enum):
    """Closed set of vendors the dispatcher can route to."""

    CLAUDE = "claude"
    MISTRAL = "mistral"
    IONOS = "ionos"
    LITELLM = "litellm"
    BEDROCK = "bedrock"
    TELEKOM = "telekom"

    @classmethod
    def parse(cls, value: Any) -> "ProviderName":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            raise ConfigError(f"Unknown provider: {value!r}") from exc


class StopReason:
    STOP = "stop"
    TOOL_USE = "tool_use"
    LENGTH = "length"
    CONTENT_FILTER = "content_filter"


_STOP_REASON_ALIASES = {
    "end_turn": StopReason.STOP,
    "stop_sequence": StopReason.STOP,
    "stop": StopReason.STOP,
    "tool_use": StopReason.TOOL_USE,
    "tool_calls": StopReason.TOOL_USE,
    "tool-calls": StopReason.TOOL_USE,
    "function_call": StopReason.TOOL_USE,
    "max_tokens": StopReason.LENGTH,
    "length": StopReason.LENGTH,
    "model_length": StopReason.LENGTH,
    "content_filter": StopReason.CONTENT_FILTER,
    "content-filter": StopReason.CONTENT_FILTER,
    "refusal": StopReason.CONTENT_FILTER,
}


def normalize_stop_reason(value: Optional[str]) -> str:
    """Translate a vendor finish reason into the canonical vocabulary."""
    if not value:
        return StopReason.STOP
    return _STOP_REASON_ALIASES.get(str(value).lower(), str(value).lower())


def merge_metadata(caller: Optional[Mapping[str, Any]], provider_fields: Mapping[str, Any]) -> Dict[str, Any]:
    """Overlay provider fields on caller metadata; ``None`` never erases a caller key."""
    merged = dict(caller or {})
    merged.update({key: value for key, value in provider_fields.items() if value is not None})
    return merged


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _as_number(value: Any, cast):
    if value is None or isinstance(value, bool):
        return None
    try:
        return cast(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class RequestOptions:
    """Caller-declared generation options."""

    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None
    model: Optional[str] = None
    use_pro_mode: bool = False
    use_ultra_mode: bool = False
    use_bedrock: bool = False
    tools: Tuple[Mapping[str, Any], ...] = ()
    tool_choice: Any = None

    @classmethod
    def from_dict(cls, raw: Optional[Mapping[str, Any]]) -> "RequestOptions":
        raw = raw or {}
        tools = raw.get("tools")
        return cls(
            temperature=_as_number(raw.get("temperature"), float),
            max_tokens=_as_number(raw.get("max_tokens", raw.get("maxTokens")), int),
            top_p=_as_number(raw.get("top_p", raw.get("topP")), float),
            model=raw.get("model") or None,
            use_pro_mode=_as_bool(raw.get("useProMode", raw.get("use_pro_mode", False))),
            use_ultra_mode=_as_bool(raw.get("useUltraMode", raw.get("use_ultra_mode", False))),
            use_bedrock=_as_bool(raw.get("useBedrock", raw.get("use_bedrock", False))),
            tools=tuple(item for item in tools if isinstance(item, Mapping)) if isinstance(tools, (list, tuple)) else (),
            tool_choice=raw.get("tool_choice", raw.get("toolChoice")),
        )


@dataclass(frozen=True)
class CanonicalRequest:
    """Vendor-agnostic description of one logical AI call."""

    type: str
    messages: Tuple[Message, ...]
    options: RequestOptions = field(default_factory=RequestOptions)
    system_prompt: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    explicit_provider: Optional[ProviderName] = None

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "CanonicalRequest":
        """Build a request from the worker's ``data`` object."""
        request_type = data.get("type")
        if not isinstance(request_type, str) or not request_type.strip():
            raise ValueError("request data must include a non-empty 'type'")

        raw_messages = data.get("messages")
        if isinstance(raw_messages, list) and raw_messages:
            messages = tuple(Message.from_dict(item) for item in raw_messages if isinstance(item, Mapping))
        elif isinstance(data.get("prompt"), str) and data["prompt"].strip():
            messages = (Message(role="user", content=data["prompt"]),)
        else:
            raise ValueError("request data must include 'messages' or a non-empty 'prompt'")

        provider = data.get("provider")
        metadata = data.get("metadata")
        return cls(
            type=request_type,
            messages=messages,
            options=RequestOptions.from_dict(data.get("options") if isinstance(data.get("options"), Mapping) else None),
            system_prompt=data.get("systemPrompt") or None,
            metadata=dict(metadata) if isinstance(metadata, Mapping) else {},
            explicit_provider=ProviderName.parse(provider) if provider else None,
        )

    def with_model(self, model: Optional[str]) -> "CanonicalRequest":
        return replace(self, options=replace(self.options, model=model))


@dataclass(frozen=True)
class ProviderSelection:
    provider: ProviderName
    model: str
    use_bedrock: bool = False


@dataclass(frozen=True)
class ToolCall:
    id: str
    name: str
    input: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DispatchResult:
    """Normalized outcome of one completed dispatch."""

    content: Optional[str]
    stop_reason: str = StopReason.STOP
    tool_calls: Tuple[ToolCall, ...] = ()
    raw_content_blocks: Tuple[ContentBlock, ...] = ()
    success: bool = True
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_usable(self) -> bool:
        has_text = isinstance(self.content, str) and self.content.strip() != ""
        return has_text or self.stop_reason == StopReason.TOOL_USE

    def validate(self) -> "DispatchResult":
        """Raise when the content/tool-call invariant does not hold."""
        if self.stop_reason == StopReason.TOOL_USE:
            if not self.tool_calls:
                raise ResultContractError("stop_reason is tool_use but no tool calls were returned")
        elif self.content is None:
            raise ResultContractError(f"stop_reason is {self.stop_reason!r} but content is missing")
        return self

    def with_metadata(self, **fields: Any) -> "DispatchResult":
        return replace(self, metadata=merge_metadata(self.metadata, fields))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "stop_reason": self.stop_reason,
            "tool_calls": [
                {"id": call.id, "name": call.name, "input": dict(call.input)} for call in self.tool_calls
            ]
            or None,
            "raw_content_blocks": [block_to_dict(block) for block in self.raw_content_blocks],
            "success": self.success,
            "metadata": dict(self.metadata),
        }


class BaseProvider(Protocol):
    """Protocol describing provider behaviour."""

    name: ProviderName

    async def execute(self, request_id: str, request: CanonicalRequest) -> DispatchResult:
        """Send one request to the vendor and normalize its reply."""

    async def aclose(self) -> None:  # pragma: no cover - optional hook
        """Optional async cleanup hook."""


__all__ = [
    "BaseProvider",
    "CanonicalRequest",
    "DispatchResult",
    "ProviderError",
    "ProviderName",
    "ProviderSelection",
    "RequestOptions",
    "StopReason",
    "ToolCall",
    "merge_metadata",
    "normalize_stop_reason",
]
