"""Provider contract and adapter exports."""

from .anthropic import AnthropicMessagesProvider
from .base import (
    BaseProvider,
    CanonicalRequest,
    DispatchResult,
    ProviderError,
    ProviderName,
    ProviderSelection,
    RequestOptions,
    StopReason,
    ToolCall,
)
from .messages import Message, ToolDefinition
from .openai import OpenAICompatibleProvider

__all__ = [
    "AnthropicMessagesProvider",
    "BaseProvider",
    "CanonicalRequest",
    "DispatchResult",
    "Message",
    "OpenAICompatibleProvider",
    "ProviderError",
    "ProviderName",
    "ProviderSelection",
    "RequestOptions",
    "StopReason",
    "ToolCall",
    "ToolDefinition",
]
