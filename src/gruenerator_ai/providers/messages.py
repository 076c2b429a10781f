"""Canonical chat messages and content blocks."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple, Union

ROLES = ("user", "assistant", "system", "tool")


@dataclass(frozen=True)
class TextBlock:
    text: str


@dataclass(frozen=True)
class ToolUseBlock:
    id: str
    name: str
    input: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolResultBlock:
    tool_call_id: str
    content: Any = ""

    def content_text(self) -> str:
        if isinstance(self.content, str):
            return self.content
        return json.dumps(self.content, ensure_ascii=False)


@dataclass(frozen=True)
class ImageBlock:
    media_type: str
    data: str
    name: Optional[str] = None


@dataclass(frozen=True)
class DocumentBlock:
    media_type: Optional[str] = None
    data: Optional[str] = None
    url: Optional[str] = None
    name: Optional[str] = None
    text: Optional[str] = None


ContentBlock = Union[TextBlock, ToolUseBlock, ToolResultBlock, ImageBlock, DocumentBlock]


def _strip_data_url(data: str) -> str:
    if data.startswith("data:") and "," in data:
        return data.split(",", 1)[1]
    return data


def parse_block(raw: Mapping[str, Any]) -> ContentBlock:
    """Build a content block from its wire representation."""
    block_type = raw.get("type")
    source = raw.get("source") if isinstance(raw.get("source"), Mapping) else {}
    if block_type == "text":
        return TextBlock(text=str(raw.get("text") or ""))
    if block_type == "tool_use":
        tool_input = raw.get("input")
        return ToolUseBlock(
            id=str(raw.get("id") or ""),
            name=str(raw.get("name") or ""),
            input=dict(tool_input) if isinstance(tool_input, Mapping) else {},
        )
    if block_type == "tool_result":
        call_id = raw.get("tool_use_id") or raw.get("tool_call_id") or raw.get("toolCallId") or raw.get("id") or ""
        return ToolResultBlock(tool_call_id=str(call_id), content=raw.get("content", ""))
    if block_type == "image":
        data = source.get("data") or raw.get("data")
        if not data:
            raise ValueError("image block requires base64 data")
        return ImageBlock(
            media_type=str(source.get("media_type") or raw.get("media_type") or "image/png"),
            data=_strip_data_url(str(data)),
            name=source.get("name") or raw.get("name"),
        )
    if block_type == "document":
        return DocumentBlock(
            media_type=source.get("media_type") or raw.get("media_type"),
            data=source.get("data") or raw.get("data"),
            url=source.get("url") or raw.get("url"),
            name=source.get("name") or raw.get("name"),
            text=source.get("text") or raw.get("text"),
        )
    raise ValueError(f"Unsupported content block type: {block_type!r}")


def block_to_dict(block: ContentBlock) -> Dict[str, Any]:
    """Inverse of :func:`parse_block` for result serialization."""
    if isinstance(block, TextBlock):
        return {"type": "text", "text": block.text}
    if isinstance(block, ToolUseBlock):
        return {"type": "tool_use", "id": block.id, "name": block.name, "input": dict(block.input)}
    if isinstance(block, ToolResultBlock):
        return {"type": "tool_result", "tool_use_id": block.tool_call_id, "content": block.content}
    if isinstance(block, ImageBlock):
        source = {"type": "base64", "media_type": block.media_type, "data": block.data}
        if block.name:
            source["name"] = block.name
        return {"type": "image", "source": source}
    if isinstance(block, DocumentBlock):
        source = {
            key: value
            for key, value in (
                ("media_type", block.media_type),
                ("data", block.data),
                ("url", block.url),
                ("name", block.name),
                ("text", block.text),
            )
            if value is not None
        }
        return {"type": "document", "source": source}
    raise TypeError(f"Unsupported content block: {block!r}")


@dataclass(frozen=True)
class Message:
    """One turn of a conversation."""

    role: str
    content: Union[str, Tuple[ContentBlock, ...]]

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            raise ValueError(f"Unsupported message role: {self.role!r}")

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Message":
        role = str(raw.get("role") or "")
        content = raw.get("content")
        if isinstance(content, (list, tuple)):
            blocks = tuple(parse_block(item) for item in content if isinstance(item, Mapping))
            return cls(role=role, content=blocks)
        return cls(role=role, content="" if content is None else str(content))

    @property
    def blocks(self) -> Tuple[ContentBlock, ...]:
        if isinstance(self.content, str):
            return (TextBlock(self.content),) if self.content else ()
        return self.content

    def text(self) -> str:
        """Concatenated text blocks; non-text blocks are ignored."""
        if isinstance(self.content, str):
            return self.content
        return "\n".join(block.text for block in self.content if isinstance(block, TextBlock))


@dataclass(frozen=True)
class ToolDefinition:
    """Vendor-neutral function definition."""

    name: str
    description: str = ""
    parameters: Dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "ToolDefinition":
        body = raw.get("function") if raw.get("type") == "function" and isinstance(raw.get("function"), Mapping) else raw
        name = body.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ValueError("tool definition requires a name")
        parameters = body.get("parameters") or body.get("input_schema") or {"type": "object", "properties": {}}
        if not isinstance(parameters, Mapping):
            raise ValueError(f"tool {name!r} has non-object parameters")
        return cls(name=name, description=str(body.get("description") or ""), parameters=dict(parameters))

    @property
    def parameter_names(self) -> Tuple[str, ...]:
        properties = self.parameters.get("properties")
        if isinstance(properties, Mapping):
            return tuple(properties)
        return ()
