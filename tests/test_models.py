"""Tests for canonical requests, messages and dispatch results."""

import pytest

from gruenerator_ai.errors import ConfigError, ResultContractError
from gruenerator_ai.providers.base import (
    CanonicalRequest,
    DispatchResult,
    ProviderName,
    RequestOptions,
    StopReason,
    ToolCall,
    merge_metadata,
    normalize_stop_reason,
)
from gruenerator_ai.providers.messages import (
    DocumentBlock,
    ImageBlock,
    Message,
    TextBlock,
    ToolDefinition,
    ToolResultBlock,
    ToolUseBlock,
    block_to_dict,
    parse_block,
)


def test_request_from_payload_with_prompt_only():
    request = CanonicalRequest.from_payload(
        {
            "type": "presse",
            "prompt": "Schreib eine Pressemitteilung",
            "systemPrompt": "Du bist Pressesprecherin.",
            "options": {"maxTokens": 500, "useProMode": "true", "topP": "0.8"},
            "metadata": {"userId": "u-1"},
        }
    )

    assert request.type == "presse"
    assert request.messages == (Message(role="user", content="Schreib eine Pressemitteilung"),)
    assert request.system_prompt == "Du bist Pressesprecherin."
    assert request.options.max_tokens == 500
    assert request.options.top_p == 0.8
    assert request.options.use_pro_mode is True
    assert request.metadata == {"userId": "u-1"}
    assert request.explicit_provider is None


def test_request_from_payload_with_blocks_and_provider():
    request = CanonicalRequest.from_payload(
        {
            "type": "chat",
            "provider": "Telekom",
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": "Was steht hier?"},
                        {"type": "image", "source": {"media_type": "image/png", "data": "data:image/png;base64,QUJD"}},
                    ],
                }
            ],
        }
    )

    blocks = request.messages[0].content
    assert blocks[0] == TextBlock("Was steht hier?")
    assert blocks[1] == ImageBlock(media_type="image/png", data="QUJD")
    assert request.explicit_provider is ProviderName.TELEKOM


@pytest.mark.parametrize(
    "payload",
    [
        {"prompt": "hi"},
        {"type": "", "prompt": "hi"},
        {"type": "chat"},
        {"type": "chat", "prompt": "   "},
    ],
)
def test_request_from_payload_rejects_incomplete_data(payload):
    with pytest.raises(ValueError):
        CanonicalRequest.from_payload(payload)


def test_request_from_payload_rejects_unknown_provider():
    with pytest.raises(ConfigError):
        CanonicalRequest.from_payload({"type": "chat", "prompt": "hi", "provider": "openai"})


def test_with_model_returns_copy():
    request = CanonicalRequest(type="chat", messages=(Message("user", "hi"),), options=RequestOptions(model="a"))

    updated = request.with_model("b")

    assert updated.options.model == "b"
    assert request.options.model == "a"


def test_message_rejects_unknown_role():
    with pytest.raises(ValueError):
        Message(role="moderator", content="hi")


def test_parse_block_variants():
    assert parse_block({"type": "tool_use", "id": "t1", "name": "search", "input": {"q": "x"}}) == ToolUseBlock(
        id="t1", name="search", input={"q": "x"}
    )
    assert parse_block({"type": "tool_result", "tool_use_id": "t1", "content": "ok"}) == ToolResultBlock(
        tool_call_id="t1", content="ok"
    )
    document = parse_block({"type": "document", "source": {"url": "https://x/doc.pdf", "name": "doc.pdf"}})
    assert document == DocumentBlock(url="https://x/doc.pdf", name="doc.pdf")
    with pytest.raises(ValueError):
        parse_block({"type": "audio"})
    with pytest.raises(ValueError):
        parse_block({"type": "image", "source": {}})


def test_block_to_dict_keeps_wire_shape():
    assert block_to_dict(ToolResultBlock("t1", {"hits": 2})) == {
        "type": "tool_result",
        "tool_use_id": "t1",
        "content": {"hits": 2},
    }
    assert ToolResultBlock("t1", {"hits": 2}).content_text() == '{"hits": 2}'


def test_message_text_ignores_non_text_blocks():
    message = Message("user", (TextBlock("a"), ImageBlock("image/png", "QUJD"), TextBlock("b")))

    assert message.text() == "a\nb"
    assert Message("user", "").blocks == ()


def test_tool_definition_accepts_openai_and_anthropic_shapes():
    openai_tool = ToolDefinition.from_dict(
        {"type": "function", "function": {"name": "search", "parameters": {"properties": {"q": {}}}}}
    )
    anthropic_tool = ToolDefinition.from_dict({"name": "lookup", "input_schema": {"properties": {"id": {}}}})

    assert openai_tool.parameter_names == ("q",)
    assert anthropic_tool.parameter_names == ("id",)
    with pytest.raises(ValueError):
        ToolDefinition.from_dict({"description": "no name"})


def test_normalize_stop_reason():
    assert normalize_stop_reason("end_turn") == StopReason.STOP
    assert normalize_stop_reason("tool_calls") == StopReason.TOOL_USE
    assert normalize_stop_reason("max_tokens") == StopReason.LENGTH
    assert normalize_stop_reason(None) == StopReason.STOP
    assert normalize_stop_reason("pause_turn") == "pause_turn"


def test_merge_metadata_never_erases_caller_keys():
    merged = merge_metadata({"userId": "u", "usage": "caller"}, {"provider": "mistral", "usage": None})

    assert merged == {"userId": "u", "usage": "caller", "provider": "mistral"}


def test_result_usability():
    assert DispatchResult(content="hi").is_usable is True
    assert DispatchResult(content="   ").is_usable is False
    assert DispatchResult(content=None).is_usable is False
    tool_result = DispatchResult(
        content=None,
        stop_reason=StopReason.TOOL_USE,
        tool_calls=(ToolCall(id="t1", name="search"),),
    )
    assert tool_result.is_usable is True


def test_result_validate_enforces_contract():
    with pytest.raises(ResultContractError):
        DispatchResult(content=None, stop_reason=StopReason.TOOL_USE).validate()
    with pytest.raises(ResultContractError):
        DispatchResult(content=None, stop_reason=StopReason.STOP).validate()
    result = DispatchResult(content="", stop_reason=StopReason.LENGTH)
    assert result.validate() is result


def test_result_to_dict():
    result = DispatchResult(
        content=None,
        stop_reason=StopReason.TOOL_USE,
        tool_calls=(ToolCall(id="t1", name="search", input={"q": "grün"}),),
        raw_content_blocks=(ToolUseBlock(id="t1", name="search", input={"q": "grün"}),),
        metadata={"provider": "claude"},
    ).with_metadata(fallbackUsed=True)

    payload = result.to_dict()

    assert payload["tool_calls"] == [{"id": "t1", "name": "search", "input": {"q": "grün"}}]
    assert payload["raw_content_blocks"][0]["type"] == "tool_use"
    assert payload["metadata"] == {"provider": "claude", "fallbackUsed": True}
    assert DispatchResult(content="x").to_dict()["tool_calls"] is None
