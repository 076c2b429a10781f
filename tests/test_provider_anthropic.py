"""Tests for the Anthropic messages adapter."""

from types import SimpleNamespace

import httpx
import pytest

from anthropic import APIConnectionError, APIStatusError, RateLimitError

from gruenerator_ai.errors import ContentPolicyError, ProviderError
from gruenerator_ai.providers.anthropic import AnthropicMessagesProvider
from gruenerator_ai.providers.base import CanonicalRequest, ProviderName, RequestOptions, StopReason
from gruenerator_ai.providers.messages import DocumentBlock, ImageBlock, Message, TextBlock, ToolResultBlock


class _FakeMessages:
    def __init__(self, response=None, error_factory=None):
        self._response = response
        self._error_factory = error_factory
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self._error_factory is not None:
            raise self._error_factory()
        return self._response


class _FakeClient:
    def __init__(self, response=None, error_factory=None):
        self.messages = _FakeMessages(response, error_factory)
        self.closed = False

    async def close(self):
        self.closed = True


def _response(blocks, stop_reason="end_turn"):
    return SimpleNamespace(
        id="msg_1",
        model="claude-served",
        content=blocks,
        stop_reason=stop_reason,
        usage=SimpleNamespace(input_tokens=20, output_tokens=7),
    )


def _request(**kwargs):
    base = dict(type="chat", messages=(Message("user", "Hallo"),))
    base.update(kwargs)
    return CanonicalRequest(**base)


@pytest.mark.asyncio
async def test_anthropic_provider_success():
    client = _FakeClient(_response([SimpleNamespace(type="text", text="Antwort")]))
    provider = AnthropicMessagesProvider(ProviderName.CLAUDE, client, "claude-default")

    result = await provider.execute("req-1", _request(system_prompt="Du hilfst."))

    assert result.content == "Antwort"
    assert result.stop_reason == StopReason.STOP
    assert result.metadata["provider"] == "claude"
    assert result.metadata["model"] == "claude-served"
    assert result.metadata["usage"] == {"prompt_tokens": 20, "completion_tokens": 7, "total_tokens": 27}
    call = client.messages.calls[0]
    assert call["model"] == "claude-default"
    assert call["system"] == "Du hilfst."
    assert call["max_tokens"] == 8000
    assert call["temperature"] == 0.9
    assert "top_p" not in call

    await provider.aclose()
    assert client.closed is True


@pytest.mark.asyncio
async def test_anthropic_provider_tool_use():
    blocks = [
        SimpleNamespace(type="text", text="Ich suche."),
        SimpleNamespace(type="tool_use", id="tu_1", name="web_search", input={"query": "Klima"}),
    ]
    client = _FakeClient(_response(blocks, stop_reason="tool_use"))
    provider = AnthropicMessagesProvider(ProviderName.BEDROCK, client, "bedrock-model")
    options = RequestOptions(tools=({"name": "web_search", "input_schema": {"type": "object"}},), tool_choice="any")

    result = await provider.execute("req-2", _request(options=options))

    assert result.stop_reason == StopReason.TOOL_USE
    assert result.content == "Ich suche."
    assert [call.name for call in result.tool_calls] == ["web_search"]
    assert len(result.raw_content_blocks) == 2
    call = client.messages.calls[0]
    assert call["tools"][0]["input_schema"] == {"type": "object"}
    assert call["tool_choice"] == {"type": "any"}


@pytest.mark.asyncio
async def test_anthropic_provider_converts_blocks():
    client = _FakeClient(_response([SimpleNamespace(type="text", text="ok")]))
    provider = AnthropicMessagesProvider(ProviderName.CLAUDE, client, "claude-default")
    messages = (
        Message("system", "Systemtext"),
        Message(
            "user",
            (
                TextBlock("Lies das"),
                ImageBlock("image/png", "QUJD"),
                DocumentBlock(media_type="application/pdf", data="UERG", name="antrag.pdf"),
            ),
        ),
        Message("tool", (ToolResultBlock("tu_1", "Ergebnis"),)),
    )

    await provider.execute("req-3", _request(messages=messages, options=RequestOptions(top_p=0.7)))

    call = client.messages.calls[0]
    assert call["system"] == "Systemtext"
    assert call["top_p"] == 0.7
    user_blocks = call["messages"][0]["content"]
    assert user_blocks[1] == {"type": "image", "source": {"type": "base64", "media_type": "image/png", "data": "QUJD"}}
    assert user_blocks[2]["type"] == "document"
    assert user_blocks[2]["title"] == "antrag.pdf"
    assert call["messages"][1] == {
        "role": "user",
        "content": [{"type": "tool_result", "tool_use_id": "tu_1", "content": "Ergebnis"}],
    }


@pytest.mark.asyncio
async def test_anthropic_provider_refusal():
    client = _FakeClient(_response([], stop_reason="refusal"))
    provider = AnthropicMessagesProvider(ProviderName.CLAUDE, client, "claude-default")

    with pytest.raises(ContentPolicyError):
        await provider.execute("req-4", _request())


@pytest.mark.asyncio
async def test_anthropic_provider_empty_content_is_not_an_error():
    client = _FakeClient(_response([]))
    provider = AnthropicMessagesProvider(ProviderName.CLAUDE, client, "claude-default")

    result = await provider.execute("req-5", _request())

    assert result.content is None
    assert result.is_usable is False


@pytest.mark.asyncio
async def test_anthropic_provider_rate_limit_is_not_retried():
    def _error():
        response = httpx.Response(429, request=httpx.Request("POST", "https://api.anthropic.com"))
        return RateLimitError("slow down", response=response, body=None)

    provider = AnthropicMessagesProvider(ProviderName.CLAUDE, _FakeClient(error_factory=_error), "claude-default")

    with pytest.raises(ProviderError) as exc:
        await provider.execute("req-6", _request())

    assert exc.value.retryable is False
    assert exc.value.code == "claude_error"
    assert exc.value.details["status_code"] == 429


@pytest.mark.asyncio
async def test_anthropic_provider_connection_error_is_retryable():
    def _error():
        return APIConnectionError(request=httpx.Request("POST", "https://api.anthropic.com"))

    provider = AnthropicMessagesProvider(ProviderName.CLAUDE, _FakeClient(error_factory=_error), "claude-default")

    with pytest.raises(ProviderError) as exc:
        await provider.execute("req-6b", _request())

    assert exc.value.retryable is True


@pytest.mark.asyncio
async def test_anthropic_provider_overloaded_is_retryable():
    def _error():
        response = httpx.Response(529, request=httpx.Request("POST", "https://api.anthropic.com"))
        return APIStatusError("overloaded", response=response, body={"error": {"message": "Overloaded"}})

    provider = AnthropicMessagesProvider(ProviderName.CLAUDE, _FakeClient(error_factory=_error), "claude-default")

    with pytest.raises(ProviderError) as exc:
        await provider.execute("req-7", _request())

    assert exc.value.retryable is True
    assert exc.value.message == "Overloaded"


def test_factories_wire_sdk_clients(monkeypatch):
    created = []
    monkeypatch.setattr(
        "gruenerator_ai.providers.anthropic.AsyncAnthropic",
        lambda **kwargs: created.append(("direct", kwargs)) or SimpleNamespace(),
    )
    monkeypatch.setattr(
        "gruenerator_ai.providers.anthropic.AsyncAnthropicBedrock",
        lambda **kwargs: created.append(("bedrock", kwargs)) or SimpleNamespace(),
    )

    claude = AnthropicMessagesProvider.claude("key", "claude-default", timeout=30.0)
    bedrock = AnthropicMessagesProvider.bedrock("arn:model", aws_region="eu-central-1", timeout=30.0)

    assert claude.name is ProviderName.CLAUDE
    assert bedrock.name is ProviderName.BEDROCK
    assert created == [
        ("direct", {"api_key": "key", "timeout": 30.0}),
        ("bedrock", {"aws_region": "eu-central-1", "timeout": 30.0}),
    ]
