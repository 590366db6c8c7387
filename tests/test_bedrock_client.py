"""Tests for the Bedrock model gateway."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock, patch

import anthropic
import httpx
import pytest

from wsagent.clients.base import ModelStreamError
from wsagent.clients.bedrock import BedrockClient, BedrockConfig, normalize_stop_reason, to_wire_messages
from wsagent.models.llm import (
    InferenceParams,
    LLMMessage,
    LLMToolDefinition,
    LLMUsage,
    Stop,
    TextBlock,
    TextDelta,
    ToolCallInputDelta,
    ToolCallStart,
    ToolResultBlock,
    ToolUseBlock,
)

REQUEST = httpx.Request("POST", "https://bedrock-runtime.us-east-1.amazonaws.com/model/invoke")


def message_start(input_tokens: int = 12):
    usage = SimpleNamespace(input_tokens=input_tokens)
    return SimpleNamespace(type="message_start", message=SimpleNamespace(usage=usage))


def block_start(index: int, block_type: str = "text", **fields):
    block = SimpleNamespace(type=block_type, **fields)
    return SimpleNamespace(type="content_block_start", index=index, content_block=block)


def text_delta(index: int, text: str):
    delta = SimpleNamespace(type="text_delta", text=text)
    return SimpleNamespace(type="content_block_delta", index=index, delta=delta)


def json_delta(index: int, partial_json: str):
    delta = SimpleNamespace(type="input_json_delta", partial_json=partial_json)
    return SimpleNamespace(type="content_block_delta", index=index, delta=delta)


def block_stop(index: int):
    return SimpleNamespace(type="content_block_stop", index=index)


def message_delta(stop_reason: str | None, output_tokens: int = 3):
    return SimpleNamespace(
        type="message_delta",
        delta=SimpleNamespace(stop_reason=stop_reason),
        usage=SimpleNamespace(output_tokens=output_tokens),
    )


class FakeStream:
    """Raw SDK stream over a fixed list of events."""

    def __init__(self, events):
        self.events = events
        self.closed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for event in self.events:
            yield event

    async def close(self):
        self.closed = True


async def collect(iterator):
    return [event async for event in iterator]


@pytest.fixture
def sdk_client():
    """Mock AsyncAnthropicBedrock client."""
    client = Mock()
    client.messages.create = AsyncMock()
    return client


@pytest.fixture
def bedrock_client(sdk_client):
    """BedrockClient over a mocked SDK client, without a tokenizer."""
    with patch("wsagent.clients.bedrock.tiktoken.encoding_for_model", return_value=Mock()):
        client = BedrockClient(BedrockConfig(model="test-model", retry_delay=0.0), client=sdk_client)
    client.tokenizer = None
    return client


class TestTranslateStream:
    """Tests for translating raw stream events into gateway events."""

    @pytest.mark.asyncio
    async def test_text_stream(self, bedrock_client):
        """Test a plain text response."""
        raw = [
            message_start(12),
            block_start(0),
            text_delta(0, "Hi"),
            text_delta(0, " there"),
            block_stop(0),
            message_delta("end_turn", 3),
            SimpleNamespace(type="message_stop"),
        ]

        events = await collect(bedrock_client.translate_stream(FakeStream(raw)))

        assert events == [
            TextDelta(text="Hi"),
            TextDelta(text=" there"),
            Stop(reason="end_turn", usage=LLMUsage(input_tokens=12, output_tokens=3)),
        ]

    @pytest.mark.asyncio
    async def test_tool_use_stream(self, bedrock_client):
        """Test text followed by a tool call with streamed input."""
        raw = [
            message_start(),
            block_start(0),
            text_delta(0, "Checking."),
            block_stop(0),
            block_start(1, "tool_use", id="toolu_1", name="calculate"),
            json_delta(1, '{"expression": '),
            json_delta(1, '"2+2"}'),
            block_stop(1),
            message_delta("tool_use"),
        ]

        events = await collect(bedrock_client.translate_stream(FakeStream(raw)))

        assert events[:4] == [
            TextDelta(text="Checking."),
            ToolCallStart(id="toolu_1", name="calculate"),
            ToolCallInputDelta(id="toolu_1", partial_json='{"expression": '),
            ToolCallInputDelta(id="toolu_1", partial_json='"2+2"}'),
        ]
        assert events[-1].reason == "tool_use"

    @pytest.mark.asyncio
    async def test_empty_text_deltas_skipped(self, bedrock_client):
        """Test that empty text deltas are not forwarded."""
        raw = [message_start(), block_start(0), text_delta(0, ""), message_delta("end_turn")]

        events = await collect(bedrock_client.translate_stream(FakeStream(raw)))

        assert [type(event) for event in events] == [Stop]

    @pytest.mark.asyncio
    async def test_input_delta_for_unknown_block(self, bedrock_client):
        """Test that input for a block that never started is a stream error."""
        raw = [message_start(), json_delta(3, "{}")]

        with pytest.raises(ModelStreamError):
            await collect(bedrock_client.translate_stream(FakeStream(raw)))

    @pytest.mark.asyncio
    async def test_missing_stop_reason_is_error(self, bedrock_client):
        """Test that a stream that never reports a stop reason ends with Stop(error)."""
        raw = [message_start(), block_start(0), text_delta(0, "Hi")]

        events = await collect(bedrock_client.translate_stream(FakeStream(raw)))

        assert events[-1].reason == "error"


class TestStopReasons:
    """Tests for stop reason normalization."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("end_turn", "end_turn"),
            ("tool_use", "tool_use"),
            ("max_tokens", "max_tokens"),
            ("stop_sequence", "end_turn"),
            ("pause_turn", "end_turn"),
            ("refusal", "end_turn"),
            (None, "error"),
        ],
    )
    def test_normalize(self, raw, expected):
        """Test mapping of provider stop reasons."""
        assert normalize_stop_reason(raw) == expected


class TestWireMessages:
    """Tests for converting history into Messages API format."""

    def test_tool_result_becomes_user_message(self):
        """Test that tool outcomes travel as user tool_result blocks."""
        history = [
            LLMMessage(role="user", content=[TextBlock(text="2+2?")]),
            LLMMessage(role="assistant", content=[ToolUseBlock(id="toolu_1", name="calculate", input={"e": 1})]),
            LLMMessage(
                role="tool_result",
                content=[ToolResultBlock(tool_use_id="toolu_1", status="error", payload={"error": "bad"})],
            ),
        ]

        wire = to_wire_messages(history)

        assert [message["role"] for message in wire] == ["user", "assistant", "user"]
        assert wire[1]["content"][0] == {"type": "tool_use", "id": "toolu_1", "name": "calculate", "input": {"e": 1}}
        assert wire[2]["content"][0] == {
            "type": "tool_result",
            "tool_use_id": "toolu_1",
            "content": '{"error": "bad"}',
            "is_error": True,
        }

    def test_adjacent_same_role_messages_merged(self):
        """Test that a user message after a tool result is merged into one user turn."""
        history = [
            LLMMessage(role="user", content=[TextBlock(text="Go")]),
            LLMMessage(role="assistant", content=[ToolUseBlock(id="toolu_1", name="calculate", input={})]),
            LLMMessage(role="tool_result", content=[ToolResultBlock(tool_use_id="toolu_1", payload=1)]),
            LLMMessage(role="user", content=[TextBlock(text="And then?")]),
        ]

        wire = to_wire_messages(history)

        assert [message["role"] for message in wire] == ["user", "assistant", "user"]
        assert [block["type"] for block in wire[2]["content"]] == ["tool_result", "text"]

    def test_empty_text_blocks_dropped(self):
        """Test that empty text and empty messages are not sent."""
        history = [
            LLMMessage(role="user", content=[TextBlock(text="Hi")]),
            LLMMessage(role="assistant", content=[TextBlock(text="")]),
        ]

        assert to_wire_messages(history) == [{"role": "user", "content": [{"type": "text", "text": "Hi"}]}]


class TestStreamCompletion:
    """Tests for streaming requests."""

    @pytest.mark.asyncio
    async def test_request_parameters(self, bedrock_client, sdk_client):
        """Test the request sent to Bedrock and the translated events."""
        stream = FakeStream([message_start(5), block_start(0), text_delta(0, "Hi"), message_delta("end_turn", 1)])
        sdk_client.messages.create.return_value = stream
        tool = LLMToolDefinition(name="calculate", description="Math", input_schema={"type": "object"})

        events = await collect(
            bedrock_client.stream_completion(
                [LLMMessage(role="user", content=[TextBlock(text="Hello")])],
                [tool],
                "You are helpful",
                InferenceParams(temperature=0.2),
            )
        )

        assert events == [TextDelta(text="Hi"), Stop(reason="end_turn", usage=LLMUsage(5, 1))]
        kwargs = sdk_client.messages.create.call_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["stream"] is True
        assert kwargs["system"] == "You are helpful"
        assert kwargs["temperature"] == 0.2
        assert kwargs["max_tokens"] == 2048
        assert kwargs["messages"] == [{"role": "user", "content": [{"type": "text", "text": "Hello"}]}]
        assert kwargs["tools"] == [{"name": "calculate", "description": "Math", "input_schema": {"type": "object"}}]
        assert stream.closed

    @pytest.mark.asyncio
    async def test_no_tools_omits_tools_param(self, bedrock_client, sdk_client):
        """Test that an empty catalog sends no tools."""
        sdk_client.messages.create.return_value = FakeStream([message_delta("end_turn")])

        await collect(
            bedrock_client.stream_completion(
                [LLMMessage(role="user", content=[TextBlock(text="Hello")])], [], "System", InferenceParams()
            )
        )

        assert "tools" not in sdk_client.messages.create.call_args.kwargs

    @pytest.mark.asyncio
    async def test_server_error_retried(self, bedrock_client, sdk_client):
        """Test that 5xx failures establishing the stream are retried."""
        error = anthropic.InternalServerError(
            "Service unavailable", response=httpx.Response(500, request=REQUEST), body=None
        )
        sdk_client.messages.create.side_effect = [error, FakeStream([message_delta("end_turn")])]

        events = await collect(
            bedrock_client.stream_completion(
                [LLMMessage(role="user", content=[TextBlock(text="Hello")])], [], "System", InferenceParams()
            )
        )

        assert events[-1].reason == "end_turn"
        assert sdk_client.messages.create.await_count == 2

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, bedrock_client, sdk_client):
        """Test that 4xx failures surface immediately."""
        sdk_client.messages.create.side_effect = anthropic.BadRequestError(
            "Bad request", response=httpx.Response(400, request=REQUEST), body=None
        )

        with pytest.raises(anthropic.BadRequestError):
            await collect(
                bedrock_client.stream_completion(
                    [LLMMessage(role="user", content=[TextBlock(text="Hello")])], [], "System", InferenceParams()
                )
            )

        assert sdk_client.messages.create.await_count == 1

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, bedrock_client, sdk_client):
        """Test that the last server error is raised after max retries."""
        sdk_client.messages.create.side_effect = anthropic.InternalServerError(
            "Service unavailable", response=httpx.Response(500, request=REQUEST), body=None
        )

        with pytest.raises(anthropic.InternalServerError):
            await collect(
                bedrock_client.stream_completion(
                    [LLMMessage(role="user", content=[TextBlock(text="Hello")])], [], "System", InferenceParams()
                )
            )

        assert sdk_client.messages.create.await_count == 3


class TestTokenValidation:
    """Tests for message token validation."""

    def test_validate_message_tokens_within_limit(self, bedrock_client):
        """Test that messages within token limit pass validation."""
        bedrock_client.tokenizer = Mock()
        bedrock_client.tokenizer.encode.return_value = ["token"] * 500

        bedrock_client.validate_message_tokens("Short message")

    def test_validate_message_tokens_exceeds_limit(self, bedrock_client):
        """Test that messages exceeding token limit raise ValueError."""
        bedrock_client.tokenizer = Mock()
        bedrock_client.tokenizer.encode.return_value = ["token"] * 5000

        with pytest.raises(ValueError, match="Message exceeds token limit"):
            bedrock_client.validate_message_tokens("Very long message")

    def test_validate_message_tokens_fallback_without_tokenizer(self, bedrock_client):
        """Test token validation fallback when tokenizer is unavailable."""
        bedrock_client.validate_message_tokens("a" * 15_000)

        with pytest.raises(ValueError, match="Message exceeds token limit"):
            bedrock_client.validate_message_tokens("a" * 17_000)
