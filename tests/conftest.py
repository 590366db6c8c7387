"""Shared fixtures and fakes for the test suite."""

from typing import Any

import pytest
from pydantic import BaseModel

from wsagent.channels import ChannelGoneError
from wsagent.models.llm import (
    InferenceParams,
    LLMMessage,
    LLMToolDefinition,
    LLMUsage,
    ModelEvent,
    Stop,
    StopReason,
    TextDelta,
    ToolCallInputDelta,
    ToolCallStart,
)
from wsagent.models.messages import OutboundEvent
from wsagent.models.session import Session
from wsagent.services.agent import AgentLoop
from wsagent.tools.base import ToolDefinition
from wsagent.tools.calculate import create_calculate_tool
from wsagent.tools.registry import ToolsRegistry
from wsagent.tools.weather import create_get_weather_tool

Script = list[ModelEvent | Exception] | Exception


def text_response(*chunks: str, reason: StopReason = "end_turn", usage: LLMUsage | None = None) -> list[ModelEvent]:
    """Model response that streams ``chunks`` and stops."""
    return [*(TextDelta(text=chunk) for chunk in chunks), Stop(reason=reason, usage=usage)]


def tool_response(
    tool_id: str, name: str, *fragments: str, text: str | None = None, usage: LLMUsage | None = None
) -> list[ModelEvent]:
    """Model response that requests one tool, with input streamed as ``fragments``."""
    events: list[ModelEvent] = [TextDelta(text=text)] if text else []
    events.append(ToolCallStart(id=tool_id, name=name))
    events.extend(ToolCallInputDelta(id=tool_id, partial_json=fragment) for fragment in fragments)
    events.append(Stop(reason="tool_use", usage=usage))
    return events


class FakeGateway:
    """Model gateway that replays scripted responses, one per request.

    A script is a list of events, where an exception item is raised at that
    point of the stream, or an exception raised before any event.
    """

    def __init__(self, responses: list[Script] | None = None, default: Script | None = None, max_message_chars=4000):
        self.responses = list(responses or [])
        self.default = default
        self.max_message_chars = max_message_chars
        self.calls: list[dict[str, Any]] = []

    async def stream_completion(
        self,
        messages: list[LLMMessage],
        tools: list[LLMToolDefinition],
        system_prompt: str,
        params: InferenceParams,
    ):
        self.calls.append(
            {"messages": list(messages), "tools": tools, "system_prompt": system_prompt, "params": params}
        )
        script = self.responses.pop(0) if self.responses else self.default
        if script is None:
            raise AssertionError("FakeGateway ran out of scripted responses")
        if isinstance(script, Exception):
            raise script

        for item in script:
            if isinstance(item, Exception):
                raise item
            yield item

    def validate_message_tokens(self, message: str) -> None:
        if len(message) > self.max_message_chars:
            raise ValueError(f"Message exceeds token limit: {len(message)} tokens > {self.max_message_chars} limit")


class RecordingChannel:
    """Channel that records sent events, or behaves as a departed peer."""

    def __init__(self, connection_id: str = "conn-1", gone: bool = False):
        self.connection_id = connection_id
        self.gone = gone
        self.closed = False
        self.events: list[OutboundEvent] = []

    async def send(self, event: OutboundEvent) -> None:
        if self.gone:
            raise ChannelGoneError(f"Connection {self.connection_id} is gone")
        self.events.append(event)

    async def close(self) -> None:
        self.closed = True

    @property
    def types(self) -> list[str]:
        return [event.type for event in self.events]

    def of_type(self, event_type: str) -> list[OutboundEvent]:
        return [event for event in self.events if event.type == event_type]


class FailingInput(BaseModel):
    reason: str = "boom"


def create_failing_tool() -> ToolDefinition:
    async def failing_handler(params: FailingInput) -> dict[str, Any]:
        raise RuntimeError(params.reason)

    return ToolDefinition(
        name="explode",
        description="Always fails",
        input_schema_class=FailingInput,
        handler=failing_handler,
    )


@pytest.fixture
def registry() -> ToolsRegistry:
    """Locked registry with the calculator, mock weather and a failing tool."""
    tools_registry = ToolsRegistry([create_calculate_tool(), create_get_weather_tool(), create_failing_tool()])
    tools_registry.lock()
    return tools_registry


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def session() -> Session:
    return Session(connection_id="conn-1")


@pytest.fixture
def make_agent(registry):
    """Factory for an agent loop over a scripted gateway."""

    def _make_agent(*responses: Script, default: Script | None = None, **kwargs) -> AgentLoop:
        gateway = FakeGateway(list(responses), default=default)
        return AgentLoop(gateway=gateway, registry=registry, system_prompt="You are a test assistant.", **kwargs)

    return _make_agent
