"""Wire protocol for the connection channel.

Inbound client messages are a closed union discriminated by ``action``;
outbound server events are a closed union discriminated by ``type``. Keys are
camelCase on the wire.
"""

import json
from datetime import UTC, datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

UNKNOWN_ACTION_MESSAGE = 'Unknown action. Use "chat" or "ping"'


class InputError(ValueError):
    """Inbound message that cannot be processed; ``str(e)`` is safe to send to the client."""


def _now() -> datetime:
    return datetime.now(UTC)


# Inbound
class PingAction(BaseModel):
    """Liveness probe, answered with a pong."""

    action: Literal["ping"]

    class Config:
        extra = "ignore"


class ChatAction(BaseModel):
    """User message that starts a turn."""

    action: Literal["chat"]
    message: str = Field(..., min_length=1)
    system_prompt: str | None = Field(default=None, alias="systemPrompt")
    temperature: float | None = Field(default=None, ge=0.0, le=1.0)
    max_tokens: int | None = Field(default=None, alias="maxTokens", gt=0, le=8192)

    class Config:
        extra = "ignore"
        populate_by_name = True


InboundMessage = Annotated[ChatAction | PingAction, Field(discriminator="action")]

_inbound_adapter: TypeAdapter[ChatAction | PingAction] = TypeAdapter(InboundMessage)


def parse_inbound(raw: str | bytes | dict[str, Any]) -> ChatAction | PingAction:
    """Parse a raw inbound message.

    Raises:
        InputError: If the message is not JSON, names an unknown action, or
            has invalid fields.
    """
    if isinstance(raw, dict):
        data = raw
    else:
        try:
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8")
            data = json.loads(raw) if raw else {}
        except UnicodeDecodeError as e:
            raise InputError("Message must be UTF-8 encoded") from e
        except (json.JSONDecodeError, RecursionError) as e:
            raise InputError("Invalid JSON message") from e

    if not isinstance(data, dict):
        raise InputError("Message must be a JSON object")

    try:
        return _inbound_adapter.validate_python(data)
    except ValidationError as e:
        raise InputError(_describe_validation_error(e)) from e


def _describe_validation_error(error: ValidationError) -> str:
    first = error.errors()[0]
    if first["type"] in ("union_tag_invalid", "union_tag_not_found"):
        return UNKNOWN_ACTION_MESSAGE

    location = ".".join(str(part) for part in first["loc"][1:]) or "message"
    if first["type"] == "missing":
        return f"Missing required field: {location}"
    return f"Invalid field '{location}': {first['msg']}"


# Outbound
class OutboundEventBase(BaseModel):
    timestamp: datetime = Field(default_factory=_now)

    class Config:
        populate_by_name = True

    def to_json(self) -> str:
        """Serialize for the wire (camelCase keys, unset optionals omitted)."""
        return self.model_dump_json(by_alias=True, exclude_none=True)


class StreamEvent(OutboundEventBase):
    """One text delta from the model."""

    type: Literal["stream"] = "stream"
    chunk: str


class ToolCallEvent(OutboundEventBase):
    """A tool is about to run."""

    type: Literal["tool_call"] = "tool_call"
    tool: str
    tool_use_id: str = Field(alias="toolUseId")
    input: dict[str, Any]


class ToolResultEvent(OutboundEventBase):
    """A tool finished running."""

    type: Literal["tool_result"] = "tool_result"
    tool: str
    tool_use_id: str = Field(alias="toolUseId")
    status: Literal["success", "error"]
    preview: str
    output: Any = None


class CompleteEvent(OutboundEventBase):
    """End of a turn."""

    type: Literal["complete"] = "complete"
    stop_reason: str | None = Field(default=None, alias="stopReason")
    steps: int | None = None
    duration: int | None = None
    response_length: int | None = Field(default=None, alias="responseLength")
    input_tokens: int | None = Field(default=None, alias="inputTokens")
    output_tokens: int | None = Field(default=None, alias="outputTokens")
    total_tokens: int | None = Field(default=None, alias="totalTokens")


class ErrorEvent(OutboundEventBase):
    """A request or turn was rejected or aborted."""

    type: Literal["error"] = "error"
    error: str


class PongEvent(OutboundEventBase):
    type: Literal["pong"] = "pong"


OutboundEvent = StreamEvent | ToolCallEvent | ToolResultEvent | CompleteEvent | ErrorEvent | PongEvent


# HTTP invocation endpoint
class InvocationRequest(BaseModel):
    """Request body for the HTTP invocation endpoint."""

    prompt: str | None = None
    stream: bool = True
    system_prompt: str | None = Field(default=None, alias="systemPrompt")
    temperature: float | None = Field(default=None, ge=0.0, le=1.0)
    max_tokens: int | None = Field(default=None, alias="maxTokens", gt=0, le=8192)

    class Config:
        populate_by_name = True


class InvocationUsage(BaseModel):
    input_tokens: int = Field(default=0, alias="inputTokens")
    output_tokens: int = Field(default=0, alias="outputTokens")
    total_tokens: int = Field(default=0, alias="totalTokens")

    class Config:
        populate_by_name = True


class InvocationResponse(BaseModel):
    """Non-streaming response of the HTTP invocation endpoint."""

    response: str
    status: Literal["success", "error"]
    steps: int
    duration: int
    usage: InvocationUsage
    error: str | None = None

    class Config:
        populate_by_name = True


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    timestamp: datetime
    version: str


class PingResponse(BaseModel):
    """Runtime health: busy while any turn is in flight."""

    status: Literal["Healthy", "HealthyBusy"]
    time_of_last_update: int
