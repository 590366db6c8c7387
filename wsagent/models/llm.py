"""LLM-related data models and types (provider-agnostic)."""

from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel

StopReason = Literal["end_turn", "tool_use", "max_tokens", "error"]


# Content block types
class TextBlock(BaseModel):
    """Text content block."""

    type: Literal["text"] = "text"
    text: str

    class Config:
        extra = "ignore"


class ToolUseBlock(BaseModel):
    """A request by the model to run a tool."""

    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: dict[str, Any]

    class Config:
        extra = "ignore"


class ToolResultBlock(BaseModel):
    """Outcome of a tool invocation, bound to the invocation id."""

    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    status: Literal["success", "error"] = "success"
    payload: Any = None

    @property
    def is_error(self) -> bool:
        return self.status == "error"


ContentBlock = TextBlock | ToolUseBlock | ToolResultBlock


class LLMMessage(BaseModel):
    """One turn in a conversation."""

    role: Literal["user", "assistant", "tool_result"]
    content: list[ContentBlock]

    @property
    def text(self) -> str:
        """Concatenated text of all text blocks."""
        return "".join(block.text for block in self.content if isinstance(block, TextBlock))

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        return [block for block in self.content if isinstance(block, ToolUseBlock)]


class LLMToolDefinition(BaseModel):
    """Tool catalog entry offered to the model."""

    name: str
    description: str
    input_schema: dict[str, Any]


@dataclass
class InferenceParams:
    """Per-request inference parameters."""

    temperature: float | None = None
    max_tokens: int | None = None


@dataclass
class LLMUsage:
    """Token usage information from LLM provider."""

    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def add(self, other: "LLMUsage | None") -> None:
        """Accumulate another usage record into this one."""
        if other is None:
            return
        self.input_tokens += other.input_tokens
        self.output_tokens += other.output_tokens


# Model stream events
@dataclass
class TextDelta:
    text: str


@dataclass
class ToolCallStart:
    id: str
    name: str


@dataclass
class ToolCallInputDelta:
    id: str
    partial_json: str


@dataclass
class Stop:
    reason: StopReason
    usage: LLMUsage | None = None


ModelEvent = TextDelta | ToolCallStart | ToolCallInputDelta | Stop


@dataclass
class AgentLoopResult:
    """Result from executing one turn of the agent loop."""

    text: str
    stop_reason: str
    iterations: int
    duration_ms: int
    usage: LLMUsage = field(default_factory=LLMUsage)
    error: str | None = None
