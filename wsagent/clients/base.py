"""Model gateway interface."""

from collections.abc import AsyncIterator
from typing import Protocol

from wsagent.models.llm import InferenceParams, LLMMessage, LLMToolDefinition, ModelEvent


class ModelStreamError(Exception):
    """The model ended its stream with an error or produced a malformed stream."""


class ModelGateway(Protocol):
    """Streaming chat-completion capability.

    The model is external; implementations translate a provider's stream into
    ``ModelEvent`` values.
    """

    def stream_completion(
        self,
        messages: list[LLMMessage],
        tools: list[LLMToolDefinition],
        system_prompt: str,
        params: InferenceParams,
    ) -> AsyncIterator[ModelEvent]:
        """Stream one model response.

        The stream is finite and ends with exactly one ``Stop`` event. A
        failure to reach the model is raised once, before any event.
        """
        ...

    def validate_message_tokens(self, message: str) -> None:
        """Raise ValueError if a user message exceeds the per-message token limit."""
        ...
