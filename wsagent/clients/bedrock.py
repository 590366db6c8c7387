"""Claude on AWS Bedrock client with rate limiting and error handling."""

import asyncio
import json
import time
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import tiktoken
from anthropic import APIError, AsyncAnthropicBedrock
from limits import parse
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter

from wsagent.clients.base import ModelStreamError
from wsagent.config import get_settings
from wsagent.models.llm import (
    ContentBlock,
    InferenceParams,
    LLMMessage,
    LLMToolDefinition,
    LLMUsage,
    ModelEvent,
    Stop,
    StopReason,
    TextBlock,
    TextDelta,
    ToolCallInputDelta,
    ToolCallStart,
    ToolResultBlock,
    ToolUseBlock,
)
from wsagent.utils.logging import get_logger

T = TypeVar("T")

logger = get_logger(__name__)

# Provider stop reasons that end a turn normally
_END_TURN_ALIASES = {"stop_sequence", "pause_turn", "refusal"}


@dataclass
class BedrockConfig:
    """Configuration for the Bedrock client."""

    model: str = "us.anthropic.claude-sonnet-4-5-20250929-v1:0"
    aws_region: str = "us-east-1"
    max_tokens: int = 2048
    temperature: float = 0.7
    max_retries: int = 3
    retry_delay: float = 1.0
    request_timeout: float = 600.0

    max_message_tokens: int = 4000  # Maximum tokens per user message


class BedrockRateLimiter:
    """Client-side request and token rate limiter."""

    def __init__(self, requests_per_minute: int = 50, tokens_per_minute: int = 40_000):
        """Initialize rate limiter.

        Args:
            requests_per_minute: Maximum requests per minute
            tokens_per_minute: Maximum tokens per minute
        """
        self.storage = MemoryStorage()
        self.limiter = MovingWindowRateLimiter(self.storage)

        self.request_limit = parse(f"{requests_per_minute}/minute")
        self.token_limit = parse(f"{tokens_per_minute}/minute")

    async def check_rate_limit(self, estimated_tokens: int, identifier: str = "bedrock") -> None:
        """Wait until the request fits within the rate limits."""
        logger.debug(f"Checking rate limit for {estimated_tokens} tokens, identifier: {identifier}")

        if not self.limiter.hit(self.request_limit, identifier):
            await self._wait_for_window(self.request_limit, identifier, "Request")

        token_identifier = f"{identifier}_tokens"
        if not self.limiter.hit(self.token_limit, token_identifier, cost=estimated_tokens):
            await self._wait_for_window(self.token_limit, token_identifier, "Token")

    async def _wait_for_window(self, limit: Any, identifier: str, kind: str) -> None:
        window_stats = self.limiter.get_window_stats(limit, identifier)
        if window_stats:
            wait_time = max(0.0, window_stats.reset_time - time.time())
            if wait_time > 0:
                logger.warning(f"{kind} rate limit exceeded, waiting {wait_time:.2f}s")
                await asyncio.sleep(wait_time)


def normalize_stop_reason(stop_reason: str | None) -> StopReason:
    """Map a provider stop reason onto the gateway's stop reasons."""
    if stop_reason in ("end_turn", "tool_use", "max_tokens"):
        return stop_reason
    if stop_reason is None:
        return "error"
    if stop_reason not in _END_TURN_ALIASES:
        logger.warning(f"Unrecognized stop reason '{stop_reason}', treating as end_turn")
    return "end_turn"


def _to_wire_block(block: ContentBlock) -> dict[str, Any] | None:
    if isinstance(block, TextBlock):
        # The API rejects empty text blocks
        return {"type": "text", "text": block.text} if block.text.strip() else None
    if isinstance(block, ToolUseBlock):
        return {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input}
    if isinstance(block, ToolResultBlock):
        return {
            "type": "tool_result",
            "tool_use_id": block.tool_use_id,
            "content": json.dumps(block.payload, default=str),
            "is_error": block.is_error,
        }
    return None


def to_wire_messages(messages: list[LLMMessage]) -> list[dict[str, Any]]:
    """Convert history into Messages API format.

    Tool results travel as user messages; adjacent messages with the same
    wire role are merged.
    """
    wire_messages: list[dict[str, Any]] = []
    for message in messages:
        role = "assistant" if message.role == "assistant" else "user"
        blocks = [wire for wire in (_to_wire_block(block) for block in message.content) if wire is not None]
        if not blocks:
            continue

        if wire_messages and wire_messages[-1]["role"] == role:
            wire_messages[-1]["content"].extend(blocks)
        else:
            wire_messages.append({"role": role, "content": blocks})

    return wire_messages


class BedrockClient:
    """Streaming model gateway backed by Claude on AWS Bedrock."""

    tokenizer: tiktoken.Encoding | None = None
    client: AsyncAnthropicBedrock
    config: BedrockConfig
    rate_limiter: BedrockRateLimiter

    def __init__(self, config: BedrockConfig | None = None, client: AsyncAnthropicBedrock | None = None):
        """Initialize Bedrock client.

        Args:
            config: Client configuration
            client: Preconfigured SDK client (defaults to one built from config)
        """
        self.config = config or BedrockConfig()
        self.client = client or AsyncAnthropicBedrock(
            aws_region=self.config.aws_region,
            timeout=self.config.request_timeout,
            max_retries=0,  # Retries are handled by _request_with_retries
        )
        self.rate_limiter = BedrockRateLimiter()

        try:
            # Close approximation for Claude
            self.tokenizer = tiktoken.encoding_for_model("gpt-4")
        except Exception:
            self.tokenizer = None

    async def stream_completion(
        self,
        messages: list[LLMMessage],
        tools: list[LLMToolDefinition],
        system_prompt: str,
        params: InferenceParams,
    ) -> AsyncIterator[ModelEvent]:
        """Stream one model response as gateway events.

        Args:
            messages: Conversation history
            tools: Tool catalog offered to the model
            system_prompt: System prompt
            params: Inference parameters, config defaults where unset

        Yields:
            Text deltas, tool call starts and input deltas, then one Stop
        """
        wire_messages = to_wire_messages(messages)

        estimated_tokens = self._estimate_tokens(wire_messages, system_prompt)
        logger.debug(f"Estimated tokens: {estimated_tokens}")
        await self.rate_limiter.check_rate_limit(estimated_tokens)

        request_params: dict[str, Any] = {
            "model": self.config.model,
            "max_tokens": params.max_tokens or self.config.max_tokens,
            "temperature": params.temperature if params.temperature is not None else self.config.temperature,
            "system": system_prompt,
            "messages": wire_messages,
            "stream": True,
        }
        if tools:
            request_params["tools"] = [tool.model_dump() for tool in tools]

        logger.debug(f"Streaming from {request_params['model']} with {len(wire_messages)} messages, {len(tools)} tools")
        stream = await self._request_with_retries(lambda: self.client.messages.create(**request_params))

        try:
            async for event in self.translate_stream(stream):
                yield event
        finally:
            await stream.close()

    async def translate_stream(self, raw_events: AsyncIterable[Any]) -> AsyncIterator[ModelEvent]:
        """Translate raw Messages API stream events into gateway events."""
        usage = LLMUsage()
        tool_ids_by_index: dict[int, str] = {}
        stop_reason: str | None = None

        async for event in raw_events:
            if event.type == "message_start":
                usage.input_tokens = event.message.usage.input_tokens or 0

            elif event.type == "content_block_start":
                block = event.content_block
                if block.type == "tool_use":
                    tool_ids_by_index[event.index] = block.id
                    yield ToolCallStart(id=block.id, name=block.name)

            elif event.type == "content_block_delta":
                delta = event.delta
                if delta.type == "text_delta":
                    if delta.text:
                        yield TextDelta(text=delta.text)
                elif delta.type == "input_json_delta":
                    tool_id = tool_ids_by_index.get(event.index)
                    if tool_id is None:
                        raise ModelStreamError(f"Tool input delta for unknown content block {event.index}")
                    yield ToolCallInputDelta(id=tool_id, partial_json=delta.partial_json)

            elif event.type == "message_delta":
                if event.delta.stop_reason:
                    stop_reason = event.delta.stop_reason
                if event.usage:
                    usage.output_tokens = event.usage.output_tokens or 0

        logger.debug(f"Stream finished - stop reason: {stop_reason}, usage: {usage}")
        yield Stop(reason=normalize_stop_reason(stop_reason), usage=usage)

    async def _request_with_retries(self, call: Callable[[], Awaitable[T]]) -> T:
        """Execute a Bedrock request with retry logic."""
        for attempt in range(self.config.max_retries):
            try:
                return await call()

            except APIError as e:
                status_code = getattr(e, "status_code", None)
                last_attempt = attempt >= self.config.max_retries - 1

                if status_code == 429:  # Rate limit exceeded
                    retry_after = 60
                    response = getattr(e, "response", None)
                    if response is not None and hasattr(response, "headers"):
                        retry_after = int(response.headers.get("retry-after", 60))

                    if retry_after < 120 and not last_attempt:
                        logger.warning(f"Bedrock throttled, retrying in {retry_after}s")
                        await asyncio.sleep(retry_after)
                        continue

                elif (status_code is None or status_code >= 500) and not last_attempt:
                    # Connection or server error, retry with exponential backoff
                    logger.warning(f"Bedrock request failed ({e}), retrying (attempt {attempt + 1})")
                    await asyncio.sleep(self.config.retry_delay * (2**attempt))
                    continue

                # Re-raise if not retryable or max retries reached
                raise

        raise Exception(f"Failed to complete request after {self.config.max_retries} attempts")

    def _estimate_tokens(self, messages: list[dict[str, Any]], system_prompt: str) -> int:
        """Estimate token count for rate limiting.

        Args:
            messages: Wire-format messages
            system_prompt: System prompt

        Returns:
            Estimated token count
        """
        text_content = system_prompt

        for message in messages:
            for block in message["content"]:
                if block["type"] == "text":
                    text_content += block["text"]
                elif block["type"] == "tool_result":
                    text_content += block["content"]
                elif block["type"] == "tool_use":
                    text_content += json.dumps(block["input"])

        return self.estimate_message_tokens(text_content)

    def estimate_message_tokens(self, message: str) -> int:
        """Estimate token count for a single message.

        Args:
            message: Message content

        Returns:
            Estimated token count
        """
        try:
            return len(self.tokenizer.encode(message)) if self.tokenizer else len(message) // 4
        except Exception:
            # Fallback: roughly 4 characters per token
            return len(message) // 4

    def validate_message_tokens(self, message: str) -> None:
        """Validate that a message doesn't exceed token limits.

        Args:
            message: Message content

        Raises:
            ValueError: If message exceeds token limit
        """
        token_count = self.estimate_message_tokens(message)
        if token_count > self.config.max_message_tokens:
            raise ValueError(
                f"Message exceeds token limit: {token_count} tokens > {self.config.max_message_tokens} limit"
            )


_bedrock_client: BedrockClient | None = None


def get_bedrock_client() -> BedrockClient:
    """Get or create Bedrock client instance."""
    global _bedrock_client
    if _bedrock_client is None:
        settings = get_settings()
        _bedrock_client = BedrockClient(
            BedrockConfig(
                model=settings.model_id,
                aws_region=settings.aws_region,
                max_tokens=settings.default_max_tokens,
                temperature=settings.default_temperature,
            )
        )
    return _bedrock_client
