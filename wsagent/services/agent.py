"""Streaming agent loop: model calls and tool executions for one turn."""

import json
import time
from typing import Any

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode, Tracer

from wsagent.channels import ConnectionChannel, safe_send
from wsagent.clients.base import ModelGateway, ModelStreamError
from wsagent.clients.bedrock import get_bedrock_client
from wsagent.config import DEFAULT_SYSTEM_PROMPT, get_settings
from wsagent.models.llm import (
    AgentLoopResult,
    ContentBlock,
    InferenceParams,
    LLMMessage,
    LLMUsage,
    Stop,
    StopReason,
    TextBlock,
    TextDelta,
    ToolCallInputDelta,
    ToolCallStart,
    ToolUseBlock,
)
from wsagent.models.messages import CompleteEvent, ErrorEvent, StreamEvent, ToolCallEvent, ToolResultEvent
from wsagent.models.session import Session
from wsagent.tools.registry import ToolsRegistry, get_tools_registry
from wsagent.utils.logging import get_logger

logger = get_logger(__name__)

PREVIEW_LENGTH = 200


def make_preview(payload: Any) -> str:
    """Short text rendering of a tool payload for client notifications."""
    text = payload if isinstance(payload, str) else json.dumps(payload, default=str)
    return text[:PREVIEW_LENGTH]


def _parse_tool_input(tool_name: str, fragments: list[str]) -> dict[str, Any]:
    raw = "".join(fragments)
    if not raw.strip():
        return {}

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ModelStreamError(f"Malformed input for tool {tool_name}: {e}") from e

    if not isinstance(parsed, dict):
        raise ModelStreamError(f"Input for tool {tool_name} is not a JSON object")
    return parsed


class AgentLoop:
    """Drives one turn: request, stream, execute tools, repeat until a stop condition."""

    def __init__(
        self,
        gateway: ModelGateway,
        registry: ToolsRegistry,
        max_iterations: int = 10,
        tool_timeout: float | None = 30.0,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        tracer: Tracer | None = None,
    ):
        """Initialize the agent loop.

        Args:
            gateway: Streaming model gateway
            registry: Tools offered to the model
            max_iterations: Maximum model requests per turn
            tool_timeout: Seconds before a tool execution is abandoned
            system_prompt: Default system prompt when a message carries none
            tracer: Tracer for turn and tool spans, the global provider's if omitted
        """
        self.gateway = gateway
        self.registry = registry
        self.max_iterations = max_iterations
        self.tool_timeout = tool_timeout
        self.system_prompt = system_prompt
        self.tracer = tracer or trace.get_tracer(__name__)

    async def run_turn(
        self,
        session: Session,
        channel: ConnectionChannel,
        user_text: str,
        system_prompt: str | None = None,
        params: InferenceParams | None = None,
    ) -> AgentLoopResult:
        """Run one turn for a session that the caller has already marked busy.

        Events are pushed to ``channel`` as they happen and the turn ends with
        either a ``complete`` or an ``error`` event. The session is released in
        every case, including cancellation.

        Args:
            session: Session owning the history
            channel: Channel of the session's connection
            user_text: User message that starts the turn
            system_prompt: Overrides the default system prompt for this turn
            params: Inference parameters for every request of this turn

        Returns:
            Aggregated text, stop reason and usage of the turn
        """
        start_time = time.monotonic()
        system_prompt = system_prompt or self.system_prompt
        params = params or InferenceParams()
        usage = LLMUsage()
        response_parts: list[str] = []
        iterations = 0
        stop_reason = "end_turn"
        error: str | None = None

        session.history.append(LLMMessage(role="user", content=[TextBlock(text=user_text)]))
        logger.info(f"Starting turn {session.turn_count} for {session.connection_id}: {user_text[:50]}...")

        with self.tracer.start_as_current_span(
            "agent.turn",
            attributes={"session.id": session.connection_id, "agent.turn_number": session.turn_count},
        ) as span:
            try:
                while True:
                    if iterations >= self.max_iterations:
                        logger.warning(
                            f"Turn for {session.connection_id} reached max iterations ({self.max_iterations})"
                        )
                        stop_reason = "max_iterations"
                        break

                    iterations += 1
                    logger.debug(f"Agent loop iteration {iterations}/{self.max_iterations}")

                    message, reason = await self._request(session, channel, system_prompt, params, usage)
                    response_parts.append(message.text)

                    tool_uses = message.tool_uses
                    if reason != "tool_use" or not tool_uses:
                        stop_reason = reason
                        break

                    logger.info(f"Model requested {len(tool_uses)} tools")
                    session.history.append(await self._execute_tools(channel, tool_uses))

            except Exception as e:
                error = str(e) or type(e).__name__
                logger.error(
                    f"Turn for {session.connection_id} failed after {iterations} iterations: {e}", exc_info=True
                )
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, error))
            finally:
                session.end_turn()

            span.set_attribute("agent.iterations", iterations)
            span.set_attribute("agent.stop_reason", "error" if error is not None else stop_reason)
            span.set_attribute("llm.usage.input_tokens", usage.input_tokens)
            span.set_attribute("llm.usage.output_tokens", usage.output_tokens)

        text = "".join(response_parts)
        duration_ms = int((time.monotonic() - start_time) * 1000)

        if error is not None:
            await safe_send(channel, ErrorEvent(error=error))
            return AgentLoopResult(
                text=text,
                stop_reason="error",
                iterations=iterations,
                duration_ms=duration_ms,
                usage=usage,
                error=error,
            )

        logger.info(
            f"Turn for {session.connection_id} completed: {stop_reason}, {iterations} iterations, {duration_ms}ms"
        )
        await safe_send(
            channel,
            CompleteEvent(
                stop_reason=stop_reason,
                steps=iterations,
                duration=duration_ms,
                response_length=len(text),
                input_tokens=usage.input_tokens,
                output_tokens=usage.output_tokens,
                total_tokens=usage.total_tokens,
            ),
        )
        return AgentLoopResult(
            text=text, stop_reason=stop_reason, iterations=iterations, duration_ms=duration_ms, usage=usage
        )

    async def _request(
        self,
        session: Session,
        channel: ConnectionChannel,
        system_prompt: str,
        params: InferenceParams,
        usage: LLMUsage,
    ) -> tuple[LLMMessage, StopReason]:
        """Make one model request, forwarding text as it streams.

        The assistant message is appended to history before returning. If the
        request fails after text was streamed, that text is still recorded.
        """
        text_parts: list[str] = []
        tool_names: dict[str, str] = {}
        tool_fragments: dict[str, list[str]] = {}
        stop: Stop | None = None

        try:
            events = self.gateway.stream_completion(
                list(session.history), self.registry.catalog(), system_prompt, params
            )
            async for event in events:
                match event:
                    case TextDelta(text=text):
                        text_parts.append(text)
                        await safe_send(channel, StreamEvent(chunk=text))
                    case ToolCallStart(id=tool_id, name=name):
                        tool_names[tool_id] = name
                        tool_fragments[tool_id] = []
                    case ToolCallInputDelta(id=tool_id, partial_json=fragment):
                        if tool_id not in tool_fragments:
                            raise ModelStreamError(f"Input fragment for unknown tool call {tool_id}")
                        tool_fragments[tool_id].append(fragment)
                    case Stop():
                        stop = event

            if stop is None:
                raise ModelStreamError("Model stream ended without a stop event")
            usage.add(stop.usage)
            if stop.reason == "error":
                raise ModelStreamError("Model stream ended with an error")

            content: list[ContentBlock] = [TextBlock(text="".join(text_parts))] if text_parts else []
            if stop.reason == "tool_use":
                content.extend(
                    ToolUseBlock(id=tool_id, name=name, input=_parse_tool_input(name, tool_fragments[tool_id]))
                    for tool_id, name in tool_names.items()
                )
            elif tool_names:
                logger.warning(f"Dropping {len(tool_names)} tool calls from a response that stopped with {stop.reason}")

        except Exception:
            if text_parts:
                session.history.append(LLMMessage(role="assistant", content=[TextBlock(text="".join(text_parts))]))
            raise

        message = LLMMessage(role="assistant", content=content)
        session.history.append(message)
        return message, stop.reason

    async def _execute_tools(self, channel: ConnectionChannel, tool_uses: list[ToolUseBlock]) -> LLMMessage:
        """Execute tools sequentially in the order the model emitted them."""
        outcomes: list[ContentBlock] = []

        for tool_use in tool_uses:
            await safe_send(channel, ToolCallEvent(tool=tool_use.name, tool_use_id=tool_use.id, input=tool_use.input))
            logger.debug(f"Executing tool: {tool_use.name} with input: {tool_use.input}")

            with self.tracer.start_as_current_span(
                f"tool {tool_use.name}", attributes={"tool.name": tool_use.name, "tool.use_id": tool_use.id}
            ) as span:
                outcome = await self.registry.execute(
                    tool_use.id, tool_use.name, tool_use.input, timeout=self.tool_timeout
                )
                span.set_attribute("tool.status", outcome.status)
                if outcome.is_error:
                    span.set_status(Status(StatusCode.ERROR, str(outcome.payload["error"])))
            logger.info(f"Tool {tool_use.name} ({tool_use.id}) finished with status {outcome.status}")

            await safe_send(
                channel,
                ToolResultEvent(
                    tool=tool_use.name,
                    tool_use_id=tool_use.id,
                    status=outcome.status,
                    preview=make_preview(outcome.payload),
                    output=outcome.payload,
                ),
            )
            outcomes.append(outcome)

        return LLMMessage(role="tool_result", content=outcomes)


_agent_loop: AgentLoop | None = None


def get_agent_loop() -> AgentLoop:
    """Get or create the agent loop instance."""
    global _agent_loop
    if _agent_loop is None:
        settings = get_settings()
        _agent_loop = AgentLoop(
            gateway=get_bedrock_client(),
            registry=get_tools_registry(),
            max_iterations=settings.max_iterations,
            tool_timeout=settings.tool_timeout_seconds,
            system_prompt=settings.system_prompt,
        )
    return _agent_loop
