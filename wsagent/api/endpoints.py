"""API endpoints for the streaming agent service."""

import asyncio
from collections.abc import AsyncIterator
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, WebSocket
from fastapi.responses import JSONResponse, StreamingResponse

from wsagent import __version__
from wsagent.channels.queue import QueueChannel
from wsagent.channels.websocket import WebSocketChannel
from wsagent.models.llm import AgentLoopResult, InferenceParams
from wsagent.models.messages import (
    HealthResponse,
    InvocationRequest,
    InvocationResponse,
    InvocationUsage,
    PingResponse,
)
from wsagent.services.agent import AgentLoop, get_agent_loop
from wsagent.services.dispatcher import MessageDispatcher
from wsagent.services.session_manager import InMemorySessionManager, get_session_manager
from wsagent.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    agent: AgentLoop = Depends(get_agent_loop),
    session_manager: InMemorySessionManager = Depends(get_session_manager),
) -> None:
    """Connection channel endpoint: one session per WebSocket connection."""
    await websocket.accept()
    session = session_manager.open_session(attached=True)
    channel = WebSocketChannel(websocket, session.connection_id)
    dispatcher = MessageDispatcher(agent)
    turn: asyncio.Task | None = None

    async def handle_message(raw: str | bytes) -> None:
        nonlocal turn
        task = await dispatcher.handle(session, channel, raw)
        if task is not None:
            turn = task

    try:
        await channel.serve(handle_message)
    finally:
        if turn is not None and not turn.done():
            logger.info(f"Cancelling in-flight turn for {session.connection_id}")
            turn.cancel()
            await asyncio.gather(turn, return_exceptions=True)
        await channel.close()
        session_manager.close_session(session.connection_id)


@router.post("/invocations", response_model=InvocationResponse, response_model_exclude_none=True, tags=["Agent"])
async def invoke_agent(
    request: InvocationRequest,
    agent: AgentLoop = Depends(get_agent_loop),
    session_manager: InMemorySessionManager = Depends(get_session_manager),
):
    """Run one turn on an ephemeral session.

    Streams events as Server-Sent Events when ``stream`` is true, otherwise
    returns the aggregated response once the turn ends.
    """
    if not request.prompt:
        return JSONResponse(status_code=400, content={"error": "Missing required field: prompt", "status": "error"})

    session = session_manager.open_session()
    session.try_begin_turn()
    channel = QueueChannel(session.connection_id)
    params = InferenceParams(temperature=request.temperature, max_tokens=request.max_tokens)
    logger.info(f"Invocation {session.connection_id} (stream: {request.stream}): {request.prompt[:50]}...")

    async def run_turn() -> AgentLoopResult:
        try:
            return await agent.run_turn(
                session, channel, request.prompt, system_prompt=request.system_prompt, params=params
            )
        finally:
            await channel.close()
            session_manager.close_session(session.connection_id)

    if request.stream:
        task = asyncio.create_task(run_turn())

        async def event_stream() -> AsyncIterator[str]:
            try:
                async for event in channel.events():
                    yield f"data: {event.to_json()}\n\n"
            finally:
                if not task.done():
                    task.cancel()

        return StreamingResponse(
            event_stream(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    result = await run_turn()
    if result.error:
        return JSONResponse(status_code=500, content={"error": result.error, "status": "error"})

    return InvocationResponse(
        response=result.text,
        status="success",
        steps=result.iterations,
        duration=result.duration_ms,
        usage=InvocationUsage(
            input_tokens=result.usage.input_tokens,
            output_tokens=result.usage.output_tokens,
            total_tokens=result.usage.total_tokens,
        ),
    )


@router.get("/ping", response_model=PingResponse, tags=["Health"])
async def ping(session_manager: InMemorySessionManager = Depends(get_session_manager)) -> PingResponse:
    """Runtime health check, busy while any turn is running."""
    busy = session_manager.get_busy_session_count() > 0
    return PingResponse(
        status="HealthyBusy" if busy else "Healthy",
        time_of_last_update=int(session_manager.get_last_update().timestamp()),
    )


@router.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(UTC),
        version=__version__,
    )
