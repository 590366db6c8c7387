"""Connection channel over a FastAPI/Starlette WebSocket."""

import asyncio
from collections.abc import Awaitable, Callable

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from wsagent.channels.base import ChannelGoneError
from wsagent.models.messages import OutboundEvent
from wsagent.utils.logging import get_logger

logger = get_logger(__name__)

MessageHandler = Callable[[str | bytes], Awaitable[None]]


class WebSocketChannel:
    """Channel bound to one accepted WebSocket connection."""

    def __init__(self, websocket: WebSocket, connection_id: str):
        self.websocket = websocket
        self.connection_id = connection_id
        self.closed = False
        # Pongs and input errors are sent from the receive loop while a turn streams
        self._send_lock = asyncio.Lock()

    async def send(self, event: OutboundEvent) -> None:
        if self.closed:
            raise ChannelGoneError(f"Connection {self.connection_id} is closed")

        async with self._send_lock:
            try:
                await self.websocket.send_text(event.to_json())
            except (WebSocketDisconnect, RuntimeError, OSError) as e:
                self.closed = True
                raise ChannelGoneError(f"Connection {self.connection_id} is gone") from e

    async def serve(self, handler: MessageHandler) -> None:
        """Invoke ``handler`` once per inbound text or binary frame until the peer disconnects."""
        try:
            while True:
                message = await self.websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))
                text = message.get("text")
                await handler(text if text is not None else message.get("bytes") or b"")
        except WebSocketDisconnect as e:
            logger.info(f"Connection {self.connection_id} disconnected (code {e.code})")
        finally:
            self.closed = True

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self.websocket.client_state == WebSocketState.CONNECTED:
            await self.websocket.close()
