"""In-process channel backed by an asyncio queue."""

import asyncio
from collections.abc import AsyncIterator

from wsagent.channels.base import ChannelGoneError
from wsagent.models.messages import OutboundEvent


class QueueChannel:
    """Channel whose events are consumed by the same process.

    Used to adapt a turn to request/response transports such as the HTTP
    invocation endpoint.
    """

    def __init__(self, connection_id: str):
        self.connection_id = connection_id
        self.closed = False
        self._queue: asyncio.Queue[OutboundEvent | None] = asyncio.Queue()

    async def send(self, event: OutboundEvent) -> None:
        if self.closed:
            raise ChannelGoneError(f"Channel {self.connection_id} is closed")
        await self._queue.put(event)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        await self._queue.put(None)

    async def events(self) -> AsyncIterator[OutboundEvent]:
        """Yield events in send order until the channel is closed."""
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event
