"""Connection channel interface."""

from typing import Protocol

from wsagent.models.messages import OutboundEvent
from wsagent.utils.logging import get_logger

logger = get_logger(__name__)


class ChannelGoneError(Exception):
    """The event cannot be delivered: the peer disconnected or the transport failed."""


class ConnectionChannel(Protocol):
    """Bidirectional, session-scoped message channel to one client."""

    connection_id: str

    async def send(self, event: OutboundEvent) -> None:
        """Push one event to the remote peer.

        Raises:
            ChannelGoneError: If the peer has disconnected
        """
        ...

    async def close(self) -> None:
        """Close the channel."""
        ...


async def safe_send(channel: ConnectionChannel, event: OutboundEvent) -> bool:
    """Send an event, dropping it if the peer is gone.

    Returns:
        True if the event was handed to the transport
    """
    try:
        await channel.send(event)
        return True
    except ChannelGoneError:
        logger.info(f"Connection {channel.connection_id} already closed, dropping {event.type} event")
        return False
