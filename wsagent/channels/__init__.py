"""Connection channels that carry events to one client."""

from wsagent.channels.base import ChannelGoneError, ConnectionChannel, safe_send

__all__ = ["ChannelGoneError", "ConnectionChannel", "safe_send"]
