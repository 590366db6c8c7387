"""Streaming tool-calling agent served over WebSocket."""

__version__ = "0.1.0"
