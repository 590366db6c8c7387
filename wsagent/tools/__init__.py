"""Tools callable by the model."""

from wsagent.tools.registry import ToolsRegistry, get_tools_registry

__all__ = ["ToolsRegistry", "get_tools_registry"]
