"""Tools registry for managing model-callable tools."""

import asyncio
from typing import Any

from pydantic import ValidationError

from wsagent.config import get_settings
from wsagent.models.llm import LLMToolDefinition, ToolResultBlock
from wsagent.tools.base import ToolDefinition
from wsagent.tools.calculate import create_calculate_tool
from wsagent.tools.fetch_url import create_fetch_url_tool
from wsagent.tools.weather import create_get_weather_tool
from wsagent.utils.logging import get_logger

logger = get_logger(__name__)


class ToolRegistryLockedError(RuntimeError):
    """Tools cannot be registered once the registry is serving requests."""


class ToolsRegistry:
    """Registry of tools, read-only once locked."""

    def __init__(self, tools: list[ToolDefinition] | None = None):
        """Initialize tools registry.

        Args:
            tools: Tools to register up front
        """
        self._tools: dict[str, ToolDefinition] = {}
        self._locked = False
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: ToolDefinition) -> None:
        """Register a new tool in the registry."""
        if self._locked:
            raise ToolRegistryLockedError(f"Cannot register '{tool.name}': registry is locked")
        self._tools[tool.name] = tool

    def lock(self) -> None:
        """Freeze the registry so it can be shared across sessions."""
        self._locked = True

    @property
    def locked(self) -> bool:
        return self._locked

    def get(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    def catalog(self) -> list[LLMToolDefinition]:
        """Get the tool catalog offered to the model."""
        return [tool.as_catalog_entry() for tool in self._tools.values()]

    def get_tool_names(self) -> list[str]:
        """Get list of all registered tool names."""
        return list(self._tools.keys())

    def has_tool(self, name: str) -> bool:
        """Check if a tool is registered."""
        return name in self._tools

    async def execute(
        self, tool_use_id: str, name: str, raw_input: dict[str, Any], timeout: float | None = None
    ) -> ToolResultBlock:
        """Run a tool and capture its outcome.

        Unknown tools, invalid input, handler exceptions and timeouts all
        become error outcomes; nothing is raised to the caller.
        """
        tool = self._tools.get(name)
        if tool is None:
            logger.error(f"Unknown tool requested: {name}")
            return ToolResultBlock(tool_use_id=tool_use_id, status="error", payload={"error": f"Unknown tool: {name}"})

        try:
            parsed_input = tool.parse_input(raw_input)
            result = await asyncio.wait_for(tool.handler(parsed_input), timeout=timeout)
        except ValidationError as e:
            logger.warning(f"Invalid input for tool {name}: {e}")
            return ToolResultBlock(
                tool_use_id=tool_use_id, status="error", payload={"error": f"Invalid input: {e.errors()[0]['msg']}"}
            )
        except TimeoutError:
            logger.error(f"Tool {name} timed out after {timeout}s")
            return ToolResultBlock(
                tool_use_id=tool_use_id, status="error", payload={"error": f"Tool timed out after {timeout}s"}
            )
        except Exception as e:
            logger.error(f"Tool {name} failed: {e}", exc_info=True)
            return ToolResultBlock(
                tool_use_id=tool_use_id, status="error", payload={"error": str(e) or type(e).__name__}
            )

        logger.debug(f"Tool {name} succeeded: {str(result)[:100]}...")
        return ToolResultBlock(tool_use_id=tool_use_id, status="success", payload=result)


def create_default_tools() -> list[ToolDefinition]:
    """Default tool set: URL fetching, arithmetic and mock weather."""
    return [
        create_fetch_url_tool(timeout=get_settings().tool_timeout_seconds),
        create_calculate_tool(),
        create_get_weather_tool(),
    ]


_tools_registry: ToolsRegistry | None = None


def get_tools_registry() -> ToolsRegistry:
    """Get or create the locked default tools registry."""
    global _tools_registry

    if _tools_registry is None:
        _tools_registry = ToolsRegistry(create_default_tools())
        _tools_registry.lock()

    return _tools_registry
