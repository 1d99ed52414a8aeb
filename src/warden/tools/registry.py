"""
Tool registry for Warden.

The registry maps tool names to tool instances. There is no global
registry: callers build one and pass it where it is needed, so tests and
agents can use isolated sets of tools.

Usage:
    from warden.tools.registry import ToolRegistry, builtin_registry

    registry = builtin_registry()
    registry.register(MyTool())
    tool = registry.get("my_tool")
"""

import logging
import re
from collections.abc import Iterable, Iterator

from pydantic import BaseModel

from warden.errors import ToolNotFoundError, ToolRegistrationError
from warden.tools.base import Tool, ToolSpec

logger = logging.getLogger(__name__)

# Names the model can emit as a function name
TOOL_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.\-]{1,64}$")


class ToolRegistry:
    """
    Registry for looking up tools by name.

    Attributes:
        _tools: Internal mapping of tool names to tool instances
    """

    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        """Initialize the registry, optionally with tools."""
        self._tools: dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        """
        Register a tool in the registry.

        The name and the argument schema are checked once here. A tool with
        the same name replaces the earlier one.

        Raises:
            ToolRegistrationError: If the tool has a bad name or schema
        """
        if tool is None:
            raise ToolRegistrationError(message="Cannot register None as a tool")

        name = tool.name
        if not name or not TOOL_NAME_PATTERN.match(name):
            raise ToolRegistrationError(
                tool=name or "",
                message=f"Invalid tool name: {name!r}",
                suggestion="Use 1-64 letters, digits, '_', '.', or '-'",
            )

        args_model = tool.args_model
        if not (isinstance(args_model, type) and issubclass(args_model, BaseModel)):
            raise ToolRegistrationError(
                tool=name,
                message=f"Tool {name} args_model must be a pydantic model class",
            )
        try:
            args_model.model_json_schema()
        except Exception as e:
            raise ToolRegistrationError(
                tool=name,
                message=f"Tool {name} has no usable argument schema: {e}",
            ) from e

        if name in self._tools:
            logger.debug("Replacing registered tool %s", name)
        self._tools[name] = tool

    def get(self, name: str) -> Tool:
        """
        Look up a tool by name.

        Raises:
            ToolNotFoundError: If no tool with that name is registered
        """
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(tool=name)
        return tool

    def get_optional(self, name: str) -> Tool | None:
        """Look up a tool by name, returning None if not found."""
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def unregister(self, name: str) -> bool:
        """
        Remove a tool from the registry.

        Returns:
            True if the tool was removed, False if it wasn't registered
        """
        if name in self._tools:
            del self._tools[name]
            return True
        return False

    def resolve(self, names: Iterable[str]) -> "ToolRegistry":
        """
        Build a registry holding only the named tools.

        Unknown names are skipped; order follows `names`.
        """
        subset = ToolRegistry()
        for name in names:
            tool = self._tools.get(name)
            if tool is None:
                logger.debug("Skipping unknown tool %s", name)
                continue
            subset._tools[name] = tool
        return subset

    def list_tools(self) -> list[str]:
        """List all registered tool names in sorted order."""
        return sorted(self._tools.keys())

    def specs(self) -> list[ToolSpec]:
        """Tool specs in registration order."""
        return [tool.describe() for tool in self._tools.values()]

    def __len__(self) -> int:
        """Return the number of registered tools."""
        return len(self._tools)

    def __iter__(self) -> Iterator[Tool]:
        """Iterate over all registered tools."""
        return iter(self._tools.values())

    def __contains__(self, name: str) -> bool:
        """Check if a tool is registered using 'in' operator."""
        return name in self._tools

    def __repr__(self) -> str:
        """String representation of the registry."""
        tools = ", ".join(self.list_tools())
        return f"<ToolRegistry: [{tools}]>"


def builtin_registry() -> ToolRegistry:
    """Create a fresh registry holding the built-in tools."""
    from warden.tools.fs import ReadTool, WriteTool
    from warden.tools.http import WebFetchTool
    from warden.tools.shell import BashTool

    return ToolRegistry([ReadTool(), WriteTool(), BashTool(), WebFetchTool()])
