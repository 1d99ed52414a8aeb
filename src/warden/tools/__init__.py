"""
Tools module for Warden.

This module provides the tool interface and the built-in tools.

Built-in tools:
    - read: Read file contents
    - write: Write to files
    - bash: Run a command line through sh -c
    - webfetch: Fetch a URL with HTTP GET

Architecture:
    - Tool: Abstract base class defining the tool interface
    - ToolRegistry: Name -> tool lookup, one instance per caller
    - ToolDispatcher: Validates arguments, executes, captures the outcome
    - ToolContext: Runtime context passed to tools (session id, working dir)

Policy enforcement happens BEFORE dispatch, not within tools.
"""

from warden.tools.base import NoArgs, Tool, ToolContext, ToolSpec
from warden.tools.dispatcher import ToolDispatcher
from warden.tools.fs import ReadTool, WriteTool
from warden.tools.http import WebFetchTool
from warden.tools.registry import ToolRegistry, builtin_registry
from warden.tools.shell import BashTool

__all__ = [
    "BashTool",
    "NoArgs",
    "ReadTool",
    "Tool",
    "ToolContext",
    "ToolDispatcher",
    "ToolRegistry",
    "ToolSpec",
    "WebFetchTool",
    "WriteTool",
    "builtin_registry",
]
