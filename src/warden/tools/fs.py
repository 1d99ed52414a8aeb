"""
Filesystem tools for Warden.

This module provides tools for reading and writing files:
- read: Read file contents
- write: Write content to files

Security Note:
    Permission rules are evaluated BEFORE these tools execute, with the
    `path` argument matched against rule patterns.

    These tools still handle:
    - File not found errors
    - Permission errors
    - Encoding errors
    - Size limit enforcement (as a safety net)
"""

from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field

from warden.errors import ToolExecutionError
from warden.tools.base import Tool, ToolContext

# Default maximum file size read into a tool result (10 MB)
MAX_READ_BYTES = 10 * 1024 * 1024


def resolve_path(path_str: str, working_dir: str) -> Path:
    """Resolve a path relative to the working directory."""
    path = Path(path_str).expanduser()
    if not path.is_absolute():
        path = Path(working_dir) / path
    return path.resolve()


class ReadArgs(BaseModel):
    path: str = Field(..., min_length=1, description="Path to the file to read")
    encoding: str = Field(default="utf-8", description="Text encoding")


class ReadTool(Tool):
    """
    Read file contents.

    Returns:
        {"content": <file text>}

    Example:
        args = ReadArgs(path="./README.md")
        result = tool.execute(args, context)
        content = result["content"]
    """

    args_model = ReadArgs

    def __init__(self, max_bytes: int = MAX_READ_BYTES) -> None:
        self.max_bytes = max_bytes

    @property
    def name(self) -> str:
        return "read"

    @property
    def description(self) -> str:
        return "Read the contents of a file"

    def execute(self, args: ReadArgs, context: ToolContext) -> dict[str, Any]:
        path = resolve_path(args.path, context.working_dir)

        def fail(reason: str) -> ToolExecutionError:
            return ToolExecutionError(
                tool=self.name,
                tool_args={"path": args.path},
                underlying_error=reason,
            )

        if not path.exists():
            raise fail(f"File not found: {args.path}")
        if not path.is_file():
            raise fail(f"Not a file: {args.path}")

        try:
            size = path.stat().st_size
            if size > self.max_bytes:
                raise fail(f"File too large: {size} bytes (max: {self.max_bytes})")
            content = path.read_text(encoding=args.encoding)
        except PermissionError as e:
            raise fail(f"Permission denied: {args.path}") from e
        except UnicodeDecodeError as e:
            raise fail(f"Encoding error reading {args.path}: {e}") from e
        except OSError as e:
            raise fail(f"Error reading {args.path}: {e}") from e

        return {"content": content}


class WriteArgs(BaseModel):
    path: str = Field(..., min_length=1, description="Path to the file to write")
    content: str = Field(..., description="Content to write")
    mode: Literal["overwrite", "append"] = "overwrite"
    create_dirs: bool = Field(default=False, description="Create parent directories")
    encoding: str = "utf-8"


class WriteTool(Tool):
    """
    Write content to a file.

    Returns:
        {"success": True, "path": <resolved path>, "bytes_written": n}
    """

    args_model = WriteArgs

    @property
    def name(self) -> str:
        return "write"

    @property
    def description(self) -> str:
        return "Write content to a file"

    def execute(self, args: WriteArgs, context: ToolContext) -> dict[str, Any]:
        path = resolve_path(args.path, context.working_dir)

        def fail(reason: str) -> ToolExecutionError:
            return ToolExecutionError(
                tool=self.name,
                tool_args={"path": args.path, "mode": args.mode},
                underlying_error=reason,
            )

        if args.create_dirs:
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise fail(f"Failed to create directories: {e}") from e

        if not path.parent.exists():
            raise fail(f"Parent directory does not exist: {path.parent}")

        data = args.content.encode(args.encoding)
        try:
            with path.open("ab" if args.mode == "append" else "wb") as f:
                f.write(data)
        except PermissionError as e:
            raise fail(f"Permission denied: {args.path}") from e
        except OSError as e:
            raise fail(f"Error writing {args.path}: {e}") from e

        return {"success": True, "path": str(path), "bytes_written": len(data)}
