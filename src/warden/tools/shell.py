"""
Shell tool for Warden.

This module provides the `bash` tool, which runs a command line through
`sh -c` in the session's working directory.

Security Note:
    The command is a shell string, so it can do anything the shell can.
    Permission rules are the only guard: rules patterned on `command`
    (for example `{tool: bash, pattern: "rm -rf *", action: deny}`) are
    evaluated BEFORE the tool runs.

    Additional protections:
    - Timeout enforcement to prevent runaway processes
    - Output size limits to prevent memory exhaustion
"""

import subprocess
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from warden.errors import ToolExecutionError
from warden.tools.base import Tool, ToolContext

DEFAULT_TIMEOUT_SECONDS = 120.0
MAX_OUTPUT_BYTES = 1024 * 1024


class BashArgs(BaseModel):
    command: str = Field(..., min_length=1, description="Command line passed to sh -c")
    timeout: float = Field(default=DEFAULT_TIMEOUT_SECONDS, gt=0, description="Seconds")


def _truncate(data: bytes, limit: int) -> bytes:
    if len(data) <= limit:
        return data
    marker = f"\n... [truncated, exceeded {limit} bytes]".encode()
    return data[: max(limit - len(marker), 0)] + marker


class BashTool(Tool):
    """
    Execute a shell command.

    Returns:
        {"stdout": str, "stderr": str, "exit_code": int}

    A non-zero exit code is a normal result, not a failure: the model reads
    it like any other output.

    Example:
        args = BashArgs(command="echo hello")
        result = tool.execute(args, context)
        result["stdout"]  # "hello\\n"
    """

    args_model = BashArgs

    def __init__(self, max_output_bytes: int = MAX_OUTPUT_BYTES) -> None:
        self.max_output_bytes = max_output_bytes

    @property
    def name(self) -> str:
        return "bash"

    @property
    def description(self) -> str:
        return "Execute a bash command"

    def execute(self, args: BashArgs, context: ToolContext) -> dict[str, Any]:
        cwd = Path(context.working_dir).resolve()

        def fail(reason: str) -> ToolExecutionError:
            return ToolExecutionError(
                tool=self.name,
                tool_args={"command": args.command},
                underlying_error=reason,
            )

        if not cwd.is_dir():
            raise fail(f"Working directory does not exist: {context.working_dir}")

        try:
            result = subprocess.run(
                ["sh", "-c", args.command],
                cwd=str(cwd),
                capture_output=True,
                timeout=args.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise fail(f"Command timed out after {args.timeout:g} seconds") from e
        except OSError as e:
            raise fail(f"OS error executing command: {e}") from e

        # Split the limit between stdout and stderr
        half = self.max_output_bytes // 2
        stdout = _truncate(result.stdout, half)
        stderr = _truncate(result.stderr, half)

        return {
            "stdout": stdout.decode("utf-8", errors="replace"),
            "stderr": stderr.decode("utf-8", errors="replace"),
            "exit_code": result.returncode,
        }
