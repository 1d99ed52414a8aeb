"""
Tool dispatch for Warden.

The dispatcher is the only place a tool's execute() is called. It never
raises: every failure becomes a ToolOutcome with `error` set, so a broken
tool costs the model one error message instead of ending the conversation.

Steps:
    1. Validate raw arguments against the tool's args_model
    2. Execute the tool with the validated arguments
    3. Wrap the result (or the failure) in a ToolOutcome
"""

import logging

from pydantic import ValidationError

from warden.errors import ToolExecutionError, ToolInvalidArgsError, WardenError
from warden.schema import ToolInvocation, ToolOutcome, format_validation_errors
from warden.tools.base import Tool, ToolContext

logger = logging.getLogger(__name__)


class ToolDispatcher:
    """
    Executes validated tool calls and captures their outcome.

    Usage:
        dispatcher = ToolDispatcher()
        outcome = dispatcher.dispatch(tool, invocation, context)
        if outcome.success:
            use(outcome.result)
    """

    def dispatch(
        self,
        tool: Tool,
        invocation: ToolInvocation,
        context: ToolContext,
    ) -> ToolOutcome:
        """
        Run one tool call.

        Args:
            tool: The tool to execute
            invocation: The call requested by the model
            context: Runtime context for the tool

        Returns:
            ToolOutcome with the result, or with the error message
        """
        try:
            args = tool.parse_args(invocation.arguments)
        except ValidationError as e:
            error = ToolInvalidArgsError(
                tool=tool.name,
                tool_args=invocation.arguments,
                validation_error="; ".join(format_validation_errors(e)),
            )
            logger.debug("Rejected arguments for %s: %s", tool.name, error.message)
            return ToolOutcome.fail(invocation.id, error.message)

        logger.debug("Dispatching %s (call %s)", tool.name, invocation.id)
        try:
            result = tool.execute(args, context)
        except WardenError as e:
            logger.debug("Tool %s failed: %s", tool.name, e.message)
            return ToolOutcome.fail(invocation.id, e.message)
        except Exception as e:
            error = ToolExecutionError(
                tool=tool.name,
                tool_args=invocation.arguments,
                underlying_error=f"{type(e).__name__}: {e}",
            )
            logger.debug("Tool %s raised: %s", tool.name, error.message)
            return ToolOutcome.fail(invocation.id, error.message)

        return ToolOutcome.ok(invocation.id, result)
