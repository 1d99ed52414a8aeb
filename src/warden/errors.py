"""
Exception hierarchy for Warden.

All Warden exceptions inherit from WardenError, allowing callers to catch
all Warden-specific exceptions with a single except clause.

Exception Categories:
    - PermissionDeniedError / DoomLoopError: policy refused a tool call
    - ToolError: tool lookup, argument validation, or execution failed
    - PlanError / AgentNotFoundError: structural errors in plans and agents
    - ConversationError: model failures and misuse of the conversation loop
    - StorageError: session bookkeeping and persistence failures

Policy and tool errors never escape the conversation loop. The loop turns
them into tool-result messages, so their `message` is what the model reads.
Structural errors are raised to the immediate caller.
"""

from dataclasses import dataclass, field
from typing import Any


# =============================================================================
# Error Codes
# =============================================================================

# Policy errors: 1xxx
ERROR_PERMISSION_DENIED = 1001
ERROR_PERMISSION_REJECTED = 1002
ERROR_DOOM_LOOP = 1003

# Tool errors: 2xxx
ERROR_TOOL_NOT_FOUND = 2001
ERROR_TOOL_INVALID_ARGS = 2002
ERROR_TOOL_EXECUTION_FAILED = 2003
ERROR_TOOL_REGISTRATION = 2004

# Plan and agent errors: 3xxx
ERROR_SCHEMA_VALIDATION = 3001
ERROR_PLAN_NOT_FOUND = 3002
ERROR_STEP_NOT_FOUND = 3003
ERROR_INVALID_TRANSITION = 3004
ERROR_AGENT_NOT_FOUND = 3005

# Conversation errors: 4xxx
ERROR_MODEL = 4001
ERROR_CONVERSATION_STATE = 4002

# Storage errors: 5xxx
ERROR_SESSION_NOT_FOUND = 5001
ERROR_PERSISTENCE = 5002


# =============================================================================
# Base Exception
# =============================================================================


@dataclass
class WardenError(Exception):
    """
    Base exception for all Warden errors.

    Attributes:
        message: Human-readable error description
        code: Numeric error code for programmatic handling
        suggestion: Optional hint for how to resolve the error
        context: Optional dict with additional debugging info
    """

    message: str = ""
    code: int = 0
    suggestion: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Format error for display."""
        parts = [f"[E{self.code}] {self.message}"]
        if self.suggestion:
            parts.append(f"\nSuggestion: {self.suggestion}")
        return "".join(parts)

    def __repr__(self) -> str:
        """Format error for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code}, "
            f"context={self.context!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "suggestion": self.suggestion,
            "context": self.context,
        }


# =============================================================================
# Policy Errors
# =============================================================================


@dataclass
class PermissionDeniedError(WardenError):
    """
    A tool call resolved to `deny` under the active rule set.

    Attributes:
        tool: Name of the tool that was blocked
        tool_args: Arguments that were provided
        reason: Why the rule set denied this call
        rule: Which rule decided (None for deny-by-default)
    """

    tool: str = ""
    tool_args: dict[str, Any] = field(default_factory=dict)
    reason: str = ""
    rule: str | None = None

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Permission denied: tool {self.tool} is not allowed to run"
            if self.reason:
                self.message += f" ({self.reason})"
        if self.code == 0:
            self.code = ERROR_PERMISSION_DENIED
        self.context.update({
            "tool": self.tool,
            "tool_args": self.tool_args,
            "reason": self.reason,
            "rule": self.rule,
        })


@dataclass
class PermissionRejectedError(PermissionDeniedError):
    """A tool call that required confirmation was rejected by the approver."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Permission rejected: tool {self.tool} was rejected by user"
        if self.code == 0:
            self.code = ERROR_PERMISSION_REJECTED
        super().__post_init__()


@dataclass
class DoomLoopError(WardenError):
    """
    The same tool call was repeated too often inside the detection window.

    Attributes:
        tool: Name of the repeated tool
        tool_args: The repeated arguments
        threshold: Number of identical calls that triggers detection
        window_seconds: Length of the sliding window
    """

    tool: str = ""
    tool_args: dict[str, Any] = field(default_factory=dict)
    threshold: int = 0
    window_seconds: float = 0.0

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f"Doom loop detected: tool {self.tool} was called with identical "
                f"arguments {self.threshold} times within {self.window_seconds:g}s"
            )
        if self.code == 0:
            self.code = ERROR_DOOM_LOOP
        if not self.suggestion:
            self.suggestion = "Try a different approach instead of repeating the call"
        self.context.update({
            "tool": self.tool,
            "tool_args": self.tool_args,
            "threshold": self.threshold,
            "window_seconds": self.window_seconds,
        })


# =============================================================================
# Tool Errors
# =============================================================================


@dataclass
class ToolError(WardenError):
    """
    Base class for tool errors.

    Attributes:
        tool: Name of the tool that failed
        tool_args: Arguments that were provided
    """

    tool: str = ""
    tool_args: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context.update({
            "tool": self.tool,
            "tool_args": self.tool_args,
        })


@dataclass
class ToolNotFoundError(ToolError):
    """Raised when a tool is not registered."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Tool not found: {self.tool}"
        if self.code == 0:
            self.code = ERROR_TOOL_NOT_FOUND
        if not self.suggestion:
            self.suggestion = "Check tool name spelling or register the tool"
        super().__post_init__()


@dataclass
class ToolInvalidArgsError(ToolError):
    """Raised when tool arguments fail schema validation."""

    validation_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid arguments for {self.tool}: {self.validation_error}"
        if self.code == 0:
            self.code = ERROR_TOOL_INVALID_ARGS
        super().__post_init__()
        self.context["validation_error"] = self.validation_error


@dataclass
class ToolExecutionError(ToolError):
    """Raised when a tool fails during execution."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Tool {self.tool} failed: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_TOOL_EXECUTION_FAILED
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class ToolRegistrationError(ToolError):
    """Raised when a tool cannot be registered (bad name or schema)."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Cannot register tool: {self.tool}"
        if self.code == 0:
            self.code = ERROR_TOOL_REGISTRATION
        super().__post_init__()


# =============================================================================
# Plan and Agent Errors
# =============================================================================


@dataclass
class SchemaValidationError(WardenError):
    """
    Raised when a rule, agent profile, or plan fails validation.

    Nothing is stored when this is raised.

    Attributes:
        model: Name of the model being constructed
        errors: Flattened validation messages
    """

    model: str = ""
    errors: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            details = "; ".join(self.errors) if self.errors else "invalid data"
            self.message = f"Invalid {self.model or 'data'}: {details}"
        if self.code == 0:
            self.code = ERROR_SCHEMA_VALIDATION
        self.context.update({"model": self.model, "errors": self.errors})


@dataclass
class PlanNotFoundError(WardenError):
    """Raised when a plan id is unknown to the plan store."""

    plan_id: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Plan not found: {self.plan_id}"
        if self.code == 0:
            self.code = ERROR_PLAN_NOT_FOUND
        self.context["plan_id"] = self.plan_id


@dataclass
class StepNotFoundError(WardenError):
    """Raised when a step id is not part of the plan."""

    plan_id: str = ""
    step_id: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Step {self.step_id} not found in plan {self.plan_id}"
        if self.code == 0:
            self.code = ERROR_STEP_NOT_FOUND
        self.context.update({"plan_id": self.plan_id, "step_id": self.step_id})


@dataclass
class InvalidStatusTransitionError(WardenError):
    """Raised when a step status change is not pending->running->terminal."""

    step_id: str = ""
    current: str = ""
    requested: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f"Invalid status transition for step {self.step_id}: "
                f"{self.current} -> {self.requested}"
            )
        if self.code == 0:
            self.code = ERROR_INVALID_TRANSITION
        self.context.update({
            "step_id": self.step_id,
            "current": self.current,
            "requested": self.requested,
        })


@dataclass
class AgentNotFoundError(WardenError):
    """Raised when an agent id is unknown to the registry."""

    agent_id: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Agent not found: {self.agent_id}"
        if self.code == 0:
            self.code = ERROR_AGENT_NOT_FOUND
        if not self.suggestion:
            self.suggestion = "Register the agent profile before running the plan"
        self.context["agent_id"] = self.agent_id


# =============================================================================
# Conversation Errors
# =============================================================================


@dataclass
class ModelError(WardenError):
    """The model stream reported an error or raised while streaming."""

    cause: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = self.cause or "Model invocation failed"
        if self.code == 0:
            self.code = ERROR_MODEL
        self.context["cause"] = self.cause


@dataclass
class ConversationStateError(WardenError):
    """Raised when resume() is called for a session that is not suspended."""

    session_id: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Session {self.session_id} has no pending approval"
        if self.code == 0:
            self.code = ERROR_CONVERSATION_STATE
        self.context["session_id"] = self.session_id


# =============================================================================
# Storage Errors
# =============================================================================


@dataclass
class StorageError(WardenError):
    """
    Base class for session storage errors.

    Attributes:
        operation: The operation that failed (e.g., "append", "persist")
    """

    operation: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["operation"] = self.operation


@dataclass
class SessionNotFoundError(StorageError):
    """Raised when a session id is unknown to the store."""

    session_id: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Session not found: {self.session_id}"
        if self.code == 0:
            self.code = ERROR_SESSION_NOT_FOUND
        super().__post_init__()
        self.context["session_id"] = self.session_id


@dataclass
class PersistenceError(StorageError):
    """
    The persistence callback failed after a session mutation.

    This is a warning, never raised out of the conversation loop.
    """

    session_id: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f"Failed to persist session {self.session_id}: {self.underlying_error}"
            )
        if self.code == 0:
            self.code = ERROR_PERSISTENCE
        super().__post_init__()
        self.context.update({
            "session_id": self.session_id,
            "underlying_error": self.underlying_error,
        })
