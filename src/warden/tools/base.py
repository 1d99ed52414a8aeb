"""
Base classes for the tool interface.

This module defines the core abstractions for tools in Warden:
- Tool: Abstract base class that all tools must implement
- ToolContext: Runtime context passed to tools during execution
- ToolSpec: What the model is told about a tool

Design Principles:
    - Tools are stateless - all state comes from ToolContext
    - Arguments are described by a pydantic model (args_model)
    - Tools receive a validated args_model instance, never raw dicts
    - Tools raise on failure; the dispatcher turns exceptions into outcomes
    - Permission checks happen before a tool is dispatched, not inside it
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from warden.schema import format_validation_errors


class NoArgs(BaseModel):
    """Argument model for tools that take no arguments."""

    model_config = ConfigDict(extra="ignore")


@dataclass(frozen=True)
class ToolSpec:
    """
    Tool description sent to the model.

    Attributes:
        name: Tool name the model uses to call it
        description: What the tool does
        input_schema: JSON schema of the tool's arguments
    """

    name: str
    description: str
    input_schema: dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolContext:
    """
    Runtime context passed to tools during execution.

    Attributes:
        session_id: Session the call belongs to
        working_dir: Directory relative paths resolve against
        metadata: Additional context-specific metadata
    """

    session_id: str
    working_dir: str = "."
    metadata: dict[str, Any] = field(default_factory=dict)


class Tool(ABC):
    """
    Abstract base class for all Warden tools.

    Subclasses must implement:
    - name property: The tool's unique identifier
    - execute(): Performs the tool's action and returns a JSON-friendly value

    Example:
        class EchoArgs(BaseModel):
            message: str

        class EchoTool(Tool):
            args_model = EchoArgs

            @property
            def name(self) -> str:
                return "echo"

            def execute(self, args: EchoArgs, context: ToolContext) -> Any:
                return {"message": args.message}
    """

    args_model: type[BaseModel] = NoArgs

    @property
    @abstractmethod
    def name(self) -> str:
        """The unique identifier for this tool (e.g. "read", "bash")."""
        ...

    @property
    def description(self) -> str:
        """Human-readable description of what the tool does."""
        return f"Tool: {self.name}"

    def describe(self) -> ToolSpec:
        """Build the ToolSpec advertised to the model."""
        return ToolSpec(
            name=self.name,
            description=self.description,
            input_schema=self.args_model.model_json_schema(),
        )

    def parse_args(self, args: dict[str, Any]) -> BaseModel:
        """
        Validate raw arguments into an args_model instance.

        Raises:
            pydantic.ValidationError: If the arguments don't fit args_model
        """
        return self.args_model.model_validate(args)

    def validate_args(self, args: dict[str, Any]) -> list[str]:
        """
        Validate the arguments for this tool.

        Returns:
            List of validation error messages (empty if valid)
        """
        try:
            self.parse_args(args)
        except ValidationError as e:
            return format_validation_errors(e)
        return []

    @abstractmethod
    def execute(self, args: Any, context: ToolContext) -> Any:
        """
        Execute the tool with validated arguments.

        Args:
            args: An instance of args_model
            context: Runtime context with session id and working directory

        Returns:
            A JSON-serializable result

        Raises:
            ToolExecutionError: For expected failures (file not found, etc.)
        """
        ...

    def __repr__(self) -> str:
        """String representation of the tool."""
        return f"<Tool: {self.name}>"
