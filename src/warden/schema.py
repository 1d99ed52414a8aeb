"""
Schema definitions for Warden.

This module defines the Pydantic models shared across Warden:
- PolicyRule/PolicyDecision: what the permission layer allows
- ToolInvocation/ToolOutcome/Message/Session: the conversation transcript
- AgentProfile: who runs a step and under which rules
- TaskStep/Plan/StepResult/PlanResult: the scheduler's view of a plan
- Usage: token accounting, summed across iterations and steps

Design Decisions:
    - Records that never change after creation are frozen
    - TaskStep and Plan stay mutable: the scheduler updates step status in place
    - Construction errors surface as SchemaValidationError via validate_model()
"""

import uuid
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any, TypeVar

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from warden.errors import SchemaValidationError


# =============================================================================
# Enums
# =============================================================================


class PermissionAction(str, Enum):
    """
    Outcome of evaluating a tool call against a rule set.

    ASK means the call needs an external decision before it may run.
    """

    ALLOW = "allow"
    DENY = "deny"
    ASK = "ask"


class MessageRole(str, Enum):
    """Author of a transcript message."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


class TaskStatus(str, Enum):
    """Lifecycle of a plan step: pending -> running -> completed | failed."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class FinishReason(str, Enum):
    """Why a conversation turn stopped."""

    STOP = "stop"
    ERROR = "error"
    CANCELLED = "cancelled"
    PENDING_APPROVAL = "pending_approval"
    MAX_ITERATIONS = "max_iterations"

    @property
    def failed(self) -> bool:
        """Whether a plan step ending this way counts as failed."""
        return self in (
            FinishReason.ERROR,
            FinishReason.CANCELLED,
            FinishReason.PENDING_APPROVAL,
        )


def generate_id() -> str:
    """Generate a unique ID for plans, steps, sessions, and messages."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(UTC)


# =============================================================================
# Policy Models
# =============================================================================


class PolicyRule(BaseModel):
    """
    A single permission rule.

    Rules are evaluated in order with last-match-wins semantics.

    Attributes:
        tool: Exact tool name, or "*" for every tool
        pattern: Optional glob matched against path-like arguments
        action: allow, deny, or ask
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    tool: str = Field(..., min_length=1, description="Tool name or '*'")
    pattern: str | None = Field(
        default=None,
        description="Glob over filePath/path/file/command arguments",
    )
    action: PermissionAction = Field(..., description="allow, deny, or ask")

    @field_validator("pattern")
    @classmethod
    def validate_pattern(cls, v: str | None) -> str | None:
        """Reject empty patterns; omit the field instead."""
        if v is not None and not v:
            msg = "pattern cannot be empty"
            raise ValueError(msg)
        return v

    def describe(self) -> str:
        """Short human-readable form, e.g. `bash[rm -rf *]=deny`."""
        target = f"{self.tool}[{self.pattern}]" if self.pattern else self.tool
        return f"{target}={self.action.value}"


class PolicyDecision(BaseModel):
    """
    Result of evaluating a tool call against a rule set.

    Attributes:
        action: The resolved action
        reason: Human-readable explanation of the decision
        rule_matched: Which rule decided, or None for deny-by-default
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    action: PermissionAction
    reason: str
    rule_matched: str | None = None

    @property
    def allowed(self) -> bool:
        return self.action is PermissionAction.ALLOW

    @classmethod
    def deny(cls, reason: str, rule: str | None = None) -> "PolicyDecision":
        """Create a DENY decision."""
        return cls(action=PermissionAction.DENY, reason=reason, rule_matched=rule)


# =============================================================================
# Transcript Models
# =============================================================================


class Usage(BaseModel):
    """Token usage reported by the model, summed field by field."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    total_tokens: int = Field(default=0, ge=0)

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


class ToolInvocation(BaseModel):
    """A tool call requested by the model."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., description="Call id assigned by the model")
    name: str = Field(..., description="Tool name")
    arguments: dict[str, Any] = Field(default_factory=dict)


class ToolOutcome(BaseModel):
    """
    Result of one tool call.

    Exactly one of `result` / `error` is meaningful: a call succeeded iff
    `error` is None. Policy refusals use the same shape as tool failures.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    call_id: str
    result: Any | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    @classmethod
    def ok(cls, call_id: str, result: Any) -> "ToolOutcome":
        """Create a successful outcome."""
        return cls(call_id=call_id, result=result)

    @classmethod
    def fail(cls, call_id: str, error: str) -> "ToolOutcome":
        """Create a failed outcome."""
        return cls(call_id=call_id, error=error)


class Message(BaseModel):
    """One entry in a session transcript. Messages are never edited."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(default_factory=generate_id)
    role: MessageRole
    content: str = ""
    tool_calls: list[ToolInvocation] | None = None
    tool_results: list[ToolOutcome] | None = None
    created_at: datetime = Field(default_factory=utc_now)


class Session(BaseModel):
    """
    A conversation owned by a SessionStore.

    Attributes:
        id: Unique session id
        title: Human-readable title
        model_id: Model reference the session was created for
        messages: Append-only transcript
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=generate_id)
    title: str = ""
    model_id: str = ""
    messages: list[Message] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# Agent Models
# =============================================================================


class AgentProfile(BaseModel):
    """
    A named agent configuration.

    Profiles are immutable during a run and looked up by id.

    Attributes:
        id: Registry key
        name: Display name
        description: What the agent is for
        system_prompt: Prompt sent with every model request
        model: Model reference passed to the Model contract
        tool_names: Tools the agent may see (unknown names are skipped)
        rules: Permission rules; None means allow every tool
        temperature: Optional sampling temperature (0-2)
        max_output_tokens: Optional generation limit
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: str = ""
    system_prompt: str = ""
    model: str = ""
    tool_names: list[str] = Field(default_factory=list, alias="tools")
    rules: list[PolicyRule] | None = None
    temperature: float | None = Field(default=None, ge=0, le=2)
    max_output_tokens: int | None = Field(default=None, gt=0)


# =============================================================================
# Plan Models
# =============================================================================


class TaskStep(BaseModel):
    """
    One step of a plan: one agent answering one prompt.

    Status is mutated only by the scheduler.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    id: str = Field(default_factory=generate_id, min_length=1)
    agent_id: str = Field(..., min_length=1)
    prompt: str = Field(..., min_length=1)
    depends_on: list[str] = Field(default_factory=list)
    parallel: bool = False
    status: TaskStatus = TaskStatus.PENDING


class Plan(BaseModel):
    """A DAG of steps. Step ids are unique within a plan."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=generate_id)
    title: str = Field(..., min_length=1)
    steps: list[TaskStep] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def validate_unique_step_ids(self) -> "Plan":
        """Reject duplicate step ids."""
        seen: set[str] = set()
        for step in self.steps:
            if step.id in seen:
                msg = f"duplicate step id: {step.id}"
                raise ValueError(msg)
            seen.add(step.id)
        return self

    def get_step(self, step_id: str) -> TaskStep | None:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None


class StepSpec(BaseModel):
    """A step as written by a user, before the scheduler assigns status."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str | None = None
    agent_id: str = Field(..., min_length=1)
    prompt: str = Field(..., min_length=1)
    depends_on: list[str] = Field(default_factory=list)
    parallel: bool = False


class PlanSpec(BaseModel):
    """A plan file: a title and its step specs."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    title: str = Field(..., min_length=1)
    steps: list[StepSpec] = Field(default_factory=list)


class StepResult(BaseModel):
    """Outcome of running one plan step."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    step_id: str
    agent_id: str
    success: bool
    output: str = ""
    usage: Usage = Field(default_factory=Usage)
    finish_reason: FinishReason | None = None


class PlanResult(BaseModel):
    """Outcome of executing a plan."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    plan_id: str
    results: list[StepResult] = Field(default_factory=list)
    all_completed: bool = False
    total_usage: Usage = Field(default_factory=Usage)


# =============================================================================
# Validation Helpers
# =============================================================================

M = TypeVar("M", bound=BaseModel)


def format_validation_errors(error: ValidationError) -> list[str]:
    """Flatten a pydantic ValidationError into `loc: message` strings."""
    messages = []
    for item in error.errors():
        loc = ".".join(str(part) for part in item["loc"])
        messages.append(f"{loc}: {item['msg']}" if loc else item["msg"])
    return messages


def validate_model(model_cls: type[M], data: Any) -> M:
    """
    Validate data into model_cls, raising SchemaValidationError on failure.

    Instances of model_cls are returned unchanged.
    """
    if isinstance(data, model_cls):
        return data
    try:
        return model_cls.model_validate(data)
    except ValidationError as e:
        raise SchemaValidationError(
            model=model_cls.__name__,
            errors=format_validation_errors(e),
        ) from e


# =============================================================================
# YAML Loading Helpers
# =============================================================================


class _RuleFile(BaseModel):
    model_config = ConfigDict(extra="forbid")

    rules: list[PolicyRule] = Field(default_factory=list)


class _AgentFile(BaseModel):
    model_config = ConfigDict(extra="forbid")

    agents: list[AgentProfile] = Field(default_factory=list)


def _read_yaml(path: Path | str) -> Any:
    path = Path(path)
    with path.open() as f:
        return yaml.safe_load(f)


def load_rules_from_string(content: str) -> list[PolicyRule]:
    """
    Load rules from a YAML string.

    Accepts either a bare list of rules or a mapping with a `rules` key.
    """
    data = yaml.safe_load(content)
    if data is None:
        return []
    if isinstance(data, list):
        data = {"rules": data}
    return validate_model(_RuleFile, data).rules


def load_rules(path: Path | str) -> list[PolicyRule]:
    """
    Load rules from a YAML file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        SchemaValidationError: If a rule is malformed
    """
    return load_rules_from_string(Path(path).read_text())


def load_agents_from_string(content: str) -> list[AgentProfile]:
    """Load agent profiles from a YAML string with an `agents` key."""
    data = yaml.safe_load(content) or {}
    return validate_model(_AgentFile, data).agents


def load_agents(path: Path | str) -> list[AgentProfile]:
    """Load agent profiles from a YAML file."""
    return load_agents_from_string(Path(path).read_text())


def load_plan_spec_from_string(content: str) -> PlanSpec:
    """Load a plan spec from a YAML string."""
    return validate_model(PlanSpec, yaml.safe_load(content))


def load_plan_spec(path: Path | str) -> PlanSpec:
    """Load a plan spec from a YAML file."""
    return validate_model(PlanSpec, _read_yaml(path))
