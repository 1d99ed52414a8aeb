"""
Pytest configuration and fixtures for Warden tests.

This module provides shared fixtures used across unit and integration
tests: temporary directories, small test tools, a controllable clock,
and sample YAML documents.
"""

import tempfile
from pathlib import Path
from typing import Any, Generator

import pytest
from pydantic import BaseModel

from warden.errors import ToolExecutionError
from warden.session.store import SessionStore
from warden.tools.base import Tool, ToolContext
from warden.tools.registry import ToolRegistry


class EchoArgs(BaseModel):
    text: str


class EchoTool(Tool):
    """Returns its argument and counts how often it ran."""

    args_model = EchoArgs

    def __init__(self, name: str = "echo") -> None:
        self._name = name
        self.calls: list[str] = []

    @property
    def name(self) -> str:
        return self._name

    def execute(self, args: EchoArgs, context: ToolContext) -> dict[str, Any]:
        self.calls.append(args.text)
        return {"echo": args.text}


class FailingTool(Tool):
    """Always raises a ToolExecutionError."""

    @property
    def name(self) -> str:
        return "fail"

    def execute(self, args: Any, context: ToolContext) -> Any:
        raise ToolExecutionError(tool=self.name, underlying_error="boom")


class FakeClock:
    """Manually advanced clock for CallHistory."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def echo_tool() -> EchoTool:
    return EchoTool()


@pytest.fixture
def tool_registry(echo_tool: EchoTool) -> ToolRegistry:
    """Registry with the echo and fail test tools."""
    return ToolRegistry([echo_tool, FailingTool()])


@pytest.fixture
def store() -> SessionStore:
    return SessionStore()


@pytest.fixture
def sample_rules_yaml() -> str:
    """Return a rule set that guards bash and allows everything else."""
    return """
rules:
  - tool: "*"
    action: allow
  - tool: bash
    action: ask
  - tool: bash
    pattern: "rm -rf *"
    action: deny
"""


@pytest.fixture
def sample_agents_yaml() -> str:
    """Return one extra agent profile with its own rules."""
    return """
agents:
  - id: tester
    name: Tester
    description: Runs the test suite
    tools: [bash, read]
    temperature: 0.2
    rules:
      - tool: "*"
        action: allow
      - tool: bash
        pattern: "rm -rf *"
        action: deny
"""


@pytest.fixture
def sample_plan_yaml() -> str:
    """Return a three-step plan with a fan-out and a join."""
    return """
title: Review release
steps:
  - id: scan
    agent_id: explorer
    prompt: Find changed modules
    parallel: true
  - id: docs
    agent_id: writer
    prompt: Check the changelog
    parallel: true
  - id: review
    agent_id: reviewer
    prompt: Review the changes
    depends_on: [scan, docs]
"""
