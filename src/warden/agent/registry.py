"""
Agent registry for Warden.

Agent profiles are looked up by id when a plan step runs. Like the tool
registry, an AgentRegistry is an explicit instance: nothing is global.

Usage:
    registry = AgentRegistry.with_builtins()
    registry.register({"id": "tester", "name": "Tester", "tools": ["bash"]})
    profile = registry.get("tester")
"""

import logging
from collections.abc import Iterable, Iterator
from typing import Any

from warden.errors import AgentNotFoundError
from warden.schema import AgentProfile, validate_model

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-3-5-sonnet-20241022"

BUILTIN_AGENTS: tuple[AgentProfile, ...] = (
    AgentProfile(
        id="coder",
        name="Coder",
        description="Main coding agent for general programming tasks",
        system_prompt="You are a professional programming assistant, skilled in many languages and frameworks.",
        model=DEFAULT_MODEL,
        tool_names=["read", "write", "bash"],
    ),
    AgentProfile(
        id="architect",
        name="Architect",
        description="Architecture design and code review",
        system_prompt="You are a senior system architect focused on code design and review.",
        model=DEFAULT_MODEL,
        tool_names=["read", "bash"],
    ),
    AgentProfile(
        id="explorer",
        name="Explorer",
        description="Code search and analysis",
        system_prompt="You are a code analysis expert, skilled at searching and understanding codebases.",
        model=DEFAULT_MODEL,
        tool_names=["read", "bash"],
    ),
    AgentProfile(
        id="writer",
        name="Writer",
        description="Documentation and comments",
        system_prompt="You are a technical writing expert who writes clear documentation and comments.",
        model=DEFAULT_MODEL,
        tool_names=["read", "write"],
    ),
    AgentProfile(
        id="reviewer",
        name="Reviewer",
        description="Code review and quality checks",
        system_prompt="You are a code quality reviewer who cares about readability and best practices.",
        model=DEFAULT_MODEL,
        tool_names=["read", "bash"],
    ),
    AgentProfile(
        id="planner",
        name="Planner",
        description="Task planning and requirements analysis",
        system_prompt="You are a project planning expert, skilled at analysing requirements and making plans.",
        model=DEFAULT_MODEL,
        tool_names=["read"],
    ),
)


class AgentRegistry:
    """
    Registry for looking up agent profiles by id.

    Attributes:
        _agents: Internal mapping of agent ids to profiles
    """

    def __init__(self, agents: Iterable[AgentProfile | dict[str, Any]] = ()) -> None:
        self._agents: dict[str, AgentProfile] = {}
        for agent in agents:
            self.register(agent)

    @classmethod
    def with_builtins(cls) -> "AgentRegistry":
        """Registry preloaded with coder, architect, explorer, writer, reviewer, planner."""
        return cls(BUILTIN_AGENTS)

    def register(self, agent: AgentProfile | dict[str, Any]) -> AgentProfile:
        """
        Register (or replace) an agent profile.

        Raises:
            SchemaValidationError: If the profile is invalid; nothing is stored
        """
        profile = validate_model(AgentProfile, agent)
        if profile.id in self._agents:
            logger.debug("Replacing agent profile %s", profile.id)
        self._agents[profile.id] = profile
        return profile

    def get(self, agent_id: str) -> AgentProfile:
        """
        Look up an agent profile.

        Raises:
            AgentNotFoundError: If no profile has that id
        """
        profile = self._agents.get(agent_id)
        if profile is None:
            raise AgentNotFoundError(agent_id=agent_id)
        return profile

    def get_optional(self, agent_id: str) -> AgentProfile | None:
        return self._agents.get(agent_id)

    def has(self, agent_id: str) -> bool:
        return agent_id in self._agents

    def remove(self, agent_id: str) -> bool:
        """Remove a profile; True if it existed."""
        return self._agents.pop(agent_id, None) is not None

    def list(self) -> list[AgentProfile]:
        """All profiles in registration order."""
        return list(self._agents.values())

    def __len__(self) -> int:
        return len(self._agents)

    def __iter__(self) -> Iterator[AgentProfile]:
        return iter(list(self._agents.values()))

    def __contains__(self, agent_id: str) -> bool:
        return agent_id in self._agents
