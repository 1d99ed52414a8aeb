"""
Agent runner for Warden.

Runs one prompt as one agent: looks up the profile, opens a session,
narrows the tool registry to the agent's tools, and drives a
ConversationLoop to the end of the turn.
"""

import logging
import threading
from collections.abc import Callable

from warden.agent.loop import ConversationLoop, LoopConfig, LoopResult, PendingApproval
from warden.agent.registry import AgentRegistry
from warden.errors import AgentNotFoundError
from warden.model.base import Model
from warden.schema import FinishReason, StepResult, TaskStep, Usage
from warden.session.store import SessionStore
from warden.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

# Decides a pending tool call: True to run it, False to reject it
Approver = Callable[[PendingApproval], bool]

SESSION_TITLE_PROMPT_CHARS = 50


class AgentRunner:
    """
    Runs prompts as registered agents.

    Attributes:
        agents: Profiles to look agents up in
        tools: Full tool registry; each agent sees only its own tools
        sessions: Store that receives one new session per run
        loop_config: Limits passed to every ConversationLoop
        approver: Decides calls that need approval; without one such a
            run ends suspended
    """

    def __init__(
        self,
        agents: AgentRegistry,
        tools: ToolRegistry,
        sessions: SessionStore,
        loop_config: LoopConfig | None = None,
        approver: Approver | None = None,
    ) -> None:
        self.agents = agents
        self.tools = tools
        self.sessions = sessions
        self.loop_config = loop_config
        self.approver = approver

    def run(
        self,
        agent_id: str,
        prompt: str,
        model: Model,
        project_root: str | None = None,
        cancel: threading.Event | None = None,
    ) -> LoopResult:
        """
        Run a prompt as an agent in a fresh session.

        Raises:
            AgentNotFoundError: If the agent id is unknown
        """
        profile = self.agents.get(agent_id)
        session = self.sessions.create(
            model_id=profile.model,
            title=f"{profile.name}: {prompt[:SESSION_TITLE_PROMPT_CHARS]}",
        )
        loop = ConversationLoop(
            model=model,
            tools=self.tools.resolve(profile.tool_names),
            store=self.sessions,
            rules=profile.rules,
            config=self.loop_config,
            system_prompt=profile.system_prompt or None,
            model_id=profile.model,
            temperature=profile.temperature,
            max_output_tokens=profile.max_output_tokens,
            working_dir=project_root or ".",
        )

        result = loop.run(session.id, prompt, cancel=cancel)
        while result.pending is not None and self.approver is not None:
            approved = self.approver(result.pending)
            result = loop.resume(session.id, approved, cancel=cancel)
        return result

    def run_step(
        self,
        step: TaskStep,
        model: Model,
        project_root: str | None = None,
        cancel: threading.Event | None = None,
    ) -> StepResult:
        """
        Run a plan step and summarize it as a StepResult.

        Never raises: an unknown agent or an unexpected failure yields an
        unsuccessful result with zero usage.
        """
        try:
            result = self.run(step.agent_id, step.prompt, model, project_root, cancel)
        except AgentNotFoundError as e:
            logger.warning("Step %s: %s", step.id, e.message)
            return StepResult(
                step_id=step.id,
                agent_id=step.agent_id,
                success=False,
                output=e.message,
                usage=Usage(),
                finish_reason=FinishReason.ERROR,
            )
        except Exception as e:
            logger.exception("Step %s failed unexpectedly", step.id)
            return StepResult(
                step_id=step.id,
                agent_id=step.agent_id,
                success=False,
                output=f"{type(e).__name__}: {e}",
                usage=Usage(),
                finish_reason=FinishReason.ERROR,
            )

        if result.pending is not None:
            output = f"Waiting for approval of {result.pending.invocation.name}: {result.pending.reason}"
        else:
            output = result.output

        return StepResult(
            step_id=step.id,
            agent_id=step.agent_id,
            success=not result.finish_reason.failed,
            output=output,
            usage=result.usage,
            finish_reason=result.finish_reason,
        )
