"""
Conversation loop for Warden.

This module implements the per-session loop that alternates between asking
the model for its next action and running the tool calls it requests:

1. Model is invoked with the full transcript and the available tools
2. Each requested tool call is checked by the policy engine
3. Allowed calls pass the doom-loop check and are dispatched
4. Tool results are appended and fed back to the model

The turn ends when the model answers without tool calls, when the model
fails, when the caller cancels, when the iteration guard trips, or when a
call needs approval. In the last case the turn is suspended and continues
with resume().

Design Principles:
    - Models are untrusted - every tool call is checked before dispatch
    - Tool and policy failures are recovered locally as tool-result errors
    - Model errors end the turn; there is no automatic retry
    - The transcript is append-only and lives in the SessionStore
"""

import json
import logging
import threading
from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from warden.errors import (
    ConversationStateError,
    DoomLoopError,
    ModelError,
    PermissionDeniedError,
    PermissionRejectedError,
    ToolNotFoundError,
    WardenError,
)
from warden.model.base import (
    ErrorEvent,
    Finish,
    Model,
    ModelRequest,
    TextDelta,
    ToolCallEvent,
)
from warden.policy.doom_loop import (
    DEFAULT_MAX_RECORDS,
    DEFAULT_THRESHOLD,
    DEFAULT_WINDOW_SECONDS,
    CallHistory,
    check_doom_loop,
)
from warden.policy.engine import PolicyEngine
from warden.schema import (
    FinishReason,
    Message,
    MessageRole,
    PermissionAction,
    PolicyRule,
    ToolInvocation,
    ToolOutcome,
    Usage,
)
from warden.session.store import SessionStore
from warden.tools.base import Tool, ToolContext
from warden.tools.dispatcher import ToolDispatcher
from warden.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


@dataclass
class LoopConfig:
    """
    Configuration for the conversation loop.

    Attributes:
        max_iterations: Maximum model calls per turn
        doom_loop_threshold: Identical recent calls that block the next one
        doom_loop_window_seconds: Sliding window for the doom-loop check
        history_max_records: Bound on the per-conversation call history
    """

    max_iterations: int = 50
    doom_loop_threshold: int = DEFAULT_THRESHOLD
    doom_loop_window_seconds: float = DEFAULT_WINDOW_SECONDS
    history_max_records: int = DEFAULT_MAX_RECORDS


@dataclass(frozen=True)
class PendingApproval:
    """
    A tool call waiting for an external allow/reject decision.

    Attributes:
        session_id: Suspended session
        invocation: The call that resolved to `ask`
        reason: Why the policy asked
    """

    session_id: str
    invocation: ToolInvocation
    reason: str


@dataclass
class LoopResult:
    """
    Outcome of one conversation turn (or of a resume).

    Attributes:
        session_id: Session the turn ran in
        final_message: Closing assistant message; None while suspended
        usage: Tokens used by the whole turn, across resumes
        finish_reason: Why the turn stopped
        pending: The call awaiting approval, when suspended
        iterations: Model calls made in the turn
    """

    session_id: str
    final_message: Message | None
    usage: Usage
    finish_reason: FinishReason
    pending: PendingApproval | None = None
    iterations: int = 0

    @property
    def success(self) -> bool:
        return self.finish_reason is FinishReason.STOP

    @property
    def output(self) -> str:
        return self.final_message.content if self.final_message is not None else ""


@dataclass
class _TurnState:
    """In-flight state of one turn; survives a suspension."""

    session_id: str
    history: CallHistory
    cancel: threading.Event | None = None
    usage: Usage = field(default_factory=Usage)
    iterations: int = 0
    queue: deque[ToolInvocation] = field(default_factory=deque)
    text: str = ""
    pending: PendingApproval | None = None


@dataclass
class _ModelStep:
    """What one model invocation produced."""

    text: str = ""
    calls: list[ToolInvocation] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    error: WardenError | None = None
    cancelled: bool = False


def _is_set(cancel: threading.Event | None) -> bool:
    return cancel is not None and cancel.is_set()


def _render_result(result: Any) -> str:
    if isinstance(result, str):
        return result
    return json.dumps(result, ensure_ascii=False, default=str)


class ConversationLoop:
    """
    Drives one agent's conversation with a model.

    Usage:
        loop = ConversationLoop(model, registry, store, rules=rules)
        result = loop.run(session.id, "Summarize README.md")
        while result.finish_reason is FinishReason.PENDING_APPROVAL:
            result = loop.resume(session.id, approved=ask_user(result.pending))

    Attributes:
        model: The model that proposes text and tool calls
        tools: Tools this loop may dispatch
        store: Session store holding the transcript
        policy: Policy engine built from the rules (allow-all when None)
        config: Loop limits
    """

    def __init__(
        self,
        model: Model,
        tools: ToolRegistry,
        store: SessionStore,
        rules: list[PolicyRule] | None = None,
        config: LoopConfig | None = None,
        system_prompt: str | None = None,
        model_id: str = "",
        temperature: float | None = None,
        max_output_tokens: int | None = None,
        working_dir: str = ".",
        dispatcher: ToolDispatcher | None = None,
    ) -> None:
        self.model = model
        self.tools = tools
        self.store = store
        self.policy = PolicyEngine(rules) if rules is not None else PolicyEngine.allow_all()
        self.config = config or LoopConfig()
        self.system_prompt = system_prompt
        self.model_id = model_id
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.working_dir = working_dir
        self.dispatcher = dispatcher or ToolDispatcher()
        self._turns: dict[str, _TurnState] = {}
        self._lock = threading.Lock()

    # =========================================================================
    # Public API
    # =========================================================================

    def run(
        self,
        session_id: str,
        user_message: str,
        history: CallHistory | None = None,
        cancel: threading.Event | None = None,
    ) -> LoopResult:
        """
        Run one conversation turn for a user message.

        Args:
            session_id: Session to append to (must exist in the store)
            user_message: The user's message for this turn
            history: Call history for doom-loop detection; a fresh one by default
            cancel: Set to stop the turn early

        Returns:
            LoopResult describing how the turn ended

        Raises:
            SessionNotFoundError: If the session doesn't exist
            ConversationStateError: If the session is waiting for approval
        """
        with self._lock:
            if session_id in self._turns:
                raise ConversationStateError(
                    session_id=session_id,
                    message=f"Session {session_id} is waiting for approval",
                    suggestion="Call resume() with a decision first",
                )

        self.store.append_message(session_id, MessageRole.USER, user_message)

        if history is None:
            history = CallHistory(max_records=self.config.history_max_records)
        state = _TurnState(session_id=session_id, history=history, cancel=cancel)
        return self._drive(state)

    def resume(
        self,
        session_id: str,
        approved: bool,
        cancel: threading.Event | None = None,
    ) -> LoopResult:
        """
        Continue a turn suspended on a tool call that needs approval.

        An approved call still goes through the doom-loop check; a rejected
        one becomes a tool-result error. Queued calls and further model
        calls then proceed as usual.

        Raises:
            ConversationStateError: If the session has no pending approval
        """
        with self._lock:
            state = self._turns.get(session_id)
            if state is None or state.pending is None:
                raise ConversationStateError(session_id=session_id)
            pending = state.pending
            state.pending = None

        if cancel is not None:
            state.cancel = cancel
        if _is_set(state.cancel):
            return self._cancel(state)

        invocation = state.queue.popleft()

        if approved:
            logger.debug("Call %s approved", invocation.id)
            tool = self.tools.get_optional(invocation.name)
            if tool is None:
                self._append_error(state, invocation, ToolNotFoundError(tool=invocation.name).message)
            else:
                self._dispatch(state, tool, invocation)
        else:
            logger.debug("Call %s rejected: %s", invocation.id, pending.reason)
            error = PermissionRejectedError(tool=invocation.name, tool_args=invocation.arguments)
            self._append_error(state, invocation, error.message)

        return self._drive(state)

    def pending_approval(self, session_id: str) -> PendingApproval | None:
        """The call a session is waiting on, or None."""
        with self._lock:
            state = self._turns.get(session_id)
            return state.pending if state is not None else None

    # =========================================================================
    # Turn Driving
    # =========================================================================

    def _drive(self, state: _TurnState) -> LoopResult:
        while True:
            stopped = self._process_queue(state)
            if stopped is not None:
                return stopped

            if _is_set(state.cancel):
                return self._cancel(state)

            if state.iterations >= self.config.max_iterations:
                logger.warning(
                    "Session %s hit the iteration limit (%d)",
                    state.session_id,
                    self.config.max_iterations,
                )
                return self._finish(
                    state,
                    FinishReason.MAX_ITERATIONS,
                    f"Stopped after {state.iterations} iterations without a final answer",
                )

            state.iterations += 1
            step = self._call_model(state)
            state.usage = state.usage + step.usage
            state.text += step.text

            if step.error is not None:
                logger.debug("Model error in session %s: %s", state.session_id, step.error.message)
                return self._finish(
                    state,
                    FinishReason.ERROR,
                    f"{state.text}\n\nError: {step.error.message}",
                )

            if step.cancelled:
                return self._cancel(state)

            if not step.calls:
                return self._finish(state, FinishReason.STOP, state.text)

            self.store.append_message(
                state.session_id,
                MessageRole.ASSISTANT,
                step.text,
                tool_calls=step.calls,
            )
            state.queue.extend(step.calls)

    def _process_queue(self, state: _TurnState) -> LoopResult | None:
        """Handle queued tool calls; return a result if the turn stops here."""
        while state.queue:
            if _is_set(state.cancel):
                return self._cancel(state)

            invocation = state.queue[0]
            tool = self.tools.get_optional(invocation.name)
            if tool is None:
                state.queue.popleft()
                self._append_error(state, invocation, ToolNotFoundError(tool=invocation.name).message)
                continue

            decision = self.policy.evaluate(invocation.name, invocation.arguments)

            if decision.action is PermissionAction.DENY:
                state.queue.popleft()
                error = PermissionDeniedError(
                    tool=invocation.name,
                    tool_args=invocation.arguments,
                    rule=decision.rule_matched,
                )
                self._append_error(state, invocation, error.message)
                continue

            if decision.action is PermissionAction.ASK:
                return self._suspend(state, invocation, decision.reason)

            state.queue.popleft()
            self._dispatch(state, tool, invocation)

        return None

    def _suspend(self, state: _TurnState, invocation: ToolInvocation, reason: str) -> LoopResult:
        pending = PendingApproval(
            session_id=state.session_id,
            invocation=invocation,
            reason=reason,
        )
        state.pending = pending
        with self._lock:
            self._turns[state.session_id] = state
        logger.debug("Session %s waiting for approval of %s", state.session_id, invocation.name)
        return LoopResult(
            session_id=state.session_id,
            final_message=None,
            usage=state.usage,
            finish_reason=FinishReason.PENDING_APPROVAL,
            pending=pending,
            iterations=state.iterations,
        )

    def _cancel(self, state: _TurnState) -> LoopResult:
        """Close every queued call with a cancelled result, then end the turn."""
        while state.queue:
            invocation = state.queue.popleft()
            self._append_error(state, invocation, "Cancelled")
        logger.info("Session %s cancelled", state.session_id)
        content = f"{state.text}\n\nCancelled" if state.text else "Cancelled"
        return self._finish(state, FinishReason.CANCELLED, content)

    def _finish(self, state: _TurnState, reason: FinishReason, content: str) -> LoopResult:
        with self._lock:
            self._turns.pop(state.session_id, None)
        message = self.store.append_message(state.session_id, MessageRole.ASSISTANT, content)
        return LoopResult(
            session_id=state.session_id,
            final_message=message,
            usage=state.usage,
            finish_reason=reason,
            iterations=state.iterations,
        )

    # =========================================================================
    # Model and Tools
    # =========================================================================

    def _call_model(self, state: _TurnState) -> _ModelStep:
        request = ModelRequest(
            model_id=self.model_id,
            messages=self.store.messages(state.session_id),
            tools=self.tools.specs(),
            system_prompt=self.system_prompt,
            max_output_tokens=self.max_output_tokens,
            temperature=self.temperature,
            cancel=state.cancel,
        )
        step = _ModelStep()
        text_parts: list[str] = []

        stream = None
        try:
            stream = self.model.invoke(request)
            for event in stream:
                if _is_set(state.cancel):
                    step.cancelled = True
                    break
                if isinstance(event, TextDelta):
                    text_parts.append(event.text)
                elif isinstance(event, ToolCallEvent):
                    arguments = dict(event.input) if isinstance(event.input, Mapping) else {}
                    step.calls.append(
                        ToolInvocation(id=event.id, name=event.name, arguments=arguments)
                    )
                elif isinstance(event, Finish):
                    step.usage = step.usage + event.usage
                elif isinstance(event, ErrorEvent):
                    step.error = ModelError(cause=event.cause)
                    break
            else:
                step.cancelled = _is_set(state.cancel)
        except WardenError as e:
            step.error = e
        except Exception as e:
            step.error = ModelError(cause=f"{type(e).__name__}: {e}")
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                close()

        step.text = "".join(text_parts)
        logger.debug(
            "Model step for session %s: %d chars, %d tool calls",
            state.session_id,
            len(step.text),
            len(step.calls),
        )
        return step

    def _dispatch(self, state: _TurnState, tool: Tool, invocation: ToolInvocation) -> None:
        if check_doom_loop(
            state.history,
            invocation.name,
            invocation.arguments,
            threshold=self.config.doom_loop_threshold,
            window_seconds=self.config.doom_loop_window_seconds,
        ):
            error = DoomLoopError(
                tool=invocation.name,
                tool_args=invocation.arguments,
                threshold=self.config.doom_loop_threshold,
                window_seconds=self.config.doom_loop_window_seconds,
            )
            logger.warning("Session %s: %s", state.session_id, error.message)
            self._append_error(state, invocation, error.message)
            return

        context = ToolContext(session_id=state.session_id, working_dir=self.working_dir)
        outcome = self.dispatcher.dispatch(tool, invocation, context)
        state.history.record(invocation.name, invocation.arguments)

        content = (
            _render_result(outcome.result) if outcome.success else f"Error: {outcome.error}"
        )
        self.store.append_message(
            state.session_id,
            MessageRole.TOOL,
            content,
            tool_results=[outcome],
        )

    def _append_error(self, state: _TurnState, invocation: ToolInvocation, error: str) -> None:
        self.store.append_message(
            state.session_id,
            MessageRole.TOOL,
            f"Error: {error}",
            tool_results=[ToolOutcome.fail(invocation.id, error)],
        )
