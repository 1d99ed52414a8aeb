"""
Base classes for Warden models.

This module defines the contract between the conversation loop and a
language model, along with the events a model streams back.

Design Principles:
    - Models are stateless between calls (the full transcript is passed)
    - invoke() returns a blocking iterator of events, in order:
      TextDelta*, ToolCallEvent*, ToolResultEvent*, then Finish or ErrorEvent
    - All model output is untrusted: tool calls go through the policy layer
    - Provider wire formats live in Model implementations, not here
"""

import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any

from warden.schema import Message, Usage
from warden.tools.base import ToolSpec


# =============================================================================
# Stream Events
# =============================================================================


@dataclass(frozen=True)
class TextDelta:
    """A fragment of assistant text."""

    text: str


@dataclass(frozen=True)
class ToolCallEvent:
    """The model asks for a tool call."""

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolResultEvent:
    """A tool result produced on the provider side. The loop ignores it."""

    id: str
    output: Any = None


@dataclass(frozen=True)
class Finish:
    """End of one model response, with the tokens it used."""

    usage: Usage = field(default_factory=Usage)


@dataclass(frozen=True)
class ErrorEvent:
    """The provider failed; ends the stream."""

    cause: str


ModelEvent = TextDelta | ToolCallEvent | ToolResultEvent | Finish | ErrorEvent


@dataclass
class ModelRequest:
    """
    Everything a model needs for one response.

    Attributes:
        model_id: Model reference from the agent profile
        system_prompt: System prompt, if any
        messages: Full session transcript, oldest first
        tools: Tools the model may call
        max_output_tokens: Optional generation limit
        temperature: Optional sampling temperature
        cancel: Set when the caller wants the stream to stop
    """

    model_id: str
    messages: list[Message]
    tools: list[ToolSpec] = field(default_factory=list)
    system_prompt: str | None = None
    max_output_tokens: int | None = None
    temperature: float | None = None
    cancel: threading.Event | None = None

    @property
    def cancelled(self) -> bool:
        return self.cancel is not None and self.cancel.is_set()


class Model(ABC):
    """
    Abstract base class for language models.

    Implementations translate a ModelRequest into a provider call and
    translate the provider's stream back into ModelEvents. Exceptions
    raised while iterating are treated as model errors by the loop.

    Example Implementation:
        class EchoModel(Model):
            def invoke(self, request):
                last = request.messages[-1].content
                yield TextDelta(text=last)
                yield Finish()
    """

    @abstractmethod
    def invoke(self, request: ModelRequest) -> Iterator[ModelEvent]:
        """
        Stream the model's response to a request.

        Args:
            request: Transcript, tools, and generation settings

        Yields:
            ModelEvent instances in stream order
        """
        ...

    def __repr__(self) -> str:
        return f"<Model: {self.__class__.__name__}>"


# =============================================================================
# Scripted Model
# =============================================================================

Turn = Sequence[ModelEvent] | Exception


def text_response(text: str, input_tokens: int = 0, output_tokens: int = 0) -> list[ModelEvent]:
    """A turn that answers with plain text."""
    return [
        TextDelta(text=text),
        Finish(
            usage=Usage(
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens,
            )
        ),
    ]


def tool_call_response(
    *calls: ToolCallEvent,
    text: str = "",
    input_tokens: int = 0,
    output_tokens: int = 0,
) -> list[ModelEvent]:
    """A turn that requests one or more tool calls."""
    events: list[ModelEvent] = [TextDelta(text=text)] if text else []
    events.extend(calls)
    events.append(
        Finish(
            usage=Usage(
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens,
            )
        )
    )
    return events


class ScriptedModel(Model):
    """
    Model that replays canned turns, for tests and dry runs.

    Each invoke() consumes the next turn. A turn is a sequence of events,
    or an exception raised while the stream is read. Once the script runs
    out, `fallback` (if given) builds the response from the request;
    otherwise the stream reports an error.
    The stream stops early once the request's cancel event is set.

    Attributes:
        requests: Every request received, in order
    """

    def __init__(
        self,
        turns: Iterable[Turn] = (),
        fallback: Callable[[ModelRequest], Sequence[ModelEvent]] | None = None,
    ) -> None:
        self._turns = list(turns)
        self._fallback = fallback
        self._lock = threading.Lock()
        self.requests: list[ModelRequest] = []

    @property
    def remaining(self) -> int:
        return len(self._turns)

    def _next_turn(self, request: ModelRequest) -> Turn:
        with self._lock:
            self.requests.append(request)
            if self._turns:
                return self._turns.pop(0)
        if self._fallback is not None:
            return self._fallback(request)
        return [ErrorEvent(cause="No scripted response left")]

    def invoke(self, request: ModelRequest) -> Iterator[ModelEvent]:
        turn = self._next_turn(request)
        if isinstance(turn, Exception):
            raise turn
        for event in turn:
            if request.cancelled:
                return
            yield event
