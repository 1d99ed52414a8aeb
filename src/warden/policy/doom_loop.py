"""
Repetition ("doom loop") detection for Warden.

A model that keeps requesting the same tool call with the same arguments is
stuck. Each conversation keeps a CallHistory of dispatched calls; before a
new call is dispatched, check_doom_loop() counts identical calls inside a
sliding time window.
"""

import time
from collections import deque
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

DEFAULT_THRESHOLD = 3
DEFAULT_WINDOW_SECONDS = 60.0
DEFAULT_MAX_RECORDS = 1000


@dataclass(frozen=True)
class ToolCallRecord:
    """One dispatched tool call."""

    tool_name: str
    args: dict[str, Any] = field(default_factory=dict)
    timestamp: float = 0.0


class CallHistory:
    """
    Bounded, append-only history of dispatched tool calls.

    Belongs to exactly one conversation. Past `max_records` the oldest
    records are dropped.

    Attributes:
        clock: Returns the current time in seconds
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        max_records: int = DEFAULT_MAX_RECORDS,
    ) -> None:
        self.clock = clock
        self._records: deque[ToolCallRecord] = deque(maxlen=max_records)

    def record(self, tool_name: str, args: Mapping[str, Any] | None = None) -> ToolCallRecord:
        """Append a call stamped with the current clock time."""
        entry = ToolCallRecord(
            tool_name=tool_name,
            args=dict(args or {}),
            timestamp=self.clock(),
        )
        self._records.append(entry)
        return entry

    @property
    def records(self) -> list[ToolCallRecord]:
        return list(self._records)

    def recent(self, window_seconds: float, now: float | None = None) -> list[ToolCallRecord]:
        """Records strictly younger than the window."""
        if now is None:
            now = self.clock()
        return [r for r in self._records if now - r.timestamp < window_seconds]

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[ToolCallRecord]:
        return iter(list(self._records))


def args_equal(a: Any, b: Any) -> bool:
    """
    Structural equality for tool arguments.

    Mappings compare by key set and per-key value, lists and tuples
    element-wise. Booleans never equal numbers.
    """
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b

    if isinstance(a, Mapping) or isinstance(b, Mapping):
        if not (isinstance(a, Mapping) and isinstance(b, Mapping)):
            return False
        if set(a) != set(b):
            return False
        return all(args_equal(a[key], b[key]) for key in a)

    if isinstance(a, (list, tuple)) or isinstance(b, (list, tuple)):
        if not (isinstance(a, (list, tuple)) and isinstance(b, (list, tuple))):
            return False
        if len(a) != len(b):
            return False
        return all(args_equal(x, y) for x, y in zip(a, b))

    return a == b


def check_doom_loop(
    history: CallHistory,
    tool_name: str,
    args: Mapping[str, Any] | None,
    now: float | None = None,
    threshold: int = DEFAULT_THRESHOLD,
    window_seconds: float = DEFAULT_WINDOW_SECONDS,
) -> bool:
    """
    Detect a repeated tool call.

    Args:
        history: Calls already dispatched in this conversation
        tool_name: Tool about to be called
        args: Arguments about to be passed
        now: Evaluation time; defaults to the history clock
        threshold: Identical calls needed to trigger
        window_seconds: Only calls younger than this count

    Returns:
        True if at least `threshold` identical calls fall inside the window
    """
    args = args or {}
    count = sum(
        1
        for entry in history.recent(window_seconds, now)
        if entry.tool_name == tool_name and args_equal(entry.args, args)
    )
    return count >= threshold
