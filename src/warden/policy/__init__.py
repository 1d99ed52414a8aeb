"""
Policy module for Warden.

This module decides whether a requested tool call may run.

Key concepts:
    - Rules: ordered (tool, pattern, action) triples, last match wins
    - Deny-by-default: a call no rule matches is denied
    - Ask: a call that needs an external decision before it runs
    - Doom loop: the same call repeated too often in a short window

Everything here is pure apart from CallHistory, which one conversation owns.
"""

from warden.policy.doom_loop import CallHistory, ToolCallRecord, args_equal, check_doom_loop
from warden.policy.engine import PolicyEngine, evaluate, glob_match, merge

__all__ = [
    "CallHistory",
    "PolicyEngine",
    "ToolCallRecord",
    "args_equal",
    "check_doom_loop",
    "evaluate",
    "glob_match",
    "merge",
]
