"""
Permission evaluation for Warden.

Every tool call the model requests is checked against an ordered rule set
before it reaches the dispatcher.

Design Principles:
    - Deny-by-default: a call no rule matches is denied
    - Last-match-wins: later rules override earlier ones
    - Predictable: same inputs always produce the same decision
    - Auditable: PolicyEngine decisions name the rule that decided

How it works:
    1. Rules are scanned front to back
    2. A rule applies when its tool is "*" or the exact tool name
    3. A patterned rule additionally needs a path-like argument matching its glob
    4. An exact-tool match always replaces the tracked action; a wildcard
       match only does so while no exact match has been seen
    5. A matching patterned rule for the exact tool decides immediately
"""

import logging
from collections.abc import Mapping, Sequence
from fnmatch import fnmatchcase
from typing import Any

from warden.schema import PermissionAction, PolicyDecision, PolicyRule

logger = logging.getLogger(__name__)

WILDCARD = "*"

# Argument keys whose string values are matched against rule patterns
PATH_ARG_KEYS = ("filePath", "file_path", "path", "file", "command")

ALLOW_ALL: tuple[PolicyRule, ...] = (
    PolicyRule(tool=WILDCARD, action=PermissionAction.ALLOW),
)


# =============================================================================
# Glob Matching
# =============================================================================


def glob_match(pattern: str, value: str) -> bool:
    """
    Match a value against a slash-separated glob.

    `*` and `?` stay within one segment, a `**` segment spans any number of
    segments (including none). As in minimatch, wildcards and `**` skip
    names starting with a dot unless the pattern starts that segment with
    one. A trailing slash on the value is ignored, so `rm -rf *` matches
    `rm -rf /`.

    Examples:
        glob_match("src/**/*.py", "src/a/b/c.py") -> True
        glob_match("*.txt", "docs/a.txt") -> False
    """
    pattern_parts = pattern.split("/")
    value_parts = value.split("/")
    if len(value_parts) > 1 and value_parts[-1] == "" and pattern_parts[-1] != "":
        value_parts = value_parts[:-1]
    return _match_parts(pattern_parts, value_parts)


def _match_parts(pattern_parts: list[str], value_parts: list[str]) -> bool:
    if not pattern_parts:
        return not value_parts

    head, rest = pattern_parts[0], pattern_parts[1:]
    if head == "**":
        for i in range(len(value_parts) + 1):
            if _match_parts(rest, value_parts[i:]):
                return True
            # `**` never steps into a dot segment
            if i < len(value_parts) and value_parts[i].startswith("."):
                return False
        return False
    if not value_parts:
        return False
    return _match_segment(head, value_parts[0]) and _match_parts(rest, value_parts[1:])


def _match_segment(pattern: str, segment: str) -> bool:
    # Wildcards only match a leading dot when the pattern spells it out
    if segment.startswith(".") and not pattern.startswith("."):
        return False
    return fnmatchcase(segment, pattern)


def _pattern_matches(pattern: str, args: Mapping[str, Any] | None) -> bool:
    """Check whether any path-like argument matches the pattern."""
    if not args:
        return False
    for key in PATH_ARG_KEYS:
        candidate = args.get(key)
        if isinstance(candidate, str) and glob_match(pattern, candidate):
            return True
    return False


# =============================================================================
# Evaluation
# =============================================================================


def _resolve(
    rules: Sequence[PolicyRule],
    tool_name: str,
    args: Mapping[str, Any] | None,
) -> tuple[PermissionAction, int | None]:
    """Return the resolved action and the index of the deciding rule."""
    action: PermissionAction | None = None
    index: int | None = None
    exact_seen = False

    for i, rule in enumerate(rules):
        exact = rule.tool == tool_name
        if not exact and rule.tool != WILDCARD:
            continue

        if rule.pattern is not None:
            if not _pattern_matches(rule.pattern, args):
                continue
            if exact:
                return rule.action, i

        if exact:
            action, index, exact_seen = rule.action, i, True
        elif not exact_seen:
            action, index = rule.action, i

    if action is None:
        return PermissionAction.DENY, None
    return action, index


def evaluate(
    rules: Sequence[PolicyRule],
    tool_name: str,
    args: Mapping[str, Any] | None = None,
) -> PermissionAction:
    """
    Resolve the action for a tool call.

    Args:
        rules: Ordered rule set
        tool_name: Name of the tool being called
        args: Arguments of the call, used for patterned rules

    Returns:
        allow, deny, or ask. Deny when no rule matches.
    """
    action, _ = _resolve(rules, tool_name, args)
    return action


def merge(
    base: Sequence[PolicyRule],
    override: Sequence[PolicyRule],
) -> list[PolicyRule]:
    """
    Concatenate two rule sets, base first.

    Under last-match-wins the override rules take precedence.
    """
    return [*base, *override]


class PolicyEngine:
    """
    Rule-set evaluator that explains its decisions.

    Usage:
        engine = PolicyEngine(rules)
        decision = engine.evaluate("bash", {"command": "ls"})
        if decision.allowed:
            # dispatch the call

    Attributes:
        rules: The ordered rule set being enforced
    """

    def __init__(self, rules: Sequence[PolicyRule]) -> None:
        self.rules = list(rules)

    @classmethod
    def allow_all(cls) -> "PolicyEngine":
        """Engine for agents without a policy of their own."""
        return cls(ALLOW_ALL)

    def evaluate(
        self,
        tool_name: str,
        args: Mapping[str, Any] | None = None,
    ) -> PolicyDecision:
        """
        Evaluate a tool call against the rule set.

        Returns:
            PolicyDecision with the action and the rule that decided it
        """
        action, index = _resolve(self.rules, tool_name, args)

        if index is None:
            decision = PolicyDecision.deny(
                f"No rule matches tool {tool_name}",
                rule="deny_by_default",
            )
        else:
            rule = self.rules[index]
            decision = PolicyDecision(
                action=action,
                reason=f"Matched rule {rule.describe()}",
                rule_matched=f"rules[{index}]",
            )

        logger.debug(
            "Policy decision for %s: %s (%s)",
            tool_name,
            decision.action.value,
            decision.rule_matched,
        )
        return decision
