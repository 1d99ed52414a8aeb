"""
Warden - Permission-checked tool calls and multi-agent plans.

Warden sits between a language model and the tools it asks to run.
It provides:
- Rule-based permissions (allow / deny / ask, last match wins, deny-by-default)
- Doom-loop detection for repeated identical tool calls
- A conversation loop that suspends when a call needs approval
- A scheduler that runs dependency-ordered plans of agent steps

Example usage:
    $ warden check rules.yaml bash --arg "command=rm -rf /"
    $ warden agents
    $ warden plan release.yaml
"""

__version__ = "0.1.0"
__author__ = "Warden Contributors"

__all__ = [
    "__version__",
    "__author__",
]
