"""
Agent module for Warden.

This module runs agents: named profiles that hold a conversation with a
model and call tools under a permission policy.

Components:
    - ConversationLoop: model -> policy -> doom-loop check -> dispatch cycle
    - AgentRegistry: profiles looked up by id, with builtin defaults
    - AgentRunner: one prompt, one agent, one fresh session

Security Model:
    - Models are untrusted: every tool call is evaluated before dispatch
    - Calls that need approval suspend the turn until a decision arrives
    - Repeated identical calls are refused
"""

from warden.agent.loop import ConversationLoop, LoopConfig, LoopResult, PendingApproval
from warden.agent.registry import BUILTIN_AGENTS, AgentRegistry
from warden.agent.runner import AgentRunner, Approver

__all__ = [
    "BUILTIN_AGENTS",
    "AgentRegistry",
    "AgentRunner",
    "Approver",
    "ConversationLoop",
    "LoopConfig",
    "LoopResult",
    "PendingApproval",
]
