"""
Orchestration for Warden.

Runs multi-agent plans: DAGs of steps with parallel and serial hints.
"""

from warden.orchestrator.scheduler import PlanScheduler, PlanStore, get_ready_steps

__all__ = [
    "PlanScheduler",
    "PlanStore",
    "get_ready_steps",
]
