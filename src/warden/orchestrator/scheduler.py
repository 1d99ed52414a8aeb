"""
Plan scheduler for Warden.

A plan is a DAG of steps; each step is one agent answering one prompt in
its own session. The scheduler builds plans, tracks step status, and
executes plans in dependency order.

Execution algorithm (at most len(steps) + 1 rounds):
    1. Compute the ready steps; stop if there are none
    2. Split them into parallel and serial steps
    3. Mark the parallel steps and the first serial step running
    4. Fan the parallel steps out on a thread pool and join, then run the
       first serial step
    5. Mark each finished step completed or failed and record its result

A failed step never stops the plan. It only blocks its own dependents.

Thread Safety:
    Step status changes go through PlanStore under its lock. Worker threads
    only run conversations; statuses are written by the calling thread
    after the join.
"""

import logging
import threading
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from pydantic import BaseModel

from warden.agent.loop import LoopConfig
from warden.agent.registry import AgentRegistry
from warden.agent.runner import AgentRunner, Approver
from warden.errors import InvalidStatusTransitionError, PlanNotFoundError, StepNotFoundError
from warden.model.base import Model
from warden.schema import (
    Plan,
    PlanResult,
    PlanSpec,
    StepResult,
    StepSpec,
    TaskStatus,
    TaskStep,
    Usage,
    validate_model,
)
from warden.session.store import SessionStore
from warden.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 8

# Allowed status transitions: pending -> running -> completed | failed
VALID_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.RUNNING}),
    TaskStatus.RUNNING: frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
}


class PlanStore:
    """Thread-safe map of plans by id."""

    def __init__(self) -> None:
        self._plans: dict[str, Plan] = {}
        self._lock = threading.Lock()

    def add(self, plan: Plan) -> None:
        with self._lock:
            self._plans[plan.id] = plan

    def get(self, plan_id: str) -> Plan:
        """
        Look up a plan.

        Raises:
            PlanNotFoundError: If the id is unknown
        """
        with self._lock:
            plan = self._plans.get(plan_id)
        if plan is None:
            raise PlanNotFoundError(plan_id=plan_id)
        return plan

    def get_optional(self, plan_id: str) -> Plan | None:
        with self._lock:
            return self._plans.get(plan_id)

    def remove(self, plan_id: str) -> bool:
        with self._lock:
            return self._plans.pop(plan_id, None) is not None

    def list(self) -> list[Plan]:
        with self._lock:
            return list(self._plans.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._plans)

    def update_step_status(self, plan_id: str, step_id: str, status: TaskStatus) -> TaskStep:
        """
        Move a step to a new status.

        The check and the write happen under the store lock.

        Raises:
            PlanNotFoundError: If the plan id is unknown
            StepNotFoundError: If the step is not in the plan
            InvalidStatusTransitionError: If the move is not allowed
        """
        status = TaskStatus(status)
        with self._lock:
            plan = self._plans.get(plan_id)
            if plan is None:
                raise PlanNotFoundError(plan_id=plan_id)
            step = plan.get_step(step_id)
            if step is None:
                raise StepNotFoundError(plan_id=plan_id, step_id=step_id)
            if status not in VALID_TRANSITIONS[step.status]:
                raise InvalidStatusTransitionError(
                    step_id=step_id,
                    current=step.status.value,
                    requested=status.value,
                )
            step.status = status
        logger.info("Step %s of plan %s is now %s", step_id, plan_id, status.value)
        return step


def get_ready_steps(plan: Plan) -> list[TaskStep]:
    """
    Steps that can run now, in plan order.

    A step is ready when it is pending and every dependency names a
    completed step. Unknown or failed dependencies keep it waiting forever.
    """
    completed = {step.id for step in plan.steps if step.status is TaskStatus.COMPLETED}
    return [
        step
        for step in plan.steps
        if step.status is TaskStatus.PENDING
        and all(dep in completed for dep in step.depends_on)
    ]


def _step_data(step: TaskStep | StepSpec | dict[str, Any]) -> Any:
    if isinstance(step, BaseModel):
        data = step.model_dump()
    elif isinstance(step, dict):
        data = dict(step)
    else:
        return step
    data.pop("status", None)
    if not data.get("id"):
        data.pop("id", None)
    return data


class PlanScheduler:
    """
    Builds plans and executes them with registered agents.

    Usage:
        scheduler = PlanScheduler(AgentRegistry.with_builtins(), builtin_registry())
        plan = scheduler.create_plan("Refactor", [
            {"id": "scan", "agent_id": "explorer", "prompt": "Find dead code"},
            {"agent_id": "coder", "prompt": "Remove it", "depends_on": ["scan"]},
        ])
        result = scheduler.execute_plan(plan, model)

    Attributes:
        agents: Agent profiles steps refer to
        tools: Tool registry agents draw from
        sessions: Store receiving one session per executed step
        plans: Store holding every created plan
        max_workers: Upper bound on concurrently running parallel steps
        runner: Runs individual steps
    """

    def __init__(
        self,
        agents: AgentRegistry,
        tools: ToolRegistry,
        sessions: SessionStore | None = None,
        plans: PlanStore | None = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
        approver: Approver | None = None,
        loop_config: LoopConfig | None = None,
    ) -> None:
        self.agents = agents
        self.tools = tools
        self.sessions = sessions if sessions is not None else SessionStore()
        self.plans = plans if plans is not None else PlanStore()
        self.max_workers = max(1, max_workers)
        self.runner = AgentRunner(
            agents=agents,
            tools=tools,
            sessions=self.sessions,
            loop_config=loop_config,
            approver=approver,
        )

    # =========================================================================
    # Plan Construction
    # =========================================================================

    def create_plan(
        self,
        title: str,
        steps: Iterable[TaskStep | StepSpec | dict[str, Any]],
    ) -> Plan:
        """
        Build and store a plan.

        Missing step ids are generated; every step starts pending.

        Raises:
            SchemaValidationError: If the plan is invalid; nothing is stored
        """
        plan = validate_model(
            Plan,
            {"title": title, "steps": [_step_data(step) for step in steps]},
        )

        known = {step.id for step in plan.steps}
        for step in plan.steps:
            unknown = [dep for dep in step.depends_on if dep not in known]
            if unknown:
                logger.warning(
                    "Step %s depends on unknown steps %s and will never run",
                    step.id,
                    ", ".join(unknown),
                )

        self.plans.add(plan)
        logger.info("Created plan %s (%s) with %d steps", plan.id, plan.title, len(plan.steps))
        return plan

    def create_plan_from_spec(self, spec: PlanSpec) -> Plan:
        """Build and store a plan from a loaded plan file."""
        return self.create_plan(spec.title, spec.steps)

    def get_ready_steps(self, plan: Plan) -> list[TaskStep]:
        return get_ready_steps(plan)

    def update_step_status(self, plan_id: str, step_id: str, status: TaskStatus) -> TaskStep:
        """See PlanStore.update_step_status."""
        return self.plans.update_step_status(plan_id, step_id, status)

    # =========================================================================
    # Execution
    # =========================================================================

    def execute_plan(
        self,
        plan: Plan,
        model: Model,
        project_root: str | None = None,
        cancel: threading.Event | None = None,
    ) -> PlanResult:
        """
        Execute a plan to completion (or until nothing more can run).

        Args:
            plan: The plan to run; it replaces any stored plan with the same id
            model: Model every step talks to
            project_root: Working directory for tools
            cancel: Set to stop scheduling new rounds and cancel running steps

        Returns:
            PlanResult with step results in execution order
        """
        if self.plans.get_optional(plan.id) is not plan:
            self.plans.add(plan)

        results: list[StepResult] = []
        total = Usage()

        for _ in range(len(plan.steps) + 1):
            if cancel is not None and cancel.is_set():
                logger.info("Plan %s cancelled", plan.id)
                break

            ready = get_ready_steps(plan)
            if not ready:
                break

            parallel = [step for step in ready if step.parallel]
            serial = [step for step in ready if not step.parallel]

            for step in [*parallel, *serial[:1]]:
                self.update_step_status(plan.id, step.id, TaskStatus.RUNNING)

            finished: list[StepResult] = []
            if parallel:
                finished.extend(self._run_parallel(parallel, model, project_root, cancel))
            if serial:
                finished.append(self.runner.run_step(serial[0], model, project_root, cancel))

            for result in finished:
                status = TaskStatus.COMPLETED if result.success else TaskStatus.FAILED
                self.update_step_status(plan.id, result.step_id, status)
                total = total + result.usage
                results.append(result)

        all_completed = all(step.status is TaskStatus.COMPLETED for step in plan.steps)
        logger.info(
            "Plan %s finished: %d/%d steps completed",
            plan.id,
            sum(1 for step in plan.steps if step.status is TaskStatus.COMPLETED),
            len(plan.steps),
        )
        return PlanResult(
            plan_id=plan.id,
            results=results,
            all_completed=all_completed,
            total_usage=total,
        )

    def _run_parallel(
        self,
        steps: list[TaskStep],
        model: Model,
        project_root: str | None,
        cancel: threading.Event | None,
    ) -> list[StepResult]:
        """Run steps concurrently; results come back in submission order."""
        workers = min(self.max_workers, len(steps))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="warden-step") as pool:
            futures = [
                pool.submit(self.runner.run_step, step, model, project_root, cancel)
                for step in steps
            ]
            return [future.result() for future in futures]
