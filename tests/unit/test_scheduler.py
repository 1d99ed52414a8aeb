"""
Unit tests for the plan scheduler.

Tests cover:
- Plan construction and validation
- Ready-step eligibility
- Status transitions
- Plan execution order, failure isolation, and usage totals
"""

import logging
import threading
import time

import pytest

from warden.agent.loop import LoopConfig
from warden.agent.registry import AgentRegistry
from warden.errors import (
    InvalidStatusTransitionError,
    PlanNotFoundError,
    SchemaValidationError,
    StepNotFoundError,
)
from warden.model.base import (
    ModelRequest,
    ScriptedModel,
    ToolCallEvent,
    text_response,
    tool_call_response,
)
from warden.orchestrator.scheduler import PlanScheduler, get_ready_steps
from warden.schema import (
    FinishReason,
    MessageRole,
    Plan,
    PlanSpec,
    StepSpec,
    TaskStatus,
    TaskStep,
)


def prompt_of(request: ModelRequest) -> str:
    return next(m.content for m in request.messages if m.role is MessageRole.USER)


def answer_prompt(request: ModelRequest):
    """Answer with the step's prompt; prompts containing 'slow' take longer."""
    prompt = prompt_of(request)
    if "slow" in prompt:
        time.sleep(0.1)
    return text_response(f"done: {prompt}", input_tokens=1, output_tokens=1)


def echo_once(request: ModelRequest):
    """Call echo once, then answer."""
    if request.messages[-1].role is MessageRole.TOOL:
        return text_response("echoed")
    return tool_call_response(ToolCallEvent(id="c1", name="echo", input={"text": "hello"}))


@pytest.fixture
def agents() -> AgentRegistry:
    return AgentRegistry([{"id": "worker", "name": "Worker", "tools": ["echo"]}])


@pytest.fixture
def scheduler(agents, tool_registry) -> PlanScheduler:
    return PlanScheduler(agents=agents, tools=tool_registry)


@pytest.fixture
def model() -> ScriptedModel:
    return ScriptedModel(fallback=answer_prompt)


def step(step_id: str, *deps: str, parallel: bool = False, agent: str = "worker") -> dict:
    return {
        "id": step_id,
        "agent_id": agent,
        "prompt": f"run {step_id}",
        "depends_on": list(deps),
        "parallel": parallel,
    }


# =============================================================================
# Plan Construction
# =============================================================================


class TestCreatePlan:
    """Tests for PlanScheduler.create_plan()."""

    def test_stores_plan(self, scheduler: PlanScheduler) -> None:
        plan = scheduler.create_plan("Build", [step("a"), step("b", "a")])

        assert scheduler.plans.get(plan.id) is plan
        assert [s.id for s in plan.steps] == ["a", "b"]
        assert all(s.status is TaskStatus.PENDING for s in plan.steps)

    def test_generates_missing_ids(self, scheduler: PlanScheduler) -> None:
        plan = scheduler.create_plan(
            "Build",
            [{"agent_id": "worker", "prompt": "one"}, {"agent_id": "worker", "prompt": "two"}],
        )
        first, second = plan.steps
        assert first.id and second.id
        assert first.id != second.id

    def test_accepts_models(self, scheduler: PlanScheduler) -> None:
        plan = scheduler.create_plan(
            "Build",
            [
                StepSpec(id="a", agent_id="worker", prompt="x"),
                TaskStep(id="b", agent_id="worker", prompt="y", status=TaskStatus.COMPLETED),
            ],
        )
        assert plan.get_step("b").status is TaskStatus.PENDING

    def test_from_spec(self, scheduler: PlanScheduler) -> None:
        spec = PlanSpec(title="Spec", steps=[StepSpec(agent_id="worker", prompt="x")])
        plan = scheduler.create_plan_from_spec(spec)
        assert plan.title == "Spec"
        assert len(plan.steps) == 1

    def test_duplicate_ids_rejected(self, scheduler: PlanScheduler) -> None:
        with pytest.raises(SchemaValidationError) as exc_info:
            scheduler.create_plan("Dup", [step("a"), step("a")])

        assert "duplicate step id: a" in exc_info.value.message
        assert len(scheduler.plans) == 0

    def test_invalid_step_rejected(self, scheduler: PlanScheduler) -> None:
        with pytest.raises(SchemaValidationError):
            scheduler.create_plan("Bad", [{"agent_id": "worker"}])
        assert len(scheduler.plans) == 0

    def test_unknown_dependency_warns(self, scheduler: PlanScheduler, caplog) -> None:
        with caplog.at_level(logging.WARNING, logger="warden"):
            plan = scheduler.create_plan("Orphan", [step("a", "ghost")])

        assert plan.get_step("a").depends_on == ["ghost"]
        assert "ghost" in caplog.text


# =============================================================================
# Eligibility and Status
# =============================================================================


class TestReadySteps:
    """Tests for get_ready_steps()."""

    def test_no_dependencies_ready(self) -> None:
        plan = Plan(title="P", steps=[TaskStep(**step("a")), TaskStep(**step("b"))])
        assert [s.id for s in get_ready_steps(plan)] == ["a", "b"]

    def test_waits_for_completed_dependency(self) -> None:
        plan = Plan(title="P", steps=[TaskStep(**step("a")), TaskStep(**step("b", "a"))])
        assert [s.id for s in get_ready_steps(plan)] == ["a"]

        plan.steps[0].status = TaskStatus.RUNNING
        assert get_ready_steps(plan) == []

        plan.steps[0].status = TaskStatus.COMPLETED
        assert [s.id for s in get_ready_steps(plan)] == ["b"]

    def test_failed_dependency_blocks(self) -> None:
        plan = Plan(title="P", steps=[TaskStep(**step("a")), TaskStep(**step("b", "a"))])
        plan.steps[0].status = TaskStatus.FAILED
        assert get_ready_steps(plan) == []

    def test_unknown_dependency_never_ready(self) -> None:
        plan = Plan(title="P", steps=[TaskStep(**step("a", "ghost"))])
        assert get_ready_steps(plan) == []

    def test_all_dependencies_required(self) -> None:
        plan = Plan(
            title="P",
            steps=[TaskStep(**step("a")), TaskStep(**step("b")), TaskStep(**step("c", "a", "b"))],
        )
        plan.steps[0].status = TaskStatus.COMPLETED
        assert [s.id for s in get_ready_steps(plan)] == ["b"]

    def test_scheduler_delegates(self, scheduler: PlanScheduler) -> None:
        plan = scheduler.create_plan("P", [step("a"), step("b", "a")])
        assert [s.id for s in scheduler.get_ready_steps(plan)] == ["a"]


class TestStatusTransitions:
    """Tests for update_step_status()."""

    def test_happy_path(self, scheduler: PlanScheduler) -> None:
        plan = scheduler.create_plan("P", [step("a")])

        scheduler.update_step_status(plan.id, "a", TaskStatus.RUNNING)
        updated = scheduler.update_step_status(plan.id, "a", TaskStatus.COMPLETED)

        assert updated.status is TaskStatus.COMPLETED
        assert plan.get_step("a").status is TaskStatus.COMPLETED

    def test_string_status(self, scheduler: PlanScheduler) -> None:
        plan = scheduler.create_plan("P", [step("a")])
        scheduler.update_step_status(plan.id, "a", "running")  # type: ignore[arg-type]
        assert plan.get_step("a").status is TaskStatus.RUNNING

    @pytest.mark.parametrize(
        ("path", "requested"),
        [
            ([], TaskStatus.COMPLETED),
            ([], TaskStatus.PENDING),
            ([TaskStatus.RUNNING], TaskStatus.PENDING),
            ([TaskStatus.RUNNING, TaskStatus.COMPLETED], TaskStatus.RUNNING),
            ([TaskStatus.RUNNING, TaskStatus.FAILED], TaskStatus.COMPLETED),
        ],
    )
    def test_invalid_transitions(
        self,
        scheduler: PlanScheduler,
        path: list[TaskStatus],
        requested: TaskStatus,
    ) -> None:
        plan = scheduler.create_plan("P", [step("a")])
        for status in path:
            scheduler.update_step_status(plan.id, "a", status)
        before = plan.get_step("a").status

        with pytest.raises(InvalidStatusTransitionError):
            scheduler.update_step_status(plan.id, "a", requested)
        assert plan.get_step("a").status is before

    def test_unknown_plan(self, scheduler: PlanScheduler) -> None:
        with pytest.raises(PlanNotFoundError):
            scheduler.update_step_status("nope", "a", TaskStatus.RUNNING)

    def test_unknown_step(self, scheduler: PlanScheduler) -> None:
        plan = scheduler.create_plan("P", [step("a")])
        with pytest.raises(StepNotFoundError):
            scheduler.update_step_status(plan.id, "zzz", TaskStatus.RUNNING)


# =============================================================================
# Execution
# =============================================================================


class TestExecutePlan:
    """Tests for PlanScheduler.execute_plan()."""

    def test_dependency_order(self, scheduler, model) -> None:
        plan = scheduler.create_plan("Chain", [step("c", "b"), step("b", "a"), step("a")])
        result = scheduler.execute_plan(plan, model)

        assert result.all_completed
        assert [r.step_id for r in result.results] == ["a", "b", "c"]
        assert result.results[0].output == "done: run a"

    def test_parallel_results_in_plan_order(self, scheduler, model) -> None:
        """Parallel results keep fan-out order whatever finishes first."""
        plan = scheduler.create_plan(
            "Fan",
            [
                {"id": "slow", "agent_id": "worker", "prompt": "slow job", "parallel": True},
                {"id": "fast", "agent_id": "worker", "prompt": "fast job", "parallel": True},
            ],
        )
        result = scheduler.execute_plan(plan, model)

        assert [r.step_id for r in result.results] == ["slow", "fast"]
        assert result.all_completed

    def test_parallel_steps_overlap(self, agents, tool_registry) -> None:
        """Parallel steps of one round run at the same time."""
        barrier = threading.Barrier(2, timeout=5)

        def wait_for_peer(request: ModelRequest):
            barrier.wait()
            return text_response("met")

        scheduler = PlanScheduler(agents=agents, tools=tool_registry)
        plan = scheduler.create_plan("Pair", [step("a", parallel=True), step("b", parallel=True)])
        result = scheduler.execute_plan(plan, ScriptedModel(fallback=wait_for_peer))

        assert result.all_completed

    def test_one_serial_step_per_round(self, scheduler, model) -> None:
        plan = scheduler.create_plan(
            "Mixed",
            [step("s1"), step("p1", parallel=True), step("s2"), step("p2", parallel=True)],
        )
        result = scheduler.execute_plan(plan, model)

        assert [r.step_id for r in result.results] == ["p1", "p2", "s1", "s2"]
        assert result.all_completed

    def test_failed_step_isolated(self, scheduler, model) -> None:
        """A failing step blocks its dependents but not independent steps."""
        plan = scheduler.create_plan(
            "Partial",
            [
                step("bad", agent="ghost"),
                step("after_bad", "bad"),
                step("good"),
            ],
        )
        result = scheduler.execute_plan(plan, model)

        assert not result.all_completed
        by_id = {r.step_id: r for r in result.results}
        assert set(by_id) == {"bad", "good"}
        assert not by_id["bad"].success
        assert by_id["good"].success
        assert plan.get_step("bad").status is TaskStatus.FAILED
        assert plan.get_step("after_bad").status is TaskStatus.PENDING
        assert plan.get_step("good").status is TaskStatus.COMPLETED

    def test_model_error_fails_step(self, scheduler) -> None:
        plan = scheduler.create_plan("Err", [step("a")])
        result = scheduler.execute_plan(plan, ScriptedModel([RuntimeError("down")]))

        assert not result.all_completed
        assert result.results[0].finish_reason is FinishReason.ERROR
        assert plan.get_step("a").status is TaskStatus.FAILED

    def test_total_usage(self, scheduler, model) -> None:
        plan = scheduler.create_plan("Sum", [step("a"), step("b", parallel=True), step("c", "a")])
        result = scheduler.execute_plan(plan, model)

        assert result.total_usage.input_tokens == 3
        assert result.total_usage.total_tokens == 6

    def test_each_step_gets_a_session(self, scheduler, model) -> None:
        plan = scheduler.create_plan("Sessions", [step("a"), step("b")])
        scheduler.execute_plan(plan, model)

        titles = sorted(s.title for s in scheduler.sessions.list())
        assert titles == ["Worker: run a", "Worker: run b"]

    def test_unknown_dependency_left_pending(self, scheduler, model) -> None:
        plan = scheduler.create_plan("Orphan", [step("a"), step("b", "ghost")])
        result = scheduler.execute_plan(plan, model)

        assert [r.step_id for r in result.results] == ["a"]
        assert not result.all_completed
        assert plan.get_step("b").status is TaskStatus.PENDING

    def test_empty_plan(self, scheduler, model) -> None:
        plan = scheduler.create_plan("Nothing", [])
        result = scheduler.execute_plan(plan, model)

        assert result.results == []
        assert result.all_completed

    def test_cancelled_before_start(self, scheduler, model) -> None:
        cancel = threading.Event()
        cancel.set()
        plan = scheduler.create_plan("Stop", [step("a")])

        result = scheduler.execute_plan(plan, model, cancel=cancel)

        assert result.results == []
        assert plan.get_step("a").status is TaskStatus.PENDING
        assert model.requests == []

    def test_unstored_plan_is_added(self, scheduler, model) -> None:
        plan = Plan(title="Loose", steps=[TaskStep(**step("a"))])
        result = scheduler.execute_plan(plan, model)

        assert result.plan_id == plan.id
        assert scheduler.plans.get(plan.id) is plan

    def test_copy_of_stored_plan(self, scheduler, model) -> None:
        """A copy sharing the stored plan's id runs as the plan of record."""
        plan = scheduler.create_plan("Copied", [step("a"), step("b", "a")])
        copy = plan.model_copy(deep=True)

        result = scheduler.execute_plan(copy, model)

        assert result.all_completed
        assert [r.step_id for r in result.results] == ["a", "b"]
        assert scheduler.plans.get(plan.id) is copy
        assert copy.get_step("b").status is TaskStatus.COMPLETED

    def test_iteration_limit_completes_step(self, agents, tool_registry) -> None:
        """Only errors, cancellation and pending approval fail a step."""
        scheduler = PlanScheduler(
            agents=agents,
            tools=tool_registry,
            loop_config=LoopConfig(max_iterations=1),
        )
        plan = scheduler.create_plan("Limit", [step("a")])

        result = scheduler.execute_plan(plan, ScriptedModel(fallback=echo_once))

        assert result.results[0].finish_reason is FinishReason.MAX_ITERATIONS
        assert result.results[0].success
        assert plan.get_step("a").status is TaskStatus.COMPLETED

    def test_approval_needed_without_approver(self, tool_registry) -> None:
        agents = AgentRegistry([
            {
                "id": "careful",
                "name": "Careful",
                "tools": ["echo"],
                "rules": [{"tool": "echo", "action": "ask"}],
            }
        ])
        scheduler = PlanScheduler(agents=agents, tools=tool_registry)
        plan = scheduler.create_plan("Ask", [step("a", agent="careful")])
        model = ScriptedModel(fallback=echo_once)

        result = scheduler.execute_plan(plan, model)

        assert not result.all_completed
        assert result.results[0].output.startswith("Waiting for approval of echo")

    def test_approval_granted(self, tool_registry, echo_tool) -> None:
        agents = AgentRegistry([
            {
                "id": "careful",
                "name": "Careful",
                "tools": ["echo"],
                "rules": [{"tool": "echo", "action": "ask"}],
            }
        ])
        scheduler = PlanScheduler(agents=agents, tools=tool_registry, approver=lambda p: True)
        plan = scheduler.create_plan("Ask", [step("a", agent="careful")])

        result = scheduler.execute_plan(plan, ScriptedModel(fallback=echo_once))

        assert result.all_completed
        assert echo_tool.calls == ["hello"]
