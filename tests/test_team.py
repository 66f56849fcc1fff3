"""
Tests for ensemble.team
=========================

These tests drive the Team facade against real components: the default
rule registry, the status event pipeline, the in-memory state store, the
scheduler and CallableAgents. Agents that must be held mid-task wait on an
asyncio.Event ("gate") so tests can pause, stop or block the workflow while
a task is DOING.

What's Being Tested:
    - Construction checks (duplicate ids, unknown agents, strategy choice)
    - start() to FINISHED, ERRORED, BLOCKED and STOPPED
    - Agents out of iterations block their task instead of failing the run
    - Transitions from an outdated status are vetoed, and pause() racing
      the scheduler never records a status jump
    - pause() / resume() / stop() and their preconditions
    - provide_feedback() and validate_task()
    - get_tasks_by_status() and get_workflow_stats()
    - subscribe() and cleanup()
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

import pytest

from ensemble.agents.base import BaseAgent
from ensemble.agents.callable import CallableAgent
from ensemble.core.config import EnsembleConfig
from ensemble.core.enums import (
    AgentStatus,
    EntityKind,
    FlowType,
    StatusEventType,
    TaskStatus,
    ValidationErrorCode,
    WorkflowStatus,
)
from ensemble.core.exceptions import (
    CircularDependencyError,
    ConfigurationError,
    EventValidationError,
    ExecutionError,
    NotFoundError,
    StateTransitionInvalidError,
    ValidationError,
    WorkflowError,
)
from ensemble.core.events import BaseEvent
from ensemble.core.models import Task, ValidationResult
from ensemble.orchestration.event_bus import FunctionEventHandler
from ensemble.team import Team


# =============================================================================
# Helpers
# =============================================================================

async def _wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    """Poll ``predicate`` until it holds or ``timeout`` seconds pass."""

    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_poll(), timeout=timeout)


def _task_status(team: Team, task_id: str) -> TaskStatus:
    task = team.get_state().get_task(task_id)
    assert task is not None
    return task.status


def _make_recording_agent(
    agent_id: str = "worker",
    calls: Optional[list[tuple[str, str]]] = None,
    gates: Optional[dict[str, asyncio.Event]] = None,
    fail_on: Optional[set[str]] = None,
) -> CallableAgent:
    """Agent that records (task_id, context), optionally waiting or failing."""

    async def perform(task: Task, inputs: dict[str, Any], context: str) -> str:
        if calls is not None:
            calls.append((task.id, context))
        if gates and task.id in gates:
            await gates[task.id].wait()
        if fail_on and task.id in fail_on:
            raise RuntimeError(f"boom in {task.id}")
        return f"done {task.id}"

    return CallableAgent(agent_id, perform, role="Worker")


def _make_tasks(*ids: str, agent_id: str = "worker") -> list[Task]:
    return [Task(id=task_id, description=f"Do {task_id}", agent_id=agent_id) for task_id in ids]


class _ToolLoopingAgent(BaseAgent):
    """Keeps asking for a tool it doesn't have until it runs out of iterations."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.lookups = 0

    async def _perform(self, task: Task, inputs: dict[str, Any], context: str) -> Any:
        while True:
            self.lookups += 1
            try:
                return await self.use_tool("lookup", key=task.id)
            except NotFoundError:
                continue


async def _slow_validate(event: BaseEvent) -> ValidationResult:
    await asyncio.sleep(0.02)
    return ValidationResult.success()


# =============================================================================
# Test: Construction
# =============================================================================

class TestTeamConstruction:
    """Tests for the checks Team runs before anything executes."""

    def test_initial_state(self, config, echo_agent, two_tasks) -> None:
        """A new team is INITIAL with every task PENDING."""
        team = Team("writers", agents=[echo_agent], tasks=two_tasks, config=config, workflow_id="wf-1")

        assert team.workflow_id == "wf-1"
        assert team.name == "writers"
        assert team.workflow_status == WorkflowStatus.INITIAL
        assert [task.status for task in team.tasks] == [TaskStatus.PENDING, TaskStatus.PENDING]
        assert team.strategy.flow_type == FlowType.SEQUENTIAL
        assert echo_agent.is_bound

    def test_duplicate_agent_id(self, config, two_tasks) -> None:
        """Two agents sharing an id are rejected."""
        first = _make_recording_agent("echo")
        second = _make_recording_agent("echo")

        with pytest.raises(ConfigurationError) as exc_info:
            Team("dup", agents=[first, second], tasks=two_tasks, config=config)

        assert exc_info.value.error_code == "DUPLICATE_AGENT_ID"

    def test_duplicate_task_id(self, config, echo_agent) -> None:
        """Two tasks sharing an id are rejected."""
        tasks = _make_tasks("a", "a", agent_id="echo")

        with pytest.raises(ConfigurationError) as exc_info:
            Team("dup", agents=[echo_agent], tasks=tasks, config=config)

        assert exc_info.value.error_code == "DUPLICATE_TASK_ID"

    def test_unknown_agent(self, config, echo_agent) -> None:
        """A task assigned to an agent the team doesn't have is rejected."""
        tasks = [Task(id="a", description="Do a", agent_id="ghost")]

        with pytest.raises(ConfigurationError) as exc_info:
            Team("lost", agents=[echo_agent], tasks=tasks, config=config)

        assert exc_info.value.error_code == "UNKNOWN_AGENT"
        assert exc_info.value.details["agent_id"] == "ghost"

    def test_dependency_graph_selects_hierarchy(self, config) -> None:
        """Two dependent tasks after the first switch to hierarchy scheduling."""
        tasks = [
            Task(id="a", description="a", agent_id="worker"),
            Task(id="b", description="b", agent_id="worker", dependencies=["a"]),
            Task(id="c", description="c", agent_id="worker", dependencies=["a"]),
        ]

        team = Team("graph", agents=[_make_recording_agent()], tasks=tasks, config=config)

        assert team.strategy.flow_type == FlowType.HIERARCHY

    def test_forced_sequential_rejects_ambiguous_graph(self, config) -> None:
        """Forcing sequential on a branching graph is a configuration error."""
        tasks = [
            Task(id="a", description="a", agent_id="worker"),
            Task(id="b", description="b", agent_id="worker", dependencies=["a"]),
            Task(id="c", description="c", agent_id="worker", dependencies=["a"]),
        ]

        with pytest.raises(ConfigurationError) as exc_info:
            Team(
                "graph",
                agents=[_make_recording_agent()],
                tasks=tasks,
                config=config,
                flow_type=FlowType.SEQUENTIAL,
            )

        assert exc_info.value.error_code == "AMBIGUOUS_SEQUENTIAL_DEPENDENCIES"


# =============================================================================
# Test: Sequential Runs
# =============================================================================

class TestSequentialRun:
    """Tests for start() on the sequential strategy."""

    async def test_runs_to_finished(self, config, echo_agent, two_tasks) -> None:
        """Both tasks run in order and the workflow FINISHES."""
        async with Team("writers", agents=[echo_agent], tasks=two_tasks, config=config) as team:
            result = await asyncio.wait_for(team.start({"topic": "bees"}), timeout=5)

            assert result.status == WorkflowStatus.FINISHED
            assert result.result == "done: Write about bees"
            assert [task.status for task in team.tasks] == [TaskStatus.DONE, TaskStatus.DONE]
            assert team.tasks[0].result == "done: Research bees"
            assert team.get_state().inputs == {"topic": "bees"}
            assert echo_agent.status == AgentStatus.IDLE

    async def test_deliverable_task_is_the_result(self, config, echo_agent) -> None:
        """The deliverable task's result wins over the last task's."""
        tasks = [
            Task(id="draft", description="Draft", agent_id="echo", is_deliverable=True),
            Task(id="notes", description="Notes", agent_id="echo"),
        ]

        async with Team("docs", agents=[echo_agent], tasks=tasks, config=config) as team:
            result = await asyncio.wait_for(team.start(), timeout=5)

        assert result.result == "done: Draft"

    async def test_later_tasks_receive_earlier_results(self, config) -> None:
        """Sequential context carries every earlier task's result."""
        calls: list[tuple[str, str]] = []
        agent = _make_recording_agent(calls=calls)

        async with Team("chain", agents=[agent], tasks=_make_tasks("a", "b"), config=config) as team:
            await asyncio.wait_for(team.start(), timeout=5)

        assert [task_id for task_id, _ in calls] == ["a", "b"]
        assert calls[0][1] == ""
        assert "Task: Do a\nResult: done a\n" in calls[1][1]

    async def test_empty_team_finishes(self, config, echo_agent) -> None:
        """A team without tasks FINISHES immediately with no result."""
        async with Team("idle", agents=[echo_agent], tasks=[], config=config) as team:
            result = await asyncio.wait_for(team.start(), timeout=5)

        assert result.status == WorkflowStatus.FINISHED
        assert result.result is None

    async def test_stats_after_finish(self, config, echo_agent, two_tasks) -> None:
        """Stats count tasks, iterations, transitions and metrics."""
        async with Team("writers", agents=[echo_agent], tasks=two_tasks, config=config) as team:
            result = await asyncio.wait_for(team.start({"topic": "ants"}), timeout=5)
            stats = team.get_workflow_stats()

        assert result.stats.status == WorkflowStatus.FINISHED
        assert stats.task_count == 2
        assert stats.agent_count == 1
        assert stats.tasks_by_status == {"DONE": 2}
        assert stats.iteration_count == 2
        assert stats.transition_count > 0
        assert stats.metric_counts["performance"] > 0
        assert stats.started_at is not None
        assert stats.finished_at is not None
        assert stats.duration_seconds is not None and stats.duration_seconds >= 0

    async def test_workflow_log_records_transitions(self, config, echo_agent, two_tasks) -> None:
        """Every committed transition lands in the workflow log."""
        async with Team("writers", agents=[echo_agent], tasks=two_tasks, config=config) as team:
            await asyncio.wait_for(team.start({"topic": "ants"}), timeout=5)
            logs = team.get_state().logs

        task_moves = [
            (entry.from_status, entry.to_status)
            for entry in logs
            if entry.entity_id == "research"
        ]
        assert task_moves == [("PENDING", "TODO"), ("TODO", "DOING"), ("DOING", "DONE")]
        assert logs[-1].to_status == "FINISHED"

    async def test_get_tasks_by_status(self, config, echo_agent, two_tasks) -> None:
        """get_tasks_by_status filters the current task list."""
        async with Team("writers", agents=[echo_agent], tasks=two_tasks, config=config) as team:
            assert len(team.get_tasks_by_status(TaskStatus.PENDING)) == 2

            await asyncio.wait_for(team.start({"topic": "ants"}), timeout=5)

            assert [task.id for task in team.get_tasks_by_status(TaskStatus.DONE)] == ["research", "write"]
            assert team.get_tasks_by_status(TaskStatus.TODO) == []


# =============================================================================
# Test: Failure Outcomes
# =============================================================================

class TestFailureOutcomes:
    """Tests for ERRORED and BLOCKED workflows."""

    async def test_agent_failure_errors_workflow(self, config) -> None:
        """A failing task ends the workflow ERRORED and blocks its dependents."""
        agent = _make_recording_agent(fail_on={"a"})

        async with Team("fragile", agents=[agent], tasks=_make_tasks("a", "b", "c"), config=config) as team:
            with pytest.raises(ExecutionError) as exc_info:
                await asyncio.wait_for(team.start(), timeout=5)

            assert exc_info.value.error_code == "WORKFLOW_ERRORED"
            assert exc_info.value.details["failed_tasks"] == ["a"]
            assert isinstance(exc_info.value.__cause__, ExecutionError)
            assert team.workflow_status == WorkflowStatus.ERRORED
            assert _task_status(team, "a") == TaskStatus.ERROR
            assert "boom in a" in team.get_state().get_task("a").error
            assert _task_status(team, "b") == TaskStatus.BLOCKED
            assert _task_status(team, "c") == TaskStatus.BLOCKED
            assert agent.status == AgentStatus.IDLE

    async def test_blocked_task_blocks_workflow(self, config) -> None:
        """With nothing left to run and a task BLOCKED, the workflow is BLOCKED."""
        gates = {"a": asyncio.Event()}
        agent = _make_recording_agent(gates=gates)

        async with Team("stuck", agents=[agent], tasks=_make_tasks("a", "b", "c"), config=config) as team:
            run = asyncio.create_task(team.start())
            await _wait_for(lambda: _task_status(team, "a") == TaskStatus.DOING)

            await team.pause()
            await team.update_task_status("b", TaskStatus.BLOCKED, "manual_block")
            gates["a"].set()
            await _wait_for(lambda: _task_status(team, "a") == TaskStatus.DONE)
            await _wait_for(lambda: _task_status(team, "c") == TaskStatus.BLOCKED)
            await team.resume()

            result = await asyncio.wait_for(run, timeout=5)

            assert result.status == WorkflowStatus.BLOCKED
            assert result.stats.tasks_by_status == {"DONE": 1, "BLOCKED": 2}

    async def test_max_iterations_blocks_task_and_workflow(self, config) -> None:
        """An agent out of iterations parks its task in BLOCKED; start() returns."""
        agent = _ToolLoopingAgent("looper", max_iterations=2)

        async with Team(
            "looping",
            agents=[agent],
            tasks=_make_tasks("a", "b", agent_id="looper"),
            config=config,
        ) as team:
            result = await asyncio.wait_for(team.start(), timeout=5)

            assert result.status == WorkflowStatus.BLOCKED
            assert result.stats.tasks_by_status == {"BLOCKED": 2}
            assert result.stats.iteration_count == 3
            assert "exceeded 2 iterations" in team.get_state().get_task("a").error
            assert team.get_state().get_task("b").error is None
            assert agent.status == AgentStatus.IDLE
            assert agent.lookups == 2

    async def test_cycle_rejected_at_start(self, config) -> None:
        """A dependency cycle surfaces when start() prepares the scheduler."""
        tasks = [
            Task(id="a", description="a", agent_id="worker", dependencies=["b"]),
            Task(id="b", description="b", agent_id="worker", dependencies=["a"]),
        ]

        async with Team(
            "loop",
            agents=[_make_recording_agent()],
            tasks=tasks,
            config=config,
            flow_type=FlowType.HIERARCHY,
        ) as team:
            with pytest.raises(CircularDependencyError):
                await asyncio.wait_for(team.start(), timeout=5)

            assert team.workflow_status == WorkflowStatus.INITIAL


# =============================================================================
# Test: Pause / Resume / Stop
# =============================================================================

class TestWorkflowControl:
    """Tests for pause(), resume() and stop()."""

    async def test_pause_holds_next_task(self, config) -> None:
        """While PAUSED the running task finishes but the next one waits."""
        gates = {"a": asyncio.Event()}
        agent = _make_recording_agent(gates=gates)

        async with Team("pausable", agents=[agent], tasks=_make_tasks("a", "b"), config=config) as team:
            run = asyncio.create_task(team.start())
            await _wait_for(lambda: _task_status(team, "a") == TaskStatus.DOING)

            await team.pause()
            assert team.workflow_status == WorkflowStatus.PAUSED
            gates["a"].set()
            await _wait_for(lambda: _task_status(team, "a") == TaskStatus.DONE)
            await asyncio.sleep(0.05)
            assert _task_status(team, "b") == TaskStatus.TODO

            await team.resume()
            result = await asyncio.wait_for(run, timeout=5)

        assert result.status == WorkflowStatus.FINISHED

    async def test_stop_waits_for_running_task(self, config) -> None:
        """stop() lets the running task finish, then the workflow is STOPPED."""
        gates = {"a": asyncio.Event()}
        agent = _make_recording_agent(gates=gates)

        async with Team("stoppable", agents=[agent], tasks=_make_tasks("a", "b"), config=config) as team:
            run = asyncio.create_task(team.start())
            await _wait_for(lambda: _task_status(team, "a") == TaskStatus.DOING)

            stopping = asyncio.create_task(team.stop())
            await _wait_for(lambda: team.workflow_status == WorkflowStatus.STOPPING)
            gates["a"].set()
            await asyncio.wait_for(stopping, timeout=5)
            result = await asyncio.wait_for(run, timeout=5)

            assert result.status == WorkflowStatus.STOPPED
            assert _task_status(team, "a") == TaskStatus.DONE
            assert _task_status(team, "b") == TaskStatus.TODO

    @pytest.mark.parametrize("operation", ["pause", "resume", "stop"])
    async def test_control_requires_matching_status(self, config, echo_agent, two_tasks, operation) -> None:
        """Control operations on an INITIAL workflow are rejected."""
        async with Team("fresh", agents=[echo_agent], tasks=two_tasks, config=config) as team:
            with pytest.raises(WorkflowError) as exc_info:
                await getattr(team, operation)()

        assert exc_info.value.error_code == "INVALID_WORKFLOW_STATE"
        assert exc_info.value.details["operation"] == operation

    async def test_start_twice_rejected(self, config, echo_agent, two_tasks) -> None:
        """A finished workflow can't be started again."""
        async with Team("once", agents=[echo_agent], tasks=two_tasks, config=config) as team:
            await asyncio.wait_for(team.start({"topic": "x"}), timeout=5)

            with pytest.raises(WorkflowError):
                await team.start({"topic": "x"})

    async def test_pause_racing_finish_never_skips_a_status(self, config) -> None:
        """pause() against the scheduler's own FINISHED leaves a gap-free log."""
        gates = {"x": asyncio.Event()}
        agent = _make_recording_agent(gates=gates)

        async with Team("racy", agents=[agent], tasks=_make_tasks("x"), config=config) as team:
            team.pipeline.on(
                StatusEventType.PRE_TRANSITION,
                FunctionEventHandler(lambda event: None, validate=_slow_validate, name="slow"),
            )
            run = asyncio.create_task(team.start())
            await _wait_for(lambda: _task_status(team, "x") == TaskStatus.DOING)
            gates["x"].set()
            await _wait_for(lambda: _task_status(team, "x") == TaskStatus.DONE)

            try:
                await team.pause()
            except WorkflowError as exc:
                assert exc.details["status"] == "FINISHED"
            else:
                assert team.workflow_status == WorkflowStatus.PAUSED
                await team.resume()
            result = await asyncio.wait_for(run, timeout=5)

            moves = [
                (entry.from_status, entry.to_status)
                for entry in team.get_state().logs
                if entry.entity == EntityKind.WORKFLOW
            ]

        assert result.status == WorkflowStatus.FINISHED
        assert moves[0] == ("INITIAL", "RUNNING")
        assert moves[-1] == ("RUNNING", "FINISHED")
        for (_, previous_to), (next_from, _) in zip(moves, moves[1:]):
            assert next_from == previous_to

    async def test_stale_workflow_transition_is_vetoed(self, config, echo_agent, two_tasks) -> None:
        """A transition built from an outdated status never commits."""
        async with Team("stale", agents=[echo_agent], tasks=two_tasks, config=config) as team:
            with pytest.raises(EventValidationError) as exc_info:
                await team.pipeline.transition(
                    EntityKind.WORKFLOW,
                    team.workflow_id,
                    WorkflowStatus.RUNNING,
                    WorkflowStatus.PAUSED,
                    "pause_workflow",
                    metadata={"workflow_id": team.workflow_id},
                )

            assert exc_info.value.errors[0]["code"] == ValidationErrorCode.INVALID_STATE.value
            assert team.workflow_status == WorkflowStatus.INITIAL
            assert team.get_state().logs == []

    async def test_stale_agent_transition_is_vetoed(self, config, echo_agent, two_tasks) -> None:
        async with Team("stale", agents=[echo_agent], tasks=two_tasks, config=config) as team:
            with pytest.raises(EventValidationError):
                await team.pipeline.transition(
                    EntityKind.AGENT,
                    echo_agent.agent_id,
                    AgentStatus.IDLE,
                    AgentStatus.ITERATION_START,
                    "start_iteration",
                    metadata={"workflow_id": team.workflow_id},
                )

            assert echo_agent.status == AgentStatus.INITIAL
            assert team.get_state().agent_statuses[echo_agent.agent_id] == AgentStatus.INITIAL

    async def test_pause_after_finish_rejected(self, config, echo_agent, two_tasks) -> None:
        """Only a RUNNING workflow can be paused."""
        async with Team("done", agents=[echo_agent], tasks=two_tasks, config=config) as team:
            await asyncio.wait_for(team.start({"topic": "x"}), timeout=5)

            with pytest.raises(WorkflowError) as exc_info:
                await team.pause()

        assert exc_info.value.details["status"] == "FINISHED"


# =============================================================================
# Test: Feedback and Validation
# =============================================================================

class TestFeedback:
    """Tests for provide_feedback()."""

    async def test_feedback_reruns_task_and_dependents(self, config) -> None:
        """Feedback on a finished task re-runs it, then everything after it."""
        calls: list[tuple[str, str]] = []
        agent = _make_recording_agent(calls=calls)

        async with Team("editable", agents=[agent], tasks=_make_tasks("a", "b"), config=config) as team:
            await asyncio.wait_for(team.start(), timeout=5)

            await team.provide_feedback("a", "more detail")
            result = await asyncio.wait_for(team.wait_until_settled(), timeout=5)

            assert result.status == WorkflowStatus.FINISHED
            assert [task_id for task_id, _ in calls] == ["a", "b", "a", "b"]
            assert "Feedback: more detail" in calls[2][1]
            history = team.get_state().get_task("a").feedback_history
            assert [(entry.content, entry.status) for entry in history] == [("more detail", "PROCESSED")]
            assert team.get_state().get_task("a").pending_feedback == []

    async def test_empty_feedback_rejected(self, config, echo_agent, two_tasks) -> None:
        """Blank feedback is a FIELD_MISSING validation error."""
        async with Team("editable", agents=[echo_agent], tasks=two_tasks, config=config) as team:
            await asyncio.wait_for(team.start({"topic": "x"}), timeout=5)

            with pytest.raises(ValidationError) as exc_info:
                await team.provide_feedback("research", "   ")

        assert exc_info.value.error_code == ValidationErrorCode.FIELD_MISSING.value

    async def test_feedback_for_unknown_task(self, config, echo_agent, two_tasks) -> None:
        async with Team("editable", agents=[echo_agent], tasks=two_tasks, config=config) as team:
            await asyncio.wait_for(team.start({"topic": "x"}), timeout=5)

            with pytest.raises(NotFoundError):
                await team.provide_feedback("missing", "anything")

    async def test_feedback_before_start_rejected(self, config, echo_agent, two_tasks) -> None:
        """An INITIAL workflow takes no feedback."""
        async with Team("editable", agents=[echo_agent], tasks=two_tasks, config=config) as team:
            with pytest.raises(WorkflowError):
                await team.provide_feedback("research", "too early")


class TestValidation:
    """Tests for tasks that require external validation."""

    async def test_task_waits_for_validation(self, config, echo_agent) -> None:
        """The task stops in AWAITING_VALIDATION until validate_task()."""
        tasks = [
            Task(
                id="review",
                description="Review the draft",
                agent_id="echo",
                external_validation_required=True,
            )
        ]

        async with Team("reviewed", agents=[echo_agent], tasks=tasks, config=config) as team:
            run = asyncio.create_task(team.start())
            await _wait_for(lambda: _task_status(team, "review") == TaskStatus.AWAITING_VALIDATION)
            assert team.workflow_status == WorkflowStatus.RUNNING

            await team.validate_task("review")
            result = await asyncio.wait_for(run, timeout=5)

        assert result.status == WorkflowStatus.FINISHED
        assert result.result == "done: Review the draft"

    async def test_validate_task_in_wrong_status(self, config, echo_agent, two_tasks) -> None:
        """Validating a task that isn't awaiting validation is illegal."""
        async with Team("reviewed", agents=[echo_agent], tasks=two_tasks, config=config) as team:
            with pytest.raises(StateTransitionInvalidError):
                await team.validate_task("research")

    async def test_validate_unknown_task(self, config, echo_agent, two_tasks) -> None:
        async with Team("reviewed", agents=[echo_agent], tasks=two_tasks, config=config) as team:
            with pytest.raises(NotFoundError):
                await team.validate_task("missing")


# =============================================================================
# Test: Hierarchy Runs
# =============================================================================

class TestHierarchyRun:
    """Tests for start() on the hierarchy strategy."""

    async def test_dependencies_run_first(self, config) -> None:
        """C waits for A and B and sees both results in its context."""
        calls: list[tuple[str, str]] = []
        agent = _make_recording_agent(calls=calls)
        tasks = [
            Task(id="a", description="Do a", agent_id="worker"),
            Task(id="b", description="Do b", agent_id="worker", dependencies=["a"]),
            Task(id="c", description="Do c", agent_id="worker", dependencies=["a", "b"]),
        ]

        async with Team("graph", agents=[agent], tasks=tasks, config=config) as team:
            result = await asyncio.wait_for(team.start(), timeout=5)

        assert result.status == WorkflowStatus.FINISHED
        assert [task_id for task_id, _ in calls] == ["a", "b", "c"]
        context_c = calls[2][1]
        assert "Result: done a" in context_c
        assert "Result: done b" in context_c

    async def test_independent_roots_both_run(self, config) -> None:
        """Tasks without dependencies are all started."""
        gates = {"a": asyncio.Event(), "b": asyncio.Event()}
        first = _make_recording_agent("first", gates=gates)
        second = _make_recording_agent("second", gates=gates)
        tasks = [
            Task(id="a", description="a", agent_id="first"),
            Task(id="b", description="b", agent_id="second"),
        ]

        async with Team(
            "roots",
            agents=[first, second],
            tasks=tasks,
            config=config,
            flow_type=FlowType.HIERARCHY,
        ) as team:
            run = asyncio.create_task(team.start())
            await _wait_for(
                lambda: _task_status(team, "a") == TaskStatus.DOING
                and _task_status(team, "b") == TaskStatus.DOING
            )
            for gate in gates.values():
                gate.set()
            result = await asyncio.wait_for(run, timeout=5)

        assert result.status == WorkflowStatus.FINISHED


# =============================================================================
# Test: Observation and Cleanup
# =============================================================================

class TestObservation:
    """Tests for subscribe() and cleanup()."""

    async def test_subscribe_sees_workflow_statuses(self, config, echo_agent, two_tasks) -> None:
        seen: list[WorkflowStatus] = []

        async with Team("watched", agents=[echo_agent], tasks=two_tasks, config=config) as team:
            unsubscribe = team.subscribe(lambda state: state.status, lambda prev, cur: seen.append(cur))
            await asyncio.wait_for(team.start({"topic": "x"}), timeout=5)
            unsubscribe()

        assert seen == [WorkflowStatus.RUNNING, WorkflowStatus.FINISHED]

    async def test_cleanup_unbinds_agents(self, echo_agent, two_tasks) -> None:
        """After cleanup the agents are detached and cleanup can run again."""
        team = Team("short-lived", agents=[echo_agent], tasks=two_tasks, config=EnsembleConfig())

        await team.cleanup()
        await team.cleanup()

        assert not echo_agent.is_bound

    async def test_shared_pipeline_is_filtered_by_workflow(self, config, pipeline) -> None:
        """Two teams on one pipeline only commit their own transitions."""
        first = Team(
            "first",
            agents=[_make_recording_agent("one")],
            tasks=_make_tasks("a", agent_id="one"),
            config=config,
            pipeline=pipeline,
        )
        second = Team(
            "second",
            agents=[_make_recording_agent("two")],
            tasks=_make_tasks("a", agent_id="two"),
            config=config,
            pipeline=pipeline,
        )
        try:
            await asyncio.wait_for(first.start(), timeout=5)

            assert first.workflow_status == WorkflowStatus.FINISHED
            assert second.workflow_status == WorkflowStatus.INITIAL
            assert _task_status(second, "a") == TaskStatus.PENDING
        finally:
            await first.cleanup()
            await second.cleanup()
