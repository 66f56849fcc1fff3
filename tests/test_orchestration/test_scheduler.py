"""
Tests for ensemble.orchestration.scheduler - TaskScheduler
============================================================

What's Being Tested:
    - start(): graph preparation runs first, errors propagate
    - kick():  asks the strategy to start ready work
    - Diffing: only tasks whose status changed are forwarded
    - Serialization: reactions never overlap
    - Failures: on_error receives strategy exceptions, worker survives
    - stop():  unsubscribes and cancels the worker

The strategy here only records what it was asked to do.
"""

import asyncio
from typing import Optional

import pytest

from ensemble.core.enums import FlowType, TaskStatus
from ensemble.core.exceptions import CircularDependencyError
from ensemble.core.models import Task
from ensemble.core.state import TeamState
from ensemble.orchestration.execution_strategies import ExecutionStrategy
from ensemble.orchestration.scheduler import TaskScheduler
from ensemble.orchestration.state_store import InMemoryStateStore


class _RecordingStrategy(ExecutionStrategy):
    """Records reactions; optionally sleeps or raises inside them."""

    flow_type = FlowType.SEQUENTIAL

    def __init__(self, tasks: list[Task], delay: float = 0.0, fail_on: Optional[str] = None) -> None:
        super().__init__(tasks, controller=None)
        self.delay = delay
        self.fail_on = fail_on
        self.prepared = False
        self.starts: list[list[str]] = []
        self.changes: list[list[tuple[str, TaskStatus]]] = []
        self.journal: list[str] = []

    async def prepare(self) -> None:
        self.prepared = True

    async def start_execution(self, tasks: list[Task]) -> None:
        self.starts.append([task.id for task in tasks])

    async def execute_from_changed_tasks(self, changed: list[Task], all_tasks: list[Task]) -> None:
        self.journal.append("enter")
        if self.delay:
            await asyncio.sleep(self.delay)
        self.changes.append([(task.id, task.status) for task in changed])
        self.journal.append("exit")
        if self.fail_on and any(task.id == self.fail_on for task in changed):
            raise RuntimeError(f"reaction failed for {self.fail_on}")

    def ready_tasks(self, tasks: list[Task]) -> list[Task]:
        return []

    def downstream_of(self, task_id: str) -> list[str]:
        return []

    def _context_sources(self, task_id: str) -> list[str]:
        return []


def _tasks(*statuses: TaskStatus) -> list[Task]:
    return [
        Task(id=f"t{index}", description=f"task {index}", agent_id="agent", status=status)
        for index, status in enumerate(statuses, start=1)
    ]


def _with_status(tasks: list[Task], task_id: str, status: TaskStatus, **fields) -> list[Task]:
    fields["status"] = status
    return [task.model_copy(update=fields) if task.id == task_id else task for task in tasks]


def _store_with(tasks: list[Task]) -> InMemoryStateStore:
    return InMemoryStateStore(TeamState(workflow_id="wf-1", tasks=tasks))


# =============================================================================
# Test: Lifecycle
# =============================================================================
class TestLifecycle:
    """start/stop behaviour."""

    async def test_start_prepares_and_subscribes(self) -> None:
        tasks = _tasks(TaskStatus.TODO)
        store = _store_with(tasks)
        strategy = _RecordingStrategy(tasks)
        scheduler = TaskScheduler(store, strategy)

        await scheduler.start()

        assert strategy.prepared
        assert scheduler.is_running
        assert store.subscriber_count == 1
        await scheduler.stop()

    async def test_prepare_errors_propagate(self) -> None:
        class _Cyclic(_RecordingStrategy):
            async def prepare(self) -> None:
                raise CircularDependencyError("cycle", dependency="t1")

        tasks = _tasks(TaskStatus.TODO)
        scheduler = TaskScheduler(_store_with(tasks), _Cyclic(tasks))

        with pytest.raises(CircularDependencyError):
            await scheduler.start()
        assert not scheduler.is_running

    async def test_stop_unsubscribes(self) -> None:
        tasks = _tasks(TaskStatus.TODO)
        store = _store_with(tasks)
        strategy = _RecordingStrategy(tasks)
        scheduler = TaskScheduler(store, strategy)
        await scheduler.start()

        await scheduler.stop()
        await store.set_state(tasks=_with_status(tasks, "t1", TaskStatus.DOING))

        assert not scheduler.is_running
        assert store.subscriber_count == 0
        assert strategy.changes == []

    async def test_kick_and_drain_before_start_are_noops(self) -> None:
        tasks = _tasks(TaskStatus.TODO)
        scheduler = TaskScheduler(_store_with(tasks), _RecordingStrategy(tasks))
        scheduler.kick()
        await scheduler.drain()


# =============================================================================
# Test: Reactions
# =============================================================================
class TestReactions:
    """What reaches the strategy."""

    async def test_kick_runs_start_execution(self) -> None:
        tasks = _tasks(TaskStatus.TODO, TaskStatus.TODO)
        strategy = _RecordingStrategy(tasks)
        scheduler = TaskScheduler(_store_with(tasks), strategy)
        await scheduler.start()

        scheduler.kick()
        await scheduler.drain()

        assert strategy.starts == [["t1", "t2"]]
        await scheduler.stop()

    async def test_only_changed_statuses_are_forwarded(self) -> None:
        tasks = _tasks(TaskStatus.TODO, TaskStatus.TODO)
        store = _store_with(tasks)
        strategy = _RecordingStrategy(tasks)
        scheduler = TaskScheduler(store, strategy)
        await scheduler.start()

        await store.set_state(tasks=_with_status(tasks, "t2", TaskStatus.DOING))
        await scheduler.drain()

        assert strategy.changes == [[("t2", TaskStatus.DOING)]]
        await scheduler.stop()

    async def test_non_status_changes_are_dropped(self) -> None:
        tasks = _tasks(TaskStatus.DOING)
        store = _store_with(tasks)
        strategy = _RecordingStrategy(tasks)
        scheduler = TaskScheduler(store, strategy)
        await scheduler.start()

        await store.set_state(tasks=[tasks[0].model_copy(update={"result": "partial"})])
        await scheduler.drain()

        assert strategy.changes == []
        await scheduler.stop()

    async def test_reactions_do_not_overlap(self) -> None:
        tasks = _tasks(TaskStatus.TODO, TaskStatus.TODO)
        store = _store_with(tasks)
        strategy = _RecordingStrategy(tasks, delay=0.01)
        scheduler = TaskScheduler(store, strategy)
        await scheduler.start()

        first = _with_status(tasks, "t1", TaskStatus.DOING)
        await store.set_state(tasks=first)
        await store.set_state(tasks=_with_status(first, "t2", TaskStatus.DOING))
        await scheduler.drain()

        assert strategy.journal == ["enter", "exit", "enter", "exit"]
        assert strategy.changes == [[("t1", TaskStatus.DOING)], [("t2", TaskStatus.DOING)]]
        await scheduler.stop()


# =============================================================================
# Test: Failures
# =============================================================================
class TestFailures:
    """A failing reaction is reported, and the worker keeps going."""

    async def test_on_error_receives_exception(self) -> None:
        tasks = _tasks(TaskStatus.TODO, TaskStatus.TODO)
        store = _store_with(tasks)
        strategy = _RecordingStrategy(tasks, fail_on="t1")
        errors: list[Exception] = []
        scheduler = TaskScheduler(store, strategy, on_error=errors.append)
        await scheduler.start()

        first = _with_status(tasks, "t1", TaskStatus.DOING)
        await store.set_state(tasks=first)
        await store.set_state(tasks=_with_status(first, "t2", TaskStatus.DOING))
        await scheduler.drain()

        assert [str(error) for error in errors] == ["reaction failed for t1"]
        assert len(strategy.changes) == 2
        assert scheduler.is_running
        await scheduler.stop()

    async def test_async_on_error_is_awaited(self) -> None:
        tasks = _tasks(TaskStatus.TODO)
        store = _store_with(tasks)
        strategy = _RecordingStrategy(tasks, fail_on="t1")
        errors: list[Exception] = []

        async def _on_error(exc: Exception) -> None:
            errors.append(exc)

        scheduler = TaskScheduler(store, strategy, on_error=_on_error)
        await scheduler.start()

        await store.set_state(tasks=_with_status(tasks, "t1", TaskStatus.DOING))
        await scheduler.drain()

        assert len(errors) == 1
        await scheduler.stop()
