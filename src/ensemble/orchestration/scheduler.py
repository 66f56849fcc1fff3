"""
ensemble.orchestration.scheduler - Reactive Task Scheduler
============================================================

The TaskScheduler connects a Team's state store to its execution strategy.
It subscribes once to the task list, and every notification becomes a
message on an ``asyncio.Queue``. A single worker drains the queue, so the
strategy never sees two overlapping reactions even when several agent runs
commit at once.

Message Flow:

    store.set_state(tasks=...)
        │  selector: state.tasks
        ↓
    _on_tasks_changed(previous, current) ──→ queue.put((previous, current))
                                                  │
                                       worker ────┘
                                         │ diff statuses per task id
                                         │ against the worker's snapshot
                                         ↓
                       strategy.execute_from_changed_tasks(changed, current)

    kick() ──→ queue.put(START) ──→ strategy.start_execution(tasks)

The snapshot is only touched by the worker. A notification whose task list
differs only in non-status fields (a result, a feedback entry) produces an
empty diff and is dropped.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Optional, Union

import structlog

from ensemble.core.enums import TaskStatus
from ensemble.core.models import Task
from ensemble.orchestration.execution_strategies import ExecutionStrategy
from ensemble.orchestration.state_store import StateStore, Unsubscribe

logger = structlog.get_logger()

ErrorCallback = Callable[[Exception], Union[Awaitable[None], None]]

# Queue marker asking the worker to run start_execution().
_START = object()


class TaskScheduler:
    """Feeds task status changes to an ExecutionStrategy, one at a time.

    Args:
        store: The team's state store.
        strategy: The strategy that decides what runs next.
        on_error: Called with any exception the strategy raises. The worker
            keeps running afterwards.

    Example:
        >>> scheduler = TaskScheduler(store, strategy)
        >>> await scheduler.start()
        >>> scheduler.kick()
        >>> await scheduler.drain()
        >>> await scheduler.stop()
    """

    def __init__(
        self,
        store: StateStore,
        strategy: ExecutionStrategy,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        self._store = store
        self._strategy = strategy
        self._on_error = on_error
        self._snapshot: dict[str, TaskStatus] = {}
        self._queue: Optional[asyncio.Queue[Any]] = None
        self._worker: Optional[asyncio.Task[None]] = None
        self._unsubscribe: Optional[Unsubscribe] = None
        self._logger = logger.bind(component="task_scheduler")

    @property
    def strategy(self) -> ExecutionStrategy:
        return self._strategy

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------
    async def start(self) -> None:
        """Validate the strategy's graph, then subscribe to the task list.

        Raises:
            CircularDependencyError: From the strategy's graph validation.
            MissingDependencyError: From the strategy's graph validation.
        """
        if self.is_running:
            return
        await self._strategy.prepare()
        self._snapshot = {task.id: task.status for task in self._store.get_state().tasks}
        self._queue = asyncio.Queue()
        self._worker = asyncio.create_task(self._run(), name="ensemble-task-scheduler")
        self._unsubscribe = self._store.subscribe(lambda state: state.tasks, self._on_tasks_changed)
        self._logger.info(
            "scheduler_started",
            flow_type=self._strategy.flow_type.value,
            task_count=len(self._snapshot),
        )

    def kick(self) -> None:
        """Ask the strategy to start whatever is ready now."""
        if self._queue is None:
            return
        self._queue.put_nowait(_START)

    async def drain(self) -> None:
        """Wait until every queued reaction, and those it caused, has run."""
        if self._queue is None:
            return
        await self._queue.join()

    async def stop(self) -> None:
        """Unsubscribe and stop the worker. Queued reactions are discarded."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        self._queue = None
        self._logger.info("scheduler_stopped")

    # -------------------------------------------------------------------------
    # Reaction
    # -------------------------------------------------------------------------
    def _on_tasks_changed(self, previous: list[Task], current: list[Task]) -> None:
        if self._queue is not None:
            self._queue.put_nowait((previous, current))

    def _diff(self, current: list[Task]) -> list[Task]:
        changed = [task for task in current if self._snapshot.get(task.id) != task.status]
        self._snapshot = {task.id: task.status for task in current}
        return changed

    async def _run(self) -> None:
        queue = self._queue
        if queue is None:
            return
        while True:
            item = await queue.get()
            try:
                if item is _START:
                    await self._strategy.start_execution(self._store.get_state().tasks)
                else:
                    _, current = item
                    changed = self._diff(current)
                    if changed:
                        self._logger.debug(
                            "task_statuses_changed",
                            changes={task.id: task.status.value for task in changed},
                        )
                        await self._strategy.execute_from_changed_tasks(changed, current)
            except Exception as exc:
                self._logger.error(
                    "scheduler_reaction_failed",
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                if self._on_error is not None:
                    outcome = self._on_error(exc)
                    if inspect.isawaitable(outcome):
                        await outcome
            finally:
                queue.task_done()
