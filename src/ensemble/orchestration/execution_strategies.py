"""
ensemble.orchestration.execution_strategies - Task Scheduling Strategies
=========================================================================

This module decides WHICH task runs next. A strategy never runs an agent
itself and never writes state directly: it asks its controller (the Team)
to change task statuses through the status pipeline, and it asks the
controller to launch an agent run once it sees a task committed as DOING.

Architecture Context:

    ┌───────────────┐  changed tasks   ┌──────────────────────┐
    │ TaskScheduler │ ───────────────→ │ ExecutionStrategy    │
    └───────────────┘                  │  ├── Sequential      │
                                       │  └── Hierarchy       │
                                       └─────────┬────────────┘
                                                 │ update_task_status()
                                                 │ launch_task()
                                                 │ settle_workflow()
                                                 ↓
                                       ┌─────────────────────────┐
                                       │ TaskExecutionController │
                                       │ (the Team)              │
                                       └─────────────────────────┘

Reaction Table (both strategies):

    changed task status   reaction
    ───────────────────   ─────────────────────────────────────────────
    DOING                 launch the agent run with dependency context
    REVISE                reopen downstream work, then task → DOING
    ERROR / BLOCKED       downstream TODO tasks → BLOCKED (cascade)
    anything              start ready tasks, then reconcile the workflow

Readiness:
    Sequential:  the first task (in declaration order) that is not DONE,
                 when it is TODO. At most one task runs at a time.
    Hierarchy:   every TODO task whose dependencies are all DONE.

Workflow Reconciliation (only while the workflow is RUNNING):
    all tasks DONE                                   → FINISHED
    nothing active, nothing ready, something BLOCKED → BLOCKED
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, ClassVar, Iterable, Optional

import structlog

from ensemble.core.enums import FlowType, TaskStatus, WorkflowStatus
from ensemble.core.exceptions import ConfigurationError
from ensemble.core.models import Task
from ensemble.orchestration.dependency_resolver import DependencyResolver, DependencySpec

logger = structlog.get_logger()

# Statuses in which a task still owns an agent run or awaits a human.
ACTIVE_TASK_STATUSES = frozenset(
    {
        TaskStatus.DOING,
        TaskStatus.REVISE,
        TaskStatus.AWAITING_VALIDATION,
        TaskStatus.VALIDATED,
    }
)

# Statuses that stop dependents from ever becoming ready.
FAILED_TASK_STATUSES = frozenset({TaskStatus.ERROR, TaskStatus.BLOCKED})

_GRAPH_NODE_VERSION = "1.0.0"


def _by_id(tasks: Iterable[Task]) -> dict[str, Task]:
    return {task.id: task for task in tasks}


# =============================================================================
# Controller Interface
# =============================================================================
class TaskExecutionController(ABC):
    """What a strategy needs from the team that owns the tasks."""

    @abstractmethod
    async def update_task_status(
        self,
        task_id: str,
        status: TaskStatus,
        operation: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        """Move a task to ``status`` through the status pipeline."""

    @abstractmethod
    def launch_task(self, task: Task, context: str) -> None:
        """Start the agent run for a task that was just committed as DOING.

        Must return immediately; the run's outcome comes back later as a
        task status change.
        """

    @abstractmethod
    def is_accepting_work(self) -> bool:
        """True when new tasks may be started (the workflow is RUNNING)."""

    @abstractmethod
    def current_tasks(self) -> list[Task]:
        """A fresh snapshot of the team's tasks, in declaration order."""

    @abstractmethod
    async def settle_workflow(self, status: WorkflowStatus) -> None:
        """Move the workflow to FINISHED or BLOCKED."""


# =============================================================================
# Base Strategy
# =============================================================================
class ExecutionStrategy(ABC):
    """Common reaction logic. Subclasses define readiness and downstream sets.

    Args:
        tasks: The team's tasks in declaration order.
        controller: The owner that commits status changes and runs agents.
        cascade_blocked: Whether ERROR/BLOCKED cascades BLOCKED to
            downstream TODO tasks.
    """

    flow_type: ClassVar[FlowType]

    def __init__(
        self,
        tasks: list[Task],
        controller: TaskExecutionController,
        cascade_blocked: bool = True,
    ) -> None:
        self._order: list[str] = [task.id for task in tasks]
        self._controller = controller
        self._cascade_blocked = cascade_blocked
        self._logger = logger.bind(component="execution_strategy", flow_type=self.flow_type.value)

    async def prepare(self) -> None:
        """Validate the task graph before the first task runs."""

    # -------------------------------------------------------------------------
    # Strategy Contract
    # -------------------------------------------------------------------------
    async def start_execution(self, tasks: list[Task]) -> None:
        """Start whatever is ready now. Called at start and on resume."""
        self._logger.debug("execution_started", task_count=len(tasks))
        await self._start_ready_tasks()
        await self._reconcile_workflow()

    async def execute_from_changed_tasks(self, changed: list[Task], all_tasks: list[Task]) -> None:
        """React to tasks whose status changed since the last notification.

        Args:
            changed: Tasks whose status differs from the previous snapshot.
            all_tasks: The full task list the change was observed in.
        """
        for task in changed:
            if task.status == TaskStatus.DOING:
                self._controller.launch_task(task, self.get_context_for_task(task, all_tasks))
            elif task.status == TaskStatus.REVISE:
                await self._handle_revision(task)
            elif task.status in FAILED_TASK_STATUSES:
                await self._cascade_block(task)

        await self._start_ready_tasks()
        await self._reconcile_workflow()

    def get_context_for_task(self, task: Task, tasks: list[Task]) -> str:
        """Results of the tasks ``task`` builds on, plus pending feedback."""
        by_id = _by_id(tasks)
        blocks = []
        for source_id in self._context_sources(task.id):
            source = by_id.get(source_id)
            if source is None or source.status != TaskStatus.DONE:
                continue
            blocks.append(f"Task: {source.effective_description}\nResult: {source.result}\n")
        for entry in task.pending_feedback:
            blocks.append(f"Feedback: {entry.content}\n")
        return "".join(blocks)

    # -------------------------------------------------------------------------
    # Subclass Hooks
    # -------------------------------------------------------------------------
    @abstractmethod
    def ready_tasks(self, tasks: list[Task]) -> list[Task]:
        """Tasks that may start now."""

    @abstractmethod
    def downstream_of(self, task_id: str) -> list[str]:
        """Ids of tasks that (transitively) wait on ``task_id``, in order."""

    @abstractmethod
    def _context_sources(self, task_id: str) -> list[str]:
        """Ids of tasks whose results feed ``task_id``'s context."""

    # -------------------------------------------------------------------------
    # Shared Reactions
    # -------------------------------------------------------------------------
    async def _start_ready_tasks(self) -> None:
        for task in self.ready_tasks(self._controller.current_tasks()):
            if not self._controller.is_accepting_work():
                return
            self._logger.info("task_ready", task_id=task.id)
            await self._controller.update_task_status(task.id, TaskStatus.DOING, "start_task")

    async def _cascade_block(self, failed: Task) -> None:
        if not self._cascade_blocked:
            return
        by_id = _by_id(self._controller.current_tasks())
        for task_id in self.downstream_of(failed.id):
            task = by_id.get(task_id)
            if task is None or task.status != TaskStatus.TODO:
                continue
            await self._controller.update_task_status(
                task_id,
                TaskStatus.BLOCKED,
                "block_dependent_task",
                {"blocked_by": failed.id},
            )
        self._logger.info("dependents_blocked", task_id=failed.id, status=failed.status.value)

    async def _handle_revision(self, revised: Task) -> None:
        by_id = _by_id(self._controller.current_tasks())
        for task_id in self.downstream_of(revised.id):
            task = by_id.get(task_id)
            if task is None or task.status not in (TaskStatus.DONE, TaskStatus.BLOCKED):
                continue
            await self._controller.update_task_status(
                task_id,
                TaskStatus.TODO,
                "reopen_dependent_task",
                {"reopened_by": revised.id},
            )
        await self._controller.update_task_status(revised.id, TaskStatus.DOING, "revise_task")

    async def _reconcile_workflow(self) -> None:
        if not self._controller.is_accepting_work():
            return
        tasks = self._controller.current_tasks()
        if all(task.status == TaskStatus.DONE for task in tasks):
            await self._controller.settle_workflow(WorkflowStatus.FINISHED)
            return
        if any(task.status in ACTIVE_TASK_STATUSES for task in tasks):
            return
        if any(task.status == TaskStatus.ERROR for task in tasks):
            # The team moves the workflow to ERRORED when the run fails.
            return
        if self.ready_tasks(tasks):
            return
        if any(task.status == TaskStatus.BLOCKED for task in tasks):
            await self._controller.settle_workflow(WorkflowStatus.BLOCKED)


# =============================================================================
# Sequential Strategy
# =============================================================================
class SequentialExecutionStrategy(ExecutionStrategy):
    """Runs tasks one at a time in declaration order.

    Raises:
        ConfigurationError: When two or more tasks other than the first
            declare dependencies; that graph can't be run as a sequence.
    """

    flow_type = FlowType.SEQUENTIAL

    def __init__(
        self,
        tasks: list[Task],
        controller: TaskExecutionController,
        cascade_blocked: bool = True,
    ) -> None:
        with_dependencies = [task.id for task in tasks[1:] if task.dependencies]
        if len(with_dependencies) > 1:
            raise ConfigurationError(
                message=(
                    "Sequential execution supports at most one dependent task after the "
                    f"first; found {len(with_dependencies)}: {with_dependencies}"
                ),
                error_code="AMBIGUOUS_SEQUENTIAL_DEPENDENCIES",
                details={"tasks": with_dependencies},
            )
        super().__init__(tasks, controller, cascade_blocked)

    def ready_tasks(self, tasks: list[Task]) -> list[Task]:
        for task in tasks:
            if task.status == TaskStatus.DONE:
                continue
            return [task] if task.status == TaskStatus.TODO else []
        return []

    def downstream_of(self, task_id: str) -> list[str]:
        if task_id not in self._order:
            return []
        return self._order[self._order.index(task_id) + 1:]

    def _context_sources(self, task_id: str) -> list[str]:
        if task_id not in self._order:
            return []
        return self._order[: self._order.index(task_id)]


# =============================================================================
# Hierarchy Strategy
# =============================================================================
class HierarchyExecutionStrategy(ExecutionStrategy):
    """Runs every task whose dependencies are DONE, concurrently.

    The graph is held as two id indexes (dependencies and dependents), so
    tasks never reference each other directly.
    """

    flow_type = FlowType.HIERARCHY

    def __init__(
        self,
        tasks: list[Task],
        controller: TaskExecutionController,
        cascade_blocked: bool = True,
    ) -> None:
        super().__init__(tasks, controller, cascade_blocked)
        self._dependencies: dict[str, list[str]] = {task.id: list(task.dependencies) for task in tasks}
        self._dependents: dict[str, list[str]] = {task.id: [] for task in tasks}
        for task in tasks:
            for dependency in task.dependencies:
                self._dependents.setdefault(dependency, []).append(task.id)

    async def prepare(self) -> None:
        """Check the task graph for cycles and unknown dependency ids.

        Raises:
            CircularDependencyError: The dependencies form a cycle.
            MissingDependencyError: A task depends on an id no task has.
        """
        resolver = DependencyResolver()
        for task_id, dependencies in self._dependencies.items():
            resolver.register_version(
                task_id,
                _GRAPH_NODE_VERSION,
                [DependencySpec(name=dependency) for dependency in dependencies],
            )
        for task_id in self._order:
            await resolver.resolve_dependencies(task_id, _GRAPH_NODE_VERSION)
        self._logger.debug("task_graph_validated", task_count=len(self._order))

    def ready_tasks(self, tasks: list[Task]) -> list[Task]:
        by_id = _by_id(tasks)
        ready = []
        for task in tasks:
            if task.status != TaskStatus.TODO:
                continue
            dependencies = [by_id.get(dep_id) for dep_id in self._dependencies.get(task.id, [])]
            if all(dep is not None and dep.status == TaskStatus.DONE for dep in dependencies):
                ready.append(task)
        return ready

    def downstream_of(self, task_id: str) -> list[str]:
        return self._closure(task_id, self._dependents)

    def _context_sources(self, task_id: str) -> list[str]:
        return self._closure(task_id, self._dependencies)

    def _closure(self, task_id: str, edges: dict[str, list[str]]) -> list[str]:
        seen: set[str] = set()
        stack = list(edges.get(task_id, []))
        while stack:
            current = stack.pop()
            if current in seen or current == task_id:
                continue
            seen.add(current)
            stack.extend(edges.get(current, []))
        return [candidate for candidate in self._order if candidate in seen]


# =============================================================================
# Factory
# =============================================================================
def create_execution_strategy(
    tasks: list[Task],
    controller: TaskExecutionController,
    flow_type: Optional[FlowType] = None,
    cascade_blocked: bool = True,
) -> ExecutionStrategy:
    """Pick the strategy for a task list.

    Hierarchy is used when asked for, or when more than one task after the
    first declares dependencies. Everything else runs sequentially.
    """
    dependent_count = sum(1 for task in tasks[1:] if task.dependencies)
    if flow_type == FlowType.HIERARCHY or dependent_count > 1:
        return HierarchyExecutionStrategy(tasks, controller, cascade_blocked)
    return SequentialExecutionStrategy(tasks, controller, cascade_blocked)
