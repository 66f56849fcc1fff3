"""
ensemble.team - Team Workflow Facade
======================================

This module implements Team, the single entry point for running a set of
tasks with a set of agents. A Team owns its tasks and agents (indexed by
id), its state store, its scheduler and the commit handlers that turn
committed status transitions into new state snapshots.

Architecture Context:

    start / pause / resume / stop / provide_feedback / validate_task
          │
          ↓ pipeline.transition(...)
    ┌─────────────────────┐   status:transition   ┌──────────────────┐
    │ StatusEventPipeline │ ────────────────────→ │ Team committers  │
    └─────────────────────┘                       │ (task, workflow, │
          ↑                                       │  agent)          │
          │ agent status changes                  └────────┬─────────┘
    ┌─────┴───────┐                                        │ set_state
    │ agents      │                                        ↓
    └─────────────┘                               ┌──────────────────┐
          ↑ launch_task                           │ StateStore       │
    ┌─────┴───────────────┐   task list changes   └────────┬─────────┘
    │ TaskScheduler       │ ←──────────────────────────────┘
    │  + strategy         │
    └─────────────────────┘

Workflow Lifecycle:

    INITIAL ──start()──→ RUNNING ──all tasks DONE──→ FINISHED
                          │  ↑                          │
                pause()   │  │ resume()                 │ provide_feedback()
                          ↓  │                          ↓
                         PAUSED                       RUNNING
                          │
    RUNNING/PAUSED ──stop()──→ STOPPING ──→ STOPPED
    RUNNING ──task ERROR──→ ERRORED          (start() raises ExecutionError)
    RUNNING ──nothing runnable, task BLOCKED──→ BLOCKED   (start() returns)

Usage:
    >>> team = Team(
    ...     name="research",
    ...     agents=[researcher, writer],
    ...     tasks=[research_task, write_task],
    ... )
    >>> result = await team.start({"topic": "bees"})
    >>> result.status
    <WorkflowStatus.FINISHED: 'FINISHED'>
"""

from __future__ import annotations

import asyncio
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Optional
from uuid import uuid4

import structlog

from ensemble.agents.base import BaseAgent
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
from ensemble.core.events import BaseEvent, StatusChangeEvent
from ensemble.core.exceptions import (
    ConfigurationError,
    EnsembleError,
    ExecutionError,
    NotFoundError,
    StateTransitionInvalidError,
    ValidationError,
    WorkflowError,
)
from ensemble.core.models import (
    FeedbackEntry,
    Task,
    ValidationIssue,
    ValidationResult,
    WorkflowLogEntry,
    WorkflowResult,
    WorkflowStats,
    interpolate_description,
)
from ensemble.core.state import TeamState
from ensemble.orchestration.event_bus import FunctionEventHandler
from ensemble.orchestration.execution_strategies import (
    ExecutionStrategy,
    TaskExecutionController,
    create_execution_strategy,
)
from ensemble.orchestration.metrics import InMemoryMetricsSink
from ensemble.orchestration.scheduler import TaskScheduler
from ensemble.orchestration.state_store import (
    InMemoryStateStore,
    Selector,
    StateListener,
    StateStore,
    Unsubscribe,
)
from ensemble.orchestration.status_events import StatusEventPipeline
from ensemble.orchestration.status_validator import StatusValidator
from ensemble.orchestration.transition_rules import default_registry

logger = structlog.get_logger()

# Workflow statuses at which start()/wait_until_settled() return.
SETTLED_WORKFLOW_STATUSES = frozenset(
    {
        WorkflowStatus.FINISHED,
        WorkflowStatus.BLOCKED,
        WorkflowStatus.ERRORED,
        WorkflowStatus.STOPPED,
    }
)

Committer = Callable[[StatusChangeEvent], Awaitable[None]]

# Agent failures that park the task in BLOCKED instead of failing the run.
BLOCKING_ERROR_CODES = frozenset({"MAX_ITERATIONS_EXCEEDED"})


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Team(TaskExecutionController):
    """A workflow: tasks, the agents that perform them, and their state.

    Args:
        name: Human-readable team name.
        agents: The agents tasks may reference by ``agent_id``.
        tasks: The tasks in declaration order.
        config: Ensemble configuration. Defaults to EnsembleConfig(), which
            reads ``ENSEMBLE_*`` environment variables.
        pipeline: Status pipeline to share with other teams. Defaults to a
            fresh pipeline over the built-in rule tables, with an
            InMemoryMetricsSink.
        workflow_id: Id of the workflow. Defaults to ``team-<uuid4>``.
        flow_type: Overrides ``config.flow_type``.

    Raises:
        ConfigurationError: Duplicate agent or task ids, a task referencing
            an unknown agent, an ambiguous sequential dependency shape, or
            orphan transition rules.

    Example:
        >>> team = Team("docs", agents=[writer], tasks=[outline, draft])
        >>> result = await team.start({"topic": "asyncio"})
        >>> team.get_workflow_stats().tasks_by_status
        {'DONE': 2}
    """

    def __init__(
        self,
        name: str,
        agents: Iterable[BaseAgent],
        tasks: Iterable[Task],
        config: Optional[EnsembleConfig] = None,
        *,
        pipeline: Optional[StatusEventPipeline] = None,
        workflow_id: Optional[str] = None,
        flow_type: Optional[FlowType] = None,
    ) -> None:
        self._config = config or EnsembleConfig()
        self._workflow_id = workflow_id or f"team-{uuid4()}"
        self._logger = logger.bind(component="team", workflow_id=self._workflow_id, team=name)

        # --- Agents and tasks (arenas indexed by id) ---
        self._agents: dict[str, BaseAgent] = {}
        for agent in agents:
            if agent.agent_id in self._agents:
                raise ConfigurationError(
                    message=f"Duplicate agent id '{agent.agent_id}' in team '{name}'",
                    error_code="DUPLICATE_AGENT_ID",
                    details={"agent_id": agent.agent_id},
                )
            self._agents[agent.agent_id] = agent
        task_list = list(tasks)
        self._validate_tasks(name, task_list)

        # --- Status pipeline ---
        if pipeline is None:
            registry = default_registry()
            pipeline = StatusEventPipeline(
                StatusValidator(registry),
                metrics=InMemoryMetricsSink(),
                config=self._config.metrics,
            )
        if self._config.verify_rules_on_startup:
            pipeline.validator.registry.verify()
        self._pipeline = pipeline

        # --- State, strategy, scheduler ---
        self._store: StateStore = InMemoryStateStore(
            TeamState(
                workflow_id=self._workflow_id,
                name=name,
                tasks=task_list,
                agent_statuses={agent_id: agent.status for agent_id, agent in self._agents.items()},
            )
        )
        self._strategy: ExecutionStrategy = create_execution_strategy(
            task_list,
            self,
            flow_type=flow_type or self._config.flow_type,
            cascade_blocked=self._config.cascade_blocked_dependencies,
        )
        self._scheduler = TaskScheduler(self._store, self._strategy, on_error=self._on_scheduler_error)

        # --- Commit handlers, keyed by entity kind ---
        self._committers: dict[EntityKind, Committer] = {
            EntityKind.TASK: self._commit_task,
            EntityKind.WORKFLOW: self._commit_workflow,
            EntityKind.AGENT: self._commit_agent,
        }
        self._commit_handler = FunctionEventHandler(
            self._commit,
            validate=self._validate_commit,
            name=f"team-commit:{self._workflow_id}")
        self._pipeline.on(StatusEventType.TRANSITION, self._commit_handler)
        for agent in self._agents.values():
            agent.bind(self._pipeline, self._workflow_id, self._config.max_agent_iterations)

        # --- Runtime tracking ---
        self._running: dict[str, asyncio.Task[None]] = {}
        self._status_locks: dict[tuple[EntityKind, str], asyncio.Lock] = {}
        self._last_error: Optional[BaseException] = None
        self._settled = asyncio.Event()
        self._unsubscribe_status = self._store.subscribe(
            lambda state: state.status, self._on_workflow_status_changed
        )

        self._logger.info(
            "team_created",
            agent_count=len(self._agents),
            task_count=len(task_list),
            flow_type=self._strategy.flow_type.value,
        )

    def _validate_tasks(self, name: str, tasks: list[Task]) -> None:
        seen: set[str] = set()
        for task in tasks:
            if task.id in seen:
                raise ConfigurationError(
                    message=f"Duplicate task id '{task.id}' in team '{name}'",
                    error_code="DUPLICATE_TASK_ID",
                    details={"task_id": task.id},
                )
            seen.add(task.id)
            if task.agent_id not in self._agents:
                raise ConfigurationError(
                    message=f"Task '{task.id}' references unknown agent '{task.agent_id}'",
                    error_code="UNKNOWN_AGENT",
                    details={"task_id": task.id, "agent_id": task.agent_id},
                )

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def workflow_id(self) -> str:
        return self._workflow_id

    @property
    def name(self) -> str:
        return self._store.get_state().name

    @property
    def config(self) -> EnsembleConfig:
        return self._config

    @property
    def pipeline(self) -> StatusEventPipeline:
        return self._pipeline

    @property
    def strategy(self) -> ExecutionStrategy:
        return self._strategy

    @property
    def agents(self) -> list[BaseAgent]:
        return list(self._agents.values())

    @property
    def tasks(self) -> list[Task]:
        return list(self._store.get_state().tasks)

    @property
    def workflow_status(self) -> WorkflowStatus:
        return self._store.get_state().status

    def get_state(self) -> TeamState:
        """The current state snapshot."""
        return self._store.get_state()

    def subscribe(self, selector: Selector, callback: StateListener) -> Unsubscribe:
        """Observe a slice of the team state. See StateStore.subscribe."""
        return self._store.subscribe(selector, callback)

    # =========================================================================
    # Public Workflow Operations
    # =========================================================================

    async def start(self, inputs: Optional[dict[str, Any]] = None) -> WorkflowResult:
        """Run the workflow until it settles.

        Args:
            inputs: Values for ``{placeholder}`` interpolation in task
                descriptions, also handed to every agent.

        Returns:
            WorkflowResult with status FINISHED, BLOCKED or STOPPED.

        Raises:
            WorkflowError: The workflow is not INITIAL.
            CircularDependencyError: The task graph has a cycle.
            MissingDependencyError: A task depends on an unknown task id.
            ExecutionError: The workflow ended ERRORED.
        """
        state = self._store.get_state()
        self._require_status("start", {WorkflowStatus.INITIAL})

        resolved_inputs = dict(inputs or {})
        interpolated = [
            task.model_copy(
                update={"interpolated_description": interpolate_description(task.description, resolved_inputs)}
            )
            for task in state.tasks
        ]
        await self._store.set_state(inputs=resolved_inputs, tasks=interpolated)
        self._last_error = None

        self._logger.info("workflow_starting", inputs=sorted(resolved_inputs))
        for agent in self._agents.values():
            await agent.start()
        await self._scheduler.start()

        for task in self._store.get_state().tasks:
            if task.status == TaskStatus.PENDING:
                await self.update_task_status(task.id, TaskStatus.TODO, "queue_task")
        await self._set_workflow_status(
            WorkflowStatus.RUNNING,
            "start_workflow",
            action="start",
            expected={WorkflowStatus.INITIAL},
        )
        self._scheduler.kick()

        return await self.wait_until_settled()

    async def wait_until_settled(self) -> WorkflowResult:
        """Wait for FINISHED, BLOCKED, ERRORED or STOPPED.

        Raises:
            ExecutionError: The workflow is ERRORED.
        """
        await self._settled.wait()
        await self._scheduler.drain()
        state = self._store.get_state()
        stats = self.get_workflow_stats()

        if state.status == WorkflowStatus.ERRORED:
            failed = [task.id for task in state.tasks if task.status == TaskStatus.ERROR]
            self._logger.error("workflow_errored", failed_tasks=failed)
            raise ExecutionError(
                message=f"Workflow {self._workflow_id} errored: {self._last_error}",
                task_id=failed[0] if failed else None,
                error_code="WORKFLOW_ERRORED",
                details={"workflow_id": self._workflow_id, "failed_tasks": failed},
            ) from self._last_error

        self._logger.info(
            "workflow_settled",
            status=state.status.value,
            duration_seconds=stats.duration_seconds,
        )
        return WorkflowResult(status=state.status, result=state.result, stats=stats)

    async def pause(self) -> None:
        """RUNNING → PAUSED. Agent runs in flight finish; nothing new starts.

        Raises:
            WorkflowError: The workflow is not RUNNING.
        """
        await self._set_workflow_status(
            WorkflowStatus.PAUSED,
            "pause_workflow",
            action="pause",
            expected={WorkflowStatus.RUNNING},
        )
        self._logger.info("workflow_paused", running_tasks=sorted(self._running))

    async def resume(self) -> None:
        """PAUSED → RUNNING, then start whatever became ready meanwhile.

        Raises:
            WorkflowError: The workflow is not PAUSED.
        """
        await self._set_workflow_status(
            WorkflowStatus.RUNNING,
            "resume_workflow",
            action="resume",
            expected={WorkflowStatus.PAUSED},
        )
        self._scheduler.kick()
        self._logger.info("workflow_resumed")

    async def stop(self) -> None:
        """RUNNING/PAUSED → STOPPING, wait for agent runs, then → STOPPED.

        Raises:
            WorkflowError: The workflow is neither RUNNING nor PAUSED.
        """
        await self._set_workflow_status(
            WorkflowStatus.STOPPING,
            "stop_workflow",
            action="stop",
            expected={WorkflowStatus.RUNNING, WorkflowStatus.PAUSED},
        )
        # Launches for tasks committed DOING before STOPPING happen in the drain.
        await self._scheduler.drain()
        await self._wait_for_running_tasks()
        await self._scheduler.drain()
        await self._set_workflow_status(
            WorkflowStatus.STOPPED,
            "workflow_stopped",
            action="stop",
            expected={WorkflowStatus.STOPPING},
        )
        await self._scheduler.stop()
        self._logger.info("workflow_stopped")

    async def provide_feedback(self, task_id: str, content: str) -> None:
        """Send a task back for revision with human feedback.

        A FINISHED or BLOCKED workflow is reopened (→ RUNNING) first. The
        task moves to REVISE; the strategy then reopens downstream work and
        re-runs the task with the feedback in its context. Use
        ``wait_until_settled()`` to wait for the new outcome.

        Raises:
            WorkflowError: The workflow is not RUNNING, FINISHED or BLOCKED.
            NotFoundError: No task has ``task_id``.
            ValidationError: ``content`` is empty.
            StateTransitionInvalidError: The task can't be revised from its
                current status.
        """
        self._require_status(
            "provide_feedback",
            {WorkflowStatus.RUNNING, WorkflowStatus.FINISHED, WorkflowStatus.BLOCKED},
        )
        task = self._get_task(task_id)
        if not content or not content.strip():
            raise ValidationError(
                message=f"Feedback for task '{task_id}' must not be empty",
                errors=[
                    {
                        "code": ValidationErrorCode.FIELD_MISSING.value,
                        "message": "feedback content is required",
                        "field": "feedback",
                    }
                ],
                error_code=ValidationErrorCode.FIELD_MISSING.value,
            )
        table = self._pipeline.validator.registry.table_for(EntityKind.TASK)
        if not table.is_allowed(task.status, TaskStatus.REVISE):
            available = [status.value for status in table.available_transitions(task.status)]
            raise StateTransitionInvalidError(
                message=f"Task '{task_id}' in {task.status.value} can't take feedback; allowed: {available}",
                entity=EntityKind.TASK.value,
                entity_id=task_id,
                from_status=task.status.value,
                to_status=TaskStatus.REVISE.value,
                available_transitions=available,
            )

        await self._settle_if(
            WorkflowStatus.RUNNING,
            "reopen_workflow",
            {WorkflowStatus.FINISHED, WorkflowStatus.BLOCKED},
            {"task_id": task_id},
        )
        await self.update_task_status(task_id, TaskStatus.REVISE, "provide_feedback", {"feedback": content})
        self._logger.info("feedback_provided", task_id=task_id)

    async def validate_task(self, task_id: str) -> None:
        """Approve a task waiting in AWAITING_VALIDATION (→ VALIDATED → DONE).

        Raises:
            NotFoundError: No task has ``task_id``.
            StateTransitionInvalidError: The task is not awaiting validation.
        """
        self._get_task(task_id)
        await self.update_task_status(task_id, TaskStatus.VALIDATED, "validate_task")
        await self.update_task_status(task_id, TaskStatus.DONE, "complete_validated_task")
        self._logger.info("task_validated", task_id=task_id)

    def get_tasks_by_status(self, status: TaskStatus) -> list[Task]:
        return self._store.get_state().tasks_with_status(status)

    def get_workflow_stats(self) -> WorkflowStats:
        """Counters for the run so far (partial while the workflow runs)."""
        state = self._store.get_state()
        duration = None
        if state.started_at is not None:
            end = state.finished_at or _now()
            duration = (end - state.started_at).total_seconds()
        return WorkflowStats(
            status=state.status,
            task_count=len(state.tasks),
            agent_count=len(self._agents),
            tasks_by_status=dict(Counter(task.status.value for task in state.tasks)),
            started_at=state.started_at,
            finished_at=state.finished_at,
            duration_seconds=duration,
            transition_count=len(state.logs),
            metric_counts=self._pipeline.metrics.metric_counts(),
            iteration_count=state.iteration_count,
        )

    async def cleanup(self) -> None:
        """Detach from the pipeline and stop background work.

        Agent runs still in flight are cancelled. Safe to call twice.
        """
        for running in list(self._running.values()):
            running.cancel()
        if self._running:
            await asyncio.gather(*self._running.values(), return_exceptions=True)
        self._running.clear()
        await self._scheduler.stop()
        self._unsubscribe_status()
        self._pipeline.off(StatusEventType.TRANSITION, self._commit_handler)
        for agent in self._agents.values():
            agent.unbind()
        self._logger.info("team_cleaned_up")

    async def __aenter__(self) -> Team:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.cleanup()

    # =========================================================================
    # TaskExecutionController
    # =========================================================================

    async def update_task_status(
        self,
        task_id: str,
        status: TaskStatus,
        operation: str,
        metadata: Optional[dict[str, Any]] = None,
        expected: Optional[set[TaskStatus]] = None,
    ) -> None:
        """Move a task to ``status``, reading its current status under the task's lock.

        With ``expected``, a task that has meanwhile left those statuses is
        left alone.
        """
        async with self._status_lock(EntityKind.TASK, task_id):
            task = self._get_task(task_id)
            if expected is not None and task.status not in expected:
                self._logger.info(
                    "task_transition_skipped",
                    task_id=task_id,
                    status=task.status.value,
                    target=status.value,
                    operation=operation,
                )
                return
            await self._pipeline.transition(
                EntityKind.TASK,
                task_id,
                task.status,
                status,
                operation,
                metadata={"workflow_id": self._workflow_id, "agent_id": task.agent_id, **(metadata or {})},
            )

    def launch_task(self, task: Task, context: str) -> None:
        existing = self._running.get(task.id)
        if existing is not None and not existing.done():
            self._logger.warning("task_already_running", task_id=task.id)
            return
        self._running[task.id] = asyncio.create_task(
            self._run_task(task.id, context),
            name=f"ensemble-task:{task.id}",
        )

    def is_accepting_work(self) -> bool:
        return self._store.get_state().status == WorkflowStatus.RUNNING

    def current_tasks(self) -> list[Task]:
        return list(self._store.get_state().tasks)

    async def settle_workflow(self, status: WorkflowStatus) -> None:
        await self._settle_if(status, "settle_workflow", {WorkflowStatus.RUNNING})

    # =========================================================================
    # Agent Runs
    # =========================================================================

    async def _run_task(self, task_id: str, context: str) -> None:
        try:
            state = self._store.get_state()
            task = self._get_task(task_id)
            agent = self._agents[task.agent_id]
            self._logger.info("task_run_starting", task_id=task_id, agent_id=agent.agent_id)
            try:
                result = await agent.perform(task, state.inputs, context)
                target = (
                    TaskStatus.AWAITING_VALIDATION
                    if task.external_validation_required
                    else TaskStatus.DONE
                )
                await self.update_task_status(task_id, target, "complete_task", {"result": result})
            except ExecutionError as exc:
                if exc.error_code in BLOCKING_ERROR_CODES:
                    await self._block_task(task_id, exc)
                else:
                    await self._fail_task(task_id, exc)
            except Exception as exc:
                await self._fail_task(task_id, exc)
        finally:
            self._running.pop(task_id, None)

    async def _fail_task(self, task_id: str, exc: Exception) -> None:
        self._last_error = exc
        self._logger.error("task_run_failed", task_id=task_id, error=str(exc), error_type=type(exc).__name__)
        try:
            await self.update_task_status(
                task_id,
                TaskStatus.ERROR,
                "fail_task",
                {"error": str(exc)},
                expected={TaskStatus.DOING},
            )
            await self._settle_if(
                WorkflowStatus.ERRORED,
                "fail_workflow",
                {WorkflowStatus.RUNNING, WorkflowStatus.PAUSED},
                {"task_id": task_id, "error": str(exc)},
            )
        except EnsembleError as commit_exc:
            self._logger.error("task_failure_commit_failed", task_id=task_id, error=str(commit_exc))

    async def _block_task(self, task_id: str, exc: ExecutionError) -> None:
        """Park the task in BLOCKED. The strategy cascades and settles the workflow."""
        self._last_error = exc
        self._logger.warning("task_run_blocked", task_id=task_id, error=str(exc), error_code=exc.error_code)
        try:
            await self.update_task_status(
                task_id,
                TaskStatus.BLOCKED,
                "block_task",
                {"error": str(exc), "error_code": exc.error_code},
                expected={TaskStatus.DOING},
            )
        except EnsembleError as commit_exc:
            self._logger.error("task_block_commit_failed", task_id=task_id, error=str(commit_exc))

    async def _wait_for_running_tasks(self) -> None:
        while self._running:
            await asyncio.gather(*list(self._running.values()), return_exceptions=True)

    async def _on_scheduler_error(self, exc: Exception) -> None:
        self._last_error = exc
        try:
            await self._settle_if(
                WorkflowStatus.ERRORED,
                "scheduler_failed",
                {WorkflowStatus.RUNNING, WorkflowStatus.PAUSED},
                {"error": str(exc)},
            )
        except EnsembleError as commit_exc:
            self._logger.error("scheduler_failure_commit_failed", error=str(commit_exc))

    # =========================================================================
    # Commit Handlers
    # =========================================================================

    def _stored_status(self, event: StatusChangeEvent) -> Optional[str]:
        state = self._store.get_state()
        if event.entity == EntityKind.WORKFLOW:
            return state.status.value
        if event.entity == EntityKind.TASK:
            task = state.get_task(event.entity_id)
            return task.status.value if task is not None else None
        if event.entity == EntityKind.AGENT:
            status = state.agent_statuses.get(event.entity_id)
            return status.value if status is not None else None
        return None

    def _validate_commit(self, event: BaseEvent) -> ValidationResult:
        """Veto a transition whose ``from_status`` is no longer the stored status."""
        if not isinstance(event, StatusChangeEvent) or event.metadata.get("workflow_id") != self._workflow_id:
            return ValidationResult.success()
        stored = self._stored_status(event)
        if stored is None or stored == event.from_status:
            return ValidationResult.success()
        return ValidationResult.failure(
            ValidationIssue(
                code=ValidationErrorCode.INVALID_STATE,
                message=(
                    f"{event.entity.value} {event.entity_id} is {stored}, "
                    f"not {event.from_status}; transition to {event.to_status} is stale"
                ),
            )
        )

    async def _commit(self, event: BaseEvent) -> None:
        if not isinstance(event, StatusChangeEvent):
            return
        if event.metadata.get("workflow_id") != self._workflow_id:
            return
        committer = self._committers.get(event.entity)
        if committer is not None:
            await committer(event)

    def _log_entry(self, event: StatusChangeEvent) -> WorkflowLogEntry:
        return WorkflowLogEntry(
            timestamp=event.timestamp,
            entity=event.entity,
            entity_id=event.entity_id,
            from_status=event.from_status,
            to_status=event.to_status,
            operation=event.operation,
            metadata={key: value for key, value in event.metadata.items() if key != "workflow_id"},
        )

    async def _commit_task(self, event: StatusChangeEvent) -> None:
        state = self._store.get_state()
        task = state.get_task(event.entity_id)
        if task is None:
            return
        status = TaskStatus(event.to_status)
        metadata = event.metadata
        update: dict[str, Any] = {"status": status}

        if status == TaskStatus.DOING:
            update["started_at"] = _now()
            update["error"] = None
        elif status in (TaskStatus.ERROR, TaskStatus.BLOCKED):
            update["error"] = metadata.get("error")
        elif status == TaskStatus.REVISE and metadata.get("feedback"):
            update["feedback_history"] = task.feedback_history + [FeedbackEntry(content=metadata["feedback"])]
        elif status == TaskStatus.DONE:
            update["completed_at"] = _now()
            update["feedback_history"] = [
                entry.model_copy(update={"status": "PROCESSED"}) for entry in task.feedback_history
            ]
        if "result" in metadata and status in (TaskStatus.DONE, TaskStatus.AWAITING_VALIDATION):
            update["result"] = metadata["result"]

        await self._store.set_state(
            tasks=state.replace_task(task.model_copy(update=update)),
            logs=state.logs + [self._log_entry(event)],
        )
        self._logger.debug("task_status_committed", task_id=task.id, status=status.value)

    async def _commit_workflow(self, event: StatusChangeEvent) -> None:
        state = self._store.get_state()
        status = WorkflowStatus(event.to_status)
        update: dict[str, Any] = {"status": status, "logs": state.logs + [self._log_entry(event)]}

        if status == WorkflowStatus.RUNNING:
            update["finished_at"] = None
            if state.started_at is None:
                update["started_at"] = _now()
        elif status in SETTLED_WORKFLOW_STATUSES:
            update["finished_at"] = _now()
        if status == WorkflowStatus.FINISHED:
            update["result"] = self._workflow_result(state.tasks)

        await self._store.set_state(**update)
        self._logger.info("workflow_status_committed", status=status.value, operation=event.operation)

    async def _commit_agent(self, event: StatusChangeEvent) -> None:
        state = self._store.get_state()
        status = AgentStatus(event.to_status)
        iterations = state.iteration_count
        if status == AgentStatus.ITERATION_START:
            iterations += 1
        await self._store.set_state(
            agent_statuses={**state.agent_statuses, event.entity_id: status},
            iteration_count=iterations,
            logs=state.logs + [self._log_entry(event)],
        )

    @staticmethod
    def _workflow_result(tasks: list[Task]) -> Any:
        deliverables = [task for task in tasks if task.is_deliverable]
        if deliverables:
            return deliverables[-1].result
        return tasks[-1].result if tasks else None

    def _on_workflow_status_changed(self, previous: WorkflowStatus, current: WorkflowStatus) -> None:
        if current in SETTLED_WORKFLOW_STATUSES:
            self._settled.set()
        else:
            self._settled.clear()

    # =========================================================================
    # Internal Helpers
    # =========================================================================

    def _status_lock(self, entity: EntityKind, entity_id: str) -> asyncio.Lock:
        key = (entity, entity_id)
        lock = self._status_locks.get(key)
        if lock is None:
            lock = self._status_locks[key] = asyncio.Lock()
        return lock

    async def _set_workflow_status(
        self,
        status: WorkflowStatus,
        operation: str,
        metadata: Optional[dict[str, Any]] = None,
        expected: Optional[set[WorkflowStatus]] = None,
        action: Optional[str] = None,
    ) -> None:
        """Commit a workflow transition from the status read under the workflow lock.

        Raises:
            WorkflowError: The workflow is no longer in one of ``expected``.
        """
        async with self._status_lock(EntityKind.WORKFLOW, self._workflow_id):
            if expected is not None:
                self._require_status(action or operation, expected)
            await self._transition_workflow(status, operation, metadata)

    async def _settle_if(
        self,
        status: WorkflowStatus,
        operation: str,
        allowed: set[WorkflowStatus],
        metadata: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Like ``_set_workflow_status`` but skips quietly when the status moved on."""
        async with self._status_lock(EntityKind.WORKFLOW, self._workflow_id):
            current = self.workflow_status
            if current not in allowed:
                self._logger.info(
                    "workflow_transition_skipped",
                    status=current.value,
                    target=status.value,
                    operation=operation,
                )
                return False
            await self._transition_workflow(status, operation, metadata)
            return True

    async def _transition_workflow(
        self,
        status: WorkflowStatus,
        operation: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        await self._pipeline.transition(
            EntityKind.WORKFLOW,
            self._workflow_id,
            self.workflow_status,
            status,
            operation,
            metadata={"workflow_id": self._workflow_id, **(metadata or {})},
        )

    def _require_status(self, operation: str, allowed: set[WorkflowStatus]) -> None:
        current = self.workflow_status
        if current not in allowed:
            raise WorkflowError(
                message=(
                    f"Cannot {operation} workflow {self._workflow_id} in status {current.value}; "
                    f"expected one of {sorted(status.value for status in allowed)}"
                ),
                workflow_id=self._workflow_id,
                error_code="INVALID_WORKFLOW_STATE",
                details={"operation": operation, "status": current.value},
            )

    def _get_task(self, task_id: str) -> Task:
        task = self._store.get_state().get_task(task_id)
        if task is None:
            raise NotFoundError(
                message=f"Task not found: {task_id}",
                resource="task",
                resource_id=task_id,
            )
        return task

    def __repr__(self) -> str:
        return (
            f"Team(workflow_id={self._workflow_id!r}, "
            f"status={self.workflow_status.value!r}, "
            f"tasks={len(self._store.get_state().tasks)})"
        )
