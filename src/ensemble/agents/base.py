"""
ensemble.agents.base - Abstract Base Agent
============================================

This module defines BaseAgent, the executor every Ensemble agent inherits
from. It uses the Template Method pattern: ``perform()`` drives the agent's
status machine through the status pipeline, and subclasses only implement
``_perform()`` (the actual work).

Template Method:

    ┌─────────────────────────────────────────────────────────┐
    │  BaseAgent.perform(task, inputs, context)  ← Public API │
    │  ┌───────────────────────────────────────────────────┐  │
    │  │ 1. ITERATION_START → THINKING                      │  │
    │  │ 2. _perform(task, inputs, context)  ← Override    │  │
    │  │      └── use_tool(name, **kwargs)   (optional)    │  │
    │  │ 3. THINKING_END → FINAL_ANSWER → TASK_COMPLETED   │  │
    │  │ 4. IDLE, return the result                        │  │
    │  └───────────────────────────────────────────────────┘  │
    └─────────────────────────────────────────────────────────┘

Tool Usage (inside _perform):

    THINKING → THINKING_END → EXECUTING_ACTION → USING_TOOL
      ├── tool returns  → USING_TOOL_END → OBSERVATION → THINKING
      ├── tool raises   → USING_TOOL_ERROR   ─┐
      └── unknown tool  → TOOL_DOES_NOT_EXIST ─┴→ ITERATION_END
                                                 → ITERATION_START → THINKING
                                                 (or MAX_ITERATIONS_ERROR)

Failure:

    THINKING → THINKING_ERROR ─┐
    MAX_ITERATIONS_ERROR ──────┴→ AGENTIC_LOOP_ERROR → IDLE, raise ExecutionError

Ownership:
    The agent owns its status. ``bind()`` registers a commit handler on the
    pipeline's ``status:transition`` event that updates ``status`` when a
    transition for this agent (and this workflow) is committed. Nothing else
    assigns it.

Usage:
    class Summarizer(BaseAgent):
        async def _perform(self, task, inputs, context):
            text = await self.use_tool("fetch", url=inputs["url"])
            return text[:200]
"""

from __future__ import annotations

import asyncio
import inspect
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

import structlog

from ensemble.core.enums import AgentStatus, EntityKind, StatusEventType, ValidationErrorCode
from ensemble.core.events import BaseEvent, StatusChangeEvent
from ensemble.core.exceptions import ExecutionError, NotFoundError
from ensemble.core.models import AgentProfile, Task, ValidationIssue, ValidationResult
from ensemble.orchestration.event_bus import FunctionEventHandler
from ensemble.orchestration.status_events import StatusEventPipeline

logger = structlog.get_logger()

Tool = Callable[..., Any]

DEFAULT_MAX_ITERATIONS = 10


class BaseAgent(ABC):
    """Abstract base class for all Ensemble agents.

    What BaseAgent Handles:
        - Agent identity (AgentProfile)
        - Status changes, always through the bound StatusEventPipeline
        - One task at a time (a per-agent asyncio.Lock)
        - Iteration counting and the max-iterations limit
        - Tool dispatch with status reporting

    What Subclasses Must Implement:
        - _perform(task, inputs, context): the agent's work

    Args:
        agent_id: Unique id, referenced by ``Task.agent_id``.
        name: Human-readable name. Defaults to ``agent_id``.
        role: Short role title.
        goal: What the agent is trying to achieve.
        background: Free-form background.
        tools: Callables the agent may invoke through ``use_tool``.
        max_iterations: Reasoning iterations allowed per task. When None,
            the owning Team's configuration decides.
    """

    def __init__(
        self,
        agent_id: str,
        name: Optional[str] = None,
        role: str = "",
        goal: str = "",
        background: str = "",
        tools: Optional[dict[str, Tool]] = None,
        max_iterations: Optional[int] = None,
    ) -> None:
        self._profile = AgentProfile(
            agent_id=agent_id,
            name=name or agent_id,
            role=role,
            goal=goal,
            background=background,
        )
        self._tools: dict[str, Tool] = dict(tools or {})
        self._max_iterations = max_iterations
        self._status = AgentStatus.INITIAL
        self._iterations = 0
        self._lock = asyncio.Lock()

        self._pipeline: Optional[StatusEventPipeline] = None
        self._workflow_id: Optional[str] = None
        self._commit_handler: Optional[FunctionEventHandler] = None
        self._current_task_id: Optional[str] = None

        self._logger = logger.bind(agent_id=agent_id, role=role or None)

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def profile(self) -> AgentProfile:
        return self._profile

    @property
    def agent_id(self) -> str:
        return self._profile.agent_id

    @property
    def name(self) -> str:
        return self._profile.name

    @property
    def status(self) -> AgentStatus:
        """The last status committed for this agent."""
        return self._status

    @property
    def max_iterations(self) -> int:
        return self._max_iterations or DEFAULT_MAX_ITERATIONS

    @property
    def tools(self) -> list[str]:
        return list(self._tools)

    @property
    def is_bound(self) -> bool:
        return self._pipeline is not None

    # =========================================================================
    # Binding
    # =========================================================================

    def bind(
        self,
        pipeline: StatusEventPipeline,
        workflow_id: str,
        max_iterations: Optional[int] = None,
    ) -> None:
        """Attach the agent to a pipeline and a workflow.

        Rebinding detaches the previous commit handler first.

        Args:
            pipeline: Pipeline that validates and commits this agent's
                status changes.
            workflow_id: Workflow the agent reports under.
            max_iterations: Used when the agent was built without its own
                limit.
        """
        self.unbind()
        self._pipeline = pipeline
        self._workflow_id = workflow_id
        if self._max_iterations is None and max_iterations is not None:
            self._max_iterations = max_iterations
        self._commit_handler = FunctionEventHandler(
            self._commit_status,
            validate=self._validate_commit,
            name=f"agent-commit:{self.agent_id}",
        )
        pipeline.on(StatusEventType.TRANSITION, self._commit_handler)
        self._logger.debug("agent_bound", workflow_id=workflow_id)

    def unbind(self) -> None:
        if self._pipeline is not None and self._commit_handler is not None:
            self._pipeline.off(StatusEventType.TRANSITION, self._commit_handler)
        self._pipeline = None
        self._commit_handler = None

    def _owns(self, event: BaseEvent) -> bool:
        return (
            isinstance(event, StatusChangeEvent)
            and event.entity == EntityKind.AGENT
            and event.entity_id == self.agent_id
            and event.metadata.get("workflow_id") == self._workflow_id
        )

    def _validate_commit(self, event: BaseEvent) -> ValidationResult:
        if not self._owns(event) or event.from_status == self._status.value:
            return ValidationResult.success()
        return ValidationResult.failure(
            ValidationIssue(
                code=ValidationErrorCode.INVALID_STATE,
                message=(
                    f"Agent {self.agent_id} is {self._status.value}, not {event.from_status}; "
                    f"transition to {event.to_status} is stale"
                ),
            )
        )

    def _commit_status(self, event: BaseEvent) -> None:
        if self._owns(event):
            self._status = AgentStatus(event.to_status)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Move a fresh agent from INITIAL to IDLE. No-op otherwise."""
        if self._status == AgentStatus.INITIAL:
            await self._set_status(AgentStatus.IDLE, "initialize_agent")
            await self._on_start()

    async def _on_start(self) -> None:
        """Hook called once the agent first becomes IDLE."""
        pass

    # =========================================================================
    # Task Execution (Template Method)
    # =========================================================================

    async def perform(self, task: Task, inputs: dict[str, Any], context: str) -> Any:
        """Run ``task`` and return its result.

        Args:
            task: The task to perform, already interpolated.
            inputs: The workflow inputs.
            context: Results of the tasks this one builds on, and any
                pending feedback, as prepared by the scheduling strategy.

        Returns:
            Whatever ``_perform`` returned.

        Raises:
            ExecutionError: When ``_perform`` fails or the iteration limit
                is exceeded. The agent is back in IDLE either way.
        """
        if self._pipeline is None:
            raise ExecutionError(
                message=f"Agent {self.agent_id} is not bound to a status pipeline",
                agent_id=self.agent_id,
                task_id=task.id,
                error_code="AGENT_NOT_BOUND",
            )

        async with self._lock:
            self._current_task_id = task.id
            self._iterations = 0
            self._logger.info("task_perform_starting", task_id=task.id)
            try:
                await self._begin_iteration()
                result = await self._perform(task, inputs, context)
                await self._set_status(AgentStatus.THINKING_END, "finish_thinking")
                await self._set_status(AgentStatus.FINAL_ANSWER, "final_answer")
                await self._set_status(AgentStatus.TASK_COMPLETED, "complete_task")
                await self._set_status(AgentStatus.IDLE, "release_agent")
            except Exception as exc:
                await self._recover(exc)
                if isinstance(exc, ExecutionError):
                    raise
                raise ExecutionError(
                    message=f"Agent {self.agent_id} failed on task {task.id}: {exc}",
                    agent_id=self.agent_id,
                    task_id=task.id,
                    details={"error_type": type(exc).__name__},
                ) from exc
            finally:
                self._current_task_id = None

        self._logger.info("task_perform_completed", task_id=task.id, iterations=self._iterations)
        return result

    @abstractmethod
    async def _perform(self, task: Task, inputs: dict[str, Any], context: str) -> Any:
        """Do the work for ``task``. Called with the agent in THINKING.

        Return the task result. Raise to fail the task. Use ``use_tool`` to
        call registered tools; it leaves the agent in THINKING again.
        """
        ...

    # =========================================================================
    # Tools
    # =========================================================================

    async def use_tool(self, tool_name: str, **kwargs: Any) -> Any:
        """Invoke a registered tool and report it through the pipeline.

        Raises:
            NotFoundError: No tool named ``tool_name`` is registered. The
                agent has moved on to its next iteration.
            ExecutionError: The iteration limit was hit while recovering.
            Exception: Whatever the tool raised, after the agent has moved
                on to its next iteration.
        """
        await self._set_status(AgentStatus.THINKING_END, "finish_thinking", tool=tool_name)
        await self._set_status(AgentStatus.EXECUTING_ACTION, "execute_action", tool=tool_name)
        await self._set_status(AgentStatus.USING_TOOL, "use_tool", tool=tool_name)

        tool = self._tools.get(tool_name)
        if tool is None:
            await self._set_status(AgentStatus.TOOL_DOES_NOT_EXIST, "tool_missing", tool=tool_name)
            await self._next_iteration()
            raise NotFoundError(
                message=f"Agent {self.agent_id} has no tool named '{tool_name}'",
                resource="tool",
                resource_id=tool_name,
            )

        try:
            result = tool(**kwargs)
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            self._logger.warning("tool_failed", tool=tool_name, error=str(exc))
            await self._set_status(AgentStatus.USING_TOOL_ERROR, "tool_failed", tool=tool_name, error=str(exc))
            await self._next_iteration()
            raise

        await self._set_status(AgentStatus.USING_TOOL_END, "tool_finished", tool=tool_name)
        await self._set_status(AgentStatus.OBSERVATION, "observe", tool=tool_name)
        await self._set_status(AgentStatus.THINKING, "think")
        return result

    # =========================================================================
    # Internal Helpers
    # =========================================================================

    async def _next_iteration(self) -> None:
        await self._set_status(AgentStatus.ITERATION_END, "end_iteration")
        await self._begin_iteration()

    async def _begin_iteration(self) -> None:
        self._iterations += 1
        await self._set_status(AgentStatus.ITERATION_START, "start_iteration")
        if self._iterations > self.max_iterations:
            await self._set_status(AgentStatus.MAX_ITERATIONS_ERROR, "max_iterations_reached")
            raise ExecutionError(
                message=(
                    f"Agent {self.agent_id} exceeded {self.max_iterations} iterations"
                ),
                agent_id=self.agent_id,
                task_id=self._current_task_id,
                error_code="MAX_ITERATIONS_EXCEEDED",
                details={"max_iterations": self.max_iterations},
            )
        await self._set_status(AgentStatus.THINKING, "think")

    async def _recover(self, exc: Exception) -> None:
        """Walk the agent back to IDLE after a failed task."""
        if self._pipeline is None:
            return
        table = self._pipeline.validator.registry.table_for(EntityKind.AGENT)
        try:
            if self._status == AgentStatus.THINKING:
                await self._set_status(AgentStatus.THINKING_ERROR, "thinking_failed", error=str(exc))
            if table.is_allowed(self._status, AgentStatus.AGENTIC_LOOP_ERROR):
                await self._set_status(AgentStatus.AGENTIC_LOOP_ERROR, "agentic_loop_failed", error=str(exc))
            if table.is_allowed(self._status, AgentStatus.IDLE):
                await self._set_status(AgentStatus.IDLE, "release_agent")
        except Exception as recovery_exc:
            self._logger.error(
                "agent_recovery_failed",
                status=self._status.value,
                error=str(recovery_exc),
            )
        self._logger.error("task_perform_failed", task_id=self._current_task_id, error=str(exc))

    async def _set_status(self, target: AgentStatus, operation: str, **metadata: Any) -> None:
        if self._pipeline is None:
            raise ExecutionError(
                message=f"Agent {self.agent_id} is not bound to a status pipeline",
                agent_id=self.agent_id,
                task_id=self._current_task_id,
                error_code="AGENT_NOT_BOUND",
            )
        await self._pipeline.transition(
            EntityKind.AGENT,
            self.agent_id,
            self._status,
            target,
            operation,
            metadata={
                "workflow_id": self._workflow_id,
                "task_id": self._current_task_id,
                "iteration": self._iterations,
                **metadata,
            },
        )

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"agent_id={self.agent_id!r}, "
            f"status={self.status.value!r})"
        )
