"""
ensemble.core.models - Core Data Models
=========================================

This module defines the Pydantic data models that flow through every layer
of Ensemble. Every component speaks in terms of these types.

Model Hierarchy:
    AgentProfile       → Who is this agent? (identity card)
    Task               → What work needs to be done, and where is it at?
    FeedbackEntry      → Human feedback attached to a task
    TransitionContext  → A proposed status change (immutable)
    ValidationIssue    → One structured validation error or warning
    ValidationResult   → Outcome of validating a TransitionContext
    WorkflowLogEntry   → One committed transition, kept on the team
    WorkflowStats      → Aggregate counters for a workflow run
    WorkflowResult     → What Team.start() hands back

Data Flow Through Architecture:
    ┌──────────────┐   TransitionContext   ┌──────────────────┐
    │  Team /       │ ───────────────────→ │  Status Event     │
    │  Strategy /   │                       │  Pipeline         │
    │  Agent        │ ←─────────────────── │  (validate, emit) │
    └──────────────┘   StatusChangeEvent   └──────────────────┘
           │                                        │
           │  Task (snapshots)                      │ ValidationResult
           ↓                                        ↓
    ┌──────────────┐                       ┌──────────────────┐
    │  State Store  │                       │ Status Validator  │
    └──────────────┘                       └──────────────────┘

Design Principles:
    1. Immutable by convention: models are snapshots, updated with model_copy
    2. Self-validating: Pydantic enforces type/value constraints at creation
    3. Serializable: all models convert to/from JSON
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from ensemble.core.enums import (
    EntityKind,
    ExecutionPhase,
    TaskStatus,
    ValidationErrorCode,
    WorkflowStatus,
)


# =============================================================================
# Helpers
# =============================================================================
def _generate_id() -> str:
    """Generate a unique identifier using UUID4."""
    return str(uuid4())


def _now() -> datetime:
    """Get the current UTC timestamp. Every timestamp in Ensemble is UTC."""
    return datetime.now(timezone.utc)


_PLACEHOLDER_PATTERN = re.compile(r"\{(\w+)\}")


def interpolate_description(description: str, inputs: Optional[dict[str, Any]]) -> str:
    """Replace ``{name}`` placeholders in a task description with input values.

    Placeholders without a matching input are left untouched so that a
    partially configured team still produces readable descriptions.

    Example:
        >>> interpolate_description("Research {topic}", {"topic": "bees"})
        'Research bees'
    """
    if not inputs:
        return description

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1)
        if key in inputs:
            return str(inputs[key])
        return match.group(0)

    return _PLACEHOLDER_PATTERN.sub(_replace, description)


# =============================================================================
# Agent Profile Model
# =============================================================================
class AgentProfile(BaseModel):
    """Static identity of an agent executor.

    Attributes:
        agent_id: Unique identifier, used by tasks to reference their agent.
        name: Human-readable name for logs.
        role: Short role title ("Researcher", "Writer").
        goal: What the agent is trying to achieve.
        background: Free-form background used by prompt builders.
    """

    agent_id: str = Field(
        default_factory=_generate_id,
        description="Unique identifier for this agent instance",
    )
    name: str = Field(description="Human-readable agent name")
    role: str = Field(default="", description="Role title of the agent")
    goal: str = Field(default="", description="What the agent is trying to achieve")
    background: str = Field(default="", description="Background for prompt builders")


# =============================================================================
# Feedback Entry
# =============================================================================
class FeedbackEntry(BaseModel):
    """Human feedback attached to a task through Team.provide_feedback()."""

    content: str = Field(description="The feedback text")
    status: str = Field(
        default="PENDING",
        description="PENDING until the revised task has been re-run, then PROCESSED",
    )
    timestamp: datetime = Field(default_factory=_now)


# =============================================================================
# Task Model
# =============================================================================
# A task is owned by exactly one Team. Dependencies are task ids (weak graph
# references), and the owning agent is referenced by id as well, so nothing
# in this model points back at live objects.
# =============================================================================
class Task(BaseModel):
    """A unit of work assigned to one agent.

    Tasks are snapshots: the Team replaces a task in its store with
    ``task.model_copy(update=...)`` whenever the status pipeline commits a
    change. Code outside the pipeline should never assign ``status``.

    Attributes:
        id: Unique task identifier within the team.
        title: Short title for logs and stats.
        description: What the agent should do. May contain ``{input}``
            placeholders filled from Team.start(inputs).
        expected_output: What a good result looks like.
        agent_id: Id of the agent that performs this task.
        status: Current TaskStatus.
        result: The agent's result once DONE.
        dependencies: Ids of tasks that must be DONE before this one runs.
        is_deliverable: Marks the task whose result is the workflow result.
        interpolated_description: The description after input interpolation.
        external_validation_required: When True the task stops in
            AWAITING_VALIDATION until Team.validate_task() is called.
        feedback_history: Feedback received for this task.
        error: Error message recorded when the task ends in ERROR.

    Example:
        >>> task = Task(
        ...     id="research",
        ...     description="Research {topic}",
        ...     expected_output="A bullet list",
        ...     agent_id="researcher",
        ... )
    """

    id: str = Field(default_factory=_generate_id, description="Unique task id")
    title: str = Field(default="", description="Short title for logs")
    description: str = Field(description="What the agent should do")
    expected_output: str = Field(default="", description="Shape of a good result")
    agent_id: str = Field(description="Id of the agent that performs this task")
    status: TaskStatus = Field(default=TaskStatus.PENDING)
    result: Any = Field(default=None, description="Agent result once DONE")
    dependencies: list[str] = Field(
        default_factory=list,
        description="Ids of tasks that must be DONE before this one runs",
    )
    is_deliverable: bool = Field(
        default=False,
        description="Whether this task's result is the workflow result",
    )
    interpolated_description: Optional[str] = Field(default=None)
    external_validation_required: bool = Field(default=False)
    feedback_history: list[FeedbackEntry] = Field(default_factory=list)
    error: Optional[str] = Field(default=None)
    started_at: Optional[datetime] = Field(default=None)
    completed_at: Optional[datetime] = Field(default=None)

    @property
    def effective_description(self) -> str:
        """The interpolated description when available, else the raw one."""
        return self.interpolated_description or self.description

    @property
    def pending_feedback(self) -> list[FeedbackEntry]:
        """Feedback entries that have not yet been acted on."""
        return [entry for entry in self.feedback_history if entry.status == "PENDING"]


# =============================================================================
# Transition Context
# =============================================================================
# The immutable record describing a proposed status change. Required fields
# (entity_id, operation, phase, start_time) are Optional at the type level on
# purpose: the StatusValidator reports a missing field as FIELD_MISSING
# rather than letting Pydantic fill in a silent default.
# =============================================================================
class TransitionContext(BaseModel):
    """A proposed status change for one entity.

    Attributes:
        entity: Which kind of entity is changing.
        entity_id: Id of the entity instance. Required.
        current_status: The status the entity is in now.
        target_status: The status being requested.
        operation: Name of the operation causing the change. Required.
        phase: Execution phase the change happens in. Required.
        previous_phase: Phase of the previous transition, when the caller
            tracks it. Enables an explicit phase-edge check.
        start_time: When the operation started. Required.
        duration: Seconds the operation took, when known.
        resource_metrics: Resource snapshot (memory, cpu) at transition time.
        performance_metrics: Performance snapshot (latency, tokens).
        metadata: Free-form metadata available to guards and handlers.

    Example:
        >>> context = TransitionContext(
        ...     entity=EntityKind.TASK,
        ...     entity_id="research",
        ...     current_status=TaskStatus.TODO,
        ...     target_status=TaskStatus.DOING,
        ...     operation="start_task",
        ...     phase=ExecutionPhase.PRE_EXECUTION,
        ...     start_time=datetime.now(timezone.utc),
        ... )
    """

    model_config = {"frozen": True}

    entity: EntityKind
    entity_id: Optional[str] = None
    current_status: str
    target_status: str
    operation: Optional[str] = None
    phase: Optional[ExecutionPhase] = None
    previous_phase: Optional[ExecutionPhase] = None
    start_time: Optional[datetime] = None
    duration: Optional[float] = None
    resource_metrics: dict[str, Any] = Field(default_factory=dict)
    performance_metrics: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def transition_label(self) -> str:
        """Human-readable ``from -> to`` label."""
        return f"{_status_value(self.current_status)} -> {_status_value(self.target_status)}"


def _status_value(status: Any) -> str:
    return getattr(status, "value", status)


# =============================================================================
# Validation Results
# =============================================================================
class ValidationIssue(BaseModel):
    """One structured validation error or warning.

    Attributes:
        code: Stable code callers can branch on.
        message: Human-readable explanation.
        field: The context field at fault, for FIELD_MISSING errors.
        rule: Name of the rule whose guard rejected the transition.
    """

    model_config = {"frozen": True}

    code: ValidationErrorCode
    message: str
    field: Optional[str] = None
    rule: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Plain dict form used when packing issues into exceptions."""
        return self.model_dump(mode="json", exclude_none=True)


class ValidationResult(BaseModel):
    """Outcome of a validation call.

    On success ``metadata`` carries ``context`` (entity, transition label),
    ``domain_metadata`` (phase, operation, start_time, duration) and
    ``transition`` (from, to) so downstream consumers need not re-derive it.
    """

    is_valid: bool
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationIssue] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def success(cls, **metadata: Any) -> ValidationResult:
        return cls(is_valid=True, metadata=metadata)

    @classmethod
    def failure(cls, *errors: ValidationIssue, **metadata: Any) -> ValidationResult:
        return cls(is_valid=False, errors=list(errors), metadata=metadata)

    @property
    def error_codes(self) -> list[ValidationErrorCode]:
        """Codes of all errors, in order."""
        return [error.code for error in self.errors]

    def error_dicts(self) -> list[dict[str, Any]]:
        return [error.to_dict() for error in self.errors]


# =============================================================================
# Workflow Log, Stats and Result
# =============================================================================
class WorkflowLogEntry(BaseModel):
    """One committed status transition, recorded on the team's state."""

    timestamp: datetime = Field(default_factory=_now)
    entity: EntityKind
    entity_id: str
    from_status: str
    to_status: str
    operation: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class WorkflowStats(BaseModel):
    """Aggregate counters for one workflow run.

    Attributes:
        status: Workflow status when the stats were taken.
        task_count: Number of tasks in the team.
        agent_count: Number of agents in the team.
        tasks_by_status: Count of tasks per TaskStatus value.
        started_at: When the workflow entered RUNNING.
        finished_at: When the workflow settled (FINISHED/BLOCKED/ERRORED/STOPPED).
        duration_seconds: Wall-clock seconds between the two.
        transition_count: Committed transitions recorded in the workflow log.
        metric_counts: Metrics recorded by the sink, per MetricType value.
        iteration_count: Agent reasoning iterations started during the run.
    """

    status: WorkflowStatus
    task_count: int = 0
    agent_count: int = 0
    tasks_by_status: dict[str, int] = Field(default_factory=dict)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    transition_count: int = 0
    metric_counts: dict[str, int] = Field(default_factory=dict)
    iteration_count: int = 0


class WorkflowResult(BaseModel):
    """What Team.start() resolves with."""

    status: WorkflowStatus
    result: Any = None
    stats: WorkflowStats
