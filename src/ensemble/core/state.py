"""
ensemble.core.state - Team State Snapshot
===========================================

This module defines TeamState, the single snapshot a Team keeps in its
state store. Every committed status change produces a new TeamState
(``state.model_copy(update=...)``); subscribers compare selected slices of
the previous and current snapshots.

State Architecture:

    ┌──────────────────────────────────────────┐
    │ TeamState                                 │
    │ ├── workflow_id, name                     │
    │ ├── status: WorkflowStatus                │
    │ ├── tasks: [Task, ...]   (arena, by id)   │
    │ ├── agent_statuses: {agent_id: status}    │
    │ ├── inputs, result                        │
    │ ├── logs: [WorkflowLogEntry, ...]         │
    │ └── started_at, finished_at, iterations   │
    └──────────────────────────────────────────┘

Tasks reference their agent and their dependencies by id only, so the
snapshot contains no object cycles and can be dumped to JSON as is.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from ensemble.core.enums import AgentStatus, TaskStatus, WorkflowStatus
from ensemble.core.models import Task, WorkflowLogEntry


class TeamState(BaseModel):
    """Runtime state of one team/workflow.

    Attributes:
        workflow_id: Unique id of the team's workflow.
        name: Human-readable team name.
        status: Workflow status, changed only through the status pipeline.
        tasks: The team's tasks in declaration order.
        agent_statuses: Last committed AgentStatus per agent id.
        inputs: Inputs passed to Team.start(), used for interpolation.
        result: The workflow result once FINISHED.
        logs: Every committed transition, oldest first.
        started_at: When the workflow first entered RUNNING.
        finished_at: When the workflow last settled.
        iteration_count: Agent reasoning iterations started so far.

    Example:
        >>> state = TeamState(workflow_id="team-1", name="research")
        >>> state = state.model_copy(update={"status": WorkflowStatus.RUNNING})
    """

    workflow_id: str = Field(description="Unique workflow identifier")
    name: str = Field(default="", description="Human-readable team name")
    status: WorkflowStatus = Field(default=WorkflowStatus.INITIAL)
    tasks: list[Task] = Field(default_factory=list)
    agent_statuses: dict[str, AgentStatus] = Field(default_factory=dict)
    inputs: dict[str, Any] = Field(default_factory=dict)
    result: Any = Field(default=None)
    logs: list[WorkflowLogEntry] = Field(default_factory=list)
    started_at: Optional[datetime] = Field(default=None)
    finished_at: Optional[datetime] = Field(default=None)
    iteration_count: int = Field(default=0, ge=0)

    def get_task(self, task_id: str) -> Optional[Task]:
        """The task with ``task_id``, or None."""
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def tasks_with_status(self, status: TaskStatus) -> list[Task]:
        return [task for task in self.tasks if task.status == status]

    def replace_task(self, updated: Task) -> list[Task]:
        """A new task list with ``updated`` swapped in by id."""
        return [updated if task.id == updated.id else task for task in self.tasks]
