"""
Full Workflow Example - Ensemble End-to-End
=============================================

This example runs a newsroom team through everything a workflow can do:

    research ──→ write ──→ edit ──→ publish (needs human validation)
        │                   ↑
        └───────────────────┘

    1. The task graph has dependencies, so the hierarchy strategy runs each
       task as soon as everything it depends on is DONE.
    2. ``publish`` requires external validation: the workflow waits in
       RUNNING until ``validate_task`` approves it.
    3. After FINISHED, feedback on ``write`` re-runs it and every task
       downstream of it, with the feedback in the writer's context.
    4. Workflow stats summarize tasks, iterations, transitions and metrics.

Usage:
    python examples/full_workflow.py
"""

from __future__ import annotations

import asyncio
from typing import Any

from ensemble import Team
from ensemble.agents import CallableAgent
from ensemble.core.config import EnsembleConfig
from ensemble.core.enums import TaskStatus
from ensemble.core.models import Task


# =============================================================================
# Agent Functions
# =============================================================================
# Each agent is a plain function of (task, inputs, context). The context
# holds the results of the tasks this one depends on, plus any feedback.
# =============================================================================

async def research(task: Task, inputs: dict[str, Any], context: str) -> str:
    await asyncio.sleep(0.05)
    return f"Three facts about {inputs['topic']}: they swarm, they dance, they pollinate."


async def write(task: Task, inputs: dict[str, Any], context: str) -> str:
    await asyncio.sleep(0.05)
    draft = f"{inputs['topic'].title()}: a short article built on research."
    if "Feedback:" in context:
        draft += " Now with a conclusion."
    return draft


def edit(task: Task, inputs: dict[str, Any], context: str) -> str:
    return f"Edited ({context.count('Result:')} sources checked)"


def publish(task: Task, inputs: dict[str, Any], context: str) -> str:
    return f"Published for {inputs['audience']}"


async def approve_when_ready(team: Team, task_id: str) -> None:
    """Stand-in for a human reviewer: approve the task once it waits."""
    while True:
        task = team.get_state().get_task(task_id)
        if task is not None and task.status == TaskStatus.AWAITING_VALIDATION:
            print(f"  reviewer approves '{task_id}'")
            await team.validate_task(task_id)
            return
        await asyncio.sleep(0.01)


async def main() -> None:
    """Run, validate, revise and summarize a newsroom workflow."""
    config = EnsembleConfig(max_agent_iterations=5)
    agents = [
        CallableAgent("researcher", research, role="Researcher"),
        CallableAgent("writer", write, role="Writer"),
        CallableAgent("editor", edit, role="Editor"),
        CallableAgent("publisher", publish, role="Publisher"),
    ]
    tasks = [
        Task(id="research", description="Research {topic}", agent_id="researcher"),
        Task(id="write", description="Write about {topic}", agent_id="writer", dependencies=["research"]),
        Task(
            id="edit",
            description="Edit the article on {topic}",
            agent_id="editor",
            dependencies=["research", "write"],
            is_deliverable=True,
        ),
        Task(
            id="publish",
            description="Publish for {audience}",
            agent_id="publisher",
            dependencies=["edit"],
            external_validation_required=True,
        ),
    ]

    async with Team("newsroom", agents=agents, tasks=tasks, config=config) as team:
        print(f"Strategy: {team.strategy.flow_type.value}")

        # --- First run: wait for the human approval on publish ---
        reviewer = asyncio.create_task(approve_when_ready(team, "publish"))
        result = await team.start({"topic": "honey bees", "audience": "gardeners"})
        await reviewer
        print(f"First run  : {result.status.value} -> {result.result}")

        # --- Feedback: re-run write and everything after it ---
        await team.provide_feedback("write", "Add a conclusion")
        reviewer = asyncio.create_task(approve_when_ready(team, "publish"))
        revised = await team.wait_until_settled()
        await reviewer
        print(f"Second run : {revised.status.value} -> {revised.result}")
        print(f"Article    : {team.get_state().get_task('write').result}")

        # --- Summary ---
        stats = team.get_workflow_stats()
        print()
        print("Workflow Stats")
        print("-" * 40)
        print(f"Tasks       : {stats.tasks_by_status}")
        print(f"Iterations  : {stats.iteration_count}")
        print(f"Transitions : {stats.transition_count}")
        print(f"Metrics     : {stats.metric_counts}")
        print(f"Duration    : {stats.duration_seconds:.3f}s")


if __name__ == "__main__":
    asyncio.run(main())
