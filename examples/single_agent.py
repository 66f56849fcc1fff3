"""
Single Agent Example - One Task, One Agent
============================================

The smallest useful Ensemble workflow: a CallableAgent wrapping a plain
function, one task with an ``{input}`` placeholder, and a Team that runs
it to FINISHED.

Usage:
    python examples/single_agent.py
"""

from __future__ import annotations

import asyncio

from ensemble import Team
from ensemble.agents import CallableAgent
from ensemble.core.config import EnsembleConfig
from ensemble.core.models import Task


def fibonacci(task, inputs, context) -> list[int]:
    """Return the first ``inputs['count']`` Fibonacci numbers."""
    fibs = [0, 1]
    while len(fibs) < inputs["count"]:
        fibs.append(fibs[-1] + fibs[-2])
    return fibs[: inputs["count"]]


async def main() -> None:
    """Run a one-task team and print the result."""
    agent = CallableAgent("math-01", fibonacci, role="Mathematician")
    task = Task(
        id="fib",
        description="List the first {count} Fibonacci numbers",
        agent_id="math-01",
    )

    async with Team("fibonacci", agents=[agent], tasks=[task], config=EnsembleConfig()) as team:
        result = await team.start({"count": 10})

        print("Single Agent Workflow")
        print("-" * 40)
        print(f"Status      : {result.status.value}")
        print(f"Task        : {team.tasks[0].effective_description}")
        print(f"Iterations  : {result.stats.iteration_count}")
        print(f"Transitions : {result.stats.transition_count}")
        print(f"Duration    : {result.stats.duration_seconds:.3f}s")
        print()
        print(f"Result: {result.result}")


if __name__ == "__main__":
    asyncio.run(main())
