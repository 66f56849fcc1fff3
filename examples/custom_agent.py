"""
Custom Agent Example - Extending BaseAgent
=============================================

This example shows how to create your own agent by subclassing BaseAgent.
A custom agent implements one abstract method:

    _perform(task, inputs, context) - Do the work and return the result.

It is called with the agent in THINKING. Tools registered on the agent are
invoked through ``use_tool``, which reports every step (EXECUTING_ACTION,
USING_TOOL, OBSERVATION, ...) through the team's status pipeline.

Optionally, override ``_on_start()`` for one-time setup when the agent
first becomes IDLE.

In this example, a GlossaryAgent looks terms up with a ``define`` tool and
returns a Markdown glossary.

Usage:
    python examples/custom_agent.py
"""

from __future__ import annotations

import asyncio
from typing import Any

from ensemble import Team
from ensemble.agents import BaseAgent
from ensemble.core.enums import EntityKind
from ensemble.core.exceptions import NotFoundError
from ensemble.core.models import Task


DEFINITIONS = {
    "agent": "An executor that performs tasks and reports its status.",
    "task": "A unit of work assigned to one agent.",
    "workflow": "A team's tasks run to a settled outcome.",
}


# =============================================================================
# Custom Agent: GlossaryAgent
# =============================================================================
class GlossaryAgent(BaseAgent):
    """Builds a glossary for the comma-separated terms in ``inputs['terms']``.

    Terms the ``define`` tool doesn't know are listed as undefined instead
    of failing the task.
    """

    async def _on_start(self) -> None:
        self._logger.info("glossary_agent_ready", tools=self.tools)

    async def _perform(self, task: Task, inputs: dict[str, Any], context: str) -> Any:
        lines = [f"# Glossary ({task.effective_description})", ""]
        for term in (t.strip() for t in inputs["terms"].split(",")):
            try:
                definition = await self.use_tool("define", term=term)
            except NotFoundError:
                definition = "(undefined)"
            lines.append(f"- **{term}**: {definition}")
        return "\n".join(lines)


def define(term: str) -> str:
    if term not in DEFINITIONS:
        raise NotFoundError(message=f"No definition for {term}", resource="term", resource_id=term)
    return DEFINITIONS[term]


async def main() -> None:
    """Run the custom agent and show its status trail."""
    agent = GlossaryAgent("glossary-01", role="Technical writer", tools={"define": define})
    task = Task(
        id="glossary",
        description="Glossary for {audience}",
        agent_id="glossary-01",
    )

    async with Team("docs", agents=[agent], tasks=[task]) as team:
        result = await team.start({"audience": "new users", "terms": "agent, task, pipeline"})

        print("Custom Agent Workflow")
        print("-" * 40)
        print(f"Status     : {result.status.value}")
        print(f"Iterations : {result.stats.iteration_count}")
        print()
        print(result.result)
        print()
        print("Agent status trail:")
        for entry in team.get_state().logs:
            if entry.entity == EntityKind.AGENT:
                print(f"  {entry.from_status:>20} -> {entry.to_status}")


if __name__ == "__main__":
    asyncio.run(main())
