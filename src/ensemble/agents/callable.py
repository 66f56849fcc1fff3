"""
ensemble.agents.callable - Function-Backed Agent
==================================================

CallableAgent wraps a plain function (sync or async) as an agent. It is the
quickest way to put deterministic work, or a thin client for some external
service, behind the agent contract without writing a subclass.

Usage:
    >>> async def research(task, inputs, context):
    ...     return f"notes on {inputs['topic']}"
    >>> agent = CallableAgent("researcher", research, role="Researcher")
"""

from __future__ import annotations

import inspect
from typing import Any, Callable, Optional

from ensemble.agents.base import BaseAgent, Tool
from ensemble.core.models import Task

PerformFunction = Callable[[Task, dict[str, Any], str], Any]


class CallableAgent(BaseAgent):
    """Agent whose work is ``fn(task, inputs, context)``.

    Args:
        agent_id: Unique id, referenced by ``Task.agent_id``.
        fn: Called with the task, the workflow inputs and the dependency
            context. May return a value or an awaitable.
        **kwargs: Passed through to BaseAgent (name, role, tools, ...).
    """

    def __init__(
        self,
        agent_id: str,
        fn: PerformFunction,
        name: Optional[str] = None,
        role: str = "",
        goal: str = "",
        background: str = "",
        tools: Optional[dict[str, Tool]] = None,
        max_iterations: Optional[int] = None,
    ) -> None:
        super().__init__(
            agent_id,
            name=name,
            role=role,
            goal=goal,
            background=background,
            tools=tools,
            max_iterations=max_iterations,
        )
        self._fn = fn

    async def _perform(self, task: Task, inputs: dict[str, Any], context: str) -> Any:
        result = self._fn(task, inputs, context)
        if inspect.isawaitable(result):
            result = await result
        return result
