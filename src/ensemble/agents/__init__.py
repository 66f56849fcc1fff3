"""
ensemble.agents - Agent Executors
===================================

Agents perform tasks on behalf of a Team. The orchestration layer never
looks inside an agent run; it only sees the status transitions the agent
reports through the status pipeline.

Architecture:
    ┌─────────────── ORCHESTRATION LAYER ─────────────────┐
    │  Team, TaskScheduler, StatusEventPipeline            │
    └─────────────────────┬───────────────────────────────┘
                          │ perform(task, inputs, context)
                          ▼
    ┌─────────────── AGENT LAYER ─────────────────────────┐
    │                                                      │
    │  BaseAgent (abstract)                                │
    │    └── CallableAgent   (wraps a plain function)      │
    │                                                      │
    └──────────────────────────────────────────────────────┘

Usage:
    from ensemble.agents import BaseAgent, CallableAgent
"""

from ensemble.agents.base import BaseAgent
from ensemble.agents.callable import CallableAgent

__all__ = [
    "BaseAgent",
    "CallableAgent",
]
