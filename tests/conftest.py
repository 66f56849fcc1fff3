"""
Shared Test Fixtures for Ensemble
===================================

This module provides reusable pytest fixtures used across the entire
test suite. Fixtures are organized by layer:

    1. Configuration fixtures
    2. Orchestration fixtures (rule registry, validator, pipeline, store)
    3. Agent fixtures (callable agents with canned behaviour)
    4. Task fixtures
"""

from __future__ import annotations

import pytest

from ensemble.agents.callable import CallableAgent
from ensemble.core.config import EnsembleConfig
from ensemble.core.models import Task
from ensemble.core.state import TeamState
from ensemble.orchestration.metrics import InMemoryMetricsSink
from ensemble.orchestration.state_store import InMemoryStateStore
from ensemble.orchestration.status_events import StatusEventPipeline
from ensemble.orchestration.status_validator import StatusValidator
from ensemble.orchestration.transition_rules import default_registry


# =============================================================================
# Configuration
# =============================================================================

@pytest.fixture
def config():
    """Ensemble configuration with defaults."""
    return EnsembleConfig()


# =============================================================================
# Orchestration
# =============================================================================

@pytest.fixture
def registry():
    """The default rule registry (agent, task, workflow, message)."""
    return default_registry()


@pytest.fixture
def validator(registry):
    """StatusValidator over the default registry."""
    return StatusValidator(registry)


@pytest.fixture
def metrics_sink():
    """Fresh InMemoryMetricsSink so tests can inspect metrics and log lines."""
    return InMemoryMetricsSink()


@pytest.fixture
def pipeline(validator, metrics_sink):
    """StatusEventPipeline wired to the in-memory metrics sink."""
    return StatusEventPipeline(validator, metrics=metrics_sink)


@pytest.fixture
def state_store():
    """Fresh InMemoryStateStore holding an empty TeamState."""
    return InMemoryStateStore(TeamState(workflow_id="wf-test", name="test"))


# =============================================================================
# Agents
# =============================================================================

@pytest.fixture
def echo_agent():
    """CallableAgent that answers with the task's effective description."""
    return CallableAgent(
        "echo",
        lambda task, inputs, context: f"done: {task.effective_description}",
        name="Echo",
        role="Echoer",
    )


# =============================================================================
# Tasks
# =============================================================================

@pytest.fixture
def two_tasks():
    """Two independent tasks assigned to the echo agent."""
    return [
        Task(id="research", description="Research {topic}", agent_id="echo"),
        Task(id="write", description="Write about {topic}", agent_id="echo"),
    ]
