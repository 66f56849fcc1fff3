"""
ensemble.orchestration - Orchestration Layer
==============================================

This package contains everything that moves statuses and decides what runs
next. It sits between the Team facade and the agents.

Components:
    - TransitionRuleRegistry: Per-entity-kind rule tables (agent, task,
                              workflow, message)
    - StatusValidator:        Six-stage validation of a TransitionContext
    - EventBus:               Two-phase (validate, then handle) event bus
    - StatusEventPipeline:    pre-transition → transition → post-transition,
                              status:error on failure
    - MetricsSink:            Where transition metrics and log lines go
    - StateStore:             Observable TeamState container
    - ExecutionStrategy:      Sequential and hierarchy scheduling policies
    - TaskScheduler:          Feeds task status changes to a strategy
    - DependencyResolver:     Versioned dependency graphs with cycle detection
"""

from ensemble.orchestration.dependency_resolver import (
    DependencyNode,
    DependencyResolution,
    DependencyResolver,
    DependencySpec,
)
from ensemble.orchestration.event_bus import (
    EventBus,
    EventHandler,
    FunctionEventHandler,
    InMemoryEventBus,
)
from ensemble.orchestration.execution_strategies import (
    ExecutionStrategy,
    HierarchyExecutionStrategy,
    SequentialExecutionStrategy,
    TaskExecutionController,
    create_execution_strategy,
)
from ensemble.orchestration.metrics import (
    InMemoryMetricsSink,
    MetricsSink,
    StructlogMetricsSink,
)
from ensemble.orchestration.scheduler import TaskScheduler
from ensemble.orchestration.state_store import InMemoryStateStore, StateStore
from ensemble.orchestration.status_events import StatusEventPipeline
from ensemble.orchestration.status_validator import StatusValidator
from ensemble.orchestration.transition_rules import (
    AgentTransitionRules,
    MessageTransitionRules,
    TaskTransitionRules,
    TransitionRule,
    TransitionRuleRegistry,
    TransitionRuleTable,
    WorkflowTransitionRules,
    default_registry,
)

__all__ = [
    # Rules and validation
    "TransitionRule",
    "TransitionRuleTable",
    "TransitionRuleRegistry",
    "AgentTransitionRules",
    "TaskTransitionRules",
    "WorkflowTransitionRules",
    "MessageTransitionRules",
    "default_registry",
    "StatusValidator",
    # Events
    "EventBus",
    "EventHandler",
    "FunctionEventHandler",
    "InMemoryEventBus",
    "StatusEventPipeline",
    "MetricsSink",
    "StructlogMetricsSink",
    "InMemoryMetricsSink",
    # State and scheduling
    "StateStore",
    "InMemoryStateStore",
    "ExecutionStrategy",
    "SequentialExecutionStrategy",
    "HierarchyExecutionStrategy",
    "TaskExecutionController",
    "create_execution_strategy",
    "TaskScheduler",
    # Dependencies
    "DependencySpec",
    "DependencyNode",
    "DependencyResolution",
    "DependencyResolver",
]
