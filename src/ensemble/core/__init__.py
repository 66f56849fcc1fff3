"""
ensemble.core - Foundation Layer
==================================

This module contains the foundational building blocks that every other module
in Ensemble depends on:

    - config:      Configuration management (EnsembleConfig, MetricsConfig)
    - enums:       Entity kinds, per-kind statuses, phases, error codes
    - exceptions:  Custom exception hierarchy for structured error handling
    - models:      Task, TransitionContext, ValidationResult, workflow stats
    - events:      Status event envelopes and metric records
    - versioning:  Semantic versions and constraints for dependency resolution

Design Principle:
    Everything in `core` is a plain data structure or configuration. No
    orchestration logic, no I/O beyond config loading.

Dependency Rule:
    core/ depends on NOTHING else in the ensemble package.
"""

from ensemble.core.config import EnsembleConfig, MetricsConfig
from ensemble.core.enums import (
    AgentStatus,
    DependencyErrorType,
    EntityKind,
    ExecutionPhase,
    FlowType,
    MessageStatus,
    MetricType,
    StatusEventType,
    TaskStatus,
    ValidationErrorCode,
    WorkflowStatus,
)
from ensemble.core.exceptions import (
    CircularDependencyError,
    ConfigurationError,
    DependencyError,
    EnsembleError,
    EventValidationError,
    ExecutionError,
    MissingDependencyError,
    NotFoundError,
    StateTransitionInvalidError,
    ValidationError,
    WorkflowError,
)
from ensemble.core.models import (
    AgentProfile,
    FeedbackEntry,
    Task,
    TransitionContext,
    ValidationIssue,
    ValidationResult,
    WorkflowResult,
    WorkflowStats,
)

__all__ = [
    # Config
    "EnsembleConfig",
    "MetricsConfig",
    # Enums
    "AgentStatus",
    "DependencyErrorType",
    "EntityKind",
    "ExecutionPhase",
    "FlowType",
    "MessageStatus",
    "MetricType",
    "StatusEventType",
    "TaskStatus",
    "ValidationErrorCode",
    "WorkflowStatus",
    # Models
    "AgentProfile",
    "FeedbackEntry",
    "Task",
    "TransitionContext",
    "ValidationIssue",
    "ValidationResult",
    "WorkflowResult",
    "WorkflowStats",
    # Exceptions
    "EnsembleError",
    "ConfigurationError",
    "ValidationError",
    "StateTransitionInvalidError",
    "EventValidationError",
    "DependencyError",
    "CircularDependencyError",
    "MissingDependencyError",
    "NotFoundError",
    "ExecutionError",
    "WorkflowError",
]
