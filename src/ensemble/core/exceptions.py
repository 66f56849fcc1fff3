"""
ensemble.core.exceptions - Custom Exception Hierarchy
=======================================================

This module defines a structured exception hierarchy for Ensemble.
Components raise and catch specific exception types that carry contextual
information instead of bare strings.

Exception Hierarchy:
    EnsembleError (base)
        ├── ConfigurationError          - Invalid config or rule tables
        ├── ValidationError             - Rejected transition or bad context
        │     ├── StateTransitionInvalidError - Edge not in the rule table
        │     └── EventValidationError        - A bus handler vetoed an event
        ├── DependencyError             - Dependency resolution failures
        │     ├── CircularDependencyError
        │     └── MissingDependencyError
        ├── NotFoundError               - Unknown entity, task or version
        ├── ExecutionError              - An agent or collaborator failed
        └── WorkflowError               - Public surface precondition failures

Design Principles:
    1. Every exception carries structured context (not just a string message)
    2. Error codes enable programmatic handling (retry vs. abort decisions)
    3. The `details` dict can carry arbitrary debugging information
    4. All exceptions serialize cleanly to JSON (for logging and events)

Error Flow:
    StatusEventPipeline stage raises ValidationError
        → pipeline emits status:error (metrics + log)
        → error is re-raised to the caller of emit_transition
        → caller decides whether to retry with another target or abort

Usage:
    >>> from ensemble.core.exceptions import CircularDependencyError
    >>> raise CircularDependencyError(
    ...     message="Circular dependency detected: X -> Y -> X",
    ...     dependency="X",
    ...     details={"path": ["X", "Y", "X"]},
    ... )
"""

from __future__ import annotations

from typing import Any, Optional


# =============================================================================
# Base Exception
# =============================================================================
# All Ensemble exceptions inherit from this base class. This allows
# catching all framework-specific errors with a single except clause:
#
#   try:
#       await pipeline.emit_transition(context)
#   except EnsembleError as e:
#       logger.error(e.message, error_code=e.error_code, details=e.details)
# =============================================================================
class EnsembleError(Exception):
    """Base exception for all Ensemble errors.

    Attributes:
        message: Human-readable error description.
        error_code: Machine-readable error code for programmatic handling.
            Convention: UPPER_SNAKE_CASE (e.g., "STATE_TRANSITION_INVALID").
        details: Arbitrary dict with additional debugging context.

    Example:
        >>> try:
        ...     do_something()
        ... except EnsembleError as e:
        ...     print(f"[{e.error_code}] {e.message}")
    """

    def __init__(
        self,
        message: str,
        error_code: str = "UNKNOWN_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)

        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize this exception to a dictionary.

        Used by the status pipeline when it packs an error into a
        status:error event, and by structlog when logging failures.

        Returns:
            Dictionary with error_type, message, error_code, and details.
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "details": self.details,
        }

    def __repr__(self) -> str:
        """Detailed string representation for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


# =============================================================================
# Configuration Error
# =============================================================================
# Raised during startup when configuration is invalid: a malformed YAML file,
# a rule table with orphan rules, a missing rule set for an entity kind, or a
# workflow shape the chosen strategy cannot execute safely.
# =============================================================================
class ConfigurationError(EnsembleError):
    """Raised when Ensemble configuration is invalid or missing.

    This should cause the application to fail fast with a clear message.

    Example:
        >>> raise ConfigurationError(
        ...     message="More than one non-first task declares dependencies",
        ...     error_code="AMBIGUOUS_SEQUENTIAL_DEPENDENCIES",
        ...     details={"task_ids": ["b", "c"]},
        ... )
    """

    def __init__(
        self,
        message: str,
        error_code: str = "CONFIG_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message=message, error_code=error_code, details=details)


# =============================================================================
# Validation Errors
# =============================================================================
# A rejected transition is not a crash: callers catch ValidationError and
# decide whether to retry with a different target or abort.
# =============================================================================
class ValidationError(EnsembleError):
    """Raised when a status transition or event fails validation.

    Attributes:
        errors: The structured validation issues (dicts with code, message,
            and optional field) that caused the rejection.

    Example:
        >>> raise ValidationError(
        ...     message="Invalid task transition",
        ...     errors=[{"code": "FIELD_MISSING", "message": "operation is required"}],
        ... )
    """

    def __init__(
        self,
        message: str,
        errors: Optional[list[dict[str, Any]]] = None,
        error_code: str = "VALIDATION_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        enriched_details["errors"] = list(errors or [])

        super().__init__(message=message, error_code=error_code, details=enriched_details)

        self.errors = enriched_details["errors"]


class StateTransitionInvalidError(ValidationError):
    """Raised when a transition has a legal shape but the edge is disallowed.

    The allowed targets from the current status are attached so callers and
    log readers get an actionable message.

    Attributes:
        entity: Entity kind value ("task", "agent", ...).
        entity_id: The entity whose transition was rejected.
        from_status: Current status.
        to_status: Requested status.
        available_transitions: Statuses that are reachable from from_status.
    """

    def __init__(
        self,
        message: str,
        entity: str,
        entity_id: str,
        from_status: str,
        to_status: str,
        available_transitions: Optional[list[str]] = None,
        error_code: str = "STATE_TRANSITION_INVALID",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        enriched_details["entity"] = entity
        enriched_details["entity_id"] = entity_id
        enriched_details["from"] = from_status
        enriched_details["to"] = to_status
        enriched_details["available_transitions"] = list(available_transitions or [])

        super().__init__(
            message=message,
            errors=[{"code": error_code, "message": message}],
            error_code=error_code,
            details=enriched_details,
        )

        self.entity = entity
        self.entity_id = entity_id
        self.from_status = from_status
        self.to_status = to_status
        self.available_transitions = enriched_details["available_transitions"]


class EventValidationError(ValidationError):
    """Raised by the event bus when any handler reports an event invalid.

    No handler's side effect runs once this is raised.

    Attributes:
        event_type: Type of the rejected event.
        event_id: Id of the rejected event.
    """

    def __init__(
        self,
        message: str,
        event_type: str,
        event_id: str,
        errors: Optional[list[dict[str, Any]]] = None,
        error_code: str = "EVENT_VALIDATION_FAILED",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        enriched_details["event_type"] = event_type
        enriched_details["event_id"] = event_id

        super().__init__(
            message=message,
            errors=errors,
            error_code=error_code,
            details=enriched_details,
        )

        self.event_type = event_type
        self.event_id = event_id


# =============================================================================
# Dependency Errors
# =============================================================================
# Raised by the DependencyResolver. The resolver never swallows these; it
# is up to the caller (e.g. the hierarchy strategy at construction time) to
# decide whether they are fatal.
# =============================================================================
class DependencyError(EnsembleError):
    """Base class for dependency resolution failures.

    Attributes:
        dependency: Name of the dependency that could not be resolved.
    """

    def __init__(
        self,
        message: str,
        dependency: str,
        error_code: str = "DEPENDENCY_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        enriched_details["dependency"] = dependency

        super().__init__(message=message, error_code=error_code, details=enriched_details)

        self.dependency = dependency


class CircularDependencyError(DependencyError):
    """Raised when a dependency walk revisits a node that is still being resolved."""

    def __init__(
        self,
        message: str,
        dependency: str,
        error_code: str = "CIRCULAR_DEPENDENCY",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            message=message,
            dependency=dependency,
            error_code=error_code,
            details=details,
        )


class MissingDependencyError(DependencyError):
    """Raised when a required dependency has no version satisfying its constraints."""

    def __init__(
        self,
        message: str,
        dependency: str,
        error_code: str = "MISSING_DEPENDENCY",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            message=message,
            dependency=dependency,
            error_code=error_code,
            details=details,
        )


# =============================================================================
# Not Found Error
# =============================================================================
class NotFoundError(EnsembleError):
    """Raised when an entity, task, agent or version is not registered.

    Example:
        >>> raise NotFoundError(
        ...     message="Task not found: write-report",
        ...     resource="task",
        ...     resource_id="write-report",
        ... )
    """

    def __init__(
        self,
        message: str,
        resource: str,
        resource_id: str,
        error_code: str = "NOT_FOUND",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        enriched_details["resource"] = resource
        enriched_details["resource_id"] = resource_id

        super().__init__(message=message, error_code=error_code, details=enriched_details)

        self.resource = resource
        self.resource_id = resource_id


# =============================================================================
# Execution Error
# =============================================================================
# Raised when an external collaborator (usually an agent executor) fails.
# Team.start() also raises this when the workflow ends in ERRORED.
# =============================================================================
class ExecutionError(EnsembleError):
    """Raised when an agent or other collaborator fails while performing work.

    Attributes:
        agent_id: Agent that failed, when known.
        task_id: Task being performed, when known.
    """

    def __init__(
        self,
        message: str,
        agent_id: Optional[str] = None,
        task_id: Optional[str] = None,
        error_code: str = "EXECUTION_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        if agent_id:
            enriched_details["agent_id"] = agent_id
        if task_id:
            enriched_details["task_id"] = task_id

        super().__init__(message=message, error_code=error_code, details=enriched_details)

        self.agent_id = agent_id
        self.task_id = task_id


# =============================================================================
# Workflow Error
# =============================================================================
# Raised by the Team surface when a control call (pause, resume, stop,
# feedback) is made from a workflow status that does not allow it.
# =============================================================================
class WorkflowError(EnsembleError):
    """Raised when a workflow-level operation's precondition is not met.

    Attributes:
        workflow_id: ID of the workflow that rejected the operation.

    Example:
        >>> raise WorkflowError(
        ...     message="Cannot pause a workflow that is not running",
        ...     workflow_id="team-42",
        ...     error_code="INVALID_WORKFLOW_STATE",
        ...     details={"status": "FINISHED"},
        ... )
    """

    def __init__(
        self,
        message: str,
        workflow_id: str,
        error_code: str = "WORKFLOW_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        enriched_details["workflow_id"] = workflow_id

        super().__init__(message=message, error_code=error_code, details=enriched_details)

        self.workflow_id = workflow_id
