"""
ensemble.core.enums - Type-Safe Enumerations
==============================================

This module defines all enumeration types used throughout Ensemble.
Enums provide type safety, prevent typos, and make the codebase self-documenting.

All enums inherit from both `str` and `Enum`, which means:
    - They serialize to strings in JSON/YAML (Pydantic-friendly)
    - They can be compared with plain strings: TaskStatus.DONE == "DONE"
    - They have human-readable representations

Architecture Mapping:

    ┌─────────────────────────────────────────────────────────────────┐
    │  STATUS STATE MACHINE                                           │
    │    EntityKind: which status table a transition belongs to       │
    │    AgentStatus / TaskStatus / WorkflowStatus / MessageStatus    │
    │    ExecutionPhase: the 4-state phase sub-machine                │
    ├─────────────────────────────────────────────────────────────────┤
    │  EVENT PIPELINE                                                 │
    │    StatusEventType: pre-transition / transition / post / error  │
    │    MetricType: what the metrics sink is being told about        │
    ├─────────────────────────────────────────────────────────────────┤
    │  SCHEDULING & RESOLUTION                                        │
    │    FlowType: sequential vs hierarchy strategies                 │
    │    ValidationErrorCode / DependencyErrorType: stable codes      │
    └─────────────────────────────────────────────────────────────────┘
"""

from enum import Enum


# =============================================================================
# Entity Kind Enumeration
# =============================================================================
# Every status in the system belongs to exactly one entity kind, and each
# kind owns its own status enum and its own transition rule table. Kinds are
# never cross-compatible: a TaskStatus is never a valid AgentStatus.
# =============================================================================
class EntityKind(str, Enum):
    """The closed set of entity kinds that carry a status.

    Usage:
        >>> kind = EntityKind.TASK
        >>> kind.value  # "task"
    """

    AGENT = "agent"
    TASK = "task"
    WORKFLOW = "workflow"
    MESSAGE = "message"


# =============================================================================
# Agent Status Enumeration
# =============================================================================
# Agent statuses describe the reasoning loop of an agent working on a task.
# The agent executor reports these through the status pipeline; the core
# never inspects what the agent is actually doing.
#
#   ITERATION_START → THINKING → THINKING_END → FINAL_ANSWER → TASK_COMPLETED
#                        ↑            │
#                        │            └→ EXECUTING_ACTION → USING_TOOL → ...
#                        └── OBSERVATION ←──────────────── USING_TOOL_END
# =============================================================================
class AgentStatus(str, Enum):
    """Agent reasoning-loop states."""

    INITIAL = "INITIAL"                                 # Freshly constructed
    IDLE = "IDLE"                                       # Between tasks
    THINKING = "THINKING"                               # Waiting on the model
    THINKING_END = "THINKING_END"                       # Model responded
    THINKING_ERROR = "THINKING_ERROR"                   # Model call failed
    THOUGHT = "THOUGHT"                                 # Produced an intermediate thought
    EXECUTING_ACTION = "EXECUTING_ACTION"               # Decided to act
    USING_TOOL = "USING_TOOL"                           # Tool call in flight
    USING_TOOL_END = "USING_TOOL_END"                   # Tool call returned
    USING_TOOL_ERROR = "USING_TOOL_ERROR"               # Tool call raised
    TOOL_DOES_NOT_EXIST = "TOOL_DOES_NOT_EXIST"         # Asked for an unknown tool
    OBSERVATION = "OBSERVATION"                         # Digesting a tool result
    FINAL_ANSWER = "FINAL_ANSWER"                       # Produced the task result
    TASK_COMPLETED = "TASK_COMPLETED"                   # Result handed back
    MAX_ITERATIONS_ERROR = "MAX_ITERATIONS_ERROR"       # Iteration budget exhausted
    ISSUES_PARSING_LLM_OUTPUT = "ISSUES_PARSING_LLM_OUTPUT"
    SELF_QUESTION = "SELF_QUESTION"
    ITERATION_START = "ITERATION_START"
    ITERATION_END = "ITERATION_END"
    AGENTIC_LOOP_ERROR = "AGENTIC_LOOP_ERROR"           # Loop aborted
    WEIRD_LLM_OUTPUT = "WEIRD_LLM_OUTPUT"


# =============================================================================
# Task Status Enumeration
# =============================================================================
# Task lifecycle:
#
#   PENDING → TODO → DOING → DONE
#                      │ ↘
#                      │   AWAITING_VALIDATION → VALIDATED → DONE
#                      ↓
#                    ERROR / BLOCKED
#
# REVISE re-enters DOING after human feedback.
# =============================================================================
class TaskStatus(str, Enum):
    """Task lifecycle states."""

    PENDING = "PENDING"                         # Declared, not yet queued
    TODO = "TODO"                               # Queued, waiting for readiness
    DOING = "DOING"                             # An agent is working on it
    BLOCKED = "BLOCKED"                         # A dependency failed or was blocked
    REVISE = "REVISE"                           # Feedback received, will re-run
    DONE = "DONE"                               # Terminal success
    ERROR = "ERROR"                             # Agent raised while performing
    AWAITING_VALIDATION = "AWAITING_VALIDATION" # Waiting for a human to validate
    VALIDATED = "VALIDATED"                     # Human approved the result


# =============================================================================
# Workflow Status Enumeration
# =============================================================================
class WorkflowStatus(str, Enum):
    """Team/workflow level states.

    FINISHED, BLOCKED, ERRORED and STOPPED are the outcomes that settle a
    call to Team.start().
    """

    INITIAL = "INITIAL"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    STOPPING = "STOPPING"
    STOPPED = "STOPPED"
    FINISHED = "FINISHED"
    BLOCKED = "BLOCKED"
    ERRORED = "ERRORED"


# =============================================================================
# Message Status Enumeration
# =============================================================================
class MessageStatus(str, Enum):
    """Lifecycle of a chat/memory message processed by an agent."""

    INITIAL = "INITIAL"
    QUEUED = "QUEUED"
    PROCESSING = "PROCESSING"
    PROCESSED = "PROCESSED"
    RETRIEVING = "RETRIEVING"
    RETRIEVED = "RETRIEVED"
    CLEARING = "CLEARING"
    CLEARED = "CLEARED"
    ERROR = "ERROR"


# =============================================================================
# Execution Phase Enumeration
# =============================================================================
# A 4-state sub-machine orthogonal to entity status:
#
#   pre-execution → {execution, error}
#   execution     → {post-execution, error}
#   post-execution → {error}
#   error         → {}            (terminal)
# =============================================================================
class ExecutionPhase(str, Enum):
    """Execution phase attached to every transition context."""

    PRE_EXECUTION = "pre-execution"
    EXECUTION = "execution"
    POST_EXECUTION = "post-execution"
    ERROR = "error"


# =============================================================================
# Status Event Types
# =============================================================================
class StatusEventType(str, Enum):
    """Event types emitted by the status event pipeline, in emission order."""

    PRE_TRANSITION = "status:pre-transition"    # Handlers may veto
    TRANSITION = "status:transition"            # Handlers commit the change
    POST_TRANSITION = "status:post-transition"  # Observers that need the commit
    ERROR = "status:error"                      # Any stage above failed


# =============================================================================
# Metric Types
# =============================================================================
class MetricType(str, Enum):
    """Categories of metrics the pipeline hands to the metrics sink."""

    PERFORMANCE = "performance"
    RESOURCE = "resource"
    USAGE = "usage"
    ERROR = "error"


# =============================================================================
# Flow Type
# =============================================================================
class FlowType(str, Enum):
    """Which scheduling strategy a workflow uses.

    SEQUENTIAL: tasks run one at a time in declaration order.
    HIERARCHY:  tasks run as soon as their declared dependencies are DONE.
    """

    SEQUENTIAL = "sequential"
    HIERARCHY = "hierarchy"


# =============================================================================
# Validation Error Codes
# =============================================================================
# Stable codes returned by the StatusValidator so callers can branch on the
# failure kind without parsing messages.
# =============================================================================
class ValidationErrorCode(str, Enum):
    """Error codes for status transition validation."""

    FIELD_MISSING = "FIELD_MISSING"
    INVALID_STATE = "INVALID_STATE"
    STATE_TRANSITION_INVALID = "STATE_TRANSITION_INVALID"
    VALIDATION_RULE_VIOLATION = "VALIDATION_RULE_VIOLATION"
    VALIDATION_FAILED = "VALIDATION_FAILED"


# =============================================================================
# Dependency Error Types
# =============================================================================
class DependencyErrorType(str, Enum):
    """Error codes produced by the dependency resolver."""

    VERSION_NOT_FOUND = "VERSION_NOT_FOUND"
    VERSION_MISMATCH = "VERSION_MISMATCH"
    CIRCULAR_DEPENDENCY = "CIRCULAR_DEPENDENCY"
    MISSING_DEPENDENCY = "MISSING_DEPENDENCY"
    CONSTRAINT_VIOLATION = "CONSTRAINT_VIOLATION"
