"""
ensemble.orchestration.transition_rules - Transition Rule Registry
====================================================================

This module holds the declarative tables of legal status transitions, one
table per entity kind, and the registry that maps each EntityKind to its
table.

Architecture:

    TransitionRuleRegistry
    ├── EntityKind.AGENT    → AgentTransitionRules
    ├── EntityKind.TASK     → TaskTransitionRules
    ├── EntityKind.WORKFLOW → WorkflowTransitionRules
    └── EntityKind.MESSAGE  → MessageTransitionRules

    Each table owns:
        - the kind's status enum (membership checks)
        - the kind's initial status (reachability checks)
        - a tuple of TransitionRule {from_status, to_status, validation?}

Rule Semantics:
    - ``from_status`` and ``to_status`` are sets; a rule matches when the
      current status is in the first and the target is in the second.
    - Matching is order independent. At least one rule must match, and every
      matching rule that carries a ``validation`` guard must pass.
    - Tables are immutable after construction and shared without locking.

Startup Check:
    ``TransitionRuleRegistry.verify()`` walks each table from its initial
    status and reports rules whose ``from_status`` set is entirely
    unreachable (orphan rules). It is meant to run once at startup, not on
    every transition.

Usage:
    >>> registry = default_registry()
    >>> registry.verify()
    >>> registry.table_for(EntityKind.TASK).available_transitions(TaskStatus.TODO)
    [<TaskStatus.DOING: 'DOING'>, <TaskStatus.BLOCKED: 'BLOCKED'>]
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import deque
from enum import Enum
from typing import Any, Awaitable, Callable, ClassVar, Iterable, Optional, Union

import structlog
from pydantic import BaseModel, field_validator

from ensemble.core.enums import (
    AgentStatus,
    EntityKind,
    ExecutionPhase,
    MessageStatus,
    TaskStatus,
    WorkflowStatus,
)
from ensemble.core.exceptions import ConfigurationError
from ensemble.core.models import TransitionContext

logger = structlog.get_logger()

TransitionGuard = Callable[[TransitionContext], Union[Awaitable[bool], bool]]


# =============================================================================
# Transition Rule
# =============================================================================
class TransitionRule(BaseModel):
    """One declarative edge set in a rule table.

    Attributes:
        from_status: Statuses this rule applies to.
        to_status: Statuses this rule allows moving to.
        validation: Optional guard. Called with the TransitionContext and
            must resolve truthy for the transition to be accepted.
        name: Optional name, reported when the guard rejects a transition.

    Example:
        >>> TransitionRule(from_status=TaskStatus.TODO, to_status=[TaskStatus.DOING])
    """

    model_config = {"frozen": True}

    from_status: tuple[str, ...]
    to_status: tuple[str, ...]
    validation: Optional[TransitionGuard] = None
    name: Optional[str] = None

    @field_validator("from_status", "to_status", mode="before")
    @classmethod
    def _as_status_tuple(cls, value: Any) -> tuple[str, ...]:
        if isinstance(value, str):
            return (_raw(value),)
        return tuple(_raw(item) for item in value)

    def matches(self, current: str, target: str) -> bool:
        """Structural match: ``current`` in from_status and ``target`` in to_status."""
        return _raw(current) in self.from_status and _raw(target) in self.to_status

    def applies_to(self, current: str) -> bool:
        return _raw(current) in self.from_status

    @property
    def label(self) -> str:
        """The rule's name, or a ``A|B -> C|D`` rendering of its edges."""
        if self.name:
            return self.name
        return f"{'|'.join(self.from_status)} -> {'|'.join(self.to_status)}"


def _raw(status: Any) -> str:
    """Plain string value of a status enum member (or string)."""
    return status.value if isinstance(status, Enum) else str(status)


def _rule(
    from_status: Union[Enum, Iterable[Enum]],
    to_status: Union[Enum, Iterable[Enum]],
    validation: Optional[TransitionGuard] = None,
    name: Optional[str] = None,
) -> TransitionRule:
    return TransitionRule(
        from_status=from_status,
        to_status=to_status,
        validation=validation,
        name=name,
    )


# =============================================================================
# Abstract Rule Table
# =============================================================================
# One subclass per entity kind. Subclasses declare which enum they use, the
# initial status, and the rules; everything else (membership, matching,
# reachability) is shared.
# =============================================================================
class TransitionRuleTable(ABC):
    """Rule table for one entity kind.

    Subclasses must set ``entity_kind``, ``status_type`` and
    ``initial_status`` and implement ``_build_rules()``.

    Args:
        extra_rules: Additional rules appended after the built-in ones.
            Use this to extend a kind without subclassing.
    """

    entity_kind: ClassVar[EntityKind]
    status_type: ClassVar[type[Enum]]
    initial_status: ClassVar[Enum]
    # Phase a transition INTO a status happens in, when the caller does not
    # say otherwise. Statuses not listed default to EXECUTION.
    phase_hints: ClassVar[dict[str, ExecutionPhase]] = {}

    def __init__(self, extra_rules: Iterable[TransitionRule] = ()) -> None:
        self._rules: tuple[TransitionRule, ...] = tuple(self._build_rules()) + tuple(extra_rules)

    @abstractmethod
    def _build_rules(self) -> list[TransitionRule]:
        """Return the built-in rules for this entity kind."""

    @property
    def rules(self) -> tuple[TransitionRule, ...]:
        return self._rules

    # -------------------------------------------------------------------------
    # Membership
    # -------------------------------------------------------------------------
    def is_valid_status(self, value: Any) -> bool:
        """True when ``value`` is a member of this kind's status enum."""
        try:
            self.status_type(_raw(value))
        except ValueError:
            return False
        return True

    def coerce(self, value: Any) -> Enum:
        """Convert a raw status string into this kind's enum member."""
        return self.status_type(_raw(value))

    def phase_for(self, target: Any) -> ExecutionPhase:
        """Default execution phase for a transition into ``target``."""
        return self.phase_hints.get(_raw(target), ExecutionPhase.EXECUTION)

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------
    def matching_rules(self, current: Any, target: Any) -> list[TransitionRule]:
        return [rule for rule in self._rules if rule.matches(current, target)]

    def is_allowed(self, current: Any, target: Any) -> bool:
        """Structural check only: some rule has the edge. Guards are not run."""
        return any(rule.matches(current, target) for rule in self._rules)

    def available_transitions(self, current: Any) -> list[Enum]:
        """Union of ``to_status`` over every rule whose ``from_status`` has ``current``.

        Order follows rule declaration order with duplicates removed.
        """
        seen: dict[str, None] = {}
        for rule in self._rules:
            if rule.applies_to(current):
                for target in rule.to_status:
                    seen.setdefault(target, None)
        return [self.coerce(target) for target in seen]

    # -------------------------------------------------------------------------
    # Reachability
    # -------------------------------------------------------------------------
    def reachable_statuses(self) -> set[str]:
        """Statuses reachable from the initial status by following rules."""
        start = _raw(self.initial_status)
        reachable = {start}
        queue = deque([start])
        while queue:
            current = queue.popleft()
            for rule in self._rules:
                if not rule.applies_to(current):
                    continue
                for target in rule.to_status:
                    if target not in reachable:
                        reachable.add(target)
                        queue.append(target)
        return reachable

    def orphan_rules(self) -> list[TransitionRule]:
        """Rules none of whose ``from_status`` values can ever be reached."""
        reachable = self.reachable_statuses()
        return [
            rule for rule in self._rules
            if not any(status in reachable for status in rule.from_status)
        ]


# =============================================================================
# Guards
# =============================================================================
async def _has_feedback(context: TransitionContext) -> bool:
    """A finished task may only be sent back for revision with feedback attached."""
    return bool(context.metadata.get("feedback"))


# =============================================================================
# Built-in Rule Tables
# =============================================================================
class AgentTransitionRules(TransitionRuleTable):
    """Agent reasoning loop.

    Beyond the core loop, FINAL_ANSWER → TASK_COMPLETED → IDLE and
    AGENTIC_LOOP_ERROR → IDLE return an agent to rest so it can take the
    next task, and IDLE → ITERATION_START starts that task.
    """

    entity_kind = EntityKind.AGENT
    status_type = AgentStatus
    initial_status = AgentStatus.INITIAL
    phase_hints = {
        AgentStatus.IDLE.value: ExecutionPhase.PRE_EXECUTION,
        AgentStatus.ITERATION_START.value: ExecutionPhase.PRE_EXECUTION,
        AgentStatus.FINAL_ANSWER.value: ExecutionPhase.POST_EXECUTION,
        AgentStatus.TASK_COMPLETED.value: ExecutionPhase.POST_EXECUTION,
        AgentStatus.THINKING_ERROR.value: ExecutionPhase.ERROR,
        AgentStatus.USING_TOOL_ERROR.value: ExecutionPhase.ERROR,
        AgentStatus.TOOL_DOES_NOT_EXIST.value: ExecutionPhase.ERROR,
        AgentStatus.MAX_ITERATIONS_ERROR.value: ExecutionPhase.ERROR,
        AgentStatus.AGENTIC_LOOP_ERROR.value: ExecutionPhase.ERROR,
    }

    def _build_rules(self) -> list[TransitionRule]:
        s = AgentStatus
        return [
            _rule(s.INITIAL, [s.THINKING, s.ITERATION_START, s.IDLE]),
            _rule(s.IDLE, [s.ITERATION_START, s.THINKING]),
            _rule(s.THINKING, [s.THINKING_END, s.THINKING_ERROR, s.WEIRD_LLM_OUTPUT]),
            _rule(s.THINKING_END, [s.THOUGHT, s.SELF_QUESTION, s.FINAL_ANSWER, s.EXECUTING_ACTION]),
            _rule(s.THINKING_ERROR, [s.ITERATION_END, s.AGENTIC_LOOP_ERROR]),
            _rule(s.EXECUTING_ACTION, [s.USING_TOOL, s.FINAL_ANSWER]),
            _rule(s.USING_TOOL, [s.USING_TOOL_END, s.USING_TOOL_ERROR, s.TOOL_DOES_NOT_EXIST]),
            _rule(s.USING_TOOL_END, [s.OBSERVATION, s.ITERATION_END]),
            _rule(s.THOUGHT, [s.EXECUTING_ACTION, s.SELF_QUESTION, s.FINAL_ANSWER]),
            _rule(s.SELF_QUESTION, [s.THINKING, s.OBSERVATION]),
            _rule(s.OBSERVATION, [s.THINKING, s.FINAL_ANSWER]),
            _rule(s.ITERATION_START, [s.THINKING, s.MAX_ITERATIONS_ERROR]),
            _rule(s.ITERATION_END, [s.ITERATION_START, s.FINAL_ANSWER]),
            _rule(
                [
                    s.USING_TOOL_ERROR,
                    s.TOOL_DOES_NOT_EXIST,
                    s.ISSUES_PARSING_LLM_OUTPUT,
                    s.WEIRD_LLM_OUTPUT,
                    s.MAX_ITERATIONS_ERROR,
                ],
                [s.ITERATION_END, s.AGENTIC_LOOP_ERROR],
            ),
            _rule(s.FINAL_ANSWER, [s.TASK_COMPLETED]),
            _rule(s.TASK_COMPLETED, [s.IDLE]),
            _rule(s.AGENTIC_LOOP_ERROR, [s.IDLE]),
        ]


class TaskTransitionRules(TransitionRuleTable):
    """Task lifecycle.

    DONE → REVISE requires feedback in the context metadata, and
    DONE → TODO lets a scheduler reopen finished work downstream of a
    revised task.
    """

    entity_kind = EntityKind.TASK
    status_type = TaskStatus
    initial_status = TaskStatus.PENDING
    phase_hints = {
        TaskStatus.TODO.value: ExecutionPhase.PRE_EXECUTION,
        TaskStatus.REVISE.value: ExecutionPhase.PRE_EXECUTION,
        TaskStatus.DOING.value: ExecutionPhase.EXECUTION,
        TaskStatus.AWAITING_VALIDATION.value: ExecutionPhase.POST_EXECUTION,
        TaskStatus.VALIDATED.value: ExecutionPhase.POST_EXECUTION,
        TaskStatus.DONE.value: ExecutionPhase.POST_EXECUTION,
        TaskStatus.ERROR.value: ExecutionPhase.ERROR,
        TaskStatus.BLOCKED.value: ExecutionPhase.ERROR,
    }

    def _build_rules(self) -> list[TransitionRule]:
        s = TaskStatus
        return [
            _rule(s.PENDING, [s.TODO]),
            _rule(s.TODO, [s.DOING, s.BLOCKED]),
            _rule(s.DOING, [s.DONE, s.ERROR, s.BLOCKED, s.AWAITING_VALIDATION]),
            _rule(s.AWAITING_VALIDATION, [s.VALIDATED, s.REVISE]),
            _rule(s.VALIDATED, [s.DONE]),
            _rule(s.ERROR, [s.REVISE, s.BLOCKED]),
            _rule(s.REVISE, [s.DOING]),
            _rule(s.BLOCKED, [s.TODO, s.ERROR]),
            _rule(s.DONE, [s.REVISE], validation=_has_feedback, name="feedback_required"),
            _rule(s.DONE, [s.TODO]),
        ]


class WorkflowTransitionRules(TransitionRuleTable):
    """Team/workflow lifecycle, including pause/resume and reopening on feedback."""

    entity_kind = EntityKind.WORKFLOW
    status_type = WorkflowStatus
    initial_status = WorkflowStatus.INITIAL
    phase_hints = {
        WorkflowStatus.INITIAL.value: ExecutionPhase.PRE_EXECUTION,
        WorkflowStatus.PAUSED.value: ExecutionPhase.PRE_EXECUTION,
        WorkflowStatus.STOPPING.value: ExecutionPhase.POST_EXECUTION,
        WorkflowStatus.STOPPED.value: ExecutionPhase.POST_EXECUTION,
        WorkflowStatus.FINISHED.value: ExecutionPhase.POST_EXECUTION,
        WorkflowStatus.BLOCKED.value: ExecutionPhase.ERROR,
        WorkflowStatus.ERRORED.value: ExecutionPhase.ERROR,
    }

    def _build_rules(self) -> list[TransitionRule]:
        s = WorkflowStatus
        return [
            _rule(s.INITIAL, [s.RUNNING]),
            _rule(s.RUNNING, [s.FINISHED, s.ERRORED, s.BLOCKED, s.STOPPING, s.PAUSED]),
            _rule(s.PAUSED, [s.RUNNING, s.STOPPING, s.ERRORED]),
            _rule(s.STOPPING, [s.STOPPED]),
            _rule(s.BLOCKED, [s.RUNNING, s.ERRORED]),
            _rule(s.STOPPED, [s.INITIAL]),
            _rule(s.FINISHED, [s.RUNNING]),
        ]


class MessageTransitionRules(TransitionRuleTable):
    """Lifecycle of chat/memory messages processed by agents."""

    entity_kind = EntityKind.MESSAGE
    status_type = MessageStatus
    initial_status = MessageStatus.INITIAL
    phase_hints = {
        MessageStatus.QUEUED.value: ExecutionPhase.PRE_EXECUTION,
        MessageStatus.PROCESSED.value: ExecutionPhase.POST_EXECUTION,
        MessageStatus.RETRIEVED.value: ExecutionPhase.POST_EXECUTION,
        MessageStatus.CLEARED.value: ExecutionPhase.POST_EXECUTION,
        MessageStatus.ERROR.value: ExecutionPhase.ERROR,
    }

    def _build_rules(self) -> list[TransitionRule]:
        s = MessageStatus
        return [
            _rule(s.INITIAL, [s.QUEUED]),
            _rule(s.QUEUED, [s.PROCESSING, s.ERROR]),
            _rule(s.PROCESSING, [s.PROCESSED, s.ERROR]),
            _rule(s.PROCESSED, [s.RETRIEVING, s.CLEARING]),
            _rule(s.RETRIEVING, [s.RETRIEVED, s.ERROR]),
            _rule(s.CLEARING, [s.CLEARED, s.ERROR]),
        ]


# =============================================================================
# Registry
# =============================================================================
class TransitionRuleRegistry:
    """Maps each EntityKind to its TransitionRuleTable.

    Tables are registered once at startup; lookups afterwards are read-only,
    so a registry can be shared by several validators and teams.

    Example:
        >>> registry = TransitionRuleRegistry([TaskTransitionRules()])
        >>> registry.rules_for(EntityKind.TASK)[0].label
        'PENDING -> TODO'
    """

    def __init__(self, tables: Iterable[TransitionRuleTable] = ()) -> None:
        self._tables: dict[EntityKind, TransitionRuleTable] = {}
        self._logger = logger.bind(component="transition_rule_registry")
        for table in tables:
            self.register(table)

    def register(self, table: TransitionRuleTable, replace: bool = False) -> None:
        """Register the table for ``table.entity_kind``.

        Raises:
            ConfigurationError: If a table is already registered for the
                kind and ``replace`` is False.
        """
        kind = table.entity_kind
        if kind in self._tables and not replace:
            raise ConfigurationError(
                message=f"Transition rules already registered for entity kind '{kind.value}'",
                error_code="RULES_ALREADY_REGISTERED",
                details={"entity": kind.value},
            )
        self._tables[kind] = table
        self._logger.debug(
            "transition_rules_registered",
            entity=kind.value,
            rule_count=len(table.rules),
        )

    def get(self, kind: EntityKind) -> Optional[TransitionRuleTable]:
        """The table for ``kind``, or None when nothing is registered."""
        return self._tables.get(kind)

    def table_for(self, kind: EntityKind) -> TransitionRuleTable:
        """The table for ``kind``.

        Raises:
            ConfigurationError: If no table is registered for the kind.
        """
        table = self._tables.get(kind)
        if table is None:
            raise ConfigurationError(
                message=f"No transition rules registered for entity kind '{kind.value}'",
                error_code="RULES_NOT_REGISTERED",
                details={"entity": kind.value},
            )
        return table

    def rules_for(self, kind: EntityKind) -> list[TransitionRule]:
        return list(self.table_for(kind).rules)

    @property
    def kinds(self) -> list[EntityKind]:
        return list(self._tables)

    def verify(self) -> None:
        """Check every registered table for orphan rules.

        Raises:
            ConfigurationError: Listing, per entity kind, the labels of rules
                that can never apply.
        """
        orphans = {
            kind.value: [rule.label for rule in table.orphan_rules()]
            for kind, table in self._tables.items()
        }
        orphans = {kind: labels for kind, labels in orphans.items() if labels}
        if orphans:
            raise ConfigurationError(
                message="Transition rule tables contain unreachable rules",
                error_code="ORPHAN_TRANSITION_RULES",
                details={"orphans": orphans},
            )
        self._logger.debug("transition_rules_verified", kinds=[k.value for k in self._tables])


def default_registry(verify: bool = False) -> TransitionRuleRegistry:
    """Build a registry holding the four built-in tables.

    Args:
        verify: Run ``verify()`` before returning.
    """
    registry = TransitionRuleRegistry(
        [
            AgentTransitionRules(),
            TaskTransitionRules(),
            WorkflowTransitionRules(),
            MessageTransitionRules(),
        ]
    )
    if verify:
        registry.verify()
    return registry
