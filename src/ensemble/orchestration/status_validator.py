"""
ensemble.orchestration.status_validator - Status Transition Validation
========================================================================

The StatusValidator decides whether a proposed TransitionContext is legal.
It never raises for an invalid transition: it returns a ValidationResult
with stable error codes so callers can branch programmatically.

Validation Stages (short-circuit on the first failing stage):

    ┌───┬──────────────────────────────┬────────────────────────────┐
    │ # │ Check                        │ Error code                 │
    ├───┼──────────────────────────────┼────────────────────────────┤
    │ 1 │ entity_id, operation, phase, │ FIELD_MISSING (one per     │
    │   │ start_time present           │ missing field)             │
    │ 2 │ phase legality               │ STATE_TRANSITION_INVALID   │
    │ 3 │ current/target are members   │ INVALID_STATE              │
    │   │ of the kind's status enum    │                            │
    │ 4 │ kind has a rule table        │ VALIDATION_RULE_VIOLATION  │
    │ 5 │ some rule matches the edge   │ STATE_TRANSITION_INVALID   │
    │ 6 │ every matching guard passes  │ VALIDATION_RULE_VIOLATION  │
    └───┴──────────────────────────────┴────────────────────────────┘

    An unexpected exception inside any stage yields VALIDATION_FAILED.

Phase Legality:
    Evaluated per call, not as a lifecycle history check. PRE_EXECUTION is
    always legal. Any other phase is legal when some phase can lead to it
    (so POST_EXECUTION with no recorded EXECUTION is still legal). When the
    context carries ``previous_phase``, the explicit edge must exist.

Usage:
    >>> validator = StatusValidator(default_registry())
    >>> result = await validator.validate_transition(context)
    >>> if not result.is_valid:
    ...     print(result.error_codes)
"""

from __future__ import annotations

import inspect
from enum import Enum
from typing import Any, Optional

import structlog

from ensemble.core.enums import EntityKind, ExecutionPhase, ValidationErrorCode
from ensemble.core.models import TransitionContext, ValidationIssue, ValidationResult
from ensemble.orchestration.transition_rules import TransitionRuleRegistry

logger = structlog.get_logger()


# =============================================================================
# Phase Table
# =============================================================================
VALID_PHASE_TRANSITIONS: dict[ExecutionPhase, frozenset[ExecutionPhase]] = {
    ExecutionPhase.PRE_EXECUTION: frozenset({ExecutionPhase.EXECUTION, ExecutionPhase.ERROR}),
    ExecutionPhase.EXECUTION: frozenset({ExecutionPhase.POST_EXECUTION, ExecutionPhase.ERROR}),
    ExecutionPhase.POST_EXECUTION: frozenset({ExecutionPhase.ERROR}),
    ExecutionPhase.ERROR: frozenset(),
}

REQUIRED_CONTEXT_FIELDS: tuple[str, ...] = ("entity_id", "operation", "phase", "start_time")


def is_valid_phase_transition(
    phase: ExecutionPhase,
    previous_phase: Optional[ExecutionPhase] = None,
) -> bool:
    """Whether ``phase`` is legal, optionally coming from ``previous_phase``."""
    if previous_phase is not None:
        return phase in VALID_PHASE_TRANSITIONS.get(previous_phase, frozenset())
    if phase == ExecutionPhase.PRE_EXECUTION:
        return True
    return any(phase in targets for targets in VALID_PHASE_TRANSITIONS.values())


def _value(status: Any) -> str:
    return status.value if isinstance(status, Enum) else str(status)


# =============================================================================
# Status Validator
# =============================================================================
class StatusValidator:
    """Validates status transitions against a TransitionRuleRegistry.

    The validator holds no mutable state of its own and can be shared by
    any number of pipelines and teams.

    Args:
        registry: The rule tables to validate against.
    """

    def __init__(self, registry: TransitionRuleRegistry) -> None:
        self._registry = registry
        self._logger = logger.bind(component="status_validator")

    @property
    def registry(self) -> TransitionRuleRegistry:
        return self._registry

    async def validate_transition(self, context: TransitionContext) -> ValidationResult:
        """Run the six validation stages against ``context``.

        Args:
            context: The proposed transition.

        Returns:
            A ValidationResult. On success its metadata carries ``context``,
            ``domain_metadata`` and ``transition``.
        """
        try:
            return await self._validate(context)
        except Exception as exc:
            self._logger.error(
                "transition_validation_crashed",
                entity=context.entity.value,
                entity_id=context.entity_id,
                error=str(exc),
            )
            return ValidationResult.failure(
                ValidationIssue(
                    code=ValidationErrorCode.VALIDATION_FAILED,
                    message=f"Validation failed: {exc}",
                )
            )

    async def _validate(self, context: TransitionContext) -> ValidationResult:
        entity = context.entity
        current = _value(context.current_status)
        target = _value(context.target_status)

        # --- Stage 1: required fields ---
        missing = [
            ValidationIssue(
                code=ValidationErrorCode.FIELD_MISSING,
                message=f"Required field '{name}' is missing",
                field=name,
            )
            for name in REQUIRED_CONTEXT_FIELDS
            if getattr(context, name) in (None, "")
        ]
        if missing:
            return ValidationResult.failure(*missing)

        # --- Stage 2: phase legality ---
        if not is_valid_phase_transition(context.phase, context.previous_phase):
            if context.previous_phase is not None:
                message = (
                    f"Invalid phase transition: {context.previous_phase.value} -> "
                    f"{context.phase.value}"
                )
            else:
                message = f"Phase '{context.phase.value}' is not reachable"
            return ValidationResult.failure(
                ValidationIssue(code=ValidationErrorCode.STATE_TRANSITION_INVALID, message=message)
            )

        # --- Stage 3: status membership ---
        table = self._registry.get(entity)
        membership_errors = []
        if table is not None:
            for label, status in (("current", current), ("target", target)):
                if not table.is_valid_status(status):
                    membership_errors.append(
                        ValidationIssue(
                            code=ValidationErrorCode.INVALID_STATE,
                            message=f"Invalid {label} status '{status}' for {entity.value}",
                            field=f"{label}_status",
                        )
                    )
        if membership_errors:
            return ValidationResult.failure(*membership_errors)

        # --- Stage 4: rule table registered ---
        if table is None:
            return ValidationResult.failure(
                ValidationIssue(
                    code=ValidationErrorCode.VALIDATION_RULE_VIOLATION,
                    message=f"No transition rules registered for entity '{entity.value}'",
                )
            )

        # --- Stage 5: structural match ---
        matching = table.matching_rules(current, target)
        if not matching:
            return ValidationResult.failure(
                ValidationIssue(
                    code=ValidationErrorCode.STATE_TRANSITION_INVALID,
                    message=f"Transition from {current} to {target} not allowed for {entity.value}",
                ),
                available_transitions=[_value(s) for s in table.available_transitions(current)],
            )

        # --- Stage 6: guards ---
        for rule in matching:
            if rule.validation is None:
                continue
            outcome = rule.validation(context)
            if inspect.isawaitable(outcome):
                outcome = await outcome
            if not outcome:
                return ValidationResult.failure(
                    ValidationIssue(
                        code=ValidationErrorCode.VALIDATION_RULE_VIOLATION,
                        message=f"Custom validation failed for rule '{rule.label}'",
                        rule=rule.label,
                    )
                )

        return ValidationResult.success(
            context={"entity": entity.value, "transition": f"{current} -> {target}"},
            domain_metadata={
                "phase": context.phase.value,
                "operation": context.operation,
                "start_time": context.start_time,
                "duration": context.duration,
            },
            transition={"from": current, "to": target},
        )

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------
    def get_available_transitions(self, status: Any, entity: EntityKind) -> list[Enum]:
        """Statuses reachable in one step from ``status`` for ``entity``.

        Returns an empty list when the kind has no rule table.
        """
        table = self._registry.get(entity)
        if table is None:
            return []
        return table.available_transitions(status)

    def is_transition_allowed(self, current: Any, target: Any, entity: EntityKind) -> bool:
        """Structural check only; guards are not run."""
        table = self._registry.get(entity)
        return table is not None and table.is_allowed(current, target)

    def is_valid_status(self, status: Any, entity: EntityKind) -> bool:
        table = self._registry.get(entity)
        return table is not None and table.is_valid_status(status)
