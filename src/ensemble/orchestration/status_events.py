"""
ensemble.orchestration.status_events - Status Event Pipeline
==============================================================

This module drives every status change in Ensemble through a 4-stage
protocol on top of the two-phase EventBus:

    emit_transition(context)
      │
      ├── a. status:pre-transition {context}
      │        built-in PreTransitionHandler:
      │          run the validator (its stage order decides the error)
      │          edge absent?  → StateTransitionInvalidError (+ allowed targets)
      │          other failure → ValidationError (+ issues)
      │          else track a performance metric
      │
      ├── b. status:transition {id, entity, entity_id, from, to, metadata}
      │        owners' commit handlers persist the change
      │        built-in TransitionMetricsHandler:
      │          metric = wall-clock ms since the event timestamp
      │
      ├── c. status:post-transition (same payload, new type)
      │        observers that must run after the commit
      │        built-in TransitionLogHandler:
      │          log "Status transition: from -> to"
      │
      └── d. any exception in a-c → status:error {error}, then re-raise
               built-in ErrorTelemetryHandler: error metric + error log

Failure Semantics:
    - Validation failures are rejected transitions. The caller decides
      whether to retry with another target or abort.
    - An unexpected exception in a commit handler fails that transition,
      but the bus stays usable for later emissions.
    - Callers must not assume state was applied past the failing stage.

Usage:
    >>> pipeline = StatusEventPipeline(StatusValidator(default_registry()))
    >>> pipeline.on(StatusEventType.TRANSITION, commit_handler)
    >>> event = await pipeline.emit_transition(context)
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from ensemble.core.config import MetricsConfig
from ensemble.core.enums import (
    EntityKind,
    ExecutionPhase,
    MetricType,
    StatusEventType,
    ValidationErrorCode,
)
from ensemble.core.events import (
    BaseEvent,
    MetricEvent,
    PreTransitionEvent,
    StatusChangeEvent,
    StatusErrorEvent,
)
from ensemble.core.exceptions import (
    EnsembleError,
    StateTransitionInvalidError,
    ValidationError,
)
from ensemble.core.models import TransitionContext
from ensemble.orchestration.event_bus import EventBus, EventHandler, EventType, InMemoryEventBus
from ensemble.orchestration.metrics import MetricsSink, StructlogMetricsSink
from ensemble.orchestration.status_validator import StatusValidator

logger = structlog.get_logger()


def _status_value(status: object) -> str:
    return getattr(status, "value", str(status))


# =============================================================================
# Built-in Handlers
# =============================================================================
class PreTransitionHandler(EventHandler):
    """Rejects illegal transitions before anything is committed.

    Raises from ``handle`` rather than returning an invalid result from
    ``validate`` so that callers receive StateTransitionInvalidError or
    ValidationError directly, with the available-transitions hint attached.
    """

    def __init__(
        self,
        validator: StatusValidator,
        metrics: MetricsSink,
        config: MetricsConfig,
    ) -> None:
        self._validator = validator
        self._metrics = metrics
        self._config = config

    def _edge_missing(self, context: TransitionContext, current: str, target: str) -> bool:
        table = self._validator.registry.get(context.entity)
        return (
            table is not None
            and table.is_valid_status(current)
            and table.is_valid_status(target)
            and not table.is_allowed(current, target)
        )

    async def handle(self, event: BaseEvent) -> None:
        if not isinstance(event, PreTransitionEvent):
            return
        context = event.context
        current = _status_value(context.current_status)
        target = _status_value(context.target_status)
        started = time.perf_counter()

        result = await self._validator.validate_transition(context)
        if (
            not result.is_valid
            and result.errors[0].code == ValidationErrorCode.STATE_TRANSITION_INVALID
            and self._edge_missing(context, current, target)
        ):
            available = [
                _status_value(s)
                for s in self._validator.get_available_transitions(current, context.entity)
            ]
            raise StateTransitionInvalidError(
                message=(
                    f"Invalid {context.entity.value} transition {current} -> {target}; "
                    f"allowed: {available}"
                ),
                entity=context.entity.value,
                entity_id=context.entity_id or "",
                from_status=current,
                to_status=target,
                available_transitions=available,
            )
        if not result.is_valid:
            raise ValidationError(
                message=(
                    f"Invalid {context.entity.value} transition {current} -> {target}: "
                    + "; ".join(issue.message for issue in result.errors)
                ),
                errors=result.error_dicts(),
                error_code=result.errors[0].code.value,
                details={
                    "entity": context.entity.value,
                    "entity_id": context.entity_id,
                    "from": current,
                    "to": target,
                },
            )

        if self._config.enabled:
            self._metrics.track_metric(
                MetricEvent(
                    type=MetricType.PERFORMANCE,
                    value=(time.perf_counter() - started) * 1000,
                    metadata={
                        "stage": "pre-transition",
                        "entity": context.entity.value,
                        "entity_id": context.entity_id,
                        "transition": f"{current} -> {target}",
                    },
                )
            )


class TransitionMetricsHandler(EventHandler):
    """Records how long a transition took to commit."""

    def __init__(self, metrics: MetricsSink, config: MetricsConfig) -> None:
        self._metrics = metrics
        self._config = config

    async def handle(self, event: BaseEvent) -> None:
        if not isinstance(event, StatusChangeEvent):
            return
        if self._config.enabled:
            elapsed = datetime.now(timezone.utc) - event.timestamp
            self._metrics.track_metric(
                MetricEvent(
                    type=MetricType.PERFORMANCE,
                    value=elapsed.total_seconds() * 1000,
                    metadata={
                        "stage": "transition",
                        "event_id": event.id,
                        "entity": event.entity.value,
                        "entity_id": event.entity_id,
                        "transition": f"{event.from_status} -> {event.to_status}",
                    },
                )
            )


class TransitionLogHandler(EventHandler):
    """Logs every committed transition through the metrics sink."""

    def __init__(self, metrics: MetricsSink, config: MetricsConfig) -> None:
        self._metrics = metrics
        self._config = config

    async def handle(self, event: BaseEvent) -> None:
        if not isinstance(event, StatusChangeEvent):
            return
        if self._config.log_transitions:
            self._metrics.log(
                f"Status transition: {event.from_status} -> {event.to_status}",
                {"entity": event.entity.value, "entity_id": event.entity_id},
            )


class ErrorTelemetryHandler(EventHandler):
    """Turns status:error events into an error metric and an error log line."""

    def __init__(self, metrics: MetricsSink, config: MetricsConfig) -> None:
        self._metrics = metrics
        self._config = config

    async def handle(self, event: BaseEvent) -> None:
        if not isinstance(event, StatusErrorEvent):
            return
        labels = {
            "error_type": event.error.get("error_type"),
            "error_code": event.error.get("error_code"),
        }
        if event.context is not None:
            labels["entity"] = event.context.entity.value
            labels["entity_id"] = event.context.entity_id
        if self._config.enabled:
            self._metrics.track_metric(MetricEvent(type=MetricType.ERROR, value=1, metadata=labels))
        self._metrics.log(event.error.get("message", "Status transition failed"), labels, level="error")


# =============================================================================
# Status Event Pipeline
# =============================================================================
class StatusEventPipeline:
    """The only way a status changes in Ensemble.

    Construct one per process (or per test) and inject it into every Team
    and agent that should share it.

    Args:
        validator: Validates each transition's context.
        bus: The event bus to emit on. Defaults to a fresh InMemoryEventBus.
        metrics: Sink for metrics and transition log lines.
        config: Metrics configuration.
    """

    def __init__(
        self,
        validator: StatusValidator,
        bus: Optional[EventBus] = None,
        metrics: Optional[MetricsSink] = None,
        config: Optional[MetricsConfig] = None,
    ) -> None:
        self._validator = validator
        self._bus = bus or InMemoryEventBus()
        self._metrics = metrics or StructlogMetricsSink()
        self._config = config or MetricsConfig()
        self._logger = logger.bind(component="status_event_pipeline")

        self._bus.on(
            StatusEventType.PRE_TRANSITION,
            PreTransitionHandler(self._validator, self._metrics, self._config),
        )
        self._bus.on(StatusEventType.TRANSITION, TransitionMetricsHandler(self._metrics, self._config))
        self._bus.on(
            StatusEventType.POST_TRANSITION,
            TransitionLogHandler(self._metrics, self._config),
        )
        self._bus.on(StatusEventType.ERROR, ErrorTelemetryHandler(self._metrics, self._config))

    @property
    def validator(self) -> StatusValidator:
        return self._validator

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def metrics(self) -> MetricsSink:
        return self._metrics

    def on(self, event_type: EventType, handler: EventHandler) -> None:
        """Register an extra handler on the underlying bus."""
        self._bus.on(event_type, handler)

    def off(self, event_type: EventType, handler: EventHandler) -> None:
        self._bus.off(event_type, handler)

    async def emit_transition(self, context: TransitionContext) -> StatusChangeEvent:
        """Drive ``context`` through pre-transition, transition and post-transition.

        Args:
            context: The proposed transition.

        Returns:
            The committed ``status:transition`` event.

        Raises:
            StateTransitionInvalidError: The edge is not in the rule table.
            ValidationError: Any other validation failure, including a
                handler veto (EventValidationError).
            Exception: Whatever a commit or observer handler raised.
        """
        try:
            await self._bus.emit(PreTransitionEvent(context=context))

            transition_event = StatusChangeEvent.from_context(context)
            await self._bus.emit(transition_event)

            await self._bus.emit(transition_event.as_post_transition())
        except Exception as exc:
            await self._emit_error(exc, context)
            raise

        self._logger.debug(
            "status_transition_committed",
            entity=context.entity.value,
            entity_id=context.entity_id,
            transition=context.transition_label,
            operation=context.operation,
        )
        return transition_event

    async def transition(
        self,
        entity: EntityKind,
        entity_id: str,
        current_status: Any,
        target_status: Any,
        operation: str,
        metadata: Optional[dict[str, Any]] = None,
        phase: Optional[ExecutionPhase] = None,
        duration: Optional[float] = None,
    ) -> StatusChangeEvent:
        """Build a TransitionContext stamped with the current time and emit it.

        When ``phase`` is omitted, the entity kind's rule table supplies the
        default phase for ``target_status``.
        """
        if phase is None:
            table = self._validator.registry.get(entity)
            phase = table.phase_for(target_status) if table is not None else ExecutionPhase.EXECUTION
        context = TransitionContext(
            entity=entity,
            entity_id=entity_id,
            current_status=_status_value(current_status),
            target_status=_status_value(target_status),
            operation=operation,
            phase=phase,
            start_time=datetime.now(timezone.utc),
            duration=duration,
            metadata=dict(metadata or {}),
        )
        return await self.emit_transition(context)

    async def _emit_error(self, exc: Exception, context: Optional[TransitionContext]) -> None:
        if isinstance(exc, EnsembleError):
            error = exc.to_dict()
        else:
            error = {
                "error_type": type(exc).__name__,
                "message": str(exc),
                "error_code": "UNEXPECTED_ERROR",
                "details": {},
            }
        try:
            await self._bus.emit(StatusErrorEvent(error=error, context=context))
        except Exception as telemetry_exc:
            # The original failure is what the caller needs to see.
            self._logger.error(
                "status_error_emission_failed",
                error=str(telemetry_exc),
                original_error=error["message"],
            )
