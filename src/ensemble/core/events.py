"""
ensemble.core.events - Status Event Types
===========================================

This module defines the event envelopes that flow through the Ensemble
event bus, plus the metric record the pipeline hands to its metrics sink.

Event Architecture:
    All events share a common envelope (BaseEvent). The ``type`` field
    selects which handlers receive the event:

    ┌─────────────────────────────────────────────────────────────┐
    │  BaseEvent (envelope)                                        │
    │  ├── id:         Unique identifier for tracking             │
    │  ├── type:       "status:transition", "status:error", ...   │
    │  ├── timestamp:  When it was created (UTC)                   │
    │  └── metadata:   Free-form key/value pairs                   │
    └─────────────────────────────────────────────────────────────┘

Status Events (emitted in this order by StatusEventPipeline.emit_transition):
    - PreTransitionEvent:  carries the TransitionContext; handlers may veto
    - StatusChangeEvent:   from/to/entity/entity_id; handlers commit it
    - StatusChangeEvent:   same payload re-typed as status:post-transition
    - StatusErrorEvent:    replaces the rest of the sequence on failure

Usage:
    >>> event = StatusChangeEvent.from_context(context)
    >>> await bus.emit(event)
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from ensemble.core.enums import EntityKind, MetricType, StatusEventType
from ensemble.core.models import TransitionContext


def _generate_event_id() -> str:
    """Generate a unique event identifier using UUID4."""
    return str(uuid4())


def _now() -> datetime:
    """Get the current UTC timestamp."""
    return datetime.now(timezone.utc)


def _epoch_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


# =============================================================================
# Base Event (The Envelope)
# =============================================================================
class BaseEvent(BaseModel):
    """Common envelope for every event on the bus.

    Events are frozen: handlers receive the same instance concurrently and
    must not be able to change what the other handlers see.

    Attributes:
        id: Unique identifier. Used in logs and in EventValidationError.
        type: Routing key. Handlers are registered per type.
        timestamp: Creation time (UTC). Performance metrics are measured
            from this instant.
        metadata: Free-form key/value pairs.
    """

    model_config = {"frozen": True}

    id: str = Field(default_factory=_generate_event_id)
    type: str
    timestamp: datetime = Field(default_factory=_now)
    metadata: dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# Status Events
# =============================================================================
class PreTransitionEvent(BaseEvent):
    """Emitted before a transition is committed. Handlers validate it."""

    type: str = StatusEventType.PRE_TRANSITION.value
    context: TransitionContext


class StatusChangeEvent(BaseEvent):
    """A committed (or committing) status change.

    Emitted twice per transition: first as ``status:transition`` (commit
    handlers run), then as ``status:post-transition`` via ``as_post_transition``.

    Attributes:
        entity: Kind of entity that changed.
        entity_id: Id of the entity that changed.
        from_status: Status before the change.
        to_status: Status after the change.
        operation: Operation that caused the change.
    """

    type: str = StatusEventType.TRANSITION.value
    entity: EntityKind
    entity_id: str
    from_status: str
    to_status: str
    operation: Optional[str] = None

    @classmethod
    def from_context(cls, context: TransitionContext) -> StatusChangeEvent:
        """Build the ``status:transition`` event for a validated context.

        The event id follows ``<entity>-<entity_id>-<epoch ms>`` so log
        readers can correlate it with the entity without a lookup.
        """
        timestamp = _now()
        return cls(
            id=f"{context.entity.value}-{context.entity_id}-{_epoch_ms(timestamp)}",
            timestamp=timestamp,
            entity=context.entity,
            entity_id=context.entity_id or "",
            from_status=getattr(context.current_status, "value", context.current_status),
            to_status=getattr(context.target_status, "value", context.target_status),
            operation=context.operation,
            metadata=dict(context.metadata),
        )

    def as_post_transition(self) -> StatusChangeEvent:
        """Copy of this event re-typed as ``status:post-transition``."""
        return self.model_copy(update={"type": StatusEventType.POST_TRANSITION.value})


class StatusErrorEvent(BaseEvent):
    """Emitted when any stage of a transition fails.

    Attributes:
        error: The failure serialized with EnsembleError.to_dict() (or an
            equivalent dict for non-Ensemble exceptions).
        context: The transition that failed, when there was one.
    """

    type: str = StatusEventType.ERROR.value
    error: dict[str, Any]
    context: Optional[TransitionContext] = None


# =============================================================================
# Metric Event
# =============================================================================
class MetricEvent(BaseModel):
    """A single measurement handed to MetricsSink.track_metric().

    Attributes:
        type: Category of the metric.
        value: The measurement. For PERFORMANCE metrics this is milliseconds.
        timestamp: When the measurement was taken.
        metadata: Labels (entity, entity_id, transition, event id).
    """

    model_config = {"frozen": True}

    type: MetricType
    value: float
    timestamp: datetime = Field(default_factory=_now)
    metadata: dict[str, Any] = Field(default_factory=dict)
