"""
ensemble.orchestration.event_bus - Two-Phase Event Bus
========================================================

This module implements the typed publish/subscribe bus that the status
event pipeline is built on. Handlers are registered per event type and
expose two methods: ``validate`` (may veto) and ``handle`` (side effects).

Emission Protocol:

    emit(event)
      │
      ├── no handlers for event.type? ──→ log warning, return
      │
      ├── Phase 1: validate() on EVERY handler, concurrently
      │     any invalid? ──→ raise EventValidationError (aggregated errors,
      │                      event id, event type). No handle() runs.
      │
      └── Phase 2: handle() on every handler, concurrently
            first failure fails the emit (the rest still ran or are running)

Ordering:
    Within one emit, every validation is awaited before any side effect.
    Across handlers of the same event, handle() order is not guaranteed.
    Across separate emit() calls there is no ordering unless the caller
    awaits each call in turn.

Implementations:
    - EventBus (ABC):       Abstract interface
    - InMemoryEventBus:     Dict-of-lists registry in process memory

Usage:
    >>> bus = InMemoryEventBus()
    >>> bus.on("status:transition", my_handler)
    >>> await bus.emit(event)
    >>> bus.off("status:transition", my_handler)
"""

from __future__ import annotations

import asyncio
import inspect
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

import structlog

from ensemble.core.events import BaseEvent
from ensemble.core.exceptions import EventValidationError
from ensemble.core.models import ValidationResult

logger = structlog.get_logger()

EventType = Union[str, Enum]


def _type_key(event_type: EventType) -> str:
    return event_type.value if isinstance(event_type, Enum) else str(event_type)


# =============================================================================
# Event Handler Contract
# =============================================================================
class EventHandler(ABC):
    """A participant in the two-phase emit protocol.

    Subclasses implement ``handle``. ``validate`` defaults to accepting
    every event; override it to veto events before any side effect runs.
    """

    async def validate(self, event: BaseEvent) -> ValidationResult:
        """Decide whether ``event`` may proceed. Default: always valid."""
        return ValidationResult.success()

    @abstractmethod
    async def handle(self, event: BaseEvent) -> None:
        """Run this handler's side effect for ``event``."""


class FunctionEventHandler(EventHandler):
    """Adapts plain callables to the EventHandler contract.

    Both callables may be sync or async.

    Example:
        >>> async def commit(event):
        ...     store[event.entity_id] = event.to_status
        >>> bus.on("status:transition", FunctionEventHandler(commit))
    """

    def __init__(
        self,
        handle: Callable[[BaseEvent], Union[Awaitable[None], None]],
        validate: Optional[Callable[[BaseEvent], Union[Awaitable[ValidationResult], ValidationResult]]] = None,
        name: Optional[str] = None,
    ) -> None:
        self._handle = handle
        self._validate = validate
        self.name = name or getattr(handle, "__name__", "handler")

    async def validate(self, event: BaseEvent) -> ValidationResult:
        if self._validate is None:
            return ValidationResult.success()
        return await _maybe_await(self._validate(event))

    async def handle(self, event: BaseEvent) -> None:
        await _maybe_await(self._handle(event))

    def __repr__(self) -> str:
        return f"FunctionEventHandler(name={self.name!r})"


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


# =============================================================================
# Abstract Base Class: EventBus
# =============================================================================
class EventBus(ABC):
    """Abstract interface for the two-phase event bus."""

    @abstractmethod
    def on(self, event_type: EventType, handler: EventHandler) -> None:
        """Register ``handler`` for ``event_type``. Re-registering is a no-op."""

    @abstractmethod
    def off(self, event_type: EventType, handler: EventHandler) -> None:
        """Remove ``handler`` from ``event_type``. Unknown handlers are ignored."""

    @abstractmethod
    async def emit(self, event: BaseEvent) -> None:
        """Validate then handle ``event`` on every registered handler.

        Raises:
            EventValidationError: If any handler reports the event invalid.
            Exception: Whatever the first failing handle() raised.
        """

    @abstractmethod
    def handler_count(self, event_type: Optional[EventType] = None) -> int:
        """Handlers registered for ``event_type`` (or in total when None)."""


# =============================================================================
# In-Memory Implementation
# =============================================================================
class InMemoryEventBus(EventBus):
    """Process-local EventBus.

    Handlers are kept in registration order per event type. A type whose
    last handler is removed is dropped from the registry.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}
        self._logger = logger.bind(component="event_bus")

    def on(self, event_type: EventType, handler: EventHandler) -> None:
        handlers = self._handlers.setdefault(_type_key(event_type), [])
        if handler not in handlers:
            handlers.append(handler)

    def off(self, event_type: EventType, handler: EventHandler) -> None:
        key = _type_key(event_type)
        handlers = self._handlers.get(key)
        if not handlers:
            return
        if handler in handlers:
            handlers.remove(handler)
        if not handlers:
            del self._handlers[key]

    def handler_count(self, event_type: Optional[EventType] = None) -> int:
        if event_type is None:
            return sum(len(handlers) for handlers in self._handlers.values())
        return len(self._handlers.get(_type_key(event_type), []))

    async def emit(self, event: BaseEvent) -> None:
        # Snapshot so handlers registered or removed mid-emit don't affect
        # this emission.
        handlers = list(self._handlers.get(event.type, []))
        if not handlers:
            self._logger.warning("event_unhandled", event_type=event.type, event_id=event.id)
            return

        # --- Phase 1: validate on every handler ---
        results = await asyncio.gather(*(handler.validate(event) for handler in handlers))
        errors = [issue.to_dict() for result in results for issue in result.errors]
        warnings = [issue.to_dict() for result in results for issue in result.warnings]
        if warnings:
            self._logger.warning(
                "event_validation_warnings",
                event_type=event.type,
                event_id=event.id,
                warnings=warnings,
            )
        if not all(result.is_valid for result in results):
            self._logger.warning(
                "event_rejected",
                event_type=event.type,
                event_id=event.id,
                error_count=len(errors),
            )
            raise EventValidationError(
                message=f"Event validation failed for {event.type}",
                event_type=event.type,
                event_id=event.id,
                errors=errors,
                details={"validation_warnings": warnings},
            )

        # --- Phase 2: run every handler's side effect ---
        await asyncio.gather(*(handler.handle(event) for handler in handlers))
        self._logger.debug(
            "event_emitted",
            event_type=event.type,
            event_id=event.id,
            handler_count=len(handlers),
        )
