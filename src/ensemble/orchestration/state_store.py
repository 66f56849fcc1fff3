"""
ensemble.orchestration.state_store - Observable Team State
============================================================

This module implements the State Store: the observable container a Team
keeps its TeamState in. The task scheduler and external observers never
poll it; they subscribe to a selected slice and receive
``(previous, current)`` pairs whenever that slice changes.

Architecture:

    ┌──────────────┐   set_state(**updates)   ┌──────────────────┐
    │  Team         │ ──────────────────────→ │                   │
    │  (commit      │                          │   State Store    │
    │   handlers)   │ ←────────────────────── │                   │
    └──────────────┘        get_state()        └────────┬─────────┘
                                                         │ selector(prev) != selector(cur)
                                                         ↓
                                              callback(previous, current)
                                              ├── TaskScheduler (tasks)
                                              ├── Team outcome waiter (status)
                                              └── external observers

Contract:
    - subscribe(selector, callback) → unsubscribe
    - get_state() → current snapshot
    - set_state(**updates) → new snapshot, then notify changed selections

Implementations:
    - StateStore (ABC):        Abstract interface
    - InMemoryStateStore:      Holds one TeamState in process memory
"""

from __future__ import annotations

import inspect
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Union

from ensemble.core.state import TeamState

logger = logging.getLogger(__name__)

Selector = Callable[[TeamState], Any]
StateListener = Callable[[Any, Any], Union[Awaitable[None], None]]
Unsubscribe = Callable[[], None]


# =============================================================================
# Abstract Base Class: StateStore
# =============================================================================
class StateStore(ABC):
    """Abstract observable container for a TeamState.

    Example:
        >>> unsubscribe = store.subscribe(lambda s: s.status, on_status)
        >>> await store.set_state(status=WorkflowStatus.RUNNING)
        >>> unsubscribe()
    """

    @abstractmethod
    def get_state(self) -> TeamState:
        """Return the current snapshot."""

    @abstractmethod
    async def set_state(self, **updates: Any) -> TeamState:
        """Replace fields of the snapshot and notify affected subscribers.

        Args:
            **updates: TeamState field values to replace.

        Returns:
            The new snapshot.
        """

    @abstractmethod
    def subscribe(self, selector: Selector, callback: StateListener) -> Unsubscribe:
        """Call ``callback(previous, current)`` whenever ``selector``'s value changes.

        Returns:
            A function that removes the subscription. Calling it twice is safe.
        """


# =============================================================================
# In-Memory Implementation
# =============================================================================
class InMemoryStateStore(StateStore):
    """StateStore holding one TeamState in memory.

    Subscribers are notified in subscription order, after the new snapshot
    is in place, so a callback that calls get_state() sees the change.
    Async callbacks are awaited one after another.
    """

    def __init__(self, initial: TeamState) -> None:
        self._state = initial
        self._subscriptions: dict[int, tuple[Selector, StateListener]] = {}
        self._next_id = 0

    def get_state(self) -> TeamState:
        return self._state

    async def set_state(self, **updates: Any) -> TeamState:
        previous = self._state
        current = previous.model_copy(update=updates)
        self._state = current
        logger.debug("State updated: %s", ", ".join(sorted(updates)))

        for selector, callback in list(self._subscriptions.values()):
            before = selector(previous)
            after = selector(current)
            if before == after:
                continue
            outcome = callback(before, after)
            if inspect.isawaitable(outcome):
                await outcome
        return current

    def subscribe(self, selector: Selector, callback: StateListener) -> Unsubscribe:
        subscription_id = self._next_id
        self._next_id += 1
        self._subscriptions[subscription_id] = (selector, callback)
        logger.debug("Subscription %d added", subscription_id)

        def unsubscribe() -> None:
            if self._subscriptions.pop(subscription_id, None) is not None:
                logger.debug("Subscription %d removed", subscription_id)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)
