"""
Scope events and listener firing.

Deregistered listeners are tombstoned (their slot set to None) so that a
listener list can be changed while it is being fired; tombstones are
compacted on the next firing pass over the list.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, List, Optional

if TYPE_CHECKING:
    from .scope import Scope

logger = logging.getLogger("scopebind.scope.events")

EventListener = Callable[..., Any]


class ScopeEvent:
    """
    The event object shared by every listener of one emit or broadcast.
    """

    def __init__(self, name: str, target_scope: "Scope", stoppable: bool = True):
        self.name = name
        self.target_scope = target_scope
        self.current_scope: Optional["Scope"] = None
        self.default_prevented = False
        self.propagation_stopped = False
        self._stoppable = stoppable

    def stop_propagation(self) -> None:
        """Stops an emitted event after the current scope; broadcasts ignore it."""
        if self._stoppable:
            self.propagation_stopped = True

    def prevent_default(self) -> None:
        self.default_prevented = True

    def __repr__(self) -> str:
        return f"ScopeEvent(name={self.name!r}, target_scope={self.target_scope!r})"


def fire_listeners(
    listeners: List[Optional[EventListener]],
    event: ScopeEvent,
    args: tuple,
) -> None:
    """Invokes live listeners in order, compacting tombstones as it goes."""
    i = 0
    while i < len(listeners):
        listener = listeners[i]
        if listener is None:
            del listeners[i]
            continue
        try:
            listener(event, *args)
        except Exception as e:
            logger.error(
                "event_listener_failed",
                extra={"event": event.name, "error": str(e)},
                exc_info=True,
            )
        i += 1


def tombstone(listeners: List[Optional[EventListener]], listener: EventListener) -> None:
    """Marks the first live slot holding ``listener`` as removed."""
    for i, candidate in enumerate(listeners):
        if candidate is listener:
            listeners[i] = None
            return
