"""
keysync_lib/events.py

Named-event bus for decoupled communication between components.

Rules:
- Handlers are grouped by a context (an owner handle) so a component can drop
  all of its handlers with one unregister(context) call.
- trigger() runs non-delayed handlers first, then delayed handlers.
- A context whose `destroyed` flag is set is unregistered the first time a
  trigger comes across it, and its handler is not called.
- A handler that raises is logged and the remaining handlers still run.
  The bus never reports through a DiagnosticsSink because a sink may itself
  be built on top of the bus.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, List, Optional

from .owner import is_destroyed, require_owner_id

logger = logging.getLogger(__name__)


# Well-known event names
EVENT_EXCEPTION_NOTIFICATION = "exception_notification"  # arg: diagnostics.FaultReport
EVENT_KEY_IDLE = "key_idle"  # arg: key (str) whose request queue has drained


EventHandler = Callable[..., Any]


@dataclass(frozen=True, slots=True)
class EventRegistration:
    event_id: int
    context: Any
    context_id: Hashable
    event_name: str
    handler: EventHandler
    delayed: bool = False


class EventBus:
    """
    Event listeners and event triggers.

    Typical usage:
        bus.register(owner, "key_idle", on_idle)
        bus.trigger("key_idle", "c1")
        bus.unregister(owner)
    """

    def __init__(self, *, trace: bool = False) -> None:
        self._events: Dict[str, Dict[int, EventRegistration]] = {}
        self._last_event_id = 0
        self.trace = trace
        # Stack of event names currently being triggered (debugging aid)
        self.stack: List[str] = []

    # --- Registration API ---

    def register(
        self,
        context: Any,
        event_name: str,
        handler: EventHandler,
        *,
        delayed: bool = False,
    ) -> EventRegistration:
        context_id = require_owner_id(context, phase="EventBus.register")
        if not isinstance(event_name, str):
            raise TypeError("EventBus.register: event_name must be a string")
        if not callable(handler):
            raise TypeError("EventBus.register: handler must be callable")

        self._last_event_id += 1
        reg = EventRegistration(
            event_id=self._last_event_id,
            context=context,
            context_id=context_id,
            event_name=event_name,
            handler=handler,
            delayed=delayed,
        )
        self._events.setdefault(event_name, {})[reg.event_id] = reg

        if self.trace:
            logger.debug("register(%s) context=%r handler=%r", event_name, context, handler)
        return reg

    def unregister(
        self,
        context: Any,
        event_name: Optional[str] = None,
        handler: Optional[EventHandler] = None,
    ) -> int:
        """
        Remove handlers bound to `context`, optionally narrowed to one event
        name and/or one handler. Returns the number removed.
        """
        context_id = require_owner_id(context, phase="EventBus.unregister")
        names = [event_name] if event_name is not None else list(self._events)

        removed = 0
        for name in names:
            bucket = self._events.get(name)
            if not bucket:
                continue
            for event_id, reg in list(bucket.items()):
                if reg.context_id != context_id:
                    continue
                if handler is not None and reg.handler != handler:
                    continue
                del bucket[event_id]
                removed += 1
            if not bucket:
                self._events.pop(name, None)

        if self.trace:
            logger.debug("unregister(%s) context=%r removed=%d", event_name, context, removed)
        return removed

    def has_listeners(self, event_name: str) -> bool:
        return bool(self._events.get(event_name))

    # --- Trigger API ---

    def trigger(self, event_name: str, *args: Any) -> List[Any]:
        """
        Fire an event and return the non-None results of every handler called.
        """
        if not isinstance(event_name, str):
            raise TypeError("EventBus.trigger: event_name must be a string")

        results: List[Any] = []
        bucket = self._events.get(event_name)
        if not bucket:
            return results

        self.stack.append(event_name)
        try:
            registrations = list(bucket.values())
            for processing_delayed in (False, True):
                for reg in registrations:
                    if reg.delayed != processing_delayed:
                        continue
                    if reg.event_id not in self._events.get(event_name, {}):
                        # removed by an earlier handler in this trigger
                        continue
                    if is_destroyed(reg.context):
                        self.unregister(reg.context)
                        continue

                    try:
                        result = reg.handler(*args)
                    except Exception:
                        logger.exception(
                            "EventBus handler for %r raised (context=%r); continuing",
                            event_name,
                            reg.context,
                        )
                        continue
                    if result is not None:
                        results.append(result)

            if self.trace:
                logger.debug("trigger(%s) args=%r results=%r stack=%r", event_name, args, results, self.stack)
        finally:
            self.stack.pop()
        return results
