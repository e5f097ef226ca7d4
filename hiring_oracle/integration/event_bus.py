from __future__ import annotations

import logging
import threading
from collections import defaultdict
from typing import Callable, DefaultDict, Protocol, Type, TypeVar

from hiring_oracle.integration.events import DomainEvent


logger = logging.getLogger(__name__)

E = TypeVar("E", bound=DomainEvent)
Handler = Callable[[DomainEvent], None]


class EventBus(Protocol):
    """Publish/subscribe interface for domain events."""

    def publish(self, event: DomainEvent) -> None:
        ...

    def subscribe(self, event_type: Type[E], handler: Callable[[E], None]) -> Callable[[], None]:
        ...


class InMemoryEventBus(EventBus):
    """Synchronous in-process pub/sub bus.

    Handlers subscribed to a base event type also receive its subclasses. A
    failing handler is logged and counted; the remaining handlers still run.
    """

    def __init__(self) -> None:
        self._handlers: DefaultDict[Type[DomainEvent], list[Handler]] = defaultdict(list)
        self._lock = threading.Lock()
        self.failures = 0

    def publish(self, event: DomainEvent) -> None:
        with self._lock:
            targets = [
                h
                for event_type in type(event).__mro__
                if event_type in self._handlers
                for h in list(self._handlers[event_type])
            ]
        for handler in targets:
            try:
                handler(event)
            except Exception:
                self.failures += 1
                logger.exception("Event handler failed: %s for %s", handler, type(event).__name__)

    def subscribe(self, event_type: Type[E], handler: Callable[[E], None]) -> Callable[[], None]:
        with self._lock:
            self._handlers[event_type].append(handler)  # type: ignore[arg-type]

        def unsubscribe() -> None:
            with self._lock:
                handlers = self._handlers.get(event_type, [])
                if handler in handlers:
                    handlers.remove(handler)  # type: ignore[arg-type]

        return unsubscribe
