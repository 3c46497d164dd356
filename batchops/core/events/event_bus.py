from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar, cast

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Subscription:
    event_type: type[object]
    handler: Callable[[object], None]


TEvent = TypeVar("TEvent")


class EventBus:
    """Simple, synchronous, in-process event bus.

    - Handlers are called synchronously in publish order, on the event loop thread.
    - A handler subscribed to a base class receives every subclass event, so a
      progress panel can subscribe to ``TaskEvent`` once instead of per kind.
    - A failing handler is logged and never stops delivery to the others.
    """

    def __init__(self) -> None:
        self._subs: defaultdict[type[object], list[Callable[[object], None]]] = defaultdict(list)

    def subscribe(
        self, event_type: type[TEvent], handler: Callable[[TEvent], None]
    ) -> Subscription:
        def _wrapped(event: object) -> None:
            handler(cast(TEvent, event))

        self._subs[event_type].append(_wrapped)
        return Subscription(event_type=event_type, handler=_wrapped)

    def unsubscribe(self, subscription: Subscription) -> None:
        handlers = self._subs.get(subscription.event_type)
        if not handlers:
            return
        try:
            handlers.remove(subscription.handler)
        except ValueError:
            return

    def publish(self, event: object) -> None:
        # Snapshot handlers first; a handler may (un)subscribe while we iterate.
        handlers: list[Callable[[object], None]] = []
        for cls in type(event).__mro__:
            handlers.extend(self._subs.get(cls, ()))
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Event handler failed",
                    extra={"event": type(event).__name__, "handler": repr(handler)},
                )

    def clear(self) -> None:
        """Remove all subscriptions."""
        self._subs.clear()
