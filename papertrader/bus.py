from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable, DefaultDict, List, Type, TypeVar

T = TypeVar("T")
Handler = Callable[[Any], None]


class EventBus:
    """In-process pub/sub used to observe ledger entries as the engine appends them.

    Handlers run synchronously inside the publishing call. A failing handler is
    logged and skipped; it never unwinds the engine operation that published.
    """

    def __init__(self) -> None:
        self._handlers: DefaultDict[Type[Any], List[Handler]] = defaultdict(list)
        self._log = logging.getLogger("bus")

    def subscribe(self, event_type: Type[T], handler: Callable[[T], None]) -> None:
        self._handlers[event_type].append(handler)  # type: ignore[arg-type]

    def unsubscribe(self, event_type: Type[T], handler: Callable[[T], None]) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)  # type: ignore[arg-type]

    def publish(self, event: Any) -> int:
        """Deliver ``event`` to every handler of its exact type; return how many succeeded."""
        et = type(event)
        delivered = 0
        for h in list(self._handlers.get(et, [])):
            try:
                h(event)
            except Exception:
                self._log.exception("handler_failed", extra={"event_type": et.__name__})
                continue
            delivered += 1
        return delivered
