import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

PHONE_VERIFIED = "phone.verified"
EMAIL_VERIFIED = "email.verified"

Handler = Callable[[Any], None]


class EventNotifier:
    """Synchronous in-process pub/sub.

    A handler that raises is logged and skipped; the remaining handlers still
    run and the emitter never sees the error.
    """

    def __init__(self):
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)

    def on(self, event: str, handler: Handler) -> None:
        self._handlers[event].append(handler)

    def off(self, event: str, handler: Handler | None = None) -> None:
        if handler is None:
            self._handlers.pop(event, None)
            return
        handlers = self._handlers.get(event)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def emit(self, event: str, payload: Any = None) -> int:
        delivered = 0
        for handler in list(self._handlers.get(event, ())):
            try:
                handler(payload)
                delivered += 1
            except Exception:
                logger.exception("Event handler %r failed for %s", handler, event)
        return delivered

    def listener_count(self, event: str) -> int:
        return len(self._handlers.get(event, ()))
