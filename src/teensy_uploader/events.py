"""
Minimal observer support.

A Signal holds an ordered list of subscribers and calls them synchronously
in registration order. A subscriber that raises is logged and skipped; the
error never reaches the code that emitted the signal.
"""

import logging
import threading
from typing import Any, Callable, List

logger = logging.getLogger(__name__)


class Signal:
    """Ordered subscriber list for one kind of notification."""

    def __init__(self, name: str):
        self.name = name
        self._lock = threading.Lock()
        self._handlers: List[Callable[..., Any]] = []

    def subscribe(self, handler: Callable[..., Any]) -> Callable[..., Any]:
        """
        Register a handler. Returns the handler so it can be used as a
        decorator.
        """
        with self._lock:
            self._handlers.append(handler)
        return handler

    def unsubscribe(self, handler: Callable[..., Any]) -> bool:
        with self._lock:
            try:
                self._handlers.remove(handler)
            except ValueError:
                return False
        return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._handlers)

    def emit(self, *args: Any) -> None:
        """Invoke every subscriber with ``args``. Never raises."""
        with self._lock:
            handlers = list(self._handlers)

        # Handlers run outside the lock so they may (un)subscribe freely.
        for handler in handlers:
            try:
                handler(*args)
            except Exception:
                logger.exception(
                    "Subscriber %r for '%s' raised", handler, self.name
                )
