from __future__ import annotations
import logging
import threading
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar("T")

Handler = Callable[[T], None]


class Listeners(Generic[T]):
    """Single-argument observer list.

    Handlers run on the producing thread; they must not block. A handler
    that raises is logged and does not stop delivery to the others.
    """

    def __init__(self, name: str, logger: Optional[logging.Logger] = None) -> None:
        self.name = name
        self.log = logger or logging.getLogger("events")
        self._lock = threading.Lock()
        self._handlers: list[Handler[T]] = []

    def add(self, handler: Handler[T]) -> None:
        with self._lock:
            self._handlers.append(handler)

    def remove(self, handler: Handler[T]) -> None:
        with self._lock:
            if handler in self._handlers:
                self._handlers.remove(handler)

    def __len__(self) -> int:
        with self._lock:
            return len(self._handlers)

    def emit(self, value: T) -> None:
        with self._lock:
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(value)
            except Exception:
                self.log.exception("%s handler %r failed", self.name, handler)
