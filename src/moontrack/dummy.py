from __future__ import annotations

import logging
import threading
from typing import Optional

from .events import Handler, Listeners


class DummyRotor:
    """Rotor used when no controller is attached.

    Implements the same interface as `GreenHeronRotor`; every `turn` snaps
    the reported heading to the commanded value and publishes it.
    """

    def __init__(self, name: str, heading: Optional[float] = 0.0, logger: Optional[logging.Logger] = None) -> None:
        self.name = name
        self.log = logger or logging.getLogger("rotor.dummy").getChild(name.lower())
        self._lock = threading.Lock()
        self._heading = heading
        self.commands: list[float] = []
        self.stops = 0
        self.settings: dict[str, float] = {}
        self.opened = False
        self.closed = False
        self.heading_listeners: Listeners[float] = Listeners(f"{name}.heading", logger=self.log)

    @property
    def heading(self) -> Optional[float]:
        with self._lock:
            return self._heading

    def add_heading_listener(self, handler: Handler[float]) -> None:
        self.heading_listeners.add(handler)

    def open(self) -> None:
        self.opened = True
        self.log.info("Opened dummy %s rotor", self.name)
        if self._heading is not None:
            self.heading_listeners.emit(self._heading)

    def turn(self, heading: float) -> None:
        self.log.info("turn %s heading=%.1f", self.name, heading)
        with self._lock:
            self.commands.append(heading)
            changed = heading != self._heading
            self._heading = heading
        if changed:
            self.heading_listeners.emit(heading)

    def stop(self) -> None:
        self.stops += 1

    def set_over_travel(self, degrees: float) -> str:
        self.settings["over_travel"] = degrees
        return ""

    def set_cw_limit(self, degrees: float) -> str:
        self.settings["cw_limit"] = degrees
        return ""

    def set_ccw_limit(self, degrees: float) -> str:
        self.settings["ccw_limit"] = degrees
        return ""

    def close(self) -> None:
        self.closed = True
        self.log.info("Closed dummy %s rotor", self.name)

    def raise_if_failed(self) -> None:
        return None
