from __future__ import annotations

import datetime as dt
import logging
import threading
from typing import Callable, Optional

from .angles import clamp, wraparound_distance
from .ephemeris import EphemerisProvider, HorizontalPosition, Observer, utc_now
from .rotor import RotorBackend
from .tasks import SupervisedThread

LOGGER = logging.getLogger("tracker")


class TrackerConstants:
    DEFAULT_PERIOD_S = 1.0
    DEFAULT_DELTA_DEG = 0.1
    MIN_ELEVATION = 0.0
    MAX_ELEVATION = 90.0


class Tracker:
    """Points both rotors at the target once per period.

    A new command is sent only when azimuth or elevation moved at least its
    delta since the last command; elevation is never commanded below
    `min_elevation`.
    """

    def __init__(
        self,
        az_rotor: RotorBackend,
        el_rotor: RotorBackend,
        ephemeris: EphemerisProvider,
        observer: Observer,
        *,
        az_delta: float = TrackerConstants.DEFAULT_DELTA_DEG,
        el_delta: float = TrackerConstants.DEFAULT_DELTA_DEG,
        period_s: float = TrackerConstants.DEFAULT_PERIOD_S,
        min_elevation: float = TrackerConstants.MIN_ELEVATION,
        clock: Callable[[], dt.datetime] = utc_now,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.az_rotor = az_rotor
        self.el_rotor = el_rotor
        self.ephemeris = ephemeris
        self.observer = observer
        self.az_delta = az_delta
        self.el_delta = el_delta
        self.period_s = period_s
        self.min_elevation = min_elevation
        self.clock = clock
        self.log = logger or LOGGER
        self._last: Optional[HorizontalPosition] = None
        self._task: Optional[SupervisedThread] = None

    @property
    def last_commanded(self) -> Optional[HorizontalPosition]:
        return self._last

    def update(self, position: HorizontalPosition) -> bool:
        """Command the rotors for `position` unless it is within the deltas."""
        last = self._last
        if (
            last is not None
            and wraparound_distance(position.azimuth, last.azimuth) < self.az_delta
            and abs(position.altitude - last.altitude) < self.el_delta
        ):
            return False

        self.log.info("AZ: %.1f° EL: %.1f°", position.azimuth, position.altitude)
        self.az_rotor.turn(position.azimuth)
        self.el_rotor.turn(clamp(position.altitude, self.min_elevation, TrackerConstants.MAX_ELEVATION))
        self._last = position
        return True

    def step(self) -> bool:
        position = self.ephemeris.horizontal_position(self.observer, self.clock())
        return self.update(position)

    def start(self) -> None:
        self.az_rotor.open()
        self.el_rotor.open()
        self._task = SupervisedThread("tracker", self._loop, logger=self.log)
        self._task.start()

    def stop(self) -> None:
        if self._task is not None:
            self._task.stop_event.set()

    def wait(self, timeout_s: Optional[float] = None) -> None:
        """Block until the loop ends, then release the rotors.

        Re-raises whatever ended the loop (for example a dead rotor poller).
        """
        task = self._task
        if task is None:
            raise RuntimeError("tracker not started")
        task.join(timeout_s)
        if task.alive:
            raise TimeoutError("tracker still running")
        for rotor in (self.az_rotor, self.el_rotor):
            try:
                rotor.close()
            except Exception:
                self.log.warning("close %s failed", rotor.name, exc_info=True)
        if task.failure is not None:
            raise task.failure

    def _loop(self, stop: threading.Event) -> None:
        while not stop.is_set():
            self.az_rotor.raise_if_failed()
            self.el_rotor.raise_if_failed()
            self.step()
            if stop.wait(self.period_s):
                return
