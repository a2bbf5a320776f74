from __future__ import annotations
import logging
import re
import threading
from enum import StrEnum
from typing import TYPE_CHECKING, Callable, Optional, Protocol

from .errors import TransportFailureError
from .events import Handler, Listeners
from .serial_prims import SerialLineDevice, ensure_port_exists
from .tasks import SupervisedThread

if TYPE_CHECKING:
    from .config import RotorConfig

LOGGER = logging.getLogger("rotor")

DeviceOpener = Callable[[str, int, float, str], SerialLineDevice]


class GreenHeronCommand(StrEnum):
    MOVE = "AP"
    QUERY_HEADING = "BI"
    QUERY_HEADING_ALT = "AI"
    SET_OVER_TRAVEL = "WU"
    SET_CW_LIMIT = "WI"
    SET_CCW_LIMIT = "WH"


class GreenHeronConstants:
    TERMINATOR = b";"
    MOVE_SUFFIX = "\r"
    ENCODING = "ascii"
    HEADING_WIDTH = 5
    HEADING_DECIMALS = 1
    LIMIT_CHANNEL = 1
    LIMIT_WIDTH = 3
    DEFAULT_INDEX = 1
    DEFAULT_POLL_INTERVAL_S = 1.0
    DEFAULT_TIMEOUT_S = 1.0
    HEADING_PATTERN = re.compile(rb"^\s*([+-]?\d+(?:\.\d+)?)\s*;$")


class RotorBackend(Protocol):
    name: str

    @property
    def heading(self) -> Optional[float]:
        raise NotImplementedError

    def add_heading_listener(self, handler: Handler[float]) -> None:
        raise NotImplementedError

    def open(self) -> None:
        raise NotImplementedError

    def turn(self, heading: float) -> None:
        raise NotImplementedError

    def stop(self) -> None:
        raise NotImplementedError

    def set_over_travel(self, degrees: float) -> str:
        raise NotImplementedError

    def set_cw_limit(self, degrees: float) -> str:
        raise NotImplementedError

    def set_ccw_limit(self, degrees: float) -> str:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError

    def raise_if_failed(self) -> None:
        raise NotImplementedError


def format_heading(heading: float) -> str:
    return f"{heading:0{GreenHeronConstants.HEADING_WIDTH}.{GreenHeronConstants.HEADING_DECIMALS}f}"


def parse_heading_response(data: bytes) -> Optional[float]:
    """Parse a `123.4;` style reply; None if it does not look like degrees."""
    match = GreenHeronConstants.HEADING_PATTERN.match(data)
    if match is None:
        return None
    return float(match.group(1))


class GreenHeronRotor:
    """Green Heron RT-21 rotor controller on its own serial link.

    Moves are fire-and-forget. The current heading is maintained by a
    background poller and published to heading listeners only when the
    polled value changes.
    """

    def __init__(
        self,
        name: str,
        *,
        port: str,
        baud: int,
        index: int = GreenHeronConstants.DEFAULT_INDEX,
        poll_interval_s: float = GreenHeronConstants.DEFAULT_POLL_INTERVAL_S,
        timeout_s: float = GreenHeronConstants.DEFAULT_TIMEOUT_S,
        query: GreenHeronCommand = GreenHeronCommand.QUERY_HEADING,
        opener: DeviceOpener = SerialLineDevice.open,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        ensure_port_exists(port)
        if query not in (GreenHeronCommand.QUERY_HEADING, GreenHeronCommand.QUERY_HEADING_ALT):
            raise ValueError(f"not a heading query: {query!r}")
        self.name = name
        self.port = port
        self.baud = baud
        self.index = index
        self.poll_interval_s = poll_interval_s
        self.timeout_s = timeout_s
        self.query = query
        self.log = logger or LOGGER.getChild(name.lower())
        self.dev: Optional[SerialLineDevice] = None
        self._opener = opener
        self._heading: Optional[float] = None
        self._heading_lock = threading.Lock()
        self._poller: Optional[SupervisedThread] = None
        self.heading_listeners: Listeners[float] = Listeners(f"{name}.heading", logger=self.log)

    @classmethod
    def from_config(cls, name: str, config: "RotorConfig", **kwargs) -> "GreenHeronRotor":
        return cls(
            name,
            port=config.port,
            baud=config.baud,
            index=config.index,
            poll_interval_s=config.poll_interval_s,
            timeout_s=config.timeout_s,
            query=GreenHeronCommand(config.query),
            **kwargs,
        )

    @property
    def heading(self) -> Optional[float]:
        with self._heading_lock:
            return self._heading

    def add_heading_listener(self, handler: Handler[float]) -> None:
        self.heading_listeners.add(handler)

    def open(self) -> None:
        self.dev = self._opener(self.port, self.baud, self.timeout_s, f"serial.{self.name.lower()}")
        self.log.info("Opened %s rotor on %s", self.name, self.port)
        self.read_heading()
        self._poller = SupervisedThread(f"rotor-{self.name.lower()}-poll", self._poll_loop, logger=self.log)
        self._poller.start()

    def turn(self, heading: float) -> None:
        degrees = format_heading(heading)
        command = f"{GreenHeronCommand.MOVE}{self.index}{degrees}{GreenHeronConstants.MOVE_SUFFIX};"
        self.log.info("turn %s heading=%s", self.name, degrees)
        self._require_dev().write(command.encode(GreenHeronConstants.ENCODING))

    def stop(self) -> None:
        self.log.info("stop %s", self.name)
        self._require_dev().write(GreenHeronConstants.TERMINATOR)

    def set_over_travel(self, degrees: float) -> str:
        return self._write_setting(GreenHeronCommand.SET_OVER_TRAVEL, degrees)

    def set_cw_limit(self, degrees: float) -> str:
        return self._write_setting(GreenHeronCommand.SET_CW_LIMIT, degrees)

    def set_ccw_limit(self, degrees: float) -> str:
        return self._write_setting(GreenHeronCommand.SET_CCW_LIMIT, degrees)

    def close(self) -> None:
        if self._poller is not None:
            self._poller.stop()
            self._poller = None
        if self.dev is not None:
            self.dev.close()
            self.dev = None
        self.log.info("Closed %s rotor", self.name)

    def raise_if_failed(self) -> None:
        if self._poller is not None:
            self._poller.raise_if_failed()

    def read_heading(self) -> Optional[float]:
        """Query the controller once; publish the heading if it changed."""
        payload = f"{self.query}{self.index};".encode(GreenHeronConstants.ENCODING)
        try:
            resp = self._require_dev().transact(payload, terminator=GreenHeronConstants.TERMINATOR)
        except TimeoutError:
            self.log.debug("heading query timed out on %s", self.name)
            return None
        heading = parse_heading_response(resp)
        if heading is None:
            self.log.debug("ignoring malformed heading reply %r", resp)
            return None
        with self._heading_lock:
            prev = self._heading
            self._heading = heading
        if heading != prev:
            self.heading_listeners.emit(heading)
        return heading

    def _write_setting(self, command: GreenHeronCommand, degrees: float) -> str:
        value = f"{int(round(degrees)):0{GreenHeronConstants.LIMIT_WIDTH}d}"
        payload = f"{command}{GreenHeronConstants.LIMIT_CHANNEL}{value};"
        self.log.info("setting %s %s=%s", self.name, command.name.lower(), value)
        resp = self._require_dev().transact(
            payload.encode(GreenHeronConstants.ENCODING),
            terminator=GreenHeronConstants.TERMINATOR,
        )
        reply = resp.decode(GreenHeronConstants.ENCODING, errors="replace").rstrip(";")
        self.log.debug("setting %s reply=%r", command.name.lower(), reply)
        return reply

    def _poll_loop(self, stop: threading.Event) -> None:
        while not stop.wait(self.poll_interval_s):
            try:
                self.read_heading()
            except TransportFailureError:
                if stop.is_set():
                    return
                raise

    def _require_dev(self) -> SerialLineDevice:
        if self.dev is None:
            raise RuntimeError(f"{self.name} rotor is not open")
        return self.dev
