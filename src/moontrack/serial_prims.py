from __future__ import annotations
import contextlib
import logging
import os
import threading
import time
from typing import Iterator, Optional

import serial

from .errors import DeviceNotFoundError, TransportFailureError


class SerialConstants:
    DEFAULT_TIMEOUT_S = 1.0
    URL_MARKER = "://"


def ensure_port_exists(port: str) -> None:
    """Raise DeviceNotFoundError unless `port` names an existing device node.

    pyserial URL handlers (``loop://``, ``socket://host:port``) are not
    filesystem paths and are accepted as-is.
    """
    if not port:
        raise DeviceNotFoundError("serial port is empty")
    if SerialConstants.URL_MARKER in port:
        return
    if not os.path.exists(port):
        raise DeviceNotFoundError(f"serial device not found: {port}")


class SerialLineDevice:
    def __init__(self, port: str, baud: int, timeout_s: float, name: str):
        self.log = logging.getLogger(name)
        self.lock = threading.Lock()
        self.port = port
        ensure_port_exists(port)
        try:
            self.log.info("Opening serial port %s @ %d baud (timeout=%.3fs)", port, baud, timeout_s)
            if SerialConstants.URL_MARKER in port:
                self.ser = serial.serial_for_url(port, baudrate=baud, timeout=timeout_s)
            else:
                self.ser = serial.Serial(port=port, baudrate=baud, timeout=timeout_s)
            self.log.info("Serial port %s opened", port)
        except serial.SerialException as exc:
            self.log.exception("Failed to open serial port %s", port)
            raise TransportFailureError(f"cannot open {port}: {exc}") from exc

    @classmethod
    def open(
        cls,
        port: str,
        baud: int,
        timeout_s: float = SerialConstants.DEFAULT_TIMEOUT_S,
        name: str = "serial",
    ) -> "SerialLineDevice":
        return cls(port, baud, timeout_s, name)

    @contextlib.contextmanager
    def _io(self, op: str) -> Iterator[None]:
        try:
            yield
        except (serial.SerialException, OSError) as exc:
            raise TransportFailureError(f"{op} failed on {self.port}: {exc}") from exc

    def close(self) -> None:
        self.cancel_read()
        with self.lock:
            try:
                self.ser.close()
            except (serial.SerialException, OSError):
                self.log.debug("close failed on %s", self.port, exc_info=True)

    def cancel_read(self) -> None:
        """Unblock a reader waiting inside `read_byte`/`read_until`."""
        cancel = getattr(self.ser, "cancel_read", None)
        if cancel is None:
            return
        try:
            cancel()
        except (serial.SerialException, OSError):
            self.log.debug("cancel_read failed on %s", self.port, exc_info=True)

    def write(self, payload: bytes) -> None:
        with self.lock, self._io("write"):
            self.log.debug("TX %r", payload)
            self.ser.write(payload)
            self.ser.flush()

    def read_byte(self) -> Optional[int]:
        """Read one byte; None when the port timeout elapses with no data."""
        with self._io("read"):
            b = self.ser.read(1)
        if not b:
            return None
        return b[0]

    def read_until(self, terminator: bytes) -> bytes:
        """Read until terminator (inclusive)."""
        with self.lock:
            return self._read_until_locked(terminator)

    def transact(self, payload: bytes, terminator: bytes) -> bytes:
        """Write payload, then read until terminator (inclusive)."""
        with self.lock:
            with self._io("transact"):
                self.log.debug("TX %r", payload)
                self.ser.reset_input_buffer()
                self.ser.write(payload)
                self.ser.flush()
            return self._read_until_locked(terminator)

    def _read_until_locked(self, terminator: bytes) -> bytes:
        buf = bytearray()
        deadline = time.monotonic() + (self.ser.timeout or SerialConstants.DEFAULT_TIMEOUT_S)
        while True:
            with self._io("read"):
                b = self.ser.read(1)
            if b:
                buf += b
                if buf.endswith(terminator):
                    self.log.debug("RX %r", bytes(buf))
                    return bytes(buf)
            elif time.monotonic() >= deadline:
                self.log.debug("RX TIMEOUT after %.3fs, got=%r", (self.ser.timeout or 0.0), bytes(buf))
                raise TimeoutError(f"serial timeout, got={bytes(buf)!r}")
