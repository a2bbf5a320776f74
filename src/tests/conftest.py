from __future__ import annotations

import logging
import math
import threading
import time
from typing import Callable, Optional, Union

import numpy as np
import pytest

LOGGER = logging.getLogger("tests.conftest")

Reply = Union[bytes, BaseException, None, Callable[[], Union[bytes, BaseException, None]]]


class FakeSerialDevice:
    """Stand-in for SerialLineDevice with scripted request/response pairs."""

    def __init__(self, replies: Optional[dict[bytes, Reply]] = None, read_delay_s: float = 0.005) -> None:
        self.replies: dict[bytes, Reply] = dict(replies or {})
        self.read_delay_s = read_delay_s
        self.writes: list[bytes] = []
        self.transactions: list[bytes] = []
        self.closed = False
        self.lock = threading.Lock()

    def write(self, payload: bytes) -> None:
        with self.lock:
            self.writes.append(payload)

    def transact(self, payload: bytes, terminator: bytes) -> bytes:
        with self.lock:
            self.transactions.append(payload)
            reply = self.replies.get(payload)
        if callable(reply):
            reply = reply()
        if isinstance(reply, BaseException):
            raise reply
        if reply is None:
            raise TimeoutError(f"no reply scripted for {payload!r}")
        return reply

    def read_byte(self) -> Optional[int]:
        time.sleep(self.read_delay_s)
        return None

    def cancel_read(self) -> None:
        return None

    def close(self) -> None:
        self.closed = True


class FakeOpener:
    def __init__(self, device: FakeSerialDevice) -> None:
        self.device = device
        self.calls: list[tuple[str, int, float, str]] = []

    def __call__(self, port: str, baud: int, timeout_s: float, name: str) -> FakeSerialDevice:
        self.calls.append((port, baud, timeout_s, name))
        return self.device


def wait_until(predicate: Callable[[], bool], timeout_s: float = 2.0, interval_s: float = 0.005) -> bool:
    deadline = time.monotonic() + timeout_s
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval_s)
    return predicate()


def unit_directions(count: int) -> np.ndarray:
    # Fibonacci half-set plus antipodes so the cloud is symmetric about its centre.
    golden = math.pi * (3.0 - math.sqrt(5.0))
    rows = []
    for i in range(count):
        z = 1.0 - (i + 0.5) / count
        r = math.sqrt(1.0 - z * z)
        theta = golden * i
        rows.append((r * math.cos(theta), r * math.sin(theta), z))
    half = np.array(rows)
    return np.vstack([half, -half])


def ellipsoid_cloud(
    offset=(0.0, 0.0, 0.0),
    axes=(1.0, 1.0, 1.0),
    rotation=None,
    count: int = 60,
) -> np.ndarray:
    rot = np.eye(3) if rotation is None else np.asarray(rotation, dtype=float)
    directions = unit_directions(count)
    return np.asarray(offset, dtype=float) + (directions * np.asarray(axes, dtype=float)) @ rot.T


def z_rotation(degrees: float) -> np.ndarray:
    a = math.radians(degrees)
    return np.array(
        [
            [math.cos(a), -math.sin(a), 0.0],
            [math.sin(a), math.cos(a), 0.0],
            [0.0, 0.0, 1.0],
        ]
    )


@pytest.fixture
def port_path(tmp_path) -> str:
    path = tmp_path / "ttyFAKE0"
    path.write_bytes(b"")
    return str(path)


@pytest.fixture
def fake_device() -> FakeSerialDevice:
    return FakeSerialDevice()


@pytest.fixture
def fake_opener(fake_device) -> FakeOpener:
    return FakeOpener(fake_device)


@pytest.fixture
def cloud() -> Callable[..., np.ndarray]:
    return ellipsoid_cloud


@pytest.fixture
def rotation_about_z() -> Callable[[float], np.ndarray]:
    return z_rotation


@pytest.fixture
def eventually() -> Callable[..., bool]:
    return wait_until
