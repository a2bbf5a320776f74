from __future__ import annotations

import dataclasses
import logging
import math
import threading
from typing import TYPE_CHECKING, Iterable, Optional, Sequence

from .angles import raw16_to_degrees
from .calibration import Calibration, RawSample
from .errors import TransportFailureError
from .events import Handler, Listeners
from .serial_prims import SerialLineDevice, ensure_port_exists
from .tasks import SupervisedThread
from .wit_protocol import FrameAssembler, WitFrame, WitFrameType

if TYPE_CHECKING:
    from .config import ImuConfig
    from .rotor import DeviceOpener

LOGGER = logging.getLogger("imu")


class ImuConstants:
    DEFAULT_TIMEOUT_S = 1.0
    DEGREES_PER_REV = 360.0


@dataclasses.dataclass(frozen=True)
class Attitude:
    roll: float = 0.0
    pitch: float = 0.0
    yaw: float = 0.0

    @classmethod
    def from_frame(cls, frame: WitFrame) -> "Attitude":
        roll, pitch, yaw = (raw16_to_degrees(v) for v in frame.values)
        return cls(roll=roll, pitch=pitch, yaw=yaw)


class RawCapture:
    """Calibration sink: keeps raw magnetometer vectors while a window is open."""

    def __init__(self) -> None:
        self.samples: list[RawSample] = []

    def accept(self, values: Sequence[int], attitude: Attitude) -> None:
        x, y, z = values
        self.samples.append(RawSample(x, y, z, attitude.roll, attitude.pitch, attitude.yaw))


def tilt_compensated_azimuth(x: float, y: float, z: float, pitch_deg: float, roll_deg: float) -> float:
    """Azimuth in degrees (-180, 180] of a corrected field vector.

    The sensor is mounted plate-down with +Y pointing along the boom. Roll is
    removed about the forward axis first, then pitch about the lateral axis.
    """
    pitch = math.radians(pitch_deg)
    roll = math.radians(roll_deg)
    y_prime = y * math.cos(roll) - z * math.sin(roll)
    z_prime = y * math.sin(roll) + z * math.cos(roll)
    x_prime = x * math.cos(pitch) + z_prime * math.sin(pitch)
    return math.degrees(math.atan2(-x_prime, y_prime))


class WitMotionImu:
    """WitMotion inertial/magnetic sensor on a serial link.

    Angle frames update the attitude and publish roll as elevation.
    Magnetic frames either go to the open capture window or, with the
    current calibration and attitude, become a true-heading azimuth event.
    Attitude, calibration and the capture window share one lock.
    """

    def __init__(
        self,
        *,
        port: str,
        baud: int,
        magnetic_declination: float,
        timeout_s: float = ImuConstants.DEFAULT_TIMEOUT_S,
        calibration: Optional[Calibration] = None,
        opener: Optional["DeviceOpener"] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        ensure_port_exists(port)
        self.port = port
        self.baud = baud
        self.declination = magnetic_declination
        self.timeout_s = timeout_s
        self.log = logger or LOGGER
        self.dev: Optional[SerialLineDevice] = None
        self._opener = opener or SerialLineDevice.open
        self._lock = threading.Lock()
        self._attitude = Attitude()
        self._azimuth: Optional[float] = None
        self._calibration = calibration or Calibration.identity()
        self._capture: Optional[RawCapture] = None
        self._assembler = FrameAssembler()
        self._reader: Optional[SupervisedThread] = None
        self.azimuth_listeners: Listeners[float] = Listeners("imu.azimuth", logger=self.log)
        self.elevation_listeners: Listeners[float] = Listeners("imu.elevation", logger=self.log)

    @classmethod
    def from_config(cls, config: "ImuConfig", calibration: Optional[Calibration] = None, **kwargs) -> "WitMotionImu":
        return cls(
            port=config.port,
            baud=config.baud,
            magnetic_declination=config.magnetic_declination,
            timeout_s=config.timeout_s,
            calibration=calibration,
            **kwargs,
        )

    @property
    def attitude(self) -> Attitude:
        with self._lock:
            return self._attitude

    @property
    def azimuth(self) -> Optional[float]:
        with self._lock:
            return self._azimuth

    @property
    def calibration(self) -> Calibration:
        with self._lock:
            return self._calibration

    @calibration.setter
    def calibration(self, calibration: Calibration) -> None:
        with self._lock:
            self._calibration = calibration
        self.log.info("Installed new magnetometer calibration")

    @property
    def capturing(self) -> bool:
        with self._lock:
            return self._capture is not None

    def add_azimuth_listener(self, handler: Handler[float]) -> None:
        self.azimuth_listeners.add(handler)

    def add_elevation_listener(self, handler: Handler[float]) -> None:
        self.elevation_listeners.add(handler)

    def start(self) -> None:
        self.dev = self._opener(self.port, self.baud, self.timeout_s, "serial.imu")
        self.log.info("Opened IMU on %s", self.port)
        self._reader = SupervisedThread("imu-reader", self._read_loop, logger=self.log)
        self._reader.start()

    def stop(self) -> None:
        if self._reader is not None:
            self._reader.stop_event.set()
            if self.dev is not None:
                self.dev.cancel_read()
            self._reader.stop()
            self._reader = None
        if self.dev is not None:
            self.dev.close()
            self.dev = None
        self.log.info("Closed IMU")

    def raise_if_failed(self) -> None:
        if self._reader is not None:
            self._reader.raise_if_failed()

    def start_raw_capture(self) -> bool:
        with self._lock:
            if self._capture is not None:
                return False
            self._capture = RawCapture()
        self.log.info("Starting capture...")
        return True

    def end_raw_capture(self) -> Optional[list[RawSample]]:
        with self._lock:
            capture = self._capture
            self._capture = None
        if capture is None:
            return None
        self.log.info("Ended capture (%d samples)", len(capture.samples))
        return capture.samples

    def feed(self, data: Iterable[int]) -> None:
        for frame in self._assembler.frames(data):
            self.handle_frame(frame)

    def handle_frame(self, frame: WitFrame) -> None:
        kind = frame.kind
        if kind == WitFrameType.ANGLE:
            self._on_angle(frame)
        elif kind == WitFrameType.MAGNETIC:
            self._on_magnetic(frame)

    def compute_heading(self, values: Sequence[float], calibration: Calibration, attitude: Attitude) -> float:
        """True heading for a raw magnetometer vector; may exceed 360."""
        x, y, z = calibration.apply([float(v) for v in values])
        azimuth = tilt_compensated_azimuth(x, y, z, attitude.pitch, attitude.roll)
        magnetic_heading = (azimuth + ImuConstants.DEGREES_PER_REV) % ImuConstants.DEGREES_PER_REV
        return magnetic_heading + self.declination

    def _on_angle(self, frame: WitFrame) -> None:
        attitude = Attitude.from_frame(frame)
        with self._lock:
            self._attitude = attitude
        self.elevation_listeners.emit(attitude.roll)

    def _on_magnetic(self, frame: WitFrame) -> None:
        with self._lock:
            if self._capture is not None:
                self._capture.accept(frame.values, self._attitude)
                return
            calibration = self._calibration
            attitude = self._attitude
        heading = self.compute_heading(frame.values, calibration, attitude)
        with self._lock:
            self._azimuth = heading
        self.azimuth_listeners.emit(heading)

    def _read_loop(self, stop: threading.Event) -> None:
        dev = self.dev
        if dev is None:
            raise RuntimeError("IMU is not open")
        while not stop.is_set():
            try:
                byte = dev.read_byte()
            except TransportFailureError:
                if stop.is_set():
                    return
                raise
            if byte is None:
                continue
            raw = self._assembler.feed(byte)
            if raw is None:
                continue
            frame = WitFrame.from_bytes(raw)
            if frame is not None:
                self.handle_frame(frame)
