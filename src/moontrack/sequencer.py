from __future__ import annotations

import dataclasses
import logging
import os
import threading
import time
from typing import Callable, Optional, Sequence

from .calibration import Calibration, RawSample, calibration_path, fit, raw_capture_path, write_measurements
from .config import CalibrationRunConfig, CapturePolicy
from .convergence import SequenceAbortedError, wait_for_heading
from .imu import WitMotionImu
from .rotor import RotorBackend

LOGGER = logging.getLogger("sequencer")


class SequencerConstants:
    SETUP_LIMIT_DEG = 0
    PLAN_ELEVATION = 0.0
    PLAN_SPLIT_DEG = 180.0
    PLAN_LOW_AZ = 1.0
    PLAN_HIGH_AZ = 359.0
    JOIN_TIMEOUT_S = 10.0


@dataclasses.dataclass(frozen=True)
class MotionStep:
    elevation: float
    azimuths: tuple[float, ...]

    def __post_init__(self) -> None:
        if not self.azimuths:
            raise ValueError("motion step needs at least one azimuth")
        object.__setattr__(self, "azimuths", tuple(float(a) for a in self.azimuths))


@dataclasses.dataclass(frozen=True)
class CalibrationResult:
    calibration: Calibration
    sample_count: int
    calibration_path: str
    raw_path: str


def default_plan(az_heading: Optional[float]) -> list[MotionStep]:
    """Sweep a full turn at the horizon without crossing the azimuth stop."""
    if az_heading is not None and az_heading > SequencerConstants.PLAN_SPLIT_DEG:
        azimuths = (SequencerConstants.PLAN_HIGH_AZ, SequencerConstants.PLAN_LOW_AZ)
    else:
        azimuths = (SequencerConstants.PLAN_LOW_AZ, SequencerConstants.PLAN_HIGH_AZ)
    return [MotionStep(elevation=SequencerConstants.PLAN_ELEVATION, azimuths=azimuths)]


class CalibrationSequencer:
    """Drives both rotors through a motion plan while the IMU captures raw
    magnetometer data, then fits, saves and installs the calibration.

    Runs on its own thread. `abort` stops both rotors, cancels whichever
    wait is in progress and releases the rotors and the IMU.
    """

    def __init__(
        self,
        imu: WitMotionImu,
        az_rotor: RotorBackend,
        el_rotor: RotorBackend,
        *,
        data_dir: str,
        settings: Optional[CalibrationRunConfig] = None,
        plan: Optional[Sequence[MotionStep]] = None,
        clock: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.imu = imu
        self.az_rotor = az_rotor
        self.el_rotor = el_rotor
        self.data_dir = data_dir
        self.settings = settings or CalibrationRunConfig()
        self.plan = list(plan) if plan is not None else None
        self.clock = clock
        self.log = logger or LOGGER
        self._cancel = threading.Event()
        self._release_lock = threading.Lock()
        self._opened = False
        self._released = False
        self._thread: Optional[threading.Thread] = None
        self._result: Optional[CalibrationResult] = None
        self._error: Optional[BaseException] = None

        self.az_rotor.add_heading_listener(lambda heading: self.log.info("AZ @ %s", heading))
        self.el_rotor.add_heading_listener(lambda heading: self.log.info("EL @ %s", heading))

    @property
    def aborted(self) -> bool:
        return self._cancel.is_set()

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError("calibration sequence already started")
        self._thread = threading.Thread(target=self._run_guarded, name="calibration", daemon=True)
        self._thread.start()

    def wait(self, timeout_s: Optional[float] = None) -> CalibrationResult:
        if self._thread is None:
            raise RuntimeError("calibration sequence not started")
        self._thread.join(timeout_s)
        if self._thread.is_alive():
            raise TimeoutError("calibration sequence still running")
        if self._error is not None:
            raise self._error
        if self._result is None:
            raise RuntimeError("calibration sequence finished without a result")
        return self._result

    def run(self) -> CalibrationResult:
        self.start()
        return self.wait()

    def abort(self) -> None:
        self.log.info("Aborted")
        self._cancel.set()
        if self._opened:
            for rotor in (self.az_rotor, self.el_rotor):
                try:
                    rotor.stop()
                except Exception:
                    self.log.warning("stop %s failed during abort", rotor.name, exc_info=True)
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(SequencerConstants.JOIN_TIMEOUT_S)
        self._release()

    def _run_guarded(self) -> None:
        try:
            self._result = self._execute()
        except SequenceAbortedError as exc:
            self._error = exc
            self.log.info("Calibration sequence aborted: %s", exc)
        except Exception as exc:
            self._error = exc
            self.log.exception("Calibration sequence failed")
        finally:
            self._release()

    def _execute(self) -> CalibrationResult:
        self.log.info("*** Beginning magnetometer calibration sequence ***")
        self._open_devices()

        self.az_rotor.set_over_travel(SequencerConstants.SETUP_LIMIT_DEG)
        self.az_rotor.set_cw_limit(SequencerConstants.SETUP_LIMIT_DEG)
        self.az_rotor.set_ccw_limit(SequencerConstants.SETUP_LIMIT_DEG)

        plan = self.plan if self.plan is not None else default_plan(self.az_rotor.heading)
        raw_path = raw_capture_path(self.data_dir, int(self.clock()))
        per_step = self.settings.capture_policy == CapturePolicy.PER_STEP
        samples: list[RawSample] = []

        for step_index, step in enumerate(plan):
            self._check_cancel()
            first_step = step_index == 0
            last_step = step_index == len(plan) - 1
            self.log.info("--- STEP %d OF %d ---", step_index + 1, len(plan))

            self.az_rotor.stop()
            self.el_rotor.stop()

            first_az = step.azimuths[0]
            self.az_rotor.turn(first_az)
            self.el_rotor.turn(step.elevation)

            self.log.info("Waiting for EL rotor to reach %.1f°...", step.elevation)
            self._wait(self.el_rotor, step.elevation)
            self.log.info("Waiting for AZ rotor to reach %.1f°...", first_az)
            self._wait(self.az_rotor, first_az)

            if per_step or first_step:
                self.imu.start_raw_capture()

            for step_az in step.azimuths[1:]:
                self.log.info("Waiting for AZ rotor to reach %.1f°...", step_az)
                self.az_rotor.turn(step_az)
                self._wait(self.az_rotor, step_az)

            if per_step or last_step:
                window = self.imu.end_raw_capture() or []
                samples.extend(window)
                write_measurements(raw_path, window)
            self.imu.raise_if_failed()

        calibration = fit(samples)
        cal_path = calibration_path(self.data_dir)
        calibration.save(cal_path)
        self.imu.calibration = calibration
        self.log.info("*** Magnetometer calibration sequence complete ***")
        return CalibrationResult(
            calibration=calibration,
            sample_count=len(samples),
            calibration_path=cal_path,
            raw_path=raw_path,
        )

    def _open_devices(self) -> None:
        os.makedirs(self.data_dir, exist_ok=True)
        with self._release_lock:
            self._check_cancel()
            self._opened = True
        self.imu.start()
        self.az_rotor.open()
        self.el_rotor.open()

    def _wait(self, rotor: RotorBackend, target: float) -> None:
        wait_for_heading(
            rotor,
            target,
            threshold_deg=self.settings.threshold_deg,
            poll_interval_s=self.settings.poll_interval_s,
            settle_s=self.settings.settle_s,
            cancel=self._cancel,
            timeout_s=self.settings.timeout_s,
            logger=self.log,
        )

    def _check_cancel(self) -> None:
        if self._cancel.is_set():
            raise SequenceAbortedError("calibration sequence aborted")

    def _release(self) -> None:
        with self._release_lock:
            if self._released or not self._opened:
                self._released = True
                return
            self._released = True
        if self.imu.capturing:
            self.imu.end_raw_capture()
        for name, close in (
            ("imu", self.imu.stop),
            (self.az_rotor.name, self.az_rotor.close),
            (self.el_rotor.name, self.el_rotor.close),
        ):
            try:
                close()
            except Exception:
                self.log.warning("release of %s failed", name, exc_info=True)
