#!/usr/bin/env python3
"""
moontrack

Points an azimuth/elevation antenna mount at the Moon and calibrates the
magnetometer used for heading feedback.

Hardware:
- two Green Heron RT-21 rotor controllers (azimuth, elevation), ASCII over UART
- one WitMotion IMU (angle + magnetometer frames), binary over UART

Run:
  python3 -m moontrack track --config /etc/moontrack.yaml
  python3 -m moontrack calibrate --config /etc/moontrack.yaml --capture-policy per-step
  python3 -m moontrack fit /data/wit-cal-data-1700000000.csv --output /data/wit-cal.yaml

Use `track --dry-run` to exercise the tracking loop without rotors attached.
"""
from __future__ import annotations

import argparse
import dataclasses
import logging
import os
import sys
from typing import Optional, Sequence

from .calibration import Calibration, SingularFitError, calibration_path
from .config import AppConfig, CapturePolicy, load_config
from .dummy import DummyRotor
from .ephemeris import MoonEphemeris, Observer
from .errors import ConfigurationError, DeviceNotFoundError, MoontrackError
from .imu import WitMotionImu
from .logging_setup import parse_level, setup_logging
from .rotor import GreenHeronRotor, RotorBackend
from .sequencer import CalibrationSequencer
from .tracker import Tracker

LOGGER = logging.getLogger("main")


class ExitCode:
    OK = 0
    FAILURE = 1
    SETUP_ERROR = 2


def build_rotors(config: AppConfig, dry_run: bool = False) -> tuple[RotorBackend, RotorBackend]:
    if dry_run:
        return DummyRotor("AZ"), DummyRotor("EL")
    return (
        GreenHeronRotor.from_config("AZ", config.azimuth),
        GreenHeronRotor.from_config("EL", config.elevation),
    )


def cmd_track(args: argparse.Namespace) -> int:
    config = load_config(args.config, data_dir=args.data_dir)
    latitude, longitude = config.require_site()
    az_rotor, el_rotor = build_rotors(config, dry_run=args.dry_run)
    az_rotor.add_heading_listener(lambda heading: LOGGER.info("AZ @ %s", heading))
    el_rotor.add_heading_listener(lambda heading: LOGGER.info("EL @ %s", heading))

    tracker = Tracker(
        az_rotor,
        el_rotor,
        MoonEphemeris(),
        Observer(latitude=latitude, longitude=longitude),
        az_delta=config.azimuth.delta,
        el_delta=config.elevation.delta,
        period_s=config.tracking.period_s,
        min_elevation=config.tracking.min_elevation,
    )
    tracker.start()
    try:
        tracker.wait()
    except KeyboardInterrupt:
        LOGGER.info("Stopping tracker")
        tracker.stop()
        tracker.wait()
    return ExitCode.OK


def cmd_calibrate(args: argparse.Namespace) -> int:
    config = load_config(args.config, data_dir=args.data_dir)
    imu_config = config.require_imu()
    settings = config.calibration
    if args.capture_policy is not None:
        settings = dataclasses.replace(settings, capture_policy=CapturePolicy(args.capture_policy))

    calibration = Calibration.load_or_identity(calibration_path(config.data_dir))
    imu = WitMotionImu.from_config(imu_config, calibration=calibration)
    az_rotor, el_rotor = build_rotors(config)

    sequencer = CalibrationSequencer(imu, az_rotor, el_rotor, data_dir=config.data_dir, settings=settings)
    sequencer.start()
    try:
        result = sequencer.wait()
    except KeyboardInterrupt:
        sequencer.abort()
        return ExitCode.FAILURE
    LOGGER.info(
        "Calibration saved to %s from %d samples (raw data in %s)",
        result.calibration_path,
        result.sample_count,
        result.raw_path,
    )
    return ExitCode.OK


def cmd_fit(args: argparse.Namespace) -> int:
    calibration = Calibration.from_measurements_file(args.measurements)
    output = args.output
    if output is None:
        data_dir = args.data_dir or os.path.dirname(os.path.abspath(args.measurements))
        output = calibration_path(data_dir)
    calibration.save(output)
    LOGGER.info("offset=%s scaling=%s", calibration.offset.tolist(), calibration.scaling.tolist())
    return ExitCode.OK


def build_parser() -> argparse.ArgumentParser:
    # Also accepted after the subcommand.
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--log-level", default=argparse.SUPPRESS, type=parse_level)
    common.add_argument("--data-dir", default=argparse.SUPPRESS, help="override data_dir from the config file")

    ap = argparse.ArgumentParser(prog="moontrack", description="Moon tracker for RT-21 rotors")
    ap.add_argument("--log-level", default="INFO", type=parse_level)
    ap.add_argument("--data-dir", default=None, help="override data_dir from the config file")
    sub = ap.add_subparsers(dest="command", required=True)

    track = sub.add_parser("track", parents=[common], help="track the Moon until interrupted")
    track.add_argument("--config", required=True)
    track.add_argument("--dry-run", action="store_true", help="use simulated rotors")
    track.set_defaults(func=cmd_track)

    calibrate = sub.add_parser("calibrate", parents=[common], help="run the magnetometer calibration sequence")
    calibrate.add_argument("--config", required=True)
    calibrate.add_argument(
        "--capture-policy",
        choices=[p.value for p in CapturePolicy],
        default=None,
        help="capture across the whole run or restart the capture on each step",
    )
    calibrate.set_defaults(func=cmd_calibrate)

    fit = sub.add_parser("fit", parents=[common], help="fit a calibration from a raw capture file")
    fit.add_argument("measurements", help="CSV file, one x,y,z[,roll,pitch,yaw] sample per line")
    fit.add_argument("--output", default=None)
    fit.set_defaults(func=cmd_fit)
    return ap


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)
    try:
        return args.func(args)
    except (ConfigurationError, DeviceNotFoundError) as exc:
        LOGGER.error("%s", exc)
        return ExitCode.SETUP_ERROR
    except SingularFitError as exc:
        LOGGER.error("Calibration fit failed: %s", exc)
        return ExitCode.FAILURE
    except (MoontrackError, OSError, TimeoutError) as exc:
        LOGGER.error("%s", exc, exc_info=True)
        return ExitCode.FAILURE


if __name__ == "__main__":
    sys.exit(main())
