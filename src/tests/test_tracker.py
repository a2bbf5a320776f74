from __future__ import annotations

import datetime as dt
import logging

import pytest

LOGGER = logging.getLogger("tests.tracker")

from moontrack.dummy import DummyRotor
from moontrack.ephemeris import HorizontalPosition, MoonEphemeris, Observer, to_utc_naive
from moontrack.errors import TransportFailureError
from moontrack.tracker import Tracker


class ScriptedEphemeris:
    def __init__(self, step_deg: float = 1.0) -> None:
        self.step_deg = step_deg
        self.calls: list[dt.datetime] = []

    def horizontal_position(self, observer: Observer, timestamp: dt.datetime) -> HorizontalPosition:
        self.calls.append(timestamp)
        return HorizontalPosition(azimuth=(len(self.calls) * self.step_deg) % 360.0, altitude=30.0)


class BrokenRotor(DummyRotor):
    def raise_if_failed(self) -> None:
        raise TransportFailureError("poller died")


OBSERVER = Observer(latitude=52.0, longitude=-1.5)
FIXED_TIME = dt.datetime(2024, 3, 1, 12, 0, tzinfo=dt.timezone.utc)


def _tracker(az: DummyRotor, el: DummyRotor, ephemeris=None, **kwargs) -> Tracker:
    return Tracker(az, el, ephemeris or ScriptedEphemeris(), OBSERVER, clock=lambda: FIXED_TIME, **kwargs)


def test_small_changes_are_suppressed() -> None:
    az, el = DummyRotor("AZ"), DummyRotor("EL")
    tracker = _tracker(az, el, az_delta=0.1, el_delta=0.1)

    assert tracker.update(HorizontalPosition(100.0, 20.0))
    LOGGER.info("STEP jitter below both deltas")
    for jitter in (0.05, -0.05, 0.09):
        assert not tracker.update(HorizontalPosition(100.0 + jitter, 20.0 + jitter))

    assert az.commands == [100.0]
    assert el.commands == [20.0]


def test_change_in_either_axis_commands_both() -> None:
    az, el = DummyRotor("AZ"), DummyRotor("EL")
    tracker = _tracker(az, el, az_delta=0.1, el_delta=0.1)

    tracker.update(HorizontalPosition(100.0, 20.0))
    assert tracker.update(HorizontalPosition(100.2, 20.0))
    assert tracker.update(HorizontalPosition(100.2, 20.3))

    assert az.commands == [100.0, 100.2, 100.2]
    assert el.commands == [20.0, 20.0, 20.3]


def test_azimuth_suppression_wraps_north() -> None:
    az, el = DummyRotor("AZ"), DummyRotor("EL")
    tracker = _tracker(az, el, az_delta=0.1, el_delta=0.1)

    tracker.update(HorizontalPosition(359.95, 10.0))
    assert not tracker.update(HorizontalPosition(0.02, 10.0))
    assert az.commands == [359.95]


def test_below_horizon_is_clamped() -> None:
    az, el = DummyRotor("AZ"), DummyRotor("EL")
    tracker = _tracker(az, el)

    tracker.update(HorizontalPosition(150.0, -5.0))

    assert el.commands == [0.0]
    assert az.commands == [150.0]
    assert tracker.last_commanded == HorizontalPosition(150.0, -5.0)
    assert not tracker.update(HorizontalPosition(150.0, -5.05))


def test_step_uses_clock_and_ephemeris() -> None:
    az, el = DummyRotor("AZ"), DummyRotor("EL")
    ephemeris = ScriptedEphemeris(step_deg=10.0)
    tracker = _tracker(az, el, ephemeris)

    assert tracker.step()
    assert ephemeris.calls == [FIXED_TIME]
    assert az.commands == [10.0]
    assert el.commands == [30.0]


def test_loop_runs_until_stopped(eventually) -> None:
    az, el = DummyRotor("AZ"), DummyRotor("EL")
    tracker = _tracker(az, el, period_s=0.01)

    tracker.start()
    try:
        assert eventually(lambda: len(az.commands) >= 3)
    finally:
        tracker.stop()
        tracker.wait(2.0)

    assert az.opened and el.opened
    assert az.closed and el.closed
    assert az.commands[:3] == [1.0, 2.0, 3.0]


def test_loop_surfaces_rotor_failure() -> None:
    az, el = BrokenRotor("AZ"), DummyRotor("EL")
    tracker = _tracker(az, el, period_s=0.01)

    tracker.start()
    with pytest.raises(TransportFailureError):
        tracker.wait(2.0)
    assert az.closed and el.closed


def test_wait_requires_start() -> None:
    tracker = _tracker(DummyRotor("AZ"), DummyRotor("EL"))
    with pytest.raises(RuntimeError):
        tracker.wait()


def test_to_utc_naive() -> None:
    aware = dt.datetime(2024, 3, 1, 14, 0, tzinfo=dt.timezone(dt.timedelta(hours=2)))
    assert to_utc_naive(aware) == dt.datetime(2024, 3, 1, 12, 0)
    naive = dt.datetime(2024, 3, 1, 12, 0)
    assert to_utc_naive(naive) is naive


def test_moon_position_is_a_horizontal_coordinate() -> None:
    position = MoonEphemeris().horizontal_position(OBSERVER, FIXED_TIME)
    LOGGER.info("STEP moon at az=%.2f alt=%.2f", position.azimuth, position.altitude)
    assert 0.0 <= position.azimuth < 360.0
    assert -90.0 <= position.altitude <= 90.0


def test_moon_moves_across_the_sky() -> None:
    moon = MoonEphemeris()
    first = moon.horizontal_position(OBSERVER, FIXED_TIME)
    later = moon.horizontal_position(OBSERVER, FIXED_TIME + dt.timedelta(hours=1))
    assert (first.azimuth, first.altitude) != pytest.approx((later.azimuth, later.altitude), abs=1.0)
