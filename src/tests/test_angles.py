from __future__ import annotations

import pytest

from moontrack.angles import clamp, raw16_to_degrees, wraparound_distance


@pytest.mark.parametrize(
    "h1,h2,expected",
    [
        (10.0, 350.0, 20.0),
        (350.0, 10.0, 20.0),
        (0.0, 180.0, 180.0),
        (1.0, 359.0, 2.0),
        (90.0, 90.0, 0.0),
        (45.0, 100.0, 55.0),
    ],
)
def test_wraparound_distance(h1: float, h2: float, expected: float) -> None:
    assert wraparound_distance(h1, h2) == pytest.approx(expected)


def test_wraparound_distance_handles_headings_past_one_turn() -> None:
    assert wraparound_distance(365.0, 2.0) == pytest.approx(3.0)
    assert wraparound_distance(-5.0, 5.0) == pytest.approx(10.0)


def test_clamp() -> None:
    assert clamp(-5.0, 0.0, 90.0) == 0.0
    assert clamp(95.0, 0.0, 90.0) == 90.0
    assert clamp(45.0, 0.0, 90.0) == 45.0


def test_raw16_to_degrees() -> None:
    assert raw16_to_degrees(16384) == pytest.approx(90.0)
    assert raw16_to_degrees(-32768) == pytest.approx(-180.0)
    assert raw16_to_degrees(0) == 0.0
