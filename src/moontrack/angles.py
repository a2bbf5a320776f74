from __future__ import annotations


DEGREES_PER_REV = 360.0
HALF_REV = 180.0


def clamp(x: float, lo: float, hi: float) -> float:
    return lo if x < lo else hi if x > hi else x


def wraparound_distance(h1: float, h2: float) -> float:
    """Shortest angular distance between two headings, in [0, 180]."""
    diff = (h1 - h2) % DEGREES_PER_REV
    return DEGREES_PER_REV - diff if diff > HALF_REV else diff


def raw16_to_degrees(raw: int) -> float:
    return raw / 32768.0 * HALF_REV
