from __future__ import annotations

import dataclasses
import datetime as dt
import math
from typing import Callable, Protocol

import ephem


@dataclasses.dataclass(frozen=True)
class Observer:
    latitude: float
    longitude: float
    elevation_m: float = 0.0


@dataclasses.dataclass(frozen=True)
class HorizontalPosition:
    azimuth: float
    altitude: float


class EphemerisProvider(Protocol):
    def horizontal_position(self, observer: Observer, timestamp: dt.datetime) -> HorizontalPosition:
        raise NotImplementedError


def to_utc_naive(timestamp: dt.datetime) -> dt.datetime:
    if timestamp.tzinfo is None:
        return timestamp
    return timestamp.astimezone(dt.timezone.utc).replace(tzinfo=None)


def utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class BodyEphemeris:
    """Topocentric azimuth/altitude of a solar-system body via PyEphem."""

    def __init__(self, body_factory: Callable[[], ephem.Body]) -> None:
        self._body_factory = body_factory

    def horizontal_position(self, observer: Observer, timestamp: dt.datetime) -> HorizontalPosition:
        site = ephem.Observer()
        # strings are parsed as degrees, floats would be radians
        site.lat = str(observer.latitude)
        site.lon = str(observer.longitude)
        site.elevation = observer.elevation_m
        site.date = ephem.Date(to_utc_naive(timestamp))
        body = self._body_factory()
        body.compute(site)
        return HorizontalPosition(azimuth=math.degrees(body.az), altitude=math.degrees(body.alt))


class MoonEphemeris(BodyEphemeris):
    def __init__(self) -> None:
        super().__init__(ephem.Moon)
