from __future__ import annotations

import dataclasses
import logging
from enum import StrEnum
from typing import Any, Mapping, Optional

import yaml

from .errors import ConfigurationError

LOGGER = logging.getLogger("config")


class CapturePolicy(StrEnum):
    WHOLE_RUN = "whole-run"
    PER_STEP = "per-step"


class ConfigConstants:
    DEFAULT_INDEX = 1
    DEFAULT_DELTA_DEG = 0.1
    DEFAULT_POLL_INTERVAL_S = 1.0
    DEFAULT_TIMEOUT_S = 1.0
    DEFAULT_QUERY = "BI"
    QUERIES = ("BI", "AI")
    DEFAULT_DATA_DIR = "/data"
    DEFAULT_TRACK_PERIOD_S = 1.0
    DEFAULT_MIN_ELEVATION = 0.0
    DEFAULT_THRESHOLD_DEG = 2.0
    DEFAULT_SETTLE_S = 2.0
    MIN_LAT = -90.0
    MAX_LAT = 90.0
    MIN_LON = -180.0
    MAX_LON = 180.0


def _require(section: Mapping[str, Any], key: str, where: str) -> Any:
    value = section.get(key)
    if value is None:
        raise ConfigurationError(f"{where}.{key} is required")
    return value


def _section(data: Mapping[str, Any], key: str, required: bool = True) -> Mapping[str, Any]:
    value = data.get(key)
    if value is None:
        if required:
            raise ConfigurationError(f"{key} section is required")
        return {}
    if not isinstance(value, Mapping):
        raise ConfigurationError(f"{key} must be a mapping")
    return value


def _number(value: Any, where: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(f"{where} must be a number, got {value!r}")
    return float(value)


@dataclasses.dataclass(frozen=True)
class RotorConfig:
    port: str
    baud: int
    index: int = ConfigConstants.DEFAULT_INDEX
    delta: float = ConfigConstants.DEFAULT_DELTA_DEG
    poll_interval_s: float = ConfigConstants.DEFAULT_POLL_INTERVAL_S
    timeout_s: float = ConfigConstants.DEFAULT_TIMEOUT_S
    query: str = ConfigConstants.DEFAULT_QUERY

    def __post_init__(self) -> None:
        if not self.port:
            raise ConfigurationError("Rotor port is required.")
        if self.baud <= 0:
            raise ConfigurationError("Rotor baud rate must be positive.")
        if self.index < 0:
            raise ConfigurationError("Rotor index must be non-negative.")
        if self.delta < 0:
            raise ConfigurationError("Rotor delta must be non-negative.")
        if self.poll_interval_s <= 0:
            raise ConfigurationError("Rotor poll interval must be positive.")
        if self.timeout_s <= 0:
            raise ConfigurationError("Rotor timeout must be positive.")
        if self.query not in ConfigConstants.QUERIES:
            raise ConfigurationError(f"Rotor query must be one of {ConfigConstants.QUERIES}.")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], where: str) -> "RotorConfig":
        return cls(
            port=str(_require(data, "port", where)),
            baud=int(_number(_require(data, "baud", where), f"{where}.baud")),
            index=int(_number(data.get("index", ConfigConstants.DEFAULT_INDEX), f"{where}.index")),
            delta=_number(data.get("delta", ConfigConstants.DEFAULT_DELTA_DEG), f"{where}.delta"),
            poll_interval_s=_number(
                data.get("poll_interval_s", ConfigConstants.DEFAULT_POLL_INTERVAL_S), f"{where}.poll_interval_s"
            ),
            timeout_s=_number(data.get("timeout_s", ConfigConstants.DEFAULT_TIMEOUT_S), f"{where}.timeout_s"),
            query=str(data.get("query", ConfigConstants.DEFAULT_QUERY)),
        )


@dataclasses.dataclass(frozen=True)
class ImuConfig:
    port: str
    baud: int
    magnetic_declination: float
    timeout_s: float = ConfigConstants.DEFAULT_TIMEOUT_S

    def __post_init__(self) -> None:
        if not self.port:
            raise ConfigurationError("IMU port is required.")
        if self.baud <= 0:
            raise ConfigurationError("IMU baud rate must be positive.")
        if self.timeout_s <= 0:
            raise ConfigurationError("IMU timeout must be positive.")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ImuConfig":
        return cls(
            port=str(_require(data, "port", "imu")),
            baud=int(_number(_require(data, "baud", "imu"), "imu.baud")),
            magnetic_declination=_number(
                _require(data, "magnetic_declination", "imu"), "imu.magnetic_declination"
            ),
            timeout_s=_number(data.get("timeout_s", ConfigConstants.DEFAULT_TIMEOUT_S), "imu.timeout_s"),
        )


@dataclasses.dataclass(frozen=True)
class TrackingConfig:
    period_s: float = ConfigConstants.DEFAULT_TRACK_PERIOD_S
    min_elevation: float = ConfigConstants.DEFAULT_MIN_ELEVATION

    def __post_init__(self) -> None:
        if self.period_s <= 0:
            raise ConfigurationError("Tracking period must be positive.")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "TrackingConfig":
        return cls(
            period_s=_number(data.get("period_s", ConfigConstants.DEFAULT_TRACK_PERIOD_S), "tracking.period_s"),
            min_elevation=_number(
                data.get("min_elevation", ConfigConstants.DEFAULT_MIN_ELEVATION), "tracking.min_elevation"
            ),
        )


@dataclasses.dataclass(frozen=True)
class CalibrationRunConfig:
    capture_policy: CapturePolicy = CapturePolicy.WHOLE_RUN
    threshold_deg: float = ConfigConstants.DEFAULT_THRESHOLD_DEG
    poll_interval_s: float = ConfigConstants.DEFAULT_POLL_INTERVAL_S
    settle_s: float = ConfigConstants.DEFAULT_SETTLE_S
    timeout_s: Optional[float] = None

    def __post_init__(self) -> None:
        if self.threshold_deg <= 0:
            raise ConfigurationError("Calibration threshold must be positive.")
        if self.poll_interval_s <= 0:
            raise ConfigurationError("Calibration poll interval must be positive.")
        if self.settle_s < 0:
            raise ConfigurationError("Calibration settle time must be non-negative.")
        if self.timeout_s is not None and self.timeout_s <= 0:
            raise ConfigurationError("Calibration timeout must be positive.")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "CalibrationRunConfig":
        policy = data.get("capture_policy", CapturePolicy.WHOLE_RUN.value)
        try:
            capture_policy = CapturePolicy(policy)
        except ValueError as exc:
            raise ConfigurationError(
                f"calibration.capture_policy must be one of {[p.value for p in CapturePolicy]}"
            ) from exc
        timeout = data.get("timeout_s")
        return cls(
            capture_policy=capture_policy,
            threshold_deg=_number(
                data.get("threshold_deg", ConfigConstants.DEFAULT_THRESHOLD_DEG), "calibration.threshold_deg"
            ),
            poll_interval_s=_number(
                data.get("poll_interval_s", ConfigConstants.DEFAULT_POLL_INTERVAL_S), "calibration.poll_interval_s"
            ),
            settle_s=_number(data.get("settle_s", ConfigConstants.DEFAULT_SETTLE_S), "calibration.settle_s"),
            timeout_s=None if timeout is None else _number(timeout, "calibration.timeout_s"),
        )


@dataclasses.dataclass(frozen=True)
class AppConfig:
    azimuth: RotorConfig
    elevation: RotorConfig
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    imu: Optional[ImuConfig] = None
    data_dir: str = ConfigConstants.DEFAULT_DATA_DIR
    tracking: TrackingConfig = dataclasses.field(default_factory=TrackingConfig)
    calibration: CalibrationRunConfig = dataclasses.field(default_factory=CalibrationRunConfig)

    def __post_init__(self) -> None:
        if self.latitude is not None and not ConfigConstants.MIN_LAT <= self.latitude <= ConfigConstants.MAX_LAT:
            raise ConfigurationError(f"latitude out of range: {self.latitude!r}")
        if self.longitude is not None and not ConfigConstants.MIN_LON <= self.longitude <= ConfigConstants.MAX_LON:
            raise ConfigurationError(f"longitude out of range: {self.longitude!r}")

    def require_site(self) -> tuple[float, float]:
        if self.latitude is None or self.longitude is None:
            raise ConfigurationError("latitude and longitude are required for tracking")
        return self.latitude, self.longitude

    def require_imu(self) -> ImuConfig:
        if self.imu is None:
            raise ConfigurationError("imu section is required for calibration")
        return self.imu

    @classmethod
    def from_mapping(cls, data: Any) -> "AppConfig":
        if not isinstance(data, Mapping):
            raise ConfigurationError("configuration must be a mapping")
        imu = _section(data, "imu", required=False)
        latitude = data.get("latitude")
        longitude = data.get("longitude")
        return cls(
            azimuth=RotorConfig.from_mapping(_section(data, "azimuth"), "azimuth"),
            elevation=RotorConfig.from_mapping(_section(data, "elevation"), "elevation"),
            latitude=None if latitude is None else _number(latitude, "latitude"),
            longitude=None if longitude is None else _number(longitude, "longitude"),
            imu=ImuConfig.from_mapping(imu) if imu else None,
            data_dir=str(data.get("data_dir", ConfigConstants.DEFAULT_DATA_DIR)),
            tracking=TrackingConfig.from_mapping(_section(data, "tracking", required=False)),
            calibration=CalibrationRunConfig.from_mapping(_section(data, "calibration", required=False)),
        )


def load_config(path: str, data_dir: Optional[str] = None) -> AppConfig:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as exc:
        raise ConfigurationError(f"cannot read config {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"cannot parse config {path}: {exc}") from exc
    config = AppConfig.from_mapping(data)
    if data_dir is not None:
        config = dataclasses.replace(config, data_dir=data_dir)
    LOGGER.info("Loaded config from %s (data_dir=%s)", path, config.data_dir)
    return config
