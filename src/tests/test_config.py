from __future__ import annotations

import logging
import textwrap

import pytest

LOGGER = logging.getLogger("tests.config")

from moontrack.config import (
    AppConfig,
    CalibrationRunConfig,
    CapturePolicy,
    RotorConfig,
    load_config,
)
from moontrack.errors import ConfigurationError

FULL_CONFIG = textwrap.dedent(
    """
    latitude: 52.2
    longitude: -1.6
    data_dir: /tmp/moontrack
    azimuth:
      port: /dev/ttyUSB0
      baud: 4800
      delta: 0.2
    elevation:
      port: /dev/ttyUSB1
      baud: 4800
      index: 2
      query: AI
    imu:
      port: /dev/ttyUSB2
      baud: 9600
      magnetic_declination: -0.4
    tracking:
      period_s: 2.5
      min_elevation: 5
    calibration:
      capture_policy: per-step
      threshold_deg: 1.5
      poll_interval_s: 0.5
      settle_s: 3
    """
)

MINIMAL_CONFIG = textwrap.dedent(
    """
    azimuth: {port: /dev/ttyUSB0, baud: 4800}
    elevation: {port: /dev/ttyUSB1, baud: 4800}
    """
)


def _write(tmp_path, content: str) -> str:
    path = tmp_path / "moontrack.yaml"
    path.write_text(content, encoding="utf-8")
    return str(path)


def test_full_config(tmp_path) -> None:
    config = load_config(_write(tmp_path, FULL_CONFIG))

    assert config.require_site() == (52.2, -1.6)
    assert config.data_dir == "/tmp/moontrack"
    assert config.azimuth == RotorConfig(port="/dev/ttyUSB0", baud=4800, delta=0.2)
    assert config.elevation.index == 2
    assert config.elevation.query == "AI"
    imu = config.require_imu()
    assert imu.baud == 9600
    assert imu.magnetic_declination == pytest.approx(-0.4)
    assert config.tracking.period_s == 2.5
    assert config.tracking.min_elevation == 5.0
    assert config.calibration.capture_policy == CapturePolicy.PER_STEP
    assert config.calibration.threshold_deg == 1.5
    assert config.calibration.settle_s == 3.0
    assert config.calibration.timeout_s is None


def test_minimal_config_uses_defaults(tmp_path) -> None:
    config = load_config(_write(tmp_path, MINIMAL_CONFIG))

    assert config.azimuth.index == 1
    assert config.azimuth.delta == pytest.approx(0.1)
    assert config.data_dir == "/data"
    assert config.imu is None
    assert config.tracking.min_elevation == 0.0
    assert config.calibration == CalibrationRunConfig()
    assert config.calibration.capture_policy == CapturePolicy.WHOLE_RUN


def test_data_dir_override(tmp_path) -> None:
    config = load_config(_write(tmp_path, MINIMAL_CONFIG), data_dir=str(tmp_path))
    assert config.data_dir == str(tmp_path)


def test_site_and_imu_are_required_on_demand(tmp_path) -> None:
    config = load_config(_write(tmp_path, MINIMAL_CONFIG))
    with pytest.raises(ConfigurationError):
        config.require_site()
    with pytest.raises(ConfigurationError):
        config.require_imu()


@pytest.mark.parametrize(
    "content",
    [
        "elevation: {port: /dev/ttyUSB1, baud: 4800}\n",
        "azimuth: {baud: 4800}\nelevation: {port: /dev/ttyUSB1, baud: 4800}\n",
        "azimuth: {port: /dev/ttyUSB0, baud: -1}\nelevation: {port: /dev/ttyUSB1, baud: 4800}\n",
        "azimuth: {port: /dev/ttyUSB0, baud: fast}\nelevation: {port: /dev/ttyUSB1, baud: 4800}\n",
        "azimuth: {port: /dev/ttyUSB0, baud: 4800, query: XX}\nelevation: {port: /dev/ttyUSB1, baud: 4800}\n",
        MINIMAL_CONFIG + "latitude: 95\nlongitude: 0\n",
        MINIMAL_CONFIG + "calibration: {capture_policy: sometimes}\n",
        MINIMAL_CONFIG + "calibration: {threshold_deg: 0}\n",
        MINIMAL_CONFIG + "tracking: {period_s: 0}\n",
        MINIMAL_CONFIG + "imu: {port: /dev/ttyUSB2, baud: 9600}\n",
        MINIMAL_CONFIG + "tracking: [1, 2]\n",
        "- just\n- a list\n",
        "azimuth: [unclosed\n",
    ],
)
def test_invalid_config(tmp_path, content: str) -> None:
    with pytest.raises(ConfigurationError):
        load_config(_write(tmp_path, content))


def test_missing_config_file(tmp_path) -> None:
    with pytest.raises(ConfigurationError):
        load_config(str(tmp_path / "nope.yaml"))


def test_app_config_validates_site_range() -> None:
    rotor = RotorConfig(port="/dev/ttyUSB0", baud=4800)
    with pytest.raises(ConfigurationError):
        AppConfig(azimuth=rotor, elevation=rotor, latitude=0.0, longitude=181.0)
