"""Hard/soft-iron magnetometer calibration.

The raw magnetometer cloud of a rotating sensor lies on an ellipsoid. The
fit centres it on the bounding-box midpoint (hard iron), then solves the
quadric ``x'Mx = 1`` by least squares (soft iron). The eigenvectors of M
give the ellipsoid axes and the eigenvalues their lengths, which is all
that is needed to map readings back onto the unit sphere.
"""
from __future__ import annotations

import dataclasses
import itertools
import logging
import os
from typing import Any, Iterable, Optional, Sequence

import numpy as np
import yaml

from .errors import MoontrackError

LOGGER = logging.getLogger("calibration")


class CalibrationConstants:
    MIN_SAMPLES = 6
    QUADRIC_TERMS = 6
    DIMENSIONS = 3
    RANK_RTOL = 1e-9
    COEFFICIENT_RTOL = 1e-9
    ORTHONORMAL_ATOL = 1e-6
    FILE_NAME = "wit-cal.yaml"
    RAW_FILE_TEMPLATE = "wit-cal-data-{stamp}.csv"
    CSV_SEP = ","
    KEY_OFFSET = "offset"
    KEY_SCALING = "scaling"
    KEY_ROTATION = "rotation"


class SingularFitError(MoontrackError):
    pass


class CalibrationFileError(MoontrackError):
    pass


@dataclasses.dataclass(frozen=True)
class RawSample:
    x: int
    y: int
    z: int
    roll: float = 0.0
    pitch: float = 0.0
    yaw: float = 0.0

    @property
    def vector(self) -> tuple[int, int, int]:
        return self.x, self.y, self.z

    def to_csv(self) -> str:
        return CalibrationConstants.CSV_SEP.join(
            (str(self.x), str(self.y), str(self.z), f"{self.roll:.3f}", f"{self.pitch:.3f}", f"{self.yaw:.3f}")
        )


def _coerce(value: Any, name: str, shape: tuple[int, ...]) -> np.ndarray:
    arr = np.array(value, dtype=float)
    if arr.shape != shape:
        raise ValueError(f"{name} must have shape {shape}, got {arr.shape}")
    if not np.all(np.isfinite(arr)):
        raise ValueError(f"{name} must be finite")
    arr.setflags(write=False)
    return arr


@dataclasses.dataclass(frozen=True, eq=False)
class Calibration:
    offset: np.ndarray
    scaling: np.ndarray
    rotation: np.ndarray

    def __post_init__(self) -> None:
        dims = CalibrationConstants.DIMENSIONS
        offset = _coerce(self.offset, "offset", (dims,))
        scaling = _coerce(self.scaling, "scaling", (dims,))
        rotation = _coerce(self.rotation, "rotation", (dims, dims))
        if np.any(scaling == 0.0):
            raise ValueError("scaling must be non-zero")
        if not np.allclose(rotation.T @ rotation, np.eye(dims), atol=CalibrationConstants.ORTHONORMAL_ATOL):
            raise ValueError("rotation must be orthonormal")
        if np.linalg.det(rotation) < 0.0:
            raise ValueError("rotation must be proper (det +1)")
        object.__setattr__(self, "offset", offset)
        object.__setattr__(self, "scaling", scaling)
        object.__setattr__(self, "rotation", rotation)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Calibration):
            return NotImplemented
        return (
            np.array_equal(self.offset, other.offset)
            and np.array_equal(self.scaling, other.scaling)
            and np.array_equal(self.rotation, other.rotation)
        )

    def __hash__(self) -> int:
        return hash((tuple(self.offset.tolist()), tuple(self.scaling.tolist()), tuple(self.rotation.ravel().tolist())))

    @classmethod
    def identity(cls) -> "Calibration":
        dims = CalibrationConstants.DIMENSIONS
        return cls(offset=np.zeros(dims), scaling=np.ones(dims), rotation=np.eye(dims))

    def apply(self, point: Sequence[float]) -> np.ndarray:
        """Map a raw reading onto the unit sphere."""
        centred = np.asarray(point, dtype=float) - self.offset
        return (self.rotation.T @ centred) / self.scaling

    # ---------------------------------------------------------------- fitting

    @classmethod
    def from_measurements(cls, points: Iterable[Sequence[float]]) -> "Calibration":
        return fit(points)

    @classmethod
    def from_measurements_file(cls, path: str) -> "Calibration":
        return fit(read_measurements(path))

    # ------------------------------------------------------------ persistence

    def to_dict(self) -> dict[str, list]:
        return {
            CalibrationConstants.KEY_OFFSET: [float(v) for v in self.offset],
            CalibrationConstants.KEY_SCALING: [float(v) for v in self.scaling],
            CalibrationConstants.KEY_ROTATION: [[float(v) for v in row] for row in self.rotation],
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Calibration":
        if not isinstance(data, dict):
            raise CalibrationFileError(f"calibration must be a mapping, got {type(data).__name__}")
        try:
            return cls(
                offset=data[CalibrationConstants.KEY_OFFSET],
                scaling=data[CalibrationConstants.KEY_SCALING],
                rotation=data[CalibrationConstants.KEY_ROTATION],
            )
        except KeyError as exc:
            raise CalibrationFileError(f"calibration is missing {exc.args[0]!r}") from exc
        except (TypeError, ValueError) as exc:
            raise CalibrationFileError(f"invalid calibration: {exc}") from exc

    def save(self, path: str) -> None:
        tmp_path = f"{path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=None, sort_keys=False)
        os.replace(tmp_path, path)
        LOGGER.info("Saved calibration to %s", path)

    @classmethod
    def load(cls, path: str) -> "Calibration":
        with open(path, "r", encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as exc:
                raise CalibrationFileError(f"cannot parse {path}: {exc}") from exc
        return cls.from_dict(data)

    @classmethod
    def load_or_identity(cls, path: Optional[str], logger: Optional[logging.Logger] = None) -> "Calibration":
        log = logger or LOGGER
        if path is None or not os.path.exists(path):
            log.warning("*** WARNING! *** No magnetometer calibration at %s. Using identity calibration.", path)
            return cls.identity()
        try:
            cal = cls.load(path)
        except (OSError, CalibrationFileError) as exc:
            log.warning("Cannot load magnetometer calibration %s (%s). Using identity calibration.", path, exc)
            return cls.identity()
        log.info("Loaded magnetometer calibration from %s", path)
        return cal


# -------------------------------------------------------------------- fit


def _rank(matrix: np.ndarray) -> int:
    singular = np.linalg.svd(matrix, compute_uv=False)
    if singular.size == 0 or singular[0] == 0.0:
        return 0
    return int(np.sum(singular > singular[0] * CalibrationConstants.RANK_RTOL))


def _as_points(samples: Iterable[Any]) -> np.ndarray:
    rows = [s.vector if isinstance(s, RawSample) else tuple(s)[: CalibrationConstants.DIMENSIONS] for s in samples]
    return np.array(rows, dtype=float).reshape(-1, CalibrationConstants.DIMENSIONS)


def fit_ellipsoid(points: np.ndarray) -> np.ndarray:
    """Least-squares coefficients [a, b, c, d, e, f] of the centred quadric

    ``a x^2 + b y^2 + c z^2 + 2d xy + 2e xz + 2f yz = 1``
    """
    x, y, z = points[:, 0], points[:, 1], points[:, 2]
    design = np.column_stack([x * x, y * y, z * z, 2 * x * y, 2 * x * z, 2 * y * z])
    if _rank(design) < CalibrationConstants.QUADRIC_TERMS:
        raise SingularFitError("design matrix is rank deficient")
    target = np.ones(len(points))
    normal = design.T @ design
    try:
        return np.linalg.solve(normal, design.T @ target)
    except np.linalg.LinAlgError as exc:
        raise SingularFitError(f"normal equations are singular: {exc}") from exc


def _align_axes(eigenvalues: np.ndarray, eigenvectors: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    # Order eigenpairs so column i is the axis closest to sensor axis i, pointing the same way.
    dims = CalibrationConstants.DIMENSIONS
    best = max(
        itertools.permutations(range(dims)),
        key=lambda perm: sum(abs(eigenvectors[i, perm[i]]) for i in range(dims)),
    )
    order = list(best)
    values = eigenvalues[order]
    vectors = eigenvectors[:, order].copy()
    for i in range(dims):
        if vectors[i, i] < 0.0:
            vectors[:, i] = -vectors[:, i]
    return values, vectors


def ellipsoid_parameters(coefficients: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Semi-axis lengths and the (proper) rotation matrix of the ellipsoid."""
    coefficients = np.asarray(coefficients, dtype=float).copy()
    # Drop round-off in the cross terms so an axis-aligned fit keeps the sensor axes.
    scale = np.max(np.abs(coefficients))
    coefficients[np.abs(coefficients) < scale * CalibrationConstants.COEFFICIENT_RTOL] = 0.0
    a, b, c, d, e, f = coefficients
    ellipsoid_matrix = np.array(
        [
            [a, d, e],
            [d, b, f],
            [e, f, c],
        ]
    )
    eigenvalues, eigenvectors = np.linalg.eigh(ellipsoid_matrix)
    if np.any(eigenvalues <= 0.0):
        raise SingularFitError(f"fitted quadric is not an ellipsoid (eigenvalues={eigenvalues})")
    eigenvalues, rotation = _align_axes(eigenvalues, eigenvectors)
    if np.linalg.det(rotation) < 0.0:
        # Mirror one axis back to get a proper rotation.
        rotation[:, -1] = -rotation[:, -1]
    semi_axes = 1.0 / np.sqrt(eigenvalues)
    return semi_axes, rotation


def fit(samples: Iterable[Any]) -> Calibration:
    """Fit a calibration to raw magnetometer samples (vectors or RawSample)."""
    points = _as_points(samples)
    if len(points) < CalibrationConstants.MIN_SAMPLES:
        raise SingularFitError(
            f"need at least {CalibrationConstants.MIN_SAMPLES} samples, got {len(points)}"
        )
    spread = points - points.mean(axis=0)
    if _rank(spread) < CalibrationConstants.DIMENSIONS:
        raise SingularFitError("samples are coplanar or collinear")

    offset = (points.min(axis=0) + points.max(axis=0)) / 2.0
    corrected = points - offset
    coefficients = fit_ellipsoid(corrected)
    semi_axes, rotation = ellipsoid_parameters(coefficients)
    LOGGER.info(
        "Fitted calibration from %d samples: offset=%s scaling=%s",
        len(points),
        np.array2string(offset, precision=2),
        np.array2string(semi_axes, precision=2),
    )
    return Calibration(offset=offset, scaling=semi_axes, rotation=rotation)


# ------------------------------------------------------------ raw capture


def read_measurements(path: str) -> list[tuple[float, float, float]]:
    points: list[tuple[float, float, float]] = []
    with open(path, "r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            fields = line.split(CalibrationConstants.CSV_SEP)
            if len(fields) < CalibrationConstants.DIMENSIONS:
                raise CalibrationFileError(f"{path}:{lineno}: expected x,y,z, got {line!r}")
            try:
                x, y, z = (float(v) for v in fields[: CalibrationConstants.DIMENSIONS])
            except ValueError as exc:
                raise CalibrationFileError(f"{path}:{lineno}: {exc}") from exc
            points.append((x, y, z))
    return points


def write_measurements(path: str, samples: Iterable[RawSample]) -> int:
    count = 0
    with open(path, "a", encoding="utf-8") as f:
        for sample in samples:
            f.write(sample.to_csv() + "\n")
            count += 1
    LOGGER.info("Wrote %d raw samples to %s", count, path)
    return count


def raw_capture_path(data_dir: str, stamp: int) -> str:
    return os.path.join(data_dir, CalibrationConstants.RAW_FILE_TEMPLATE.format(stamp=stamp))


def calibration_path(data_dir: str) -> str:
    return os.path.join(data_dir, CalibrationConstants.FILE_NAME)
