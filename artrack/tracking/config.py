"""Configuration of the tracking engine.

All tuning constants live in frozen dataclasses validated on construction.
A complete configuration can be loaded from a JSON file whose top-level keys
mirror the fields of :class:`TrackerConfig`:

    {
        "relative_pose_window": 50,
        "orientation": {"marker_noise": 0.01},
        "marker_map": {"marker_length": 0.046},
        "refinement": {"window": 20}
    }

Omitted fields keep their defaults.
"""

import json
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Tuple, Union

import numpy as np


def _check_positive(name: str, value: float) -> None:
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")


def _check_vector(name: str, value: Tuple[float, ...], size: int, positive: bool) -> None:
    if len(value) != size:
        raise ValueError(f"{name} must have {size} entries, got {len(value)}")
    if positive and any(v <= 0 for v in value):
        raise ValueError(f"{name} entries must be positive, got {value}")


@dataclass(frozen=True)
class OrientationFilterConfig:
    """
    Tuning of the 10-state orientation filter.

    State: quaternion [qw, qx, qy, qz], angular velocity (3), angular
    acceleration (3). Noise levels are variances.

    Attributes:
        initial_state: Initial state vector x0.
        initial_variance: Diagonal of the initial covariance P0.
        process_noise: Diagonal of the process noise Q.
        marker_noise: Variance of each marker quaternion component.
        imu_noise: Variance of each inertial quaternion / rate component.
        epsilon: Quaternions are normalised only above this norm.
    """

    initial_state: Tuple[float, ...] = (0.0, 0.0, 1.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0)
    initial_variance: float = 10.0
    process_noise: Tuple[float, ...] = (5e-2,) * 4 + (1e-4,) * 6
    marker_noise: float = 1e-2
    imu_noise: float = 1e-2
    epsilon: float = 1e-6

    def __post_init__(self) -> None:
        object.__setattr__(self, "initial_state", tuple(float(v) for v in self.initial_state))
        object.__setattr__(self, "process_noise", tuple(float(v) for v in self.process_noise))
        _check_vector("initial_state", self.initial_state, 10, positive=False)
        _check_vector("process_noise", self.process_noise, 10, positive=True)
        _check_positive("initial_variance", self.initial_variance)
        _check_positive("marker_noise", self.marker_noise)
        _check_positive("imu_noise", self.imu_noise)
        _check_positive("epsilon", self.epsilon)

    def x0(self) -> np.ndarray:
        return np.array(self.initial_state)

    def P0(self) -> np.ndarray:
        return self.initial_variance * np.eye(10)

    def Q(self) -> np.ndarray:
        return np.diag(self.process_noise)

    def R_marker(self) -> np.ndarray:
        return self.marker_noise * np.eye(4)

    def R_imu(self) -> np.ndarray:
        return self.imu_noise * np.eye(7)


@dataclass(frozen=True)
class PositionFilterConfig:
    """
    Tuning of the 9-state constant-acceleration position filter.

    State: position (3), velocity (3), acceleration (3).
    """

    initial_state: Tuple[float, ...] = (0.0,) * 9
    initial_variance: float = 10.0
    process_noise: Tuple[float, ...] = (5e-2,) * 3 + (2e-1,) * 3 + (5e-2,) * 3
    marker_noise: float = 5e-2
    imu_noise: float = 5e-2

    def __post_init__(self) -> None:
        object.__setattr__(self, "initial_state", tuple(float(v) for v in self.initial_state))
        object.__setattr__(self, "process_noise", tuple(float(v) for v in self.process_noise))
        _check_vector("initial_state", self.initial_state, 9, positive=False)
        _check_vector("process_noise", self.process_noise, 9, positive=True)
        _check_positive("initial_variance", self.initial_variance)
        _check_positive("marker_noise", self.marker_noise)
        _check_positive("imu_noise", self.imu_noise)

    def x0(self) -> np.ndarray:
        return np.array(self.initial_state)

    def P0(self) -> np.ndarray:
        return self.initial_variance * np.eye(9)

    def Q(self) -> np.ndarray:
        return np.diag(self.process_noise)

    def R_marker(self) -> np.ndarray:
        return self.marker_noise * np.eye(3)

    def R_imu(self) -> np.ndarray:
        return self.imu_noise * np.eye(3)


@dataclass(frozen=True)
class MarkerMapConfig:
    """
    Marker map layout.

    Attributes:
        capacity: Number of marker ids the map can hold, ids are [0, capacity).
        marker_length: Printed side length of every marker in meters.
        dictionary: Name of the OpenCV ArUco dictionary.
    """

    capacity: int = 200
    marker_length: float = 0.046
    dictionary: str = "DICT_6X6_250"

    def __post_init__(self) -> None:
        if self.capacity <= 0:
            raise ValueError(f"capacity must be positive, got {self.capacity}")
        _check_positive("marker_length", self.marker_length)
        if not self.dictionary.startswith("DICT_"):
            raise ValueError(f"dictionary must name a cv2.aruco dictionary, got {self.dictionary}")


@dataclass(frozen=True)
class RefinementConfig:
    """
    Background refinement of the marker map.

    Attributes:
        enabled: Start the refinement worker with the marker tracker.
        window: Number of most recent observations optimised per pass.
        max_iterations: Levenberg-Marquardt iteration budget.
        tolerance: Convergence tolerance on the error change.
        pixel_sigma: Corner detection noise in pixels.
        min_observations: Observations required before a pass runs.
    """

    enabled: bool = True
    window: int = 20
    max_iterations: int = 30
    tolerance: float = 1e-3
    pixel_sigma: float = 1.0
    min_observations: int = 2

    def __post_init__(self) -> None:
        if self.window <= 0:
            raise ValueError(f"window must be positive, got {self.window}")
        if self.max_iterations <= 0:
            raise ValueError(f"max_iterations must be positive, got {self.max_iterations}")
        if self.min_observations <= 0:
            raise ValueError(f"min_observations must be positive, got {self.min_observations}")
        _check_positive("tolerance", self.tolerance)
        _check_positive("pixel_sigma", self.pixel_sigma)


@dataclass(frozen=True)
class CalibrationPatternConfig:
    """Asymmetric circle grid: ``rows`` x ``cols`` circles, ``spacing`` meters apart."""

    rows: int = 11
    cols: int = 4
    spacing: float = 0.04

    def __post_init__(self) -> None:
        if self.rows <= 0 or self.cols <= 0:
            raise ValueError(f"Grid must have positive size, got {self.rows}x{self.cols}")
        _check_positive("spacing", self.spacing)


@dataclass(frozen=True)
class TrackerConfig:
    """
    Top-level configuration of the tracker.

    Attributes:
        relative_pose_window: Capacity of the relative-pose history.
        gravity: Standard gravity in m/s², device accelerations are in g.
        robust_pnp: Use RANSAC for multi-marker camera pose solves.
    """

    relative_pose_window: int = 50
    gravity: float = 9.80665
    robust_pnp: bool = True
    orientation: OrientationFilterConfig = field(default_factory=OrientationFilterConfig)
    position: PositionFilterConfig = field(default_factory=PositionFilterConfig)
    marker_map: MarkerMapConfig = field(default_factory=MarkerMapConfig)
    refinement: RefinementConfig = field(default_factory=RefinementConfig)
    calibration_pattern: CalibrationPatternConfig = field(default_factory=CalibrationPatternConfig)

    def __post_init__(self) -> None:
        if self.relative_pose_window <= 0:
            raise ValueError(
                f"relative_pose_window must be positive, got {self.relative_pose_window}"
            )
        _check_positive("gravity", self.gravity)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TrackerConfig":
        """
        Build a configuration from nested dictionaries.

        Raises:
            ValueError: On unknown keys or invalid values.
            TypeError: If a section is not a mapping.
        """
        sections = {
            "orientation": OrientationFilterConfig,
            "position": PositionFilterConfig,
            "marker_map": MarkerMapConfig,
            "refinement": RefinementConfig,
            "calibration_pattern": CalibrationPatternConfig,
        }
        _check_keys(cls, data)
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            if key in sections:
                if not isinstance(value, dict):
                    raise TypeError(f"Section '{key}' must be a mapping, got {type(value)}")
                _check_keys(sections[key], value)
                kwargs[key] = sections[key](**value)
            else:
                kwargs[key] = value
        return cls(**kwargs)


def _check_keys(config_cls, data: Dict[str, Any]) -> None:
    known = {f.name for f in fields(config_cls)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown {config_cls.__name__} keys: {sorted(unknown)}")


def load_tracker_config(path: Union[str, Path]) -> TrackerConfig:
    """
    Load a tracker configuration from a JSON file.

    Args:
        path: Path to the JSON file.

    Returns:
        Validated TrackerConfig.
    """
    with open(path, "r") as f:
        data = json.load(f)
    return TrackerConfig.from_dict(data)
