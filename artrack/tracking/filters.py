"""
Orientation and position filters of the tracker.

Both filters are instances of :class:`AutodiffKalmanFilter`; their models
below are written only with jet-compatible arithmetic, so the Jacobians are
exact without being derived by hand.

EKFOrientation state (10):
    [qw, qx, qy, qz, ωx, ωy, ωz, αx, αy, αz]

    q' = q + (0, rr) ⊗ q̂ + w_q,   rr = ½ (ω dt + ½ α dt²)
    ω' = ω + α dt + w_ω
    α' = α + w_α

    where q̂ is q normalised if |q| > ε. The quaternion part of the state is
    not kept at unit norm; readers normalise it.

EKFPosition state (9):
    [px, py, pz, vx, vy, vz, ax, ay, az]

    p' = p + v dt + ½ a dt² + w_p
    v' = v + a dt + w_v
    a' = a + w_a
"""

from typing import Optional

import numpy as np

from artrack.coords.rotations import quat_align, quat_multiply, quat_normalize
from artrack.estimators.autodiff_kalman_filter import (
    AutodiffKalmanFilter,
    MeasurementSource,
)
from artrack.tracking.config import OrientationFilterConfig, PositionFilterConfig


def _vector(parts) -> np.ndarray:
    out = np.empty(len(parts), dtype=object)
    out[:] = parts
    return out


class _OrientationModel(MeasurementSource):
    """Rotational kinematics shared by the orientation sources."""

    def __init__(self, epsilon: float):
        self.epsilon = epsilon

    def predict(self, x, w, dt):
        q = x[0:4]
        omega = x[4:7]
        alpha = x[7:10]

        q_hat = quat_normalize(q, self.epsilon)
        rr = 0.5 * (omega * dt + alpha * (dt * dt / 2.0))
        increment = quat_multiply(_vector([0.0, rr[0], rr[1], rr[2]]), q_hat)

        x_next = np.concatenate([q + increment, omega + alpha * dt, alpha])
        return x_next + w

    def innovation(self, zm, z):
        # q and -q are the same rotation: compare in the predicted hemisphere
        zm = np.array(zm, dtype=float)
        zm[:4] = quat_align(zm[:4], z[:4])
        return zm - z


class MarkerOrientationSource(_OrientationModel):
    """Orientation quaternion measured from the marker map: z = q̂ + v."""

    noise_dim = 4

    def measure(self, x, v):
        return quat_normalize(x[0:4], self.epsilon) + v


class InertialOrientationSource(_OrientationModel):
    """Device attitude and rate: z = [q̂, ω] + v."""

    noise_dim = 7

    def measure(self, x, v):
        return np.concatenate([quat_normalize(x[0:4], self.epsilon), x[4:7]]) + v


class _PositionModel(MeasurementSource):
    """Constant-acceleration kinematics shared by the position sources."""

    def predict(self, x, w, dt):
        p = x[0:3]
        v = x[3:6]
        a = x[6:9]
        x_next = np.concatenate([p + v * dt + a * (0.5 * dt * dt), v + a * dt, a])
        return x_next + w


class MarkerPositionSource(_PositionModel):
    """Camera position from the marker map: z = p + v."""

    noise_dim = 3

    def measure(self, x, v):
        return x[0:3] + v


class InertialPositionSource(_PositionModel):
    """Gravity-compensated acceleration in the world frame: z = a + v."""

    noise_dim = 3

    def measure(self, x, v):
        return x[6:9] + v


class EKFOrientation(AutodiffKalmanFilter):
    """
    Filter fusing marker orientations with inertial attitude and rate.

    Example:
        >>> kf = EKFOrientation()
        >>> kf.update_marker(np.array([1.0, 0.0, 0.0, 0.0]), 1 / 30)
        >>> kf.get_orientation().shape
        (4,)
    """

    def __init__(self, config: Optional[OrientationFilterConfig] = None):
        self.config = config or OrientationFilterConfig()
        super().__init__(self.config.x0(), self.config.P0(), self.config.Q())
        self.marker_source = MarkerOrientationSource(self.config.epsilon)
        self.imu_source = InertialOrientationSource(self.config.epsilon)
        self._R_marker = self.config.R_marker()
        self._R_imu = self.config.R_imu()

    def update_marker(self, q: np.ndarray, dt: float) -> None:
        """
        Fuse an orientation measured from markers.

        Args:
            q: Quaternion [qw, qx, qy, qz].
            dt: Time since the previous update in seconds.
        """
        self.update(self.marker_source, dt, np.asarray(q, dtype=float), self._R_marker)

    def update_imu(self, q: np.ndarray, w: np.ndarray, dt: float) -> None:
        """
        Fuse an inertial attitude quaternion and angular rate.

        Args:
            q: Attitude quaternion [qw, qx, qy, qz].
            w: Angular velocity (rad/s), shape (3,).
            dt: Time since the previous update in seconds.
        """
        z = np.concatenate([np.asarray(q, dtype=float), np.asarray(w, dtype=float)])
        self.update(self.imu_source, dt, z, self._R_imu)

    def get_orientation(self) -> np.ndarray:
        """Current orientation as a unit quaternion (identity if the state norm is ~0)."""
        q = self.state[0:4]
        norm = np.linalg.norm(q)
        if norm < self.config.epsilon:
            return np.array([1.0, 0.0, 0.0, 0.0])
        return q / norm

    def get_angular_velocity(self) -> np.ndarray:
        return self.state[4:7].copy()


class EKFPosition(AutodiffKalmanFilter):
    """Filter fusing marker positions with inertial accelerations."""

    def __init__(self, config: Optional[PositionFilterConfig] = None):
        self.config = config or PositionFilterConfig()
        super().__init__(self.config.x0(), self.config.P0(), self.config.Q())
        self.marker_source = MarkerPositionSource()
        self.imu_source = InertialPositionSource()
        self._R_marker = self.config.R_marker()
        self._R_imu = self.config.R_imu()

    def update_marker(self, t: np.ndarray, dt: float) -> None:
        """Fuse a camera position (world frame) measured from markers."""
        self.update(self.marker_source, dt, np.asarray(t, dtype=float), self._R_marker)

    def update_imu(self, a: np.ndarray, dt: float) -> None:
        """Fuse a world-frame acceleration in m/s²."""
        self.update(self.imu_source, dt, np.asarray(a, dtype=float), self._R_imu)

    def get_position(self) -> np.ndarray:
        return self.state[0:3].copy()

    def get_velocity(self) -> np.ndarray:
        return self.state[3:6].copy()
