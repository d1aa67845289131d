"""
Synthetic inertial samples from a camera trajectory.

The forward model matches what :meth:`artrack.tracking.Tracker.track_sensor`
expects from a device:
    - attitude: the world-to-camera rotation q_cw
    - angular rate: ω with q_{k+1} = exp(½ ω dt) ⊗ q_k
    - linear acceleration: gravity-free, in the camera frame, in units of g

Accelerations and rates are obtained by finite differences, so the first
and last samples are less accurate than the interior ones.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from artrack.coords.pose import Pose
from artrack.coords.rotations import quat_inverse, quat_multiply, quat_to_rotvec, rotate_vector

STANDARD_GRAVITY = 9.80665


@dataclass
class InertialSamples:
    """
    Inertial time series, one row per camera pose.

    Attributes:
        attitude: Quaternions [qw, qx, qy, qz], shape (N, 4).
        angular_velocity: Rates in rad/s, shape (N, 3).
        acceleration: Linear accelerations in g, shape (N, 3).
        dt: Sample period in seconds.
    """

    attitude: np.ndarray
    angular_velocity: np.ndarray
    acceleration: np.ndarray
    dt: float

    def __len__(self) -> int:
        return self.attitude.shape[0]


def compute_angular_velocity(attitude: np.ndarray, dt: float) -> np.ndarray:
    """
    Angular rate between consecutive attitudes.

    Args:
        attitude: Quaternion series, shape (N, 4).
        dt: Sample period.

    Returns:
        Angular velocity, shape (N, 3). The last sample repeats the previous
        one (no next attitude to difference with).
    """
    attitude = np.asarray(attitude, dtype=np.float64)
    N = attitude.shape[0]
    omega = np.zeros((N, 3))
    for k in range(N - 1):
        delta = quat_multiply(attitude[k + 1], quat_inverse(attitude[k]))
        omega[k] = quat_to_rotvec(delta) / dt
    if N > 1:
        omega[-1] = omega[-2]
    return omega


def generate_inertial_samples(
    camera_poses: Sequence[Pose],
    dt: float,
    gravity: float = STANDARD_GRAVITY,
    accel_noise_std: float = 0.0,
    gyro_noise_std: float = 0.0,
    seed: Optional[int] = None,
) -> InertialSamples:
    """
    Generate inertial samples along a trajectory of world-to-camera poses.

    Args:
        camera_poses: Trajectory, at least 3 poses.
        dt: Sample period in seconds.
        gravity: Value of 1 g in m/s².
        accel_noise_std: White noise added to the accelerations (g).
        gyro_noise_std: White noise added to the rates (rad/s).
        seed: Seed of the noise generator.

    Returns:
        InertialSamples aligned with ``camera_poses``.

    Raises:
        ValueError: If fewer than 3 poses are given or dt is not positive.
    """
    if len(camera_poses) < 3:
        raise ValueError(f"Need at least 3 poses, got {len(camera_poses)}")
    if dt <= 0:
        raise ValueError(f"dt must be positive, got {dt}")

    attitude = np.array([p.rotation for p in camera_poses])
    centres = np.array([p.inverse().translation for p in camera_poses])

    velocity = np.gradient(centres, dt, axis=0)
    accel_world = np.gradient(velocity, dt, axis=0)
    accel_camera = np.array(
        [rotate_vector(q, a) for q, a in zip(attitude, accel_world)]
    ) / gravity

    omega = compute_angular_velocity(attitude, dt)

    rng = np.random.default_rng(seed)
    if accel_noise_std > 0.0:
        accel_camera = accel_camera + rng.normal(0.0, accel_noise_std, accel_camera.shape)
    if gyro_noise_std > 0.0:
        omega = omega + rng.normal(0.0, gyro_noise_std, omega.shape)

    return InertialSamples(attitude, omega, accel_camera, dt)
