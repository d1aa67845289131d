"""Rigid 3D transforms.

A :class:`Pose` maps points from a source frame into a target frame:

    p_target = R(q) @ p_source + t

Camera poses returned by the PnP solver map world points into the camera
frame (OpenCV convention). Marker poses map marker-local points into the
world frame.
"""

from dataclasses import dataclass, field
from typing import Tuple

import numpy as np

from artrack.coords.rotations import (
    quat_conjugate,
    quat_multiply,
    quat_normalize,
    quat_to_rotation_matrix,
    quat_to_rotvec,
    rotate_vector,
    rotation_matrix_to_quat,
    rotvec_to_quat,
)


@dataclass(frozen=True, eq=False)
class Pose:
    """
    Rigid transform: unit quaternion + translation.

    Attributes:
        rotation: Unit quaternion [qw, qx, qy, qz].
        translation: Translation vector (3,).

    Examples:
        >>> a = Pose(np.array([1.0, 0, 0, 0]), np.array([1.0, 0, 0]))
        >>> (a @ a.inverse()).is_close(Pose.identity())
        True
    """

    rotation: np.ndarray = field(default_factory=lambda: np.array([1.0, 0.0, 0.0, 0.0]))
    translation: np.ndarray = field(default_factory=lambda: np.zeros(3))

    def __post_init__(self) -> None:
        """Validate and normalise the components; arrays are made read-only."""
        q = np.array(self.rotation, dtype=np.float64).reshape(-1)
        t = np.array(self.translation, dtype=np.float64).reshape(-1)
        if q.shape != (4,):
            raise ValueError(f"rotation must be a 4-element quaternion, got shape {q.shape}")
        if t.shape != (3,):
            raise ValueError(f"translation must have shape (3,), got {t.shape}")
        if not (np.all(np.isfinite(q)) and np.all(np.isfinite(t))):
            raise ValueError("Pose components must be finite")
        norm = np.linalg.norm(q)
        if norm < 1e-9:
            raise ValueError("rotation quaternion has zero norm")
        q = q / norm
        q.setflags(write=False)
        t.setflags(write=False)
        object.__setattr__(self, "rotation", q)
        object.__setattr__(self, "translation", t)

    @classmethod
    def identity(cls) -> "Pose":
        """Identity transform."""
        return cls(np.array([1.0, 0.0, 0.0, 0.0]), np.zeros(3))

    @classmethod
    def from_matrix(cls, T: np.ndarray) -> "Pose":
        """
        Create a pose from a 4x4 homogeneous transform.

        Raises:
            ValueError: If T is not 4x4.
        """
        T = np.asarray(T, dtype=np.float64)
        if T.shape != (4, 4):
            raise ValueError(f"Expected 4x4 matrix, got shape {T.shape}")
        return cls(rotation_matrix_to_quat(T[:3, :3]), T[:3, 3])

    @classmethod
    def from_rvec_tvec(cls, rvec: np.ndarray, tvec: np.ndarray) -> "Pose":
        """Create a pose from an OpenCV Rodrigues vector and translation."""
        rvec = np.asarray(rvec, dtype=np.float64).reshape(3)
        return cls(rotvec_to_quat(rvec), np.asarray(tvec, dtype=np.float64).reshape(3))

    @classmethod
    def from_vector(cls, v: np.ndarray) -> "Pose":
        """Create a pose from a 6-vector [rotvec, translation]."""
        v = np.asarray(v, dtype=np.float64).reshape(-1)
        if v.shape != (6,):
            raise ValueError(f"Expected 6-vector, got shape {v.shape}")
        return cls(rotvec_to_quat(v[:3]), v[3:])

    def to_vector(self) -> np.ndarray:
        """6-vector [rotvec, translation], the parametrisation used in refinement."""
        return np.concatenate([quat_to_rotvec(self.rotation), self.translation])

    def to_rvec_tvec(self) -> Tuple[np.ndarray, np.ndarray]:
        """OpenCV (rvec, tvec) pair, each shaped (3, 1)."""
        return (
            quat_to_rotvec(self.rotation).reshape(3, 1),
            self.translation.copy().reshape(3, 1),
        )

    @property
    def rotation_matrix(self) -> np.ndarray:
        return quat_to_rotation_matrix(self.rotation)

    def to_matrix(self) -> np.ndarray:
        """4x4 homogeneous transform."""
        T = np.eye(4)
        T[:3, :3] = self.rotation_matrix
        T[:3, 3] = self.translation
        return T

    def inverse(self) -> "Pose":
        """Inverse transform (target -> source)."""
        q_inv = quat_conjugate(self.rotation)
        return Pose(q_inv, -rotate_vector(q_inv, self.translation))

    def compose(self, other: "Pose") -> "Pose":
        """
        Chain two transforms: ``self.compose(other)`` applies ``other`` first.

        Args:
            other: Pose mapping frame A into this pose's source frame.

        Returns:
            Pose mapping frame A into this pose's target frame.
        """
        q = quat_normalize(quat_multiply(self.rotation, other.rotation))
        t = rotate_vector(self.rotation, other.translation) + self.translation
        return Pose(q, t)

    def __matmul__(self, other: "Pose") -> "Pose":
        if not isinstance(other, Pose):
            return NotImplemented
        return self.compose(other)

    def transform_points(self, points: np.ndarray) -> np.ndarray:
        """
        Map point(s) from the source frame to the target frame.

        Args:
            points: Point (3,) or points (N, 3).

        Returns:
            Transformed point(s), same shape as input.
        """
        points = np.asarray(points, dtype=np.float64)
        return rotate_vector(self.rotation, points) + self.translation

    def is_close(self, other: "Pose", atol: float = 1e-9) -> bool:
        """Compare two poses; q and -q are treated as the same rotation."""
        dq = min(
            np.max(np.abs(self.rotation - other.rotation)),
            np.max(np.abs(self.rotation + other.rotation)),
        )
        return bool(dq <= atol and np.allclose(self.translation, other.translation, atol=atol))

    def __repr__(self) -> str:
        q = np.array2string(self.rotation, precision=4)
        t = np.array2string(self.translation, precision=4)
        return f"Pose(rotation={q}, translation={t})"
