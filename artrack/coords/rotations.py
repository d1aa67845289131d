"""Quaternion and rotation utilities.

This module provides the rotation algebra shared by the filters, the marker
map and the bundle adjuster:
- Quaternion products, inverses and normalisation
- Conversions between quaternions, rotation matrices and rotation vectors
- Quaternion averaging over a window of orientations

Conventions:
- Quaternions: [qw, qx, qy, qz] where qw is the scalar part
- Rotation vectors: axis * angle, angle in radians (OpenCV Rodrigues)
- Rotation matrices: 3x3 numpy arrays, v_target = R @ v_source

Functions marked "jet-friendly" accept object arrays of
:class:`artrack.autodiff.Jet` as well as float arrays, so they can appear
inside models whose Jacobians are computed automatically.
"""

import warnings
from typing import Optional, Sequence

import numpy as np
from numpy.typing import NDArray
from scipy.linalg import eigh

from artrack.autodiff import Jet, cos, sin, sqrt

IDENTITY_QUAT = np.array([1.0, 0.0, 0.0, 0.0])


def _pack(parts) -> np.ndarray:
    if any(isinstance(p, Jet) for p in parts):
        out = np.empty(len(parts), dtype=object)
        out[:] = parts
        return out
    return np.array(parts, dtype=np.float64)


def _check_quat(q) -> np.ndarray:
    q = np.asarray(q)
    if q.dtype != object:
        q = q.astype(np.float64)
    if q.shape != (4,):
        raise ValueError(f"Expected 4-element quaternion, got shape {q.shape}")
    return q


def quat_multiply(p, q) -> np.ndarray:
    """Hamilton product p ⊗ q (jet-friendly).

    Args:
        p: Left quaternion [pw, px, py, pz].
        q: Right quaternion [qw, qx, qy, qz].

    Returns:
        Product quaternion. Applying the result rotates by q first, then p.
    """
    pw, px, py, pz = _check_quat(p)
    qw, qx, qy, qz = _check_quat(q)
    return _pack(
        [
            pw * qw - px * qx - py * qy - pz * qz,
            pw * qx + px * qw + py * qz - pz * qy,
            pw * qy - px * qz + py * qw + pz * qx,
            pw * qz + px * qy - py * qx + pz * qw,
        ]
    )


def quat_conjugate(q) -> np.ndarray:
    """Quaternion conjugate [qw, -qx, -qy, -qz] (jet-friendly)."""
    qw, qx, qy, qz = _check_quat(q)
    return _pack([qw, -qx, -qy, -qz])


def quat_inverse(q: NDArray[np.float64]) -> NDArray[np.float64]:
    """Inverse of a (not necessarily unit) quaternion.

    Raises:
        ValueError: If the quaternion has zero norm.
    """
    q = np.asarray(q, dtype=np.float64)
    n2 = float(np.dot(q, q))
    if n2 <= 0.0:
        raise ValueError("Cannot invert a zero quaternion")
    return quat_conjugate(q) / n2


def quat_norm(q):
    """Euclidean norm of a quaternion (jet-friendly)."""
    qw, qx, qy, qz = _check_quat(q)
    return sqrt(qw * qw + qx * qx + qy * qy + qz * qz)


def quat_normalize(q, eps: float = 1e-6):
    """Normalise a quaternion if its norm exceeds ``eps`` (jet-friendly).

    Below ``eps`` the quaternion is returned unchanged, which keeps the
    division well defined for freshly initialised filter states.
    """
    q = _check_quat(q)
    qw, qx, qy, qz = q
    norm2 = qw * qw + qx * qx + qy * qy + qz * qz
    if norm2 > eps * eps:
        return q / sqrt(norm2)
    return q


def quat_align(q: NDArray[np.float64], reference: NDArray[np.float64]) -> NDArray[np.float64]:
    """Flip ``q`` into the hemisphere of ``reference`` (q and -q are the same rotation)."""
    q = np.asarray(q, dtype=np.float64)
    if np.dot(q, np.asarray(reference, dtype=np.float64)) < 0.0:
        return -q
    return q


def quat_to_rotation_matrix(q) -> np.ndarray:
    """Convert a unit quaternion to a rotation matrix (jet-friendly).

    Args:
        q: Unit quaternion [qw, qx, qy, qz].

    Returns:
        3x3 rotation matrix R such that v_target = R @ v_source. An object
        array when ``q`` holds jets.

    Raises:
        ValueError: If q is not a 4-element array.
    """
    qw, qx, qy, qz = _check_quat(q)

    rows = [
        [
            1.0 - 2.0 * (qy * qy + qz * qz),
            2.0 * (qx * qy - qw * qz),
            2.0 * (qx * qz + qw * qy),
        ],
        [
            2.0 * (qx * qy + qw * qz),
            1.0 - 2.0 * (qx * qx + qz * qz),
            2.0 * (qy * qz - qw * qx),
        ],
        [
            2.0 * (qx * qz - qw * qy),
            2.0 * (qy * qz + qw * qx),
            1.0 - 2.0 * (qx * qx + qy * qy),
        ],
    ]
    return np.stack([_pack(row) for row in rows])


def rotation_matrix_to_quat(R: NDArray[np.float64]) -> NDArray[np.float64]:
    """Convert rotation matrix to quaternion.

    Extracts a unit quaternion from a 3x3 rotation matrix using
    Shepperd's method for numerical stability.

    Raises:
        ValueError: If R is not a 3x3 matrix.
    """
    R = np.asarray(R, dtype=np.float64)
    if R.shape != (3, 3):
        raise ValueError(f"Expected 3x3 matrix, got shape {R.shape}")

    # Shepperd's method: branch on the largest diagonal term
    trace = np.trace(R)

    if trace > 0:
        s = 0.5 / np.sqrt(trace + 1.0)
        qw = 0.25 / s
        qx = (R[2, 1] - R[1, 2]) * s
        qy = (R[0, 2] - R[2, 0]) * s
        qz = (R[1, 0] - R[0, 1]) * s
    elif R[0, 0] > R[1, 1] and R[0, 0] > R[2, 2]:
        s = 2.0 * np.sqrt(1.0 + R[0, 0] - R[1, 1] - R[2, 2])
        qw = (R[2, 1] - R[1, 2]) / s
        qx = 0.25 * s
        qy = (R[0, 1] + R[1, 0]) / s
        qz = (R[0, 2] + R[2, 0]) / s
    elif R[1, 1] > R[2, 2]:
        s = 2.0 * np.sqrt(1.0 + R[1, 1] - R[0, 0] - R[2, 2])
        qw = (R[0, 2] - R[2, 0]) / s
        qx = (R[0, 1] + R[1, 0]) / s
        qy = 0.25 * s
        qz = (R[1, 2] + R[2, 1]) / s
    else:
        s = 2.0 * np.sqrt(1.0 + R[2, 2] - R[0, 0] - R[1, 1])
        qw = (R[1, 0] - R[0, 1]) / s
        qx = (R[0, 2] + R[2, 0]) / s
        qy = (R[1, 2] + R[2, 1]) / s
        qz = 0.25 * s

    q = np.array([qw, qx, qy, qz], dtype=np.float64)
    return q / np.linalg.norm(q)


def rotvec_to_quat(rvec) -> np.ndarray:
    """Convert a rotation vector (axis * angle) to a unit quaternion (jet-friendly).

    Near zero angle the half-angle terms are replaced by their Taylor series
    so that derivatives stay finite at the identity.

    Raises:
        ValueError: If rvec is not a 3-element array.
    """
    rvec = np.asarray(rvec)
    if rvec.dtype != object:
        rvec = rvec.astype(np.float64)
    if rvec.shape != (3,):
        raise ValueError(f"Expected 3-element rotation vector, got shape {rvec.shape}")

    rx, ry, rz = rvec
    theta2 = rx * rx + ry * ry + rz * rz
    if theta2 > 1e-10:
        theta = sqrt(theta2)
        half = 0.5 * theta
        w = cos(half)
        k = sin(half) / theta
    else:
        w = 1.0 - theta2 / 8.0
        k = 0.5 - theta2 / 48.0
    return _pack([w, k * rx, k * ry, k * rz])


def quat_to_rotvec(q: NDArray[np.float64]) -> NDArray[np.float64]:
    """Convert a quaternion to the shortest equivalent rotation vector."""
    q = np.asarray(quat_normalize(np.asarray(q, dtype=np.float64)), dtype=np.float64)
    if q[0] < 0.0:
        q = -q
    v = q[1:]
    s = np.linalg.norm(v)
    if s < 1e-12:
        return 2.0 * v
    angle = 2.0 * np.arctan2(s, q[0])
    return v / s * angle


def rotate_vector(q, v) -> np.ndarray:
    """Rotate 3-vector(s) ``v`` by unit quaternion ``q``.

    Args:
        q: Unit quaternion.
        v: Vector (3,) or stack of vectors (N, 3).

    Returns:
        Rotated vector(s), same shape as ``v``.
    """
    R = quat_to_rotation_matrix(q)
    v = np.asarray(v)
    if v.ndim == 1:
        return R @ v
    return v @ R.T


def quat_average(
    quats: Sequence[NDArray[np.float64]],
    weights: Optional[Sequence[float]] = None,
) -> NDArray[np.float64]:
    """Average a set of unit quaternions.

    Minimises the Frobenius distance between the rotation matrices: the
    average is the eigenvector belonging to the largest eigenvalue of
    M = sum_i w_i q_i q_i^T. The result does not depend on the sign of the
    inputs and is returned with qw >= 0.

    Args:
        quats: Quaternions, each [qw, qx, qy, qz].
        weights: Optional non-negative weights (default: uniform).

    Returns:
        Unit quaternion average.

    Raises:
        ValueError: If no quaternions are given or the shapes are wrong.
    """
    Q = np.asarray(quats, dtype=np.float64)
    if Q.ndim != 2 or Q.shape[1] != 4 or Q.shape[0] == 0:
        raise ValueError(f"Expected (N, 4) quaternions with N > 0, got shape {Q.shape}")

    w = np.ones(Q.shape[0]) if weights is None else np.asarray(weights, dtype=np.float64)
    if w.shape != (Q.shape[0],):
        raise ValueError(f"Expected {Q.shape[0]} weights, got shape {w.shape}")

    M = (Q * w[:, None]).T @ Q
    eigvals, eigvecs = eigh(M)
    if eigvals[-1] - eigvals[-2] < 1e-12 * max(eigvals[-1], 1.0):
        warnings.warn(
            "Quaternion average is ambiguous: leading eigenvalue is not unique",
            RuntimeWarning,
        )
    q = eigvecs[:, -1]
    if q[0] < 0.0:
        q = -q
    return q / np.linalg.norm(q)
