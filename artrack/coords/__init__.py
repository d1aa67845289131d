"""Rotation representations and rigid transforms used by the tracking engine.

Quaternions are stored scalar-first as [qw, qx, qy, qz]. Several functions
accept arrays of jets so they can be used inside automatically
differentiated models.
"""

from artrack.coords.pose import Pose
from artrack.coords.rotations import (
    IDENTITY_QUAT,
    quat_align,
    quat_average,
    quat_conjugate,
    quat_inverse,
    quat_multiply,
    quat_norm,
    quat_normalize,
    quat_to_rotation_matrix,
    quat_to_rotvec,
    rotate_vector,
    rotation_matrix_to_quat,
    rotvec_to_quat,
)

__all__ = [
    "Pose",
    "IDENTITY_QUAT",
    "quat_multiply",
    "quat_conjugate",
    "quat_inverse",
    "quat_norm",
    "quat_normalize",
    "quat_align",
    "quat_to_rotation_matrix",
    "rotation_matrix_to_quat",
    "rotvec_to_quat",
    "quat_to_rotvec",
    "rotate_vector",
    "quat_average",
]
