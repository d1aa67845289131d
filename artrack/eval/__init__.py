"""
Evaluation module.

Modules:
    metrics: Position and rotation error metrics
"""

from .metrics import (
    camera_centres,
    compute_error_stats,
    compute_marker_map_errors,
    compute_position_errors,
    compute_rmse,
    compute_rotation_errors,
)

__all__ = [
    "camera_centres",
    "compute_position_errors",
    "compute_rmse",
    "compute_error_stats",
    "compute_rotation_errors",
    "compute_marker_map_errors",
]
