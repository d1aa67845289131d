"""
Evaluation metrics for camera tracking.

Position errors, RMSE and error statistics for trajectories, plus angular
errors between orientation estimates.
"""

from typing import Dict, Optional, Sequence, Union

import numpy as np

from artrack.coords.pose import Pose


def compute_position_errors(truth: np.ndarray, estimated: np.ndarray) -> np.ndarray:
    """
    Compute position errors between true and estimated positions.

    Args:
        truth: True positions, shape (N, 3)
        estimated: Estimated positions, shape (N, 3)

    Returns:
        errors: Position error vectors, shape (N, 3)

    Raises:
        ValueError: If inputs have incompatible shapes
    """
    truth = np.asarray(truth)
    estimated = np.asarray(estimated)

    if truth.shape != estimated.shape:
        raise ValueError(f"Shape mismatch: truth {truth.shape} vs estimated {estimated.shape}")

    return estimated - truth


def compute_rmse(errors: np.ndarray, axis: Optional[int] = None) -> Union[float, np.ndarray]:
    """
    Compute Root Mean Square Error (RMSE).

    Args:
        errors: Error vectors, shape (N, d) or (N,)
        axis: None for a scalar over all entries, 0 per dimension, 1 per sample
    """
    errors = np.asarray(errors)
    if axis is None:
        return float(np.sqrt(np.mean(errors**2)))
    return np.sqrt(np.mean(errors**2, axis=axis))


def compute_error_stats(errors: np.ndarray) -> Dict[str, float]:
    """
    Compute error statistics of error magnitudes.

    Returns:
        stats: Dictionary with keys 'mean', 'median', 'std', 'rmse', 'p90', 'max'
    """
    errors = np.asarray(errors)

    if errors.ndim > 1:
        magnitudes = np.linalg.norm(errors, axis=1)
    else:
        magnitudes = np.abs(errors)

    return {
        "mean": float(np.mean(magnitudes)),
        "median": float(np.median(magnitudes)),
        "std": float(np.std(magnitudes)),
        "rmse": float(np.sqrt(np.mean(magnitudes**2))),
        "p90": float(np.percentile(magnitudes, 90)),
        "max": float(np.max(magnitudes)),
    }


def compute_rotation_errors(truth: np.ndarray, estimated: np.ndarray) -> np.ndarray:
    """
    Angle of the rotation between true and estimated orientations.

    Args:
        truth: Quaternions [qw, qx, qy, qz], shape (N, 4)
        estimated: Quaternions, shape (N, 4)

    Returns:
        errors: Angles in radians, shape (N,), in [0, pi]
    """
    truth = np.asarray(truth, dtype=np.float64)
    estimated = np.asarray(estimated, dtype=np.float64)
    if truth.shape != estimated.shape or truth.ndim != 2 or truth.shape[1] != 4:
        raise ValueError(f"Expected matching (N, 4) arrays, got {truth.shape} and {estimated.shape}")

    truth = truth / np.linalg.norm(truth, axis=1, keepdims=True)
    estimated = estimated / np.linalg.norm(estimated, axis=1, keepdims=True)
    dots = np.abs(np.sum(truth * estimated, axis=1))
    return 2.0 * np.arccos(np.clip(dots, 0.0, 1.0))


def compute_marker_map_errors(truth: Dict[int, Pose], estimated: Dict[int, Pose]) -> Dict[int, float]:
    """Translation error of every marker present in both maps."""
    common = sorted(set(truth) & set(estimated))
    return {
        marker_id: float(np.linalg.norm(estimated[marker_id].translation - truth[marker_id].translation))
        for marker_id in common
    }


def camera_centres(poses: Sequence[Pose]) -> np.ndarray:
    """Camera centres in the world frame of world-to-camera poses, shape (N, 3)."""
    return np.array([p.inverse().translation for p in poses])
