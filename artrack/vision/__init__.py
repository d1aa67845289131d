"""Camera model, fiducial detection and pose solving.

Main components:
    - CameraIntrinsics, MarkerDetection: Core data structures
    - project_points, project_normalized, normalize_pixels: Camera model
    - ArucoMarkerDetector, CircleGridDetector: OpenCV detectors
    - PnPSolver: Camera pose from 3D-2D correspondences
"""

from artrack.vision.camera import (
    is_in_image,
    marker_object_points,
    normalize_pixels,
    project_normalized,
    project_points,
)
from artrack.vision.detection import ArucoMarkerDetector, CircleGridDetector
from artrack.vision.pnp import PnPSolver, PoseSolution
from artrack.vision.types import CameraIntrinsics, MarkerDetection

__all__ = [
    "CameraIntrinsics",
    "MarkerDetection",
    "marker_object_points",
    "project_points",
    "project_normalized",
    "normalize_pixels",
    "is_in_image",
    "ArucoMarkerDetector",
    "CircleGridDetector",
    "PnPSolver",
    "PoseSolution",
]
