"""
Synthetic marker scenes.

A :class:`MarkerScene` holds a set of square markers with known
marker-to-world poses and renders the corner detections a camera at a given
world-to-camera pose would see. Together with :func:`orbit_trajectory` and
:class:`SceneDetector` it replaces images and the ArUco detector in tests and
demos, so the whole tracking pipeline runs without image assets.
"""

from typing import Dict, List, Optional, Sequence

import numpy as np

from artrack.coords.pose import Pose
from artrack.coords.rotations import rotation_matrix_to_quat
from artrack.vision.camera import is_in_image, marker_object_points, project_points
from artrack.vision.types import CameraIntrinsics, MarkerDetection


def look_at(
    eye: np.ndarray,
    target: np.ndarray,
    up: Sequence[float] = (0.0, 0.0, 1.0),
) -> Pose:
    """
    World-to-camera pose of a camera at ``eye`` looking at ``target``.

    The camera frame follows OpenCV: x right, y down, z forward.

    Raises:
        ValueError: If eye and target coincide or the viewing direction is
            parallel to ``up``.
    """
    eye = np.asarray(eye, dtype=np.float64)
    target = np.asarray(target, dtype=np.float64)
    up = np.asarray(up, dtype=np.float64)

    forward = target - eye
    distance = np.linalg.norm(forward)
    if distance < 1e-12:
        raise ValueError("eye and target must differ")
    forward = forward / distance

    right = np.cross(forward, up)
    if np.linalg.norm(right) < 1e-9:
        raise ValueError("Viewing direction is parallel to the up vector")
    right = right / np.linalg.norm(right)
    down = np.cross(forward, right)

    R_wc = np.column_stack([right, down, forward])
    R_cw = R_wc.T
    return Pose(rotation_matrix_to_quat(R_cw), -R_cw @ eye)


def orbit_trajectory(
    n: int,
    radius: float,
    height: float,
    target: Sequence[float] = (0.0, 0.0, 0.0),
    arc: float = 2.0 * np.pi,
    start_angle: float = 0.0,
) -> List[Pose]:
    """
    Camera poses on a horizontal circle, all looking at ``target``.

    Args:
        n: Number of poses.
        radius: Circle radius in meters (> 0).
        height: Height of the circle above ``target``.
        target: Point the camera looks at.
        arc: Angle swept by the trajectory in radians.
        start_angle: Angle of the first pose.

    Returns:
        List of n world-to-camera poses.
    """
    if n <= 0:
        raise ValueError(f"n must be positive, got {n}")
    if radius <= 0:
        raise ValueError(f"radius must be positive, got {radius}")

    target = np.asarray(target, dtype=np.float64)
    angles = start_angle + arc * np.arange(n) / n
    poses = []
    for theta in angles:
        eye = target + np.array([radius * np.cos(theta), radius * np.sin(theta), height])
        poses.append(look_at(eye, target))
    return poses


def grid_marker_poses(
    rows: int,
    cols: int,
    spacing: float,
    first_id: int = 0,
) -> Dict[int, Pose]:
    """
    Markers lying flat on the z=0 plane on a regular grid.

    The marker with id ``first_id`` sits at the origin with the identity
    pose, ids increase along x first.
    """
    poses = {}
    for r in range(rows):
        for c in range(cols):
            marker_id = first_id + r * cols + c
            poses[marker_id] = Pose(
                np.array([1.0, 0.0, 0.0, 0.0]), np.array([c * spacing, r * spacing, 0.0])
            )
    return poses


class MarkerScene:
    """
    Known marker layout rendered into synthetic detections.

    Attributes:
        intrinsics: Camera used for projection.
        marker_length: Side length of every marker.
        marker_poses: Marker-to-world pose per marker id.

    Example:
        >>> scene = MarkerScene(intrinsics, 0.1, grid_marker_poses(2, 2, 0.3))
        >>> detections = scene.detect(look_at([0.2, 0.1, 0.6], [0.15, 0.15, 0.0]))
    """

    def __init__(
        self,
        intrinsics: CameraIntrinsics,
        marker_length: float,
        marker_poses: Dict[int, Pose],
        margin: float = 2.0,
    ):
        self.intrinsics = intrinsics
        self.marker_length = marker_length
        self.marker_poses = dict(marker_poses)
        self.margin = margin
        self._object_points = marker_object_points(marker_length)

    def world_corners(self, marker_id: int) -> np.ndarray:
        return self.marker_poses[marker_id].transform_points(self._object_points)

    def project_marker(self, camera_pose: Pose, marker_id: int) -> Optional[np.ndarray]:
        """
        Pixel corners of one marker, or None if it is not visible.

        A marker is visible when the camera is on its front side, all
        corners are in front of the camera and inside the image.
        """
        marker_pose = self.marker_poses[marker_id]
        normal = marker_pose.rotation_matrix[:, 2]
        centre_world = camera_pose.inverse().translation
        if np.dot(normal, centre_world - marker_pose.translation) <= 0.0:
            return None

        corners_camera = camera_pose.transform_points(self.world_corners(marker_id))
        if np.any(corners_camera[:, 2] <= 1e-6):
            return None
        pixels = project_points(self.intrinsics, corners_camera)
        if not np.all(is_in_image(self.intrinsics, pixels, self.margin)):
            return None
        return pixels

    def detect(
        self,
        camera_pose: Pose,
        noise_std: float = 0.0,
        rng: Optional[np.random.Generator] = None,
    ) -> List[MarkerDetection]:
        """
        Detections of all visible markers, ordered by id.

        Args:
            camera_pose: World-to-camera pose.
            noise_std: Standard deviation of the pixel noise added to corners.
            rng: Random generator for the noise.
        """
        if noise_std > 0.0 and rng is None:
            rng = np.random.default_rng()

        detections = []
        for marker_id in sorted(self.marker_poses):
            pixels = self.project_marker(camera_pose, marker_id)
            if pixels is None:
                continue
            if noise_std > 0.0:
                pixels = pixels + rng.normal(0.0, noise_std, pixels.shape)
            detections.append(MarkerDetection(marker_id, pixels))
        return detections


class SceneDetector:
    """
    Detector adapter: treats frame indices as images.

    ``detector(i)`` returns the detections of ``scene`` seen from
    ``camera_poses[i]``, so a :class:`~artrack.tracking.MarkerTracker` can
    run over a synthetic trajectory unchanged.
    """

    def __init__(
        self,
        scene: MarkerScene,
        camera_poses: Sequence[Pose],
        noise_std: float = 0.0,
        seed: Optional[int] = None,
    ):
        self.scene = scene
        self.camera_poses = list(camera_poses)
        self.noise_std = noise_std
        self._rng = np.random.default_rng(seed)

    def __len__(self) -> int:
        return len(self.camera_poses)

    def __call__(self, frame_index: int) -> List[MarkerDetection]:
        return self.scene.detect(self.camera_poses[frame_index], self.noise_std, self._rng)
