"""Value types of the tracking engine.

Key types:
    - Pose: Rigid transform (re-exported from artrack.coords)
    - MarkerDetection: Marker id + four pixel corners (re-exported)
    - Marker: Entry of the marker map
    - PoseObservation: Camera pose + detections of one tracked frame
    - TrackingStatus, TrackingResult: Outcome of processing one frame
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

import numpy as np

from artrack.coords.pose import Pose
from artrack.vision.types import MarkerDetection

__all__ = [
    "Pose",
    "MarkerDetection",
    "MarkerState",
    "Marker",
    "PoseObservation",
    "TrackingStatus",
    "TrackingResult",
]


class MarkerState(Enum):
    """Lifecycle of a marker map entry."""

    UNSEEN = "unseen"
    BOOTSTRAPPED = "bootstrapped"
    REFINED = "refined"


@dataclass
class Marker:
    """
    Entry of the marker map.

    Attributes:
        marker_id: Dictionary id.
        pose: Marker-to-world pose.
        state: Lifecycle state.
        estimates: Raw marker-to-world estimates awaiting consolidation.
    """

    marker_id: int
    pose: Pose = field(default_factory=Pose.identity)
    state: MarkerState = MarkerState.UNSEEN
    estimates: list = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.state is not MarkerState.UNSEEN

    def copy(self) -> "Marker":
        return Marker(self.marker_id, self.pose, self.state, list(self.estimates))


@dataclass(frozen=True)
class PoseObservation:
    """
    Camera pose estimate at one frame with the markers observed in it.

    Attributes:
        frame_index: Index of the frame in the session.
        camera_pose: World-to-camera pose.
        detections: Markers observed in the frame.
    """

    frame_index: int
    camera_pose: Pose
    detections: Tuple[MarkerDetection, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "detections", tuple(self.detections))

    def with_pose(self, camera_pose: Pose) -> "PoseObservation":
        return PoseObservation(self.frame_index, camera_pose, self.detections)


class TrackingStatus(Enum):
    """Outcome of processing one frame."""

    TRACKED = "tracked"
    NO_DETECTION = "no_detection"
    NO_ANCHOR = "no_anchor"
    SOLVE_FAILED = "solve_failed"
    BOOTSTRAP = "bootstrap"
    NO_PATTERN = "no_pattern"


@dataclass(frozen=True, eq=False)
class TrackingResult:
    """
    Result of a marker-tracking strategy for one frame.

    Attributes:
        tracked: True if a camera pose was obtained.
        orientation: Camera orientation quaternion (world-to-camera).
        position: Camera centre in world coordinates.
        status: Reason for the outcome.
        camera_pose: Full world-to-camera pose when tracked.
    """

    tracked: bool
    orientation: np.ndarray
    position: np.ndarray
    status: TrackingStatus
    camera_pose: Optional[Pose] = None

    @classmethod
    def failure(cls, status: TrackingStatus) -> "TrackingResult":
        return cls(False, np.array([1.0, 0.0, 0.0, 0.0]), np.zeros(3), status)

    @classmethod
    def from_camera_pose(cls, camera_pose: Pose) -> "TrackingResult":
        """Successful result for a world-to-camera pose."""
        return cls(
            True,
            camera_pose.rotation.copy(),
            camera_pose.inverse().translation.copy(),
            TrackingStatus.TRACKED,
            camera_pose,
        )
