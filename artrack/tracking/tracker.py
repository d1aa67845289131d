"""
Tracker: fuses a marker-tracking strategy with inertial measurements.

Camera frames go through the strategy, which yields an instantaneous camera
orientation and position. The marker map and the inertial sensor have
different reference frames; their misalignment is estimated as the average
of the relative rotations q_marker⁻¹ ⊗ r over the most recent frames (r
being the filter orientation before the frame), and the marker orientation
is corrected by it before it reaches the orientation filter.

Inertial samples go directly to both filters. Pose queries read the filter
state without locking: the filters replace their state arrays on update
instead of modifying them.
"""

import logging
import threading
from collections import deque
from typing import Optional

import numpy as np

from artrack.coords.rotations import quat_average, quat_inverse, quat_multiply, rotate_vector
from artrack.tracking.config import TrackerConfig
from artrack.tracking.filters import EKFOrientation, EKFPosition
from artrack.tracking.strategies import TrackingStrategy
from artrack.tracking.types import TrackingStatus

logger = logging.getLogger(__name__)


class RelativePoseHistory:
    """Bounded window of relative rotations; the oldest entry is dropped when full."""

    def __init__(self, capacity: int = 50):
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._quats: deque = deque(maxlen=capacity)

    def __len__(self) -> int:
        return len(self._quats)

    def append(self, q: np.ndarray) -> None:
        self._quats.append(np.asarray(q, dtype=float))

    def average(self) -> np.ndarray:
        """
        Quaternion average of the window.

        Raises:
            ValueError: If the history is empty.
        """
        return quat_average(list(self._quats))

    def clear(self) -> None:
        self._quats.clear()


class Tracker:
    """
    Camera pose tracker combining markers and inertial data.

    Attributes:
        strategy: Frame-to-pose strategy.
        orientation_filter: 10-state orientation filter.
        position_filter: 9-state position filter.
        relative_poses: Window of marker/inertial relative rotations.
        last_status: Status of the most recent frame, None before any frame.

    Example:
        >>> with Tracker(MarkerTracker(intrinsics)) as tracker:
        ...     tracker.track_sensor(q, a, w, 0.01)
        ...     tracker.track_frame(image, 1 / 30)
        ...     position = tracker.get_position()
    """

    def __init__(self, strategy: TrackingStrategy, config: Optional[TrackerConfig] = None):
        self.config = config or TrackerConfig()
        self.strategy = strategy
        self.orientation_filter = EKFOrientation(self.config.orientation)
        self.position_filter = EKFPosition(self.config.position)
        self.relative_poses = RelativePoseHistory(self.config.relative_pose_window)
        self.last_status: Optional[TrackingStatus] = None
        self._lock = threading.Lock()
        self._closed = False

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("Tracker has been closed")

    def track_frame(self, frame, dt: float) -> bool:
        """
        Process one camera frame.

        Args:
            frame: Image passed to the strategy.
            dt: Time since the previous frame in seconds.

        Returns:
            True if the frame was tracked and fused. On failure the filters
            are left untouched.

        Raises:
            RuntimeError: If the tracker was closed.
        """
        self._check_open()
        r = self.orientation_filter.get_orientation()

        result = self.strategy.track_frame_impl(frame, dt)
        self.last_status = result.status
        if not result.tracked:
            logger.debug("Frame not tracked: %s", result.status.value)
            return False

        with self._lock:
            self.relative_poses.append(quat_multiply(quat_inverse(result.orientation), r))
            relative = self.relative_poses.average()
            self.orientation_filter.update_marker(quat_multiply(result.orientation, relative), dt)
            self.position_filter.update_marker(result.position, dt)
        return True

    def track_sensor(self, q: np.ndarray, a: np.ndarray, w: np.ndarray, dt: float) -> bool:
        """
        Process one inertial sample.

        Args:
            q: Device attitude quaternion [qw, qx, qy, qz].
            a: Linear acceleration in g, device frame.
            w: Angular velocity in rad/s.
            dt: Time since the previous sample in seconds.

        Returns:
            Always True.

        Raises:
            RuntimeError: If the tracker was closed.
        """
        self._check_open()
        with self._lock:
            r = self.orientation_filter.get_orientation()
            self.orientation_filter.update_imu(q, w, dt)
            acceleration = rotate_vector(quat_inverse(r), np.asarray(a, dtype=float))
            self.position_filter.update_imu(acceleration * self.config.gravity, dt)
        return True

    def get_position(self) -> np.ndarray:
        """Current position estimate; never blocks."""
        return self.position_filter.get_position()

    def get_orientation(self) -> np.ndarray:
        """Current orientation estimate as a unit quaternion; never blocks."""
        return self.orientation_filter.get_orientation()

    def close(self) -> None:
        """Stop the strategy (and its refinement worker). Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        self.strategy.close()

    def __enter__(self) -> "Tracker":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
