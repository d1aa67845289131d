"""
Marker map: world poses of the fiducial markers seen so far.

The map is a fixed-capacity table indexed by marker id. The first marker
ever observed defines the world frame (identity pose); every later marker is
inserted with a pose computed from a frame in which it was seen together
with an already mapped marker. The background refinement worker replaces
the poses with optimised ones.

All methods take the table lock for their whole duration and never call out
while holding it, so the map can be shared between the tracking thread and
the refinement worker.
"""

import logging
import threading
from typing import Dict, List, Optional

import numpy as np

from artrack.coords.pose import Pose
from artrack.tracking.types import Marker, MarkerState
from artrack.vision.camera import marker_object_points

logger = logging.getLogger(__name__)


class MarkerMap:
    """
    Thread-safe table of marker poses.

    Attributes:
        capacity: Number of valid marker ids, [0, capacity).
        marker_length: Side length of the markers.
    """

    def __init__(self, capacity: int = 200, marker_length: float = 0.046):
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self.marker_length = marker_length
        self._object_points = marker_object_points(marker_length)
        self._markers = [Marker(i) for i in range(capacity)]
        self._reference_id: Optional[int] = None
        self._count = 0
        self._lock = threading.Lock()

    @property
    def object_points(self) -> np.ndarray:
        """Corner layout of a marker in its own frame, shape (4, 3)."""
        return self._object_points.copy()

    @property
    def reference_id(self) -> Optional[int]:
        """Id of the marker defining the world frame, None while empty."""
        with self._lock:
            return self._reference_id

    @property
    def count(self) -> int:
        """Number of mapped markers."""
        with self._lock:
            return self._count

    def is_empty(self) -> bool:
        return self.count == 0

    def is_valid_id(self, marker_id: int) -> bool:
        return 0 <= marker_id < self.capacity

    def _check_id(self, marker_id: int) -> None:
        if not self.is_valid_id(marker_id):
            raise ValueError(f"Marker id {marker_id} outside [0, {self.capacity})")

    def bootstrap(self, marker_id: int) -> bool:
        """
        Insert the origin marker with the identity pose.

        Args:
            marker_id: Id of the first marker observed.

        Returns:
            True if the marker became the reference, False if the map was
            not empty.

        Raises:
            ValueError: If the id is out of range.
        """
        self._check_id(marker_id)
        with self._lock:
            if self._count > 0:
                return False
            marker = self._markers[marker_id]
            marker.pose = Pose.identity()
            marker.state = MarkerState.BOOTSTRAPPED
            self._reference_id = marker_id
            self._count = 1
        logger.info("Marker %d anchors the world frame", marker_id)
        return True

    def insert(self, marker_id: int, pose: Pose) -> bool:
        """
        Insert a new marker with its marker-to-world pose.

        Returns:
            True if inserted, False if the marker was already mapped or the
            map has no reference marker yet.

        Raises:
            ValueError: If the id is out of range.
        """
        self._check_id(marker_id)
        with self._lock:
            marker = self._markers[marker_id]
            if marker.found or self._count == 0:
                return False
            marker.pose = pose
            marker.state = MarkerState.BOOTSTRAPPED
            self._count += 1
        logger.debug("Inserted marker %d at %s", marker_id, pose.translation)
        return True

    def is_mapped(self, marker_id: int) -> bool:
        if not self.is_valid_id(marker_id):
            return False
        with self._lock:
            return self._markers[marker_id].found

    def get(self, marker_id: int) -> Marker:
        """Copy of the entry for ``marker_id``."""
        self._check_id(marker_id)
        with self._lock:
            return self._markers[marker_id].copy()

    def pose(self, marker_id: int) -> Optional[Pose]:
        """Marker-to-world pose, or None if the marker is not mapped."""
        if not self.is_valid_id(marker_id):
            return None
        with self._lock:
            marker = self._markers[marker_id]
            return marker.pose if marker.found else None

    def world_corners(self, marker_id: int) -> Optional[np.ndarray]:
        """World coordinates of the four corners, or None if not mapped."""
        pose = self.pose(marker_id)
        if pose is None:
            return None
        return pose.transform_points(self._object_points)

    def add_estimate(self, marker_id: int, pose: Pose) -> None:
        """
        Record a raw marker-to-world estimate for later consolidation.

        Estimates for the reference marker or unmapped markers are ignored.
        """
        if not self.is_valid_id(marker_id):
            return
        with self._lock:
            marker = self._markers[marker_id]
            if marker.found and marker_id != self._reference_id:
                marker.estimates.append(pose)

    def take_estimates(self) -> Dict[int, List[Pose]]:
        """Remove and return the pending raw estimates of every marker."""
        with self._lock:
            taken = {}
            for marker in self._markers:
                if marker.estimates:
                    taken[marker.marker_id] = marker.estimates
                    marker.estimates = []
            return taken

    def restore_estimates(self, estimates: Dict[int, List[Pose]]) -> None:
        """Put estimates returned by :meth:`take_estimates` back in front of newer ones."""
        with self._lock:
            for marker_id, poses in estimates.items():
                if not self.is_valid_id(marker_id) or marker_id == self._reference_id:
                    continue
                marker = self._markers[marker_id]
                if marker.found:
                    marker.estimates = list(poses) + marker.estimates

    def snapshot(self) -> Dict[int, Pose]:
        """Immutable copy of the poses of all mapped markers."""
        with self._lock:
            return {m.marker_id: m.pose for m in self._markers if m.found}

    def ids(self) -> List[int]:
        """Ids of all mapped markers, ascending."""
        with self._lock:
            return [m.marker_id for m in self._markers if m.found]

    def apply_refinement(self, poses: Dict[int, Pose]) -> int:
        """
        Replace marker poses with refined ones.

        The reference marker and unmapped markers are left unchanged.

        Returns:
            Number of markers updated.
        """
        updated = 0
        with self._lock:
            for marker_id, pose in poses.items():
                if not self.is_valid_id(marker_id) or marker_id == self._reference_id:
                    continue
                marker = self._markers[marker_id]
                if not marker.found:
                    continue
                marker.pose = pose
                marker.state = MarkerState.REFINED
                updated += 1
        return updated
