"""
Marker-tracking strategies.

A strategy turns one video frame into an instantaneous camera pose. The
:class:`~artrack.tracking.tracker.Tracker` owns one strategy and fuses its
output with inertial data; strategies know nothing about the filters.

Available strategies:
    - MarkerTracker: builds a map of ArUco markers on the fly and localises
      the camera against it
    - CalibrationPatternTracker: localises the camera against a fixed
      asymmetric circle grid
"""

import logging
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

import numpy as np

from artrack.tracking.config import TrackerConfig
from artrack.tracking.marker_map import MarkerMap
from artrack.tracking.refinement import BundleAdjuster, RefinementWorker
from artrack.tracking.types import MarkerDetection, PoseObservation, TrackingResult, TrackingStatus
from artrack.vision.detection import ArucoMarkerDetector, CircleGridDetector
from artrack.vision.pnp import PnPSolver
from artrack.vision.types import CameraIntrinsics

logger = logging.getLogger(__name__)

Detector = Callable[[object], List[MarkerDetection]]


class TrackingStrategy(ABC):
    """Interface of a frame-to-pose strategy."""

    @abstractmethod
    def track_frame_impl(self, frame, dt: float) -> TrackingResult:
        """
        Estimate the camera pose in one frame.

        Args:
            frame: Image (or whatever the strategy's detector consumes).
            dt: Time since the previous frame in seconds.

        Returns:
            TrackingResult; failures are reported through its status.
        """

    def close(self) -> None:
        """Release resources held by the strategy."""


class MarkerTracker(TrackingStrategy):
    """
    Map-building ArUco tracker.

    Per frame:
        1. Detect markers.
        2. On an empty map, anchor the world frame at the first marker and
           report a bootstrap frame.
        3. Solve the camera pose from the corners of all mapped markers.
        4. Insert unmapped markers using a single-marker solve composed with
           the camera pose; mapped markers receive a raw estimate instead.
        5. Hand the observation to the refinement worker.

    Attributes:
        marker_map: Map shared with the refinement worker.
        worker: Refinement worker, or None when refinement is disabled.
        frame_index: Index of the next frame.
    """

    def __init__(
        self,
        intrinsics: CameraIntrinsics,
        config: Optional[TrackerConfig] = None,
        detector: Optional[Detector] = None,
        solver: Optional[PnPSolver] = None,
        worker: Optional[RefinementWorker] = None,
        start_worker: bool = True,
    ):
        """
        Args:
            intrinsics: Camera calibration.
            config: Tracker configuration (map layout, refinement, PnP).
            detector: Callable returning marker detections for a frame;
                defaults to an ArUco detector for the configured dictionary.
            solver: PnP solver; defaults to one for ``intrinsics``.
            worker: Refinement worker to use instead of creating one.
            start_worker: Start the refinement worker immediately.
        """
        self.config = config or TrackerConfig()
        map_config = self.config.marker_map

        self.intrinsics = intrinsics
        self.detector = detector or ArucoMarkerDetector(map_config.dictionary)
        self.solver = solver or PnPSolver(intrinsics)
        self.marker_map = MarkerMap(map_config.capacity, map_config.marker_length)
        self.frame_index = 0

        if worker is None and self.config.refinement.enabled:
            adjuster = BundleAdjuster(intrinsics, map_config.marker_length, self.config.refinement)
            worker = RefinementWorker(self.marker_map, adjuster)
        self.worker = worker
        if self.worker is not None and start_worker:
            self.worker.start()

    def _valid_detections(self, detections: List[MarkerDetection]) -> List[MarkerDetection]:
        seen = set()
        valid = []
        for det in detections:
            if not self.marker_map.is_valid_id(det.marker_id):
                logger.warning(
                    "Ignoring marker id %d outside [0, %d)",
                    det.marker_id,
                    self.marker_map.capacity,
                )
                continue
            if det.marker_id in seen:
                logger.debug("Ignoring duplicate detection of marker %d", det.marker_id)
                continue
            seen.add(det.marker_id)
            valid.append(det)
        return valid

    def track_frame_impl(self, frame, dt: float) -> TrackingResult:
        frame_index = self.frame_index
        self.frame_index += 1

        detections = self._valid_detections(self.detector(frame))
        if not detections:
            return TrackingResult.failure(TrackingStatus.NO_DETECTION)

        if self.marker_map.bootstrap(detections[0].marker_id):
            return TrackingResult.failure(TrackingStatus.BOOTSTRAP)

        world, image = [], []
        for det in detections:
            corners = self.marker_map.world_corners(det.marker_id)
            if corners is not None:
                world.append(corners)
                image.append(det.corners)
        if not world:
            return TrackingResult.failure(TrackingStatus.NO_ANCHOR)

        solution = self.solver.solve(
            np.concatenate(world), np.concatenate(image), robust=self.config.robust_pnp
        )
        if not solution.ok:
            return TrackingResult.failure(TrackingStatus.SOLVE_FAILED)
        camera_pose = solution.pose
        camera_to_world = camera_pose.inverse()

        object_points = self.marker_map.object_points
        for det in detections:
            single = self.solver.solve(object_points, det.corners, robust=False)
            if not single.ok:
                continue
            estimate = camera_to_world @ single.pose
            if self.marker_map.is_mapped(det.marker_id):
                self.marker_map.add_estimate(det.marker_id, estimate)
            elif self.marker_map.insert(det.marker_id, estimate):
                logger.info("Mapped marker %d in frame %d", det.marker_id, frame_index)

        if self.worker is not None:
            self.worker.submit(PoseObservation(frame_index, camera_pose, tuple(detections)))

        return TrackingResult.from_camera_pose(camera_pose)

    def close(self) -> None:
        if self.worker is not None:
            self.worker.shutdown()


class CalibrationPatternTracker(TrackingStrategy):
    """
    Tracker for a fixed asymmetric circle grid; no map is built.

    The grid layout comes from ``config.calibration_pattern``.
    """

    def __init__(
        self,
        intrinsics: CameraIntrinsics,
        config: Optional[TrackerConfig] = None,
        detector: Optional[Callable[[object], Optional[np.ndarray]]] = None,
        solver: Optional[PnPSolver] = None,
    ):
        self.config = config or TrackerConfig()
        pattern = self.config.calibration_pattern
        grid = CircleGridDetector(pattern.rows, pattern.cols, pattern.spacing)
        self.object_points = grid.object_points()
        self.detector = detector or grid
        self.solver = solver or PnPSolver(intrinsics)

    def track_frame_impl(self, frame, dt: float) -> TrackingResult:
        centers = self.detector(frame)
        if centers is None:
            return TrackingResult.failure(TrackingStatus.NO_PATTERN)

        solution = self.solver.solve(self.object_points, centers, robust=False)
        if not solution.ok:
            return TrackingResult.failure(TrackingStatus.SOLVE_FAILED)
        return TrackingResult.from_camera_pose(solution.pose)
