"""Camera tracking from fiducial markers and inertial sensors.

Main components:
    - Tracker: Orchestrates a strategy and the two filters
    - EKFOrientation, EKFPosition: Autodiff Kalman filters
    - MarkerTracker, CalibrationPatternTracker: Frame-to-pose strategies
    - MarkerMap: Incrementally built map of marker poses
    - BundleAdjuster, RefinementWorker: Background map refinement
    - TrackerConfig, load_tracker_config: Configuration

Example usage:
    >>> from artrack.tracking import MarkerTracker, Tracker
    >>> from artrack.vision import CameraIntrinsics
    >>> intrinsics = CameraIntrinsics(fx=500, fy=500, cx=320, cy=240)
    >>> with Tracker(MarkerTracker(intrinsics)) as tracker:
    ...     tracked = tracker.track_frame(image, 1 / 30)
"""

from artrack.tracking.config import (
    CalibrationPatternConfig,
    MarkerMapConfig,
    OrientationFilterConfig,
    PositionFilterConfig,
    RefinementConfig,
    TrackerConfig,
    load_tracker_config,
)
from artrack.tracking.filters import EKFOrientation, EKFPosition
from artrack.tracking.marker_map import MarkerMap
from artrack.tracking.refinement import BundleAdjuster, RefinementResult, RefinementWorker
from artrack.tracking.strategies import (
    CalibrationPatternTracker,
    MarkerTracker,
    TrackingStrategy,
)
from artrack.tracking.tracker import RelativePoseHistory, Tracker
from artrack.tracking.types import (
    Marker,
    MarkerDetection,
    MarkerState,
    Pose,
    PoseObservation,
    TrackingResult,
    TrackingStatus,
)

__all__ = [
    # Configuration
    "TrackerConfig",
    "OrientationFilterConfig",
    "PositionFilterConfig",
    "MarkerMapConfig",
    "RefinementConfig",
    "CalibrationPatternConfig",
    "load_tracker_config",
    # Types
    "Pose",
    "MarkerDetection",
    "Marker",
    "MarkerState",
    "PoseObservation",
    "TrackingResult",
    "TrackingStatus",
    # Filters
    "EKFOrientation",
    "EKFPosition",
    # Map and refinement
    "MarkerMap",
    "BundleAdjuster",
    "RefinementResult",
    "RefinementWorker",
    # Strategies and orchestration
    "TrackingStrategy",
    "MarkerTracker",
    "CalibrationPatternTracker",
    "RelativePoseHistory",
    "Tracker",
]
