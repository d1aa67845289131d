"""
Tests for the marker-tracking strategies on synthetic scenes.

Tests cover:
    - Bootstrapping the world frame on the first marker
    - Camera localisation and insertion of co-visible markers
    - Failure statuses (no detection, no anchor, unusable ids)
    - Calibration-pattern tracking
    - Sustained tracking with the refinement worker running
"""

import numpy as np
import pytest

from artrack.coords import Pose
from artrack.sim import MarkerScene, SceneDetector, grid_marker_poses, look_at, orbit_trajectory
from artrack.tracking import (
    CalibrationPatternConfig,
    CalibrationPatternTracker,
    MarkerMapConfig,
    MarkerState,
    MarkerTracker,
    RefinementConfig,
    Tracker,
    TrackerConfig,
    TrackingStatus,
)
from artrack.vision import (
    CameraIntrinsics,
    CircleGridDetector,
    MarkerDetection,
    project_points,
)

MARKER_LENGTH = 0.1


@pytest.fixture
def intrinsics():
    return CameraIntrinsics(fx=500.0, fy=500.0, cx=320.0, cy=240.0)


@pytest.fixture
def scene(intrinsics):
    return MarkerScene(intrinsics, MARKER_LENGTH, grid_marker_poses(2, 2, 0.2))


def static_config(**kwargs):
    return TrackerConfig(
        marker_map=MarkerMapConfig(capacity=50, marker_length=MARKER_LENGTH),
        refinement=RefinementConfig(enabled=False),
        **kwargs,
    )


class ListDetector:
    """Replays a fixed list of detections per frame."""

    def __init__(self, frames):
        self.frames = frames

    def __call__(self, frame_index):
        return self.frames[frame_index]


class TestMarkerTracker:
    def test_bootstrap_then_track(self, intrinsics, scene):
        poses = [
            look_at([0.12, 0.05, 0.6], [0.1, 0.1, 0.0]),
            look_at([0.08, 0.02, 0.6], [0.1, 0.1, 0.0]),
        ]
        tracker = MarkerTracker(intrinsics, static_config(), detector=SceneDetector(scene, poses))

        first = tracker.track_frame_impl(0, 1 / 30)
        assert not first.tracked
        assert first.status is TrackingStatus.BOOTSTRAP
        assert tracker.marker_map.reference_id == 0
        assert tracker.marker_map.pose(0).is_close(Pose.identity())
        assert tracker.marker_map.count == 1

        second = tracker.track_frame_impl(1, 1 / 30)
        assert second.tracked
        assert second.status is TrackingStatus.TRACKED
        assert second.camera_pose.is_close(poses[1], atol=1e-3)
        np.testing.assert_allclose(second.position, [0.08, 0.02, 0.6], atol=1e-3)

        # Co-visible markers were inserted at their true poses
        assert tracker.marker_map.ids() == [0, 1, 2, 3]
        for marker_id, truth in scene.marker_poses.items():
            assert tracker.marker_map.pose(marker_id).is_close(truth, atol=5e-3)
            assert tracker.marker_map.get(marker_id).state is MarkerState.BOOTSTRAPPED
        tracker.close()

    def test_mapped_markers_collect_estimates(self, intrinsics, scene):
        poses = orbit_trajectory(4, 0.1, 0.6, target=(0.1, 0.1, 0.0), arc=0.5)
        tracker = MarkerTracker(intrinsics, static_config(), detector=SceneDetector(scene, poses))
        for i in range(4):
            tracker.track_frame_impl(i, 1 / 30)
        estimates = tracker.marker_map.take_estimates()
        # Frame 1 inserts, frames 2 and 3 add estimates; the reference collects none
        assert sorted(estimates) == [1, 2, 3]
        assert all(len(v) == 2 for v in estimates.values())

    def test_no_detection_leaves_state_unchanged(self, intrinsics, scene):
        pose = look_at([0.12, 0.05, 0.6], [0.1, 0.1, 0.0])
        frames = [scene.detect(pose), [], scene.detect(pose)]
        tracker = MarkerTracker(intrinsics, static_config(), detector=ListDetector(frames))
        tracker.track_frame_impl(0, 1 / 30)
        before = tracker.marker_map.snapshot()

        result = tracker.track_frame_impl(1, 1 / 30)
        assert not result.tracked
        assert result.status is TrackingStatus.NO_DETECTION
        np.testing.assert_allclose(result.position, np.zeros(3))
        assert tracker.marker_map.snapshot().keys() == before.keys()

        assert tracker.track_frame_impl(2, 1 / 30).tracked

    def test_no_anchor(self, intrinsics, scene):
        pose = look_at([0.12, 0.05, 0.6], [0.1, 0.1, 0.0])
        detections = scene.detect(pose)
        frames = [detections[:1], detections[3:]]
        tracker = MarkerTracker(intrinsics, static_config(), detector=ListDetector(frames))
        tracker.track_frame_impl(0, 1 / 30)
        result = tracker.track_frame_impl(1, 1 / 30)
        assert result.status is TrackingStatus.NO_ANCHOR
        assert not tracker.marker_map.is_mapped(3)

    def test_out_of_range_ids_are_ignored(self, intrinsics, scene, caplog):
        pose = look_at([0.12, 0.05, 0.6], [0.1, 0.1, 0.0])
        detections = scene.detect(pose)
        rogue = MarkerDetection(500, detections[0].corners)
        frames = [[rogue] + detections, [rogue] + detections + [detections[0]]]
        tracker = MarkerTracker(intrinsics, static_config(), detector=ListDetector(frames))
        with caplog.at_level("WARNING", logger="artrack.tracking.strategies"):
            assert tracker.track_frame_impl(0, 1 / 30).status is TrackingStatus.BOOTSTRAP
            assert tracker.track_frame_impl(1, 1 / 30).tracked
        assert tracker.marker_map.reference_id == 0
        assert "500" in caplog.text

    def test_sustained_tracking_with_refinement(self, intrinsics, scene):
        config = TrackerConfig(
            marker_map=MarkerMapConfig(capacity=50, marker_length=MARKER_LENGTH),
            refinement=RefinementConfig(window=4, max_iterations=3),
        )
        n = 1000
        poses = orbit_trajectory(n, 0.1, 0.6, target=(0.1, 0.1, 0.0), arc=2 * np.pi)
        detector = SceneDetector(scene, poses, noise_std=0.3, seed=7)
        strategy = MarkerTracker(intrinsics, config, detector=detector)
        with Tracker(strategy, config) as tracker:
            tracked = sum(tracker.track_frame(i, 1 / 30) for i in range(n))
            assert tracked == n - 1
            assert strategy.worker.flush(timeout=60.0)
            assert strategy.worker.passes >= 1

        assert not strategy.worker.is_running
        assert strategy.marker_map.count == len(scene.marker_poses)
        assert sorted(strategy.marker_map.ids()) == sorted(scene.marker_poses)
        assert strategy.marker_map.reference_id == 0
        for marker_id, truth in scene.marker_poses.items():
            pose = strategy.marker_map.pose(marker_id)
            assert np.all(np.isfinite(pose.translation))
            assert np.linalg.norm(pose.translation - truth.translation) < 0.01
        assert len(strategy.worker.snapshot()) == n - 1


class TestCalibrationPatternTracker:
    def test_localises_against_grid(self, intrinsics):
        pattern = CalibrationPatternConfig(rows=11, cols=4, spacing=0.04)
        grid = CircleGridDetector(pattern.rows, pattern.cols, pattern.spacing)
        pose = look_at([0.1, 0.25, 0.7], [0.14, 0.2, 0.0])
        centres = project_points(intrinsics, pose.transform_points(grid.object_points()))

        frames = {0: centres, 1: None}
        config = TrackerConfig(calibration_pattern=pattern)
        tracker = CalibrationPatternTracker(intrinsics, config, detector=frames.get)

        result = tracker.track_frame_impl(0, 1 / 30)
        assert result.tracked
        assert result.camera_pose.is_close(pose, atol=1e-4)

        missing = tracker.track_frame_impl(1, 1 / 30)
        assert missing.status is TrackingStatus.NO_PATTERN

    def test_pattern_layout_from_config_dict(self, intrinsics):
        config = TrackerConfig.from_dict(
            {"calibration_pattern": {"rows": 7, "cols": 3, "spacing": 0.05}}
        )
        grid = CircleGridDetector(7, 3, 0.05)
        pose = look_at([0.12, 0.1, 0.6], [0.125, 0.15, 0.0])
        centres = project_points(intrinsics, pose.transform_points(grid.object_points()))

        tracker = CalibrationPatternTracker(intrinsics, config, detector=lambda frame: centres)
        assert tracker.object_points.shape == (21, 3)
        np.testing.assert_allclose(tracker.object_points, grid.object_points())

        result = tracker.track_frame_impl(0, 1 / 30)
        assert result.tracked
        assert result.camera_pose.is_close(pose, atol=1e-4)
