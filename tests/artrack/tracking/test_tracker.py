"""
Tests for the Tracker orchestration.

Tests cover:
    - Frame fusion through the relative-pose history
    - Inertial samples reaching both filters
    - Failed frames leaving the filters untouched
    - Lifecycle (close, context manager)
    - End-to-end tracking over a synthetic orbit
"""

import threading
import unittest

import numpy as np
from numpy.testing import assert_allclose

from artrack.coords import Pose, quat_multiply, rotvec_to_quat
from artrack.sim import (
    MarkerScene,
    SceneDetector,
    generate_inertial_samples,
    grid_marker_poses,
    orbit_trajectory,
)
from artrack.tracking import (
    MarkerMapConfig,
    MarkerTracker,
    OrientationFilterConfig,
    RefinementConfig,
    RelativePoseHistory,
    Tracker,
    TrackerConfig,
    TrackingResult,
    TrackingStatus,
    TrackingStrategy,
)
from artrack.vision import CameraIntrinsics

IDENTITY = np.array([1.0, 0.0, 0.0, 0.0])


class FixedStrategy(TrackingStrategy):
    """Returns the same result for every frame."""

    def __init__(self, result):
        self.result = result
        self.frames = 0
        self.closed = 0

    def track_frame_impl(self, frame, dt):
        self.frames += 1
        return self.result

    def close(self):
        self.closed += 1


def identity_config(**kwargs):
    return TrackerConfig(
        orientation=OrientationFilterConfig(initial_state=tuple(IDENTITY) + (0.0,) * 6), **kwargs
    )


class TestRelativePoseHistory(unittest.TestCase):
    def test_bounded(self):
        history = RelativePoseHistory(3)
        for angle in (0.1, 0.2, 0.3, 0.4):
            history.append(rotvec_to_quat([0.0, 0.0, angle]))
        self.assertEqual(len(history), 3)
        assert_allclose(history.average(), rotvec_to_quat([0.0, 0.0, 0.3]), atol=1e-4)

    def test_empty_average(self):
        with self.assertRaises(ValueError):
            RelativePoseHistory(3).average()
        with self.assertRaises(ValueError):
            RelativePoseHistory(0)


class TestTracker(unittest.TestCase):
    def test_failed_frame_leaves_filters_untouched(self):
        strategy = FixedStrategy(TrackingResult.failure(TrackingStatus.NO_DETECTION))
        tracker = Tracker(strategy)
        state_r = tracker.orientation_filter.state
        state_p = tracker.position_filter.state

        self.assertFalse(tracker.track_frame(None, 1 / 30))
        self.assertIs(tracker.last_status, TrackingStatus.NO_DETECTION)
        self.assertIs(tracker.orientation_filter.state, state_r)
        self.assertIs(tracker.position_filter.state, state_p)
        self.assertEqual(len(tracker.relative_poses), 0)

    def test_tracked_frames_converge_position(self):
        camera_pose = Pose(rotvec_to_quat([np.pi, 0.0, 0.0]), [-0.1, 0.2, 0.5])
        strategy = FixedStrategy(TrackingResult.from_camera_pose(camera_pose))
        tracker = Tracker(strategy)
        for _ in range(60):
            self.assertTrue(tracker.track_frame(None, 1 / 30))

        self.assertIs(tracker.last_status, TrackingStatus.TRACKED)
        self.assertEqual(len(tracker.relative_poses), 50)
        expected = camera_pose.inverse().translation
        self.assertLess(np.linalg.norm(tracker.get_position() - expected), 0.01 * np.linalg.norm(expected))
        self.assertAlmostEqual(np.linalg.norm(tracker.get_orientation()), 1.0)

    def test_marker_orientation_is_corrected_by_relative_pose(self):
        """With a constant marker/inertial offset the filter keeps the inertial frame."""
        offset = rotvec_to_quat([0.0, 0.0, 0.3])
        strategy = FixedStrategy(TrackingResult.from_camera_pose(Pose(offset, [0.0, 0.0, 1.0])))
        tracker = Tracker(strategy, identity_config())
        for _ in range(20):
            tracker.track_sensor(IDENTITY, np.zeros(3), np.zeros(3), 0.01)
            tracker.track_frame(None, 1 / 30)
        self.assertGreater(abs(np.dot(tracker.get_orientation(), IDENTITY)), 0.999)

    def test_sensor_acceleration_is_rotated_to_world(self):
        q = rotvec_to_quat([0.0, 0.0, np.pi / 2])
        config = TrackerConfig(
            orientation=OrientationFilterConfig(initial_state=tuple(q) + (0.0,) * 6)
        )
        tracker = Tracker(FixedStrategy(TrackingResult.failure(TrackingStatus.NO_DETECTION)), config)
        for _ in range(200):
            self.assertTrue(tracker.track_sensor(q, np.array([1.0, 0.0, 0.0]), np.zeros(3), 0.01))
        assert_allclose(tracker.position_filter.state[6:9], [0.0, -config.gravity, 0.0], atol=0.3)
        self.assertGreater(abs(np.dot(tracker.get_orientation(), q)), 0.999)

    def test_close(self):
        strategy = FixedStrategy(TrackingResult.failure(TrackingStatus.NO_DETECTION))
        with Tracker(strategy) as tracker:
            tracker.track_frame(None, 1 / 30)
        self.assertEqual(strategy.closed, 1)
        tracker.close()
        self.assertEqual(strategy.closed, 1)
        with self.assertRaises(RuntimeError):
            tracker.track_frame(None, 1 / 30)
        with self.assertRaises(RuntimeError):
            tracker.track_sensor(IDENTITY, np.zeros(3), np.zeros(3), 0.01)

    def test_concurrent_camera_and_sensor_updates(self):
        camera_pose = Pose(IDENTITY, [0.0, 0.0, 0.5])
        tracker = Tracker(FixedStrategy(TrackingResult.from_camera_pose(camera_pose)))
        errors = []

        def sensor_loop():
            try:
                for _ in range(300):
                    tracker.track_sensor(IDENTITY, np.zeros(3), np.zeros(3), 0.005)
            except Exception as exc:  # pragma: no cover
                errors.append(exc)

        def reader_loop():
            for _ in range(300):
                q = tracker.get_orientation()
                p = tracker.get_position()
                if not (np.all(np.isfinite(q)) and np.all(np.isfinite(p))):
                    errors.append(ValueError("non-finite read"))

        threads = [threading.Thread(target=sensor_loop), threading.Thread(target=reader_loop)]
        for t in threads:
            t.start()
        for _ in range(100):
            tracker.track_frame(None, 1 / 30)
        for t in threads:
            t.join()

        self.assertEqual(errors, [])
        assert_allclose(tracker.get_position(), [0.0, 0.0, -0.5], atol=0.05)


class ScriptedStrategy(TrackingStrategy):
    """Replays a list of results, one per frame."""

    def __init__(self, results):
        self.results = list(results)

    def track_frame_impl(self, frame, dt):
        return self.results[frame]


class TestOrientationNorm(unittest.TestCase):
    def test_unit_norm_over_mixed_updates(self):
        rng = np.random.default_rng(3)
        base = rotvec_to_quat([0.4, -0.2, 1.0])
        n_frames = 200
        results = []
        for k in range(n_frames):
            if k % 7 == 3:
                results.append(TrackingResult.failure(TrackingStatus.NO_DETECTION))
                continue
            q = quat_multiply(rotvec_to_quat(rng.normal(0.0, 0.3, 3)), base)
            results.append(TrackingResult.from_camera_pose(Pose(q, rng.normal(0.0, 0.5, 3))))

        tracker = Tracker(ScriptedStrategy(results))
        frame = 0
        for step in range(3 * n_frames):
            if rng.random() < 0.3 and frame < n_frames:
                tracker.track_frame(frame, 1 / 30)
                frame += 1
            else:
                q = quat_multiply(rotvec_to_quat(rng.normal(0.0, 0.2, 3)), base)
                if rng.random() < 0.5:
                    q = -q
                tracker.track_sensor(q, rng.normal(0.0, 0.1, 3), rng.normal(0.0, 0.5, 3), 0.01)
            orientation = tracker.get_orientation()
            self.assertTrue(np.all(np.isfinite(orientation)))
            self.assertAlmostEqual(np.linalg.norm(orientation), 1.0, delta=1e-5)
        tracker.close()


class TestEndToEnd(unittest.TestCase):
    def test_orbit_with_inertial_data(self):
        intrinsics = CameraIntrinsics(fx=500.0, fy=500.0, cx=320.0, cy=240.0)
        scene = MarkerScene(intrinsics, 0.1, grid_marker_poses(2, 2, 0.2))
        imu_per_frame = 3
        n = 90 * imu_per_frame
        poses = orbit_trajectory(n, 0.1, 0.6, target=(0.1, 0.1, 0.0), arc=np.pi / 2)
        dt = 1.0 / 90.0
        imu = generate_inertial_samples(poses, dt)

        config = identity_config(
            marker_map=MarkerMapConfig(capacity=50, marker_length=0.1),
            refinement=RefinementConfig(enabled=False),
        )
        strategy = MarkerTracker(intrinsics, config, detector=SceneDetector(scene, poses))
        with Tracker(strategy, config) as tracker:
            for k in range(n):
                tracker.track_sensor(imu.attitude[k], imu.acceleration[k], imu.angular_velocity[k], dt)
                if k % imu_per_frame == 0:
                    tracker.track_frame(k, imu_per_frame * dt)

            truth = poses[n - imu_per_frame]
            position_error = np.linalg.norm(tracker.get_position() - truth.inverse().translation)
            self.assertLess(position_error, 0.02)
            self.assertGreater(abs(np.dot(tracker.get_orientation(), truth.rotation)), 0.999)
