"""
Tests for marker map refinement.

Tests cover:
    - Consolidation of raw marker estimates
    - Bundle adjustment recovering a perturbed marker pose
    - Gauge handling when the reference marker is not observed
    - Worker lifecycle: start, submit, flush, shutdown, failures
"""

import threading
import time
import unittest

import numpy as np
from numpy.testing import assert_allclose

from artrack.coords import Pose, rotvec_to_quat
from artrack.sim import MarkerScene, grid_marker_poses, orbit_trajectory
from artrack.tracking import (
    BundleAdjuster,
    MarkerMap,
    PoseObservation,
    RefinementConfig,
    RefinementResult,
    RefinementWorker,
)
from artrack.tracking.refinement import consolidate_estimates
from artrack.vision import CameraIntrinsics

MARKER_LENGTH = 0.1


def make_scene():
    intrinsics = CameraIntrinsics(fx=500.0, fy=500.0, cx=320.0, cy=240.0)
    markers = grid_marker_poses(2, 2, 0.2)
    scene = MarkerScene(intrinsics, MARKER_LENGTH, markers)
    poses = orbit_trajectory(6, 0.1, 0.6, target=(0.1, 0.1, 0.0), arc=np.pi / 3)
    return intrinsics, scene, poses


def make_observations(scene, poses):
    return [PoseObservation(i, pose, scene.detect(pose)) for i, pose in enumerate(poses)]


class TestConsolidation(unittest.TestCase):
    def test_average_of_estimates(self):
        current = Pose(rotvec_to_quat([0.0, 0.0, 0.1]), [1.0, 0.0, 0.0])
        estimates = [
            Pose(rotvec_to_quat([0.0, 0.0, -0.1]), [1.2, 0.0, 0.0]),
            Pose(rotvec_to_quat([0.0, 0.0, 0.0]), [0.8, 0.3, 0.0]),
        ]
        merged = consolidate_estimates(current, estimates)
        assert_allclose(merged.translation, [1.0, 0.1, 0.0], atol=1e-12)
        assert_allclose(merged.rotation, [1.0, 0.0, 0.0, 0.0], atol=1e-12)


class TestBundleAdjuster(unittest.TestCase):
    def setUp(self):
        self.intrinsics, self.scene, self.poses = make_scene()
        self.observations = make_observations(self.scene, self.poses)
        self.adjuster = BundleAdjuster(
            self.intrinsics, MARKER_LENGTH, RefinementConfig(max_iterations=20, tolerance=1e-12)
        )

    def test_all_markers_visible(self):
        for obs in self.observations:
            self.assertEqual([d.marker_id for d in obs.detections], [0, 1, 2, 3])

    def test_recovers_perturbed_marker(self):
        truth = self.scene.marker_poses
        markers = dict(truth)
        markers[3] = Pose(rotvec_to_quat([0.03, -0.02, 0.05]), truth[3].translation + [0.01, -0.01, 0.005])

        result = self.adjuster.refine(self.observations, markers, reference_id=0)

        self.assertIsInstance(result, RefinementResult)
        self.assertNotIn(0, result.markers)
        self.assertTrue(result.markers[3].is_close(truth[3], atol=1e-4))
        self.assertTrue(result.markers[1].is_close(truth[1], atol=1e-4))
        self.assertLess(result.final_error, 1e-6 * max(result.initial_error, 1.0))
        self.assertLess(result.final_error, result.initial_error)
        for obs in self.observations:
            self.assertTrue(result.camera_poses[obs.frame_index].is_close(obs.camera_pose, atol=1e-4))

    def test_estimates_are_consolidated(self):
        truth = self.scene.marker_poses
        estimates = {2: [truth[2], truth[2]], 0: [Pose(translation=[5.0, 0.0, 0.0])]}
        result = self.adjuster.refine(self.observations[:1], dict(truth), 0, estimates)
        # One observation is below min_observations: consolidation only
        self.assertEqual(list(result.markers), [2])
        self.assertEqual(result.camera_poses, {})
        self.assertTrue(result.markers[2].is_close(truth[2], atol=1e-12))

    def test_oldest_pose_fixed_without_reference(self):
        truth = self.scene.marker_poses
        markers = {1: truth[1], 2: truth[2], 3: truth[3]}
        result = self.adjuster.refine(self.observations, markers, reference_id=0)
        first = self.observations[0]
        self.assertTrue(result.camera_poses[0].is_close(first.camera_pose, atol=1e-12))

    def test_window(self):
        adjuster = BundleAdjuster(self.intrinsics, MARKER_LENGTH, RefinementConfig(window=2))
        result = adjuster.refine(self.observations, dict(self.scene.marker_poses), 0)
        self.assertEqual(sorted(result.camera_poses), [4, 5])


class FailingAdjuster:
    def __init__(self):
        self.calls = 0
        self.estimates = []

    def refine(self, observations, markers, reference_id, estimates=None):
        self.calls += 1
        self.estimates.append(estimates)
        raise RuntimeError("boom")


class SlowAdjuster:
    """Records calls; optionally blocks until released."""

    def __init__(self):
        self.calls = []
        self.release = threading.Event()
        self.release.set()

    def refine(self, observations, markers, reference_id, estimates=None):
        self.release.wait(5.0)
        self.calls.append(len(observations))
        moved = {mid: Pose(translation=[0.0, 0.0, 0.0]) for mid in markers if mid != reference_id}
        return RefinementResult(markers=moved, camera_poses={}, error_history=[1.0, 0.5])


class TestRefinementWorker(unittest.TestCase):
    def setUp(self):
        self.map = MarkerMap(capacity=10, marker_length=MARKER_LENGTH)
        self.map.bootstrap(0)
        self.map.insert(1, Pose(translation=[0.2, 0.0, 0.0]))
        self.observation = PoseObservation(0, Pose.identity(), ())

    def test_lifecycle(self):
        adjuster = SlowAdjuster()
        worker = RefinementWorker(self.map, adjuster)
        self.assertFalse(worker.is_running)
        worker.start()
        worker.start()
        self.assertTrue(worker.is_running)

        worker.submit(self.observation)
        worker.submit(self.observation.with_pose(Pose(translation=[0.0, 0.0, 1.0])))
        self.assertTrue(worker.flush(timeout=5.0))
        self.assertGreaterEqual(worker.passes, 1)
        self.assertEqual(len(worker.snapshot()), 2)
        self.assertTrue(self.map.pose(1).is_close(Pose.identity()))
        self.assertIsNotNone(worker.last_result)

        worker.shutdown(timeout=5.0)
        self.assertFalse(worker.is_running)
        with self.assertRaises(RuntimeError):
            worker.submit(self.observation)
        with self.assertRaises(RuntimeError):
            worker.start()
        worker.shutdown()

    def test_observations_accumulate_while_busy(self):
        adjuster = SlowAdjuster()
        adjuster.release.clear()
        with RefinementWorker(self.map, adjuster) as worker:
            worker.submit(self.observation)
            time.sleep(0.05)
            for _ in range(3):
                worker.submit(self.observation)
            adjuster.release.set()
            self.assertTrue(worker.flush(timeout=5.0))
        # First pass saw one observation, later passes the full history
        self.assertEqual(adjuster.calls[0], 1)
        self.assertEqual(adjuster.calls[-1], 4)
        self.assertLessEqual(len(adjuster.calls), 4)

    def test_failed_pass_is_logged_and_worker_survives(self):
        adjuster = FailingAdjuster()
        with RefinementWorker(self.map, adjuster) as worker:
            with self.assertLogs("artrack.tracking.refinement", level="ERROR"):
                worker.submit(self.observation)
                self.assertTrue(worker.flush(timeout=5.0))
            worker.submit(self.observation)
            self.assertTrue(worker.flush(timeout=5.0))
            self.assertTrue(worker.is_running)
        self.assertEqual(adjuster.calls, 2)

    def test_estimates_survive_a_failed_pass(self):
        first = Pose(translation=[0.21, 0.0, 0.0])
        second = Pose(translation=[0.19, 0.0, 0.0])
        self.map.add_estimate(1, first)
        adjuster = FailingAdjuster()
        with RefinementWorker(self.map, adjuster) as worker:
            with self.assertLogs("artrack.tracking.refinement", level="ERROR"):
                worker.submit(self.observation)
                self.assertTrue(worker.flush(timeout=5.0))
            self.map.add_estimate(1, second)
            with self.assertLogs("artrack.tracking.refinement", level="ERROR"):
                worker.submit(self.observation)
                self.assertTrue(worker.flush(timeout=5.0))

        self.assertEqual(list(adjuster.estimates[0]), [1])
        self.assertEqual(len(adjuster.estimates[1][1]), 2)
        self.assertIs(adjuster.estimates[1][1][0], first)
        self.assertIs(adjuster.estimates[1][1][1], second)
        restored = self.map.take_estimates()
        self.assertEqual([p.translation[0] for p in restored[1]], [0.21, 0.19])

    def test_flush_without_start(self):
        worker = RefinementWorker(self.map, SlowAdjuster())
        self.assertFalse(worker.flush(timeout=0.1))
        worker.shutdown()

    def test_shutdown_while_idle_joins_thread(self):
        worker = RefinementWorker(self.map, SlowAdjuster())
        worker.start()
        worker.shutdown(timeout=5.0)
        self.assertFalse(worker.is_running)
        self.assertFalse(worker._thread.is_alive())
