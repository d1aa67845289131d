"""
Background refinement of the marker map.

Two pieces:
    - BundleAdjuster: jointly optimises marker poses and camera poses of the
      most recent observations by minimising the reprojection error of the
      marker corners on the normalised image plane (Levenberg-Marquardt on a
      factor graph, Jacobians from jets).
    - RefinementWorker: a thread owned by the marker tracker that receives
      observations through :meth:`RefinementWorker.submit`, runs a refinement
      pass whenever new observations arrive, and writes the results back to
      the marker map.

Poses are parametrised as 6-vectors [rotvec, t]. Camera variables are
world-to-camera transforms, marker variables marker-to-world transforms.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from artrack.coords.pose import Pose
from artrack.coords.rotations import quat_average, quat_to_rotation_matrix, rotvec_to_quat
from artrack.estimators.factor_graph import Factor, FactorGraph
from artrack.tracking.config import RefinementConfig
from artrack.tracking.marker_map import MarkerMap
from artrack.tracking.types import PoseObservation
from artrack.vision.camera import marker_object_points, normalize_pixels, project_normalized
from artrack.vision.types import CameraIntrinsics

logger = logging.getLogger(__name__)


def _transform(v, points: np.ndarray):
    """Apply the 6-vector pose ``v`` to ``points`` (N, 3); jet-friendly."""
    R = quat_to_rotation_matrix(rotvec_to_quat(v[0:3]))
    return points @ R.T + v[3:6]


def consolidate_estimates(current: Pose, estimates: Sequence[Pose]) -> Pose:
    """
    Merge raw pose estimates of one marker into a single pose.

    The rotation is the quaternion average of the current pose and the
    estimates, the translation their mean.
    """
    poses = [current] + list(estimates)
    q = quat_average([p.rotation for p in poses])
    t = np.mean([p.translation for p in poses], axis=0)
    return Pose(q, t)


@dataclass
class RefinementResult:
    """
    Output of one refinement pass.

    Attributes:
        markers: Refined marker-to-world poses by marker id.
        camera_poses: Refined world-to-camera poses by frame index.
        error_history: Total squared error per accepted iteration.
    """

    markers: Dict[int, Pose] = field(default_factory=dict)
    camera_poses: Dict[int, Pose] = field(default_factory=dict)
    error_history: List[float] = field(default_factory=list)

    @property
    def initial_error(self) -> float:
        return self.error_history[0] if self.error_history else 0.0

    @property
    def final_error(self) -> float:
        return self.error_history[-1] if self.error_history else 0.0


class BundleAdjuster:
    """
    Joint optimisation of marker and camera poses.

    Attributes:
        intrinsics: Camera calibration used to normalise observed corners.
        object_points: Marker corner layout, shape (4, 3).
        config: Window, iteration budget and noise model.
    """

    def __init__(
        self,
        intrinsics: CameraIntrinsics,
        marker_length: float,
        config: Optional[RefinementConfig] = None,
    ):
        self.intrinsics = intrinsics
        self.object_points = marker_object_points(marker_length)
        self.config = config or RefinementConfig()

    def _reprojection_factor(self, pose_key, marker_key, observed: np.ndarray) -> Factor:
        corners = self.object_points
        information = (self.intrinsics.fx / self.config.pixel_sigma) ** 2 * np.eye(8)

        def residual(x_vars):
            camera, marker = x_vars
            p_world = _transform(marker, corners)
            p_camera = _transform(camera, p_world)
            return project_normalized(p_camera) - observed

        return Factor([pose_key, marker_key], residual, information)

    def refine(
        self,
        observations: Sequence[PoseObservation],
        markers: Dict[int, Pose],
        reference_id: int,
        estimates: Optional[Dict[int, List[Pose]]] = None,
    ) -> RefinementResult:
        """
        Run one refinement pass.

        Args:
            observations: Observation history, oldest first. Only the most
                recent ``config.window`` entries are optimised.
            markers: Current marker-to-world poses of the mapped markers.
            reference_id: Marker defining the world frame; held fixed.
            estimates: Raw per-marker estimates to consolidate first.

        Returns:
            RefinementResult with the consolidated/refined marker poses and
            the refined camera poses of the window.
        """
        initial = dict(markers)
        result = RefinementResult()
        for marker_id, poses in (estimates or {}).items():
            if marker_id in initial and marker_id != reference_id and poses:
                initial[marker_id] = consolidate_estimates(initial[marker_id], poses)
                result.markers[marker_id] = initial[marker_id]

        window = list(observations)[-self.config.window:]
        if len(window) < self.config.min_observations:
            return result

        graph = FactorGraph()
        for obs in window:
            pose_key = ("pose", obs.frame_index)
            for det in obs.detections:
                if det.marker_id not in initial:
                    continue
                marker_key = ("marker", det.marker_id)
                if pose_key not in graph.variables:
                    graph.add_variable(pose_key, obs.camera_pose.to_vector())
                if marker_key not in graph.variables:
                    graph.add_variable(marker_key, initial[det.marker_id].to_vector())
                observed = normalize_pixels(self.intrinsics, det.corners).reshape(-1)
                graph.add_factor(self._reprojection_factor(pose_key, marker_key, observed))

        if not graph.factors:
            return result

        reference_key = ("marker", reference_id)
        if reference_key in graph.variables:
            graph.fix_variable(reference_key)
        else:
            # Reference not seen in the window: hold the oldest camera instead
            graph.fix_variable(min(k for k in graph.variables if k[0] == "pose"))

        variables, error_history = graph.optimize(
            method="levenberg_marquardt",
            max_iterations=self.config.max_iterations,
            tol=self.config.tolerance,
        )

        for (kind, index), value in variables.items():
            if kind == "marker" and index != reference_id:
                result.markers[index] = Pose.from_vector(value)
            elif kind == "pose":
                result.camera_poses[index] = Pose.from_vector(value)
        result.error_history = error_history
        return result


class RefinementWorker:
    """
    Owned background thread refining a marker map.

    Callers interact only through :meth:`submit`, :meth:`snapshot`,
    :meth:`flush` and :meth:`shutdown`. The worker sleeps on a condition
    variable until observations arrive or shutdown is requested, and checks
    the running flag on every wake before starting a pass. The full
    observation history is retained; refined camera poses are written back
    into it.

    Example:
        >>> with RefinementWorker(marker_map, adjuster) as worker:
        ...     worker.submit(observation)
        ...     worker.flush(timeout=5.0)
    """

    def __init__(self, marker_map: MarkerMap, adjuster: BundleAdjuster):
        self.marker_map = marker_map
        self.adjuster = adjuster
        self.passes = 0
        self.last_result: Optional[RefinementResult] = None

        self._cond = threading.Condition()
        self._pending: deque = deque()
        self._history: List[PoseObservation] = []
        self._running = False
        self._closed = False
        self._busy = False
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        with self._cond:
            running = self._running
        return running and self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """
        Start the worker thread (no-op if already running).

        Raises:
            RuntimeError: If the worker was shut down.
        """
        with self._cond:
            if self._closed:
                raise RuntimeError("Refinement worker has been shut down")
            if self._running:
                return
            self._running = True
            self._thread = threading.Thread(
                target=self._run, name="marker-map-refinement", daemon=True
            )
            self._thread.start()
        logger.info("Refinement worker started")

    def submit(self, observation: PoseObservation) -> None:
        """
        Queue an observation and wake the worker.

        Raises:
            RuntimeError: If the worker was shut down.
        """
        with self._cond:
            if self._closed:
                raise RuntimeError("Refinement worker has been shut down")
            self._pending.append(observation)
            self._cond.notify()

    def snapshot(self) -> Tuple[PoseObservation, ...]:
        """Immutable copy of all observations, processed and pending."""
        with self._cond:
            return tuple(self._history) + tuple(self._pending)

    def flush(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until every submitted observation has been processed.

        Returns:
            True if the queue drained, False on timeout or if the worker is
            not running.
        """
        with self._cond:
            self._cond.wait_for(
                lambda: not self._running or (not self._pending and not self._busy),
                timeout,
            )
            return self._running and not self._pending and not self._busy

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """Stop the worker and join its thread. Safe to call more than once."""
        with self._cond:
            self._closed = True
            self._running = False
            self._cond.notify_all()
            thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
            if thread.is_alive():
                logger.warning("Refinement worker did not stop within %s s", timeout)
            else:
                logger.info("Refinement worker stopped after %d passes", self.passes)

    def __enter__(self) -> "RefinementWorker":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown()

    def _run(self) -> None:
        while True:
            with self._cond:
                self._cond.wait_for(lambda: self._pending or not self._running)
                if not self._running:
                    break
                self._history.extend(self._pending)
                self._pending.clear()
                self._busy = True
                observations = list(self._history)

            try:
                self._refine(observations)
            except Exception:
                logger.exception("Marker map refinement pass failed")
            finally:
                with self._cond:
                    self._busy = False
                    self.passes += 1
                    self._cond.notify_all()

    def _refine(self, observations: List[PoseObservation]) -> None:
        reference_id = self.marker_map.reference_id
        if reference_id is None:
            return
        markers = self.marker_map.snapshot()
        estimates = self.marker_map.take_estimates()

        try:
            result = self.adjuster.refine(observations, markers, reference_id, estimates)
        except Exception:
            self.marker_map.restore_estimates(estimates)
            raise
        updated = self.marker_map.apply_refinement(result.markers)

        if result.camera_poses:
            with self._cond:
                for i, obs in enumerate(self._history):
                    pose = result.camera_poses.get(obs.frame_index)
                    if pose is not None:
                        self._history[i] = obs.with_pose(pose)

        self.last_result = result
        logger.debug(
            "Refinement pass over %d observations: %d markers updated, error %.3g -> %.3g",
            len(observations),
            updated,
            result.initial_error,
            result.final_error,
        )
