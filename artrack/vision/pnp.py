"""Perspective-n-Point pose solver backed by OpenCV.

The solver returns the pose mapping world points into the camera frame
(OpenCV convention). Exactly four points (one marker) are solved with P3P,
more points with SQPnP followed by Levenberg-Marquardt refinement. Robust
solves of more than four points use RANSAC with EPnP hypotheses followed by
Levenberg-Marquardt refinement on the inliers.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

from artrack.coords.pose import Pose
from artrack.vision.types import CameraIntrinsics

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PoseSolution:
    """
    Result of a PnP solve.

    Attributes:
        pose: World-to-camera pose (identity when the solve failed).
        ok: Whether the solve succeeded.
        inliers: Indices of the correspondences accepted by RANSAC, or None
            for non-robust solves.
    """

    pose: Pose
    ok: bool
    inliers: Optional[np.ndarray] = None

    @classmethod
    def failure(cls) -> "PoseSolution":
        return cls(Pose.identity(), False, None)


class PnPSolver:
    """
    Camera pose from 3D-2D correspondences.

    Attributes:
        intrinsics: Calibration of the camera that took the image.
        ransac_iterations: RANSAC iteration budget.
        reprojection_error: RANSAC inlier threshold in pixels.
        confidence: RANSAC success probability.
    """

    def __init__(
        self,
        intrinsics: CameraIntrinsics,
        ransac_iterations: int = 100,
        reprojection_error: float = 5.0,
        confidence: float = 0.99,
    ):
        self.intrinsics = intrinsics
        self.ransac_iterations = ransac_iterations
        self.reprojection_error = reprojection_error
        self.confidence = confidence
        self._K = intrinsics.to_matrix()
        self._dist = intrinsics.distortion_coefficients()

    def solve(self, world: np.ndarray, image: np.ndarray, robust: bool = False) -> PoseSolution:
        """
        Solve for the world-to-camera pose.

        Args:
            world: World points, shape (N, 3).
            image: Pixel observations, shape (N, 2).
            robust: Use RANSAC when more than four points are given.

        Returns:
            PoseSolution; ``ok`` is False for mismatched or too few
            correspondences, solver failures and solutions that place
            points behind the camera.
        """
        world = np.asarray(world, dtype=np.float64).reshape(-1, 3)
        image = np.asarray(image, dtype=np.float64).reshape(-1, 2)
        n = world.shape[0]
        if n != image.shape[0] or n < 4:
            logger.debug("Rejecting PnP with %d world and %d image points", n, image.shape[0])
            return PoseSolution.failure()

        inliers = None
        try:
            if robust and n > 4:
                ok, rvec, tvec, inliers = cv2.solvePnPRansac(
                    world,
                    image,
                    self._K,
                    self._dist,
                    iterationsCount=self.ransac_iterations,
                    reprojectionError=self.reprojection_error,
                    confidence=self.confidence,
                    flags=cv2.SOLVEPNP_EPNP,
                )
                if ok and inliers is not None and len(inliers) >= 4:
                    inliers = inliers.reshape(-1)
                    rvec, tvec = cv2.solvePnPRefineLM(
                        world[inliers], image[inliers], self._K, self._dist, rvec, tvec
                    )
            elif n == 4:
                ok, rvec, tvec = cv2.solvePnP(
                    world, image, self._K, self._dist, flags=cv2.SOLVEPNP_P3P
                )
            else:
                # SQPnP handles the coplanar corners of a marker field
                ok, rvec, tvec = cv2.solvePnP(
                    world, image, self._K, self._dist, flags=cv2.SOLVEPNP_SQPNP
                )
                if ok:
                    rvec, tvec = cv2.solvePnPRefineLM(
                        world, image, self._K, self._dist, rvec, tvec
                    )
        except cv2.error as exc:
            logger.debug("PnP solve failed: %s", exc)
            return PoseSolution.failure()

        if not ok or rvec is None or tvec is None:
            return PoseSolution.failure()
        if not (np.all(np.isfinite(rvec)) and np.all(np.isfinite(tvec))):
            return PoseSolution.failure()

        pose = Pose.from_rvec_tvec(rvec, tvec)
        if np.any(pose.transform_points(world)[:, 2] <= 0.0):
            return PoseSolution.failure()
        return PoseSolution(pose, True, inliers)

    __call__ = solve
