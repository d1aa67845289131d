"""Fiducial detectors backed by OpenCV.

- ArucoMarkerDetector: square ArUco markers (ids + four corners each)
- CircleGridDetector: asymmetric circle calibration grid
"""

import logging
from typing import List, Optional

import cv2
import numpy as np

from artrack.vision.types import MarkerDetection

logger = logging.getLogger(__name__)


def _to_gray(image: np.ndarray) -> np.ndarray:
    if image.ndim == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    return image


class ArucoMarkerDetector:
    """
    Detect ArUco markers in images.

    Attributes:
        dictionary_name: Name of the predefined OpenCV dictionary.
        detector: Underlying ``cv2.aruco.ArucoDetector``.
    """

    def __init__(self, dictionary: str = "DICT_6X6_250", refine_corners: bool = True):
        """
        Args:
            dictionary: Name of a predefined dictionary in ``cv2.aruco``.
            refine_corners: Enable sub-pixel corner refinement.

        Raises:
            ValueError: If the dictionary name is unknown.
        """
        dict_attr = getattr(cv2.aruco, dictionary, None)
        if dict_attr is None:
            raise ValueError(f"Unknown ArUco dictionary: {dictionary}")
        self.dictionary_name = dictionary
        self.dictionary = cv2.aruco.getPredefinedDictionary(dict_attr)
        self.parameters = cv2.aruco.DetectorParameters()
        if refine_corners:
            self.parameters.cornerRefinementMethod = cv2.aruco.CORNER_REFINE_SUBPIX
        self.detector = cv2.aruco.ArucoDetector(self.dictionary, self.parameters)

    def detect(self, image: np.ndarray) -> List[MarkerDetection]:
        """
        Find markers in an image.

        Args:
            image: Grayscale or BGR image.

        Returns:
            One detection per marker found, in detector order.
        """
        corners, ids, _ = self.detector.detectMarkers(_to_gray(image))
        if ids is None:
            return []
        return [
            MarkerDetection(int(marker_id), c.reshape(4, 2))
            for marker_id, c in zip(ids.reshape(-1), corners)
        ]

    __call__ = detect


class CircleGridDetector:
    """
    Detect an asymmetric circle grid.

    The grid has ``rows`` rows of ``cols`` circles; odd rows are shifted by
    half a column. Object points lie in the z=0 plane at
    ((2j + i % 2) * spacing, i * spacing).
    """

    def __init__(self, rows: int = 11, cols: int = 4, spacing: float = 0.04):
        if rows <= 0 or cols <= 0:
            raise ValueError(f"Grid must have positive size, got {rows}x{cols}")
        if spacing <= 0:
            raise ValueError(f"spacing must be positive, got {spacing}")
        self.rows = rows
        self.cols = cols
        self.spacing = spacing

    def object_points(self) -> np.ndarray:
        """Grid circle centres in the pattern frame, shape (rows * cols, 3)."""
        points = [
            ((2 * j + i % 2) * self.spacing, i * self.spacing, 0.0)
            for i in range(self.rows)
            for j in range(self.cols)
        ]
        return np.array(points, dtype=np.float64)

    def detect(self, image: np.ndarray) -> Optional[np.ndarray]:
        """
        Find the grid in an image.

        Returns:
            Circle centres in pixels, shape (rows * cols, 2), or None if the
            full pattern was not found.
        """
        found, centers = cv2.findCirclesGrid(
            _to_gray(image),
            (self.cols, self.rows),
            flags=cv2.CALIB_CB_ASYMMETRIC_GRID | cv2.CALIB_CB_CLUSTERING,
        )
        if not found or centers is None:
            logger.debug("Circle grid not found")
            return None
        return centers.reshape(-1, 2).astype(np.float64)

    __call__ = detect
