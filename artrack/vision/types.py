"""Type definitions shared by the camera model, detectors and PnP solver.

Key types:
    - CameraIntrinsics: Camera calibration parameters
    - MarkerDetection: One fiducial marker found in an image
"""

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class CameraIntrinsics:
    """
    Camera intrinsic parameters.

    Pinhole camera model with Brown-Conrady radial and tangential distortion
    (OpenCV convention, coefficient order k1, k2, p1, p2, k3).

    Attributes:
        fx: Focal length in x (pixels).
        fy: Focal length in y (pixels).
        cx: Principal point x-coordinate (pixels).
        cy: Principal point y-coordinate (pixels).
        k1: 1st radial distortion coefficient.
        k2: 2nd radial distortion coefficient.
        p1: 1st tangential distortion coefficient.
        p2: 2nd tangential distortion coefficient.
        k3: 3rd radial distortion coefficient.
        width: Image width in pixels.
        height: Image height in pixels.

    Examples:
        >>> K = CameraIntrinsics(fx=500.0, fy=500.0, cx=320.0, cy=240.0)
        >>> K.to_matrix().shape
        (3, 3)
    """

    fx: float
    fy: float
    cx: float
    cy: float
    k1: float = 0.0
    k2: float = 0.0
    p1: float = 0.0
    p2: float = 0.0
    k3: float = 0.0
    width: int = 640
    height: int = 480

    def __post_init__(self) -> None:
        """Validate camera parameters after initialization."""
        if self.fx <= 0:
            raise ValueError(f"fx must be positive, got {self.fx}")
        if self.fy <= 0:
            raise ValueError(f"fy must be positive, got {self.fy}")
        if self.width <= 0:
            raise ValueError(f"width must be positive, got {self.width}")
        if self.height <= 0:
            raise ValueError(f"height must be positive, got {self.height}")
        if not (0 <= self.cx < self.width):
            raise ValueError(f"cx must be in [0, {self.width}), got {self.cx}")
        if not (0 <= self.cy < self.height):
            raise ValueError(f"cy must be in [0, {self.height}), got {self.cy}")

    @classmethod
    def from_dict(cls, data: dict) -> "CameraIntrinsics":
        """Create intrinsics from a mapping such as a parsed JSON object."""
        return cls(**data)

    def to_matrix(self) -> np.ndarray:
        """
        Convert to 3x3 intrinsic matrix K.

        Returns:
            Intrinsic matrix of shape (3, 3):
                [[fx,  0, cx],
                 [ 0, fy, cy],
                 [ 0,  0,  1]]
        """
        return np.array(
            [[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )

    def distortion_coefficients(self) -> np.ndarray:
        """Distortion vector in OpenCV order (k1, k2, p1, p2, k3)."""
        return np.array([self.k1, self.k2, self.p1, self.p2, self.k3], dtype=np.float64)

    def has_distortion(self) -> bool:
        """True if any distortion coefficient is non-zero."""
        return bool(np.any(np.abs(self.distortion_coefficients()) > 1e-10))


@dataclass(frozen=True, eq=False)
class MarkerDetection:
    """
    A fiducial marker found in an image.

    Attributes:
        marker_id: Dictionary id of the marker.
        corners: Pixel coordinates of the four corners, shape (4, 2), in
            detector order (top-left, top-right, bottom-right, bottom-left
            in the marker's own frame).
    """

    marker_id: int
    corners: np.ndarray

    def __post_init__(self) -> None:
        corners = np.array(self.corners, dtype=np.float64).reshape(-1, 2)
        if corners.shape != (4, 2):
            raise ValueError(f"Expected 4 corners, got shape {corners.shape}")
        corners.setflags(write=False)
        object.__setattr__(self, "marker_id", int(self.marker_id))
        object.__setattr__(self, "corners", corners)
