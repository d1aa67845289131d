"""Camera projection and distortion models.

This module implements the camera model used by the tracker:
    - Pinhole projection with Brown-Conrady distortion (simulation, checks)
    - Normalised-plane projection that also works on jets (refinement)
    - Pixel undistortion to the normalised image plane (OpenCV)
    - Object-space corner layout of a square fiducial marker

Camera frame: X-right, Y-down, Z-forward.
"""

import cv2
import numpy as np

from artrack.vision.types import CameraIntrinsics


def marker_object_points(length: float) -> np.ndarray:
    """
    Corners of a square marker in its own frame, in detector order.

    The marker lies in the z=0 plane, centred on the origin; the order is
    top-left, top-right, bottom-right, bottom-left as seen from the front
    (+y is up on the printed marker).

    Args:
        length: Side length of the marker.

    Returns:
        Corner coordinates, shape (4, 3).

    Raises:
        ValueError: If length is not positive.
    """
    if length <= 0:
        raise ValueError(f"length must be positive, got {length}")
    h = 0.5 * length
    return np.array(
        [[-h, +h, 0.0], [+h, +h, 0.0], [+h, -h, 0.0], [-h, -h, 0.0]],
        dtype=np.float64,
    )


def distort_normalized(xy_normalized: np.ndarray, intrinsics: CameraIntrinsics) -> np.ndarray:
    """
    Apply radial and tangential distortion to normalized image coordinates.

    The distortion model:
        x_d = x * (1 + k1*r² + k2*r⁴ + k3*r⁶) + 2*p1*x*y + p2*(r² + 2*x²)
        y_d = y * (1 + k1*r² + k2*r⁴ + k3*r⁶) + p1*(r² + 2*y²) + 2*p2*x*y

    where r² = x² + y² and (x, y) are normalized image coordinates.

    Args:
        xy_normalized: Normalized image coordinates, shape (N, 2).
        intrinsics: Camera parameters holding the distortion coefficients.

    Returns:
        Distorted normalized coordinates, shape (N, 2).
    """
    x = xy_normalized[:, 0]
    y = xy_normalized[:, 1]
    k1, k2, p1, p2, k3 = intrinsics.distortion_coefficients()

    r2 = x**2 + y**2
    radial = 1.0 + k1 * r2 + k2 * r2**2 + k3 * r2**3
    x_d = x * radial + 2.0 * p1 * x * y + p2 * (r2 + 2.0 * x**2)
    y_d = y * radial + p1 * (r2 + 2.0 * y**2) + 2.0 * p2 * x * y
    return np.column_stack([x_d, y_d])


def project_points(intrinsics: CameraIntrinsics, points_camera: np.ndarray) -> np.ndarray:
    """
    Project 3D points in the camera frame to pixel coordinates.

    The projection follows:
        1. Normalize: (x_n, y_n) = (X/Z, Y/Z)
        2. Distort: (x_d, y_d) = distort(x_n, y_n)
        3. Scale: (u, v) = (fx*x_d + cx, fy*y_d + cy)

    Args:
        intrinsics: Camera intrinsic parameters.
        points_camera: 3D point(s) in camera frame, shape (3,) or (N, 3).

    Returns:
        Pixel coordinates (u, v), shape (2,) or (N, 2).

    Raises:
        ValueError: If a point is behind the camera (Z <= 0).

    Example:
        >>> K = CameraIntrinsics(fx=500, fy=500, cx=320, cy=240)
        >>> project_points(K, np.array([0.0, 0.0, 2.0]))
        array([320., 240.])
    """
    points_camera = np.asarray(points_camera, dtype=np.float64)
    single_point = points_camera.ndim == 1
    points = points_camera.reshape(-1, 3)

    Z = points[:, 2]
    if np.any(Z <= 0):
        raise ValueError("Cannot project points behind camera (Z <= 0)")

    xy = points[:, :2] / Z[:, None]
    xy_d = distort_normalized(xy, intrinsics)

    u = intrinsics.fx * xy_d[:, 0] + intrinsics.cx
    v = intrinsics.fy * xy_d[:, 1] + intrinsics.cy
    result = np.column_stack([u, v])
    return result.reshape(-1) if single_point else result


def project_normalized(points_camera: np.ndarray) -> np.ndarray:
    """
    Project camera-frame points onto the z=1 plane (jet-friendly).

    Args:
        points_camera: Points, shape (N, 3), float or jet object array.

    Returns:
        Flattened normalised coordinates [x0, y0, x1, y1, ...], shape (2N,).
    """
    X = points_camera[:, 0]
    Y = points_camera[:, 1]
    Z = points_camera[:, 2]
    return np.stack([X / Z, Y / Z], axis=1).reshape(-1)


def normalize_pixels(intrinsics: CameraIntrinsics, pixels: np.ndarray) -> np.ndarray:
    """
    Undistort pixel coordinates onto the normalised image plane.

    Args:
        intrinsics: Camera intrinsic parameters.
        pixels: Pixel coordinates, shape (N, 2).

    Returns:
        Normalised coordinates (x, y) with z=1, shape (N, 2).
    """
    pts = np.asarray(pixels, dtype=np.float64).reshape(-1, 1, 2)
    out = cv2.undistortPoints(
        pts, intrinsics.to_matrix(), intrinsics.distortion_coefficients()
    )
    return out.reshape(-1, 2)


def is_in_image(intrinsics: CameraIntrinsics, pixels: np.ndarray, margin: float = 0.0) -> np.ndarray:
    """Boolean mask of pixels lying inside the image, ``margin`` pixels from the border."""
    pixels = np.asarray(pixels, dtype=np.float64).reshape(-1, 2)
    return (
        (pixels[:, 0] >= margin)
        & (pixels[:, 0] < intrinsics.width - margin)
        & (pixels[:, 1] >= margin)
        & (pixels[:, 1] < intrinsics.height - margin)
    )
