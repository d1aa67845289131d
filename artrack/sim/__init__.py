"""
Simulation utilities for exercising the tracker without a camera.

Modules:
    marker_scene: Marker layouts, camera trajectories and synthetic detections
    inertial: Inertial samples generated from a camera trajectory
"""

from artrack.sim.inertial import (
    STANDARD_GRAVITY,
    InertialSamples,
    compute_angular_velocity,
    generate_inertial_samples,
)
from artrack.sim.marker_scene import (
    MarkerScene,
    SceneDetector,
    grid_marker_poses,
    look_at,
    orbit_trajectory,
)

__all__ = [
    "MarkerScene",
    "SceneDetector",
    "grid_marker_poses",
    "look_at",
    "orbit_trajectory",
    "InertialSamples",
    "STANDARD_GRAVITY",
    "compute_angular_velocity",
    "generate_inertial_samples",
]
