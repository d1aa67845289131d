"""Marker + inertial camera tracking for augmented reality.

This package contains the components of the tracking engine:
- autodiff: Dual numbers (jets) for exact Jacobians
- coords: Quaternion and rotation utilities
- estimators: Autodiff Kalman filter and factor graph optimisation
- vision: Camera model, marker detection and PnP (OpenCV)
- tracking: Filters, marker map, background refinement and the Tracker
- sim: Synthetic marker scenes and inertial samples for tests and demos
- eval: Trajectory error metrics
"""

__version__ = "0.1.0"
