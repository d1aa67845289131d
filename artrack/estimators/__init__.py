"""
State estimation algorithms for the tracking engine.

Available estimators:
    - Autodiff Extended Kalman Filter (Jacobians from jets)
    - Factor Graph Optimization (Gauss-Newton, Levenberg-Marquardt)
"""

from artrack.estimators.autodiff_kalman_filter import (
    AutodiffKalmanFilter,
    MeasurementSource,
)
from artrack.estimators.base import StateEstimator
from artrack.estimators.factor_graph import Factor, FactorGraph

__all__ = [
    "StateEstimator",
    "AutodiffKalmanFilter",
    "MeasurementSource",
    "Factor",
    "FactorGraph",
]
