"""
Base classes for recursive state estimators.

This module defines the abstract interface shared by the filters of the
tracking engine.
"""

from abc import ABC, abstractmethod
from typing import Optional, Tuple

import numpy as np


class StateEstimator(ABC):
    """Abstract base class for recursive state estimators."""

    def __init__(self, state_dim: int):
        """
        Initialize state estimator.

        Args:
            state_dim: Dimension of the state vector.
        """
        self.state_dim = state_dim
        self.state: Optional[np.ndarray] = None
        self.covariance: Optional[np.ndarray] = None

    @abstractmethod
    def predict(self, source, dt: float) -> None:
        """
        Perform prediction step (time update).

        Args:
            source: Model supplying the process function.
            dt: Time step in seconds.
        """
        pass

    @abstractmethod
    def update(self, source, dt: float, z: np.ndarray, R: np.ndarray) -> None:
        """
        Perform a prediction followed by a measurement update.

        Args:
            source: Model supplying the process and measurement functions.
            dt: Time step in seconds.
            z: Measurement vector.
            R: Measurement noise covariance.
        """
        pass

    def get_state(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Get current state estimate and covariance.

        Returns:
            Tuple of (state_vector, covariance_matrix), both copies.
        """
        if self.state is None or self.covariance is None:
            raise RuntimeError("Estimator not initialized")
        return self.state.copy(), self.covariance.copy()
