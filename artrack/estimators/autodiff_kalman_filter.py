"""
Extended Kalman Filter with automatically differentiated models.

The process and measurement functions of a filter are supplied as plain
Python functions written only with ``+ - * / sqrt sin cos``. Evaluating them
on jets (see :mod:`artrack.autodiff`) gives the predicted state and the
predicted measurement together with their exact Jacobians, so no derivative
is ever coded by hand.

Implements, for a state x (N), process noise w (WN) and measurement noise v:
    - Prediction
      x' = f(x, w=0, dt),  F = ∂f/∂x,  W = ∂f/∂w
      P' = F P Fᵀ + W Q Wᵀ
    - Update
      z = h(x', v=0),  H = ∂h/∂x,  V = ∂h/∂v
      K = P' Hᵀ (H P' Hᵀ + V R Vᵀ)⁻¹
      x = x' + K (z_m − z)
      P = (I − K H) P'

The state and covariance arrays are replaced on every step and never
modified in place, so a reader holding a reference always sees a consistent
snapshot.
"""

from abc import ABC, abstractmethod
from typing import Tuple

import numpy as np

from artrack.autodiff import jacobian, make_variables, values
from artrack.estimators.base import StateEstimator


class MeasurementSource(ABC):
    """
    Process and measurement model for one sensor feeding a filter.

    Subclasses implement :meth:`predict` and :meth:`measure` using only the
    operations supported by jets. ``noise_dim`` is the dimension of the
    measurement noise vector v (and of the measurement itself).
    """

    noise_dim: int = 0

    @abstractmethod
    def predict(self, x: np.ndarray, w: np.ndarray, dt: float) -> np.ndarray:
        """Propagate state ``x`` over ``dt`` with process noise ``w``."""

    @abstractmethod
    def measure(self, x: np.ndarray, v: np.ndarray) -> np.ndarray:
        """Predicted measurement of state ``x`` with measurement noise ``v``."""

    def innovation(self, zm: np.ndarray, z: np.ndarray) -> np.ndarray:
        """Difference between the measured and predicted measurement."""
        return zm - z


class AutodiffKalmanFilter(StateEstimator):
    """
    Extended Kalman Filter whose Jacobians come from forward-mode autodiff.

    Attributes:
        state: Current state estimate x (N,).
        covariance: Current state covariance P (N×N).
        Q: Process noise covariance (WN×WN).
        noise_dim: Process noise dimension WN.

    Example:
        >>> class ConstantVelocity(MeasurementSource):
        ...     noise_dim = 1
        ...     def predict(self, x, w, dt):
        ...         return np.array([x[0] + x[1] * dt, x[1] + w[0]], dtype=object)
        ...     def measure(self, x, v):
        ...         return np.array([x[0] + v[0]], dtype=object)
        >>> kf = AutodiffKalmanFilter(np.zeros(2), np.eye(2), np.eye(1) * 1e-3)
        >>> kf.update(ConstantVelocity(), 0.1, np.array([1.0]), np.eye(1) * 1e-2)
    """

    def __init__(self, x0: np.ndarray, P0: np.ndarray, Q: np.ndarray):
        """
        Initialize the filter.

        Args:
            x0: Initial state estimate (N,).
            P0: Initial state covariance (N×N).
            Q: Process noise covariance (WN×WN).

        Raises:
            ValueError: If dimensions are inconsistent.
        """
        x0 = np.asarray(x0, dtype=float).reshape(-1)
        super().__init__(x0.shape[0])

        P0 = np.asarray(P0, dtype=float)
        Q = np.atleast_2d(np.asarray(Q, dtype=float))
        if P0.shape != (self.state_dim, self.state_dim):
            raise ValueError(
                f"P0 shape {P0.shape} inconsistent with state_dim {self.state_dim}"
            )
        if Q.ndim != 2 or Q.shape[0] != Q.shape[1]:
            raise ValueError(f"Q must be square, got shape {Q.shape}")

        self.state = x0.copy()
        self.covariance = P0.copy()
        self.Q = Q.copy()
        self.noise_dim = Q.shape[0]

    def linearize_predict(
        self, source: MeasurementSource, dt: float
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Evaluate the process model on jets at the current state.

        Args:
            source: Model supplying ``predict``.
            dt: Time step in seconds.

        Returns:
            Tuple (x_pred, F, W): predicted state (N,), Jacobian with respect to
            the state (N×N) and with respect to the process noise (N×WN).

        Raises:
            ValueError: If the model returns a state of the wrong size.
        """
        n, wn = self.state_dim, self.noise_dim
        size = n + wn
        x = make_variables(self.state, 0, size)
        w = make_variables(np.zeros(wn), n, size)

        out = source.predict(x, w, dt)
        x_pred = values(out)
        if x_pred.shape != (n,):
            raise ValueError(
                f"Process model returned shape {x_pred.shape}, expected ({n},)"
            )
        J = jacobian(out, size)
        return x_pred, J[:, :n], J[:, n:]

    def linearize_measure(
        self, source: MeasurementSource, x: np.ndarray
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Evaluate the measurement model on jets at state ``x``.

        Returns:
            Tuple (z, H, V): predicted measurement (M,), Jacobian with respect
            to the state (M×N) and with respect to the measurement noise (M×M).
        """
        n, m = self.state_dim, source.noise_dim
        size = n + m
        xj = make_variables(x, 0, size)
        vj = make_variables(np.zeros(m), n, size)

        out = source.measure(xj, vj)
        J = jacobian(out, size)
        return values(out), J[:, :n], J[:, n:]

    def predict(self, source: MeasurementSource, dt: float) -> None:
        """
        Time update only.

        Args:
            source: Model supplying ``predict``.
            dt: Time step in seconds.
        """
        x_pred, F, W = self.linearize_predict(source, dt)
        P = self.covariance
        self.covariance = F @ P @ F.T + W @ self.Q @ W.T
        self.state = x_pred

    def update(
        self, source: MeasurementSource, dt: float, z: np.ndarray, R: np.ndarray
    ) -> None:
        """
        Prediction over ``dt`` followed by a measurement update.

        Args:
            source: Model supplying ``predict``, ``measure`` and ``innovation``.
            dt: Time since the previous update in seconds.
            z: Measurement vector (M,).
            R: Measurement noise covariance (M×M).

        Raises:
            ValueError: If ``z`` or ``R`` do not match the measurement model.
            numpy.linalg.LinAlgError: If the innovation covariance is singular.
        """
        zm = np.asarray(z, dtype=float).reshape(-1)
        R = np.atleast_2d(np.asarray(R, dtype=float))
        m = source.noise_dim
        if zm.shape != (m,):
            raise ValueError(f"Measurement shape {zm.shape}, expected ({m},)")
        if R.shape != (m, m):
            raise ValueError(f"R shape {R.shape}, expected ({m}, {m})")

        # Time update
        x_pred, F, W = self.linearize_predict(source, dt)
        P_pred = F @ self.covariance @ F.T + W @ self.Q @ W.T

        # Measurement update
        z_pred, H, V = self.linearize_measure(source, x_pred)
        S = H @ P_pred @ H.T + V @ R @ V.T
        K = P_pred @ H.T @ np.linalg.inv(S)

        innovation = source.innovation(zm, z_pred)
        I_KH = np.eye(self.state_dim) - K @ H

        self.state = x_pred + K @ innovation
        self.covariance = I_KH @ P_pred
