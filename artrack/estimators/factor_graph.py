"""
Factor Graph Optimization for batch nonlinear least squares.

This module implements the optimizer used by the background refinement of
the marker map. Variables are vectors identified by hashable, mutually
orderable keys (for example ``("marker", 7)`` or ``("pose", 42)``); factors
are weighted residuals over a subset of the variables.

Implements:
    - Sum of weighted squared residuals: error = Σ rᵢᵀ Λᵢ rᵢ
    - Gauss-Newton update: (JᵀΛJ) δx = -JᵀΛr
    - Levenberg-Marquardt update: (JᵀΛJ + μI) δx = -JᵀΛr with gain-ratio
      damping control
    - Gauge fixing: fixed variables keep their value and are left out of
      the linear system
"""

from typing import Callable, Dict, Hashable, List, Optional, Sequence, Tuple

import numpy as np

from artrack.autodiff import jacobian, make_variables, values


def _predicted_reduction(step: np.ndarray, mu: float, b: np.ndarray) -> float:
    """
    Decrease of Σ rᵀΛr predicted by the linearised model for a damped step.

    With (H + μI) δ = b and b = -JᵀΛr the quadratic model gives
    2δᵀb - δᵀHδ = δᵀ(μδ + b).
    """
    return float(np.dot(step, mu * step + b))


class Factor:
    """
    Factor in a factor graph representing a constraint or measurement.

    A factor encodes a probabilistic constraint on a subset of variables.
    For Gaussian factors, this is equivalent to minimizing a squared residual.

    Attributes:
        variable_ids: Keys of the variables this factor connects
        residual_func: Function computing residual r(x_subset)
        jacobian_func: Function computing Jacobians ∂r/∂x, or None to
            differentiate ``residual_func`` automatically
        information: Information matrix (inverse covariance) for this factor
    """

    def __init__(
        self,
        variable_ids: Sequence[Hashable],
        residual_func: Callable[[List[np.ndarray]], np.ndarray],
        information: np.ndarray,
        jacobian_func: Optional[Callable[[List[np.ndarray]], List[np.ndarray]]] = None,
    ):
        """
        Initialize Factor.

        Args:
            variable_ids: Keys of the variables connected by this factor.
            residual_func: Function computing residual r(x_vars) where x_vars
                is a list of variable values. Without ``jacobian_func`` it is
                also evaluated on jets, so it must only use jet operations.
            information: Information matrix Λ (inverse of covariance matrix).
                For scalar residual: [[1/σ²]].
            jacobian_func: Optional function computing [∂r/∂x₁, ∂r/∂x₂, ...].
        """
        self.variable_ids = list(variable_ids)
        self.residual_func = residual_func
        self.jacobian_func = jacobian_func
        self.information = np.atleast_2d(np.asarray(information, dtype=float))

    def compute_error(self, variables: Dict[Hashable, np.ndarray]) -> float:
        """
        Compute squared error for this factor.

        Implements: error = rᵀ Λ r where r is the residual.

        Args:
            variables: Dictionary mapping variable key to value.

        Returns:
            Squared error (scalar).
        """
        x_vars = [variables[vid] for vid in self.variable_ids]
        r = values(self.residual_func(x_vars))
        return float(r.T @ self.information @ r)

    def linearize(
        self, variables: Dict[Hashable, np.ndarray]
    ) -> Tuple[np.ndarray, List[np.ndarray]]:
        """
        Linearize the factor around current variable values.

        Args:
            variables: Dictionary mapping variable key to value.

        Returns:
            Tuple of (residual, jacobians) where jacobians is a list
            of Jacobian matrices for each connected variable.
        """
        x_vars = [variables[vid] for vid in self.variable_ids]
        if self.jacobian_func is not None:
            r = values(self.residual_func(x_vars))
            return r, [np.atleast_2d(J) for J in self.jacobian_func(x_vars)]

        # Seed every connected variable into one derivative space
        dims = [len(x) for x in x_vars]
        size = sum(dims)
        jets = []
        offset = 0
        for x, dim in zip(x_vars, dims):
            jets.append(make_variables(x, offset, size))
            offset += dim

        out = self.residual_func(jets)
        J = jacobian(out, size)
        splits = np.cumsum(dims)[:-1]
        return values(out), np.hsplit(J, splits)


class FactorGraph:
    """
    Factor Graph for batch state estimation.

    Represents a graph where nodes are variables (states) and edges are
    factors (constraints/measurements). Optimization finds the Maximum
    A Posteriori (MAP) estimate of all free variables.

    Attributes:
        variables: Dictionary mapping variable key to current value
        factors: List of factors in the graph
        variable_dims: Dictionary mapping variable key to dimension
        fixed: Keys of variables held constant during optimization
    """

    def __init__(self):
        """Initialize empty Factor Graph."""
        self.variables: Dict[Hashable, np.ndarray] = {}
        self.factors: List[Factor] = []
        self.variable_dims: Dict[Hashable, int] = {}
        self.fixed: set = set()

    def add_variable(self, var_id: Hashable, initial_value: np.ndarray) -> None:
        """
        Add a variable to the graph.

        Args:
            var_id: Unique key for this variable.
            initial_value: Initial value for the variable (n,).
        """
        self.variables[var_id] = np.asarray(initial_value, dtype=float).copy()
        self.variable_dims[var_id] = len(initial_value)

    def fix_variable(self, var_id: Hashable) -> None:
        """
        Hold a variable constant (e.g. to fix the gauge of the problem).

        Raises:
            ValueError: If the variable is not in the graph.
        """
        if var_id not in self.variables:
            raise ValueError(f"Variable {var_id} not in graph")
        self.fixed.add(var_id)

    def add_factor(self, factor: Factor) -> None:
        """
        Add a factor to the graph.

        Args:
            factor: Factor connecting variables.

        Raises:
            ValueError: If any variable key in factor is not in graph.
        """
        for vid in factor.variable_ids:
            if vid not in self.variables:
                raise ValueError(f"Variable {vid} not in graph")
        self.factors.append(factor)

    def compute_error(self) -> float:
        """
        Compute total error over all factors.

        Returns:
            Total squared error Σ rᵢᵀ Λᵢ rᵢ.
        """
        total_error = 0.0
        for factor in self.factors:
            total_error += factor.compute_error(self.variables)
        return total_error

    def optimize(
        self,
        method: str = "levenberg_marquardt",
        max_iterations: int = 20,
        tol: float = 1e-6,
        **kwargs,
    ) -> Tuple[Dict[Hashable, np.ndarray], List[float]]:
        """
        Optimize the factor graph to find MAP estimate.

        Args:
            method: Optimization method. One of:
                - "gauss_newton": Standard Gauss-Newton
                - "levenberg_marquardt" or "lm": damped Gauss-Newton
            max_iterations: Maximum number of iterations.
            tol: Convergence tolerance on error change.
            **kwargs: Additional method-specific parameters:
                - initial_mu: Initial damping for LM (default: 1e-3)

        Returns:
            Tuple of (optimized_variables, error_history).

        Raises:
            ValueError: If method is not supported.
        """
        if method == "gauss_newton":
            return self._gauss_newton(max_iterations, tol)
        elif method in ("levenberg_marquardt", "lm"):
            initial_mu = kwargs.get("initial_mu", 1e-3)
            return self._levenberg_marquardt(max_iterations, tol, initial_mu)
        else:
            raise ValueError(f"Unknown method: {method}")

    def _free_ids(self) -> List[Hashable]:
        return sorted(vid for vid in self.variables if vid not in self.fixed)

    def _gauss_newton(
        self, max_iterations: int, tol: float
    ) -> Tuple[Dict[Hashable, np.ndarray], List[float]]:
        """
        Gauss-Newton optimization.

        Solves the linearized system: (JᵀΛJ) δx = -JᵀΛr
        at each iteration and updates: x ← x + δx
        """
        error_history = [self.compute_error()]

        for iteration in range(max_iterations):
            H, b = self._build_linearized_system()
            if H.size == 0:
                break

            try:
                delta_x = np.linalg.solve(H, b)
            except np.linalg.LinAlgError:
                # Singular matrix - use pseudo-inverse
                delta_x = np.linalg.lstsq(H, b, rcond=None)[0]

            self._update_variables(delta_x)

            current_error = self.compute_error()
            error_history.append(current_error)

            if abs(error_history[-2] - error_history[-1]) < tol:
                break

        return self.variables.copy(), error_history

    def _levenberg_marquardt(
        self, max_iterations: int, tol: float, initial_mu: float = 1e-3
    ) -> Tuple[Dict[Hashable, np.ndarray], List[float]]:
        """
        Levenberg-Marquardt optimization.

        Solves (JᵀΛJ + μI) d = -JᵀΛr and adapts μ from the gain ratio
        between the actual and the predicted error reduction. Rejected steps
        are rolled back and increase the damping.

        Args:
            max_iterations: Maximum iterations.
            tol: Convergence tolerance.
            initial_mu: Initial damping parameter (default 1e-3).

        Returns:
            Tuple of (optimized_variables, error_history).
        """
        error_history = [self.compute_error()]

        mu = initial_mu
        nu = 2.0

        for iteration in range(max_iterations):
            H, b = self._build_linearized_system()
            if H.size == 0:
                break
            current_error = error_history[-1]

            H_damped = H + mu * np.eye(H.shape[0])

            try:
                d_lm = np.linalg.solve(H_damped, b)
            except np.linalg.LinAlgError:
                d_lm = np.linalg.lstsq(H_damped, b, rcond=None)[0]

            old_vars = {k: v.copy() for k, v in self.variables.items()}

            self._update_variables(d_lm)
            new_error = self.compute_error()

            # Gain ratio: actual / predicted reduction of the quadratic model
            actual_reduction = current_error - new_error
            predicted_reduction = _predicted_reduction(d_lm, mu, b)

            if predicted_reduction > 0:
                g = actual_reduction / predicted_reduction
            else:
                g = 0.0

            if g > 0:
                error_history.append(new_error)
                mu = mu * max(1.0 / 3.0, 1.0 - (2.0 * g - 1.0) ** 3)
                nu = 2.0

                if abs(current_error - new_error) < tol:
                    break
            else:
                self.variables = old_vars
                mu = mu * nu
                nu = 2.0 * nu

            if np.linalg.norm(d_lm) < tol:
                break

        return self.variables.copy(), error_history

    def _build_linearized_system(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Build linearized system Hδx = b over the free variables.

        H = JᵀΛJ (Hessian approximation)
        b = -JᵀΛr (gradient)

        Returns:
            Tuple of (H, b) for solving Hδx = b.
        """
        var_indices = {}
        current_idx = 0
        for vid in self._free_ids():
            dim = self.variable_dims[vid]
            var_indices[vid] = (current_idx, current_idx + dim)
            current_idx += dim

        H = np.zeros((current_idx, current_idx))
        b = np.zeros(current_idx)

        for factor in self.factors:
            if not any(vid in var_indices for vid in factor.variable_ids):
                continue
            r, jacobians = factor.linearize(self.variables)
            Lambda = factor.information

            for i, vid_i in enumerate(factor.variable_ids):
                if vid_i not in var_indices:
                    continue
                J_i = jacobians[i]
                start_i, end_i = var_indices[vid_i]

                b[start_i:end_i] -= J_i.T @ Lambda @ r

                for j, vid_j in enumerate(factor.variable_ids):
                    if vid_j not in var_indices:
                        continue
                    J_j = jacobians[j]
                    start_j, end_j = var_indices[vid_j]

                    H[start_i:end_i, start_j:end_j] += J_i.T @ Lambda @ J_j

        return H, b

    def _update_variables(self, delta_x: np.ndarray) -> None:
        """
        Update all free variables by adding delta.

        Args:
            delta_x: Stacked update vector for the free variables.
        """
        current_idx = 0
        for vid in self._free_ids():
            dim = self.variable_dims[vid]
            self.variables[vid] = self.variables[vid] + delta_x[current_idx : current_idx + dim]
            current_idx += dim
