"""
Forward-mode automatic differentiation with dual numbers.

The filters in ``artrack.estimators`` and the bundle adjuster in
``artrack.tracking.refinement`` evaluate plain model functions on jets to
obtain exact Jacobians instead of hand-derived ones.
"""

from artrack.autodiff.jet import (
    Jet,
    cos,
    is_jet_array,
    jacobian,
    make_variables,
    sin,
    sqrt,
    values,
)

__all__ = [
    "Jet",
    "sqrt",
    "sin",
    "cos",
    "is_jet_array",
    "make_variables",
    "values",
    "jacobian",
]
