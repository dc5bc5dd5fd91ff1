"""
Least-squares problem modelling and solving

Usage:
    problem = Problem()
    problem.add_parameter_block(rotation_block, SO3Manifold())
    problem.add_residual_block(cost, HuberLoss(64.0), [rotation_block, ...])
    summary = solve(problem, SolverOptions())
"""

from .loss import LossFunction, TrivialLoss, HuberLoss, CauchyLoss, make_loss
from .manifolds import Manifold, EuclideanManifold, SO3Manifold, IntrinsicsManifold
from .problem import CostFunction, Problem
from .solver import (
    LinearSolverType,
    SparseLinearAlgebraLibraryType,
    SPARSE_LIBRARY_PREFERENCE,
    SolverOptions,
    SolverSummary,
    TerminationType,
    is_sparse_linear_algebra_library_available,
    solve,
)

__all__ = [
    "LossFunction",
    "TrivialLoss",
    "HuberLoss",
    "CauchyLoss",
    "make_loss",
    "Manifold",
    "EuclideanManifold",
    "SO3Manifold",
    "IntrinsicsManifold",
    "CostFunction",
    "Problem",
    "LinearSolverType",
    "SparseLinearAlgebraLibraryType",
    "SPARSE_LIBRARY_PREFERENCE",
    "SolverOptions",
    "SolverSummary",
    "TerminationType",
    "is_sparse_linear_algebra_library_available",
    "solve",
]
