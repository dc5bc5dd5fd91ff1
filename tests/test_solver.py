"""
Unit tests for the least-squares problem and solver adapter
"""

import pytest
import numpy as np
from pathlib import Path
import sys

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from panoba.core.so3 import expm, is_rotation
from panoba.core.solver import (
    CauchyLoss,
    CostFunction,
    HuberLoss,
    LinearSolverType,
    Problem,
    SO3Manifold,
    SolverOptions,
    SparseLinearAlgebraLibraryType,
    TerminationType,
    TrivialLoss,
    is_sparse_linear_algebra_library_available,
    make_loss,
    solve,
)
from conftest import numeric_jacobian


class OffsetCost(CostFunction):
    """r = x - target"""

    def __init__(self, target):
        super().__init__()
        self.target = np.asarray(target, dtype=np.float64)
        self.set_num_residuals(self.target.size)
        self.set_parameter_block_sizes([self.target.size])

    def evaluate(self, parameters, compute_jacobians=False):
        residuals = parameters[0] - self.target
        if not compute_jacobians:
            return residuals, None
        return residuals, [np.eye(self.target.size)]


class RotationToTargetCost(CostFunction):
    """r = vec(R) - vec(target)"""

    def __init__(self, target):
        super().__init__()
        self.target = np.asarray(target, dtype=np.float64).reshape(9)
        self.set_num_residuals(9)
        self.set_parameter_block_sizes([9])

    def evaluate(self, parameters, compute_jacobians=False):
        residuals = parameters[0] - self.target
        return residuals, ([np.eye(9)] if compute_jacobians else None)


class TestLossFunctions:
    """Test robust losses"""

    @pytest.mark.parametrize("loss", [TrivialLoss(), HuberLoss(2.0), CauchyLoss(1.5)])
    def test_derivatives(self, loss):
        for s in [0.5, 3.0, 10.0]:
            rho, rho1, rho2 = loss.evaluate(s)
            numeric1 = numeric_jacobian(lambda x: loss.evaluate(x[0])[0], np.array([s]))[0, 0]
            numeric2 = numeric_jacobian(lambda x: loss.evaluate(x[0])[1], np.array([s]))[0, 0]
            assert rho1 == pytest.approx(numeric1, rel=1e-6)
            assert rho2 == pytest.approx(numeric2, rel=1e-5, abs=1e-9)

    def test_huber_is_quadratic_below_threshold(self):
        loss = HuberLoss(8.0)
        assert loss.evaluate(63.0)[0] == 63.0
        assert loss.evaluate(100.0)[0] == pytest.approx(2.0 * 8.0 * 10.0 - 64.0)

    def test_factory(self):
        assert isinstance(make_loss("Huber", 64.0), HuberLoss)
        assert isinstance(make_loss("trivial", 1.0), TrivialLoss)
        with pytest.raises(ValueError):
            make_loss("tukey", 1.0)
        with pytest.raises(ValueError):
            HuberLoss(0.0)


class TestProblem:
    """Test problem bookkeeping"""

    def test_blocks_must_be_added_first(self):
        problem = Problem()
        x = np.zeros(2)
        with pytest.raises(KeyError):
            problem.add_residual_block(OffsetCost([1.0, 2.0]), None, [x])

    def test_block_size_mismatch(self):
        problem = Problem()
        x = np.zeros(3)
        problem.add_parameter_block(x)
        with pytest.raises(ValueError):
            problem.add_residual_block(OffsetCost([1.0, 2.0]), None, [x])

    def test_block_type_is_checked(self):
        with pytest.raises(ValueError):
            Problem().add_parameter_block([0.0, 1.0])
        with pytest.raises(ValueError):
            Problem().add_parameter_block(np.zeros(3, dtype=np.float32))

    def test_manifold_size_is_checked(self):
        problem = Problem()
        x = np.zeros(4)
        problem.add_parameter_block(x)
        with pytest.raises(ValueError):
            problem.set_manifold(x, SO3Manifold())

    def test_counts(self):
        problem = Problem()
        x, y = np.zeros(2), np.zeros(3)
        problem.add_parameter_block(x)
        problem.add_parameter_block(y)
        problem.add_parameter_block(x)
        problem.add_residual_block(OffsetCost([1.0, 2.0]), None, [x])
        problem.add_residual_block(OffsetCost([1.0, 2.0, 3.0]), None, [y])

        assert problem.num_parameter_blocks() == 2
        assert problem.num_parameters() == 5
        assert problem.num_residual_blocks() == 2
        assert problem.num_residuals() == 5

    def test_cost_uses_loss(self):
        problem = Problem()
        x = np.zeros(1)
        problem.add_parameter_block(x)
        problem.add_residual_block(OffsetCost([10.0]), HuberLoss(2.0), [x])
        assert problem.evaluate() == pytest.approx(0.5 * (2.0 * 2.0 * 10.0 - 4.0))


class TestSolve:
    """Test the solver adapter"""

    def test_linear_problem(self):
        problem = Problem()
        x = np.zeros(3)
        problem.add_parameter_block(x)
        problem.add_residual_block(OffsetCost([1.0, -2.0, 3.0]), None, [x])

        summary = solve(problem, SolverOptions())

        assert summary.is_solution_usable()
        assert summary.termination_type == TerminationType.CONVERGENCE
        assert summary.initial_cost == pytest.approx(7.0)
        assert summary.final_cost == pytest.approx(0.0, abs=1e-12)
        np.testing.assert_allclose(x, [1.0, -2.0, 3.0], atol=1e-8)

    def test_constant_block_is_untouched(self):
        problem = Problem()
        x, y = np.zeros(2), np.zeros(2)
        problem.add_parameter_block(x)
        problem.add_parameter_block(y)
        problem.set_parameter_block_constant(y)
        problem.add_residual_block(OffsetCost([1.0, 1.0]), None, [x])
        problem.add_residual_block(OffsetCost([5.0, 5.0]), None, [y])

        summary = solve(problem, SolverOptions())

        assert summary.is_solution_usable()
        np.testing.assert_allclose(x, [1.0, 1.0], atol=1e-8)
        np.testing.assert_allclose(y, [0.0, 0.0])

    def test_bounds(self):
        problem = Problem()
        x = np.zeros(2)
        problem.add_parameter_block(x)
        problem.set_parameter_upper_bound(x, 0, 0.5)
        problem.set_parameter_lower_bound(x, 1, -1.0)
        problem.add_residual_block(OffsetCost([2.0, -3.0]), None, [x])

        summary = solve(problem, SolverOptions(function_tolerance=1e-12, parameter_tolerance=1e-12, gradient_tolerance=1e-12))

        assert summary.is_solution_usable()
        np.testing.assert_allclose(x, [0.5, -1.0], atol=1e-4)

    def test_infeasible_start_fails(self):
        problem = Problem()
        x = np.zeros(1)
        problem.add_parameter_block(x)
        problem.set_parameter_lower_bound(x, 0, 1.0)
        problem.add_residual_block(OffsetCost([2.0]), None, [x])

        summary = solve(problem, SolverOptions())

        assert summary.termination_type == TerminationType.FAILURE
        assert not summary.is_solution_usable()
        np.testing.assert_allclose(x, [0.0])

    def test_rotation_block_stays_on_manifold(self):
        problem = Problem()
        target = expm(np.array([0.4, -0.3, 0.2]))
        x = np.eye(3).reshape(9).copy()
        problem.add_parameter_block(x, SO3Manifold())
        problem.add_residual_block(RotationToTargetCost(target), None, [x])

        summary = solve(problem, SolverOptions())

        assert summary.is_solution_usable()
        assert is_rotation(x.reshape(3, 3), tol=1e-10)
        np.testing.assert_allclose(x.reshape(3, 3), target, atol=1e-6)

    def test_sparse_mode(self):
        assert is_sparse_linear_algebra_library_available(SparseLinearAlgebraLibraryType.LSMR)
        assert not is_sparse_linear_algebra_library_available(SparseLinearAlgebraLibraryType.NO_SPARSE)

        problem = Problem()
        blocks = [np.zeros(2) for _ in range(4)]
        for i, block in enumerate(blocks):
            problem.add_parameter_block(block)
            problem.add_residual_block(OffsetCost([i, -i]), None, [block])

        options = SolverOptions(
            linear_solver_type=LinearSolverType.SPARSE,
            sparse_linear_algebra_library_type=SparseLinearAlgebraLibraryType.LSMR,
        )
        summary = solve(problem, options)

        assert summary.is_solution_usable()
        assert summary.linear_solver_type_used == LinearSolverType.SPARSE
        for i, block in enumerate(blocks):
            np.testing.assert_allclose(block, [i, -i], atol=1e-5)

    def test_no_residuals(self):
        problem = Problem()
        x = np.zeros(2)
        problem.add_parameter_block(x)
        summary = solve(problem, SolverOptions())
        assert summary.is_solution_usable()
        assert summary.num_residuals == 0

    def test_report(self):
        problem = Problem()
        x = np.zeros(1)
        problem.add_parameter_block(x)
        problem.add_residual_block(OffsetCost([1.0]), None, [x])
        summary = solve(problem, SolverOptions())

        report = summary.full_report()
        assert "Residual blocks" in report
        assert summary.termination_type.value in report
