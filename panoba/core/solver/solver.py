"""
Solve a Problem with scipy's trust-region reflective least squares

The variables handed to scipy are the tangent coordinates of every
non-constant parameter block, measured from the block values at the start
of the solve. Bounds are translated from ambient to tangent coordinates,
robust losses are folded into the residuals so that the reported cost
matches 0.5 * sum(rho(|r|^2)).
"""

import time
import logging
import numpy as np
import scipy.sparse
import scipy.sparse.linalg
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Tuple

from scipy.optimize import least_squares

from .problem import ParameterBlock, Problem, ResidualBlock

logger = logging.getLogger(__name__)


class LinearSolverType(Enum):
    DENSE = "dense"
    SPARSE = "sparse"


class SparseLinearAlgebraLibraryType(Enum):
    LSMR = "lsmr"
    NO_SPARSE = "no_sparse"


# descending preference order
SPARSE_LIBRARY_PREFERENCE = (SparseLinearAlgebraLibraryType.LSMR,)


def is_sparse_linear_algebra_library_available(library: SparseLinearAlgebraLibraryType) -> bool:
    if library == SparseLinearAlgebraLibraryType.LSMR:
        return hasattr(scipy.sparse.linalg, "lsmr")
    return False


class TerminationType(Enum):
    CONVERGENCE = "CONVERGENCE"
    NO_CONVERGENCE = "NO_CONVERGENCE"
    FAILURE = "FAILURE"


@dataclass
class SolverOptions:
    linear_solver_type: LinearSolverType = LinearSolverType.DENSE
    sparse_linear_algebra_library_type: SparseLinearAlgebraLibraryType = SparseLinearAlgebraLibraryType.NO_SPARSE
    max_num_iterations: int = 50
    num_threads: int = 1
    function_tolerance: float = 1e-6
    gradient_tolerance: float = 1e-10
    parameter_tolerance: float = 1e-8
    minimizer_progress_to_stdout: bool = False


@dataclass
class SolverSummary:
    termination_type: TerminationType = TerminationType.FAILURE
    message: str = ""
    initial_cost: float = -1.0
    final_cost: float = -1.0
    num_successful_steps: int = 0
    num_unsuccessful_steps: int = 0
    num_parameter_blocks: int = 0
    num_effective_parameters: int = 0
    num_residual_blocks: int = 0
    num_residuals: int = 0
    linear_solver_type_used: LinearSolverType = LinearSolverType.DENSE
    total_time_in_seconds: float = 0.0

    def is_solution_usable(self) -> bool:
        return (
            self.termination_type in (TerminationType.CONVERGENCE, TerminationType.NO_CONVERGENCE)
            and np.isfinite(self.final_cost)
        )

    def brief_report(self) -> str:
        return (
            f"Solver Summary: Initial cost: {self.initial_cost:.6e}, "
            f"Final cost: {self.final_cost:.6e}, "
            f"Termination: {self.termination_type.value}"
        )

    def full_report(self) -> str:
        return "\n".join([
            "Solver Summary",
            f"  Parameter blocks          {self.num_parameter_blocks}",
            f"  Effective parameters      {self.num_effective_parameters}",
            f"  Residual blocks           {self.num_residual_blocks}",
            f"  Residuals                 {self.num_residuals}",
            f"  Linear solver             {self.linear_solver_type_used.value}",
            f"  Initial cost              {self.initial_cost:.6e}",
            f"  Final cost                {self.final_cost:.6e}",
            f"  Successful steps          {self.num_successful_steps}",
            f"  Unsuccessful steps        {self.num_unsuccessful_steps}",
            f"  Total time (s)            {self.total_time_in_seconds:.4f}",
            f"  Termination               {self.termination_type.value} ({self.message})",
        ])


def _robustify(residual_block: ResidualBlock, residuals: np.ndarray, jacobian=None):
    """
    Rescale residuals (and Jacobian) by sqrt(rho(s) / s) so that their
    squared norm equals rho(s).
    """
    if residual_block.loss_function is None:
        return residuals, jacobian

    s = float(residuals @ residuals)
    if s == 0.0:
        return residuals, jacobian

    rho, rho1, _ = residual_block.loss_function.evaluate(s)
    g = np.sqrt(rho / s)
    scaled = g * residuals
    if jacobian is None:
        return scaled, None

    dg_ds = (rho1 * s - rho) / (2.0 * s * s * g)
    scaled_jacobian = g * jacobian + 2.0 * dg_ds * np.outer(residuals, residuals @ jacobian)
    return scaled, scaled_jacobian


class _TangentProblem:
    """Problem seen from the tangent space of its variable blocks"""

    def __init__(self, problem: Problem, options: SolverOptions):
        self.problem = problem
        self.options = options
        self.residual_blocks = problem.residual_blocks

        self.variable_blocks: List[ParameterBlock] = [
            block for block in problem.parameter_blocks
            if not block.constant and block.tangent_size > 0
        ]
        self.offsets: Dict[int, int] = {}
        offset = 0
        for block in self.variable_blocks:
            self.offsets[id(block)] = offset
            offset += block.tangent_size
        self.num_variables = offset

        self.row_offsets = []
        row = 0
        for residual_block in self.residual_blocks:
            self.row_offsets.append(row)
            row += residual_block.num_residuals
        self.num_rows = row

        self.origin = {id(block): block.values.copy() for block in self.variable_blocks}

    def _delta(self, block: ParameterBlock, x: np.ndarray) -> np.ndarray:
        start = self.offsets[id(block)]
        return x[start:start + block.tangent_size]

    def set_state(self, x: np.ndarray):
        for block in self.variable_blocks:
            block.values[:] = block.effective_manifold.plus(self.origin[id(block)], self._delta(block, x))

    def restore(self):
        for block in self.variable_blocks:
            block.values[:] = self.origin[id(block)]

    def bounds(self) -> Tuple[np.ndarray, np.ndarray]:
        """Ambient box bounds expressed on the tangent coordinates"""
        lower = np.full(self.num_variables, -np.inf)
        upper = np.full(self.num_variables, np.inf)

        for block in self.variable_blocks:
            if not block.has_bounds():
                continue

            x0 = self.origin[id(block)]
            if np.any(x0 < block.lower) or np.any(x0 > block.upper):
                raise ValueError("Parameter block is not feasible: initial value outside its bounds")

            J = block.effective_manifold.plus_jacobian(x0)
            start = self.offsets[id(block)]
            for i in range(block.size):
                if not (np.isfinite(block.lower[i]) or np.isfinite(block.upper[i])):
                    continue
                columns = np.flatnonzero(J[i])
                if columns.size == 0:
                    continue
                if columns.size > 1:
                    raise ValueError("Bounds are only supported on separable manifolds")
                k = columns[0]
                lo = (block.lower[i] - x0[i]) / J[i, k]
                hi = (block.upper[i] - x0[i]) / J[i, k]
                if J[i, k] < 0:
                    lo, hi = hi, lo
                lower[start + k] = max(lower[start + k], lo)
                upper[start + k] = min(upper[start + k], hi)

        if np.any(lower >= upper):
            raise ValueError("Degenerate bounds: lower bound not strictly below upper bound")
        return lower, upper

    def residuals(self, x: np.ndarray) -> np.ndarray:
        self.set_state(x)
        out = np.empty(self.num_rows)
        for residual_block, row in zip(self.residual_blocks, self.row_offsets):
            r, _ = residual_block.evaluate()
            r, _ = _robustify(residual_block, np.asarray(r, dtype=np.float64))
            out[row:row + residual_block.num_residuals] = r
        return out

    def jacobian(self, x: np.ndarray):
        self.set_state(x)
        plus_jacobians = {
            id(block): block.effective_manifold.plus_jacobian_at(self.origin[id(block)], self._delta(block, x))
            for block in self.variable_blocks
        }

        sparse = self.options.linear_solver_type == LinearSolverType.SPARSE
        if sparse:
            rows, cols, data = [], [], []
        else:
            J = np.zeros((self.num_rows, self.num_variables))

        for residual_block, row in zip(self.residual_blocks, self.row_offsets):
            r, jacobians = residual_block.evaluate(compute_jacobians=True)
            m = residual_block.num_residuals

            local = []
            for block, block_jacobian in zip(residual_block.parameter_blocks, jacobians):
                if id(block) not in self.offsets:
                    continue
                local.append((block, np.asarray(block_jacobian) @ plus_jacobians[id(block)]))
            if not local:
                continue

            stacked = np.hstack([jac for _, jac in local])
            _, stacked = _robustify(residual_block, np.asarray(r, dtype=np.float64), stacked)

            col = 0
            for block, jac in local:
                width = jac.shape[1]
                start = self.offsets[id(block)]
                block_part = stacked[:, col:col + width]
                if sparse:
                    rr, cc = np.meshgrid(np.arange(m), np.arange(width), indexing="ij")
                    rows.append((row + rr).ravel())
                    cols.append((start + cc).ravel())
                    data.append(block_part.ravel())
                else:
                    J[row:row + m, start:start + width] += block_part
                col += width

        if sparse:
            if not data:
                return scipy.sparse.csr_matrix((self.num_rows, self.num_variables))
            return scipy.sparse.csr_matrix(
                (np.concatenate(data), (np.concatenate(rows), np.concatenate(cols))),
                shape=(self.num_rows, self.num_variables),
            )
        return J


def solve(problem: Problem, options: SolverOptions) -> SolverSummary:
    """
    Minimize 0.5 * sum(rho(|r_i|^2)) over the non-constant parameter blocks.

    The blocks are updated in place. Failures are reported through the
    summary termination type, not raised.
    """
    start_time = time.perf_counter()
    summary = SolverSummary(
        num_parameter_blocks=problem.num_parameter_blocks(),
        num_residual_blocks=problem.num_residual_blocks(),
        num_residuals=problem.num_residuals(),
        linear_solver_type_used=options.linear_solver_type,
    )

    if options.num_threads != 1:
        logger.debug(f"num_threads={options.num_threads} requested, residuals are evaluated sequentially")

    tangent = _TangentProblem(problem, options)
    summary.num_effective_parameters = tangent.num_variables

    def finish(termination_type: TerminationType, message: str) -> SolverSummary:
        summary.termination_type = termination_type
        summary.message = message
        summary.total_time_in_seconds = time.perf_counter() - start_time
        return summary

    x0 = np.zeros(tangent.num_variables)
    initial_residuals = tangent.residuals(x0)
    if not np.all(np.isfinite(initial_residuals)):
        return finish(TerminationType.FAILURE, "Residual evaluation failed at the initial point")

    summary.initial_cost = 0.5 * float(initial_residuals @ initial_residuals)
    summary.final_cost = summary.initial_cost

    if tangent.num_rows == 0:
        return finish(TerminationType.CONVERGENCE, "No residual blocks found.")
    if tangent.num_variables == 0:
        return finish(TerminationType.CONVERGENCE, "No non-constant parameter blocks found.")

    try:
        lower, upper = tangent.bounds()
    except ValueError as e:
        return finish(TerminationType.FAILURE, str(e))

    tr_solver = "lsmr" if options.linear_solver_type == LinearSolverType.SPARSE else "exact"

    try:
        result = least_squares(
            tangent.residuals,
            x0,
            jac=tangent.jacobian,
            bounds=(lower, upper),
            method="trf",
            ftol=options.function_tolerance,
            xtol=options.parameter_tolerance,
            gtol=options.gradient_tolerance,
            max_nfev=options.max_num_iterations,
            tr_solver=tr_solver,
            verbose=2 if options.minimizer_progress_to_stdout else 0,
        )
    except (ValueError, np.linalg.LinAlgError) as e:
        tangent.restore()
        logger.warning(f"Least squares solver failed: {e}")
        return finish(TerminationType.FAILURE, str(e))

    if result.status < 0 or not np.isfinite(result.cost):
        tangent.restore()
        return finish(TerminationType.FAILURE, result.message)

    tangent.set_state(result.x)
    njev = result.njev or 0
    summary.final_cost = float(result.cost)
    summary.num_successful_steps = max(njev - 1, 0)
    summary.num_unsuccessful_steps = max(result.nfev - njev, 0)

    if result.status == 0:
        return finish(TerminationType.NO_CONVERGENCE, result.message)
    return finish(TerminationType.CONVERGENCE, result.message)
