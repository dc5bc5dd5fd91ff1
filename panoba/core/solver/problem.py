"""
Nonlinear least-squares problem description

Parameter blocks are 1-D float64 numpy arrays identified by object identity
and updated in place by the solver. Residual blocks tie a cost function and
an optional robust loss to an ordered list of parameter blocks.
"""

import numpy as np
import logging
from typing import List, Optional, Sequence, Tuple

from .loss import LossFunction
from .manifolds import EuclideanManifold, Manifold

logger = logging.getLogger(__name__)


class CostFunction:
    """
    Residual with analytic Jacobians.

    Subclasses set `num_residuals` and `parameter_block_sizes` and implement
    `evaluate`. Jacobians are (num_residuals, block_size) arrays in the
    ambient parameterization of each block.
    """

    def __init__(self):
        self.num_residuals = 0
        self.parameter_block_sizes: List[int] = []

    def set_num_residuals(self, num_residuals: int):
        self.num_residuals = num_residuals

    def set_parameter_block_sizes(self, sizes: Sequence[int]):
        self.parameter_block_sizes = list(sizes)

    def evaluate(
        self,
        parameters: Sequence[np.ndarray],
        compute_jacobians: bool = False,
    ) -> Tuple[np.ndarray, Optional[List[np.ndarray]]]:
        raise NotImplementedError


class ParameterBlock:
    def __init__(self, values: np.ndarray, manifold: Optional[Manifold] = None):
        self.values = values
        self.manifold = manifold
        self.constant = False
        self.lower = np.full(values.size, -np.inf)
        self.upper = np.full(values.size, np.inf)

    @property
    def size(self) -> int:
        return self.values.size

    @property
    def effective_manifold(self) -> Manifold:
        return self.manifold if self.manifold is not None else EuclideanManifold(self.size)

    @property
    def tangent_size(self) -> int:
        return self.effective_manifold.tangent_size

    def has_bounds(self) -> bool:
        return bool(np.isfinite(self.lower).any() or np.isfinite(self.upper).any())


class ResidualBlock:
    def __init__(
        self,
        cost_function: CostFunction,
        loss_function: Optional[LossFunction],
        parameter_blocks: List[ParameterBlock],
    ):
        self.cost_function = cost_function
        self.loss_function = loss_function
        self.parameter_blocks = parameter_blocks

    @property
    def num_residuals(self) -> int:
        return self.cost_function.num_residuals

    def evaluate(self, compute_jacobians: bool = False):
        return self.cost_function.evaluate(
            [block.values for block in self.parameter_blocks], compute_jacobians
        )


class Problem:
    """Container of parameter blocks and residual blocks"""

    def __init__(self):
        self._parameter_blocks = {}
        self._residual_blocks: List[ResidualBlock] = []

    # Parameter blocks

    def add_parameter_block(self, values: np.ndarray, manifold: Optional[Manifold] = None):
        if not isinstance(values, np.ndarray) or values.dtype != np.float64 or values.ndim != 1:
            raise ValueError("Parameter blocks must be 1-D float64 numpy arrays")

        block = self._parameter_blocks.get(id(values))
        if block is None:
            block = ParameterBlock(values)
            self._parameter_blocks[id(values)] = block
        if manifold is not None:
            self.set_manifold(values, manifold)

    def has_parameter_block(self, values: np.ndarray) -> bool:
        return id(values) in self._parameter_blocks

    def _get_block(self, values: np.ndarray) -> ParameterBlock:
        try:
            block = self._parameter_blocks[id(values)]
        except KeyError:
            raise KeyError("Parameter block was never added to the problem") from None
        if block.values is not values:
            raise KeyError("Parameter block was never added to the problem")
        return block

    def set_manifold(self, values: np.ndarray, manifold: Manifold):
        block = self._get_block(values)
        if manifold.ambient_size != block.size:
            raise ValueError(
                f"Manifold ambient size {manifold.ambient_size} does not match block size {block.size}"
            )
        block.manifold = manifold

    def get_manifold(self, values: np.ndarray) -> Optional[Manifold]:
        return self._get_block(values).manifold

    def set_parameter_block_constant(self, values: np.ndarray):
        self._get_block(values).constant = True

    def set_parameter_block_variable(self, values: np.ndarray):
        self._get_block(values).constant = False

    def is_parameter_block_constant(self, values: np.ndarray) -> bool:
        return self._get_block(values).constant

    def set_parameter_lower_bound(self, values: np.ndarray, index: int, bound: float):
        self._get_block(values).lower[index] = bound

    def set_parameter_upper_bound(self, values: np.ndarray, index: int, bound: float):
        self._get_block(values).upper[index] = bound

    def get_parameter_lower_bound(self, values: np.ndarray, index: int) -> float:
        return float(self._get_block(values).lower[index])

    def get_parameter_upper_bound(self, values: np.ndarray, index: int) -> float:
        return float(self._get_block(values).upper[index])

    # Residual blocks

    def add_residual_block(
        self,
        cost_function: CostFunction,
        loss_function: Optional[LossFunction],
        parameter_blocks: Sequence[np.ndarray],
    ) -> ResidualBlock:
        if len(parameter_blocks) != len(cost_function.parameter_block_sizes):
            raise ValueError(
                f"Cost function expects {len(cost_function.parameter_block_sizes)} "
                f"parameter blocks, got {len(parameter_blocks)}"
            )

        blocks = []
        for values, expected_size in zip(parameter_blocks, cost_function.parameter_block_sizes):
            block = self._get_block(values)
            if block.size != expected_size:
                raise ValueError(
                    f"Parameter block of size {block.size} given where {expected_size} is expected"
                )
            blocks.append(block)

        if len({id(block) for block in blocks}) != len(blocks):
            raise ValueError("Duplicate parameter blocks in a residual block")

        residual_block = ResidualBlock(cost_function, loss_function, blocks)
        self._residual_blocks.append(residual_block)
        return residual_block

    # Introspection

    @property
    def parameter_blocks(self) -> List[ParameterBlock]:
        return list(self._parameter_blocks.values())

    @property
    def residual_blocks(self) -> List[ResidualBlock]:
        return list(self._residual_blocks)

    def num_parameter_blocks(self) -> int:
        return len(self._parameter_blocks)

    def num_parameters(self) -> int:
        return sum(block.size for block in self._parameter_blocks.values())

    def num_residual_blocks(self) -> int:
        return len(self._residual_blocks)

    def num_residuals(self) -> int:
        return sum(block.num_residuals for block in self._residual_blocks)

    def evaluate(self) -> float:
        """Total cost 0.5 * sum(rho(|r|^2)) at the current parameter values"""
        cost = 0.0
        for residual_block in self._residual_blocks:
            residuals, _ = residual_block.evaluate()
            s = float(residuals @ residuals)
            if residual_block.loss_function is not None:
                s = residual_block.loss_function.evaluate(s)[0]
            cost += 0.5 * s
        return cost
