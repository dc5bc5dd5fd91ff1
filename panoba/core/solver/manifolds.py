"""
Local parameterizations of parameter blocks

A manifold maps a minimal tangent perturbation `delta` onto the ambient
parameter vector `x`. The solver optimises in tangent coordinates and
chains the functors' ambient Jacobians with `plus_jacobian_at`.
"""

import numpy as np
from dataclasses import dataclass

from ..so3 import expm, left_jacobian, skew


class Manifold:
    """Interface: ambient/tangent sizes, plus and its Jacobian"""

    ambient_size: int
    tangent_size: int

    def plus(self, x: np.ndarray, delta: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def plus_jacobian(self, x: np.ndarray) -> np.ndarray:
        """(ambient, tangent) derivative of plus(x, delta) at delta = 0"""
        raise NotImplementedError

    def plus_jacobian_at(self, x: np.ndarray, delta: np.ndarray) -> np.ndarray:
        """(ambient, tangent) derivative of plus(x, delta) at an arbitrary delta"""
        return self.plus_jacobian(self.plus(x, delta))


class EuclideanManifold(Manifold):
    """Identity parameterization used for blocks without a manifold"""

    def __init__(self, size: int):
        self.ambient_size = size
        self.tangent_size = size

    def plus(self, x, delta):
        return x + delta

    def plus_jacobian(self, x):
        return np.eye(self.ambient_size)


class SO3Manifold(Manifold):
    """
    Row-major 3x3 rotation block updated on the left by the exponential map:
    x (+) delta = exp(skew(delta)) * x
    """

    ambient_size = 9
    tangent_size = 3

    def plus(self, x, delta):
        X = np.reshape(x, (3, 3))
        return (expm(delta) @ X).reshape(9)

    def plus_jacobian(self, x):
        X = np.reshape(x, (3, 3))
        J = np.zeros((9, 3))
        for k in range(3):
            J[:, k] = (skew(np.eye(3)[k]) @ X).reshape(9)
        return J

    def plus_jacobian_at(self, x, delta):
        return self.plus_jacobian(self.plus(x, delta)) @ left_jacobian(delta)


@dataclass(frozen=True)
class IntrinsicsManifold(Manifold):
    """
    Subset parameterization of an intrinsic block [fx, fy, ox, oy, disto...].

    Unlocked groups are walked in the order focal, center, distortion, one
    tangent coordinate per free scalar. With the focal ratio locked a single
    coordinate moves fx by delta and fy by focal_ratio * delta.

    Frozen: a change of any lock or of the ratio requires a new instance.
    """

    params_size: int
    focal_ratio: float = 1.0
    lock_focal: bool = False
    lock_focal_ratio: bool = False
    lock_center: bool = False
    lock_distortion: bool = False

    @property
    def ambient_size(self) -> int:
        return self.params_size

    @property
    def distortion_size(self) -> int:
        return self.params_size - 4

    @property
    def tangent_size(self) -> int:
        size = 0
        if not self.lock_focal:
            size += 1 if self.lock_focal_ratio else 2
        if not self.lock_center:
            size += 2
        if not self.lock_distortion:
            size += self.distortion_size
        return size

    def plus(self, x, delta):
        result = np.array(x, dtype=np.float64)
        pos = 0
        if not self.lock_focal:
            if self.lock_focal_ratio:
                result[0] = x[0] + delta[pos]
                result[1] = x[1] + self.focal_ratio * delta[pos]
                pos += 1
            else:
                result[0] = x[0] + delta[pos]
                result[1] = x[1] + delta[pos + 1]
                pos += 2

        if not self.lock_center:
            result[2] = x[2] + delta[pos]
            result[3] = x[3] + delta[pos + 1]
            pos += 2

        if not self.lock_distortion:
            for i in range(self.distortion_size):
                result[4 + i] = x[4 + i] + delta[pos]
                pos += 1

        return result

    def plus_jacobian(self, x):
        J = np.zeros((self.params_size, self.tangent_size))
        pos = 0
        if not self.lock_focal:
            if self.lock_focal_ratio:
                J[0, pos] = 1.0
                J[1, pos] = self.focal_ratio
                pos += 1
            else:
                J[0, pos] = 1.0
                J[1, pos + 1] = 1.0
                pos += 2

        if not self.lock_center:
            J[2, pos] = 1.0
            J[3, pos + 1] = 1.0
            pos += 2

        if not self.lock_distortion:
            for i in range(self.distortion_size):
                J[4 + i, pos] = 1.0
                pos += 1

        return J
