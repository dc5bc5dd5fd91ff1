"""
Lens distortion models on normalised camera coordinates

Every model is stateless: the coefficients are passed explicitly so that the
same instance can be shared by concurrent residual evaluations.
"""

import numpy as np
from typing import Dict, Type


class DistortionModel:
    """Base class: identity distortion with no coefficients"""

    name = "none"
    size = 0

    max_iterations = 20
    tolerance = 1e-12

    def add(self, k: np.ndarray, p: np.ndarray) -> np.ndarray:
        return np.array(p, dtype=np.float64)

    def d_add_d_point(self, k: np.ndarray, p: np.ndarray) -> np.ndarray:
        return np.eye(2)

    def d_add_d_params(self, k: np.ndarray, p: np.ndarray) -> np.ndarray:
        return np.zeros((2, self.size))

    def remove(self, k: np.ndarray, p: np.ndarray) -> np.ndarray:
        """
        Invert add() with Newton iterations started at the distorted point
        """
        p = np.asarray(p, dtype=np.float64)
        if self.size == 0:
            return p.copy()

        q = p.copy()
        for _ in range(self.max_iterations):
            err = self.add(k, q) - p
            if np.linalg.norm(err) < self.tolerance:
                break
            q = q - np.linalg.solve(self.d_add_d_point(k, q), err)
        return q

    def d_remove_d_point(self, k: np.ndarray, p: np.ndarray) -> np.ndarray:
        """Implicit-function derivative of remove() w.r.t. the distorted point"""
        undist = self.remove(k, p)
        return np.linalg.inv(self.d_add_d_point(k, undist))

    def d_remove_d_params(self, k: np.ndarray, p: np.ndarray) -> np.ndarray:
        """Implicit-function derivative of remove() w.r.t. the coefficients"""
        undist = self.remove(k, p)
        inv = np.linalg.inv(self.d_add_d_point(k, undist))
        return -inv @ self.d_add_d_params(k, undist)


class RadialDistortion(DistortionModel):
    """p_d = p * (1 + k1 r^2 + k2 r^4 + ...), one coefficient per even power"""

    def _radial(self, k, r2):
        powers = r2 ** np.arange(1, self.size + 1)
        radial = 1.0 + np.dot(k[:self.size], powers)
        d_radial = np.dot(
            k[:self.size] * np.arange(1, self.size + 1),
            r2 ** np.arange(0, self.size),
        )
        return radial, d_radial, powers

    def add(self, k, p):
        p = np.asarray(p, dtype=np.float64)
        radial, _, _ = self._radial(k, p @ p)
        return p * radial

    def d_add_d_point(self, k, p):
        p = np.asarray(p, dtype=np.float64)
        radial, d_radial, _ = self._radial(k, p @ p)
        return radial * np.eye(2) + 2.0 * d_radial * np.outer(p, p)

    def d_add_d_params(self, k, p):
        p = np.asarray(p, dtype=np.float64)
        _, _, powers = self._radial(k, p @ p)
        return np.outer(p, powers)


class RadialK1(RadialDistortion):
    name = "radialk1"
    size = 1


class RadialK3(RadialDistortion):
    name = "radialk3"
    size = 3


class Brown(RadialDistortion):
    """Radial k1, k2, k3 followed by tangential t1, t2"""

    name = "brown"
    size = 5

    def _radial(self, k, r2):
        powers = r2 ** np.arange(1, 4)
        radial = 1.0 + np.dot(k[:3], powers)
        d_radial = k[0] + 2.0 * k[1] * r2 + 3.0 * k[2] * r2 * r2
        return radial, d_radial, powers

    def add(self, k, p):
        p = np.asarray(p, dtype=np.float64)
        x, y = p
        r2 = x * x + y * y
        radial, _, _ = self._radial(k, r2)
        t1, t2 = k[3], k[4]
        return np.array([
            x * radial + 2.0 * t1 * x * y + t2 * (r2 + 2.0 * x * x),
            y * radial + t1 * (r2 + 2.0 * y * y) + 2.0 * t2 * x * y,
        ])

    def d_add_d_point(self, k, p):
        p = np.asarray(p, dtype=np.float64)
        x, y = p
        radial, d_radial, _ = self._radial(k, x * x + y * y)
        t1, t2 = k[3], k[4]
        J = radial * np.eye(2) + 2.0 * d_radial * np.outer(p, p)
        J += np.array([
            [2.0 * t1 * y + 6.0 * t2 * x, 2.0 * t1 * x + 2.0 * t2 * y],
            [2.0 * t1 * x + 2.0 * t2 * y, 6.0 * t1 * y + 2.0 * t2 * x],
        ])
        return J

    def d_add_d_params(self, k, p):
        p = np.asarray(p, dtype=np.float64)
        x, y = p
        r2 = x * x + y * y
        _, _, powers = self._radial(k, r2)
        J = np.zeros((2, 5))
        J[:, :3] = np.outer(p, powers)
        J[:, 3] = [2.0 * x * y, r2 + 2.0 * y * y]
        J[:, 4] = [r2 + 2.0 * x * x, 2.0 * x * y]
        return J


DISTORTION_MODELS: Dict[str, Type[DistortionModel]] = {
    cls.name: cls for cls in (DistortionModel, RadialK1, RadialK3, Brown)
}


def make_distortion(name: str) -> DistortionModel:
    """Instantiate a distortion model by name"""
    try:
        return DISTORTION_MODELS[name.lower()]()
    except KeyError:
        raise ValueError(
            f"Unknown distortion model '{name}', expected one of {sorted(DISTORTION_MODELS)}"
        ) from None
