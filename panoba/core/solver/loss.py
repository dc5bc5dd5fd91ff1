"""
Robust loss functions

`evaluate(s)` returns (rho(s), rho'(s), rho''(s)) for the squared residual
norm s, the cost of a residual block being 0.5 * rho(s).
"""

import numpy as np
from typing import Tuple

MIN_DERIVATIVE = np.finfo(np.float64).tiny


class LossFunction:
    def evaluate(self, s: float) -> Tuple[float, float, float]:
        raise NotImplementedError


class TrivialLoss(LossFunction):
    """rho(s) = s"""

    def evaluate(self, s):
        return s, 1.0, 0.0


class HuberLoss(LossFunction):
    """
    rho(s) = s                     for s <= a^2
             2 a sqrt(s) - a^2     otherwise
    """

    def __init__(self, a: float):
        if a <= 0:
            raise ValueError(f"HuberLoss scale must be positive, got {a}")
        self.a = float(a)
        self.b = self.a * self.a

    def evaluate(self, s):
        if s > self.b:
            r = np.sqrt(s)
            rho1 = max(MIN_DERIVATIVE, self.a / r)
            return 2.0 * self.a * r - self.b, rho1, -rho1 / (2.0 * s)
        return s, 1.0, 0.0


class CauchyLoss(LossFunction):
    """rho(s) = a^2 log(1 + s / a^2)"""

    def __init__(self, a: float):
        if a <= 0:
            raise ValueError(f"CauchyLoss scale must be positive, got {a}")
        self.b = float(a) * float(a)
        self.c = 1.0 / self.b

    def evaluate(self, s):
        total = 1.0 + s * self.c
        inv = 1.0 / total
        return self.b * np.log(total), max(MIN_DERIVATIVE, inv), -self.c * inv * inv


LOSS_FUNCTIONS = {
    "trivial": lambda scale: TrivialLoss(),
    "huber": HuberLoss,
    "cauchy": CauchyLoss,
}


def make_loss(name: str, scale: float) -> LossFunction:
    try:
        factory = LOSS_FUNCTIONS[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown loss '{name}', expected one of {sorted(LOSS_FUNCTIONS)}") from None
    return factory(scale)
