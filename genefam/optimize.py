r"""Derivative-free minimization behind a small interface, so that the error
model search does not depend on a particular optimizer."""

import numpy as np
import scipy.optimize as sco
from dataclasses import dataclass
from typing import Callable


@dataclass
class MinimizeResult:
    r"""Outcome of one minimization.

    Attributes:
        x: the minimizer found
        fun: objective value at ``x``
        iters: iterations used
        success: whether the tolerances were met
    """

    x: np.ndarray
    fun: float
    iters: int
    success: bool


class NelderMead:
    r"""Simplex search via :func:`scipy.optimize.minimize`.

    Args:
        tolx: absolute tolerance on the simplex vertices
        tolf: absolute tolerance on the objective values
        maxiters: iteration budget; ``None`` means 200 per dimension
    """

    def __init__(self, tolx: float = 1e-9, tolf: float = 1e-9, maxiters: int = None):
        self.tolx = tolx
        self.tolf = tolf
        self.maxiters = maxiters

    def iteration_budget(self, n: int) -> int:
        return self.maxiters if self.maxiters is not None else 200 * n

    def minimize(
        self, f: Callable[[np.ndarray], float], x0: np.ndarray
    ) -> MinimizeResult:
        r"""Minimize ``f`` starting from ``x0``.

        ``f`` may return ``inf`` for points outside its domain.
        """
        x0 = np.asarray(x0, dtype=float)
        with np.errstate(invalid="ignore"):
            result = sco.minimize(
                f,
                x0=x0,
                method="Nelder-Mead",
                options={
                    "xatol": self.tolx,
                    "fatol": self.tolf,
                    "maxiter": self.iteration_budget(x0.size),
                },
            )
        return MinimizeResult(
            x=np.asarray(result.x),
            fun=float(result.fun),
            iters=int(result.nit),
            success=bool(result.success),
        )
