r"""Cache of log binomial coefficients used by the birth-death transition
probabilities."""

import numpy as np
import scipy.special as scs


class ChooseLnCache:
    r"""Table of :math:`\ln\binom{n}{k}` for :math:`0 \le k \le n \le N`.

    Entries with :math:`k > n` hold :math:`-\infty` so that the table can be
    indexed with whole arrays of :math:`(n, k)` pairs.

    Args:
        size: the largest :math:`n` to precompute; ``None`` leaves the cache
            uninitialized
    """

    def __init__(self, size: int = None):
        self.values = None
        if size is not None:
            self.resize(size)

    @property
    def is_initialized(self) -> bool:
        return self.values is not None

    @property
    def size(self) -> int:
        r"""Largest :math:`n` held by the cache (0 when uninitialized)."""
        return 0 if self.values is None else self.values.shape[0] - 1

    def resize(self, size: int):
        r"""(Re)build the table so that it covers every :math:`n \le` ``size``.

        Args:
            size: the largest :math:`n` to precompute
        """
        if size < 0:
            raise ValueError(f"cache size must be non-negative, got {size}")
        n = np.arange(size + 1)[:, None]
        k = np.arange(size + 1)[None, :]
        with np.errstate(invalid="ignore"):
            values = (
                scs.gammaln(n + 1)
                - scs.gammaln(k + 1)
                - scs.gammaln(np.maximum(n - k, 0) + 1)
            )
        self.values = np.where(k <= n, values, -np.inf)

    def ensure(self, size: int):
        r"""Grow the cache if it does not yet cover ``size``."""
        if not self.is_initialized or self.size < size:
            self.resize(size)

    def get(self, n: int, k: int) -> float:
        r"""Cached :math:`\ln\binom{n}{k}`.

        Args:
            n: number of items
            k: number chosen
        """
        if not self.is_initialized:
            raise ValueError("chooseln cache is not initialized")
        if n > self.size:
            raise IndexError(f"n = {n} exceeds chooseln cache size {self.size}")
        if n < 0 or k < 0:
            raise IndexError(f"negative index into chooseln cache: n = {n}, k = {k}")
        return self.values[n, k]

    def clear(self):
        self.values = None
