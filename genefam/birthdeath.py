r"""
Transition probabilities of the linear birth-death process, and a cache that
shares transition matrices between tree branches with equal branch length and
rates.

For a lineage starting with :math:`s>0` members, the probability of having
:math:`c` members after time :math:`t` is

.. math::
    P(s \to c) = \sum_{j=0}^{\min(s, c)} \binom{s}{j}\binom{s+c-j-1}{s-1}
    \alpha^{s-j}\beta^{c-j}(1-\alpha-\beta)^j

where :math:`\alpha` and :math:`\beta` depend on :math:`t`, the birth rate
:math:`\lambda` and the death rate :math:`\mu`.
"""

from genefam.chooseln import ChooseLnCache
from genefam.matrix import SquareMatrix
from genefam.utils import FamilySizeRange

import numpy as np
import scipy.special as scs
import warnings
import collections as coll
from typing import List, Tuple

BirthDeathCacheKey = coll.namedtuple(
    "BirthDeathCacheKey", ["branchlength", "lambda_", "mu"]
)

# mu value meaning that birth and death share the single rate lambda
SINGLE_RATE = -1


def _alpha_beta(
    branchlength: float, lambda_: float, mu: float
) -> Tuple[float, float]:
    if mu < 0 or abs(lambda_ - mu) < 1e-10:
        alpha = lambda_ * branchlength / (1 + lambda_ * branchlength)
        return alpha, alpha
    expval = np.exp((lambda_ - mu) * branchlength)
    denominator = lambda_ * expval - mu
    return (
        mu * (expval - 1) / denominator,
        lambda_ * (expval - 1) / denominator,
    )


def _valid_rates(lambda_: float, mu: float) -> bool:
    if not (np.isfinite(lambda_) and np.isfinite(mu)):
        return False
    return lambda_ >= 0 and (mu >= 0 or mu == SINGLE_RATE)


def birthdeath_rate(
    s: int,
    c: int,
    alpha: float,
    beta: float,
    cache: ChooseLnCache,
    coeff: float = None,
) -> float:
    r"""Probability of :math:`s \to c` given the process parameters
    :math:`\alpha` and :math:`\beta`.

    Args:
        s: family size at the start of the branch
        c: family size at the end of the branch
        alpha: :math:`\alpha`
        beta: :math:`\beta`
        cache: log binomial coefficients, grown if needed
        coeff: :math:`1-\alpha-\beta` unless given

    Returns:
        the probability, clipped to the unit interval
    """
    if s == 0:
        return 1.0 if c == 0 else 0.0
    if coeff is None:
        coeff = 1 - alpha - beta
    cache.ensure(s + c)
    j = np.arange(min(s, c) + 1)
    logterms = (
        cache.values[s, j]
        + cache.values[s + c - j - 1, s - 1]
        + scs.xlogy(s - j, alpha)
        + scs.xlogy(c - j, beta)
    )
    p = np.sum(np.exp(logterms) * coeff**j)
    return float(min(max(p, 0.0), 1.0))


def birthdeath_likelihood_with_s_c(
    s: int,
    c: int,
    branchlength: float,
    lambda_: float,
    mu: float,
    cache: ChooseLnCache,
) -> float:
    r"""Probability that a family of size ``s`` has size ``c`` after
    ``branchlength`` time units.

    Args:
        s: starting family size
        c: final family size
        branchlength: elapsed time
        lambda_: birth rate
        mu: death rate, or ``-1`` for the single-rate model
        cache: log binomial coefficients
    """
    if branchlength <= 0:
        return float(s == c)
    alpha, beta = _alpha_beta(branchlength, lambda_, mu)
    return birthdeath_rate(s, c, alpha, beta, cache)


def compute_birthdeath_rates(
    branchlength: float,
    lambda_: float,
    mu: float,
    max_family_size: int,
    cache: ChooseLnCache = None,
) -> SquareMatrix:
    r"""Matrix of :math:`P(s \to c)` for :math:`0 \le s, c \le` ``max_family_size``.

    A non-positive branch length gives the identity matrix. So do invalid
    rates, with a warning.

    Args:
        branchlength: branch length :math:`t`
        lambda_: birth rate :math:`\lambda`
        mu: death rate :math:`\mu`, or ``-1`` for the single-rate model
        max_family_size: largest family size :math:`N`
        cache: log binomial coefficients, grown to :math:`2N` if needed

    Returns:
        :math:`(N+1)\times(N+1)` transition matrix indexed ``[s, c]``
    """
    size = max_family_size + 1
    if branchlength <= 0:
        return SquareMatrix.identity(size)
    if not _valid_rates(lambda_, mu):
        warnings.warn(
            f"invalid birth-death rates lambda = {lambda_}, mu = {mu}; "
            "using the identity transition matrix",
            RuntimeWarning,
        )
        return SquareMatrix.identity(size)
    if cache is None:
        cache = ChooseLnCache()
    cache.ensure(2 * max_family_size)

    alpha, beta = _alpha_beta(branchlength, lambda_, mu)
    coeff = 1 - alpha - beta
    matrix = SquareMatrix(size)
    matrix.set(0, 0, 1.0)
    c = np.arange(size)[:, None]
    for s in range(1, size):
        j = np.arange(s + 1)[None, :]
        valid = j <= c
        n = np.where(valid, s + c - j - 1, 0)
        logterms = np.where(
            valid,
            cache.values[s, j]
            + cache.values[n, s - 1]
            + scs.xlogy(s - j, alpha)
            + scs.xlogy(np.maximum(c - j, 0), beta),
            -np.inf,
        )
        terms = np.exp(logterms) * coeff**j
        matrix.values[s] = np.clip(terms.sum(axis=1), 0.0, 1.0)
    return matrix


def add_key(
    keys: List[BirthDeathCacheKey], branchlength: float, lambda_: float, mu: float
) -> BirthDeathCacheKey:
    r"""Append the cache key for a branch unless an equal key is present.

    Branch lengths are truncated to integers.
    """
    key = BirthDeathCacheKey(int(branchlength), lambda_, mu)
    if key not in keys:
        keys.append(key)
    return key


class BirthDeathCache:
    r"""Transition matrices keyed by (integer branch length, birth rate, death
    rate).

    Branch lengths that agree after truncation to an integer share a matrix,
    which is computed at the truncated length. Matrices handed out are the
    cached objects themselves; nodes hold references and the cache owns them.

    Args:
        max_family_size: largest family size covered by the matrices
        chooseln_cache: log binomial coefficient cache to build with
    """

    def __init__(self, max_family_size: int, chooseln_cache: ChooseLnCache = None):
        self.max_family_size = max_family_size
        self.chooseln_cache = (
            chooseln_cache if chooseln_cache is not None else ChooseLnCache()
        )
        self.chooseln_cache.ensure(2 * max_family_size)
        self.keys: List[BirthDeathCacheKey] = []
        self._table = {}

    def __len__(self):
        return len(self._table)

    def __contains__(self, key):
        return BirthDeathCacheKey(int(key[0]), key[1], key[2]) in self._table

    def _build(self, key: BirthDeathCacheKey) -> SquareMatrix:
        return compute_birthdeath_rates(
            key.branchlength,
            key.lambda_,
            key.mu,
            self.max_family_size,
            self.chooseln_cache,
        )

    def get_matrix(self, branchlength: float, lambda_: float, mu: float) -> SquareMatrix:
        r"""The shared transition matrix for a branch, built on first request.

        Args:
            branchlength: branch length, truncated to an integer
            lambda_: birth rate
            mu: death rate, or ``-1`` for the single-rate model
        """
        key = add_key(self.keys, branchlength, lambda_, mu)
        if key not in self._table:
            self._table[key] = self._build(key)
        return self._table[key]

    def resize(self, max_family_size: int):
        r"""Rebuild every cached matrix for a new largest family size."""
        self.max_family_size = max_family_size
        self.chooseln_cache.ensure(2 * max_family_size)
        for key in self.keys:
            self._table[key] = self._build(key)

    def clear(self):
        self.keys = []
        self._table = {}

    def node_set_birthdeath_matrix(self, node, k: int = 0):
        r"""Point a node at its cached transition matrix.

        Nodes with a negative branch length get nothing. With ``k > 0`` and
        per-cluster rates on the node, ``node.k_bd`` receives one matrix per
        cluster and ``node.birthdeath_matrix`` is cleared.

        Args:
            node: an ``ete3`` node with ``lambda_`` and ``mu`` features
            k: number of clusters
        """
        if node.dist < 0:
            return
        param_lambdas = getattr(node, "param_lambdas", None)
        if k > 0 and param_lambdas is not None:
            param_mus = getattr(node, "param_mus", None)
            if param_mus is None:
                param_mus = [SINGLE_RATE] * k
            node.k_bd = [
                self.get_matrix(node.dist, param_lambdas[i], param_mus[i])
                for i in range(k)
            ]
            node.birthdeath_matrix = None
        else:
            node.birthdeath_matrix = self.get_matrix(node.dist, node.lambda_, node.mu)

    def reset(self, tree, k: int = 0, family_size: FamilySizeRange = None):
        r"""Assign transition matrices to every branch of a tree.

        The cache is grown, and its existing entries rebuilt, when the family
        size range needs larger matrices than it holds. All matrices are
        built before any node is updated.

        Args:
            tree: :class:`genefam.tree.FamilyTree`
            k: number of clusters (0 for the plain model)
            family_size: range to cover; defaults to the tree's
        """
        if family_size is None:
            family_size = tree.family_size
        needed = family_size.size - 1
        if needed > self.max_family_size:
            self.resize(needed)
        nodes = [node for node in tree.tree.iter_descendants() if node.dist >= 0]
        for node in nodes:
            param_lambdas = getattr(node, "param_lambdas", None)
            if k > 0 and param_lambdas is not None:
                param_mus = getattr(node, "param_mus", None) or [SINGLE_RATE] * k
                for i in range(k):
                    add_key(self.keys, node.dist, param_lambdas[i], param_mus[i])
            else:
                add_key(self.keys, node.dist, node.lambda_, node.mu)
        for key in self.keys:
            if key not in self._table:
                self._table[key] = self._build(key)
        for node in nodes:
            self.node_set_birthdeath_matrix(node, k)


def reset_birthdeath_cache(
    tree,
    k: int = 0,
    family_size: FamilySizeRange = None,
    cache: BirthDeathCache = None,
    chooseln_cache: ChooseLnCache = None,
) -> BirthDeathCache:
    r"""Create a cache when none is given, then reset the tree against it.

    Returns:
        the cache now referenced by the tree's nodes
    """
    if family_size is None:
        family_size = tree.family_size
    if cache is None:
        cache = BirthDeathCache(family_size.size - 1, chooseln_cache)
    cache.reset(tree, k, family_size)
    return cache
