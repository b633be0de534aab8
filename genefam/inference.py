r"""
Inference from root likelihoods: root size priors and posteriors, Viterbi
reconstruction of ancestral family sizes, and p-values against likelihoods of
families simulated on the same tree.
"""

from __future__ import annotations

from genefam.likelihood import (
    compute_tree_likelihoods,
    compute_tree_clustered_likelihoods,
    initialize_leaf_likelihoods,
)

import numpy as np
import scipy.stats as scst
from dataclasses import dataclass
from typing import List


@dataclass
class Posterior:
    r"""Summary of the root family size distribution of one family.

    Attributes:
        ml_size: root size with the largest likelihood
        max_likelihood: that likelihood
        map_size: root size with the largest likelihood times prior
        max_posterior: that unnormalized posterior value
        posterior: normalized posterior indexed by family size
    """

    ml_size: int
    max_likelihood: float
    map_size: int
    max_posterior: float
    posterior: np.ndarray


def poisson_root_prior(poisson_lambda: float, max_size: int) -> np.ndarray:
    r"""Poisson probabilities of root family sizes ``0..max_size``."""
    return scst.poisson.pmf(np.arange(max_size + 1), poisson_lambda)


def _root_likelihoods(tree) -> np.ndarray:
    if tree.k > 0:
        return compute_tree_clustered_likelihoods(tree)
    return compute_tree_likelihoods(tree)


def _root_sizes(tree) -> np.ndarray:
    family_size = tree.family_size
    return np.arange(family_size.root_min, family_size.root_max + 1)


def compute_posterior(tree, prior: np.ndarray) -> Posterior:
    r"""Likelihood and posterior of the root family size for the family
    currently on the tree.

    Args:
        tree: :class:`genefam.tree.FamilyTree` with leaf counts and transition
            matrices
        prior: prior probability of each root size, indexed by size; sizes
            beyond its end have prior zero
    """
    likelihoods = _root_likelihoods(tree)
    sizes = _root_sizes(tree)
    prior = np.asarray(prior, dtype=float)
    root_prior = np.zeros(sizes.size)
    covered = sizes < prior.size
    root_prior[covered] = prior[sizes[covered]]
    root_likelihoods = likelihoods[sizes]
    unnormalized = root_likelihoods * root_prior
    ml = np.argmax(root_likelihoods)
    map_ = np.argmax(unnormalized)
    posterior = np.zeros(likelihoods.size)
    total = unnormalized.sum()
    if total > 0:
        posterior[sizes] = unnormalized / total
    return Posterior(
        ml_size=int(sizes[ml]),
        max_likelihood=float(root_likelihoods[ml]),
        map_size=int(sizes[map_]),
        max_posterior=float(unnormalized[map_]),
        posterior=posterior,
    )


def viterbi(tree) -> float:
    r"""Most probable family sizes at the internal nodes given the leaf counts.

    A max-product pass from the leaves records, for every branch and parent
    size, the best child size; the traceback from the best root size then sets
    ``node.viterbi`` on every node.

    Args:
        tree: :class:`genefam.tree.FamilyTree` with leaf counts and transition
            matrices (plain model)

    Returns:
        probability of the leaf counts along the best reconstruction
    """
    if tree.k > 0:
        raise ValueError("Viterbi reconstruction needs single-rate branch matrices")
    family_size = tree.family_size
    cols = slice(family_size.min, family_size.max + 1)
    scores = {}
    choices = {}
    for node in tree.tree.traverse("postorder"):
        if node.is_leaf():
            initialize_leaf_likelihoods(tree, node)
            scores[node] = node.likelihoods
            continue
        if node.is_root():
            lo, hi = family_size.root_min, family_size.root_max
        else:
            lo, hi = family_size.min, family_size.max
        score = np.zeros(family_size.size)
        score[lo : hi + 1] = 1
        for child in node.children:
            if child.birthdeath_matrix is None:
                raise ValueError(f"no transition matrix above {child.name!r}")
            block = child.birthdeath_matrix.values[lo : hi + 1, cols] * scores[child][cols]
            choices[child] = (lo, family_size.min + block.argmax(axis=1))
            score[lo : hi + 1] *= block.max(axis=1)
        scores[node] = score

    root = tree.tree
    sizes = _root_sizes(tree)
    best = sizes[np.argmax(scores[root][sizes])]
    root.viterbi = int(best)
    for node in tree.tree.iter_descendants("preorder"):
        lo, child_sizes = choices[node]
        node.viterbi = int(child_sizes[node.up.viterbi - lo])
    return float(scores[root][best])


def random_familysize(tree, root_size: int, rng: np.random.Generator = None) -> int:
    r"""Simulate family sizes down the tree from a root size.

    Each child size is drawn from the parent's row of the branch transition
    matrix, normalized. Sizes are stored in ``node.familysize``.

    Args:
        tree: :class:`genefam.tree.FamilyTree` with transition matrices
        root_size: family size at the root
        rng: random number generator

    Returns:
        the largest simulated size
    """
    if rng is None:
        rng = np.random.default_rng()
    tree.tree.familysize = root_size
    max_size = root_size
    for node in tree.tree.iter_descendants("preorder"):
        row = node.birthdeath_matrix.values[node.up.familysize]
        total = row.sum()
        if total > 0:
            node.familysize = int(rng.choice(row.size, p=row / total))
        else:
            node.familysize = 0
        max_size = max(max_size, node.familysize)
    return max_size


def conditional_distribution(
    tree,
    num_trials: int,
    rng: np.random.Generator = None,
    root_min: int = None,
    root_max: int = None,
) -> List[np.ndarray]:
    r"""Likelihoods of families simulated from each root size.

    For every root size, ``num_trials`` families are simulated with
    :func:`random_familysize` and the likelihood of each at that root size is
    recorded. The tree's family sizes are restored afterwards.

    Args:
        tree: :class:`genefam.tree.FamilyTree` with transition matrices
        num_trials: simulations per root size
        rng: random number generator
        root_min: smallest root size, defaults to the tree's
        root_max: largest root size, defaults to the tree's

    Returns:
        sorted likelihoods for each root size from ``root_min`` to ``root_max``
    """
    if rng is None:
        rng = np.random.default_rng()
    if root_min is None:
        root_min = tree.family_size.root_min
    if root_max is None:
        root_max = tree.family_size.root_max
    saved = [node.familysize for node in tree.nodes]
    distribution = []
    try:
        for root_size in range(root_min, root_max + 1):
            trials = np.empty(num_trials)
            for trial in range(num_trials):
                random_familysize(tree, root_size, rng)
                trials[trial] = _root_likelihoods(tree)[root_size]
            distribution.append(np.sort(trials))
    finally:
        for node, familysize in zip(tree.nodes, saved):
            node.familysize = familysize
    return distribution


def pvalue(v: float, distribution: np.ndarray) -> float:
    r"""Fraction of a sorted distribution at or below ``v``."""
    distribution = np.asarray(distribution)
    return np.searchsorted(distribution, v, side="right") / distribution.size


def tree_p_values(
    tree, distribution: List[np.ndarray], root_min: int = None
) -> np.ndarray:
    r"""p-value of the family on the tree for each root size.

    Args:
        tree: :class:`genefam.tree.FamilyTree` with leaf counts
        distribution: output of :func:`conditional_distribution`
        root_min: root size of ``distribution[0]``, defaults to the tree's
    """
    if root_min is None:
        root_min = tree.family_size.root_min
    likelihoods = _root_likelihoods(tree)
    return np.array(
        [
            pvalue(likelihoods[root_min + i], simulated)
            for i, simulated in enumerate(distribution)
        ]
    )


def family_pvalue(
    tree, distribution: List[np.ndarray], root_min: int = None
) -> float:
    r"""p-value of the family on the tree at its maximum likelihood root size.

    Args:
        tree: :class:`genefam.tree.FamilyTree` with leaf counts
        distribution: output of :func:`conditional_distribution`
        root_min: root size of ``distribution[0]``, defaults to the tree's
    """
    if root_min is None:
        root_min = tree.family_size.root_min
    likelihoods = _root_likelihoods(tree)
    covered = likelihoods[root_min : root_min + len(distribution)]
    i = int(np.argmax(covered))
    return pvalue(covered[i], distribution[i])
