r"""
A species tree whose nodes carry gene family sizes, birth-death rates, and the
per-node buffers filled in by the likelihood computations.
"""

from __future__ import annotations

from genefam.utils import FamilySizeRange, case_insensitive_equal

import numpy as np
import ete3
from typing import List, Sequence, Union

# node features and their values on a fresh tree (rates are filled in at init)
_NODE_DEFAULTS = dict(
    familysize=-1,
    param_lambdas=None,
    param_mus=None,
    likelihoods=None,
    k_likelihoods=None,
    birthdeath_matrix=None,
    k_bd=None,
    errormodel=None,
    viterbi=None,
)


class FamilyTree:
    r"""A phylogeny annotated for gene family size evolution.

    Every node of :attr:`tree` has the features ``familysize`` (-1 when
    unknown), ``lambda_`` and ``mu`` (birth and death rates, ``mu = -1`` for
    the single-rate model), ``param_lambdas`` and ``param_mus`` (per-cluster
    rates), ``likelihoods`` and ``k_likelihoods`` (vectors indexed by family
    size), ``birthdeath_matrix`` and ``k_bd`` (references to matrices owned by
    a :class:`genefam.birthdeath.BirthDeathCache`), ``errormodel`` (reference
    to an :class:`genefam.error_model.ErrorModel`) and ``viterbi`` (most
    likely family size).

    Attributes:
        tree: :class:`ete3.TreeNode` with the features above
        family_size: the family size range of the computations
        nodes: all nodes in preorder; family tables index species by position
            in this list
        k: number of rate clusters (0 for the plain model)
        k_weights: cluster weights

    Args:
        tree: Newick string or ete3 tree (copied)
        family_size: family size range; defaults to an empty range
        lambda_: birth rate assigned to every node
        mu: death rate assigned to every node, ``-1`` for the single-rate model
    """

    def __init__(
        self,
        tree: Union[str, ete3.TreeNode],
        family_size: FamilySizeRange = None,
        lambda_: float = 0.01,
        mu: float = -1,
    ):
        if isinstance(tree, str):
            self.tree = ete3.Tree(tree, format=1)
        else:
            self.tree = tree.copy()
        self.tree.dist = 0
        self.family_size = family_size if family_size is not None else FamilySizeRange()
        self.k = 0
        self.k_weights = None
        for node in self.tree.traverse():
            node.add_features(lambda_=lambda_, mu=mu, **_NODE_DEFAULTS)
        self.nodes = list(self.tree.traverse("preorder"))

    def __repr__(self):
        return str(self.tree)

    def set_rates(self, lambda_: float, mu: float = -1):
        r"""Give every node the same birth and death rate and leave the
        clustered model."""
        self.k = 0
        self.k_weights = None
        for node in self.tree.traverse():
            node.lambda_ = lambda_
            node.mu = mu
            node.param_lambdas = None
            node.param_mus = None
            node.k_bd = None
            node.k_likelihoods = None

    def set_cluster_rates(
        self,
        lambdas: Sequence[float],
        weights: Sequence[float],
        mus: Sequence[float] = None,
    ):
        r"""Switch to the clustered model with one rate pair per cluster.

        The per-node ``lambda_`` and ``mu`` are set to -1, as only the cluster
        rates apply.

        Args:
            lambdas: birth rate of each cluster
            weights: mixture weight of each cluster
            mus: death rate of each cluster; ``None`` for the single-rate model
        """
        if len(weights) != len(lambdas):
            raise ValueError(
                f"{len(lambdas)} cluster birth rates but {len(weights)} weights"
            )
        if mus is not None and len(mus) != len(lambdas):
            raise ValueError(
                f"{len(lambdas)} cluster birth rates but {len(mus)} death rates"
            )
        self.k = len(lambdas)
        self.k_weights = np.asarray(weights, dtype=float)
        for node in self.tree.traverse():
            node.param_lambdas = list(lambdas)
            node.param_mus = None if mus is None else list(mus)
            node.lambda_ = -1
            node.mu = -1

    def leaves(self) -> List[ete3.TreeNode]:
        return self.tree.get_leaves()

    def find(self, name: str) -> ete3.TreeNode:
        r"""The first node, in preorder, whose name matches up to case, or
        ``None``."""
        for node in self.nodes:
            if case_insensitive_equal(node.name, name):
                return node
        return None

    def distance_from_root(self, node: ete3.TreeNode) -> float:
        return self.tree.get_distance(node)

    def max_root_to_leaf_length(self) -> float:
        return max(self.distance_from_root(leaf) for leaf in self.leaves())

    def is_ultrametric(self, tolerance: float = 1e-6) -> bool:
        r"""Whether all leaves are equally far from the root."""
        distances = [self.distance_from_root(leaf) for leaf in self.leaves()]
        return max(distances) - min(distances) <= tolerance

    def clear_family_sizes(self, value: int = -1):
        r"""Reset the family size and reconstructed size of every node."""
        for node in self.tree.traverse():
            node.familysize = value
            node.viterbi = None
