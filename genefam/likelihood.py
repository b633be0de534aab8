r"""
Likelihood of the gene family sizes at the leaves of a tree, computed by
pruning from the leaves to the root.

For a node :math:`v` with children :math:`w` and family size :math:`s`,

.. math::
    L_v(s) = \prod_{w} \sum_{c} P_w(s \to c) L_w(c)

where :math:`P_w` is the transition matrix of the branch above :math:`w`. The
root vector :math:`L_\rho(s)` is the probability of the leaf counts given root
family size :math:`s`.
"""

from __future__ import annotations

import numpy as np
import ete3


def _node_range(tree, node: ete3.TreeNode):
    family_size = tree.family_size
    if node.is_root():
        return family_size.root_min, family_size.root_max
    return family_size.min, family_size.max


def _leaf_vector(tree, node: ete3.TreeNode) -> np.ndarray:
    size = tree.family_size.size
    likelihoods = np.zeros(size)
    if node.familysize < 0:
        # unknown count: every size in range is consistent
        likelihoods[tree.family_size.min : tree.family_size.max + 1] = 1
    elif node.errormodel is not None:
        likelihoods = node.errormodel.leaf_likelihoods(node.familysize, size)
    elif node.familysize < size:
        likelihoods[node.familysize] = 1
    else:
        raise ValueError(
            f"family size {node.familysize} at {node.name} exceeds the largest "
            f"size {size - 1}"
        )
    return likelihoods


def initialize_leaf_likelihoods(tree, node: ete3.TreeNode):
    r"""Set a leaf's likelihood vector from its observed count.

    Without an error model the vector is an indicator of the count. With one,
    entry :math:`j` is the probability of the observed count given true size
    :math:`j`. For the clustered model every cluster gets the same vector.

    Args:
        tree: :class:`genefam.tree.FamilyTree`
        node: a leaf of ``tree.tree``
    """
    node.likelihoods = _leaf_vector(tree, node)
    if tree.k > 0:
        node.k_likelihoods = np.tile(node.likelihoods, (tree.k, 1))


def _branch_factor(tree, matrix, likelihoods, lo, hi, child) -> np.ndarray:
    if matrix is None:
        raise ValueError(
            f"no transition matrix on the branch above {child.name!r}; reset the "
            "birth-death cache first"
        )
    family_size = tree.family_size
    return matrix.multiply(likelihoods, lo, hi, family_size.min, family_size.max)


def compute_internal_node_likelihood(tree, node: ete3.TreeNode):
    r"""Combine the children's likelihood vectors into the node's.

    Entries outside the node's family size range (the root range at the root)
    are zero.

    Args:
        tree: :class:`genefam.tree.FamilyTree`
        node: an internal node whose children have likelihoods
    """
    lo, hi = _node_range(tree, node)
    likelihoods = np.zeros(tree.family_size.size)
    likelihoods[lo : hi + 1] = 1
    for child in node.children:
        likelihoods[lo : hi + 1] *= _branch_factor(
            tree, child.birthdeath_matrix, child.likelihoods, lo, hi, child
        )
    node.likelihoods = likelihoods


def compute_internal_node_likelihood_clustered(tree, node: ete3.TreeNode):
    r"""Per-cluster version of :func:`compute_internal_node_likelihood`, using
    the children's ``k_bd`` matrices and ``k_likelihoods``."""
    lo, hi = _node_range(tree, node)
    k_likelihoods = np.zeros((tree.k, tree.family_size.size))
    k_likelihoods[:, lo : hi + 1] = 1
    for child in node.children:
        if child.k_bd is None:
            raise ValueError(
                f"no cluster transition matrices above {child.name!r}; reset the "
                "birth-death cache with k clusters first"
            )
        for i in range(tree.k):
            k_likelihoods[i, lo : hi + 1] *= _branch_factor(
                tree, child.k_bd[i], child.k_likelihoods[i], lo, hi, child
            )
    node.k_likelihoods = k_likelihoods


def compute_tree_likelihoods(tree) -> np.ndarray:
    r"""Likelihood of the leaf counts for every root family size.

    Every node's ``likelihoods`` is filled in, leaves first.

    Args:
        tree: :class:`genefam.tree.FamilyTree` with leaf counts and transition
            matrices

    Returns:
        the root likelihood vector, indexed by family size
    """
    for node in tree.tree.traverse("postorder"):
        if node.is_leaf():
            initialize_leaf_likelihoods(tree, node)
        else:
            compute_internal_node_likelihood(tree, node)
    return get_likelihoods(tree)


def compute_tree_clustered_likelihoods(tree) -> np.ndarray:
    r"""Root likelihood under the clustered model: the cluster likelihoods
    weighted by ``tree.k_weights``.

    Args:
        tree: :class:`genefam.tree.FamilyTree` after
            :meth:`~genefam.tree.FamilyTree.set_cluster_rates` and a cache reset
            with ``k = tree.k``
    """
    if tree.k <= 0:
        raise ValueError("the tree has no rate clusters")
    for node in tree.tree.traverse("postorder"):
        if node.is_leaf():
            initialize_leaf_likelihoods(tree, node)
        else:
            compute_internal_node_likelihood_clustered(tree, node)
    root = tree.tree
    root.likelihoods = tree.k_weights @ root.k_likelihoods
    return root.likelihoods


def get_likelihoods(tree) -> np.ndarray:
    r"""The root likelihood vector of the last computation."""
    return tree.tree.likelihoods
