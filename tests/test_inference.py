import genefam.inference as inf
from genefam.birthdeath import reset_birthdeath_cache
from genefam.matrix import SquareMatrix
from genefam.tree import FamilyTree
from genefam.utils import FamilySizeRange
import numpy as np
import pytest


small_newick = "((A:1,B:1):1,(C:1,D:1):1);"


def small_tree(sizes=(5, 3, 2, 4), family_size=None):
    if family_size is None:
        family_size = FamilySizeRange(0, 7, 0, 7)
    tree = FamilyTree(small_newick, family_size, lambda_=0.01, mu=-1)
    for name, size in zip("ABCD", sizes):
        tree.find(name).familysize = size
    return tree


def set_matrices(tree, matrix):
    for node in tree.tree.iter_descendants():
        node.birthdeath_matrix = matrix


def test_poisson_root_prior():
    prior = inf.poisson_root_prior(5.75, 60)
    assert prior.size == 61
    assert np.isclose(prior[5], 0.16671, atol=1e-5)
    assert np.isclose(prior.sum(), 1)


def test_compute_posterior():
    tree = small_tree((5, 10, 2, 6), FamilySizeRange(0, 60, 0, 60))
    set_matrices(tree, SquareMatrix(61, np.full((61, 61), 0.25)))
    posterior = inf.compute_posterior(tree, inf.poisson_root_prior(5.75, 60))
    assert np.isclose(posterior.max_likelihood, 0.908447, atol=1e-6)
    assert np.isclose(posterior.max_posterior, 0.151448, atol=1e-5)
    assert posterior.map_size == 5
    assert np.isclose(posterior.posterior.sum(), 1)
    assert posterior.posterior.argmax() == 5


def test_compute_posterior_short_prior():
    tree = small_tree(family_size=FamilySizeRange(0, 7, 1, 7))
    reset_birthdeath_cache(tree)
    prior = np.zeros(3)
    prior[2] = 1
    posterior = inf.compute_posterior(tree, prior)
    assert posterior.map_size == 2
    assert posterior.posterior[2] == 1
    assert 1 <= posterior.ml_size <= 7


def test_viterbi():
    tree = small_tree((5, 5, 5, 5))
    reset_birthdeath_cache(tree)
    probability = inf.viterbi(tree)
    assert 0 < probability <= 1
    for node in tree.tree.traverse():
        assert node.viterbi == 5


def test_viterbi_follows_leaves():
    tree = small_tree((2, 2, 6, 6))
    reset_birthdeath_cache(tree)
    inf.viterbi(tree)
    assert tree.find("A").viterbi == 2
    assert tree.find("D").viterbi == 6
    for node in tree.tree.traverse():
        assert 2 <= node.viterbi <= 6


def test_viterbi_needs_plain_model():
    tree = small_tree()
    tree.set_cluster_rates([0.01, 0.02], [0.5, 0.5])
    with pytest.raises(ValueError):
        inf.viterbi(tree)


def test_random_familysize():
    tree = small_tree()
    set_matrices(tree, SquareMatrix.identity(8))
    assert inf.random_familysize(tree, 3, np.random.default_rng(0)) == 3
    assert all(node.familysize == 3 for node in tree.tree.traverse())

    set_matrices(tree, SquareMatrix(8))
    assert inf.random_familysize(tree, 4, np.random.default_rng(0)) == 4
    assert all(leaf.familysize == 0 for leaf in tree.leaves())


def test_random_familysize_draws_from_rows():
    tree = small_tree()
    values = np.zeros((8, 8))
    values[:, 6] = 0.5
    values[:, 7] = 0.5
    set_matrices(tree, SquareMatrix(8, values))
    max_size = inf.random_familysize(tree, 1, np.random.default_rng(3))
    assert max_size in (6, 7)
    assert all(leaf.familysize in (6, 7) for leaf in tree.leaves())


def test_conditional_distribution():
    tree = small_tree(family_size=FamilySizeRange(0, 7, 1, 3))
    reset_birthdeath_cache(tree)
    distribution = inf.conditional_distribution(tree, 4, np.random.default_rng(0))
    assert len(distribution) == 3
    for trials in distribution:
        assert trials.size == 4
        assert np.all(np.diff(trials) >= 0)
        assert np.all((trials >= 0) & (trials <= 1))
    assert [tree.find(name).familysize for name in "ABCD"] == [5, 3, 2, 4]

    p_values = inf.tree_p_values(tree, distribution)
    assert p_values.size == 3
    assert np.all((p_values >= 0) & (p_values <= 1))


def test_pvalue():
    distribution = [0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9]
    assert np.isclose(inf.pvalue(0.35, distribution), 3 / 9)
    assert inf.pvalue(0.05, distribution) == 0
    assert inf.pvalue(0.9, distribution) == 1


def test_family_pvalue():
    tree = small_tree(family_size=FamilySizeRange(0, 7, 1, 3))
    reset_birthdeath_cache(tree)
    assert inf.family_pvalue(tree, [np.zeros(5)] * 3) == 1
    assert inf.family_pvalue(tree, [np.ones(5)] * 3) == 0
