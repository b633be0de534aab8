import genefam.birthdeath as bd
from genefam.chooseln import ChooseLnCache
from genefam.matrix import SquareMatrix
from genefam.tree import FamilyTree
from genefam.utils import FamilySizeRange
import numpy as np
import pytest


cache = ChooseLnCache(50)


def test_chooseln_cache():
    empty = ChooseLnCache()
    assert not empty.is_initialized
    assert empty.size == 0
    with pytest.raises(ValueError):
        empty.get(1, 1)
    small = ChooseLnCache(10)
    assert small.is_initialized
    assert small.size == 10
    assert np.isclose(small.get(8, 5), 4.025, atol=0.001)
    assert np.isclose(small.get(3, 2), 1.098, atol=0.001)
    assert np.isclose(small.get(6, 5), 1.791, atol=0.001)
    assert np.isclose(small.get(9, 3), 4.43, atol=0.001)
    with pytest.raises(IndexError):
        small.get(11, 2)
    small.ensure(20)
    assert small.size == 20
    assert np.isclose(small.get(20, 10), np.log(184756))


def test_birthdeath_rate():
    alpha = np.exp(-1.37)
    assert np.isclose(bd.birthdeath_rate(40, 42, alpha, alpha, cache, coeff=0.5), 0.107, atol=0.001)
    alpha = np.exp(-1.262)
    assert np.isclose(bd.birthdeath_rate(41, 34, alpha, alpha, cache, coeff=0.4), 0.006, atol=0.001)
    for log_alpha, coeff in [
        (-1.193124100281034, 0.3934553412290217),
        (-1.1931291703283662, 0.39345841643135504),
    ]:
        alpha = np.exp(log_alpha)
        assert np.isclose(bd.birthdeath_rate(5, 5, alpha, alpha, cache, coeff), 0.19466, atol=0.0001)
    assert bd.birthdeath_rate(0, 0, 0.2, 0.2, cache) == 1
    assert bd.birthdeath_rate(0, 3, 0.2, 0.2, cache) == 0


def test_birthdeath_likelihood_with_s_c():
    assert np.isclose(bd.birthdeath_likelihood_with_s_c(40, 42, 0.42, 0.5, -1, cache), 0.083, atol=0.001)
    assert np.isclose(bd.birthdeath_likelihood_with_s_c(41, 34, 0.54, 0.4, -1, cache), 0.023, atol=0.001)
    assert bd.birthdeath_likelihood_with_s_c(4, 4, 0, 0.5, -1, cache) == 1


def test_compute_birthdeath_rates():
    matrix = bd.compute_birthdeath_rates(10, 0.02, 0.01, 3, ChooseLnCache(3))
    assert matrix.size == 4
    expected = {
        (0, 0): 1,
        (0, 1): 0,
        (0, 2): 0,
        (1, 0): 0.086,
        (1, 1): 0.754,
        (1, 2): 0.131,
        (2, 0): 0.007,
        (2, 1): 0.131,
        (2, 2): 0.591,
    }
    for (s, c), value in expected.items():
        assert np.isclose(matrix.get(s, c), value, atol=0.001)


def test_compute_birthdeath_rates_without_mu():
    matrix = bd.compute_birthdeath_rates(1, 0.01, -1, 20)
    assert matrix.size == 21
    assert np.isclose(matrix.get(1, 0), 0.0099, atol=1e-6)
    assert np.isclose(matrix.get(1, 1), 0.980296, atol=1e-6)
    assert np.isclose(matrix.get(1, 2), 0.0097059, atol=1e-6)
    assert np.isclose(matrix.get(2, 0), 9.8e-05, atol=1e-7)
    assert np.isclose(matrix.get(2, 1), 0.0194118, atol=1e-6)
    assert np.isclose(matrix.get(2, 2), 0.961173, atol=1e-6)
    assert np.isclose(matrix.get(3, 0), 9.7059e-07, atol=1e-6)
    assert np.isclose(matrix.get(3, 1), 0.000288294, atol=1e-6)
    assert np.isclose(matrix.get(3, 2), 0.0285468, atol=1e-6)


def test_compute_birthdeath_rates_large():
    matrix = bd.compute_birthdeath_rates(68.7105, 0.006335, -1, 140, ChooseLnCache(141))
    assert matrix.size == 141
    assert np.isclose(matrix.get(5, 5), 0.19466, atol=1e-5)
    assert np.all(matrix.values >= 0) and np.all(matrix.values <= 1)


def test_zero_branch_length_is_identity():
    matrix = bd.compute_birthdeath_rates(0, 0.01, -1, 15)
    assert matrix == SquareMatrix.identity(16)


def test_invalid_rates_warn():
    with pytest.warns(RuntimeWarning):
        matrix = bd.compute_birthdeath_rates(5, -0.01, -1, 4)
    assert matrix == SquareMatrix.identity(5)
    with pytest.warns(RuntimeWarning):
        bd.compute_birthdeath_rates(5, 0.01, np.nan, 4)


def test_add_key():
    keys = []
    key = bd.add_key(keys, 1, 2, 3)
    assert len(keys) == 1
    assert key.branchlength == 1
    assert key.lambda_ == 2
    assert key.mu == 3


def test_add_key_skips_matching_keys():
    keys = []
    bd.add_key(keys, 1, 2, 3)
    bd.add_key(keys, 2, 3, 4)
    bd.add_key(keys, 1, 2, 3)
    assert len(keys) == 2


def test_get_matrix_ignores_fractional_branch_lengths():
    bdcache = bd.BirthDeathCache(140, ChooseLnCache(141))
    matrix = bdcache.get_matrix(68.7105, 0.006335, -1)
    assert np.isclose(matrix.get(5, 5), 0.195791, atol=1e-5)
    assert bdcache.get_matrix(68, 0.006335, -1) is matrix
    assert len(bdcache) == 1
    assert (68.3, 0.006335, -1) in bdcache


def make_tree(family_size=None):
    if family_size is None:
        family_size = FamilySizeRange(0, 10, 0, 10)
    return FamilyTree(
        "(((chimp:6,human:6):81,(mouse:17,rat:17):70):6,dog:9);",
        family_size,
        lambda_=0.01,
    )


def test_node_set_birthdeath_matrix():
    bdcache = bd.BirthDeathCache(10)
    tree = make_tree()
    node = tree.tree.children[0]
    assert node.birthdeath_matrix is None

    node.dist = -1
    bdcache.node_set_birthdeath_matrix(node, 0)
    assert node.birthdeath_matrix is None

    node.dist = 6
    bdcache.node_set_birthdeath_matrix(node, 0)
    assert node.birthdeath_matrix is not None

    # without cluster rates the plain matrix is used even when k > 0
    node.birthdeath_matrix = None
    bdcache.node_set_birthdeath_matrix(node, 5)
    assert node.birthdeath_matrix is not None

    node.param_lambdas = [0.01, 0.02, 0.03, 0.04, 0.05]
    node.birthdeath_matrix = None
    bdcache.node_set_birthdeath_matrix(node, 0)
    assert node.birthdeath_matrix is not None

    bdcache.node_set_birthdeath_matrix(node, 5)
    assert node.birthdeath_matrix is None
    assert len(node.k_bd) == 5


def test_reset_birthdeath_cache():
    tree = make_tree()
    bdcache = bd.reset_birthdeath_cache(tree)
    for node in tree.tree.iter_descendants():
        expected = bdcache.get_matrix(node.dist, node.lambda_, node.mu)
        assert node.birthdeath_matrix is expected
        assert node.birthdeath_matrix.size == 11
    assert tree.tree.birthdeath_matrix is None
    # branch lengths 6, 81, 17, 70, 9
    assert len(bdcache) == 5


def test_reset_grows_cache():
    tree = make_tree()
    bdcache = bd.BirthDeathCache(5)
    small = bdcache.get_matrix(6, 0.01, -1)
    assert small.size == 6
    bdcache.reset(tree, family_size=FamilySizeRange(0, 20, 1, 25))
    assert bdcache.max_family_size == 25
    leaf = tree.find("chimp")
    assert leaf.birthdeath_matrix.size == 26
    assert np.isclose(
        leaf.birthdeath_matrix.get(3, 3),
        bd.compute_birthdeath_rates(6, 0.01, -1, 25).get(3, 3),
    )


def test_clear():
    bdcache = bd.BirthDeathCache(5)
    bdcache.get_matrix(1, 0.01, -1)
    bdcache.clear()
    assert len(bdcache) == 0
    assert bdcache.keys == []
