r"""
Maximum likelihood estimation of measurement error models.

Two sets of counts for the same families are compared: either two replicate
measurements, or a measurement against the true counts. Misclassification is
modeled by one probability per offset :math:`o - t` up to ``max_diff`` (per
absolute offset for a symmetric fit), with the remaining mass :math:`\epsilon`
spread evenly over the unmodeled offsets. The fit is a repeated Nelder-Mead
search from random starting points.
"""

from __future__ import annotations

from genefam.error_model import ErrorModel
from genefam.family import FamilyTable
from genefam.optimize import NelderMead

import numpy as np
import warnings
import sys
from dataclasses import dataclass
from typing import Sequence, Tuple


@dataclass
class ErrorMeasure:
    r"""Data and configuration of an error model fit.

    Attributes:
        size_dist: smoothed frequency of each family size
        pairs: counts of size pairs; for replicates the upper triangle holds
            unordered pairs, for a true measure ``pairs[true, observed]``
        max_family_size: largest family size modeled
        max_diff: largest modeled offset
        symmetric: one parameter per absolute offset
        peak_zero: require probabilities to fall away from offset zero
        true_measure: ``pairs`` compares a measurement to the truth
        estimates: fitted parameters
    """

    size_dist: np.ndarray
    pairs: np.ndarray
    max_family_size: int
    max_diff: int
    symmetric: bool = False
    peak_zero: bool = False
    true_measure: bool = False
    estimates: np.ndarray = None

    def __post_init__(self):
        if self.max_diff < 0:
            raise ValueError(f"max_diff must be non-negative, got {self.max_diff}")
        if self.max_family_size + 1 <= 2 * self.max_diff + 1:
            raise ValueError(
                f"max family size {self.max_family_size} leaves no unmodeled "
                f"offsets for max_diff {self.max_diff}"
            )

    @property
    def n_params(self) -> int:
        return self.max_diff + 1 if self.symmetric else 2 * self.max_diff + 1

    def marginal_epsilon(self, parameters: np.ndarray) -> float:
        r"""Probability of each unmodeled offset, closing the simplex."""
        parameters = np.asarray(parameters)
        if self.symmetric:
            total = parameters[0] + 2 * parameters[1:].sum()
        else:
            total = parameters.sum()
        return (1 - total) / (
            (self.max_family_size + 1) - (self.max_diff * 2 + 1)
        )

    def is_feasible(self, parameters: np.ndarray) -> bool:
        r"""Whether parameters are valid probabilities, dominate
        :math:`\epsilon`, and (with ``peak_zero``) fall away from offset zero."""
        parameters = np.asarray(parameters)
        epsilon = self.marginal_epsilon(parameters)
        if np.any(parameters < 0) or epsilon < 0 or np.any(epsilon > parameters):
            return False
        if self.peak_zero:
            if self.symmetric:
                return bool(np.all(np.diff(parameters) <= 0))
            d = self.max_diff
            # non-increasing outward from the center on both sides
            return bool(
                np.all(np.diff(parameters[d::-1]) <= 0)
                and np.all(np.diff(parameters[d:]) <= 0)
            )
        return True

    def _double_measure_score(self, errormatrix: np.ndarray, log) -> float:
        # probability of each unordered pair of replicate observations
        joint = (errormatrix * self.size_dist) @ errormatrix.T
        discord = np.triu(2 * joint, 1) + np.diag(np.diag(joint))
        observed = self.pairs > 0
        with np.errstate(divide="ignore", invalid="ignore"):
            score = np.sum(self.pairs[observed] * np.log(discord[observed]))
        if not np.isfinite(score):
            print(f"Score: {score}", file=log)
        return score - np.log(1 - joint[0, 0])

    def _true_measure_score(self, errormatrix: np.ndarray) -> float:
        observed = self.pairs > 0
        with np.errstate(divide="ignore", invalid="ignore"):
            logp = np.log(self.size_dist[:, None] * errormatrix.T)
            score = np.sum(self.pairs[observed] * logp[observed])
        return score - np.log(1 - self.size_dist[0] * errormatrix[0, 0])

    def score(self, parameters: np.ndarray, log=None) -> float:
        r"""Log likelihood of the pair counts, excluding the (0, 0) pair.

        Infeasible parameters score :math:`-\infty`. Each evaluation is
        logged.

        Args:
            parameters: candidate misclassification probabilities
            log: output stream, standard output if ``None``
        """
        if log is None:
            log = sys.stdout
        score = -np.inf
        if self.is_feasible(parameters):
            errormatrix = ErrorModel.from_estimate(self, parameters).errormatrix
            if self.true_measure:
                score = self._true_measure_score(errormatrix)
            else:
                score = self._double_measure_score(errormatrix, log)
        print(
            f"\tparameters : {','.join(f'{p:g}' for p in parameters)} & Score: {score}",
            file=log,
        )
        return score

    def error_model(self) -> ErrorModel:
        r"""The model implied by :attr:`estimates`."""
        if self.estimates is None:
            raise ValueError("no estimates; run the fit first")
        return ErrorModel.from_estimate(self)


def size_distribution(size_freq: np.ndarray) -> np.ndarray:
    r"""Add-one smoothed distribution of family sizes."""
    smoothed = np.asarray(size_freq, dtype=float) + 1
    return smoothed / smoothed.sum()


def _check_paired(table1: FamilyTable, table2: FamilyTable):
    if len(table1.species) != len(table2.species):
        raise ValueError("the number of columns do not match between the two files")
    if len(table1) != len(table2):
        raise ValueError("the number of lines do not match between the two files")
    for item1, item2 in zip(table1, table2):
        if item1.id != item2.id:
            raise ValueError(
                f"the family IDs {item1.id} and {item2.id} do not match between "
                "the two files"
            )


def size_frequencies(
    tables: Sequence[FamilyTable], max_family_size: int = 0
) -> Tuple[np.ndarray, int]:
    r"""Count how often each family size occurs across tables.

    Args:
        tables: measurements
        max_family_size: smallest acceptable upper bound on family sizes

    Returns:
        frequencies indexed by size, and the largest size (at least
        ``max_family_size``)
    """
    counts = np.concatenate(
        [np.array([item.counts for item in table], dtype=int).ravel() for table in tables]
    )
    if counts.size and counts.min() < 0:
        raise ValueError("family counts must be non-negative")
    max_size = max(max_family_size, int(counts.max(initial=0)))
    return np.bincount(counts, minlength=max_size + 1), max_size


def _pair_counts(
    table1: FamilyTable, table2: FamilyTable, max_family_size: int
) -> np.ndarray:
    first = np.array([item.counts for item in table1], dtype=int).ravel()
    second = np.array([item.counts for item in table2], dtype=int).ravel()
    pairs = np.zeros((max_family_size + 1, max_family_size + 1), dtype=int)
    np.add.at(pairs, (first, second), 1)
    return pairs


def double_measure_pairs(
    table1: FamilyTable, table2: FamilyTable, max_family_size: int
) -> np.ndarray:
    r"""Unordered pairs of replicate counts, folded into the upper triangle.

    Args:
        table1: first replicate
        table2: second replicate, same families in the same order
        max_family_size: largest count
    """
    _check_paired(table1, table2)
    pairs = _pair_counts(table1, table2, max_family_size)
    return np.triu(pairs) + np.tril(pairs, -1).T


def true_measure_pairs(
    true_table: FamilyTable, observed_table: FamilyTable, max_family_size: int
) -> np.ndarray:
    r"""Counts of (true, observed) pairs."""
    _check_paired(true_table, observed_table)
    return _pair_counts(true_table, observed_table, max_family_size)


def initial_parameters(
    n_params: int, max_diff: int, symmetric: bool, rng: np.random.Generator
) -> np.ndarray:
    r"""Random starting point with the largest probability at offset zero.

    Sorted uniform draws scaled by ``1/n_params`` are laid out decreasing from
    offset zero; an asymmetric layout alternates below and above the center.
    """
    descending = np.sort(rng.uniform(size=n_params) / n_params)[::-1]
    if symmetric:
        return descending.copy()
    parameters = np.empty(n_params)
    parameters[max_diff] = descending[0]
    for i in range(1, max_diff + 1):
        parameters[max_diff - i] = descending[2 * i - 1]
        parameters[max_diff + i] = descending[2 * i]
    return parameters


def estimate(
    measure: ErrorMeasure,
    max_runs: int = 100,
    rng: np.random.Generator = None,
    log=None,
    minimizer: NelderMead = None,
) -> ErrorMeasure:
    r"""Fit misclassification probabilities by repeated simplex search.

    Runs start from random points until two accepted runs agree on the best
    score within the minimizer's ``tolf``, or ``max_runs`` searches have been
    made. A run is accepted only if it finished within its iteration budget.

    Args:
        measure: data to fit; :attr:`ErrorMeasure.estimates` is set
        max_runs: cap on the number of searches
        rng: random number generator for starting points
        log: output stream, standard output if ``None``
        minimizer: defaults to :class:`genefam.optimize.NelderMead` with
            tolerances 1e-9

    Returns:
        ``measure``, with estimates
    """
    if rng is None:
        rng = np.random.default_rng()
    if log is None:
        log = sys.stdout
    if minimizer is None:
        minimizer = NelderMead(tolx=1e-9, tolf=1e-9)
    n = measure.n_params
    maxiters = minimizer.iteration_budget(n)

    def objective(parameters):
        return -measure.score(parameters, log)

    minscore = np.inf
    best = None
    last = None
    runs = 0
    attempts = 0
    converged = False
    while not converged and attempts < max_runs:
        attempts += 1
        x0 = initial_parameters(n, measure.max_diff, measure.symmetric, rng)
        result = minimizer.minimize(objective, x0)
        last = result.x
        print(
            f"\nMisclassification Matrix Search Result: ({result.iters} iterations)",
            file=log,
        )
        print(f"Score: {result.fun}", file=log)
        if (
            runs > 0
            and np.isfinite(result.fun)
            and abs(minscore - result.fun) < minimizer.tolf
        ):
            converged = True
        if result.iters < maxiters:
            if result.fun < minscore:
                minscore = result.fun
                best = result.x.copy()
            runs += 1

    if converged:
        print(f"score converged in {runs} runs.", file=log)
    else:
        print(f"score failed to converge in {attempts} runs.", file=log)
        print(f"best score: {minscore}", file=log)
    if best is None:
        warnings.warn(
            "no search finished within its iteration budget, keeping the last result",
            RuntimeWarning,
        )
        best = last
    measure.estimates = best
    return measure


def estimate_error_double_measure(
    measure1: str,
    measure2: str,
    symmetric: bool = False,
    max_diff: int = 2,
    peak_zero: bool = False,
    max_family_size: int = 0,
    **kwargs,
) -> ErrorMeasure:
    r"""Fit an error model to two replicate measurement files.

    Args:
        measure1: first family table
        measure2: second family table, same families in the same order
        symmetric: fit one probability per absolute offset
        max_diff: largest modeled offset
        peak_zero: require probabilities to fall away from offset zero
        max_family_size: smallest upper bound on family sizes
        kwargs: passed to :func:`estimate`
    """
    table1 = FamilyTable.read(measure1, command="errest")
    table2 = FamilyTable.read(measure2, command="errest")
    size_freq, max_size = size_frequencies([table1, table2], max_family_size)
    measure = ErrorMeasure(
        size_dist=size_distribution(size_freq),
        pairs=double_measure_pairs(table1, table2, max_size),
        max_family_size=max_size,
        max_diff=max_diff,
        symmetric=symmetric,
        peak_zero=peak_zero,
    )
    return estimate(measure, **kwargs)


def estimate_error_true_measure(
    errorfile: str,
    truefile: str,
    symmetric: bool = False,
    max_diff: int = 2,
    peak_zero: bool = False,
    max_family_size: int = 0,
    **kwargs,
) -> ErrorMeasure:
    r"""Fit an error model to measured counts against the true counts.

    Args:
        errorfile: measured family table
        truefile: true family table, same families in the same order
        symmetric: fit one probability per absolute offset
        max_diff: largest modeled offset
        peak_zero: require probabilities to fall away from offset zero
        max_family_size: smallest upper bound on family sizes
        kwargs: passed to :func:`estimate`
    """
    true_table = FamilyTable.read(truefile, command="errest")
    observed_table = FamilyTable.read(errorfile, command="errest")
    size_freq, max_size = size_frequencies([true_table, observed_table], max_family_size)
    measure = ErrorMeasure(
        size_dist=size_distribution(size_freq),
        pairs=true_measure_pairs(true_table, observed_table, max_size),
        max_family_size=max_size,
        max_diff=max_diff,
        symmetric=symmetric,
        peak_zero=peak_zero,
        true_measure=True,
    )
    return estimate(measure, **kwargs)
