r"""
Measurement error models for gene family counts.

An error model is a matrix :math:`\pi` with :math:`\pi_{o, t}` the probability
of observing :math:`o` genes in a family with :math:`t` true members. On disk
it is stored by error class, the signed offset :math:`o - t`::

    maxcnt: 68
    cntdiff -1 0 1
    0 0.0 0.8 0.2
    1 0.2 0.6 0.2
    ...

Family sizes missing from the file repeat the class probabilities of the
previous row.
"""

from __future__ import annotations

from genefam.utils import InputFileError, case_insensitive_equal

import numpy as np
import bisect
import re
import sys
from typing import Iterable, List

# slack for hand-written files on top of the rounding of each written cell
ROW_SUM_TOLERANCE = 0.02

_MAXCNT = re.compile(r"\s*maxcnt:\s*(\d+)\s*")


def _parse_probability(token: str) -> float:
    if token.lower() in ("#nan", "nan"):
        return np.nan
    return float(token)


def _rounding_bound(row: np.ndarray) -> float:
    # half a unit in the second significant digit of every written cell
    cells = np.abs(row[np.isfinite(row) & (row != 0)])
    return float(np.sum(0.5 * 10.0 ** (np.floor(np.log10(cells)) - 1)))


def _normalized_columns(errormatrix: np.ndarray) -> np.ndarray:
    sums = errormatrix.sum(axis=0)
    return np.divide(
        errormatrix, sums, out=np.zeros_like(errormatrix), where=sums > 0
    )


class ErrorModel:
    r"""Conditional probabilities of observed given true family sizes.

    Attributes:
        errormatrix: square array indexed ``[observed, true]``
        fromdiff: smallest error class (signed offset)
        todiff: largest error class
        errorfilename: file the model was read from, if any

    Args:
        errormatrix: square array indexed ``[observed, true]``
        fromdiff: smallest error class
        todiff: largest error class
        errorfilename: file the model was read from
    """

    def __init__(
        self,
        errormatrix: np.ndarray,
        fromdiff: int,
        todiff: int,
        errorfilename: str = None,
    ):
        errormatrix = np.array(errormatrix, dtype=float)
        if errormatrix.ndim != 2 or errormatrix.shape[0] != errormatrix.shape[1]:
            raise ValueError(
                f"error matrix must be square, got shape {errormatrix.shape}"
            )
        if fromdiff > todiff:
            raise ValueError(f"empty error class range {fromdiff}..{todiff}")
        self.errormatrix = errormatrix
        self.fromdiff = fromdiff
        self.todiff = todiff
        self.errorfilename = errorfilename

    def __repr__(self):
        return (
            f"ErrorModel(maxfamilysize={self.maxfamilysize}, "
            f"classes={self.fromdiff}..{self.todiff}, file={self.errorfilename!r})"
        )

    @property
    def maxfamilysize(self) -> int:
        return self.errormatrix.shape[0] - 1

    @property
    def classes(self) -> range:
        return range(self.fromdiff, self.todiff + 1)

    def column_sums(self) -> np.ndarray:
        r"""Total probability over observed sizes for each true size."""
        return self.errormatrix.sum(axis=0)

    def normalize_columns(self):
        r"""Rescale each true-size column to sum to one.

        Raises:
            ValueError: a column carries no probability
        """
        sums = self.column_sums()
        empty = np.flatnonzero(sums <= 0)
        if empty.size:
            raise ValueError(
                f"error model has no probability for true family size {empty[0]}"
            )
        self.errormatrix = self.errormatrix / sums

    @classmethod
    def parse(
        cls,
        lines: Iterable[str],
        max_family_size: int = 0,
        errorfilename: str = None,
    ) -> "ErrorModel":
        r"""Build a model from the lines of an error model file.

        The matrix covers family sizes up to the larger of ``max_family_size``
        and the file's ``maxcnt``. Columns are renormalized after reading.

        Args:
            lines: file content, line by line
            max_family_size: largest family size the model must cover
            errorfilename: name recorded on the model

        Raises:
            ValueError: the content is malformed
        """
        lines = iter(lines)
        header = next(lines, None)
        if header is None or not header.strip():
            raise ValueError("empty error model")
        match = _MAXCNT.fullmatch(header)
        if match is None:
            raise ValueError(f"expected 'maxcnt: N' header, got {header.strip()!r}")
        maxcnt = int(match.group(1))

        tokens = next(lines, "").split()
        if not tokens or tokens[0] != "cntdiff" or len(tokens) < 2:
            raise ValueError("expected 'cntdiff' line listing the error classes")
        try:
            classes = [int(token) for token in tokens[1:]]
        except ValueError as e:
            raise ValueError(f"bad error class in {' '.join(tokens)!r}") from e
        fromdiff, todiff = classes[0], classes[-1]
        if classes != list(range(fromdiff, todiff + 1)):
            raise ValueError(f"error classes {classes} are not contiguous")

        sizes: List[int] = []
        rows: List[np.ndarray] = []
        for line in lines:
            tokens = line.split()
            if not tokens:
                continue
            if len(tokens) != len(classes) + 1:
                raise ValueError(
                    f"row {line.strip()!r} has {len(tokens) - 1} probabilities "
                    f"for {len(classes)} error classes"
                )
            try:
                size = int(tokens[0])
                row = np.array([_parse_probability(token) for token in tokens[1:]])
            except ValueError as e:
                raise ValueError(f"cannot parse row {line.strip()!r}") from e
            if not sizes and size != 0:
                raise ValueError("the first row must be for family size 0")
            if sizes and size <= sizes[-1]:
                raise ValueError(f"row for family size {size} is out of order")
            if size > maxcnt:
                raise ValueError(f"row for family size {size} exceeds maxcnt {maxcnt}")
            tolerance = ROW_SUM_TOLERANCE + _rounding_bound(row)
            if abs(np.nansum(row) - 1) > tolerance:
                raise ValueError(
                    f"probabilities for family size {size} sum to {np.nansum(row)}"
                )
            sizes.append(size)
            rows.append(np.nan_to_num(row))
        if not rows:
            raise ValueError("error model has no probability rows")

        n = max(max_family_size, maxcnt) + 1
        errormatrix = np.zeros((n, n))
        offsets = np.array(classes)
        for true in range(n):
            row = rows[bisect.bisect_right(sizes, true) - 1]
            observed = true + offsets
            valid = (observed >= 0) & (observed < n)
            errormatrix[observed[valid], true] = row[valid]

        model = cls(errormatrix, fromdiff, todiff, errorfilename)
        model.normalize_columns()
        return model

    @classmethod
    def read(
        cls, filename: str, max_family_size: int = 0, command: str = "errormodel"
    ) -> "ErrorModel":
        r"""Read an error model file.

        Args:
            filename: model file
            max_family_size: largest family size the model must cover
            command: name reported if the file cannot be read

        Raises:
            InputFileError: the file is missing or unreadable
            ValueError: the content is malformed
        """
        try:
            with open(filename) as f:
                content = f.read().splitlines()
        except OSError as e:
            raise InputFileError(command, filename, e.strerror) from e
        return cls.parse(content, max_family_size, errorfilename=filename)

    @classmethod
    def from_estimate(cls, measure, parameters: np.ndarray = None) -> "ErrorModel":
        r"""Model implied by fitted misclassification probabilities.

        Modeled offsets take their parameter (by absolute offset for a
        symmetric fit) and all other cells share the marginal error
        probability :math:`\epsilon`. Classes span the whole size range.

        Args:
            measure: :class:`genefam.error_estimation.ErrorMeasure`
            parameters: probabilities to use instead of ``measure.estimates``
        """
        if parameters is None:
            parameters = measure.estimates
        parameters = np.asarray(parameters, dtype=float)
        n = measure.max_family_size + 1
        d = measure.max_diff
        errormatrix = np.full((n, n), measure.marginal_epsilon(parameters))
        true = np.arange(n)
        for offset in range(-d, d + 1):
            p = parameters[abs(offset)] if measure.symmetric else parameters[offset + d]
            observed = true + offset
            valid = (observed >= 0) & (observed < n)
            errormatrix[observed[valid], true[valid]] = p
        return cls(_normalized_columns(errormatrix), -(n - 1), n - 1)

    def write(self, file=None):
        r"""Write the model in the file format read by :meth:`parse`.

        Cells whose observed size falls outside the matrix are written as
        ``#nan``.

        Args:
            file: output stream, standard output if ``None``
        """
        if file is None:
            file = sys.stdout
        n = self.maxfamilysize
        print(f"maxcnt:{n}", file=file)
        print(" ".join(["cntdiff"] + [str(i) for i in self.classes]), file=file)
        for true in range(n + 1):
            cells = [
                f"{self.errormatrix[true + i, true]:.2g}" if 0 <= true + i <= n else "#nan"
                for i in self.classes
            ]
            print(" ".join([str(true)] + cells), file=file)

    def leaf_likelihoods(self, familysize: int, size: int) -> np.ndarray:
        r"""Probability of the observed count for every true size below
        ``size``.

        Args:
            familysize: observed count
            size: length of the result
        """
        if not 0 <= familysize <= self.maxfamilysize:
            raise ValueError(
                f"family size {familysize} is outside the error model range "
                f"0..{self.maxfamilysize}"
            )
        likelihoods = np.zeros(size)
        n = min(size, self.maxfamilysize + 1)
        likelihoods[:n] = self.errormatrix[familysize, :n]
        return likelihoods


def get_error_model(family, filename: str) -> ErrorModel:
    r"""A model already loaded for a family table from ``filename`` (compared up
    to case), or ``None``."""
    return family.error_models.get(filename.casefold())


def _assign(family, tree, model: ErrorModel, species: str = None):
    for i, name in enumerate(family.species):
        if species is None or case_insensitive_equal(name, species):
            family.errors[i] = model
            position = family.index[i]
            if position is not None:
                tree.nodes[position].errormodel = model
            if species is not None:
                break


def set_error_matrix_from_file(
    family, tree, family_size, filename: str, species: str = None
) -> ErrorModel:
    r"""Apply the error model in a file to one species, or to all of them.

    A model already loaded from the same file name is reused. Species names
    that match nothing are ignored.

    Args:
        family: :class:`genefam.family.FamilyTable` synchronized with ``tree``
        tree: :class:`genefam.tree.FamilyTree`
        family_size: :class:`genefam.utils.FamilySizeRange` the model must cover
        filename: error model file
        species: species name; ``None`` applies the model to every species

    Returns:
        the applied model
    """
    model = get_error_model(family, filename)
    if model is None:
        model = ErrorModel.read(filename, family_size.max)
        family.error_models[filename.casefold()] = model
    _assign(family, tree, model, species)
    return model


def remove_error_model(family, tree, species: str):
    r"""Stop applying an error model to a species."""
    for i, name in enumerate(family.species):
        if case_insensitive_equal(name, species):
            family.errors[i] = None
            position = family.index[i]
            if position is not None:
                tree.nodes[position].errormodel = None
            break


def free_error_model(family, tree):
    r"""Detach every error model from a family table and its tree, and drop the
    loaded models."""
    for name in family.species:
        remove_error_model(family, tree, name)
    family.error_models.clear()


def simulate_misclassification(family, rng: np.random.Generator = None):
    r"""Replace counts of species that carry an error model with observations
    drawn from the model given the current count as the true size.

    Args:
        family: :class:`genefam.family.FamilyTable`
        rng: random number generator
    """
    if rng is None:
        rng = np.random.default_rng()
    for item in family.items:
        for i, model in enumerate(family.errors):
            if model is None:
                continue
            true = item.counts[i]
            if not 0 <= true <= model.maxfamilysize:
                raise ValueError(
                    f"family {item.id} count {true} is outside the error model range"
                )
            column = model.errormatrix[:, true]
            item.counts[i] = int(rng.choice(column.size, p=column / column.sum()))
