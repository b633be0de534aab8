r"""Square matrices of transition probabilities."""

import numpy as np


class SquareMatrix:
    r"""A ``size`` by ``size`` table of doubles backed by a contiguous numpy
    buffer.

    For birth-death transition probabilities the entry ``[s, c]`` is the
    probability of going from ``s`` to ``c`` members along a branch.

    Args:
        size: number of rows (and columns)
        values: optional initial content, copied
    """

    def __init__(self, size: int, values: np.ndarray = None):
        if values is None:
            self.values = np.zeros((size, size))
        else:
            values = np.array(values, dtype=float)
            if values.shape != (size, size):
                raise ValueError(
                    f"expected a {size}x{size} array, got shape {values.shape}"
                )
            self.values = values

    @classmethod
    def identity(cls, size: int) -> "SquareMatrix":
        return cls(size, np.eye(size))

    @property
    def size(self) -> int:
        return self.values.shape[0]

    def get(self, row: int, col: int) -> float:
        return self.values[row, col]

    def set(self, row: int, col: int, value: float):
        self.values[row, col] = value

    def resize(self, new_size: int):
        r"""Change the size in place, keeping the overlapping block and
        zero-filling new cells."""
        resized = np.zeros((new_size, new_size))
        keep = min(new_size, self.size)
        resized[:keep, :keep] = self.values[:keep, :keep]
        self.values = resized

    def multiply(
        self,
        vector: np.ndarray,
        row_start: int = 0,
        row_end: int = None,
        col_start: int = 0,
        col_end: int = None,
    ) -> np.ndarray:
        r"""Product of the block ``[row_start:row_end+1, col_start:col_end+1]``
        with ``vector[col_start:col_end+1]``.

        Bounds are inclusive, matching family size ranges. The result has one
        entry per row of the block.
        """
        if row_end is None:
            row_end = self.size - 1
        if col_end is None:
            col_end = self.size - 1
        block = self.values[row_start : row_end + 1, col_start : col_end + 1]
        return block @ np.asarray(vector)[col_start : col_end + 1]

    def __eq__(self, other):
        return isinstance(other, SquareMatrix) and np.array_equal(
            self.values, other.values
        )

    def __repr__(self):
        return f"SquareMatrix(size={self.size})"
