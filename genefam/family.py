r"""
Gene family tables: per-family counts for each species, and their mapping onto
the leaves of a :class:`genefam.tree.FamilyTree`.
"""

from __future__ import annotations

from genefam.utils import InputFileError, case_insensitive_equal

import pandas as pd
import enum
import sys
from dataclasses import dataclass, field
from typing import List, Sequence, Union


class SanityFlag(enum.IntFlag):
    r"""Problems found by :func:`sync_sanity_check`, combinable as a
    bitmask."""

    OK = 0
    NOT_SYNCHRONIZED = 1
    INCONSISTENT_SIZE = 2
    SPECIES_MISMATCH = 4


@dataclass
class FamilyItem:
    r"""One gene family: its identifier, a free text description, and a count
    per species of the table."""

    id: str
    description: str = ""
    counts: List[int] = field(default_factory=list)


# header names of the description and ID columns, compared case-folded
LABEL_COLUMNS = ("desc", "description", "family id", "familyid", "fid", "id")


def _is_count_column(column: pd.Series) -> bool:
    return column.str.fullmatch(r"\s*-?\d+\s*").all()


def _count_label_columns(df: pd.DataFrame) -> int:
    n_labels = 0
    for name in df.columns:
        if str(name).strip().casefold() not in LABEL_COLUMNS:
            break
        n_labels += 1
    if n_labels:
        return n_labels
    # unnamed label columns: everything before the first all-integer column
    while n_labels < len(df.columns) and not _is_count_column(df.iloc[:, n_labels]):
        n_labels += 1
    return n_labels


class FamilyTable:
    r"""Gene family counts for a fixed list of species.

    Attributes:
        species: species names, in column order
        items: :class:`FamilyItem` list
        index: for each species, the position of its leaf in
            :attr:`genefam.tree.FamilyTree.nodes`, or ``None`` before
            :meth:`set_species_index`
        errors: for each species, the :class:`genefam.error_model.ErrorModel`
            applied to its counts, or ``None``
        error_models: error models loaded for this table, keyed by case-folded
            file name; this is the owner of the models referenced by
            :attr:`errors` and by tree leaves

    Args:
        species: species names
        items: initial families
    """

    def __init__(self, species: Sequence[str], items: Sequence[FamilyItem] = None):
        self.species = list(species)
        self.items: List[FamilyItem] = []
        self.index = [None] * len(self.species)
        self.errors = [None] * len(self.species)
        self.error_models = {}
        for item in items or ():
            self.add_item(item.id, item.description, item.counts)

    def __len__(self):
        return len(self.items)

    def __iter__(self):
        return iter(self.items)

    def __getitem__(self, i) -> FamilyItem:
        return self.items[i]

    def add_item(
        self, id: str, description: str, counts: Sequence[int]
    ) -> FamilyItem:
        if len(counts) != len(self.species):
            raise ValueError(
                f"family {id} has {len(counts)} counts for {len(self.species)} species"
            )
        item = FamilyItem(id, description, [int(c) for c in counts])
        self.items.append(item)
        return item

    @classmethod
    def read(cls, path: str, command: str = "load") -> "FamilyTable":
        r"""Parse a tab separated family table with a header line.

        Leading columns headed by a description or ID name (``Desc``,
        ``Family ID``, ...) are labels, the last of them being the family ID.
        Without such headers, the columns before the first all-integer column
        are the labels. The remaining columns are species counts named by the
        header.

        Args:
            path: table file name
            command: name reported if the file cannot be read

        Raises:
            InputFileError: the file is missing, unreadable or empty
            ValueError: the table has no count columns, or a count is not an
                integer
        """
        try:
            df = pd.read_csv(path, sep="\t", dtype=str, keep_default_na=False)
        except pd.errors.EmptyDataError as e:
            raise InputFileError(command, path, "empty file") from e
        except OSError as e:
            raise InputFileError(command, path, e.strerror) from e
        if df.empty:
            raise InputFileError(command, path, "no families")
        n_labels = _count_label_columns(df)
        if n_labels == len(df.columns):
            raise ValueError(f"{path}: no species count columns found")
        species = [str(name).strip() for name in df.columns[n_labels:]]
        table = cls(species)
        for row in df.itertuples(index=False):
            labels = [str(x).strip() for x in row[:n_labels]]
            try:
                counts = [int(x) for x in row[n_labels:]]
            except ValueError as e:
                raise ValueError(f"{path}: bad count in family {labels}") from e
            family_id = labels[-1] if labels else str(len(table.items))
            description = labels[-2] if len(labels) > 1 else ""
            table.add_item(family_id, description, counts)
        return table

    def write(self, file=None):
        r"""Write the table in the format read by :meth:`read`.

        Args:
            file: output stream, standard output if ``None``
        """
        if file is None:
            file = sys.stdout
        print("\t".join(["Desc", "Family ID"] + self.species), file=file)
        for item in self.items:
            print(
                "\t".join([item.description, item.id] + [str(c) for c in item.counts]),
                file=file,
            )

    def species_index(self, name: str) -> int:
        r"""Column of a species, compared up to case, or ``None``."""
        for i, species in enumerate(self.species):
            if case_insensitive_equal(species, name):
                return i
        return None

    def set_species_index(self, tree):
        r"""Map every species onto the tree leaf with the same name.

        Species without a leaf keep ``None``.

        Args:
            tree: :class:`genefam.tree.FamilyTree`
        """
        positions = {id(node): i for i, node in enumerate(tree.nodes)}
        for i, species in enumerate(self.species):
            node = tree.find(species)
            if node is not None and node.is_leaf():
                self.index[i] = positions[id(node)]
            else:
                self.index[i] = None

    def set_size(self, item: Union[int, FamilyItem], tree):
        r"""Copy a family's counts onto the tree leaves.

        All other nodes get the unknown size -1. Leaves carrying an error
        model keep it.

        Args:
            item: the family, or its position in the table
            tree: :class:`genefam.tree.FamilyTree` synchronized with
                :meth:`set_species_index`
        """
        if not isinstance(item, FamilyItem):
            item = self.items[item]
        tree.clear_family_sizes()
        for i, position in enumerate(self.index):
            if position is not None:
                tree.nodes[position].familysize = item.counts[i]

    def max_size(self) -> int:
        r"""Largest count in the table (0 when empty)."""
        return max((max(item.counts, default=0) for item in self.items), default=0)


def sync_sanity_check(family: FamilyTable, tree) -> SanityFlag:
    r"""Check that every species of a family table points at its own leaf.

    Args:
        family: table after :meth:`FamilyTable.set_species_index`
        tree: :class:`genefam.tree.FamilyTree`

    Returns:
        all problems found, :attr:`SanityFlag.OK` if none
    """
    flags = SanityFlag.OK
    for species, position in zip(family.species, family.index):
        if position is None:
            flags |= SanityFlag.NOT_SYNCHRONIZED
        elif not 0 <= position < len(tree.nodes):
            flags |= SanityFlag.INCONSISTENT_SIZE
        elif not case_insensitive_equal(tree.nodes[position].name, species):
            flags |= SanityFlag.SPECIES_MISMATCH
    return flags
