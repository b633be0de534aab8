r"""Utility functions."""
from functools import wraps
from dataclasses import dataclass


class InputFileError(OSError):
    r"""A file requested by a command could not be read.

    Args:
        command: name of the command that needed the file
        filename: the offending file
        reason: optional detail appended to the message
    """

    def __init__(self, command: str, filename: str, reason: str = None):
        self.command = command
        self.filename = filename
        message = f"{command}: cannot read file {filename}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


@dataclass
class FamilySizeRange:
    r"""Integer bounds on observable and root family sizes.

    Attributes:
        min: smallest family size considered at non-root nodes
        max: largest family size considered at non-root nodes
        root_min: smallest root family size
        root_max: largest root family size
    """

    min: int = 0
    max: int = 0
    root_min: int = 0
    root_max: int = 0

    @classmethod
    def from_max_size(cls, max_size: int) -> "FamilySizeRange":
        r"""Default range for a data set whose largest observed family has
        ``max_size`` members."""
        return cls(
            min=0,
            max=max_size + max(50, max_size // 5),
            root_min=1,
            root_max=max(30, int(round(max_size * 1.25))),
        )

    @property
    def size(self) -> int:
        r"""Length of a likelihood vector indexed by family size."""
        return max(self.max, self.root_max) + 1


def _check_names(compare):
    @wraps(compare)
    def new_compare(name1: str, name2: str, *args, **kwargs):
        if name1 is None or name2 is None:
            return False
        return compare(str(name1), str(name2), *args, **kwargs)

    return new_compare


@_check_names
def case_insensitive_equal(name1: str, name2: str) -> bool:
    r"""Whether two species or file names agree up to case.

    Args:
        name1: first name
        name2: second name
    """
    return name1.casefold() == name2.casefold()
