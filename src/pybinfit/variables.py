"""
Shared variable name lists for event records.

All events read from one dataset share a single :class:`VariableList`. A
variable name is resolved to its position in the list the first time it is
requested and the position is reused for every later lookup, by any event of
that dataset.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator

from pybinfit.exceptions import VariableNotFoundError


class VariableList:
    """
    Ordered, immutable list of variable names with a cached name-to-index map.

    Examples:
        >>> variables = VariableList(["D1Reco", "D2Reco", "cut_branch"])
        >>> variables.index("D2Reco")
        1
        >>> "enu_true" in variables
        False
    """

    __slots__ = ("_index_cache", "_lock", "_names")

    def __init__(self, names: Iterable[str]) -> None:
        self._names: tuple[str, ...] = tuple(names)
        if len(set(self._names)) != len(self._names):
            msg = f"Variable names must be unique, got {list(self._names)}"
            raise ValueError(msg)
        self._index_cache: dict[str, int] = {}
        self._lock = threading.Lock()

    @property
    def names(self) -> tuple[str, ...]:
        """The declared variable names, in storage order."""
        return self._names

    def index(self, name: str) -> int:
        """
        Resolve a variable name to its storage index.

        Raises:
            VariableNotFoundError: if the name is not declared.
        """
        try:
            return self._index_cache[name]
        except KeyError:
            pass

        with self._lock:
            if name not in self._index_cache:
                try:
                    self._index_cache[name] = self._names.index(name)
                except ValueError:
                    msg = f'Could not find variable "{name}". Available variables are: {list(self._names)}'
                    raise VariableNotFoundError(msg) from None
            return self._index_cache[name]

    def __contains__(self, name: object) -> bool:
        return name in self._names

    def __iter__(self) -> Iterator[str]:
        return iter(self._names)

    def __len__(self) -> int:
        return len(self._names)

    def __repr__(self) -> str:
        return f"VariableList({list(self._names)})"
