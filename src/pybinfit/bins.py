"""
Bin and binning implementations.

Provides Pydantic classes describing axis-aligned bins over named event
variables, and the ordered binning used to assign events to histogram slots.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from itertools import pairwise, product
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, RootModel, model_validator


class SupportsVariables(Protocol):
    """Anything exposing variable values by name, such as an event record."""

    def lookup_variable(self, name: str) -> float: ...


class BinEdge(BaseModel):
    """
    Interval constraint on a single variable.

    The interval is half-open, ``[low, high)``. The owning :class:`Binning`
    may close the upper edge when it is the outermost edge of the variable.

    Attributes:
        variable: Name of the constrained event variable
        low: Lower edge (inclusive)
        high: Upper edge (exclusive unless closed by the binning)
    """

    model_config = ConfigDict(frozen=True)

    variable: str
    low: float
    high: float

    @model_validator(mode="after")
    def check_low_le_high(self) -> BinEdge:
        """Validate that high >= low."""
        if self.high < self.low:
            msg = f"Edge on '{self.variable}': high ({self.high}) must be >= low ({self.low})"
            raise ValueError(msg)
        return self

    def contains(self, value: float, closed_upper: bool = False) -> bool:
        """Whether value lies within this edge."""
        if self.low <= value < self.high:
            return True
        return closed_upper and value == self.high


class Bin(BaseModel):
    """
    Axis-aligned region over named variables.

    Attributes:
        edges: Ordered list of per-variable interval constraints. A bin without
            edges contains every event.
    """

    model_config = ConfigDict(frozen=True)

    edges: list[BinEdge] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_unique_variables(self) -> Bin:
        """A variable may only be constrained once per bin."""
        variables = [edge.variable for edge in self.edges]
        if len(set(variables)) != len(variables):
            msg = f"Bin constrains the same variable more than once: {variables}"
            raise ValueError(msg)
        return self

    @property
    def variables(self) -> list[str]:
        """Names of the constrained variables, in declaration order."""
        return [edge.variable for edge in self.edges]

    def is_between_edges(
        self, variable: str, value: float, closed_upper: bool = False
    ) -> bool:
        """
        Check a single variable value against this bin's edge for that variable.

        Variables the bin does not constrain are always in range.
        """
        for edge in self.edges:
            if edge.variable == variable:
                return edge.contains(value, closed_upper)
        return True

    def contains(
        self,
        event: SupportsVariables,
        closed_upper: Mapping[str, float] | None = None,
    ) -> bool:
        """
        Whether the event lies within this bin.

        Args:
            event: Event record exposing ``lookup_variable``.
            closed_upper: Variable name to upper edge value that should be
                treated as inclusive (the outermost edge of a binning).

        Returns:
            True if every constrained variable of the event is within its edge.
        """
        for edge in self.edges:
            value = event.lookup_variable(edge.variable)
            closed = closed_upper is not None and closed_upper.get(edge.variable) == edge.high
            if not edge.contains(value, closed):
                return False
        return True

    @property
    def summary(self) -> str:
        """Readable representation, e.g. ``D1Reco: [0.0, 1.0[``."""
        return " / ".join(
            f"{edge.variable}: [{edge.low}, {edge.high}[" for edge in self.edges
        )


class Binning(RootModel[list[Bin]]):
    """
    Ordered list of bins for one sample.

    Bins are tested in declaration order and the first bin containing an event
    wins, so overlapping bins are permitted. For every variable, the largest
    upper edge across all bins is inclusive so that the maximum value of the
    range is not dropped.

    Examples:
        >>> binning = Binning.from_edges({"x": [0.0, 1.0, 2.0]})
        >>> len(binning)
        2
        >>> binning[1].summary
        'x: [1.0, 2.0['
    """

    model_config = ConfigDict(frozen=True)

    root: list[Bin] = Field(default_factory=list)
    _closed_upper: dict[str, float] = PrivateAttr(default_factory=dict)

    def model_post_init(self, __context: Any, /) -> None:
        """Compute the outermost upper edge of every variable."""
        closed: dict[str, float] = {}
        for bin_ in self.root:
            for edge in bin_.edges:
                closed[edge.variable] = max(closed.get(edge.variable, edge.high), edge.high)
        self._closed_upper = closed

    @classmethod
    def from_edges(cls, edges: Mapping[str, Sequence[float]]) -> Binning:
        """
        Build the Cartesian-product binning of per-variable edge lists.

        The first variable varies slowest.

        Args:
            edges: Variable name to ascending bin edges (at least 2 per variable).
        """
        per_variable: list[list[BinEdge]] = []
        for variable, variable_edges in edges.items():
            if len(variable_edges) < 2:
                msg = f"Edges of '{variable}' must have at least 2 entries"
                raise ValueError(msg)
            for prev, curr in pairwise(variable_edges):
                if curr <= prev:
                    msg = f"Edges of '{variable}' must be in ascending order"
                    raise ValueError(msg)
            per_variable.append(
                [
                    BinEdge(variable=variable, low=low, high=high)
                    for low, high in pairwise(variable_edges)
                ]
            )
        return cls([Bin(edges=list(combination)) for combination in product(*per_variable)])

    @property
    def closed_upper(self) -> Mapping[str, float]:
        """Variable name to the inclusive outermost upper edge."""
        return self._closed_upper

    def find_bin_index(self, event: SupportsVariables) -> int:
        """
        Index of the first bin containing the event, or -1 if none does.
        """
        for index, bin_ in enumerate(self.root):
            if bin_.contains(event, self._closed_upper):
                return index
        return -1

    def __getitem__(self, index: int) -> Bin:
        return self.root[index]

    def __len__(self) -> int:
        return len(self.root)

    def __iter__(self) -> Iterator[Bin]:  # type: ignore[override]  # https://github.com/pydantic/pydantic/issues/8872
        return iter(self.root)
