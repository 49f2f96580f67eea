"""
Event record implementation.

An :class:`Event` is one simulated or measured interaction: its variable
values, its weight components, the dials that reweight it and the bin it
was last assigned to.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from typing import TYPE_CHECKING

from pybinfit.variables import VariableList

if TYPE_CHECKING:
    from pybinfit.bins import Binning
    from pybinfit.dials import Dial
    from pybinfit.parameters import FitParameterSet


class Event:
    """
    One interaction record.

    Attributes:
        variables: Variable names shared with every event of the dataset.
        dataset_index: Index of the dataset the event was loaded from.
        entry_index: Entry of the event in its source (provenance only).
        base_weight: Weight from generation and selection.
        nominal_weight: Baseline-corrected weight.
        event_weight: Last computed weight, base weight times all dial responses.
        sample_index: Index of the sample the event was dispatched to, -1 if none.
        sample_bin_index: Bin assigned by the last bin index update, -1 if none.
        dial_cache: Parameter set name to the dials applying to this event.
        dial_sets: Parameter sets attached by object, by name. Dials of a
            set that is disabled later are skipped.
    """

    __slots__ = (
        "base_weight",
        "dataset_index",
        "dial_cache",
        "dial_sets",
        "entry_index",
        "event_weight",
        "nominal_weight",
        "sample_bin_index",
        "sample_index",
        "values",
        "variables",
    )

    def __init__(
        self,
        variables: VariableList,
        values: Sequence[float],
        *,
        dataset_index: int = -1,
        entry_index: int = -1,
        base_weight: float = 1.0,
        nominal_weight: float | None = None,
    ) -> None:
        if len(values) != len(variables):
            msg = f"Event expects {len(variables)} values for {list(variables)}, got {len(values)}"
            raise ValueError(msg)
        self.variables = variables
        self.values: list[float] = list(values)
        self.dataset_index = dataset_index
        self.entry_index = entry_index
        self.base_weight = float(base_weight)
        self.nominal_weight = self.base_weight if nominal_weight is None else float(nominal_weight)
        self.event_weight = self.base_weight
        self.sample_index = -1
        self.sample_bin_index = -1
        self.dial_cache: dict[str, list[Dial]] = {}
        self.dial_sets: dict[str, FitParameterSet] = {}

    def lookup_variable(self, name: str) -> float:
        """
        Value of a variable, by name.

        Raises:
            VariableNotFoundError: if the dataset does not declare the variable.
        """
        return self.values[self.variables.index(name)]

    def find_bin_index(self, binning: Binning) -> int:
        """Index of the first bin of ``binning`` containing this event, or -1."""
        return binning.find_bin_index(self)

    def add_dial(self, parameter_set: str | FitParameterSet, dial: Dial) -> bool:
        """
        Attach a dial if its apply condition accepts this event.

        Args:
            parameter_set: The parameter set the dial belongs to, or its name.
                Dials of a disabled set are refused.
            dial: The dial to attach.

        Returns:
            Whether the dial was attached.
        """
        if isinstance(parameter_set, str):
            name = parameter_set
        else:
            if not parameter_set.enabled:
                return False
            name = parameter_set.name
            self.dial_sets[name] = parameter_set
        if not dial.applies_to(self):
            return False
        self.dial_cache.setdefault(name, []).append(dial)
        return True

    def iter_dials(self) -> Iterator[Dial]:
        """Dials of every enabled parameter set, set by set."""
        for name, dials in self.dial_cache.items():
            parameter_set = self.dial_sets.get(name)
            if parameter_set is not None and not parameter_set.enabled:
                continue
            yield from dials

    def current_weight(self) -> float:
        """
        Recompute the event weight from the dial responses.

        The result is also stored in :attr:`event_weight`.
        """
        weight = self.base_weight
        for dial in self.iter_dials():
            weight *= dial.evaluate()
        self.event_weight = weight
        return weight

    def reset_event_weight(self) -> None:
        """Set the event weight back to the base weight."""
        self.event_weight = self.base_weight

    def add_event_weight(self, factor: float) -> None:
        """Multiply the event weight by an extra factor."""
        self.event_weight *= factor

    def snapshot(self) -> Event:
        """
        Independent copy of this event.

        Variable values and dial lists are copied; the dials themselves and
        the variable list stay shared.
        """
        copy = Event(
            self.variables,
            self.values,
            dataset_index=self.dataset_index,
            entry_index=self.entry_index,
            base_weight=self.base_weight,
            nominal_weight=self.nominal_weight,
        )
        copy.event_weight = self.event_weight
        copy.sample_index = self.sample_index
        copy.sample_bin_index = self.sample_bin_index
        copy.dial_cache = {name: list(dials) for name, dials in self.dial_cache.items()}
        copy.dial_sets = dict(self.dial_sets)
        return copy

    @property
    def summary(self) -> str:
        """Multi-line dump of the event content."""
        lines = [f"{name} -> {value}" for name, value in zip(self.variables, self.values, strict=True)]
        lines += [
            f"dataset_index={self.dataset_index}",
            f"entry_index={self.entry_index}",
            f"base_weight={self.base_weight}",
            f"nominal_weight={self.nominal_weight}",
            f"event_weight={self.event_weight}",
            f"sample_index={self.sample_index}",
            f"sample_bin_index={self.sample_bin_index}",
        ]
        lines += [f"{name}: {dials}" for name, dials in self.dial_cache.items()]
        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"Event(entry_index={self.entry_index}, bin={self.sample_bin_index}, "
            f"weight={self.event_weight})"
        )
