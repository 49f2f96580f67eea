"""
In-memory dataset loading.

A :class:`DataSetLoader` holds the column arrays of one dataset: the MC
columns and any number of named data entries. The entry named ``Asimov``
always refers to the MC columns. :class:`DataSetLoaders` turns the columns
into :class:`~pybinfit.events.Event` records and dispatches every event to
the first sample whose selection accepts it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from typing import Any

import numpy as np
import numpy.typing as npt
from pydantic import Field, ValidationError
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from pybinfit.collections import NamedCollection, NamedModel
from pybinfit.dials import Dial
from pybinfit.events import Event
from pybinfit.exceptions import (
    ConfigurationError,
    DuplicateNameError,
    VariableNotFoundError,
    format_validation_error,
)
from pybinfit.parameters import FitParameterSet
from pybinfit.sample_set import DataEventType, FitSampleSet
from pybinfit.samples import EventContainer
from pybinfit.variables import VariableList

log = logging.getLogger(__name__)

ASIMOV_ENTRY = "Asimov"

Columns = Mapping[str, npt.ArrayLike]
DialBuilder = Callable[[Event], Iterable[tuple[str | FitParameterSet, Dial]]]


class DataSetConfig(NamedModel):
    """
    Configuration of one dataset.

    Attributes:
        name: Unique dataset name
        enabled: Disabled datasets are not loaded
        selected_data_entry: Data entry compared to the MC when fitting data
            files, ``Asimov`` to use the MC columns themselves
        weight_variable: Column holding the base weight of each entry
        variables: Columns kept on the events, every column when empty
    """

    enabled: bool = True
    selected_data_entry: str = ASIMOV_ENTRY
    weight_variable: str | None = None
    variables: list[str] = Field(default_factory=list)


class DataSetConfigs(NamedCollection[DataSetConfig]):
    """Collection of dataset configurations with unique names."""

    root: list[DataSetConfig] = Field(default_factory=list)


class DataSetLoader:
    """
    Column arrays of one dataset.

    Examples:
        >>> loader = DataSetLoader({"name": "nd280"}, mc={"x": [0.5, 1.5]})
        >>> loader.selected_data_entry
        'Asimov'
        >>> [event.lookup_variable("x") for event in loader.make_events(loader.mc)]
        [0.5, 1.5]
    """

    def __init__(
        self,
        config: DataSetConfig | Mapping[str, Any],
        mc: Columns,
        data: Mapping[str, Columns] | None = None,
        *,
        dial_builder: DialBuilder | None = None,
    ) -> None:
        """
        Args:
            config: Dataset configuration.
            mc: MC column arrays, by variable name.
            data: Data entries, by entry name.
            dial_builder: Called on every MC event, yields the
                ``(parameter_set, dial)`` pairs to attach to it. The set is
                given by object or by name; dials of disabled sets are refused.

        Raises:
            ConfigurationError: if the configuration does not validate or the
                selected data entry does not exist.
            DuplicateNameError: if a data entry is named ``Asimov``.
        """
        if not isinstance(config, DataSetConfig):
            try:
                config = DataSetConfig.model_validate(config)
            except ValidationError as e:
                raise ConfigurationError(
                    format_validation_error(e, "Dataset configuration")
                ) from None
        self.config = config
        self.mc = mc
        self.dial_builder = dial_builder

        self._data_entries: dict[str, Columns] = {ASIMOV_ENTRY: mc}
        for entry_name, columns in (data or {}).items():
            if entry_name in self._data_entries:
                msg = f'{config.name}: data entry "{entry_name}" already taken, please use another name.'
                raise DuplicateNameError(msg)
            self._data_entries[entry_name] = columns

        if config.selected_data_entry not in self._data_entries:
            msg = (
                f'{config.name}: selected data entry "{config.selected_data_entry}" could not be found '
                f"in available data: {list(self._data_entries)}"
            )
            raise ConfigurationError(msg)

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    @property
    def selected_data_entry(self) -> str:
        return self.config.selected_data_entry

    @property
    def data_entry_names(self) -> list[str]:
        return list(self._data_entries)

    def selected_data(self) -> Columns:
        """Columns of the selected data entry."""
        return self._data_entries[self.selected_data_entry]

    def make_events(self, columns: Columns, *, dataset_index: int = -1) -> list[Event]:
        """
        Build one event per entry of the columns.

        Events built this way carry no dials.

        Raises:
            VariableNotFoundError: if a configured variable or the weight
                variable is missing from the columns.
            ConfigurationError: if the columns differ in length.
        """
        weight_variable = self.config.weight_variable
        names = self.config.variables or [name for name in columns if name != weight_variable]
        missing = [name for name in [*names, weight_variable] if name is not None and name not in columns]
        if missing:
            msg = f"{self.name}: variables {missing} not found in the columns {list(columns)}"
            raise VariableNotFoundError(msg)

        arrays = [np.asarray(columns[name], dtype=np.float64) for name in names]
        weights = None if weight_variable is None else np.asarray(columns[weight_variable], dtype=np.float64)
        lengths = {len(array) for array in arrays}
        if weights is not None:
            lengths.add(len(weights))
        if len(lengths) > 1:
            msg = f"{self.name}: columns have different lengths {sorted(lengths)}"
            raise ConfigurationError(msg)
        n_entries = lengths.pop() if lengths else 0

        variables = VariableList(names)
        rows = np.column_stack(arrays).tolist() if arrays else [[] for _ in range(n_entries)]
        return [
            Event(
                variables,
                row,
                dataset_index=dataset_index,
                entry_index=entry_index,
                base_weight=1.0 if weights is None else float(weights[entry_index]),
            )
            for entry_index, row in enumerate(rows)
        ]

    def attach_dials(self, event: Event) -> int:
        """Attach the dials of the dial builder to an event, returns how many applied."""
        if self.dial_builder is None:
            return 0
        return sum(event.add_dial(parameter_set, dial) for parameter_set, dial in self.dial_builder(event))

    def __repr__(self) -> str:
        return f"DataSetLoader({self.name!r}, data={self.data_entry_names}, selected={self.selected_data_entry!r})"


class DataSetLoaders:
    """
    Ordered dataset loaders with unique names.

    The loader configurations are gathered in a :class:`DataSetConfigs`
    collection, which enforces unique names and resolves lookups by name.

    Raises:
        DuplicateNameError: if two loaders share a name.
    """

    def __init__(self, loaders: Sequence[DataSetLoader]) -> None:
        self._loaders = list(loaders)
        self.configs = DataSetConfigs([loader.config for loader in self._loaders])
        self._by_name = {loader.name: loader for loader in self._loaders}

    @property
    def names(self) -> list[str]:
        """Dataset names, in loading order."""
        return self.configs.names

    def __iter__(self) -> Iterator[DataSetLoader]:
        return iter(self._loaders)

    def __len__(self) -> int:
        return len(self._loaders)

    def __contains__(self, name: str) -> bool:
        return name in self.configs

    def __getitem__(self, item: str | int) -> DataSetLoader:
        if isinstance(item, int):
            return self._loaders[item]
        return self._by_name[self.configs[item].name]

    def load(
        self,
        sample_set: FitSampleSet,
        *,
        progress: bool = True,
        load_asimov: bool = True,
    ) -> None:
        """
        Fill the sample containers from every enabled dataset.

        MC events are dispatched to the first enabled sample accepting them
        and get their dials attached. When the sample set fits data files,
        the selected data entry of each dataset is dispatched to the data
        containers the same way, without dials. When it fits Asimov data and
        ``load_asimov`` is set, data containers are filled from the MC
        afterwards with :meth:`FitSampleSet.load_asimov_data`.

        Args:
            sample_set: Sample set to fill.
            progress: Show a progress bar while dispatching events.
            load_asimov: Build the Asimov data once the MC is loaded.
        """
        fit_data_files = sample_set.data_event_type is DataEventType.DATA_FILES

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}", style="cyan"),
            BarColumn(),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            transient=True,
            disable=not progress,
        ) as progress_bar:
            for dataset_index, loader in enumerate(self._loaders):
                if not loader.enabled:
                    log.info('Dataset "%s" is disabled, skipping', loader.name)
                    continue

                mc_events = loader.make_events(loader.mc, dataset_index=dataset_index)
                task = progress_bar.add_task(f"Loading {loader.name} MC", total=len(mc_events))
                n_dispatched = self._dispatch(sample_set, mc_events, "mc", loader, progress_bar, task)
                log.info(
                    'Dataset "%s": %d/%d MC events dispatched', loader.name, n_dispatched, len(mc_events)
                )

                if not fit_data_files:
                    continue
                data_events = loader.make_events(loader.selected_data(), dataset_index=dataset_index)
                task = progress_bar.add_task(
                    f"Loading {loader.name} data ({loader.selected_data_entry})", total=len(data_events)
                )
                n_dispatched = self._dispatch(sample_set, data_events, "data", None, progress_bar, task)
                log.info(
                    'Dataset "%s": %d/%d data events dispatched from "%s"',
                    loader.name,
                    n_dispatched,
                    len(data_events),
                    loader.selected_data_entry,
                )

        if load_asimov and not fit_data_files:
            sample_set.load_asimov_data()

    @staticmethod
    def _dispatch(
        sample_set: FitSampleSet,
        events: list[Event],
        kind: str,
        loader: DataSetLoader | None,
        progress_bar: Progress,
        task: Any,
    ) -> int:
        per_sample: dict[int, list[Event]] = {}
        for event in events:
            for sample in sample_set:
                if sample.accepts(event):
                    event.sample_index = sample.index
                    if loader is not None:
                        loader.attach_dials(event)
                    per_sample.setdefault(sample.index, []).append(event)
                    break
            progress_bar.advance(task)

        for sample_index, sample_events in per_sample.items():
            container: EventContainer = getattr(sample_set[sample_index], kind)
            container.add_events(sample_events)
        return sum(len(sample_events) for sample_events in per_sample.values())


__all__ = (
    "ASIMOV_ENTRY",
    "DataSetConfig",
    "DataSetConfigs",
    "DataSetLoader",
    "DataSetLoaders",
    "DialBuilder",
)
