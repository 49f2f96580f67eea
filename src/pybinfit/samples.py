"""
Sample and event container implementations.

A :class:`FitSample` is a named analysis category. It owns one
:class:`EventContainer` for simulated (MC) events and one for the compared
(data) events. A container keeps its events, a histogram over the sample's
binning, and the bin to event-index cache used to refill the histogram.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from enum import Enum, IntEnum
from typing import TYPE_CHECKING, Any

import numpy as np
import numpy.typing as npt
from pydantic import Field, model_validator

from pybinfit.bins import Bin, Binning
from pybinfit.collections import NamedCollection, NamedModel
from pybinfit.exceptions import (
    BinIndexError,
    DoubleInitializationError,
    PipelineOrderError,
)
from pybinfit.lazy import get_hist
from pybinfit.scheduler import partition_range

if TYPE_CHECKING:
    import hist

    from pybinfit.events import Event

log = logging.getLogger(__name__)


class ErrorModel(str, Enum):
    """
    Statistical error of a histogram bin.

    - ``sumw2``: square root of the sum of squared event weights.
    - ``poisson``: square root of the bin content.
    """

    SUMW2 = "sumw2"
    POISSON = "poisson"

    def compute(
        self, contents: npt.NDArray[np.float64], sumw2: npt.NDArray[np.float64]
    ) -> npt.NDArray[np.float64]:
        """Per-bin errors for unscaled contents and sums of squared weights."""
        if self is ErrorModel.POISSON:
            return np.sqrt(np.clip(contents, 0.0, None))
        return np.sqrt(sumw2)


class PipelineStage(IntEnum):
    """Last pipeline step completed by a container."""

    STALE = 0
    BIN_INDEXES = 1
    BIN_EVENT_LIST = 2
    HISTOGRAM = 3


class EventContainer:
    """
    Events of one kind (MC or data) for one sample, with their histogram.

    The histogram is refilled in three steps that must run in order:
    :meth:`update_event_bin_indexes`, :meth:`update_bin_event_list`, then
    :meth:`refill_histogram` followed by :meth:`rescale_histogram`. Each step
    checks the previous one ran against the current binning and event list
    and raises :class:`PipelineOrderError` otherwise. Weights can be refilled
    any number of times once the bin event lists are built.

    Attributes:
        name: ``"<sample>/mc"`` or ``"<sample>/data"``.
        events: The event records.
        contents: Histogram bin contents (scaled).
        sumw2: Per-bin sum of squared event weights (unscaled).
        errors: Histogram bin errors (scaled).
        error_model: How :attr:`errors` is derived during the rescale step.
        histogram_scale: Factor applied to contents and errors during rescale.
    """

    def __init__(
        self,
        name: str,
        binning: Binning,
        *,
        error_model: ErrorModel = ErrorModel.SUMW2,
        histogram_scale: float = 1.0,
    ) -> None:
        self.name = name
        self.events: list[Event] = []
        self.error_model = ErrorModel(error_model)
        self.histogram_scale = histogram_scale
        self._binning = binning
        self._binning_revision = 0
        self._stage = PipelineStage.STALE
        self._stage_revision = -1
        self._allocate()

    def _allocate(self) -> None:
        n_bins = len(self._binning)
        self.contents: npt.NDArray[np.float64] = np.zeros(n_bins, dtype=np.float64)
        self._raw_contents: npt.NDArray[np.float64] = np.zeros(n_bins, dtype=np.float64)
        self.sumw2: npt.NDArray[np.float64] = np.zeros(n_bins, dtype=np.float64)
        self.errors: npt.NDArray[np.float64] = np.zeros(n_bins, dtype=np.float64)
        self._bin_event_list: list[list[int]] = [[] for _ in range(n_bins)]

    @property
    def binning(self) -> Binning:
        """The binning the histogram is filled with."""
        return self._binning

    def set_binning(self, binning: Binning) -> None:
        """Replace the binning. Bin indexes must be recomputed afterwards."""
        self._binning = binning
        self._binning_revision += 1
        self.invalidate()
        self._allocate()

    @property
    def n_bins(self) -> int:
        return len(self._binning)

    @property
    def stage(self) -> PipelineStage:
        """Last pipeline step completed against the current binning."""
        if self._stage_revision != self._binning_revision:
            return PipelineStage.STALE
        return self._stage

    def add_events(self, events: Iterable[Event]) -> None:
        """Append events. Bin indexes must be recomputed afterwards."""
        self.events.extend(events)
        self.invalidate()

    def clear_events(self) -> None:
        """Drop every event and zero the histogram."""
        self.events.clear()
        self.invalidate()
        self._allocate()

    def check_stage(self, required: PipelineStage, step: str) -> None:
        """
        Raise unless the container has completed ``required``.

        Raises:
            PipelineOrderError: naming the container, the step and the stage.
        """
        if self.stage < required:
            msg = (
                f"{self.name}: can't {step} before '{required.name.lower()}' is up to date "
                f"(current stage: '{self.stage.name.lower()}')"
            )
            raise PipelineOrderError(msg)

    def invalidate(self) -> None:
        """Mark every pipeline step as out of date."""
        self._stage = PipelineStage.STALE

    def _commit(self, stage: PipelineStage) -> None:
        self._stage = stage
        self._stage_revision = self._binning_revision

    def update_event_bin_indexes(self, i_thread: int = -1, n_threads: int = 1) -> None:
        """
        Assign every event of this thread's share to its first matching bin.

        With ``i_thread == -1`` the whole event list is processed and the stage
        is committed; otherwise the caller commits with
        :meth:`commit_bin_indexes` once every thread finished.
        """
        if i_thread == -1:
            self.invalidate()
        binning = self._binning
        events = self.events
        for index in partition_range(len(events), i_thread, n_threads):
            event = events[index]
            event.sample_bin_index = event.find_bin_index(binning)
        if i_thread == -1:
            self.commit_bin_indexes()

    def commit_bin_indexes(self) -> None:
        """Record that every event holds a bin index for the current binning."""
        self._commit(PipelineStage.BIN_INDEXES)

    def update_bin_event_list(self) -> None:
        """
        Rebuild the bin to event-index lists from the assigned bin indexes.

        Events with bin index -1 are left out.

        Raises:
            PipelineOrderError: if bin indexes are not up to date.
            BinIndexError: if an event holds an index outside the binning.
        """
        self.check_stage(PipelineStage.BIN_INDEXES, "update the bin event lists")
        n_bins = self.n_bins
        bin_event_list: list[list[int]] = [[] for _ in range(n_bins)]
        for index, event in enumerate(self.events):
            bin_index = event.sample_bin_index
            if bin_index == -1:
                continue
            if not 0 <= bin_index < n_bins:
                msg = f"{self.name}: event #{index} has bin index {bin_index}, binning has {n_bins} bins"
                raise BinIndexError(msg)
            bin_event_list[bin_index].append(index)
        self._bin_event_list = bin_event_list
        self._commit(PipelineStage.BIN_EVENT_LIST)

    def bin_event_indexes(self, bin_index: int) -> list[int]:
        """Indexes of the events cached in a bin."""
        return self._bin_event_list[bin_index]

    def refill_histogram(self, i_thread: int = -1, n_threads: int = 1) -> None:
        """
        Sum the current event weights of this thread's share of bins.

        Threads split the bins, not the events, so no two threads ever write
        the same bin. Contents are left unscaled until
        :meth:`rescale_histogram`.

        Raises:
            PipelineOrderError: if the bin event lists are not up to date.
        """
        self.check_stage(PipelineStage.BIN_EVENT_LIST, "refill the histogram")
        events = self.events
        for bin_index in partition_range(self.n_bins, i_thread, n_threads):
            total = 0.0
            total_sq = 0.0
            for event_index in self._bin_event_list[bin_index]:
                weight = events[event_index].current_weight()
                total += weight
                total_sq += weight * weight
            self._raw_contents[bin_index] = total
            self.sumw2[bin_index] = total_sq
        # contents are stale until the rescale step
        self._stage = min(self._stage, PipelineStage.BIN_EVENT_LIST)

    def rescale_histogram(self) -> None:
        """Compute errors with the error model and apply the histogram scale."""
        self.check_stage(PipelineStage.BIN_EVENT_LIST, "rescale the histogram")
        self.contents = self._raw_contents * self.histogram_scale
        self.errors = self.error_model.compute(self._raw_contents, self.sumw2) * self.histogram_scale
        self._commit(PipelineStage.HISTOGRAM)

    def fill_histogram(self) -> None:
        """Run the whole pipeline serially on this container."""
        self.update_event_bin_indexes()
        self.update_bin_event_list()
        self.refill_histogram()
        self.rescale_histogram()

    def snapshot_from(self, other: EventContainer, *, freeze: bool = True) -> None:
        """
        Fill this container with independent copies of another's events.

        Args:
            other: Container to copy from.
            freeze: Make the copied weights constant: the current event weight
                becomes the base weight and dials are dropped.

        Raises:
            DoubleInitializationError: if this container already holds events.
        """
        if self.events:
            msg = f"{self.name}: can't copy events from {other.name}, event list is not empty ({len(self.events)} events)."
            raise DoubleInitializationError(msg)
        copies = []
        for event in other.events:
            copy = event.snapshot()
            if freeze:
                copy.base_weight = copy.event_weight
                copy.dial_cache = {}
                copy.dial_sets = {}
            copies.append(copy)
        self.add_events(copies)
        log.debug("%s: copied %d events from %s", self.name, len(copies), other.name)

    @property
    def total_content(self) -> float:
        """Sum of the histogram contents."""
        return float(self.contents.sum())

    def to_hist(self) -> hist.Hist:
        """
        Convert the histogram to a scikit-hep ``hist.Hist`` indexed by bin number.

        Note:
            Requires the hist package. Install with: python -m pip install 'pybinfit[visualization]'
            or python -m pip install hist

        Returns:
            hist.Hist: Histogram with an integer ``bin`` axis, values set to the
            contents and variances to the squared errors.
        """
        hist = get_hist()
        h = hist.Hist(
            hist.axis.Integer(0, self.n_bins, name="bin", label=self.name, flow=False),
            storage=hist.storage.Weight(),
        )
        h.view(flow=False)["value"] = self.contents
        h.view(flow=False)["variance"] = np.square(self.errors)
        return h

    def __len__(self) -> int:
        return len(self.events)

    def __iter__(self) -> Iterator[Event]:
        return iter(self.events)

    def __repr__(self) -> str:
        return f"EventContainer({self.name!r}, events={len(self.events)}, bins={self.n_bins})"


class FitSampleConfig(NamedModel):
    """
    Configuration of one analysis sample.

    Attributes:
        name: Unique sample name
        enabled: Disabled samples hold no events and contribute nothing
        selection: Region an event must lie in to belong to the sample
        bins: Explicit bin list
        binning_edges: Per-variable edges, used when ``bins`` is empty
        error_model: Histogram error model of both containers
        mc_scale: Histogram scale of the MC container
        data_scale: Histogram scale of the data container
    """

    enabled: bool = True
    selection: Bin | None = None
    bins: list[Bin] = Field(default_factory=list)
    binning_edges: dict[str, list[float]] = Field(default_factory=dict)
    error_model: ErrorModel = ErrorModel.SUMW2
    mc_scale: float = 1.0
    data_scale: float = 1.0

    @model_validator(mode="after")
    def check_binning(self) -> FitSampleConfig:
        """Exactly one way of giving the binning."""
        if self.bins and self.binning_edges:
            msg = f"Sample '{self.name}': give either bins or binning_edges, not both"
            raise ValueError(msg)
        if not self.bins and not self.binning_edges:
            msg = f"Sample '{self.name}': no binning given"
            raise ValueError(msg)
        return self

    def make_binning(self) -> Binning:
        if self.bins:
            return Binning(list(self.bins))
        return Binning.from_edges(self.binning_edges)


class FitSampleConfigs(NamedCollection[FitSampleConfig]):
    """Collection of sample configurations with unique names."""

    root: list[FitSampleConfig] = Field(default_factory=list)


class FitSample:
    """
    Named analysis category owning an MC and a data event container.

    Attributes:
        name: Sample name.
        index: Position of the sample in its sample set, -1 until added to one.
        enabled: Disabled samples are skipped by every pipeline step.
        selection: Region defining which events belong to the sample.
        mc: Container of reweightable simulated events.
        data: Container of compared events.
    """

    def __init__(
        self,
        name: str,
        binning: Binning,
        *,
        selection: Bin | None = None,
        enabled: bool = True,
        error_model: ErrorModel = ErrorModel.SUMW2,
        mc_scale: float = 1.0,
        data_scale: float = 1.0,
    ) -> None:
        self.name = name
        self.index = -1
        self.enabled = enabled
        self.selection = selection
        self.mc = EventContainer(
            f"{name}/mc", binning, error_model=error_model, histogram_scale=mc_scale
        )
        self.data = EventContainer(
            f"{name}/data", binning, error_model=error_model, histogram_scale=data_scale
        )

    @classmethod
    def from_config(cls, config: FitSampleConfig) -> FitSample:
        return cls(
            config.name,
            config.make_binning(),
            selection=config.selection,
            enabled=config.enabled,
            error_model=config.error_model,
            mc_scale=config.mc_scale,
            data_scale=config.data_scale,
        )

    @property
    def binning(self) -> Binning:
        return self.mc.binning

    def set_binning(self, binning: Binning) -> None:
        """Replace the binning of both containers."""
        self.mc.set_binning(binning)
        self.data.set_binning(binning)

    @property
    def containers(self) -> tuple[EventContainer, EventContainer]:
        return self.mc, self.data

    def accepts(self, event: Any) -> bool:
        """Whether the event passes the sample selection."""
        if not self.enabled:
            return False
        return self.selection is None or self.selection.contains(event)

    def __repr__(self) -> str:
        return (
            f"FitSample({self.name!r}, bins={len(self.binning)}, mc={len(self.mc)}, "
            f"data={len(self.data)}, enabled={self.enabled})"
        )


__all__ = (
    "ErrorModel",
    "EventContainer",
    "FitSample",
    "FitSampleConfig",
    "FitSampleConfigs",
    "PipelineStage",
)
