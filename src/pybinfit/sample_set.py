"""
Sample set: the histogram pipeline and the likelihood reduction.

:class:`FitSampleSet` drives every sample through the fixed sequence of
parallel jobs run once per minimizer iteration:

1. update the bin index of every event,
2. rebuild the bin to event-index lists,
3. refill the histograms in parallel, then rescale them serially,

and reduces the resulting (MC, data) histograms to a single scalar through
the configured comparison statistic.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping, Sequence
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pybinfit.exceptions import (
    BinIndexError,
    ConfigurationError,
    DoubleInitializationError,
    DuplicateNameError,
    PipelineOrderError,
    custom_error_msg,
    format_validation_error,
)
from pybinfit.samples import EventContainer, FitSample, FitSampleConfigs, PipelineStage
from pybinfit.scheduler import ParallelWorker, partition_range
from pybinfit.statistics import ComparisonStatistic, get_statistic

log = logging.getLogger(__name__)


class DataEventType(str, Enum):
    """Where the compared (data) events come from."""

    ASIMOV = "Asimov"
    DATA_FILES = "DataFiles"


class SampleSetConfig(BaseModel):
    """
    Configuration of a sample set.

    Attributes:
        data_event_type: ``Asimov`` to fit a frozen copy of the MC, or
            ``DataFiles`` to fit the selected data entries of the datasets
        likelihood: Name of the registered comparison statistic
        samples: Sample configurations, names must be unique
        show_time_stats: Log the duration of every pipeline job
    """

    model_config = ConfigDict(extra="forbid")

    data_event_type: Annotated[
        DataEventType,
        custom_error_msg(
            {
                "enum": "Unknown data event type '{input}'. Expected 'Asimov' or 'DataFiles'.",
            }
        ),
    ] = DataEventType.ASIMOV
    likelihood: str = "PoissonLLH"
    samples: FitSampleConfigs = Field(default_factory=FitSampleConfigs)
    show_time_stats: bool = False


class FitSampleSet:
    """
    Ordered samples evaluated together into one likelihood value.

    The sample set registers its three pipeline jobs on a
    :class:`ParallelWorker` at :meth:`initialize`. The worker is passed in
    explicitly so that several components may share one thread pool; a
    single-threaded worker is created otherwise.

    Examples:
        >>> from pybinfit.bins import Binning
        >>> sample_set = FitSampleSet([FitSample("numu", Binning.from_edges({"x": [0.0, 1.0]}))])
        >>> sample_set.initialize()
        >>> sample_set.evaluate_likelihood()
        0.0
    """

    def __init__(
        self,
        samples: Sequence[FitSample],
        *,
        statistic: str | ComparisonStatistic = "PoissonLLH",
        data_event_type: DataEventType | str = DataEventType.ASIMOV,
        worker: ParallelWorker | None = None,
        name: str = "FitSampleSet",
    ) -> None:
        """
        Args:
            samples: Samples, in evaluation order. Names must be unique.
            statistic: Comparison statistic, by registered name or as a
                ``(mc_content, mc_error, data_content) -> float`` callable.
            data_event_type: Origin of the compared events.
            worker: Thread pool the pipeline jobs run on.
            name: Prefix of the job names registered on the worker.

        Raises:
            DuplicateNameError: if two samples share a name.
            UnknownStatisticError: if the statistic name is not registered.
        """
        names = [sample.name for sample in samples]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            msg = f"Sample names must be unique, got duplicates {duplicates}"
            raise DuplicateNameError(msg)

        self.name = name
        self._samples: list[FitSample] = list(samples)
        self._sample_map = {sample.name: sample for sample in self._samples}
        for index, sample in enumerate(self._samples):
            sample.index = index
        self._statistic = get_statistic(statistic)
        self.data_event_type = DataEventType(data_event_type)
        self.worker = worker if worker is not None else ParallelWorker()
        self._is_initialized = False

    @classmethod
    def from_config(
        cls,
        config: SampleSetConfig | Mapping[str, Any],
        *,
        worker: ParallelWorker | None = None,
    ) -> FitSampleSet:
        """
        Build a sample set from its configuration.

        Raises:
            ConfigurationError: if the configuration does not validate.
        """
        if not isinstance(config, SampleSetConfig):
            try:
                config = SampleSetConfig.model_validate(config)
            except ValidationError as e:
                raise ConfigurationError(
                    format_validation_error(e, "Sample set configuration")
                ) from None

        if worker is not None and config.show_time_stats:
            worker.show_time_stats = True
        elif worker is None:
            worker = ParallelWorker(show_time_stats=config.show_time_stats)

        return cls(
            [FitSample.from_config(sample_config) for sample_config in config.samples],
            statistic=config.likelihood,
            data_event_type=config.data_event_type,
            worker=worker,
        )

    # ---- job names ----

    @property
    def update_bin_indexes_job(self) -> str:
        return f"{self.name}::update_sample_event_bin_indexes"

    @property
    def update_bin_event_list_job(self) -> str:
        return f"{self.name}::update_sample_bin_event_list"

    @property
    def update_histograms_job(self) -> str:
        return f"{self.name}::update_sample_histograms"

    def initialize(self) -> None:
        """
        Register the pipeline jobs on the worker.

        Raises:
            DoubleInitializationError: if called twice.
        """
        if self._is_initialized:
            msg = f"{self.name} is already initialized."
            raise DoubleInitializationError(msg)

        log.info("Creating parallelisable jobs for %d samples", len(self._samples))
        self.worker.add_job(self.update_bin_indexes_job, self._update_bin_indexes_job)
        self.worker.add_job(self.update_bin_event_list_job, self._update_bin_event_list_job)
        self.worker.add_job(self.update_histograms_job, self._refill_histograms_job)
        self.worker.set_post_parallel_job(self.update_histograms_job, self._rescale_histograms_job)
        self._is_initialized = True

    @property
    def is_initialized(self) -> bool:
        return self._is_initialized

    def _check_initialized(self) -> None:
        if not self._is_initialized:
            msg = f"{self.name} must be initialized before running the pipeline."
            raise PipelineOrderError(msg)

    # ---- collection access ----

    @property
    def samples(self) -> list[FitSample]:
        return self._samples

    @property
    def statistic(self) -> ComparisonStatistic:
        return self._statistic

    def get_sample(self, name: str) -> FitSample:
        return self._sample_map[name]

    def __getitem__(self, item: str | int) -> FitSample:
        if isinstance(item, int):
            return self._samples[item]
        return self._sample_map[item]

    def __contains__(self, name: str) -> bool:
        return name in self._sample_map

    def __iter__(self) -> Iterator[FitSample]:
        return iter(self._samples)

    def __len__(self) -> int:
        return len(self._samples)

    def empty(self) -> bool:
        return not self._samples

    def containers(self) -> list[EventContainer]:
        """MC and data containers of every enabled sample."""
        return [
            container
            for sample in self._samples
            if sample.enabled
            for container in sample.containers
        ]

    # ---- jobs ----

    def _update_bin_indexes_job(self, i_thread: int) -> None:
        for container in self.containers():
            container.update_event_bin_indexes(i_thread, self.worker.n_threads)

    def _update_bin_event_list_job(self, i_thread: int) -> None:
        containers = self.containers()
        for index in partition_range(len(containers), i_thread, self.worker.n_threads):
            containers[index].update_bin_event_list()

    def _refill_histograms_job(self, i_thread: int) -> None:
        for container in self.containers():
            container.refill_histogram(i_thread, self.worker.n_threads)

    def _rescale_histograms_job(self) -> None:
        for container in self.containers():
            container.rescale_histogram()

    # ---- pipeline ----

    def update_sample_event_bin_indexes(self) -> None:
        """
        Step 1: assign every event to its first matching bin.

        Every container is marked stale first, so a failed job leaves no
        later step runnable on partially updated bin indexes.
        """
        self._check_initialized()
        for container in self.containers():
            container.invalidate()
        self.worker.run_job(self.update_bin_indexes_job)
        for container in self.containers():
            container.commit_bin_indexes()

    def update_sample_bin_event_list(self) -> None:
        """
        Step 2: rebuild every container's bin to event-index lists.

        Raises:
            PipelineOrderError: if step 1 is not up to date for a container.
        """
        self._check_initialized()
        for container in self.containers():
            container.check_stage(PipelineStage.BIN_INDEXES, "update the bin event lists")
        self.worker.run_job(self.update_bin_event_list_job)

    def update_sample_histograms(self) -> None:
        """
        Step 3: refill every histogram from the current event weights, then rescale.

        Raises:
            PipelineOrderError: if step 2 is not up to date for a container.
        """
        self._check_initialized()
        for container in self.containers():
            container.check_stage(PipelineStage.BIN_EVENT_LIST, "refill the histogram")
        self.worker.run_job(self.update_histograms_job)

    def reduce_likelihood(self) -> float:
        """
        Step 4: sum the comparison statistic over every bin of every enabled sample.

        Raises:
            PipelineOrderError: if a histogram is not up to date.
            BinIndexError: if the MC and data histograms of a sample differ in
                bin count.
        """
        llh = 0.0
        for sample in self._samples:
            if not sample.enabled:
                continue
            sample.mc.check_stage(PipelineStage.HISTOGRAM, "evaluate the likelihood")
            sample.data.check_stage(PipelineStage.HISTOGRAM, "evaluate the likelihood")
            if sample.mc.n_bins != sample.data.n_bins:
                msg = (
                    f"{sample.name}: MC histogram has {sample.mc.n_bins} bins, "
                    f"data histogram has {sample.data.n_bins} bins"
                )
                raise BinIndexError(msg)

            sample_llh = 0.0
            mc_contents = sample.mc.contents
            mc_errors = sample.mc.errors
            data_contents = sample.data.contents
            for bin_index in range(sample.mc.n_bins):
                sample_llh += self._statistic(
                    float(mc_contents[bin_index]),
                    float(mc_errors[bin_index]),
                    float(data_contents[bin_index]),
                )
            llh += sample_llh
        return llh

    def evaluate_likelihood(self) -> float:
        """
        Run the full pipeline and return the likelihood.

        This is the objective the minimizer calls after each parameter update.
        """
        self.update_sample_event_bin_indexes()
        self.update_sample_bin_event_list()
        self.update_sample_histograms()
        return self.reduce_likelihood()

    def reweight_and_evaluate(self) -> float:
        """
        Refill the histograms and return the likelihood, keeping bin assignments.

        Valid only while no binning or event list changed since the last
        :meth:`evaluate_likelihood`.
        """
        self.update_sample_histograms()
        return self.reduce_likelihood()

    # ---- data ----

    def load_asimov_data(self) -> None:
        """
        Fill every data container with a frozen copy of its MC events.

        MC weights are computed at the current parameter values and become
        the constant weights of the copies. Does nothing unless the data event
        type is Asimov.

        Raises:
            DoubleInitializationError: if a data container already holds events.
        """
        if self.data_event_type is not DataEventType.ASIMOV:
            log.debug("Data event type is %s, not copying MC events", self.data_event_type.value)
            return

        log.warning("Asimov data selected: copying MC events...")
        for sample in self._samples:
            if not sample.enabled:
                continue
            log.info('Copying MC events in sample "%s"', sample.name)
            for event in sample.mc.events:
                event.current_weight()
            sample.data.snapshot_from(sample.mc, freeze=True)

    def total_mc_content(self) -> float:
        """Sum of every enabled MC histogram."""
        return sum(sample.mc.total_content for sample in self._samples if sample.enabled)

    def total_data_content(self) -> float:
        """Sum of every enabled data histogram."""
        return sum(sample.data.total_content for sample in self._samples if sample.enabled)

    def close(self) -> None:
        """Shut down the worker's thread pool."""
        self.worker.close()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({[sample.name for sample in self._samples]}, data={self.data_event_type.value})"


__all__ = ("DataEventType", "FitSampleSet", "SampleSetConfig")
