"""Tests for event containers and samples."""

from __future__ import annotations

import numpy as np
import pytest
from pydantic import ValidationError

from pybinfit.bins import Bin, BinEdge, Binning
from pybinfit.dials import NormDial
from pybinfit.exceptions import (
    BinIndexError,
    DoubleInitializationError,
    DuplicateNameError,
    PipelineOrderError,
)
from pybinfit.parameters import FitParameter
from pybinfit.samples import (
    ErrorModel,
    EventContainer,
    FitSample,
    FitSampleConfig,
    FitSampleConfigs,
    PipelineStage,
)


@pytest.fixture
def binning() -> Binning:
    """Two bins in x."""
    return Binning.from_edges({"x": [0.0, 1.0, 2.0]})


@pytest.fixture
def container(binning, make_event) -> EventContainer:
    """Container with three events in bin 0, one in bin 1 and one outside."""
    container = EventContainer("numu/mc", binning)
    container.add_events(
        [
            make_event(0.1, base_weight=1.0),
            make_event(0.5, base_weight=2.0),
            make_event(0.9, base_weight=3.0),
            make_event(1.5, base_weight=4.0),
            make_event(7.0, base_weight=100.0),
        ]
    )
    return container


class TestErrorModel:
    """Test the histogram error models."""

    def test_sumw2(self):
        """sumw2 errors are the square root of the summed squared weights."""
        errors = ErrorModel.SUMW2.compute(np.array([4.0]), np.array([9.0]))
        np.testing.assert_allclose(errors, [3.0])

    def test_poisson(self):
        """poisson errors are the square root of the content."""
        errors = ErrorModel.POISSON.compute(np.array([4.0, -1.0]), np.array([9.0, 1.0]))
        np.testing.assert_allclose(errors, [2.0, 0.0])

    def test_from_string(self):
        """Error models are selected by name."""
        assert ErrorModel("poisson") is ErrorModel.POISSON


class TestEventContainerPipeline:
    """Test the histogram pipeline of a single container."""

    def test_fill_histogram(self, container):
        """Contents sum the event weights of each bin, unmatched events are dropped."""
        container.fill_histogram()
        np.testing.assert_allclose(container.contents, [6.0, 4.0])
        np.testing.assert_allclose(container.sumw2, [14.0, 16.0])
        np.testing.assert_allclose(container.errors, [np.sqrt(14.0), 4.0])
        assert container.events[4].sample_bin_index == -1
        assert len(container) == 5
        assert container.total_content == 10.0
        assert container.stage is PipelineStage.HISTOGRAM

    def test_bin_event_list(self, container):
        """Each bin caches the indexes of its events."""
        container.update_event_bin_indexes()
        container.update_bin_event_list()
        assert container.bin_event_indexes(0) == [0, 1, 2]
        assert container.bin_event_indexes(1) == [3]

    def test_event_list_before_bin_indexes(self, container):
        """Building bin event lists before assigning bins is refused."""
        with pytest.raises(PipelineOrderError, match="numu/mc.*bin_indexes.*stale"):
            container.update_bin_event_list()

    def test_refill_before_event_list(self, container):
        """Refilling before the bin event lists exist is refused."""
        container.update_event_bin_indexes()
        with pytest.raises(PipelineOrderError, match="bin_event_list"):
            container.refill_histogram()

    def test_binning_change_invalidates(self, container):
        """Changing the binning requires re-assigning bins."""
        container.fill_histogram()
        container.set_binning(Binning.from_edges({"x": [0.0, 0.5, 1.0, 2.0]}))
        assert container.stage is PipelineStage.STALE
        with pytest.raises(PipelineOrderError):
            container.update_bin_event_list()
        container.fill_histogram()
        np.testing.assert_allclose(container.contents, [1.0, 5.0, 4.0])

    def test_new_events_invalidate(self, container, make_event):
        """Adding events requires re-assigning bins."""
        container.fill_histogram()
        container.add_events([make_event(1.2)])
        with pytest.raises(PipelineOrderError):
            container.refill_histogram()

    def test_reweight_without_rebinning(self, container):
        """Histograms can be refilled repeatedly once bin event lists exist."""
        norm = FitParameter(name="norm", value=1.0)
        dial = NormDial(parameter=norm)
        for event in container.events:
            event.add_dial("flux", dial)
        container.fill_histogram()
        np.testing.assert_allclose(container.contents, [6.0, 4.0])

        norm.value = 0.5
        container.refill_histogram()
        container.rescale_histogram()
        np.testing.assert_allclose(container.contents, [3.0, 2.0])

    def test_refill_marks_histogram_stale(self, container):
        """A refill without rescale leaves the histogram stage incomplete."""
        container.fill_histogram()
        container.refill_histogram()
        assert container.stage is PipelineStage.BIN_EVENT_LIST

    def test_bin_index_out_of_range(self, container):
        """An event index outside the binning raises BinIndexError."""
        container.update_event_bin_indexes()
        container.events[1].sample_bin_index = 5
        with pytest.raises(BinIndexError, match=r"numu/mc: event #1 has bin index 5"):
            container.update_bin_event_list()

    def test_partitioned_refill_matches_serial(self, binning, make_event):
        """Refilling bin shares from several threads equals a serial refill."""
        rng = np.random.default_rng(42)
        events = [make_event(x, base_weight=w) for x, w in zip(rng.uniform(0, 2, 200), rng.uniform(0.5, 1.5, 200))]
        serial = EventContainer("serial", binning)
        serial.add_events(events)
        serial.fill_histogram()

        split = EventContainer("split", binning)
        split.add_events(events)
        split.update_event_bin_indexes()
        split.update_bin_event_list()
        for i_thread in range(3):
            split.refill_histogram(i_thread, 3)
        split.rescale_histogram()
        np.testing.assert_array_equal(split.contents, serial.contents)
        np.testing.assert_array_equal(split.sumw2, serial.sumw2)


class TestHistogramScale:
    """Test the rescale step."""

    def test_scale_applied_once(self, container):
        """Contents and errors are scaled, repeated rescales do not compound."""
        container.histogram_scale = 0.5
        container.fill_histogram()
        container.rescale_histogram()
        np.testing.assert_allclose(container.contents, [3.0, 2.0])
        np.testing.assert_allclose(container.errors, [0.5 * np.sqrt(14.0), 2.0])
        np.testing.assert_allclose(container.sumw2, [14.0, 16.0])

    def test_poisson_errors(self, binning, make_event):
        """The poisson model takes errors from the unscaled contents."""
        container = EventContainer("c", binning, error_model="poisson", histogram_scale=2.0)
        container.add_events([make_event(0.5, base_weight=4.0)])
        container.fill_histogram()
        np.testing.assert_allclose(container.contents, [8.0, 0.0])
        np.testing.assert_allclose(container.errors, [4.0, 0.0])


class TestSnapshot:
    """Test copying events between containers."""

    def test_frozen_copy(self, binning, make_event):
        """Frozen copies keep the current weight and drop the dials."""
        norm = FitParameter(name="norm", value=2.0)
        mc = EventContainer("s/mc", binning)
        mc.add_events([make_event(0.5)])
        mc.events[0].add_dial("flux", NormDial(parameter=norm))
        mc.events[0].current_weight()

        data = EventContainer("s/data", binning)
        data.snapshot_from(mc)
        copy = data.events[0]
        assert copy is not mc.events[0]
        assert copy.base_weight == 2.0
        assert copy.dial_cache == {}

        norm.value = 3.0
        mc.fill_histogram()
        data.fill_histogram()
        np.testing.assert_allclose(mc.contents, [3.0, 0.0])
        np.testing.assert_allclose(data.contents, [2.0, 0.0])

    def test_unfrozen_copy_shares_dials(self, binning, make_event):
        """Unfrozen copies keep following the shared dials."""
        dial = NormDial(parameter=FitParameter(name="norm", value=2.0))
        mc = EventContainer("s/mc", binning)
        mc.add_events([make_event(0.5)])
        mc.events[0].add_dial("flux", dial)

        data = EventContainer("s/data", binning)
        data.snapshot_from(mc, freeze=False)
        assert list(data.events[0].iter_dials()) == [dial]

    def test_snapshot_into_non_empty(self, container, binning, make_event):
        """Copying into a non-empty container is refused."""
        target = EventContainer("s/data", binning)
        target.add_events([make_event(0.1)])
        with pytest.raises(DoubleInitializationError, match="s/data.*not empty"):
            target.snapshot_from(container)


class TestToHist:
    """Test the hist export."""

    def test_to_hist(self, container):
        """The exported histogram carries contents and variances."""
        pytest.importorskip("hist")
        container.fill_histogram()
        h = container.to_hist()
        np.testing.assert_allclose(h.values(), [6.0, 4.0])
        np.testing.assert_allclose(h.variances(), [14.0, 16.0])
        assert h.axes[0].name == "bin"


class TestFitSampleConfig:
    """Test sample configurations."""

    def test_binning_from_edges(self):
        """Edge lists build the sample binning."""
        config = FitSampleConfig(name="numu", binning_edges={"x": [0.0, 1.0, 2.0]})
        assert len(config.make_binning()) == 2

    def test_binning_from_bins(self):
        """Explicit bins build the sample binning."""
        config = FitSampleConfig.model_validate(
            {"name": "numu", "bins": [{"edges": [{"variable": "x", "low": 0, "high": 1}]}]}
        )
        assert len(config.make_binning()) == 1

    @pytest.mark.parametrize(
        ("extra", "match"),
        [
            pytest.param({}, "no binning", id="none"),
            pytest.param(
                {"bins": [{"edges": []}], "binning_edges": {"x": [0, 1]}},
                "not both",
                id="both",
            ),
        ],
    )
    def test_exactly_one_binning(self, extra, match):
        """Exactly one way of giving the binning is accepted."""
        with pytest.raises(ValidationError, match=match):
            FitSampleConfig(name="numu", **extra)

    def test_unknown_error_model(self):
        """Error models are validated."""
        with pytest.raises(ValidationError):
            FitSampleConfig(name="numu", binning_edges={"x": [0, 1]}, error_model="gaussian")

    def test_duplicate_sample_names(self):
        """Sample names must be unique."""
        with pytest.raises(DuplicateNameError):
            FitSampleConfigs.model_validate(
                [
                    {"name": "numu", "binning_edges": {"x": [0, 1]}},
                    {"name": "numu", "binning_edges": {"x": [0, 2]}},
                ]
            )


class TestFitSample:
    """Test samples."""

    def test_from_config(self):
        """Samples build both containers from their configuration."""
        sample = FitSample.from_config(
            FitSampleConfig(
                name="numu",
                binning_edges={"x": [0, 1, 2]},
                error_model="poisson",
                data_scale=0.1,
            )
        )
        assert sample.mc.name == "numu/mc"
        assert sample.data.name == "numu/data"
        assert sample.data.histogram_scale == 0.1
        assert sample.mc.error_model is ErrorModel.POISSON
        assert len(sample.binning) == 2

    def test_accepts(self, binning, make_event):
        """Events are accepted by enabled samples whose selection contains them."""
        sample = FitSample(
            "numu",
            binning,
            selection=Bin(edges=[BinEdge(variable="y", low=0.0, high=1.0)]),
        )
        assert sample.accepts(make_event(0.0, 0.5))
        assert not sample.accepts(make_event(0.0, 1.5))
        sample.enabled = False
        assert not sample.accepts(make_event(0.0, 0.5))

    def test_set_binning(self, binning):
        """Changing the sample binning changes both containers."""
        sample = FitSample("numu", binning)
        sample.set_binning(Binning.from_edges({"x": [0.0, 3.0]}))
        assert sample.mc.n_bins == 1
        assert sample.data.n_bins == 1
