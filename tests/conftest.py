from __future__ import annotations

import pytest

from pybinfit.bins import Bin, BinEdge, Binning
from pybinfit.dials import GraphDial
from pybinfit.events import Event
from pybinfit.parameters import FitParameter
from pybinfit.samples import FitSample
from pybinfit.variables import VariableList


def pytest_addoption(parser):
    """Add command line options for test categories."""
    parser.addoption(
        "--runslow", action="store_true", default=False, help="run slow tests"
    )


def pytest_collection_modifyitems(config, items):
    """Skip tests based on command line options."""
    # Skip slow tests unless --runslow option is given
    if not config.getoption("--runslow"):
        skip_slow = pytest.mark.skip(reason="need --runslow option to run")
        for item in items:
            if "slow" in item.keywords:
                item.add_marker(skip_slow)


@pytest.fixture
def variables() -> VariableList:
    """Variable list shared by the test events."""
    return VariableList(["x", "y"])


@pytest.fixture
def make_event(variables):
    """Factory building an event from its variable values."""

    def _make_event(x: float, y: float = 0.0, **kwargs) -> Event:
        return Event(variables, [x, y], **kwargs)

    return _make_event


@pytest.fixture
def xsec_parameter() -> FitParameter:
    """Parameter doubling the weights at 1.0 through ``doubling_dial``."""
    return FitParameter(name="xsec", value=0.0)


@pytest.fixture
def doubling_dial(xsec_parameter) -> GraphDial:
    """Dial with response 1 at 0.0 and 2 at 1.0."""
    return GraphDial([(0.0, 1.0), (1.0, 2.0)], parameter=xsec_parameter)


@pytest.fixture
def two_bin_samples(make_event, doubling_dial) -> list[FitSample]:
    """
    Two samples with two bins each, one unit-weight reweightable event per bin.

    Sample ``low`` selects ``y < 1``, sample ``high`` selects ``1 <= y < 2``.
    """
    binning = Binning.from_edges({"x": [0.0, 1.0, 2.0]})
    samples = []
    for name, y in (("low", 0.5), ("high", 1.5)):
        sample = FitSample(
            name,
            binning,
            selection=Bin(edges=[BinEdge(variable="y", low=y - 0.5, high=y + 0.5)]),
        )
        events = [make_event(0.5, y), make_event(1.5, y)]
        for event in events:
            event.add_dial("xsec", doubling_dial)
        sample.mc.add_events(events)
        samples.append(sample)
    return samples
