"""
pybinfit: binned likelihood core for reweighted event samples
"""

from __future__ import annotations

from pybinfit._version import version as __version__
from pybinfit.bins import Bin, BinEdge, Binning
from pybinfit.dials import Dial, DialType, GraphDial, NormDial
from pybinfit.events import Event
from pybinfit.loader import DataSetLoader, DataSetLoaders
from pybinfit.parameters import FitParameter, FitParameterSet, FitParameterSets
from pybinfit.sample_set import DataEventType, FitSampleSet, SampleSetConfig
from pybinfit.samples import ErrorModel, EventContainer, FitSample
from pybinfit.scheduler import ParallelWorker
from pybinfit.variables import VariableList

__all__ = [
    "Bin",
    "BinEdge",
    "Binning",
    "DataEventType",
    "DataSetLoader",
    "DataSetLoaders",
    "Dial",
    "DialType",
    "ErrorModel",
    "Event",
    "EventContainer",
    "FitParameter",
    "FitParameterSet",
    "FitParameterSets",
    "FitSample",
    "FitSampleSet",
    "GraphDial",
    "NormDial",
    "ParallelWorker",
    "SampleSetConfig",
    "VariableList",
    "__version__",
]
