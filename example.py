#!/usr/bin/env python3
"""
Example usage of pybinfit: likelihood scan of one systematic parameter.

This script demonstrates:
1. Building samples from a configuration mapping
2. Loading in-memory column arrays with a dial builder
3. Fitting Asimov data built from the nominal MC
4. Scanning the likelihood single- and multi-threaded
"""

import logging
import time
from contextlib import contextmanager

import numpy as np

import pybinfit.logging
from pybinfit import (
    Bin,
    BinEdge,
    DataSetLoader,
    DataSetLoaders,
    FitParameter,
    FitSampleSet,
    GraphDial,
    ParallelWorker,
)

log = logging.getLogger("pybinfit.example")


@contextmanager
def time_block(label):
    start = time.perf_counter()
    yield
    end = time.perf_counter()
    log.info("%s: %.4f seconds", label, end - start)


def make_columns(n_events, seed=0):
    rng = np.random.default_rng(seed)
    return {
        "D1Reco": rng.exponential(1.0, n_events),
        "D2Reco": rng.uniform(-1.0, 1.0, n_events),
        "topology": rng.integers(0, 2, n_events).astype(float),
        "weight": rng.uniform(0.8, 1.2, n_events),
    }


def build(n_threads, parameter):
    config = {
        "data_event_type": "Asimov",
        "likelihood": "PoissonLLH",
        "samples": [
            {
                "name": "CC0pi",
                "selection": {"edges": [{"variable": "topology", "low": 0, "high": 1}]},
                "binning_edges": {"D1Reco": [0.0, 0.5, 1.0, 2.0, 5.0], "D2Reco": [-1.0, 0.0, 1.0]},
            },
            {
                "name": "CC1pi",
                "selection": {"edges": [{"variable": "topology", "low": 1, "high": 2}]},
                "binning_edges": {"D1Reco": [0.0, 1.0, 5.0]},
            },
        ],
    }
    sample_set = FitSampleSet.from_config(config, worker=ParallelWorker(n_threads))
    sample_set.initialize()

    # low-energy events only
    dial = GraphDial(
        [(-1.0, 0.7), (0.0, 1.0), (1.0, 1.4)],
        parameter=parameter,
        apply_condition_bin=Bin(edges=[BinEdge(variable="D1Reco", low=0.0, high=1.0)]),
    )
    loader = DataSetLoader(
        {"name": "nd280", "weight_variable": "weight"},
        make_columns(200_000),
        dial_builder=lambda event: [("xsec", dial)],
    )
    DataSetLoaders([loader]).load(sample_set)
    return sample_set


def main():
    pybinfit.logging.setup()
    for n_threads in (1, 4):
        parameter = FitParameter(name="low_energy_xsec", value=0.0, min=-1.0, max=1.0)
        with time_block(f"Loading ({n_threads} threads)"):
            sample_set = build(n_threads, parameter)
        with time_block(f"Scan ({n_threads} threads)"):
            for value in np.linspace(-1.0, 1.0, 9):
                parameter.value = float(value)
                log.info("%+.2f -> %.3f", value, sample_set.evaluate_likelihood())
        sample_set.close()


if __name__ == "__main__":
    main()
