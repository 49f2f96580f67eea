"""Tests for the parallel job scheduler."""

from __future__ import annotations

import logging
import threading

import pytest

from pybinfit.exceptions import (
    JobExecutionError,
    JobRegistrationError,
    PipelineOrderError,
)
from pybinfit.scheduler import ParallelWorker, partition_range


class TestPartitionRange:
    """Test splitting a range across threads."""

    @pytest.mark.parametrize("n_items", [0, 1, 7, 10, 101])
    @pytest.mark.parametrize("n_threads", [1, 2, 3, 8])
    def test_cover_exactly_once(self, n_items, n_threads):
        """Shares are contiguous, disjoint and cover every item."""
        covered = []
        for i_thread in range(n_threads):
            covered.extend(partition_range(n_items, i_thread, n_threads))
        assert covered == list(range(n_items))

    def test_balanced(self):
        """Share sizes differ by at most one item."""
        sizes = {len(partition_range(10, i, 4)) for i in range(4)}
        assert sizes <= {2, 3}

    def test_whole_range(self):
        """Thread index -1 selects every item."""
        assert partition_range(5, -1, 3) == range(5)

    def test_invalid_thread_index(self):
        """Thread indexes outside the pool are rejected."""
        with pytest.raises(ValueError, match="out of range"):
            partition_range(5, 3, 3)


class TestParallelWorker:
    """Test job registration and execution."""

    def test_invalid_thread_count(self):
        """At least one thread is needed."""
        with pytest.raises(ValueError, match="n_threads"):
            ParallelWorker(0)

    def test_add_and_remove_jobs(self):
        """Jobs are registered by unique name and can be removed."""
        worker = ParallelWorker()
        worker.add_job("a", lambda i: None)
        worker.add_job("b", lambda i: None)
        assert worker.job_names == ["a", "b"]
        worker.remove_job("a")
        assert worker.job_names == ["b"]

    def test_duplicate_job(self):
        """Registering a name twice raises."""
        worker = ParallelWorker()
        worker.add_job("a", lambda i: None)
        with pytest.raises(JobRegistrationError, match='"a" is already registered'):
            worker.add_job("a", lambda i: None)

    @pytest.mark.parametrize(
        "action",
        [
            pytest.param(lambda w: w.run_job("missing"), id="run"),
            pytest.param(lambda w: w.remove_job("missing"), id="remove"),
            pytest.param(lambda w: w.set_post_parallel_job("missing", lambda: None), id="post"),
        ],
    )
    def test_unknown_job(self, action):
        """Unknown job names raise JobRegistrationError."""
        with pytest.raises(JobRegistrationError, match="missing"):
            action(ParallelWorker())

    def test_single_thread_runs_inline(self):
        """With one thread the job runs in the caller's thread."""
        seen = []
        worker = ParallelWorker(1)
        worker.add_job("job", lambda i: seen.append((i, threading.get_ident())))
        worker.run_job("job")
        assert seen == [(0, threading.get_ident())]

    def test_every_thread_called_once(self):
        """Every thread index runs exactly once per run."""
        seen = []
        lock = threading.Lock()

        def job(i_thread):
            with lock:
                seen.append(i_thread)

        with ParallelWorker(4) as worker:
            worker.add_job("job", job)
            worker.run_job("job")
            worker.run_job("job")
        assert sorted(seen) == [0, 0, 1, 1, 2, 2, 3, 3]

    def test_post_job_runs_after_threads(self):
        """The post job runs once after every thread finished."""
        done = []
        lock = threading.Lock()

        def job(i_thread):
            with lock:
                done.append(i_thread)

        def post_job():
            assert len(done) == 3
            done.append("post")

        with ParallelWorker(3) as worker:
            worker.add_job("job", job)
            worker.set_post_parallel_job("job", post_job)
            worker.run_job("job")
        assert done[-1] == "post"
        assert done.count("post") == 1

    def test_pool_reused(self):
        """The thread pool is created once and kept until close."""
        with ParallelWorker(2) as worker:
            worker.add_job("job", lambda i: None)
            worker.run_job("job")
            executor = worker._executor
            worker.run_job("job")
            assert worker._executor is executor
        assert worker._executor is None

    @pytest.mark.parametrize("n_threads", [1, 3])
    def test_foreign_exception_wrapped(self, n_threads):
        """Exceptions from outside pybinfit are wrapped and chained."""

        def job(i_thread):
            if i_thread == 0:
                msg = "boom"
                raise RuntimeError(msg)

        with ParallelWorker(n_threads) as worker:
            worker.add_job("job", job)
            with pytest.raises(JobExecutionError, match='"job" failed in thread 0') as excinfo:
                worker.run_job("job")
        assert isinstance(excinfo.value.__cause__, RuntimeError)

    def test_pybinfit_exception_propagates(self):
        """pybinfit exceptions raised by a job propagate unchanged."""

        def job(i_thread):
            msg = "out of order"
            raise PipelineOrderError(msg)

        with ParallelWorker(2) as worker:
            worker.add_job("job", job)
            with pytest.raises(PipelineOrderError, match="out of order"):
                worker.run_job("job")

    def test_failure_skips_post_job(self):
        """The post job does not run when a thread failed."""
        ran = []
        worker = ParallelWorker()
        worker.add_job("job", lambda i: 1 / 0)
        worker.set_post_parallel_job("job", lambda: ran.append(True))
        with pytest.raises(JobExecutionError):
            worker.run_job("job")
        assert ran == []

    def test_time_stats_logged(self, caplog):
        """Job durations are logged at debug level when enabled."""
        worker = ParallelWorker(show_time_stats=True)
        worker.add_job("timed", lambda i: None)
        with caplog.at_level(logging.DEBUG, logger="pybinfit"):
            worker.run_job("timed")
        assert "timed took" in caplog.text
