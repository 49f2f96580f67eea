"""
Parallel job scheduler.

Provides :class:`ParallelWorker`, a registry of named, repeatable,
data-parallel jobs run on a thread pool that lives as long as the worker.
"""

from __future__ import annotations

import concurrent.futures
import logging
import time
from collections.abc import Callable
from types import TracebackType

from pybinfit.exceptions import (
    JobExecutionError,
    JobRegistrationError,
    PyBinFitException,
)

log = logging.getLogger(__name__)

ThreadJob = Callable[[int], None]
PostJob = Callable[[], None]


def partition_range(n_items: int, i_thread: int, n_threads: int) -> range:
    """
    Contiguous share of ``range(n_items)`` handled by one thread.

    Shares differ in size by at most one item and cover the range exactly once.

    Args:
        n_items: Number of items to split.
        i_thread: Index of the thread, or -1 for the whole range.
        n_threads: Number of threads sharing the range.

    Examples:
        >>> partition_range(10, 0, 3)
        range(0, 3)
        >>> partition_range(10, 2, 3)
        range(6, 10)
        >>> partition_range(10, -1, 3)
        range(0, 10)
    """
    if i_thread == -1:
        return range(n_items)
    if not 0 <= i_thread < n_threads:
        msg = f"Thread index {i_thread} out of range for {n_threads} threads"
        raise ValueError(msg)
    return range(n_items * i_thread // n_threads, n_items * (i_thread + 1) // n_threads)


class ParallelWorker:
    """
    Named job registry running each job on a fixed-size thread pool.

    A job is a callable taking the thread index; it is called once per thread
    and is expected to only touch its own share of the data (see
    :func:`partition_range`). An optional post job runs serially once every
    thread has finished. The pool is created on the first parallel run and
    reused until :meth:`close`.

    Examples:
        >>> totals = [0] * 2
        >>> def job(i_thread):
        ...     totals[i_thread] = sum(partition_range(10, i_thread, 2))
        >>> with ParallelWorker(n_threads=2) as worker:
        ...     worker.add_job("sum", job)
        ...     worker.run_job("sum")
        >>> sum(totals)
        45
    """

    def __init__(self, n_threads: int = 1, *, show_time_stats: bool = False) -> None:
        """
        Args:
            n_threads: Number of threads each job is split across. With a
                single thread, jobs run inline in the caller's thread.
            show_time_stats: Log the duration of every job run at DEBUG level.
        """
        if n_threads < 1:
            msg = f"n_threads must be >= 1, got {n_threads}"
            raise ValueError(msg)
        self.n_threads = n_threads
        self.show_time_stats = show_time_stats
        self._jobs: dict[str, ThreadJob] = {}
        self._post_jobs: dict[str, PostJob] = {}
        self._executor: concurrent.futures.ThreadPoolExecutor | None = None

    @property
    def job_names(self) -> list[str]:
        """Registered job names, in registration order."""
        return list(self._jobs)

    def add_job(self, name: str, job: ThreadJob) -> None:
        """Register a per-thread job under a unique name."""
        if name in self._jobs:
            msg = f'Job "{name}" is already registered.'
            raise JobRegistrationError(msg)
        self._jobs[name] = job

    def set_post_parallel_job(self, name: str, job: PostJob) -> None:
        """Attach the serial step run after every thread of ``name`` finished."""
        if name not in self._jobs:
            msg = f'Can\'t set a post job on "{name}": no such job. Registered jobs: {self.job_names}'
            raise JobRegistrationError(msg)
        self._post_jobs[name] = job

    def remove_job(self, name: str) -> None:
        """Forget a job and its post job."""
        if name not in self._jobs:
            msg = f'Can\'t remove "{name}": no such job.'
            raise JobRegistrationError(msg)
        del self._jobs[name]
        self._post_jobs.pop(name, None)

    def run_job(self, name: str) -> None:
        """
        Run a job on every thread, wait for all of them, then run its post job.

        Errors raised by pybinfit itself are re-raised unchanged; any other
        exception is wrapped in :class:`JobExecutionError`. Either way the
        error is raised only once every thread has settled.
        """
        try:
            job = self._jobs[name]
        except KeyError:
            msg = f'Can\'t run "{name}": no such job. Registered jobs: {self.job_names}'
            raise JobRegistrationError(msg) from None

        start = time.perf_counter()

        if self.n_threads == 1:
            self._call(name, job, 0)
        else:
            executor = self._get_executor()
            futures = [executor.submit(self._call, name, job, i_thread) for i_thread in range(self.n_threads)]
            concurrent.futures.wait(futures)
            for future in futures:
                exc = future.exception()
                if exc is not None:
                    raise exc

        post_job = self._post_jobs.get(name)
        if post_job is not None:
            post_job()

        if self.show_time_stats:
            log.debug("%s took: %.3f ms", name, 1e3 * (time.perf_counter() - start))

    @staticmethod
    def _call(name: str, job: ThreadJob, i_thread: int) -> None:
        try:
            job(i_thread)
        except PyBinFitException:
            raise
        except Exception as exc:
            msg = f'Job "{name}" failed in thread {i_thread}: {exc!r}'
            raise JobExecutionError(msg) from exc

    def _get_executor(self) -> concurrent.futures.ThreadPoolExecutor:
        if self._executor is None:
            log.info("Starting thread pool with %d threads", self.n_threads)
            self._executor = concurrent.futures.ThreadPoolExecutor(
                max_workers=self.n_threads, thread_name_prefix="pybinfit"
            )
        return self._executor

    def close(self) -> None:
        """Shut the thread pool down. Jobs stay registered."""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self) -> ParallelWorker:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"ParallelWorker(n_threads={self.n_threads}, jobs={self.job_names})"
