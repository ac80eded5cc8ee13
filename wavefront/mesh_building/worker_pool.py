"""
Worker Pool

Long-lived pool of build workers with an explicit lifecycle. Created and
owned by the coordinator (or injected into it), reused across batches.

Two modes:
- "process": separate worker processes (true parallelism). Requests and
  results cross the boundary by pickling, i.e. by value.
- "thread": worker threads in this process. Numba kernels release the GIL,
  the pure-Python parts do not.

Workers in either mode run the serial numba batch kernels; the pool itself
is the parallelism. A process pool broken by a crashed worker is replaced
with a fresh one (see restart), so one crash fails only the requests that
were running on it.
"""

import logging
import os
from concurrent.futures import Executor, Future, ProcessPoolExecutor, ThreadPoolExecutor, wait
from concurrent.futures.process import BrokenProcessPool
from concurrent.futures.thread import BrokenThreadPool
from typing import Callable, Optional

from ..constants import MAX_WORKERS
from ..utils import clamp, use_serial_kernels

logger = logging.getLogger(__name__)

WORKER_MODES = ("process", "thread")

# Raised by an executor whose workers died or failed to start
BROKEN_POOL_ERRORS = (BrokenProcessPool, BrokenThreadPool)


class WorkerPoolError(RuntimeError):
    """The worker pool could not be started or is not running."""


def recommended_worker_count(max_workers: int = MAX_WORKERS) -> int:
    """Hardware threads minus one (leave a core for the caller), capped at max_workers."""
    cpus = os.cpu_count() or 2
    return int(clamp(cpus - 1, 1, max(1, max_workers)))


def _worker_ready() -> int:
    """Ready-check run on each worker slot."""
    return os.getpid()


class WorkerPool:
    """
    Fixed-size pool of build workers.

    Example:
        pool = WorkerPool(worker_count=2, mode="thread")
        pool.initialize()
        future = pool.submit(fn, arg)
        ...
        pool.terminate()
    """

    def __init__(
        self,
        worker_count: Optional[int] = None,
        mode: str = "process",
        label: str = "mesh-build",
        init_timeout_s: float = 5.0,
    ):
        if mode not in WORKER_MODES:
            raise ValueError(f"Unknown worker mode '{mode}'. Available: {', '.join(WORKER_MODES)}")
        if worker_count is not None and worker_count < 1:
            raise ValueError(f"worker_count must be at least 1, got {worker_count}")

        self.worker_count = worker_count or recommended_worker_count()
        self.mode = mode
        self.label = label
        self.init_timeout_s = init_timeout_s
        # Bumped on every successful initialize; futures from an older
        # generation belong to a replaced executor
        self.generation = 0
        self._executor: Optional[Executor] = None

    @property
    def is_initialized(self) -> bool:
        return self._executor is not None

    def _create_executor(self) -> Executor:
        if self.mode == "process":
            return ProcessPoolExecutor(max_workers=self.worker_count, initializer=use_serial_kernels)
        return ThreadPoolExecutor(
            max_workers=self.worker_count,
            thread_name_prefix=self.label,
            initializer=use_serial_kernels,
        )

    def initialize(self) -> None:
        """
        Start the workers and wait for every slot to report ready.

        Raises:
            WorkerPoolError: If the executor cannot be created or a worker
                fails its ready-check within init_timeout_s
        """
        if self._executor is not None:
            return

        try:
            executor = self._create_executor()
        except Exception as e:
            raise WorkerPoolError(f"Failed to create {self.mode} pool '{self.label}': {e}") from e

        try:
            futures = [executor.submit(_worker_ready) for _ in range(self.worker_count)]
            done, not_done = wait(futures, timeout=self.init_timeout_s)
            if not_done:
                raise WorkerPoolError(
                    f"{len(not_done)} of {self.worker_count} workers not ready "
                    f"after {self.init_timeout_s:.1f}s"
                )
            for f in done:
                f.result()
        except WorkerPoolError:
            executor.shutdown(wait=False, cancel_futures=True)
            raise
        except Exception as e:
            executor.shutdown(wait=False, cancel_futures=True)
            raise WorkerPoolError(f"Worker ready-check failed in pool '{self.label}': {e}") from e

        self._executor = executor
        self.generation += 1
        logger.info(f"Worker pool '{self.label}' ready: {self.worker_count} {self.mode} workers")

    def restart(self) -> None:
        """
        Replace the executor with a fresh one.

        Raises:
            WorkerPoolError: If the new workers cannot be started
        """
        logger.warning(f"Worker pool '{self.label}' restarting after a worker failure")
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
        self.initialize()

    def submit(self, fn: Callable, *args) -> Future:
        """Queue fn(*args) on the pool, restarting it once if it is broken."""
        if self._executor is None:
            raise WorkerPoolError(f"Worker pool '{self.label}' is not initialized")
        try:
            return self._executor.submit(fn, *args)
        except BROKEN_POOL_ERRORS:
            self.restart()
        except RuntimeError as e:
            # Executor already shut down
            raise WorkerPoolError(f"Worker pool '{self.label}' cannot accept work: {e}") from e

        try:
            return self._executor.submit(fn, *args)
        except RuntimeError as e:
            raise WorkerPoolError(f"Worker pool '{self.label}' cannot accept work: {e}") from e

    def terminate(self) -> None:
        """Cancel queued work and shut the workers down. Safe to call twice."""
        if self._executor is None:
            return
        self._executor.shutdown(wait=False, cancel_futures=True)
        self._executor = None
        logger.info(f"Worker pool '{self.label}' terminated")

    def __enter__(self) -> 'WorkerPool':
        self.initialize()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.terminate()
        return False
