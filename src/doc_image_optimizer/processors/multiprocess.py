"""Process pool implementation for full CPU parallelism."""

from concurrent.futures import Future, ProcessPoolExecutor
from typing import Any, Callable, Optional

from ..core.logging_config import configure_multiprocessing_logging
from .common import WorkerPool


class ProcessWorkerPool(WorkerPool):
    """
    Runs compression attempts in worker processes.

    Submitted callables and their arguments must be picklable; the
    compressor, profile and raw bytes all are.
    """

    name = "multiprocess"

    def __init__(self, max_workers: Optional[int] = None):
        super().__init__(max_workers)
        self._executor = ProcessPoolExecutor(
            max_workers=self.max_workers,
            initializer=configure_multiprocessing_logging,
        )

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        return self._executor.submit(fn, *args, **kwargs)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
