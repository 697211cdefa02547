"""Worker pool abstraction shared by every batch job in the process."""

import os
from abc import ABC, abstractmethod
from concurrent.futures import Future
from typing import Any, Callable, Optional


def default_worker_count() -> int:
    """Compression is CPU-bound, so size pools to the available cores."""
    return max(1, os.cpu_count() or 1)


class WorkerPool(ABC):
    """
    A bounded pool that runs compression attempts.

    One pool is created at process bootstrap and injected into the
    coordinator; concurrent batch jobs submit to the same pool.
    """

    name = "pool"

    def __init__(self, max_workers: Optional[int] = None):
        self.max_workers = max_workers or default_worker_count()

    @abstractmethod
    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        """Schedule ``fn(*args, **kwargs)`` and return its future."""

    @abstractmethod
    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work and release the workers."""

    def __enter__(self) -> "WorkerPool":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.shutdown(wait=True)
        return False


def create_worker_pool(kind: str = "multithread", max_workers: Optional[int] = None) -> WorkerPool:
    """
    Create a worker pool by strategy name.

    Args:
        kind: "multithread", "multiprocess" or "serial"
        max_workers: Pool size, defaults to the CPU count

    Raises:
        ValueError: If ``kind`` is unknown
    """
    from .multiprocess import ProcessWorkerPool
    from .multithread import ThreadWorkerPool
    from .serial import SerialWorkerPool

    pools = {
        "multithread": ThreadWorkerPool,
        "multiprocess": ProcessWorkerPool,
        "serial": SerialWorkerPool,
    }
    try:
        pool_cls = pools[kind]
    except KeyError:
        raise ValueError(f"Unknown worker pool: {kind}") from None
    return pool_cls(max_workers=max_workers)
