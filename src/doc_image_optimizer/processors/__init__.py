"""Worker pools with different concurrency strategies."""

from .common import WorkerPool, create_worker_pool, default_worker_count
from .multiprocess import ProcessWorkerPool
from .multithread import ThreadWorkerPool
from .serial import SerialWorkerPool

__all__ = [
    "WorkerPool",
    "create_worker_pool",
    "default_worker_count",
    "ThreadWorkerPool",
    "ProcessWorkerPool",
    "SerialWorkerPool",
]
