"""Thread pool implementation; Pillow releases the GIL while resampling and encoding."""

from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Optional

from .common import WorkerPool


class ThreadWorkerPool(WorkerPool):
    """Runs compression attempts on a shared ``ThreadPoolExecutor``."""

    name = "multithread"

    def __init__(self, max_workers: Optional[int] = None):
        super().__init__(max_workers)
        self._executor = ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="image-optimizer"
        )

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        return self._executor.submit(fn, *args, **kwargs)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
