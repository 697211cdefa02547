"""Serial implementation - runs each attempt inline in the calling thread."""

from concurrent.futures import Future
from typing import Any, Callable

from .common import WorkerPool


class SerialWorkerPool(WorkerPool):
    """
    Executes work immediately and returns an already resolved future.

    Deadlines cannot interrupt inline work, so a slow attempt is only
    detected after it returns. Intended for tests and single-image tools.
    """

    name = "serial"

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:  # noqa: BLE001
            future.set_exception(e)
        return future

    def shutdown(self, wait: bool = True) -> None:
        return None
