"""
Background task schedulers for discovery passes.

``ThreadScheduler`` runs tasks on a supervised worker thread;
``ImmediateScheduler`` runs them inline so tests are deterministic.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, List, Optional

from .logger import get_logger


class Scheduler:
    def submit(self, task: Callable[[], None], name: str = "task") -> Optional[Future]:
        raise NotImplementedError

    def shutdown(self, wait: bool = True) -> None:
        pass


class ThreadScheduler(Scheduler):
    """
    Runs background work on a single worker thread.

    The worker is not a daemon: at interpreter exit a pass already running
    is allowed to finish, so its result still reaches the cache.

    Failures are logged through a done-callback; nothing propagates to the
    code that scheduled the task.
    """

    def __init__(self, logger=None):
        self.logger = logger or get_logger()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="serverscout-bg")
        self._lock = threading.Lock()
        self._pending: List[Future] = []
        self._closed = False

    def submit(self, task: Callable[[], None], name: str = "task") -> Optional[Future]:
        with self._lock:
            if self._closed:
                self.logger.warning("Scheduler closed, dropping task", task=name)
                return None
            future = self._executor.submit(task)
            self._pending.append(future)
        future.add_done_callback(lambda f: self._on_done(f, name))
        return future

    def _on_done(self, future: Future, name: str) -> None:
        with self._lock:
            if future in self._pending:
                self._pending.remove(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            self.logger.error("Background task failed", task=name, error=f"{type(exc).__name__}: {exc}")

    def wait_idle(self, timeout: Optional[float] = None) -> None:
        """Block until every task submitted so far has finished."""
        with self._lock:
            pending = list(self._pending)
        for future in pending:
            try:
                future.result(timeout=timeout)
            except Exception:
                # Already reported by _on_done
                continue

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=wait, cancel_futures=not wait)


class ImmediateScheduler(Scheduler):
    """Runs each task synchronously at submit time."""

    def __init__(self, logger=None):
        self.logger = logger or get_logger()
        self.submitted: List[str] = []

    def submit(self, task: Callable[[], None], name: str = "task") -> Optional[Future]:
        self.submitted.append(name)
        future: Future = Future()
        try:
            task()
        except Exception as e:
            self.logger.error("Background task failed", task=name, error=f"{type(e).__name__}: {e}")
            future.set_exception(e)
        else:
            future.set_result(None)
        return future


class ManualScheduler(Scheduler):
    """Queues tasks until ``run_pending()``; lets tests interleave events with a pass."""

    def __init__(self):
        self.queue: List[tuple] = []

    def submit(self, task: Callable[[], None], name: str = "task") -> Optional[Future]:
        self.queue.append((name, task))
        return None

    def run_pending(self) -> int:
        ran = 0
        while self.queue:
            _, task = self.queue.pop(0)
            task()
            ran += 1
        return ran
