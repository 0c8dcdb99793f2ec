"""
Task dispatchers for the deck's network calls.

The deck never blocks a gesture on the network: page loads and feedback
calls are submitted here and report back through callbacks.

- TaskDispatcher: ThreadPoolExecutor-backed, for real use
- InlineDispatcher: runs the task immediately on the caller's thread
- DeferredDispatcher: queues tasks until run_pending(), so tests can
  interleave completions with swipes
"""

from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from threading import Lock
from typing import Any, Callable, Deque, Optional, Protocol, Tuple

from core.logging import get_logger


logger = get_logger(__name__)

SuccessCallback = Callable[[Any], None]
ErrorCallback = Callable[[BaseException], None]


class Dispatcher(Protocol):
    def submit(
        self,
        fn: Callable[..., Any],
        *args: Any,
        on_success: Optional[SuccessCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        ...

    def shutdown(self) -> None:
        ...


def _run(fn, args, on_success, on_error):
    try:
        result = fn(*args)
    except Exception as e:
        if on_error is not None:
            on_error(e)
        else:
            logger.error("Dispatched task failed", task=getattr(fn, "__name__", repr(fn)), error=str(e))
        return
    if on_success is not None:
        on_success(result)


class TaskDispatcher:
    """Runs tasks on a small thread pool."""

    def __init__(self, max_workers: int = 4):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="giftdeck")
        self._closed = False

    def submit(self, fn, *args, on_success=None, on_error=None) -> None:
        if self._closed:
            logger.debug("Dispatcher closed, task dropped", task=getattr(fn, "__name__", repr(fn)))
            return
        future: Future = self._executor.submit(_run, fn, args, on_success, on_error)
        future.add_done_callback(self._log_crash)

    @staticmethod
    def _log_crash(future: Future) -> None:
        exc = future.exception()
        if exc is not None:
            logger.error("Dispatcher callback raised", error=str(exc), error_type=type(exc).__name__)

    def shutdown(self, wait: bool = True) -> None:
        self._closed = True
        self._executor.shutdown(wait=wait)


class InlineDispatcher:
    """Runs each task synchronously inside submit()."""

    def submit(self, fn, *args, on_success=None, on_error=None) -> None:
        _run(fn, args, on_success, on_error)

    def shutdown(self) -> None:
        pass


class DeferredDispatcher:
    """Queues tasks; run_pending() executes them in submission order."""

    def __init__(self):
        self._queue: Deque[Tuple[Callable, tuple, Optional[SuccessCallback], Optional[ErrorCallback]]] = deque()
        self._lock = Lock()

    def submit(self, fn, *args, on_success=None, on_error=None) -> None:
        with self._lock:
            self._queue.append((fn, args, on_success, on_error))

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._queue)

    def run_pending(self) -> int:
        """Run queued tasks (including ones queued while running). Returns the count."""
        ran = 0
        while True:
            with self._lock:
                if not self._queue:
                    return ran
                fn, args, on_success, on_error = self._queue.popleft()
            _run(fn, args, on_success, on_error)
            ran += 1

    def shutdown(self) -> None:
        with self._lock:
            self._queue.clear()
