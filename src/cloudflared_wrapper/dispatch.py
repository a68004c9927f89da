"""Serialized execution context for supervisor callbacks."""

import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from types import TracebackType
from typing import Any, Literal

from .logging import get_logger

logger = get_logger(__name__)


class ScheduledCall:
    """One-shot delayed submission created by SerialDispatcher.call_later()"""

    def __init__(self, dispatcher: "SerialDispatcher", delay: float, fn: Callable[[], Any]):
        self._timer = threading.Timer(delay, dispatcher.submit, args=(fn,))
        self._timer.daemon = True

    def start(self) -> None:
        self._timer.start()

    def cancel(self) -> None:
        """Cancel the call if it has not been handed to the dispatcher yet"""
        self._timer.cancel()

    @property
    def finished(self) -> bool:
        return self._timer.finished.is_set()


class SerialDispatcher:
    """Runs submitted callables one at a time on a single worker thread.

    Everything submitted here observes a consistent order, which is what the
    supervisor relies on for state changes, completions and notifications.
    Exceptions raised by a callable are logged and do not stop the worker.
    """

    def __init__(self, name: str = "cloudflared-dispatch"):
        self.name = name
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=name)
        self._lock = threading.Lock()
        self._closed = False
        self._worker_ident: int | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    def submit(self, fn: Callable[[], Any]) -> Future[Any] | None:
        """Queue ``fn``. Returns None when the dispatcher is already shut down."""
        with self._lock:
            if self._closed:
                logger.debug("Dispatcher closed, dropping callback", dispatcher=self.name)
                return None
            return self._executor.submit(self._run, fn)

    def call_later(self, delay: float, fn: Callable[[], Any]) -> ScheduledCall:
        """Submit ``fn`` after ``delay`` seconds."""
        call = ScheduledCall(self, delay, fn)
        call.start()
        return call

    def flush(self, timeout: float | None = None) -> bool:
        """Wait until everything submitted so far has run.

        Returns:
            True if the queue drained within ``timeout``
        """
        future = self.submit(lambda: None)
        if future is None:
            return True
        try:
            future.result(timeout=timeout)
        except FutureTimeoutError:
            return False
        return True

    def in_dispatch_thread(self) -> bool:
        """True when called from the dispatcher's worker thread"""
        return threading.get_ident() == self._worker_ident

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work.

        Called from the worker itself, this never waits: the worker cannot
        join its own thread. Already queued callables still run.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
        if wait and self.in_dispatch_thread():
            wait = False
        self._executor.shutdown(wait=wait)

    def _run(self, fn: Callable[[], Any]) -> Any:
        self._worker_ident = threading.get_ident()
        try:
            return fn()
        except Exception as e:
            logger.error(
                "Dispatched callback failed", dispatcher=self.name, error=str(e), exc_info=True
            )
            return None

    def __enter__(self) -> "SerialDispatcher":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> Literal[False]:
        self.shutdown()
        return False
