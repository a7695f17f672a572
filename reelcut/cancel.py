"""Cooperative cancellation handle passed through every blocking call."""

import threading
from contextlib import contextmanager
from typing import Callable, Iterator

from reelcut.errors import ExportCancelled


class CancelToken:
    """A one-shot cancellation flag with callbacks.

    Callbacks registered through :meth:`on_cancel` run on the thread that calls
    :meth:`cancel`, which is how a running ffmpeg process gets terminated from
    outside the pipeline thread.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks)
        for cb in callbacks:
            cb()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ExportCancelled("Export cancelled")

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)

    @contextmanager
    def on_cancel(self, callback: Callable[[], None]) -> Iterator[None]:
        """Run *callback* if cancellation happens while the block is active.

        If the token is already cancelled the callback runs immediately.
        """
        with self._lock:
            already = self._event.is_set()
            if not already:
                self._callbacks.append(callback)
        if already:
            callback()
        try:
            yield
        finally:
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)
