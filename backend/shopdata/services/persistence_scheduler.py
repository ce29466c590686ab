# Overview: Debounced snapshot writes; a burst of mutations yields one write.

from __future__ import annotations

import logging
import threading
from typing import Callable


logger = logging.getLogger(__name__)


class SnapshotScheduler:
    """
    Coalesces save requests into one write after a quiet period.

    request() (re)arms a timer; the write runs on the timer thread.
    flush_now() writes synchronously if anything is pending. A failed write
    is logged and leaves the scheduler dirty so the next cycle retries it.

    Lock order: _write_lock is taken before anything write_func locks.
    request() only touches _state_lock, so it is safe to call while holding
    the store lock.
    """

    def __init__(self, write_func: Callable[[], None], debounce_seconds: float = 0.2):
        self._write_func = write_func
        self.debounce_seconds = debounce_seconds
        self._state_lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._dirty = False
        self._closed = False
        self.write_count = 0
        self.failure_count = 0

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def closed(self) -> bool:
        return self._closed

    def request(self) -> None:
        with self._state_lock:
            self._dirty = True
            if self._closed:
                return
            if self._timer is not None:
                self._timer.cancel()
            timer = threading.Timer(self.debounce_seconds, self._on_timer)
            timer.daemon = True
            self._timer = timer
            timer.start()

    def _cancel_timer(self) -> None:
        with self._state_lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _on_timer(self) -> None:
        with self._state_lock:
            self._timer = None
        self._write()

    def _write(self) -> bool:
        with self._write_lock:
            with self._state_lock:
                if not self._dirty:
                    return True
                self._dirty = False
            try:
                self._write_func()
            except Exception:
                with self._state_lock:
                    self._dirty = True
                self.failure_count += 1
                logger.exception("Snapshot write failed; will retry on next save cycle")
                return False
            self.write_count += 1
            return True

    def flush_now(self) -> bool:
        """Write pending changes synchronously. Returns False if the write failed."""
        self._cancel_timer()
        return self._write()

    def shutdown(self) -> bool:
        """Final flush; later requests only mark the scheduler dirty."""
        with self._state_lock:
            self._closed = True
        return self.flush_now()
