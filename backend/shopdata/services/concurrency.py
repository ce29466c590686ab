# Overview: Locking and retry helpers shared by the store and snapshot writers.

from __future__ import annotations

import functools
import logging
import time

from sqlalchemy.exc import OperationalError


logger = logging.getLogger(__name__)

# Failures worth another attempt: filesystem hiccups and database locks
RETRYABLE_ERRORS = (OSError, OperationalError)


def synchronized(method):
    """
    Run a method while holding the instance's re-entrant `_lock`.

    Re-entrant so a mutation may call other mutations (and listeners may call
    back into the store) without deadlocking.
    """
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)
    return wrapper


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1, on_retry=None):
    """
    Execute a write with retry on transient failures.

    Retries on OSError (file backend) and OperationalError (database locks),
    sleeping backoff_base * 2**attempt between tries. on_retry, if given, is
    called after each failed attempt (e.g. to roll back a session).
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            if on_retry is not None:
                on_retry()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            logger.warning("Snapshot write failed (attempt %d/%d): %s", attempt + 1, attempts, exc)
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
