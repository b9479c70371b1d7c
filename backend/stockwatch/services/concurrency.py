# Overview: Retry helper for ledger writes that lose a concurrency race.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from .ledger_store import StoreError, get_store


def _is_retryable(exc: Exception) -> bool:
    if isinstance(exc, (OperationalError, StaleDataError)):
        return True
    return isinstance(exc, StoreError) and exc.retryable


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks), StaleDataError
    (optimistic locking conflicts on version_id) and StoreErrors the ledger
    store marked as retryable. Anything else propagates on the first failure.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError, StoreError) as exc:
            if not _is_retryable(exc):
                raise
            get_store().rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
