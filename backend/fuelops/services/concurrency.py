# Overview: Locking and retry helpers for concurrent requests against the same rows.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConcurrencyConflict

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    The version_id columns catch what the lock cannot on SQLite.
    """
    return query.with_for_update()


def run_with_retry(session: Session, func, *, attempts: int = 3, backoff_base: float = 0.05):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks), StaleDataError
    (optimistic locking conflicts) and ConcurrencyConflict raised by the
    services themselves. Each retry re-reads current state, so a lost race
    usually resolves into an idempotent replay or a state error.
    When attempts run out the failure surfaces as ConcurrencyConflict.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError, ConcurrencyConflict) as exc:
            session.rollback()
            if attempt >= attempts - 1:
                if isinstance(exc, ConcurrencyConflict):
                    raise
                raise ConcurrencyConflict(
                    "Concurrent update detected; re-fetch and retry",
                    cause=type(exc).__name__,
                ) from exc
            logger.info("Retrying after %s (attempt %d/%d)", type(exc).__name__, attempt + 1, attempts)
            time.sleep(backoff_base * (2 ** attempt))
    raise ConcurrencyConflict("Operation was not attempted")
