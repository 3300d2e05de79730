# Overview: Retry and transaction helpers shared by the mutating services.

from __future__ import annotations

import time
from contextlib import contextmanager

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError


def run_with_retry(func, *, session, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a unit of work with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, "database is locked") and
    StaleDataError (Sale.version_id conflicts). `func` must be safe to
    re-run from scratch: everything it wrote is rolled back first.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError):
            session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))


@contextmanager
def unit_of_work(session):
    """
    Commit on success, roll back and re-raise on any failure.

    Nothing written inside the block is visible to other sessions unless
    the whole block succeeds.
    """
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
