# Overview: Row locking and retry helpers for the storage side of lease returns and transfers.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


# Concurrency failures worth retrying from a clean session
RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Lock the selected rows until the transaction ends.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the version_id
    check on flush is what catches a concurrent writer.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run a unit of DB work, retrying on lock/deadlock errors and optimistic
    version conflicts. The session is rolled back before each retry, so
    `func` must re-read everything it depends on.

    Business errors (ValidationError, InvalidStateError) are not retried.
    """
    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Concurrent update detected (%s), retry %d/%d",
                type(exc).__name__,
                attempt + 1,
                attempts - 1,
            )
            time.sleep(backoff_base * (2 ** attempt))

