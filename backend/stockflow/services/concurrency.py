# Overview: Optimistic-lock retry and row locking shared by every stock-writing service.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for stock writes.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the Product.version_id
    check is the only guard.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.1):
    """
    Execute a unit of work, retrying on concurrency conflicts.

    StaleDataError means another writer bumped a Product.version_id between
    our read and our UPDATE (the compare-and-swap lost). The session is
    rolled back so the retry re-reads fresh rows. OperationalError covers
    database lock timeouts and deadlocks. Any other exception rolls back and
    propagates without retry, so a rejected command leaves no partial state.
    """
    if attempts is None:
        attempts = int(current_app.config.get("RETRY_ATTEMPTS", 3))

    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Concurrent stock update detected, retrying (attempt %d/%d): %s",
                attempt + 1,
                attempts,
                exc,
            )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            # Validation and lookup failures abort the whole unit of work
            db.session.rollback()
            raise
    if last_exc:
        raise last_exc
