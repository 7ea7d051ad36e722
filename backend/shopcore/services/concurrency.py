# Overview: Locking, write-transaction and retry helpers shared by the services.

from __future__ import annotations

import logging
import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write() covers it there.
    """
    return query.with_for_update()


def begin_write() -> None:
    """
    Open the current session transaction as a write transaction.

    On SQLite this issues BEGIN IMMEDIATE so the database write lock is taken
    up front: concurrent checkouts queue on the lock (busy timeout) instead of
    deadlocking on a SHARED -> RESERVED upgrade. Other engines rely on
    row locks from lock_for_update() and the conditional UPDATEs.
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def _retry_policy() -> tuple[int, float]:
    return (
        int(current_app.config.get("DB_RETRY_ATTEMPTS", 3)),
        float(current_app.config.get("DB_RETRY_BACKOFF_SECONDS", 0.1)),
    )


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (locks, busy database) and StaleDataError
    (optimistic locking conflicts). Domain errors are rolled back and
    re-raised immediately; the whole operation is re-run from a fresh read,
    so state-machine checks are re-evaluated on every attempt.
    """
    default_attempts, default_backoff = _retry_policy()
    attempts = attempts or default_attempts
    backoff_base = default_backoff if backoff_base is None else backoff_base

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                logger.error("Giving up after %d attempts: %s", attempts, exc)
                raise
            logger.warning(
                "Concurrent modification detected (attempt %d/%d): %s",
                attempt + 1, attempts, exc.__class__.__name__,
            )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
