# Overview: Row locking and optimistic-retry helpers shared by balance-affecting services.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from .ledger_service import ConcurrentModification


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    The version_id_col on every balance-bearing row still catches a
    concurrent writer at flush time on SQLite.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks), StaleDataError
    (version_id conflicts) and ConcurrentModification (stale balance
    snapshot). func must re-read all state it depends on, so every attempt
    starts fresh. Any other exception rolls the session back and propagates
    unchanged. Once attempts are exhausted the failure surfaces as
    ConcurrentModification.
    """
    if attempts is None:
        attempts = current_app.config.get("LEDGER_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("LEDGER_RETRY_BACKOFF_SECONDS", 0.05)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError, ConcurrentModification) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                if isinstance(exc, ConcurrentModification):
                    raise
                raise ConcurrentModification(
                    "Concurrent update detected, retry with fresh state",
                    attempts=attempts,
                ) from exc
            current_app.logger.warning(
                "Concurrent ledger write, retrying (attempt %s of %s): %s",
                attempt + 1, attempts, exc.__class__.__name__,
            )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
