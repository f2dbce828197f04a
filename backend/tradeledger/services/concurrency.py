# Overview: Transaction boundary helpers; row locking and bounded retry for every write operation.

from __future__ import annotations

import logging
import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConcurrentModification
from ..extensions import db


logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the version_id
    columns turn a lost race into StaleDataError at flush time.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute one unit of work as a single transaction.

    - Any exception rolls the session back, so a failed operation never
      leaves a half-applied ledger entry, aggregate update or document
      transition behind.
    - OperationalError (deadlocks, lock timeouts) and StaleDataError
      (optimistic locking conflicts) are retried with exponential backoff;
      after the last attempt they surface as ConcurrentModification.
    """
    if attempts is None:
        attempts = int(current_app.config.get("TRANSACTION_RETRY_ATTEMPTS", 3))
    if backoff_base is None:
        backoff_base = float(current_app.config.get("TRANSACTION_RETRY_BACKOFF", 0.05))
    attempts = max(1, attempts)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                logger.warning("Giving up after %s attempts: %s", attempts, exc)
                raise ConcurrentModification(attempts) from exc
            logger.warning("Concurrent write conflict (attempt %s/%s): %s", attempt + 1, attempts, exc)
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
