"""Concurrency helpers shared by the ledger, pick-task and dispatch services.

Three mechanisms keep concurrent writers correct on PostgreSQL and SQLite:

* Counters and assignments change through guarded ``UPDATE ... WHERE``
  statements that carry their own precondition; a zero rowcount means the
  precondition no longer holds.
* Orders and pick tasks carry a version column, so a status change computed
  from a stale read fails its flush instead of overwriting a newer one.
* Rows read before a change are also locked with ``SELECT ... FOR UPDATE``.
  PostgreSQL honours the lock and gets a per-transaction ``lock_timeout``;
  SQLite ignores it, and its database-level write lock times out with
  "database is locked".

Lock timeouts and version conflicts both surface as ``Busy``.
"""

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from grocery.core.config import settings
from grocery.core.errors import Busy

logger = logging.getLogger(__name__)

# lock_not_available, query_canceled (statement_timeout), deadlock_detected
_RETRYABLE_PG_CODES = {"55P03", "57014", "40P01"}


def apply_lock_timeout(db: Session, timeout_ms: int | None = None) -> None:
    """Bound lock waits for the rest of the current transaction."""
    if db.get_bind().dialect.name != "postgresql":
        return
    ms = int(timeout_ms or settings.lock_timeout_ms)
    db.execute(text(f"SET LOCAL lock_timeout = '{ms}ms'"))


def _is_lock_contention(exc: OperationalError) -> bool:
    code = getattr(exc.orig, "pgcode", None) or getattr(exc.orig, "sqlstate", None)
    if code in _RETRYABLE_PG_CODES:
        return True
    return "database is locked" in str(exc.orig).lower()


@contextmanager
def busy_on_lock_timeout(db: Session) -> Iterator[None]:
    """Roll back and raise ``Busy`` on a lock timeout or a lost version race."""
    try:
        yield
    except OperationalError as exc:
        if not _is_lock_contention(exc):
            raise
        db.rollback()
        logger.warning("Lock contention, transaction rolled back: %s", exc.orig)
        raise Busy() from exc
    except StaleDataError as exc:
        db.rollback()
        logger.warning("Row changed concurrently, transaction rolled back: %s", exc)
        raise Busy() from exc
