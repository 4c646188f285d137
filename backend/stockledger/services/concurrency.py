# Overview: Transaction helpers shared by every ledger operation.

from __future__ import annotations

import logging
import time

from flask import current_app, has_app_context
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Balance writes are additionally guarded in their UPDATE ... WHERE clause.
    """
    return query.with_for_update()


def _retry_settings() -> tuple[int, float]:
    if has_app_context():
        return (
            int(current_app.config.get("LEDGER_RETRY_ATTEMPTS", 3)),
            float(current_app.config.get("LEDGER_RETRY_BACKOFF", 0.1)),
        )
    return 3, 0.1


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Any other exception rolls the session
    back and propagates unchanged.
    """
    default_attempts, default_backoff = _retry_settings()
    attempts = attempts or default_attempts
    backoff_base = default_backoff if backoff_base is None else backoff_base

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            logger.warning("retrying after concurrency failure (attempt %s): %s", attempt + 1, exc)
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise


def run_in_transaction(func, *, commit: bool = True):
    """
    Run one ledger operation as one database transaction.

    commit=True: the operation owns the transaction; it is committed on
    success and fully rolled back (then retried if the failure was a lock
    conflict) otherwise.
    commit=False: the caller owns the transaction; work is flushed and any
    error propagates for the caller to roll back.
    """
    if not commit:
        result = func()
        db.session.flush()
        return result

    def _op():
        result = func()
        db.session.commit()
        return result

    return run_with_retry(_op)


def commit_with_retry(*, attempts: int | None = None, backoff_base: float | None = None):
    """Commit current session with retry handling."""
    def _op():
        db.session.commit()
    return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base)


def insert_ignoring_conflict(model, values: dict, conflict_columns: list[str]) -> bool:
    """
    INSERT a row unless the unique key in conflict_columns already exists.
    Returns True if this call inserted it.

    The uniqueness check is delegated to the database so two concurrent
    find-or-create calls can never both insert. Callers re-read afterwards.
    """
    dialect = db.session.get_bind().dialect.name
    table = model.__table__

    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as pg_insert
        stmt = pg_insert(table).values(**values).on_conflict_do_nothing(index_elements=conflict_columns)
        return db.session.execute(stmt).rowcount == 1

    if dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as sqlite_insert
        stmt = sqlite_insert(table).values(**values).on_conflict_do_nothing(index_elements=conflict_columns)
        return db.session.execute(stmt).rowcount == 1

    # Other backends: SAVEPOINT so a losing insert does not abort the caller's transaction
    try:
        with db.session.begin_nested():
            db.session.execute(table.insert().values(**values))
    except IntegrityError:
        logger.debug("insert into %s lost a uniqueness race; re-reading", table.name)
        return False
    return True
