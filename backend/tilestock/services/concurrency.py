# Overview: Service-layer operations for concurrency; encapsulates business logic and database work.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import PersistenceFailure
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    The conditional UPDATE statements in stock_service are what actually
    close the read-validate-write window on every engine.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). The session is rolled back before each
    retry, so `func` must own its whole unit of work including the commit.

    Domain errors raised by `func` roll back and propagate untouched.
    Anything else coming out of SQLAlchemy, or a conflict that survives every
    attempt, surfaces as PersistenceFailure with the original exception kept
    on `cause`.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                break
            time.sleep(backoff_base * (2 ** attempt))
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise PersistenceFailure(cause=exc) from exc
        except Exception:
            db.session.rollback()
            raise
    raise PersistenceFailure(cause=last_exc) from last_exc

