# Overview: Unit-of-work helper with row locking and bounded retry on concurrency conflicts.

from __future__ import annotations

import time
from typing import Callable, TypeVar

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import TransactionFailed
from ..extensions import db

T = TypeVar("T")


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    Rows already in the session are refreshed from the locked read.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; run_in_transaction takes the
    database write lock up front there instead.
    """
    return query.with_for_update().populate_existing()


def _begin_write():
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_in_transaction(
    fn: Callable[..., T],
    *,
    attempts: int | None = None,
    backoff_base: float = 0.05,
) -> T:
    """
    Run ``fn(session)`` as one atomic unit of work and commit it.

    - Any exception rolls the whole unit back before propagating.
    - OperationalError (locks, deadlocks) and StaleDataError (optimistic
      version conflicts) are retried from scratch up to ``attempts`` times,
      then surface as TransactionFailed.
    - Typed CoreErrors raised by ``fn`` propagate unchanged.
    """
    if attempts is None:
        attempts = current_app.config.get("TRANSACTION_RETRY_ATTEMPTS", 3)

    for attempt in range(attempts):
        try:
            _begin_write()
            result = fn(db.session)
            db.session.commit()
            return result
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            current_app.logger.warning(
                "Transaction conflict (attempt %s/%s): %s", attempt + 1, attempts, exc
            )
            if attempt >= attempts - 1:
                raise TransactionFailed(
                    "Transaction failed after concurrent conflicts; retry the operation",
                    details={"attempts": attempts},
                ) from exc
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    raise TransactionFailed("Transaction was not attempted", details={"attempts": attempts})
