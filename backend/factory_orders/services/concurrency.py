# Overview: Retry and compare-and-set helpers shared by the write paths.

from __future__ import annotations

import time

from sqlalchemy import update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.05, retry_on=RETRYABLE_ERRORS):
    """
    Run `func` and retry it on lock/optimistic-version conflicts.

    The session is rolled back between attempts, so `func` must reload
    whatever rows it touches.
    """
    for attempt in range(attempts):
        try:
            return func()
        except retry_on:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))


def compare_and_set(model, ident: int, column: str, expected, values: dict) -> bool:
    """
    Single-row conditional UPDATE: apply `values` only while `column` still
    equals `expected`. Returns False when another writer got there first.

    Bumps version_id (when the model has one) so ORM holders of the row
    see a stale version.
    """
    col = getattr(model, column)
    if "version_id" in model.__table__.c:
        values = {**values, "version_id": model.version_id + 1}
    stmt = (
        update(model)
        .where(model.id == ident, col == expected)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    return result.rowcount == 1
