# Overview: Row locking and retry helpers shared by the checkout services.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Lock the selected rows for the rest of the transaction.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; the version_id columns
    catch concurrent writers there instead.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run one unit of work, retrying on lock and version conflicts.

    func must do its own reads so a retry starts from fresh rows; the
    session is rolled back before each retry. Business errors raised by
    func propagate on the first attempt.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Concurrency conflict (attempt %s/%s): %s", attempt + 1, attempts, exc.__class__.__name__
            )
            time.sleep(backoff_base * (2 ** attempt))
