# Overview: Unit-of-work helpers: row locking, commit/rollback and retry.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConflictError, UnavailableError
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Rows that must not lose updates on SQLite also carry a version_id column.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute func as one unit of work.

    - Commits on success and returns func's result.
    - Rolls back on ANY exception, so nothing is ever partially applied.
    - Retries OperationalError (deadlocks, locks), StaleDataError (optimistic
      locking conflicts) and IntegrityError (a concurrent insert won a unique
      key race; the retry re-runs the caller's duplicate checks).
    - When retries run out, store failures surface as UnavailableError and a
      persistent unique-key violation as ConflictError.
    """
    if attempts is None:
        attempts = current_app.config.get("DB_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("DB_RETRY_BACKOFF", 0.1)

    for attempt in range(attempts):
        try:
            result = func()
            db.session.commit()
            return result
        except (OperationalError, StaleDataError, IntegrityError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                if isinstance(exc, IntegrityError):
                    raise ConflictError("Conflicting record already exists") from exc
                raise UnavailableError(
                    f"Store unavailable after {attempts} attempts ({exc.__class__.__name__})"
                ) from exc
            current_app.logger.warning(
                "Retrying unit of work after %s (attempt %d/%d)",
                exc.__class__.__name__,
                attempt + 1,
                attempts,
            )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    raise UnavailableError("Unit of work was not attempted")
