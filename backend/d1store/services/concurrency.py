# Overview: Row locking and retry helpers for transactional service operations.

from __future__ import annotations

import time
from typing import Callable, Iterable, TypeVar

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


T = TypeVar("T")

# psycopg / asyncpg SQLSTATE for unique_violation
PG_UNIQUE_VIOLATION = "23505"


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def claim_row(column, row_id) -> bool:
    """
    Take the write lock on a row before reading it, via a no-op UPDATE of
    `column` on the row whose primary key is `row_id`.

    On PostgreSQL this locks the row; on SQLite the first write of a
    transaction takes the database writer lock, so later reads in the same
    transaction see committed state. Returns False when no row matched.
    """
    model = column.class_
    stmt = (
        update(model)
        .where(model.id == row_id)
        .values({column.key: column})
        .execution_options(synchronize_session=False)
    )
    return bool(db.session.execute(stmt).rowcount)


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts).
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def _unique_violation_targets(exc: IntegrityError) -> tuple[set[str], set[str]] | None:
    """
    Classify an IntegrityError as a unique violation and report what fired.

    Returns (constraint_names, table.column targets), or None when the error
    is some other integrity failure (FK, NOT NULL, CHECK).
    """
    orig = getattr(exc, "orig", None)
    if orig is None:
        return None

    # PostgreSQL drivers expose SQLSTATE and the constraint name.
    pgcode = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    diag = getattr(orig, "diag", None)
    if pgcode is not None:
        if pgcode != PG_UNIQUE_VIOLATION:
            return None
        name = getattr(diag, "constraint_name", None)
        return ({name} if name else set()), set()

    # sqlite3 exposes the extended error name (3.11+); the message then lists
    # the violated columns as "table.column, table.column".
    errorname = getattr(orig, "sqlite_errorname", None)
    message = str(orig)
    if errorname is not None and errorname not in ("SQLITE_CONSTRAINT_UNIQUE", "SQLITE_CONSTRAINT_PRIMARYKEY"):
        return None
    marker = "UNIQUE constraint failed:"
    if marker not in message:
        return None
    columns = {part.strip() for part in message.split(marker, 1)[1].split(",") if part.strip()}
    return set(), columns


def is_unique_violation(
    exc: BaseException,
    *,
    constraints: Iterable[str] = (),
    columns: Iterable[str] = (),
) -> bool:
    """
    True when exc is a unique violation on one of the named constraints or
    "table.column" targets.
    """
    if not isinstance(exc, IntegrityError):
        return False
    targets = _unique_violation_targets(exc)
    if targets is None:
        return False
    fired_constraints, fired_columns = targets
    return bool(fired_constraints & set(constraints)) or bool(fired_columns & set(columns))


class RetryExhaustedError(RuntimeError):
    """Raised when retry_on_unique_violation runs out of attempts."""

    def __init__(self, attempts: int, last_exc: BaseException):
        super().__init__(f"Gave up after {attempts} attempts: {last_exc}")
        self.attempts = attempts
        self.last_exc = last_exc


def retry_on_unique_violation(
    func: Callable[[str], T],
    *,
    regenerate: Callable[[], str],
    is_collision: Callable[[BaseException], bool],
    attempts: int = 5,
) -> T:
    """
    Run func(nonce) and retry with a fresh nonce when is_collision(exc).

    Each attempt gets a newly generated nonce. The session is rolled back
    before retrying, so func must redo all of its work. Errors that are not
    collisions propagate unchanged. Raises RetryExhaustedError once
    attempts collisions have occurred.
    """
    last_exc: BaseException | None = None
    for attempt in range(1, attempts + 1):
        nonce = regenerate()
        try:
            return func(nonce)
        except IntegrityError as exc:
            db.session.rollback()
            if not is_collision(exc):
                raise
            last_exc = exc
            current_app.logger.info("Nonce collision on attempt %s/%s (%s); retrying", attempt, attempts, nonce)
    raise RetryExhaustedError(attempts, last_exc)  # type: ignore[arg-type]
