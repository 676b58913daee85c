from __future__ import annotations

from typing import Optional

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, SQLAlchemyError

from lead_feedback.core.exceptions import (
    FeedbackError,
    IntegrityFailureError,
    TransientFailureError,
    ValidationError,
)

UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"
CHECK_VIOLATION = "23514"

# serialization_failure, deadlock_detected, lock_not_available, query_canceled
TRANSIENT_SQLSTATES = frozenset({"40001", "40P01", "55P03", "57014"})


def _driver_errors(exc: BaseException):
    orig = getattr(exc, "orig", None)
    if orig is not None:
        yield orig
        # asyncpg errors are chained behind SQLAlchemy's DBAPI adapter
        if orig.__cause__ is not None:
            yield orig.__cause__


def sqlstate_of(exc: BaseException) -> Optional[str]:
    for err in _driver_errors(exc):
        code = getattr(err, "sqlstate", None) or getattr(err, "pgcode", None)
        if code:
            return str(code)
    return None


def constraint_name_of(exc: BaseException) -> Optional[str]:
    for err in _driver_errors(exc):
        name = getattr(err, "constraint_name", None)
        if name:
            return str(name)
        diag = getattr(err, "diag", None)
        if diag is not None and getattr(diag, "constraint_name", None):
            return str(diag.constraint_name)
    return None


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    state = sqlstate_of(exc)
    if state is None:
        return False
    return state in TRANSIENT_SQLSTATES or state.startswith("08")


def translate_db_error(exc: SQLAlchemyError) -> FeedbackError:
    """Map a storage error onto the core's error taxonomy."""
    state = sqlstate_of(exc)
    details = {"sqlstate": state, "error": str(getattr(exc, "orig", exc))}

    if is_transient(exc):
        return TransientFailureError(details=details)
    if state == CHECK_VIOLATION:
        details["constraint"] = constraint_name_of(exc)
        return ValidationError("Value rejected by storage constraint", details=details)
    return IntegrityFailureError(details=details)
