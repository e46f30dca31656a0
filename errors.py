import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy.exc import IntegrityError, NoResultFound, SQLAlchemyError
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"
CHECK_VIOLATION = "23514"


class LedgerError(Exception):
    code = "LEDGER_ERROR"


class NotFound(LedgerError):
    code = "NOT_FOUND"


class Forbidden(LedgerError):
    code = "FORBIDDEN"


class NotEditable(LedgerError):
    code = "NOT_EDITABLE"


class NotDeletable(LedgerError):
    code = "NOT_DELETABLE"


class InvalidName(LedgerError, ValueError):
    code = "INVALID_NAME"


class DuplicateName(LedgerError, ValueError):
    code = "DUPLICATE_NAME"


class InvalidCategory(LedgerError, ValueError):
    code = "INVALID_CATEGORY"


class ValidationFailed(LedgerError, ValueError):
    code = "VALIDATION_FAILED"


class PersistenceFailure(LedgerError):
    """Unclassified store error. The message keeps the driver text for logs."""

    code = "PERSISTENCE_FAILURE"


def _sqlstate(exc: SQLAlchemyError) -> Optional[str]:
    orig = getattr(exc, "orig", None)
    if orig is None:
        return None
    # psycopg2 exposes pgcode, psycopg 3 exposes sqlstate
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)


def _integrity_kind(exc: IntegrityError) -> Optional[str]:
    state = _sqlstate(exc)
    if state in (UNIQUE_VIOLATION, FOREIGN_KEY_VIOLATION, CHECK_VIOLATION):
        return state
    message = str(exc.orig).upper()
    if "UNIQUE CONSTRAINT FAILED" in message:
        return UNIQUE_VIOLATION
    if "FOREIGN KEY CONSTRAINT FAILED" in message:
        return FOREIGN_KEY_VIOLATION
    if "CHECK CONSTRAINT FAILED" in message:
        return CHECK_VIOLATION
    return None


def classify_store_error(exc: SQLAlchemyError, action: str) -> LedgerError:
    """Map a store failure raised while performing ``action`` to a domain error."""
    if isinstance(exc, NoResultFound):
        return NotFound(f"{action}: row not found")
    if isinstance(exc, IntegrityError):
        kind = _integrity_kind(exc)
        if kind == UNIQUE_VIOLATION:
            return DuplicateName("Category with this name already exists")
        if kind == FOREIGN_KEY_VIOLATION:
            return InvalidCategory("Category does not exist or belongs to another user")
        if kind == CHECK_VIOLATION:
            return ValidationFailed(f"{action}: value rejected by store constraint")
    return PersistenceFailure(f"Failed to {action}: {exc}")


@contextmanager
def store_errors(session: Session, action: str) -> Iterator[None]:
    """Roll back and re-raise store failures inside the block as domain errors."""
    try:
        yield
    except SQLAlchemyError as exc:
        session.rollback()
        error = classify_store_error(exc, action)
        if isinstance(error, PersistenceFailure):
            logger.error(f"store_error: action={action} error={exc}")
        else:
            logger.warning(f"store_error: action={action} classified={error.code}")
        raise error from exc
