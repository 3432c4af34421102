"""Translate database failures into HTTP errors.

SQLAlchemy exceptions are classified into ``DbErrorCode`` values (the codes
follow the Prisma numbering so API clients keep a stable vocabulary), then
mapped to ``HTTPException`` through a default table that each decorated
method can override::

    @db_error({DbErrorCode.UNIQUE_CONSTRAINT: "Submission already exists."})
    def create(self, ...):
        ...

Unclassified errors propagate unchanged.
"""

from __future__ import annotations

import functools
import inspect
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple, Union

from fastapi import HTTPException, status
from sqlalchemy.exc import (
    DataError,
    IntegrityError,
    NoResultFound,
    OperationalError,
    SQLAlchemyError,
)

from .log import bound_arguments


class DbErrorCode(str, Enum):
    VALUE_TOO_LONG = "P2000"
    RECORD_DOES_NOT_EXIST = "P2001"
    UNIQUE_CONSTRAINT = "P2002"
    FOREIGN_KEY_CONSTRAINT = "P2003"
    MISSING_REQUIRED_VALUE = "P2011"
    RELATION_VIOLATION = "P2014"
    RELATED_RECORD_NOT_FOUND = "P2018"
    VALUE_OUT_OF_RANGE = "P2020"
    RECORD_NOT_FOUND = "P2025"
    TRANSACTION_DEADLOCK = "P2034"


DEFAULT_ERROR_MAP: Dict[DbErrorCode, Tuple[int, str]] = {
    DbErrorCode.VALUE_TOO_LONG: (status.HTTP_400_BAD_REQUEST, "Value is too long."),
    DbErrorCode.VALUE_OUT_OF_RANGE: (status.HTTP_400_BAD_REQUEST, "Value is out of range."),
    DbErrorCode.UNIQUE_CONSTRAINT: (status.HTTP_409_CONFLICT, "Unique constraint failed."),
    DbErrorCode.RECORD_DOES_NOT_EXIST: (status.HTTP_404_NOT_FOUND, "Record not found."),
    DbErrorCode.RELATED_RECORD_NOT_FOUND: (status.HTTP_404_NOT_FOUND, "Associated record(s) not found."),
    DbErrorCode.RECORD_NOT_FOUND: (status.HTTP_404_NOT_FOUND, "Record not found."),
    DbErrorCode.FOREIGN_KEY_CONSTRAINT: (status.HTTP_400_BAD_REQUEST, "Foreign key constraint failed."),
    DbErrorCode.MISSING_REQUIRED_VALUE: (status.HTTP_400_BAD_REQUEST, "Missing required value."),
    DbErrorCode.RELATION_VIOLATION: (status.HTTP_400_BAD_REQUEST, "Relation violation."),
    DbErrorCode.TRANSACTION_DEADLOCK: (status.HTTP_500_INTERNAL_SERVER_ERROR, "Transaction deadlock."),
}

ErrorOverride = Union[str, Callable[[str, Dict[str, Any]], Exception]]


class DatabaseError(Exception):
    """Raised by services for database conditions SQLAlchemy does not signal itself."""

    def __init__(self, code: DbErrorCode, message: Optional[str] = None):
        self.code = DbErrorCode(code)
        self.message = message or DEFAULT_ERROR_MAP[self.code][1]
        super().__init__(self.message)


_INTEGRITY_MARKERS = (
    (("unique constraint", "duplicate key", "duplicate entry"), DbErrorCode.UNIQUE_CONSTRAINT),
    (("foreign key",), DbErrorCode.FOREIGN_KEY_CONSTRAINT),
    (("not null", "not-null", "cannot be null"), DbErrorCode.MISSING_REQUIRED_VALUE),
    (("check constraint",), DbErrorCode.RELATION_VIOLATION),
)


def classify_db_error(exc: BaseException) -> Optional[DbErrorCode]:
    """Return the ``DbErrorCode`` matching *exc*, or ``None`` when unknown."""

    if isinstance(exc, DatabaseError):
        return exc.code
    if isinstance(exc, NoResultFound):
        return DbErrorCode.RECORD_NOT_FOUND
    if not isinstance(exc, SQLAlchemyError):
        return None

    detail = str(getattr(exc, "orig", None) or exc).lower()
    if isinstance(exc, IntegrityError):
        for markers, code in _INTEGRITY_MARKERS:
            if any(marker in detail for marker in markers):
                return code
        return DbErrorCode.RELATION_VIOLATION
    if isinstance(exc, DataError):
        if "out of range" in detail:
            return DbErrorCode.VALUE_OUT_OF_RANGE
        return DbErrorCode.VALUE_TOO_LONG
    if isinstance(exc, OperationalError) and ("deadlock" in detail or "database is locked" in detail):
        return DbErrorCode.TRANSACTION_DEADLOCK
    return None


def _rollback_owner_session(args: tuple) -> None:
    owner = args[0] if args else None
    session = getattr(owner, "session", None)
    rollback = getattr(session, "rollback", None)
    if callable(rollback):
        rollback()


def _translate(
    exc: BaseException,
    code: DbErrorCode,
    overrides: Dict[DbErrorCode, ErrorOverride],
    values: Dict[str, Any],
) -> Exception:
    status_code, default_message = DEFAULT_ERROR_MAP[code]
    message = exc.message if isinstance(exc, DatabaseError) else default_message
    override = overrides.get(code)
    if override is None:
        return HTTPException(status_code=status_code, detail=message)
    if callable(override):
        return override(message, values)
    return HTTPException(status_code=status_code, detail=override)


def db_error(overrides: Optional[Dict[DbErrorCode, ErrorOverride]] = None):
    """Map database errors raised by the decorated method to HTTP errors."""

    mapping: Dict[DbErrorCode, ErrorOverride] = {DbErrorCode(k): v for k, v in (overrides or {}).items()}

    def decorator(func: Callable):
        def _handle(exc: Exception, args: tuple, kwargs: dict) -> Exception:
            code = classify_db_error(exc)
            if code is None:
                return exc
            _rollback_owner_session(args)
            return _translate(exc, code, mapping, bound_arguments(func, args, kwargs, include_self=True))

        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                try:
                    return await func(*args, **kwargs)
                except (SQLAlchemyError, DatabaseError) as exc:
                    translated = _handle(exc, args, kwargs)
                    if translated is exc:
                        raise
                    raise translated from exc

            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except (SQLAlchemyError, DatabaseError) as exc:
                translated = _handle(exc, args, kwargs)
                if translated is exc:
                    raise
                raise translated from exc

        return wrapper

    return decorator
