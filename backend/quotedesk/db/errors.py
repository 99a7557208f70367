"""
Typed store errors.
Repositories translate driver exceptions into these so services can branch on
the kind of failure instead of inspecting error text.
"""

from typing import Optional

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError

UNDEFINED_TABLE_SQLSTATE = "42P01"
CONNECTION_SQLSTATE_PREFIXES = ("08", "57P")
SQLITE_MISSING_TABLE = "no such table"


class StoreError(Exception):
    """Base class for classified store failures."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class StoreUnavailableError(StoreError):
    """Store could not be reached or the connection dropped."""


class StoreNotProvisionedError(StoreError):
    """Schema object (table) does not exist yet."""


def _sqlstate(exc: DBAPIError) -> Optional[str]:
    """SQLSTATE from the driver error, or from the asyncpg exception it wraps."""
    orig = getattr(exc, "orig", None)
    for candidate in (orig, getattr(orig, "__cause__", None)):
        for attr in ("sqlstate", "pgcode"):
            value = getattr(candidate, attr, None)
            if value:
                return value
    return None


def _is_undefined_table(exc: DBAPIError, dialect: Optional[str]) -> bool:
    if _sqlstate(exc) == UNDEFINED_TABLE_SQLSTATE:
        return True
    # SQLite reports every schema error as a generic SQLITE_ERROR
    if dialect == "sqlite" and isinstance(exc, OperationalError):
        return SQLITE_MISSING_TABLE in str(exc.orig).lower()
    return False


def _is_unavailable(exc: DBAPIError) -> bool:
    if exc.connection_invalidated:
        return True
    if not isinstance(exc, (OperationalError, InterfaceError)):
        return False
    state = _sqlstate(exc)
    return state is None or state.startswith(CONNECTION_SQLSTATE_PREFIXES)


def classify_store_error(exc: BaseException, dialect: Optional[str] = None) -> Optional[StoreError]:
    """
    Map a SQLAlchemy exception to a typed store error.
    Returns None when the exception is a logic error that should propagate,
    including schema errors other than a missing table (e.g. an unknown column).
    """
    if isinstance(exc, DBAPIError):
        if _is_undefined_table(exc, dialect):
            return StoreNotProvisionedError("Table is not provisioned", cause=exc)
        if _is_unavailable(exc):
            return StoreUnavailableError("Store is unavailable", cause=exc)
        return None
    if isinstance(exc, (ConnectionError, OSError)):
        return StoreUnavailableError("Store is unavailable", cause=exc)
    return None
