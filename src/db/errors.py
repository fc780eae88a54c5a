# src/db/errors.py
# Error taxonomy for the database layer
#
# DatabaseError
#   NotConnectedError       query() while the manager is not CONNECTED
#   ConnectionClassError    connection-level failure, drives retry and self-heal
#   StatementError          anything else the database rejected
#   ExhaustedRetriesError   connect() ran out of attempts; fatal for the owner
#
# Which driver errors count as "connection class" depends on the backend, so
# the manager takes the classifier as a plain predicate. The PostgreSQL
# default lives here.

from typing import Callable, Optional

import psycopg2

# SQLSTATE class 08 = connection exception; 57P01 = admin_shutdown
CONNECTION_SQLSTATE_CLASSES = ("08",)
CONNECTION_SQLSTATES = frozenset({"57P01"})

ErrorClassifier = Callable[[BaseException], bool]


class DatabaseError(Exception):
    """Base class for every error raised by the database layer."""

    def __init__(self, message: str, *, pgcode: Optional[str] = None):
        super().__init__(message)
        self.pgcode = pgcode


class NotConnectedError(DatabaseError):
    """The manager is not CONNECTED. Callers decide whether to retry later."""


class ConnectionClassError(DatabaseError):
    """Connection refused, reset, or terminated by the server."""


class StatementError(DatabaseError):
    """Constraint, syntax, permission or any other non-connection failure."""


class ExhaustedRetriesError(DatabaseError):
    """Every connection attempt failed. The owning process is expected to halt."""

    def __init__(self, message: str, *, attempts: int):
        super().__init__(message)
        self.attempts = attempts


def is_connection_error(exc: BaseException) -> bool:
    """
    Default PostgreSQL classifier.

    Connection class when:
    - the SQLSTATE is in class 08 or is 57P01 (admin shutdown)
    - psycopg2 raised OperationalError/InterfaceError with no SQLSTATE at all,
      which is how refused, reset and already-closed sockets surface
    - the error is a plain OS-level ConnectionError
    """
    if isinstance(exc, ConnectionClassError):
        return True
    if isinstance(exc, DatabaseError):
        return False

    pgcode = getattr(exc, "pgcode", None)
    if pgcode:
        return pgcode.startswith(CONNECTION_SQLSTATE_CLASSES) or pgcode in CONNECTION_SQLSTATES

    return isinstance(exc, (psycopg2.OperationalError, psycopg2.InterfaceError, ConnectionError))


def classify_error(
    exc: BaseException,
    classifier: ErrorClassifier = is_connection_error,
) -> DatabaseError:
    """
    Wrap a driver error into ConnectionClassError or StatementError.

    The message is the driver's message verbatim; callers chain with
    `raise classify_error(exc) from exc`.
    """
    if isinstance(exc, DatabaseError):
        return exc

    message = str(exc).strip() or exc.__class__.__name__
    pgcode = getattr(exc, "pgcode", None)
    if classifier(exc):
        return ConnectionClassError(message, pgcode=pgcode)
    return StatementError(message, pgcode=pgcode)
