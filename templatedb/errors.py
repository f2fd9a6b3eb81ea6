from __future__ import annotations

import psycopg2
import psycopg2.extensions
from fastapi.responses import JSONResponse
from sqlalchemy import exc as sa_exc


class AppError(Exception):
    """Error carrying the HTTP status the API should answer with."""

    def __init__(self, message: str, status: int = 500, expose: bool = True):
        super().__init__(message)
        self.message = message
        self.status = status
        self.expose = expose


def _first_line(error: BaseException) -> str:
    orig = getattr(error, "orig", None)
    text = str(orig if orig is not None else error).strip()
    return text.splitlines()[0] if text else error.__class__.__name__


def to_error_payload(error: BaseException) -> tuple[int, str]:
    if isinstance(error, AppError):
        return error.status, error.message if error.expose else "Internal server error"
    # SQLAlchemy messages carry the statement and bound parameters
    if isinstance(error, sa_exc.SQLAlchemyError):
        return 500, _first_line(error)
    message = str(error).strip()
    if not message:
        return 500, "Unknown internal error"
    return 500, message


_UNREACHABLE_MARKERS = (
    ("connection refused", "connection refused"),
    ("could not connect", "could not connect to server"),
    ("could not translate host name", "host name could not be resolved"),
    ("name or service not known", "host name could not be resolved"),
    ("timeout expired", "connection timed out"),
    ("timed out", "connection timed out"),
    ("server closed the connection", "server closed the connection"),
    ("connection reset", "connection reset"),
    ("password authentication failed", "authentication failed"),
    ("ssl negotiation", "SSL negotiation failed"),
    ("ssl syscall", "SSL connection failed"),
    ("ssl connection has been closed", "SSL connection failed"),
    ("does not exist", "database does not exist"),
    ("too many connections", "too many connections"),
)

_CONNECTION_ERRORS = (
    sa_exc.OperationalError,
    sa_exc.InterfaceError,
    psycopg2.OperationalError,
    psycopg2.InterfaceError,
    ConnectionError,
)

# OperationalError subclasses raised by a running statement, not by the link
_QUERY_FAILURES = (psycopg2.extensions.QueryCanceledError, psycopg2.extensions.TransactionRollbackError)


def _is_connection_sqlstate(code: str) -> bool:
    # 08: connection exception, 57P0x: server shutting down, 53300: too many connections
    return code.startswith("08") or code.startswith("57P0") or code == "53300"


def availability_issue(error: BaseException) -> str | None:
    """Describe why the database is unreachable, or None for other errors.

    Query errors (bad SQL, missing relations, constraint violations, statement
    timeouts, deadlocks) return None so callers can tell them apart from
    connectivity problems.
    """
    if isinstance(error, AppError):
        return error.message if error.status == 503 else None
    if isinstance(error, sa_exc.TimeoutError):
        return "connection pool timed out"
    if not isinstance(error, _CONNECTION_ERRORS):
        return None
    orig = getattr(error, "orig", None) or error
    if isinstance(orig, _QUERY_FAILURES):
        return None
    pgcode = getattr(orig, "pgcode", None)
    if pgcode and not _is_connection_sqlstate(pgcode):
        return None
    lowered = _first_line(error).lower()
    for marker, label in _UNREACHABLE_MARKERS:
        if marker in lowered:
            return label
    return f"database unreachable ({_first_line(error)})"


def is_unique_violation(error: BaseException, column: str) -> bool:
    if not isinstance(error, sa_exc.IntegrityError):
        return False
    orig = error.orig
    if getattr(orig, "pgcode", None) != "23505":
        return False
    diag = getattr(orig, "diag", None)
    constraint = getattr(diag, "constraint_name", None) or str(orig)
    return column in str(constraint)


def error_response(route: str, error: BaseException, logger) -> JSONResponse:
    status, message = to_error_payload(error)
    if status >= 500:
        logger.error("%s failed: %s", route, message, exc_info=error)
    else:
        logger.warning("%s failed: %s", route, message)
    return JSONResponse({"error": message}, status_code=status)
