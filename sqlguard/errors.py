# sqlguard/errors.py

from typing import Optional


class SqlGuardError(Exception):
    """
    Base error for the authorization core.

    ``code`` is a stable machine-readable identifier, ``message`` the human
    text and ``cause`` the wrapped underlying exception (if any).
    """

    code = "SQLGUARD_ERROR"

    def __init__(self, message: str, cause: Optional[BaseException] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause
        if code:
            self.code = code

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.code}: {self.message} ({self.cause})"
        return f"{self.code}: {self.message}"


class InvalidInput(SqlGuardError, ValueError):
    """Empty username, table or other malformed argument."""

    code = "INVALID_INPUT"


class ParseError(SqlGuardError):
    """Statement text could not be parsed."""

    code = "PARSE_ERROR"


class UnsupportedStatement(SqlGuardError):
    """Statement type or shape is not recognized by the analyzer."""

    code = "UNSUPPORTED_QUERY"


class StoreError(SqlGuardError):
    """The authorization store failed; ``cause`` holds the backend error."""

    code = "STORE_ERROR"


class PermissionDenied(SqlGuardError, PermissionError):
    """A table, column or row check failed.

    ``table`` and ``column`` name the offending object; ``scope`` tells which
    check denied the statement.
    """

    code = "PERMISSION_DENIED"

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        column: Optional[str] = None,
        scope: Optional[str] = None,
    ):
        super().__init__(message)
        self.table = table
        self.column = column
        self.scope = scope


class AuthenticationError(SqlGuardError):
    code = "AUTH_ERROR"


class SessionError(SqlGuardError):
    code = "SESSION_ERROR"


class ExecutionError(SqlGuardError):
    code = "QUERY_ERROR"
