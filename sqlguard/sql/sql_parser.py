# sqlguard/sql/sql_parser.py

from typing import Optional

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError

from sqlguard.config.defaults import default, logger
from sqlguard.errors import ParseError, UnsupportedStatement


class SQLParser:
    """
    Thin wrapper around sqlglot bound to one dialect.

    Only a single statement is accepted per call; anything sqlglot can only
    keep as an opaque ``Command`` is rejected as unsupported.
    """

    def __init__(self, dialect: Optional[str] = None):
        self.dialect = dialect or default.SQL_DIALECT

    def parse(self, sql: str) -> exp.Expression:
        if sql is None or not sql.strip():
            raise ParseError("query cannot be empty")

        try:
            statements = [s for s in sqlglot.parse(sql, read=self.dialect) if s is not None]
        except SqlglotError as e:
            logger.debug(f"[sql-parser] failed to parse: {e}")
            raise ParseError("failed to parse SQL", cause=e)

        if not statements:
            raise ParseError("query cannot be empty")
        if len(statements) > 1:
            raise UnsupportedStatement(f"expected a single statement, got {len(statements)}")

        statement = statements[0]
        if isinstance(statement, exp.Command):
            raise UnsupportedStatement(f"unsupported statement: {statement.name or statement.sql()}")
        return statement

    def parse_condition(self, condition: str) -> exp.Expression:
        """Parse a stored row condition into a boolean expression."""
        try:
            return sqlglot.condition(condition, dialect=self.dialect)
        except SqlglotError as e:
            raise ParseError(f"invalid row condition: {condition}", cause=e)

    def render(self, statement: exp.Expression) -> str:
        return statement.sql(dialect=self.dialect)
