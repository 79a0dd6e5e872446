# sqlguard/engine/duckdb_executor.py

from __future__ import annotations

from typing import Any, List, Optional, Sequence

import duckdb
import pandas as pd

from sqlguard.config.defaults import default, logger
from sqlguard.errors import ExecutionError


def init_connection(
        con: duckdb.DuckDBPyConnection,
        memory_limit: Optional[str] = None,
        threads: Optional[int] = None,
) -> None:
    """Apply standard PRAGMA settings to a DuckDB connection."""
    con.execute(f"PRAGMA memory_limit='{memory_limit or default.DUCKDB_MEMORY_LIMIT}';")
    threads = default.DUCKDB_THREADS if threads is None else threads
    if threads and threads > 0:
        con.execute(f"SET threads={int(threads)};")


def affected_rows(rows: List[tuple]) -> int:
    """DuckDB reports DML counts as a single-row, single-column result."""
    if len(rows) == 1 and len(rows[0]) == 1 and isinstance(rows[0][0], int):
        return rows[0][0]
    return 0


class DuckDBExecutor:
    """
    Runs authorized statements on one DuckDB connection.

    The connection is opened once (in-memory by default) and reused until
    ``close``. Engine failures are raised as ``ExecutionError``.
    """

    def __init__(
            self,
            database: Optional[str] = None,
            memory_limit: Optional[str] = None,
            threads: Optional[int] = None,
            connection: Optional[duckdb.DuckDBPyConnection] = None,
    ):
        self.database = database or default.DUCKDB_DATABASE
        try:
            self.con = connection or duckdb.connect(self.database)
            init_connection(self.con, memory_limit, threads)
        except duckdb.Error as e:
            logger.error(f"[duckdb] failed to open {self.database}: {e}")
            raise ExecutionError(f"failed to open database {self.database}", cause=e)

    def _run(self, sql: str, params: Optional[Sequence[Any]]):
        logger.debug(f"[duckdb] executing: {sql}")
        try:
            if params:
                return self.con.execute(sql, list(params))
            return self.con.execute(sql)
        except duckdb.Error as e:
            logger.error(f"[duckdb] statement failed: {e}")
            raise ExecutionError("statement failed", cause=e)

    def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> pd.DataFrame:
        result = self._run(sql, params)
        try:
            return result.fetchdf()
        except duckdb.Error as e:
            raise ExecutionError("failed to fetch result", cause=e)

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> int:
        """Run a statement and return the number of affected rows (0 for DDL)."""
        result = self._run(sql, params)
        try:
            return affected_rows(result.fetchall())
        except duckdb.Error as e:
            raise ExecutionError("failed to fetch result", cause=e)

    # ── transactions ────────────────────────────────────────────────── #

    def begin(self) -> None:
        self._transaction("begin", self.con.begin)

    def commit(self) -> None:
        self._transaction("commit", self.con.commit)

    def rollback(self) -> None:
        self._transaction("rollback", self.con.rollback)

    @staticmethod
    def _transaction(name: str, step) -> None:
        logger.debug(f"[duckdb] {name}")
        try:
            step()
        except duckdb.Error as e:
            logger.error(f"[duckdb] {name} failed: {e}")
            raise ExecutionError(f"{name} failed", cause=e)

    def close(self) -> None:
        try:
            self.con.close()
        except duckdb.Error as e:
            logger.debug(f"[duckdb] close failed: {e}")

    def __enter__(self) -> "DuckDBExecutor":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
