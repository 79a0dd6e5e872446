"""
Test suite for sqlguard.engine.duckdb_executor.

Covers:
  - init_connection:  PRAGMA / SET application
  - affected_rows:    DML count extraction
  - DuckDBExecutor:   query / execute / parameters / error wrapping / lifecycle
"""

from __future__ import annotations

import duckdb
import pandas as pd
import pytest

from sqlguard.engine.duckdb_executor import DuckDBExecutor, affected_rows, init_connection
from sqlguard.errors import ExecutionError


# ═══════════════════════════════════════════════════════════
#  helpers
# ═══════════════════════════════════════════════════════════


class TestInitConnection:

    def test_threads_applied(self, duckdb_con):
        init_connection(duckdb_con, memory_limit="512MB", threads=2)
        threads = duckdb_con.execute("SELECT current_setting('threads')").fetchone()[0]
        assert int(threads) == 2

    def test_zero_threads_keeps_engine_default(self, duckdb_con):
        before = duckdb_con.execute("SELECT current_setting('threads')").fetchone()[0]
        init_connection(duckdb_con, memory_limit="512MB", threads=0)
        after = duckdb_con.execute("SELECT current_setting('threads')").fetchone()[0]
        assert before == after


class TestAffectedRows:

    def test_count_row(self):
        assert affected_rows([(3,)]) == 3

    @pytest.mark.parametrize("rows", [[], [(1, 2)], [("x",)], [(1,), (2,)]])
    def test_anything_else_is_zero(self, rows):
        assert affected_rows(rows) == 0


# ═══════════════════════════════════════════════════════════
#  DuckDBExecutor
# ═══════════════════════════════════════════════════════════


@pytest.fixture()
def executor():
    ex = DuckDBExecutor(":memory:", memory_limit="512MB")
    ex.execute("CREATE TABLE orders (id INTEGER, user_id INTEGER, total DOUBLE)")
    ex.execute("INSERT INTO orders VALUES (1, 42, 10.0), (2, 7, 20.0), (3, 42, 30.0)")
    yield ex
    ex.close()


class TestDuckDBExecutor:

    def test_query_returns_dataframe(self, executor):
        df = executor.query("SELECT id, total FROM orders ORDER BY id")
        assert isinstance(df, pd.DataFrame)
        assert list(df.columns) == ["id", "total"]
        assert df["id"].tolist() == [1, 2, 3]

    def test_query_with_params(self, executor):
        df = executor.query("SELECT id FROM orders WHERE user_id = ? ORDER BY id", [42])
        assert df["id"].tolist() == [1, 3]

    def test_execute_returns_affected_rows(self, executor):
        assert executor.execute("UPDATE orders SET total = 0 WHERE user_id = ?", (42,)) == 2
        assert executor.execute("DELETE FROM orders WHERE id = 2") == 1
        assert executor.query("SELECT count(*) AS n FROM orders")["n"].iloc[0] == 2

    def test_errors_are_wrapped(self, executor):
        with pytest.raises(ExecutionError) as exc:
            executor.query("SELECT * FROM missing_table")
        assert isinstance(exc.value.cause, duckdb.Error)
        assert exc.value.code == "QUERY_ERROR"

    def test_rollback_discards_changes(self, executor):
        executor.begin()
        executor.execute("DELETE FROM orders")
        executor.rollback()
        assert len(executor.query("SELECT id FROM orders")) == 3

    def test_commit_keeps_changes(self, executor):
        executor.begin()
        executor.execute("DELETE FROM orders WHERE id = 1")
        executor.commit()
        assert executor.query("SELECT id FROM orders ORDER BY id")["id"].tolist() == [2, 3]

    def test_commit_without_transaction_is_wrapped(self, executor):
        with pytest.raises(ExecutionError):
            executor.commit()

    def test_injected_connection(self, duckdb_con):
        duckdb_con.execute("CREATE TABLE t AS SELECT 1 AS x")
        ex = DuckDBExecutor(connection=duckdb_con, memory_limit="512MB")
        assert ex.query("SELECT x FROM t")["x"].tolist() == [1]

    def test_context_manager_closes(self):
        with DuckDBExecutor(memory_limit="512MB") as ex:
            assert ex.query("SELECT 1 AS one")["one"].tolist() == [1]
        with pytest.raises(ExecutionError):
            ex.query("SELECT 1")

    def test_file_database_persists(self, tmp_path):
        path = str(tmp_path / "guard.duckdb")
        with DuckDBExecutor(path, memory_limit="512MB") as ex:
            ex.execute("CREATE TABLE t AS SELECT 5 AS x")
        with DuckDBExecutor(path, memory_limit="512MB") as ex:
            assert ex.query("SELECT x FROM t")["x"].tolist() == [5]
