# sqlguard/engine/__init__.py
#
# Execution-engine subpackage.
# Runs authorized statements on DuckDB and returns pandas results.

from sqlguard.engine.duckdb_executor import DuckDBExecutor  # noqa: F401

__all__ = [
    "DuckDBExecutor",
]
