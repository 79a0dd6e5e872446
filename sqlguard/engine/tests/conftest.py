# sqlguard/engine/tests/conftest.py
"""
Pytest conftest for sqlguard.engine tests.

Auto-discovered by pytest; no explicit import needed.
Provides a real in-memory DuckDB connection and silences the expected
error logs of failure-path tests.
"""

from __future__ import annotations

import logging

import duckdb
import pytest


@pytest.fixture(autouse=True, scope="session")
def _suppress_test_log_noise():
    """
    Suppress INFO/ERROR log output during tests.

    The executor logs every failed statement at ERROR level; failure-path
    tests trigger that on purpose.
    """
    for name in ("sqlguard", "sqlguard.engine"):
        logging.getLogger(name).setLevel(logging.CRITICAL)
    yield
    for name in ("sqlguard", "sqlguard.engine"):
        logging.getLogger(name).setLevel(logging.NOTSET)


@pytest.fixture()
def duckdb_con():
    """Provide a real in-memory DuckDB connection, closed after each test."""
    con = duckdb.connect()
    yield con
    con.close()
