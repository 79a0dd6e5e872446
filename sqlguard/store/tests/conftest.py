# sqlguard/store/tests/conftest.py
"""
Pytest conftest for sqlguard.store tests.

Error-path tests make the stores log at ERROR level; that output is
expected and silenced here.
"""

import logging

import pytest


@pytest.fixture(autouse=True, scope="session")
def _suppress_test_log_noise():
    logging.getLogger("sqlguard").setLevel(logging.CRITICAL)
    yield
    logging.getLogger("sqlguard").setLevel(logging.NOTSET)
