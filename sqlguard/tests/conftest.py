# sqlguard/tests/conftest.py
"""
Pytest conftest for the end-to-end sqlguard tests.

Denials log at WARNING level on purpose; the output is silenced here.
Provides a MemoryStore with ``alice`` and an ``admin`` holding wildcard
table grants for every action.
"""

from __future__ import annotations

import logging

import pytest

from sqlguard.config.defaults import default
from sqlguard.rbac.permissions import Action
from sqlguard.rbac.rbac_manager import RBACManager
from sqlguard.store.memory_store import MemoryStore


@pytest.fixture(autouse=True, scope="session")
def _suppress_test_log_noise():
    logging.getLogger("sqlguard").setLevel(logging.CRITICAL)
    yield
    logging.getLogger("sqlguard").setLevel(logging.NOTSET)


@pytest.fixture(autouse=True)
def _restore_defaults():
    """Tests may flip settings through update_default; put them back."""
    saved = dict(vars(default))
    yield
    for key, value in saved.items():
        setattr(default, key, value)


@pytest.fixture()
def store():
    s = MemoryStore()
    s.add_user("alice", "alice-token")
    s.add_user("admin", "admin-token")
    rbac = RBACManager(s)
    for action in Action:
        rbac.grant_table_permission("admin", "*", action)
    return s


@pytest.fixture()
def rbac(store):
    return RBACManager(store)
