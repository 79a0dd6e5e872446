# sqlguard/__init__.py
#
# Table-, column- and row-level access control for SQL statements.
# Statements are parsed with sqlglot, checked against per-user permissions
# held in an AuthStore, rewritten with row conditions and run on DuckDB.

from sqlguard.errors import (  # noqa: F401
    AuthenticationError,
    ExecutionError,
    InvalidInput,
    ParseError,
    PermissionDenied,
    SessionError,
    SqlGuardError,
    StoreError,
    UnsupportedStatement,
)
from sqlguard.pipeline import AuthorizationPipeline, PipelineState  # noqa: F401
from sqlguard.rbac.permissions import Action, Permission, Scope  # noqa: F401
from sqlguard.rbac.rbac_manager import RBACManager  # noqa: F401
from sqlguard.rbac.role_manager import RoleManager  # noqa: F401
from sqlguard.secure_db import SecureDatabase  # noqa: F401
from sqlguard.session import SessionManager  # noqa: F401
from sqlguard.store.memory_store import MemoryStore  # noqa: F401

__all__ = [
    "Action",
    "AuthenticationError",
    "AuthorizationPipeline",
    "ExecutionError",
    "InvalidInput",
    "MemoryStore",
    "ParseError",
    "Permission",
    "PermissionDenied",
    "PipelineState",
    "RBACManager",
    "RoleManager",
    "Scope",
    "SecureDatabase",
    "SessionError",
    "SessionManager",
    "SqlGuardError",
    "StoreError",
    "UnsupportedStatement",
]
