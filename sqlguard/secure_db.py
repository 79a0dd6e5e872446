# sqlguard/secure_db.py

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence

import pandas as pd

from sqlguard.config.defaults import logger
from sqlguard.data_classes import AuthorizedStatement, StatementType, User
from sqlguard.engine.duckdb_executor import DuckDBExecutor
from sqlguard.errors import AuthenticationError, InvalidInput
from sqlguard.pipeline import AuthorizationPipeline
from sqlguard.rbac.permissions import Action
from sqlguard.rbac.rbac_manager import RBACManager
from sqlguard.rbac.role_manager import RoleManager
from sqlguard.store.provider import AuthStore


class SecureDatabase:
    """
    A DuckDB connection bound to one authenticated user.

    Every statement goes through the authorization pipeline before it
    reaches the engine; only the authorized (possibly rewritten) SQL is
    executed.

        db = SecureDatabase.open(store, "alice", "s3cret")
        df = db.query("SELECT * FROM orders")
    """

    def __init__(
        self,
        store: AuthStore,
        username: str,
        executor: Optional[DuckDBExecutor] = None,
        pipeline: Optional[AuthorizationPipeline] = None,
    ):
        self.store = store
        self.username = username
        self.executor = executor or DuckDBExecutor()
        self.pipeline = pipeline or AuthorizationPipeline(store)
        self.rbac: RBACManager = self.pipeline.rbac
        self.roles = RoleManager(store, self.rbac)

    @classmethod
    def open(
        cls,
        store: AuthStore,
        username: str,
        credential: str,
        database: Optional[str] = None,
    ) -> "SecureDatabase":
        """Authenticate ``username`` and open a connection for it."""
        if not username:
            raise InvalidInput("username cannot be empty")
        if not store.authenticate(username, credential):
            logger.warning(f"[secure-db] authentication failed for {username}")
            raise AuthenticationError(f"invalid credentials for {username}")
        logger.info(f"[secure-db] opened for {username}")
        return cls(store, username, executor=DuckDBExecutor(database))

    # ── statements ──────────────────────────────────────────────────── #

    def authorize(self, sql: str) -> AuthorizedStatement:
        return self.pipeline.authorize(self.username, sql)

    def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> pd.DataFrame:
        authorized = self.authorize(sql)
        if authorized.statement_type is not StatementType.SELECT:
            raise InvalidInput(f"query() only runs SELECT statements, got {authorized.statement_type.value}")
        return self.executor.query(authorized.sql, params)

    def query_row(self, sql: str, params: Optional[Sequence[Any]] = None) -> Optional[Dict[str, Any]]:
        """First row of the result as a dict, or None when nothing matched."""
        df = self.query(sql, params)
        if df.empty:
            return None
        return df.iloc[0].to_dict()

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> int:
        """Run a write or DDL statement; returns the number of affected rows."""
        authorized = self.authorize(sql)
        return self.executor.execute(authorized.sql, params)

    def ping(self) -> bool:
        return bool(self.executor.query("SELECT 1 AS ok").iloc[0, 0] == 1)

    # ── transactions ────────────────────────────────────────────────── #

    def begin(self) -> None:
        """Start a transaction; statements inside it are still authorized one by one."""
        self.executor.begin()

    def commit(self) -> None:
        self.executor.commit()

    def rollback(self) -> None:
        self.executor.rollback()

    @contextmanager
    def transaction(self) -> Iterator["SecureDatabase"]:
        """Commit on success, roll back when the block raises."""
        self.begin()
        try:
            yield self
        except BaseException:
            self.rollback()
            raise
        self.commit()

    # ── users ───────────────────────────────────────────────────────── #

    def add_user(self, username: str, credential: str) -> int:
        return self.store.add_user(username, credential)

    def get_user(self, username: str) -> Optional[User]:
        return self.store.get_user(username)

    def update_user_credential(self, username: str, credential: str) -> None:
        self.store.update_credential(username, credential)
        logger.info(f"[secure-db] credential updated for {username}")

    def delete_user(self, username: str) -> None:
        self.store.delete_user(username)
        logger.info(f"[secure-db] user deleted: {username}")

    # ── roles ───────────────────────────────────────────────────────── #

    def create_role(self, role_name: str) -> int:
        return self.roles.create_role(role_name)

    def role_exists(self, role_name: str) -> bool:
        return self.roles.role_exists(role_name)

    def delete_role(self, role_name: str) -> None:
        self.roles.delete_role(role_name)

    def assign_role_to_user(self, username: str, role_name: str) -> bool:
        return self.rbac.assign_role_to_user(username, role_name)

    def remove_role_from_user(self, username: str, role_name: str) -> bool:
        return self.rbac.remove_role_from_user(username, role_name)

    def user_has_role(self, username: str, role_name: str) -> bool:
        return self.rbac.user_has_role(username, role_name)

    def grant_table_permission(self, role_id: int, table: str, action: Action = Action.SELECT) -> List[str]:
        return self.roles.grant_table_permission_to_role(role_id, table, action)

    def grant_column_permission(
        self, role_id: int, table: str, column: str, action: Action = Action.SELECT,
    ) -> List[str]:
        return self.roles.grant_column_permission_to_role(role_id, table, column, action)

    def grant_row_permission(
        self, role_id: int, table: str, condition: str, action: Action = Action.SELECT,
    ) -> List[str]:
        return self.roles.grant_row_permission_to_role(role_id, table, condition, action)

    # ── lifecycle ───────────────────────────────────────────────────── #

    def close(self) -> None:
        self.executor.close()

    def __enter__(self) -> "SecureDatabase":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
