# sqlguard/rbac/rbac_manager.py

from typing import Iterable, List, Optional

from sqlguard.config.defaults import logger
from sqlguard.errors import InvalidInput, PermissionDenied
from sqlguard.rbac.permissions import (
    REVOKED_PREFIX,
    Action,
    Permission,
    RowPermissionRule,
    Scope,
    same_name,
)
from sqlguard.store.provider import AuthStore


def _require(value: str, what: str) -> None:
    if not value or not value.strip():
        raise InvalidInput(f"{what} cannot be empty")


def _row_rules(perms: Iterable[Permission], table: str, scope: Scope, action: Optional[Action]) -> List[RowPermissionRule]:
    rules = [
        RowPermissionRule(granted=True, table=perm.table, condition=perm.condition)
        for perm in perms
        if perm.scope is scope
        and perm.matches_table(table)
        and perm.matches_action(action)
        and perm.is_granted
    ]
    return rules or [RowPermissionRule(granted=False, table=table)]


def _has_records(perms: Iterable[Permission], table: str, scope: Scope, action: Optional[Action]) -> bool:
    """Any record for the table and scope, tombstoned ones included."""
    return any(
        perm.scope is scope and perm.matches_table(table) and perm.matches_action(action)
        for perm in perms
    )


class RBACManager:
    """
    Decision engine: answers table / column / row questions for one user and
    owns grant/revoke semantics.

    Permission lists are fetched from the store on every call and never
    cached. Each mutation is a read-modify-write through
    ``get_user_permissions`` / ``update_user_permissions``.

    ``action=None`` on a check means "any action".
    """

    def __init__(self, store: AuthStore):
        self.store = store

    def _permissions(self, username: str) -> List[Permission]:
        _require(username, "username")
        return self.store.get_user_permissions(username)

    # ── checks ──────────────────────────────────────────────────────── #

    def has_table_permission(
        self,
        username: str,
        table: str,
        scope: Scope = Scope.TABLE,
        action: Optional[Action] = None,
    ) -> bool:
        """True iff a live record with ``scope`` names ``table`` or the wildcard."""
        _require(table, "table")
        return any(
            perm.scope is scope
            and perm.matches_table(table)
            and perm.matches_action(action)
            and not perm.is_revoked
            for perm in self._permissions(username)
        )

    def has_column_permission(
        self,
        username: str,
        table: str,
        column: str,
        scope: Scope = Scope.COLUMN,
        action: Optional[Action] = None,
    ) -> bool:
        """True iff a record with ``scope`` covers ``table`` and names ``column``.

        A record whose column is ``"*"`` or empty covers every column of its table.
        """
        _require(table, "table")
        _require(column, "column")
        return any(
            perm.scope is scope
            and perm.matches_table(table)
            and perm.matches_column(column)
            and perm.matches_action(action)
            and not perm.is_revoked
            for perm in self._permissions(username)
        )

    def has_column_rules(self, username: str, table: str, action: Optional[Action] = None) -> bool:
        """Whether column-level records exist for the table at all."""
        _require(table, "table")
        return _has_records(self._permissions(username), table, Scope.COLUMN, action)

    def is_column_allowed(self, username: str, table: str, column: str, action: Optional[Action] = None) -> bool:
        """
        Column gate used by the pipeline: without column records the table
        grant covers every column; once any exist, the column must be named.
        ``"*"`` then needs a whole-table column record.
        """
        _require(table, "table")
        _require(column, "column")
        perms = self._permissions(username)
        if not _has_records(perms, table, Scope.COLUMN, action):
            return True
        return any(
            perm.scope is Scope.COLUMN
            and perm.matches_table(table)
            and perm.matches_column(column)
            and perm.matches_action(action)
            for perm in perms
        )

    def get_row_permissions(
        self,
        username: str,
        table: str,
        scope: Scope = Scope.ROW,
        action: Optional[Action] = None,
    ) -> List[RowPermissionRule]:
        """One granted rule per live matching record, or a single denial rule."""
        _require(table, "table")
        return _row_rules(self._permissions(username), table, scope, action)

    def has_row_rules(self, username: str, table: str, action: Optional[Action] = None) -> bool:
        _require(table, "table")
        return _has_records(self._permissions(username), table, Scope.ROW, action)

    def get_row_conditions(self, username: str, table: str, action: Optional[Action] = None) -> List[str]:
        """Live row conditions for the table, in store order."""
        return [
            rule.condition
            for rule in self.get_row_permissions(username, table, Scope.ROW, action)
            if rule.granted and rule.condition
        ]

    def check_query_permissions(
        self,
        username: str,
        table: str,
        scope: Scope = Scope.TABLE,
        action: Optional[Action] = None,
    ) -> bool:
        """
        Composite gate: a table grant is required; once row records exist for
        the table, the first row rule must also be granted.
        """
        _require(table, "table")
        perms = self._permissions(username)

        has_table = any(
            perm.scope is scope
            and perm.matches_table(table)
            and perm.matches_action(action)
            and not perm.is_revoked
            for perm in perms
        )
        if not has_table:
            return False

        if _has_records(perms, table, Scope.ROW, action):
            rules = _row_rules(perms, table, Scope.ROW, action)
            return rules[0].granted
        return True

    def check_permission(self, username: str, table: str, action: Action) -> bool:
        """Whether ``username`` may run ``action`` against ``table``."""
        return self.check_query_permissions(username, table, Scope.TABLE, action)

    def validate_query_permissions(
        self,
        username: str,
        tables: List[str],
        columns: List[str],
        action: Action = Action.SELECT,
    ) -> None:
        """Raise ``PermissionDenied`` unless every table and column is accessible."""
        for table in tables:
            if not self.check_permission(username, table, action):
                raise PermissionDenied(
                    f"no {action.value} permission on table {table}", table=table, scope=Scope.TABLE.value,
                )
            for column in columns:
                if not self.is_column_allowed(username, table, column, action):
                    raise PermissionDenied(
                        f"no permission on column {column} in table {table}",
                        table=table,
                        column=column,
                        scope=Scope.COLUMN.value,
                    )

    # ── grants / revokes ────────────────────────────────────────────── #

    def grant_table_permission(
        self,
        username: str,
        table: str,
        action: Action = Action.SELECT,
        scope: Scope = Scope.TABLE,
    ) -> None:
        _require(table, "table")
        perms = self._permissions(username)
        perms.append(Permission(scope=scope, table=table, action=action))
        self.store.update_user_permissions(username, perms)
        logger.debug(f"[rbac] granted {scope.value}:{action.value} on {table} to {username}")

    def revoke_table_permission(
        self,
        username: str,
        table: str,
        action: Optional[Action] = None,
        scope: Scope = Scope.TABLE,
    ) -> int:
        """Remove matching records; returns how many were removed."""
        _require(table, "table")
        perms = self._permissions(username)
        kept = [
            perm for perm in perms
            if not (perm.scope is scope and same_name(perm.table, table) and perm.matches_action(action))
        ]
        removed = len(perms) - len(kept)
        if removed:
            self.store.update_user_permissions(username, kept)
            logger.debug(f"[rbac] revoked {removed} {scope.value} record(s) on {table} from {username}")
        return removed

    def grant_column_permission(
        self,
        username: str,
        table: str,
        column: str,
        action: Action = Action.SELECT,
    ) -> None:
        _require(table, "table")
        _require(column, "column")
        perms = self._permissions(username)
        perms.append(Permission(scope=Scope.COLUMN, table=table, column=column, action=action))
        self.store.update_user_permissions(username, perms)
        logger.debug(f"[rbac] granted column:{action.value} on {table}.{column} to {username}")

    def revoke_column_permission(
        self,
        username: str,
        table: str,
        column: str,
        action: Optional[Action] = None,
    ) -> int:
        _require(table, "table")
        _require(column, "column")
        perms = self._permissions(username)
        kept = [
            perm for perm in perms
            if not (
                perm.scope is Scope.COLUMN
                and same_name(perm.table, table)
                and same_name(perm.column, column)
                and perm.matches_action(action)
            )
        ]
        removed = len(perms) - len(kept)
        if removed:
            self.store.update_user_permissions(username, kept)
            logger.debug(f"[rbac] revoked column {table}.{column} from {username}")
        return removed

    def grant_row_permission(
        self,
        username: str,
        table: str,
        condition: str,
        action: Action = Action.SELECT,
    ) -> None:
        """
        Attach a row condition to (user, table, action).

        An existing record for the same key, live or tombstoned, is rewritten
        in place with the new condition; otherwise a record is appended.
        """
        _require(table, "table")
        _require(condition, "condition")
        if condition.startswith(REVOKED_PREFIX):
            raise InvalidInput(f"condition cannot start with {REVOKED_PREFIX!r}")

        perms = self._permissions(username)
        for i, perm in enumerate(perms):
            if perm.scope is Scope.ROW and same_name(perm.table, table) and perm.action is action:
                perms[i] = perm.restored(condition)
                break
        else:
            perms.append(Permission(scope=Scope.ROW, table=table, action=action, condition=condition))
        self.store.update_user_permissions(username, perms)
        logger.debug(f"[rbac] granted row:{action.value} on {table} to {username}: {condition}")

    def revoke_row_permission(
        self,
        username: str,
        table: str,
        condition: Optional[str] = None,
        action: Optional[Action] = None,
    ) -> int:
        """
        Tombstone matching row records in place; returns how many changed.

        When ``condition`` is given only the record carrying it is revoked.
        """
        _require(table, "table")
        perms = self._permissions(username)
        changed = 0
        for i, perm in enumerate(perms):
            if (
                perm.scope is Scope.ROW
                and same_name(perm.table, table)
                and perm.matches_action(action)
                and not perm.is_revoked
                and (condition is None or perm.condition == condition)
            ):
                perms[i] = perm.revoked()
                changed += 1
        if changed:
            self.store.update_user_permissions(username, perms)
            logger.debug(f"[rbac] tombstoned {changed} row record(s) on {table} for {username}")
        return changed

    # ── role membership ─────────────────────────────────────────────── #

    def assign_role_to_user(self, username: str, role_name: str) -> bool:
        _require(username, "username")
        _require(role_name, "role name")
        if not self.store.user_exists(username):
            raise InvalidInput(f"User '{username}' does not exist")
        if self.store.get_role_id(role_name) is None:
            raise InvalidInput(f"Role '{role_name}' does not exist")
        return self.store.add_user_role(username, role_name)

    def remove_role_from_user(self, username: str, role_name: str) -> bool:
        _require(username, "username")
        if not self.store.user_exists(username):
            raise InvalidInput(f"User '{username}' does not exist")
        return self.store.remove_user_role(username, role_name)

    def user_has_role(self, username: str, role_name: str) -> bool:
        _require(username, "username")
        return role_name in self.store.get_user_roles(username)
