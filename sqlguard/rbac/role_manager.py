# sqlguard/rbac/role_manager.py

from typing import Callable, List, Optional

from sqlguard.config.defaults import logger
from sqlguard.errors import InvalidInput
from sqlguard.rbac.permissions import Action
from sqlguard.rbac.rbac_manager import RBACManager
from sqlguard.store.provider import AuthStore


class RoleManager:
    """
    Business-logic layer for roles.

    Roles have a stable integer id and a unique name; membership lives in
    the store. Granting to a role is materialized: the permission is written
    onto every current member at grant time. Removing a user from a role
    later does not take those permissions back; only a per-user revoke does.
    """

    def __init__(self, store: AuthStore, rbac_manager: Optional[RBACManager] = None):
        self.store = store
        self.rbac = rbac_manager or RBACManager(store)

    # ── CRUD ────────────────────────────────────────────────────────── #

    def create_role(self, role_name: str) -> int:
        """Create a role and return its id."""
        role_id = self.store.add_role(role_name)
        logger.debug(f"[roles] Role created: {role_name} ({role_id})")
        return role_id

    def role_exists(self, role_name: str) -> bool:
        return self.store.get_role_id(role_name) is not None

    def get_role_id(self, role_name: str) -> Optional[int]:
        return self.store.get_role_id(role_name)

    def delete_role(self, role_name: str) -> None:
        """Delete a role and strip it from every member."""
        role_id = self.store.get_role_id(role_name)
        if role_id is None:
            raise InvalidInput(f"Role '{role_name}' does not exist")
        for username in self.store.get_users_with_role(role_name):
            self.rbac.remove_role_from_user(username, role_name)
        self.store.delete_role(role_id)
        logger.debug(f"[roles] Role deleted: {role_name} ({role_id})")

    def members(self, role_id: int) -> List[str]:
        role_name = self.store.get_role_name(role_id)
        if role_name is None:
            raise InvalidInput(f"Role {role_id} does not exist")
        return self.store.get_users_with_role(role_name)

    # ── bulk propagation ────────────────────────────────────────────── #

    def _for_each_member(self, role_id: int, apply: Callable[[str], object]) -> List[str]:
        users = self.members(role_id)
        for username in users:
            apply(username)
        return users

    def grant_table_permission_to_role(self, role_id: int, table: str, action: Action = Action.SELECT) -> List[str]:
        """Grant table access to every member; returns the users touched."""
        users = self._for_each_member(
            role_id, lambda u: self.rbac.grant_table_permission(u, table, action)
        )
        logger.debug(f"[roles] table:{action.value} on {table} granted to {len(users)} member(s) of role {role_id}")
        return users

    def grant_column_permission_to_role(
        self, role_id: int, table: str, column: str, action: Action = Action.SELECT,
    ) -> List[str]:
        return self._for_each_member(
            role_id, lambda u: self.rbac.grant_column_permission(u, table, column, action)
        )

    def grant_row_permission_to_role(
        self, role_id: int, table: str, condition: str, action: Action = Action.SELECT,
    ) -> List[str]:
        return self._for_each_member(
            role_id, lambda u: self.rbac.grant_row_permission(u, table, condition, action)
        )

    def revoke_table_permission_from_role(self, role_id: int, table: str, action: Optional[Action] = None) -> List[str]:
        return self._for_each_member(
            role_id, lambda u: self.rbac.revoke_table_permission(u, table, action)
        )

    def revoke_column_permission_from_role(
        self, role_id: int, table: str, column: str, action: Optional[Action] = None,
    ) -> List[str]:
        return self._for_each_member(
            role_id, lambda u: self.rbac.revoke_column_permission(u, table, column, action)
        )

    def revoke_row_permission_from_role(
        self, role_id: int, table: str, condition: Optional[str] = None, action: Optional[Action] = None,
    ) -> List[str]:
        return self._for_each_member(
            role_id, lambda u: self.rbac.revoke_row_permission(u, table, condition, action)
        )
