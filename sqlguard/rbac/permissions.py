# sqlguard/rbac/permissions.py

from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Optional

from sqlguard.errors import InvalidInput

# Prefix written in front of a row condition to mark it revoked.
REVOKED_PREFIX = "REVOKED:"
# Matches every table (or every column).
WILDCARD = "*"


def same_name(a: str, b: str) -> bool:
    """SQL identifiers compare case-insensitively."""
    return a.casefold() == b.casefold()


class Scope(Enum):
    TABLE = "table"
    COLUMN = "column"
    ROW = "row"


class Action(Enum):
    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    CREATE = "create"
    DROP = "drop"
    ALTER = "alter"


@dataclass(frozen=True)
class Permission:
    """
    A single grant (or tombstoned revoke) record.

    * ``scope``     – granularity: table, column or row.
    * ``table``     – target table, or ``"*"`` for all tables.
    * ``column``    – target column for column scope, ``""`` or ``"*"`` otherwise.
    * ``action``    – statement action the record applies to.
    * ``condition`` – row scope predicate; prefixed with ``REVOKED:`` once revoked.
    """
    scope: Scope
    table: str
    column: str = ""
    action: Action = Action.SELECT
    condition: str = ""

    @property
    def is_revoked(self) -> bool:
        return self.condition.startswith(REVOKED_PREFIX)

    @property
    def is_granted(self) -> bool:
        """Row records need a live, non-empty condition to count as granted."""
        if self.is_revoked:
            return False
        if self.scope is Scope.ROW:
            return bool(self.condition.strip())
        return True

    @property
    def active_condition(self) -> str:
        """Condition without the tombstone prefix."""
        if self.is_revoked:
            return self.condition[len(REVOKED_PREFIX):]
        return self.condition

    def matches_table(self, table: str) -> bool:
        return self.table == WILDCARD or same_name(self.table, table)

    def matches_column(self, column: str) -> bool:
        return self.column in (WILDCARD, "") or same_name(self.column, column)

    def matches_action(self, action: Optional[Action]) -> bool:
        return action is None or self.action is action

    def revoked(self) -> "Permission":
        if self.is_revoked:
            return self
        return replace(self, condition=REVOKED_PREFIX + self.condition)

    def restored(self, condition: str) -> "Permission":
        return replace(self, condition=condition)

    def to_json(self) -> Dict[str, str]:
        return {
            "scope": self.scope.value,
            "table": self.table,
            "column": self.column,
            "action": self.action.value,
            "condition": self.condition,
        }

    @classmethod
    def from_json(cls, data: Dict[str, str]) -> "Permission":
        return cls(
            scope=Scope(data["scope"]),
            table=data["table"],
            column=data.get("column", ""),
            action=Action(data.get("action", Action.SELECT.value)),
            condition=data.get("condition", ""),
        )


@dataclass(frozen=True)
class RowPermissionRule:
    """Synthesized outcome of the row-level check for one table."""
    granted: bool
    table: str = ""
    condition: Optional[str] = None


def parse_permission(text: str, action: Action = Action.SELECT) -> Permission:
    """Parse the compact textual form of a permission.

    * ``orders``              – table scope
    * ``orders.total``        – column scope
    * ``orders.amount<=100``  – row scope, condition ``amount <= 100``
    """
    if not text or not text.strip():
        raise InvalidInput("permission cannot be empty")

    parts = text.strip().split(".", 1)
    if len(parts) == 1:
        return Permission(scope=Scope.TABLE, table=parts[0], action=action)

    table, rest = parts
    if "<=" in rest:
        column, _, bound = rest.partition("<=")
        if not column.strip() or not bound.strip():
            raise InvalidInput(f"invalid row permission format: {text}")
        return Permission(
            scope=Scope.ROW,
            table=table,
            column=column.strip(),
            action=action,
            condition=f"{column.strip()} <= {bound.strip()}",
        )
    if "." in rest or not rest:
        raise InvalidInput(f"invalid permission format: {text}")
    return Permission(scope=Scope.COLUMN, table=table, column=rest, action=action)


# Statement keyword -> action, used by the analyzer.
STATEMENT_ACTIONS: Dict[str, Action] = {
    "SELECT": Action.SELECT,
    "INSERT": Action.INSERT,
    "UPDATE": Action.UPDATE,
    "DELETE": Action.DELETE,
    "CREATE": Action.CREATE,
    "DROP": Action.DROP,
    "ALTER": Action.ALTER,
}
