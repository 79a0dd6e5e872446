from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from sqlglot import exp

from sqlguard.rbac.permissions import Action


class StatementType(Enum):
    SELECT = "SELECT"
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    CREATE = "CREATE"
    ALTER = "ALTER"
    DROP = "DROP"


@dataclass(frozen=True)
class ColumnRef:
    name: str
    # Table name or alias the column was qualified with, "" if unqualified.
    qualifier: str = ""


@dataclass
class AnalyzedStatement:
    """Tables and columns referenced by one parsed statement.

    - tables: tables the statement acts on with ``action``.
    - source_tables: tables only read (INSERT ... SELECT); checked for SELECT.
    - columns: referenced column names; ``"*"`` defers to table permission.
    - aliases: alias -> table name for every aliased table reference.
    """
    statement_type: StatementType
    action: Action
    tables: List[str] = field(default_factory=list)
    columns: List[str] = field(default_factory=list)
    column_refs: List[ColumnRef] = field(default_factory=list)
    aliases: Dict[str, str] = field(default_factory=dict)
    source_tables: List[str] = field(default_factory=list)
    where: str = ""
    ast: Optional[exp.Expression] = None


@dataclass
class RewriteResult:
    statement: exp.Expression
    sql: str
    # table -> conditions injected for it (empty when nothing was added)
    conditions: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def rewritten(self) -> bool:
        return any(self.conditions.values())


@dataclass
class AuthorizedStatement:
    """Outcome of a successful pass through the authorization pipeline."""
    sql: str
    original_sql: str
    statement_type: StatementType
    action: Action
    tables: List[str] = field(default_factory=list)
    columns: List[str] = field(default_factory=list)
    conditions: Dict[str, List[str]] = field(default_factory=dict)
    rewritten: bool = False
    # pipeline states passed through, ending in AUTHORIZED
    trace: List[str] = field(default_factory=list)


@dataclass
class User:
    user_id: int
    username: str
    created_at: datetime


@dataclass
class Session:
    session_id: str
    username: str
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or datetime.now(timezone.utc)) >= self.expires_at
