# sqlguard/sql/security_rewriter.py

from functools import reduce
from typing import Dict, List, Optional, Set, Tuple

from sqlglot import exp

from sqlguard.config.defaults import default, logger
from sqlguard.data_classes import AnalyzedStatement, RewriteResult, StatementType
from sqlguard.rbac.permissions import Action
from sqlguard.rbac.rbac_manager import RBACManager
from sqlguard.sql.analyzer import is_physical
from sqlguard.sql.sql_parser import SQLParser


def conjuncts(node: Optional[exp.Expression]) -> List[exp.Expression]:
    """Flatten a predicate into its AND-ed parts, unwrapping parentheses."""
    if node is None:
        return []
    if isinstance(node, exp.Paren):
        return conjuncts(node.this)
    if isinstance(node, exp.And):
        return conjuncts(node.this) + conjuncts(node.expression)
    return [node]


def _paren(node: exp.Expression) -> exp.Expression:
    return node if isinstance(node, exp.Paren) else exp.Paren(this=node)


class SecurityRewriter:
    """
    Injects row-level conditions into the WHERE clause of a statement.

    Every SELECT scope gets the conditions of the tables it reads directly;
    UPDATE and DELETE get the conditions of their target table for their own
    action, plus the SELECT conditions of tables joined through FROM or
    USING. INSERT targets and DDL without an embedded query pass through.
    The analyzed statement's AST is never mutated.
    """

    def __init__(
        self,
        rbac: RBACManager,
        parser: Optional[SQLParser] = None,
        identity_column: Optional[str] = None,
    ):
        self.rbac = rbac
        self.parser = parser or SQLParser()
        self.identity_column = identity_column or default.IDENTITY_COLUMN

    def rewrite(self, analyzed: AnalyzedStatement, username: str) -> RewriteResult:
        statement = analyzed.ast.copy()
        injected: Dict[str, List[str]] = {}
        fetched: Dict[Tuple[str, Action], List[str]] = {}

        def conditions_for(table: str, action: Action) -> List[str]:
            key = (table.casefold(), action)
            if key not in fetched:
                fetched[key] = self.rbac.get_row_conditions(username, table, action)
            return fetched[key]

        if analyzed.statement_type in (StatementType.UPDATE, StatementType.DELETE):
            target = statement.this
            if isinstance(target, exp.Table):
                # UPDATE ... FROM / DELETE ... USING: tables joined at statement level
                sources = [
                    table for table in statement.find_all(exp.Table)
                    if table is not target and table.find_ancestor(exp.Select) is None and is_physical(table)
                ]
                target_qualifier = target.alias or (target.name if sources else "")
                scope = [(target, conditions_for(target.name, analyzed.action), target_qualifier)]
                scope += [
                    (table, conditions_for(table.name, Action.SELECT), table.alias or table.name)
                    for table in sources
                ]
                self._apply(statement, scope, injected)

        for select in list(statement.find_all(exp.Select)):
            scope = [
                (table, conditions_for(table.name, Action.SELECT), table.alias)
                for table in select.find_all(exp.Table)
                if table.find_ancestor(exp.Select) is select and is_physical(table)
            ]
            self._apply(select, scope, injected)

        sql = self.parser.render(statement)
        if injected:
            logger.debug(f"[rewriter] {username}: injected {injected}")
        return RewriteResult(statement=statement, sql=sql, conditions=injected)

    def _apply(
        self,
        node: exp.Expression,
        scope: List[Tuple[exp.Table, List[str], str]],
        injected: Dict[str, List[str]],
    ) -> None:
        where = node.args.get("where")
        existing = where.this if where is not None else None
        present: Set[str] = {self._key(part) for part in conjuncts(existing)}

        fresh: List[exp.Expression] = []
        for table, conditions, qualifier in scope:
            for condition in conditions:
                predicate = self._qualified(condition, qualifier)
                parts = {self._key(part) for part in conjuncts(predicate)}
                if parts <= present:
                    continue
                present |= parts
                fresh.append(predicate)
                injected.setdefault(table.name, []).append(self.parser.render(predicate))

        if not fresh:
            return

        if existing is None and len(fresh) == 1:
            combined = fresh[0]
        else:
            terms = ([existing] if existing is not None else []) + fresh
            combined = reduce(
                lambda left, right: exp.And(this=left, expression=right),
                [_paren(term) for term in terms],
            )
        node.set("where", exp.Where(this=combined))

    def _qualified(self, condition: str, qualifier: str) -> exp.Expression:
        """Parse a stored condition; qualify the identity column with ``qualifier``."""
        predicate = self.parser.parse_condition(condition)
        if qualifier:
            for column in predicate.find_all(exp.Column):
                if not column.table and column.name.casefold() == self.identity_column.casefold():
                    column.set("table", exp.to_identifier(qualifier))
        return predicate

    def _key(self, node: exp.Expression) -> str:
        return self.parser.render(node)
