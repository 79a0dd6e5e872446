# sqlguard/pipeline.py

from enum import Enum
from typing import List, Optional

from sqlguard.config.defaults import default, logger
from sqlguard.data_classes import AnalyzedStatement, AuthorizedStatement, ColumnRef, StatementType
from sqlguard.errors import PermissionDenied
from sqlguard.rbac.permissions import Action, Scope, same_name
from sqlguard.rbac.rbac_manager import RBACManager
from sqlguard.sql.analyzer import StatementAnalyzer
from sqlguard.sql.security_rewriter import SecurityRewriter
from sqlguard.sql.sql_parser import SQLParser
from sqlguard.store.provider import AuthStore


class PipelineState(Enum):
    RECEIVED = "received"
    PARSED = "parsed"
    ANALYZED = "analyzed"
    TABLE_CHECKED = "table_checked"
    COLUMN_CHECKED = "column_checked"
    ROW_CHECKED = "row_checked"
    AUTHORIZED = "authorized"
    DENIED = "denied"


# Statement kinds whose named columns are checked.
COLUMN_CHECKED_TYPES = (StatementType.SELECT, StatementType.INSERT, StatementType.UPDATE)


class AuthorizationPipeline:
    """
    parse -> analyze -> table check -> column check -> row check -> rewrite.

    Stateless per call; permissions are read from the store on every check.
    A denial raises ``PermissionDenied`` and nothing is rewritten.
    """

    def __init__(
        self,
        store: AuthStore,
        parser: Optional[SQLParser] = None,
        analyzer: Optional[StatementAnalyzer] = None,
        rewriter: Optional[SecurityRewriter] = None,
        rbac: Optional[RBACManager] = None,
    ):
        self.store = store
        self.rbac = rbac or RBACManager(store)
        self.parser = parser or SQLParser()
        self.analyzer = analyzer or StatementAnalyzer(self.parser.dialect)
        self.rewriter = rewriter or SecurityRewriter(self.rbac, self.parser)

    def authorize(self, username: str, sql: str) -> AuthorizedStatement:
        trace: List[str] = []

        def advance(state: PipelineState) -> None:
            trace.append(state.value)
            logger.debug(f"[pipeline] {username}: {state.value}")

        advance(PipelineState.RECEIVED)
        statement = self.parser.parse(sql)
        advance(PipelineState.PARSED)
        analyzed = self.analyzer.analyze(statement)
        advance(PipelineState.ANALYZED)

        try:
            self._check_tables(username, analyzed)
            advance(PipelineState.TABLE_CHECKED)
            if analyzed.statement_type in COLUMN_CHECKED_TYPES:
                self._check_columns(username, analyzed)
            advance(PipelineState.COLUMN_CHECKED)
            self._check_rows(username, analyzed)
            advance(PipelineState.ROW_CHECKED)
        except PermissionDenied as e:
            advance(PipelineState.DENIED)
            logger.warning(f"[pipeline] denied for {username}: {e.message}")
            raise

        result = self.rewriter.rewrite(analyzed, username)
        advance(PipelineState.AUTHORIZED)
        return AuthorizedStatement(
            sql=result.sql,
            original_sql=sql,
            statement_type=analyzed.statement_type,
            action=analyzed.action,
            tables=list(analyzed.tables),
            columns=list(analyzed.columns),
            conditions=result.conditions,
            rewritten=result.rewritten,
            trace=trace,
        )

    # ── checks ──────────────────────────────────────────────────────── #

    def _checked_tables(self, analyzed: AnalyzedStatement):
        for table in analyzed.tables:
            yield table, analyzed.action
        for table in analyzed.source_tables:
            yield table, Action.SELECT

    def _check_tables(self, username: str, analyzed: AnalyzedStatement) -> None:
        for table, action in self._checked_tables(analyzed):
            if not self.rbac.has_table_permission(username, table, Scope.TABLE, action):
                raise self._denial(
                    f"no {action.value} permission on table {table}", Scope.TABLE, table,
                )

    def _check_columns(self, username: str, analyzed: AnalyzedStatement) -> None:
        for ref in analyzed.column_refs:
            for table in self._column_tables(analyzed, ref):
                if not self.rbac.is_column_allowed(username, table, ref.name, analyzed.action):
                    raise self._denial(
                        f"no {analyzed.action.value} permission on column {ref.name} in table {table}",
                        Scope.COLUMN,
                        table,
                        ref.name,
                    )

    def _check_rows(self, username: str, analyzed: AnalyzedStatement) -> None:
        for table, action in self._checked_tables(analyzed):
            if not self.rbac.has_row_rules(username, table, action):
                continue
            rules = self.rbac.get_row_permissions(username, table, Scope.ROW, action)
            if not rules[0].granted:
                raise self._denial(
                    f"row-level {action.value} access on table {table} is revoked", Scope.ROW, table,
                )

    @staticmethod
    def _column_tables(analyzed: AnalyzedStatement, ref: ColumnRef) -> List[str]:
        """
        Tables a column reference is checked against. A qualified reference
        resolves through the alias map; an unqualified one is checked against
        every table the statement acts on.
        """
        if not ref.qualifier:
            return analyzed.tables
        qualifier = next(
            (table for alias, table in analyzed.aliases.items() if same_name(alias, ref.qualifier)),
            ref.qualifier,
        )
        return [table for table in analyzed.tables if same_name(table, qualifier)]

    @staticmethod
    def _denial(message: str, scope: Scope, table: str, column: Optional[str] = None) -> PermissionDenied:
        if default.HIDE_DENIAL_DETAIL:
            target = f"{table}.{column}" if column else table
            return PermissionDenied(f"access denied on {target}", table=table, column=column)
        return PermissionDenied(message, table=table, column=column, scope=scope.value)
