# sqlguard/sql/analyzer.py

from typing import Dict, List, Optional, Set

from sqlglot import exp

from sqlguard.config.defaults import default, logger
from sqlguard.data_classes import AnalyzedStatement, ColumnRef, StatementType
from sqlguard.errors import UnsupportedStatement
from sqlguard.rbac.permissions import STATEMENT_ACTIONS, WILDCARD

QUERY_TYPES = (exp.Select, exp.Union, exp.Intersect, exp.Except, exp.Subquery)


def _unique(items: List[str]) -> List[str]:
    seen: Set[str] = set()
    out: List[str] = []
    for item in items:
        key = item.casefold()
        if key not in seen:
            seen.add(key)
            out.append(item)
    return out


def _visible_ctes(with_: exp.With, via: Optional[exp.Expression]) -> List[exp.CTE]:
    """
    CTEs of ``with_`` a reference can see. From inside the body of CTE ``via``
    only the earlier siblings are visible, plus ``via`` itself when the WITH is
    recursive; from the query that owns the WITH all of them are.
    """
    ctes = list(with_.expressions)
    for i, cte in enumerate(ctes):
        if cte is via:
            return ctes[: i + 1] if with_.args.get("recursive") else ctes[:i]
    return ctes


def resolves_to_cte(table: exp.Table) -> bool:
    """Whether ``table`` names a CTE in scope at the point it is referenced."""
    name = table.name.casefold()
    child: exp.Expression = table
    node = table.parent
    while node is not None:
        if isinstance(node, exp.With):
            visible = _visible_ctes(node, child)
        else:
            with_ = next((v for v in node.args.values() if isinstance(v, exp.With)), None)
            visible = _visible_ctes(with_, None) if with_ is not None and with_ is not child else []
        if any(cte.alias_or_name.casefold() == name for cte in visible):
            return True
        child, node = node, node.parent
    return False


def is_physical(table: exp.Table) -> bool:
    """A FROM/JOIN entry that names a stored table (not a CTE, not a subquery)."""
    if not table.name:
        return False
    return bool(table.args.get("db")) or not resolves_to_cte(table)


def physical_tables(node: Optional[exp.Expression]) -> List[str]:
    if node is None:
        return []
    return _unique([t.name for t in node.find_all(exp.Table) if is_physical(t)])


def table_aliases(node: exp.Expression) -> Dict[str, str]:
    aliases: Dict[str, str] = {}
    for table in node.find_all(exp.Table):
        if table.alias and table.name:
            aliases[table.alias] = table.name
    return aliases


def projection_refs(node: exp.Expression) -> List[ColumnRef]:
    """Columns named by the projection list of every SELECT in ``node``."""
    refs: List[ColumnRef] = []
    for select in node.find_all(exp.Select):
        for projection in select.expressions:
            if isinstance(projection, exp.Star):
                refs.append(ColumnRef(WILDCARD))
                continue
            for column in projection.find_all(exp.Column):
                if column.is_star:
                    refs.append(ColumnRef(WILDCARD, column.table))
                elif column.name:
                    refs.append(ColumnRef(column.name, column.table))
    return list(dict.fromkeys(refs))


def _target_table(node: Optional[exp.Expression], statement: exp.Expression) -> exp.Table:
    if isinstance(node, exp.Schema):
        node = node.this
    if not isinstance(node, exp.Table) or not node.name:
        raise UnsupportedStatement(f"cannot resolve target table of {statement.key.upper()}")
    return node


class StatementAnalyzer:
    """
    Extracts what a statement touches: the tables it acts on, the columns
    it names, table aliases and the tables it only reads.
    """

    def __init__(self, dialect: Optional[str] = None):
        self.dialect = dialect or default.SQL_DIALECT

    def analyze(self, statement: exp.Expression) -> AnalyzedStatement:
        if isinstance(statement, QUERY_TYPES):
            analyzed = self._query(statement)
        elif isinstance(statement, exp.Insert):
            analyzed = self._insert(statement)
        elif isinstance(statement, exp.Update):
            analyzed = self._update(statement)
        elif isinstance(statement, exp.Delete):
            analyzed = self._delete(statement)
        elif isinstance(statement, exp.Create):
            analyzed = self._create(statement)
        elif isinstance(statement, exp.Alter):
            analyzed = self._alter(statement)
        elif isinstance(statement, exp.Drop):
            analyzed = self._drop(statement)
        else:
            raise UnsupportedStatement(f"unsupported statement: {statement.key.upper()}")

        analyzed.aliases = table_aliases(statement)
        analyzed.ast = statement
        logger.debug(
            f"[analyzer] {analyzed.statement_type.value} tables={analyzed.tables} "
            f"columns={analyzed.columns} sources={analyzed.source_tables}"
        )
        return analyzed

    def _build(
        self,
        statement_type: StatementType,
        tables: List[str],
        refs: List[ColumnRef],
        statement: exp.Expression,
        source_tables: Optional[List[str]] = None,
    ) -> AnalyzedStatement:
        where = statement.args.get("where")
        return AnalyzedStatement(
            statement_type=statement_type,
            action=STATEMENT_ACTIONS[statement_type.value],
            tables=_unique(tables),
            columns=_unique([ref.name for ref in refs]),
            column_refs=refs,
            source_tables=source_tables or [],
            where=where.this.sql(dialect=self.dialect) if where is not None else "",
        )

    # ── statement kinds ─────────────────────────────────────────────── #

    def _query(self, statement: exp.Expression) -> AnalyzedStatement:
        return self._build(
            StatementType.SELECT, physical_tables(statement), projection_refs(statement), statement,
        )

    def _insert(self, statement: exp.Insert) -> AnalyzedStatement:
        schema = statement.this
        target = _target_table(schema, statement)
        refs = []
        if isinstance(schema, exp.Schema):
            refs = [ColumnRef(col.name) for col in schema.expressions if col.name]
        sources = physical_tables(statement.expression)
        return self._build(StatementType.INSERT, [target.name], refs, statement, sources)

    def _update(self, statement: exp.Update) -> AnalyzedStatement:
        target = _target_table(statement.this, statement)
        refs = []
        for assignment in statement.expressions:
            column = assignment.this if isinstance(assignment, exp.EQ) else None
            if isinstance(column, exp.Column) and column.name:
                refs.append(ColumnRef(column.name, column.table))
        return self._build(
            StatementType.UPDATE, [target.name], refs, statement, self._reads(statement, target),
        )

    def _delete(self, statement: exp.Delete) -> AnalyzedStatement:
        target = _target_table(statement.this, statement)
        return self._build(
            StatementType.DELETE, [target.name], [], statement, self._reads(statement, target),
        )

    def _create(self, statement: exp.Create) -> AnalyzedStatement:
        node = statement.this
        if isinstance(node, exp.Index):
            node = node.args.get("table")
        target = _target_table(node, statement)
        refs = [ColumnRef(col.name) for col in statement.this.find_all(exp.ColumnDef) if col.name]
        sources = physical_tables(statement.expression)
        return self._build(StatementType.CREATE, [target.name], refs, statement, sources)

    def _alter(self, statement: exp.Alter) -> AnalyzedStatement:
        target = _target_table(statement.this, statement)
        refs = [ColumnRef(col.name) for col in statement.find_all(exp.ColumnDef) if col.name]
        return self._build(StatementType.ALTER, [target.name], refs, statement)

    def _drop(self, statement: exp.Drop) -> AnalyzedStatement:
        target = _target_table(statement.this, statement)
        return self._build(StatementType.DROP, [target.name], [], statement)

    @staticmethod
    def _reads(statement: exp.Expression, target: exp.Table) -> List[str]:
        """Tables an UPDATE/DELETE reads besides its target (FROM, USING, subqueries)."""
        return _unique([
            t.name for t in statement.find_all(exp.Table)
            if t is not target and is_physical(t)
        ])
