"""
Authorization pipeline tests: state order, short-circuiting, column and
row denials, rewriting and error propagation.
"""

from __future__ import annotations

import pytest
import sqlglot

from sqlguard.config.defaults import default
from sqlguard.errors import ParseError, PermissionDenied, StoreError, UnsupportedStatement
from sqlguard.pipeline import AuthorizationPipeline, PipelineState
from sqlguard.rbac.permissions import Action


def same_sql(actual: str, expected: str) -> bool:
    return sqlglot.parse_one(actual, read="duckdb") == sqlglot.parse_one(expected, read="duckdb")


@pytest.fixture()
def pipeline(store):
    return AuthorizationPipeline(store)


class TestAliceScenario:

    def test_row_condition_then_revoke(self, rbac, pipeline):
        rbac.grant_table_permission("alice", "orders", Action.SELECT)
        rbac.grant_row_permission("alice", "orders", "user_id = 42", Action.SELECT)

        authorized = pipeline.authorize("alice", "SELECT * FROM orders")
        assert authorized.rewritten
        assert same_sql(authorized.sql, "SELECT * FROM orders WHERE user_id = 42")
        assert authorized.original_sql == "SELECT * FROM orders"
        assert authorized.conditions == {"orders": ["user_id = 42"]}
        assert authorized.trace == [
            PipelineState.RECEIVED.value,
            PipelineState.PARSED.value,
            PipelineState.ANALYZED.value,
            PipelineState.TABLE_CHECKED.value,
            PipelineState.COLUMN_CHECKED.value,
            PipelineState.ROW_CHECKED.value,
            PipelineState.AUTHORIZED.value,
        ]

        rbac.revoke_row_permission("alice", "orders")
        with pytest.raises(PermissionDenied) as exc:
            pipeline.authorize("alice", "SELECT * FROM orders")
        assert exc.value.scope == "row"
        assert exc.value.table == "orders"

    def test_regrant_restores_access(self, rbac, pipeline):
        rbac.grant_table_permission("alice", "orders")
        rbac.grant_row_permission("alice", "orders", "user_id = 42")
        rbac.revoke_row_permission("alice", "orders")
        rbac.grant_row_permission("alice", "orders", "user_id = 7")

        authorized = pipeline.authorize("alice", "SELECT id FROM orders")
        assert same_sql(authorized.sql, "SELECT id FROM orders WHERE user_id = 7")


class TestTableCheck:

    def test_no_grant_is_denied(self, pipeline):
        with pytest.raises(PermissionDenied) as exc:
            pipeline.authorize("alice", "SELECT id FROM orders")
        assert (exc.value.scope, exc.value.table) == ("table", "orders")

    def test_table_check_runs_before_column_check(self, rbac, pipeline):
        rbac.grant_column_permission("alice", "orders", "id")
        with pytest.raises(PermissionDenied) as exc:
            pipeline.authorize("alice", "SELECT secret FROM orders")
        assert exc.value.scope == "table"

    def test_action_must_match(self, rbac, pipeline):
        rbac.grant_table_permission("alice", "orders", Action.SELECT)
        with pytest.raises(PermissionDenied):
            pipeline.authorize("alice", "DELETE FROM orders")

    def test_every_joined_table_is_checked(self, rbac, pipeline):
        rbac.grant_table_permission("alice", "orders")
        with pytest.raises(PermissionDenied) as exc:
            pipeline.authorize("alice", "SELECT o.id FROM orders o JOIN customers c ON o.cid = c.id")
        assert exc.value.table == "customers"

    def test_table_names_are_case_insensitive(self, rbac, pipeline):
        rbac.grant_table_permission("alice", "orders")
        rbac.grant_row_permission("alice", "orders", "user_id = 42")
        authorized = pipeline.authorize("alice", "SELECT * FROM ORDERS")
        assert same_sql(authorized.sql, "SELECT * FROM ORDERS WHERE user_id = 42")


class TestColumnCheck:

    @pytest.fixture(autouse=True)
    def _grants(self, rbac):
        rbac.grant_table_permission("alice", "orders", Action.SELECT)
        rbac.grant_column_permission("alice", "orders", "id", Action.SELECT)
        rbac.grant_column_permission("alice", "orders", "total", Action.SELECT)

    def test_named_columns_pass(self, pipeline):
        pipeline.authorize("alice", "SELECT id, total FROM orders")
        pipeline.authorize("alice", "SELECT o.id FROM orders AS o")

    def test_unnamed_column_is_denied(self, pipeline):
        with pytest.raises(PermissionDenied) as exc:
            pipeline.authorize("alice", "SELECT id, secret FROM orders")
        assert (exc.value.scope, exc.value.table, exc.value.column) == ("column", "orders", "secret")

    def test_star_needs_whole_table_column_grant(self, rbac, pipeline):
        with pytest.raises(PermissionDenied):
            pipeline.authorize("alice", "SELECT * FROM orders")
        rbac.grant_column_permission("alice", "orders", "*", Action.SELECT)
        pipeline.authorize("alice", "SELECT * FROM orders")

    def test_delete_skips_column_checks(self, rbac, pipeline):
        rbac.grant_table_permission("alice", "orders", Action.DELETE)
        rbac.grant_column_permission("alice", "orders", "id", Action.DELETE)
        pipeline.authorize("alice", "DELETE FROM orders WHERE secret = 1")

    def test_update_target_columns_are_checked(self, rbac, pipeline):
        rbac.grant_table_permission("alice", "orders", Action.UPDATE)
        rbac.grant_column_permission("alice", "orders", "total", Action.UPDATE)
        pipeline.authorize("alice", "UPDATE orders SET total = 0")
        with pytest.raises(PermissionDenied) as exc:
            pipeline.authorize("alice", "UPDATE orders SET owner = 'bob'")
        assert exc.value.column == "owner"


class TestInsertSelect:

    def test_sources_need_select(self, rbac, pipeline):
        rbac.grant_table_permission("alice", "archive", Action.INSERT)
        with pytest.raises(PermissionDenied) as exc:
            pipeline.authorize("alice", "INSERT INTO archive SELECT * FROM orders")
        assert exc.value.table == "orders"

    def test_sources_are_row_filtered(self, rbac, pipeline):
        rbac.grant_table_permission("alice", "archive", Action.INSERT)
        rbac.grant_table_permission("alice", "orders", Action.SELECT)
        rbac.grant_row_permission("alice", "orders", "user_id = 42", Action.SELECT)
        authorized = pipeline.authorize("alice", "INSERT INTO archive SELECT * FROM orders")
        assert same_sql(authorized.sql, "INSERT INTO archive SELECT * FROM orders WHERE user_id = 42")

    def test_revoked_source_row_rule_denies(self, rbac, pipeline):
        rbac.grant_table_permission("alice", "archive", Action.INSERT)
        rbac.grant_table_permission("alice", "orders", Action.SELECT)
        rbac.grant_row_permission("alice", "orders", "user_id = 42", Action.SELECT)
        rbac.revoke_row_permission("alice", "orders")
        with pytest.raises(PermissionDenied) as exc:
            pipeline.authorize("alice", "INSERT INTO archive SELECT * FROM orders")
        assert exc.value.scope == "row"


class TestCommonTableExpressions:

    def test_cte_shadowing_a_table_still_checks_it(self, pipeline):
        with pytest.raises(PermissionDenied) as exc:
            pipeline.authorize("alice", "WITH secrets AS (SELECT * FROM secrets) SELECT * FROM secrets")
        assert (exc.value.scope, exc.value.table) == ("table", "secrets")

    def test_cte_shadowing_a_table_is_row_filtered(self, rbac, pipeline):
        rbac.grant_table_permission("alice", "orders", Action.SELECT)
        rbac.grant_row_permission("alice", "orders", "user_id = 42", Action.SELECT)
        authorized = pipeline.authorize("alice", "WITH orders AS (SELECT * FROM orders) SELECT * FROM orders")
        assert authorized.tables == ["orders"]
        assert same_sql(
            authorized.sql, "WITH orders AS (SELECT * FROM orders WHERE user_id = 42) SELECT * FROM orders",
        )


class TestJoinedWrites:

    @pytest.fixture(autouse=True)
    def _grants(self, rbac):
        rbac.grant_table_permission("alice", "t", Action.UPDATE)
        rbac.grant_table_permission("alice", "t", Action.DELETE)
        rbac.grant_table_permission("alice", "orders", Action.SELECT)
        rbac.grant_row_permission("alice", "orders", "user_id = 42", Action.SELECT)

    def test_update_from_source_is_row_filtered(self, pipeline):
        authorized = pipeline.authorize("alice", "UPDATE t SET n = 1 FROM orders WHERE t.id = orders.id")
        assert authorized.rewritten
        assert same_sql(
            authorized.sql,
            "UPDATE t SET n = 1 FROM orders WHERE (t.id = orders.id) AND (orders.user_id = 42)",
        )

    def test_delete_using_source_is_row_filtered(self, pipeline):
        authorized = pipeline.authorize("alice", "DELETE FROM t USING orders o WHERE t.id = o.id")
        assert same_sql(
            authorized.sql, "DELETE FROM t USING orders AS o WHERE (t.id = o.id) AND (o.user_id = 42)",
        )

    def test_update_from_unreadable_source_is_denied(self, pipeline):
        with pytest.raises(PermissionDenied) as exc:
            pipeline.authorize("alice", "UPDATE t SET n = 1 FROM customers WHERE t.id = customers.id")
        assert (exc.value.scope, exc.value.table) == ("table", "customers")


class TestRowCheck:

    def test_no_row_records_proceeds_unmodified(self, rbac, pipeline):
        rbac.grant_table_permission("alice", "orders")
        authorized = pipeline.authorize("alice", "SELECT id FROM orders")
        assert not authorized.rewritten
        assert same_sql(authorized.sql, "SELECT id FROM orders")

    def test_row_rules_for_other_actions_do_not_deny(self, rbac, pipeline):
        rbac.grant_table_permission("alice", "orders", Action.SELECT)
        rbac.grant_row_permission("alice", "orders", "user_id = 42", Action.UPDATE)
        rbac.revoke_row_permission("alice", "orders", action=Action.UPDATE)
        pipeline.authorize("alice", "SELECT id FROM orders")

    def test_update_rewritten_with_update_condition(self, rbac, pipeline):
        rbac.grant_table_permission("alice", "orders", Action.UPDATE)
        rbac.grant_row_permission("alice", "orders", "user_id = 42", Action.UPDATE)
        authorized = pipeline.authorize("alice", "UPDATE orders SET total = 0 WHERE id = 1")
        assert same_sql(authorized.sql, "UPDATE orders SET total = 0 WHERE (id = 1) AND (user_id = 42)")


class TestErrors:

    def test_parse_error_propagates(self, rbac, pipeline):
        with pytest.raises(ParseError):
            pipeline.authorize("alice", "SELECT * FROM orders WHERE (")

    def test_unsupported_statement(self, pipeline):
        with pytest.raises(UnsupportedStatement):
            pipeline.authorize("alice", "SELECT 1; SELECT 2")

    def test_unknown_user_is_a_store_error(self, pipeline):
        with pytest.raises(StoreError):
            pipeline.authorize("mallory", "SELECT id FROM orders")

    def test_denial_detail_can_be_hidden(self, pipeline):
        default.update_default(HIDE_DENIAL_DETAIL=True)
        with pytest.raises(PermissionDenied) as exc:
            pipeline.authorize("alice", "SELECT id FROM orders")
        assert exc.value.message == "access denied on orders"
        assert exc.value.scope is None
        assert exc.value.table == "orders"
