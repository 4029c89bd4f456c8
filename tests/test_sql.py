"""
Unit tests for the SQL strategy: parsing helpers, actions, evaluator and heuristic builder.
"""

from datetime import date

import pytest

from qforge.core.action_space import Action, ActionType, Transformed
from qforge.core.objective import Objective, Timeframe
from qforge.sql import create_sql_strategy, parsing
from qforge.sql.actions import SqlActionSpace, derive_filter_predicate
from qforge.sql.evaluator import (
    build_heuristic_sql,
    evaluate_sql,
    explain_query,
    normalize_timeframe,
    wants_all_records,
)


class TestParsing:
    """Tests for the regex helpers."""

    def test_select_columns_strip_aliases(self):
        assert parsing.select_columns("SELECT id, amount AS a FROM t") == ["id", "amount"]
        assert parsing.select_columns("SELECT * FROM t") == ["*"]
        assert parsing.select_columns("DELETE FROM t") == []

    def test_where_predicates(self):
        sql = "SELECT * FROM t WHERE (a = 1 OR b = 2) AND c = 3 ORDER BY id"
        assert parsing.where_predicates(sql) == ["a = 1", "b = 2", "c = 3"]

    def test_aggregations_are_upper_cased(self):
        assert parsing.aggregations("SELECT sum(amount), COUNT(id) FROM t") == ["SUM(AMOUNT)", "COUNT(ID)"]

    def test_entity_column(self):
        assert parsing.entity_column("Merchants") == "merchant_name"
        assert parsing.entity_column("category") == "category"
        assert parsing.entity_column("store") == "store"
        assert parsing.entity_column(None) is None

    def test_match_predicate(self):
        assert parsing.match_predicate("category", ("Coffee",)) == "category = 'Coffee'"
        assert parsing.match_predicate("merchant_name", ("A", "B's")) == "merchant_name IN ('A', 'B''s')"

    def test_sub_outside_quotes(self):
        sql = "SELECT * FROM t WHERE merchant = 'merchant'"
        assert parsing.sub_outside_quotes(r"\bmerchant\b", "merchant_name", sql) == \
            "SELECT * FROM t WHERE merchant_name = 'merchant'"


class TestSqlActionSpace:
    """Tests for SQL action gating and transformations."""

    def test_applicable_actions_for_unfiltered_star(self, coffee_objective):
        actions = SqlActionSpace().get_applicable_actions("SELECT * FROM transactions", coffee_objective, 1)
        assert actions == [
            ActionType.USE_GENERATOR,
            ActionType.ADD_FILTER,
            ActionType.ADD_AGGREGATION,
            ActionType.ADD_ORDER_BY,
        ]

    def test_applicable_actions_for_filtered_columns(self, merchant_objective):
        sql = "SELECT id, SUM(amount) FROM transactions WHERE merchant_name = 'Starbucks' ORDER BY id"
        actions = SqlActionSpace().get_applicable_actions(sql, merchant_objective, 5)
        assert actions == [
            ActionType.USE_GENERATOR,
            ActionType.ADD_FIELD,
            ActionType.REMOVE_FIELD,
            ActionType.MODIFY_FILTER_OPERATOR,
            ActionType.REMOVE_FILTER,
            ActionType.FIX_ENTITY_MAPPING,
            ActionType.REMOVE_AGGREGATION,
            ActionType.RESET,
        ]

    def test_empty_candidate(self, coffee_objective):
        assert SqlActionSpace().get_applicable_actions("", coffee_objective, 1) == [ActionType.USE_GENERATOR]

    def test_add_filter_uses_objective_filters(self, coffee_objective):
        outcome = SqlActionSpace().apply_action("SELECT * FROM transactions", ActionType.ADD_FILTER,
                                                coffee_objective)
        assert isinstance(outcome, Transformed)
        assert outcome.candidate == "SELECT * FROM transactions WHERE category = 'Coffee'"

    def test_add_filter_keeps_existing_where(self):
        sql = "SELECT * FROM t WHERE a = 1"
        assert SqlActionSpace.add_filter(sql, "b = 2") == sql

    def test_derive_filter_predicate(self, merchant_objective):
        assert derive_filter_predicate(merchant_objective) == "merchant_name IN ('Starbucks', 'Dunkin')"
        assert derive_filter_predicate(None) == "amount > 0"
        assert derive_filter_predicate(None, {"predicate": "id = 1"}) == "id = 1"

    def test_add_and_remove_field(self):
        assert SqlActionSpace.add_field("SELECT * FROM t") == "SELECT id, amount FROM t"
        assert SqlActionSpace.add_field("SELECT id FROM t", "category") == "SELECT id, category FROM t"
        assert SqlActionSpace.add_field("SELECT id, amount FROM t") == "SELECT id, amount FROM t"
        assert SqlActionSpace.remove_field("SELECT id, amount FROM t") == "SELECT id FROM t"
        assert SqlActionSpace.remove_field("SELECT id, amount FROM t", "id") == "SELECT amount FROM t"
        assert SqlActionSpace.remove_field("SELECT id FROM t") == "SELECT * FROM t"

    def test_modify_filter_operator_expands_identifiers(self, merchant_objective):
        sql = "SELECT * FROM transactions WHERE merchant_name = 'Starbucks'"
        assert SqlActionSpace.modify_filter_operator(sql, merchant_objective) == \
            "SELECT * FROM transactions WHERE merchant_name IN ('Starbucks', 'Dunkin')"

    def test_modify_filter_operator_without_equality(self):
        sql = "SELECT * FROM t WHERE amount > 0"
        assert SqlActionSpace.modify_filter_operator(sql) == sql

    def test_remove_filter_keeps_following_clauses(self):
        assert SqlActionSpace.remove_filter("SELECT * FROM t WHERE a = 1 ORDER BY id") == \
            "SELECT * FROM t ORDER BY id"
        assert SqlActionSpace.remove_filter("SELECT * FROM t WHERE a = 1;") == "SELECT * FROM t;"

    def test_aggregation_round(self):
        aggregated = SqlActionSpace.add_aggregation("SELECT * FROM t WHERE a = 1")
        assert aggregated == "SELECT SUM(amount) FROM t WHERE a = 1"
        assert SqlActionSpace.remove_aggregation(aggregated) == "SELECT * FROM t WHERE a = 1"

    def test_remove_aggregation_drops_group_by(self):
        sql = "SELECT category, COUNT(id) FROM t GROUP BY category ORDER BY category"
        assert SqlActionSpace.remove_aggregation(sql) == "SELECT category FROM t ORDER BY category"

    def test_add_order_by_before_limit(self):
        assert SqlActionSpace.add_order_by("SELECT * FROM t LIMIT 5;") == \
            "SELECT * FROM t ORDER BY created_at DESC LIMIT 5;"
        assert SqlActionSpace.add_order_by("SELECT * FROM t") == "SELECT * FROM t ORDER BY created_at DESC"

    def test_fix_entity_mapping(self, merchant_objective):
        sql = "SELECT * FROM transactions WHERE category = 'Starbucks'"
        assert SqlActionSpace.fix_entity_mapping(sql, merchant_objective) == \
            "SELECT * FROM transactions WHERE merchant_name = 'Starbucks'"

    def test_missing_anchor_returns_input(self, coffee_objective):
        """Transformations leave statements without the needed structure unchanged."""
        outcome = SqlActionSpace().apply_action("not sql at all", Action(ActionType.ADD_FIELD), coffee_objective)
        assert outcome.candidate == "not sql at all"


class TestEvaluateSql:
    """Tests for the default SQL evaluator."""

    def _code(self, sql, objective):
        result = evaluate_sql(sql, explain_query(sql), objective)
        return None if result.passed else result.feedback.code

    def test_not_a_select(self, coffee_objective):
        assert self._code("DELETE FROM transactions", coffee_objective) == "NOT_A_SELECT"

    def test_missing_filter_field(self, coffee_objective):
        result = evaluate_sql("SELECT * FROM transactions", {}, coffee_objective)
        assert not result.passed
        assert result.feedback.code == "MISSING_FILTER_FIELD"
        assert result.feedback.fix == "Add category to WHERE clause"

    def test_filter_passes(self, coffee_objective):
        assert self._code("SELECT * FROM transactions WHERE category = 'Coffee'", coffee_objective) is None

    def test_unknown_entity(self):
        objective = Objective.from_dict({
            "intent": "store sales",
            "scope": {"entity": {"type": "store", "identifier": "Main St"}},
            "constraints": {},
        })
        assert self._code("SELECT * FROM transactions", objective) == "UNKNOWN_ENTITY"

    def test_wrong_column(self, merchant_objective):
        assert self._code("SELECT * FROM transactions WHERE category = 'Starbucks'",
                          merchant_objective) == "WRONG_COLUMN"

    def test_multi_entity_requires_in(self, merchant_objective):
        assert self._code("SELECT * FROM transactions WHERE merchant_name = 'Starbucks'",
                          merchant_objective) == "MULTI_ENTITY_NO_IN"
        assert self._code("SELECT * FROM transactions WHERE merchant_name IN ('Starbucks', 'Dunkin')",
                          merchant_objective) is None

    def test_unwanted_aggregation(self, coffee_objective):
        assert self._code("SELECT SUM(amount) FROM transactions WHERE category = 'Coffee'",
                          coffee_objective) == "UNWANTED_AGGREGATION"

    def test_missing_required_field(self):
        objective = Objective.from_dict({"intent": "amounts", "scope": {},
                                         "constraints": {"must_include": ["amount"]}})
        assert self._code("SELECT id FROM transactions", objective) == "MISSING_REQUIRED_FIELD"

    def test_timeframe_mismatch(self):
        objective = Objective.from_dict({
            "intent": "spending in 2025",
            "scope": {"timeframe": {"type": "ABSOLUTE", "value": "2025"}},
            "constraints": {},
        })
        assert self._code("SELECT * FROM transactions", objective) == "TIMEFRAME_MISMATCH"
        assert self._code(build_heuristic_sql(objective), objective) is None

    def test_wants_all_records(self):
        assert wants_all_records("Show all coffee purchases")
        assert not wants_all_records("Show the total of all purchases")
        assert not wants_all_records("Show overall spend")


class TestTimeframes:
    """Tests for normalize_timeframe."""

    TODAY = date(2026, 1, 15)

    @pytest.mark.parametrize("kind,value,expected", [
        ("RELATIVE", "LAST_YEAR", ("2025-01-01", "2026-01-01")),
        ("RELATIVE", "THIS_YEAR", ("2026-01-01", "2027-01-01")),
        ("RELATIVE", "LAST_MONTH", ("2025-12-01", "2026-01-01")),
        ("RELATIVE", "THIS_MONTH", ("2026-01-01", "2026-02-01")),
        ("ABSOLUTE", "December 2025", ("2025-12-01", "2026-01-01")),
        ("ABSOLUTE", "2024", ("2024-01-01", "2025-01-01")),
        ("ABSOLUTE", "someday", None),
        ("FUZZY", "LAST_YEAR", None),
    ])
    def test_ranges(self, kind, value, expected):
        assert normalize_timeframe(Timeframe(kind, value), today=self.TODAY) == expected

    def test_none(self):
        assert normalize_timeframe(None) is None


class TestHeuristicSql:
    """Tests for the deterministic fallback builder."""

    def test_filter(self, coffee_objective):
        assert build_heuristic_sql(coffee_objective) == "SELECT * FROM transactions WHERE category = 'Coffee'"

    def test_entity_and_table_from_context(self, merchant_objective):
        assert build_heuristic_sql(merchant_objective, {"table": "payments"}) == \
            "SELECT * FROM payments WHERE merchant_name IN ('Starbucks', 'Dunkin')"

    def test_no_scope(self):
        assert build_heuristic_sql(Objective(intent="everything")) == "SELECT * FROM transactions"

    def test_ignores_previous_candidate(self, coffee_objective):
        assert build_heuristic_sql(coffee_objective, None, "DROP TABLE x") == build_heuristic_sql(coffee_objective)

    def test_fallback_always_passes_evaluation(self, coffee_objective, merchant_objective):
        for objective in (coffee_objective, merchant_objective):
            sql = build_heuristic_sql(objective)
            assert evaluate_sql(sql, explain_query(sql), objective).passed


class TestSqlStrategy:
    """Tests for the strategy bundle."""

    def test_defaults(self):
        strategy = create_sql_strategy(min_reset_iteration=2, semantic_penalty_per_issue=10)
        assert strategy.name == "sql"
        assert strategy.evaluator is evaluate_sql
        assert strategy.analyzer is explain_query
        assert strategy.fallback_builder is build_heuristic_sql
        assert strategy.action_space.min_reset_iteration == 2
        assert strategy.reward_calculator.semantic_penalty_per_issue == 10

    def test_overrides_reject_unknown_keys(self, sql_strategy):
        with pytest.raises(ValueError):
            sql_strategy.with_overrides({"planner": object()})

    def test_overrides_need_both_action_callables(self, sql_strategy):
        with pytest.raises(ValueError):
            sql_strategy.with_overrides({"get_actions": lambda *a: []})
