"""
Unit tests for state extraction.
"""

from qforge.core.objective import Objective
from qforge.core.state_extractor import GenericStateExtractor
from qforge.sql.state import SqlStateExtractor, estimate_query_cost


class TestGenericStateExtractor:
    """Tests for GenericStateExtractor."""

    def test_iteration_does_not_change_the_key(self):
        extractor = GenericStateExtractor()
        objective = Objective(intent="greet")
        first = extractor.extract_state("hello", objective, iteration=1)
        later = extractor.extract_state("hello", objective, iteration=7)
        assert extractor.get_state_key(first) == extractor.get_state_key(later)

    def test_objectives_never_share_keys(self):
        """Same candidate under different objectives gives different keys."""
        extractor = GenericStateExtractor()
        a = extractor.extract_state("hello", Objective(intent="greet"))
        b = extractor.extract_state("hello", Objective(intent="welcome"))
        assert extractor.get_state_key(a) != extractor.get_state_key(b)

    def test_key_starts_with_objective_hash(self):
        extractor = GenericStateExtractor()
        objective = Objective(intent="greet")
        key = extractor.get_state_key(extractor.extract_state("hello", objective))
        assert key.split("|")[0] == objective.objective_hash

    def test_analysis_does_not_override_builtin_features(self):
        extractor = GenericStateExtractor()
        state = extractor.extract_state("hello", Objective(intent="greet"),
                                        analysis={"candidate_length": 999, "tone": "warm"})
        assert state.features["candidate_length"] == 5
        assert state.features["tone"] == "warm"


class TestSqlStateExtractor:
    """Tests for SqlStateExtractor."""

    def test_features(self, coffee_objective):
        extractor = SqlStateExtractor()
        sql = "SELECT merchant_name, amount FROM transactions WHERE category = 'Coffee' ORDER BY amount"
        features = extractor.extract_state(sql, coffee_objective).features
        assert features["select_columns"] == ["amount", "merchant_name"]
        assert features["where_predicates"] == ["category = 'Coffee'"]
        assert features["aggregations"] == []
        assert features["has_order_by"] is True
        assert features["has_group_by"] is False
        assert features["constraints_met"] == {"timeframe": True, "entity": True, "must_include": True}

    def test_column_order_does_not_change_features(self, coffee_objective):
        extractor = SqlStateExtractor()
        a = extractor.extract_state("SELECT id, amount FROM transactions", coffee_objective).features
        b = extractor.extract_state("SELECT amount, id FROM transactions", coffee_objective).features
        assert a["select_columns"] == b["select_columns"]

    def test_estimated_cost_is_not_state_defining(self):
        assert "estimated_cost" not in SqlStateExtractor.state_defining_features

    def test_entity_constraint_tracks_mapped_column(self, merchant_objective):
        extractor = SqlStateExtractor()
        wrong = extractor.extract_state("SELECT * FROM transactions WHERE category = 'Starbucks'", merchant_objective)
        right = extractor.extract_state("SELECT * FROM transactions WHERE merchant_name = 'Starbucks'",
                                        merchant_objective)
        assert wrong.features["constraints_met"]["entity"] is False
        assert right.features["constraints_met"]["entity"] is True


class TestQueryCost:
    """Tests for estimate_query_cost."""

    def test_select_star_without_where(self):
        assert estimate_query_cost("SELECT * FROM transactions") == 30

    def test_aggregation_with_group_by(self):
        sql = "SELECT category, SUM(amount) FROM transactions WHERE amount > 0 GROUP BY category"
        assert estimate_query_cost(sql) == 30

    def test_joins_add_cost(self):
        assert estimate_query_cost("SELECT a FROM t JOIN u ON t.id = u.id") == 40
