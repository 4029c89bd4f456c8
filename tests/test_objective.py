"""
Unit tests for the Objective model.
"""

import pytest

from qforge.core.objective import Constraints, MalformedObjectiveError, Objective, Scope


class TestObjectiveParsing:
    """Tests for Objective.from_dict."""

    def test_comma_separated_identifiers_are_split(self, merchant_objective):
        """'Starbucks, Dunkin' becomes two identifiers."""
        entity = merchant_objective.scope.entity
        assert entity.identifier == ("Starbucks", "Dunkin")
        assert entity.identifiers == ("Starbucks", "Dunkin")

    def test_single_identifier_stays_a_string(self):
        """One identifier is kept as a plain string."""
        objective = Objective.from_dict({
            "intent": "Starbucks spend",
            "scope": {"entity": {"type": "merchant", "identifier": "Starbucks"}},
            "constraints": {},
        })
        assert objective.scope.entity.identifier == "Starbucks"
        assert objective.scope.entity.identifiers == ("Starbucks",)

    def test_camel_case_keys(self):
        """camelCase keys and loopPolicy are accepted."""
        objective = Objective.from_dict({
            "intent": "amounts last year",
            "scope": {"timeframe": {"type": "RELATIVE", "value": "LAST_YEAR"}},
            "constraints": {"mustInclude": ["amount"], "dataSource": "transactions"},
            "loopPolicy": {"maxIterations": 4},
        })
        assert objective.constraints.must_include == ("amount",)
        assert objective.constraints.data_source == "transactions"
        assert objective.max_iterations == 4
        assert objective.scope.timeframe.value == "LAST_YEAR"

    def test_required_fields_union(self):
        """must_include and must_include_fields merge without duplicates."""
        constraints = Constraints(must_include=("amount", "merchant_name"), must_include_fields=("amount", "id"))
        assert constraints.required_fields == ("amount", "merchant_name", "id")


class TestMalformedObjective:
    """Tests for validation failures."""

    def test_missing_scope_and_constraints(self):
        """Both missing sections are reported together."""
        with pytest.raises(MalformedObjectiveError) as exc_info:
            Objective.from_dict({"intent": "something"})
        errors = exc_info.value.errors
        assert any("scope" in e for e in errors)
        assert any("constraints" in e for e in errors)

    def test_empty_intent(self):
        """An empty intent is malformed."""
        with pytest.raises(MalformedObjectiveError):
            Objective.from_dict({"intent": "  ", "scope": {}, "constraints": {}})

    def test_not_a_mapping(self):
        """Non-mapping input is malformed, not a TypeError."""
        with pytest.raises(MalformedObjectiveError):
            Objective.coerce(["intent"])

    def test_filter_without_value(self):
        """Every filter needs a field and a value."""
        with pytest.raises(MalformedObjectiveError):
            Objective.from_dict({
                "intent": "coffee",
                "scope": {"filters": [{"field": "category"}]},
                "constraints": {},
            })

    def test_required_and_forbidden_overlap(self):
        """A field cannot be both required and forbidden."""
        with pytest.raises(MalformedObjectiveError):
            Objective(intent="x", constraints=Constraints(must_include=("amount",), forbidden_fields=("amount",)))

    def test_non_positive_max_iterations(self):
        """max_iterations must be positive."""
        with pytest.raises(MalformedObjectiveError):
            Objective(intent="x", max_iterations=0)

    @pytest.mark.parametrize("extra, field", [
        ({"expectedSize": "10"}, "expected_size"),
        ({"maxIterations": "5"}, "max_iterations"),
        ({"minQuality": "high"}, "min_quality"),
        ({"expected_size": -1}, "expected_size"),
    ])
    def test_mistyped_numeric_fields(self, extra, field):
        """Non-numeric or negative numbers are reported as objective errors, not TypeErrors."""
        data = {"intent": "x", "scope": {}, "constraints": {}}
        data.update(extra)
        with pytest.raises(MalformedObjectiveError) as exc_info:
            Objective.from_dict(data)
        assert any(field in e for e in exc_info.value.errors)

    @pytest.mark.parametrize("max_row_count", ["5", -1, 2.5])
    def test_mistyped_max_row_count(self, max_row_count):
        with pytest.raises(MalformedObjectiveError) as exc_info:
            Objective.from_dict({"intent": "x", "scope": {}, "constraints": {"maxRowCount": max_row_count}})
        assert any("max_row_count" in e for e in exc_info.value.errors)

    def test_numeric_fields_accepted(self):
        objective = Objective.from_dict({
            "intent": "x", "scope": {}, "constraints": {"maxRowCount": 50},
            "expectedSize": 3, "minQuality": 0.5,
        })
        assert (objective.constraints.max_row_count, objective.expected_size, objective.min_quality) == (50, 3, 0.5)

    def test_malformed_is_a_value_error(self):
        """Callers catching ValueError also catch malformed objectives."""
        assert issubclass(MalformedObjectiveError, ValueError)


class TestObjectiveIdentity:
    """Tests for serialization and hashing."""

    def test_dict_round_trip(self, merchant_objective):
        """to_dict and from_dict are inverses."""
        assert Objective.from_dict(merchant_objective.to_dict()) == merchant_objective

    def test_hash_is_stable_and_distinct(self, coffee_objective, merchant_objective):
        """Equal objectives share a hash, different ones never do."""
        again = Objective.from_dict(coffee_objective.to_dict())
        assert again.objective_hash == coffee_objective.objective_hash
        assert coffee_objective.objective_hash != merchant_objective.objective_hash

    def test_coerce_passes_objectives_through(self, coffee_objective):
        """An Objective is returned unchanged."""
        assert Objective.coerce(coffee_objective) is coffee_objective

    def test_defaults(self):
        """Scope and constraints default to empty."""
        objective = Objective(intent="greet")
        assert objective.scope == Scope()
        assert objective.constraints.count == 0
