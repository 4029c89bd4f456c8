"""
Shared fixtures for the q-forge test suite.
"""

import random

import pytest

from qforge.core.config import OptimizationConfig, QLearningConfig
from qforge.core.objective import Objective
from qforge.sql import create_sql_strategy

FIXED_SQL = "SELECT * FROM transactions WHERE category = 'Coffee'"
UNFILTERED_SQL = "SELECT * FROM transactions"


class CoffeeGenerator:
    """
    Async generator double: returns unfiltered SQL until the evaluator asks for the
    missing filter, then returns the fixed query.
    """

    def __init__(self):
        self.calls = []

    async def __call__(self, objective, context, previous_candidate, feedback):
        self.calls.append({"previous": previous_candidate, "feedback": feedback})
        if feedback is not None and feedback.code == "MISSING_FILTER_FIELD":
            return FIXED_SQL
        if previous_candidate and "category" in previous_candidate:
            return previous_candidate
        return UNFILTERED_SQL


@pytest.fixture
def coffee_objective():
    return Objective.from_dict({
        "intent": "Show me all coffee transactions",
        "scope": {"filters": [{"field": "category", "value": "Coffee"}]},
        "constraints": {},
    })


@pytest.fixture
def merchant_objective():
    return Objective.from_dict({
        "intent": "Show transactions at Starbucks and Dunkin",
        "scope": {"entity": {"type": "merchant", "identifier": "Starbucks, Dunkin"}},
        "constraints": {},
    })


@pytest.fixture
def coffee_generator():
    return CoffeeGenerator()


@pytest.fixture
def sql_strategy():
    return create_sql_strategy()


@pytest.fixture
def greedy_config():
    """Pure exploitation: epsilon stays at zero across sessions."""
    return OptimizationConfig(q_learning=QLearningConfig(epsilon=0.0, epsilon_min=0.0))


@pytest.fixture
def rng():
    return random.Random(42)
