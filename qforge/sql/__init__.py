# qforge/sql/__init__.py
"""
SQL 查询候选产物的领域策略。

Domain strategy for SQL query candidates.
"""

from qforge.core.reward_calculator import DEFAULT_SEMANTIC_PENALTY
from qforge.core.strategy import OptimizationStrategy

from .actions import SqlActionSpace, derive_filter_predicate
from .evaluator import (
    DEFAULT_SCHEMA,
    DEFAULT_TABLE,
    build_heuristic_sql,
    evaluate_sql,
    explain_query,
    normalize_timeframe,
)
from .parsing import ENTITY_COLUMN_MAP, entity_column
from .reward import SqlRewardCalculator
from .state import SqlStateExtractor, estimate_query_cost


def create_sql_strategy(min_reset_iteration: int = 3,
                        semantic_penalty_per_issue: float = DEFAULT_SEMANTIC_PENALTY) -> OptimizationStrategy:
    """
    创建 SQL 策略，默认分析器和评估器为 explain_query 与 evaluate_sql，兜底为启发式 SQL。

    Create the SQL strategy. explain_query and evaluate_sql are its default analyzer and evaluator,
    and the heuristic builder is its fallback.
    """
    return OptimizationStrategy(
        name="sql",
        state_extractor=SqlStateExtractor(),
        action_space=SqlActionSpace(min_reset_iteration=min_reset_iteration),
        reward_calculator=SqlRewardCalculator(semantic_penalty_per_issue=semantic_penalty_per_issue),
        fallback_builder=build_heuristic_sql,
        analyzer=explain_query,
        evaluator=evaluate_sql,
    )


__all__ = [
    "create_sql_strategy",
    "SqlActionSpace",
    "SqlRewardCalculator",
    "SqlStateExtractor",
    "build_heuristic_sql",
    "derive_filter_predicate",
    "entity_column",
    "estimate_query_cost",
    "evaluate_sql",
    "explain_query",
    "normalize_timeframe",
    "DEFAULT_SCHEMA",
    "DEFAULT_TABLE",
    "ENTITY_COLUMN_MAP",
]
