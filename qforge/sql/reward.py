# qforge/sql/reward.py
"""
SQL 候选产物的奖励计算与语义校验。

Reward calculation and semantic validation for SQL candidates.
"""

import logging
from typing import Any, Dict, List

from qforge.core.base import EvaluationResult
from qforge.core.objective import Objective
from qforge.core.reward_calculator import RewardCalculator, SemanticIssue, SemanticValidation
from qforge.sql import parsing
from qforge.sql.evaluator import wants_all_records

logger = logging.getLogger(__name__)

EXCLUSION_WORDS = ("except", "excluding")
AMOUNT_WORDS = ("amount", "cost", "expense")


class SqlRewardCalculator(RewardCalculator):
    """
    SQL 奖励计算器：部分约束得分，加上简洁度、明确度和代价三项质量启发式。

    SQL reward calculator: partial constraint credit plus simplicity, specificity and cost heuristics.
    """

    def partial_credit(self, candidate: Any, objective: Objective, evaluation: EvaluationResult) -> float:
        sql = str(candidate or "").strip()
        lower = sql.lower()
        scope = objective.scope
        score = 0.0

        if scope.timeframe is not None and scope.timeframe.value:
            if "created_at" in lower or "date" in lower:
                score += 30

        if scope.entity is not None and scope.entity.type:
            if parsing.entity_column(scope.entity.type).lower() in lower:
                score += 30

        required = objective.constraints.required_fields
        if required:
            included = sum(1 for field in required if field.lower() in lower)
            score += included / len(required) * 40

        if lower.startswith("select"):
            score += 10

        return score

    def quality_components(self, candidate: Any, objective: Objective) -> Dict[str, float]:
        sql = str(candidate or "")
        return {
            "simplicity": self._simplicity(sql),
            "specificity": self._specificity(sql),
            "cost": self._cost(sql),
        }

    @staticmethod
    def _simplicity(sql: str) -> float:
        # 越短越好 (Shorter is better)
        if len(sql) < 100:
            return 15
        if len(sql) < 200:
            return 10
        if len(sql) < 300:
            return 5
        return -5

    @staticmethod
    def _specificity(sql: str) -> float:
        if parsing.has_select_star(sql):
            return -5
        columns = parsing.select_columns(sql)
        if 0 < len(columns) <= 5:
            return 5
        return 0

    @staticmethod
    def _cost(sql: str) -> float:
        lower = sql.lower()
        bonus = 10
        if parsing.has_select_star(sql):
            bonus -= 5
        # 没有 WHERE 意味着全表扫描 (No WHERE means a full table scan)
        if not parsing.has_where(sql):
            bonus -= 10
        bonus -= parsing.join_count(lower) * 5
        if parsing.has_limit(sql):
            bonus += 5
        return bonus

    def validate_semantics(self, candidate: Any, objective: Objective, analysis: Dict[str, Any]) -> SemanticValidation:
        """
        类似 EXPLAIN 的语义检查：排除意图、多余聚合、缺失过滤值以及不明确的选择。

        EXPLAIN-like semantic checks: exclusion intent, unwanted aggregation, missing filter values
        and unspecific selection.
        """
        sql = str(candidate or "")
        lower = sql.lower()
        intent = objective.intent.lower()
        scope = objective.scope
        identifiers = scope.entity.identifiers if scope.entity is not None else ()
        excluding = any(word in intent for word in EXCLUSION_WORDS)
        issues: List[SemanticIssue] = []

        if excluding and identifiers and "!=" not in lower and "<>" not in lower and "not in" not in lower:
            included = [i for i in identifiers if f"'{i.lower()}'" in lower or f'"{i.lower()}"' in lower]
            if included:
                issues.append(SemanticIssue(
                    "EXCLUSION_NOT_APPLIED",
                    f"Intent wants to exclude {', '.join(included)} but the query may include it"))

        aggregation = analysis.get("aggregation")
        if aggregation is None:
            aggregation = parsing.has_aggregation(sql)
        if wants_all_records(objective.intent) and aggregation:
            issues.append(SemanticIssue(
                "UNWANTED_AGGREGATION", "Intent wants all records but the query uses aggregation"))

        # 同一个值只报告一次（实体标识与过滤值可能重合）
        # Each missing value is reported once; entity identifiers and filter values may coincide
        reported = set()
        if not excluding:
            for identifier in identifiers:
                if identifier.lower() not in lower and identifier.lower() not in reported:
                    reported.add(identifier.lower())
                    issues.append(SemanticIssue(
                        "MISSING_FILTER_VALUE", f"Intent mentions {identifier!r} but the query doesn't filter by it"))
        for scope_filter in scope.filters:
            for value in scope_filter.values:
                if value.lower() not in lower and value.lower() not in reported:
                    reported.add(value.lower())
                    issues.append(SemanticIssue(
                        "MISSING_FILTER_VALUE",
                        f"Filter {scope_filter.field}={value!r} is not applied by the query"))

        if any(word in intent for word in AMOUNT_WORDS) and parsing.has_select_star(sql):
            issues.append(SemanticIssue(
                "UNSPECIFIC_SELECTION", "Intent asks for amounts but the query uses SELECT *"))

        return SemanticValidation.from_issues(issues)
