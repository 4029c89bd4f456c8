# qforge/sql/state.py
"""
SQL 候选产物的状态提取。

State extraction for SQL candidates.
"""

import logging
from typing import Any, Dict

from qforge.core.objective import Objective
from qforge.core.state_extractor import BaseStateExtractor
from qforge.sql import parsing

logger = logging.getLogger(__name__)


def estimate_query_cost(sql: str) -> int:
    """
    简单的代价估计：SELECT *、JOIN、聚合和 GROUP BY 增加代价，WHERE 降低代价。

    Rough cost estimate: SELECT *, joins, aggregations and GROUP BY add cost; a WHERE clause lowers it.
    """
    cost = 10
    if parsing.has_select_star(sql):
        cost += 20
    cost += parsing.join_count(sql) * 30
    if parsing.has_where(sql):
        cost -= 5
    cost += len(parsing.aggregations(sql)) * 10
    if parsing.has_group_by(sql):
        cost += 15
    return max(0, cost)


class SqlStateExtractor(BaseStateExtractor):
    """
    SQL 状态提取器。除 estimated_cost 外的全部特征都参与状态键。

    SQL state extractor. Every feature except estimated_cost is state-defining.
    """

    state_defining_features = (
        "select_columns",
        "where_predicates",
        "aggregations",
        "has_group_by",
        "has_order_by",
        "constraints_met",
    )

    def extract_features(self, candidate: Any, objective: Objective, analysis: Dict[str, Any]) -> Dict[str, Any]:
        sql = str(candidate or "")
        features: Dict[str, Any] = {
            # 列表排序，保证顺序不同的等价语句得到相同的状态
            # Lists are sorted so reordered but equivalent statements share a state
            "select_columns": sorted(parsing.select_columns(sql)),
            "where_predicates": sorted(parsing.where_predicates(sql)),
            "aggregations": sorted(parsing.aggregations(sql)),
            "has_group_by": parsing.has_group_by(sql),
            "has_order_by": parsing.has_order_by(sql),
            "constraints_met": self._constraints_met(sql, objective),
            "estimated_cost": estimate_query_cost(sql),
        }
        for key, value in analysis.items():
            features.setdefault(key, value)
        return features

    @staticmethod
    def _constraints_met(sql: str, objective: Objective) -> Dict[str, bool]:
        lower = sql.lower()
        scope = objective.scope

        timeframe = True
        if scope.timeframe is not None and scope.timeframe.value:
            timeframe = "created_at" in lower or "date" in lower

        entity = True
        if scope.entity is not None and scope.entity.type:
            entity = parsing.entity_column(scope.entity.type).lower() in lower

        return {
            "timeframe": timeframe,
            "entity": entity,
            "must_include": parsing.contains_all(sql, objective.constraints.required_fields),
        }
