# qforge/sql/evaluator.py
"""
SQL 策略的默认协作者：符号化的 explain 分析器、约束检查评估器以及确定性的启发式 SQL 构建器。

Default collaborators of the SQL strategy: a symbolic "explain" analyzer, a constraint-checking
evaluator and a deterministic heuristic SQL builder.
"""

import re
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

from qforge.core.base import EvaluationResult, Feedback
from qforge.core.objective import Objective, Timeframe
from qforge.sql import parsing

logger = logging.getLogger(__name__)

DEFAULT_TABLE = "transactions"
DEFAULT_SCHEMA: Dict[str, Any] = {
    "tables": [
        {
            "name": DEFAULT_TABLE,
            "columns": ["id", "merchant_name", "amount", "category", "created_at"],
        },
    ],
}
DATE_COLUMN = "created_at"


def wants_all_records(intent: str) -> bool:
    """Intent asks for every record ("all") without asking for a total."""
    lower = intent.lower()
    return re.search(r"\ball\b", lower) is not None and "total" not in lower


def explain_query(sql: Any) -> Dict[str, Any]:
    """
    符号化的 explain：不连接数据库，只根据语句结构推断查询计划特征。

    Symbolic explain: infers plan features from the statement structure without touching a database.

    Args:
        sql: SQL 语句 (SQL statement)

    Returns:
        特征字典 (Feature mapping)
    """
    text = str(sql or "")
    lower = text.lower()
    return {
        "uses_in": " in " in lower or " in(" in lower,
        "uses_equality": "=" in lower,
        "filters": {
            "merchant": "merchant_name" in lower,
            "category": "category" in lower,
        },
        "aggregation": parsing.has_aggregation(text),
        "has_where": parsing.has_where(text),
    }


def normalize_timeframe(timeframe: Optional[Timeframe], today: Optional[date] = None) -> Optional[Tuple[str, str]]:
    """
    把时间范围转换为半开区间 [start, end)，无法识别时返回 None。
    支持 RELATIVE 的 LAST_YEAR / THIS_YEAR / LAST_MONTH / THIS_MONTH，
    以及 ABSOLUTE 的 "December 2025" 或 "2025"。

    Convert a timeframe into a half-open [start, end) range, or None when unrecognized.
    Supports RELATIVE LAST_YEAR / THIS_YEAR / LAST_MONTH / THIS_MONTH and
    ABSOLUTE values such as "December 2025" or "2025".
    """
    if timeframe is None or not timeframe.value:
        return None
    today = today or date.today()
    kind = (timeframe.type or "").upper()
    value = str(timeframe.value).strip()

    if kind == "RELATIVE":
        key = value.upper()
        if key == "LAST_YEAR":
            return f"{today.year - 1}-01-01", f"{today.year}-01-01"
        if key == "THIS_YEAR":
            return f"{today.year}-01-01", f"{today.year + 1}-01-01"
        if key == "THIS_MONTH":
            return _month_range(today.year, today.month)
        if key == "LAST_MONTH":
            year, month = (today.year - 1, 12) if today.month == 1 else (today.year, today.month - 1)
            return _month_range(year, month)
        return None

    if kind == "ABSOLUTE":
        if re.fullmatch(r"\d{4}", value):
            year = int(value)
            return f"{year}-01-01", f"{year + 1}-01-01"
        try:
            parsed = datetime.strptime(value, "%B %Y")
        except ValueError:
            return None
        return _month_range(parsed.year, parsed.month)

    return None


def _month_range(year: int, month: int) -> Tuple[str, str]:
    end_year, end_month = (year + 1, 1) if month == 12 else (year, month + 1)
    return f"{year}-{month:02d}-01", f"{end_year}-{end_month:02d}-01"


def _fail(code: str, message: str, fix: str) -> EvaluationResult:
    return EvaluationResult(passed=False, feedback=Feedback(code=code, message=message, fix=fix))


def evaluate_sql(sql: Any, analysis: Optional[Mapping[str, Any]], objective: Objective) -> EvaluationResult:
    """
    约束检查（评论家）。返回第一个未满足的约束及修复建议。

    Constraint checker (the critic). Reports the first unmet constraint with a fix suggestion.

    Args:
        sql: 候选 SQL (Candidate SQL)
        analysis: explain_query 的结果，为空时重新计算 (Result of explain_query; recomputed when empty)
        objective: 优化目标 (Optimization objective)

    Returns:
        评估结果 (Evaluation result)
    """
    text = str(sql or "").strip()
    lower = text.lower()
    explain = dict(analysis) if analysis else explain_query(text)

    if not lower.startswith("select"):
        return _fail("NOT_A_SELECT", "Query must be a SELECT statement", "Rewrite as a SELECT query")

    where = (parsing.where_clause(text) or "").lower()
    scope = objective.scope

    # --- Mixed entity filters ---
    if scope.filters:
        for scope_filter in scope.filters:
            if scope_filter.field.lower() not in where:
                return _fail("MISSING_FILTER_FIELD",
                             f"Query must filter by {scope_filter.field}",
                             f"Add {scope_filter.field} to WHERE clause")
    # --- Single entity ---
    elif scope.entity is not None and (scope.entity.type or scope.entity.identifiers):
        entity = scope.entity
        column = parsing.ENTITY_COLUMN_MAP.get((entity.type or "").lower())
        if column is None:
            return _fail("UNKNOWN_ENTITY", "Unknown entity type", "Use correct entity mapping")
        if column not in where:
            return _fail("WRONG_COLUMN", f"Expected filter on {column}", f"Filter using {column}")
        if len(entity.identifiers) > 1 and not explain.get("uses_in"):
            return _fail("MULTI_ENTITY_NO_IN", "Multiple identifiers require IN clause",
                         "Use IN (...) instead of equality")

    if wants_all_records(objective.intent) and explain.get("aggregation"):
        return _fail("UNWANTED_AGGREGATION", "Aggregation not allowed for 'all records'", "Remove aggregation")

    for field in objective.constraints.required_fields:
        if field.lower() not in lower:
            return _fail("MISSING_REQUIRED_FIELD", f"Missing required column: {field}",
                         f"Include {field} in the query")

    time_range = normalize_timeframe(scope.timeframe)
    if time_range is not None:
        start, end = time_range
        if start not in lower or end not in lower:
            return _fail("TIMEFRAME_MISMATCH",
                         f"Query does not match required timeframe {start} to {end}",
                         f"Filter {DATE_COLUMN} >= '{start}' AND {DATE_COLUMN} < '{end}'")

    return EvaluationResult(passed=True)


def build_heuristic_sql(objective: Objective,
                        context: Optional[Mapping[str, Any]] = None,
                        previous_candidate: Any = None) -> str:
    """
    确定性的兜底 SQL：只依据目标中的过滤条件、实体和时间范围构建。

    Deterministic fallback SQL, built only from the objective's filters, entity and timeframe.
    The previous candidate is ignored so a broken generator never propagates a broken query.
    """
    table = (context or {}).get("table", DEFAULT_TABLE)
    conditions: List[str] = []

    scope = objective.scope
    if scope.filters:
        matches = [parsing.match_predicate(f.field, f.values) for f in scope.filters]
        conditions.append(matches[0] if len(matches) == 1 else "(" + " OR ".join(matches) + ")")
    elif scope.entity is not None and scope.entity.identifiers:
        column = parsing.ENTITY_COLUMN_MAP.get((scope.entity.type or "").lower())
        if column:
            conditions.append(parsing.match_predicate(column, scope.entity.identifiers))

    time_range = normalize_timeframe(scope.timeframe)
    if time_range is not None:
        start, end = time_range
        conditions.append(f"{DATE_COLUMN} >= '{start}' AND {DATE_COLUMN} < '{end}'")

    if not conditions:
        return f"SELECT * FROM {table}"
    return f"SELECT * FROM {table} WHERE {' AND '.join(conditions)}"
