# qforge/sql/parsing.py
"""
SQL 候选产物的正则辅助函数。只做浅层的结构识别，不是完整的 SQL 语法解析。

Regex helpers for SQL candidates. Shallow structural recognition only, not a full SQL grammar.
"""

import re
from typing import Dict, Iterable, List, Optional, Sequence

# 实体类型到列名的映射 (Entity type to column mapping)
ENTITY_COLUMN_MAP: Dict[str, str] = {
    "merchant": "merchant_name",
    "merchants": "merchant_name",
    "category": "category",
}

AGGREGATE_FUNCTIONS = ("SUM", "COUNT", "AVG", "MAX", "MIN")

SELECT_RE = re.compile(r"SELECT\s+(.*?)\s+FROM", re.IGNORECASE | re.DOTALL)
SELECT_STAR_RE = re.compile(r"SELECT\s+\*\s+FROM", re.IGNORECASE)
WHERE_RE = re.compile(r"\bWHERE\s+(.*?)\s*(?=\bGROUP\s+BY\b|\bORDER\s+BY\b|\bLIMIT\b|;|$)",
                      re.IGNORECASE | re.DOTALL)
EQUALITY_FILTER_RE = re.compile(r"WHERE\s+(\w+)\s*=\s*'([^']+)'", re.IGNORECASE)
AGGREGATION_RE = re.compile(r"\b(?:%s)\s*\(" % "|".join(AGGREGATE_FUNCTIONS), re.IGNORECASE)
GROUP_BY_RE = re.compile(r"\bGROUP\s+BY\b", re.IGNORECASE)
ORDER_BY_RE = re.compile(r"\bORDER\s+BY\b", re.IGNORECASE)
LIMIT_RE = re.compile(r"\bLIMIT\b", re.IGNORECASE)
JOIN_RE = re.compile(r"\sJOIN\s", re.IGNORECASE)
QUOTED_RE = re.compile(r"('(?:[^']|'')*')")


def entity_column(entity_type: Optional[str]) -> Optional[str]:
    """Column that holds values of the given entity type; unknown types map to themselves."""
    if not entity_type:
        return None
    return ENTITY_COLUMN_MAP.get(entity_type.lower(), entity_type)


def select_list(sql: str) -> Optional[str]:
    match = SELECT_RE.search(sql)
    return match.group(1).strip() if match else None


def select_columns(sql: str) -> List[str]:
    """Columns of the SELECT list with aliases stripped; ["*"] for SELECT *."""
    columns = select_list(sql)
    if columns is None:
        return []
    if columns == "*":
        return ["*"]
    result = []
    for column in columns.split(","):
        name = re.split(r"\s+as\s+", column.strip(), flags=re.IGNORECASE)[0].strip()
        if name:
            result.append(name)
    return result


def has_select_star(sql: str) -> bool:
    return SELECT_STAR_RE.search(sql) is not None


def where_clause(sql: str) -> Optional[str]:
    match = WHERE_RE.search(sql)
    return match.group(1).strip() if match else None


def has_where(sql: str) -> bool:
    return re.search(r"\bWHERE\b", sql, re.IGNORECASE) is not None


def where_predicates(sql: str) -> List[str]:
    """Predicates of the WHERE clause split on AND/OR, surrounding parentheses removed."""
    clause = where_clause(sql)
    if not clause:
        return []
    parts = re.split(r"\s+(?:AND|OR)\s+", clause, flags=re.IGNORECASE)
    return [p.strip().strip("()").strip() for p in parts if p.strip().strip("()").strip()]


def aggregations(sql: str) -> List[str]:
    """Aggregate calls such as SUM(AMOUNT), upper-cased, grouped by function."""
    found: List[str] = []
    for func in AGGREGATE_FUNCTIONS:
        found.extend(m.upper() for m in re.findall(rf"\b{func}\s*\([^)]+\)", sql, re.IGNORECASE))
    return found


def has_aggregation(sql: str) -> bool:
    return AGGREGATION_RE.search(sql) is not None


def has_group_by(sql: str) -> bool:
    return GROUP_BY_RE.search(sql) is not None


def has_order_by(sql: str) -> bool:
    return ORDER_BY_RE.search(sql) is not None


def has_limit(sql: str) -> bool:
    return LIMIT_RE.search(sql) is not None


def join_count(sql: str) -> int:
    return len(JOIN_RE.findall(sql))


def quote(value: str) -> str:
    return "'" + str(value).replace("'", "''") + "'"


def match_predicate(column: str, values: Sequence[str]) -> str:
    """`column = 'v'` for a single value, `column IN ('a', 'b')` for several."""
    if len(values) == 1:
        return f"{column} = {quote(values[0])}"
    return f"{column} IN ({', '.join(quote(v) for v in values)})"


def sub_outside_quotes(pattern: str, replacement: str, sql: str, flags: int = 0) -> str:
    """re.sub applied only to the parts of the statement outside string literals."""
    parts = QUOTED_RE.split(sql)
    return "".join(
        part if index % 2 else re.sub(pattern, lambda _: replacement, part, flags=flags)
        for index, part in enumerate(parts)
    )


def contains_all(sql: str, terms: Iterable[str]) -> bool:
    lower = sql.lower()
    return all(term.lower() in lower for term in terms)


def normalize_whitespace(sql: str) -> str:
    return re.sub(r"\s+", " ", sql).strip()
