# qforge/sql/actions.py
"""
SQL 候选产物的动作空间：基于正则的门控与纯函数式变换。
找不到结构锚点时，变换原样返回输入语句。

Action space for SQL candidates: regex-gated actions and pure transformations.
When the structural anchor is missing, a transformation returns its input unchanged.
"""

import re
import logging
from typing import Any, Dict, List, Optional, Union

from qforge.core.action_space import Action, ActionType, BaseActionSpace
from qforge.core.objective import Objective
from qforge.sql import parsing

logger = logging.getLogger(__name__)

DEFAULT_FIELD = "amount"
DEFAULT_FILTER = "amount > 0"
DEFAULT_AGGREGATE = "SUM"
DEFAULT_ORDER_COLUMN = "created_at"

_CLAUSE_END = r"(?=\s*(?:\bGROUP\s+BY\b|\bORDER\s+BY\b|\bLIMIT\b|;|$))"


def derive_filter_predicate(objective: Optional[Objective], parameters: Optional[Dict[str, Any]] = None) -> str:
    """
    推导要添加的过滤条件，优先级：显式参数 > 范围过滤（OR 组合）> 实体标识 > amount > 0。

    Derive the predicate to add, in order of preference: explicit parameter, scope filters
    (combined with OR), entity identifier, then `amount > 0`.
    """
    if parameters and parameters.get("predicate"):
        return str(parameters["predicate"])
    if objective is not None:
        scope = objective.scope
        if scope.filters:
            matches = [parsing.match_predicate(f.field, f.values) for f in scope.filters]
            return matches[0] if len(matches) == 1 else "(" + " OR ".join(matches) + ")"
        if scope.entity is not None and scope.entity.type and scope.entity.identifiers:
            return parsing.match_predicate(parsing.entity_column(scope.entity.type), scope.entity.identifiers)
    return DEFAULT_FILTER


class SqlActionSpace(BaseActionSpace):
    """
    SQL 动作空间。

    SQL action space.
    """

    def all_actions(self) -> List[Union[ActionType, str]]:
        return [
            ActionType.USE_GENERATOR,
            ActionType.ADD_FIELD,
            ActionType.REMOVE_FIELD,
            ActionType.ADD_FILTER,
            ActionType.MODIFY_FILTER_OPERATOR,
            ActionType.REMOVE_FILTER,
            ActionType.FIX_ENTITY_MAPPING,
            ActionType.ADD_AGGREGATION,
            ActionType.REMOVE_AGGREGATION,
            ActionType.ADD_ORDER_BY,
            ActionType.RESET,
        ]

    def structural_actions(self, candidate: Any, objective: Any, iteration: int) -> List[Union[ActionType, str]]:
        sql = str(candidate or "")
        if not sql.strip():
            return []
        actions: List[Union[ActionType, str]] = []
        select_star = parsing.has_select_star(sql)
        columns = parsing.select_list(sql)

        if not select_star:
            actions.append(ActionType.ADD_FIELD)
            if columns:
                actions.append(ActionType.REMOVE_FIELD)

        if parsing.has_where(sql):
            actions.append(ActionType.REMOVE_FILTER)
            if parsing.EQUALITY_FILTER_RE.search(sql):
                actions.append(ActionType.MODIFY_FILTER_OPERATOR)
        else:
            actions.append(ActionType.ADD_FILTER)

        entity = getattr(getattr(objective, "scope", None), "entity", None)
        if entity is not None and entity.type:
            actions.append(ActionType.FIX_ENTITY_MAPPING)

        if parsing.has_aggregation(sql):
            actions.append(ActionType.REMOVE_AGGREGATION)
        else:
            actions.append(ActionType.ADD_AGGREGATION)

        if not parsing.has_order_by(sql):
            actions.append(ActionType.ADD_ORDER_BY)
        return actions

    def transform(self, candidate: Any, action: Action, objective: Any) -> Any:
        sql = str(candidate or "")
        params = action.parameters
        kind = action.action_type

        if kind == ActionType.ADD_FIELD:
            return self.add_field(sql, params.get("column"))
        if kind == ActionType.REMOVE_FIELD:
            return self.remove_field(sql, params.get("column"))
        if kind == ActionType.ADD_FILTER:
            return self.add_filter(sql, derive_filter_predicate(objective, params))
        if kind == ActionType.MODIFY_FILTER_OPERATOR:
            return self.modify_filter_operator(sql, objective)
        if kind == ActionType.REMOVE_FILTER:
            return self.remove_filter(sql, params.get("predicate"))
        if kind == ActionType.FIX_ENTITY_MAPPING:
            return self.fix_entity_mapping(sql, objective)
        if kind == ActionType.ADD_AGGREGATION:
            return self.add_aggregation(sql, params.get("func"), params.get("column"))
        if kind == ActionType.REMOVE_AGGREGATION:
            return self.remove_aggregation(sql)
        if kind == ActionType.ADD_ORDER_BY:
            return self.add_order_by(sql, params.get("column"))

        logger.debug(f"Action {action.name} has no SQL transformation; candidate unchanged")
        return candidate

    # --- Transformations ---

    @staticmethod
    def add_field(sql: str, column: Optional[str] = None) -> str:
        column = column or DEFAULT_FIELD
        current = parsing.select_list(sql)
        if current is None:
            return sql
        if current == "*":
            return parsing.SELECT_STAR_RE.sub(lambda _: f"SELECT id, {column} FROM", sql, count=1)
        if column.lower() in (c.lower() for c in parsing.select_columns(sql)):
            return sql
        return parsing.SELECT_RE.sub(lambda _: f"SELECT {current}, {column} FROM", sql, count=1)

    @staticmethod
    def remove_field(sql: str, column: Optional[str] = None) -> str:
        """Drops the named column, or the last one; an emptied list becomes SELECT *."""
        current = parsing.select_list(sql)
        if current is None or current == "*":
            return sql
        columns = [c.strip() for c in current.split(",") if c.strip()]
        if column:
            columns = [c for c in columns if column.lower() not in c.lower()]
        else:
            columns = columns[:-1]
        replacement = ", ".join(columns) if columns else "*"
        return parsing.SELECT_RE.sub(lambda _: f"SELECT {replacement} FROM", sql, count=1)

    @staticmethod
    def add_filter(sql: str, predicate: str) -> str:
        if parsing.has_where(sql):
            return sql
        return re.sub(r"FROM\s+(\w+)", lambda m: f"FROM {m.group(1)} WHERE {predicate}",
                      sql, count=1, flags=re.IGNORECASE)

    @staticmethod
    def modify_filter_operator(sql: str, objective: Any = None) -> str:
        """
        把 `WHERE col = 'v'` 改写为 IN。若该列是实体列且目标有多个标识，则 IN 列表包含全部标识。

        Rewrite `WHERE col = 'v'` as IN. When the column is the entity column and the objective has
        several identifiers, the IN list holds all of them.
        """
        match = parsing.EQUALITY_FILTER_RE.search(sql)
        if not match:
            return sql
        column, value = match.group(1), match.group(2)
        values = [value]
        entity = getattr(getattr(objective, "scope", None), "entity", None)
        if entity is not None and len(entity.identifiers) > 1 and parsing.entity_column(entity.type) == column:
            values = list(entity.identifiers)
        in_list = ", ".join(parsing.quote(v) for v in values)
        return sql[:match.start()] + f"WHERE {column} IN ({in_list})" + sql[match.end():]

    @staticmethod
    def remove_filter(sql: str, predicate: Optional[str] = None) -> str:
        if predicate:
            return re.sub(rf"\s*AND\s+{re.escape(predicate)}", "", sql, flags=re.IGNORECASE)
        return re.sub(rf"\s*\bWHERE\s+.*?{_CLAUSE_END}", "", sql, count=1, flags=re.IGNORECASE | re.DOTALL)

    @staticmethod
    def add_aggregation(sql: str, func: Optional[str] = None, column: Optional[str] = None) -> str:
        aggregate = f"{(func or DEFAULT_AGGREGATE).upper()}({column or DEFAULT_FIELD})"
        return parsing.SELECT_RE.sub(lambda _: f"SELECT {aggregate} FROM", sql, count=1)

    @staticmethod
    def remove_aggregation(sql: str) -> str:
        """Removes aggregate columns (SELECT * if none remain) and the GROUP BY clause."""
        current = parsing.select_list(sql)
        if current is None:
            return sql
        columns = [c.strip() for c in current.split(",") if c.strip()]
        kept = [c for c in columns if not parsing.has_aggregation(c)]
        replacement = ", ".join(kept) if kept else "*"
        result = parsing.SELECT_RE.sub(lambda _: f"SELECT {replacement} FROM", sql, count=1)
        return re.sub(r"\s*\bGROUP\s+BY\s+.*?(?=\s*(?:\bORDER\s+BY\b|\bLIMIT\b|;|$))", "", result,
                      count=1, flags=re.IGNORECASE | re.DOTALL)

    @staticmethod
    def add_order_by(sql: str, column: Optional[str] = None) -> str:
        if parsing.has_order_by(sql):
            return sql
        clause = f" ORDER BY {column or DEFAULT_ORDER_COLUMN} DESC"
        body = sql.rstrip()
        terminator = ""
        if body.endswith(";"):
            body, terminator = body[:-1].rstrip(), ";"
        limit = re.search(r"\s+LIMIT\b", body, flags=re.IGNORECASE)
        if limit:
            return body[:limit.start()] + clause + body[limit.start():] + terminator
        return body + clause + terminator

    @staticmethod
    def fix_entity_mapping(sql: str, objective: Any) -> str:
        """Replaces references to the wrong entity column; string literals are left alone."""
        entity = getattr(getattr(objective, "scope", None), "entity", None)
        if entity is None or not entity.type:
            return sql
        correct = parsing.entity_column(entity.type)
        result = sql
        for wrong in ("merchant", "category"):
            if wrong != correct:
                result = parsing.sub_outside_quotes(rf"\b{wrong}\b(?!_name)", correct, result, flags=re.IGNORECASE)
        return result
