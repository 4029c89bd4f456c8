# qforge/core/objective.py
"""
定义优化目标（Objective）。
目标在一次优化会话中保持不变，描述意图、范围（时间、实体、过滤条件）以及约束。

Defines the optimization Objective.
An objective is immutable for one optimization session and describes intent, scope
(timeframe, entity, filters) and constraints.
"""

import logging
import dataclasses
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from qforge.utils.hashing import stable_hash

logger = logging.getLogger(__name__)

Identifier = Union[str, Tuple[str, ...]]


class MalformedObjectiveError(ValueError):
    """
    目标结构不完整或不合法时抛出，在任何迭代开始之前。

    Raised when an objective is incomplete or invalid, before any iteration runs.
    """

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("Malformed objective: " + "; ".join(self.errors))


def _split_identifier(value: Any) -> Optional[Identifier]:
    """Normalizes an identifier: comma-separated strings and lists become tuples."""
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        items = tuple(str(v).strip() for v in value if str(v).strip())
        return items[0] if len(items) == 1 else items
    text = str(value).strip()
    if "," in text:
        items = tuple(v.strip() for v in text.split(",") if v.strip())
        return items[0] if len(items) == 1 else items
    return text


def _as_tuple(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(v) for v in value)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclasses.dataclass(frozen=True)
class Timeframe:
    type: str                      # e.g. RELATIVE / ABSOLUTE
    value: Optional[str] = None    # e.g. LAST_YEAR / "December 2025"


@dataclasses.dataclass(frozen=True)
class Entity:
    type: Optional[str] = None
    identifier: Optional[Identifier] = None

    @property
    def identifiers(self) -> Tuple[str, ...]:
        """All identifiers as a tuple, whether one or many were given."""
        if self.identifier is None:
            return ()
        if isinstance(self.identifier, tuple):
            return self.identifier
        return (self.identifier,)


@dataclasses.dataclass(frozen=True)
class ScopeFilter:
    field: str
    value: Identifier

    @property
    def values(self) -> Tuple[str, ...]:
        return self.value if isinstance(self.value, tuple) else (self.value,)


@dataclasses.dataclass(frozen=True)
class Scope:
    timeframe: Optional[Timeframe] = None
    entity: Optional[Entity] = None
    filters: Tuple[ScopeFilter, ...] = ()


@dataclasses.dataclass(frozen=True)
class Constraints:
    data_source: Optional[str] = None
    must_include: Tuple[str, ...] = ()          # 必须出现的词/列 (Terms/columns that must appear)
    must_include_fields: Tuple[str, ...] = ()   # 必须选中的字段 (Fields that must be selected)
    forbidden_fields: Tuple[str, ...] = ()      # 禁止出现的字段 (Fields that must not appear)
    max_row_count: Optional[int] = None

    @property
    def required_fields(self) -> Tuple[str, ...]:
        """Union of must_include and must_include_fields, in declaration order."""
        seen: Dict[str, None] = {}
        for name in self.must_include + self.must_include_fields:
            seen.setdefault(name, None)
        return tuple(seen)

    @property
    def count(self) -> int:
        return (len(self.must_include) + len(self.must_include_fields) + len(self.forbidden_fields)
                + (1 if self.max_row_count is not None else 0))


@dataclasses.dataclass(frozen=True)
class Objective:
    """
    调用方提供的优化目标。

    Caller-supplied optimization goal.
    """
    intent: str
    scope: Scope = dataclasses.field(default_factory=Scope)
    constraints: Constraints = dataclasses.field(default_factory=Constraints)
    max_iterations: Optional[int] = None       # 循环策略 (Loop policy)
    success_criteria: Optional[str] = None
    # --- Generic candidate expectations ---
    expected_type: Optional[str] = None        # e.g. "str", "dict", "list"
    expected_size: Optional[int] = None
    min_quality: Optional[float] = None

    def __post_init__(self):
        errors = self.validate()
        if errors:
            raise MalformedObjectiveError(errors)

    def validate(self) -> List[str]:
        """
        检查目标是否完整，返回问题列表（为空表示合法）。

        Check whether the objective is well-formed; returns a list of problems (empty when valid).
        """
        errors: List[str] = []
        if not isinstance(self.intent, str) or not self.intent.strip():
            errors.append("intent must be a non-empty string")
        if not isinstance(self.scope, Scope):
            errors.append("scope must be a Scope")
        else:
            if self.scope.timeframe is not None and not self.scope.timeframe.type:
                errors.append("scope.timeframe.type is required when a timeframe is given")
            for i, f in enumerate(self.scope.filters):
                if not f.field:
                    errors.append(f"scope.filters[{i}].field is required")
                if f.value in (None, "", ()):
                    errors.append(f"scope.filters[{i}].value is required")
        if not isinstance(self.constraints, Constraints):
            errors.append("constraints must be a Constraints")
        else:
            overlap = set(self.constraints.required_fields) & set(self.constraints.forbidden_fields)
            if overlap:
                errors.append(f"fields both required and forbidden: {sorted(overlap)}")
            max_rows = self.constraints.max_row_count
            if max_rows is not None and (not isinstance(max_rows, int) or isinstance(max_rows, bool) or max_rows < 0):
                errors.append("constraints.max_row_count must be a non-negative integer")
        if self.max_iterations is not None:
            if not isinstance(self.max_iterations, int) or isinstance(self.max_iterations, bool) or self.max_iterations <= 0:
                errors.append("max_iterations must be a positive integer")
        if self.expected_size is not None:
            if not isinstance(self.expected_size, int) or isinstance(self.expected_size, bool) or self.expected_size < 0:
                errors.append("expected_size must be a non-negative integer")
        if self.min_quality is not None and not _is_number(self.min_quality):
            errors.append("min_quality must be a number")
        return errors

    @property
    def objective_hash(self) -> str:
        """Hash over the full canonical objective; distinct objectives never share it."""
        return stable_hash(self.to_dict())

    def to_dict(self) -> Dict[str, Any]:
        """
        将目标转换为可序列化的字典（与 from_dict 互逆）。

        Convert the objective to a serializable dictionary (inverse of from_dict).
        """
        scope: Dict[str, Any] = {}
        if self.scope.timeframe is not None:
            scope["timeframe"] = dataclasses.asdict(self.scope.timeframe)
        if self.scope.entity is not None:
            identifier = self.scope.entity.identifier
            scope["entity"] = {
                "type": self.scope.entity.type,
                "identifier": list(identifier) if isinstance(identifier, tuple) else identifier,
            }
        if self.scope.filters:
            scope["filters"] = [
                {"field": f.field, "value": list(f.value) if isinstance(f.value, tuple) else f.value}
                for f in self.scope.filters
            ]
        constraints = {
            "data_source": self.constraints.data_source,
            "must_include": list(self.constraints.must_include),
            "must_include_fields": list(self.constraints.must_include_fields),
            "forbidden_fields": list(self.constraints.forbidden_fields),
            "max_row_count": self.constraints.max_row_count,
        }
        data: Dict[str, Any] = {"intent": self.intent, "scope": scope, "constraints": constraints}
        for name in ("max_iterations", "success_criteria", "expected_type", "expected_size", "min_quality"):
            value = getattr(self, name)
            if value is not None:
                data[name] = value
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'Objective':
        """
        从（可能不完整的）字典构建目标。逗号分隔的实体标识会被拆分为元组。
        接受 snake_case 和 camelCase 两种键名。

        Build an objective from a (possibly incomplete) mapping. Comma-separated entity identifiers
        are split into a tuple. Accepts both snake_case and camelCase keys.

        Raises:
            MalformedObjectiveError: 缺少必需字段或字段类型错误 (If required fields are missing or mistyped)
        """
        if not isinstance(data, Mapping):
            raise MalformedObjectiveError([f"objective must be a mapping, got {type(data).__name__}"])

        def pick(mapping: Mapping[str, Any], snake: str, camel: Optional[str] = None, default: Any = None) -> Any:
            if snake in mapping:
                return mapping[snake]
            if camel and camel in mapping:
                return mapping[camel]
            return default

        errors: List[str] = []
        intent = data.get("intent")
        if not isinstance(intent, str) or not intent.strip():
            errors.append("intent must be a non-empty string")

        raw_scope = data.get("scope")
        if not isinstance(raw_scope, Mapping):
            errors.append("scope is required and must be a mapping")
            raw_scope = {}
        raw_constraints = data.get("constraints")
        if not isinstance(raw_constraints, Mapping):
            errors.append("constraints is required and must be a mapping")
            raw_constraints = {}

        timeframe = None
        raw_timeframe = raw_scope.get("timeframe")
        if raw_timeframe is not None:
            if isinstance(raw_timeframe, Mapping):
                timeframe = Timeframe(type=str(raw_timeframe.get("type") or ""), value=raw_timeframe.get("value"))
            else:
                errors.append("scope.timeframe must be a mapping")

        entity = None
        raw_entity = raw_scope.get("entity")
        if raw_entity is not None:
            if isinstance(raw_entity, Mapping):
                entity = Entity(type=raw_entity.get("type"), identifier=_split_identifier(raw_entity.get("identifier")))
            else:
                errors.append("scope.entity must be a mapping")

        filters: List[ScopeFilter] = []
        raw_filters = raw_scope.get("filters") or []
        if not isinstance(raw_filters, (list, tuple)):
            errors.append("scope.filters must be a list")
            raw_filters = []
        for i, raw_filter in enumerate(raw_filters):
            if not isinstance(raw_filter, Mapping):
                errors.append(f"scope.filters[{i}] must be a mapping")
                continue
            filters.append(ScopeFilter(field=str(raw_filter.get("field") or ""),
                                       value=_split_identifier(raw_filter.get("value")) or ""))

        list_fields = {}
        for snake, camel in (("must_include", "mustInclude"),
                             ("must_include_fields", "mustIncludeFields"),
                             ("forbidden_fields", "forbiddenFields")):
            value = pick(raw_constraints, snake, camel, ())
            if value is not None and not isinstance(value, (list, tuple, str)):
                errors.append(f"constraints.{snake} must be a list of strings")
                value = ()
            list_fields[snake] = _as_tuple(value)

        loop_policy = pick(data, "loop_policy", "loopPolicy", {}) or {}
        max_iterations = pick(data, "max_iterations", "maxIterations")
        if max_iterations is None and isinstance(loop_policy, Mapping):
            max_iterations = pick(loop_policy, "max_iterations", "maxIterations")

        if errors:
            raise MalformedObjectiveError(errors)

        return cls(
            intent=intent,
            scope=Scope(timeframe=timeframe, entity=entity, filters=tuple(filters)),
            constraints=Constraints(
                data_source=pick(raw_constraints, "data_source", "dataSource"),
                max_row_count=pick(raw_constraints, "max_row_count", "maxRowCount"),
                **list_fields,
            ),
            max_iterations=max_iterations,
            success_criteria=pick(data, "success_criteria", "successCriteria"),
            expected_type=pick(data, "expected_type", "expectedType"),
            expected_size=pick(data, "expected_size", "expectedSize"),
            min_quality=pick(data, "min_quality", "minQuality"),
        )

    @classmethod
    def coerce(cls, value: Union['Objective', Mapping[str, Any]]) -> 'Objective':
        """Returns value unchanged if it is already an Objective, otherwise parses it with from_dict."""
        if isinstance(value, Objective):
            return value
        return cls.from_dict(value)
