# qforge/core/action_space.py
"""
定义优化循环的结构化动作空间。
枚举在当前候选产物上合法的变换，并应用所选变换，或告知驱动器需要调用外部生成器。

Defines the structured action space for the optimization loop.
Enumerates which transformations are legal for the current candidate and applies the chosen one,
or signals that the driver must call the external generator instead.
"""

import random
import logging
import dataclasses
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from qforge.core.candidate import is_empty, candidate_complexity
from qforge.utils.hashing import stable_hash

logger = logging.getLogger(__name__)

# 动作枚举的版本号；修改枚举时递增，已保存的Q表会记录它
# Version of the action enumeration; bump when the enum changes. Saved Q-tables record it.
ACTION_SPACE_VERSION = 1


class ActionType(Enum):
    """
    定义可能的动作类型。成员顺序即平局时的优先顺序。

    Defines possible action types. Member order is the tie-break order.
    """
    USE_GENERATOR = "USE_GENERATOR"                    # 调用外部生成器 (Call the external generator)
    ADD_FIELD = "ADD_FIELD"                            # 增加字段 (Add a field)
    REMOVE_FIELD = "REMOVE_FIELD"                      # 移除字段 (Remove a field)
    ADD_FILTER = "ADD_FILTER"                          # 增加过滤条件 (Add a filter)
    MODIFY_FILTER_OPERATOR = "MODIFY_FILTER_OPERATOR"  # 修改过滤运算符 (Change filter operator)
    REMOVE_FILTER = "REMOVE_FILTER"                    # 移除过滤条件 (Remove the filter)
    FIX_ENTITY_MAPPING = "FIX_ENTITY_MAPPING"          # 修正实体到字段的映射 (Fix entity-to-field mapping)
    ADD_AGGREGATION = "ADD_AGGREGATION"                # 增加聚合 (Add an aggregation)
    REMOVE_AGGREGATION = "REMOVE_AGGREGATION"          # 移除聚合 (Remove aggregations)
    ADD_ORDER_BY = "ADD_ORDER_BY"                      # 增加排序 (Add ordering)
    PERTURB = "PERTURB"                                # 小幅扰动 (Small perturbation)
    SIMPLIFY = "SIMPLIFY"                              # 简化 (Simplify)
    EXPAND = "EXPAND"                                  # 扩展，需要生成器 (Expand; needs the generator)
    REFINE = "REFINE"                                  # 精炼，需要生成器 (Refine; needs the generator)
    RESET = "RESET"                                    # 重新生成 (Start over via the generator)
    NO_OP = "NO_OP"                                    # 不做改变 (Leave unchanged)

    @classmethod
    def from_string(cls, value: str) -> 'ActionType':
        """
        从字符串转换为ActionType枚举。

        Convert from string to ActionType enum.

        Raises:
            ValueError: 如果字符串不匹配任何ActionType (If string doesn't match any ActionType)
        """
        try:
            return cls(value.strip().upper())
        except ValueError:
            raise ValueError(f"Unknown action type: {value}") from None


# 需要外部生成器的动作
# Actions that always require the external generator
GENERATION_ACTIONS = frozenset({ActionType.USE_GENERATOR, ActionType.RESET, ActionType.EXPAND, ActionType.REFINE})

_ENUM_ORDER = {member.value: index for index, member in enumerate(ActionType)}


def action_key(action: Union['Action', ActionType, str]) -> str:
    """Returns the string used for this action in the Q-table."""
    if isinstance(action, Action):
        return action.name
    if isinstance(action, ActionType):
        return action.value
    return str(action)


class Action:
    """
    结构化表示一个动作及其可选参数。

    Structured representation of an action and its optional parameters.
    """

    def __init__(self,
                 action_type: Union[str, ActionType],
                 parameters: Optional[Dict[str, Any]] = None):
        """
        初始化结构化动作。自定义策略可以使用枚举之外的字符串动作。

        Initialize a structured action. Custom strategies may use string actions outside the enum.

        Args:
            action_type: 动作类型 (Action type)
            parameters: 额外参数 (Additional parameters)
        """
        if isinstance(action_type, str):
            try:
                self.action_type: Union[ActionType, str] = ActionType.from_string(action_type)
            except ValueError:
                self.action_type = action_type
        else:
            self.action_type = action_type
        self.parameters = dict(parameters or {})

    @property
    def name(self) -> str:
        return self.action_type.value if isinstance(self.action_type, ActionType) else self.action_type

    @classmethod
    def coerce(cls, action: Union['Action', ActionType, str]) -> 'Action':
        if isinstance(action, Action):
            return action
        return cls(action)

    def to_dict(self) -> Dict[str, Any]:
        return {"action_type": self.name, "parameters": self.parameters}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Action':
        return cls(action_type=data["action_type"], parameters=data.get("parameters", {}))

    def describe(self) -> str:
        desc = self.name
        if self.parameters:
            param_str = ", ".join(f"{k}={v}" for k, v in self.parameters.items())
            desc += f" with {param_str}"
        return desc

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Action):
            return NotImplemented
        return self.name == other.name and self.parameters == other.parameters

    def __hash__(self) -> int:
        return hash((self.name, tuple(sorted((k, repr(v)) for k, v in self.parameters.items()))))

    def __str__(self) -> str:
        return self.describe()

    def __repr__(self) -> str:
        return f"Action({self.to_dict()})"


# --- Action Outcomes ---

class ActionOutcome:
    """Tagged result of applying an action."""
    requires_generation: bool = False


@dataclasses.dataclass(frozen=True)
class Transformed(ActionOutcome):
    """The action produced a new (possibly unchanged) candidate."""
    candidate: Any


@dataclasses.dataclass(frozen=True)
class RequiresGeneration(ActionOutcome):
    """The driver must call the external generator instead."""
    reason: str = ""
    requires_generation: bool = dataclasses.field(default=True, init=False)


class BaseActionSpace:
    """
    动作空间基类。子类实现结构性动作的门控与变换。

    Base action space. Subclasses implement gating and transformation of structural actions.
    """

    def __init__(self, min_reset_iteration: int = 3):
        """
        Args:
            min_reset_iteration: 迭代数大于该值后才提供 RESET (RESET is offered only after this iteration)
        """
        self.min_reset_iteration = min_reset_iteration

    # --- Enumeration ---

    def all_actions(self) -> List[Union[ActionType, str]]:
        """
        返回该空间可能产生的全部动作（用于不知道下一状态可用动作时的近似）。

        Return every action this space can produce (approximates the next state's action set when unknown).
        """
        raise NotImplementedError("Subclasses must implement all_actions()")

    def structural_actions(self, candidate: Any, objective: Any, iteration: int) -> List[Union[ActionType, str]]:
        """Returns the shape-gated actions for this candidate (excluding USE_GENERATOR and RESET)."""
        raise NotImplementedError("Subclasses must implement structural_actions()")

    def get_applicable_actions(self, candidate: Any, objective: Any, iteration: int = 0) -> List[Union[ActionType, str]]:
        """
        获取当前候选产物上的合法动作，按枚举顺序排列。USE_GENERATOR 总是可用。

        Get the legal actions for the current candidate, in enumeration order. USE_GENERATOR is always present.

        Args:
            candidate: 当前候选产物 (Current candidate)
            objective: 优化目标 (Optimization objective)
            iteration: 当前迭代数（从1开始） (Current iteration, 1-based)

        Returns:
            动作列表 (List of actions)
        """
        actions: List[Union[ActionType, str]] = [ActionType.USE_GENERATOR]
        for action in self.structural_actions(candidate, objective, iteration):
            if action not in actions:
                actions.append(action)
        if iteration > self.min_reset_iteration and ActionType.RESET not in actions:
            actions.append(ActionType.RESET)
        return self.order_actions(actions)

    @staticmethod
    def order_actions(actions: Sequence[Union[ActionType, str]]) -> List[Union[ActionType, str]]:
        """Sorts enum actions by enumeration order; custom string actions keep their order after them."""
        return sorted(actions, key=lambda a: _ENUM_ORDER.get(action_key(a), len(_ENUM_ORDER)))

    # --- Application ---

    def apply_action(self, candidate: Any, action: Union[Action, ActionType, str], objective: Any) -> ActionOutcome:
        """
        应用动作到候选产物。生成类动作返回 RequiresGeneration。

        Apply an action to a candidate. Generation actions return RequiresGeneration.

        Args:
            candidate: 当前候选产物 (Current candidate)
            action: 要应用的动作 (Action to apply)
            objective: 优化目标 (Optimization objective)

        Returns:
            Transformed 或 RequiresGeneration (Transformed or RequiresGeneration)
        """
        structured = Action.coerce(action)
        if structured.action_type in GENERATION_ACTIONS:
            return RequiresGeneration(reason=structured.name)
        if structured.action_type == ActionType.NO_OP:
            return Transformed(candidate)

        result = self.transform(candidate, structured, objective)
        if isinstance(result, ActionOutcome):
            return result
        return Transformed(result)

    def transform(self, candidate: Any, action: Action, objective: Any) -> Any:
        """
        执行结构性变换。找不到结构锚点时必须原样返回候选产物。

        Perform a structural transformation. Must return the candidate unchanged when the anchor is missing.
        """
        raise NotImplementedError("Subclasses must implement transform()")


class GenericActionSpace(BaseActionSpace):
    """
    与领域无关的动作空间，适用于字符串、列表和字典候选产物。

    Domain-agnostic action space for string, list and mapping candidates.
    """

    SIMPLIFY_RATIO = 0.8

    def all_actions(self) -> List[Union[ActionType, str]]:
        return [ActionType.USE_GENERATOR, ActionType.PERTURB, ActionType.SIMPLIFY,
                ActionType.EXPAND, ActionType.REFINE, ActionType.RESET]

    def structural_actions(self, candidate: Any, objective: Any, iteration: int) -> List[Union[ActionType, str]]:
        if is_empty(candidate):
            return []
        actions: List[Union[ActionType, str]] = [ActionType.PERTURB, ActionType.REFINE]
        complexity = candidate_complexity(candidate)
        if complexity > 0.5:
            actions.append(ActionType.SIMPLIFY)
        if complexity < 0.7:
            actions.append(ActionType.EXPAND)
        return actions

    def transform(self, candidate: Any, action: Action, objective: Any) -> Any:
        if action.action_type == ActionType.PERTURB:
            return self._perturb(candidate)
        if action.action_type == ActionType.SIMPLIFY:
            return self._simplify(candidate, action.parameters)
        logger.debug(f"Action {action.name} has no generic transformation; candidate unchanged")
        return candidate

    @staticmethod
    def _perturb(candidate: Any) -> Any:
        # 随机数由候选产物哈希决定，因此相同输入总是得到相同输出
        # RNG is seeded from the candidate hash, so equal inputs always give equal outputs
        rng = random.Random(int(stable_hash(candidate), 16))
        if isinstance(candidate, str):
            words = candidate.split(" ")
            if len(words) > 2:
                i, j = rng.randrange(len(words)), rng.randrange(len(words))
                words[i], words[j] = words[j], words[i]
                return " ".join(words)
            return candidate
        if isinstance(candidate, (list, tuple)):
            result = list(candidate)
            if len(result) > 2:
                i, j = rng.randrange(len(result)), rng.randrange(len(result))
                result[i], result[j] = result[j], result[i]
            return type(candidate)(result) if isinstance(candidate, tuple) else result
        return candidate

    def _simplify(self, candidate: Any, parameters: Dict[str, Any]) -> Any:
        if isinstance(candidate, str):
            max_length = int(parameters.get("max_length", len(candidate) * self.SIMPLIFY_RATIO))
            return candidate[:max_length]
        if isinstance(candidate, (list, tuple)):
            max_size = int(parameters.get("max_size", len(candidate) * self.SIMPLIFY_RATIO))
            return candidate[:max_size]
        if isinstance(candidate, dict):
            keep = int(len(candidate) * self.SIMPLIFY_RATIO)
            return {k: candidate[k] for k in list(candidate)[:keep]}
        return candidate


class CustomActionSpace(BaseActionSpace):
    """
    由两个回调构建的自定义动作空间。
    apply 返回 None 表示需要调用生成器。

    Custom action space built from two callables.
    apply returning None means the generator should be called.
    """

    def __init__(self,
                 get_actions: Callable[[Any, Any, int], Sequence[Union[ActionType, str]]],
                 apply: Callable[[Any, Action, Any], Any],
                 known_actions: Optional[Sequence[Union[ActionType, str]]] = None,
                 min_reset_iteration: int = 3):
        """
        Args:
            get_actions: (candidate, objective, iteration) -> 动作名列表 (List of action names)
            apply: (candidate, action, objective) -> 新候选产物或None (New candidate or None)
            known_actions: 该空间的全部动作，可选 (Every action of the space, optional)
        """
        super().__init__(min_reset_iteration=min_reset_iteration)
        self._get_actions = get_actions
        self._apply = apply
        self._known_actions = list(known_actions or [])

    def all_actions(self) -> List[Union[ActionType, str]]:
        actions: List[Union[ActionType, str]] = [ActionType.USE_GENERATOR]
        actions.extend(a for a in self._known_actions if a not in actions)
        if ActionType.RESET not in actions:
            actions.append(ActionType.RESET)
        return actions

    def structural_actions(self, candidate: Any, objective: Any, iteration: int) -> List[Union[ActionType, str]]:
        actions = []
        for name in self._get_actions(candidate, objective, iteration):
            try:
                actions.append(ActionType.from_string(name) if isinstance(name, str) else name)
            except ValueError:
                actions.append(name)
        return actions

    def transform(self, candidate: Any, action: Action, objective: Any) -> Any:
        result = self._apply(candidate, action, objective)
        if result is None:
            return RequiresGeneration(reason=action.name)
        return result
