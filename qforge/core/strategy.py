# qforge/core/strategy.py
"""
策略组合：把状态提取器、动作空间、奖励计算器和兜底构建器打包成一个可注入的对象。
同一个驱动器通过不同策略服务不同领域（通用、SQL……）。

Strategy bundle: packages a state extractor, action space, reward calculator and fallback builder
into one injectable object. A single driver serves different domains (generic, SQL, ...) through strategies.
"""

import logging
import dataclasses
from typing import Any, Dict, Mapping, Optional

from qforge.core.action_space import BaseActionSpace, CustomActionSpace, GenericActionSpace
from qforge.core.base import AnalyzerFn, EvaluatorFn, FallbackBuilder
from qforge.core.objective import Objective
from qforge.core.reward_calculator import DEFAULT_SEMANTIC_PENALTY, GenericRewardCalculator, RewardCalculator
from qforge.core.state_extractor import BaseStateExtractor, GenericStateExtractor

logger = logging.getLogger(__name__)

# custom_strategies 接受的键 (Keys accepted in custom_strategies)
OVERRIDABLE_FIELDS = ("state_extractor", "action_space", "reward_calculator",
                      "fallback_builder", "analyzer", "evaluator")


@dataclasses.dataclass
class OptimizationStrategy:
    """
    领域策略。analyzer / evaluator 为该领域的默认回调，可被驱动器参数覆盖。

    Domain strategy. analyzer / evaluator are the domain's default callbacks; driver arguments override them.
    """
    name: str
    state_extractor: BaseStateExtractor
    action_space: BaseActionSpace
    reward_calculator: RewardCalculator
    fallback_builder: FallbackBuilder
    analyzer: Optional[AnalyzerFn] = None
    evaluator: Optional[EvaluatorFn] = None

    def with_overrides(self, custom: Optional[Mapping[str, Any]]) -> 'OptimizationStrategy':
        """
        返回应用了自定义组件的新策略。
        除 OVERRIDABLE_FIELDS 外，还接受 get_actions + apply_action，用于构建 CustomActionSpace。

        Return a new strategy with custom components applied.
        Besides OVERRIDABLE_FIELDS, accepts get_actions + apply_action to build a CustomActionSpace.

        Raises:
            ValueError: 未知的键或只提供了 get_actions/apply_action 之一 (Unknown keys, or only one of get_actions/apply_action)
        """
        if not custom:
            return self
        custom = dict(custom)
        unknown = set(custom) - set(OVERRIDABLE_FIELDS) - {"get_actions", "apply_action", "known_actions"}
        if unknown:
            raise ValueError(f"Unknown custom strategy keys: {sorted(unknown)}")

        changes: Dict[str, Any] = {k: custom[k] for k in OVERRIDABLE_FIELDS if custom.get(k) is not None}
        get_actions, apply_action = custom.get("get_actions"), custom.get("apply_action")
        if (get_actions is None) != (apply_action is None):
            raise ValueError("get_actions and apply_action must be provided together")
        if get_actions is not None:
            changes["action_space"] = CustomActionSpace(
                get_actions, apply_action,
                known_actions=custom.get("known_actions"),
                min_reset_iteration=self.action_space.min_reset_iteration,
            )
        logger.debug(f"Strategy '{self.name}' overridden with: {sorted(changes)}")
        return dataclasses.replace(self, name=f"{self.name}+custom", **changes)


def generic_fallback(objective: Objective, context: Optional[Dict[str, Any]], previous_candidate: Any) -> Any:
    """Deterministic fallback: keep the previous candidate, or start from the intent text."""
    if previous_candidate is not None:
        return previous_candidate
    return objective.intent


def create_generic_strategy(min_reset_iteration: int = 3,
                            semantic_penalty_per_issue: float = DEFAULT_SEMANTIC_PENALTY) -> OptimizationStrategy:
    """
    创建与领域无关的默认策略。

    Create the default domain-agnostic strategy.
    """
    return OptimizationStrategy(
        name="generic",
        state_extractor=GenericStateExtractor(),
        action_space=GenericActionSpace(min_reset_iteration=min_reset_iteration),
        reward_calculator=GenericRewardCalculator(semantic_penalty_per_issue=semantic_penalty_per_issue),
        fallback_builder=generic_fallback,
    )
