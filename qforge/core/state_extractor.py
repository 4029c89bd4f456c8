# qforge/core/state_extractor.py
"""
从 (候选产物, 目标) 派生稳定、可哈希的状态表示。
目标与候选产物分别哈希，因此不同目标的状态永远不会冲突；易变字段（时间戳、迭代数）不参与状态键。

Derives a stable, hashable state representation from a (candidate, objective) pair.
Objective and candidate are hashed independently, so states of different objectives never collide;
volatile fields (timestamps, iteration count) never enter the state key.
"""

import logging
import dataclasses
from typing import Any, Dict, Optional, Tuple

from qforge.core.candidate import candidate_complexity, candidate_length, candidate_type, is_empty
from qforge.core.objective import Objective
from qforge.utils.hashing import stable_hash

logger = logging.getLogger(__name__)

KEY_SEPARATOR = "|"


@dataclasses.dataclass(frozen=True)
class State:
    """
    派生的状态。iteration 只是元数据，不进入状态键。

    Derived state. iteration is metadata only and never enters the state key.
    """
    objective_hash: str
    candidate_hash: str
    features: Dict[str, Any]
    iteration: int = 0


class BaseStateExtractor:
    """
    状态提取器基类。子类提供特征以及构成状态的特征子集。

    Base state extractor. Subclasses provide features and the state-defining subset.
    """

    # 构成状态键的特征名 (Feature names that make up the state key)
    state_defining_features: Tuple[str, ...] = ()

    def extract_state(self,
                      candidate: Any,
                      objective: Objective,
                      analysis: Optional[Dict[str, Any]] = None,
                      iteration: int = 0) -> State:
        """
        提取状态。

        Extract state.

        Args:
            candidate: 当前候选产物 (Current candidate)
            objective: 优化目标 (Optimization objective)
            analysis: 分析器返回的特征 (Features from the analyzer)
            iteration: 当前迭代数 (Current iteration)

        Returns:
            状态 (State)
        """
        return State(
            objective_hash=objective.objective_hash,
            candidate_hash=stable_hash(candidate),
            features=self.extract_features(candidate, objective, analysis or {}),
            iteration=iteration,
        )

    def extract_features(self, candidate: Any, objective: Objective, analysis: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError("Subclasses must implement extract_features()")

    def get_state_key(self, state: State) -> str:
        """
        组合目标哈希、候选产物哈希和状态特征子集的哈希。

        Combine the objective hash, the candidate hash and a hash of the state-defining features.
        """
        defining = {name: state.features.get(name) for name in self.state_defining_features}
        return KEY_SEPARATOR.join([state.objective_hash, state.candidate_hash, stable_hash(defining, length=8)])


class GenericStateExtractor(BaseStateExtractor):
    """
    与领域无关的状态提取器。

    Domain-agnostic state extractor.
    """

    state_defining_features = ("candidate_length", "is_empty")

    def extract_features(self, candidate: Any, objective: Objective, analysis: Dict[str, Any]) -> Dict[str, Any]:
        features: Dict[str, Any] = {
            "candidate_type": candidate_type(candidate),
            "candidate_length": candidate_length(candidate),
            "is_empty": is_empty(candidate),
            "complexity": round(candidate_complexity(candidate), 4),
            "has_constraints": objective.constraints.count > 0,
            "constraint_count": objective.constraints.count,
        }
        # 分析结果合并进来，但不覆盖内置特征
        # Analysis entries are merged in without overriding built-in features
        for key, value in analysis.items():
            features.setdefault(key, value)
        return features
