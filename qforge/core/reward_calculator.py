# qforge/core/reward_calculator.py
"""
计算候选产物的奖励。
奖励由三部分组成：硬约束得分（0到100）、质量得分（有界）以及语义惩罚（每个问题固定扣分）。

Calculates rewards for candidates.
A reward has three parts: the hard-constraint score (0 to 100), the bounded quality score,
and the semantic penalty (a fixed deduction per issue).
"""

import logging
import dataclasses
from typing import Any, Dict, List, Optional, Tuple

from qforge.core.base import EvaluationResult, ExecutionMetrics
from qforge.core.candidate import candidate_complexity, candidate_length, candidate_type, is_empty
from qforge.core.objective import Objective
from qforge.utils.hashing import canonicalize

logger = logging.getLogger(__name__)

# 完全通过时的约束得分 (Constraint score on full pass)
FULL_PASS_SCORE = 100.0
# 部分得分上限，低于完全通过，避免误判收敛 (Partial credit cap, below a full pass)
PARTIAL_CREDIT_CAP = 90.0
# 质量得分范围 (Quality score bounds)
QUALITY_MIN, QUALITY_MAX = -30.0, 30.0
# 执行指标加成范围 (Execution bonus bounds)
EXECUTION_BONUS_MIN, EXECUTION_BONUS_MAX = -20.0, 20.0
# 每个语义问题的默认扣分 (Default penalty per semantic issue)
DEFAULT_SEMANTIC_PENALTY = 15.0


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


@dataclasses.dataclass(frozen=True)
class SemanticIssue:
    code: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return dataclasses.asdict(self)


@dataclasses.dataclass(frozen=True)
class SemanticValidation:
    semantics_match: bool
    issues: Tuple[SemanticIssue, ...] = ()

    @classmethod
    def from_issues(cls, issues: List[SemanticIssue]) -> 'SemanticValidation':
        return cls(semantics_match=not issues, issues=tuple(issues))

    def to_dict(self) -> Dict[str, Any]:
        return {"semantics_match": self.semantics_match, "issues": [i.to_dict() for i in self.issues]}


@dataclasses.dataclass(frozen=True)
class Reward:
    """
    奖励分解。total = constraint_score + quality_score + semantic_penalty。

    Reward breakdown. total = constraint_score + quality_score + semantic_penalty.
    """
    constraint_score: float
    quality_score: float
    semantic_penalty: float = 0.0
    total: float = 0.0
    details: Dict[str, float] = dataclasses.field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


class RewardCalculator:
    """
    奖励计算器基类。
    子类实现部分得分、质量启发式以及语义校验。

    Base reward calculator class.
    Subclasses implement partial credit, quality heuristics and semantic validation.
    """

    def __init__(self, semantic_penalty_per_issue: float = DEFAULT_SEMANTIC_PENALTY):
        """
        Args:
            semantic_penalty_per_issue: 每个语义问题的扣分 (Penalty per semantic issue)
        """
        self.semantic_penalty_per_issue = semantic_penalty_per_issue

    def calculate_reward(self,
                         candidate: Any,
                         objective: Objective,
                         evaluation: EvaluationResult,
                         execution_metrics: Optional[ExecutionMetrics] = None) -> Reward:
        """
        计算候选产物的奖励（不含语义惩罚）。

        Calculate the reward of a candidate (without the semantic penalty).

        Args:
            candidate: 候选产物 (Candidate)
            objective: 优化目标 (Optimization objective)
            evaluation: 评估结果 (Evaluation result)
            execution_metrics: 可选的执行指标 (Optional execution metrics)

        Returns:
            奖励分解 (Reward breakdown)
        """
        if evaluation.passed:
            constraint_score = FULL_PASS_SCORE
        else:
            constraint_score = clamp(self.partial_credit(candidate, objective, evaluation), 0.0, PARTIAL_CREDIT_CAP)

        details = self.quality_components(candidate, objective)
        if execution_metrics is not None:
            details["execution"] = self.execution_bonus(execution_metrics)
        quality_score = clamp(sum(details.values()), QUALITY_MIN, QUALITY_MAX)

        return Reward(
            constraint_score=constraint_score,
            quality_score=quality_score,
            semantic_penalty=0.0,
            total=constraint_score + quality_score,
            details=details,
        )

    def partial_credit(self, candidate: Any, objective: Objective, evaluation: EvaluationResult) -> float:
        """Weighted partial credit for a failed evaluation; capped by the caller."""
        raise NotImplementedError("Subclasses must implement partial_credit()")

    def quality_components(self, candidate: Any, objective: Objective) -> Dict[str, float]:
        """Named quality heuristics; their sum is clamped to the quality bounds."""
        raise NotImplementedError("Subclasses must implement quality_components()")

    def validate_semantics(self, candidate: Any, objective: Objective, analysis: Dict[str, Any]) -> SemanticValidation:
        """
        检查候选产物结构是否符合意图，独立于硬约束检查。

        Check that the candidate structure matches the stated intent, independently of hard constraints.
        """
        raise NotImplementedError("Subclasses must implement validate_semantics()")

    def apply_semantic_penalty(self, reward: Reward, validation: SemanticValidation) -> Reward:
        """
        每个语义问题扣除固定分数。扣分单独记录，质量得分保持在其范围内。

        Deduct a fixed amount per semantic issue. The deduction is recorded separately so the
        quality score stays within its bounds.
        """
        penalty = -self.semantic_penalty_per_issue * len(validation.issues)
        return dataclasses.replace(
            reward,
            semantic_penalty=penalty,
            total=reward.constraint_score + reward.quality_score + penalty,
        )

    @staticmethod
    def is_converged(evaluation: EvaluationResult,
                     validation: SemanticValidation,
                     reward: Reward,
                     convergence_threshold: float) -> bool:
        """Convergence predicate: passed, semantics match and total reaches the threshold."""
        return evaluation.passed and validation.semantics_match and reward.total >= convergence_threshold

    @staticmethod
    def execution_bonus(metrics: ExecutionMetrics) -> float:
        """
        根据执行指标计算加成：错误、耗时、结果规模。范围 [-20, 20]。

        Bonus from execution metrics: errors, latency and result size. Bounded to [-20, 20].
        """
        if metrics.has_errors:
            return EXECUTION_BONUS_MIN

        bonus = 0.0
        if metrics.execution_time_ms is not None:
            if metrics.execution_time_ms < 50:
                bonus += 10
            elif metrics.execution_time_ms < 100:
                bonus += 5
            elif metrics.execution_time_ms > 1000:
                bonus -= 5

        if metrics.row_count is not None and metrics.expected_row_count is not None:
            row_diff = abs(metrics.row_count - metrics.expected_row_count)
            if row_diff == 0:
                bonus += 10
            elif row_diff < 5:
                bonus += 5
            elif row_diff > 100:
                bonus -= 5

        if metrics.row_count is not None and metrics.row_count > 0:
            bonus += 5

        return clamp(bonus, EXECUTION_BONUS_MIN, EXECUTION_BONUS_MAX)


class GenericRewardCalculator(RewardCalculator):
    """
    与领域无关的奖励计算器。

    Domain-agnostic reward calculator.
    """

    def partial_credit(self, candidate: Any, objective: Objective, evaluation: EvaluationResult) -> float:
        text = self._searchable_text(candidate)
        score = 0.0

        timeframe = objective.scope.timeframe
        if timeframe is not None and timeframe.value and str(timeframe.value).lower() in text:
            score += 30

        entity = objective.scope.entity
        if entity is not None and entity.identifiers:
            if all(identifier.lower() in text for identifier in entity.identifiers):
                score += 30

        required = objective.constraints.required_fields
        if required:
            present = sum(1 for name in required if name.lower() in text)
            score += present / len(required) * 40

        if not is_empty(candidate):
            score += 10

        return score

    def quality_components(self, candidate: Any, objective: Objective) -> Dict[str, float]:
        components: Dict[str, float] = {}

        # 简洁度：复杂度越低越好
        # Conciseness: lower complexity scores higher
        complexity = candidate_complexity(candidate)
        if complexity < 0.3:
            components["conciseness"] = 10
        elif complexity < 0.6:
            components["conciseness"] = 5
        else:
            components["conciseness"] = -5

        # 结果规模与期望规模的比较
        # Size match against the expected size
        if objective.expected_size:
            ratio = abs(candidate_length(candidate) - objective.expected_size) / objective.expected_size
            if ratio < 0.1:
                components["size_match"] = 10
            elif ratio > 0.5:
                components["size_match"] = -5

        # 禁止字段出现即扣分
        # Any forbidden field present costs points
        text = self._searchable_text(candidate)
        forbidden = [name for name in objective.constraints.forbidden_fields if name.lower() in text]
        if forbidden:
            components["forbidden_fields"] = -10 * len(forbidden)

        return components

    def calculate_reward(self,
                         candidate: Any,
                         objective: Objective,
                         evaluation: EvaluationResult,
                         execution_metrics: Optional[ExecutionMetrics] = None) -> Reward:
        reward = super().calculate_reward(candidate, objective, evaluation, execution_metrics)
        if execution_metrics is None or not execution_metrics.custom_metrics:
            return reward
        # 自定义指标直接计入质量得分（仍受上下限约束）
        # Custom metrics add straight into the quality score (still clamped)
        details = dict(reward.details)
        for name, value in execution_metrics.custom_metrics.items():
            details[f"custom:{name}"] = float(value)
        quality_score = clamp(sum(details.values()), QUALITY_MIN, QUALITY_MAX)
        return dataclasses.replace(reward, quality_score=quality_score, details=details,
                                   total=reward.constraint_score + quality_score)

    def validate_semantics(self, candidate: Any, objective: Objective, analysis: Dict[str, Any]) -> SemanticValidation:
        issues: List[SemanticIssue] = []

        if is_empty(candidate):
            issues.append(SemanticIssue("EMPTY_OUTPUT", "Candidate is empty"))

        if objective.expected_type and not is_empty(candidate):
            actual = candidate_type(candidate)
            if actual != objective.expected_type:
                issues.append(SemanticIssue(
                    "TYPE_MISMATCH", f"Expected {objective.expected_type} output but got {actual}"))

        if objective.min_quality is not None:
            quality = analysis.get("quality")
            if isinstance(quality, (int, float)) and quality < objective.min_quality:
                issues.append(SemanticIssue(
                    "LOW_QUALITY", f"Quality {quality} is below the required {objective.min_quality}"))

        return SemanticValidation.from_issues(issues)

    @staticmethod
    def _searchable_text(candidate: Any) -> str:
        if isinstance(candidate, str):
            return candidate.lower()
        return str(canonicalize(candidate)).lower()
