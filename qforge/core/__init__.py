# qforge/core/__init__.py
"""
q-forge 的核心组件：目标模型、状态提取、动作空间、Q值表、奖励计算、经验缓冲区和优化驱动器。

Core components of q-forge: objective model, state extraction, action space, Q-table,
reward calculation, experience buffer and the optimization driver.
"""

from .base import (
    Candidate,
    EvaluationResult,
    ExecutionMetrics,
    Feedback,
)
from .config import OptimizationConfig, QLearningConfig
from .objective import (
    Constraints,
    Entity,
    MalformedObjectiveError,
    Objective,
    Scope,
    ScopeFilter,
    Timeframe,
)
from .action_space import (
    ACTION_SPACE_VERSION,
    Action,
    ActionOutcome,
    ActionType,
    BaseActionSpace,
    CustomActionSpace,
    GenericActionSpace,
    RequiresGeneration,
    Transformed,
)
from .action_executor import ActionExecutionError, ActionExecutor
from .state_extractor import BaseStateExtractor, GenericStateExtractor, State
from .q_table import QTable
from .reward_calculator import (
    GenericRewardCalculator,
    Reward,
    RewardCalculator,
    SemanticIssue,
    SemanticValidation,
)
from .experience_buffer import ExperienceBuffer, ExperienceRecord
from .strategy import OptimizationStrategy, create_generic_strategy
from .rl_optimizer import IterationLog, OptimizationResult, RLOptimizer, SessionStatus


__all__ = [
    # Base types
    "Candidate",
    "EvaluationResult",
    "ExecutionMetrics",
    "Feedback",

    # Configuration
    "OptimizationConfig",
    "QLearningConfig",

    # Objective
    "Objective",
    "Scope",
    "Timeframe",
    "Entity",
    "ScopeFilter",
    "Constraints",
    "MalformedObjectiveError",

    # Actions
    "ACTION_SPACE_VERSION",
    "Action",
    "ActionType",
    "ActionOutcome",
    "Transformed",
    "RequiresGeneration",
    "BaseActionSpace",
    "GenericActionSpace",
    "CustomActionSpace",
    "ActionExecutor",
    "ActionExecutionError",

    # State, policy and reward
    "State",
    "BaseStateExtractor",
    "GenericStateExtractor",
    "QTable",
    "Reward",
    "RewardCalculator",
    "GenericRewardCalculator",
    "SemanticIssue",
    "SemanticValidation",

    # Experience
    "ExperienceBuffer",
    "ExperienceRecord",

    # Strategy and driver
    "OptimizationStrategy",
    "create_generic_strategy",
    "RLOptimizer",
    "OptimizationResult",
    "IterationLog",
    "SessionStatus",
]
