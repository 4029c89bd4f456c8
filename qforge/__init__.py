# qforge/__init__.py

import logging

# --- Core Components ---
from .core import (
    RLOptimizer, OptimizationResult, IterationLog, SessionStatus,
    OptimizationConfig, QLearningConfig,
    Objective, MalformedObjectiveError,
    EvaluationResult, ExecutionMetrics, Feedback,
)

# --- Base Classes (for extension) ---
from .core.action_space import (
    Action,
    ActionType,
    BaseActionSpace,
    CustomActionSpace,
    RequiresGeneration,
    Transformed,
)
from .core.state_extractor import BaseStateExtractor
from .core.reward_calculator import RewardCalculator, SemanticIssue, SemanticValidation
from .core.strategy import OptimizationStrategy, create_generic_strategy

# --- Stores ---
from .core.q_table import QTable
from .core.experience_buffer import ExperienceBuffer

# --- Errors ---
from .core.action_executor import ActionExecutionError
from .utils import RetryError, SerializationError
from .utils import JsonFileStore, InMemoryStore

# --- Monitoring Components ---
from .monitoring import OptimizationTracker, LiveProgressMonitor

# --- Domain Strategies ---
from .sql import create_sql_strategy

__version__ = "0.1.0"

__all__ = [
    "RLOptimizer",
    "OptimizationResult",
    "IterationLog",
    "SessionStatus",
    "OptimizationConfig",
    "QLearningConfig",
    "Objective",
    "EvaluationResult",
    "ExecutionMetrics",
    "Feedback",
    "Action",
    "ActionType",
    "BaseActionSpace",
    "CustomActionSpace",
    "Transformed",
    "RequiresGeneration",
    "BaseStateExtractor",
    "RewardCalculator",
    "SemanticIssue",
    "SemanticValidation",
    "OptimizationStrategy",
    "create_generic_strategy",
    "create_sql_strategy",
    "QTable",
    "ExperienceBuffer",
    "JsonFileStore",
    "InMemoryStore",
    "OptimizationTracker",
    "LiveProgressMonitor",
    "MalformedObjectiveError",
    "ActionExecutionError",
    "RetryError",
    "SerializationError",
]

# --- Logging Configuration ---
# Setup default null handler to avoid "No handler found" warnings.
# The user application should configure logging properly.
logging.getLogger(__name__).addHandler(logging.NullHandler())
