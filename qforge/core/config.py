# qforge/core/config.py

import os
import logging
import dataclasses
from typing import Optional, Dict, Any, Callable

from dotenv import load_dotenv, find_dotenv

logger = logging.getLogger(__name__)

# 环境变量前缀
# Environment variable prefix
ENV_PREFIX = "QFORGE_"


def _load_env_file() -> None:
    """Loads the nearest .env file (if any) into os.environ without overriding existing values."""
    env_path = find_dotenv(usecwd=True)
    if env_path:
        load_dotenv(dotenv_path=env_path, override=False)
        logger.debug(f"Loaded .env file from: {env_path}")


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_overrides(fields: Dict[str, Callable[[str], Any]]) -> Dict[str, Any]:
    """Collects QFORGE_* variables for the given field names, converted with the given parsers."""
    overrides: Dict[str, Any] = {}
    for name, parser in fields.items():
        raw = os.environ.get(f"{ENV_PREFIX}{name.upper()}")
        if raw is None or raw.strip() == "":
            continue
        try:
            overrides[name] = parser(raw)
        except ValueError as e:
            raise ValueError(f"Invalid value for {ENV_PREFIX}{name.upper()}: {raw!r} ({e})") from e
    return overrides


@dataclasses.dataclass
class QLearningConfig:
    """
    Q学习的超参数。与Q表一起持久化，只有 epsilon 会在运行中衰减。

    Q-learning hyperparameters.
    Persisted together with the Q-table; only epsilon changes at runtime (decay).
    """
    alpha: float = 0.1                  # 学习率 (Learning rate)
    gamma: float = 0.9                  # 折扣因子 (Discount factor)
    epsilon: float = 0.2                # 探索率 (Exploration rate)
    epsilon_decay: float = 0.995        # 每次会话后的衰减系数 (Per-session decay multiplier)
    epsilon_min: float = 0.05           # 探索率下限 (Exploration floor)
    max_q_table_size: int = 10000       # Q表最多保留的状态数 (Max number of states kept)
    max_experiences: int = 1000         # 经验缓冲区容量 (Experience buffer capacity)
    max_iterations: int = 10            # 每次会话的最大迭代数 (Max iterations per session)
    convergence_threshold: float = 100  # 收敛所需的总奖励 (Total reward required to converge)

    def __post_init__(self):
        # 添加基本的配置验证 (Add basic configuration validation)
        if not 0 < self.alpha <= 1:
            raise ValueError("alpha must be in (0, 1].")
        if not 0 <= self.gamma <= 1:
            raise ValueError("gamma must be in [0, 1].")
        if not 0 <= self.epsilon <= 1:
            raise ValueError("epsilon must be in [0, 1].")
        if not 0 <= self.epsilon_min <= 1:
            raise ValueError("epsilon_min must be in [0, 1].")
        if not 0 < self.epsilon_decay <= 1:
            raise ValueError("epsilon_decay must be in (0, 1].")
        for name in ("max_q_table_size", "max_experiences", "max_iterations"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool):
                raise TypeError(f"{name} must be an integer.")
            if value <= 0:
                raise ValueError(f"{name} must be positive.")

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'QLearningConfig':
        """
        从字典创建配置，忽略未知键。

        Create config from a dictionary, ignoring unknown keys.
        """
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown hyperparameters: {sorted(unknown)}")
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_env(cls, **overrides: Any) -> 'QLearningConfig':
        """
        从环境变量（以及 .env 文件）读取配置，例如 QFORGE_ALPHA、QFORGE_EPSILON。

        Read configuration from environment variables (and a .env file), e.g. QFORGE_ALPHA, QFORGE_EPSILON.

        Args:
            **overrides: 显式覆盖的字段 (Fields explicitly overriding the environment)
        """
        _load_env_file()
        parsers: Dict[str, Callable[[str], Any]] = {
            "alpha": float, "gamma": float, "epsilon": float,
            "epsilon_decay": float, "epsilon_min": float,
            "max_q_table_size": int, "max_experiences": int, "max_iterations": int,
            "convergence_threshold": float,
        }
        values = _env_overrides(parsers)
        values.update(overrides)
        return cls(**values)


@dataclasses.dataclass
class OptimizationConfig:
    """
    用于配置优化循环驱动器的数据类。

    Dataclass for configuring the optimization loop driver.
    """
    # --- Learning ---
    q_learning: QLearningConfig = dataclasses.field(default_factory=QLearningConfig)

    # --- Action Space ---
    min_reset_iteration: int = 3            # RESET 只在迭代数大于此值后可用 (RESET offered only after this iteration)

    # --- Reward ---
    semantic_penalty_per_issue: float = 15  # 每个语义问题扣分 (Penalty per semantic issue)

    # --- Generator Retry ---
    generator_max_retries: int = 2          # 生成器失败后的重试次数 (Retries after a generator failure)
    generator_retry_delay: float = 0.5      # 初始重试延迟（秒） (Initial retry delay in seconds)

    # --- Persistence ---
    q_table_path: Optional[str] = None      # None 表示仅保存在内存中 (None keeps the Q-table in memory)
    experiences_path: Optional[str] = None  # None 表示仅保存在内存中 (None keeps experiences in memory)

    # --- Monitoring ---
    use_live_monitor: bool = False                  # Enable/disable tqdm progress bar
    tracker_config: Optional[Dict[str, Any]] = None # Configuration for OptimizationTracker (e.g., name, dir)

    def __post_init__(self):
        if isinstance(self.q_learning, dict):
            self.q_learning = QLearningConfig.from_dict(self.q_learning)
        if not isinstance(self.q_learning, QLearningConfig):
            raise TypeError("q_learning must be a QLearningConfig or a dictionary.")

        if self.min_reset_iteration < 0:
            raise ValueError("min_reset_iteration cannot be negative.")
        if self.semantic_penalty_per_issue < 0:
            raise ValueError("semantic_penalty_per_issue cannot be negative.")
        if self.generator_max_retries < 0:
            raise ValueError("generator_max_retries cannot be negative.")
        if self.generator_retry_delay < 0:
            raise ValueError("generator_retry_delay cannot be negative.")

        # Ensure tracker_config is a dict if provided
        if self.tracker_config is not None and not isinstance(self.tracker_config, dict):
            raise TypeError("tracker_config must be a dictionary if provided.")

    @classmethod
    def from_env(cls, **overrides: Any) -> 'OptimizationConfig':
        """
        从环境变量读取驱动器配置，例如 QFORGE_Q_TABLE_PATH、QFORGE_USE_LIVE_MONITOR。

        Read driver configuration from environment variables, e.g. QFORGE_Q_TABLE_PATH, QFORGE_USE_LIVE_MONITOR.
        """
        _load_env_file()
        parsers: Dict[str, Callable[[str], Any]] = {
            "min_reset_iteration": int,
            "semantic_penalty_per_issue": float,
            "generator_max_retries": int,
            "generator_retry_delay": float,
            "q_table_path": str,
            "experiences_path": str,
            "use_live_monitor": _parse_bool,
        }
        values = _env_overrides(parsers)
        values.setdefault("q_learning", QLearningConfig.from_env())
        values.update(overrides)
        return cls(**values)
