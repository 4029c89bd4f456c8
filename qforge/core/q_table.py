# qforge/core/q_table.py
"""
Q值表与 epsilon-greedy 策略。
记录 (状态, 动作) 的价值估计，通过 Bellman 方程更新，按插入顺序淘汰最旧的状态，并在会话边界持久化。

Q-value table and epsilon-greedy policy.
Stores value estimates for (state, action) pairs, updates them with the Bellman equation,
evicts the oldest-inserted state when full, and persists at session boundaries.
"""

import random
import logging
import threading
from typing import Any, Dict, List, Optional, Sequence, Union

from qforge.core.action_space import ACTION_SPACE_VERSION, Action, ActionType, action_key
from qforge.core.config import QLearningConfig
from qforge.utils.serialization import BaseStore, InMemoryStore, SerializationError, utc_timestamp

logger = logging.getLogger(__name__)

ActionLike = Union[Action, ActionType, str]

# 持久化格式版本
# Persisted snapshot format version
SNAPSHOT_VERSION = 1


class QTable:
    """
    带锁的Q值表。多个并发会话可以共享同一个实例。

    Lock-guarded Q-value table. Concurrent sessions may share one instance.
    """

    def __init__(self,
                 config: Optional[QLearningConfig] = None,
                 store: Optional[BaseStore] = None,
                 generator_bias: float = 0.5,
                 rng: Optional[random.Random] = None):
        """
        初始化Q值表。

        Initialize Q-table.

        Args:
            config: Q学习超参数 (Q-learning hyperparameters)
            store: 持久化存储，默认为内存存储 (Persistence store, in-memory by default)
            generator_bias: 未见过的 USE_GENERATOR 的初始值 (Initial value for unseen USE_GENERATOR pairs)
            rng: 探索使用的随机数生成器 (Random generator used for exploration)
        """
        self.logger = logging.getLogger(self.__class__.__name__)
        self.config = config or QLearningConfig()
        self.store = store if store is not None else InMemoryStore()
        self.generator_bias = generator_bias
        self.rng = rng or random.Random()

        self._table: Dict[str, Dict[str, float]] = {}
        self._lock = threading.RLock()
        self._loaded = False
        self.sessions_processed = 0

    # --- Basic Access ---

    @property
    def epsilon(self) -> float:
        return self.config.epsilon

    def __len__(self) -> int:
        return len(self._table)

    def __contains__(self, state_key: str) -> bool:
        return state_key in self._table

    def initial_value(self, action: ActionLike) -> float:
        """Seeded value for unseen pairs: a small positive bias for USE_GENERATOR, zero otherwise."""
        return self.generator_bias if action_key(action) == ActionType.USE_GENERATOR.value else 0.0

    def get_q_value(self, state_key: str, action: ActionLike) -> float:
        """
        获取 (状态, 动作) 的Q值，未见过时返回初始值。

        Get the Q-value of a (state, action) pair, or its initial value if unseen.
        """
        with self._lock:
            actions = self._table.get(state_key)
            name = action_key(action)
            if actions is None or name not in actions:
                return self.initial_value(action)
            return actions[name]

    def set_q_value(self, state_key: str, action: ActionLike, value: float) -> None:
        with self._lock:
            if state_key not in self._table:
                self._table[state_key] = {}
                self._evict_if_needed()
            self._table[state_key][action_key(action)] = float(value)

    def max_q_value(self, state_key: str, actions: Sequence[ActionLike]) -> float:
        """Maximum Q-value over the given actions; 0 when no actions are given."""
        if not actions:
            return 0.0
        with self._lock:
            return max(self.get_q_value(state_key, a) for a in actions)

    def _evict_if_needed(self) -> None:
        # 按插入顺序淘汰：dict 保持插入顺序，第一个键就是最旧的状态
        # Insertion-order eviction: dicts keep insertion order, so the first key is the oldest state
        while len(self._table) > self.config.max_q_table_size:
            oldest = next(iter(self._table))
            del self._table[oldest]
            self.logger.debug(f"Evicted oldest state {oldest[:24]}... (size limit {self.config.max_q_table_size})")

    # --- Policy ---

    def best_action(self, state_key: str, actions: Sequence[ActionLike]) -> ActionLike:
        """Greedy choice; ties go to the earliest action in the given order."""
        if not actions:
            raise ValueError("Cannot select from an empty action list")
        with self._lock:
            best = actions[0]
            best_value = self.get_q_value(state_key, best)
            for action in actions[1:]:
                value = self.get_q_value(state_key, action)
                if value > best_value:
                    best, best_value = action, value
            return best

    def select_action(self,
                      state_key: str,
                      actions: Sequence[ActionLike],
                      rng: Optional[random.Random] = None) -> ActionLike:
        """
        epsilon-greedy 选择：以 epsilon 概率随机探索，否则选择Q值最高的动作。

        Epsilon-greedy selection: explore uniformly with probability epsilon, otherwise exploit.

        Args:
            state_key: 当前状态键 (Current state key)
            actions: 可用动作（按枚举顺序） (Applicable actions, in enumeration order)
            rng: 可选的随机数生成器 (Optional random generator)

        Returns:
            选中的动作 (Selected action)

        Raises:
            ValueError: 如果动作列表为空 (If the action list is empty)
        """
        if not actions:
            raise ValueError("Cannot select from an empty action list")
        rng = rng or self.rng
        if rng.random() < self.epsilon:
            action = rng.choice(list(actions))
            self.logger.debug(f"Exploring: picked {action_key(action)} at random (epsilon={self.epsilon:.3f})")
            return action
        return self.best_action(state_key, actions)

    def update_q_value(self,
                       state_key: str,
                       action: ActionLike,
                       reward: float,
                       next_state_key: str,
                       actions: Sequence[ActionLike]) -> float:
        """
        Bellman 更新：Q ← Q + alpha * (r + gamma * max Q(s', a') - Q)。
        max 取自当前迭代的可用动作集合，作为下一状态动作集合的近似。

        Bellman update: Q <- Q + alpha * (r + gamma * max Q(s', a') - Q).
        The max is taken over the current iteration's applicable actions as an approximation
        of the next state's action set.

        Returns:
            更新后的Q值 (Updated Q-value)
        """
        with self._lock:
            current = self.get_q_value(state_key, action)
            max_next = self.max_q_value(next_state_key, actions)
            new_value = current + self.config.alpha * (reward + self.config.gamma * max_next - current)
            self.set_q_value(state_key, action, new_value)
            self.logger.debug(
                f"Q update {action_key(action)}: {current:.3f} -> {new_value:.3f} "
                f"(reward={reward:.2f}, max_next={max_next:.3f})"
            )
            return new_value

    def decay_epsilon(self) -> float:
        """
        每次会话结束时衰减探索率：epsilon = max(epsilon_min, epsilon * epsilon_decay)。

        Decay exploration once per finished session: epsilon = max(epsilon_min, epsilon * epsilon_decay).
        """
        with self._lock:
            self.config.epsilon = max(self.config.epsilon_min, self.config.epsilon * self.config.epsilon_decay)
            self.sessions_processed += 1
            return self.config.epsilon

    # --- Statistics ---

    def get_statistics(self, top_n: int = 10) -> Dict[str, Any]:
        """
        获取Q表统计信息，包括Q值最高的若干 (状态, 动作)。

        Get Q-table statistics, including the highest-valued (state, action) pairs.
        """
        with self._lock:
            pairs = [
                {"state": state, "action": action, "q_value": value}
                for state, actions in self._table.items()
                for action, value in actions.items()
            ]
            pairs.sort(key=lambda p: p["q_value"], reverse=True)
            return {
                "size": len(self._table),
                "pair_count": len(pairs),
                "epsilon": self.config.epsilon,
                "sessions_processed": self.sessions_processed,
                "top_state_actions": pairs[:top_n],
            }

    # --- Persistence ---

    def to_snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "version": SNAPSHOT_VERSION,
                "action_space_version": ACTION_SPACE_VERSION,
                "updated_at": utc_timestamp(),
                "sessions_processed": self.sessions_processed,
                "hyperparams": self.config.to_dict(),
                "table": {state: dict(actions) for state, actions in self._table.items()},
            }

    def load_snapshot(self, snapshot: Dict[str, Any], restore_hyperparams: bool = False) -> None:
        """
        从快照恢复Q表。默认只恢复 epsilon（运行中唯一会变化的超参数）。

        Restore the table from a snapshot. By default only epsilon (the one hyperparameter that
        changes at runtime) is restored; pass restore_hyperparams=True to adopt all of them.

        Raises:
            ValueError: 快照版本不受支持 (If the snapshot version is unsupported)
        """
        version = snapshot.get("version")
        if version != SNAPSHOT_VERSION:
            raise ValueError(f"Unsupported Q-table snapshot version: {version}")
        if snapshot.get("action_space_version", ACTION_SPACE_VERSION) != ACTION_SPACE_VERSION:
            self.logger.warning("Q-table snapshot was written for a different action space version")

        with self._lock:
            hyperparams = snapshot.get("hyperparams") or {}
            if restore_hyperparams and hyperparams:
                self.config = QLearningConfig.from_dict(hyperparams)
            elif "epsilon" in hyperparams:
                self.config.epsilon = float(hyperparams["epsilon"])
            self.sessions_processed = int(snapshot.get("sessions_processed", 0))
            self._table = {
                state: {action: float(value) for action, value in actions.items()}
                for state, actions in (snapshot.get("table") or {}).items()
            }
            self._evict_if_needed()
            self._loaded = True

    def load(self) -> bool:
        """
        从存储加载Q表。失败不致命：记录日志并以空表继续。

        Load the table from the store. Failures are non-fatal: logged, and the table stays as is.

        Returns:
            是否成功加载了已保存的数据 (Whether saved data was loaded)
        """
        with self._lock:
            self._loaded = True
            try:
                snapshot = self.store.load()
            except SerializationError as e:
                self.logger.warning(f"Could not load Q-table, starting fresh: {e}")
                return False
            if not snapshot:
                return False
            try:
                self.load_snapshot(snapshot)
            except (ValueError, TypeError, AttributeError) as e:
                self.logger.warning(f"Ignoring unreadable Q-table snapshot: {e}")
                return False
            self.logger.info(f"Loaded Q-table with {len(self._table)} states (epsilon={self.epsilon:.3f})")
            return True

    def ensure_loaded(self) -> None:
        """Loads from the store on first use only."""
        with self._lock:
            if not self._loaded:
                self.load()

    def save(self) -> bool:
        """
        保存Q表到存储。失败不致命。

        Save the table to the store. Failures are non-fatal.

        Returns:
            是否保存成功 (Whether the save succeeded)
        """
        with self._lock:
            try:
                self.store.save(self.to_snapshot())
            except SerializationError as e:
                self.logger.warning(f"Failed to save Q-table: {e}")
                return False
            self.logger.debug(f"Saved Q-table with {len(self._table)} states")
            return True

    def reset(self) -> None:
        """Clears all learned values and restores default hyperparameters."""
        with self._lock:
            self._table.clear()
            self.config = QLearningConfig()
            self.sessions_processed = 0
