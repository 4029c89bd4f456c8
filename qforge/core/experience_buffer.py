# qforge/core/experience_buffer.py
"""
提供经验回放缓冲区。
记录 (状态, 动作, 奖励, 下一状态, 终止) 转移，固定容量，先进先出。

Provides the experience replay buffer.
Records (state, action, reward, next-state, terminal) transitions in a fixed-capacity FIFO queue.
"""

import secrets
import random
import logging
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

from qforge.utils.serialization import BaseStore, InMemoryStore, SerializationError

logger = logging.getLogger(__name__)


class ExperienceRecord:
    """
    记录单个状态转移。

    Records a single state transition.
    """

    def __init__(self,
                 state_key: str,
                 action: str,
                 reward: float,
                 next_state_key: str,
                 terminal: bool,
                 objective_hash: str,
                 timestamp: Optional[datetime] = None,
                 id: Optional[str] = None):
        """
        初始化经验记录。

        Initialize an experience record.

        Args:
            state_key: 动作前的状态键 (State key before the action)
            action: 执行的动作 (Action taken)
            reward: 获得的总奖励 (Total reward received)
            next_state_key: 动作后的状态键 (State key after the action)
            terminal: 评估是否通过 (Whether the evaluation passed)
            objective_hash: 目标哈希 (Objective hash)
            timestamp: 记录时间 (Record time)
            id: 唯一标识，默认随机生成 (Unique id, random by default)
        """
        self.id = id or secrets.token_hex(8)
        self.state_key = state_key
        self.action = action
        self.reward = reward
        self.next_state_key = next_state_key
        self.terminal = terminal
        self.objective_hash = objective_hash
        self.timestamp = timestamp or datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """
        将记录转换为字典。

        Convert the record to a dictionary.
        """
        return {
            "id": self.id,
            "state_key": self.state_key,
            "action": self.action,
            "reward": self.reward,
            "next_state_key": self.next_state_key,
            "terminal": self.terminal,
            "timestamp": self.timestamp.isoformat(),
            "objective_hash": self.objective_hash,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ExperienceRecord':
        """
        从字典创建记录。

        Create a record from a dictionary.
        """
        timestamp = datetime.fromisoformat(data["timestamp"]) if isinstance(data.get("timestamp"), str) else data.get("timestamp")
        return cls(
            id=data.get("id"),
            state_key=data["state_key"],
            action=data["action"],
            reward=float(data["reward"]),
            next_state_key=data["next_state_key"],
            terminal=bool(data.get("terminal", False)),
            objective_hash=data.get("objective_hash", ""),
            timestamp=timestamp,
        )

    def __repr__(self) -> str:
        return f"ExperienceRecord(id={self.id!r}, action={self.action!r}, reward={self.reward:.2f}, terminal={self.terminal})"


class ExperienceBuffer:
    """
    固定容量的先进先出经验缓冲区，超出容量时丢弃最旧的记录。

    Fixed-capacity FIFO experience buffer; the oldest records are dropped when full.
    """

    def __init__(self,
                 max_entries: int = 1000,
                 store: Optional[BaseStore] = None,
                 rng: Optional[random.Random] = None):
        """
        初始化经验缓冲区。

        Initialize experience buffer.

        Args:
            max_entries: 保留的最大记录数 (Maximum number of records to keep)
            store: 持久化存储，默认为内存存储 (Persistence store, in-memory by default)
            rng: 采样使用的随机数生成器 (Random generator used for sampling)
        """
        if max_entries <= 0:
            raise ValueError("max_entries must be positive.")
        self.logger = logging.getLogger(self.__class__.__name__)
        self.max_entries = max_entries
        self.store = store if store is not None else InMemoryStore()
        self.rng = rng or random.Random()
        self.memory: Deque[ExperienceRecord] = deque(maxlen=max_entries)
        self._lock = threading.RLock()
        self._loaded = False

    def __len__(self) -> int:
        return len(self.memory)

    def add(self,
            state_key: str,
            action: str,
            reward: float,
            next_state_key: str,
            terminal: bool,
            objective_hash: str) -> ExperienceRecord:
        """
        添加新的经验记录。

        Add a new experience record.

        Returns:
            新创建的记录 (The newly created record)
        """
        record = ExperienceRecord(
            state_key=state_key,
            action=action,
            reward=reward,
            next_state_key=next_state_key,
            terminal=terminal,
            objective_hash=objective_hash,
        )
        self.append(record)
        return record

    def append(self, record: ExperienceRecord) -> None:
        with self._lock:
            # deque(maxlen) 自动丢弃最旧的记录
            # deque(maxlen) drops the oldest record automatically
            self.memory.append(record)
        self.logger.debug(f"Added experience {record.id} (reward {record.reward:.2f}). Buffer size: {len(self.memory)}")

    # --- Queries ---

    def get_by_id(self, experience_id: str) -> Optional[ExperienceRecord]:
        with self._lock:
            for record in self.memory:
                if record.id == experience_id:
                    return record
        return None

    def get_recent(self, count: int = 10) -> List[ExperienceRecord]:
        """Most recent records, oldest first."""
        if count <= 0:
            return []
        with self._lock:
            return list(self.memory)[-count:]

    def sample_random_batch(self, batch_size: int, rng: Optional[random.Random] = None) -> List[ExperienceRecord]:
        """
        无放回地随机采样。缓冲区不足 batch_size 时返回全部记录的副本。

        Sample without replacement. Returns a copy of every record when the buffer holds fewer than batch_size.
        """
        with self._lock:
            records = list(self.memory)
        if batch_size >= len(records):
            return records
        return (rng or self.rng).sample(records, batch_size)

    def get_by_objective_hash(self, objective_hash: str) -> List[ExperienceRecord]:
        with self._lock:
            return [r for r in self.memory if r.objective_hash == objective_hash]

    def get_high_reward(self, min_reward: float) -> List[ExperienceRecord]:
        with self._lock:
            return [r for r in self.memory if r.reward >= min_reward]

    def average_reward(self, count: int = 50) -> float:
        """Average reward over the most recent `count` records (0 when empty)."""
        recent = self.get_recent(count)
        if not recent:
            return 0.0
        return sum(r.reward for r in recent) / len(recent)

    def success_rate(self) -> float:
        """Fraction of records with terminal=True (0 when empty)."""
        with self._lock:
            if not self.memory:
                return 0.0
            return sum(1 for r in self.memory if r.terminal) / len(self.memory)

    def get_statistics(self) -> Dict[str, Any]:
        """
        获取缓冲区统计信息。

        Get buffer statistics.
        """
        with self._lock:
            return {
                "total": len(self.memory),
                "capacity": self.max_entries,
                "average_reward": self.average_reward(),
                "success_rate": self.success_rate(),
                "recent_rewards": [r.reward for r in self.get_recent(20)],
            }

    def clear(self) -> None:
        with self._lock:
            self.memory.clear()

    # --- Persistence ---

    def to_dict_list(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [r.to_dict() for r in self.memory]

    def load_dict_list(self, data_list: List[Dict[str, Any]]) -> None:
        """Replaces the buffer contents; only the newest max_entries records are kept."""
        records = [ExperienceRecord.from_dict(d) for d in data_list]
        with self._lock:
            self.memory = deque(records, maxlen=self.max_entries)

    def load(self) -> bool:
        """
        从存储加载经验。失败不致命。

        Load experiences from the store. Failures are non-fatal.
        """
        with self._lock:
            self._loaded = True
            try:
                data = self.store.load()
            except SerializationError as e:
                self.logger.warning(f"Could not load experiences, starting empty: {e}")
                return False
            if not data:
                return False
            try:
                self.load_dict_list(data)
            except (KeyError, TypeError, ValueError) as e:
                self.logger.warning(f"Ignoring unreadable experience snapshot: {e}")
                return False
            self.logger.info(f"Loaded {len(self.memory)} experiences")
            return True

    def ensure_loaded(self) -> None:
        with self._lock:
            if not self._loaded:
                self.load()

    def save(self) -> bool:
        """
        保存经验到存储。失败不致命。

        Save experiences to the store. Failures are non-fatal.
        """
        with self._lock:
            try:
                self.store.save(self.to_dict_list())
            except SerializationError as e:
                self.logger.warning(f"Failed to save experiences: {e}")
                return False
            return True
