# qforge/utils/serialization.py
"""
提供学习状态的持久化存储。
Q表和经验缓冲区通过这些存储读写，文件写入是原子的。

Provides persistent stores for learned state.
The Q-table and experience buffer read and write through these stores; file writes are atomic.
"""

import os
import json
import copy
import logging
import tempfile
import datetime
from typing import Any, Optional

logger = logging.getLogger(__name__)


class SerializationError(Exception):
    """
    序列化/反序列化过程中发生的错误。

    Error that occurs during serialization/deserialization.
    """
    pass


def utc_timestamp() -> str:
    """Returns the current UTC time as an ISO-8601 string."""
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


class BaseStore:
    """
    持久化存储基类。

    Base class for persistence stores.
    """

    def load(self) -> Optional[Any]:
        """
        读取已保存的数据。

        Load previously saved data.

        Returns:
            保存的数据，如果尚未保存则为None (Saved data, or None if nothing was saved yet)

        Raises:
            SerializationError: 读取或解析失败 (If reading or parsing fails)
        """
        raise NotImplementedError("Subclasses must implement load()")

    def save(self, data: Any) -> None:
        """
        保存数据，覆盖之前的内容。

        Save data, replacing previous contents.

        Args:
            data: 可JSON序列化的数据 (JSON-serializable data)

        Raises:
            SerializationError: 写入失败 (If writing fails)
        """
        raise NotImplementedError("Subclasses must implement save()")


class JsonFileStore(BaseStore):
    """
    基于JSON文件的存储。写入先落到临时文件，再原子替换目标文件。

    JSON-file backed store. Writes go to a temporary file which then atomically replaces the target.
    """

    def __init__(self, path: str, indent: Optional[int] = 2):
        """
        初始化JSON文件存储。

        Initialize JSON file store.

        Args:
            path: 目标文件路径 (Target file path)
            indent: JSON缩进 (JSON indentation)
        """
        self.path = path
        self.indent = indent

    def load(self) -> Optional[Any]:
        if not os.path.exists(self.path):
            logger.debug(f"No saved data at {self.path}")
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return json.load(f)
        except Exception as e:
            error_msg = f"Error loading {self.path}: {e}"
            logger.error(error_msg, exc_info=True)
            raise SerializationError(error_msg) from e

    def save(self, data: Any) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        tmp_path = None
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=".tmp_", suffix=".json", dir=directory)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=self.indent, ensure_ascii=False)
            os.replace(tmp_path, self.path)
            logger.debug(f"Saved data to {self.path}")
        except Exception as e:
            if tmp_path and os.path.exists(tmp_path):
                os.remove(tmp_path)
            error_msg = f"Error saving {self.path}: {e}"
            logger.error(error_msg, exc_info=True)
            raise SerializationError(error_msg) from e

    def __repr__(self) -> str:
        return f"JsonFileStore(path={self.path!r})"


class InMemoryStore(BaseStore):
    """
    内存存储，主要用于测试和无需持久化的会话。

    In-memory store, mainly for tests and sessions that need no persistence.
    """

    def __init__(self, data: Optional[Any] = None):
        self._data = copy.deepcopy(data)
        self.save_count = 0

    def load(self) -> Optional[Any]:
        return copy.deepcopy(self._data)

    def save(self, data: Any) -> None:
        # JSON往返，保证与文件存储行为一致
        # JSON round-trip so behaviour matches the file store
        try:
            self._data = json.loads(json.dumps(data))
        except (TypeError, ValueError) as e:
            raise SerializationError(f"Data is not JSON-serializable: {e}") from e
        self.save_count += 1
