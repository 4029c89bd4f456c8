# qforge/utils/__init__.py
"""
提供各种通用工具函数和类。
包括重试策略、确定性哈希、持久化存储等。

Provides various utility functions and classes.
Includes retry strategies, deterministic hashing, persistence stores, etc.
"""

from .retry import (
    RetryError,
    RetryStrategy,
    ExponentialBackoff,
    ExponentialBackoffWithJitter,
)

from .hashing import (
    canonicalize,
    stable_hash,
)

from .serialization import (
    BaseStore,
    JsonFileStore,
    InMemoryStore,
    SerializationError,
    utc_timestamp,
)

# Define public API
__all__ = [
    # Retry utilities
    "RetryError",
    "RetryStrategy",
    "ExponentialBackoff",
    "ExponentialBackoffWithJitter",

    # Hashing utilities
    "canonicalize",
    "stable_hash",

    # Persistence utilities
    "BaseStore",
    "JsonFileStore",
    "InMemoryStore",
    "SerializationError",
    "utc_timestamp",
]
