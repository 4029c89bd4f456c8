# qforge/utils/hashing.py
"""
提供确定性的内容哈希。
对字典键排序后再序列化，保证相同内容得到相同哈希。

Provides deterministic content hashing.
Dictionary keys are sorted before serialization so equal content yields equal hashes.
"""

import json
import hashlib
import dataclasses
from enum import Enum
from typing import Any

# 默认哈希截断长度
# Default truncated hash length
DEFAULT_HASH_LENGTH = 16


def canonicalize(value: Any) -> Any:
    """
    将任意值转换为可稳定序列化的 JSON 结构。

    Convert an arbitrary value into a stably serializable JSON structure.

    Args:
        value: 任意值 (Any value)

    Returns:
        仅由 dict/list/str/int/float/bool/None 组成的结构
        (Structure made only of dict/list/str/int/float/bool/None)
    """
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return canonicalize(dataclasses.asdict(value))
    if isinstance(value, Enum):
        return canonicalize(value.value)
    if isinstance(value, dict):
        return {str(k): canonicalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [canonicalize(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted((canonicalize(v) for v in value), key=lambda v: json.dumps(v, sort_keys=True, default=str))
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def stable_hash(value: Any, length: int = DEFAULT_HASH_LENGTH) -> str:
    """
    计算值的确定性 MD5 哈希（截断）。

    Compute a deterministic, truncated MD5 hash of a value.

    Args:
        value: 要哈希的值 (Value to hash)
        length: 返回的十六进制字符数 (Number of hex characters to return)

    Returns:
        十六进制哈希字符串 (Hex hash string)
    """
    payload = json.dumps(canonicalize(value), sort_keys=True, ensure_ascii=False, separators=(",", ":"))
    return hashlib.md5(payload.encode("utf-8")).hexdigest()[:length]
