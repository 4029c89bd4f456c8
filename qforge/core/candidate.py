# qforge/core/candidate.py
"""
候选产物的通用度量：是否为空、长度、类型与复杂度。

Generic measurements of candidate artifacts: emptiness, length, type and complexity.
"""

import dataclasses
from typing import Any, Mapping

from qforge.utils.hashing import canonicalize


def _as_plain(candidate: Any) -> Any:
    if dataclasses.is_dataclass(candidate) and not isinstance(candidate, type):
        return canonicalize(candidate)
    return candidate


def candidate_type(candidate: Any) -> str:
    """Returns a coarse type name: str, list, dict, none or the Python type name."""
    candidate = _as_plain(candidate)
    if candidate is None:
        return "none"
    if isinstance(candidate, str):
        return "str"
    if isinstance(candidate, (list, tuple)):
        return "list"
    if isinstance(candidate, Mapping):
        return "dict"
    return type(candidate).__name__


def is_empty(candidate: Any) -> bool:
    candidate = _as_plain(candidate)
    if candidate is None:
        return True
    if isinstance(candidate, str):
        return not candidate.strip()
    if isinstance(candidate, (list, tuple, Mapping)):
        return len(candidate) == 0
    return False


def candidate_length(candidate: Any) -> int:
    """Character count for strings, element count for collections, 0 for None, else 1."""
    candidate = _as_plain(candidate)
    if candidate is None:
        return 0
    if isinstance(candidate, (str, list, tuple, Mapping)):
        return len(candidate)
    return 1


def candidate_complexity(candidate: Any) -> float:
    """
    计算候选产物的复杂度（0到1）。

    Compute candidate complexity on a 0-1 scale.

    字符串：长度与平均词长各占一半；列表/字典：元素数量加嵌套程度。
    Strings: half length, half average word length. Lists/dicts: size plus nesting.
    """
    candidate = _as_plain(candidate)
    if isinstance(candidate, str):
        length = len(candidate)
        words = len(candidate.split(" "))
        avg_word_length = length / words if words else 0
        return (min(length / 1000, 1) + min(avg_word_length / 10, 1)) / 2

    if isinstance(candidate, (list, tuple)):
        has_nested = any(isinstance(item, (list, tuple, Mapping)) for item in candidate)
        return (min(len(candidate) / 100, 1) + (0.5 if has_nested else 0)) / 1.5

    if isinstance(candidate, Mapping):
        has_nested = any(isinstance(v, (list, tuple, Mapping)) for v in candidate.values())
        return (min(len(candidate) / 50, 1) + (0.5 if has_nested else 0)) / 1.5

    return 0.5
