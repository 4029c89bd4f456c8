# qforge/core/base.py
"""
定义优化循环与外部协作者之间交换的基础数据类型。
包括评估结果、反馈、执行指标以及回调函数签名。

Defines the basic data types exchanged between the optimization loop and its external collaborators.
Includes evaluation results, feedback, execution metrics and callback signatures.
"""

import logging
import dataclasses
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Union

logger = logging.getLogger(__name__)

# 候选产物可以是任意值（字符串、映射、列表……）
# A candidate can be any value (string, mapping, list, ...)
Candidate = Any


@dataclasses.dataclass(frozen=True)
class Feedback:
    """
    评估器给出的结构化反馈。

    Structured feedback produced by an evaluator.
    """
    code: str
    message: str = ""
    fix: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)

    @classmethod
    def from_value(cls, value: Union['Feedback', Mapping[str, Any], str, None]) -> Optional['Feedback']:
        if value is None or isinstance(value, Feedback):
            return value
        if isinstance(value, str):
            return cls(code=value)
        return cls(
            code=str(value.get("code", "UNKNOWN")),
            message=str(value.get("message", "")),
            fix=value.get("fix"),
        )


@dataclasses.dataclass(frozen=True)
class EvaluationResult:
    """
    评估回调的结果。未通过不是错误，而是循环的正常输入。

    Result of the evaluator callback.
    A failed evaluation is not an error; it is ordinary input to the loop.
    """
    passed: bool
    feedback: Optional[Feedback] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "feedback": self.feedback.to_dict() if self.feedback else None,
        }

    @classmethod
    def from_value(cls, value: Any) -> 'EvaluationResult':
        """
        将评估器的返回值规范化为 EvaluationResult。
        支持 EvaluationResult、{"passed": ..., "feedback": ...} 映射或布尔值。

        Normalize an evaluator return value into an EvaluationResult.
        Accepts an EvaluationResult, a {"passed": ..., "feedback": ...} mapping, or a bool.
        """
        if isinstance(value, EvaluationResult):
            return value
        if isinstance(value, bool):
            return cls(passed=value)
        if isinstance(value, Mapping):
            return cls(
                passed=bool(value.get("passed", False)),
                feedback=Feedback.from_value(value.get("feedback")),
            )
        raise TypeError(f"Unsupported evaluation result type: {type(value).__name__}")


@dataclasses.dataclass(frozen=True)
class ExecutionMetrics:
    """
    候选产物实际执行后的指标（可选）。

    Metrics from actually executing a candidate (optional).
    """
    execution_time_ms: Optional[float] = None
    row_count: Optional[int] = None
    expected_row_count: Optional[int] = None
    has_errors: bool = False
    custom_metrics: Dict[str, float] = dataclasses.field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)

    @classmethod
    def from_value(cls, value: Union['ExecutionMetrics', Mapping[str, Any], None]) -> Optional['ExecutionMetrics']:
        if value is None or isinstance(value, ExecutionMetrics):
            return value
        known = {f.name for f in dataclasses.fields(cls)}
        return cls(**{k: v for k, v in value.items() if k in known})


# --- Callback Signatures ---
# generate(objective, context, previous_candidate, feedback) -> candidate (sync or async)
GeneratorFn = Callable[[Any, Optional[Dict[str, Any]], Optional[Candidate], Optional[Feedback]],
                       Union[Candidate, Awaitable[Candidate]]]
# evaluate(candidate, analysis, objective) -> EvaluationResult | mapping | bool
EvaluatorFn = Callable[[Candidate, Dict[str, Any], Any], Any]
# analyze(candidate) -> features mapping
AnalyzerFn = Callable[[Candidate], Optional[Dict[str, Any]]]
# fallback(objective, context, previous_candidate) -> candidate
FallbackBuilder = Callable[[Any, Optional[Dict[str, Any]], Optional[Candidate]], Candidate]
