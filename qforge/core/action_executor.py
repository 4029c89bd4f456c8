# qforge/core/action_executor.py
"""
负责执行优化动作。
将抽象动作应用到具体候选产物上，失败时恢复为原候选产物，保证循环不会因变换错误而中断。

Responsible for executing optimization actions.
Applies abstract actions to concrete candidates; on failure it recovers to the unchanged candidate
so a transformation error never interrupts the loop.
"""

import copy
import logging
from typing import Any, Dict, Union

from qforge.core.action_space import Action, ActionOutcome, ActionType, BaseActionSpace, Transformed

logger = logging.getLogger(__name__)


class ActionExecutionError(Exception):
    """
    动作执行过程中发生的错误（仅在禁用恢复时抛出）。

    Error that occurs during action execution (raised only when recovery is disabled).
    """
    pass


class ActionExecutor:
    """
    执行优化动作的核心组件。

    Core component for executing optimization actions.
    """

    def __init__(self,
                 action_space: BaseActionSpace,
                 enable_recovery: bool = True):
        """
        初始化动作执行器。

        Initialize action executor.

        Args:
            action_space: 用于应用动作的动作空间 (Action space used to apply actions)
            enable_recovery: 是否启用错误恢复机制 (Whether to enable error recovery mechanisms)
        """
        self.action_space = action_space
        self.enable_recovery = enable_recovery

        logger.debug(f"Initialized ActionExecutor with {type(action_space).__name__}")

    def execute(self,
                candidate: Any,
                action: Union[Action, ActionType, str, Dict[str, Any]],
                objective: Any) -> ActionOutcome:
        """
        执行一个动作，返回带标签的结果。

        Execute an action, returning a tagged outcome.

        Args:
            candidate: 当前候选产物 (Current candidate)
            action: 要执行的动作，可以是Action、ActionType、字符串或字典
                   (Action to execute; an Action, ActionType, string or dictionary)
            objective: 优化目标 (Optimization objective)

        Returns:
            Transformed 或 RequiresGeneration (Transformed or RequiresGeneration)

        Raises:
            ActionExecutionError: 如果动作执行失败且未启用恢复 (If execution fails and recovery is disabled)
        """
        # 标准化动作对象
        # Normalize action object
        if isinstance(action, dict):
            try:
                structured_action = Action.from_dict(action)
            except KeyError as e:
                raise ActionExecutionError(f"Invalid action dictionary: missing {e}") from e
        else:
            structured_action = Action.coerce(action)

        try:
            # 在副本上应用动作，避免修改调用方的候选产物
            # Apply the action to a copy so the caller's candidate is never mutated
            outcome = self.action_space.apply_action(copy.deepcopy(candidate), structured_action, objective)
            logger.debug(f"Executed action {structured_action}: {type(outcome).__name__}")
            return outcome

        except Exception as e:
            logger.error(f"Failed to execute action {structured_action}: {e}", exc_info=True)

            if self.enable_recovery:
                return self._handle_execution_error(candidate, structured_action, e)
            raise ActionExecutionError(f"Action execution failed: {e}") from e

    def _handle_execution_error(self, candidate: Any, action: Action, error: Exception) -> ActionOutcome:
        """
        处理动作执行错误：保留原候选产物。

        Handle action execution errors by keeping the original candidate.
        """
        logger.warning(f"Recovering from {action.name} failure ({error}); keeping candidate unchanged")
        return Transformed(candidate)
