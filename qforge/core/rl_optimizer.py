# qforge/core/rl_optimizer.py
"""
基于Q学习的反馈控制优化循环。
反复生成或变换候选产物，依据目标打分，并学习下一步该尝试哪种变换。

Feedback-control optimization loop based on Q-learning.
Repeatedly generates or transforms a candidate, scores it against the objective,
and learns which transformation to try next.
"""

import time
import random
import asyncio
import inspect
import logging
import dataclasses
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from qforge.core.action_executor import ActionExecutor
from qforge.core.action_space import action_key
from qforge.core.base import (
    AnalyzerFn,
    EvaluationResult,
    EvaluatorFn,
    ExecutionMetrics,
    Feedback,
    GeneratorFn,
)
from qforge.core.config import OptimizationConfig
from qforge.core.experience_buffer import ExperienceBuffer
from qforge.core.objective import Objective
from qforge.core.q_table import QTable
from qforge.core.reward_calculator import Reward, RewardCalculator, SemanticValidation
from qforge.core.strategy import OptimizationStrategy, create_generic_strategy
from qforge.monitoring.progress_tracker import LiveProgressMonitor, OptimizationTracker
from qforge.utils.retry import ExponentialBackoffWithJitter, RetryError, RetryStrategy
from qforge.utils.serialization import JsonFileStore


class SessionStatus(Enum):
    """
    会话状态：INIT → ITERATING → CONVERGED | EXHAUSTED。

    Session states: INIT -> ITERATING -> CONVERGED | EXHAUSTED.
    """
    INIT = "INIT"
    ITERATING = "ITERATING"
    CONVERGED = "CONVERGED"
    EXHAUSTED = "EXHAUSTED"


@dataclasses.dataclass
class IterationLog:
    """
    单次迭代的完整记录。

    Full record of a single iteration.
    """
    iteration: int
    action: str
    state_key: str
    candidate: Any
    evaluation: EvaluationResult
    semantic_validation: SemanticValidation
    reward: Reward
    converged: bool
    generated: bool = False
    fallback_used: bool = False
    experience_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "iteration": self.iteration,
            "action": self.action,
            "state_key": self.state_key,
            "candidate": self.candidate,
            "evaluation": self.evaluation.to_dict(),
            "semantic_validation": self.semantic_validation.to_dict(),
            "reward": self.reward.to_dict(),
            "converged": self.converged,
            "generated": self.generated,
            "fallback_used": self.fallback_used,
            "experience_id": self.experience_id,
        }


@dataclasses.dataclass
class OptimizationResult:
    """
    优化会话的结果。
    candidate 为收敛时的候选产物；未收敛时为整个会话中奖励最高的候选产物。

    Result of an optimization session.
    candidate is the converged candidate, or the best-reward candidate of the session when exhausted.
    """
    candidate: Any
    last_candidate: Any
    iterations: int
    final_reward: float
    converged: bool
    status: SessionStatus
    iteration_log: List[IterationLog]
    optimization_time: float
    tracker_summary: Optional[Dict[str, Any]] = None

    def get_summary(self) -> Dict[str, Any]:
        """
        获取优化结果的概要信息。

        Get summary of optimization results.
        """
        return {
            "status": self.status.value,
            "converged": self.converged,
            "iterations": self.iterations,
            "final_reward": self.final_reward,
            "actions": [log.action for log in self.iteration_log],
            "optimization_time_seconds": self.optimization_time,
            "tracker_summary": self.tracker_summary or "Not Available",
        }

    def to_dict(self) -> Dict[str, Any]:
        """
        将优化结果转换为可序列化的字典。

        Convert optimization result to serializable dictionary.
        """
        return {
            "candidate": self.candidate,
            "last_candidate": self.last_candidate,
            "iterations": self.iterations,
            "final_reward": self.final_reward,
            "converged": self.converged,
            "status": self.status.value,
            "iteration_log": [log.to_dict() for log in self.iteration_log],
            "optimization_time": self.optimization_time,
            "summary": self.get_summary(),
        }


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class RLOptimizer:
    """
    与领域无关的优化驱动器。领域逻辑由 OptimizationStrategy 注入。

    Domain-agnostic optimization driver. Domain logic is injected through an OptimizationStrategy.
    """

    def __init__(self,
                 generator: GeneratorFn,
                 evaluator: Optional[EvaluatorFn] = None,
                 analyzer: Optional[AnalyzerFn] = None,
                 strategy: Optional[OptimizationStrategy] = None,
                 config: Optional[OptimizationConfig] = None,
                 q_table: Optional[QTable] = None,
                 experience_buffer: Optional[ExperienceBuffer] = None,
                 retry_strategy: Optional[RetryStrategy] = None,
                 rng: Optional[random.Random] = None):
        """
        初始化优化驱动器。

        Initialize the optimization driver.

        Args:
            generator: 生成候选产物的回调，可同步可异步 (Candidate generator callback, sync or async)
            evaluator: 约束检查回调，默认使用策略自带的 (Constraint checker; defaults to the strategy's)
            analyzer: 特征提取回调，默认使用策略自带的 (Feature extractor; defaults to the strategy's)
            strategy: 领域策略，默认为通用策略 (Domain strategy; generic by default)
            config: 驱动器配置 (Driver configuration)
            q_table: 共享的Q值表，默认按配置创建 (Shared Q-table; created from config by default)
            experience_buffer: 共享的经验缓冲区，默认按配置创建 (Shared experience buffer; created from config by default)
            retry_strategy: 生成器重试策略 (Generator retry strategy)
            rng: 动作选择使用的随机数生成器 (Random generator used for action selection)

        Raises:
            ValueError: 没有可用的评估器 (If no evaluator is available)
        """
        # --- Logger Initialization ---
        self.logger = logging.getLogger(self.__class__.__name__)

        self.config = config or OptimizationConfig()
        self.strategy = strategy or create_generic_strategy(
            min_reset_iteration=self.config.min_reset_iteration,
            semantic_penalty_per_issue=self.config.semantic_penalty_per_issue,
        )
        self.generator = generator
        self.evaluator = evaluator or self.strategy.evaluator
        self.analyzer = analyzer or self.strategy.analyzer
        if self.evaluator is None:
            raise ValueError(f"No evaluator given and strategy '{self.strategy.name}' has no default evaluator")
        self.rng = rng

        # --- Store Initialization ---
        self.q_table = q_table if q_table is not None else QTable(
            config=self.config.q_learning,
            store=JsonFileStore(self.config.q_table_path) if self.config.q_table_path else None,
            rng=rng,
        )
        self.experience_buffer = experience_buffer if experience_buffer is not None else ExperienceBuffer(
            max_entries=self.q_table.config.max_experiences,
            store=JsonFileStore(self.config.experiences_path) if self.config.experiences_path else None,
            rng=rng,
        )

        self.retry_strategy = retry_strategy or ExponentialBackoffWithJitter(
            max_retries=self.config.generator_max_retries,
            initial_delay=self.config.generator_retry_delay,
        )

        self.logger.info(f"Initialized RLOptimizer with strategy '{self.strategy.name}'")
        self.logger.debug(f"Config: {self.config}")

    # --- Session ---

    async def optimize(self,
                       objective: Union[Objective, Mapping[str, Any]],
                       context: Optional[Dict[str, Any]] = None,
                       max_iterations: Optional[int] = None,
                       custom_strategies: Optional[Mapping[str, Any]] = None) -> OptimizationResult:
        """
        运行一个优化会话。

        Run one optimization session.

        Args:
            objective: 优化目标或其字典形式 (Objective, or its mapping form)
            context: 透传给生成器和兜底构建器的上下文 (Context passed through to the generator and fallback builder)
            max_iterations: 迭代上限，覆盖目标和配置 (Iteration limit; overrides the objective and the config)
            custom_strategies: 本会话的策略覆盖项 (Per-session strategy overrides)

        Returns:
            优化结果 (Optimization result)

        Raises:
            MalformedObjectiveError: 目标不合法，在调用生成器之前抛出 (Malformed objective; raised before any generator call)
            ValueError: 迭代上限不是正整数或覆盖项无效 (Non-positive iteration limit or invalid overrides)
        """
        session_start = time.time()
        status = SessionStatus.INIT

        # --- INIT ---
        # 目标不合法时在调用生成器之前失败
        # A malformed objective fails here, before any generator call
        objective = Objective.coerce(objective)
        strategy = self.strategy.with_overrides(custom_strategies)
        evaluator = strategy.evaluator if custom_strategies and custom_strategies.get("evaluator") else self.evaluator
        analyzer = strategy.analyzer if custom_strategies and custom_strategies.get("analyzer") else self.analyzer
        if evaluator is None:
            raise ValueError("An evaluator is required")
        context = context if context is not None else {}

        limit = max_iterations
        if limit is None:
            limit = objective.max_iterations or self.q_table.config.max_iterations
        if not isinstance(limit, int) or limit <= 0:
            raise ValueError(f"max_iterations must be a positive integer, got {limit!r}")
        threshold = self.q_table.config.convergence_threshold

        self.q_table.ensure_loaded()
        self.experience_buffer.ensure_loaded()

        executor = ActionExecutor(strategy.action_space)
        extractor = strategy.state_extractor
        reward_calculator = strategy.reward_calculator

        # --- Monitoring Initialization ---
        tracker_config = self.config.tracker_config or {}
        tracker = OptimizationTracker(
            experiment_name=tracker_config.get("experiment_name"),
            save_dir=tracker_config.get("save_dir"),
            save_history=tracker_config.get("save_history", True),
            autosave_interval=tracker_config.get("autosave_interval", 5),
        )
        monitor = LiveProgressMonitor(tracker) if self.config.use_live_monitor else None
        if monitor:
            monitor.start(total_steps=limit)

        self.logger.info(f"--- Optimization Session Started (strategy={strategy.name}, max_iterations={limit}, "
                         f"status={status.value}) ---")
        self.logger.info(f"Intent: {objective.intent}")

        try:
            candidate, fallback_used = await self._generate(strategy, objective, context, None, None)
            self.logger.info(f"Initial candidate{' (fallback)' if fallback_used else ''}: {candidate!r}")

            previous_feedback: Optional[Feedback] = None
            analysis: Optional[Dict[str, Any]] = None
            best_candidate: Any = candidate
            best_reward: Optional[float] = None
            final_reward = 0.0
            iteration_log: List[IterationLog] = []
            iterations_run = 0

            # --- ITERATING ---
            status = SessionStatus.ITERATING
            for iteration in range(1, limit + 1):
                iterations_run = iteration

                # 1. 提取当前状态
                # 1. Extract the current state
                if analysis is None:
                    analysis = await self._analyze(analyzer, candidate)
                state = extractor.extract_state(candidate, objective, analysis, iteration)
                state_key = extractor.get_state_key(state)

                # 2. 选择动作
                # 2. Select an action
                actions = strategy.action_space.get_applicable_actions(candidate, objective, iteration)
                action = self.q_table.select_action(state_key, actions, rng=self.rng)
                action_name = action_key(action)
                self.logger.debug(f"Iteration {iteration}: state {state_key}, applicable {[action_key(a) for a in actions]}")

                # 3. 执行动作，需要时调用生成器
                # 3. Execute the action, calling the generator when required
                outcome = executor.execute(candidate, action, objective)
                generated, used_fallback = False, False
                if outcome.requires_generation:
                    generated = True
                    new_candidate, used_fallback = await self._generate(
                        strategy, objective, context, candidate, previous_feedback)
                else:
                    new_candidate = outcome.candidate

                # 4. 分析、评估并校验语义
                # 4. Analyze, evaluate and validate semantics
                new_analysis = await self._analyze(analyzer, new_candidate)
                evaluation = await self._evaluate(evaluator, new_candidate, new_analysis, objective)
                validation = reward_calculator.validate_semantics(new_candidate, objective, new_analysis)

                # 5. 计算奖励（含语义惩罚）
                # 5. Compute the reward, semantic penalty included
                reward = reward_calculator.calculate_reward(new_candidate, objective, evaluation)
                reward = reward_calculator.apply_semantic_penalty(reward, validation)

                # 6. Bellman 更新
                # 6. Bellman update
                next_state = extractor.extract_state(new_candidate, objective, new_analysis, iteration + 1)
                next_state_key = extractor.get_state_key(next_state)
                self.q_table.update_q_value(state_key, action, reward.total, next_state_key, actions)

                # 7. 记录经验
                # 7. Record the experience
                record = self.experience_buffer.add(
                    state_key=state_key,
                    action=action_name,
                    reward=reward.total,
                    next_state_key=next_state_key,
                    terminal=evaluation.passed,
                    objective_hash=state.objective_hash,
                )

                # 8. 记录迭代并检查收敛
                # 8. Log the iteration and check convergence
                converged = RewardCalculator.is_converged(evaluation, validation, reward, threshold)
                iteration_log.append(IterationLog(
                    iteration=iteration,
                    action=action_name,
                    state_key=state_key,
                    candidate=new_candidate,
                    evaluation=evaluation,
                    semantic_validation=validation,
                    reward=reward,
                    converged=converged,
                    generated=generated,
                    fallback_used=used_fallback,
                    experience_id=record.id,
                ))
                self.logger.info(
                    f"Iteration {iteration}: {action_name} -> {'PASS' if evaluation.passed else 'FAIL'}"
                    f"{'' if evaluation.passed or not evaluation.feedback else f' ({evaluation.feedback.code})'}, "
                    f"reward {reward.total:.1f} (constraint {reward.constraint_score:.1f}, "
                    f"quality {reward.quality_score:.1f}, semantic {reward.semantic_penalty:.1f})"
                )
                if validation.issues:
                    self.logger.info(f"Iteration {iteration}: semantic issues {[i.code for i in validation.issues]}")

                tracker.update({
                    "iteration": iteration,
                    "action": action_name,
                    "reward": reward.total,
                    "constraint_score": reward.constraint_score,
                    "quality_score": reward.quality_score,
                    "semantic_penalty": reward.semantic_penalty,
                    "passed": evaluation.passed,
                    "semantics_match": validation.semantics_match,
                    "converged": converged,
                    "generated": generated,
                    "fallback_used": used_fallback,
                })
                if monitor:
                    monitor.update()

                # 工作候选产物总是前进；最佳候选产物单独记录
                # The working candidate always advances; the best candidate is tracked separately
                if best_reward is None or reward.total > best_reward:
                    best_candidate, best_reward = new_candidate, reward.total
                candidate, analysis = new_candidate, new_analysis
                previous_feedback = evaluation.feedback
                final_reward = reward.total

                if converged:
                    status = SessionStatus.CONVERGED
                    self.logger.info(f"Converged at iteration {iteration}")
                    break
            else:
                status = SessionStatus.EXHAUSTED
                self.logger.info(f"Max iterations ({limit}) reached without convergence")

            # --- Finalization ---
            self.q_table.decay_epsilon()
            self.q_table.save()
            self.experience_buffer.save()
        finally:
            # 进度条在异常或取消时也要关闭
            # The progress bar is closed on errors and cancellation too
            if monitor:
                monitor.stop()

        converged = status == SessionStatus.CONVERGED
        result_candidate = candidate if converged else best_candidate
        if not converged and best_reward is not None:
            final_reward = best_reward

        optimization_duration = time.time() - session_start
        self.logger.info("--- Optimization Session Finished ---")
        self.logger.info(f"Status: {status.value}, iterations: {iterations_run}, final reward: {final_reward:.1f}")
        self.logger.info(f"Total Duration: {optimization_duration:.2f}s, epsilon now {self.q_table.epsilon:.4f}")

        tracker_summary = None
        try:
            tracker.save()
            tracker_summary = tracker.get_summary()
        except OSError as e:
            self.logger.error(f"Failed to save monitoring data: {e}", exc_info=True)

        return OptimizationResult(
            candidate=result_candidate,
            last_candidate=candidate,
            iterations=iterations_run,
            final_reward=final_reward,
            converged=converged,
            status=status,
            iteration_log=iteration_log,
            optimization_time=optimization_duration,
            tracker_summary=tracker_summary,
        )

    async def optimize_with_timeout(self,
                                    timeout: float,
                                    objective: Union[Objective, Mapping[str, Any]],
                                    **kwargs: Any) -> OptimizationResult:
        """
        带超时地运行整个会话。超时会取消会话并抛出 asyncio.TimeoutError，此时不会保存学习结果。

        Run a whole session under a timeout. On timeout the session is cancelled and
        asyncio.TimeoutError is raised; nothing learned in that session is saved.
        """
        return await asyncio.wait_for(self.optimize(objective, **kwargs), timeout)

    # --- Callbacks ---

    async def _generate(self,
                        strategy: OptimizationStrategy,
                        objective: Objective,
                        context: Dict[str, Any],
                        previous_candidate: Any,
                        feedback: Optional[Feedback]) -> Tuple[Any, bool]:
        """
        调用生成器（带重试）；重试耗尽后使用策略的兜底构建器。

        Call the generator with retries; falls back to the strategy's builder once retries are exhausted.

        Returns:
            (候选产物, 是否使用了兜底) ((candidate, whether the fallback was used))
        """
        try:
            candidate = await self.retry_strategy.execute_async(
                self.generator, objective, context, previous_candidate, feedback)
            return candidate, False
        except RetryError as e:
            self.logger.warning(f"Generator failed after retries, using fallback: {e.last_exception}")
        except Exception as e:
            self.logger.warning(f"Generator raised a non-retryable error, using fallback: {e}")
        return strategy.fallback_builder(objective, context, previous_candidate), True

    async def _analyze(self, analyzer: Optional[AnalyzerFn], candidate: Any) -> Dict[str, Any]:
        if analyzer is None:
            return {}
        try:
            analysis = await _resolve(analyzer(candidate))
        except Exception as e:
            self.logger.error(f"Analyzer failed, continuing without analysis: {e}", exc_info=True)
            return {}
        return dict(analysis) if analysis else {}

    async def _evaluate(self,
                        evaluator: EvaluatorFn,
                        candidate: Any,
                        analysis: Dict[str, Any],
                        objective: Objective) -> EvaluationResult:
        try:
            return EvaluationResult.from_value(await _resolve(evaluator(candidate, analysis, objective)))
        except Exception as e:
            self.logger.error(f"Evaluator failed, treating candidate as failing: {e}", exc_info=True)
            return EvaluationResult(
                passed=False,
                feedback=Feedback(code="EVALUATION_ERROR", message=str(e)),
            )

    # --- Learning Outside Sessions ---

    @staticmethod
    def execution_reward(metrics: ExecutionMetrics) -> float:
        """
        根据真实执行指标计算的奖励调整。

        Reward adjustment from real execution metrics.
        """
        if metrics.has_errors:
            return -30.0
        bonus = 0.0
        if metrics.execution_time_ms is not None:
            if metrics.execution_time_ms < 50:
                bonus += 15
            elif metrics.execution_time_ms < 100:
                bonus += 10
            elif metrics.execution_time_ms > 1000:
                bonus -= 10
        if metrics.row_count is not None and metrics.row_count > 0:
            bonus += 10
        return bonus

    def update_from_execution(self,
                              experience_id: str,
                              execution_metrics: Union[ExecutionMetrics, Mapping[str, Any]]) -> Optional[float]:
        """
        用候选产物真实执行后的指标追溯更新Q值，然后保存Q表。

        Retroactively update a Q-value from the metrics of actually executing a candidate,
        then save the Q-table.

        Args:
            experience_id: 迭代记录中的经验ID (Experience id from the iteration log)
            execution_metrics: 执行指标 (Execution metrics)

        Returns:
            更新后的Q值；找不到经验时返回None (The updated Q-value, or None if the experience is unknown)
        """
        self.experience_buffer.ensure_loaded()
        self.q_table.ensure_loaded()
        record = self.experience_buffer.get_by_id(experience_id)
        if record is None:
            self.logger.error(f"Experience {experience_id} not found")
            return None

        metrics = ExecutionMetrics.from_value(execution_metrics)
        new_reward = record.reward + self.execution_reward(metrics)
        self.logger.info(f"Updating {experience_id} from execution: reward {record.reward:.1f} -> {new_reward:.1f}")

        value = self.q_table.update_q_value(
            record.state_key,
            record.action,
            new_reward,
            record.next_state_key,
            self.strategy.action_space.all_actions(),
        )
        self.q_table.save()
        return value

    def replay_experiences(self, batch_size: int = 32, rng: Optional[random.Random] = None) -> int:
        """
        经验回放：对随机采样的一批经验重新执行 Bellman 更新。

        Experience replay: re-apply the Bellman update to a randomly sampled batch.

        Returns:
            执行的更新次数 (Number of updates applied)
        """
        self.experience_buffer.ensure_loaded()
        self.q_table.ensure_loaded()
        batch = self.experience_buffer.sample_random_batch(batch_size, rng=rng)
        actions = self.strategy.action_space.all_actions()
        for record in batch:
            self.q_table.update_q_value(record.state_key, record.action, record.reward, record.next_state_key, actions)
        self.logger.debug(f"Replayed {len(batch)} experiences")
        return len(batch)

    def get_statistics(self) -> Dict[str, Any]:
        """
        获取Q表与经验缓冲区的统计信息。

        Get Q-table and experience buffer statistics.
        """
        self.q_table.ensure_loaded()
        self.experience_buffer.ensure_loaded()
        return {
            "strategy": self.strategy.name,
            "q_table": self.q_table.get_statistics(),
            "experiences": self.experience_buffer.get_statistics(),
        }
