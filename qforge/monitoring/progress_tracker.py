# qforge/monitoring/progress_tracker.py
"""
优化会话的进度追踪。
每个会话一个追踪器：逐迭代记录动作与奖励，汇总统计，可选地写出 JSON、Markdown 报告和图表。

Progress tracking for optimization sessions.
One tracker per session: records the action and reward of every iteration, summarizes them,
and optionally writes JSON, a Markdown report and charts.
"""

import os
import time
import json
import logging
import datetime
from collections import Counter
from typing import Dict, Any, List, Optional, Tuple

import numpy as np
from tqdm import tqdm

logger = logging.getLogger(__name__)

try:
    import matplotlib.pyplot as plt
    from matplotlib.figure import Figure
    PLOTTING_AVAILABLE = True
except ImportError:
    logger.debug("matplotlib not installed; install the 'plot' extra to enable charts.")
    PLOTTING_AVAILABLE = False

# 奖励分量在历史记录中的键
# Reward component keys in the step history
REWARD_SERIES = ("reward", "constraint_score", "quality_score", "semantic_penalty")


def _stamp() -> str:
    return datetime.datetime.now().strftime("%Y%m%d_%H%M%S")


class OptimizationTracker:
    """
    单个优化会话的追踪器。

    Tracker for a single optimization session.
    """

    def __init__(self,
                 experiment_name: Optional[str] = None,
                 save_dir: Optional[str] = None,
                 save_history: bool = True,
                 autosave_interval: int = 5):
        """
        Args:
            experiment_name: 会话名称，默认按时间戳生成 (Session name; timestamped by default)
            save_dir: 输出目录，None 表示不写任何文件 (Output directory; None writes nothing)
            save_history: save() 时是否同时写出逐迭代历史 (Whether save() also writes the step history)
            autosave_interval: 长会话的自动保存间隔（分钟） (Autosave interval for long sessions, in minutes)
        """
        self.experiment_name = experiment_name or f"session_{_stamp()}"
        self.save_history = save_history
        self.autosave_interval = autosave_interval

        self.experiment_dir: Optional[str] = os.path.join(save_dir, self.experiment_name) if save_dir else None
        if self.experiment_dir:
            os.makedirs(self.experiment_dir, exist_ok=True)

        self.history: List[Dict[str, Any]] = []
        self.action_counts: Counter = Counter()
        self.started_at = time.time()
        self.last_saved_at = self.started_at

        self.passed_steps = 0
        self.generator_calls = 0
        self.fallbacks = 0
        self.converged = False
        self.best_reward: Optional[float] = None
        self.best_step: Optional[int] = None
        self.steps_since_improvement = 0

    @property
    def steps(self) -> int:
        return len(self.history)

    def update(self, step_info: Dict[str, Any]) -> None:
        """
        记录一次迭代。step_info 常用键：iteration、action、reward、passed、generated、fallback_used、converged。

        Record one iteration. Common step_info keys: iteration, action, reward, passed,
        generated, fallback_used, converged.
        """
        self.history.append(dict(step_info))
        self.passed_steps += bool(step_info.get("passed"))
        self.generator_calls += bool(step_info.get("generated"))
        self.fallbacks += bool(step_info.get("fallback_used"))
        self.converged = self.converged or bool(step_info.get("converged"))

        if "action" in step_info:
            self.action_counts[step_info["action"] or "UNKNOWN"] += 1

        if "reward" in step_info:
            reward = float(step_info["reward"])
            if self.best_reward is None or reward > self.best_reward:
                self.best_reward, self.best_step = reward, self.steps
                self.steps_since_improvement = 0
            else:
                self.steps_since_improvement += 1

        if self.experiment_dir and time.time() - self.last_saved_at > self.autosave_interval * 60:
            self.save()

    def _series(self, key: str) -> np.ndarray:
        return np.array([float(step[key]) for step in self.history if key in step], dtype=float)

    def get_summary(self) -> Dict[str, Any]:
        """
        会话概要。奖励统计用 numpy 计算，没有记录时为 0。

        Session summary. Reward statistics are computed with numpy and are 0 when nothing was recorded.
        """
        elapsed = time.time() - self.started_at
        rewards = self._series("reward")
        has_rewards = rewards.size > 0
        most_common: Tuple[str, int] = self.action_counts.most_common(1)[0] if self.action_counts else ("N/A", 0)

        return {
            "experiment_name": self.experiment_name,
            "elapsed_time_seconds": elapsed,
            "elapsed_time_formatted": str(datetime.timedelta(seconds=int(elapsed))),
            "steps": self.steps,
            "passed_steps": self.passed_steps,
            "pass_rate": self.passed_steps / self.steps if self.steps else 0.0,
            "best_reward": self.best_reward,
            "best_step": self.best_step,
            "last_reward": float(rewards[-1]) if has_rewards else None,
            "reward_mean": float(rewards.mean()) if has_rewards else 0.0,
            "reward_std": float(rewards.std()) if has_rewards else 0.0,
            "reward_min": float(rewards.min()) if has_rewards else 0.0,
            "reward_max": float(rewards.max()) if has_rewards else 0.0,
            "converged": self.converged,
            "generator_calls": self.generator_calls,
            "fallbacks": self.fallbacks,
            "actions_by_type": dict(self.action_counts),
            "most_common_action_type": most_common,
            "steps_since_last_improvement": self.steps_since_improvement,
        }

    # --- File Output ---

    def _output_path(self, prefix: str, extension: str) -> Optional[str]:
        if not self.experiment_dir:
            return None
        return os.path.join(self.experiment_dir, f"{prefix}_{_stamp()}.{extension}")

    def save(self) -> Optional[str]:
        """
        写出概要（以及可选的历史）JSON。未配置输出目录时返回 None。

        Write the summary (and optionally the history) as JSON. Returns None without an output directory.
        """
        summary_path = self._output_path("summary", "json")
        if summary_path is None:
            return None

        with open(summary_path, "w", encoding="utf-8") as f:
            json.dump(self.get_summary(), f, indent=2)
        if self.save_history:
            with open(self._output_path("history", "json"), "w", encoding="utf-8") as f:
                json.dump(self.history, f, indent=2, default=str)

        self.last_saved_at = time.time()
        logger.info(f"Saved session tracking data to {self.experiment_dir}")
        return summary_path

    def plot_progress(self, save_path: Optional[str] = None) -> Optional['Figure']:
        """
        在一张图上绘制各奖励分量随迭代的变化，并标出最佳迭代。需要 matplotlib。

        Plot every reward component per iteration on one chart and mark the best iteration.
        Requires matplotlib.
        """
        if not PLOTTING_AVAILABLE:
            logger.warning("Cannot plot progress: matplotlib is not installed.")
            return None
        if not self.history:
            logger.warning("Cannot plot progress: no iterations recorded.")
            return None

        iterations = [step.get("iteration", i + 1) for i, step in enumerate(self.history)]
        fig, ax = plt.subplots(figsize=(10, 5))
        for key, style in zip(REWARD_SERIES, ("g-o", "b--", "r-", "k:")):
            values = [step.get(key, 0.0) for step in self.history]
            ax.plot(iterations, values, style, label=key.replace("_", " ").title())
        if self.best_step is not None:
            ax.axvline(x=iterations[self.best_step - 1], color="orange", alpha=0.5,
                       label=f"Best ({self.best_reward:.1f})")
        ax.axhline(y=0, color="k", alpha=0.15)
        ax.set_title(f"{self.experiment_name}: reward per iteration")
        ax.set_xlabel("Iteration")
        ax.set_ylabel("Score")
        ax.legend()
        ax.grid(True, alpha=0.3)
        fig.tight_layout()

        save_path = save_path or self._output_path("progress", "png")
        if save_path:
            fig.savefig(save_path, dpi=150)
            logger.info(f"Saved progress plot to {save_path}")
        return fig

    def plot_action_statistics(self, save_path: Optional[str] = None) -> Optional['Figure']:
        """绘制各动作的选择次数 (Plot how often each action was chosen)"""
        if not PLOTTING_AVAILABLE:
            logger.warning("Cannot plot actions: matplotlib is not installed.")
            return None
        if not self.action_counts:
            logger.warning("Cannot plot actions: no actions recorded.")
            return None

        names, counts = zip(*self.action_counts.most_common())
        fig, ax = plt.subplots(figsize=(8, 5))
        ax.barh(names, counts, color="steelblue")
        ax.invert_yaxis()
        ax.set_title("Actions chosen")
        ax.set_xlabel("Count")
        fig.tight_layout()

        save_path = save_path or self._output_path("actions", "png")
        if save_path:
            fig.savefig(save_path, dpi=150)
            logger.info(f"Saved action statistics plot to {save_path}")
        return fig

    def generate_report(self, save_path: Optional[str] = None) -> Optional[str]:
        """
        生成 Markdown 报告：概要、（可用时）进度图和逐迭代表格。

        Generate a Markdown report with the summary, a progress chart when available, and a per-iteration table.

        Returns:
            报告路径；没有输出位置或写入失败时为 None (Report path; None when there is nowhere to write or writing fails)
        """
        save_path = save_path or self._output_path("report", "md")
        if save_path is None:
            logger.warning("No save_dir configured; skipping report.")
            return None

        summary = self.get_summary()
        lines = [
            f"# Optimization Report: {self.experiment_name}",
            "",
            f"- Duration: {summary['elapsed_time_formatted']}",
            f"- Iterations: {summary['steps']} ({summary['passed_steps']} passed)",
            f"- Converged: {'yes' if summary['converged'] else 'no'}",
            f"- Generator calls: {summary['generator_calls']} ({summary['fallbacks']} fallbacks)",
            f"- Reward mean/std: {summary['reward_mean']:.2f} / {summary['reward_std']:.2f}",
        ]
        if summary["best_reward"] is not None:
            lines.append(f"- Best reward: {summary['best_reward']:.2f} at iteration {summary['best_step']}")

        try:
            plot_path = os.path.join(os.path.dirname(save_path) or ".", f"progress_{_stamp()}.png")
            if self.plot_progress(plot_path) is not None:
                lines += ["", f"![Progress]({os.path.basename(plot_path)})"]

            if self.history:
                lines += ["", "| Iteration | Action | Passed | Reward |", "|---|---|---|---|"]
                lines += [
                    f"| {step.get('iteration', '?')} | {step.get('action', 'UNKNOWN')} | "
                    f"{'yes' if step.get('passed') else 'no'} | {float(step.get('reward', 0)):.2f} |"
                    for step in self.history
                ]

            with open(save_path, "w", encoding="utf-8") as f:
                f.write("\n".join(lines) + "\n")
        except OSError as e:
            logger.error(f"Failed to write report to {save_path}: {e}", exc_info=True)
            return None

        logger.info(f"Wrote optimization report to {save_path}")
        return save_path


class LiveProgressMonitor:
    """
    用 tqdm 进度条显示当前会话的迭代数与奖励。

    Shows the current session's iteration count and reward on a tqdm bar.
    """

    def __init__(self, tracker: OptimizationTracker, update_interval: float = 1.0):
        self.tracker = tracker
        self.update_interval = update_interval
        self.last_refresh = 0.0
        self.progress_bar: Optional[tqdm] = None

    def start(self, total_steps: int) -> None:
        self.progress_bar = tqdm(total=total_steps, desc="Optimizing", unit="iter")
        self.last_refresh = time.time()

    def update(self, force: bool = False) -> None:
        """按 update_interval 节流刷新；force=True 立即刷新 (Throttled by update_interval; force=True refreshes now)"""
        now = time.time()
        if self.progress_bar is None or (not force and now - self.last_refresh < self.update_interval):
            return

        self.progress_bar.n = self.tracker.steps
        if self.tracker.best_reward is not None:
            last = self.tracker.history[-1].get("reward", 0.0)
            self.progress_bar.set_postfix(reward=f"{float(last):.1f}", best=f"{self.tracker.best_reward:.1f}")
        self.progress_bar.refresh()
        self.last_refresh = now

    def stop(self) -> None:
        if self.progress_bar is None:
            return
        self.update(force=True)
        self.progress_bar.close()
        self.progress_bar = None
