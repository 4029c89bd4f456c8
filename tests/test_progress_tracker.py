"""
Unit tests for session tracking and the live monitor.
"""

import json

import pytest

from qforge.monitoring import LiveProgressMonitor, OptimizationTracker


def _steps():
    return [
        {"iteration": 1, "action": "USE_GENERATOR", "reward": 0.0, "passed": False, "generated": True},
        {"iteration": 2, "action": "ADD_FILTER", "reward": 40.0, "passed": False},
        {"iteration": 3, "action": "USE_GENERATOR", "reward": 110.0, "passed": True, "converged": True,
         "generated": True, "fallback_used": True},
    ]


@pytest.fixture
def tracker():
    tracker = OptimizationTracker(experiment_name="unit")
    for step in _steps():
        tracker.update(step)
    return tracker


class TestOptimizationTracker:
    """Tests for OptimizationTracker."""

    def test_summary(self, tracker):
        summary = tracker.get_summary()
        assert summary["steps"] == 3
        assert summary["passed_steps"] == 1
        assert summary["pass_rate"] == pytest.approx(1 / 3)
        assert summary["best_reward"] == 110.0
        assert summary["best_step"] == 3
        assert summary["last_reward"] == 110.0
        assert summary["reward_mean"] == pytest.approx(50.0)
        assert summary["reward_min"] == 0.0
        assert summary["reward_max"] == 110.0
        assert summary["converged"] is True
        assert summary["generator_calls"] == 2
        assert summary["fallbacks"] == 1
        assert summary["actions_by_type"] == {"USE_GENERATOR": 2, "ADD_FILTER": 1}
        assert summary["most_common_action_type"] == ("USE_GENERATOR", 2)

    def test_empty_summary(self):
        summary = OptimizationTracker().get_summary()
        assert summary["steps"] == 0
        assert summary["reward_mean"] == 0.0
        assert summary["best_reward"] is None
        assert summary["most_common_action_type"] == ("N/A", 0)

    def test_no_files_without_save_dir(self, tracker):
        assert tracker.save() is None
        assert tracker.generate_report() is None

    def test_save_writes_summary_and_history(self, tmp_path):
        tracker = OptimizationTracker(experiment_name="saved", save_dir=str(tmp_path))
        for step in _steps():
            tracker.update(step)

        summary_path = tracker.save()
        with open(summary_path, encoding="utf-8") as f:
            assert json.load(f)["steps"] == 3
        history_files = list((tmp_path / "saved").glob("history_*.json"))
        assert len(history_files) == 1

    def test_report(self, tracker, tmp_path):
        path = tracker.generate_report(str(tmp_path / "report.md"))
        text = (tmp_path / "report.md").read_text(encoding="utf-8")
        assert path == str(tmp_path / "report.md")
        assert text.startswith("# Optimization Report: unit")
        assert "| 2 | ADD_FILTER | no | 40.00 |" in text


class TestLiveProgressMonitor:
    """Tests for LiveProgressMonitor."""

    def test_lifecycle(self, tracker):
        monitor = LiveProgressMonitor(tracker, update_interval=0)
        monitor.start(total_steps=5)
        monitor.update(force=True)
        assert monitor.progress_bar.n == 3
        monitor.stop()
        assert monitor.progress_bar is None
