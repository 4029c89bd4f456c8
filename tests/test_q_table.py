"""
Unit tests for the Q-table and its epsilon-greedy policy.
"""

import json
import random

import pytest

from qforge.core.action_space import ActionType
from qforge.core.config import QLearningConfig
from qforge.core.q_table import QTable
from qforge.utils.serialization import InMemoryStore, JsonFileStore


class TestBellmanUpdate:
    """Tests for the Q-value update rule."""

    def test_exact_arithmetic(self):
        """Q=10, alpha=0.1, gamma=0.9, r=50, maxQ'=20 gives 15.8."""
        table = QTable(QLearningConfig(alpha=0.1, gamma=0.9))
        table.set_q_value("s", "ADD_FILTER", 10)
        table.set_q_value("s2", "ADD_FIELD", 20)

        new_value = table.update_q_value("s", "ADD_FILTER", 50, "s2", ["ADD_FIELD", "ADD_FILTER"])

        assert new_value == pytest.approx(15.8)
        assert table.get_q_value("s", "ADD_FILTER") == pytest.approx(15.8)

    def test_unseen_pairs_use_initial_values(self):
        """Unseen USE_GENERATOR starts at the bias, other actions at zero."""
        table = QTable(generator_bias=0.5)
        assert table.get_q_value("unknown", ActionType.USE_GENERATOR) == 0.5
        assert table.get_q_value("unknown", "USE_GENERATOR") == 0.5
        assert table.get_q_value("unknown", ActionType.ADD_FILTER) == 0.0

    def test_max_over_empty_actions_is_zero(self):
        """With no next actions the bootstrap term is zero."""
        table = QTable(QLearningConfig(alpha=0.5, gamma=0.9))
        assert table.update_q_value("s", "ADD_FIELD", 10, "s2", []) == pytest.approx(5.0)


class TestEpsilonDecay:
    """Tests for per-session exploration decay."""

    def test_decay_after_n_sessions(self):
        """After N decays epsilon equals max(min, epsilon0 * decay^N)."""
        table = QTable(QLearningConfig(epsilon=0.5, epsilon_decay=0.9, epsilon_min=0.05))
        for _ in range(5):
            table.decay_epsilon()
        assert table.epsilon == pytest.approx(max(0.05, 0.5 * 0.9 ** 5))
        assert table.sessions_processed == 5

    def test_decay_floors_at_minimum(self):
        """Epsilon never drops below epsilon_min."""
        table = QTable(QLearningConfig(epsilon=0.5, epsilon_decay=0.5, epsilon_min=0.1))
        for _ in range(50):
            table.decay_epsilon()
        assert table.epsilon == 0.1


class TestSelection:
    """Tests for epsilon-greedy action selection."""

    def test_greedy_prefers_highest_value(self):
        """With epsilon 0 the best action is chosen."""
        table = QTable(QLearningConfig(epsilon=0.0))
        table.set_q_value("s", "ADD_ORDER_BY", 3.0)
        actions = [ActionType.USE_GENERATOR, ActionType.ADD_FILTER, ActionType.ADD_ORDER_BY]
        assert table.select_action("s", actions) == ActionType.ADD_ORDER_BY

    def test_generator_bias_wins_on_unseen_state(self):
        """A fresh state favours the generator."""
        table = QTable(QLearningConfig(epsilon=0.0))
        actions = [ActionType.USE_GENERATOR, ActionType.ADD_FILTER]
        assert table.select_action("fresh", actions) == ActionType.USE_GENERATOR

    def test_ties_go_to_first_action(self):
        """Equal values resolve to the earliest action in the given order."""
        table = QTable(QLearningConfig(epsilon=0.0))
        assert table.select_action("s", ["ADD_FILTER", "ADD_FIELD"]) == "ADD_FILTER"
        assert table.select_action("s", ["ADD_FIELD", "ADD_FILTER"]) == "ADD_FIELD"

    def test_exploration_stays_within_actions(self):
        """With epsilon 1 every choice is one of the given actions."""
        table = QTable(QLearningConfig(epsilon=1.0))
        actions = ["ADD_FILTER", "ADD_FIELD", "ADD_ORDER_BY"]
        rng = random.Random(7)
        picks = {table.select_action("s", actions, rng=rng) for _ in range(50)}
        assert picks <= set(actions)
        assert len(picks) > 1

    def test_empty_action_list_raises(self):
        """Selecting from nothing is an error."""
        with pytest.raises(ValueError):
            QTable().select_action("s", [])


class TestEviction:
    """Tests for the size limit."""

    def test_oldest_inserted_state_is_evicted(self):
        """Eviction follows insertion order, not access or value."""
        table = QTable(QLearningConfig(max_q_table_size=2))
        table.set_q_value("s1", "ADD_FIELD", 100)
        table.set_q_value("s2", "ADD_FIELD", 1)
        table.set_q_value("s1", "ADD_FILTER", 5)
        table.set_q_value("s3", "ADD_FIELD", 1)

        assert len(table) == 2
        assert "s1" not in table
        assert "s2" in table and "s3" in table


class TestPersistence:
    """Tests for saving and loading."""

    def test_json_round_trip_is_exact(self, tmp_path):
        """Reloaded values are bit-identical."""
        path = str(tmp_path / "q_table.json")
        table = QTable(store=JsonFileStore(path))
        table.set_q_value("s", "ADD_FIELD", 0.1 + 0.2)
        table.set_q_value("s", "USE_GENERATOR", -1 / 3)
        table.set_q_value("t", "ADD_FILTER", 1e-17)
        assert table.save() is True

        reloaded = QTable(store=JsonFileStore(path))
        assert reloaded.load() is True
        assert reloaded.get_q_value("s", "ADD_FIELD") == 0.1 + 0.2
        assert reloaded.get_q_value("s", "USE_GENERATOR") == -1 / 3
        assert reloaded.get_q_value("t", "ADD_FILTER") == 1e-17

    def test_snapshot_layout(self, tmp_path):
        """The saved file carries version, timestamp, hyperparameters and the table."""
        path = tmp_path / "q_table.json"
        table = QTable(store=JsonFileStore(str(path)))
        table.set_q_value("s", "ADD_FIELD", 1.5)
        table.save()

        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["version"] == 1
        assert "updated_at" in data
        assert data["hyperparams"]["alpha"] == 0.1
        assert data["table"] == {"s": {"ADD_FIELD": 1.5}}

    def test_load_restores_epsilon_only(self):
        """Only epsilon is taken from the snapshot by default."""
        store = InMemoryStore()
        saved = QTable(QLearningConfig(epsilon=0.3), store=store)
        saved.decay_epsilon()
        saved.save()

        table = QTable(QLearningConfig(alpha=0.5, epsilon=0.9), store=store)
        table.load()
        assert table.epsilon == pytest.approx(0.3 * 0.995)
        assert table.config.alpha == 0.5
        assert table.sessions_processed == 1

    def test_corrupt_file_is_not_fatal(self, tmp_path):
        """An unreadable file leaves the table empty instead of raising."""
        path = tmp_path / "q_table.json"
        path.write_text("not json", encoding="utf-8")
        table = QTable(store=JsonFileStore(str(path)))
        assert table.load() is False
        assert len(table) == 0

    def test_unsupported_version_is_rejected(self):
        """load_snapshot refuses unknown formats."""
        with pytest.raises(ValueError):
            QTable().load_snapshot({"version": 99, "table": {}})

    def test_ensure_loaded_reads_once(self):
        """Later store changes are not re-read."""
        store = InMemoryStore({"version": 1, "table": {"s": {"ADD_FIELD": 2.0}}})
        table = QTable(store=store)
        table.ensure_loaded()
        store.save({"version": 1, "table": {}})
        table.ensure_loaded()
        assert table.get_q_value("s", "ADD_FIELD") == 2.0


class TestStatistics:
    """Tests for get_statistics."""

    def test_top_pairs_sorted_by_value(self):
        """The best (state, action) pairs come first."""
        table = QTable()
        table.set_q_value("a", "ADD_FIELD", 1)
        table.set_q_value("b", "ADD_FILTER", 9)
        table.set_q_value("c", "ADD_ORDER_BY", 5)

        stats = table.get_statistics(top_n=2)
        assert stats["size"] == 3
        assert stats["pair_count"] == 3
        assert [p["q_value"] for p in stats["top_state_actions"]] == [9, 5]
