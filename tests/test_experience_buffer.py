"""
Unit tests for the FIFO experience buffer.
"""

import random

import pytest

from qforge.core.experience_buffer import ExperienceBuffer, ExperienceRecord
from qforge.utils.serialization import InMemoryStore, JsonFileStore


def _fill(buffer, count, terminal_every=0):
    records = []
    for i in range(count):
        records.append(buffer.add(
            state_key=f"s{i}",
            action="ADD_FILTER",
            reward=float(i),
            next_state_key=f"s{i + 1}",
            terminal=bool(terminal_every) and i % terminal_every == 0,
            objective_hash="obj",
        ))
    return records


class TestExperienceBuffer:
    """Tests for ExperienceBuffer."""

    def test_fifo_keeps_most_recent_in_order(self):
        """Adding capacity + k records keeps the newest capacity records, oldest first."""
        buffer = ExperienceBuffer(max_entries=3)
        records = _fill(buffer, 5)

        kept = buffer.get_recent(10)
        assert [r.id for r in kept] == [r.id for r in records[-3:]]
        assert [r.reward for r in kept] == [2.0, 3.0, 4.0]

    def test_get_by_id(self):
        """Records can be found by id until they are evicted."""
        buffer = ExperienceBuffer(max_entries=2)
        first, second, third = _fill(buffer, 3)
        assert buffer.get_by_id(third.id) is third
        assert buffer.get_by_id(first.id) is None

    def test_sample_without_replacement(self):
        """Samples are distinct records from the buffer."""
        buffer = ExperienceBuffer(max_entries=10)
        _fill(buffer, 5)
        batch = buffer.sample_random_batch(3, rng=random.Random(0))
        assert len(batch) == 3
        assert len({r.id for r in batch}) == 3

    def test_sample_larger_than_buffer_returns_all(self):
        """Asking for more than the buffer holds returns every record."""
        buffer = ExperienceBuffer(max_entries=10)
        _fill(buffer, 4)
        assert len(buffer.sample_random_batch(32)) == 4

    def test_statistics(self):
        """Average reward and success rate are computed over the buffer."""
        buffer = ExperienceBuffer(max_entries=10)
        _fill(buffer, 4, terminal_every=2)

        stats = buffer.get_statistics()
        assert stats["total"] == 4
        assert stats["capacity"] == 10
        assert stats["average_reward"] == pytest.approx(1.5)
        assert stats["success_rate"] == pytest.approx(0.5)

    def test_empty_statistics(self):
        """An empty buffer reports zeros."""
        stats = ExperienceBuffer().get_statistics()
        assert stats["total"] == 0
        assert stats["average_reward"] == 0.0
        assert stats["success_rate"] == 0.0

    def test_non_positive_capacity_rejected(self):
        """Capacity must be positive."""
        with pytest.raises(ValueError):
            ExperienceBuffer(max_entries=0)


class TestExperiencePersistence:
    """Tests for saving and loading experiences."""

    def test_round_trip(self, tmp_path):
        """Saved records come back with the same fields, in order."""
        path = str(tmp_path / "experiences.json")
        buffer = ExperienceBuffer(max_entries=5, store=JsonFileStore(path))
        records = _fill(buffer, 3)
        assert buffer.save() is True

        reloaded = ExperienceBuffer(max_entries=5, store=JsonFileStore(path))
        assert reloaded.load() is True
        assert [r.to_dict() for r in reloaded.get_recent(5)] == [r.to_dict() for r in records]

    def test_load_keeps_newest_when_capacity_shrinks(self):
        """Loading more records than fit keeps the newest ones."""
        store = InMemoryStore()
        big = ExperienceBuffer(max_entries=10, store=store)
        _fill(big, 6)
        big.save()

        small = ExperienceBuffer(max_entries=2, store=store)
        small.load()
        assert [r.state_key for r in small.get_recent(5)] == ["s4", "s5"]

    def test_unreadable_snapshot_is_not_fatal(self):
        """Malformed data is ignored and the buffer stays empty."""
        buffer = ExperienceBuffer(store=InMemoryStore([{"state_key": "only"}]))
        assert buffer.load() is False
        assert len(buffer) == 0

    def test_record_from_dict(self):
        """ExperienceRecord.from_dict parses ISO timestamps."""
        record = ExperienceRecord("a", "ADD_FIELD", 1.0, "b", True, "h")
        copy = ExperienceRecord.from_dict(record.to_dict())
        assert copy.id == record.id
        assert copy.timestamp == record.timestamp
        assert copy.terminal is True
