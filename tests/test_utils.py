"""
Unit tests for retry strategies, hashing and persistence stores.
"""

import pytest

from qforge.utils.hashing import canonicalize, stable_hash
from qforge.utils.retry import ExponentialBackoff, ExponentialBackoffWithJitter, RetryError
from qforge.utils.serialization import InMemoryStore, JsonFileStore, SerializationError


class Flaky:
    """Fails a fixed number of times, then returns 'ok'."""

    def __init__(self, failures, error=RuntimeError):
        self.failures = failures
        self.error = error
        self.calls = 0

    def __call__(self, *args, **kwargs):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error(f"failure {self.calls}")
        return "ok"


class AsyncFlaky(Flaky):
    async def __call__(self, *args, **kwargs):
        return super().__call__(*args, **kwargs)


class TestRetry:
    """Tests for RetryStrategy and its subclasses."""

    def test_succeeds_after_transient_failures(self):
        func = Flaky(failures=2)
        assert ExponentialBackoff(max_retries=3, initial_delay=0).execute(func) == "ok"
        assert func.calls == 3

    def test_gives_up_with_last_exception(self):
        func = Flaky(failures=5)
        with pytest.raises(RetryError) as exc_info:
            ExponentialBackoff(max_retries=2, initial_delay=0).execute(func)
        assert func.calls == 3
        assert str(exc_info.value.last_exception) == "failure 3"

    def test_non_retryable_errors_propagate(self):
        func = Flaky(failures=1, error=TypeError)
        strategy = ExponentialBackoff(max_retries=3, initial_delay=0, retry_exceptions=[ValueError])
        with pytest.raises(TypeError):
            strategy.execute(func)
        assert func.calls == 1

    def test_on_retry_callback(self):
        seen = []
        strategy = ExponentialBackoff(max_retries=2, initial_delay=0,
                                      on_retry=lambda attempt, error: seen.append(attempt))
        strategy.execute(Flaky(failures=2))
        assert seen == [1, 2]

    def test_delays_grow_and_cap(self):
        strategy = ExponentialBackoff(initial_delay=1, backoff_factor=2, max_delay=5)
        assert [strategy.get_delay(n) for n in range(1, 5)] == [1, 2, 4, 5]

    def test_jitter_stays_near_base_delay(self):
        strategy = ExponentialBackoffWithJitter(initial_delay=1, backoff_factor=2, jitter_factor=0.1)
        for _ in range(20):
            assert 1.8 <= strategy.get_delay(2) <= 2.2

    def test_negative_retries_rejected(self):
        with pytest.raises(ValueError):
            ExponentialBackoff(max_retries=-1)

    @pytest.mark.asyncio
    async def test_async_callable(self):
        func = AsyncFlaky(failures=1)
        assert await ExponentialBackoff(max_retries=1, initial_delay=0).execute_async(func) == "ok"
        assert func.calls == 2

    @pytest.mark.asyncio
    async def test_async_gives_up(self):
        with pytest.raises(RetryError):
            await ExponentialBackoff(max_retries=1, initial_delay=0).execute_async(AsyncFlaky(failures=3))

    @pytest.mark.asyncio
    async def test_decorated_coroutine(self):
        func = AsyncFlaky(failures=1)
        strategy = ExponentialBackoff(max_retries=2, initial_delay=0)

        @strategy.decorate
        async def call():
            return await func()

        assert await call() == "ok"


class TestHashing:
    """Tests for deterministic hashing."""

    def test_key_order_does_not_matter(self):
        assert stable_hash({"a": 1, "b": [1, 2]}) == stable_hash({"b": [1, 2], "a": 1})

    def test_different_values_differ(self):
        assert stable_hash("SELECT 1") != stable_hash("SELECT 2")

    def test_length(self):
        assert len(stable_hash("x", length=8)) == 8

    def test_canonicalize_sets_and_tuples(self):
        assert canonicalize({"s": {3, 1, 2}, "t": (1, 2)}) == {"s": [1, 2, 3], "t": [1, 2]}


class TestStores:
    """Tests for persistence stores."""

    def test_missing_file_loads_none(self, tmp_path):
        assert JsonFileStore(str(tmp_path / "missing.json")).load() is None

    def test_file_round_trip_creates_directories(self, tmp_path):
        store = JsonFileStore(str(tmp_path / "nested" / "dir" / "data.json"))
        store.save({"a": [1, 2.5, "x"]})
        assert store.load() == {"a": [1, 2.5, "x"]}
        assert [p.name for p in (tmp_path / "nested" / "dir").iterdir()] == ["data.json"]

    def test_corrupt_file_raises_serialization_error(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{oops", encoding="utf-8")
        with pytest.raises(SerializationError):
            JsonFileStore(str(path)).load()

    def test_unserializable_data(self, tmp_path):
        with pytest.raises(SerializationError):
            JsonFileStore(str(tmp_path / "data.json")).save({"x": object()})
        assert not (tmp_path / "data.json").exists()
        with pytest.raises(SerializationError):
            InMemoryStore().save({"x": object()})

    def test_in_memory_returns_copies(self):
        store = InMemoryStore()
        store.save({"a": [1]})
        loaded = store.load()
        loaded["a"].append(2)
        assert store.load() == {"a": [1]}
        assert store.save_count == 1
