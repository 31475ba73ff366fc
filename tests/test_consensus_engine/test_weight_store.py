import asyncio
from datetime import datetime, timezone

import pytest

from src.consensus_engine.errors import WeightStoreContention
from src.consensus_engine.models.weight_models import SignalWeight
from src.consensus_engine.state.weight_store import (
    InMemoryWeightRepository,
    SqlWeightRepository,
    WeightStore,
    wilson_half_width,
)


def _store(repository=None, **kwargs) -> WeightStore:
    kwargs.setdefault("floor", 0.1)
    kwargs.setdefault("ceiling", 3.0)
    kwargs.setdefault("default_weight", 1.0)
    kwargs.setdefault("retry_backoff_s", 0.0)
    return WeightStore(repository or InMemoryWeightRepository(), **kwargs)


class FlakyRepository(InMemoryWeightRepository):
    """Loses the first `failures` writes to a simulated concurrent writer."""

    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures
        self.write_calls = 0

    def write(self, updated, expected_version):
        self.write_calls += 1
        if self.write_calls <= self.failures:
            raise WeightStoreContention(updated.name)
        return super().write(updated, expected_version)


def test_apply_delta_creates_missing_signal_at_default():
    store = _store()
    updated = asyncio.run(store.apply_delta("momentum", 0.05, hit=True))

    assert updated.weight == pytest.approx(1.05)
    assert updated.hits == 1
    assert updated.misses == 0


def test_apply_delta_clamps_to_bounds():
    store = _store(floor=0.1, ceiling=3.0)

    high = asyncio.run(store.apply_delta("fsi", 10.0))
    low = asyncio.run(store.apply_delta("insider", -10.0))

    assert high.weight == 3.0
    assert low.weight == 0.1


def test_concurrent_deltas_to_same_signal_are_not_lost():
    store = _store()

    async def _run():
        await asyncio.gather(*(store.apply_delta("gamma", 0.05) for _ in range(10)))
        return await store.get_weight("gamma")

    final = asyncio.run(_run())
    assert final.weight == pytest.approx(1.5)
    assert final.version == 9


def test_wilson_half_width_narrows_with_history():
    assert wilson_half_width(0, 0) == 1.0
    assert wilson_half_width(50, 50) < wilson_half_width(5, 5)


def test_concurrent_outcomes_keep_interval_in_step_with_counters():
    store = _store()

    async def _run():
        await asyncio.gather(*(store.apply_delta("gamma", 0.05 if i % 3 else -0.05, hit=bool(i % 3)) for i in range(12)))
        return await store.get_weight("gamma")

    final = asyncio.run(_run())
    assert final.hits == 8
    assert final.misses == 4
    assert final.confidence_interval == wilson_half_width(8, 4)


def test_concurrent_deltas_to_different_signals():
    store = _store()

    async def _run():
        await asyncio.gather(
            store.apply_delta("a", 0.05, hit=True),
            store.apply_delta("b", -0.05, hit=False),
            store.apply_delta("a", 0.05, hit=True),
        )
        return await store.get_weights()

    weights = asyncio.run(_run())
    assert weights["a"].weight == pytest.approx(1.1)
    assert weights["a"].hits == 2
    assert weights["b"].weight == pytest.approx(0.95)
    assert weights["b"].misses == 1


def test_contention_is_retried():
    repo = FlakyRepository(failures=2)
    store = _store(repo, max_retries=3)

    updated = asyncio.run(store.apply_delta("shadow", 0.05))

    assert updated.weight == pytest.approx(1.05)
    assert repo.write_calls == 3


def test_contention_surfaces_after_retries_exhausted():
    repo = FlakyRepository(failures=100)
    store = _store(repo, max_retries=2)

    with pytest.raises(WeightStoreContention):
        asyncio.run(store.apply_delta("shadow", 0.05))
    assert repo.write_calls == 3
    assert asyncio.run(store.get_weight("shadow")) is None


def test_get_weights_returns_snapshot():
    store = _store()
    asyncio.run(store.apply_delta("value", 0.2))

    snapshot = asyncio.run(store.get_weights())
    snapshot["value"].weight = 99.0

    assert asyncio.run(store.get_weight("value")).weight == pytest.approx(1.2)


def test_ensure_defaults_only_creates_missing(session_factory):
    store = _store(SqlWeightRepository(session_factory))

    assert asyncio.run(store.ensure_defaults(["momentum", "value"])) == 2
    asyncio.run(store.apply_delta("momentum", 0.3))
    assert asyncio.run(store.ensure_defaults(["momentum", "value", "catalyst"])) == 1

    weights = asyncio.run(store.get_weights())
    assert set(weights) == {"momentum", "value", "catalyst"}
    assert weights["momentum"].weight == pytest.approx(1.3)
    assert weights["catalyst"].weight == 1.0


def test_sql_repository_rejects_stale_version(session_factory):
    repo = SqlWeightRepository(session_factory)
    now = datetime.now(timezone.utc)
    created = repo.write(SignalWeight(name="fsi", weight=1.0, confidence_interval=1.0, last_updated=now), None)
    assert created.version == 0

    bumped = repo.write(created.model_copy(update={"weight": 1.2}), expected_version=0)
    assert bumped.version == 1

    with pytest.raises(WeightStoreContention):
        repo.write(created.model_copy(update={"weight": 0.4}), expected_version=0)
    assert repo.read("fsi").weight == pytest.approx(1.2)


def test_sql_repository_duplicate_insert_is_contention(session_factory):
    repo = SqlWeightRepository(session_factory)
    now = datetime.now(timezone.utc)
    row = SignalWeight(name="gamma", weight=1.0, confidence_interval=1.0, last_updated=now)
    repo.write(row, None)

    with pytest.raises(WeightStoreContention):
        repo.write(row, None)


def test_sql_store_concurrent_deltas(session_factory):
    store = _store(SqlWeightRepository(session_factory))

    async def _run():
        await asyncio.gather(*(store.apply_delta("narrative", -0.05, hit=False) for _ in range(4)))
        return await store.get_weight("narrative")

    final = asyncio.run(_run())
    assert final.weight == pytest.approx(0.8)
    assert final.misses == 4
