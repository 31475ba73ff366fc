import asyncio
import copy
import logging
import math
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from config import config
from database import get_db_session
from models import SignalWeightRecord
from src.consensus_engine.errors import WeightStoreContention
from src.consensus_engine.models.weight_models import SignalWeight

logger = logging.getLogger(__name__)


def wilson_half_width(hits: int, misses: int, z: float = 1.96) -> float:
    """95% Wilson score half-width of a signal's hit rate; 1.0 with no history."""
    n = hits + misses
    if n == 0:
        return 1.0
    p = hits / n
    spread = z * math.sqrt(p * (1 - p) / n + z * z / (4 * n * n))
    return round(spread / (1 + z * z / n), 4)


class WeightRepository(ABC):
    """
    Persistence seam for signal weights.
    `write` must fail with WeightStoreContention when the row's version moved
    since it was read.
    """

    @abstractmethod
    def load_all(self) -> Dict[str, SignalWeight]:
        pass

    @abstractmethod
    def read(self, name: str) -> Optional[SignalWeight]:
        pass

    @abstractmethod
    def write(self, updated: SignalWeight, expected_version: Optional[int]) -> SignalWeight:
        """Persist `updated`; `expected_version=None` means the row must not exist yet."""
        pass


class InMemoryWeightRepository(WeightRepository):
    def __init__(self):
        self._rows: Dict[str, SignalWeight] = {}
        self._lock = threading.Lock()

    def load_all(self) -> Dict[str, SignalWeight]:
        with self._lock:
            return copy.deepcopy(self._rows)

    def read(self, name: str) -> Optional[SignalWeight]:
        with self._lock:
            row = self._rows.get(name)
            return row.model_copy() if row else None

    def write(self, updated: SignalWeight, expected_version: Optional[int]) -> SignalWeight:
        with self._lock:
            current = self._rows.get(updated.name)
            current_version = current.version if current else None
            if current_version != expected_version:
                raise WeightStoreContention(updated.name)
            stored = updated.model_copy(update={"version": (expected_version or 0) + 1 if current else 0})
            self._rows[updated.name] = stored
            return stored.model_copy()


class SqlWeightRepository(WeightRepository):
    """
    `signal_weights` table access with optimistic concurrency on `version`,
    so two processes updating the same signal cannot lose an update.
    """

    def __init__(self, session_factory=None):
        self.session_factory = session_factory

    @staticmethod
    def _to_model(row: SignalWeightRecord) -> SignalWeight:
        return SignalWeight(
            name=row.signal_name,
            weight=row.weight,
            confidence_interval=row.confidence_interval,
            hits=row.hits,
            misses=row.misses,
            version=row.version,
            last_updated=row.last_updated,
        )

    def load_all(self) -> Dict[str, SignalWeight]:
        with get_db_session(self.session_factory) as db:
            rows = db.execute(select(SignalWeightRecord)).scalars().all()
            return {r.signal_name: self._to_model(r) for r in rows}

    def read(self, name: str) -> Optional[SignalWeight]:
        with get_db_session(self.session_factory) as db:
            row = db.get(SignalWeightRecord, name)
            return self._to_model(row) if row else None

    def write(self, updated: SignalWeight, expected_version: Optional[int]) -> SignalWeight:
        try:
            with get_db_session(self.session_factory) as db:
                if expected_version is None:
                    db.add(SignalWeightRecord(
                        signal_name=updated.name,
                        weight=updated.weight,
                        confidence_interval=updated.confidence_interval,
                        hits=updated.hits,
                        misses=updated.misses,
                        version=0,
                        last_updated=updated.last_updated,
                    ))
                    db.flush()
                    return updated.model_copy(update={"version": 0})

                result = db.execute(
                    update(SignalWeightRecord)
                    .where(
                        SignalWeightRecord.signal_name == updated.name,
                        SignalWeightRecord.version == expected_version,
                    )
                    .values(
                        weight=updated.weight,
                        confidence_interval=updated.confidence_interval,
                        hits=updated.hits,
                        misses=updated.misses,
                        version=expected_version + 1,
                        last_updated=updated.last_updated,
                    )
                )
                if result.rowcount != 1:
                    raise WeightStoreContention(updated.name)
                return updated.model_copy(update={"version": expected_version + 1})
        except IntegrityError:
            # Another writer inserted the row first
            raise WeightStoreContention(updated.name)


class WeightStore:
    """
    Keyed store of per-signal trust weights.

    Reads return a snapshot copy. Deltas to the same signal are serialized by a
    per-key lock in-process and by the repository's version check across
    processes; deltas to different signals run concurrently.
    Every write is clamped to [floor, ceiling].
    """

    def __init__(
        self,
        repository: Optional[WeightRepository] = None,
        floor: Optional[float] = None,
        ceiling: Optional[float] = None,
        default_weight: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_backoff_s: Optional[float] = None,
    ):
        self.repository = repository or SqlWeightRepository()
        self.floor = floor if floor is not None else config.WEIGHT_FLOOR
        self.ceiling = ceiling if ceiling is not None else config.WEIGHT_CEILING
        self.default_weight = default_weight if default_weight is not None else config.DEFAULT_SIGNAL_WEIGHT
        self.max_retries = max_retries if max_retries is not None else config.WEIGHT_WRITE_RETRIES
        self.retry_backoff_s = retry_backoff_s if retry_backoff_s is not None else config.WEIGHT_RETRY_BACKOFF_S
        self._locks: Dict[str, asyncio.Lock] = {}
        self._index_lock = asyncio.Lock()

    def clamp(self, weight: float) -> float:
        return max(self.floor, min(self.ceiling, weight))

    async def _lock_for(self, name: str) -> asyncio.Lock:
        async with self._index_lock:
            if name not in self._locks:
                self._locks[name] = asyncio.Lock()
            return self._locks[name]

    async def get_weights(self) -> Dict[str, SignalWeight]:
        return await asyncio.to_thread(self.repository.load_all)

    async def get_weight(self, name: str) -> Optional[SignalWeight]:
        return await asyncio.to_thread(self.repository.read, name)

    async def ensure_defaults(self, names: Iterable[str]) -> int:
        """Create missing rows at the default weight. Returns how many were created."""
        created = 0
        for name in names:
            lock = await self._lock_for(name)
            async with lock:
                if await asyncio.to_thread(self.repository.read, name) is not None:
                    continue
                fresh = SignalWeight(
                    name=name,
                    weight=self.clamp(self.default_weight),
                    confidence_interval=1.0,
                    last_updated=datetime.now(timezone.utc),
                )
                try:
                    await asyncio.to_thread(self.repository.write, fresh, None)
                    created += 1
                except WeightStoreContention:
                    logger.info("Default weight for %s was created concurrently", name)
        return created

    async def apply_delta(
        self,
        name: str,
        delta: float,
        new_interval: Optional[float] = None,
        hit: Optional[bool] = None,
    ) -> SignalWeight:
        """
        Atomically add `delta` to a signal's weight, clamp, and stamp the write.
        `hit` optionally bumps the hit/miss counters in the same write and, unless
        `new_interval` is given, recomputes the confidence interval from the
        counters read in that same write.
        Contention is retried with exponential backoff and re-raised once retries run out.
        """
        lock = await self._lock_for(name)
        async with lock:
            attempt = 0
            while True:
                try:
                    return await asyncio.to_thread(self._read_modify_write, name, delta, new_interval, hit)
                except WeightStoreContention:
                    if attempt >= self.max_retries:
                        logger.error("Giving up on weight update for %s after %d retries", name, attempt)
                        raise
                    wait = self.retry_backoff_s * (2 ** attempt)
                    logger.warning("Weight contention on %s, retrying in %.3fs", name, wait)
                    attempt += 1
                    await asyncio.sleep(wait)

    def _read_modify_write(
        self, name: str, delta: float, new_interval: Optional[float], hit: Optional[bool]
    ) -> SignalWeight:
        current = self.repository.read(name)
        if current is None:
            base = SignalWeight(
                name=name,
                weight=self.default_weight,
                confidence_interval=1.0,
                last_updated=datetime.now(timezone.utc),
            )
            expected_version = None
        else:
            base = current
            expected_version = current.version

        hits = base.hits + (1 if hit is True else 0)
        misses = base.misses + (1 if hit is False else 0)
        if new_interval is not None:
            interval = max(0.0, new_interval)
        elif hit is not None:
            interval = wilson_half_width(hits, misses)
        else:
            interval = base.confidence_interval

        updated = base.model_copy(update={
            "weight": round(self.clamp(base.weight + delta), 6),
            "confidence_interval": interval,
            "hits": hits,
            "misses": misses,
            "last_updated": datetime.now(timezone.utc),
        })
        return self.repository.write(updated, expected_version)
