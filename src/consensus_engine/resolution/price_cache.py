import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from config import config
from database import get_db_session
from models import PriceCacheEntry
from src.consensus_engine.resolution.providers import DataProvider

logger = logging.getLogger(__name__)


def _as_utc(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


class PriceCacheProvider(DataProvider):
    """
    Last-known-price tier, meant to sit at the end of a price chain.
    Serves a cached price only while it is younger than `max_age_s`.
    """

    def __init__(self, session_factory=None, max_age_s: Optional[int] = None, name: str = "price_cache"):
        super().__init__(name, capability="price")
        self.session_factory = session_factory
        self.max_age_s = max_age_s if max_age_s is not None else config.PRICE_CACHE_MAX_AGE_S

    async def fetch(self, ticker: str) -> Optional[float]:
        return await asyncio.to_thread(self._read, ticker.upper())

    async def store(self, ticker: str, price: float, source: str):
        try:
            await asyncio.to_thread(self._write, ticker.upper(), price, source)
        except Exception as e:
            # Cache failure is non-critical
            logger.warning("Could not cache price for %s: %s", ticker, e)

    def _read(self, ticker: str) -> Optional[float]:
        with get_db_session(self.session_factory) as db:
            row = db.get(PriceCacheEntry, ticker)
            if row is None:
                return None
            age = datetime.now(timezone.utc) - _as_utc(row.cached_at)
            if age > timedelta(seconds=self.max_age_s):
                logger.info("Cached price for %s is stale (%.0fs old)", ticker, age.total_seconds())
                return None
            return row.price

    def _write(self, ticker: str, price: float, source: str):
        with get_db_session(self.session_factory) as db:
            row = db.get(PriceCacheEntry, ticker)
            if row is None:
                db.add(PriceCacheEntry(ticker=ticker, price=price, source=source))
            else:
                row.price = price
                row.source = source
                row.cached_at = datetime.now(timezone.utc)
