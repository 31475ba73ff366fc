import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple, Union

from config import config
from src.consensus_engine.models.resolution_models import ProviderAttempt, ResolvedValue, Unavailable
from src.consensus_engine.resolution.price_cache import PriceCacheProvider
from src.consensus_engine.resolution.providers import DataProvider

logger = logging.getLogger(__name__)

Resolution = Union[ResolvedValue, Unavailable]


class ProviderRegistry:
    """
    Ordered provider lists keyed by capability ("price", "short_interest", ...).
    List order is priority order, so reordering providers is a data change.
    """

    def __init__(self):
        self._providers: Dict[str, List[DataProvider]] = {}

    def register(self, provider: DataProvider, position: Optional[int] = None) -> "ProviderRegistry":
        chain = self._providers.setdefault(provider.capability, [])
        if any(p.name == provider.name for p in chain):
            raise ValueError(f"Provider '{provider.name}' already registered for '{provider.capability}'")
        if position is None:
            chain.append(provider)
        else:
            chain.insert(position, provider)
        return self

    def remove(self, capability: str, name: str) -> bool:
        chain = self._providers.get(capability, [])
        for i, p in enumerate(chain):
            if p.name == name:
                del chain[i]
                return True
        return False

    def providers_for(self, capability: str) -> List[DataProvider]:
        return list(self._providers.get(capability, []))

    def capabilities(self) -> List[str]:
        return list(self._providers.keys())


class ResolutionChain:
    """
    Resolves a value for a ticker by walking the providers registered for a
    capability in priority order, each under its own timeout.

    First non-null, non-zero value wins. Exceptions, timeouts and empty
    payloads are soft failures: the chain moves on and never raises.
    Exhausting every provider yields an explicit `Unavailable`.
    """

    def __init__(
        self,
        registry: Optional[ProviderRegistry] = None,
        default_timeout_s: Optional[float] = None,
        cache: Optional[PriceCacheProvider] = None,
    ):
        self.registry = registry or ProviderRegistry()
        self.default_timeout_s = default_timeout_s if default_timeout_s is not None else config.PROVIDER_TIMEOUT_S
        self.cache = cache

    async def resolve(self, ticker: str, capability: str = "price") -> Resolution:
        ticker = ticker.upper()
        attempts: List[ProviderAttempt] = []
        providers = self.registry.providers_for(capability)

        if not providers:
            logger.warning("No providers registered for capability '%s'", capability)
            return Unavailable(ticker=ticker, capability=capability, reason="no providers registered")

        for provider in providers:
            value, attempt = await self._attempt(provider, ticker)
            attempts.append(attempt)
            if value is None:
                continue

            if self.cache is not None and capability == "price" and provider is not self.cache:
                await self.cache.store(ticker, value, provider.name)

            return ResolvedValue(
                ticker=ticker,
                capability=capability,
                value=value,
                source=provider.name,
                attempts=attempts,
                resolved_at=datetime.now(timezone.utc),
            )

        logger.info(
            "All %d providers exhausted for %s/%s: %s",
            len(attempts), ticker, capability,
            ", ".join(f"{a.provider}={a.status}" for a in attempts),
        )
        return Unavailable(
            ticker=ticker,
            capability=capability,
            reason=f"all {len(attempts)} providers failed",
            attempts=attempts,
        )

    async def resolve_many(self, tickers: Iterable[str], capability: str = "price") -> Dict[str, Resolution]:
        tickers = [t.upper() for t in tickers]
        results = await asyncio.gather(*(self.resolve(t, capability) for t in tickers))
        return dict(zip(tickers, results))

    async def _attempt(self, provider: DataProvider, ticker: str) -> Tuple[Optional[float], ProviderAttempt]:
        timeout = provider.timeout_s or self.default_timeout_s
        started = time.perf_counter()

        def _elapsed() -> float:
            return round((time.perf_counter() - started) * 1000, 1)

        try:
            raw = await asyncio.wait_for(provider.fetch(ticker), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Provider %s timed out after %.1fs for %s", provider.name, timeout, ticker)
            return None, ProviderAttempt(provider=provider.name, status="timeout", detail=f">{timeout}s", elapsed_ms=_elapsed())
        except Exception as e:
            logger.warning("Provider %s failed for %s: %s", provider.name, ticker, e)
            return None, ProviderAttempt(provider=provider.name, status="error", detail=str(e), elapsed_ms=_elapsed())

        value = provider.extract_value(raw)
        if value is None:
            return None, ProviderAttempt(provider=provider.name, status="empty", elapsed_ms=_elapsed())
        return value, ProviderAttempt(provider=provider.name, status="ok", elapsed_ms=_elapsed())
