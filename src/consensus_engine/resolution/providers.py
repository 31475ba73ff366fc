import asyncio
import inspect
import logging
import math
import numbers
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import aiohttp

logger = logging.getLogger(__name__)


class DataProvider(ABC):
    """
    Abstract base class for every data provider in a resolution chain
    (primary API, secondary API, scrapers, caches).

    Providers must not raise on transient failure; they return None instead.
    The chain still guards against providers that break that contract.
    """

    def __init__(self, name: str, capability: str = "price", timeout_s: Optional[float] = None):
        self.name = name
        self.capability = capability
        self.timeout_s = timeout_s

    @abstractmethod
    async def fetch(self, ticker: str) -> Any:
        """
        Fetch the raw value for a ticker. May return a number, a dict carrying
        a `value` or `price` key, or None when the provider has nothing.
        """
        pass

    def extract_value(self, raw: Any) -> Optional[float]:
        """
        Reduce a raw provider payload to a usable float.
        None, zero, non-finite and non-numeric payloads all count as empty.
        """
        if isinstance(raw, dict):
            raw = raw.get("value", raw.get("price"))
        if raw is None or isinstance(raw, bool):
            return None
        if isinstance(raw, str):
            try:
                raw = float(raw)
            except ValueError:
                return None
        if not isinstance(raw, numbers.Real):
            return None
        value = float(raw)
        if not math.isfinite(value) or value == 0:
            return None
        return value

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, capability={self.capability!r})"


class CallableProvider(DataProvider):
    """
    Wraps any sync or async callable `fn(ticker)` as a provider.
    Sync callables run in a worker thread so a hung call cannot stall the event loop
    past the chain's timeout.
    """

    def __init__(
        self,
        name: str,
        fn: Callable[[str], Union[Any, Awaitable[Any]]],
        capability: str = "price",
        timeout_s: Optional[float] = None,
    ):
        super().__init__(name, capability, timeout_s)
        self.fn = fn

    async def fetch(self, ticker: str) -> Any:
        if inspect.iscoroutinefunction(self.fn):
            return await self.fn(ticker)
        result = await asyncio.to_thread(self.fn, ticker)
        if inspect.isawaitable(result):
            return await result
        return result


class HttpJsonProvider(DataProvider):
    """
    Generic JSON-over-HTTP provider described entirely by data:
    a URL template with a `{ticker}` placeholder and a dotted path to the value.

        HttpJsonProvider("binance", "https://api.example.com/price?symbol={ticker}", "data.price")
    """

    def __init__(
        self,
        name: str,
        url_template: str,
        field_path: str = "price",
        capability: str = "price",
        timeout_s: Optional[float] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(name, capability, timeout_s)
        self.url_template = url_template
        self.field_path = field_path
        self.headers = headers or {}

    async def fetch(self, ticker: str) -> Any:
        url = self.url_template.format(ticker=ticker.upper())
        timeout = aiohttp.ClientTimeout(total=self.timeout_s) if self.timeout_s else None
        try:
            async with aiohttp.ClientSession(timeout=timeout, headers=self.headers) as session:
                async with session.get(url) as resp:
                    if resp.status != 200:
                        logger.warning("%s returned HTTP %s for %s", self.name, resp.status, ticker)
                        return None
                    data = await resp.json(content_type=None)
        except aiohttp.ClientError as e:
            logger.warning("%s request failed for %s: %s", self.name, ticker, e)
            return None
        return self._dig(data)

    def _dig(self, data: Any) -> Any:
        node = data
        for part in self.field_path.split("."):
            if isinstance(node, dict):
                node = node.get(part)
            elif isinstance(node, list) and part.isdigit() and int(part) < len(node):
                node = node[int(part)]
            else:
                return None
        return node
