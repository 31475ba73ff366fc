import inspect
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional, Union

from src.consensus_engine.models.recalibration_models import RecalibrationContext
from src.consensus_engine.models.signal_models import EngineOutput

EngineResult = Union[EngineOutput, dict, float, int, None]


class SignalEngine(ABC):
    """
    Boundary for the independent heuristic engines (fundamentals, insider,
    narrative pressure, gamma, ...). Engines report "no data" by returning
    `EngineOutput(score=None)` (or plain None), never by raising.

    Whatever shape an engine returns is handed to the SignalNormalizer;
    nothing past the normalizer sees engine-specific payloads.
    """

    def __init__(self, name: str):
        self.name = name

    @abstractmethod
    async def evaluate(self, ticker: str, context: Optional[RecalibrationContext] = None) -> EngineResult:
        pass


class FunctionEngine(SignalEngine):
    """Adapts a plain sync or async `fn(ticker, context)` into a SignalEngine."""

    def __init__(self, name: str, fn: Callable[..., Union[Any, Awaitable[Any]]]):
        super().__init__(name)
        self.fn = fn

    async def evaluate(self, ticker: str, context: Optional[RecalibrationContext] = None) -> EngineResult:
        result = self.fn(ticker, context)
        if inspect.isawaitable(result):
            result = await result
        return result
