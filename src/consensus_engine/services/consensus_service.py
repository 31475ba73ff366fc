import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from config import config
from src.consensus_engine.adaptive.drift_monitor import DriftMonitor
from src.consensus_engine.ledger.prediction_ledger import PredictionLedger
from src.consensus_engine.models.ledger_models import PredictionInput
from src.consensus_engine.models.recalibration_models import RecalibrationContext
from src.consensus_engine.models.signal_models import ConfidenceTier, ConsensusResult, NormalizedSignal, Signal
from src.consensus_engine.models.weight_models import SignalWeight
from src.consensus_engine.processors.consensus_scorer import ConsensusScorer
from src.consensus_engine.processors.signal_engine import SignalEngine
from src.consensus_engine.processors.signal_normalizer import SignalNormalizer
from src.consensus_engine.recalibration.recalibration_chain import RecalibrationChain
from src.consensus_engine.resolution.resolution_chain import ResolutionChain
from src.consensus_engine.state.weight_store import WeightStore

logger = logging.getLogger(__name__)


class ConsensusService:
    """
    Coordinates one scoring pass for a ticker:
    engines -> normalizer -> weighted consensus -> recalibration -> drift correction.

    Engines run concurrently and each one is isolated: a slow or failing engine
    becomes an inactive signal instead of failing the ticker. Anything that goes
    wrong past that point degrades to an AVOID result carrying `failure_reason`.
    """

    def __init__(
        self,
        engines: Optional[Iterable[SignalEngine]] = None,
        weight_store: Optional[WeightStore] = None,
        scorer: Optional[ConsensusScorer] = None,
        recalibration: Optional[RecalibrationChain] = None,
        resolution_chain: Optional[ResolutionChain] = None,
        drift_monitor: Optional[DriftMonitor] = None,
        ledger: Optional[PredictionLedger] = None,
        engine_timeout_s: Optional[float] = None,
    ):
        self.engines: List[SignalEngine] = list(engines or [])
        self.weight_store = weight_store or WeightStore()
        self.scorer = scorer or ConsensusScorer(default_weight=self.weight_store.default_weight)
        self.recalibration = recalibration or RecalibrationChain()
        self.resolution_chain = resolution_chain
        self.drift_monitor = drift_monitor
        self.ledger = ledger
        self.engine_timeout_s = engine_timeout_s if engine_timeout_s is not None else config.ENGINE_TIMEOUT_S

    def register_engine(self, engine: SignalEngine) -> "ConsensusService":
        if any(e.name == engine.name for e in self.engines):
            raise ValueError(f"Engine '{engine.name}' is already registered")
        self.engines.append(engine)
        return self

    async def get_weights(self) -> Dict[str, SignalWeight]:
        return await self.weight_store.get_weights()

    async def score_ticker(self, ticker: str, context: Optional[RecalibrationContext] = None) -> ConsensusResult:
        ticker = ticker.upper()
        try:
            return await self._score(ticker, context)
        except Exception as e:
            logger.error("❌ Consensus scoring failed for %s: %s", ticker, e, exc_info=True)
            return ConsensusResult(
                ticker=ticker,
                final_score=0,
                confidence_tier=ConfidenceTier.AVOID,
                active_engine_count=0,
                breakdown={},
                failure_reason=f"{type(e).__name__}: {e}",
                timestamp=datetime.now(timezone.utc),
            )

    async def score_many(
        self,
        tickers: Iterable[str],
        contexts: Optional[Dict[str, RecalibrationContext]] = None,
    ) -> Dict[str, ConsensusResult]:
        contexts = {k.upper(): v for k, v in (contexts or {}).items()}
        tickers = [t.upper() for t in tickers]
        results = await asyncio.gather(*(self.score_ticker(t, contexts.get(t)) for t in tickers))
        return dict(zip(tickers, results))

    async def collect_signals(self, ticker: str, context: Optional[RecalibrationContext] = None) -> List[NormalizedSignal]:
        return list(await asyncio.gather(*(self._evaluate(e, ticker, context) for e in self.engines)))

    async def _evaluate(self, engine: SignalEngine, ticker: str, context: Optional[RecalibrationContext]) -> NormalizedSignal:
        try:
            raw = await asyncio.wait_for(engine.evaluate(ticker, context), timeout=self.engine_timeout_s)
        except asyncio.TimeoutError:
            logger.warning("Engine %s timed out after %.1fs for %s", engine.name, self.engine_timeout_s, ticker)
            raw = None
        except Exception as e:
            logger.warning("Engine %s failed for %s: %s", engine.name, ticker, e)
            raw = None
        signal = Signal(name=engine.name, raw_value=raw, ticker=ticker, as_of=datetime.now(timezone.utc))
        return SignalNormalizer.normalize(signal.name, signal)

    async def _score(self, ticker: str, context: Optional[RecalibrationContext]) -> ConsensusResult:
        signals = await self.collect_signals(ticker, context)
        weights = await self.weight_store.get_weights()
        consensus = self.scorer.score(ticker, signals, weights)
        price, price_source = await self._resolve_price(ticker)

        if consensus.active_engine_count == 0:
            logger.info("No active signals for %s, returning AVOID", ticker)
            return consensus.model_copy(update={
                "price": price,
                "price_source": price_source,
                "timestamp": datetime.now(timezone.utc),
            })

        recalibrated = self.recalibration.recalibrate(consensus.base_score, context)
        factor = await self._correction_factor()
        final = max(0, min(100, round(recalibrated.raw_score * factor)))

        logger.info(
            "📊 %s consensus: base=%d recalibrated=%.2f factor=%.3f final=%d (%d engines)",
            ticker, consensus.base_score, recalibrated.raw_score, factor, final, consensus.active_engine_count,
        )

        return consensus.model_copy(update={
            "final_score": final,
            "confidence_tier": ConfidenceTier.from_score(final),
            "bias": ConsensusScorer.bias_for(final),
            "multipliers_applied": recalibrated.multipliers_applied,
            "correction_factor": factor,
            "price": price,
            "price_source": price_source,
            "timestamp": datetime.now(timezone.utc),
        })

    async def _correction_factor(self) -> float:
        if self.drift_monitor is None:
            return 1.0
        return await asyncio.to_thread(self.drift_monitor.correction_factor)

    async def _resolve_price(self, ticker: str):
        if self.resolution_chain is None:
            return None, None
        resolved = await self.resolution_chain.resolve(ticker, "price")
        if not resolved.available:
            return None, None
        return resolved.value, resolved.source

    async def log_prediction(
        self,
        result: ConsensusResult,
        entry_price: float,
        stop_loss: float,
        take_profits: List[float],
        direction: Optional[str] = None,
    ) -> int:
        """Records a scored result on the ledger as a PENDING prediction. Returns its id."""
        if self.ledger is None:
            raise RuntimeError("ConsensusService has no prediction ledger configured")
        if result.failure_reason:
            raise ValueError(f"Refusing to log failed result for {result.ticker}: {result.failure_reason}")

        data = PredictionInput(
            ticker=result.ticker,
            confidence=result.final_score,
            entry_price=entry_price,
            stop_loss=stop_loss,
            take_profits=take_profits,
            agent_signals=dict(result.signals),
            direction=direction or ("SHORT" if result.bias == "SHORT" else "LONG"),
        )
        return await asyncio.to_thread(self.ledger.log, data)
