import asyncio
import logging
import math
import numbers
from typing import Any, List, Optional

from config import config
from src.consensus_engine.adaptive.drift_monitor import DriftMonitor
from src.consensus_engine.errors import ConsensusEngineError, WeightStoreContention
from src.consensus_engine.ledger.prediction_ledger import PredictionLedger
from src.consensus_engine.models.feedback_models import FeedbackReport
from src.consensus_engine.models.ledger_models import Outcome, PredictionRecord
from src.consensus_engine.state.weight_store import WeightStore

logger = logging.getLogger(__name__)

_BULLISH = {"bullish", "bull", "long", "buy", "strong_buy", "accumulation", "up"}
_BEARISH = {"bearish", "bear", "short", "sell", "strong_sell", "distribution", "down"}
_NEUTRAL = {"neutral", "hold", "flat", "none"}
_STANCE_KEYS = ("verdict", "signal", "direction", "bias", "stance")
_SCORE_KEYS = ("score", "value", "confidence")


def signal_stance(value: Any) -> Optional[str]:
    """
    Reads a recorded agent signal as LONG / SHORT / NEUTRAL.
    Numbers are 0-100 scores centred on 50. Returns None when unreadable.
    """
    if isinstance(value, dict):
        for key in _STANCE_KEYS:
            if key in value:
                return signal_stance(value[key])
        for key in _SCORE_KEYS:
            if key in value:
                return signal_stance(value[key])
        return None
    if isinstance(value, str):
        word = value.strip().lower().replace(" ", "_")
        if word in _BULLISH:
            return "LONG"
        if word in _BEARISH:
            return "SHORT"
        if word in _NEUTRAL:
            return "NEUTRAL"
        return None
    if isinstance(value, bool) or not isinstance(value, numbers.Real) or math.isnan(value):
        return None
    if value > 50:
        return "LONG"
    if value < 50:
        return "SHORT"
    return "NEUTRAL"


class AccuracyFeedbackLoop:
    """
    Periodic learning sweep over closed predictions.

    For each record, every signal whose stance matched the realized direction
    is reinforced and every signal that opposed it is decayed. Signals missing
    from the record are untouched. Records are claimed (processed_for_learning)
    before their deltas are applied, so a crashed sweep never applies them twice.
    """

    def __init__(
        self,
        ledger: PredictionLedger,
        weight_store: WeightStore,
        drift_monitor: Optional[DriftMonitor] = None,
        delta: Optional[float] = None,
        batch_size: Optional[int] = None,
    ):
        self.ledger = ledger
        self.weight_store = weight_store
        self.drift_monitor = drift_monitor
        self.delta = delta if delta is not None else config.FEEDBACK_WEIGHT_DELTA
        self.batch_size = batch_size if batch_size is not None else config.FEEDBACK_BATCH_SIZE

    async def run_sweep(self) -> FeedbackReport:
        report = FeedbackReport()
        records = await asyncio.to_thread(self.ledger.query_closed_unprocessed, self.batch_size)
        logger.info("🧠 Feedback sweep: %d closed predictions to learn from", len(records))

        for record in records:
            problem = self._malformed_reason(record)
            if problem:
                logger.warning("Skipping ledger record %s: %s", record.id, problem)
                await asyncio.to_thread(self.ledger.mark_processed, record.id)
                report.skipped += 1
                continue

            claimed = await asyncio.to_thread(self.ledger.mark_processed, record.id)
            if not claimed:
                logger.info("Ledger record %s already processed, skipping", record.id)
                continue

            try:
                failed = await self._learn_from(record, report)
            except ConsensusEngineError as e:
                logger.error("Weight update failed for ledger record %s: %s", record.id, e)
                report.failed += 1
                continue
            if failed:
                report.failed_signals[record.id] = failed
                report.failed += 1
            else:
                report.processed += 1

        if self.drift_monitor is not None:
            recent = await asyncio.to_thread(self.ledger.recent_closed, self.drift_monitor.window)
            snapshot = self.drift_monitor.compute(recent)
            if snapshot is not None:
                await asyncio.to_thread(self.drift_monitor.persist, snapshot)
                report.drift = snapshot

        logger.info(
            "🧠 Feedback sweep done: processed=%d skipped=%d failed=%d signals_adjusted=%d",
            report.processed, report.skipped, report.failed, len(report.deltas_applied),
        )
        return report

    @staticmethod
    def _malformed_reason(record: PredictionRecord) -> Optional[str]:
        if record.outcome not in (Outcome.WIN, Outcome.LOSS):
            return f"outcome {record.outcome.value if record.outcome else record.raw_outcome!r} is not closed"
        if not record.agent_signals:
            return "missing agent_signals map"
        if record.pnl is None or not math.isfinite(record.pnl):
            return f"non-numeric pnl {record.pnl!r}"
        return None

    async def _learn_from(self, record: PredictionRecord, report: FeedbackReport) -> List[str]:
        """Applies one record's deltas. Returns the signals whose update gave up under contention."""
        failed: List[str] = []
        predicted = "SHORT" if str(record.direction).upper() == "SHORT" else "LONG"
        if record.outcome == Outcome.WIN:
            realized = predicted
        else:
            realized = "LONG" if predicted == "SHORT" else "SHORT"

        for name, value in record.agent_signals.items():
            stance = signal_stance(value)
            if stance is None:
                logger.warning("Unreadable signal %s=%r on ledger record %s", name, value, record.id)
                continue
            if stance == "NEUTRAL":
                continue

            agreed = stance == realized
            delta = self.delta if agreed else -self.delta

            try:
                await self.weight_store.apply_delta(name, delta, hit=agreed)
            except WeightStoreContention as e:
                logger.error("Weight update for %s on ledger record %s gave up: %s", name, record.id, e)
                failed.append(name)
                continue
            report.deltas_applied[name] = round(report.deltas_applied.get(name, 0.0) + delta, 6)

        logger.info(
            "🧠 Processed outcome for %s (%s, pnl %.2f%%), realized %s",
            record.ticker, record.outcome.value, record.pnl, realized,
        )
        return failed
