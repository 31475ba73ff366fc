from typing import Dict, List, Optional

from src.consensus_engine.models.signal_models import ConfidenceTier, ConsensusResult, NormalizedSignal
from src.consensus_engine.models.weight_models import SignalWeight


class ConsensusScorer:
    """
    Weighted average over the signals that actually reported.

    The denominator is the sum of *active* weights, so adding or removing an
    inactive engine never moves the score. With nothing active the result is
    a hard 0 / AVOID rather than a mid-scale default.
    """

    def __init__(self, default_weight: float = 1.0):
        self.default_weight = default_weight

    def score(
        self,
        ticker: str,
        signals: List[NormalizedSignal],
        weights: Dict[str, SignalWeight],
    ) -> ConsensusResult:
        active = [s for s in signals if s.active]

        if not active:
            return ConsensusResult(
                ticker=ticker,
                final_score=0,
                confidence_tier=ConfidenceTier.AVOID,
                active_engine_count=0,
                breakdown={},
                bias="NEUTRAL",
                base_score=0,
            )

        breakdown: Dict[str, float] = {}
        weighted_sum = 0.0
        weight_sum = 0.0
        for sig in active:
            w = self._weight_for(sig.name, weights)
            contribution = sig.score * w
            breakdown[sig.name] = round(contribution, 4)
            weighted_sum += contribution
            weight_sum += w

        base = round(weighted_sum / weight_sum)
        base = max(0, min(100, base))

        return ConsensusResult(
            ticker=ticker,
            final_score=base,
            confidence_tier=ConfidenceTier.from_score(base),
            active_engine_count=len(active),
            breakdown=breakdown,
            signals={s.name: s.score for s in active},
            bias=self.bias_for(base),
            base_score=base,
        )

    def _weight_for(self, name: str, weights: Dict[str, SignalWeight]) -> float:
        entry: Optional[SignalWeight] = weights.get(name)
        return entry.weight if entry is not None else self.default_weight

    @staticmethod
    def bias_for(score: int) -> str:
        if score >= 55:
            return "LONG"
        if score <= 45:
            return "SHORT"
        return "NEUTRAL"
