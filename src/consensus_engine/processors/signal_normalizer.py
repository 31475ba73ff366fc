import logging
import math
import numbers
from typing import Any, Optional

from src.consensus_engine.errors import MalformedSignal
from src.consensus_engine.models.signal_models import EngineOutput, NormalizedSignal, Signal

logger = logging.getLogger(__name__)


class SignalNormalizer:
    """
    Maps arbitrary engine output onto the canonical 0-100 scale.

    Absent, zero-confidence, NaN and non-numeric outputs become inactive.
    A genuine score of 0 stays active: zero is an opinion, not missing data.
    """

    @staticmethod
    def normalize(name: str, raw: Any) -> NormalizedSignal:
        try:
            value = SignalNormalizer._coerce(raw)
        except MalformedSignal as e:
            logger.warning("Malformed output from %s treated as absent: %s", name, e)
            value = None

        if value is None:
            return NormalizedSignal(name=name, score=0, active=False)

        clamped = max(0.0, min(100.0, value))
        return NormalizedSignal(name=name, score=int(round(clamped)), active=True)

    @staticmethod
    def _coerce(raw: Any) -> Optional[float]:
        confidence = None
        if isinstance(raw, Signal):
            raw = raw.raw_value
        if isinstance(raw, EngineOutput):
            confidence, raw = raw.confidence, raw.score
        elif isinstance(raw, dict):
            confidence, raw = raw.get("confidence"), raw.get("score")

        if confidence is not None and confidence == 0:
            return None
        if raw is None:
            return None
        if isinstance(raw, bool) or not isinstance(raw, numbers.Real):
            raise MalformedSignal(f"non-numeric score {raw!r}")

        value = float(raw)
        if math.isnan(value):
            return None
        if math.isinf(value):
            raise MalformedSignal(f"non-finite score {raw!r}")
        return value
