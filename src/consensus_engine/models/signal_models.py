from enum import Enum
from pydantic import BaseModel
from typing import Any, Dict, Literal, Optional
from datetime import datetime


class EngineOutput(BaseModel):
    """
    What a signal engine hands back for one ticker.
    `score=None` is the explicit absent marker; engines never raise for "no data".
    """
    score: Optional[float] = None
    confidence: Optional[float] = None
    detail: Optional[str] = None


class Signal(BaseModel):
    name: str
    raw_value: Optional[Any] = None
    ticker: str
    as_of: datetime


class NormalizedSignal(BaseModel):
    """
    Canonical form every downstream stage works on.
    Inactive signals are excluded from the weighted average, they do not count as zero.
    """
    name: str
    score: int  # 0 to 100
    active: bool


class ConfidenceTier(str, Enum):
    MAXIMUM = "MAXIMUM"
    HIGH = "HIGH"
    MODERATE = "MODERATE"
    LOW = "LOW"
    AVOID = "AVOID"

    @classmethod
    def from_score(cls, score: int) -> "ConfidenceTier":
        if score >= 85:
            return cls.MAXIMUM
        if score >= 70:
            return cls.HIGH
        if score >= 50:
            return cls.MODERATE
        if score >= 30:
            return cls.LOW
        return cls.AVOID


class ConsensusResult(BaseModel):
    """
    Final output of the consensus pipeline for one ticker.
    `breakdown` maps each active signal to its score * weight contribution.
    """
    ticker: str
    final_score: int  # 0 to 100
    confidence_tier: ConfidenceTier
    active_engine_count: int
    breakdown: Dict[str, float]
    signals: Dict[str, int] = {}  # active normalized scores, recorded on the ledger
    bias: Literal["LONG", "SHORT", "NEUTRAL"] = "NEUTRAL"
    base_score: int = 0
    multipliers_applied: Dict[str, float] = {}
    correction_factor: float = 1.0
    price: Optional[float] = None
    price_source: Optional[str] = None
    failure_reason: Optional[str] = None
    timestamp: Optional[datetime] = None
