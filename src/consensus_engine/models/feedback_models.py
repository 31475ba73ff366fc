from pydantic import BaseModel
from typing import Dict, List, Literal, Optional
from datetime import date


class DriftSnapshot(BaseModel):
    """
    Gap between average predicted confidence and realized win rate over a trailing window.
    Both averages are on a 0 to 1 scale.
    """
    snapshot_date: date
    avg_confidence: float
    avg_win_rate: float
    drift_bias: float
    correction_factor: float
    sample_size: int
    status: Literal["OVERCONFIDENT", "UNDERCONFIDENT", "CALIBRATED"]


class FeedbackReport(BaseModel):
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    deltas_applied: Dict[str, float] = {}
    # ledger record id -> signals whose weight update gave up under contention
    failed_signals: Dict[int, List[str]] = {}
    drift: Optional[DriftSnapshot] = None
