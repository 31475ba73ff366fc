from enum import Enum
from pydantic import BaseModel, Field, field_validator
from typing import Any, Dict, List, Literal, Optional
from datetime import datetime


class Outcome(str, Enum):
    PENDING = "PENDING"
    WIN = "WIN"
    LOSS = "LOSS"


class PredictionInput(BaseModel):
    """
    Everything needed to log a fresh prediction; the outcome starts PENDING.
    """
    ticker: str
    confidence: float
    entry_price: float
    stop_loss: float
    take_profits: List[float] = Field(min_length=1, max_length=3)
    agent_signals: Dict[str, Any] = {}
    direction: Literal["LONG", "SHORT"] = "LONG"


class OutcomeUpdate(BaseModel):
    outcome: Outcome
    pnl: float
    days_held: int
    mfe: float = 0.0
    mae: float = 0.0
    hit_tp1: bool = False
    hit_sl: bool = False

    @field_validator("outcome")
    @classmethod
    def _closed_outcome(cls, v: Outcome) -> Outcome:
        if v == Outcome.PENDING:
            raise ValueError("an outcome update must be WIN or LOSS")
        return v


class PredictionRecord(BaseModel):
    id: int
    ticker: str
    direction: str
    confidence: float
    entry_price: float
    stop_loss: float
    take_profits: List[float]
    agent_signals: Optional[Dict[str, Any]] = None
    # None when the stored outcome is not one this engine knows; raw_outcome keeps the text
    outcome: Optional[Outcome]
    raw_outcome: Optional[str] = None
    pnl: Optional[float] = None
    mfe: Optional[float] = None
    mae: Optional[float] = None
    hit_tp1: Optional[bool] = None
    hit_sl: Optional[bool] = None
    days_held: Optional[int] = None
    created_at: datetime
    closed_at: Optional[datetime] = None
    processed_for_learning: bool = False
