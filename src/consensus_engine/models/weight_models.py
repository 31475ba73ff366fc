from pydantic import BaseModel
from datetime import datetime


class SignalWeight(BaseModel):
    """
    Trust weight for one signal engine, mutated only by the feedback loop.
    """
    name: str
    weight: float
    confidence_interval: float
    hits: int = 0
    misses: int = 0
    version: int = 0
    last_updated: datetime
