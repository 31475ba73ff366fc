from pydantic import BaseModel
from typing import List, Literal, Optional
from datetime import datetime


class ProviderAttempt(BaseModel):
    provider: str
    status: Literal["ok", "error", "timeout", "empty"]
    detail: Optional[str] = None
    elapsed_ms: float = 0.0


class ResolvedValue(BaseModel):
    """
    A real value returned by the first provider in the chain that produced one.
    """
    ticker: str
    capability: str
    value: float
    source: str
    attempts: List[ProviderAttempt] = []
    resolved_at: datetime

    @property
    def available(self) -> bool:
        return True


class Unavailable(BaseModel):
    """
    Explicit result once every provider for a capability has been exhausted.
    Never carries a placeholder value.
    """
    ticker: str
    capability: str
    reason: str
    attempts: List[ProviderAttempt] = []

    @property
    def available(self) -> bool:
        return False
