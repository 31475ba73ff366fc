from pydantic import BaseModel
from typing import Dict, Optional


class RegimeState(BaseModel):
    """Macro regime label, e.g. RISK_ON / RISK_OFF, with an optional explicit multiplier."""
    label: str
    multiplier: Optional[float] = None


class SectorBiasProfile(BaseModel):
    sector: str
    multiplier: Optional[float] = None
    win_rate: Optional[float] = None  # 0 to 1
    sample_size: Optional[int] = None


class SeasonalityProfile(BaseModel):
    month_key: str  # 'JAN' .. 'DEC'
    fomc_week: bool = False
    multiplier: float = 1.0
    sample_size: Optional[int] = None


class VolatilityShockState(BaseModel):
    regime: Optional[str] = None  # 'LOW', 'NORMAL', 'HIGH', 'EXTREME'
    vix_level: Optional[float] = None
    multiplier: Optional[float] = None


class DrawdownProfile(BaseModel):
    asset_class: str
    confidence_modifier: Optional[float] = None
    stop_loss_modifier: float = 1.0
    sample_size: Optional[int] = None


class RecalibrationContext(BaseModel):
    """
    Transient bundle of context-module outputs for one scoring call.
    Any field left as None contributes a neutral 1.0 multiplier.
    """
    regime: Optional[RegimeState] = None
    sector: Optional[SectorBiasProfile] = None
    seasonality: Optional[SeasonalityProfile] = None
    volatility: Optional[VolatilityShockState] = None
    drawdown: Optional[DrawdownProfile] = None


class RecalibrationResult(BaseModel):
    score: int  # 0 to 100, clamped once
    raw_score: float  # product before the final clamp
    multipliers_applied: Dict[str, float]
