import math
from abc import ABC, abstractmethod
from typing import Dict, Optional

from config import config
from src.consensus_engine.models.recalibration_models import (
    DrawdownProfile,
    RecalibrationContext,
    RegimeState,
    SectorBiasProfile,
    SeasonalityProfile,
    VolatilityShockState,
)


class RecalibrationStage(ABC):
    """
    One bounded contextual adjustment.

    A stage's multiplier depends only on its own context field, never on the
    running score, which keeps the chain commutative. Missing context is neutral.
    """

    name: str = "stage"

    def __init__(self, min_multiplier: Optional[float] = None, max_multiplier: Optional[float] = None):
        self.min_multiplier = min_multiplier if min_multiplier is not None else config.RECALIBRATION_MIN_MULTIPLIER
        self.max_multiplier = max_multiplier if max_multiplier is not None else config.RECALIBRATION_MAX_MULTIPLIER

    def multiplier(self, context: RecalibrationContext) -> float:
        raw = self.raw_multiplier(context)
        if raw is None or not math.isfinite(raw):
            return 1.0
        return max(self.min_multiplier, min(self.max_multiplier, raw))

    @abstractmethod
    def raw_multiplier(self, context: RecalibrationContext) -> Optional[float]:
        pass


def shrink_to_neutral(multiplier: float, sample_size: Optional[int], min_samples: Optional[int] = None) -> float:
    """Pull thinly-sampled learned multipliers toward 1.0 in proportion to sample size."""
    min_samples = min_samples if min_samples is not None else config.PROFILE_MIN_SAMPLES
    if sample_size is None or min_samples <= 0 or sample_size >= min_samples:
        return multiplier
    trust = max(0, sample_size) / min_samples
    return 1.0 + (multiplier - 1.0) * trust


class RegimeStage(RecalibrationStage):
    """Risk-on / risk-off macro state."""

    name = "regime"

    MULTIPLIERS: Dict[str, float] = {
        "RISK_ON": 1.1,
        "RECOVERY": 1.05,
        "NEUTRAL": 1.0,
        "BUBBLE": 0.9,
        "RISK_OFF": 0.85,
        "CRISIS": 0.6,
    }

    def raw_multiplier(self, context: RecalibrationContext) -> Optional[float]:
        regime: Optional[RegimeState] = context.regime
        if regime is None:
            return None
        if regime.multiplier is not None:
            return regime.multiplier
        return self.MULTIPLIERS.get(regime.label.upper(), 1.0)


class SectorBiasStage(RecalibrationStage):
    """Learned per-sector win-rate history."""

    name = "sector"

    def raw_multiplier(self, context: RecalibrationContext) -> Optional[float]:
        profile: Optional[SectorBiasProfile] = context.sector
        if profile is None:
            return None
        if profile.multiplier is not None:
            m = profile.multiplier
        elif profile.win_rate is not None:
            # 50% win rate is neutral; each point above/below moves confidence one point
            m = 1.0 + (profile.win_rate - 0.5)
        else:
            return None
        return shrink_to_neutral(m, profile.sample_size)


class SeasonalityStage(RecalibrationStage):
    """Month-of-year effect, with an extra haircut during FOMC weeks."""

    name = "seasonality"

    FOMC_WEEK_PENALTY = 0.95

    def raw_multiplier(self, context: RecalibrationContext) -> Optional[float]:
        profile: Optional[SeasonalityProfile] = context.seasonality
        if profile is None:
            return None
        m = shrink_to_neutral(profile.multiplier, profile.sample_size)
        if profile.fomc_week:
            m *= self.FOMC_WEEK_PENALTY
        return m


class VolatilityShockStage(RecalibrationStage):
    """Penalizes confidence in abnormal-volatility regimes."""

    name = "volatility"

    MULTIPLIERS: Dict[str, float] = {
        "LOW": 1.0,
        "NORMAL": 1.0,
        "HIGH": 0.8,
        "EXTREME": 0.5,
    }

    @staticmethod
    def classify_vix(vix: float) -> str:
        if vix < 15:
            return "LOW"
        if vix < 22:
            return "NORMAL"
        if vix < 30:
            return "HIGH"
        return "EXTREME"

    def raw_multiplier(self, context: RecalibrationContext) -> Optional[float]:
        state: Optional[VolatilityShockState] = context.volatility
        if state is None:
            return None
        if state.multiplier is not None:
            return state.multiplier
        regime = state.regime
        if regime is None and state.vix_level is not None:
            regime = self.classify_vix(state.vix_level)
        if regime is None:
            return None
        return self.MULTIPLIERS.get(regime.upper(), 1.0)


class DrawdownSensitivityStage(RecalibrationStage):
    """
    Asset-class drawdown tolerance. Classes that need wider stops also get a
    confidence penalty, not just a wider stop distance.
    """

    name = "drawdown"

    def raw_multiplier(self, context: RecalibrationContext) -> Optional[float]:
        profile: Optional[DrawdownProfile] = context.drawdown
        if profile is None:
            return None
        if profile.confidence_modifier is not None:
            m = profile.confidence_modifier
        elif profile.stop_loss_modifier > 0:
            m = 1.0 / profile.stop_loss_modifier
        else:
            return None
        return shrink_to_neutral(m, profile.sample_size)
