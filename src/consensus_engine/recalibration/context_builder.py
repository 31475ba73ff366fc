import logging
from datetime import date
from typing import Optional, Union

from database import get_db_session
from models import DrawdownProfileSnapshot, SectorBiasSnapshot, SeasonalitySnapshot, VolatilityShockSnapshot
from src.consensus_engine.models.recalibration_models import (
    DrawdownProfile,
    RecalibrationContext,
    RegimeState,
    SectorBiasProfile,
    SeasonalityProfile,
    VolatilityShockState,
)
from src.consensus_engine.recalibration.stages import VolatilityShockStage

logger = logging.getLogger(__name__)

MONTH_KEYS = ["JAN", "FEB", "MAR", "APR", "MAY", "JUN", "JUL", "AUG", "SEP", "OCT", "NOV", "DEC"]

# Sell-in-May / Santa-rally style priors until learned snapshots replace them
DEFAULT_SEASONALITY = {"JAN": 1.05, "SEP": 0.9, "NOV": 1.1, "DEC": 1.1}

# regime -> (vix_level, confidence_modifier, stop_width_modifier, win_rate)
DEFAULT_VOLATILITY = {
    "LOW": (12.0, 1.0, 0.8, 0.65),
    "NORMAL": (18.0, 1.0, 1.0, 0.60),
    "HIGH": (25.0, 0.8, 1.3, 0.45),
    "EXTREME": (35.0, 0.5, 1.5, 0.30),
}

# asset class -> stop_loss_modifier; confidence penalty is derived from it
DEFAULT_DRAWDOWN = {
    "blue_chip": 1.0,
    "growth": 1.1,
    "crypto_alpha": 1.3,
    "speculative": 1.5,
}

SEED_SAMPLE_SIZE = 10


class RecalibrationContextBuilder:
    """
    Assembles a RecalibrationContext from the persisted profile tables.
    The tables are written by external snapshot jobs and only read here.
    """

    def __init__(self, session_factory=None):
        self.session_factory = session_factory

    def seed_defaults(self) -> int:
        """Insert prior profiles for any key that has none yet. Returns rows created."""
        created = 0
        with get_db_session(self.session_factory) as db:
            for month in MONTH_KEYS:
                exists = db.query(SeasonalitySnapshot).filter(
                    SeasonalitySnapshot.month_key == month,
                    SeasonalitySnapshot.fomc_week.is_(False),
                ).first()
                if exists is None:
                    db.add(SeasonalitySnapshot(
                        month_key=month,
                        fomc_week=False,
                        seasonal_confidence_modifier=DEFAULT_SEASONALITY.get(month, 1.0),
                        sample_size=SEED_SAMPLE_SIZE,
                    ))
                    created += 1

            for regime, (vix, conf_mod, stop_mod, win_rate) in DEFAULT_VOLATILITY.items():
                if db.get(VolatilityShockSnapshot, regime) is None:
                    db.add(VolatilityShockSnapshot(
                        regime=regime,
                        vix_level=vix,
                        confidence_modifier=conf_mod,
                        stop_width_modifier=stop_mod,
                        win_rate_in_regime=win_rate,
                        sample_size=SEED_SAMPLE_SIZE,
                    ))
                    created += 1

            for asset_class, stop_mod in DEFAULT_DRAWDOWN.items():
                if db.get(DrawdownProfileSnapshot, asset_class) is None:
                    db.add(DrawdownProfileSnapshot(
                        asset_class=asset_class,
                        stop_loss_modifier=stop_mod,
                        sample_size=SEED_SAMPLE_SIZE,
                    ))
                    created += 1

        if created:
            logger.info("Seeded %d default recalibration profiles", created)
        return created

    def build(
        self,
        sector: Optional[str] = None,
        asset_class: Optional[str] = None,
        as_of: Optional[date] = None,
        fomc_week: bool = False,
        regime: Optional[Union[str, RegimeState]] = None,
        volatility_regime: Optional[str] = None,
        vix_level: Optional[float] = None,
    ) -> RecalibrationContext:
        as_of = as_of or date.today()
        if isinstance(regime, str):
            regime = RegimeState(label=regime)

        with get_db_session(self.session_factory) as db:
            return RecalibrationContext(
                regime=regime,
                sector=self._sector(db, sector) if sector else None,
                seasonality=self._seasonality(db, as_of, fomc_week),
                volatility=self._volatility(db, volatility_regime, vix_level),
                drawdown=self._drawdown(db, asset_class) if asset_class else None,
            )

    @staticmethod
    def _sector(db, sector: str) -> Optional[SectorBiasProfile]:
        row = db.get(SectorBiasSnapshot, sector)
        if row is None:
            return None
        return SectorBiasProfile(
            sector=row.sector,
            multiplier=row.bias_multiplier,
            win_rate=row.win_rate,
            sample_size=row.sample_size,
        )

    @staticmethod
    def _seasonality(db, as_of: date, fomc_week: bool) -> Optional[SeasonalityProfile]:
        month = MONTH_KEYS[as_of.month - 1]
        row = db.query(SeasonalitySnapshot).filter(
            SeasonalitySnapshot.month_key == month,
            SeasonalitySnapshot.fomc_week.is_(fomc_week),
        ).first()
        learned_fomc = row is not None and fomc_week
        if row is None and fomc_week:
            row = db.query(SeasonalitySnapshot).filter(
                SeasonalitySnapshot.month_key == month,
                SeasonalitySnapshot.fomc_week.is_(False),
            ).first()
        if row is None:
            return None
        return SeasonalityProfile(
            month_key=month,
            # A learned FOMC-week row already prices the event in
            fomc_week=fomc_week and not learned_fomc,
            multiplier=row.seasonal_confidence_modifier,
            sample_size=row.sample_size,
        )

    @staticmethod
    def _volatility(db, volatility_regime: Optional[str], vix_level: Optional[float]) -> Optional[VolatilityShockState]:
        if volatility_regime is None and vix_level is None:
            return None
        regime = (volatility_regime or VolatilityShockStage.classify_vix(vix_level)).upper()
        row = db.get(VolatilityShockSnapshot, regime)
        return VolatilityShockState(
            regime=regime,
            vix_level=vix_level,
            multiplier=row.confidence_modifier if row else None,
        )

    @staticmethod
    def _drawdown(db, asset_class: str) -> Optional[DrawdownProfile]:
        row = db.get(DrawdownProfileSnapshot, asset_class)
        if row is None:
            return None
        return DrawdownProfile(
            asset_class=row.asset_class,
            confidence_modifier=row.confidence_modifier,
            stop_loss_modifier=row.stop_loss_modifier,
            sample_size=row.sample_size,
        )
