from sqlalchemy import Column, String, Boolean, DateTime, Date, Float, Integer, JSON, UniqueConstraint
from sqlalchemy.orm import declarative_base
from datetime import datetime, timezone

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SignalWeightRecord(Base):
    """Current trust weight for one named signal engine"""
    __tablename__ = "signal_weights"

    signal_name = Column(String(50), primary_key=True)
    weight = Column(Float, nullable=False, default=1.0)
    confidence_interval = Column(Float, nullable=False, default=1.0)
    hits = Column(Integer, nullable=False, default=0)
    misses = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=0)  # optimistic concurrency token
    last_updated = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class PredictionLedgerEntry(Base):
    """Append-only record of a scored prediction and its eventual outcome"""
    __tablename__ = "prediction_ledger"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ticker = Column(String(20), nullable=False, index=True)
    direction = Column(String(10), nullable=False, default="LONG")  # 'LONG' or 'SHORT'
    confidence = Column(Float, nullable=False)
    entry_price = Column(Float, nullable=False)
    stop_loss = Column(Float, nullable=False)
    take_profit_1 = Column(Float, nullable=False)
    take_profit_2 = Column(Float, nullable=True)
    take_profit_3 = Column(Float, nullable=True)
    agent_signals = Column(JSON, nullable=True)
    outcome = Column(String(10), nullable=False, default="PENDING", index=True)
    pnl = Column(Float, nullable=True)
    mfe = Column(Float, nullable=True)  # Max Favorable Excursion
    mae = Column(Float, nullable=True)  # Max Adverse Excursion
    hit_tp1 = Column(Boolean, nullable=True)
    hit_sl = Column(Boolean, nullable=True)
    days_held = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    processed_for_learning = Column(Boolean, nullable=False, default=False, index=True)


class ConfidenceDriftSnapshot(Base):
    """Daily gap between predicted confidence and realized win rate"""
    __tablename__ = "confidence_drift_snapshots"

    snapshot_date = Column(Date, primary_key=True)
    avg_confidence = Column(Float, nullable=False)
    avg_win_rate = Column(Float, nullable=False)
    drift_bias = Column(Float, nullable=False)
    correction_factor = Column(Float, nullable=False, default=1.0)
    sample_size = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="CALIBRATED")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class SectorBiasSnapshot(Base):
    """Learned per-sector confidence bias"""
    __tablename__ = "sector_bias_profiles"

    sector = Column(String(100), primary_key=True)
    bias_multiplier = Column(Float, nullable=True)
    win_rate = Column(Float, nullable=True)
    sample_size = Column(Integer, nullable=False, default=0)
    last_updated = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class SeasonalitySnapshot(Base):
    """Learned month / FOMC-week confidence modifier"""
    __tablename__ = "seasonality_profiles"
    __table_args__ = (UniqueConstraint("month_key", "fomc_week", name="uq_seasonality_month_fomc"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    month_key = Column(String(3), nullable=False)  # 'JAN', 'FEB', ...
    fomc_week = Column(Boolean, nullable=False, default=False)
    seasonal_confidence_modifier = Column(Float, nullable=False, default=1.0)
    avg_win_rate = Column(Float, nullable=True)
    sample_size = Column(Integer, nullable=False, default=0)
    last_updated = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class DrawdownProfileSnapshot(Base):
    """Per asset-class drawdown sensitivity"""
    __tablename__ = "drawdown_profiles"

    asset_class = Column(String(50), primary_key=True)  # 'blue_chip', 'crypto_alpha', ...
    confidence_modifier = Column(Float, nullable=True)
    stop_loss_modifier = Column(Float, nullable=False, default=1.0)
    avg_drawdown = Column(Float, nullable=True)
    sample_size = Column(Integer, nullable=False, default=0)
    last_updated = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class VolatilityShockSnapshot(Base):
    """Per volatility-regime confidence and stop-width modifiers"""
    __tablename__ = "volatility_shock_profiles"

    regime = Column(String(20), primary_key=True)  # 'LOW', 'NORMAL', 'HIGH', 'EXTREME'
    vix_level = Column(Float, nullable=True)
    confidence_modifier = Column(Float, nullable=False, default=1.0)
    stop_width_modifier = Column(Float, nullable=False, default=1.0)
    win_rate_in_regime = Column(Float, nullable=True)
    sample_size = Column(Integer, nullable=False, default=0)
    last_updated = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class PriceCacheEntry(Base):
    """Last successfully resolved price per ticker"""
    __tablename__ = "price_cache"

    ticker = Column(String(20), primary_key=True)
    price = Column(Float, nullable=False)
    source = Column(String(50), nullable=False)
    cached_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
