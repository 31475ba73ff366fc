from datetime import date

import pytest

from models import SectorBiasSnapshot, SeasonalitySnapshot
from src.consensus_engine.models.recalibration_models import (
    DrawdownProfile,
    RecalibrationContext,
    RegimeState,
    SectorBiasProfile,
    SeasonalityProfile,
    VolatilityShockState,
)
from src.consensus_engine.recalibration.context_builder import RecalibrationContextBuilder
from src.consensus_engine.recalibration.recalibration_chain import RecalibrationChain
from src.consensus_engine.recalibration.stages import (
    DrawdownSensitivityStage,
    RegimeStage,
    SectorBiasStage,
    SeasonalityStage,
    VolatilityShockStage,
    shrink_to_neutral,
)


def test_chain_clamps_only_once_at_the_end():
    context = RecalibrationContext(
        regime=RegimeState(label="RISK_ON"),
        sector=SectorBiasProfile(sector="Technology", multiplier=0.9),
    )
    result = RecalibrationChain().recalibrate(80, context)

    assert result.raw_score == pytest.approx(79.2)
    assert result.score == 79
    assert result.multipliers_applied["regime"] == 1.1
    assert result.multipliers_applied["sector"] == 0.9
    assert result.multipliers_applied["drawdown"] == 1.0


def test_overshoot_can_be_offset_before_clamp():
    # 90 * 1.5 = 135 would clamp to 100 on its own; the 0.6 haircut brings it back in range
    context = RecalibrationContext(
        regime=RegimeState(label="CRISIS"),
        sector=SectorBiasProfile(sector="Energy", multiplier=1.5),
    )
    result = RecalibrationChain().recalibrate(90, context)
    assert result.score == 81


def test_empty_context_is_neutral():
    result = RecalibrationChain().recalibrate(64)
    assert result.score == 64
    assert set(result.multipliers_applied.values()) == {1.0}


def test_stage_multipliers_are_bounded():
    stage = SectorBiasStage(min_multiplier=0.5, max_multiplier=1.5)
    high = RecalibrationContext(sector=SectorBiasProfile(sector="X", multiplier=4.0))
    low = RecalibrationContext(sector=SectorBiasProfile(sector="X", multiplier=0.01))
    assert stage.multiplier(high) == 1.5
    assert stage.multiplier(low) == 0.5


def test_non_finite_multiplier_is_neutral():
    for bad in (float("nan"), float("inf")):
        context = RecalibrationContext(regime=RegimeState(label="RISK_ON", multiplier=bad))
        result = RecalibrationChain().recalibrate(70, context)
        assert result.multipliers_applied["regime"] == 1.0
        assert result.score == 70


def test_final_score_stays_in_range():
    context = RecalibrationContext(
        regime=RegimeState(label="X", multiplier=1.5),
        sector=SectorBiasProfile(sector="X", multiplier=1.5),
    )
    assert RecalibrationChain().recalibrate(100, context).score == 100
    assert RecalibrationChain().recalibrate(0, context).score == 0


def test_stage_order_does_not_change_result():
    context = RecalibrationContext(
        regime=RegimeState(label="RISK_OFF"),
        sector=SectorBiasProfile(sector="Tech", win_rate=0.62),
        seasonality=SeasonalityProfile(month_key="SEP", multiplier=0.9, fomc_week=True),
        volatility=VolatilityShockState(vix_level=26.0),
        drawdown=DrawdownProfile(asset_class="growth", stop_loss_modifier=1.1),
    )
    forward = RecalibrationChain().recalibrate(77, context)
    reverse = RecalibrationChain(list(reversed(RecalibrationChain().stages))).recalibrate(77, context)
    assert forward.score == reverse.score


def test_shrink_to_neutral_scales_with_sample_size():
    assert shrink_to_neutral(1.4, 0, min_samples=5) == 1.0
    assert shrink_to_neutral(1.4, 5, min_samples=5) == 1.4
    assert shrink_to_neutral(0.6, 2, min_samples=4) == pytest.approx(0.8)
    assert shrink_to_neutral(1.2, None, min_samples=5) == 1.2


def test_individual_stages():
    ctx = RecalibrationContext(
        regime=RegimeState(label="crisis"),
        sector=SectorBiasProfile(sector="Tech", win_rate=0.7, sample_size=50),
        seasonality=SeasonalityProfile(month_key="DEC", multiplier=1.1, fomc_week=True, sample_size=50),
        volatility=VolatilityShockState(vix_level=35.0),
        drawdown=DrawdownProfile(asset_class="speculative", stop_loss_modifier=1.5, sample_size=50),
    )
    assert RegimeStage().multiplier(ctx) == 0.6
    assert SectorBiasStage().multiplier(ctx) == pytest.approx(1.2)
    assert SeasonalityStage().multiplier(ctx) == pytest.approx(1.1 * 0.95)
    assert VolatilityShockStage().multiplier(ctx) == 0.5
    assert DrawdownSensitivityStage().multiplier(ctx) == pytest.approx(1 / 1.5)


def test_classify_vix():
    assert VolatilityShockStage.classify_vix(12) == "LOW"
    assert VolatilityShockStage.classify_vix(18) == "NORMAL"
    assert VolatilityShockStage.classify_vix(25) == "HIGH"
    assert VolatilityShockStage.classify_vix(30) == "EXTREME"


def test_context_builder_seeds_once(session_factory):
    builder = RecalibrationContextBuilder(session_factory)
    first = builder.seed_defaults()
    assert first == 12 + 4 + 4
    assert builder.seed_defaults() == 0


def test_context_builder_reads_profiles(session_factory):
    builder = RecalibrationContextBuilder(session_factory)
    builder.seed_defaults()
    with session_factory() as db:
        db.add(SectorBiasSnapshot(sector="Technology", win_rate=0.6, sample_size=40))
        db.commit()

    ctx = builder.build(
        sector="Technology",
        asset_class="crypto_alpha",
        as_of=date(2026, 12, 3),
        regime="RISK_ON",
        vix_level=26.0,
    )

    assert ctx.regime.label == "RISK_ON"
    assert ctx.sector.win_rate == 0.6
    assert ctx.seasonality.month_key == "DEC"
    assert ctx.seasonality.multiplier == 1.1
    assert ctx.seasonality.fomc_week is False
    assert ctx.volatility.regime == "HIGH"
    assert ctx.volatility.multiplier == 0.8
    assert ctx.drawdown.stop_loss_modifier == 1.3


def test_context_builder_unknown_keys_stay_neutral(session_factory):
    builder = RecalibrationContextBuilder(session_factory)
    ctx = builder.build(sector="Unknown", asset_class="nope", as_of=date(2026, 3, 2))

    assert ctx.sector is None
    assert ctx.drawdown is None
    assert ctx.seasonality is None
    assert ctx.volatility is None
    assert RecalibrationChain().recalibrate(70, ctx).score == 70


def test_context_builder_fomc_week_falls_back_to_month_row(session_factory):
    builder = RecalibrationContextBuilder(session_factory)
    builder.seed_defaults()

    ctx = builder.build(as_of=date(2026, 9, 16), fomc_week=True)
    assert ctx.seasonality.multiplier == 0.9
    assert ctx.seasonality.fomc_week is True

    with session_factory() as db:
        db.add(SeasonalitySnapshot(month_key="SEP", fomc_week=True, seasonal_confidence_modifier=0.8, sample_size=20))
        db.commit()

    learned = builder.build(as_of=date(2026, 9, 16), fomc_week=True)
    assert learned.seasonality.multiplier == 0.8
    assert learned.seasonality.fomc_week is False
