from typing import Dict, List, Optional

from src.consensus_engine.models.recalibration_models import RecalibrationContext, RecalibrationResult
from src.consensus_engine.recalibration.stages import (
    DrawdownSensitivityStage,
    RecalibrationStage,
    RegimeStage,
    SectorBiasStage,
    SeasonalityStage,
    VolatilityShockStage,
)


def default_stages() -> List[RecalibrationStage]:
    return [
        RegimeStage(),
        SectorBiasStage(),
        SeasonalityStage(),
        VolatilityShockStage(),
        DrawdownSensitivityStage(),
    ]


class RecalibrationChain:
    """
    Multiplies the base consensus score through every stage and clamps to
    [0, 100] exactly once, at the end, so one stage's overshoot can be
    partially offset by another before clamping.

    The listed order is kept for reporting only: every stage multiplier is
    independent of the running score, so reordering does not change the result.
    """

    def __init__(self, stages: Optional[List[RecalibrationStage]] = None):
        self.stages = stages if stages is not None else default_stages()

    def recalibrate(self, base_score: float, context: Optional[RecalibrationContext] = None) -> RecalibrationResult:
        context = context or RecalibrationContext()
        running = float(base_score)
        applied: Dict[str, float] = {}

        for stage in self.stages:
            m = stage.multiplier(context)
            applied[stage.name] = round(m, 4)
            running *= m

        final = max(0, min(100, round(running)))
        return RecalibrationResult(score=final, raw_score=round(running, 4), multipliers_applied=applied)
