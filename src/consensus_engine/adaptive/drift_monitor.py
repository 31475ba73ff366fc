import logging
from datetime import date
from typing import List, Optional

import numpy as np

from config import config
from database import get_db_session
from models import ConfidenceDriftSnapshot
from src.consensus_engine.models.feedback_models import DriftSnapshot
from src.consensus_engine.models.ledger_models import Outcome, PredictionRecord

logger = logging.getLogger(__name__)


class DriftMonitor:
    """
    Tracks calibration of predicted confidence against realized win rate.

    drift = mean(confidence / 100) - win_rate over a trailing window.
    Confidence is the consensus score, so a SHORT call at score 20 is read as
    80 confidence in its own direction.
    Positive drift (overconfident) pulls the global correction factor below 1,
    negative drift (underconfident) pushes it above 1.
    """

    def __init__(
        self,
        session_factory=None,
        window: Optional[int] = None,
        tolerance: Optional[float] = None,
        min_factor: Optional[float] = None,
        max_factor: Optional[float] = None,
    ):
        self.session_factory = session_factory
        self.window = window if window is not None else config.DRIFT_WINDOW
        self.tolerance = tolerance if tolerance is not None else config.DRIFT_TOLERANCE
        self.min_factor = min_factor if min_factor is not None else config.CORRECTION_FACTOR_MIN
        self.max_factor = max_factor if max_factor is not None else config.CORRECTION_FACTOR_MAX

    @staticmethod
    def directional_confidence(record: PredictionRecord) -> float:
        if str(record.direction).upper() == "SHORT":
            return 100.0 - record.confidence
        return record.confidence

    def compute(self, records: List[PredictionRecord], snapshot_date: Optional[date] = None) -> Optional[DriftSnapshot]:
        closed = [r for r in records if r.outcome in (Outcome.WIN, Outcome.LOSS)][: self.window]
        if not closed:
            return None

        confidences = np.clip(np.array([self.directional_confidence(r) for r in closed], dtype=float) / 100.0, 0.0, 1.0)
        wins = np.array([1.0 if r.outcome == Outcome.WIN else 0.0 for r in closed])

        avg_conf = float(np.mean(confidences))
        win_rate = float(np.mean(wins))
        drift = avg_conf - win_rate

        if drift > self.tolerance:
            status = "OVERCONFIDENT"
        elif drift < -self.tolerance:
            status = "UNDERCONFIDENT"
        else:
            status = "CALIBRATED"

        factor = 1.0 if status == "CALIBRATED" else float(np.clip(1.0 - drift, self.min_factor, self.max_factor))

        return DriftSnapshot(
            snapshot_date=snapshot_date or date.today(),
            avg_confidence=round(avg_conf, 4),
            avg_win_rate=round(win_rate, 4),
            drift_bias=round(drift, 4),
            correction_factor=round(factor, 4),
            sample_size=len(closed),
            status=status,
        )

    def persist(self, snapshot: DriftSnapshot):
        with get_db_session(self.session_factory) as db:
            row = db.get(ConfidenceDriftSnapshot, snapshot.snapshot_date)
            if row is None:
                row = ConfidenceDriftSnapshot(snapshot_date=snapshot.snapshot_date)
                db.add(row)
            row.avg_confidence = snapshot.avg_confidence
            row.avg_win_rate = snapshot.avg_win_rate
            row.drift_bias = snapshot.drift_bias
            row.correction_factor = snapshot.correction_factor
            row.sample_size = snapshot.sample_size
            row.status = snapshot.status
        logger.info(
            "Drift snapshot %s: conf=%.2f win=%.2f drift=%+.3f factor=%.3f (%s, n=%d)",
            snapshot.snapshot_date, snapshot.avg_confidence, snapshot.avg_win_rate,
            snapshot.drift_bias, snapshot.correction_factor, snapshot.status, snapshot.sample_size,
        )

    def latest(self) -> Optional[DriftSnapshot]:
        with get_db_session(self.session_factory) as db:
            row = (
                db.query(ConfidenceDriftSnapshot)
                .order_by(ConfidenceDriftSnapshot.snapshot_date.desc())
                .first()
            )
            if row is None:
                return None
            return DriftSnapshot(
                snapshot_date=row.snapshot_date,
                avg_confidence=row.avg_confidence,
                avg_win_rate=row.avg_win_rate,
                drift_bias=row.drift_bias,
                correction_factor=row.correction_factor,
                sample_size=row.sample_size,
                status=row.status,
            )

    def correction_factor(self) -> float:
        snapshot = self.latest()
        return snapshot.correction_factor if snapshot else 1.0
