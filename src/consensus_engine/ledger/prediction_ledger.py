import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select, update

from database import get_db_session
from models import PredictionLedgerEntry
from src.consensus_engine.errors import LedgerIntegrityViolation, PredictionNotFound
from src.consensus_engine.models.ledger_models import Outcome, OutcomeUpdate, PredictionInput, PredictionRecord

logger = logging.getLogger(__name__)


def _as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _parse_outcome(value) -> Optional[Outcome]:
    """Rows written by other tools may carry outcomes like EXPIRED; those map to None."""
    try:
        return Outcome(value)
    except ValueError:
        return None


class PredictionLedger:
    """
    Append-only audit trail of predictions.

    A record is inserted PENDING, gets exactly one outcome, and is never
    deleted. The outcome write is a conditional UPDATE guarded on
    `outcome = 'PENDING'`, so a second attach is rejected without touching the row.
    """

    def __init__(self, session_factory=None):
        self.session_factory = session_factory

    @staticmethod
    def _to_record(row: PredictionLedgerEntry) -> PredictionRecord:
        take_profits = [tp for tp in (row.take_profit_1, row.take_profit_2, row.take_profit_3) if tp is not None]
        return PredictionRecord(
            id=row.id,
            ticker=row.ticker,
            direction=row.direction,
            confidence=row.confidence,
            entry_price=row.entry_price,
            stop_loss=row.stop_loss,
            take_profits=take_profits,
            # Malformed payloads surface as None so the learning loop can skip them
            agent_signals=row.agent_signals if isinstance(row.agent_signals, dict) else None,
            outcome=_parse_outcome(row.outcome),
            raw_outcome=row.outcome,
            pnl=row.pnl if isinstance(row.pnl, (int, float)) and not isinstance(row.pnl, bool) else None,
            mfe=row.mfe,
            mae=row.mae,
            hit_tp1=row.hit_tp1,
            hit_sl=row.hit_sl,
            days_held=row.days_held,
            created_at=_as_utc(row.created_at),
            closed_at=_as_utc(row.closed_at),
            processed_for_learning=bool(row.processed_for_learning),
        )

    def log(self, data: PredictionInput) -> int:
        """Logs a fresh prediction and returns its id."""
        tps = list(data.take_profits) + [None] * (3 - len(data.take_profits))
        with get_db_session(self.session_factory) as db:
            entry = PredictionLedgerEntry(
                ticker=data.ticker.upper(),
                direction=data.direction,
                confidence=data.confidence,
                entry_price=data.entry_price,
                stop_loss=data.stop_loss,
                take_profit_1=tps[0],
                take_profit_2=tps[1],
                take_profit_3=tps[2],
                agent_signals=data.agent_signals,
                outcome=Outcome.PENDING.value,
                processed_for_learning=False,
            )
            db.add(entry)
            db.flush()
            prediction_id = entry.id

        logger.info("📝 Logged prediction for %s (ID: %s, confidence %.0f)", data.ticker.upper(), prediction_id, data.confidence)
        return prediction_id

    def get(self, prediction_id: int) -> PredictionRecord:
        with get_db_session(self.session_factory) as db:
            row = db.get(PredictionLedgerEntry, prediction_id)
            if row is None:
                raise PredictionNotFound(prediction_id)
            return self._to_record(row)

    def attach_outcome(self, prediction_id: int, data: OutcomeUpdate) -> PredictionRecord:
        """
        Saves the final outcome of a trade. Raises LedgerIntegrityViolation if the
        prediction already has one, PredictionNotFound if it does not exist.
        """
        with get_db_session(self.session_factory) as db:
            result = db.execute(
                update(PredictionLedgerEntry)
                .where(
                    PredictionLedgerEntry.id == prediction_id,
                    PredictionLedgerEntry.outcome == Outcome.PENDING.value,
                )
                .values(
                    outcome=data.outcome.value,
                    pnl=data.pnl,
                    days_held=data.days_held,
                    mfe=data.mfe,
                    mae=data.mae,
                    hit_tp1=data.hit_tp1,
                    hit_sl=data.hit_sl,
                    closed_at=datetime.now(timezone.utc),
                )
            )
            if result.rowcount != 1:
                row = db.get(PredictionLedgerEntry, prediction_id)
                if row is None:
                    raise PredictionNotFound(prediction_id)
                logger.warning("Rejected second outcome for prediction %s (already %s)", prediction_id, row.outcome)
                raise LedgerIntegrityViolation(prediction_id, row.outcome)

        logger.info("📝 Updated outcome for ID %s: %s (pnl %.2f)", prediction_id, data.outcome.value, data.pnl)
        return self.get(prediction_id)

    def query_pending(self, older_than: Optional[datetime] = None) -> List[PredictionRecord]:
        """Pending predictions, oldest first, optionally only those created before `older_than`."""
        with get_db_session(self.session_factory) as db:
            stmt = select(PredictionLedgerEntry).where(PredictionLedgerEntry.outcome == Outcome.PENDING.value)
            if older_than is not None:
                stmt = stmt.where(PredictionLedgerEntry.created_at < older_than)
            rows = db.execute(stmt.order_by(PredictionLedgerEntry.created_at.asc())).scalars().all()
            return [self._to_record(r) for r in rows]

    def query_closed_unprocessed(self, limit: int = 200) -> List[PredictionRecord]:
        """Closed predictions the learning loop has not consumed yet, oldest close first."""
        with get_db_session(self.session_factory) as db:
            rows = db.execute(
                select(PredictionLedgerEntry)
                .where(
                    PredictionLedgerEntry.outcome != Outcome.PENDING.value,
                    PredictionLedgerEntry.processed_for_learning.is_(False),
                )
                .order_by(PredictionLedgerEntry.closed_at.asc(), PredictionLedgerEntry.id.asc())
                .limit(limit)
            ).scalars().all()
            return [self._to_record(r) for r in rows]

    def recent_closed(self, window: int) -> List[PredictionRecord]:
        """The last `window` closed predictions by close time."""
        with get_db_session(self.session_factory) as db:
            rows = db.execute(
                select(PredictionLedgerEntry)
                .where(PredictionLedgerEntry.outcome != Outcome.PENDING.value)
                .order_by(PredictionLedgerEntry.closed_at.desc(), PredictionLedgerEntry.id.desc())
                .limit(window)
            ).scalars().all()
            return [self._to_record(r) for r in rows]

    def mark_processed(self, prediction_id: int) -> bool:
        """
        Claims a closed record for learning. Returns False when it was already
        claimed, which makes a resumed sweep skip it instead of re-applying deltas.
        """
        with get_db_session(self.session_factory) as db:
            result = db.execute(
                update(PredictionLedgerEntry)
                .where(
                    PredictionLedgerEntry.id == prediction_id,
                    PredictionLedgerEntry.outcome != Outcome.PENDING.value,
                    PredictionLedgerEntry.processed_for_learning.is_(False),
                )
                .values(processed_for_learning=True)
            )
            return result.rowcount == 1

