from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from models import PredictionLedgerEntry
from src.consensus_engine.errors import LedgerIntegrityViolation, PredictionNotFound
from src.consensus_engine.ledger.prediction_ledger import PredictionLedger
from src.consensus_engine.models.ledger_models import Outcome, OutcomeUpdate, PredictionInput


def _prediction(ticker="NVDA", **overrides) -> PredictionInput:
    data = dict(
        ticker=ticker,
        confidence=78,
        entry_price=100.0,
        stop_loss=95.0,
        take_profits=[105.0, 110.0],
        agent_signals={"fsi": 80, "insider": "bullish"},
    )
    data.update(overrides)
    return PredictionInput(**data)


def test_log_creates_pending_record(session_factory):
    ledger = PredictionLedger(session_factory)
    prediction_id = ledger.log(_prediction("nvda"))

    record = ledger.get(prediction_id)
    assert record.ticker == "NVDA"
    assert record.outcome == Outcome.PENDING
    assert record.take_profits == [105.0, 110.0]
    assert record.agent_signals == {"fsi": 80, "insider": "bullish"}
    assert record.processed_for_learning is False
    assert record.created_at.tzinfo is not None


def test_take_profits_are_limited_to_three():
    with pytest.raises(ValidationError):
        _prediction(take_profits=[1.0, 2.0, 3.0, 4.0])
    with pytest.raises(ValidationError):
        _prediction(take_profits=[])


def test_outcome_update_rejects_pending():
    with pytest.raises(ValidationError):
        OutcomeUpdate(outcome=Outcome.PENDING, pnl=0.0, days_held=1)


def test_attach_outcome_closes_record(session_factory):
    ledger = PredictionLedger(session_factory)
    prediction_id = ledger.log(_prediction())

    closed = ledger.attach_outcome(
        prediction_id,
        OutcomeUpdate(outcome=Outcome.WIN, pnl=5.2, days_held=3, mfe=6.0, mae=-1.0, hit_tp1=True),
    )

    assert closed.outcome == Outcome.WIN
    assert closed.pnl == pytest.approx(5.2)
    assert closed.hit_tp1 is True
    assert closed.closed_at is not None


def test_second_outcome_is_rejected_and_record_unchanged(session_factory):
    ledger = PredictionLedger(session_factory)
    prediction_id = ledger.log(_prediction())
    first = ledger.attach_outcome(prediction_id, OutcomeUpdate(outcome=Outcome.LOSS, pnl=-4.0, days_held=2, hit_sl=True))

    with pytest.raises(LedgerIntegrityViolation) as exc:
        ledger.attach_outcome(prediction_id, OutcomeUpdate(outcome=Outcome.WIN, pnl=9.0, days_held=5))

    assert exc.value.existing_outcome == "LOSS"
    after = ledger.get(prediction_id)
    assert after == first


def test_attach_outcome_unknown_id(session_factory):
    ledger = PredictionLedger(session_factory)
    with pytest.raises(PredictionNotFound):
        ledger.attach_outcome(404, OutcomeUpdate(outcome=Outcome.WIN, pnl=1.0, days_held=1))
    with pytest.raises(PredictionNotFound):
        ledger.get(404)


def test_query_pending_filters_by_age(session_factory):
    ledger = PredictionLedger(session_factory)
    old_id = ledger.log(_prediction("OLD"))
    new_id = ledger.log(_prediction("NEW"))
    closed_id = ledger.log(_prediction("DONE"))
    ledger.attach_outcome(closed_id, OutcomeUpdate(outcome=Outcome.WIN, pnl=1.0, days_held=1))

    with session_factory() as db:
        db.get(PredictionLedgerEntry, old_id).created_at = datetime.now(timezone.utc) - timedelta(days=10)
        db.commit()

    pending = ledger.query_pending()
    assert [r.id for r in pending] == [old_id, new_id]

    stale = ledger.query_pending(older_than=datetime.now(timezone.utc) - timedelta(days=7))
    assert [r.id for r in stale] == [old_id]


def test_mark_processed_claims_once(session_factory):
    ledger = PredictionLedger(session_factory)
    pending_id = ledger.log(_prediction())
    closed_id = ledger.log(_prediction())
    ledger.attach_outcome(closed_id, OutcomeUpdate(outcome=Outcome.WIN, pnl=2.0, days_held=1))

    assert ledger.mark_processed(pending_id) is False
    assert [r.id for r in ledger.query_closed_unprocessed()] == [closed_id]
    assert ledger.mark_processed(closed_id) is True
    assert ledger.mark_processed(closed_id) is False
    assert ledger.query_closed_unprocessed() == []


def test_malformed_payloads_surface_as_none(session_factory):
    ledger = PredictionLedger(session_factory)
    prediction_id = ledger.log(_prediction())
    with session_factory() as db:
        db.get(PredictionLedgerEntry, prediction_id).agent_signals = ["not", "a", "map"]
        db.commit()

    assert ledger.get(prediction_id).agent_signals is None


def test_unknown_stored_outcome_reads_as_none(session_factory):
    ledger = PredictionLedger(session_factory)
    prediction_id = ledger.log(_prediction())
    with session_factory() as db:
        db.get(PredictionLedgerEntry, prediction_id).outcome = "EXPIRED"
        db.commit()

    record = ledger.get(prediction_id)
    assert record.outcome is None
    assert record.raw_outcome == "EXPIRED"
    assert [r.id for r in ledger.query_closed_unprocessed()] == [prediction_id]
