import argparse
import asyncio
import json

import pytest

import main
from src.consensus_engine.ledger.prediction_ledger import PredictionLedger
from src.consensus_engine.models.ledger_models import Outcome, OutcomeUpdate, PredictionInput


@pytest.fixture
def cli_db(session_factory, monkeypatch):
    monkeypatch.setattr(main, "get_session_factory", lambda: session_factory)
    monkeypatch.setattr(main, "init_db", lambda engine=None: None)
    return session_factory


def test_parse_signal():
    assert main.parse_signal("fsi=80") == ("fsi", 80.0)
    assert main.parse_signal("gamma=") == ("gamma", None)
    with pytest.raises(argparse.ArgumentTypeError):
        main.parse_signal("fsi")
    with pytest.raises(argparse.ArgumentTypeError):
        main.parse_signal("fsi=high")


def test_score_command_prints_result(cli_db, capsys):
    code = asyncio.run(main.main(["score", "aapl", "--signal", "fsi=80", "--signal", "insider=60", "--regime", "RISK_ON"]))

    out = json.loads(capsys.readouterr().out)
    assert code == 0
    assert out["ticker"] == "AAPL"
    assert out["active_engine_count"] == 2
    assert out["multipliers_applied"]["regime"] == 1.1


def test_sweep_command_learns_from_closed_predictions(cli_db, capsys):
    ledger = PredictionLedger(cli_db)
    prediction_id = ledger.log(PredictionInput(
        ticker="AAPL",
        confidence=70,
        entry_price=100.0,
        stop_loss=95.0,
        take_profits=[110.0],
        agent_signals={"fsi": 80},
    ))
    ledger.attach_outcome(prediction_id, OutcomeUpdate(outcome=Outcome.WIN, pnl=10.0, days_held=4))

    code = asyncio.run(main.main(["sweep"]))

    report = json.loads(capsys.readouterr().out)
    assert code == 0
    assert report["processed"] == 1
    assert report["deltas_applied"] == {"fsi": 0.05}
