"""
Signal Consensus Engine - command line entry point.

    python main.py score AAPL --signal momentum=80 --signal value=60 --sector Technology
    python main.py sweep

Scheduling (cron, workers) stays outside this process.
"""

import argparse
import asyncio
import logging
import sys
from datetime import date

import colorlog

from config import config
from database import get_session_factory, init_db
from src.consensus_engine.adaptive.drift_monitor import DriftMonitor
from src.consensus_engine.adaptive.feedback_loop import AccuracyFeedbackLoop
from src.consensus_engine.ledger.prediction_ledger import PredictionLedger
from src.consensus_engine.processors.signal_engine import FunctionEngine
from src.consensus_engine.recalibration.context_builder import RecalibrationContextBuilder
from src.consensus_engine.resolution.price_cache import PriceCacheProvider
from src.consensus_engine.resolution.providers import HttpJsonProvider
from src.consensus_engine.resolution.resolution_chain import ProviderRegistry, ResolutionChain
from src.consensus_engine.services.consensus_service import ConsensusService
from src.consensus_engine.state.weight_store import SqlWeightRepository, WeightStore

# Configure colored logging
handler = colorlog.StreamHandler()
handler.setFormatter(colorlog.ColoredFormatter(
    '%(log_color)s%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    log_colors={
        'DEBUG': 'cyan',
        'INFO': 'green',
        'WARNING': 'yellow',
        'ERROR': 'red',
        'CRITICAL': 'red,bg_white',
    }
))
logger = colorlog.getLogger()
if not logger.handlers:
    logger.addHandler(handler)
    logger.setLevel(getattr(logging, config.LOG_LEVEL.upper(), logging.INFO))

VERSION = "0.1.0"


def parse_signal(text: str):
    """`name=value` from the command line; value may be a number or blank for no data."""
    name, sep, value = text.partition("=")
    if not sep or not name.strip():
        raise argparse.ArgumentTypeError(f"expected NAME=VALUE, got '{text}'")
    value = value.strip()
    if not value:
        return name.strip(), None
    try:
        return name.strip(), float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"signal value for '{name}' is not a number: '{value}'")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="consensus-engine", description="Signal consensus and adaptive recalibration")
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    sub = parser.add_subparsers(dest="command", required=True)

    score = sub.add_parser("score", help="Score one or more tickers from supplied signal values")
    score.add_argument("tickers", nargs="+")
    score.add_argument("--signal", action="append", type=parse_signal, default=[], metavar="NAME=VALUE")
    score.add_argument("--sector")
    score.add_argument("--asset-class")
    score.add_argument("--regime", help="Macro regime label, e.g. RISK_ON, RISK_OFF, CRISIS")
    score.add_argument("--volatility-regime", help="LOW, NORMAL, HIGH or EXTREME")
    score.add_argument("--vix", type=float)
    score.add_argument("--fomc-week", action="store_true")
    score.add_argument("--as-of", type=date.fromisoformat)

    sub.add_parser("sweep", help="Run one accuracy feedback sweep over closed predictions")
    return parser


def build_service(session_factory, signal_values) -> ConsensusService:
    weight_store = WeightStore(SqlWeightRepository(session_factory))

    registry = ProviderRegistry()
    cache = PriceCacheProvider(session_factory)
    if config.PRICE_PROVIDER_URL:
        registry.register(HttpJsonProvider("http_price", config.PRICE_PROVIDER_URL, config.PRICE_PROVIDER_FIELD))
    registry.register(cache)

    service = ConsensusService(
        weight_store=weight_store,
        resolution_chain=ResolutionChain(registry, cache=cache),
        drift_monitor=DriftMonitor(session_factory),
        ledger=PredictionLedger(session_factory),
    )
    for name, value in signal_values:
        service.register_engine(FunctionEngine(name, lambda ticker, context, v=value: v))
    return service


async def run_score(args, session_factory) -> int:
    service = build_service(session_factory, args.signal)
    context = await asyncio.to_thread(
        RecalibrationContextBuilder(session_factory).build,
        sector=args.sector,
        asset_class=args.asset_class,
        as_of=args.as_of,
        fomc_week=args.fomc_week,
        regime=args.regime,
        volatility_regime=args.volatility_regime,
        vix_level=args.vix,
    )
    results = await service.score_many(args.tickers, {t: context for t in args.tickers})
    for result in results.values():
        print(result.model_dump_json(indent=2))
    return 0 if all(r.failure_reason is None for r in results.values()) else 1


async def run_sweep(session_factory) -> int:
    loop = AccuracyFeedbackLoop(
        PredictionLedger(session_factory),
        WeightStore(SqlWeightRepository(session_factory)),
        DriftMonitor(session_factory),
    )
    report = await loop.run_sweep()
    print(report.model_dump_json(indent=2))
    return 0 if report.failed == 0 else 1


async def bootstrap(session_factory):
    init_db()
    created = await WeightStore(SqlWeightRepository(session_factory)).ensure_defaults(config.DEFAULT_SIGNALS)
    if created:
        logger.info("✅ Seeded %d default signal weights", created)
    await asyncio.to_thread(RecalibrationContextBuilder(session_factory).seed_defaults)


async def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    config.validate()

    session_factory = get_session_factory()
    await bootstrap(session_factory)

    if args.command == "score":
        return await run_score(args, session_factory)
    return await run_sweep(session_factory)


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
