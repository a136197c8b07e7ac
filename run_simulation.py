#!/usr/bin/env python3
"""
Run Trading Simulation
======================
Main entry point for the trading simulation core.

Usage:
    python run_simulation.py --backtest data/BTCUSDT.csv        # Backtest a CSV
    python run_simulation.py --replay data/BTCUSDT.csv          # Replay through the live engine
    python run_simulation.py --backtest data.csv --plot eq.png  # Save the equity curve
    python run_simulation.py --show-config                      # Print configuration
"""

import argparse
import logging
import sys
import signal
from datetime import datetime
from pathlib import Path

from src.simcore.alert_store import JsonFileAlertStore
from src.simcore.audit_logger import AuditLogger
from src.simcore.backtester import Backtester
from src.simcore.notifications import LoggingNotificationSink
from src.simcore.sim_config import SimConfig
from src.simcore.simulation_engine import SimulationEngine
from src.simcore.tick_feed import ReplayFeed


def setup_logging(verbose: bool = False, log_dir: str = 'logs/simulation'):
    """Configure logging"""
    level = logging.DEBUG if verbose else logging.INFO

    # Create logs directory
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    # Log file
    log_file = log_path / f"simulation_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"

    # Configure handlers
    handlers = [
        logging.StreamHandler(sys.stdout),
        logging.FileHandler(log_file)
    ]

    logging.basicConfig(
        level=level,
        format='%(asctime)s [%(levelname)s] %(message)s',
        datefmt='%H:%M:%S',
        handlers=handlers
    )

    return log_file


def run_backtest(config: SimConfig, csv_path: str, symbol: str, plot_path: str = None) -> int:
    backtester = Backtester(config)

    # Ctrl+C stops after the current bar
    signal.signal(signal.SIGINT, lambda signum, frame: backtester.stop())

    result = backtester.run(csv_path, symbol=symbol)
    result.display_summary()

    if len(result.trades):
        print(result.get_trade_log()[['symbol', 'direction', 'entry_price', 'exit_price',
                                      'quantity', 'pnl', 'exit_reason']].to_string(index=False))

    if plot_path:
        result.plot_equity_curve(plot_path)
        print(f"\n   Equity curve saved: {plot_path}")
    return 0


def run_replay(config: SimConfig, csv_path: str, symbol: str) -> int:
    feed = ReplayFeed(csv_path, symbol=symbol)
    config.symbols = feed.symbols

    engine = SimulationEngine(
        config,
        store=JsonFileAlertStore(config.alert_store_path),
        sink=LoggingNotificationSink(),
        audit=AuditLogger(config)
    )

    try:
        engine.run(feed)
    except KeyboardInterrupt:
        print("\n\nShutting down...")
    finally:
        engine.stop()

    engine.display_status()
    engine.audit.display_recent()
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="Crypto Trading Simulation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run_simulation.py --backtest data/BTCUSDT.csv --symbol BTCUSDT
  python run_simulation.py --backtest data/BTCUSDT.csv --seed 42 --plot equity.png
  python run_simulation.py --replay data/ticks.csv --verbose
        """
    )

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        '--backtest',
        metavar='CSV',
        help='Backtest OHLCV bars from a CSV file'
    )
    mode.add_argument(
        '--replay',
        metavar='CSV',
        help='Replay OHLCV bars through the live engine'
    )

    parser.add_argument(
        '--symbol',
        help='Symbol for CSV files without a symbol column'
    )

    parser.add_argument(
        '--seed',
        type=int,
        help='Random seed for the execution model'
    )

    parser.add_argument(
        '--capital',
        type=float,
        help='Initial capital (default: config)'
    )

    parser.add_argument(
        '--risk',
        type=float,
        help='Risk per trade %% (e.g. 2.0)'
    )

    parser.add_argument(
        '--plot',
        metavar='PATH',
        help='Save the backtest equity curve to an image file'
    )

    parser.add_argument(
        '--show-config',
        action='store_true',
        help='Print the configuration and exit'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable debug logging'
    )

    args = parser.parse_args()

    # Create config
    config = SimConfig()
    if args.seed is not None:
        config.seed = args.seed
    if args.capital is not None:
        config.initial_capital = args.capital
    if args.risk is not None:
        # Convert percentage to decimal (2.0% -> 0.02)
        config.risk_per_trade = args.risk / 100.0

    if args.show_config:
        config.display()
        return 0

    if not config.validate():
        return 1

    if not (args.backtest or args.replay):
        parser.print_help()
        return 1

    log_file = setup_logging(args.verbose, config.logs_dir)
    logger = logging.getLogger(__name__)

    # Print banner
    print("\n" + "=" * 60)
    print("  CRYPTO TRADING SIMULATION")
    print("=" * 60)
    print(f"\n   Capital: ${config.initial_capital:,.2f}")
    print(f"   Risk: {config.risk_per_trade:.1%}")
    print(f"   Log: {log_file}")

    try:
        if args.backtest:
            return run_backtest(config, args.backtest, args.symbol, args.plot)
        return run_replay(config, args.replay, args.symbol)

    except Exception as e:
        logger.error(f"Fatal error: {e}")
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
