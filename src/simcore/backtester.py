"""
Backtester
==========
Replays historical OHLCV bars through the live tick pipeline:
- Strict timestamp order, one tick per bar at the close
- Same Analytics -> Decision -> Risk -> Execution -> Ledger chain
- Equity and drawdown curves with one sample per input bar
- Performance metrics (return, win rate, profit factor, Sharpe, drawdown)
- Deterministic for a fixed seed; stoppable between bars
"""

import logging
import threading
from dataclasses import dataclass, asdict, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Union

import numpy as np
import pandas as pd

from .analytics_engine import AnalyticsEngine
from .audit_logger import AuditLogger
from .decision_engine import DecisionEngine, TradingDecision
from .errors import ValidationError
from .execution_simulator import ExecutionSimulator
from .metrics import compute_metrics, drawdown_curve
from .portfolio_ledger import PortfolioLedger, Trade
from .risk_manager import RiskManager
from .sim_config import SimConfig
from .tick_feed import PriceTick, load_ohlcv
from .tick_pipeline import StrategyContext, TickPipeline

logger = logging.getLogger(__name__)


@dataclass
class EquityPoint:
    timestamp: datetime
    equity: float
    drawdown: float = 0.0

    def to_dict(self) -> dict:
        data = asdict(self)
        data['timestamp'] = self.timestamp.isoformat()
        return data


@dataclass
class SimulationResult:
    """Outcome of one backtest run"""
    metrics: Dict[str, float]
    trades: List[Trade] = field(default_factory=list)
    equity_curve: List[EquityPoint] = field(default_factory=list)
    bars_processed: int = 0
    stopped: bool = False

    @property
    def total_return(self) -> float:
        return self.metrics.get('total_return', 0.0)

    @property
    def final_value(self) -> float:
        return self.metrics.get('final_value', 0.0)

    def summary(self) -> pd.DataFrame:
        """Metrics as a one-row DataFrame"""
        return pd.DataFrame([self.metrics])

    def to_frame(self) -> pd.DataFrame:
        """Equity and drawdown curves indexed by timestamp"""
        df = pd.DataFrame([asdict(p) for p in self.equity_curve])
        if not df.empty:
            df = df.set_index('timestamp')
        return df

    def get_trade_log(self) -> pd.DataFrame:
        return pd.DataFrame([t.to_dict() for t in self.trades])

    def display_summary(self):
        """Print the performance summary"""
        m = self.metrics
        print("\n" + "="*70)
        print("BACKTEST RESULTS")
        print("="*70)
        print(f"Bars Processed:    {self.bars_processed}{' (stopped early)' if self.stopped else ''}")
        print(f"Initial Capital:   ${m['initial_capital']:,.2f}")
        print(f"Final Value:       ${m['final_value']:,.2f}")
        print(f"Total Return:      {m['total_return']:+.2f}%")
        print(f"Max Drawdown:      {m['max_drawdown']:.2f}%")
        print(f"Sharpe Ratio:      {m['sharpe_ratio']:.2f}")
        print(f"Sortino Ratio:     {m['sortino_ratio']:.2f}")
        print("-"*70)
        print(f"Total Trades:      {m['total_trades']}")
        print(f"Win Rate:          {m['win_rate']:.1%}")
        print(f"Profit Factor:     {m['profit_factor']:.2f}")
        print(f"Avg Win / Loss:    ${m['avg_win']:,.2f} / ${m['avg_loss']:,.2f}")
        print(f"Expectancy:        ${m['expectancy']:,.2f}")
        print(f"Total Fees:        ${m['total_fees']:,.2f}")
        print("="*70 + "\n")

    def plot_equity_curve(self, path: str = None):
        """
        Plot equity and drawdown curves (requires matplotlib)

        Args:
            path: Save the figure here instead of returning it open
        """
        import matplotlib
        if path:
            matplotlib.use('Agg')
        import matplotlib.pyplot as plt

        df = self.to_frame()
        fig, (ax1, ax2) = plt.subplots(2, 1, figsize=(12, 8), sharex=True,
                                       gridspec_kw={'height_ratios': [3, 1]})
        ax1.plot(df.index, df['equity'], linewidth=2)
        ax1.set_title('Strategy Equity Curve')
        ax1.set_ylabel('Portfolio Value ($)')
        ax1.grid(True, alpha=0.3)
        ax2.fill_between(df.index, df['drawdown'], 0, color='red', alpha=0.3)
        ax2.set_ylabel('Drawdown (%)')
        ax2.set_xlabel('Date')
        ax2.grid(True, alpha=0.3)
        fig.tight_layout()

        if path:
            fig.savefig(path)
            plt.close(fig)
            logger.info(f"Equity curve saved to {path}")
            return None
        return fig


HistoricalSeries = Union[pd.DataFrame, List[dict], Dict[str, Union[pd.DataFrame, List[dict]]], str]


def prepare_series(historical_series: HistoricalSeries, symbol: str = None) -> pd.DataFrame:
    """Normalize one or many OHLCV series into one stably time-ordered frame"""
    if isinstance(historical_series, dict):
        frames = [load_ohlcv(data, symbol=sym) for sym, data in historical_series.items()]
        bars = pd.concat(frames, ignore_index=True) if frames else pd.DataFrame()
        if bars.empty:
            return bars
        return bars.sort_values('timestamp', kind='mergesort').reset_index(drop=True)
    return load_ohlcv(historical_series, symbol=symbol)


class Backtester:
    """
    Closed-loop historical replay.

    Features:
    - Fresh ledger, analytics, risk and execution state per run
    - No look-ahead: the strategy only sees data up to the current bar
    - Daily loss tracking reset whenever the bar date changes
    - Open positions closed at the last bar
    """

    def __init__(self, config: SimConfig = None, audit: AuditLogger = None):
        """
        Initialize Backtester.

        Args:
            config: Default SimConfig for runs
            audit: Audit trail, rows stamped with bar time (none if None)
        """
        self.config = config or SimConfig()
        self.audit = audit
        self._stop_event = threading.Event()
        self.ledger: Optional[PortfolioLedger] = None
        logger.info(f"[OK] Backtester initialized with ${self.config.initial_capital:,.2f} capital")

    def stop(self):
        """Halt the current run after the bar in progress"""
        logger.info("Backtest stop requested...")
        self._stop_event.set()

    def run(
        self,
        historical_series: HistoricalSeries,
        strategy_fn: Callable[[StrategyContext], TradingDecision] = None,
        config: SimConfig = None,
        symbol: str = None
    ) -> SimulationResult:
        """
        Replay a historical series.

        Args:
            historical_series: OHLCV DataFrame, list of bar dicts, CSV path,
                or a {symbol: series} mapping
            strategy_fn: Maps a StrategyContext to a TradingDecision
                (DecisionEngine strategy if None)
            config: Overrides the backtester's config for this run
            symbol: Symbol for single-series input without a 'symbol' column

        Returns:
            SimulationResult
        """
        cfg = config or self.config
        self._stop_event.clear()

        bars = prepare_series(historical_series, symbol=symbol)

        ledger = PortfolioLedger(cfg)
        analytics = AnalyticsEngine(cfg)
        risk = RiskManager(cfg)
        execution = ExecutionSimulator(cfg, rng=np.random.default_rng(cfg.seed))
        if strategy_fn is None:
            strategy_fn = DecisionEngine(analytics, cfg).as_strategy()
        pipeline = TickPipeline(cfg, ledger, analytics, risk, execution, strategy_fn, audit=self.audit)
        self.ledger = ledger

        logger.info(f"Backtest started: {len(bars)} bars")

        timestamps: List[datetime] = []
        equity: List[float] = []
        last_day = None
        stopped = False

        for row in bars.itertuples(index=False):
            if self._stop_event.is_set():
                stopped = True
                logger.info(f"Backtest stopped after {len(equity)} bars")
                break

            timestamp = row.timestamp.to_pydatetime()
            day = timestamp.date()
            if last_day is not None and day != last_day:
                risk.on_day_boundary()
            last_day = day

            tick = PriceTick(symbol=row.symbol, price=float(row.close),
                             volume=float(row.volume), timestamp=timestamp)
            try:
                pipeline.handle_tick(tick)
            except ValidationError as e:
                logger.warning(f"Skipping bar: {e}")

            timestamps.append(timestamp)
            equity.append(ledger.net_liquidation_value())

        if timestamps and ledger.open_position_count() > 0:
            pipeline.close_all('END_OF_DATA', timestamps[-1])
            equity[-1] = ledger.net_liquidation_value()

        drawdowns = drawdown_curve(equity).tolist()
        curve = [EquityPoint(ts, eq, dd) for ts, eq, dd in zip(timestamps, equity, drawdowns)]
        trades = ledger.trades()

        result = SimulationResult(
            metrics=compute_metrics(trades, equity, ledger.initial_cash),
            trades=trades,
            equity_curve=curve,
            bars_processed=len(equity),
            stopped=stopped
        )

        logger.info(
            f"Backtest complete - Return: {result.metrics['total_return']:+.2f}%, "
            f"Trades: {len(trades)}, Sharpe: {result.metrics['sharpe_ratio']:.2f}, "
            f"Max DD: {result.metrics['max_drawdown']:.2f}%"
        )
        return result
