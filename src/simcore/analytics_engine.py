"""
Analytics Engine
================
Rolling per-symbol price analysis:
- Bounded FIFO price/volume history per symbol
- Price change, volatility, trend classification
- Percentile support/resistance levels
- RSI, moving average and volume change for the decision engine
"""

import logging
from collections import deque
from dataclasses import dataclass, asdict, field
from datetime import datetime
from typing import Deque, Dict, List, Optional

import numpy as np

from . import indicators
from .sim_config import SimConfig
from .symbol_locks import SymbolLocks
from .tick_feed import PriceTick

logger = logging.getLogger(__name__)

TREND_WINDOW = 5
TREND_THRESHOLD = 0.02
RSI_PERIOD = 14
MA_PERIOD = 20


@dataclass
class PriceAnalysis:
    """Derived view of one symbol, recomputed on every tick"""
    symbol: str
    current_price: float
    price_change: float
    price_change_percent: float
    volatility: float
    support_levels: List[float] = field(default_factory=list)
    resistance_levels: List[float] = field(default_factory=list)
    trend: str = 'neutral'
    rsi: Optional[float] = None
    moving_average: float = 0.0
    volume_change: Optional[float] = None
    sample_count: int = 0
    timestamp: Optional[datetime] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data['timestamp'] = self.timestamp.isoformat() if self.timestamp else None
        return data


def classify_trend(prices: List[float]) -> str:
    """
    Compare the first and last of the most recent samples.

    More than +2% is bullish, less than -2% bearish. Needs at
    least TREND_WINDOW samples, else neutral.
    """
    if len(prices) < TREND_WINDOW:
        return 'neutral'
    recent = prices[-TREND_WINDOW:]
    first, last = recent[0], recent[-1]
    if last > first * (1 + TREND_THRESHOLD):
        return 'bullish'
    if last < first * (1 - TREND_THRESHOLD):
        return 'bearish'
    return 'neutral'


def analyze_history(
    symbol: str,
    prices: List[float],
    volumes: List[float] = None,
    timestamp: datetime = None
) -> Optional[PriceAnalysis]:
    """
    Build a PriceAnalysis from a price history, oldest first.

    Deterministic and side-effect free.

    Returns:
        PriceAnalysis, or None with fewer than two prices
    """
    if len(prices) < 2:
        return None

    current = prices[-1]
    previous = prices[-2]
    change = current - previous
    change_pct = change / previous * 100 if previous else 0.0

    support, resistance = indicators.percentile_levels(prices)

    rsi_value = None
    if len(prices) > RSI_PERIOD:
        rsi_value = indicators.rsi(prices, RSI_PERIOD).value

    volume_change = None
    if volumes and len(volumes) >= 2:
        baseline = float(np.mean(volumes[:-1]))
        if baseline > 0:
            volume_change = volumes[-1] / baseline

    return PriceAnalysis(
        symbol=symbol,
        current_price=current,
        price_change=change,
        price_change_percent=change_pct,
        volatility=indicators.standard_deviation(prices),
        support_levels=support,
        resistance_levels=resistance,
        trend=classify_trend(prices),
        rsi=rsi_value,
        moving_average=indicators.sma(prices, MA_PERIOD),
        volume_change=volume_change,
        sample_count=len(prices),
        timestamp=timestamp
    )


class AnalyticsEngine:
    """
    Owns the rolling history buffers and the analysis cache.

    Features:
    - Fixed-capacity history per symbol, oldest evicted first
    - Analysis recomputed explicitly on every update()
    - Per-symbol serialization of buffer read-modify-write
    """

    def __init__(self, config: SimConfig = None, symbol_locks: SymbolLocks = None):
        """
        Initialize AnalyticsEngine.

        Args:
            config: SimConfig (history_window_size sets buffer capacity)
            symbol_locks: Shared lock registry (a private one if None)
        """
        self.config = config or SimConfig()
        self.window_size = self.config.history_window_size
        self._locks = symbol_locks or SymbolLocks()

        self._prices: Dict[str, Deque[float]] = {}
        self._volumes: Dict[str, Deque[float]] = {}
        self._analyses: Dict[str, PriceAnalysis] = {}

        logger.info(f"[OK] AnalyticsEngine initialized (window: {self.window_size})")

    def update(self, tick: PriceTick) -> Optional[PriceAnalysis]:
        """
        Append a tick to its symbol's history and recompute the analysis.

        Args:
            tick: Validated PriceTick

        Returns:
            Fresh PriceAnalysis, or None while fewer than two prices are held
        """
        with self._locks(tick.symbol):
            prices = self._prices.setdefault(tick.symbol, deque(maxlen=self.window_size))
            volumes = self._volumes.setdefault(tick.symbol, deque(maxlen=self.window_size))
            prices.append(float(tick.price))
            volumes.append(float(tick.volume))

            analysis = analyze_history(tick.symbol, list(prices), list(volumes), tick.timestamp)
            if analysis is not None:
                self._analyses[tick.symbol] = analysis
            return analysis

    def get_analysis(self, symbol: str) -> Optional[PriceAnalysis]:
        """Latest analysis for a symbol, or None"""
        return self._analyses.get(symbol)

    def get_all(self) -> List[PriceAnalysis]:
        """Latest analysis for every symbol, ordered by symbol"""
        return [self._analyses[s] for s in sorted(self._analyses)]

    def get_history(self, symbol: str) -> List[float]:
        with self._locks(symbol):
            return list(self._prices.get(symbol, ()))

    def get_volumes(self, symbol: str) -> List[float]:
        with self._locks(symbol):
            return list(self._volumes.get(symbol, ()))

    def get_latest_price(self, symbol: str) -> Optional[float]:
        history = self._prices.get(symbol)
        return history[-1] if history else None

    def clear(self, symbol: str = None):
        """Drop history for one symbol, or for all when symbol is None"""
        if symbol is None:
            for sym in list(self._prices):
                self.clear(sym)
            return
        with self._locks(symbol):
            self._prices.pop(symbol, None)
            self._volumes.pop(symbol, None)
            self._analyses.pop(symbol, None)

    def display_analyses(self):
        """Print the current analysis table"""
        analyses = self.get_all()
        if not analyses:
            print("No analyses yet")
            return

        print("\n" + "="*80)
        print("MARKET ANALYSIS")
        print("="*80)
        print(f"{'Symbol':<10} {'Price':>12} {'Change %':>9} {'Vol':>10} {'RSI':>6} {'Trend':<8}")
        print("-"*80)
        for a in analyses:
            rsi_str = f"{a.rsi:.1f}" if a.rsi is not None else "-"
            print(
                f"{a.symbol:<10} {a.current_price:>12,.2f} {a.price_change_percent:>+8.2f}% "
                f"{a.volatility:>10.2f} {rsi_str:>6} {a.trend:<8}"
            )
        print("="*80 + "\n")
