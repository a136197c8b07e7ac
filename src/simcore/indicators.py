"""
Technical Indicators
====================
Pure numeric indicator functions over price sequences:
- Moving averages (SMA, EMA) and standard deviation
- Momentum (RSI, MACD, Stochastic)
- Volatility bands and ranges (Bollinger Bands, ATR)
- Volume weighted average price (VWAP)
- Support/resistance pivots and trend slope

Every function accepts a list, numpy array or pandas Series and
keeps no state between calls.
"""

from dataclasses import dataclass, asdict
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd


@dataclass
class IndicatorResult:
    """Indicator value with a BUY/SELL/NEUTRAL reading and strength in [0, 1]"""
    value: float
    signal: str = 'NEUTRAL'
    strength: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class MACDResult:
    macd: float
    signal_line: float
    histogram: float
    signal: str = 'NEUTRAL'

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class BollingerBands:
    upper: float
    middle: float
    lower: float
    bandwidth: float
    signal: str = 'NEUTRAL'

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class SupportResistance:
    support: List[float]
    resistance: List[float]

    def to_dict(self) -> dict:
        return asdict(self)


def _as_series(values: Sequence[float]) -> pd.Series:
    if isinstance(values, pd.Series):
        return values.astype(float).reset_index(drop=True)
    return pd.Series(np.asarray(values, dtype=float))


# =========================================================================
# MOVING AVERAGES
# =========================================================================

def sma(values: Sequence[float], period: int = None) -> float:
    """
    Simple moving average of the last `period` values.

    Uses every value when period is None or exceeds the data length.
    Returns 0.0 for empty input.
    """
    arr = np.asarray(values, dtype=float)
    if arr.size == 0:
        return 0.0
    if period is not None and 0 < period < arr.size:
        arr = arr[-period:]
    return float(arr.mean())


def ema(values: Sequence[float], period: int) -> float:
    """
    Exponential moving average.

    Seeded with the first value, multiplier k = 2 / (period + 1).

    Args:
        values: Price sequence, oldest first
        period: EMA span

    Returns:
        Latest EMA value (0.0 for empty input)
    """
    series = _as_series(values)
    if series.empty:
        return 0.0
    return float(series.ewm(span=period, adjust=False).mean().iloc[-1])


def ema_series(values: Sequence[float], period: int) -> pd.Series:
    """Full EMA series, same seeding as ema()"""
    return _as_series(values).ewm(span=period, adjust=False).mean()


def standard_deviation(values: Sequence[float], period: int = None) -> float:
    """Population standard deviation of the last `period` values (all if None)"""
    arr = np.asarray(values, dtype=float)
    if arr.size == 0:
        return 0.0
    if period is not None and 0 < period < arr.size:
        arr = arr[-period:]
    return float(np.std(arr))


# =========================================================================
# MOMENTUM
# =========================================================================

def rsi(values: Sequence[float], period: int = 14) -> IndicatorResult:
    """
    Relative Strength Index.

    RSI = 100 - (100 / (1 + RS)) where RS = EMA(gains) / EMA(losses).
    Below 30 reads oversold (BUY), above 70 overbought (SELL).

    Args:
        values: Price sequence, oldest first
        period: Lookback period

    Returns:
        IndicatorResult; value 50 and NEUTRAL when fewer than period + 1 prices
    """
    series = _as_series(values)
    if len(series) < period + 1:
        return IndicatorResult(value=50.0)

    delta = series.diff().dropna()
    gains = delta.clip(lower=0)
    losses = (-delta).clip(lower=0)

    avg_gain = float(gains.ewm(span=period, adjust=False).mean().iloc[-1])
    avg_loss = float(losses.ewm(span=period, adjust=False).mean().iloc[-1])

    if avg_gain == 0 and avg_loss == 0:
        return IndicatorResult(value=50.0)

    rs = avg_gain / max(avg_loss, 0.001)
    value = 100 - (100 / (1 + rs))

    if value < 30:
        signal = 'BUY'
    elif value > 70:
        signal = 'SELL'
    else:
        signal = 'NEUTRAL'

    return IndicatorResult(value=value, signal=signal, strength=min(abs(value - 50) / 50, 1.0))


def macd(
    values: Sequence[float],
    fast_period: int = 12,
    slow_period: int = 26,
    signal_period: int = 9
) -> MACDResult:
    """
    Moving Average Convergence Divergence.

    MACD line = EMA(fast) - EMA(slow); signal line = EMA(MACD, signal_period).
    A positive histogram reads BUY, a negative one SELL.
    """
    series = _as_series(values)
    if series.empty:
        return MACDResult(macd=0.0, signal_line=0.0, histogram=0.0)

    macd_line = ema_series(series, fast_period) - ema_series(series, slow_period)
    signal_line = macd_line.ewm(span=signal_period, adjust=False).mean()
    histogram = macd_line - signal_line

    hist = float(histogram.iloc[-1])
    if len(series) < slow_period:
        signal = 'NEUTRAL'
    elif hist > 0:
        signal = 'BUY'
    elif hist < 0:
        signal = 'SELL'
    else:
        signal = 'NEUTRAL'

    return MACDResult(
        macd=float(macd_line.iloc[-1]),
        signal_line=float(signal_line.iloc[-1]),
        histogram=hist,
        signal=signal
    )


def stochastic(
    closes: Sequence[float],
    highs: Sequence[float] = None,
    lows: Sequence[float] = None,
    period: int = 14
) -> IndicatorResult:
    """
    Stochastic oscillator %K over the last `period` bars.

    Closes stand in for highs/lows when those are not given.
    Below 20 reads BUY, above 80 SELL.
    """
    close = np.asarray(closes, dtype=float)
    high = np.asarray(highs if highs is not None else closes, dtype=float)
    low = np.asarray(lows if lows is not None else closes, dtype=float)

    if close.size < period:
        return IndicatorResult(value=50.0)

    highest = high[-period:].max()
    lowest = low[-period:].min()
    if highest == lowest:
        return IndicatorResult(value=50.0)

    k = (close[-1] - lowest) / (highest - lowest) * 100
    if k < 20:
        signal = 'BUY'
    elif k > 80:
        signal = 'SELL'
    else:
        signal = 'NEUTRAL'

    return IndicatorResult(value=float(k), signal=signal, strength=min(abs(k - 50) / 50, 1.0))


# =========================================================================
# VOLATILITY
# =========================================================================

def bollinger_bands(values: Sequence[float], period: int = 20, num_std: float = 2.0) -> BollingerBands:
    """
    Bollinger Bands around an SMA.

    Price at or below the lower band reads BUY, at or above the upper band SELL.
    """
    arr = np.asarray(values, dtype=float)
    if arr.size == 0:
        return BollingerBands(upper=0.0, middle=0.0, lower=0.0, bandwidth=0.0)

    window = arr[-period:] if arr.size > period else arr
    middle = float(window.mean())
    std = float(window.std())
    upper = middle + num_std * std
    lower = middle - num_std * std
    bandwidth = (upper - lower) / middle if middle else 0.0

    price = arr[-1]
    if std > 0 and price <= lower:
        signal = 'BUY'
    elif std > 0 and price >= upper:
        signal = 'SELL'
    else:
        signal = 'NEUTRAL'

    return BollingerBands(upper=upper, middle=middle, lower=lower, bandwidth=bandwidth, signal=signal)


def atr(
    highs: Sequence[float],
    lows: Sequence[float],
    closes: Sequence[float],
    period: int = 14
) -> float:
    """
    Average True Range.

    True Range = max(high - low, |high - prev close|, |low - prev close|);
    ATR is the mean of the last `period` true ranges.

    Returns:
        Current ATR, or the mean high-low range when data is too short
    """
    high = np.asarray(highs, dtype=float)
    low = np.asarray(lows, dtype=float)
    close = np.asarray(closes, dtype=float)

    if close.size < 2:
        return float((high - low).mean()) if high.size else 0.0

    tr1 = high[1:] - low[1:]
    tr2 = np.abs(high[1:] - close[:-1])
    tr3 = np.abs(low[1:] - close[:-1])
    true_range = np.maximum(tr1, np.maximum(tr2, tr3))

    if len(true_range) >= period:
        return float(np.mean(true_range[-period:]))
    return float(np.mean(true_range))


# =========================================================================
# VOLUME
# =========================================================================

def vwap(prices: Sequence[float], volumes: Sequence[float]) -> float:
    """Volume weighted average price; falls back to the plain mean with zero volume"""
    p = np.asarray(prices, dtype=float)
    v = np.asarray(volumes, dtype=float)
    if p.size == 0:
        return 0.0
    if p.size != v.size:
        raise ValueError("prices and volumes must have the same length")
    total_volume = v.sum()
    if total_volume <= 0:
        return float(p.mean())
    return float((p * v).sum() / total_volume)


# =========================================================================
# STRUCTURE
# =========================================================================

def percentile_levels(values: Sequence[float]) -> Tuple[List[float], List[float]]:
    """
    Support and resistance from the sorted price history.

    support = [lowest, 25th percentile from the bottom]
    resistance = [highest, 25th percentile from the top]
    """
    ascending = sorted(float(v) for v in values)
    if not ascending:
        return [], []
    descending = ascending[::-1]
    idx = int(len(ascending) * 0.25)
    return [ascending[0], ascending[idx]], [descending[0], descending[idx]]


def detect_support_resistance(values: Sequence[float], lookback: int = 20) -> SupportResistance:
    """
    Pivot-based support/resistance.

    A point is a support pivot when it is the minimum of the window
    `lookback // 2` bars on each side; resistance likewise for maxima.
    Levels are returned nearest-first, at most three each.
    """
    arr = np.asarray(values, dtype=float)
    if arr.size == 0:
        return SupportResistance(support=[], resistance=[])

    half = max(lookback // 2, 1)
    supports, resistances = [], []
    for i in range(half, arr.size - half):
        window = arr[i - half:i + half + 1]
        if arr[i] == window.min():
            supports.append(float(arr[i]))
        if arr[i] == window.max():
            resistances.append(float(arr[i]))

    current = arr[-1]
    below = sorted({s for s in supports if s <= current}, reverse=True)[:3]
    above = sorted({r for r in resistances if r >= current})[:3]
    return SupportResistance(support=below, resistance=above)


def trend_slope(values: Sequence[float], period: Optional[int] = None) -> Tuple[float, float]:
    """
    Least-squares slope of the last `period` values and its r-squared.

    Returns:
        Tuple of (slope per sample, r_squared)
    """
    arr = np.asarray(values, dtype=float)
    if period is not None and 0 < period < arr.size:
        arr = arr[-period:]
    if arr.size < 2:
        return 0.0, 0.0

    x = np.arange(arr.size, dtype=float)
    slope, intercept = np.polyfit(x, arr, 1)
    fitted = slope * x + intercept
    ss_res = float(((arr - fitted) ** 2).sum())
    ss_tot = float(((arr - arr.mean()) ** 2).sum())
    r_squared = 1 - ss_res / ss_tot if ss_tot > 0 else 0.0
    return float(slope), r_squared


def trend_strength(values: Sequence[float], period: int = 20) -> IndicatorResult:
    """
    Trend strength = |slope| x r-squared, with slope normalized by the mean price.

    Positive slope reads BUY, negative SELL.
    """
    arr = np.asarray(values, dtype=float)
    slope, r_squared = trend_slope(arr, period)
    mean_price = float(arr[-period:].mean()) if arr.size else 0.0
    normalized = slope / mean_price * 100 if mean_price else 0.0
    strength = abs(normalized) * r_squared

    if slope > 0:
        signal = 'BUY'
    elif slope < 0:
        signal = 'SELL'
    else:
        signal = 'NEUTRAL'

    return IndicatorResult(value=normalized, signal=signal, strength=min(strength, 1.0))
