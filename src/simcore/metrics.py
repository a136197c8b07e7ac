"""
Performance Metrics
===================
Statistics over closed trades and an equity curve:
- Return, win rate, profit factor, expectancy
- Sharpe and Sortino ratios over per-trade returns
- Max drawdown and drawdown curve
- Value at risk, expected shortfall, Kelly fraction
"""

from typing import Dict, List, Sequence

import numpy as np
import pandas as pd

from .portfolio_ledger import Trade

TRADING_DAYS = 252


def drawdown_curve(equity: Sequence[float]) -> pd.Series:
    """Percent below the running peak at each point (0 at new highs, negative below)"""
    series = pd.Series(np.asarray(equity, dtype=float))
    if series.empty:
        return series
    cummax = series.cummax()
    return (series - cummax) / cummax * 100


def max_drawdown(equity: Sequence[float]) -> float:
    """Largest peak-to-trough decline, as a positive percentage"""
    curve = drawdown_curve(equity)
    if curve.empty:
        return 0.0
    return float(-curve.min())


def sharpe_ratio(returns: Sequence[float], periods: int = TRADING_DAYS) -> float:
    """mean / stddev of returns, annualized by sqrt(periods); 0.0 when undefined"""
    arr = np.asarray(returns, dtype=float)
    if arr.size < 2:
        return 0.0
    std = arr.std(ddof=1)
    if std == 0:
        return 0.0
    return float(arr.mean() / std * np.sqrt(periods))


def sortino_ratio(returns: Sequence[float], periods: int = TRADING_DAYS) -> float:
    """Like Sharpe, but divides by the downside deviation only"""
    arr = np.asarray(returns, dtype=float)
    if arr.size < 2:
        return 0.0
    downside = np.minimum(arr, 0.0)
    downside_dev = np.sqrt((downside ** 2).mean())
    if downside_dev == 0:
        return 0.0
    return float(arr.mean() / downside_dev * np.sqrt(periods))


def value_at_risk(returns: Sequence[float], confidence: float = 0.95) -> float:
    """Historical VaR: loss not exceeded with the given confidence (positive number)"""
    arr = np.asarray(returns, dtype=float)
    if arr.size == 0:
        return 0.0
    return float(-np.percentile(arr, (1 - confidence) * 100))


def expected_shortfall(returns: Sequence[float], confidence: float = 0.95) -> float:
    """Mean loss beyond the VaR threshold (positive number)"""
    arr = np.asarray(returns, dtype=float)
    if arr.size == 0:
        return 0.0
    threshold = np.percentile(arr, (1 - confidence) * 100)
    tail = arr[arr <= threshold]
    return float(-tail.mean()) if tail.size else 0.0


def kelly_fraction(win_rate: float, avg_win: float, avg_loss: float) -> float:
    """Kelly criterion f = W - (1 - W) / R, clipped to [0, 1]"""
    if avg_loss <= 0 or avg_win <= 0:
        return 0.0
    ratio = avg_win / avg_loss
    return float(min(max(win_rate - (1 - win_rate) / ratio, 0.0), 1.0))


def compute_metrics(trades: List[Trade], equity: Sequence[float], initial_capital: float) -> Dict[str, float]:
    """
    Summary statistics for a simulation run.

    Args:
        trades: Closed trades, oldest first
        equity: Equity curve values, one per input point
        initial_capital: Starting capital

    Returns:
        Dict of metrics; percentages are in percent, win_rate is a fraction
    """
    equity = list(equity)
    final_value = equity[-1] if equity else initial_capital
    total_return = (final_value - initial_capital) / initial_capital * 100 if initial_capital else 0.0

    pnls = np.array([t.pnl for t in trades], dtype=float)
    returns = np.array([t.pnl_percent / 100 for t in trades], dtype=float)

    wins = pnls[pnls > 0]
    losses = pnls[pnls <= 0]
    total = len(trades)
    win_rate = len(wins) / total if total else 0.0
    avg_win = float(wins.mean()) if wins.size else 0.0
    avg_loss = float(-losses.mean()) if losses.size else 0.0

    gross_profit = float(wins.sum())
    gross_loss = float(-losses.sum())
    if gross_loss > 0:
        profit_factor = gross_profit / gross_loss
    else:
        profit_factor = float('inf') if gross_profit > 0 else 0.0

    equity_returns = pd.Series(equity, dtype=float).pct_change().dropna()

    return {
        'initial_capital': initial_capital,
        'final_value': final_value,
        'total_return': total_return,
        'total_trades': total,
        'winning_trades': int(len(wins)),
        'losing_trades': int(len(losses)),
        'win_rate': win_rate,
        'avg_win': avg_win,
        'avg_loss': avg_loss,
        'profit_factor': profit_factor,
        'expectancy': win_rate * avg_win - (1 - win_rate) * avg_loss,
        'sharpe_ratio': sharpe_ratio(returns),
        'sortino_ratio': sortino_ratio(returns),
        'max_drawdown': max_drawdown(equity),
        'volatility': float(equity_returns.std(ddof=1) * np.sqrt(TRADING_DAYS) * 100) if len(equity_returns) > 1 else 0.0,
        'value_at_risk': value_at_risk(returns),
        'expected_shortfall': expected_shortfall(returns),
        'kelly_fraction': kelly_fraction(win_rate, avg_win, avg_loss),
        'total_fees': float(sum(t.fee for t in trades)),
    }
