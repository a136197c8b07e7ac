"""
Indicator Tests
===============
Checks the pure indicator functions on small hand-computed series.

Run with pytest or directly:
    python -m src.simcore.test_indicators
"""

import numpy as np
import pandas as pd
import pytest

from src.simcore import indicators


def test_moving_averages():
    """Test 1: SMA window and first-value seeded EMA"""
    print("\n--- Test 1: Moving Averages ---")
    assert indicators.sma([1, 2, 3, 4, 5]) == pytest.approx(3.0)
    assert indicators.sma([1, 2, 3, 4, 5], period=2) == pytest.approx(4.5)
    assert indicators.sma([]) == 0.0

    # k = 2/3: 1 -> 5/3 -> 23/9
    assert indicators.ema([1, 2, 3], period=2) == pytest.approx(23 / 9)
    assert indicators.ema(pd.Series([10.0, 10.0, 10.0]), period=5) == pytest.approx(10.0)
    assert len(indicators.ema_series([1, 2, 3, 4], 3)) == 4

    print("  ✓ Moving averages working")


def test_standard_deviation():
    """Test 2: Population standard deviation"""
    print("\n--- Test 2: Standard Deviation ---")
    assert indicators.standard_deviation([2, 4, 4, 4, 5, 5, 7, 9]) == pytest.approx(2.0)
    assert indicators.standard_deviation([5, 5, 5]) == 0.0
    assert indicators.standard_deviation([1, 100, 2, 4], period=2) == pytest.approx(1.0)

    print("  ✓ Std working")


def test_rsi_readings():
    """Test 3: RSI extremes, flat prices and short input"""
    print("\n--- Test 3: RSI ---")
    rising = list(range(100, 130))
    falling = list(range(130, 100, -1))

    up = indicators.rsi(rising, 14)
    down = indicators.rsi(falling, 14)
    assert up.value > 70 and up.signal == 'SELL'
    assert down.value < 30 and down.signal == 'BUY'
    assert 0 <= down.value <= up.value <= 100

    assert indicators.rsi([100.0] * 30, 14).value == 50.0
    short = indicators.rsi([1, 2, 3], 14)
    assert short.value == 50.0 and short.signal == 'NEUTRAL'

    print(f"  Rising RSI: {up.value:.1f}, falling RSI: {down.value:.1f}")
    print("  ✓ RSI working")


def test_macd_and_stochastic():
    """Test 4: MACD sign follows the trend, stochastic in [0, 100]"""
    print("\n--- Test 4: MACD / Stochastic ---")
    rising = np.linspace(100, 150, 60)

    result = indicators.macd(rising)
    assert result.macd > 0
    assert result.signal in ('BUY', 'SELL', 'NEUTRAL')
    assert indicators.macd([1, 2, 3]).signal == 'NEUTRAL'

    k = indicators.stochastic(rising, period=14)
    assert k.value == pytest.approx(100.0)
    assert k.signal == 'SELL'
    assert indicators.stochastic([5.0] * 20).value == 50.0

    print("  ✓ MACD / Stochastic working")


def test_bollinger_and_atr():
    """Test 5: Bands bracket the mean; ATR on a constant range"""
    print("\n--- Test 5: Bollinger / ATR ---")
    bands = indicators.bollinger_bands([2, 4, 4, 4, 5, 5, 7, 9], period=20, num_std=2.0)
    assert bands.middle == pytest.approx(5.0)
    assert bands.upper == pytest.approx(9.0)
    assert bands.lower == pytest.approx(1.0)
    assert bands.signal == 'SELL'

    highs = [11.0] * 20
    lows = [9.0] * 20
    closes = [10.0] * 20
    assert indicators.atr(highs, lows, closes, period=14) == pytest.approx(2.0)

    print("  ✓ Bands / ATR working")


def test_vwap():
    """Test 6: Volume weighting and the zero-volume fallback"""
    print("\n--- Test 6: VWAP ---")
    assert indicators.vwap([10, 20], [1, 3]) == pytest.approx(17.5)
    assert indicators.vwap([10, 20], [0, 0]) == pytest.approx(15.0)
    with pytest.raises(ValueError):
        indicators.vwap([1, 2], [1])

    print("  ✓ VWAP working")


def test_percentile_levels():
    """Test 7: Lowest/25th and highest/75th of the sorted history"""
    print("\n--- Test 7: Percentile Levels ---")
    support, resistance = indicators.percentile_levels([5, 3, 8, 1, 7, 2, 6, 4])
    assert support == [1.0, 3.0]
    assert resistance == [8.0, 6.0]
    assert indicators.percentile_levels([]) == ([], [])

    print("  ✓ Levels working")


def test_pivots_and_trend():
    """Test 8: Pivot levels around a dip and the regression trend"""
    print("\n--- Test 8: Pivots / Trend ---")
    prices = [10, 9, 8, 7, 6, 7, 8, 9, 10, 11, 12]
    levels = indicators.detect_support_resistance(prices, lookback=4)
    assert levels.support == [6.0]

    slope, r_squared = indicators.trend_slope([1, 2, 3, 4, 5])
    assert slope == pytest.approx(1.0)
    assert r_squared == pytest.approx(1.0)

    strength = indicators.trend_strength([5, 4, 3, 2, 1], period=5)
    assert strength.signal == 'SELL'
    assert strength.value < 0

    print("  ✓ Pivots / trend working")


def run_all_tests():
    """Run all indicator tests"""
    print("\n" + "=" * 60)
    print("INDICATOR TESTS")
    print("=" * 60)

    tests = [
        test_moving_averages,
        test_standard_deviation,
        test_rsi_readings,
        test_macd_and_stochastic,
        test_bollinger_and_atr,
        test_vwap,
        test_percentile_levels,
        test_pivots_and_trend,
    ]

    passed = 0
    failed = 0
    for test in tests:
        try:
            test()
            passed += 1
        except Exception as e:
            print(f"  ✗ FAILED: {e}")
            failed += 1

    print("\n" + "=" * 60)
    print(f"RESULTS: {passed} passed, {failed} failed")
    print("=" * 60)
    return failed == 0


if __name__ == "__main__":
    import sys
    sys.exit(0 if run_all_tests() else 1)
