"""
Portfolio Ledger Tests
======================
Tests the simulated account:
1. Open / mark / close scenario
2. LONG and SHORT round trips with fees
3. Rejections (insufficient cash, duplicate symbol, missing position)
4. Idempotent price updates and the total value invariant
5. Statistics and reset

Run with pytest or directly:
    python -m src.simcore.test_portfolio_ledger
"""

import dataclasses
from datetime import datetime, timedelta

import pytest

from src.simcore.errors import InvariantViolation, ValidationError
from src.simcore.portfolio_ledger import Direction, PortfolioLedger
from src.simcore.sim_config import SimConfig


def make_ledger(cash: float = 10000.0, **overrides) -> PortfolioLedger:
    config = SimConfig.from_dict({'initialCapital': cash, **overrides})
    return PortfolioLedger(config)


def assert_total_value(ledger: PortfolioLedger):
    expected = ledger.cash + sum(p.quantity * p.current_price for p in ledger.open_positions())
    assert ledger.total_value == pytest.approx(expected)
    assert ledger.equity == pytest.approx(expected - ledger.cash)


def test_open_mark_close_scenario():
    """Test 1: 0.1 BTC bought at 50k, marked at 55k, closed at 55k"""
    print("\n--- Test 1: Open / Mark / Close ---")
    ledger = make_ledger(10000.0)

    assert ledger.open_position('BTCUSDT', Direction.LONG, 50000.0, 0.1)
    assert ledger.cash == pytest.approx(5000.0)
    assert_total_value(ledger)

    ledger.update_prices({'BTCUSDT': 55000.0})
    position = ledger.get_position('BTCUSDT')
    assert position.pnl == pytest.approx(500.0)
    assert position.pnl_percent == pytest.approx(10.0)
    assert ledger.total_value == pytest.approx(10500.0)

    trade = ledger.close_position('BTCUSDT', 55000.0)
    assert trade is not None
    assert trade.pnl == pytest.approx(500.0)
    assert ledger.cash == pytest.approx(10500.0)
    assert ledger.open_position_count() == 0
    assert len(ledger.trades()) == 1
    assert_total_value(ledger)

    print(f"  Cash after close: ${ledger.cash:,.2f}")
    print("  ✓ Scenario working")


def test_long_round_trip_with_fees():
    """Test 2: Fees reduce both cash and trade pnl"""
    print("\n--- Test 2: LONG Round Trip With Fees ---")
    ledger = make_ledger(1000.0)
    start = datetime(2024, 1, 1, 12, 0)

    assert ledger.open_position('ETHUSDT', 'LONG', 100.0, 2.0, entry_time=start, fee=0.2)
    assert ledger.cash == pytest.approx(1000.0 - 200.0 - 0.2)

    trade = ledger.close_position('ETHUSDT', 110.0, exit_time=start + timedelta(minutes=90), fee=0.22)
    assert trade.pnl == pytest.approx(20.0 - 0.42)
    assert trade.fee == pytest.approx(0.42)
    assert trade.duration_minutes == pytest.approx(90.0)
    assert ledger.cash == pytest.approx(1000.0 + 20.0 - 0.42)

    print(f"  Net P&L: ${trade.pnl:,.2f}")
    print("  ✓ Fees accounted")


def test_short_round_trip():
    """Test 3: SHORT holds 2x notional and credits it back on close"""
    print("\n--- Test 3: SHORT Round Trip ---")
    ledger = make_ledger(1000.0)

    assert ledger.open_position('BTCUSDT', Direction.SHORT, 100.0, 1.0)
    assert ledger.cash == pytest.approx(800.0)
    assert ledger.net_liquidation_value() == pytest.approx(1000.0)

    ledger.update_prices({'BTCUSDT': 90.0})
    assert ledger.get_position('BTCUSDT').pnl == pytest.approx(10.0)
    assert ledger.net_liquidation_value() == pytest.approx(1010.0)
    assert_total_value(ledger)

    trade = ledger.close_position('BTCUSDT', 90.0)
    assert trade.pnl == pytest.approx(10.0)
    assert trade.is_win
    assert ledger.cash == pytest.approx(1010.0)

    ledger.open_position('BTCUSDT', Direction.SHORT, 100.0, 1.0)
    losing = ledger.close_position('BTCUSDT', 105.0)
    assert losing.pnl == pytest.approx(-5.0)
    assert ledger.cash == pytest.approx(1005.0)

    print("  ✓ SHORT accounting working")


def test_insufficient_cash_rejected():
    """Test 4: Opens that cost more than cash leave the ledger untouched"""
    print("\n--- Test 4: Insufficient Cash ---")
    ledger = make_ledger(150.0)

    assert not ledger.open_position('BTCUSDT', Direction.LONG, 100.0, 2.0)
    assert not ledger.open_position('BTCUSDT', Direction.SHORT, 100.0, 1.0)
    assert not ledger.open_position('BTCUSDT', Direction.LONG, 100.0, 1.5, fee=1.0)
    assert ledger.cash == pytest.approx(150.0)
    assert ledger.open_position_count() == 0
    assert ledger.trades() == []

    print("  ✓ Rejections leave state unchanged")


def test_one_position_per_symbol():
    """Test 5: A second open on the same symbol fails"""
    print("\n--- Test 5: One Position Per Symbol ---")
    ledger = make_ledger(10000.0)

    assert ledger.open_position('BTCUSDT', Direction.LONG, 100.0, 1.0)
    assert not ledger.open_position('BTCUSDT', Direction.SHORT, 100.0, 1.0)
    assert ledger.cash == pytest.approx(9900.0)

    with pytest.raises(InvariantViolation):
        ledger.open_position('BTCUSDT', Direction.LONG, 100.0, 1.0, strict=True)

    assert ledger.open_position('ETHUSDT', Direction.LONG, 10.0, 1.0)
    assert sorted(ledger.open_symbols()) == ['BTCUSDT', 'ETHUSDT']

    print("  ✓ Duplicate symbol rejected")


def test_close_without_position():
    """Test 6: Closing a missing position is a no-op (or raises in strict mode)"""
    print("\n--- Test 6: Close Without Position ---")
    ledger = make_ledger(1000.0)

    assert ledger.close_position('BTCUSDT', 100.0) is None
    with pytest.raises(InvariantViolation):
        ledger.close_position('BTCUSDT', 100.0, strict=True)
    assert ledger.cash == pytest.approx(1000.0)

    print("  ✓ Missing position handled")


def test_invalid_inputs():
    """Test 7: Non-positive prices or quantities are validation errors"""
    print("\n--- Test 7: Invalid Inputs ---")
    ledger = make_ledger(1000.0)

    with pytest.raises(ValidationError):
        ledger.open_position('BTCUSDT', Direction.LONG, 0.0, 1.0)
    with pytest.raises(ValidationError):
        ledger.open_position('BTCUSDT', Direction.LONG, 100.0, -1.0)
    with pytest.raises(ValidationError):
        ledger.open_position('BTCUSDT', 'NEUTRAL', 100.0, 1.0)
    assert ledger.open_position_count() == 0

    print("  ✓ Invalid inputs rejected")


def test_default_stops():
    """Test 8: Missing stop/target fall back to configured percentages"""
    print("\n--- Test 8: Default Stops ---")
    ledger = make_ledger(10000.0, stopLossPercent=0.02, takeProfitPercent=0.04)

    ledger.open_position('BTCUSDT', Direction.LONG, 100.0, 1.0)
    long_pos = ledger.get_position('BTCUSDT')
    assert long_pos.stop_loss == pytest.approx(98.0)
    assert long_pos.take_profit == pytest.approx(104.0)

    ledger.open_position('ETHUSDT', Direction.SHORT, 100.0, 1.0, take_profit=90.0)
    short_pos = ledger.get_position('ETHUSDT')
    assert short_pos.stop_loss == pytest.approx(102.0)
    assert short_pos.take_profit == pytest.approx(90.0)

    print("  ✓ Default stops applied")


def test_update_prices_idempotent():
    """Test 9: Re-applying the same prices changes nothing"""
    print("\n--- Test 9: Idempotent Price Updates ---")
    ledger = make_ledger(10000.0)
    ledger.open_position('BTCUSDT', Direction.LONG, 100.0, 3.0)
    ledger.open_position('ETHUSDT', Direction.SHORT, 50.0, 2.0)

    prices = {'BTCUSDT': 104.0, 'ETHUSDT': 47.5, 'SOLUSDT': 20.0}
    ledger.update_prices(prices)
    first = (ledger.snapshot(), ledger.get_status())
    ledger.update_prices(prices)
    second = (ledger.snapshot(), ledger.get_status())

    assert first == second
    assert not ledger.has_position('SOLUSDT')
    assert_total_value(ledger)

    print(f"  Total value: ${ledger.total_value:,.2f}")
    print("  ✓ Updates idempotent")


def test_trades_are_immutable():
    """Test 10: Closed trades cannot be modified"""
    print("\n--- Test 10: Immutable Trades ---")
    ledger = make_ledger(1000.0)
    ledger.open_position('BTCUSDT', Direction.LONG, 100.0, 1.0)
    trade = ledger.close_position('BTCUSDT', 101.0, reason='TAKE_PROFIT')

    with pytest.raises(dataclasses.FrozenInstanceError):
        trade.pnl = 1000.0
    assert trade.exit_reason == 'TAKE_PROFIT'
    assert trade.to_dict()['direction'] == 'LONG'

    print("  ✓ Trades frozen")


def test_stats_and_recent_trades():
    """Test 11: Win rate and ordering of trade history"""
    print("\n--- Test 11: Stats ---")
    ledger = make_ledger(10000.0)
    for symbol, exit_price in [('A', 110.0), ('B', 90.0), ('C', 120.0)]:
        ledger.open_position(symbol, Direction.LONG, 100.0, 1.0)
        ledger.close_position(symbol, exit_price)

    stats = ledger.get_stats()
    assert stats['total_trades'] == 3
    assert stats['winning_trades'] == 2
    assert stats['losing_trades'] == 1
    assert stats['win_rate'] == pytest.approx(200 / 3)
    assert stats['total_profit'] == pytest.approx(20.0)

    assert [t.symbol for t in ledger.trades()] == ['A', 'B', 'C']
    assert [t.symbol for t in ledger.recent_trades(2)] == ['C', 'B']

    print(f"  Win rate: {stats['win_rate']:.1f}%")
    print("  ✓ Stats working")


def test_reset():
    """Test 12: Reset restores the starting account"""
    print("\n--- Test 12: Reset ---")
    ledger = make_ledger(1000.0)
    ledger.open_position('BTCUSDT', Direction.LONG, 100.0, 1.0)
    ledger.open_position('ETHUSDT', Direction.LONG, 100.0, 1.0)
    ledger.close_position('ETHUSDT', 120.0)

    ledger.reset()
    assert ledger.cash == pytest.approx(1000.0)
    assert ledger.total_value == pytest.approx(1000.0)
    assert ledger.open_position_count() == 0
    assert ledger.trades() == []

    ledger.reset(initial_cash=500.0)
    assert ledger.cash == pytest.approx(500.0)

    print("  ✓ Reset working")


def run_all_tests():
    """Run all ledger tests"""
    print("\n" + "=" * 60)
    print("PORTFOLIO LEDGER TESTS")
    print("=" * 60)

    tests = [
        test_open_mark_close_scenario,
        test_long_round_trip_with_fees,
        test_short_round_trip,
        test_insufficient_cash_rejected,
        test_one_position_per_symbol,
        test_close_without_position,
        test_invalid_inputs,
        test_default_stops,
        test_update_prices_idempotent,
        test_trades_are_immutable,
        test_stats_and_recent_trades,
        test_reset,
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
