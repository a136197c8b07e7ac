"""
Execution Simulator Tests
=========================
Tests the fill model:
1. Same seed, same fills
2. Slippage bounds and fee formula
3. Forced rejections and ExecutionFailed
4. Closes always fill
5. Latency range

Run with pytest or directly:
    python -m src.simcore.test_execution_simulator
"""

import numpy as np
import pytest

from src.simcore.decision_engine import Decision, TradingDecision
from src.simcore.errors import ExecutionFailed
from src.simcore.execution_simulator import ExecutionSimulator, raise_on_failure
from src.simcore.portfolio_ledger import Direction, PortfolioLedger
from src.simcore.sim_config import SimConfig


def make_config(**overrides) -> SimConfig:
    return SimConfig.from_dict({
        'commissionRate': 0.001,
        'maxSlippage': 0.001,
        'failureProbability': 0.0,
        'seed': 42,
        **overrides
    })


def buy(symbol: str = 'BTCUSDT') -> TradingDecision:
    return TradingDecision(symbol=symbol, decision=Decision.LONG, entry_price=100.0, confidence=0.9)


def test_seeded_runs_are_identical():
    """Test 1: Two simulators with one seed produce the same fills"""
    print("\n--- Test 1: Seed Determinism ---")
    config = make_config(failureProbability=0.3, min_latency_ms=10, max_latency_ms=50)
    first = ExecutionSimulator(config)
    second = ExecutionSimulator(config)

    a = [first.simulate_open(buy(), 100.0, 1.0).to_dict() for _ in range(50)]
    b = [second.simulate_open(buy(), 100.0, 1.0).to_dict() for _ in range(50)]
    assert a == b
    assert any(not r['success'] for r in a)
    assert any(r['success'] for r in a)

    print(f"  Rejections: {sum(1 for r in a if not r['success'])}/50")
    print("  ✓ Deterministic")


def test_slippage_and_fee_bounds():
    """Test 2: Executed price within ±max slippage, fee on executed notional"""
    print("\n--- Test 2: Slippage Bounds ---")
    sim = ExecutionSimulator(make_config(maxSlippage=0.01, commissionRate=0.002))

    for _ in range(200):
        result = sim.simulate_open(buy(), 100.0, 2.0)
        assert result.success
        assert 99.0 <= result.executed_price <= 101.0
        assert abs(result.slippage) <= 0.01
        assert result.fee == pytest.approx(result.executed_price * 2.0 * 0.002)

    print("  ✓ Slippage bounded")


def test_zero_slippage():
    """Test 3: Without slippage the fill is the market price"""
    print("\n--- Test 3: Zero Slippage ---")
    sim = ExecutionSimulator(make_config(maxSlippage=0.0, commissionRate=0.0))

    result = sim.simulate_open(buy(), 250.0, 4.0)
    assert result.success
    assert result.executed_price == 250.0
    assert result.fee == 0.0
    assert result.order_id == 'SIM_BTCUSDT_LONG_000001'

    print("  ✓ Exact fill")


def test_forced_rejection():
    """Test 4: failure_probability=1 rejects every open"""
    print("\n--- Test 4: Forced Rejection ---")
    sim = ExecutionSimulator(make_config(failureProbability=1.0))

    result = sim.simulate_open(buy(), 100.0, 1.0)
    assert not result.success
    assert result.executed_price is None
    with pytest.raises(ExecutionFailed):
        raise_on_failure(result)

    print(f"  Message: {result.message}")
    print("  ✓ Rejection raised")


def test_invalid_order():
    """Test 5: Zero quantity is never filled"""
    print("\n--- Test 5: Invalid Order ---")
    sim = ExecutionSimulator(make_config())

    result = sim.simulate_open(buy(), 100.0, 0.0)
    assert not result.success
    assert 'Invalid' in result.message

    print("  ✓ Invalid order rejected")


def test_close_always_fills():
    """Test 6: Closes succeed even when opens would be rejected"""
    print("\n--- Test 6: Close Fills ---")
    config = make_config(failureProbability=1.0, maxSlippage=0.0, commissionRate=0.001)
    sim = ExecutionSimulator(config)
    ledger = PortfolioLedger(config, initial_cash=10000.0)
    ledger.open_position('BTCUSDT', Direction.SHORT, 100.0, 2.0)

    result = sim.simulate_close(ledger.get_position('BTCUSDT'), 90.0)
    assert result.executed_price == 90.0
    assert result.pnl == pytest.approx(20.0)
    assert result.pnl_percent == pytest.approx(10.0)
    assert result.fee == pytest.approx(0.18)

    print("  ✓ Close filled")


def test_latency_range():
    """Test 7: Latency draws stay within the configured window"""
    print("\n--- Test 7: Latency ---")
    sim = ExecutionSimulator(make_config(min_latency_ms=20, max_latency_ms=80))
    draws = [sim.draw_latency() for _ in range(100)]

    assert all(0.02 <= d <= 0.08 for d in draws)
    assert ExecutionSimulator(make_config()).draw_latency() == 0.0

    print(f"  Mean latency: {np.mean(draws) * 1000:.1f} ms")
    print("  ✓ Latency bounded")


def test_injected_rng():
    """Test 8: An injected generator drives the draws"""
    print("\n--- Test 8: Injected RNG ---")
    config = make_config(maxSlippage=0.005, seed=None)
    a = ExecutionSimulator(config, rng=np.random.default_rng(7))
    b = ExecutionSimulator(config, rng=np.random.default_rng(7))

    assert [a.draw_slippage() for _ in range(10)] == [b.draw_slippage() for _ in range(10)]

    print("  ✓ RNG injected")


def run_all_tests():
    """Run all execution simulator tests"""
    print("\n" + "=" * 60)
    print("EXECUTION SIMULATOR TESTS")
    print("=" * 60)

    tests = [
        test_seeded_runs_are_identical,
        test_slippage_and_fee_bounds,
        test_zero_slippage,
        test_forced_rejection,
        test_invalid_order,
        test_close_always_fills,
        test_latency_range,
        test_injected_rng,
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
