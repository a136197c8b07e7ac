"""
Order Execution Simulator
=========================
Models fills for simulated orders:
- Symmetric bounded slippage on the execution price
- Commission on executed notional
- Random order rejection on opens (closes always fill)
- Artificial latency for deferred execution
- Injectable, seedable randomness for reproducible runs
"""

import itertools
import logging
from dataclasses import dataclass, asdict
from typing import Optional

import numpy as np

from .decision_engine import TradingDecision
from .errors import ExecutionFailed
from .portfolio_ledger import Position, direction_pnl
from .sim_config import SimConfig

logger = logging.getLogger(__name__)


@dataclass
class ExecutionResult:
    """Result of a simulated open"""
    success: bool
    symbol: str = ""
    side: str = ""
    quantity: float = 0.0
    executed_price: Optional[float] = None
    fee: float = 0.0
    slippage: float = 0.0
    latency_ms: float = 0.0
    order_id: Optional[str] = None
    message: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class CloseResult:
    """Result of a simulated close; closes are never rejected"""
    symbol: str
    executed_price: float
    pnl: float
    pnl_percent: float
    fee: float
    slippage: float = 0.0
    latency_ms: float = 0.0
    order_id: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


def raise_on_failure(result: ExecutionResult) -> ExecutionResult:
    """Turn a failed ExecutionResult into ExecutionFailed"""
    if not result.success:
        raise ExecutionFailed(result.symbol, result.message or "Order rejected")
    return result


class ExecutionSimulator:
    """
    Simulated order fills.

    Features:
    - executed = price x (1 + U(-max_slippage, +max_slippage))
    - fee = executed x quantity x commission_rate
    - failure_probability chance of rejecting an open
    - Same seed gives identical results, draw for draw
    """

    def __init__(self, config: SimConfig = None, rng: np.random.Generator = None):
        """
        Initialize ExecutionSimulator.

        Args:
            config: SimConfig with the execution model parameters
            rng: Random generator (seeded from config.seed if None)
        """
        self.config = config or SimConfig()
        self.rng = rng if rng is not None else np.random.default_rng(self.config.seed)
        self._order_seq = itertools.count(1)
        logger.info(
            f"[OK] ExecutionSimulator initialized (slippage: ±{self.config.max_slippage:.2%}, "
            f"commission: {self.config.commission_rate:.2%})"
        )

    def _next_order_id(self, symbol: str, side: str) -> str:
        return f"SIM_{symbol}_{side}_{next(self._order_seq):06d}"

    def draw_slippage(self) -> float:
        bound = self.config.max_slippage
        if bound <= 0:
            return 0.0
        return float(self.rng.uniform(-bound, bound))

    def draw_latency(self) -> float:
        """Artificial delay in seconds within the configured range"""
        low, high = self.config.min_latency_ms, self.config.max_latency_ms
        if high <= 0:
            return 0.0
        return float(self.rng.uniform(low, high)) / 1000.0

    def simulate_open(self, decision: TradingDecision, current_price: float, quantity: float) -> ExecutionResult:
        """
        Simulate the fill of an opening order.

        Args:
            decision: LONG/SHORT decision being executed
            current_price: Market price at execution
            quantity: Units to open

        Returns:
            ExecutionResult; success False means the order was rejected
            and nothing should change
        """
        side = decision.decision.value
        order_id = self._next_order_id(decision.symbol, side)
        latency_ms = self.draw_latency() * 1000

        # Draw slippage before the failure roll so both paths consume the same randomness
        slippage = self.draw_slippage()
        failed = self.config.failure_probability > 0 and self.rng.random() < self.config.failure_probability

        if quantity <= 0 or current_price <= 0:
            return ExecutionResult(
                success=False, symbol=decision.symbol, side=side, quantity=quantity,
                order_id=order_id, latency_ms=latency_ms, message="Invalid price or quantity"
            )

        if failed:
            logger.warning(f"[REJECTED] {side} {decision.symbol} {quantity:g} ({order_id})")
            return ExecutionResult(
                success=False, symbol=decision.symbol, side=side, quantity=quantity,
                order_id=order_id, latency_ms=latency_ms, slippage=slippage,
                message="Simulated order rejection"
            )

        executed_price = current_price * (1 + slippage)
        fee = executed_price * quantity * self.config.commission_rate

        logger.debug(
            f"[FILL] {side} {decision.symbol} {quantity:g} @ ${executed_price:,.4f} "
            f"(slippage {slippage:+.4%}, fee ${fee:,.4f})"
        )
        return ExecutionResult(
            success=True,
            symbol=decision.symbol,
            side=side,
            quantity=quantity,
            executed_price=executed_price,
            fee=fee,
            slippage=slippage,
            latency_ms=latency_ms,
            order_id=order_id,
            message="Filled"
        )

    def simulate_close(self, position: Position, current_price: float) -> CloseResult:
        """
        Simulate the fill of a closing order. Always succeeds.

        Args:
            position: Open position being closed
            current_price: Market price at execution

        Returns:
            CloseResult with executed price, gross pnl and exit fee
        """
        slippage = self.draw_slippage()
        latency_ms = self.draw_latency() * 1000
        executed_price = current_price * (1 + slippage)
        fee = executed_price * position.quantity * self.config.commission_rate
        pnl = direction_pnl(position.direction, position.entry_price, executed_price, position.quantity)
        cost = position.entry_price * position.quantity

        return CloseResult(
            symbol=position.symbol,
            executed_price=executed_price,
            pnl=pnl,
            pnl_percent=pnl / cost * 100 if cost else 0.0,
            fee=fee,
            slippage=slippage,
            latency_ms=latency_ms,
            order_id=self._next_order_id(position.symbol, 'CLOSE')
        )
