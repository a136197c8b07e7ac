"""
Risk Manager
============
Handles all risk-related decisions:
- Admission control (max positions, one per symbol, daily loss cap,
  capital at risk per trade)
- Position sizing from risk per trade and stop distance
- Default stop-loss / take-profit levels
- Exit condition checks for open positions
- Daily profit/loss tracking, reset on an external day boundary
"""

import logging
import threading
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from .decision_engine import Decision, TradingDecision
from .errors import AdmissionRejected
from .portfolio_ledger import (
    Direction, Position, PortfolioSnapshot, default_stops, required_margin, to_direction
)
from .sim_config import SimConfig

logger = logging.getLogger(__name__)

MIN_STOP_DISTANCE = 1e-9


@dataclass(frozen=True)
class AdmissionDecision:
    """Outcome of an admission check; a rejection is a normal result"""
    allowed: bool
    reason: str = ''
    quantity: float = 0.0

    def __bool__(self) -> bool:
        return self.allowed


class RiskManager:
    """
    Gatekeeper for new positions.

    Features:
    - Max concurrent positions and one position per symbol
    - Daily realized loss cap
    - Capital at risk capped per trade
    - Risk-based position sizing, capped by position size and buying power
    """

    def __init__(self, config: SimConfig = None):
        """
        Initialize RiskManager.

        Args:
            config: SimConfig instance with risk parameters
        """
        self.config = config or SimConfig()
        self._lock = threading.Lock()
        self.daily_loss = 0.0
        self.daily_profit = 0.0
        self.daily_trades = 0
        logger.info("[OK] RiskManager initialized")

    # =========================================================================
    # STOPS
    # =========================================================================

    def default_stops(self, entry_price: float, direction) -> Tuple[float, float]:
        """
        Percentage stop-loss and take-profit by direction.

        Returns:
            Tuple of (stop_loss, take_profit)
        """
        return default_stops(
            entry_price, to_direction(direction),
            self.config.stop_loss_percent, self.config.take_profit_percent
        )

    def resolve_levels(self, decision: TradingDecision, current_price: float = None) -> Tuple[float, float, float]:
        """
        Entry, stop and target for a decision, filling in defaults.

        Returns:
            Tuple of (entry_price, stop_loss, take_profit)
        """
        entry = decision.entry_price or current_price
        default_stop, default_target = self.default_stops(entry, decision.decision)
        stop = decision.stop_loss if decision.stop_loss is not None else default_stop
        target = decision.take_profit if decision.take_profit is not None else default_target
        return entry, stop, target

    def check_exit_conditions(self, position: Position, current_price: float = None) -> Tuple[bool, str]:
        """
        Check if stop-loss or take-profit is hit.

        Args:
            position: Open position
            current_price: Price to test (position.current_price if None)

        Returns:
            Tuple of (should_exit, reason)
        """
        price = position.current_price if current_price is None else current_price

        if position.direction == Direction.LONG:
            if price <= position.stop_loss:
                return True, f"STOP_LOSS (price ${price:,.2f} <= stop ${position.stop_loss:,.2f})"
            if price >= position.take_profit:
                return True, f"TAKE_PROFIT (price ${price:,.2f} >= target ${position.take_profit:,.2f})"
        else:
            if price >= position.stop_loss:
                return True, f"STOP_LOSS (price ${price:,.2f} >= stop ${position.stop_loss:,.2f})"
            if price <= position.take_profit:
                return True, f"TAKE_PROFIT (price ${price:,.2f} <= target ${position.take_profit:,.2f})"

        return False, ""

    # =========================================================================
    # SIZING
    # =========================================================================

    def position_size(
        self,
        decision: TradingDecision,
        portfolio: PortfolioSnapshot,
        risk_per_trade: float = None,
        stop_distance: float = None,
        buying_power: float = None,
        current_price: float = None
    ) -> float:
        """
        Calculate position size so that hitting the stop loses
        risk_per_trade of total value.

        quantity = (total_value x risk_per_trade) / |entry - stop|

        Args:
            decision: LONG or SHORT decision
            portfolio: Current portfolio snapshot
            risk_per_trade: Fraction of total value at risk (config if None)
            stop_distance: |entry - stop| (derived from the decision if None)
            buying_power: Cash available for margin (no cap if None)
            current_price: Entry fallback when the decision has none

        Returns:
            Quantity, or 0.0 when the stop distance is too small
        """
        if risk_per_trade is None:
            risk_per_trade = self.config.risk_per_trade
        entry, stop, _ = self.resolve_levels(decision, current_price)
        if entry is None or entry <= 0:
            return 0.0
        if stop_distance is None:
            stop_distance = abs(entry - stop)

        if stop_distance <= MIN_STOP_DISTANCE:
            logger.warning(f"{decision.symbol}: stop distance {stop_distance} too small, size rejected")
            return 0.0

        risk_amount = portfolio.total_value * risk_per_trade
        quantity = risk_amount / stop_distance

        # Apply max position size cap
        max_value = portfolio.total_value * self.config.max_position_pct
        if quantity * entry > max_value:
            quantity = max_value / entry

        # Apply buying power constraint
        if buying_power is not None:
            direction = to_direction(decision.decision)
            per_unit_margin = required_margin(direction, entry, 1.0)
            fee_rate = entry * self.config.commission_rate
            affordable = max(buying_power, 0.0) / (per_unit_margin + fee_rate)
            quantity = min(quantity, affordable)

        logger.debug(
            f"Position sizing: {quantity:.6f} {decision.symbol} @ ${entry:,.2f} "
            f"(stop distance: ${stop_distance:,.2f}, risk: ${risk_amount:,.2f})"
        )
        return max(quantity, 0.0)

    def calculate_risk(self, decision: TradingDecision) -> float:
        """Suggested fraction of capital: 0.01 x confidence x min(rr / 2, 1)"""
        return 0.01 * decision.confidence * min(decision.risk_reward_ratio / 2, 1.0)

    # =========================================================================
    # ADMISSION
    # =========================================================================

    def check_admission(
        self,
        decision: TradingDecision,
        portfolio: PortfolioSnapshot,
        open_position_count: int,
        open_symbols: Iterable[str] = (),
        buying_power: float = None,
        current_price: float = None
    ) -> AdmissionDecision:
        """
        Decide whether a new position may be opened.

        Returns:
            AdmissionDecision with the implied quantity when allowed,
            or the rejection reason
        """
        if decision.decision == Decision.NEUTRAL:
            return AdmissionDecision(False, "neutral decision")

        if open_position_count >= self.config.max_positions:
            return AdmissionDecision(
                False, f"max positions reached ({open_position_count}/{self.config.max_positions})")

        if decision.symbol in set(open_symbols):
            return AdmissionDecision(False, "position already open for symbol")

        daily_limit = portfolio.total_value * self.config.max_daily_loss_percent
        if self.daily_loss > daily_limit:
            return AdmissionDecision(
                False, f"daily loss ${self.daily_loss:,.2f} exceeds limit ${daily_limit:,.2f}")

        quantity = self.position_size(
            decision, portfolio, buying_power=buying_power, current_price=current_price)
        if quantity <= 0:
            return AdmissionDecision(False, "position size is zero")

        entry, stop, _ = self.resolve_levels(decision, current_price)
        capital_at_risk = quantity * abs(entry - stop)
        risk_limit = portfolio.total_value * self.config.max_risk_per_trade
        if capital_at_risk > risk_limit * (1 + 1e-9):
            return AdmissionDecision(
                False, f"capital at risk ${capital_at_risk:,.2f} exceeds ${risk_limit:,.2f}")

        return AdmissionDecision(True, '', quantity)

    def can_open(
        self,
        decision: TradingDecision,
        portfolio: PortfolioSnapshot,
        open_position_count: int,
        open_symbols: Iterable[str] = (),
        buying_power: float = None,
        current_price: float = None
    ) -> bool:
        """True if check_admission allows the decision"""
        result = self.check_admission(
            decision, portfolio, open_position_count, open_symbols, buying_power, current_price)
        if not result.allowed:
            logger.debug(f"{decision.symbol}: admission rejected ({result.reason})")
        return result.allowed

    def require_admission(self, *args, **kwargs) -> AdmissionDecision:
        """check_admission that raises AdmissionRejected instead of returning a rejection"""
        result = self.check_admission(*args, **kwargs)
        if not result.allowed:
            decision = args[0] if args else kwargs['decision']
            raise AdmissionRejected(decision.symbol, result.reason)
        return result

    # =========================================================================
    # DAILY TRACKING
    # =========================================================================

    def record_realized_pnl(self, pnl: float):
        """Add a closed trade's pnl to today's totals"""
        with self._lock:
            self.daily_trades += 1
            if pnl < 0:
                self.daily_loss += -pnl
            else:
                self.daily_profit += pnl

    def on_day_boundary(self):
        """Reset daily totals (called by the driver when a new day starts)"""
        with self._lock:
            logger.info(
                f"Day boundary: resetting daily stats (loss ${self.daily_loss:,.2f}, "
                f"profit ${self.daily_profit:,.2f}, trades {self.daily_trades})"
            )
            self.daily_loss = 0.0
            self.daily_profit = 0.0
            self.daily_trades = 0

    def get_status(self) -> dict:
        return {
            'daily_loss': self.daily_loss,
            'daily_profit': self.daily_profit,
            'daily_trades': self.daily_trades,
            'max_positions': self.config.max_positions,
            'risk_per_trade': self.config.risk_per_trade,
            'max_daily_loss_percent': self.config.max_daily_loss_percent,
        }
