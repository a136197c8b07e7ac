"""
Portfolio Ledger
================
The authoritative simulated account:
- Cash, open positions (one per symbol) and closed trades
- Margin debits on open, realized credits on close
- Mark-to-market of open positions on every price update
- Derived equity and total value, never set directly
- Portfolio statistics over the trade history
"""

import logging
import threading
from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from .errors import InvariantViolation, ValidationError
from .sim_config import SimConfig

logger = logging.getLogger(__name__)


class Direction(Enum):
    LONG = "LONG"
    SHORT = "SHORT"


class PositionStatus(Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


def to_direction(value: Union[Direction, str]) -> Direction:
    """Accept a Direction, a Decision-like enum or its string value"""
    if isinstance(value, Direction):
        return value
    raw = getattr(value, 'value', value)
    try:
        return Direction(str(raw).upper())
    except ValueError:
        raise ValidationError(f"Direction must be LONG or SHORT, got {value!r}")


def required_margin(direction: Direction, entry_price: float, quantity: float) -> float:
    """LONG: entry x qty. SHORT: 2 x entry x qty (collateral)."""
    notional = entry_price * quantity
    return notional * 2 if direction == Direction.SHORT else notional


def default_stops(
    entry_price: float,
    direction: Direction,
    stop_loss_percent: float,
    take_profit_percent: float
) -> Tuple[float, float]:
    """
    Percentage stop-loss and take-profit around an entry.

    Returns:
        Tuple of (stop_loss, take_profit)
    """
    if direction == Direction.LONG:
        return entry_price * (1 - stop_loss_percent), entry_price * (1 + take_profit_percent)
    return entry_price * (1 + stop_loss_percent), entry_price * (1 - take_profit_percent)


def direction_pnl(direction: Direction, entry_price: float, exit_price: float, quantity: float) -> float:
    if direction == Direction.LONG:
        return (exit_price - entry_price) * quantity
    return (entry_price - exit_price) * quantity


@dataclass
class Position:
    """Open holding in one symbol; pnl fields derive from current_price"""
    symbol: str
    direction: Direction
    entry_price: float
    current_price: float
    quantity: float
    stop_loss: float
    take_profit: float
    entry_time: datetime
    status: PositionStatus = PositionStatus.OPEN
    entry_fee: float = 0.0

    @property
    def pnl(self) -> float:
        return direction_pnl(self.direction, self.entry_price, self.current_price, self.quantity)

    @property
    def pnl_percent(self) -> float:
        cost = self.entry_price * self.quantity
        return self.pnl / cost * 100 if cost else 0.0

    @property
    def margin(self) -> float:
        return required_margin(self.direction, self.entry_price, self.quantity)

    @property
    def market_value(self) -> float:
        return self.quantity * self.current_price

    def to_dict(self) -> dict:
        data = asdict(self)
        data['direction'] = self.direction.value
        data['status'] = self.status.value
        data['entry_time'] = self.entry_time.isoformat()
        data['pnl'] = self.pnl
        data['pnl_percent'] = self.pnl_percent
        return data


@dataclass(frozen=True)
class Trade:
    """Immutable record of a closed position"""
    symbol: str
    direction: Direction
    entry_price: float
    exit_price: float
    quantity: float
    pnl: float
    pnl_percent: float
    fee: float
    entry_time: datetime
    exit_time: datetime
    duration_minutes: float
    exit_reason: str = 'manual'

    @property
    def is_win(self) -> bool:
        return self.pnl > 0

    def to_dict(self) -> dict:
        data = asdict(self)
        data['direction'] = self.direction.value
        data['entry_time'] = self.entry_time.isoformat()
        data['exit_time'] = self.exit_time.isoformat()
        return data


@dataclass(frozen=True)
class PortfolioSnapshot:
    cash: float
    equity: float
    total_value: float

    def to_dict(self) -> dict:
        return asdict(self)


class PortfolioLedger:
    """
    Single writer of cash, positions and trades.

    Features:
    - One OPEN position per symbol
    - LONG margin = notional, SHORT margin = 2x notional
    - Trades are created only by close_position and never mutated
    - All mutations serialize on one re-entrant ledger lock
    """

    def __init__(self, config: SimConfig = None, initial_cash: float = None):
        """
        Initialize PortfolioLedger.

        Args:
            config: SimConfig (default stop/target percentages, initial capital)
            initial_cash: Starting cash (config.initial_capital if None)
        """
        self.config = config or SimConfig()
        self.initial_cash = float(initial_cash if initial_cash is not None else self.config.initial_capital)
        self.lock = threading.RLock()

        self._cash = self.initial_cash
        self._positions: Dict[str, Position] = {}
        self._trades: List[Trade] = []
        self._equity = 0.0
        self._total_value = self._cash

        logger.info(f"[OK] PortfolioLedger initialized (cash: ${self.initial_cash:,.2f})")

    # =========================================================================
    # DERIVED STATE
    # =========================================================================

    def _recompute(self):
        self._equity = sum(p.quantity * p.current_price for p in self._positions.values())
        self._total_value = self._cash + self._equity

    @property
    def cash(self) -> float:
        return self._cash

    @property
    def equity(self) -> float:
        return self._equity

    @property
    def total_value(self) -> float:
        return self._total_value

    def snapshot(self) -> PortfolioSnapshot:
        with self.lock:
            return PortfolioSnapshot(cash=self._cash, equity=self._equity, total_value=self._total_value)

    def net_liquidation_value(self) -> float:
        """Cash plus margin held plus unrealized pnl of every open position"""
        with self.lock:
            return self._cash + sum(p.margin + p.pnl for p in self._positions.values())

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def open_position(
        self,
        symbol: str,
        direction: Union[Direction, str],
        entry_price: float,
        quantity: float,
        stop_loss: float = None,
        take_profit: float = None,
        entry_time: datetime = None,
        fee: float = 0.0,
        strict: bool = False
    ) -> bool:
        """
        Open a position and debit its margin (plus fee) from cash.

        Args:
            symbol: Symbol to open
            direction: LONG or SHORT
            entry_price: Fill price
            quantity: Units
            stop_loss: Stop price (percentage default if None)
            take_profit: Target price (percentage default if None)
            entry_time: Fill time (now if None)
            fee: Commission paid on entry
            strict: Raise InvariantViolation instead of returning False
                when the symbol already has an open position

        Returns:
            True if opened; False with no mutation when cash is
            insufficient or a position already exists

        Raises:
            ValidationError: non-positive price/quantity or negative fee
        """
        direction = to_direction(direction)
        if entry_price is None or entry_price <= 0:
            raise ValidationError(f"{symbol}: entry price must be positive, got {entry_price}")
        if quantity is None or quantity <= 0:
            raise ValidationError(f"{symbol}: quantity must be positive, got {quantity}")
        if fee < 0:
            raise ValidationError(f"{symbol}: fee cannot be negative")

        with self.lock:
            if symbol in self._positions:
                message = f"{symbol}: position already open"
                if strict:
                    raise InvariantViolation(message)
                logger.warning(f"Cannot open {message}")
                return False

            margin = required_margin(direction, entry_price, quantity)
            if margin + fee > self._cash:
                logger.warning(
                    f"Cannot open {symbol}: margin ${margin:,.2f} + fee ${fee:,.2f} "
                    f"exceeds cash ${self._cash:,.2f}"
                )
                return False

            default_stop, default_target = default_stops(
                entry_price, direction,
                self.config.stop_loss_percent, self.config.take_profit_percent
            )
            position = Position(
                symbol=symbol,
                direction=direction,
                entry_price=entry_price,
                current_price=entry_price,
                quantity=quantity,
                stop_loss=stop_loss if stop_loss is not None else default_stop,
                take_profit=take_profit if take_profit is not None else default_target,
                entry_time=entry_time or datetime.now(),
                entry_fee=fee
            )

            self._cash -= margin + fee
            self._positions[symbol] = position
            self._recompute()

        logger.info(
            f"[OPEN] {direction.value} {symbol}: {quantity:g} @ ${entry_price:,.2f} "
            f"(stop ${position.stop_loss:,.2f}, target ${position.take_profit:,.2f})"
        )
        return True

    def close_position(
        self,
        symbol: str,
        exit_price: float,
        exit_time: datetime = None,
        fee: float = 0.0,
        reason: str = 'manual',
        strict: bool = False
    ) -> Optional[Trade]:
        """
        Close the open position on a symbol and archive it as a Trade.

        Cash is credited with the margin held plus gross pnl, less the
        exit fee. Trade pnl is net of entry and exit fees.

        Args:
            symbol: Symbol to close
            exit_price: Fill price
            exit_time: Fill time (now if None)
            fee: Commission paid on exit
            reason: Exit reason recorded on the Trade
            strict: Raise InvariantViolation instead of returning None
                when there is no open position

        Returns:
            The new Trade, or None when nothing was open
        """
        if exit_price is None or exit_price <= 0:
            raise ValidationError(f"{symbol}: exit price must be positive, got {exit_price}")
        if fee < 0:
            raise ValidationError(f"{symbol}: fee cannot be negative")

        with self.lock:
            position = self._positions.get(symbol)
            if position is None:
                message = f"{symbol}: no open position"
                if strict:
                    raise InvariantViolation(message)
                logger.warning(f"Cannot close {message}")
                return None

            gross = direction_pnl(position.direction, position.entry_price, exit_price, position.quantity)
            total_fee = position.entry_fee + fee
            pnl = gross - total_fee
            cost = position.entry_price * position.quantity
            exit_time = exit_time or datetime.now()

            trade = Trade(
                symbol=symbol,
                direction=position.direction,
                entry_price=position.entry_price,
                exit_price=exit_price,
                quantity=position.quantity,
                pnl=pnl,
                pnl_percent=pnl / cost * 100 if cost else 0.0,
                fee=total_fee,
                entry_time=position.entry_time,
                exit_time=exit_time,
                duration_minutes=(exit_time - position.entry_time).total_seconds() / 60,
                exit_reason=reason
            )

            self._cash += position.margin + gross - fee
            position.current_price = exit_price
            position.status = PositionStatus.CLOSED
            del self._positions[symbol]
            self._trades.append(trade)
            self._recompute()

        logger.info(
            f"[CLOSE] {trade.direction.value} {symbol}: {trade.quantity:g} @ ${exit_price:,.2f} "
            f"({reason}) P&L: ${trade.pnl:+,.2f} ({trade.pnl_percent:+.2f}%)"
        )
        return trade

    def update_prices(self, price_by_symbol: Dict[str, float]):
        """
        Mark open positions to the given prices and recompute totals.

        Symbols without an open position are ignored. Idempotent.
        """
        with self.lock:
            for symbol, price in price_by_symbol.items():
                position = self._positions.get(symbol)
                if position is not None and price is not None and price > 0:
                    position.current_price = float(price)
            self._recompute()

    def reset(self, initial_cash: float = None):
        """Clear positions and trades and restore starting cash"""
        with self.lock:
            if initial_cash is not None:
                self.initial_cash = float(initial_cash)
            self._cash = self.initial_cash
            self._positions = {}
            self._trades = []
            self._recompute()
        logger.info(f"Ledger reset (cash: ${self.initial_cash:,.2f})")

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_position(self, symbol: str) -> Optional[Position]:
        with self.lock:
            return self._positions.get(symbol)

    def has_position(self, symbol: str) -> bool:
        with self.lock:
            return symbol in self._positions

    def open_positions(self) -> List[Position]:
        with self.lock:
            return list(self._positions.values())

    def open_symbols(self) -> List[str]:
        with self.lock:
            return list(self._positions)

    def open_position_count(self) -> int:
        with self.lock:
            return len(self._positions)

    def trades(self) -> List[Trade]:
        """Closed trades, oldest first"""
        with self.lock:
            return list(self._trades)

    def recent_trades(self, limit: int = 10) -> List[Trade]:
        """Closed trades, newest first"""
        with self.lock:
            return list(reversed(self._trades[-limit:])) if limit > 0 else []

    def get_stats(self) -> Dict[str, float]:
        """
        Summary statistics over closed trades.

        Returns:
            Dict with total/winning/losing trades, win rate (%),
            total profit and average profit per trade
        """
        trades = self.trades()
        total = len(trades)
        winning = sum(1 for t in trades if t.pnl > 0)
        total_profit = sum(t.pnl for t in trades)
        return {
            'total_trades': total,
            'winning_trades': winning,
            'losing_trades': total - winning,
            'win_rate': winning / total * 100 if total else 0.0,
            'total_profit': total_profit,
            'avg_profit_per_trade': total_profit / total if total else 0.0,
        }

    def get_status(self) -> Dict:
        with self.lock:
            return {
                'cash': self._cash,
                'equity': self._equity,
                'total_value': self._total_value,
                'net_liquidation_value': self.net_liquidation_value(),
                'positions': {sym: pos.to_dict() for sym, pos in self._positions.items()},
                'trade_count': len(self._trades),
            }

    def display_status(self):
        """Print cash, totals and the open position table"""
        status = self.get_status()
        print("\n" + "="*80)
        print("PORTFOLIO")
        print("="*80)
        print(f"Cash:         ${status['cash']:,.2f}")
        print(f"Equity:       ${status['equity']:,.2f}")
        print(f"Total Value:  ${status['total_value']:,.2f}")
        print(f"Trades:       {status['trade_count']}")
        positions = self.open_positions()
        if positions:
            print("-"*80)
            print(f"{'Symbol':<10} {'Dir':<6} {'Qty':>10} {'Entry':>12} {'Current':>12} {'P&L':>12} {'P&L %':>8}")
            print("-"*80)
            for p in positions:
                print(
                    f"{p.symbol:<10} {p.direction.value:<6} {p.quantity:>10.4f} {p.entry_price:>12,.2f} "
                    f"{p.current_price:>12,.2f} {p.pnl:>+12,.2f} {p.pnl_percent:>+7.2f}%"
                )
        print("="*80 + "\n")
