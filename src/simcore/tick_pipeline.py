"""
Tick Pipeline
=============
The per-tick processing chain shared by the live engine and the backtester:
- Analytics update and alert evaluation
- Mark-to-market of the open position
- Stop-loss / take-profit and reversal exits
- Strategy decision, admission control, execution, ledger update

Execution is handed to a dispatch callable so the live engine can
defer it; the backtester runs it immediately.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Set

from .alert_engine import AlertEngine, PriceAlert
from .analytics_engine import AnalyticsEngine, PriceAnalysis
from .audit_logger import AuditLogger, EventType
from .decision_engine import TradingDecision
from .errors import ValidationError
from .execution_simulator import ExecutionSimulator
from .portfolio_ledger import PortfolioLedger, PortfolioSnapshot, Position, Trade, to_direction
from .risk_manager import AdmissionDecision, RiskManager
from .sim_config import SimConfig
from .tick_feed import PriceTick, validate_tick

logger = logging.getLogger(__name__)


@dataclass
class StrategyContext:
    """Everything a strategy may see at one tick; nothing after it"""
    symbol: str
    tick: PriceTick
    analysis: Optional[PriceAnalysis]
    history: List[float]
    position: Optional[Position]
    portfolio: PortfolioSnapshot


@dataclass
class TickOutcome:
    """What one tick did"""
    symbol: str
    analysis: Optional[PriceAnalysis] = None
    triggered_alerts: List[PriceAlert] = field(default_factory=list)
    decision: Optional[TradingDecision] = None
    admission: Optional[AdmissionDecision] = None
    actions: List[str] = field(default_factory=list)


def run_immediately(symbol: str, delay: float, fn: Callable[[], None]):
    """Dispatch that ignores latency and runs the execution inline"""
    fn()


class TickPipeline:
    """
    Tick -> Analytics/Alerts -> Decision -> Risk -> Execution -> Ledger.

    Callers must hold the tick's symbol lock while calling handle_tick;
    the dispatch callable is responsible for re-acquiring it before
    running a deferred execution.
    """

    def __init__(
        self,
        config: SimConfig,
        ledger: PortfolioLedger,
        analytics: AnalyticsEngine,
        risk: RiskManager,
        execution: ExecutionSimulator,
        strategy_fn: Callable[[StrategyContext], TradingDecision],
        alerts: AlertEngine = None,
        audit: AuditLogger = None,
        dispatch: Callable[[str, float, Callable[[], None]], None] = None
    ):
        """
        Initialize TickPipeline.

        Args:
            config: SimConfig instance
            ledger: Ledger the pipeline trades against
            analytics: Analytics engine fed by every tick
            risk: Admission control and exit checks
            execution: Fill model
            strategy_fn: Maps a StrategyContext to a TradingDecision
            alerts: Alert engine checked on every tick (optional)
            audit: Audit trail (optional)
            dispatch: dispatch(symbol, delay_seconds, fn) runs executions
        """
        self.config = config
        self.ledger = ledger
        self.analytics = analytics
        self.risk = risk
        self.execution = execution
        self.strategy_fn = strategy_fn
        self.alerts = alerts
        self.audit = audit
        self.dispatch = dispatch or run_immediately

        self._pending_lock = threading.Lock()
        self._admission_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._pending_opens: Set[str] = set()
        self._pending_closes: Set[str] = set()

        self.ticks_processed = 0
        self.ticks_rejected = 0
        self.orders_failed = 0

    # =========================================================================
    # TICK HANDLING
    # =========================================================================

    def handle_tick(self, tick: PriceTick) -> TickOutcome:
        """
        Run one tick through the pipeline.

        Raises:
            ValidationError: malformed tick (nothing was changed)
        """
        try:
            validate_tick(tick)
        except ValidationError:
            with self._stats_lock:
                self.ticks_rejected += 1
            raise

        symbol = tick.symbol
        outcome = TickOutcome(symbol=symbol)

        outcome.analysis = self.analytics.update(tick)
        if self.alerts is not None:
            outcome.triggered_alerts = self.alerts.check_alerts(symbol, tick.price, tick.timestamp)
            for alert in outcome.triggered_alerts:
                self._audit(EventType.ALERT_TRIGGERED, tick.timestamp, symbol=symbol, price=tick.price,
                            message=f"{alert.condition} {alert.price} ({alert.id})")

        self.ledger.update_prices({symbol: tick.price})
        with self._stats_lock:
            self.ticks_processed += 1

        position = self.ledger.get_position(symbol)
        closing = False
        if position is not None:
            should_exit, reason = self.risk.check_exit_conditions(position, tick.price)
            if should_exit:
                exit_kind = reason.split(' ')[0]
                closing = self._request_close(symbol, exit_kind, tick)
                if closing:
                    outcome.actions.append(f"close:{exit_kind}")

        with self._pending_lock:
            in_flight = symbol in self._pending_opens or symbol in self._pending_closes
        if in_flight and not closing:
            return outcome

        context = StrategyContext(
            symbol=symbol,
            tick=tick,
            analysis=outcome.analysis,
            history=self.analytics.get_history(symbol),
            position=position,
            portfolio=self.ledger.snapshot()
        )
        decision = self.strategy_fn(context)
        outcome.decision = decision
        if decision is None or not decision.is_actionable:
            return outcome

        if position is not None:
            if not closing and to_direction(decision.decision) != position.direction:
                if self._request_close(symbol, 'REVERSAL', tick):
                    outcome.actions.append('close:REVERSAL')
            return outcome
        if closing:
            return outcome

        self._audit(EventType.SIGNAL, tick.timestamp, symbol=symbol, side=decision.decision.value, price=tick.price,
                    message=f"confidence {decision.confidence:.2f} quality {decision.quality} "
                            f"suggested risk {self.risk.calculate_risk(decision):.2%}")

        if decision.confidence < self.config.min_confidence:
            outcome.admission = AdmissionDecision(False, f"confidence {decision.confidence:.2f} below minimum")
            return outcome

        admission = self._admit(decision, tick.price)
        outcome.admission = admission
        if not admission.allowed:
            self._audit(EventType.ADMISSION_REJECTED, tick.timestamp, symbol=symbol, side=decision.decision.value,
                        message=admission.reason)
            return outcome

        self._request_open(decision, admission.quantity, tick)
        outcome.actions.append(f"open:{decision.decision.value}")
        return outcome

    def _admit(self, decision: TradingDecision, price: float) -> AdmissionDecision:
        """
        Check admission and, when allowed, reserve the symbol as a pending open.

        The check and the reservation happen under one pipeline-wide lock,
        so open plus pending positions never exceed max_positions.
        """
        with self._admission_lock:
            with self._pending_lock:
                pending = set(self._pending_opens)
            open_symbols = set(self.ledger.open_symbols()) | pending
            admission = self.risk.check_admission(
                decision,
                self.ledger.snapshot(),
                len(open_symbols),
                open_symbols,
                buying_power=self.ledger.cash,
                current_price=price
            )
            if admission.allowed:
                with self._pending_lock:
                    self._pending_opens.add(decision.symbol)
            return admission

    # =========================================================================
    # EXECUTION
    # =========================================================================

    def _request_open(self, decision: TradingDecision, quantity: float, tick: PriceTick):
        # The symbol was reserved in _pending_opens by _admit
        delay = self.execution.draw_latency()
        exec_time = tick.timestamp + timedelta(seconds=delay)

        def execute():
            try:
                self.execute_open(decision, quantity, exec_time)
            finally:
                with self._pending_lock:
                    self._pending_opens.discard(decision.symbol)

        self.dispatch(decision.symbol, delay, execute)

    def _request_close(self, symbol: str, reason: str, tick: PriceTick) -> bool:
        with self._pending_lock:
            if symbol in self._pending_closes:
                return False
            self._pending_closes.add(symbol)
        delay = self.execution.draw_latency()
        exec_time = tick.timestamp + timedelta(seconds=delay)

        def execute():
            try:
                self.execute_close(symbol, reason, exec_time)
            finally:
                with self._pending_lock:
                    self._pending_closes.discard(symbol)

        self.dispatch(symbol, delay, execute)
        return True

    def execute_open(self, decision: TradingDecision, quantity: float, exec_time: datetime) -> bool:
        """Simulate the fill and apply it to the ledger at the latest known price"""
        symbol = decision.symbol
        price = self.analytics.get_latest_price(symbol) or decision.entry_price
        result = self.execution.simulate_open(decision, price, quantity)

        if not result.success:
            with self._stats_lock:
                self.orders_failed += 1
            self._audit(EventType.ORDER_FAILED, exec_time, symbol=symbol, side=result.side, qty=quantity,
                        price=price, order_id=result.order_id or '', message=result.message)
            return False

        _, stop, target = self.risk.resolve_levels(decision, price)
        opened = self.ledger.open_position(
            symbol,
            decision.decision,
            result.executed_price,
            quantity,
            stop_loss=stop,
            take_profit=target,
            entry_time=exec_time,
            fee=result.fee
        )
        if opened:
            self._audit(EventType.POSITION_OPENED, exec_time, symbol=symbol, side=result.side, qty=quantity,
                        price=result.executed_price, order_id=result.order_id or '',
                        message=f"stop {stop:.2f} target {target:.2f} fee {result.fee:.4f}")
        return opened

    def execute_close(self, symbol: str, reason: str, exec_time: datetime) -> Optional[Trade]:
        """Simulate the exit fill and close the position in the ledger"""
        position = self.ledger.get_position(symbol)
        if position is None:
            return None

        close = self.execution.simulate_close(position, position.current_price)
        trade = self.ledger.close_position(
            symbol, close.executed_price, exit_time=exec_time, fee=close.fee, reason=reason)
        if trade is not None:
            self.risk.record_realized_pnl(trade.pnl)
            self._audit(EventType.POSITION_CLOSED, exec_time, symbol=symbol, side=trade.direction.value,
                        qty=trade.quantity, price=trade.exit_price, order_id=close.order_id or '',
                        pnl=trade.pnl, message=reason)
        return trade

    def close_all(self, reason: str, exec_time: datetime) -> List[Trade]:
        """Close every open position immediately (end of data, shutdown)"""
        trades = []
        for symbol in self.ledger.open_symbols():
            trade = self.execute_close(symbol, reason, exec_time)
            if trade is not None:
                trades.append(trade)
        return trades

    def clear_pending(self):
        """Forget in-flight executions (after their timers were cancelled)"""
        with self._pending_lock:
            self._pending_opens.clear()
            self._pending_closes.clear()

    def pending_count(self) -> int:
        with self._pending_lock:
            return len(self._pending_opens) + len(self._pending_closes)

    def _audit(self, event_type: EventType, timestamp: datetime, **kwargs):
        if self.audit is not None:
            self.audit.log_event(event_type, timestamp=timestamp, **kwargs)
