"""
Simulation Engine
=================
Live tick-driven simulation that orchestrates all components:
- Non-blocking tick ingestion into per-symbol queues
- Per-symbol serialized processing, symbols in parallel
- Deferred, cancellable order execution with simulated latency
- Bounded reads from the market feed
- Graceful stop: finish the current tick, cancel pending executions
- Audit logging and status reporting
"""

import logging
import threading
import time
import traceback
from collections import deque
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from datetime import datetime
from typing import Callable, Deque, Dict, Iterable, List, Optional, Set

from .alert_engine import AlertEngine
from .alert_store import AlertStore
from .analytics_engine import AnalyticsEngine
from .audit_logger import AuditLogger, EventType
from .decision_engine import DecisionEngine, TradingDecision
from .errors import TransportError, ValidationError
from .execution_simulator import ExecutionSimulator
from .notifications import NotificationSink
from .portfolio_ledger import PortfolioLedger
from .risk_manager import RiskManager
from .sim_config import SimConfig
from .symbol_locks import SymbolLocks
from .tick_feed import PriceTick, parse_tick, validate_tick
from .tick_pipeline import StrategyContext, TickOutcome, TickPipeline

logger = logging.getLogger(__name__)

_END_OF_FEED = object()


class ExecutionScheduler:
    """
    Runs executions after a delay on timer threads.

    Each execution re-acquires its symbol lock before running.
    Zero delays run inline on the caller's thread. Once cancel_all()
    returns, no execution starts and none is still running.
    """

    def __init__(self, symbol_locks: SymbolLocks):
        self._locks = symbol_locks
        self._timers: Dict[int, threading.Timer] = {}
        self._guard = threading.Lock()
        self._run_lock = threading.Lock()
        self._next_id = 0
        self._cancelled = False

    def schedule(self, symbol: str, delay: float, fn: Callable[[], None]):
        with self._guard:
            if self._cancelled:
                logger.debug(f"{symbol}: execution dropped, scheduler cancelled")
                return
            self._next_id += 1
            timer_id = self._next_id

        def run():
            with self._guard:
                self._timers.pop(timer_id, None)
            # Lock order: symbol lock, then run lock
            with self._locks(symbol), self._run_lock:
                if self._cancelled:
                    return
                try:
                    fn()
                except Exception as e:
                    logger.error(f"{symbol}: deferred execution failed: {e}")
                    logger.error(traceback.format_exc())

        if delay <= 0:
            run()
            return

        timer = threading.Timer(delay, run)
        timer.daemon = True
        with self._guard:
            self._timers[timer_id] = timer
        timer.start()

    def cancel_all(self) -> int:
        """Cancel every pending execution. Returns how many were cancelled."""
        with self._run_lock, self._guard:
            self._cancelled = True
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()
        return len(timers)

    def pending(self) -> int:
        with self._guard:
            return len(self._timers)


class SimulationEngine:
    """
    Main real-time simulation engine.

    Coordinates all components:
    1. Ingests ticks from the feed without blocking it
    2. Updates analytics and evaluates alerts
    3. Marks positions and checks exits
    4. Generates decisions and applies admission control
    5. Executes orders after simulated latency
    6. Logs events to the audit trail
    """

    def __init__(
        self,
        config: SimConfig = None,
        store: AlertStore = None,
        sink: NotificationSink = None,
        audit: AuditLogger = None,
        strategy_fn: Callable[[StrategyContext], TradingDecision] = None
    ):
        """
        Initialize simulation engine.

        Args:
            config: SimConfig instance (creates default if None)
            store: Alert persistence collaborator
            sink: Notification sink collaborator
            audit: Audit trail (none if None)
            strategy_fn: Decision function (DecisionEngine strategy if None)
        """
        self.config = config or SimConfig()
        self.config.validate()

        # Initialize components
        self.symbol_locks = SymbolLocks()
        self.ledger = PortfolioLedger(self.config)
        self.analytics = AnalyticsEngine(self.config, self.symbol_locks)
        self.alerts = AlertEngine(self.config, store, sink, self.symbol_locks)
        self.decisions = DecisionEngine(self.analytics, self.config)
        self.risk = RiskManager(self.config)
        self.execution = ExecutionSimulator(self.config)
        self.scheduler = ExecutionScheduler(self.symbol_locks)
        self.audit = audit
        self.pipeline = TickPipeline(
            self.config,
            self.ledger,
            self.analytics,
            self.risk,
            self.execution,
            strategy_fn or self.decisions.as_strategy(),
            alerts=self.alerts,
            audit=self.audit,
            dispatch=self.scheduler.schedule
        )

        # Worker pool and per-symbol queues
        self.executor = ThreadPoolExecutor(
            max_workers=self.config.worker_threads, thread_name_prefix='simcore-tick')
        self._feed_reader = ThreadPoolExecutor(max_workers=1, thread_name_prefix='simcore-feed')
        self._queues: Dict[str, Deque[PriceTick]] = {}
        self._draining: Set[str] = set()
        self._queue_lock = threading.Lock()

        # Engine state
        self.running = False
        self._stop_event = threading.Event()
        self.feed_thread: Optional[threading.Thread] = None
        self.started_at: Optional[datetime] = None
        self.ticks_received = 0
        self.ticks_rejected = 0
        self.feed_timeouts = 0
        self.errors: List[str] = []
        self._stats_lock = threading.Lock()

        logger.info("[OK] SimulationEngine initialized")

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def startup(self):
        """Restore persisted alerts and mark the engine running"""
        logger.info("=" * 50)
        logger.info("SIMULATION ENGINE STARTUP")
        logger.info("=" * 50)

        loaded = self.alerts.load()
        logger.info(f"[OK] Loaded {loaded} saved alerts")

        self.running = True
        self.started_at = datetime.now()
        if self.audit is not None:
            self.audit.log_info(f"startup symbols={','.join(self.config.symbols)}")

    def stop(self, timeout: float = 10.0):
        """
        Stop the engine gracefully.

        Ticks already being processed finish; queued ticks and pending
        executions are dropped.
        """
        logger.info("Stop requested...")
        self._stop_event.set()
        self.running = False

        cancelled = self.scheduler.cancel_all()
        self.pipeline.clear_pending()
        if cancelled:
            logger.info(f"Cancelled {cancelled} pending executions")

        with self._queue_lock:
            dropped = sum(len(q) for q in self._queues.values())
            for q in self._queues.values():
                q.clear()
        if dropped:
            logger.info(f"Dropped {dropped} queued ticks")

        if self.feed_thread and self.feed_thread.is_alive() and self.feed_thread is not threading.current_thread():
            self.feed_thread.join(timeout=timeout)

        self.executor.shutdown(wait=True)
        self._feed_reader.shutdown(wait=False)
        self._shutdown()

    def _shutdown(self):
        logger.info("\n" + "=" * 50)
        logger.info("ENGINE SHUTDOWN")
        logger.info("=" * 50)
        if self.audit is not None:
            self.audit.log_info(f"shutdown ticks={self.ticks_received} errors={len(self.errors)}")

        stats = self.ledger.get_stats()
        logger.info("Session summary:")
        logger.info(f"  Total trades: {stats['total_trades']}")
        logger.info(f"  Total P&L: ${stats['total_profit']:+,.2f}")
        logger.info("Shutdown complete")

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    # =========================================================================
    # INGESTION
    # =========================================================================

    def submit_tick(self, tick) -> bool:
        """
        Queue a tick for processing without waiting for it.

        Args:
            tick: PriceTick or raw feed payload dict

        Returns:
            True if queued; False if rejected or the engine is stopped
        """
        if self._stop_event.is_set():
            return False

        with self._stats_lock:
            self.ticks_received += 1
        try:
            if isinstance(tick, dict):
                tick = parse_tick(tick)
            validate_tick(tick)
        except ValidationError as e:
            self._reject(e, tick)
            return False

        with self._queue_lock:
            self._queues.setdefault(tick.symbol, deque()).append(tick)
            if tick.symbol in self._draining:
                return True
            self._draining.add(tick.symbol)

        try:
            self.executor.submit(self._drain, tick.symbol)
        except RuntimeError:
            # Executor already shut down
            with self._queue_lock:
                self._draining.discard(tick.symbol)
            return False
        return True

    def _drain(self, symbol: str):
        """Process a symbol's queue in arrival order until it is empty"""
        while True:
            with self._queue_lock:
                queue = self._queues.get(symbol)
                if not queue or self._stop_event.is_set():
                    if queue:
                        queue.clear()
                    self._draining.discard(symbol)
                    return
                tick = queue.popleft()
            self.process_tick(tick)

    def process_tick(self, tick: PriceTick) -> Optional[TickOutcome]:
        """
        Run one tick synchronously under its symbol lock.

        Never raises; failures are logged and the tick is dropped.
        """
        try:
            with self.symbol_locks(tick.symbol):
                return self.pipeline.handle_tick(tick)
        except ValidationError as e:
            self._reject(e, tick)
        except Exception as e:
            error_msg = f"Error processing {getattr(tick, 'symbol', '?')}: {e}"
            logger.error(error_msg)
            logger.error(traceback.format_exc())
            self._record_error(error_msg)
            if self.audit is not None:
                self.audit.log_error(str(e), symbol=getattr(tick, 'symbol', ''),
                                     timestamp=getattr(tick, 'timestamp', None))
        return None

    def _reject(self, error: Exception, tick):
        with self._stats_lock:
            self.ticks_rejected += 1
        logger.warning(f"Tick rejected: {error}")
        self._log_audit(EventType.TICK_REJECTED, symbol=getattr(tick, 'symbol', '') or '', message=str(error))

    # =========================================================================
    # FEED LOOP
    # =========================================================================

    def run(self, feed: Iterable, wait: bool = True):
        """
        Consume a feed until it ends or stop() is called.

        Each read from the feed is bounded by external_timeout_seconds;
        a slow read is logged and waited on again, never skipped.

        Args:
            feed: Iterable of PriceTick or raw payload dicts
            wait: Wait for queued ticks and executions after the feed ends
        """
        if not self.running:
            self.startup()

        iterator = iter(feed)
        pending = None

        while not self._stop_event.is_set():
            if pending is None:
                pending = self._feed_reader.submit(next, iterator, _END_OF_FEED)
            try:
                item = pending.result(timeout=self.config.external_timeout_seconds)
            except FutureTimeout:
                with self._stats_lock:
                    self.feed_timeouts += 1
                logger.warning(f"Feed read timed out after {self.config.external_timeout_seconds:.1f}s")
                continue
            except Exception as e:
                error = TransportError(f"Feed failed: {e}")
                logger.error(str(error))
                self._record_error(str(error))
                if self.audit is not None:
                    self.audit.log_error(str(error))
                break
            pending = None

            if item is _END_OF_FEED:
                logger.info("Feed exhausted")
                break
            self.submit_tick(item)

        if wait and not self._stop_event.is_set():
            self.wait_idle()

    def start_background(self, feed: Iterable):
        """Start consuming a feed in a background thread"""
        if self.feed_thread and self.feed_thread.is_alive():
            logger.warning("Engine already running")
            return

        self.startup()
        self.feed_thread = threading.Thread(target=self.run, args=(feed,), daemon=True)
        self.feed_thread.start()
        logger.info("Engine started in background thread")

    def wait_idle(self, timeout: float = 30.0) -> bool:
        """
        Block until no ticks are queued and no executions are pending.

        Returns:
            True if idle, False on timeout
        """
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            with self._queue_lock:
                busy = bool(self._draining) or any(self._queues.values())
            if not busy and self.scheduler.pending() == 0 and self.pipeline.pending_count() == 0:
                return True
            time.sleep(0.01)
        logger.warning(f"Engine not idle after {timeout:.1f}s")
        return False

    def on_day_boundary(self):
        """External day-boundary signal: reset daily risk statistics"""
        self.risk.on_day_boundary()
        self._log_audit(EventType.DAY_BOUNDARY, message="daily stats reset")

    # =========================================================================
    # STATUS
    # =========================================================================

    def get_status(self) -> Dict:
        """
        Get current engine status.

        Returns:
            Status dictionary
        """
        portfolio = self.ledger.snapshot()
        return {
            'running': self.running,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'ticks_received': self.ticks_received,
            'ticks_processed': self.pipeline.ticks_processed,
            'ticks_rejected': self.ticks_rejected,
            'orders_failed': self.pipeline.orders_failed,
            'feed_timeouts': self.feed_timeouts,
            'pending_executions': self.scheduler.pending(),
            'cash': portfolio.cash,
            'equity': portfolio.equity,
            'total_value': portfolio.total_value,
            'positions': {p.symbol: p.to_dict() for p in self.ledger.open_positions()},
            'active_alerts': len(self.alerts.get_active_alerts()),
            'risk': self.risk.get_status(),
            'errors': len(self.errors),
            'last_errors': self.errors[-3:] if self.errors else []
        }

    def display_status(self):
        """Print portfolio, analyses and counters"""
        status = self.get_status()
        self.ledger.display_status()
        self.analytics.display_analyses()
        print(f"Ticks: {status['ticks_processed']} processed, {status['ticks_rejected']} rejected | "
              f"Failed orders: {status['orders_failed']} | Active alerts: {status['active_alerts']} | "
              f"Errors: {status['errors']}")

    def _record_error(self, message: str):
        with self._stats_lock:
            self.errors.append(message)

    def _log_audit(self, event_type: EventType, **kwargs):
        if self.audit is not None:
            self.audit.log_event(event_type, **kwargs)
