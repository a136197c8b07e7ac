"""
Crypto Trading Simulation Core
==============================
A tick-driven simulated trading system with:
- Technical indicators and rolling per-symbol analytics
- Exactly-once price alerts with pluggable storage and notifications
- Signal-based trading decisions
- Risk-based admission control and position sizing
- Simulated fills with slippage, fees, latency and rejections
- An authoritative portfolio ledger
- Deterministic historical backtesting
"""

from .sim_config import SimConfig
from .errors import (
    SimulationError,
    ValidationError,
    AdmissionRejected,
    ExecutionFailed,
    InvariantViolation,
    TransportError,
)
from .tick_feed import PriceTick, ReplayFeed, parse_tick
from .analytics_engine import AnalyticsEngine, PriceAnalysis
from .alert_store import AlertStore, InMemoryAlertStore, JsonFileAlertStore
from .notifications import Notification, NotificationSink, InMemoryNotificationSink, LoggingNotificationSink
from .alert_engine import AlertEngine, PriceAlert
from .decision_engine import DecisionEngine, TradingDecision, Decision
from .portfolio_ledger import PortfolioLedger, Position, Trade, Direction, PortfolioSnapshot
from .risk_manager import RiskManager, AdmissionDecision
from .execution_simulator import ExecutionSimulator, ExecutionResult, CloseResult
from .audit_logger import AuditLogger, EventType
from .tick_pipeline import TickPipeline, StrategyContext
from .backtester import Backtester, SimulationResult
from .simulation_engine import SimulationEngine

__version__ = "1.0.0"
__all__ = [
    "SimConfig",
    "SimulationError",
    "ValidationError",
    "AdmissionRejected",
    "ExecutionFailed",
    "InvariantViolation",
    "TransportError",
    "PriceTick",
    "ReplayFeed",
    "parse_tick",
    "AnalyticsEngine",
    "PriceAnalysis",
    "AlertStore",
    "InMemoryAlertStore",
    "JsonFileAlertStore",
    "Notification",
    "NotificationSink",
    "InMemoryNotificationSink",
    "LoggingNotificationSink",
    "AlertEngine",
    "PriceAlert",
    "DecisionEngine",
    "TradingDecision",
    "Decision",
    "PortfolioLedger",
    "Position",
    "Trade",
    "Direction",
    "PortfolioSnapshot",
    "RiskManager",
    "AdmissionDecision",
    "ExecutionSimulator",
    "ExecutionResult",
    "CloseResult",
    "AuditLogger",
    "EventType",
    "TickPipeline",
    "StrategyContext",
    "Backtester",
    "SimulationResult",
    "SimulationEngine",
]
