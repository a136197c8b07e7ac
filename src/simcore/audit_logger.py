"""
Audit Logger
============
CSV audit trail for the simulation:
- One row per event (ticks rejected, signals, admissions, fills,
  position opens/closes, alerts, errors)
- Query interface and trade summary via pandas
"""

import csv
import logging
import threading
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

import pandas as pd

from .sim_config import SimConfig

logger = logging.getLogger(__name__)

HEADERS = [
    'timestamp',
    'event_type',
    'symbol',
    'side',
    'qty',
    'price',
    'order_id',
    'pnl',
    'message'
]


class EventType(Enum):
    """Types of events to log"""
    TICK_REJECTED = "TICK_REJECTED"
    SIGNAL = "SIGNAL"
    ADMISSION_REJECTED = "ADMISSION_REJECTED"
    ORDER_FAILED = "ORDER_FAILED"
    POSITION_OPENED = "POSITION_OPENED"
    POSITION_CLOSED = "POSITION_CLOSED"
    ALERT_TRIGGERED = "ALERT_TRIGGERED"
    DAY_BOUNDARY = "DAY_BOUNDARY"
    ERROR = "ERROR"
    SYSTEM = "SYSTEM"


class AuditLogger:
    """
    Append-only CSV audit trail.

    Features:
    - Thread-safe appends
    - Filtered queries as DataFrames
    - Trade summary from POSITION_CLOSED rows
    """

    def __init__(self, config: SimConfig = None, path: str = None):
        """
        Initialize AuditLogger.

        Args:
            config: SimConfig instance (audit_csv is the default path)
            path: Override for the CSV location
        """
        self.config = config or SimConfig()
        self.audit_csv = Path(path or self.config.audit_csv)
        self.audit_csv.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

        self._init_csv()

        logger.info(f"[OK] AuditLogger initialized (csv: {self.audit_csv})")

    def _init_csv(self):
        """Initialize CSV file with headers if it doesn't exist"""
        if not self.audit_csv.exists():
            with open(self.audit_csv, 'w', newline='') as f:
                csv.writer(f).writerow(HEADERS)

    def log_event(
        self,
        event_type: EventType,
        symbol: str = '',
        side: str = '',
        qty: float = 0,
        price: float = 0,
        order_id: str = '',
        pnl: float = 0,
        message: str = '',
        timestamp: datetime = None
    ):
        """
        Log an event to the audit trail.

        Rows are stamped with `timestamp` (tick or bar time) when given,
        wall-clock time otherwise. Write failures are logged and swallowed;
        the trail never interrupts tick processing.
        """
        row = [
            (timestamp or datetime.now()).isoformat(),
            event_type.value,
            symbol,
            side,
            qty,
            price,
            order_id,
            pnl,
            message
        ]

        try:
            with self._lock:
                with open(self.audit_csv, 'a', newline='') as f:
                    csv.writer(f).writerow(row)
            logger.debug(f"Logged {event_type.value}: {symbol} {message}")
        except OSError as e:
            logger.error(f"Error writing to audit log: {e}")

    def log_error(self, message: str, symbol: str = '', timestamp: datetime = None):
        self.log_event(EventType.ERROR, symbol=symbol, message=message, timestamp=timestamp)

    def log_info(self, message: str, symbol: str = '', timestamp: datetime = None):
        self.log_event(EventType.SYSTEM, symbol=symbol, message=message, timestamp=timestamp)

    # =========================================================================
    # QUERY INTERFACE
    # =========================================================================

    def get_audit_trail(self, symbol: str = None, event_type: EventType = None) -> pd.DataFrame:
        """
        Query the audit trail.

        Args:
            symbol: Filter by symbol
            event_type: Filter by event type

        Returns:
            DataFrame with matching events
        """
        with self._lock:
            df = pd.read_csv(self.audit_csv, dtype={'symbol': str, 'side': str, 'order_id': str, 'message': str})

        if symbol:
            df = df[df['symbol'] == symbol]
        if event_type:
            df = df[df['event_type'] == event_type.value]
        return df

    def get_trade_summary(self) -> Dict[str, Any]:
        """
        Get summary statistics from the audit trail.

        Returns:
            Dict with trade statistics
        """
        closed = self.get_audit_trail(event_type=EventType.POSITION_CLOSED)

        if len(closed) == 0:
            return {
                'total_trades': 0,
                'winning_trades': 0,
                'losing_trades': 0,
                'win_rate': 0,
                'total_pnl': 0,
                'avg_pnl': 0
            }

        winning = closed[closed['pnl'] > 0]
        losing = closed[closed['pnl'] <= 0]

        return {
            'total_trades': len(closed),
            'winning_trades': len(winning),
            'losing_trades': len(losing),
            'win_rate': len(winning) / len(closed),
            'total_pnl': float(closed['pnl'].sum()),
            'avg_pnl': float(closed['pnl'].mean()),
            'best_trade': float(closed['pnl'].max()),
            'worst_trade': float(closed['pnl'].min())
        }

    def display_recent(self, n: int = 10):
        """Display recent audit entries"""
        df = self.get_audit_trail()

        print("\n" + "="*100)
        print(f"RECENT AUDIT ENTRIES (last {n})")
        print("="*100)

        if len(df) == 0:
            print("No entries yet")
        else:
            for _, row in df.tail(n).iterrows():
                ts = row['timestamp'][:19]
                symbol = row['symbol'] if pd.notna(row['symbol']) else ''
                msg = row['message'] if pd.notna(row['message']) else ''
                print(f"{ts} | {row['event_type']:<18} | {symbol:<10} | {msg}")

        print("="*100 + "\n")
