"""
Alert Engine
============
User-defined price alerts:
- Create, update and remove alerts by id
- Evaluate alerts on every tick, triggering each at most once
- Emit one notification per triggered alert
- Persist a full-collection snapshot on every mutation
"""

import logging
import threading
import uuid
from dataclasses import dataclass, asdict, field
from datetime import datetime
from typing import Dict, List, Optional

from .alert_store import AlertStore, InMemoryAlertStore
from .errors import TransportError, ValidationError
from .notifications import Notification, NotificationSink, LoggingNotificationSink
from .sim_config import SimConfig
from .symbol_locks import SymbolLocks
from .transport import bounded_call

logger = logging.getLogger(__name__)

STORE_KEY = 'price_alerts'
CONDITIONS = ('above', 'below')


@dataclass
class PriceAlert:
    """A price threshold watched on one symbol"""
    id: str
    symbol: str
    condition: str
    price: float
    active: bool = True
    triggered: bool = False
    created_at: datetime = field(default_factory=datetime.now)
    triggered_at: Optional[datetime] = None
    message: Optional[str] = None

    def is_satisfied_by(self, price: float) -> bool:
        if self.condition == 'above':
            return price >= self.price
        return price <= self.price

    def to_dict(self) -> dict:
        data = asdict(self)
        data['created_at'] = self.created_at.isoformat()
        data['triggered_at'] = self.triggered_at.isoformat() if self.triggered_at else None
        return data

    @classmethod
    def from_dict(cls, data: dict) -> 'PriceAlert':
        data = dict(data)
        data['created_at'] = datetime.fromisoformat(data['created_at']) if data.get('created_at') else datetime.now()
        if data.get('triggered_at'):
            data['triggered_at'] = datetime.fromisoformat(data['triggered_at'])
        return cls(**data)


def _check_condition(condition: str):
    if condition not in CONDITIONS:
        raise ValidationError(f"Alert condition must be one of {CONDITIONS}, got {condition!r}")


def _check_price(price) -> float:
    try:
        value = float(price)
    except (TypeError, ValueError):
        raise ValidationError(f"Alert price must be numeric, got {price!r}")
    if value <= 0:
        raise ValidationError(f"Alert price must be positive, got {price}")
    return value


class AlertEngine:
    """
    Owns the PriceAlert collection.

    Features:
    - At-most-once triggering under per-symbol serialization
    - Notification per trigger through the injected sink
    - Snapshot persistence through the injected store
    - Store/sink failures are logged, never raised into the tick path
    """

    def __init__(
        self,
        config: SimConfig = None,
        store: AlertStore = None,
        sink: NotificationSink = None,
        symbol_locks: SymbolLocks = None
    ):
        """
        Initialize AlertEngine.

        Args:
            config: SimConfig (external_timeout_seconds bounds store/sink calls)
            store: Alert persistence (in-memory if None)
            sink: Notification sink (logging sink if None)
            symbol_locks: Shared lock registry (a private one if None)
        """
        self.config = config or SimConfig()
        self.store = store or InMemoryAlertStore()
        self.sink = sink or LoggingNotificationSink()
        self._locks = symbol_locks or SymbolLocks()
        self._alerts: Dict[str, PriceAlert] = {}
        self._collection_lock = threading.RLock()
        self._write_lock = threading.Lock()
        self._snapshot_version = 0
        self._written_version = 0
        self.persist_failures = 0
        self.notify_failures = 0

        logger.info("[OK] AlertEngine initialized")

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    def load(self) -> int:
        """
        Replace the collection with the stored snapshot.

        Returns:
            Number of alerts loaded (0 when the store is empty or unreachable)
        """
        try:
            records = bounded_call(
                self.store.get, STORE_KEY,
                timeout=self.config.external_timeout_seconds, name='alert store get'
            )
        except TransportError as e:
            logger.error(f"Could not load alerts: {e}")
            return 0

        alerts = {}
        for record in records or []:
            try:
                alert = PriceAlert.from_dict(record)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed stored alert {record!r}: {e}")
                continue
            alerts[alert.id] = alert

        with self._collection_lock:
            self._alerts = alerts
        logger.info(f"Alerts loaded: {len(alerts)}")
        return len(alerts)

    def _persist(self) -> bool:
        with self._collection_lock:
            self._snapshot_version += 1
            version = self._snapshot_version
            snapshot = [a.to_dict() for a in self._alerts.values()]
        try:
            bounded_call(
                self._write_snapshot, version, snapshot,
                timeout=self.config.external_timeout_seconds, name='alert store put'
            )
            return True
        except TransportError as e:
            with self._collection_lock:
                self.persist_failures += 1
            logger.error(f"Error saving alerts: {e}")
            return False

    def _write_snapshot(self, version: int, snapshot: List[dict]):
        """
        Put a snapshot unless a newer one already reached the store.

        Writes are serialized, so the store only ever moves forward to
        later versions of the collection.
        """
        with self._write_lock:
            if version <= self._written_version:
                logger.debug(f"Skipping stale alert snapshot v{version} (stored v{self._written_version})")
                return
            self.store.put(STORE_KEY, snapshot)
            self._written_version = version

    def _emit(self, alert: PriceAlert, price: float):
        event = Notification(
            type='alert',
            title=f"Alert triggered: {alert.symbol}",
            message=alert.message or f"{alert.symbol} is {alert.condition} {alert.price:,.2f} (now {price:,.2f})",
            symbol=alert.symbol,
            price=price
        )
        try:
            bounded_call(
                self.sink.notify, event,
                timeout=self.config.external_timeout_seconds, name='notification sink'
            )
        except TransportError as e:
            with self._collection_lock:
                self.notify_failures += 1
            logger.error(f"Notification for alert {alert.id} not delivered: {e}")

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def create_alert(self, symbol: str, condition: str, price: float, message: str = None) -> PriceAlert:
        """
        Create an active, untriggered alert.

        Args:
            symbol: Symbol to watch (upper-cased)
            condition: 'above' or 'below'
            price: Threshold price

        Returns:
            The new PriceAlert

        Raises:
            ValidationError: bad symbol, condition or price
        """
        if not symbol or not str(symbol).strip():
            raise ValidationError("Alert symbol is required")
        _check_condition(condition)
        alert = PriceAlert(
            id=f"ALERT_{uuid.uuid4().hex[:12]}",
            symbol=str(symbol).strip().upper(),
            condition=condition,
            price=_check_price(price),
            message=message
        )

        with self._collection_lock:
            self._alerts[alert.id] = alert
        self._persist()

        logger.info(f"Alert created: {alert.symbol} {alert.condition} {alert.price:,.2f} ({alert.id})")
        return alert

    def remove_alert(self, alert_id: str) -> bool:
        """Delete an alert in any state. Returns False for unknown ids."""
        with self._collection_lock:
            removed = self._alerts.pop(alert_id, None)
        if removed is None:
            logger.warning(f"Cannot remove unknown alert: {alert_id}")
            return False
        self._persist()
        logger.info(f"Alert removed: {alert_id}")
        return True

    def update_alert(self, alert_id: str, **changes) -> Optional[PriceAlert]:
        """
        Change an alert's symbol, condition, price, message or active flag.

        A triggered alert cannot be re-activated.

        Returns:
            Updated alert, or None for unknown ids
        """
        allowed = {'symbol', 'condition', 'price', 'message', 'active'}
        unknown = set(changes) - allowed
        if unknown:
            raise ValidationError(f"Cannot update alert fields: {sorted(unknown)}")

        with self._collection_lock:
            alert = self._alerts.get(alert_id)
        if alert is None:
            logger.warning(f"Cannot update unknown alert: {alert_id}")
            return None

        with self._locks(alert.symbol):
            if 'condition' in changes:
                _check_condition(changes['condition'])
                alert.condition = changes['condition']
            if 'price' in changes:
                alert.price = _check_price(changes['price'])
            if 'message' in changes:
                alert.message = changes['message']
            if 'active' in changes:
                if changes['active'] and alert.triggered:
                    logger.warning(f"Alert {alert_id} already triggered, staying inactive")
                else:
                    alert.active = bool(changes['active'])
            if 'symbol' in changes:
                alert.symbol = str(changes['symbol']).strip().upper()

        self._persist()
        return alert

    def clear_triggered(self) -> int:
        """Remove all triggered alerts. Returns how many were removed."""
        with self._collection_lock:
            triggered = [a.id for a in self._alerts.values() if a.triggered]
            for alert_id in triggered:
                del self._alerts[alert_id]
        if triggered:
            self._persist()
        return len(triggered)

    # =========================================================================
    # EVALUATION
    # =========================================================================

    def check_alerts(self, symbol: str, price: float, timestamp: datetime = None) -> List[PriceAlert]:
        """
        Evaluate every active alert on `symbol` against a tick price.

        Args:
            symbol: Tick symbol
            price: Tick price
            timestamp: Tick time, recorded as triggered_at

        Returns:
            Alerts triggered by this tick
        """
        triggered = []
        with self._locks(symbol):
            with self._collection_lock:
                candidates = [a for a in self._alerts.values() if a.symbol == symbol]
            for alert in candidates:
                if alert.active and not alert.triggered and alert.is_satisfied_by(price):
                    alert.triggered = True
                    alert.active = False
                    alert.triggered_at = timestamp or datetime.now()
                    triggered.append(alert)

        if triggered:
            self._persist()
            for alert in triggered:
                logger.info(f"[ALERT] {alert.symbol} {alert.condition} {alert.price:,.2f} hit at {price:,.2f}")
                self._emit(alert, price)

        return triggered

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_alert(self, alert_id: str) -> Optional[PriceAlert]:
        with self._collection_lock:
            return self._alerts.get(alert_id)

    def get_alerts(self, symbol: str = None) -> List[PriceAlert]:
        """All alerts, oldest first, optionally for one symbol"""
        with self._collection_lock:
            alerts = list(self._alerts.values())
        if symbol:
            alerts = [a for a in alerts if a.symbol == symbol.upper()]
        return sorted(alerts, key=lambda a: a.created_at)

    def get_active_alerts(self) -> List[PriceAlert]:
        return [a for a in self.get_alerts() if a.active and not a.triggered]
