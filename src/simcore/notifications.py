"""
Notifications
=============
Outbound notification events and sinks:
- Notification record (alert/info/warning/success)
- NotificationSink interface with notify(event)
- InMemoryNotificationSink with read/unread tracking
- LoggingNotificationSink forwarding to the logging module
"""

import itertools
import logging
import threading
from dataclasses import dataclass, asdict, field
from datetime import datetime
from typing import List, Optional

logger = logging.getLogger(__name__)

NOTIFICATION_TYPES = ('alert', 'info', 'warning', 'success')

_id_counter = itertools.count(1)


@dataclass
class Notification:
    """A single outbound notification"""
    type: str
    title: str
    message: str
    symbol: Optional[str] = None
    price: Optional[float] = None
    id: str = field(default_factory=lambda: f"N{next(_id_counter):08d}")
    timestamp: datetime = field(default_factory=datetime.now)
    read: bool = False

    def __post_init__(self):
        if self.type not in NOTIFICATION_TYPES:
            raise ValueError(f"Unknown notification type: {self.type}")

    def to_dict(self) -> dict:
        data = asdict(self)
        data['timestamp'] = self.timestamp.isoformat()
        return data


class NotificationSink:
    """Interface: fire-and-forget delivery, no return value"""

    def notify(self, event: Notification) -> None:
        raise NotImplementedError


class InMemoryNotificationSink(NotificationSink):
    """Keeps every notification, newest first, up to max_items"""

    def __init__(self, max_items: int = 100):
        self.max_items = max_items
        self._items: List[Notification] = []
        self._lock = threading.Lock()

    def notify(self, event: Notification) -> None:
        with self._lock:
            self._items.insert(0, event)
            del self._items[self.max_items:]

    @property
    def notifications(self) -> List[Notification]:
        with self._lock:
            return list(self._items)

    def unread_count(self) -> int:
        with self._lock:
            return sum(1 for n in self._items if not n.read)

    def mark_as_read(self, notification_id: str) -> bool:
        with self._lock:
            for n in self._items:
                if n.id == notification_id:
                    n.read = True
                    return True
        return False

    def mark_all_as_read(self):
        with self._lock:
            for n in self._items:
                n.read = True

    def remove(self, notification_id: str) -> bool:
        with self._lock:
            before = len(self._items)
            self._items = [n for n in self._items if n.id != notification_id]
            return len(self._items) < before

    def clear(self):
        with self._lock:
            self._items.clear()


class LoggingNotificationSink(NotificationSink):
    """Writes notifications to the log"""

    def notify(self, event: Notification) -> None:
        level = logging.WARNING if event.type in ('alert', 'warning') else logging.INFO
        logger.log(level, f"[{event.type.upper()}] {event.title}: {event.message}")
