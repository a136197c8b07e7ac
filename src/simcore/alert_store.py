"""
Alert Store
===========
Key-value persistence for JSON-serializable records:
- AlertStore interface (get/put)
- InMemoryAlertStore for tests
- JsonFileAlertStore with atomic temp-file writes
"""

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class AlertStore:
    """Interface for the alert persistence collaborator"""

    def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    def put(self, key: str, value: Any) -> None:
        raise NotImplementedError


class InMemoryAlertStore(AlertStore):
    """Dict-backed store; values are round-tripped through JSON"""

    def __init__(self):
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()
        self.put_count = 0

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def put(self, key: str, value: Any) -> None:
        raw = json.dumps(value)
        with self._lock:
            self._data[key] = raw
            self.put_count += 1


class JsonFileAlertStore(AlertStore):
    """
    Store backed by one JSON file.

    Features:
    - Whole-file rewrite on every put
    - Write to temp file first, then rename (atomic)
    """

    def __init__(self, path: str):
        """
        Initialize JsonFileAlertStore.

        Args:
            path: JSON file location (parent directories are created)
        """
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        logger.info(f"[OK] JsonFileAlertStore initialized (file: {self.path})")

    def _read_all(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        with open(self.path, 'r') as f:
            data = json.load(f)
        return data.get('records', {})

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._read_all().get(key)

    def put(self, key: str, value: Any) -> None:
        with self._lock:
            records = self._read_all()
            records[key] = value
            data = {
                'version': 1,
                'saved_at': datetime.now().isoformat(),
                'records': records
            }

            temp_file = self.path.with_suffix('.tmp')
            with open(temp_file, 'w') as f:
                json.dump(data, f, indent=2)
            temp_file.replace(self.path)

        logger.debug(f"Store saved: {key}")
