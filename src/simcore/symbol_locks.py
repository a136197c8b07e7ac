"""
Per-Symbol Locks
================
One re-entrant lock per symbol, created on first use.
Ticks for the same symbol serialize on it; different symbols
never contend.
"""

import threading
from typing import Dict, List


class SymbolLocks:
    """Registry of re-entrant locks keyed by symbol"""

    def __init__(self):
        self._locks: Dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def get(self, symbol: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(symbol)
            if lock is None:
                lock = threading.RLock()
                self._locks[symbol] = lock
            return lock

    def __call__(self, symbol: str) -> threading.RLock:
        return self.get(symbol)

    def symbols(self) -> List[str]:
        with self._guard:
            return list(self._locks)
