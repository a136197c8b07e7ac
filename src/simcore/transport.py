"""
Bounded External Calls
======================
Every call to an external collaborator (feed, alert store,
notification sink) goes through bounded_call so that a hung
collaborator surfaces as a TransportError instead of blocking.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Any, Callable, Optional

from .errors import TransportError

logger = logging.getLogger(__name__)

_executor: Optional[ThreadPoolExecutor] = None
_executor_lock = threading.Lock()


def _get_executor() -> ThreadPoolExecutor:
    global _executor
    with _executor_lock:
        if _executor is None:
            _executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix='simcore-io')
        return _executor


def bounded_call(fn: Callable[..., Any], *args, timeout: float = 2.0, name: str = None, **kwargs) -> Any:
    """
    Run fn(*args, **kwargs) with a time limit.

    Args:
        fn: Callable to run on the I/O worker pool
        timeout: Seconds to wait before giving up
        name: Label used in error messages

    Returns:
        Whatever fn returns

    Raises:
        TransportError: fn raised, or did not finish within timeout
    """
    label = name or getattr(fn, '__name__', 'external call')
    future = _get_executor().submit(fn, *args, **kwargs)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout:
        future.cancel()
        raise TransportError(f"{label} timed out after {timeout:.1f}s")
    except TransportError:
        raise
    except Exception as e:
        raise TransportError(f"{label} failed: {e}") from e
