"""Emit a warning once per key.

Configuration mistakes (a placeholder that never resolves, a rule that
keeps overflowing its rate limit) would otherwise flood the log on every
event.
"""

import logging
import threading
from typing import Optional


class WarningTracker:
    """Logs each distinct warning key at most once until reset."""
    
    def __init__(self, logger: Optional[logging.Logger] = None):
        self._logger = logger or logging.getLogger("allthewebhooks.warnings")
        self._emitted: set[str] = set()
        self._lock = threading.Lock()
    
    def warn_once(self, key: str, message: str) -> bool:
        """Log ``message`` if ``key`` has not been seen yet.
        
        Returns:
            True if the warning was emitted by this call.
        """
        if not key or not message:
            return False
        with self._lock:
            if key in self._emitted:
                return False
            self._emitted.add(key)
        self._logger.warning(message)
        return True
    
    def reset(self) -> None:
        """Forget emitted keys (called on config reload)."""
        with self._lock:
            self._emitted.clear()
