import logging
import time
from collections import deque
from threading import Lock
from typing import Optional

from app.core.config import get_settings

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLDS = {
    "HISTORY_APPEND_FAILED": 3,
    "SERVICE_REQUEST_CONFLICT": 5,
    "SERVICE_REQUEST_CANCELLED": 10,
    "INSTALLATION_REQUEST_CANCELLED": 10,
}


class AuditAlertTracker:
    """Counts selected history actions in a sliding window and logs an ALERT line at each threshold multiple."""

    def __init__(self, window_seconds: int, thresholds: dict[str, int]) -> None:
        self._window_seconds = window_seconds
        self._thresholds = thresholds
        self._buckets: dict[str, deque[float]] = {}
        self._lock = Lock()

    def record(self, action: str, metadata: Optional[dict] = None) -> bool:
        if action not in self._thresholds:
            return False
        limit = self._thresholds[action]
        now = time.monotonic()
        alerted = False
        with self._lock:
            bucket = self._buckets.setdefault(action, deque())
            cutoff = now - self._window_seconds
            while bucket and bucket[0] <= cutoff:
                bucket.popleft()
            bucket.append(now)
            if len(bucket) >= limit and len(bucket) % limit == 0:
                alerted = True
                logger.warning(
                    "ALERT history_action=%s count=%s window_seconds=%s metadata=%s",
                    action,
                    len(bucket),
                    self._window_seconds,
                    metadata or {},
                )
        return alerted

    def count(self, action: str) -> int:
        with self._lock:
            bucket = self._buckets.get(action)
            return len(bucket) if bucket else 0

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()


alert_tracker = AuditAlertTracker(get_settings().history_alert_window_seconds, DEFAULT_THRESHOLDS)
