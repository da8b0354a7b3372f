"""
Process-local record of automatic recovery attempts

A (client, date range) key is marked before its recovery refresh runs and
stays marked until restart or explicit invalidation, so a failing provider
is never retried automatically.
"""
import threading
from typing import Set, Tuple


def recovery_key(client_id: str, date_range_key: str) -> str:
    return f"{client_id}:{date_range_key}"


class RecoveryAttemptMarks:
    """Thread-safe set of attempted recovery keys"""

    def __init__(self):
        self._marks: Set[Tuple[str, str]] = set()
        self._lock = threading.Lock()

    def try_mark(self, client_id: str, date_range_key: str) -> bool:
        """Mark the key; False if it was already marked."""
        key = (client_id, date_range_key)
        with self._lock:
            if key in self._marks:
                return False
            self._marks.add(key)
            return True

    def has(self, client_id: str, date_range_key: str) -> bool:
        with self._lock:
            return (client_id, date_range_key) in self._marks

    def clear_client(self, client_id: str) -> int:
        with self._lock:
            cleared = {key for key in self._marks if key[0] == client_id}
            self._marks -= cleared
            return len(cleared)
