"""
Thread-safe cache of text service responses keyed by prompt.
"""

import threading
import time
from typing import Callable, Dict, Optional, Tuple


class AiResponseCache:
    """
    Prompt -> response cache with a time-to-live.

    Args:
        ttl_seconds: Lifetime of an entry; None keeps entries until cleared
        clock: Time source, injectable for tests
    """

    def __init__(self, ttl_seconds: Optional[float] = 24 * 3600, clock: Callable[[], float] = time.monotonic):
        if ttl_seconds is not None and ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()

    def get(self, prompt: str) -> Optional[str]:
        """Cached response for ``prompt``, or None when absent or expired."""
        with self._lock:
            entry = self._entries.get(prompt)
            if entry is None:
                return None
            response, stored_at = entry
            if self._expired(stored_at):
                del self._entries[prompt]
                return None
            return response

    def put(self, prompt: str, response: str) -> None:
        with self._lock:
            self._entries[prompt] = (response, self._clock())

    def invalidate(self, prompt: str) -> bool:
        with self._lock:
            return self._entries.pop(prompt, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return sum(1 for _, stored_at in self._entries.values() if not self._expired(stored_at))

    def __contains__(self, prompt: str) -> bool:
        return self.get(prompt) is not None

    def _expired(self, stored_at: float) -> bool:
        return self.ttl_seconds is not None and self._clock() - stored_at >= self.ttl_seconds
