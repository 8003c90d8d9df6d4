"""In-process guard against duplicate review submissions."""
import logging
import threading
import time
from typing import Callable, Dict, Optional, Tuple

from wordsrs.config import settings

logger = logging.getLogger(__name__)

DebounceKey = Tuple[str, int, int]


class ReviewDebounceGuard:
    """Reject a second submission for the same card within a short window.

    State is process local and never persisted. Create one guard per process
    and share it between services.
    """

    def __init__(
        self,
        window_seconds: Optional[float] = None,
        max_entries: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if window_seconds is None:
            window_seconds = settings.debounce.window_ms / 1000
        if max_entries is None:
            max_entries = settings.debounce.max_entries
        self.window_seconds = window_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._expires_at: Dict[DebounceKey, float] = {}
        self._lock = threading.Lock()

    def try_acquire(self, user_id: str, word_id: int, reading_index: int) -> bool:
        """Return True if the card may be processed now, False if debounced."""
        key = (user_id, word_id, reading_index)
        with self._lock:
            now = self._clock()
            self._purge_expired(now)

            expires_at = self._expires_at.get(key)
            if expires_at is not None and expires_at > now:
                logger.debug(f"Debounced request for {key}")
                return False

            if len(self._expires_at) >= self.max_entries:
                oldest = min(self._expires_at, key=self._expires_at.get)
                del self._expires_at[oldest]

            self._expires_at[key] = now + self.window_seconds
            return True

    def _purge_expired(self, now: float) -> None:
        expired = [key for key, expires_at in self._expires_at.items() if expires_at <= now]
        for key in expired:
            del self._expires_at[key]

    def __len__(self) -> int:
        with self._lock:
            return len(self._expires_at)

    def clear(self) -> None:
        with self._lock:
            self._expires_at.clear()
