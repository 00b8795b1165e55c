"""In-memory jti replay cache for the gateway API.

Each jti is remembered until its credential expires; after that the token
is rejected on expiry anyway. Process-local, resets on restart.
"""

from __future__ import annotations

import threading
import time
from typing import Optional

from mindchain.exceptions import ReplayedCredentialError

_DEFAULT_MAX_ITEMS = 10000


class ReplayCache:
    """Remembers presented jti values until their exp timestamp."""

    def __init__(self, max_items: int = _DEFAULT_MAX_ITEMS):
        self._max_items = max_items
        self._seen: dict[str, int] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)

    def _purge(self, now: int) -> None:
        expired = [jti for jti, exp in self._seen.items() if exp < now]
        for jti in expired:
            del self._seen[jti]

    def check_and_record(self, jti: str, exp: int, now: Optional[int] = None) -> None:
        """Record jti. Raises ReplayedCredentialError if already seen."""
        current = int(time.time()) if now is None else now
        with self._lock:
            self._purge(current)
            if jti in self._seen:
                raise ReplayedCredentialError(f"Credential already used: {jti}")
            if len(self._seen) >= self._max_items:
                # Evict the entry closest to expiry.
                soonest = min(self._seen, key=self._seen.__getitem__)
                del self._seen[soonest]
            self._seen[jti] = exp

    def clear(self) -> None:
        with self._lock:
            self._seen.clear()
