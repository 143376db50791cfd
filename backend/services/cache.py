"""
In-process response cache with named regions and a time-to-live.

Regions used by the services:
    - transactions: per-user transaction listings
    - user_stats:   per-user spending aggregations
    - insights:     per-user AI insight text
    - ai_responses: Gemini responses keyed by prompt hash
"""

import threading
import time
from typing import Any, Dict, Hashable, Optional, Tuple

from config import get_settings

TRANSACTIONS = "transactions"
USER_STATS = "user_stats"
INSIGHTS = "insights"
AI_RESPONSES = "ai_responses"

_MISSING = object()


class ResponseCache:
    """Thread-safe dictionary cache; entries expire `ttl_seconds` after being stored."""

    def __init__(self, ttl_seconds: float = 600.0, max_entries: int = 1000):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._regions: Dict[str, Dict[Hashable, Tuple[float, Any]]] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, region: str, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            entry = self._regions.get(region, {}).get(key, _MISSING)
            if entry is _MISSING:
                self.misses += 1
                return default
            expires_at, value = entry
            if expires_at < time.monotonic():
                del self._regions[region][key]
                self.misses += 1
                return default
            self.hits += 1
            return value

    def set(self, region: str, key: Hashable, value: Any) -> None:
        with self._lock:
            entries = self._regions.setdefault(region, {})
            if key not in entries and len(entries) >= self.max_entries:
                # Drop the entry closest to expiry
                oldest = min(entries, key=lambda k: entries[k][0])
                del entries[oldest]
            entries[key] = (time.monotonic() + self.ttl_seconds, value)

    def evict(self, region: str, key: Hashable) -> None:
        with self._lock:
            self._regions.get(region, {}).pop(key, None)

    def evict_user(self, user_id: int, *regions: str) -> None:
        """Remove a user's entries from each of the given regions."""
        with self._lock:
            for region in regions:
                self._regions.get(region, {}).pop(user_id, None)

    def clear(self, region: Optional[str] = None) -> None:
        with self._lock:
            if region is None:
                self._regions.clear()
            else:
                self._regions.pop(region, None)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "hits": self.hits,
                "misses": self.misses,
                "regions": {name: len(entries) for name, entries in self._regions.items()},
            }


response_cache = ResponseCache(ttl_seconds=get_settings().cache_ttl_seconds)
