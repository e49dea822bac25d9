"""Read-through result cache for allocation runs.

Results are keyed by (tournament_id, version) and expire after a fixed
TTL. The oldest entry is evicted once max_entries is reached. Two callers
racing on the same key each compute and the last write wins; runs are
pure, so nothing is corrupted.
"""

from collections import OrderedDict
import os
import time

DEFAULT_TTL_SECONDS = 300.0


def ttl_from_env(default: float = DEFAULT_TTL_SECONDS) -> float:
    raw = os.environ.get('ALLOC_CACHE_TTL_SECONDS', '').strip()
    if not raw:
        return default
    try:
        return max(0.0, float(raw))
    except ValueError:
        return default


class ResultCache:
    """In-memory TTL cache with least-recently-written eviction."""

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, max_entries: int = 128,
                 clock=time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict = OrderedDict()

    @staticmethod
    def key(tournament_id: str, version: str | None = None) -> tuple:
        return (tournament_id, version or '')

    def get(self, key):
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def set(self, key, value) -> None:
        self._entries.pop(key, None)
        self._entries[key] = (self._clock() + self.ttl_seconds, value)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def invalidate(self, tournament_id: str) -> None:
        for key in [k for k in self._entries if k[0] == tournament_id]:
            del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)
