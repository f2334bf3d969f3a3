import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from .config import CacheConfig

DEFAULT_MAX_ENTRIES = 10_000


@dataclass(frozen=True)
class CachedResponse:
    status_code: int
    headers: List[Tuple[str, str]]
    body: bytes
    stored_at: float
    expires_at: float


def build_cache_key(
    cfg: CacheConfig, method: str, path: str, query: str, client: str
) -> Tuple[str, ...]:
    parts = {"method": method.upper(), "path": path, "query": query, "client": client}
    dims = cfg.key if "method" in cfg.key else ("method",) + tuple(cfg.key)
    # HEAD and GET bodies differ, the method is always part of the key
    return tuple(f"{dim}={parts[dim]}" for dim in dims)


class ResponseCache:
    """
    Stored responses per route, each with its own validity window.

    An entry is kept for ttl_sec after it is stored (its validity window
    plus however long the route may serve it stale), then dropped. The
    number of entries never exceeds max_entries; the oldest stored entry
    goes first.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ):
        self._clock = clock
        self.max_entries = max_entries
        self._lock = threading.Lock()
        # ordered by store time
        self._entries: "OrderedDict[Tuple[str, Tuple[str, ...]], CachedResponse]" = OrderedDict()

    def store(
        self,
        route: str,
        key: Tuple[str, ...],
        status_code: int,
        headers,
        body: bytes,
        ttl_sec: float,
    ) -> CachedResponse:
        now = self._clock()
        entry = CachedResponse(status_code, list(headers), body, now, now + ttl_sec)
        with self._lock:
            self._entries.pop((route, key), None)
            self._entries[(route, key)] = entry
            self._evict(now)
        return entry

    def _evict(self, now: float):
        while self._entries:
            oldest_key, oldest = next(iter(self._entries.items()))
            if oldest.expires_at > now and len(self._entries) <= self.max_entries:
                break
            del self._entries[oldest_key]

    def _live(self, route: str, key: Tuple[str, ...]) -> Optional[CachedResponse]:
        with self._lock:
            entry = self._entries.get((route, key))
            if entry is not None and entry.expires_at <= self._clock():
                del self._entries[(route, key)]
                return None
            return entry

    def fresh(self, route: str, key: Tuple[str, ...], valid_sec: float) -> Optional[CachedResponse]:
        entry = self._live(route, key)
        if entry is None or self._clock() - entry.stored_at >= valid_sec:
            return None
        return entry

    def stale(self, route: str, key: Tuple[str, ...]) -> Optional[CachedResponse]:
        return self._live(route, key)

    def __len__(self):
        with self._lock:
            self._evict(self._clock())
            return len(self._entries)
