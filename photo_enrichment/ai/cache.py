from __future__ import annotations

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Hashable, Tuple

logger = logging.getLogger(__name__)

_MISSING = object()


@dataclass
class _Entry:
    value: Any
    expires_at: float


class TTLCache:
    """
    In-memory cache with a per-entry TTL and a max-entry cap.

    Reads refresh recency; once the cap is hit the least recently used entry
    is evicted. The clock is injectable so tests can move time forward.
    One instance is shared by every geo client in the process.
    """

    def __init__(
        self,
        max_entries: int = 500,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.max_entries = max_entries
        self._clock = clock
        self._data: "OrderedDict[Hashable, _Entry]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def get(self, key: Hashable, default: Any = None) -> Any:
        entry = self._data.get(key)
        if entry is None:
            self.misses += 1
            return default
        if entry.expires_at <= self._clock():
            del self._data[key]
            self.misses += 1
            return default
        self._data.move_to_end(key)
        self.hits += 1
        return entry.value

    def set(self, key: Hashable, value: Any, ttl_seconds: float) -> None:
        if ttl_seconds <= 0:
            return
        self._data[key] = _Entry(value=value, expires_at=self._clock() + ttl_seconds)
        self._data.move_to_end(key)
        while len(self._data) > self.max_entries:
            evicted, _ = self._data.popitem(last=False)
            logger.debug("cache evicted %s", evicted)

    def delete(self, key: Hashable) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [k for k, e in self._data.items() if e.expires_at <= now]
        for k in expired:
            del self._data[k]
        return len(expired)


def coordinate_key(prefix: str, lat: float, lon: float, *extra: Any) -> Tuple[Any, ...]:
    """Cache key with coordinates rounded to 4 decimals (about 11 m)."""
    return (prefix, round(float(lat), 4), round(float(lon), 4), *extra)


def hours(value: float) -> float:
    return float(value) * 3600.0

