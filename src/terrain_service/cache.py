from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    path: str
    buffer: Any
    timestamp: float


class TerrainCache:
    """Decoded tile buffers waiting to be picked up.

    Each entry is handed out once. Entries nobody asked for are dropped by
    ``tidy`` after ``ttl_seconds``; the sweep itself runs at most once per
    ``tidy_interval_seconds``.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = 10.0,
        tidy_interval_seconds: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        if tidy_interval_seconds <= 0:
            raise ValueError("tidy_interval_seconds must be > 0")

        self._ttl_seconds = float(ttl_seconds)
        self._tidy_interval_seconds = float(tidy_interval_seconds)
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._last_tidy = clock()

    def add(self, path: str, buffer: Any) -> None:
        self._entries[path] = CacheEntry(path=path, buffer=buffer, timestamp=self._clock())

    def get(self, path: str) -> Optional[Any]:
        entry = self._entries.pop(path, None)
        if entry is None:
            return None
        return entry.buffer

    def tidy(self) -> int:
        now = self._clock()
        if now - self._last_tidy <= self._tidy_interval_seconds:
            return 0

        stale = [
            path
            for path, entry in self._entries.items()
            if now - entry.timestamp > self._ttl_seconds
        ]
        for path in stale:
            del self._entries[path]
        self._last_tidy = now

        if stale:
            logger.debug(
                "terrain_cache_tidied",
                extra={"evicted": len(stale), "remaining": len(self._entries)},
            )
        return len(stale)

    def __contains__(self, path: object) -> bool:
        return path in self._entries

    def __len__(self) -> int:
        return len(self._entries)
