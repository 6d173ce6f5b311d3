from __future__ import annotations

import json
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

DEFAULT_TTL_SECONDS = 60.0
DEFAULT_MAX_ENTRIES = 500


@dataclass(slots=True)
class _CacheEntry:
    value: Any
    expires_at: float


class ResponseCache:
    """Capacity-bounded response cache with per-entry expiry.

    Entries are keyed by ``(method, normalized params)``. When the cache is
    full, inserting a new key evicts the oldest entry by insertion order.
    """

    def __init__(
        self,
        *,
        enabled: bool = True,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._entries: dict[str, _CacheEntry] = {}
        self._enabled = enabled
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock

    @staticmethod
    def make_key(method: str, params: Mapping[str, object]) -> str:
        return f"{method}:{json.dumps(params, sort_keys=True, default=str)}"

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def size(self) -> int:
        return len(self._entries)

    def get(self, method: str, params: Mapping[str, object]) -> Any | None:
        if not self._enabled:
            return None
        key = self.make_key(method, params)
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            del self._entries[key]
            return None
        return entry.value

    def set(self, method: str, params: Mapping[str, object], value: Any) -> None:
        if not self._enabled:
            return
        key = self.make_key(method, params)
        if key in self._entries:
            # Refreshing moves the key to the back of the insertion order.
            del self._entries[key]
        elif len(self._entries) >= self._max_entries:
            oldest = next(iter(self._entries))
            del self._entries[oldest]
        self._entries[key] = _CacheEntry(value=value, expires_at=self._clock() + self._ttl)

    def invalidate(self, method: str | None = None) -> None:
        if method is None:
            self._entries.clear()
            return
        prefix = f"{method}:"
        for key in [key for key in self._entries if key.startswith(prefix)]:
            del self._entries[key]

    def clear(self) -> None:
        self._entries.clear()

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = enabled
        if not enabled:
            self.clear()


__all__ = ["ResponseCache", "DEFAULT_TTL_SECONDS", "DEFAULT_MAX_ENTRIES"]
