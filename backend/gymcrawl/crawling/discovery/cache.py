"""
Bounded in-process cache for search observations
"""

import asyncio
from collections import OrderedDict
from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar

import structlog

logger = structlog.get_logger(__name__)

V = TypeVar("V")


class EvictionPolicy(str, Enum):
    """Which entry goes when the cache is full"""
    FIFO = "fifo"
    LRU = "lru"


class BoundedCache(Generic[V]):
    """
    Size-capped key/value cache

    Every access goes through one asyncio lock, so concurrent workers can
    share a cache owned by a single orchestrator.
    """

    def __init__(self, max_entries: int = 500, policy: EvictionPolicy = EvictionPolicy.FIFO):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.policy = policy
        self._entries: "OrderedDict[str, V]" = OrderedDict()
        self._lock = asyncio.Lock()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    async def get(self, key: str) -> Optional[V]:
        async with self._lock:
            if key not in self._entries:
                self.misses += 1
                return None
            self.hits += 1
            if self.policy == EvictionPolicy.LRU:
                self._entries.move_to_end(key)
            return self._entries[key]

    async def set(self, key: str, value: V):
        async with self._lock:
            if key in self._entries:
                self._entries[key] = value
                if self.policy == EvictionPolicy.LRU:
                    self._entries.move_to_end(key)
                return

            while len(self._entries) >= self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                self.evictions += 1
                logger.debug("Cache entry evicted", key=evicted, policy=self.policy.value)

            self._entries[key] = value

    async def clear(self):
        async with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        return {
            "size": len(self._entries),
            "max_entries": self.max_entries,
            "policy": self.policy.value,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
        }
