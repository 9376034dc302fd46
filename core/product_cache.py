"""Bounded cache of fetched product bodies, keyed by storefront and handle."""

import logging
from collections import OrderedDict
from typing import Any, Dict, Iterator, Optional, Tuple

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, str]


class ProductCache:
    """Insertion-ordered product cache with oldest-inserted eviction.

    Entries are keyed by ``(base_url, handle)``, so one instance can be
    shared by several targets without one store's bodies answering for
    another's. A miss always falls back to fetching.
    """

    def __init__(self, max_size: int = 15000):
        if max_size < 1:
            raise ValueError("max_size must be positive")
        self.max_size = max_size
        self._entries: "OrderedDict[CacheKey, Dict[str, Any]]" = OrderedDict()
        self.evictions = 0

    @staticmethod
    def key(base_url: str, handle: str) -> CacheKey:
        return base_url.rstrip("/"), handle

    def get(self, base_url: str, handle: str) -> Optional[Dict[str, Any]]:
        return self._entries.get(self.key(base_url, handle))

    def put(self, base_url: str, handle: str, product: Dict[str, Any]) -> None:
        if not handle or not isinstance(product, dict):
            return
        key = self.key(base_url, handle)
        if key in self._entries:
            # Refreshing a body keeps the original insertion slot
            self._entries[key] = product
            return
        self._entries[key] = product
        while len(self._entries) > self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            self.evictions += 1
            logger.debug("Evicted cached product %s from %s", evicted[1], evicted[0])

    def contains(self, base_url: str, handle: str) -> bool:
        return self.key(base_url, handle) in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[CacheKey]:
        return iter(self._entries)
