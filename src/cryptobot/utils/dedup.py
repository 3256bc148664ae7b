from __future__ import annotations

import time
from collections import OrderedDict
from typing import Callable

class TTLDeduper:
    """
    Remembers keys for ttl_s seconds, bounded to max_size entries (oldest
    evicted first). Socket mode redelivers envelopes that were not acked in
    time, so event ids go through this before being handled.
    """
    def __init__(self, ttl_s: float, max_size: int = 10_000, clock: Callable[[], float] = time.monotonic):
        self.ttl_s = ttl_s
        self.max_size = max_size
        self._clock = clock
        self._store: OrderedDict[str, float] = OrderedDict()  # key -> expire_ts

    def seen_recently(self, key: str) -> bool:
        exp = self._store.get(key)
        if exp is None:
            return False
        if exp < self._clock():
            self._store.pop(key, None)
            return False
        return True

    def mark(self, key: str) -> None:
        self._store[key] = self._clock() + self.ttl_s
        self._store.move_to_end(key)
        while len(self._store) > self.max_size:
            self._store.popitem(last=False)

    def check_and_mark(self, key: str) -> bool:
        """True if `key` was already seen; marks it either way."""
        seen = self.seen_recently(key)
        self.mark(key)
        return seen
