"""
Last-known-good response cache.

Only consulted after every provider candidate has been exhausted.
"""

import hashlib
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional

from .models import GenerationResponse

logger = logging.getLogger(__name__)


def fingerprint(prompt: str, framework: Optional[str]) -> str:
    """Normalized cache key for a prompt and framework hint.

    Case and whitespace differences map to the same key.
    """
    normalized_prompt = " ".join(prompt.lower().split())
    normalized_framework = (framework or "").strip().lower()
    digest = hashlib.sha256()
    digest.update(normalized_framework.encode("utf-8"))
    digest.update(b"\x00")
    digest.update(normalized_prompt.encode("utf-8"))
    return digest.hexdigest()


@dataclass(frozen=True)
class CacheEntry:
    """A stored response and when it was stored."""
    response: GenerationResponse
    stored_at: float


class ResponseCache:
    """Bounded TTL cache with least-recently-used eviction.

    A single lock guards the entries; lookups reorder the LRU list, so reads
    need exclusive access too.
    """

    def __init__(
        self,
        ttl: float = 3600.0,
        max_entries: int = 256,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl <= 0:
            raise ValueError("ttl must be > 0")
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()

    def store(self, key: str, response: GenerationResponse) -> None:
        """Store a live response, replacing any older entry for the key.

        Raises:
            ValueError: If the response was itself served from cache
        """
        if response.from_cache:
            raise ValueError("Cached responses cannot be stored again")
        with self._lock:
            self._entries[key] = CacheEntry(response=response, stored_at=self._clock())
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                evicted_key, _ = self._entries.popitem(last=False)
                logger.debug("Evicted cache entry %s", evicted_key[:12])

    def lookup(self, key: str) -> Optional[GenerationResponse]:
        """Return the stored response if it is younger than the TTL."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() - entry.stored_at >= self.ttl:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return entry.response

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
