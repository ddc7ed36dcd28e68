"""
In-memory cache of parse results keyed by input text and options.

No background timer: the host calls ``evict_expired()`` on its own schedule
(the HTTP layer does it on every parse request). The clock is injected so
expiry can be tested without sleeping.
"""
import hashlib
import logging
import threading
import time
from collections import OrderedDict
from typing import Callable, Optional, Tuple

from app.models.cutlist_schema import ParseOptions, ThreeLayerParseResult
from app.services import parser_config as cfg

logger = logging.getLogger("cutlist-api.cache")


def make_cache_key(text: str, options: Optional[ParseOptions], mode: str = "fast") -> str:
    options_json = (options or ParseOptions()).model_dump_json()
    digest = hashlib.sha256(f"{mode}\x00{options_json}\x00{text}".encode("utf-8")).hexdigest()
    return digest


class ParseResultCache:
    """TTL + size bounded cache; the oldest entry goes first when full."""

    def __init__(
        self,
        ttl_s: float = cfg.PARSE_CACHE_TTL_S,
        max_entries: int = cfg.PARSE_CACHE_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_s = ttl_s
        self.max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()
        # key → (expires_at, result)
        self._entries: "OrderedDict[str, Tuple[float, ThreeLayerParseResult]]" = OrderedDict()

    def get(self, key: str) -> Optional[ThreeLayerParseResult]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, result = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            return result

    def set(self, key: str, result: ThreeLayerParseResult) -> None:
        """Store an LLM-free result; results that used the LLM layer are not cached."""
        if "llm" in result.layers_used:
            return
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = (self._clock() + self.ttl_s, result)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def evict_expired(self) -> int:
        """Drop expired entries; returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [key for key, (expires_at, _) in self._entries.items() if expires_at <= now]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(f"Evicted {len(expired)} expired parse results")
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
