"""Two-tier transcript cache keyed by audio content digest.

* :class:`MemoryCache` -- bounded, least-recently-used, per-process.
* :class:`DurableCache` -- JSON file with absolute per-entry TTL that
  survives restarts.
* :class:`TranscriptCache` -- composes both: reads hit memory first,
  then the durable tier (hydrating memory on a hit); writes go to both.

Cache failures never propagate: a broken read is a miss and a broken
write is logged and dropped.
"""

import logging
import time
from collections import OrderedDict
from dataclasses import asdict, dataclass
from typing import Callable, Dict, Optional

from core.utils import safe_json_read, safe_json_write, short_digest

logger = logging.getLogger(__name__)

KEY_PREFIX = "cache_"
DEFAULT_MEMORY_SIZE = 50
DEFAULT_TTL_SECONDS = 60 * 60 * 24


@dataclass
class CacheEntry:
    """A cached transcript for one audio digest."""

    digest: str
    transcript: str
    created_at: float

    def age(self, now: Optional[float] = None) -> float:
        return (now if now is not None else time.time()) - self.created_at


class MemoryCache:
    """In-memory LRU map from digest to :class:`CacheEntry`."""

    def __init__(self, max_size: int = DEFAULT_MEMORY_SIZE) -> None:
        self.max_size = max(1, max_size)
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()

    def get(self, digest: str) -> Optional[CacheEntry]:
        entry = self._entries.get(digest)
        if entry is None:
            return None
        self._entries.move_to_end(digest)
        return entry

    def set(self, entry: CacheEntry) -> None:
        if entry.digest in self._entries:
            del self._entries[entry.digest]
        while len(self._entries) >= self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Evicted cache entry: %s", short_digest(evicted))
        self._entries[entry.digest] = entry

    def discard(self, digest: str) -> None:
        self._entries.pop(digest, None)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, digest: str) -> bool:
        return digest in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class DurableCache:
    """TTL-bounded key-value store persisted to a JSON file.

    Entries are stored under ``cache_<digest>`` as
    ``{"digest", "transcript", "created_at"}``.  An entry whose age
    reaches the TTL is treated as absent and purged on read.

    Args:
        path: JSON file backing the store.
        ttl_seconds: Absolute expiration per entry.
        clock: Time source (``time.time`` by default).
    """

    def __init__(
        self,
        path: str,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.path = path
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def _load(self) -> Dict[str, dict]:
        return safe_json_read(self.path) or {}

    def _save(self, data: Dict[str, dict]) -> bool:
        return safe_json_write(self.path, data, max_backups=1)

    def is_expired(self, entry: CacheEntry) -> bool:
        return entry.age(self._clock()) >= self.ttl_seconds

    def get(self, digest: str) -> Optional[CacheEntry]:
        data = self._load()
        raw = data.get(KEY_PREFIX + digest)
        if not raw:
            return None
        try:
            entry = CacheEntry(
                digest=raw["digest"],
                transcript=raw["transcript"],
                created_at=float(raw["created_at"]),
            )
        except (KeyError, TypeError, ValueError):
            logger.warning("Dropping malformed cache entry %s", short_digest(digest))
            del data[KEY_PREFIX + digest]
            self._save(data)
            return None

        if self.is_expired(entry):
            logger.debug("Removing expired cache: %s", short_digest(digest))
            del data[KEY_PREFIX + digest]
            self._save(data)
            return None
        return entry

    def set(self, entry: CacheEntry) -> None:
        data = self._load()
        data[KEY_PREFIX + entry.digest] = asdict(entry)
        self._save(data)

    def clear_expired(self) -> int:
        """Purge every expired entry.

        Returns:
            Number of entries removed.
        """
        data = self._load()
        now = self._clock()
        stale = [
            key for key, value in data.items()
            if key.startswith(KEY_PREFIX)
            and isinstance(value, dict)
            and now - float(value.get("created_at", 0)) >= self.ttl_seconds
        ]
        for key in stale:
            del data[key]
        if stale:
            self._save(data)
            logger.info("Cleared %d expired cache entries", len(stale))
        return len(stale)


class TranscriptCache:
    """Memory tier hydrating over a durable tier.

    The memory tier is not authoritative: it only mirrors entries the
    durable tier returned or that were just written.
    """

    def __init__(
        self,
        memory: MemoryCache,
        durable: DurableCache,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.memory = memory
        self.durable = durable
        self._clock = clock

    def get(self, digest: str) -> Optional[str]:
        """Return the cached transcript for *digest*, or ``None``."""
        try:
            entry = self.memory.get(digest)
            if entry is not None:
                if not self.durable.is_expired(entry):
                    logger.debug("Memory cache hit: %s", short_digest(digest))
                    return entry.transcript
                self.memory.discard(digest)

            entry = self.durable.get(digest)
            if entry is not None:
                logger.debug(
                    "Storage cache hit: %s (age: %ds)",
                    short_digest(digest), int(entry.age(self._clock())),
                )
                self.memory.set(entry)
                return entry.transcript
        except Exception as e:
            logger.error("Cache get failed: %s", e)
        return None

    def set(self, digest: str, transcript: str) -> None:
        """Store *transcript* under *digest* in both tiers."""
        if not transcript:
            logger.warning("Refusing to cache empty text")
            return
        entry = CacheEntry(digest=digest, transcript=transcript, created_at=self._clock())
        try:
            self.memory.set(entry)
            self.durable.set(entry)
            logger.debug("Cached result: %s -> %r", short_digest(digest), transcript)
        except Exception as e:
            logger.error("Cache set failed: %s", e)

    def clear_expired(self) -> int:
        try:
            return self.durable.clear_expired()
        except Exception as e:
            logger.error("Cache cleanup failed: %s", e)
            return 0
