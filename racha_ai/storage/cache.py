"""
Response cache keyed by request fingerprint.

Entries live in an in-memory OrderedDict guarded by a lock; when a
CacheRepository is attached every write goes through to it and misses
fall back to it, so answers survive restarts and are shared between
processes. Expired entries are dropped on read and by ``prune()``.
"""

import hashlib
import json
import logging
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from threading import Lock
from typing import Callable, Optional

from ..core.lexicon import normalize_text
from .models import CacheEntry
from .repository import CacheRepository

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(hours=24)
MAX_ENTRIES = 1000


def compute_fingerprint(
    text: str,
    scenario_hint: Optional[str],
    amount: Optional[Decimal],
    participant_count: int
) -> str:
    """Deterministic SHA-256 of the normalized request.

    Args:
        text: Raw utterance; normalized before hashing
        scenario_hint: Caller-supplied scenario hint, if any
        amount: Amount found by the deterministic pass
        participant_count: Number of known participants

    Returns:
        Hex digest used as the cache key
    """
    payload = json.dumps(
        [
            normalize_text(text),
            (scenario_hint or "").strip().lower(),
            None if amount is None else str(amount),
            participant_count,
        ],
        ensure_ascii=False,
        separators=(",", ":"),
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ResponseCache:
    """Thread-safe TTL cache of interpretation results."""

    def __init__(
        self,
        ttl: timedelta = DEFAULT_TTL,
        repository: Optional[CacheRepository] = None,
        clock: Callable[[], datetime] = _utcnow,
        max_entries: int = MAX_ENTRIES
    ):
        if ttl <= timedelta(0):
            raise ValueError("cache ttl must be > 0")
        self.ttl = ttl
        self.repository = repository
        self._clock = clock
        self._max_entries = max_entries
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = Lock()

    def get(self, fingerprint: str) -> Optional[CacheEntry]:
        """Return the live entry for ``fingerprint`` or None."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(fingerprint)
            if entry is not None:
                if self._expired(entry, now):
                    del self._entries[fingerprint]
                    return None
                self._entries.move_to_end(fingerprint)
                return entry

        if self.repository is None:
            return None

        entry = self.repository.get(fingerprint)
        if entry is None or self._expired(entry, now):
            return None
        with self._lock:
            self._store(entry)
        return entry

    def put(self, entry: CacheEntry) -> None:
        """Store ``entry``; the last writer for a fingerprint wins."""
        with self._lock:
            self._store(entry)
        if self.repository is not None:
            self.repository.put(entry)

    def prune(self) -> int:
        """Drop every expired entry.

        Returns:
            Number of entries removed from memory and the repository
        """
        now = self._clock()
        with self._lock:
            stale = [fp for fp, e in self._entries.items() if self._expired(e, now)]
            for fp in stale:
                del self._entries[fp]
        removed = len(stale)
        if self.repository is not None:
            removed = max(removed, self.repository.prune(now - self.ttl))
        if removed:
            logger.info("Pruned %d expired cache entries", removed)
        return removed

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _expired(self, entry: CacheEntry, now: datetime) -> bool:
        return now - entry.created_at > self.ttl

    def _store(self, entry: CacheEntry) -> None:
        self._entries[entry.fingerprint] = entry
        self._entries.move_to_end(entry.fingerprint)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)
