"""Fingerprinting and the in-process diagnosis response cache."""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from time import monotonic
from typing import Callable

from symptra.schemas import Demographics, DiagnosisResponse, Vitals
from symptra.utils import canonical_json, sha256_hex

logger = logging.getLogger(__name__)


def cache_key(
    symptoms: list[str],
    vitals: Vitals | None,
    demographics: Demographics | None,
) -> str:
    """Order-independent SHA-256 fingerprint of the clinical inputs.

    The free-text addendum is deliberately left out; requests that carry one
    are never served from or written to the cache.
    """
    payload = {
        "symptoms": sorted(set(symptoms)),
        "vitals": vitals.model_dump(by_alias=True, exclude_none=True) if vitals else {},
        "demographics": demographics.model_dump(by_alias=True, exclude_none=True) if demographics else {},
    }
    return sha256_hex(canonical_json(payload))


@dataclass
class _Entry:
    value: DiagnosisResponse
    expires_at: float


class DiagnosisCache:
    """TTL cache bounded by an LRU capacity.

    Expired entries are dropped lazily when read; when full, the oldest
    expired entry goes first, otherwise the least recently used one.
    Hit/miss counters are advisory metrics and are not synchronized.
    """

    def __init__(
        self,
        ttl_sec: float = 6 * 60 * 60,
        max_entries: int = 1024,
        *,
        clock: Callable[[], float] = monotonic,
    ):
        if max_entries <= 0:
            raise ValueError("max_entries must be > 0")
        self._ttl_sec = ttl_sec
        self._max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, _Entry] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        now = self._clock()
        return sum(1 for entry in self._entries.values() if entry.expires_at > now)

    def get(self, key: str) -> DiagnosisResponse | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            self._entries.pop(key, None)
            return None
        self._entries.move_to_end(key)
        return entry.value

    def set(self, key: str, value: DiagnosisResponse) -> None:
        if key in self._entries:
            self._entries.pop(key)
        elif len(self._entries) >= self._max_entries:
            self._evict_one()
        self._entries[key] = _Entry(value=value, expires_at=self._clock() + self._ttl_sec)

    def _evict_one(self) -> None:
        now = self._clock()
        for key, entry in self._entries.items():
            if entry.expires_at <= now:
                del self._entries[key]
                return
        evicted, _ = self._entries.popitem(last=False)
        logger.debug("cache_evicted key=%s", evicted[:12])

    def record_hit(self) -> None:
        self.hits += 1
        logger.info("cache_hit rate=%.2f%%", self.hit_rate())

    def record_miss(self) -> None:
        self.misses += 1
        logger.info("cache_miss rate=%.2f%%", self.hit_rate())

    def hit_rate(self) -> float:
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total * 100.0

    def stats(self) -> dict[str, float | int]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "rate": round(self.hit_rate(), 2),
            "entries": len(self),
        }
