from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Generic, Mapping, TypeVar

from hiring_oracle.common.errors import InvalidParameter
from hiring_oracle.common.seeding import stable_fingerprint

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ENTRIES = 50


def hash_pipeline_counts(counts: Mapping[Any, int]) -> str:
    """Short hash of stage counts; independent of key order, zero counts ignored."""
    normalised = {
        getattr(stage, "value", str(stage)): int(n)
        for stage, n in counts.items()
        if int(n) != 0
    }
    return stable_fingerprint(normalised)[:12]


def generate_cache_key(
    req_id: str,
    pipeline_hash: str,
    seed: str,
    knobs: Mapping[str, Any] | None = None,
    levers: Mapping[str, Any] | None = None,
) -> str:
    fp = stable_fingerprint({"seed": seed, "knobs": dict(knobs or {}), "levers": dict(levers or {})})
    return f"oracle-{req_id}-{pipeline_hash}-{fp[:16]}"


@dataclass
class ResultCache(Generic[T]):
    """Bounded, thread-safe memo of simulation results.

    Entries are evicted oldest-inserted first once `max_entries` is exceeded.
    Reads do not refresh an entry's position.
    """

    max_entries: int = DEFAULT_MAX_ENTRIES
    _entries: "OrderedDict[str, T]" = field(default_factory=OrderedDict, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    hits: int = 0
    misses: int = 0

    def __post_init__(self) -> None:
        if self.max_entries < 1:
            raise InvalidParameter(f"max_entries must be >= 1, got {self.max_entries}")

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def get(self, key: str) -> T | None:
        with self._lock:
            value = self._entries.get(key)
            if value is None:
                self.misses += 1
            else:
                self.hits += 1
            return value

    def put(self, key: str, value: T) -> None:
        with self._lock:
            if key in self._entries:
                self._entries[key] = value
                return
            self._entries[key] = value
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.info("Evicted cached forecast %s", evicted)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)
