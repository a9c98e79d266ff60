"""
Podspec cache scoped to a single resolution run.

Subspecs of one pod share a podspec document, so the document is looked up
once per (root pod name, version) and every spec it defines is kept.
"""

from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Dict, List, Optional

from .parsers import PodSpec


@dataclass(frozen=True)
class CacheKey:
    """Cache key for podspec lookups."""

    pod_name: str
    version: str

    def __str__(self) -> str:
        return f"{self.pod_name}@{self.version}"


class CacheStats:
    """Cache statistics."""

    def __init__(self):
        self.hits = 0
        self.misses = 0
        self.failures = 0
        self._lock = Lock()

    def record_hit(self) -> None:
        with self._lock:
            self.hits += 1

    def record_miss(self) -> None:
        with self._lock:
            self.misses += 1

    def record_failure(self) -> None:
        with self._lock:
            self.failures += 1

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            total = self.hits + self.misses
            return {
                "hits": self.hits,
                "misses": self.misses,
                "failures": self.failures,
                "total_requests": total,
                "hit_rate_percent": (self.hits / total) * 100.0 if total else 0.0,
            }


SpecLoader = Callable[[str, str], Optional[List[PodSpec]]]


class PodSpecCache:
    """
    Memoizes podspec documents for one resolution run.

    Failed lookups are cached as well so that a missing podspec is reported
    once per pod rather than once per subspec.
    """

    def __init__(self):
        self._entries: Dict[CacheKey, Optional[List[PodSpec]]] = {}
        self._lock = Lock()
        self.stats = CacheStats()

    def get_or_load(self, pod_name: str, version: str, loader: SpecLoader) -> Optional[List[PodSpec]]:
        """Return cached specs for the pod, calling ``loader`` on first access."""
        key = CacheKey(pod_name, version)

        with self._lock:
            if key in self._entries:
                self.stats.record_hit()
                return self._entries[key]

        self.stats.record_miss()
        specs = loader(pod_name, version)
        if specs is None:
            self.stats.record_failure()

        with self._lock:
            self._entries.setdefault(key, specs)
            return self._entries[key]

    def contains(self, pod_name: str, version: str) -> bool:
        with self._lock:
            return CacheKey(pod_name, version) in self._entries

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count
