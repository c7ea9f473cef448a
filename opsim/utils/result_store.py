"""
Simulation result store
Keeps written results in memory, flushes them to disk once enough bytes are pending,
and afterwards retains only what the cache flush rules ask for, within the byte budget.
"""

from collections import OrderedDict
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple, Union
import logging
import threading

import numpy as np

from opsim.constants import STORE_CONTAINERS
from opsim.enums import CachePriority
from opsim.exceptions import InvalidArgumentError, KeyNotFoundError
from opsim.types import ResultStoreStatsDict
from opsim.utils.cache_rules import (
    CacheFlushRule,
    CacheFlushRules,
    CacheStats,
    get_rule_or_default,
)

logger = logging.getLogger(__name__)

TIMESTAMP_FILE_FORMAT = "%Y-%m-%dT%H-%M-%S"

# (problem name, category, container key, timestamp)
EntryKey = Tuple[str, str, str, datetime]


class SimulationStore:
    """
    Thread-safe, disk-backed store for optimization results

    Attributes:
        results_dir: Folder the flushed results are written to
        rules: Flush rules and byte thresholds
        stats: Read hits (served from memory) and misses (read from disk)
    """

    def __init__(self, results_dir: Union[str, Path], rules: Optional[CacheFlushRules] = None):
        self.results_dir = Path(results_dir)
        self.rules = rules or CacheFlushRules()
        self.stats = CacheStats()
        self.flushes = 0
        self.evictions = 0
        self._cache: "OrderedDict[EntryKey, np.ndarray]" = OrderedDict()
        self._pending: Set[EntryKey] = set()
        self._lock = threading.RLock()

    def write(
        self,
        problem_name: str,
        category: str,
        key: str,
        timestamp: datetime,
        data: Any,
    ) -> None:
        """
        Store one result

        Triggers a flush once the unflushed bytes reach rules.min_flush_size.

        Raises:
            InvalidArgumentError: If category is not a known store container
        """
        if category not in STORE_CONTAINERS:
            raise InvalidArgumentError(
                f"Unknown result category {category}", details={"valid": sorted(STORE_CONTAINERS)}
            )
        entry = (problem_name, category, key, timestamp)
        array = np.array(data, dtype=float)
        with self._lock:
            self._cache[entry] = array
            self._cache.move_to_end(entry)
            self._pending.add(entry)
            if self.pending_bytes >= self.rules.min_flush_size:
                self._flush()

    def read(self, problem_name: str, category: str, key: str, timestamp: datetime) -> np.ndarray:
        """
        Read one result, from memory when possible

        Raises:
            KeyNotFoundError: If the result was never written
        """
        entry = (problem_name, category, key, timestamp)
        with self._lock:
            cached = self._cache.get(entry)
            if cached is not None:
                self._cache.move_to_end(entry)
                self.stats.record_hit()
                return cached.copy()

            path = self._path(entry)
            if not path.exists():
                raise KeyNotFoundError(
                    f"No result {problem_name}/{category}/{key} at {timestamp.isoformat()}",
                    key=entry,
                )
            self.stats.record_miss()
            return np.load(path)

    def list_timestamps(self, problem_name: str, category: str, key: str) -> List[datetime]:
        """All timestamps written for a result series, in memory or on disk"""
        with self._lock:
            found = {
                entry[3]
                for entry in self._cache
                if entry[:3] == (problem_name, category, key)
            }
        folder = self.results_dir / problem_name / category / key
        if folder.is_dir():
            for path in folder.glob("*.npy"):
                found.add(datetime.strptime(path.stem, TIMESTAMP_FILE_FORMAT))
        return sorted(found)

    def flush(self) -> None:
        """Write every pending result to disk and apply the retention rules"""
        with self._lock:
            self._flush()

    def close(self) -> None:
        """Flush and release all in-memory data"""
        with self._lock:
            self._flush()
            self._cache.clear()
        logger.info(f"Closed result store at {self.results_dir}")

    @property
    def cached_bytes(self) -> int:
        return sum(array.nbytes for array in self._cache.values())

    @property
    def pending_bytes(self) -> int:
        return sum(self._cache[entry].nbytes for entry in self._pending)

    @property
    def kept_bytes(self) -> int:
        return sum(
            array.nbytes for entry, array in self._cache.items() if entry not in self._pending
        )

    def get_rule(self, entry: EntryKey) -> CacheFlushRule:
        return get_rule_or_default(self.rules, entry[0], entry[2])

    def _path(self, entry: EntryKey) -> Path:
        problem_name, category, key, timestamp = entry
        return (
            self.results_dir
            / problem_name
            / category
            / key
            / f"{timestamp.strftime(TIMESTAMP_FILE_FORMAT)}.npy"
        )

    def _flush(self) -> None:
        """
        Persist pending entries, then drop what the rules do not keep

        Must be called with self._lock held.
        """
        if self._pending:
            for entry in sorted(self._pending, key=lambda e: (e[0], e[1], e[2], e[3])):
                path = self._path(entry)
                path.parent.mkdir(parents=True, exist_ok=True)
                np.save(path, self._cache[entry])
            logger.debug(f"Flushed {len(self._pending)} results to {self.results_dir}")
            self._pending.clear()
            self.flushes += 1

        for entry in [e for e in self._cache if not self.get_rule(e).keep_in_cache]:
            del self._cache[entry]

        self._enforce_max_size()

    def _enforce_max_size(self) -> None:
        # Lowest priority goes first; within a priority, least recently used first
        kept = self.kept_bytes
        if kept <= self.rules.max_size:
            return
        for priority in sorted(CachePriority):
            for entry in list(self._cache):
                if kept <= self.rules.max_size:
                    return
                if self.get_rule(entry).priority != priority:
                    continue
                kept -= self._cache.pop(entry).nbytes
                self.evictions += 1
                logger.debug(f"Evicted {entry[0]}/{entry[2]} at {entry[3]} from result cache")

    def get_stats(self) -> ResultStoreStatsDict:
        with self._lock:
            return {
                "cached_bytes": self.cached_bytes,
                "pending_bytes": self.pending_bytes,
                "kept_bytes": self.kept_bytes,
                "max_size": self.rules.max_size,
                "min_flush_size": self.rules.min_flush_size,
                "entries": len(self._cache),
                "flushes": self.flushes,
                "evictions": self.evictions,
                "hits": self.stats.hits,
                "misses": self.stats.misses,
                "hit_rate": round(self.stats.hit_percentage, 2),
            }

    def summary(self) -> Dict[str, Any]:
        """Keys held in memory grouped by problem, for debugging"""
        with self._lock:
            grouped: Dict[str, List[str]] = {}
            for problem_name, category, key, timestamp in self._cache:
                grouped.setdefault(problem_name, []).append(
                    f"{category}/{key}@{timestamp.isoformat()}"
                )
            return grouped
