"""
Cache flush policy for optimization results
Decides, per result key, whether written data stays in memory, and keeps hit/miss statistics
"""

from typing import Dict, Optional
import logging

from pydantic import BaseModel, ConfigDict

from opsim.constants import MIN_CACHE_FLUSH_SIZE, MAX_CACHE_SIZE
from opsim.enums import CachePriority
from opsim.exceptions import InvalidArgumentError, KeyNotFoundError
from opsim.types import CacheStatsDict

logger = logging.getLogger(__name__)


class OptimizationResultCacheKey(BaseModel):
    """
    Identifies one result series in the store

    Attributes:
        model_name: Name of the problem that produced the result
        key: Encoded container key (e.g. "ActivePowerVariable__ThermalGenerator")
    """

    model_config = ConfigDict(frozen=True)

    model_name: str
    key: str


class CacheFlushRule(BaseModel):
    """
    Tells the flusher whether to keep data for a key in memory after flushing

    Attributes:
        keep_in_cache: Keep written data in memory to serve reads
        priority: Retention priority when the kept data exceeds the budget
    """

    model_config = ConfigDict(frozen=True)

    keep_in_cache: bool = False
    priority: CachePriority = CachePriority.LOW


DEFAULT_CACHE_FLUSH_RULE = CacheFlushRule()


class CacheFlushRules:
    """
    Rule table consulted by the result store when it flushes

    Attributes:
        data: Mapping of result key to flush rule
        min_flush_size: Pending bytes that trigger a flush
        max_size: Upper bound on bytes of kept data
    """

    def __init__(
        self,
        max_size: int = MAX_CACHE_SIZE,
        min_flush_size: int = MIN_CACHE_FLUSH_SIZE,
    ):
        if min_flush_size < 0 or max_size < 0:
            raise InvalidArgumentError(
                "Cache sizes must be non-negative",
                details={"min_flush_size": min_flush_size, "max_size": max_size},
            )
        if min_flush_size > max_size:
            raise InvalidArgumentError(
                f"min_flush_size ({min_flush_size}) must not exceed max_size ({max_size})",
                details={"min_flush_size": min_flush_size, "max_size": max_size},
            )
        self.data: Dict[OptimizationResultCacheKey, CacheFlushRule] = {}
        self.min_flush_size = min_flush_size
        self.max_size = max_size

    def __len__(self) -> int:
        return len(self.data)

    def __contains__(self, key: OptimizationResultCacheKey) -> bool:
        return key in self.data


def add_rule(
    rules: CacheFlushRules,
    model_name: str,
    op_container_key: str,
    keep_in_cache: bool,
    priority: CachePriority = CachePriority.LOW,
) -> None:
    """
    Insert or overwrite the rule for (model_name, op_container_key)

    Later writes silently replace earlier ones.
    """
    key = OptimizationResultCacheKey(model_name=model_name, key=op_container_key)
    rules.data[key] = CacheFlushRule(keep_in_cache=keep_in_cache, priority=priority)
    logger.debug(
        f"Cache rule for {model_name}/{op_container_key}: "
        f"keep_in_cache={keep_in_cache}, priority={CachePriority(priority).name}"
    )


def get_rule(
    rules: CacheFlushRules, model_name: str, op_container_key: str
) -> CacheFlushRule:
    """
    Get the registered rule for a key

    Raises:
        KeyNotFoundError: If no rule was registered for the key
    """
    key = OptimizationResultCacheKey(model_name=model_name, key=op_container_key)
    try:
        return rules.data[key]
    except KeyError:
        raise KeyNotFoundError(
            f"No cache flush rule registered for {model_name}/{op_container_key}",
            key=key,
        ) from None


def get_rule_or_default(
    rules: CacheFlushRules, model_name: str, op_container_key: str
) -> CacheFlushRule:
    """Get the registered rule for a key, or the default (don't keep, LOW)"""
    key = OptimizationResultCacheKey(model_name=model_name, key=op_container_key)
    return rules.data.get(key, DEFAULT_CACHE_FLUSH_RULE)


class CacheStats:
    """
    Hit/miss counters for one cache consumer

    Counters never decrease except through an explicit reset().
    """

    def __init__(self, hits: int = 0, misses: int = 0):
        self.hits = hits
        self.misses = misses

    def record_hit(self) -> None:
        self.hits += 1

    def record_miss(self) -> None:
        self.misses += 1

    def reset(self) -> None:
        self.hits = 0
        self.misses = 0

    @property
    def hit_percentage(self) -> float:
        return get_cache_hit_percentage(self)

    def to_dict(self, size: Optional[int] = None) -> CacheStatsDict:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": round(self.hit_percentage, 2),
            "size": size if size is not None else 0,
        }

    def __repr__(self) -> str:
        return f"CacheStats(hits={self.hits}, misses={self.misses})"


def get_cache_hit_percentage(stats: CacheStats) -> float:
    """
    Percentage of accesses served from cache

    Returns:
        hits / (hits + misses) * 100, or 0.0 when there were no accesses
    """
    total = stats.hits + stats.misses
    if total == 0:
        return 0.0
    return stats.hits / total * 100
