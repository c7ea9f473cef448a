"""
Tests for cache flush rules and cache statistics
"""

import pytest

from opsim.enums import CachePriority
from opsim.exceptions import InvalidArgumentError, KeyNotFoundError
from opsim.utils.cache_rules import (
    DEFAULT_CACHE_FLUSH_RULE,
    CacheFlushRules,
    CacheStats,
    OptimizationResultCacheKey,
    add_rule,
    get_cache_hit_percentage,
    get_rule,
    get_rule_or_default,
)


def test_hit_percentage_with_no_accesses_is_zero():
    """Test that an unused cache reports 0% rather than dividing by zero"""
    assert get_cache_hit_percentage(CacheStats()) == 0.0


def test_hit_percentage():
    """Test 3 hits and 1 miss give 75%"""
    stats = CacheStats(hits=3, misses=1)
    assert get_cache_hit_percentage(stats) == 75.0
    assert stats.hit_percentage == 75.0


def test_stats_counters_and_reset():
    """Test counters only move forward until an explicit reset"""
    stats = CacheStats()
    stats.record_hit()
    stats.record_hit()
    stats.record_miss()
    assert (stats.hits, stats.misses) == (2, 1)
    assert stats.to_dict(size=64) == {"hits": 2, "misses": 1, "hit_rate": 66.67, "size": 64}

    stats.reset()
    assert (stats.hits, stats.misses) == (0, 0)


def test_add_and_get_rule():
    """Test a registered rule is returned for its key"""
    rules = CacheFlushRules()
    add_rule(rules, "ED", "ActivePowerVariable__ThermalGenerator", True, CachePriority.HIGH)

    rule = get_rule(rules, "ED", "ActivePowerVariable__ThermalGenerator")
    assert rule.keep_in_cache is True
    assert rule.priority == CachePriority.HIGH
    assert OptimizationResultCacheKey(
        model_name="ED", key="ActivePowerVariable__ThermalGenerator"
    ) in rules


def test_add_rule_overwrites():
    """Test the last write for a key wins"""
    rules = CacheFlushRules()
    add_rule(rules, "ED", "key", True, CachePriority.HIGH)
    add_rule(rules, "ED", "key", False)

    assert len(rules) == 1
    assert get_rule(rules, "ED", "key") == DEFAULT_CACHE_FLUSH_RULE


def test_get_rule_missing_key_fails():
    """Test lookups of unregistered keys raise instead of returning a default"""
    rules = CacheFlushRules()
    with pytest.raises(KeyNotFoundError) as exc_info:
        get_rule(rules, "ED", "missing")
    assert exc_info.value.code == "key_not_found"
    assert isinstance(exc_info.value, LookupError)


def test_get_rule_or_default():
    """Test the store-facing lookup falls back to the default rule"""
    rules = CacheFlushRules()
    rule = get_rule_or_default(rules, "ED", "missing")
    assert rule.keep_in_cache is False
    assert rule.priority == CachePriority.LOW


def test_rules_size_validation():
    """Test inconsistent byte thresholds are rejected"""
    with pytest.raises(InvalidArgumentError):
        CacheFlushRules(max_size=10, min_flush_size=20)
    with pytest.raises(InvalidArgumentError):
        CacheFlushRules(max_size=-1, min_flush_size=0)


def test_priority_ordering():
    """Test priorities compare by retention importance"""
    assert CachePriority.LOW < CachePriority.MEDIUM < CachePriority.HIGH
