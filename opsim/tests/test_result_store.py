"""
Tests for the simulation result store and its flush rules
"""

from datetime import timedelta

import numpy as np
import pytest

from opsim.enums import CachePriority
from opsim.exceptions import InvalidArgumentError, KeyNotFoundError
from opsim.tests.helpers import START
from opsim.utils.cache_rules import CacheFlushRules, add_rule
from opsim.utils.result_store import SimulationStore

KEY = "ActivePowerVariable__ThermalGenerator"


def test_write_then_read_is_a_hit(tmp_path):
    """Test unflushed data is served from memory"""
    store = SimulationStore(tmp_path)
    store.write("ED", "variables", KEY, START, [[1.0, 2.0], [3.0, 4.0]])

    data = store.read("ED", "variables", KEY, START)

    assert np.array_equal(data, [[1.0, 2.0], [3.0, 4.0]])
    assert store.stats.hits == 1
    assert store.stats.misses == 0


def test_flush_writes_to_disk_and_drops_unkept(tmp_path):
    """Test a flush persists results and keeps only what the rules ask for"""
    rules = CacheFlushRules()
    add_rule(rules, "ED", "kept", True)
    store = SimulationStore(tmp_path, rules)
    store.write("ED", "variables", KEY, START, np.arange(24.0))
    store.write("ED", "variables", "kept", START, np.ones(24))

    store.flush()

    assert (tmp_path / "ED" / "variables" / KEY / "2024-01-01T00-00-00.npy").exists()
    assert store.pending_bytes == 0
    assert store.get_stats()["entries"] == 1

    assert np.array_equal(store.read("ED", "variables", KEY, START), np.arange(24.0))
    assert store.stats.misses == 1
    store.read("ED", "variables", "kept", START)
    assert store.stats.hits == 1


def test_min_flush_size_triggers_flush(tmp_path):
    """Test a flush happens once enough bytes are pending"""
    rules = CacheFlushRules(max_size=1024, min_flush_size=24 * 8)
    store = SimulationStore(tmp_path, rules)

    store.write("ED", "variables", KEY, START, np.zeros(12))
    assert store.flushes == 0
    store.write("ED", "variables", KEY, START + timedelta(hours=1), np.zeros(12))
    assert store.flushes == 1
    assert store.cached_bytes == 0


def test_kept_data_respects_max_size(tmp_path):
    """Test low priority data is evicted first when kept data exceeds the budget"""
    rules = CacheFlushRules(max_size=10 * 8, min_flush_size=0)
    add_rule(rules, "ED", "important", True, CachePriority.HIGH)
    add_rule(rules, "ED", "optional", True, CachePriority.LOW)
    store = SimulationStore(tmp_path, rules)

    store.write("ED", "variables", "important", START, np.ones(10))
    store.write("ED", "variables", "optional", START, np.ones(10))

    assert store.kept_bytes <= rules.max_size
    assert store.evictions == 1
    store.read("ED", "variables", "important", START)
    assert store.stats.hits == 1
    store.read("ED", "variables", "optional", START)
    assert store.stats.misses == 1


def test_least_recently_used_evicted_within_priority(tmp_path):
    """Test the oldest entry of the same priority goes first"""
    rules = CacheFlushRules(max_size=20 * 8, min_flush_size=0)
    add_rule(rules, "ED", KEY, True, CachePriority.MEDIUM)
    store = SimulationStore(tmp_path, rules)

    for hour in range(3):
        store.write("ED", "variables", KEY, START + timedelta(hours=hour), np.ones(10))

    assert store.evictions == 1
    store.read("ED", "variables", KEY, START + timedelta(hours=2))
    store.read("ED", "variables", KEY, START + timedelta(hours=1))
    assert store.stats.hits == 2
    store.read("ED", "variables", KEY, START)
    assert store.stats.misses == 1


def test_list_timestamps(tmp_path):
    """Test timestamps are collected from memory and disk"""
    store = SimulationStore(tmp_path)
    store.write("ED", "variables", KEY, START, [1.0])
    store.flush()
    store.write("ED", "variables", KEY, START + timedelta(hours=6), [2.0])

    assert store.list_timestamps("ED", "variables", KEY) == [START, START + timedelta(hours=6)]
    assert store.list_timestamps("ED", "variables", "other") == []


def test_unknown_category_and_key(tmp_path):
    """Test invalid categories and missing results are rejected"""
    store = SimulationStore(tmp_path)
    with pytest.raises(InvalidArgumentError):
        store.write("ED", "bogus", KEY, START, [1.0])
    with pytest.raises(KeyNotFoundError):
        store.read("ED", "variables", KEY, START)


def test_close_flushes_everything(tmp_path):
    """Test closing persists pending data and empties memory"""
    store = SimulationStore(tmp_path)
    store.write("ED", "duals", "CopperPlateBalanceConstraint__System", START, [10.0, 50.0])

    store.close()

    assert store.cached_bytes == 0
    assert np.array_equal(
        store.read("ED", "duals", "CopperPlateBalanceConstraint__System", START), [10.0, 50.0]
    )
