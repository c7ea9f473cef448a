"""
Tests for the time series window cache
"""

from datetime import timedelta

import numpy as np
import pytest

from opsim.enums import TimeSeriesType
from opsim.exceptions import InvalidArgumentError, KeyNotFoundError
from opsim.system import InMemoryTimeSeriesSource
from opsim.tests.helpers import HOUR, START, make_system
from opsim.utils.time_series_cache import (
    FLOAT_BYTES,
    ForecastWindowReader,
    ProbabilisticWindowReader,
    StaticWindowReader,
    TimeSeriesCache,
    TimeSeriesCacheKey,
)

HORIZON = 24


def make_source(days=4):
    system = make_system(days=days)
    return InMemoryTimeSeriesSource(system), system.loads[0]


def static_key(load):
    return TimeSeriesCacheKey(
        component_uuid=load.uuid, series_type=TimeSeriesType.STATIC, name="max_active_power"
    )


def forecast_key(load):
    return TimeSeriesCacheKey(
        component_uuid=load.uuid,
        series_type=TimeSeriesType.DETERMINISTIC,
        name="max_active_power",
    )


def test_repeated_window_is_a_hit():
    """Test reading the same window twice goes to the source once"""
    source, load = make_source()
    cache = TimeSeriesCache(source, HOUR, max_bytes=HORIZON * FLOAT_BYTES)

    first = cache.get_window(static_key(load), START, HORIZON)
    second = cache.get_window(static_key(load), START, HORIZON)

    assert np.array_equal(first.values, second.values)
    assert cache.stats.hits == 1
    assert cache.stats.misses == 1
    assert source.reads == 1


def test_disjoint_window_refills_exactly_once():
    """Test a later window outside the retained chunk costs exactly one refill"""
    source, load = make_source()
    cache = TimeSeriesCache(source, HOUR, max_bytes=HORIZON * FLOAT_BYTES)
    key = static_key(load)

    cache.get_window(key, START, HORIZON)
    reader = cache.get_reader(key)
    assert reader.refills == 1

    window = cache.get_window(key, START + 2 * HORIZON * HOUR, HORIZON)

    assert reader.refills == 2
    assert source.reads == 2
    assert cache.stats.misses == 2
    assert window.initial_time == START + 2 * HORIZON * HOUR
    assert len(window.values) == HORIZON
    # Budget holds one window, the first chunk was evicted
    assert len(reader) == 1
    assert reader.evictions == 1
    assert cache.nbytes <= HORIZON * FLOAT_BYTES


def test_static_reader_prefetches_within_budget():
    """Test a large budget serves successive rolling windows from one read"""
    source, load = make_source()
    cache = TimeSeriesCache(source, HOUR)
    key = static_key(load)

    for hour in range(48):
        cache.get_window(key, START + hour * HOUR, HORIZON)

    assert source.reads == 1
    assert cache.stats.misses == 1
    assert cache.stats.hits == 47


def test_disabled_cache_never_counts():
    """Test a zero budget reads the source every time and leaves statistics untouched"""
    source, load = make_source()
    cache = TimeSeriesCache(source, HOUR, max_bytes=0)

    for _ in range(100):
        window = cache.get_window(static_key(load), START, HORIZON)
        assert len(window.values) == HORIZON

    assert not cache.enabled
    assert cache.stats.hits == 0
    assert cache.stats.misses == 0
    assert source.reads == 100
    assert len(cache) == 0


def test_window_past_end_is_truncated():
    """Test a window running past the data is flagged instead of padded"""
    source, load = make_source(days=1)
    cache = TimeSeriesCache(source, HOUR)

    window = cache.get_window(static_key(load), START + 20 * HOUR, HORIZON)

    assert window.truncated
    assert len(window.values) == 4


def test_forecast_reader_needs_exact_initial_time():
    """Test forecasts are served per initial time"""
    source, load = make_source()
    cache = TimeSeriesCache(source, HOUR)
    key = forecast_key(load)

    day1 = cache.get_window(key, START, HORIZON)
    cache.get_window(key, START, HORIZON)
    day2 = cache.get_window(key, START + timedelta(days=1), HORIZON)

    assert isinstance(cache.get_reader(key), ForecastWindowReader)
    assert cache.stats.hits == 1
    assert cache.stats.misses == 2
    assert np.array_equal(day1.values, day2.values)
    assert not day1.truncated


def test_forecast_between_initial_times_fails():
    """Test a start that is not a forecast initial time is a lookup error"""
    source, load = make_source()
    cache = TimeSeriesCache(source, HOUR)

    with pytest.raises(KeyNotFoundError):
        cache.get_window(forecast_key(load), START + HOUR, HORIZON)


def test_reader_type_per_series_type():
    """Test each series type gets its own reader kind"""
    source, load = make_source()
    cache = TimeSeriesCache(source, HOUR)
    cache.get_window(static_key(load), START, HORIZON)

    assert isinstance(cache.get_reader(static_key(load)), StaticWindowReader)
    assert issubclass(ProbabilisticWindowReader, ForecastWindowReader)


def test_clear_keeps_statistics():
    """Test clearing drops retained data but not the hit/miss history"""
    source, load = make_source()
    cache = TimeSeriesCache(source, HOUR)
    cache.get_window(static_key(load), START, HORIZON)
    cache.get_window(static_key(load), START, HORIZON)

    cache.clear()

    assert len(cache) == 0
    assert cache.nbytes == 0
    assert cache.get_stats()["hits"] == 1
    assert cache.get_stats()["misses"] == 1


def test_invalid_arguments():
    """Test negative budgets and empty horizons are rejected"""
    source, load = make_source()
    with pytest.raises(InvalidArgumentError):
        TimeSeriesCache(source, HOUR, max_bytes=-1)

    cache = TimeSeriesCache(source, HOUR)
    with pytest.raises(InvalidArgumentError):
        cache.get_window(static_key(load), START, 0)


def test_resolution_mismatch_rejected():
    """Test a cache stepping at another resolution than the series refuses to read it"""
    source, load = make_source()
    cache = TimeSeriesCache(source, timedelta(minutes=30))
    with pytest.raises(InvalidArgumentError):
        cache.get_window(static_key(load), START, HORIZON)
    assert len(cache) == 0
    assert source.reads == 0

    disabled = TimeSeriesCache(source, 2 * HOUR, max_bytes=0)
    with pytest.raises(InvalidArgumentError):
        disabled.get_window(forecast_key(load), START, HORIZON)
