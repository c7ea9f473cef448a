"""
Time series window cache
Amortizes repeated reads of the same forecast windows across successive solves of a rolling problem.
Each (component, series type, field) gets a window reader that retains chunks within a byte budget,
evicting the least recently used chunk before taking on a new one.
"""

from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Dict, NamedTuple, Optional, Tuple, Type
import logging

import numpy as np
from pydantic import BaseModel, ConfigDict

from opsim.constants import TIME_SERIES_CACHE_SIZE_BYTES
from opsim.enums import TimeSeriesType
from opsim.exceptions import InvalidArgumentError
from opsim.interfaces import TimeSeriesSource
from opsim.types import CacheStatsDict
from opsim.utils.cache_rules import CacheStats

logger = logging.getLogger(__name__)

FLOAT_BYTES = np.dtype(float).itemsize


class TimeSeriesCacheKey(BaseModel):
    """Identifies one series: component uuid, series type and field name"""

    model_config = ConfigDict(frozen=True)

    component_uuid: str
    series_type: TimeSeriesType
    name: str


class TimeSeriesWindow(NamedTuple):
    """
    A materialized slice of a series

    Attributes:
        initial_time: First timestamp of the window
        values: At most `horizon` values (rows for probabilistic series)
        truncated: True when the series ended before `horizon` values
    """

    initial_time: datetime
    values: np.ndarray
    truncated: bool


class _Chunk:
    __slots__ = ("start", "values", "requested")

    def __init__(self, start: datetime, values: np.ndarray, requested: int):
        self.start = start
        self.values = values
        self.requested = requested

    @property
    def exhausted(self) -> bool:
        """The source returned fewer values than asked: the series ends inside this chunk"""
        return len(self.values) < self.requested


class WindowReader:
    """
    Retains chunks of one series and serves windows from them

    Subclasses decide which chunk covers a request and how much to fetch on a miss.

    Attributes:
        key: Series the reader serves
        max_bytes: Budget for retained chunks
        refills: Number of reads issued to the source
    """

    def __init__(
        self,
        source: TimeSeriesSource,
        key: TimeSeriesCacheKey,
        resolution: timedelta,
        max_bytes: int = TIME_SERIES_CACHE_SIZE_BYTES,
    ):
        self.source = source
        self.key = key
        self.resolution = resolution
        self.max_bytes = max_bytes
        self.refills = 0
        self.evictions = 0
        self._chunks: "OrderedDict[datetime, _Chunk]" = OrderedDict()

    @property
    def nbytes(self) -> int:
        return sum(chunk.values.nbytes for chunk in self._chunks.values())

    def __len__(self) -> int:
        return len(self._chunks)

    def clear(self) -> None:
        self._chunks.clear()

    def get_window(self, initial_time: datetime, horizon: int) -> Tuple[TimeSeriesWindow, bool]:
        """
        Serve [initial_time, initial_time + horizon) from retained chunks or the source

        Returns:
            The window and whether it was served without a source read
        """
        if horizon < 1:
            raise InvalidArgumentError(f"horizon must be at least 1, got {horizon}")

        for chunk in self._chunks.values():
            offset = self._covering_offset(chunk, initial_time, horizon)
            if offset is not None:
                self._chunks.move_to_end(chunk.start)
                return self._slice(chunk, offset, initial_time, horizon), True

        chunk = self._fetch(initial_time, horizon)
        return self._slice(chunk, 0, initial_time, horizon), False

    def _fetch(self, initial_time: datetime, horizon: int) -> _Chunk:
        length = self._fetch_length(horizon)
        values = np.asarray(
            self.source.read_series(
                self.key.component_uuid,
                self.key.series_type,
                self.key.name,
                initial_time,
                length,
            ),
            dtype=float,
        )
        self.refills += 1
        chunk = _Chunk(initial_time, values, length)
        self._retain(chunk)
        logger.debug(
            f"Refilled {self.key.name} for {self.key.component_uuid} at {initial_time}: "
            f"{len(values)}/{length} values, {self.nbytes} bytes retained"
        )
        return chunk

    def _retain(self, chunk: _Chunk) -> None:
        # A chunk larger than the whole budget is still kept, alone
        self._chunks.pop(chunk.start, None)
        incoming = chunk.values.nbytes
        while self._chunks and self.nbytes + incoming > self.max_bytes:
            evicted_start, _ = self._chunks.popitem(last=False)
            self.evictions += 1
            logger.debug(f"Evicted {self.key.name} chunk starting {evicted_start}")
        self._chunks[chunk.start] = chunk

    @staticmethod
    def _slice(
        chunk: _Chunk, offset: int, initial_time: datetime, horizon: int
    ) -> TimeSeriesWindow:
        values = chunk.values[offset:offset + horizon]
        return TimeSeriesWindow(initial_time, values, len(values) < horizon)

    def _covering_offset(
        self, chunk: _Chunk, initial_time: datetime, horizon: int
    ) -> Optional[int]:
        raise NotImplementedError

    def _fetch_length(self, horizon: int) -> int:
        raise NotImplementedError


class StaticWindowReader(WindowReader):
    """
    Reader for a single continuous series

    On a miss it prefetches as many values as the budget allows, so later windows
    of the rolling horizon are served from the same chunk.
    """

    def _fetch_length(self, horizon: int) -> int:
        return max(horizon, self.max_bytes // FLOAT_BYTES)

    def _covering_offset(self, chunk, initial_time, horizon):
        if initial_time < chunk.start:
            return None
        offset, remainder = divmod(initial_time - chunk.start, self.resolution)
        if remainder:
            return None
        available = len(chunk.values)
        if offset + horizon <= available:
            return offset
        if chunk.exhausted and offset <= available:
            return offset
        return None


class ForecastWindowReader(WindowReader):
    """
    Reader for deterministic forecasts: one window per forecast initial time

    Only a chunk for the exact initial time can serve a request.
    """

    def _fetch_length(self, horizon: int) -> int:
        return horizon

    def _covering_offset(self, chunk, initial_time, horizon):
        if chunk.start != initial_time:
            return None
        if chunk.requested >= horizon or chunk.exhausted:
            return 0
        return None


class ProbabilisticWindowReader(ForecastWindowReader):
    """Reader for scenario forecasts; each window is a (horizon x scenarios) matrix"""


_READER_TYPES: Dict[TimeSeriesType, Type[WindowReader]] = {
    TimeSeriesType.STATIC: StaticWindowReader,
    TimeSeriesType.DETERMINISTIC: ForecastWindowReader,
    TimeSeriesType.PROBABILISTIC: ProbabilisticWindowReader,
}


def make_window_reader(
    source: TimeSeriesSource,
    key: TimeSeriesCacheKey,
    resolution: timedelta,
    max_bytes: int,
) -> WindowReader:
    """Create the reader registered for the key's series type"""
    reader_type = _READER_TYPES.get(key.series_type)
    if reader_type is None:
        raise InvalidArgumentError(f"Series type not supported: {key.series_type}")
    logger.debug(f"Made {reader_type.__name__} for {key.component_uuid}/{key.name}")
    return reader_type(source, key, resolution, max_bytes)


class TimeSeriesCache:
    """
    Per-problem cache of window readers

    A cache with max_bytes == 0 is disabled: every call reads the source directly,
    nothing is inserted and the statistics are left untouched.

    Attributes:
        source: Where windows are read from
        resolution: Time step of the series
        max_bytes: Budget per series
        stats: Hit/miss counters
    """

    def __init__(
        self,
        source: TimeSeriesSource,
        resolution: timedelta,
        max_bytes: int = TIME_SERIES_CACHE_SIZE_BYTES,
    ):
        if max_bytes < 0:
            raise InvalidArgumentError(f"Time series cache size must be >= 0, got {max_bytes}")
        self.source = source
        self.resolution = resolution
        self.max_bytes = max_bytes
        self.stats = CacheStats()
        self._readers: Dict[TimeSeriesCacheKey, WindowReader] = {}

    @property
    def enabled(self) -> bool:
        return self.max_bytes > 0

    @property
    def nbytes(self) -> int:
        return sum(reader.nbytes for reader in self._readers.values())

    def __len__(self) -> int:
        return len(self._readers)

    def __contains__(self, key: TimeSeriesCacheKey) -> bool:
        return key in self._readers

    def get_reader(self, key: TimeSeriesCacheKey) -> Optional[WindowReader]:
        return self._readers.get(key)

    def get_window(
        self, key: TimeSeriesCacheKey, initial_time: datetime, horizon: int
    ) -> TimeSeriesWindow:
        """
        Get `horizon` values of a series starting at `initial_time`

        Args:
            key: Series to read
            initial_time: First timestamp of the window
            horizon: Number of periods

        Returns:
            The window; `truncated` is set when the series ended early
        """
        if not self.enabled:
            self._check_resolution(key)
            values = np.asarray(
                self.source.read_series(
                    key.component_uuid, key.series_type, key.name, initial_time, horizon
                ),
                dtype=float,
            )
            return TimeSeriesWindow(initial_time, values, len(values) < horizon)

        reader = self._readers.get(key)
        if reader is None:
            self._check_resolution(key)
            reader = make_window_reader(self.source, key, self.resolution, self.max_bytes)
            self._readers[key] = reader

        window, hit = reader.get_window(initial_time, horizon)
        if hit:
            self.stats.record_hit()
        else:
            self.stats.record_miss()
        return window

    def _check_resolution(self, key: TimeSeriesCacheKey) -> None:
        # Window offsets and lengths are counted in steps of self.resolution
        series_resolution = self.source.get_resolution(key.component_uuid, key.series_type, key.name)
        if series_resolution != self.resolution:
            raise InvalidArgumentError(
                f"Series {key.name} of {key.component_uuid} has resolution {series_resolution}, "
                f"the cache reads at {self.resolution}",
                details={"series": key.name, "component": key.component_uuid},
            )

    def clear(self) -> None:
        """Drop every reader and its retained data. Statistics are kept."""
        for reader in self._readers.values():
            reader.clear()
        self._readers.clear()

    def get_stats(self) -> CacheStatsDict:
        return self.stats.to_dict(size=self.nbytes)
