"""
Power system data model and in-memory time series source
Holds the devices a template is built against, plus the time series attached to them
"""

import uuid
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional, Union

import numpy as np
from pydantic import BaseModel, Field, field_validator, model_validator

from opsim.enums import TimeSeriesType
from opsim.exceptions import InvalidArgumentError, KeyNotFoundError

logger = logging.getLogger(__name__)


class Component(BaseModel):
    """
    Base class for system components

    Attributes:
        name: Unique name within the component type
        uuid: Identifier used to key time series
        available: Unavailable components are skipped by model builders
    """

    name: str
    uuid: str = Field(default_factory=lambda: str(uuid.uuid4()))
    available: bool = True


class ThermalGenerator(Component):
    """
    Dispatchable thermal unit

    Attributes:
        pmin: Minimum output when committed (MW)
        pmax: Maximum output (MW)
        variable_cost: Linear production cost ($/MWh)
        fixed_cost: Cost per committed period, only used by commitment templates ($/h)
        status: Initial on/off status
        time_at_status: Periods the unit has been in its initial status
    """

    pmin: float = Field(0.0, ge=0)
    pmax: float = Field(..., gt=0)
    variable_cost: float = 0.0
    fixed_cost: float = 0.0
    status: bool = True
    time_at_status: float = Field(999.0, ge=0)

    @model_validator(mode="after")
    def check_limits(self) -> "ThermalGenerator":
        if self.pmin > self.pmax:
            raise ValueError(f"pmin ({self.pmin}) exceeds pmax ({self.pmax}) for {self.name}")
        return self


class PowerLoad(Component):
    """
    Demand served by the system

    Attributes:
        max_active_power: Peak demand (MW); forecasts are per-unit multipliers of it
    """

    max_active_power: float = Field(..., ge=0)


class TimeSeriesData(BaseModel):
    """
    One named time series attached to a component

    STATIC series use `values` sampled from `initial_time` every `resolution`.
    DETERMINISTIC series use `forecasts`, one window per forecast initial time.
    PROBABILISTIC series use `scenarios`, one (horizon x n_scenarios) matrix per
    forecast initial time.
    """

    component_uuid: str
    name: str
    series_type: TimeSeriesType
    resolution: timedelta
    initial_time: Optional[datetime] = None
    values: List[float] = []
    forecasts: Dict[datetime, List[float]] = {}
    scenarios: Dict[datetime, List[List[float]]] = {}

    @model_validator(mode="after")
    def check_payload(self) -> "TimeSeriesData":
        if self.series_type == TimeSeriesType.STATIC and self.initial_time is None:
            raise ValueError(f"Static series {self.name} requires initial_time")
        if self.resolution <= timedelta(0):
            raise ValueError("resolution must be positive")
        return self


class System(BaseModel):
    """
    Power system: devices plus forecast metadata

    Attributes:
        name: System name, used for the serialized file name
        base_power: System base (MVA)
        resolution: Time step of the forecasts
        forecast_interval: Time between consecutive forecast initial times
        forecast_horizon: Number of periods in each forecast
        generators: Thermal units
        loads: Demands
        time_series: Attached time series
    """

    name: str = "system"
    base_power: float = 100.0
    resolution: timedelta = timedelta(hours=1)
    forecast_interval: timedelta = timedelta(hours=24)
    forecast_horizon: int = Field(24, ge=1)
    generators: List[ThermalGenerator] = []
    loads: List[PowerLoad] = []
    time_series: List[TimeSeriesData] = []

    @field_validator("resolution", "forecast_interval")
    @classmethod
    def validate_positive(cls, v: timedelta) -> timedelta:
        if v <= timedelta(0):
            raise ValueError("must be a positive duration")
        return v

    def get_components(self) -> List[Component]:
        return [*self.generators, *self.loads]

    def get_component(self, name: str) -> Component:
        for component in self.get_components():
            if component.name == name:
                return component
        raise KeyNotFoundError(f"Component {name} not found in system {self.name}", key=name)

    def add_time_series(self, series: TimeSeriesData) -> None:
        uuids = {c.uuid for c in self.get_components()}
        if series.component_uuid not in uuids:
            raise InvalidArgumentError(
                f"Time series {series.name} references unknown component {series.component_uuid}"
            )
        self.time_series.append(series)

    def get_time_series(
        self, component_id: str, series_type: TimeSeriesType, name: str
    ) -> TimeSeriesData:
        for series in self.time_series:
            if (
                series.component_uuid == component_id
                and series.series_type == series_type
                and series.name == name
            ):
                return series
        raise KeyNotFoundError(
            f"No {series_type.value} time series '{name}' for component {component_id}",
            key=(component_id, series_type.value, name),
        )

    def to_json(self, filename: Union[str, Path]) -> None:
        Path(filename).write_text(self.model_dump_json(indent=2), encoding="utf-8")
        logger.info(f"Serialized system {self.name} to {filename}")

    @classmethod
    def from_json(cls, filename: Union[str, Path]) -> "System":
        return cls.model_validate_json(Path(filename).read_text(encoding="utf-8"))


def make_system_filename(system: System) -> str:
    return f"{system.name}.json"


class InMemoryTimeSeriesSource:
    """
    Time series source backed by the series attached to a System

    Counts reads so callers can observe how often the cache went to the source.
    """

    def __init__(self, system: System):
        self.system = system
        self.reads = 0

    def read_series(
        self,
        component_id: str,
        series_type: TimeSeriesType,
        field: str,
        start_time: datetime,
        length: int,
    ) -> np.ndarray:
        """
        Read up to `length` values starting at `start_time`

        Returns an empty array once start_time is past the end of the data.

        Raises:
            KeyNotFoundError: If the series does not exist, or a forecast is
                requested for an initial time that falls between forecasts
            InvalidArgumentError: If start_time is not aligned to the series resolution
        """
        series = self.system.get_time_series(component_id, series_type, field)
        self.reads += 1

        if series_type == TimeSeriesType.STATIC:
            offset = _aligned_offset(series, start_time)
            if offset < 0:
                raise InvalidArgumentError(
                    f"{start_time} precedes the start of series {field} ({series.initial_time})"
                )
            return np.asarray(series.values[offset:offset + length], dtype=float)

        windows = series.forecasts if series_type == TimeSeriesType.DETERMINISTIC else series.scenarios
        if start_time in windows:
            return np.asarray(windows[start_time][:length], dtype=float)
        if not windows or start_time > max(windows):
            return np.empty(0, dtype=float)
        raise KeyNotFoundError(
            f"No forecast of {field} starts at {start_time}",
            key=(component_id, field, start_time.isoformat()),
        )

    def get_resolution(
        self, component_id: str, series_type: TimeSeriesType, field: str
    ) -> timedelta:
        return self.system.get_time_series(component_id, series_type, field).resolution


def _aligned_offset(series: TimeSeriesData, start_time: datetime) -> int:
    offset, remainder = divmod(start_time - series.initial_time, series.resolution)
    if remainder:
        raise InvalidArgumentError(
            f"{start_time} is not aligned with the {series.resolution} resolution of {series.name}"
        )
    return offset
