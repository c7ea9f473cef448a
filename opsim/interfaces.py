"""
Collaborator interfaces consumed by the simulation core
The core only talks to model builders, solvers, time series sources and result writers through these
"""

from datetime import datetime, timedelta
from typing import Any, Protocol, Sequence, runtime_checkable

from opsim.enums import SolverStatus, TimeSeriesType


@runtime_checkable
class TimeSeriesSource(Protocol):
    """Reads raw time series windows for a component"""

    def read_series(
        self,
        component_id: str,
        series_type: TimeSeriesType,
        field: str,
        start_time: datetime,
        length: int,
    ) -> Sequence[float]:
        """Return up to `length` values starting at `start_time` (shorter at series end)"""
        ...

    def get_resolution(
        self, component_id: str, series_type: TimeSeriesType, field: str
    ) -> timedelta:
        """Time step between consecutive values of the series"""
        ...


@runtime_checkable
class Solver(Protocol):
    """Optimizes a model built by a ModelBuilder"""

    def optimize(self, model: Any) -> SolverStatus:
        ...

    def get_primal(self, model: Any, variable: Any) -> Any:
        ...

    def get_dual(self, model: Any, constraint: Any) -> Any:
        ...


@runtime_checkable
class ModelBuilder(Protocol):
    """
    Populates an optimization container from a template and a system

    Implementations must install the solver model handle on the container.
    """

    def build_model(self, container: Any, template: Any, system: Any) -> Any:
        ...


@runtime_checkable
class ResultWriter(Protocol):
    """Receives results after each successful solve"""

    def write(
        self,
        problem_name: str,
        category: str,
        key: str,
        timestamp: datetime,
        data: Any,
    ) -> None:
        ...
