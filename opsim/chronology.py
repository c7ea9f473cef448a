"""
Stage chronologies and per-problem simulation info
A chronology decides how many periods of a build belong to the current interval
"""

from datetime import timedelta
from typing import Dict, Optional, Type

from opsim.enums import ChronologyType
from opsim.exceptions import InvalidArgumentError


class SimulationInfo:
    """
    Simulation bookkeeping attached to a problem that runs inside a Simulation

    Attributes:
        name: Problem name
        number: Stage number
        executions: Solves per simulation step
        execution_count: Solves done in the current step
        end_of_interval_step: Period index where the stage interval ends
        chronology: Policy used to compute end_of_interval_step
    """

    def __init__(
        self,
        name: str,
        number: int,
        executions: int = 1,
        chronology: Optional["Chronology"] = None,
    ):
        if executions < 1:
            raise InvalidArgumentError(f"executions must be at least 1, got {executions}")
        self.name = name
        self.number = number
        self.executions = executions
        self.execution_count = 0
        self.end_of_interval_step = 1
        self.chronology = chronology or RecedingHorizon()

    def __repr__(self) -> str:
        return (
            f"SimulationInfo(name={self.name!r}, number={self.number}, "
            f"executions={self.executions}, execution_count={self.execution_count})"
        )


class Chronology:
    """Base class for stage chronologies"""

    kind: ChronologyType

    def end_of_interval_step(self, forecast_interval: timedelta, resolution: timedelta) -> int:
        raise NotImplementedError


class FeedForwardChronology(Chronology):
    """The stage interval spans the forecast interval: interval / resolution periods"""

    kind = ChronologyType.FEED_FORWARD

    def end_of_interval_step(self, forecast_interval, resolution):
        steps, remainder = divmod(forecast_interval, resolution)
        if remainder or steps < 1:
            raise InvalidArgumentError(
                f"Forecast interval {forecast_interval} is not a multiple of resolution {resolution}"
            )
        return steps


class RecedingHorizon(Chronology):
    """Every solve starts over from the top: only the first period is committed"""

    kind = ChronologyType.RECEDING_HORIZON

    def end_of_interval_step(self, forecast_interval, resolution):
        return 1


_CHRONOLOGIES: Dict[ChronologyType, Type[Chronology]] = {
    ChronologyType.FEED_FORWARD: FeedForwardChronology,
    ChronologyType.RECEDING_HORIZON: RecedingHorizon,
}


def make_chronology(kind: ChronologyType) -> Chronology:
    return _CHRONOLOGIES[ChronologyType(kind)]()
