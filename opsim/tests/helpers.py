"""
Test data builders: a two-generator, one-load copper-plate system with hourly data
"""

from datetime import datetime, timedelta

from opsim.enums import TimeSeriesType
from opsim.system import PowerLoad, System, ThermalGenerator, TimeSeriesData

START = datetime(2024, 1, 1)
HOUR = timedelta(hours=1)


def load_profile(length: int):
    """Per-unit load: 0.5 at midnight rising by 0.02 per hour, repeating daily"""
    return [0.5 + 0.02 * (h % 24) for h in range(length)]


def make_system(
    days: int = 4,
    peak: float = 150.0,
    generators=None,
    with_static: bool = True,
    with_forecasts: bool = True,
) -> System:
    if generators is None:
        generators = [
            ThermalGenerator(name="cheap", pmax=100.0, variable_cost=10.0, fixed_cost=5.0),
            ThermalGenerator(name="peaker", pmax=100.0, variable_cost=50.0, fixed_cost=20.0),
        ]
    load = PowerLoad(name="city", max_active_power=peak)
    system = System(name="test_system", generators=generators, loads=[load])
    if with_static:
        system.add_time_series(
            TimeSeriesData(
                component_uuid=load.uuid,
                name="max_active_power",
                series_type=TimeSeriesType.STATIC,
                resolution=HOUR,
                initial_time=START,
                values=load_profile(24 * days),
            )
        )
    if with_forecasts:
        system.add_time_series(
            TimeSeriesData(
                component_uuid=load.uuid,
                name="max_active_power",
                series_type=TimeSeriesType.DETERMINISTIC,
                resolution=HOUR,
                forecasts={START + day * timedelta(days=1): load_profile(24) for day in range(days)},
            )
        )
    return system
