"""
Optimization container
Owns every artifact of one build: variables, constraints, parameters, duals,
auxiliary variables and initial conditions, plus the solver model handle.
A problem replaces its container on reset; nothing should hold on to one across resets.
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
import logging

import numpy as np

from opsim.constants import KEY_SEPARATOR, UNSET_HORIZON
from opsim.exceptions import InvalidArgumentError, KeyNotFoundError
from opsim.models import ProblemSettings
from opsim.system import System
from opsim.types import ContainerSummaryDict

logger = logging.getLogger(__name__)


def encode_key(entry_type: str, component_type: str) -> str:
    """Encode a container key, e.g. ("ActivePowerVariable", "ThermalGenerator")"""
    return f"{entry_type}{KEY_SEPARATOR}{component_type}"


class ContainerArray:
    """
    A (component names x time steps) block of solver references

    Attributes:
        names: Row labels (component names)
        time_steps: Column labels
        refs: Solver-specific references with shape (len(names), len(time_steps))
        values: Filled from the solver after a successful solve
    """

    def __init__(self, names: Sequence[str], time_steps: Sequence[int], refs: Any = None):
        self.names = list(names)
        self.time_steps = list(time_steps)
        self.refs = refs
        self.values: Optional[np.ndarray] = None

    @property
    def shape(self) -> Tuple[int, int]:
        return len(self.names), len(self.time_steps)


class ParameterArray:
    """
    Parameter values and their multipliers; the stored result is values * multiplier
    """

    def __init__(
        self,
        names: Sequence[str],
        time_steps: Sequence[int],
        values: np.ndarray,
        multiplier: Optional[np.ndarray] = None,
    ):
        self.names = list(names)
        self.time_steps = list(time_steps)
        self.values = np.asarray(values, dtype=float)
        self.multiplier = (
            np.ones_like(self.values) if multiplier is None else np.asarray(multiplier, dtype=float)
        )
        if self.values.shape != self.multiplier.shape:
            raise InvalidArgumentError(
                f"Parameter values {self.values.shape} and multiplier {self.multiplier.shape} differ in shape"
            )

    def get_result(self) -> np.ndarray:
        return self.values * self.multiplier


class AuxVariableArray:
    """
    Variable computed from the solved primal/dual state rather than by the solver

    Attributes:
        compute: Callable(container, system) returning an array of shape (names x time steps)
    """

    def __init__(
        self,
        names: Sequence[str],
        time_steps: Sequence[int],
        compute: Callable[["OptimizationContainer", System], np.ndarray],
    ):
        self.names = list(names)
        self.time_steps = list(time_steps)
        self.compute = compute
        self.values: Optional[np.ndarray] = None


class InitialCondition:
    """
    State carried into a build, e.g. how long a unit has been on

    Attributes:
        ic_type: "InitialTimeDurationOn", "InitialTimeDurationOff", "InitialEnergyLevel", ...
        device_type: Component type name
        device_name: Component name
        value: Condition value
    """

    def __init__(self, ic_type: str, device_type: str, device_name: str, value: float):
        self.ic_type = ic_type
        self.device_type = device_type
        self.device_name = device_name
        self.value = value

    def __repr__(self) -> str:
        return f"InitialCondition({self.ic_type}, {self.device_name}={self.value})"


class OptimizationContainer:
    """
    Per-build artifacts of an optimization problem

    Attributes:
        system: System the build reads devices from
        settings: Live settings of the owning problem
        settings_copy: Frozen copy taken at construction, used for serialization
        model: Solver model handle installed by the model builder
    """

    def __init__(
        self,
        system: System,
        settings: ProblemSettings,
        model: Any = None,
        time_series_reader: Optional[Callable[..., np.ndarray]] = None,
    ):
        self.system = system
        self.settings = settings
        self.settings_copy = settings.model_copy(deep=True)
        self.model = model
        self.time_series_reader = time_series_reader
        self.initial_time: Optional[datetime] = None
        self.resolution: timedelta = settings.resolution or system.resolution
        self.time_steps: range = range(1, 1)
        self.variables: Dict[str, ContainerArray] = {}
        self.constraints: Dict[str, ContainerArray] = {}
        self.parameters: Dict[str, ParameterArray] = {}
        self.aux_variables: Dict[str, AuxVariableArray] = {}
        self.duals: Dict[str, np.ndarray] = {}
        self.initial_conditions: Dict[Tuple[str, str], List[InitialCondition]] = {}
        self.objective_value: Optional[float] = None

    def init(self) -> None:
        """
        Fix the build window from the settings, falling back to the system defaults

        Raises:
            InvalidArgumentError: If no initial time was set
        """
        if self.settings.initial_time is None:
            raise InvalidArgumentError("initial_time must be set before building")
        horizon = self.settings.horizon
        if horizon == UNSET_HORIZON:
            horizon = self.system.forecast_horizon
        self.initial_time = self.settings.initial_time
        self.settings_copy = self.settings.model_copy(deep=True)
        self.resolution = self.settings.resolution or self.system.resolution
        self.time_steps = range(1, horizon + 1)
        logger.debug(
            f"Container initialized: initial_time={self.initial_time}, "
            f"horizon={horizon}, resolution={self.resolution}"
        )

    @property
    def horizon(self) -> int:
        return len(self.time_steps)

    @property
    def is_milp(self) -> bool:
        return bool(getattr(self.model, "is_milp", False))

    def get_time_series(self, series_type: Any, component: Any, name: str) -> np.ndarray:
        """Read the build window of a component series through the owner's cache"""
        if self.time_series_reader is None:
            raise InvalidArgumentError("Container has no time series reader")
        return self.time_series_reader(
            series_type, component, name, self.initial_time, self.horizon
        )

    # Registration

    def add_variable(self, key: str, array: ContainerArray) -> ContainerArray:
        _check_new(self.variables, key, "Variable")
        self.variables[key] = array
        return array

    def add_constraint(self, key: str, array: ContainerArray) -> ContainerArray:
        _check_new(self.constraints, key, "Constraint")
        self.constraints[key] = array
        return array

    def add_parameter(self, key: str, array: ParameterArray) -> ParameterArray:
        _check_new(self.parameters, key, "Parameter")
        self.parameters[key] = array
        return array

    def add_aux_variable(self, key: str, array: AuxVariableArray) -> AuxVariableArray:
        _check_new(self.aux_variables, key, "Auxiliary variable")
        self.aux_variables[key] = array
        return array

    def add_initial_condition(self, condition: InitialCondition) -> None:
        key = (condition.ic_type, condition.device_type)
        self.initial_conditions.setdefault(key, []).append(condition)

    # Lookup

    def get_variable(self, key: str) -> ContainerArray:
        return _get(self.variables, key, "Variable")

    def get_constraint(self, key: str) -> ContainerArray:
        return _get(self.constraints, key, "Constraint")

    def get_parameter(self, key: str) -> ParameterArray:
        return _get(self.parameters, key, "Parameter")

    def get_aux_variable(self, key: str) -> AuxVariableArray:
        return _get(self.aux_variables, key, "Auxiliary variable")

    def get_initial_conditions(self, ic_type: str, device_type: str) -> List[InitialCondition]:
        return self.initial_conditions.get((ic_type, device_type), [])

    def calculate_aux_variable_value(self, key: str) -> np.ndarray:
        aux = self.get_aux_variable(key)
        aux.values = np.asarray(aux.compute(self, self.system), dtype=float)
        return aux.values

    def close(self) -> None:
        """Release the solver handle and drop every artifact"""
        release = getattr(self.model, "close", None)
        if callable(release):
            release()
        self.model = None
        self.variables.clear()
        self.constraints.clear()
        self.parameters.clear()
        self.aux_variables.clear()
        self.duals.clear()
        self.initial_conditions.clear()
        self.objective_value = None

    def to_summary(self) -> ContainerSummaryDict:
        return {
            "initial_time": self.initial_time.isoformat() if self.initial_time else None,
            "time_steps": list(self.time_steps),
            "variables": {key: array.names for key, array in self.variables.items()},
            "constraints": sorted(self.constraints),
            "parameters": sorted(self.parameters),
            "aux_variables": sorted(self.aux_variables),
            "duals": list(self.settings.constraint_duals),
        }


def _check_new(table: Dict[str, Any], key: str, kind: str) -> None:
    if key in table:
        raise InvalidArgumentError(f"{kind} {key} is already registered in the container")


def _get(table: Dict[str, Any], key: str, kind: str) -> Any:
    try:
        return table[key]
    except KeyError:
        raise KeyNotFoundError(f"{kind} {key} not found in the container", key=key) from None
