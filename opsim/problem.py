"""
Decision problem: build / solve / write / reset lifecycle of one optimization problem
A problem owns exactly one optimization container and one time series cache; the container
is replaced on every reset, so consumers always go through get_optimization_container().
"""

from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import json
import logging
import time

import numpy as np

from opsim.chronology import SimulationInfo
from opsim.config import get_settings
from opsim.constants import (
    STORE_CONTAINER_AUX_VARIABLES,
    STORE_CONTAINER_DUALS,
    STORE_CONTAINER_OPTIMIZER_STATS,
    STORE_CONTAINER_PARAMETERS,
    STORE_CONTAINER_VARIABLES,
)
from opsim.economic_dispatch import EconomicDispatchBuilder
from opsim.enums import BuildStatus, RunStatus, SolverStatus, TimeSeriesType
from opsim.exceptions import (
    BuildFailure,
    ConsistencyError,
    InvalidStateError,
    KeyNotFoundError,
    SolveFailure,
    WindowExhaustedError,
)
from opsim.interfaces import ModelBuilder, ResultWriter, Solver, TimeSeriesSource
from opsim.models import ProblemSettings, ProblemTemplate
from opsim.optimization_container import OptimizationContainer
from opsim.solver import ScipySolver
from opsim.system import Component, InMemoryTimeSeriesSource, System
from opsim.types import OptimizerStatsDict
from opsim.utils.logging_config import file_logging, log_context
from opsim.utils.serialization import deserialize_problem, serialize_problem
from opsim.utils.time_series_cache import TimeSeriesCache, TimeSeriesCacheKey

logger = logging.getLogger(__name__)


class ProblemInternal:
    """
    Mutable state of a problem that is not part of its definition

    Attributes:
        container: Live optimization container
        time_series_cache: Window cache for device data
        status: Build status
        run_status: Outcome of the last solve
        simulation_info: Set when the problem runs inside a Simulation
        output_dir: Where build artifacts go
        last_error: Description of the last build or solve failure
        optimizer_stats: One entry per successful solve
    """

    def __init__(self, container: OptimizationContainer, time_series_cache: TimeSeriesCache):
        self.container = container
        self.time_series_cache = time_series_cache
        self.status = BuildStatus.EMPTY
        self.run_status = RunStatus.READY
        self.simulation_info: Optional[SimulationInfo] = None
        self.output_dir: Optional[Path] = None
        self.last_error: Optional[str] = None
        self.build_time = 0.0
        self.optimizer_stats: List[OptimizerStatsDict] = []


class DecisionProblem:
    """
    An optimization problem built from a template and a system

    Args:
        template: What to build
        system: Devices and time series
        settings: Problem settings; keyword overrides are applied on top
        name: Problem name used in results and file names
        builder: Model builder collaborator (copper-plate dispatch by default)
        solver: Solver collaborator (scipy HiGHS by default)
        source: Time series source (the series attached to the system by default)

    Example:
        >>> problem = DecisionProblem(ProblemTemplate(), system, horizon=24, initial_time=start)
        >>> problem.build()
        >>> problem.solve()
    """

    def __init__(
        self,
        template: ProblemTemplate,
        system: System,
        settings: Optional[ProblemSettings] = None,
        name: str = "",
        builder: Optional[ModelBuilder] = None,
        solver: Optional[Solver] = None,
        source: Optional[TimeSeriesSource] = None,
        **overrides: Any,
    ):
        if settings is None:
            config = get_settings()
            defaults = {
                "time_series_cache_size": config.time_series_cache_size,
                "allow_fails": config.allow_fails,
            }
            settings = ProblemSettings(**{**defaults, **overrides})
        elif overrides:
            settings = ProblemSettings.model_validate({**settings.model_dump(), **overrides})

        self.template = template
        self.system = system
        self.name = name
        self.builder = builder or EconomicDispatchBuilder()
        self.solver = solver or ScipySolver()
        self.source = source or InMemoryTimeSeriesSource(system)
        self.ext: Dict[str, Any] = {}
        self._settings = settings
        cache = TimeSeriesCache(
            self.source,
            settings.resolution or system.resolution,
            settings.time_series_cache_size,
        )
        self.internal = ProblemInternal(self._make_container(), cache)

    @classmethod
    def from_file(cls, filename: Union[str, Path], **kwargs: Any) -> "DecisionProblem":
        """Restore a problem written by serialize(); see deserialize_problem"""
        return deserialize_problem(filename, **kwargs)

    def _make_container(self) -> OptimizationContainer:
        return OptimizationContainer(
            self.system, self._settings, time_series_reader=self.get_time_series_values
        )

    # Accessors

    def get_optimization_container(self) -> OptimizationContainer:
        return self.internal.container

    def get_time_series_cache(self) -> TimeSeriesCache:
        return self.internal.time_series_cache

    @property
    def settings(self) -> ProblemSettings:
        return self._settings

    @property
    def status(self) -> BuildStatus:
        return self.internal.status

    @property
    def run_status(self) -> RunStatus:
        return self.internal.run_status

    @property
    def last_error(self) -> Optional[str]:
        return self.internal.last_error

    @property
    def is_empty(self) -> bool:
        return self.internal.status == BuildStatus.EMPTY

    @property
    def is_built(self) -> bool:
        return self.internal.status == BuildStatus.BUILT

    @property
    def built_for_simulation(self) -> bool:
        return self.internal.simulation_info is not None

    @property
    def simulation_info(self) -> SimulationInfo:
        if self.internal.simulation_info is None:
            raise InvalidStateError(f"Problem {self.name} is not part of a simulation")
        return self.internal.simulation_info

    @property
    def resolution(self):
        return self._settings.resolution or self.system.resolution

    @property
    def horizon(self) -> int:
        return self._settings.horizon or self.system.forecast_horizon

    @property
    def execution_count(self) -> int:
        return self.simulation_info.execution_count

    @property
    def executions(self) -> int:
        return self.simulation_info.executions

    def set_status(self, status: BuildStatus) -> None:
        self.internal.status = status

    def set_initial_time(self, initial_time: datetime) -> None:
        self._settings.initial_time = initial_time

    def set_simulation_info(self, info: SimulationInfo) -> None:
        self.internal.simulation_info = info

    def set_executions(self, executions: int) -> None:
        self.simulation_info.executions = executions

    def set_execution_count(self, count: int) -> None:
        self.simulation_info.execution_count = count

    # Time series

    def get_time_series_values(
        self,
        series_type: TimeSeriesType,
        component: Component,
        name: str,
        initial_time: datetime,
        horizon: int,
    ) -> np.ndarray:
        """
        Read a window of a component series through the problem's cache

        Raises:
            WindowExhaustedError: If the series ends before `horizon` values;
                the partial window is attached to the error
        """
        key = TimeSeriesCacheKey(
            component_uuid=component.uuid, series_type=series_type, name=name
        )
        window = self.internal.time_series_cache.get_window(key, initial_time, horizon)
        if window.truncated:
            raise WindowExhaustedError(
                f"Series {name} of {component.name} has {len(window.values)} of {horizon} "
                f"values from {initial_time.isoformat()}",
                values=window.values,
                requested=horizon,
                details={"component": component.name, "series": name},
            )
        return window.values

    # Lifecycle

    def reset(self) -> None:
        """
        Discard the container and the cached time series, back to EMPTY

        Settings are kept. Inside a simulation the execution count is zeroed too.
        """
        if self.built_for_simulation:
            self.set_execution_count(0)
        self._replace_container(clear_cache=True)

    def _replace_container(self, clear_cache: bool) -> None:
        self.internal.container.close()
        self.internal.container = self._make_container()
        if clear_cache:
            self.internal.time_series_cache.clear()
        self.internal.run_status = RunStatus.READY
        self.set_status(BuildStatus.EMPTY)

    def advance_execution_count(self) -> None:
        """Count one solve; wraps to 0 when the stage has run all its executions for the step"""
        info = self.simulation_info
        info.execution_count += 1
        if info.execution_count == info.executions:
            info.execution_count = 0

    def initialize_simulation_info(self) -> None:
        """Compute end_of_interval_step with the stage's chronology"""
        info = self.simulation_info
        info.end_of_interval_step = info.chronology.end_of_interval_step(
            self.system.forecast_interval, self.resolution
        )
        logger.debug(f"{self.name}: end_of_interval_step={info.end_of_interval_step}")

    def _build_pre_step(self) -> None:
        if not self.is_empty:
            logger.info(f"Problem {self.name} status is {self.status.value}, resetting")
            # Within a simulation the next build only moves the window
            self._replace_container(clear_cache=not self.built_for_simulation)
        if not self._settings.use_parameters and self.built_for_simulation:
            self._settings.use_parameters = True
            logger.debug("Set use_parameters = true for use in simulation")
        self.get_optimization_container().init()
        self.set_status(BuildStatus.IN_PROGRESS)

    def build(
        self,
        output_dir: Optional[Union[str, Path]] = None,
        serialize: bool = True,
    ) -> BuildStatus:
        """
        Build the model through the builder collaborator

        Args:
            output_dir: Folder for the serialized problem, model summary and build log
            serialize: Write the serialized problem and model summary

        Returns:
            BUILT, or FAILED when allow_fails is set

        Raises:
            BuildFailure: If the build fails and allow_fails is not set
        """
        if output_dir is not None:
            self.internal.output_dir = Path(output_dir)
            self.internal.output_dir.mkdir(parents=True, exist_ok=True)
            log_file = str(self.internal.output_dir / f"{self.name or 'problem'}_build.log")
            with file_logging(log_file):
                return self._build(serialize)
        return self._build(serialize)

    def _build(self, serialize: bool) -> BuildStatus:
        started = time.perf_counter()
        with log_context(problem=self.name):
            try:
                self._build_pre_step()
                container = self.get_optimization_container()
                self.builder.build_model(container, self.template, self.system)
                if container.model is None:
                    raise InvalidStateError("Model builder did not install a model on the container")
                self._check_constraint_duals(container)
                if serialize and self.internal.output_dir is not None:
                    self.serialize(self.internal.output_dir)
                    self.write_model_summary(self.internal.output_dir)
                self.set_status(BuildStatus.BUILT)
                self.internal.last_error = None
                self._settings.log_values()
            except Exception as e:
                self.set_status(BuildStatus.FAILED)
                self.internal.last_error = f"{type(e).__name__}: {e}"
                self.get_optimization_container().close()
                logger.error(
                    f"Operation problem {self.name} build failed: {self.internal.last_error}",
                    exc_info=True,
                )
                if not self._settings.allow_fails:
                    raise BuildFailure(
                        self.name,
                        f"Build of {self.name} failed: {self.internal.last_error}",
                        details={"error_type": type(e).__name__},
                    ) from e
            finally:
                self.internal.build_time = time.perf_counter() - started
        return self.status

    def _check_constraint_duals(self, container: OptimizationContainer) -> None:
        missing = [key for key in self._settings.constraint_duals if key not in container.constraints]
        if missing:
            raise KeyNotFoundError(
                f"Duals requested for constraints that were not built: {missing}",
                key=missing[0],
                details={"available": sorted(container.constraints)},
            )

    def solve(self, optimizer: Optional[str] = None) -> RunStatus:
        """
        Solve the built model

        On success the primal values, requested duals and auxiliary variables are
        available on the container.

        Raises:
            InvalidStateError: If the problem is not BUILT
            SolveFailure: If the solve fails and allow_fails is not set
        """
        if not self.is_built:
            raise InvalidStateError(
                f"Operations problem build status is {self.status.value}. Solve can't continue"
            )
        container = self.get_optimization_container()
        model = container.model
        if optimizer is not None:
            model.set_optimizer(optimizer)

        with log_context(problem=self.name):
            if getattr(model, "optimizer", None) is None:
                logger.error("No optimizer has been defined, can't solve the operational problem")
                status = RunStatus.FAILED
                self.internal.last_error = "No optimizer defined"
            else:
                self.internal.run_status = RunStatus.RUNNING
                status = self._optimize(container)
            self.internal.run_status = status

        if status == RunStatus.FAILED and not self._settings.allow_fails:
            raise SolveFailure(self.name, f"Solve of {self.name} failed: {self.internal.last_error}")
        return status

    def _optimize(self, container: OptimizationContainer) -> RunStatus:
        try:
            solver_status = self.solver.optimize(container.model)
        except Exception as e:
            logger.error(f"Solver raised for {self.name}: {e}", exc_info=True)
            self.internal.last_error = f"{type(e).__name__}: {e}"
            return RunStatus.FAILED

        if solver_status != SolverStatus.FEASIBLE:
            self.internal.last_error = f"Solver status {solver_status.value}"
            logger.warning(f"Problem {self.name} solve finished with {solver_status.value}")
            return RunStatus.FAILED

        try:
            for variable in container.variables.values():
                variable.values = np.asarray(self.solver.get_primal(container.model, variable))
            if container.is_milp:
                if container.settings.constraint_duals:
                    logger.warning(f"Problem {self.name} is a MILP, duals can't be exported")
            else:
                for key in container.settings.constraint_duals:
                    constraint = container.get_constraint(key)
                    container.duals[key] = np.asarray(
                        self.solver.get_dual(container.model, constraint)
                    )
            container.objective_value = getattr(container.model, "objective_value", None)
            self.calculate_aux_variables()
        except Exception as e:
            logger.error(f"Reading the solution of {self.name} failed: {e}", exc_info=True)
            self.internal.last_error = f"{type(e).__name__}: {e}"
            return RunStatus.FAILED
        self.internal.last_error = None
        return RunStatus.SUCCESSFUL

    def calculate_aux_variables(self) -> None:
        """Recompute every registered auxiliary variable from the solved state"""
        container = self.get_optimization_container()
        for key in container.aux_variables:
            container.calculate_aux_variable_value(key)

    def solve_step(self, step: int, start_time: datetime, store: ResultWriter) -> RunStatus:
        """
        Solve inside a simulation; on success write results and advance the execution count
        """
        status = self.solve()
        if status == RunStatus.SUCCESSFUL:
            self.write_optimizer_stats(store, step, start_time)
            self.write_model_results(store, start_time)
            self.advance_execution_count()
        return status

    # Results

    def write_model_results(self, store: ResultWriter, timestamp: datetime) -> None:
        """Write duals, parameters, variables and auxiliary variables of the last solve"""
        container = self.get_optimization_container()
        if container.is_milp:
            if container.duals:
                logger.warning(f"Problem {self.name} is a MILP, duals can't be exported")
        else:
            for key, values in container.duals.items():
                store.write(self.name, STORE_CONTAINER_DUALS, key, timestamp, values)

        for key, parameter in container.parameters.items():
            store.write(self.name, STORE_CONTAINER_PARAMETERS, key, timestamp, parameter.get_result())

        for key, variable in container.variables.items():
            store.write(self.name, STORE_CONTAINER_VARIABLES, key, timestamp, variable.values)

        for key, aux in container.aux_variables.items():
            store.write(self.name, STORE_CONTAINER_AUX_VARIABLES, key, timestamp, aux.values)

    def write_optimizer_stats(self, store: ResultWriter, step: int, timestamp: datetime) -> None:
        container = self.get_optimization_container()
        stats: OptimizerStatsDict = {
            "step": step,
            "execution": self.execution_count if self.built_for_simulation else 0,
            "status": self.run_status.value,
            "objective_value": container.objective_value,
            "solve_time": float(getattr(container.model, "solve_time", 0.0)),
            "build_time": self.internal.build_time,
        }
        self.internal.optimizer_stats.append(stats)
        objective = np.nan if stats["objective_value"] is None else stats["objective_value"]
        store.write(
            self.name,
            STORE_CONTAINER_OPTIMIZER_STATS,
            "OptimizerStats",
            timestamp,
            [step, stats["execution"], objective, stats["solve_time"], stats["build_time"]],
        )

    # Serialization

    def serialize(self, output_dir: Union[str, Path]) -> Path:
        return serialize_problem(self, output_dir)

    def write_model_summary(self, output_dir: Union[str, Path]) -> Path:
        """Write a JSON description of the container next to the serialized problem"""
        name = f"{self.name}_OptimizationModel.json" if self.name else "OptimizationModel.json"
        path = Path(output_dir) / name
        path.write_text(json.dumps(self.get_optimization_container().to_summary(), indent=2))
        return path

    # Initial conditions

    def get_initial_status_cache(self, device_type: str) -> Dict[str, Dict[str, float]]:
        """
        On/off status and time at status of every device with duration initial conditions

        Raises:
            ConsistencyError: If the on and off durations of a device disagree
        """
        container = self.get_optimization_container()
        values: Dict[str, Dict[str, float]] = {}
        for ic in container.get_initial_conditions("InitialTimeDurationOn", device_type):
            values[ic.device_name] = {
                "count": ic.value,
                "status": 1.0 if ic.value > 0.0 else 0.0,
            }
        for ic in container.get_initial_conditions("InitialTimeDurationOff", device_type):
            status = 0.0 if ic.value > 0.0 else 1.0
            current = values.get(ic.device_name)
            if current is None:
                values[ic.device_name] = {"count": ic.value, "status": status}
            elif current["status"] != status:
                raise ConsistencyError(
                    f"Initial conditions for {ic.device_name} are not compatible. "
                    "The values provided are invalid",
                    details={"device": ic.device_name, "device_type": device_type},
                )
        return values

    def get_initial_energy_cache(self, device_type: str) -> Dict[str, float]:
        container = self.get_optimization_container()
        return {
            ic.device_name: ic.value
            for ic in container.get_initial_conditions("InitialEnergyLevel", device_type)
        }

    # Debugging helpers

    def get_timestamps(self) -> List[datetime]:
        container = self.get_optimization_container()
        if container.initial_time is None:
            raise InvalidStateError(f"Problem {self.name} has not been initialized")
        return [container.initial_time + i * container.resolution for i in range(container.horizon)]

    def list_variable_keys(self) -> List[str]:
        return list(self.get_optimization_container().variables)

    def list_constraint_keys(self) -> List[str]:
        return list(self.get_optimization_container().constraints)

    def __repr__(self) -> str:
        return f"DecisionProblem(name={self.name!r}, status={self.status.value})"
