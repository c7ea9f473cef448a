"""
Copper-plate economic dispatch / unit commitment builder
Reference model builder: one balance constraint per period, thermal units with linear costs,
loads read from their forecasts through the problem's time series cache.
"""

from typing import Dict, List
import logging

import numpy as np

from opsim.enums import TimeSeriesType
from opsim.exceptions import InvalidArgumentError
from opsim.models import ProblemTemplate
from opsim.optimization_container import (
    AuxVariableArray,
    ContainerArray,
    InitialCondition,
    OptimizationContainer,
    ParameterArray,
    encode_key,
)
from opsim.solver import EQUAL, LESS_EQUAL, LinearModel
from opsim.system import System

logger = logging.getLogger(__name__)

THERMAL = "ThermalGenerator"
LOAD = "PowerLoad"

ACTIVE_POWER = encode_key("ActivePowerVariable", THERMAL)
ON_VARIABLE = encode_key("OnVariable", THERMAL)
LOAD_PARAMETER = encode_key("ActivePowerTimeSeriesParameter", LOAD)
BALANCE = encode_key("CopperPlateBalanceConstraint", "System")
ACTIVE_POWER_UB = encode_key("ActivePowerVariableLimitsConstraint_ub", THERMAL)
ACTIVE_POWER_LB = encode_key("ActivePowerVariableLimitsConstraint_lb", THERMAL)
PRODUCTION_COST = encode_key("ProductionCostExpression", THERMAL)
TIME_DURATION_ON = encode_key("TimeDurationOn", THERMAL)
TIME_DURATION_OFF = encode_key("TimeDurationOff", THERMAL)

DISPATCH_FORMULATIONS = {"ThermalDispatch"}
COMMITMENT_FORMULATIONS = {"ThermalStandardUnitCommitment"}
LOAD_FORMULATIONS = {"StaticLoad"}
TRANSMISSION_MODELS = {"CopperPlatePowerModel"}


class EconomicDispatchBuilder:
    """
    Builds a LinearModel for a copper-plate system

    Args:
        load_series_type: Series type of the load forecasts
        load_series_name: Field name of the load forecasts (per-unit of max_active_power)
    """

    def __init__(
        self,
        load_series_type: TimeSeriesType = TimeSeriesType.DETERMINISTIC,
        load_series_name: str = "max_active_power",
    ):
        self.load_series_type = load_series_type
        self.load_series_name = load_series_name

    def build_model(
        self, container: OptimizationContainer, template: ProblemTemplate, system: System
    ) -> LinearModel:
        if template.transmission not in TRANSMISSION_MODELS:
            raise InvalidArgumentError(f"Unsupported transmission model {template.transmission}")
        thermal_formulation = template.devices.get(THERMAL)
        if thermal_formulation not in DISPATCH_FORMULATIONS | COMMITMENT_FORMULATIONS:
            raise InvalidArgumentError(f"Unsupported thermal formulation {thermal_formulation}")
        load_formulation = template.devices.get(LOAD, "StaticLoad")
        if load_formulation not in LOAD_FORMULATIONS:
            raise InvalidArgumentError(f"Unsupported load formulation {load_formulation}")

        model = LinearModel()
        model.set_optimizer(container.settings.optimizer)
        model.log_output = container.settings.optimizer_log_print
        container.model = model

        generators = [g for g in system.generators if g.available]
        if not generators:
            raise InvalidArgumentError(f"System {system.name} has no available generators")
        commitment = thermal_formulation in COMMITMENT_FORMULATIONS

        power = self._add_thermal_variables(container, model, generators, commitment)
        demand = self._add_load_parameters(container, system)
        self._add_balance(container, model, power, demand)
        self._add_production_cost(container, generators)
        if commitment:
            self._add_commitment_initial_conditions(container, generators)

        logger.info(
            f"Built {'unit commitment' if commitment else 'economic dispatch'} with "
            f"{model.num_variables} variables and {len(model.rows)} constraints"
        )
        return model

    def _add_thermal_variables(self, container, model, generators, commitment):
        names = [g.name for g in generators]
        steps = list(container.time_steps)
        shape = (len(names), len(steps))
        pmin = np.array([[g.pmin] for g in generators])
        pmax = np.array([[g.pmax] for g in generators])
        hours = container.resolution.total_seconds() / 3600
        cost = np.array([[g.variable_cost * hours] for g in generators])

        lower = np.zeros((len(names), 1)) if commitment else pmin
        power = model.add_variables(shape, lower, pmax, cost)
        container.add_variable(ACTIVE_POWER, ContainerArray(names, steps, power))
        if not commitment:
            return power

        fixed = np.array([[g.fixed_cost * hours] for g in generators])
        on = model.add_variables(shape, 0.0, 1.0, fixed, integer=True)
        container.add_variable(ON_VARIABLE, ContainerArray(names, steps, on))

        upper_rows = np.empty(shape, dtype=int)
        lower_rows = np.empty(shape, dtype=int)
        for i, g in enumerate(generators):
            for j in range(len(steps)):
                upper_rows[i, j] = model.add_row(
                    LESS_EQUAL, {int(power[i, j]): 1.0, int(on[i, j]): -g.pmax}, 0.0
                )
                lower_rows[i, j] = model.add_row(
                    LESS_EQUAL, {int(on[i, j]): g.pmin, int(power[i, j]): -1.0}, 0.0
                )
        container.add_constraint(ACTIVE_POWER_UB, ContainerArray(names, steps, upper_rows))
        container.add_constraint(ACTIVE_POWER_LB, ContainerArray(names, steps, lower_rows))
        return power

    def _add_load_parameters(self, container, system) -> np.ndarray:
        loads = [load for load in system.loads if load.available]
        steps = list(container.time_steps)
        if not loads:
            return np.zeros(len(steps))
        forecasts = np.vstack(
            [
                container.get_time_series(self.load_series_type, load, self.load_series_name)
                for load in loads
            ]
        )
        peaks = np.array([[load.max_active_power] for load in loads])
        parameter = ParameterArray(
            [load.name for load in loads], steps, forecasts, np.broadcast_to(peaks, forecasts.shape)
        )
        container.add_parameter(LOAD_PARAMETER, parameter)
        return parameter.get_result().sum(axis=0)

    def _add_balance(self, container, model, power, demand) -> None:
        steps = list(container.time_steps)
        rows = np.empty((1, len(steps)), dtype=int)
        for j in range(len(steps)):
            coefficients: Dict[int, float] = {int(col): 1.0 for col in power[:, j]}
            rows[0, j] = model.add_row(EQUAL, coefficients, float(demand[j]))
        container.add_constraint(BALANCE, ContainerArray(["System"], steps, rows))

    def _add_production_cost(self, container, generators) -> None:
        names = [g.name for g in generators]
        costs = np.array([[g.variable_cost] for g in generators])

        def compute(c: OptimizationContainer, _system: System) -> np.ndarray:
            hours = c.resolution.total_seconds() / 3600
            return c.get_variable(ACTIVE_POWER).values * costs * hours

        container.add_aux_variable(
            PRODUCTION_COST, AuxVariableArray(names, list(container.time_steps), compute)
        )

    def _add_commitment_initial_conditions(self, container, generators: List) -> None:
        for g in generators:
            on_duration = g.time_at_status if g.status else 0.0
            off_duration = 0.0 if g.status else g.time_at_status
            container.add_initial_condition(
                InitialCondition("InitialTimeDurationOn", THERMAL, g.name, on_duration)
            )
            container.add_initial_condition(
                InitialCondition("InitialTimeDurationOff", THERMAL, g.name, off_duration)
            )

        names = [g.name for g in generators]
        initial_on = np.array([[1.0 if g.status else 0.0] for g in generators])
        initial_on_time = np.array([[g.time_at_status if g.status else 0.0] for g in generators])
        initial_off_time = np.array([[0.0 if g.status else g.time_at_status] for g in generators])

        def durations(c: OptimizationContainer, on_state: float, start: np.ndarray) -> np.ndarray:
            status = np.rint(c.get_variable(ON_VARIABLE).values)
            active = status == on_state
            result = np.zeros_like(status)
            previous = np.where(initial_on == on_state, start, 0.0)[:, 0]
            for j in range(status.shape[1]):
                previous = np.where(active[:, j], previous + 1.0, 0.0)
                result[:, j] = previous
            return result

        steps = list(container.time_steps)
        container.add_aux_variable(
            TIME_DURATION_ON,
            AuxVariableArray(names, steps, lambda c, _s: durations(c, 1.0, initial_on_time)),
        )
        container.add_aux_variable(
            TIME_DURATION_OFF,
            AuxVariableArray(names, steps, lambda c, _s: durations(c, 0.0, initial_off_time)),
        )
