"""
Multi-stage simulation
Drives a sequence of decision problems over a number of steps: every step runs each stage in order,
each stage solving its problem `executions` times over consecutive sub-intervals of the step.
"""

from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Union
import logging
import time

from opsim.chronology import Chronology, RecedingHorizon, SimulationInfo
from opsim.config import get_settings
from opsim.enums import BuildStatus, CachePriority, RunStatus
from opsim.exceptions import (
    BuildFailure,
    InvalidArgumentError,
    InvalidStateError,
    SimulationFailure,
    SolveFailure,
)
from opsim.problem import DecisionProblem
from opsim.simulation_ref import (
    SimulationReference,
    advance,
    make_reference,
    prepare_workspace,
    record_date,
    set_current_time,
)
from opsim.types import CacheStatsDict, StepOutcomeDict
from opsim.utils.cache_rules import CacheFlushRules, add_rule
from opsim.utils.logging_config import log_context
from opsim.utils.result_store import SimulationStore

logger = logging.getLogger(__name__)


class Stage:
    """
    One problem of a simulation and how often it runs per step

    Args:
        problem: The decision problem; its name must be unique in the simulation
        executions: Solves per step
        chronology: How the problem's interval maps to periods of a build
        keep_in_cache: Container keys whose results stay in memory after a flush
        priority: Eviction priority of the kept results
    """

    def __init__(
        self,
        problem: DecisionProblem,
        executions: int = 1,
        chronology: Optional[Chronology] = None,
        keep_in_cache: Iterable[str] = (),
        priority: CachePriority = CachePriority.LOW,
    ):
        if executions < 1:
            raise InvalidArgumentError(f"executions must be at least 1, got {executions}")
        self.problem = problem
        self.executions = executions
        self.chronology = chronology or RecedingHorizon()
        self.keep_in_cache = list(keep_in_cache)
        self.priority = priority

    @property
    def name(self) -> str:
        return self.problem.name


class Simulation:
    """
    Owns the workspace, the reference counters and the result store of one run

    Args:
        name: Base name of the workspace folder
        steps: Number of simulation steps
        stages: Stages in execution order, numbered from 1
        simulation_folder: Existing parent folder of the workspace
        initial_time: Start of the first step
        interval: Length of one step
        cache_rules: Result store rules; built from the global settings by default

    Example:
        >>> sim = Simulation("ed", 2, [Stage(problem)], tmp_dir, start, timedelta(hours=24))
        >>> sim.build()
        >>> sim.execute()
    """

    def __init__(
        self,
        name: str,
        steps: int,
        stages: Union[Sequence[Stage], Dict[int, Stage]],
        simulation_folder: Union[str, Path],
        initial_time: datetime,
        interval: timedelta,
        cache_rules: Optional[CacheFlushRules] = None,
    ):
        if isinstance(stages, dict):
            self.stages = dict(sorted(stages.items()))
        else:
            self.stages = {number: stage for number, stage in enumerate(stages, start=1)}
        if not self.stages:
            raise InvalidArgumentError("A simulation needs at least one stage")
        names = [stage.name for stage in self.stages.values()]
        if "" in names or len(set(names)) != len(names):
            raise InvalidArgumentError(
                "Stage problems need unique, non-empty names", details={"names": names}
            )
        if interval <= timedelta(0):
            raise InvalidArgumentError(f"interval must be positive, got {interval}")

        self.name = name
        self.steps = steps
        self.simulation_folder = Path(simulation_folder)
        self.initial_time = initial_time
        self.interval = interval
        self.cache_rules = cache_rules
        self.reference: Optional[SimulationReference] = None
        self.store: Optional[SimulationStore] = None
        self.status = RunStatus.READY
        self.outcomes: List[StepOutcomeDict] = []
        self.error: Optional[str] = None

    def get_problem(self, name: str) -> DecisionProblem:
        for stage in self.stages.values():
            if stage.name == name:
                return stage.problem
        raise InvalidArgumentError(f"Simulation {self.name} has no problem {name}")

    def build(self) -> SimulationReference:
        """
        Prepare the workspace, the reference and the result store, and wire every stage

        Raises:
            InvalidArgumentError: If the folder does not exist, steps < 1, or a
                stage interval does not fit the problem resolution
        """
        raw_dir, models_dir, results_dir = prepare_workspace(self.name, self.simulation_folder)
        reference = make_reference(
            raw_dir,
            models_dir,
            results_dir,
            self.steps,
            self.stages.keys(),
            current_time=self.initial_time,
        )

        if self.cache_rules is None:
            settings = get_settings()
            self.cache_rules = CacheFlushRules(
                max_size=settings.cache_flush_max_size,
                min_flush_size=settings.cache_flush_min_size,
            )

        for number, stage in self.stages.items():
            problem = stage.problem
            problem.set_simulation_info(
                SimulationInfo(problem.name, number, stage.executions, stage.chronology)
            )
            problem.initialize_simulation_info()
            problem.reset()
            problem.set_initial_time(self.initial_time)
            for key in stage.keep_in_cache:
                add_rule(self.cache_rules, problem.name, key, True, stage.priority)
            logger.info(
                f"Stage {number}: {problem.name}, {stage.executions} execution(s), "
                f"{type(stage.chronology).__name__}"
            )

        self.store = SimulationStore(results_dir, self.cache_rules)
        reference.reset = False
        self.reference = reference
        self.status = RunStatus.READY
        self.outcomes = []
        self.error = None
        return reference

    def execute(self) -> List[StepOutcomeDict]:
        """
        Run every step, stage and execution in order

        Returns:
            One outcome per problem execution

        Raises:
            InvalidStateError: If build() was not called
            SimulationFailure: If a stage fails and its problem does not allow failures
        """
        if self.reference is None or self.reference.reset or self.store is None:
            raise InvalidStateError(f"Simulation {self.name} must be built before executing")

        self.status = RunStatus.RUNNING
        started = time.perf_counter()
        try:
            for step in range(1, self.steps + 1):
                step_start = self.initial_time + (step - 1) * self.interval
                record_date(self.reference, step, step_start)
                set_current_time(self.reference, step_start)
                with log_context(step=step):
                    logger.info(f"Step {step}/{self.steps} starting at {step_start.isoformat()}")
                    for number, stage in self.stages.items():
                        self._run_stage(step, number, stage, step_start)
            self.status = RunStatus.SUCCESSFUL
        except SimulationFailure as e:
            self.status = RunStatus.FAILED
            self.error = e.message
            raise
        except Exception as e:
            self.status = RunStatus.FAILED
            self.error = f"{type(e).__name__}: {e}"
            logger.error(f"Simulation {self.name} aborted: {self.error}", exc_info=True)
            raise
        finally:
            self.store.flush()
            logger.info(
                f"Simulation {self.name} finished with status {self.status.value} "
                f"in {time.perf_counter() - started:.2f}s"
            )
        return self.outcomes

    def _run_stage(self, step: int, number: int, stage: Stage, step_start: datetime) -> None:
        problem = stage.problem
        stage_interval = self.interval / stage.executions
        for execution in range(stage.executions):
            start = step_start + execution * stage_interval
            with log_context(stage=number, problem=problem.name, execution=execution + 1):
                first = step == 1 and execution == 0
                status, error = self._run_execution(step, problem, start, first)
            self.outcomes.append(
                {
                    "step": step,
                    "stage": number,
                    "problem": problem.name,
                    "execution": execution + 1,
                    "start_time": start.isoformat(),
                    "status": status.value,
                    "error": error,
                }
            )
            advance(self.reference, step, number)

            if status != RunStatus.SUCCESSFUL:
                if not problem.settings.allow_fails:
                    message = f"Simulation stopped at step {step}, stage {number} ({problem.name}): {error}"
                    logger.error(message)
                    raise SimulationFailure(
                        message, step=step, stage=number, details={"problem": problem.name}
                    )
                logger.warning(f"{problem.name} failed at step {step}, continuing: {error}")
                problem.advance_execution_count()

    def _run_execution(
        self, step: int, problem: DecisionProblem, start: datetime, first: bool
    ):
        problem.set_initial_time(start)
        try:
            if first:
                build_status = problem.build(output_dir=self.reference.models_dir, serialize=True)
            else:
                build_status = problem.build(serialize=False)
            if build_status != BuildStatus.BUILT:
                return RunStatus.FAILED, problem.last_error
            status = problem.solve_step(step, start, self.store)
        except (BuildFailure, SolveFailure) as e:
            return RunStatus.FAILED, e.message
        return status, problem.last_error

    def get_cache_stats(self) -> Dict[str, CacheStatsDict]:
        """Time series cache statistics per problem"""
        return {
            stage.name: stage.problem.get_time_series_cache().get_stats()
            for stage in self.stages.values()
        }
