"""
Simulation reference: per-step, per-stage execution counters and step dates
One reference is owned by each Simulation for its whole lifetime and handed to the stages it drives
"""

from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, Tuple, Union
import logging
import threading

from opsim.constants import (
    MODELS_DIR,
    RAW_OUTPUT_DIR,
    RESULTS_DIR,
    WORKSPACE_TIMESTAMP_FORMAT,
)
from opsim.exceptions import ConsistencyError, InvalidArgumentError, KeyNotFoundError
from opsim.types import ReferenceSnapshotDict

logger = logging.getLogger(__name__)


class SimulationReference:
    """
    Mutable execution state of a simulation run

    Attributes:
        raw_dir: Folder for raw solver outputs
        models_dir: Folder for serialized problems
        results_dir: Folder for the result store
        run_count: step -> stage -> number of executions so far
        date_ref: step -> initial timestamp of the step
        current_time: Logical "now" of the simulation
        reset: True until the owning simulation has finished wiring
    """

    def __init__(
        self,
        raw_dir: str,
        models_dir: str,
        results_dir: str,
        run_count: Dict[int, Dict[int, int]],
        current_time: datetime,
    ):
        self.raw_dir = raw_dir
        self.models_dir = models_dir
        self.results_dir = results_dir
        self.run_count = run_count
        self.date_ref: Dict[int, datetime] = {}
        self.current_time = current_time
        self.reset = True
        self._lock = threading.Lock()

    @property
    def steps(self) -> int:
        return len(self.run_count)

    @property
    def stage_keys(self) -> Tuple[int, ...]:
        first = next(iter(self.run_count.values()))
        return tuple(first.keys())

    def get_count(self, step: int, stage: int) -> int:
        return _lookup(self.run_count, step, stage)

    def to_dict(self) -> ReferenceSnapshotDict:
        with self._lock:
            return {
                "run_count": {s: dict(stages) for s, stages in self.run_count.items()},
                "date_ref": {s: ts.isoformat() for s, ts in self.date_ref.items()},
                "current_time": self.current_time.isoformat(),
                "reset": self.reset,
                "raw_dir": self.raw_dir,
                "models_dir": self.models_dir,
                "results_dir": self.results_dir,
            }

    def __repr__(self) -> str:
        return (
            f"SimulationReference(steps={self.steps}, stages={self.stage_keys}, "
            f"current_time={self.current_time.isoformat()}, reset={self.reset})"
        )


def make_reference(
    raw_dir: str,
    models_dir: str,
    results_dir: str,
    steps: int,
    stage_keys: Iterable[int],
    current_time: Union[datetime, None] = None,
) -> SimulationReference:
    """
    Build a reference with one zeroed counter per (step, stage)

    Steps are numbered from 1.

    Raises:
        InvalidArgumentError: If steps < 1 or stage_keys is empty
    """
    stage_keys = list(stage_keys)
    if steps < 1:
        raise InvalidArgumentError(f"A simulation needs at least 1 step, got {steps}")
    if not stage_keys:
        raise InvalidArgumentError("A simulation needs at least one stage")

    run_count = {step: {stage: 0 for stage in stage_keys} for step in range(1, steps + 1)}
    return SimulationReference(
        raw_dir,
        models_dir,
        results_dir,
        run_count,
        current_time or datetime.now(),
    )


def advance(ref: SimulationReference, step: int, stage: int) -> int:
    """
    Count one more execution of `stage` in `step`

    Returns:
        The new count

    Raises:
        KeyNotFoundError: If (step, stage) was not declared at construction
    """
    with ref._lock:
        count = _lookup(ref.run_count, step, stage) + 1
        ref.run_count[step][stage] = count
    return count


def record_date(ref: SimulationReference, step: int, timestamp: datetime) -> None:
    """
    Record the initial timestamp of a step on its first visit

    Recording the same timestamp again is a no-op.

    Raises:
        KeyNotFoundError: If the step was not declared
        ConsistencyError: If a different timestamp was already recorded
    """
    if step not in ref.run_count:
        raise KeyNotFoundError(f"Step {step} is not part of this simulation", key=step)
    with ref._lock:
        recorded = ref.date_ref.setdefault(step, timestamp)
    if recorded != timestamp:
        raise ConsistencyError(
            f"Step {step} was recorded at {recorded.isoformat()}, got {timestamp.isoformat()}",
            details={"step": step, "recorded": recorded.isoformat(), "new": timestamp.isoformat()},
        )


def set_current_time(ref: SimulationReference, timestamp: datetime) -> None:
    """
    Move the simulation clock forward

    Raises:
        ConsistencyError: If timestamp is earlier than the current time
    """
    with ref._lock:
        if timestamp < ref.current_time:
            raise ConsistencyError(
                f"Simulation time cannot move backwards from "
                f"{ref.current_time.isoformat()} to {timestamp.isoformat()}"
            )
        ref.current_time = timestamp


def reset_counts(ref: SimulationReference) -> None:
    """Zero every counter and forget recorded dates"""
    with ref._lock:
        for stages in ref.run_count.values():
            for stage in stages:
                stages[stage] = 0
        ref.date_ref.clear()


def _lookup(run_count: Dict[int, Dict[int, int]], step: int, stage: int) -> int:
    try:
        return run_count[step][stage]
    except KeyError:
        raise KeyNotFoundError(
            f"(step={step}, stage={stage}) was not declared for this simulation",
            key=(step, stage),
        ) from None


def prepare_workspace(
    base_name: str, folder: Union[str, Path], now: Union[datetime, None] = None
) -> Tuple[str, str, str]:
    """
    Create the folder tree for one simulation run

    Layout: <folder>/<base_name>/<YYYY-MM-DDTHH-MM>/{raw_output,models_json,results}.
    A second run within the same minute gets a "-1", "-2", ... suffix instead of
    reusing the existing folder.

    Args:
        base_name: Simulation name
        folder: Existing parent folder
        now: Timestamp to name the run after (defaults to the current time)

    Returns:
        Paths of the raw output, models and results folders

    Raises:
        InvalidArgumentError: If folder is not an existing directory
    """
    folder = Path(folder)
    if not folder.is_dir():
        raise InvalidArgumentError(
            f"Specified folder is not valid: {folder}", details={"folder": str(folder)}
        )

    global_path = folder / base_name
    global_path.mkdir(parents=True, exist_ok=True)

    stamp = (now or datetime.now()).replace(second=0, microsecond=0)
    run_name = stamp.strftime(WORKSPACE_TIMESTAMP_FORMAT)
    simulation_path = global_path / run_name
    suffix = 0
    while True:
        try:
            simulation_path.mkdir()
            break
        except FileExistsError:
            suffix += 1
            simulation_path = global_path / f"{run_name}-{suffix}"

    paths = []
    for name in (RAW_OUTPUT_DIR, MODELS_DIR, RESULTS_DIR):
        path = simulation_path / name
        path.mkdir()
        paths.append(str(path))

    logger.info(f"Prepared simulation workspace {simulation_path}")
    return paths[0], paths[1], paths[2]
